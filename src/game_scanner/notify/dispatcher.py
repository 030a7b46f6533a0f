"""
Per-destination dispatcher.

Each subscribed destination gets one Dispatcher: an asyncio.Queue of
operations drained by a single worker task, so everything that touches the
destination's channel happens in order and one at a time. A second task
queues a status refresh on a fixed interval.

Operations:
    - on_game_event: apply a registry event to the local view
    - add_categories / remove_categories: replay or retract a category
    - refresh_status: re-render the status message
    - purge_untracked: delete stale bot messages from history
    - renew_status_message: debounced move-to-bottom (not queued)
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from game_scanner.exceptions import MessageNotFoundError, PermissionDeniedError
from game_scanner.feed.models import GameCategory, GameEvent, GameEventType, GameInfo

from .formatting import render_status
from .models import CLEANUP, POST, RICH
from .ping_messages import PingMessageManager
from .platform import ReliablePlatform
from .status_message import StatusMessageManager

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[], list[GameInfo]]

DEFAULT_MENTION = "@here"


@dataclass
class DispatcherConfig:
    """Timing and sizing for dispatchers. Shared by every destination."""
    status_refresh_interval: float = 5.0
    status_refresh_initial_delay: float = 1.0
    history_lookback: int = 8
    purge_history_limit: int = 256
    renew_delay: float = 2.0
    renew_timeout: float = 7.0
    default_mention: str = DEFAULT_MENTION
    owner_name: Optional[str] = None
    owner_icon_url: Optional[str] = None


@dataclass
class _Operation:
    label: str
    run: Callable[[], Awaitable[object]]
    done: asyncio.Future


class Dispatcher:
    """
    Serialized view and message management for one destination.

    Public operations enqueue work and return a future that resolves to
    True when the operation completed, False when it was skipped or failed.
    Callers are free to ignore it.

    Usage:
        dispatcher = Dispatcher(channel_id, platform, {GameCategory.AOC}, reconciler.snapshot)
        dispatcher.start()
        dispatcher.on_game_event(event)
        await dispatcher.close()
    """

    def __init__(
        self,
        destination_id: int,
        platform: ReliablePlatform,
        categories: Iterable[GameCategory],
        snapshot: SnapshotProvider,
        config: Optional[DispatcherConfig] = None,
    ):
        self._destination_id = destination_id
        self._platform = platform
        self._snapshot = snapshot
        self._config = config or DispatcherConfig()

        # categories the view reflects; changed only by queued operations
        self._categories: set[GameCategory] = set()
        self._initial_categories = set(categories)
        self._games: dict[int, GameInfo] = {}
        self._mentions: dict[GameCategory, str] = {}

        self._status = StatusMessageManager(
            destination_id,
            platform,
            history_lookback=self._config.history_lookback,
            renew_delay=self._config.renew_delay,
            renew_timeout=self._config.renew_timeout,
        )
        self._pings = PingMessageManager(destination_id, platform)

        self._queue: asyncio.Queue[_Operation] = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._refresh_pending = False
        self._started = False
        self._closed = False
        self._warned: set[str] = set()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def destination_id(self) -> int:
        return self._destination_id

    @property
    def categories(self) -> frozenset:
        return frozenset(self._categories)

    @property
    def games(self) -> list[GameInfo]:
        """Displayed games ordered by id."""
        return sorted(self._games.values(), key=lambda game: game.id)

    @property
    def status(self) -> StatusMessageManager:
        return self._status

    @property
    def pings(self) -> PingMessageManager:
        return self._pings

    @property
    def role_mentions(self) -> dict[GameCategory, str]:
        return dict(self._mentions)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_alive(self) -> bool:
        """False once the worker task has died or the dispatcher was closed."""
        if self._closed or self._worker_task is None:
            return False
        return not self._worker_task.done()

    def is_tracked(self, message_id: int) -> bool:
        return self._status.is_tracked(message_id) or self._pings.is_tracked(message_id)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the worker, then purge stale messages and replay current games."""
        if self._started:
            return
        self._started = True

        self._worker_task = asyncio.create_task(
            self._worker(), name=f"dispatcher_{self._destination_id}"
        )
        self.purge_untracked()
        self.add_categories(self._initial_categories)
        self._refresh_task = asyncio.create_task(
            self._refresh_loop(), name=f"status_refresh_{self._destination_id}"
        )
        logger.info(
            f"Dispatcher started for {self._destination_id} "
            f"({', '.join(str(c) for c in sorted(self._initial_categories, key=lambda c: c.name))})"
        )

    async def close(self, purge: bool = True) -> None:
        """
        Tear the dispatcher down.

        Timers are stopped first, then already-queued operations are allowed
        to finish before handles are released and (optionally) the channel is
        purged of this bot's messages.
        """
        if self._closed:
            return
        self._closed = True

        if self._refresh_task is not None:
            self._refresh_task.cancel()
            await asyncio.gather(self._refresh_task, return_exceptions=True)
            self._refresh_task = None

        await self._status.close()

        if self._worker_task is not None and not self._worker_task.done():
            await self._queue.join()

        released = self._pings.close()
        logger.debug(f"Released {len(released)} ping messages in {self._destination_id}")

        if purge and self._started:
            try:
                await self._purge_untracked()
            except Exception as e:
                logger.warning(f"Final purge of {self._destination_id} failed: {e}")

        if self._worker_task is not None:
            self._worker_task.cancel()
            await asyncio.gather(self._worker_task, return_exceptions=True)
            self._worker_task = None

        logger.info(f"Dispatcher for {self._destination_id} closed")

    # =========================================================================
    # Public operations (queued)
    # =========================================================================

    def on_game_event(self, event: GameEvent) -> asyncio.Future:
        return self._submit(f"{event.type.value}:{event.game.id}", lambda: self._apply_event(event))

    def add_categories(self, categories: Iterable[GameCategory]) -> asyncio.Future:
        categories = set(categories)
        # captured now so later events in the queue apply on top of it
        snapshot = self._snapshot()
        return self._submit("add_categories", lambda: self._add_categories(categories, snapshot))

    def remove_categories(self, categories: Iterable[GameCategory]) -> asyncio.Future:
        categories = set(categories)
        return self._submit("remove_categories", lambda: self._remove_categories(categories))

    def refresh_status(self) -> asyncio.Future:
        return self._submit("refresh_status", self._refresh_status)

    def purge_untracked(self) -> asyncio.Future:
        return self._submit("purge_untracked", self._purge_untracked)

    def renew_status_message(self) -> bool:
        """Ask for the status message to move to the bottom. Debounced."""
        if self._closed:
            return False
        if not self._allowed("renew", CLEANUP):
            return False
        return self._status.renew()

    # =========================================================================
    # Queue plumbing
    # =========================================================================

    def _submit(self, label: str, run: Callable[[], Awaitable[object]]) -> asyncio.Future:
        done = asyncio.get_running_loop().create_future()
        if self._closed:
            logger.debug(f"Dropping {label} for closed dispatcher {self._destination_id}")
            done.set_result(False)
            return done

        self._queue.put_nowait(_Operation(label=label, run=run, done=done))
        return done

    async def _worker(self) -> None:
        while True:
            op = await self._queue.get()
            try:
                result = await op.run()
                ok = result is not False
            except asyncio.CancelledError:
                if not op.done.done():
                    op.done.set_result(False)
                self._queue.task_done()
                raise
            except PermissionDeniedError as e:
                logger.warning(f"Skipped {op.label} in {self._destination_id}: {e}")
                ok = False
            except Exception as e:
                logger.exception(f"Error in {op.label} for {self._destination_id}: {e}")
                ok = False

            if not op.done.done():
                op.done.set_result(ok)
            self._queue.task_done()

    async def _refresh_loop(self) -> None:
        try:
            await asyncio.sleep(self._config.status_refresh_initial_delay)
            while not self._closed:
                if not self._refresh_pending:
                    self._refresh_pending = True
                    self.refresh_status()
                await asyncio.sleep(self._config.status_refresh_interval)
        except asyncio.CancelledError:
            pass

    def _allowed(self, action: str, required: frozenset) -> bool:
        """Capability check, warning once per action until it recovers."""
        missing = self._platform.missing(self._destination_id, required)
        if not missing:
            self._warned.discard(action)
            return True

        if action not in self._warned:
            self._warned.add(action)
            logger.warning(
                f"Skipping {action} in {self._destination_id}, missing "
                f"{sorted(c.value for c in missing)}"
            )
        return False

    # =========================================================================
    # Operation bodies (run by the worker)
    # =========================================================================

    async def _apply_event(self, event: GameEvent) -> bool:
        game = event.game
        if game.category not in self._categories:
            return False

        if event.type == GameEventType.REMOVED:
            self._games.pop(game.id, None)
            await self._pings.retract(game.id)
            return True

        self._games[game.id] = game
        # announce() is a no-op for games that already have a ping
        await self._pings.announce(game, self._mention_for(game.category))
        return True

    async def _add_categories(self, categories: set, snapshot: list[GameInfo]) -> bool:
        added = categories - self._categories
        if not added:
            return False
        self._categories |= added

        for game in snapshot:
            if game.category in added:
                await self._apply_event(GameEvent.created(game))
        return True

    async def _remove_categories(self, categories: set) -> bool:
        removed = categories & self._categories
        if not removed:
            return False

        for game in self.games:
            if game.category in removed:
                await self._apply_event(GameEvent.removed(game))

        self._categories -= removed
        for category in removed:
            self._mentions.pop(category, None)
        return True

    async def _refresh_status(self) -> bool:
        self._refresh_pending = False
        if not self._allowed("status update", POST):
            return False

        use_embed = not self._platform.missing(self._destination_id, RICH)
        content = render_status(
            self._games.values(),
            self._categories,
            use_embed=use_embed,
            owner_name=self._config.owner_name,
            owner_icon_url=self._config.owner_icon_url,
        )
        await self._status.update(content)
        return True

    async def _purge_untracked(self) -> int:
        if not self._allowed("purge", CLEANUP):
            return 0

        history = await self._platform.fetch_history(
            self._destination_id, self._config.purge_history_limit
        )
        stale = [m for m in history if m.author_is_self and not self.is_tracked(m.id)]

        for message in stale:
            try:
                await self._platform.delete_message(self._destination_id, message.id)
            except MessageNotFoundError:
                pass

        if stale:
            logger.info(f"Purged {len(stale)} stale messages from {self._destination_id}")
        return len(stale)

    def _mention_for(self, category: GameCategory) -> str:
        mention = self._mentions.get(category)
        if mention is not None:
            return mention

        mention = None
        if category.roles:
            try:
                mention = self._platform.resolve_mention(self._destination_id, category.roles)
            except Exception as e:
                logger.warning(f"Role lookup for {category} in {self._destination_id} failed: {e}")
        mention = mention or self._config.default_mention

        self._mentions[category] = mention
        return mention
