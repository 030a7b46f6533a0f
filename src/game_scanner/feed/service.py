"""
Feed polling service.

Drives the Reconciler on a fixed interval:
    fetch -> classify -> (hold?) -> reconcile -> publish events

Features:
    - Transient fetch failures skip the tick and leave the registry untouched
    - Anti-flap hold: an empty listing is only believed after a grace window
    - Unexpected errors are logged and the tick discarded; the loop never dies
    - Poll statistics for the health checker and dashboard
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from game_scanner.exceptions import FeedFetchError

from .client import FeedClient
from .models import GameEvent, GameEventType, GameInfo
from .reconciler import Reconciler

logger = logging.getLogger(__name__)

EventCallback = Callable[[GameEvent], None]


class ServiceState(str, Enum):
    """Service lifecycle state."""
    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class FeedConfig:
    """Configuration for the feed service."""

    poll_interval: float = 5.0

    # Anti-flap: how long an empty listing is ignored after the last
    # non-empty one. 0 disables the hold.
    empty_hold_seconds: float = 60.0


@dataclass
class FeedStats:
    """Statistics from polling."""
    polls: int = 0
    failed_polls: int = 0
    held_polls: int = 0
    consecutive_failures: int = 0
    rows_skipped: int = 0
    events: dict[str, int] = field(
        default_factory=lambda: {t.value: 0 for t in GameEventType}
    )
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "polls": self.polls,
            "failed_polls": self.failed_polls,
            "held_polls": self.held_polls,
            "consecutive_failures": self.consecutive_failures,
            "rows_skipped": self.rows_skipped,
            "events": dict(self.events),
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_error": self.last_error,
        }


class FeedService:
    """
    Periodic poller that feeds the reconciler and fans out its events.

    Usage:
        service = FeedService(
            client=FeedClient(),
            reconciler=Reconciler(),
            on_event=registry.publish,
        )
        await service.start()
        ...
        await service.stop()
    """

    def __init__(
        self,
        client: FeedClient,
        reconciler: Reconciler,
        on_event: Optional[EventCallback] = None,
        config: Optional[FeedConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the feed service.

        Args:
            client: Source of rows
            reconciler: Registry owner that turns rows into events
            on_event: Called synchronously for every event, in order
            config: Polling configuration
            clock: Monotonic clock, injectable for tests
        """
        self._client = client
        self._reconciler = reconciler
        self._on_event = on_event
        self._config = config or FeedConfig()
        self._clock = clock

        self._state = ServiceState.STOPPED
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._stats = FeedStats()
        self._last_non_empty_at: Optional[float] = None

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ServiceState.RUNNING

    @property
    def stats(self) -> FeedStats:
        return self._stats

    @property
    def config(self) -> FeedConfig:
        return self._config

    def snapshot(self) -> list[GameInfo]:
        """Read-only view of the currently hosted games."""
        return self._reconciler.snapshot()

    def set_event_callback(self, on_event: EventCallback) -> None:
        self._on_event = on_event

    async def start(self) -> None:
        """Start the polling loop. The first poll happens after one interval."""
        if self._state != ServiceState.STOPPED:
            logger.warning(f"Cannot start: already in state {self._state.value}")
            return

        self._stop_event.clear()
        self._state = ServiceState.RUNNING
        self._task = asyncio.create_task(self._run_loop(), name="feed_poll")
        logger.info(f"Feed service started (interval={self._config.poll_interval}s)")

    async def stop(self) -> None:
        """Stop the polling loop and close the client."""
        if self._state != ServiceState.RUNNING:
            return

        logger.info("Stopping feed service...")
        self._state = ServiceState.STOPPING
        self._stop_event.set()

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        try:
            await self._client.close()
        except Exception as e:
            logger.warning(f"Error closing feed client: {e}")

        self._state = ServiceState.STOPPED
        logger.info("Feed service stopped")

    async def _run_loop(self) -> None:
        interval = self._config.poll_interval

        while self._state == ServiceState.RUNNING:
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break  # Stop requested
                except asyncio.TimeoutError:
                    pass

                await self.poll_once()

            except asyncio.CancelledError:
                break
            except Exception as e:
                # the tick is discarded, the schedule keeps going
                self._stats.last_error = str(e)
                logger.exception(f"Unexpected error during feed poll: {e}")

    async def poll_once(self) -> list[GameEvent]:
        """
        Run a single poll.

        Returns:
            The events emitted by this poll (empty on failure or hold)
        """
        self._stats.polls += 1

        try:
            result = await self._client.fetch_rows()
        except FeedFetchError as e:
            # a source outage is not "every game was unhosted"
            self._stats.failed_polls += 1
            self._stats.consecutive_failures += 1
            self._stats.last_error = str(e)
            logger.warning(f"Feed fetch failed: {e}")
            return []

        now = self._clock()
        self._stats.consecutive_failures = 0
        self._stats.last_success_at = datetime.now(timezone.utc)
        self._stats.rows_skipped += result.skipped

        classified, errors = self._reconciler.classify_rows(result.rows)
        self._stats.rows_skipped += errors

        if classified:
            self._last_non_empty_at = now
        elif self._should_hold(now):
            self._stats.held_polls += 1
            logger.info(
                f"Listing came back empty, holding {len(self._reconciler)} games "
                f"for up to {self._config.empty_hold_seconds:.0f}s"
            )
            return []

        outcome = self._reconciler.apply_classified(classified, skipped=errors)

        if outcome.events:
            logger.debug(
                f"Poll produced {len(outcome.events)} events "
                f"({outcome.classified} classified rows)"
            )

        for event in outcome.events:
            self._stats.events[event.type.value] += 1
            self._publish(event)

        return outcome.events

    def _should_hold(self, now: float) -> bool:
        if self._config.empty_hold_seconds <= 0 or len(self._reconciler) == 0:
            return False
        if self._last_non_empty_at is None:
            return False
        return now - self._last_non_empty_at < self._config.empty_hold_seconds

    def _publish(self, event: GameEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception as e:
            logger.exception(
                f"Error delivering {event.type.value} event for game {event.game.id}: {e}"
            )
