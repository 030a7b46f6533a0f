"""
Status message manager.

Keeps exactly one status message per destination, as close to the bottom of
the channel as possible:
    - update(): edit in place when the message is still the newest one,
      otherwise delete and repost it
    - renew(): debounced "move to bottom" request, issued when someone else
      talks in the channel

Renew state machine:
    IDLE --renew()--> PENDING --delay elapsed--> FIRED --repost done--> IDLE
    Requests while PENDING or FIRED are coalesced.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from game_scanner.exceptions import MessageNotFoundError, PermissionDeniedError

from .models import CLEANUP, POST, MessageContent
from .platform import ReliablePlatform

logger = logging.getLogger(__name__)


class RenewState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    FIRED = "fired"


class StatusMessageManager:
    """
    Owns the status message of one destination.

    Usage:
        manager = StatusMessageManager(channel_id, platform)
        await manager.update(render_status(games, categories))
        manager.renew()
        ...
        await manager.close()
    """

    def __init__(
        self,
        destination_id: int,
        platform: ReliablePlatform,
        history_lookback: int = 8,
        renew_delay: float = 2.0,
        renew_timeout: float = 7.0,
    ):
        self._destination_id = destination_id
        self._platform = platform
        self._history_lookback = history_lookback
        self._renew_delay = renew_delay
        self._renew_timeout = renew_timeout

        self._lock = asyncio.Lock()
        self._message_id: Optional[int] = None
        # latest requested content, and what the tracked message shows
        self._content: Optional[MessageContent] = None
        self._rendered: Optional[MessageContent] = None

        self._renew_state = RenewState.IDLE
        self._renew_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def message_id(self) -> Optional[int]:
        return self._message_id

    @property
    def renew_state(self) -> RenewState:
        return self._renew_state

    def is_tracked(self, message_id: int) -> bool:
        return self._message_id is not None and self._message_id == message_id

    async def update(self, content: MessageContent) -> None:
        """
        Show `content` in the status message.

        Raises:
            PermissionDeniedError: If the platform refuses the action
        """
        async with self._lock:
            if self._closed:
                return
            self._content = content

            if self._message_id is None:
                await self._post()
                return

            can_delete = not self._platform.missing(self._destination_id, CLEANUP)
            at_bottom = await self._is_newest()

            if at_bottom or not can_delete:
                if at_bottom and self._rendered == content:
                    return
                await self._edit()
            else:
                await self._repost()

    def renew(self) -> bool:
        """
        Request the status message be moved to the bottom of the channel.

        Returns:
            True if a renewal was scheduled, False if it was coalesced or there
            is nothing to renew
        """
        if self._closed or self._message_id is None:
            return False
        if self._renew_state != RenewState.IDLE:
            return False

        self._renew_state = RenewState.PENDING
        self._renew_task = asyncio.create_task(
            self._renew_later(), name=f"renew_{self._destination_id}"
        )
        return True

    async def close(self) -> None:
        """Cancel a pending renewal and forget the tracked message."""
        self._closed = True

        task = self._renew_task
        if task is not None and not task.done():
            # a fired renewal may be mid-repost and is left to finish
            if self._renew_state == RenewState.PENDING:
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._renew_task = None
        self._renew_state = RenewState.IDLE

        async with self._lock:
            self._message_id = None
            self._rendered = None

    async def _renew_later(self) -> None:
        try:
            await asyncio.sleep(self._renew_delay)
            self._renew_state = RenewState.FIRED
            await self._renew_now()
        except asyncio.TimeoutError:
            logger.warning(
                f"Status renewal in {self._destination_id} took longer than "
                f"{self._renew_timeout}s, abandoned"
            )
        except PermissionDeniedError as e:
            logger.warning(f"Cannot renew status message in {self._destination_id}: {e}")
        except Exception as e:
            logger.exception(f"Error renewing status message in {self._destination_id}: {e}")
        finally:
            self._renew_state = RenewState.IDLE
            self._renew_task = None

    async def _renew_now(self) -> None:
        """
        Move the status message to the bottom if something buried it.

        The timeout bounds waiting for the lock and reading history. The
        delete and repost always run to completion once started.

        Raises:
            asyncio.TimeoutError: If the renewal could not start in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._renew_timeout

        await asyncio.wait_for(self._lock.acquire(), timeout=self._renew_timeout)
        try:
            if self._closed or self._message_id is None or self._content is None:
                return

            missing = self._platform.missing(self._destination_id, CLEANUP)
            if missing:
                logger.warning(
                    f"Skipping status renewal in {self._destination_id}, missing "
                    f"{sorted(c.value for c in missing)}"
                )
                return

            newest = await asyncio.wait_for(self._is_newest(), timeout=max(0.0, deadline - loop.time()))
            if newest:
                return
            await self._repost()
        finally:
            self._lock.release()

    async def _is_newest(self) -> bool:
        history = await self._platform.fetch_history(self._destination_id, self._history_lookback)
        return bool(history) and history[0].id == self._message_id

    async def _edit(self) -> None:
        try:
            await self._platform.edit_message(self._destination_id, self._message_id, self._content)
            self._rendered = self._content
        except MessageNotFoundError:
            logger.info(f"Status message in {self._destination_id} disappeared, posting a new one")
            self._message_id = None
            await self._post()

    async def _repost(self) -> None:
        old_id = self._message_id
        self._message_id = None
        self._rendered = None

        if old_id is not None:
            try:
                await self._platform.delete_message(self._destination_id, old_id)
            except MessageNotFoundError:
                pass

        await self._post()

    async def _post(self) -> None:
        if self._platform.missing(self._destination_id, POST):
            raise PermissionDeniedError(f"cannot post in {self._destination_id}")
        self._message_id = await self._platform.send_message(self._destination_id, self._content)
        self._rendered = self._content
        logger.debug(f"Posted status message {self._message_id} in {self._destination_id}")
