"""
Per-game announcement ("ping") messages for one destination.
"""
from __future__ import annotations

import asyncio
import logging

from game_scanner.exceptions import MessageNotFoundError
from game_scanner.feed.models import GameInfo

from .formatting import render_ping
from .models import POST
from .platform import ReliablePlatform

logger = logging.getLogger(__name__)


class PingMessageManager:
    """
    Tracks at most one announcement message per game id.

    Usage:
        pings = PingMessageManager(channel_id, platform)
        await pings.announce(game, "@here")
        await pings.retract(game.id)
    """

    def __init__(self, destination_id: int, platform: ReliablePlatform):
        self._destination_id = destination_id
        self._platform = platform
        self._lock = asyncio.Lock()
        # game id -> message id
        self._messages: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._messages)

    def is_tracked(self, message_id: int) -> bool:
        return message_id in self._messages.values()

    def message_for(self, game_id: int):
        return self._messages.get(game_id)

    async def announce(self, game: GameInfo, mention: str) -> bool:
        """
        Post the announcement for `game` unless one is already tracked.

        Returns:
            True if a message was posted
        """
        async with self._lock:
            if game.id in self._messages:
                return False

            missing = self._platform.missing(self._destination_id, POST)
            if missing:
                logger.warning(
                    f"Cannot announce game {game.id} in {self._destination_id}, missing "
                    f"{sorted(c.value for c in missing)}"
                )
                return False

            message_id = await self._platform.send_message(
                self._destination_id, render_ping(game, mention)
            )
            self._messages[game.id] = message_id
            logger.debug(f"Announced game {game.id} ({game.title!r}) in {self._destination_id}")
            return True

    async def retract(self, game_id: int) -> bool:
        """
        Delete the announcement for `game_id`. Safe when nothing is tracked.

        Returns:
            True if a tracked message was dropped
        """
        async with self._lock:
            message_id = self._messages.pop(game_id, None)
            if message_id is None:
                return False

            try:
                await self._platform.delete_message(self._destination_id, message_id)
            except MessageNotFoundError:
                pass
            return True

    def close(self) -> list[int]:
        """Forget every tracked message. Returns the released message ids."""
        released = list(self._messages.values())
        self._messages.clear()
        return released
