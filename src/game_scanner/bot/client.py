"""
discord.py client for the scanner.

A thin discord.Client subclass that forwards gateway events to the
orchestrator. All scanner behaviour lives outside this class so it can be
tested without a gateway connection.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

import discord

from .commands import CommandContext

logger = logging.getLogger(__name__)

ReadyCallback = Callable[[], Awaitable[None]]
MessageCallback = Callable[[discord.Message], Awaitable[None]]


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.guilds = True
    intents.messages = True
    intents.message_content = True
    return intents


def command_context(message: discord.Message) -> Optional[CommandContext]:
    """
    Build a CommandContext for a guild message. Direct messages return None.

    Admin is ADMINISTRATOR or MANAGE_GUILD at the guild level.
    """
    if message.guild is None:
        return None

    permissions = getattr(message.author, "guild_permissions", None)
    is_admin = bool(permissions and (permissions.administrator or permissions.manage_guild))

    return CommandContext(
        destination_id=message.channel.id,
        author_id=message.author.id,
        is_admin=is_admin,
    )


class ScannerClient(discord.Client):
    """
    Usage:
        client = ScannerClient(on_ready_callback=bot.on_ready, on_message_callback=bot.on_message)
        await client.start(token)
    """

    def __init__(
        self,
        *,
        on_ready_callback: ReadyCallback,
        on_message_callback: MessageCallback,
        intents: Optional[discord.Intents] = None,
    ):
        super().__init__(intents=intents or build_intents())
        self._on_ready_callback = on_ready_callback
        self._on_message_callback = on_message_callback
        self._ready_once = False

    async def on_ready(self) -> None:
        # on_ready fires again after every gateway reconnect
        if self._ready_once:
            logger.info("Reconnected to Discord")
            return
        self._ready_once = True

        logger.info(f"Logged in as {self.user} (id={getattr(self.user, 'id', '?')})")
        try:
            await self._on_ready_callback()
        except Exception as e:
            logger.exception(f"Error during startup: {e}")

    async def on_message(self, message: discord.Message) -> None:
        if self.user is not None and message.author.id == self.user.id:
            return
        try:
            await self._on_message_callback(message)
        except Exception as e:
            logger.exception(f"Error handling message {message.id}: {e}")
