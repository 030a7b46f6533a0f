"""
discord.py implementation of ChatPlatform.

Translates the platform-neutral message models into discord.py calls and
discord.py exceptions into the scanner's platform errors:
    discord.RateLimited / HTTP 429 -> RateLimitedError
    discord.Forbidden              -> PermissionDeniedError
    discord.NotFound               -> MessageNotFoundError
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Iterable, Optional, Sequence

import discord

from game_scanner.exceptions import (
    MessageNotFoundError,
    PermissionDeniedError,
    PlatformError,
    RateLimitedError,
)
from game_scanner.notify.models import Capability, Embed, HistoryMessage, MessageContent

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 1.0


def match_role(roles: Iterable, aliases: Sequence[str]):
    """
    First role whose name contains any alias, case-insensitively.

    Args:
        roles: Objects with a `name` attribute, in guild order
        aliases: Substrings to look for

    Returns:
        The matching role, or None
    """
    wanted = [alias.lower() for alias in aliases if alias]
    if not wanted:
        return None

    for role in roles:
        name = (getattr(role, "name", "") or "").lower()
        if any(alias in name for alias in wanted):
            return role
    return None


def capabilities_from_permissions(permissions: discord.Permissions) -> set[Capability]:
    """Map a channel permission set onto scanner capabilities."""
    caps: set[Capability] = set()
    if permissions.view_channel and permissions.read_message_history:
        caps.add(Capability.READ)
    if permissions.send_messages:
        caps.add(Capability.SEND)
    if permissions.manage_messages:
        caps.add(Capability.DELETE)
    if permissions.embed_links:
        caps.add(Capability.EMBED)
    return caps


def to_discord_embed(embed: Embed) -> discord.Embed:
    result = discord.Embed(title=embed.title, description=embed.description or None, color=embed.color)
    for field in embed.fields:
        result.add_field(name=field.name, value=field.value, inline=field.inline)
    if embed.footer_text:
        result.set_footer(text=embed.footer_text, icon_url=embed.footer_icon_url)
    return result


def _retry_after(error: discord.HTTPException) -> float:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None) or {}
    try:
        return float(headers.get("Retry-After", DEFAULT_RETRY_AFTER))
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER


@asynccontextmanager
async def translate_errors(action: str):
    """Re-raise discord.py exceptions as scanner platform errors."""
    try:
        yield
    except discord.RateLimited as e:
        raise RateLimitedError(e.retry_after) from e
    except discord.Forbidden as e:
        raise PermissionDeniedError(f"{action}: {e.text or 'forbidden'}") from e
    except discord.NotFound as e:
        raise MessageNotFoundError(f"{action}: {e.text or 'not found'}") from e
    except discord.HTTPException as e:
        if e.status == 429:
            raise RateLimitedError(_retry_after(e)) from e
        raise PlatformError(f"{action} failed (HTTP {e.status}): {e.text}") from e


class DiscordPlatform:
    """
    ChatPlatform backed by a connected discord.Client.

    Destinations are text channel ids.
    """

    def __init__(self, client: discord.Client):
        self._client = client

    @property
    def client(self) -> discord.Client:
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client.is_ready() and not self._client.is_closed()

    def bot_identity(self) -> Optional[str]:
        user = self._client.user
        return str(user) if user is not None else None

    def channel(self, destination_id: int):
        channel = self._client.get_channel(destination_id)
        if channel is None or not hasattr(channel, "send"):
            raise PermissionDeniedError(f"channel {destination_id} is not visible to the bot")
        return channel

    def capabilities(self, destination_id: int) -> set[Capability]:
        channel = self._client.get_channel(destination_id)
        guild = getattr(channel, "guild", None)
        if channel is None or guild is None or guild.me is None:
            return set()
        return capabilities_from_permissions(channel.permissions_for(guild.me))

    def resolve_mention(self, destination_id: int, aliases: Sequence[str]) -> Optional[str]:
        channel = self._client.get_channel(destination_id)
        guild = getattr(channel, "guild", None)
        if guild is None:
            return None
        role = match_role(guild.roles, aliases)
        return role.mention if role is not None else None

    async def send_message(self, destination_id: int, content: MessageContent) -> int:
        channel = self.channel(destination_id)
        async with translate_errors(f"send in {destination_id}"):
            message = await channel.send(**self._message_kwargs(content))
        return message.id

    async def edit_message(self, destination_id: int, message_id: int, content: MessageContent) -> None:
        channel = self.channel(destination_id)
        async with translate_errors(f"edit {message_id} in {destination_id}"):
            await channel.get_partial_message(message_id).edit(**self._message_kwargs(content))

    async def delete_message(self, destination_id: int, message_id: int) -> None:
        channel = self.channel(destination_id)
        async with translate_errors(f"delete {message_id} in {destination_id}"):
            await channel.get_partial_message(message_id).delete()

    async def fetch_history(self, destination_id: int, limit: int) -> list[HistoryMessage]:
        channel = self.channel(destination_id)
        me = self._client.user
        async with translate_errors(f"history of {destination_id}"):
            return [
                HistoryMessage(id=message.id, author_is_self=me is not None and message.author.id == me.id)
                async for message in channel.history(limit=limit)
            ]

    @staticmethod
    def _message_kwargs(content: MessageContent) -> dict:
        # explicit None clears the other kind on edit
        return {
            "content": content.text,
            "embed": to_discord_embed(content.embed) if content.embed is not None else None,
        }
