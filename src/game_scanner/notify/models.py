"""
Data models for the notification layer.

Platform-neutral message content and the capability vocabulary used to
decide whether an action may be attempted in a destination.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Capability(str, Enum):
    """What the bot is allowed to do in a destination."""
    READ = "read"
    SEND = "send"
    DELETE = "delete"
    EMBED = "embed"


# Minimum capability sets per kind of action
POST = frozenset({Capability.READ, Capability.SEND})
CLEANUP = frozenset({Capability.READ, Capability.SEND, Capability.DELETE})
RICH = frozenset({Capability.EMBED})


@dataclass(frozen=True)
class EmbedField:
    name: str
    value: str
    inline: bool = False


@dataclass(frozen=True)
class Embed:
    """Rich status card. Converted to the platform's own type by the adapter."""
    title: str
    description: str = ""
    color: int = 0
    fields: tuple[EmbedField, ...] = ()
    footer_text: Optional[str] = None
    footer_icon_url: Optional[str] = None


@dataclass(frozen=True)
class MessageContent:
    """Text and/or embed payload for a message."""
    text: Optional[str] = None
    embed: Optional[Embed] = None

    def __post_init__(self):
        if not self.text and self.embed is None:
            raise ValueError("MessageContent needs text or an embed")


@dataclass(frozen=True)
class HistoryMessage:
    """A message seen while scanning channel history (newest first)."""
    id: int
    author_is_self: bool


@dataclass
class Subscription:
    """A destination's subscribed categories and its private dispatcher."""
    destination_id: int
    categories: set = field(default_factory=set)
    dispatcher: Optional[object] = None
