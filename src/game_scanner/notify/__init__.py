"""
Notify Layer - Per-destination status and announcement messages.

This module provides:
    - ChatPlatform: The interface a chat service adapter implements
    - reliable_call / ReliablePlatform: Rate-limit aware platform calls
    - StatusMessageManager: One status message per destination, kept at the bottom
    - PingMessageManager: One announcement per hosted game
    - Dispatcher: Serialized operation queue for one destination
    - DestinationRegistry: Subscriptions and dispatcher lifecycle

Critical behaviours:
    - Operations for one destination never run concurrently
    - A missing permission skips the action, it never crashes the bot
    - Rate limits are retried, never surfaced to callers
"""

from .models import (
    CLEANUP,
    POST,
    RICH,
    Capability,
    Embed,
    EmbedField,
    HistoryMessage,
    MessageContent,
    Subscription,
)
from .platform import (
    BoundedBackoff,
    ChatPlatform,
    ReliablePlatform,
    RetryForever,
    RetryPolicy,
    reliable_call,
)
from .formatting import render_ping, render_status
from .status_message import RenewState, StatusMessageManager
from .ping_messages import PingMessageManager
from .dispatcher import Dispatcher, DispatcherConfig
from .registry import DestinationRegistry

__all__ = [
    # Models
    "CLEANUP",
    "POST",
    "RICH",
    "Capability",
    "Embed",
    "EmbedField",
    "HistoryMessage",
    "MessageContent",
    "Subscription",
    # Platform
    "BoundedBackoff",
    "ChatPlatform",
    "ReliablePlatform",
    "RetryForever",
    "RetryPolicy",
    "reliable_call",
    # Formatting
    "render_ping",
    "render_status",
    # Managers
    "RenewState",
    "StatusMessageManager",
    "PingMessageManager",
    # Dispatch
    "Dispatcher",
    "DispatcherConfig",
    "DestinationRegistry",
]
