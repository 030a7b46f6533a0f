"""
Bot Layer - Discord adapter and administrative commands.

This module provides:
    - DiscordPlatform: ChatPlatform implementation on discord.py
    - ScannerClient: discord.Client forwarding ready/message events
    - CommandHandler: -mmh register/unregister/list/clear/help
"""

from .commands import (
    NOT_ALLOWED,
    Command,
    CommandContext,
    CommandHandler,
    parse_categories,
    parse_command,
)
from .discord_platform import (
    DiscordPlatform,
    capabilities_from_permissions,
    match_role,
    translate_errors,
)
from .client import ScannerClient, build_intents, command_context

__all__ = [
    # Commands
    "NOT_ALLOWED",
    "Command",
    "CommandContext",
    "CommandHandler",
    "parse_categories",
    "parse_command",
    # Discord
    "DiscordPlatform",
    "capabilities_from_permissions",
    "match_role",
    "translate_errors",
    "ScannerClient",
    "build_intents",
    "command_context",
]
