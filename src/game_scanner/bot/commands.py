"""
Administrative chat commands.

Grammar (default prefix -mmh):
    -mmh register <categories|all>
    -mmh unregister <categories|all>
    -mmh list
    -mmh clear
    -mmh help

Categories are case-insensitive and may be separated by commas or spaces.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from game_scanner.exceptions import CommandError
from game_scanner.feed.models import GameCategory
from game_scanner.notify.registry import DestinationRegistry

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "-mmh"
NOT_ALLOWED = "You don't have permission to do that."

_SEPARATORS = re.compile(r"[,\s]+")


@dataclass(frozen=True)
class Command:
    name: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True)
class CommandContext:
    """Who issued a command, and where."""
    destination_id: int
    author_id: int
    is_admin: bool = False


def parse_command(text: str, prefix: str = DEFAULT_PREFIX) -> Optional[Command]:
    """
    Split a chat message into a Command.

    Returns:
        None if the message is not addressed to the bot
    """
    parts = (text or "").split()
    if not parts or parts[0].lower() != prefix.lower():
        return None
    if len(parts) == 1:
        return Command(name="help")
    return Command(name=parts[1].lower(), args=tuple(parts[2:]))


def parse_categories(args: tuple[str, ...]) -> set[GameCategory]:
    """
    Parse category arguments.

    Raises:
        CommandError: No categories given, or unknown names
    """
    tokens = [t for t in _SEPARATORS.split(" ".join(args)) if t]
    if not tokens:
        raise CommandError(f"Name at least one game type, or `all`. Valid types: {valid_names()}")

    if any(t.lower() == "all" for t in tokens):
        return set(GameCategory)

    categories = set()
    unknown = []
    for token in tokens:
        category = GameCategory.from_name(token)
        if category is None:
            unknown.append(token)
        else:
            categories.add(category)

    if unknown:
        raise CommandError(f"Unknown game types: {', '.join(unknown)}. Valid types: {valid_names()}")
    return categories


def valid_names() -> str:
    return ", ".join(str(c) for c in GameCategory)


def _names(categories) -> str:
    return ", ".join(str(c) for c in GameCategory if c in categories)


@dataclass
class CommandHandler:
    """
    Executes parsed commands against the destination registry.

    Usage:
        handler = CommandHandler(registry, owner_id=settings.owner)
        reply = await handler.handle(context, message.content)
        if reply:
            await message.channel.send(reply)
    """
    registry: DestinationRegistry
    owner_id: Optional[int] = None
    prefix: str = DEFAULT_PREFIX
    open_commands: frozenset = field(default_factory=lambda: frozenset({"help"}))

    def is_authorized(self, context: CommandContext) -> bool:
        if context.is_admin:
            return True
        return bool(self.owner_id) and context.author_id == self.owner_id

    async def handle(self, context: CommandContext, text: str) -> Optional[str]:
        """
        Run a command message.

        Returns:
            Reply text, or None when the message is not a command
        """
        command = parse_command(text, self.prefix)
        if command is None:
            return None

        if command.name not in self.open_commands and not self.is_authorized(context):
            logger.info(f"Rejected {command.name!r} from {context.author_id} in {context.destination_id}")
            return NOT_ALLOWED

        handler = getattr(self, f"_cmd_{command.name}", None)
        if handler is None:
            return f"Unknown command `{command.name}`.\n{self.usage()}"

        try:
            return await handler(context, command.args)
        except CommandError as e:
            return str(e)

    def usage(self) -> str:
        p = self.prefix
        return (
            "```"
            f"{p} register <types|all>    receive notifications for game types\n"
            f"{p} unregister <types|all>  stop notifications for game types\n"
            f"{p} list                    show game types and this channel's subscriptions\n"
            f"{p} clear                   remove stale bot messages from this channel\n"
            f"{p} help                    show this message\n"
            f"Types: {valid_names()}"
            "```"
        )

    async def _cmd_register(self, context: CommandContext, args: tuple[str, ...]) -> str:
        categories = parse_categories(args)
        added = await self.registry.subscribe(context.destination_id, categories)
        if not added:
            return f"This channel already receives: {_names(categories)}."
        return f"Channel registered for notifications: {_names(added)}."

    async def _cmd_unregister(self, context: CommandContext, args: tuple[str, ...]) -> str:
        categories = parse_categories(args)
        removed = await self.registry.unsubscribe(context.destination_id, categories)
        if not removed:
            return "This channel is not registered for any of those types."
        if not self.registry.is_subscribed(context.destination_id):
            return "Channel unregistered for notifications."
        return f"Channel unregistered for: {_names(removed)}."

    async def _cmd_list(self, context: CommandContext, args: tuple[str, ...]) -> str:
        subscribed = self.registry.categories_for(context.destination_id)
        lines = [f"[{'x' if c in subscribed else ' '}] {c}" for c in GameCategory]
        return "```" + "\n".join(lines) + "```"

    async def _cmd_clear(self, context: CommandContext, args: tuple[str, ...]) -> str:
        dispatcher = self.registry.dispatcher_for(context.destination_id)
        if dispatcher is None:
            return "This channel is not registered."
        dispatcher.purge_untracked()
        return "Clearing stale messages."

    async def _cmd_help(self, context: CommandContext, args: tuple[str, ...]) -> str:
        return self.usage()
