"""
Status message rendering.

Builds the per-destination status card from the dispatcher's local view,
as an embed or as plain text for channels where embeds are not allowed.
"""
from __future__ import annotations

from typing import Iterable, Optional

from game_scanner.feed.models import GameCategory, GameInfo

from .models import Embed, EmbedField, MessageContent

STATUS_TITLE = "MMH Scanner"
COLOR_ACTIVE = 0x45FA8B
COLOR_IDLE = 0xFFD1B2

ACTIVE_TYPES_HEADER = "Currently active game types: "
GAME_LIST_NAME = "Game List:"
NO_GAMES = "No games hosted right now."

EMBED_FIELD_LIMIT = 1024
TEXT_LIMIT = 2000
ELLIPSIS = "…"
ZERO_WIDTH_SPACE = "\u200b"


def truncate(value: str, limit: int) -> str:
    """Clip to `limit` characters, marking the cut with an ellipsis."""
    if len(value) <= limit:
        return value
    return value[: limit - len(ELLIPSIS)] + ELLIPSIS


def clean(value: str) -> str:
    """
    Neutralise listing text for display.

    Backticks become quotes and every @ is followed by a zero-width space, so
    hosted titles can neither close a code span nor form a mention.
    """
    return value.replace("`", "'").replace("@", "@" + ZERO_WIDTH_SPACE)


def ordered_categories(categories: Iterable[GameCategory]) -> list[GameCategory]:
    """Categories in declaration order."""
    wanted = set(categories)
    return [category for category in GameCategory if category in wanted]


def game_lines(games: Iterable[GameInfo]) -> list[str]:
    """One line per game, sorted by account and padded to the longest account."""
    games = sorted(games, key=lambda game: game.account_id.lower())
    if not games:
        return []

    accounts = [clean(game.account_id) for game in games]
    width = max(len(account) for account in accounts)
    return [
        f"{account.ljust(width)} --- ({clean(game.player_count)}) {clean(game.title)}"
        for account, game in zip(accounts, games)
    ]


def render_embed(
    games: Iterable[GameInfo],
    categories: Iterable[GameCategory],
    footer_text: Optional[str] = None,
    footer_icon_url: Optional[str] = None,
) -> Embed:
    lines = game_lines(games)
    types = ", ".join(str(c) for c in ordered_categories(categories))

    if lines:
        value = "\n".join(f"`{line}`" for line in lines)
    else:
        value = NO_GAMES

    return Embed(
        title=STATUS_TITLE,
        description=ACTIVE_TYPES_HEADER + types,
        color=COLOR_ACTIVE if lines else COLOR_IDLE,
        fields=(EmbedField(name=GAME_LIST_NAME, value=truncate(value, EMBED_FIELD_LIMIT)),),
        footer_text=footer_text,
        footer_icon_url=footer_icon_url if footer_text else None,
    )


def render_text(
    games: Iterable[GameInfo],
    categories: Iterable[GameCategory],
    footer_text: Optional[str] = None,
) -> str:
    lines = game_lines(games)
    types = ", ".join(str(c) for c in ordered_categories(categories))

    header = f"```{ACTIVE_TYPES_HEADER}\n{types}```"
    if lines:
        body = "```Currently hosted games:\n" + "\n".join(f"| {line}" for line in lines) + "```"
    else:
        body = f"```{NO_GAMES}```"

    text = header + body
    if footer_text:
        text += f"\n{footer_text}"

    if len(text) > TEXT_LIMIT:
        # keep the closing fence so the code block still renders
        text = truncate(header + body[:-3], TEXT_LIMIT - 3) + "```"
    return text


def render_status(
    games: Iterable[GameInfo],
    categories: Iterable[GameCategory],
    use_embed: bool = True,
    owner_name: Optional[str] = None,
    owner_icon_url: Optional[str] = None,
) -> MessageContent:
    """
    Build the status message content.

    Args:
        games: The destination's displayed games
        categories: The destination's subscribed categories
        use_embed: False when the destination lacks the EMBED capability
        owner_name: Shown in the footer when known
        owner_icon_url: Footer icon next to the owner name (embeds only)

    Returns:
        MessageContent with either an embed or plain text
    """
    games = list(games)
    footer = f"Made by {owner_name}" if owner_name else None

    if use_embed:
        return MessageContent(embed=render_embed(games, categories, footer, owner_icon_url))
    return MessageContent(text=render_text(games, categories, footer))


def render_ping(game: GameInfo, mention: str) -> MessageContent:
    return MessageContent(text=f"{mention} A game has been hosted! `{clean(game.title)}`")
