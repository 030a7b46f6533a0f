"""
Title classifier.

Maps a free-text game title to a GameCategory. Titles in languages or regions
we don't track are excluded by the ignore pattern before any category is
tested.
"""
from __future__ import annotations

import re
from typing import Iterable, Optional

from .models import GameCategory, GameRow

IGNORE_PATTERN = re.compile(r"(\bpl\b|\bru\b|\bfr\b|\brus\b|\bger\b)")


def classify(
    title: str,
    categories: Iterable[GameCategory] = GameCategory,
    ignore: re.Pattern = IGNORE_PATTERN,
) -> Optional[GameCategory]:
    """
    Classify a game title.

    Args:
        title: Raw title from the listing
        categories: Categories to test, in priority order
        ignore: Exclusion pattern checked before any category

    Returns:
        The first matching category, or None
    """
    text = title.lower()

    if ignore.search(text):
        return None

    for category in categories:
        if category.regex.search(text):
            return category

    return None


def classify_row(row: GameRow) -> Optional[GameCategory]:
    """Classify a row by its title."""
    return classify(row.title)
