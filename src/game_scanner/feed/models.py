"""
Data models for the feed layer.

These models represent:
- Raw rows observed on the hosting site (GameRow)
- Game categories with their title patterns (GameCategory)
- The reconciler's record of a hosted game (GameInfo)
- Events emitted when the registry changes (GameEvent)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class Realm(str, Enum):
    """Battle.net realm a hosting bot runs on."""
    USA = "USA"
    EUROPE = "EUROPE"

    @classmethod
    def parse(cls, value: str) -> "Realm":
        """Parse the realm column, e.g. "Europe" or "usa"."""
        return cls(value.strip().upper())


class GameCategory(Enum):
    """
    Kinds of hosted games we track.

    Declaration order is match order: the first pattern that matches a
    lowercased title wins, so specific map names come before the generic
    RP catch-all.

    Each member carries a regex and the role-name aliases used to pick a
    mention in a destination guild.
    """

    ROTRP = (r"(rotrp)", ("RotRP",))
    YARP = (r"(yarp)", ("YARP",))
    SOTDRP = (r"(sotdrp)", ("SotDRP",))
    AOC = (r"(\baoc\b|aocl|aocrp|age of conquest)", ("AOC",))
    GCG = (r"(gcg|guilty crown)", ())
    TL = (r"(\bkot\b|titans land|titan land|titanland|\btl\b)", ("TL", "Titan's Land", "Titan Land"))
    LOAD = (r"(\bload\b|life of a dragon)", ("LoaD",))
    MZI = (r"(mzi|medieval zombie invasion|medieval zombie|riverlands|winterscape|cityscape)", ("MZI",))
    ROTK = (r"(rotk|three kingdoms)", ("Strategist",))
    SPIDER_INVASION = (r"(spider invasion)", ())
    AZEROTH = (r"(azeroth rp|azzy|kacpa)", ("Azeroth",))
    FANTASY_LIFE = (r"(fantasy life|\bfl\b)", ("Fantasy Life",))
    EAW = (r"(eaw|europe at war)", ("Strategist",))
    RP = (r"(roleplay|\brp\b)", ())

    def __init__(self, pattern: str, roles: tuple[str, ...]):
        self.regex = re.compile(pattern)
        self.roles = roles

    def __str__(self) -> str:
        return self.name

    @classmethod
    def from_name(cls, name: str) -> Optional["GameCategory"]:
        """Case-insensitive lookup by member name, None when unknown."""
        return cls.__members__.get(name.strip().upper())


@dataclass(frozen=True)
class GameRow:
    """
    One observation from the source for one hosting account.

    Recreated every poll; never stored.

    Attributes:
        account_id: Name of the hosting bot account (stable external key)
        title: Free-text game name as shown on the listing
        player_count: Player counter exactly as shown, e.g. "3/12"
        realm: Realm the bot hosts on
    """
    account_id: str
    title: str
    player_count: str = ""
    realm: Realm = Realm.USA


@dataclass(frozen=True)
class GameInfo:
    """
    The reconciler's record of one currently hosted game.

    Records are immutable. An update produces a new record with the same
    id, the new values and the previous values retained for one event.
    """
    id: int
    account_id: str
    category: GameCategory
    title: str
    player_count: str = ""
    realm: Realm = Realm.USA
    previous_title: str = ""
    previous_player_count: str = ""

    def with_observation(self, row: GameRow) -> "GameInfo":
        """Return the updated record for a newer row of the same game."""
        return replace(
            self,
            title=row.title,
            player_count=row.player_count,
            realm=row.realm,
            previous_title=self.title,
            previous_player_count=self.player_count,
        )

    def differs_from(self, row: GameRow) -> bool:
        """Whether a row carries a visible change (title or player count)."""
        return self.title != row.title or self.player_count != row.player_count

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "category": self.category.name,
            "title": self.title,
            "player_count": self.player_count,
            "realm": self.realm.value,
            "previous_title": self.previous_title,
            "previous_player_count": self.previous_player_count,
        }


class GameEventType(str, Enum):
    """Kind of change to the game registry."""
    CREATED = "created"
    UPDATED = "updated"
    REMOVED = "removed"


@dataclass(frozen=True)
class GameEvent:
    """A single registry change, delivered to every destination."""
    type: GameEventType
    game: GameInfo

    @property
    def category(self) -> GameCategory:
        return self.game.category

    @classmethod
    def created(cls, game: GameInfo) -> "GameEvent":
        return cls(GameEventType.CREATED, game)

    @classmethod
    def updated(cls, game: GameInfo) -> "GameEvent":
        return cls(GameEventType.UPDATED, game)

    @classmethod
    def removed(cls, game: GameInfo) -> "GameEvent":
        return cls(GameEventType.REMOVED, game)
