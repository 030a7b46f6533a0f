"""
Feed reconciliation engine.

Turns repeated, unordered snapshots of the game listing into a stable stream
of CREATED / UPDATED / REMOVED events keyed by hosting account.

Rules per poll:
    - Unseen account                 -> CREATED (fresh id)
    - Same account, same category    -> UPDATED if title or players changed
    - Same account, other category   -> REMOVED (old) then CREATED (new)
    - Account missing from the poll  -> REMOVED

The registry is only ever mutated by apply(), and apply() builds the complete
next state before committing it, so an error halfway through a poll leaves
the registry exactly as it was.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .classifier import classify_row
from .models import GameCategory, GameEvent, GameInfo, GameRow

logger = logging.getLogger(__name__)

Classifier = Callable[[GameRow], Optional[GameCategory]]


@dataclass
class ReconcileResult:
    """Outcome of a single apply() call."""
    events: list[GameEvent]
    classified: int
    skipped: int


class Reconciler:
    """
    Single owner of the live game registry.

    Usage:
        reconciler = Reconciler()
        for event in reconciler.apply(rows).events:
            registry.publish(event)

        games = reconciler.snapshot()
    """

    def __init__(self, classifier: Classifier = classify_row, first_id: int = 0):
        self._classify = classifier
        # key is the hosting account name
        self._games: dict[str, GameInfo] = {}
        self._next_id = first_id

    def __len__(self) -> int:
        return len(self._games)

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._games

    def get(self, account_id: str) -> Optional[GameInfo]:
        return self._games.get(account_id)

    def snapshot(self) -> list[GameInfo]:
        """Current games ordered by id. The records are immutable."""
        return sorted(self._games.values(), key=lambda game: game.id)

    def classify_rows(self, rows: Iterable[GameRow]) -> tuple[list[tuple[GameRow, GameCategory]], int]:
        """
        Classify rows, dropping unclassified ones.

        A row that fails classification is skipped; the rest continue.

        Returns:
            (classified rows with their category, number of rows that errored)
        """
        classified = []
        errors = 0

        for row in rows:
            try:
                category = self._classify(row)
            except Exception as e:
                errors += 1
                logger.warning(f"Failed to classify row for {row.account_id!r}: {e}")
                continue

            if category is not None:
                classified.append((row, category))

        return classified, errors

    def apply(self, rows: Iterable[GameRow]) -> ReconcileResult:
        """
        Reconcile one successful poll against the registry.

        Args:
            rows: Every row from the poll, classified or not

        Returns:
            ReconcileResult with the emitted events in order
        """
        classified, errors = self.classify_rows(rows)
        return self.apply_classified(classified, skipped=errors)

    def apply_classified(
        self,
        classified: list[tuple[GameRow, GameCategory]],
        skipped: int = 0,
    ) -> ReconcileResult:
        """Reconcile rows that have already been classified."""
        events: list[GameEvent] = []
        next_games: dict[str, GameInfo] = {}
        next_id = self._next_id

        for row, category in classified:
            if row.account_id in next_games:
                logger.debug(f"Duplicate row for {row.account_id!r} in one poll, ignoring")
                continue

            info = self._games.get(row.account_id)

            if info is not None and info.category != category:
                # a different game on the same bot, never an in-place update
                events.append(GameEvent.removed(info))
                info = None

            if info is None:
                info = GameInfo(
                    id=next_id,
                    account_id=row.account_id,
                    category=category,
                    title=row.title,
                    player_count=row.player_count,
                    realm=row.realm,
                )
                next_id += 1
                events.append(GameEvent.created(info))
            elif info.differs_from(row):
                info = info.with_observation(row)
                events.append(GameEvent.updated(info))

            next_games[row.account_id] = info

        for account_id, info in self._games.items():
            if account_id not in next_games:
                events.append(GameEvent.removed(info))

        # commit
        self._games = next_games
        self._next_id = next_id

        return ReconcileResult(events=events, classified=len(classified), skipped=skipped)
