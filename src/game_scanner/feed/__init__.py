"""
Feed Layer - Fetching, classifying and reconciling the hosted game list.

This module provides:
    - FeedClient: aiohttp + BeautifulSoup fetcher for the MMH game table
    - classify: Title -> GameCategory (ignore list, ordered patterns)
    - Reconciler: Snapshot diffing into CREATED / UPDATED / REMOVED events
    - FeedService: Fixed-interval polling loop with failure isolation

Critical behaviours:
    - A failed fetch never removes games
    - A category change is REMOVED + CREATED, never UPDATED
    - Game ids are assigned once and never reused

Usage:
    from game_scanner.feed import FeedClient, FeedService, Reconciler

    service = FeedService(
        client=FeedClient(),
        reconciler=Reconciler(),
        on_event=registry.publish,
    )
    await service.start()
"""

from .models import (
    GameCategory,
    GameEvent,
    GameEventType,
    GameInfo,
    GameRow,
    Realm,
)
from .classifier import IGNORE_PATTERN, classify, classify_row
from .client import DEFAULT_FEED_URL, FeedClient, FetchResult, extract_row, parse_rows
from .reconciler import Reconciler, ReconcileResult
from .service import FeedConfig, FeedService, FeedStats, ServiceState

__all__ = [
    # Models
    "GameCategory",
    "GameEvent",
    "GameEventType",
    "GameInfo",
    "GameRow",
    "Realm",
    # Classifier
    "IGNORE_PATTERN",
    "classify",
    "classify_row",
    # Client
    "DEFAULT_FEED_URL",
    "FeedClient",
    "FetchResult",
    "extract_row",
    "parse_rows",
    # Reconciler
    "Reconciler",
    "ReconcileResult",
    # Service
    "FeedConfig",
    "FeedService",
    "FeedStats",
    "ServiceState",
]
