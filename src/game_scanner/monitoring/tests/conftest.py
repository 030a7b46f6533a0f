"""
Test fixtures for monitoring.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from game_scanner.feed.models import GameCategory, GameInfo
from game_scanner.feed.service import FeedStats, ServiceState

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def hosted_game():
    return GameInfo(
        id=1,
        account_id="MMH.Bot1",
        category=GameCategory.AOC,
        title="AOC night",
        player_count="3/12",
    )


@pytest.fixture
def mock_feed_service(hosted_game):
    """A running feed service that polled successfully 5 seconds ago."""
    service = MagicMock()
    service.is_running = True
    service.state = ServiceState.RUNNING
    service.stats = FeedStats(polls=10, last_success_at=NOW - timedelta(seconds=5))
    service.snapshot.return_value = [hosted_game]
    return service


@pytest.fixture
def mock_platform():
    platform = MagicMock()
    platform.is_connected = True
    return platform


def make_dispatcher(destination_id, alive=True, games=(), pending=0):
    dispatcher = MagicMock()
    dispatcher.destination_id = destination_id
    dispatcher.is_alive = alive
    dispatcher.games = list(games)
    dispatcher.pending = pending
    return dispatcher


@pytest.fixture
def mock_registry(hosted_game):
    """One healthy destination subscribed to AOC and TL."""
    dispatcher = make_dispatcher(111111111111111111, games=[hosted_game], pending=2)
    registry = MagicMock()
    registry.dispatchers.return_value = [dispatcher]
    registry.subscriptions.return_value = {
        111111111111111111: frozenset({GameCategory.TL, GameCategory.AOC}),
    }
    registry.dispatcher_for.side_effect = lambda cid: dispatcher if cid == 111111111111111111 else None
    registry.__len__.return_value = 1
    return registry
