"""
Test fixtures for the feed layer.

IMPORTANT: The listing site is never contacted in tests.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from game_scanner.feed.client import FeedClient, FetchResult
from game_scanner.feed.models import GameRow, Realm
from game_scanner.feed.reconciler import Reconciler
from game_scanner.feed.service import FeedConfig, FeedService


# =============================================================================
# HTML Fixtures
# =============================================================================


def make_table(*rows):
    """Build a listing document: header row plus one <tr> per cell list."""
    header = "<tr><th>Bot</th><th>Realm</th><th>Slot</th><th>Game</th><th>Players</th></tr>"
    body = "".join(
        "<tr>" + "".join(f"<td>{cell}</td>" for cell in cells) + "</tr>"
        for cells in rows
    )
    return f"<table>{header}{body}</table>"


@pytest.fixture
def table():
    """The make_table builder, for tests that need custom rows."""
    return make_table


@pytest.fixture
def listing_html():
    """A listing with two trackable games and one untracked one."""
    return make_table(
        ["MMH.Bot1", "USA", "1", "Age of Conquest RP", "3/12"],
        ["MMH.Bot2", "Europe", "2", "Titan Land 5.4", "8/24"],
        ["MMH.Bot3", "USA", "3", "Random Dota", "1/10"],
    )


# =============================================================================
# Row Fixtures
# =============================================================================


@pytest.fixture
def aoc_row():
    return GameRow(account_id="MMH.Bot1", title="Age of Conquest RP night", player_count="3/12")


@pytest.fixture
def tl_row():
    return GameRow(account_id="MMH.Bot2", title="Titan Land 5.4", player_count="8/24", realm=Realm.EUROPE)


@pytest.fixture
def untracked_row():
    return GameRow(account_id="MMH.Bot3", title="Random Dota", player_count="1/10")


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def mock_client():
    """FeedClient stand-in returning no rows until configured."""
    client = MagicMock(spec=FeedClient)
    client.fetch_rows = AsyncMock(return_value=FetchResult())
    client.close = AsyncMock()
    return client


@pytest.fixture
def reconciler():
    return Reconciler()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(mock_client, reconciler, clock):
    """FeedService with a recording event callback."""
    events = []
    svc = FeedService(
        client=mock_client,
        reconciler=reconciler,
        on_event=events.append,
        config=FeedConfig(poll_interval=0.01, empty_hold_seconds=60.0),
        clock=clock,
    )
    svc.published = events
    return svc
