"""
Shared test fixtures for cross-layer tests.

This file provides fixtures that span multiple components,
unlike component-specific fixtures in src/game_scanner/{component}/tests/conftest.py
"""

import asyncio
import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest

from game_scanner.exceptions import MessageNotFoundError
from game_scanner.feed.client import FeedClient, FetchResult
from game_scanner.feed.models import GameRow
from game_scanner.notify.dispatcher import DispatcherConfig
from game_scanner.notify.models import Capability, HistoryMessage


# =============================================================================
# Chat Platform
# =============================================================================


class ChannelMessage:
    def __init__(self, id, content, author_is_self=True):
        self.id = id
        self.content = content
        self.author_is_self = author_is_self


class InMemoryPlatform:
    """Every channel visible, every capability granted, nothing leaves the process."""

    def __init__(self):
        self.channels: dict[int, list[ChannelMessage]] = {}
        self._ids = itertools.count(1)

    def messages(self, destination_id):
        return self.channels.setdefault(destination_id, [])

    def texts(self, destination_id):
        return [m.content.text for m in self.messages(destination_id) if m.content.text]

    @property
    def is_connected(self):
        return True

    def bot_identity(self):
        return "Scanner#0001"

    def capabilities(self, destination_id):
        return {Capability.READ, Capability.SEND, Capability.DELETE, Capability.EMBED}

    def resolve_mention(self, destination_id, aliases):
        return None

    async def send_message(self, destination_id, content):
        message = ChannelMessage(next(self._ids), content)
        self.messages(destination_id).append(message)
        return message.id

    async def edit_message(self, destination_id, message_id, content):
        for message in self.messages(destination_id):
            if message.id == message_id:
                message.content = content
                return
        raise MessageNotFoundError(f"message {message_id} not found")

    async def delete_message(self, destination_id, message_id):
        channel = self.messages(destination_id)
        for i, message in enumerate(channel):
            if message.id == message_id:
                del channel[i]
                return
        raise MessageNotFoundError(f"message {message_id} not found")

    async def fetch_history(self, destination_id, limit):
        newest_first = list(reversed(self.messages(destination_id)))[:limit]
        return [HistoryMessage(id=m.id, author_is_self=m.author_is_self) for m in newest_first]


@pytest.fixture
def chat():
    return InMemoryPlatform()


@pytest.fixture
def quiet_config():
    """Dispatcher config with the periodic refresh effectively disabled."""
    return DispatcherConfig(
        status_refresh_interval=3600.0,
        status_refresh_initial_delay=3600.0,
        renew_delay=0.01,
    )


# =============================================================================
# Feed
# =============================================================================


@pytest.fixture
def feed_client():
    client = MagicMock(spec=FeedClient)
    client.fetch_rows = AsyncMock(return_value=FetchResult())
    client.close = AsyncMock()
    return client


@pytest.fixture
def rows():
    """Build a FetchResult from (account, title, players) tuples."""
    def _rows(*entries):
        return FetchResult(rows=[
            GameRow(account_id=account, title=title, player_count=players)
            for account, title, players in entries
        ])
    return _rows


async def settle(registry):
    """Wait until every dispatcher has drained its queue."""
    for dispatcher in registry.dispatchers():
        await dispatcher._queue.join()
    await asyncio.sleep(0)


@pytest.fixture
def drain():
    return settle
