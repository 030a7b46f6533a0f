"""
Test fixtures for the Discord layer.

IMPORTANT: No gateway connection is made. discord.py objects are replaced
with MagicMocks exposing just the attributes the code reads.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from game_scanner.bot.commands import CommandContext, CommandHandler
from game_scanner.notify.registry import DestinationRegistry

CHANNEL = 1001
OWNER_ID = 42


@pytest.fixture
def registry():
    """DestinationRegistry mock with nothing subscribed."""
    registry = MagicMock(spec=DestinationRegistry)
    registry.subscribe = AsyncMock(return_value=set())
    registry.unsubscribe = AsyncMock(return_value=set())
    registry.categories_for.return_value = frozenset()
    registry.dispatcher_for.return_value = None
    registry.is_subscribed.return_value = False
    return registry


@pytest.fixture
def handler(registry):
    return CommandHandler(registry, owner_id=OWNER_ID)


@pytest.fixture
def admin():
    return CommandContext(destination_id=CHANNEL, author_id=7, is_admin=True)


@pytest.fixture
def owner():
    return CommandContext(destination_id=CHANNEL, author_id=OWNER_ID)


@pytest.fixture
def member():
    return CommandContext(destination_id=CHANNEL, author_id=8)


def make_response(status, reason="", headers=None):
    """Stand-in for the aiohttp response discord.HTTPException wraps."""
    response = MagicMock()
    response.status = status
    response.reason = reason
    response.headers = headers or {}
    return response


@pytest.fixture
def http_response():
    return make_response
