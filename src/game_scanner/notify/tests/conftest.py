"""
Test fixtures for the notify layer.

IMPORTANT: Discord is never contacted in tests. FakePlatform keeps channel
contents in memory so tests can assert on what a channel would show.
"""

import asyncio
import itertools

import pytest

from game_scanner.exceptions import MessageNotFoundError, PermissionDeniedError, RateLimitedError
from game_scanner.feed.models import GameCategory, GameInfo
from game_scanner.notify.dispatcher import DispatcherConfig
from game_scanner.notify.models import Capability, HistoryMessage
from game_scanner.notify.platform import ReliablePlatform

ALL_CAPABILITIES = {Capability.READ, Capability.SEND, Capability.DELETE, Capability.EMBED}

CHANNEL = 1001


# =============================================================================
# Fake Platform
# =============================================================================


class FakeMessage:
    def __init__(self, id, content, author_is_self=True):
        self.id = id
        self.content = content
        self.author_is_self = author_is_self


class FakePlatform:
    """
    In-memory ChatPlatform.

    Channels are lists of FakeMessage, oldest first. Every call is recorded
    in `calls` as (method, destination_id, ...).
    """

    def __init__(self):
        self.channels: dict[int, list[FakeMessage]] = {}
        self.caps: dict[int, set] = {}
        self.roles: dict[int, list[tuple[str, str]]] = {}
        self.calls: list[tuple] = []
        self.connected = True
        # method name -> list of exceptions to raise on the next calls
        self.failures: dict[str, list[Exception]] = {}
        self._ids = itertools.count(1)

    # -- helpers for tests ---------------------------------------------------

    def messages(self, destination_id):
        return self.channels.setdefault(destination_id, [])

    def bot_messages(self, destination_id):
        return [m for m in self.messages(destination_id) if m.author_is_self]

    def user_says(self, destination_id, text="hello"):
        message = FakeMessage(next(self._ids), text, author_is_self=False)
        self.messages(destination_id).append(message)
        return message

    def seed_bot_message(self, destination_id, text="old"):
        message = FakeMessage(next(self._ids), text)
        self.messages(destination_id).append(message)
        return message

    def fail_next(self, method, *errors):
        self.failures.setdefault(method, []).extend(errors)

    def count(self, method):
        return sum(1 for c in self.calls if c[0] == method)

    def _maybe_fail(self, method):
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    # -- ChatPlatform ----------------------------------------------------------

    @property
    def is_connected(self):
        return self.connected

    def bot_identity(self):
        return "Scanner#0001"

    def capabilities(self, destination_id):
        return set(self.caps.get(destination_id, ALL_CAPABILITIES))

    def resolve_mention(self, destination_id, aliases):
        wanted = [a.lower() for a in aliases]
        for name, mention in self.roles.get(destination_id, []):
            if any(a in name.lower() for a in wanted):
                return mention
        return None

    async def send_message(self, destination_id, content):
        self.calls.append(("send", destination_id, content))
        self._maybe_fail("send")
        message = FakeMessage(next(self._ids), content)
        self.messages(destination_id).append(message)
        return message.id

    async def edit_message(self, destination_id, message_id, content):
        self.calls.append(("edit", destination_id, message_id, content))
        self._maybe_fail("edit")
        for message in self.messages(destination_id):
            if message.id == message_id:
                message.content = content
                return
        raise MessageNotFoundError(f"message {message_id} not found")

    async def delete_message(self, destination_id, message_id):
        self.calls.append(("delete", destination_id, message_id))
        self._maybe_fail("delete")
        channel = self.messages(destination_id)
        for i, message in enumerate(channel):
            if message.id == message_id:
                del channel[i]
                return
        raise MessageNotFoundError(f"message {message_id} not found")

    async def fetch_history(self, destination_id, limit):
        self.calls.append(("history", destination_id, limit))
        self._maybe_fail("history")
        newest_first = list(reversed(self.messages(destination_id)))[:limit]
        return [HistoryMessage(id=m.id, author_is_self=m.author_is_self) for m in newest_first]


@pytest.fixture
def fake_platform():
    return FakePlatform()


@pytest.fixture
def platform(fake_platform):
    """FakePlatform behind the rate-limit aware wrapper."""
    return ReliablePlatform(fake_platform)


@pytest.fixture
def fast_config():
    """Dispatcher timings short enough for tests."""
    return DispatcherConfig(
        status_refresh_interval=3600.0,
        status_refresh_initial_delay=3600.0,
        renew_delay=0.01,
        renew_timeout=1.0,
    )


# =============================================================================
# Game Fixtures
# =============================================================================


@pytest.fixture
def make_game():
    """Factory for GameInfo records."""
    def _make(id=1, account="MMH.Bot1", category=GameCategory.AOC, title="AOC night", players="3/12"):
        return GameInfo(id=id, account_id=account, category=category, title=title, player_count=players)
    return _make


@pytest.fixture
def aoc_game(make_game):
    return make_game()


@pytest.fixture
def rp_game(make_game):
    return make_game(id=2, account="MMH.Bot2", category=GameCategory.RP, title="LotR RP")


# =============================================================================
# Error Fixtures
# =============================================================================


@pytest.fixture
def rate_limited():
    return RateLimitedError(retry_after=0)


@pytest.fixture
def forbidden():
    return PermissionDeniedError("Missing Permissions")


async def drain(dispatcher):
    """Wait until every queued operation has run."""
    await dispatcher._queue.join()
    await asyncio.sleep(0)


@pytest.fixture
def settle():
    return drain
