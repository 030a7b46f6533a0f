"""
Chat platform boundary.

ChatPlatform is the interface the dispatch layer talks to; the Discord
adapter in game_scanner.bot implements it. Every call is routed through
reliable_call(), the single place where rate limits are handled.

Rate limit policy:
    RetryForever (default) sleeps for the server-indicated delay and
    reissues the call, with no upper bound. BoundedBackoff is a drop-in
    alternative that gives up after a fixed number of attempts.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, runtime_checkable

from game_scanner.exceptions import RateLimitedError

from .models import Capability, HistoryMessage, MessageContent

logger = logging.getLogger(__name__)


@runtime_checkable
class ChatPlatform(Protocol):
    """Operations the dispatch layer needs from a chat service."""

    @property
    def is_connected(self) -> bool: ...

    async def send_message(self, destination_id: int, content: MessageContent) -> int: ...

    async def edit_message(self, destination_id: int, message_id: int, content: MessageContent) -> None: ...

    async def delete_message(self, destination_id: int, message_id: int) -> None: ...

    async def fetch_history(self, destination_id: int, limit: int) -> list[HistoryMessage]: ...

    def capabilities(self, destination_id: int) -> set[Capability]: ...

    def resolve_mention(self, destination_id: int, aliases: Sequence[str]) -> Optional[str]: ...

    def bot_identity(self) -> Optional[str]: ...


class RetryPolicy(Protocol):
    def next_delay(self, attempt: int, error: RateLimitedError) -> Optional[float]:
        """Seconds to wait before retrying, or None to give up."""
        ...


class RetryForever:
    """Wait exactly as long as the server asks, as many times as it asks."""

    def next_delay(self, attempt: int, error: RateLimitedError) -> Optional[float]:
        return error.retry_after


class BoundedBackoff:
    """Exponential backoff (never shorter than retry_after) with an attempt cap."""

    def __init__(self, max_attempts: int = 5, base_delay: float = 1.0, max_delay: float = 60.0):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    def next_delay(self, attempt: int, error: RateLimitedError) -> Optional[float]:
        if attempt + 1 >= self.max_attempts:
            return None
        backoff = self.base_delay * (2 ** attempt)
        return min(max(error.retry_after, backoff), self.max_delay)


async def reliable_call(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> Any:
    """
    Call a platform coroutine, transparently retrying on rate limits.

    Args:
        fn: Coroutine function to call
        policy: Retry policy (RetryForever when omitted)
        sleep: Sleep function, injectable for tests

    Raises:
        RateLimitedError: Only if the policy gives up
        Any other exception from fn, unchanged
    """
    policy = policy or RetryForever()
    attempt = 0

    while True:
        try:
            return await fn(*args, **kwargs)
        except RateLimitedError as e:
            delay = policy.next_delay(attempt, e)
            if delay is None:
                raise
            name = getattr(fn, "__name__", repr(fn))
            logger.warning(f"Rate limited on {name}, retrying in {delay:.2f}s (attempt {attempt + 1})")
            await sleep(delay)
            attempt += 1


class ReliablePlatform:
    """
    ChatPlatform wrapper whose I/O methods go through reliable_call.

    Capability and mention lookups are local (cached) and are passed
    straight through.
    """

    def __init__(self, platform: ChatPlatform, policy: Optional[RetryPolicy] = None):
        self._platform = platform
        self._policy = policy or RetryForever()

    @property
    def platform(self) -> ChatPlatform:
        return self._platform

    @property
    def is_connected(self) -> bool:
        return self._platform.is_connected

    async def send_message(self, destination_id: int, content: MessageContent) -> int:
        return await reliable_call(self._platform.send_message, destination_id, content, policy=self._policy)

    async def edit_message(self, destination_id: int, message_id: int, content: MessageContent) -> None:
        await reliable_call(self._platform.edit_message, destination_id, message_id, content, policy=self._policy)

    async def delete_message(self, destination_id: int, message_id: int) -> None:
        await reliable_call(self._platform.delete_message, destination_id, message_id, policy=self._policy)

    async def fetch_history(self, destination_id: int, limit: int) -> list[HistoryMessage]:
        return await reliable_call(self._platform.fetch_history, destination_id, limit, policy=self._policy)

    def capabilities(self, destination_id: int) -> set[Capability]:
        return set(self._platform.capabilities(destination_id))

    def missing(self, destination_id: int, required: frozenset) -> set[Capability]:
        """Capabilities from `required` the bot lacks in the destination."""
        return set(required) - self.capabilities(destination_id)

    def resolve_mention(self, destination_id: int, aliases: Sequence[str]) -> Optional[str]:
        return self._platform.resolve_mention(destination_id, aliases)

    def bot_identity(self) -> Optional[str]:
        return self._platform.bot_identity()
