"""
Destination registry.

Maps destination ids to their subscribed categories and owns the lifecycle
of each destination's Dispatcher.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Iterable, Optional

from game_scanner.feed.models import GameCategory, GameEvent

from .dispatcher import Dispatcher, DispatcherConfig, SnapshotProvider
from .models import Subscription
from .platform import ReliablePlatform

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[dict[int, frozenset]], Any]
DispatcherFactory = Callable[[int, set], Dispatcher]


class DestinationRegistry:
    """
    Subscriptions plus one private dispatcher per subscribed destination.

    Usage:
        registry = DestinationRegistry(platform, reconciler.snapshot, on_change=store.save_channels)
        await registry.subscribe(channel_id, {GameCategory.AOC})
        feed_service.set_event_callback(registry.publish)
    """

    def __init__(
        self,
        platform: ReliablePlatform,
        snapshot: SnapshotProvider,
        config: Optional[DispatcherConfig] = None,
        on_change: Optional[ChangeCallback] = None,
        dispatcher_factory: Optional[DispatcherFactory] = None,
    ):
        self._platform = platform
        self._snapshot = snapshot
        self._config = config or DispatcherConfig()
        self._on_change = on_change
        self._factory = dispatcher_factory or self._create_dispatcher

        self._subscriptions: dict[int, Subscription] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, destination_id: int) -> bool:
        return destination_id in self._subscriptions

    @property
    def config(self) -> DispatcherConfig:
        return self._config

    def is_subscribed(self, destination_id: int) -> bool:
        return destination_id in self._subscriptions

    def categories_for(self, destination_id: int) -> frozenset:
        subscription = self._subscriptions.get(destination_id)
        return frozenset(subscription.categories) if subscription else frozenset()

    def dispatcher_for(self, destination_id: int) -> Optional[Dispatcher]:
        subscription = self._subscriptions.get(destination_id)
        return subscription.dispatcher if subscription else None

    def dispatchers(self) -> list[Dispatcher]:
        return [s.dispatcher for s in self._subscriptions.values()]

    def subscriptions(self) -> dict[int, frozenset]:
        """Destination id -> subscribed categories."""
        return {
            destination_id: frozenset(s.categories)
            for destination_id, s in self._subscriptions.items()
        }

    async def subscribe(self, destination_id: int, categories: Iterable[GameCategory]) -> set:
        """
        Subscribe a destination to categories.

        Returns:
            The categories that were newly added
        """
        async with self._lock:
            subscription = self._subscriptions.get(destination_id)
            current = subscription.categories if subscription else set()
            added = set(categories) - current
            if not added:
                return set()

            if subscription is None:
                dispatcher = self._factory(destination_id, set(added))
                dispatcher.start()
                self._subscriptions[destination_id] = Subscription(
                    destination_id=destination_id,
                    categories=set(added),
                    dispatcher=dispatcher,
                )
            else:
                subscription.categories |= added
                subscription.dispatcher.add_categories(added)

        logger.info(f"Subscribed {destination_id} to {_names(added)}")
        await self._notify_change()
        return added

    async def unsubscribe(self, destination_id: int, categories: Iterable[GameCategory]) -> set:
        """
        Unsubscribe a destination from categories. Removing the last one
        tears its dispatcher down.

        Returns:
            The categories that were removed
        """
        async with self._lock:
            subscription = self._subscriptions.get(destination_id)
            if subscription is None:
                return set()

            removed = subscription.categories & set(categories)
            if not removed:
                return set()

            subscription.categories -= removed
            if subscription.categories:
                subscription.dispatcher.remove_categories(removed)
            else:
                del self._subscriptions[destination_id]
                # under the lock so a re-subscribe cannot race the final purge
                await subscription.dispatcher.close(purge=True)

        logger.info(f"Unsubscribed {destination_id} from {_names(removed)}")
        await self._notify_change()
        return removed

    def publish(self, event: GameEvent) -> None:
        """Fan an event out to every dispatcher. Never blocks."""
        for subscription in list(self._subscriptions.values()):
            subscription.dispatcher.on_game_event(event)

    async def close(self, purge: bool = False) -> None:
        """Tear down every dispatcher. Subscriptions are not persisted from here."""
        async with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()

        if subscriptions:
            await asyncio.gather(
                *(s.dispatcher.close(purge=purge) for s in subscriptions),
                return_exceptions=True,
            )
        logger.info(f"Closed {len(subscriptions)} dispatchers")

    def _create_dispatcher(self, destination_id: int, categories: set) -> Dispatcher:
        return Dispatcher(
            destination_id,
            self._platform,
            categories,
            self._snapshot,
            config=self._config,
        )

    async def _notify_change(self) -> None:
        if self._on_change is None:
            return
        try:
            result = self._on_change(self.subscriptions())
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception(f"Error in subscription change callback: {e}")


def _names(categories: Iterable[GameCategory]) -> str:
    return ", ".join(sorted(str(c) for c in categories))
