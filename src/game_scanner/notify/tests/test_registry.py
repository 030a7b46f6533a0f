"""
Tests for the destination registry.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from game_scanner.feed.models import GameCategory, GameEvent
from game_scanner.notify.registry import DestinationRegistry

CHANNEL = 1001
OTHER_CHANNEL = 1002


@pytest.fixture
def games():
    return []


@pytest.fixture
def registry(platform, games, fast_config):
    return DestinationRegistry(platform, lambda: list(games), config=fast_config)


class TestSubscribe:

    @pytest.mark.asyncio
    async def test_first_subscribe_starts_dispatcher(self, registry, settle):
        added = await registry.subscribe(CHANNEL, {GameCategory.AOC})

        assert added == {GameCategory.AOC}
        assert CHANNEL in registry
        dispatcher = registry.dispatcher_for(CHANNEL)
        assert dispatcher.is_alive
        await settle(dispatcher)
        assert dispatcher.categories == {GameCategory.AOC}
        await registry.close()

    @pytest.mark.asyncio
    async def test_second_subscribe_adds_categories(self, registry, settle):
        await registry.subscribe(CHANNEL, {GameCategory.AOC})
        dispatcher = registry.dispatcher_for(CHANNEL)

        added = await registry.subscribe(CHANNEL, {GameCategory.AOC, GameCategory.TL})

        assert added == {GameCategory.TL}
        assert registry.dispatcher_for(CHANNEL) is dispatcher
        assert registry.categories_for(CHANNEL) == {GameCategory.AOC, GameCategory.TL}
        await settle(dispatcher)
        assert dispatcher.categories == {GameCategory.AOC, GameCategory.TL}
        await registry.close()

    @pytest.mark.asyncio
    async def test_subscribe_nothing_new(self, registry):
        await registry.subscribe(CHANNEL, {GameCategory.AOC})

        assert await registry.subscribe(CHANNEL, {GameCategory.AOC}) == set()
        await registry.close()

    @pytest.mark.asyncio
    async def test_subscribe_replays_current_games(self, registry, games, fake_platform, settle, aoc_game):
        games.append(aoc_game)

        await registry.subscribe(CHANNEL, {GameCategory.AOC})
        await settle(registry.dispatcher_for(CHANNEL))

        assert registry.dispatcher_for(CHANNEL).games == [aoc_game]
        assert fake_platform.count("send") == 1
        await registry.close()


class TestUnsubscribe:

    @pytest.mark.asyncio
    async def test_partial_unsubscribe_keeps_dispatcher(self, registry, settle):
        await registry.subscribe(CHANNEL, {GameCategory.AOC, GameCategory.TL})

        removed = await registry.unsubscribe(CHANNEL, {GameCategory.TL})

        assert removed == {GameCategory.TL}
        dispatcher = registry.dispatcher_for(CHANNEL)
        await settle(dispatcher)
        assert dispatcher.categories == {GameCategory.AOC}
        await registry.close()

    @pytest.mark.asyncio
    async def test_last_unsubscribe_tears_down_and_purges(
        self, registry, games, fake_platform, settle, aoc_game
    ):
        games.append(aoc_game)
        await registry.subscribe(CHANNEL, {GameCategory.AOC})
        dispatcher = registry.dispatcher_for(CHANNEL)
        await settle(dispatcher)
        await dispatcher.refresh_status()
        user = fake_platform.user_says(CHANNEL)

        removed = await registry.unsubscribe(CHANNEL, {GameCategory.AOC})

        assert removed == {GameCategory.AOC}
        assert CHANNEL not in registry
        assert dispatcher.is_closed
        assert [m.id for m in fake_platform.messages(CHANNEL)] == [user.id]

    @pytest.mark.asyncio
    async def test_unsubscribe_unknown_destination(self, registry):
        assert await registry.unsubscribe(CHANNEL, {GameCategory.AOC}) == set()

    @pytest.mark.asyncio
    async def test_unsubscribe_unsubscribed_category(self, registry):
        await registry.subscribe(CHANNEL, {GameCategory.AOC})

        assert await registry.unsubscribe(CHANNEL, {GameCategory.TL}) == set()
        assert registry.categories_for(CHANNEL) == {GameCategory.AOC}
        await registry.close()


class TestChangeCallback:

    @pytest.mark.asyncio
    async def test_sync_callback(self, platform, fast_config):
        on_change = MagicMock()
        registry = DestinationRegistry(platform, list, config=fast_config, on_change=on_change)

        await registry.subscribe(CHANNEL, {GameCategory.AOC})
        await registry.unsubscribe(CHANNEL, {GameCategory.AOC})

        assert on_change.call_args_list[0].args[0] == {CHANNEL: frozenset({GameCategory.AOC})}
        assert on_change.call_args_list[1].args[0] == {}

    @pytest.mark.asyncio
    async def test_async_callback(self, platform, fast_config):
        on_change = AsyncMock()
        registry = DestinationRegistry(platform, list, config=fast_config, on_change=on_change)

        await registry.subscribe(CHANNEL, {GameCategory.AOC})

        on_change.assert_awaited_once_with({CHANNEL: frozenset({GameCategory.AOC})})
        await registry.close()

    @pytest.mark.asyncio
    async def test_callback_error_does_not_break_subscribe(self, platform, fast_config):
        on_change = MagicMock(side_effect=OSError("disk full"))
        registry = DestinationRegistry(platform, list, config=fast_config, on_change=on_change)

        assert await registry.subscribe(CHANNEL, {GameCategory.AOC}) == {GameCategory.AOC}
        assert CHANNEL in registry
        await registry.close()

    @pytest.mark.asyncio
    async def test_no_change_no_callback(self, platform, fast_config):
        on_change = MagicMock()
        registry = DestinationRegistry(platform, list, config=fast_config, on_change=on_change)

        await registry.unsubscribe(CHANNEL, {GameCategory.AOC})

        on_change.assert_not_called()


class TestPublish:

    @pytest.mark.asyncio
    async def test_fan_out_respects_categories(self, registry, fake_platform, settle, rp_game):
        await registry.subscribe(CHANNEL, {GameCategory.AOC})
        await registry.subscribe(OTHER_CHANNEL, {GameCategory.RP})

        registry.publish(GameEvent.created(rp_game))
        for dispatcher in registry.dispatchers():
            await settle(dispatcher)

        assert registry.dispatcher_for(CHANNEL).games == []
        assert registry.dispatcher_for(OTHER_CHANNEL).games == [rp_game]
        assert fake_platform.messages(CHANNEL) == []
        assert len(fake_platform.messages(OTHER_CHANNEL)) == 1
        await registry.close()

    def test_publish_with_no_destinations(self, registry, aoc_game):
        registry.publish(GameEvent.created(aoc_game))


class TestClose:

    @pytest.mark.asyncio
    async def test_close_stops_every_dispatcher(self, registry):
        await registry.subscribe(CHANNEL, {GameCategory.AOC})
        await registry.subscribe(OTHER_CHANNEL, {GameCategory.TL})
        dispatchers = registry.dispatchers()

        await registry.close()

        assert len(registry) == 0
        assert all(d.is_closed for d in dispatchers)

    @pytest.mark.asyncio
    async def test_close_keeps_messages_by_default(self, registry, fake_platform):
        await registry.subscribe(CHANNEL, {GameCategory.AOC})
        await registry.dispatcher_for(CHANNEL).refresh_status()

        await registry.close()

        assert len(fake_platform.bot_messages(CHANNEL)) == 1
