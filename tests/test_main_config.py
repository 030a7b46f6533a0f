"""
Tests for entry point configuration and process helpers.
"""

import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from game_scanner.exceptions import SingletonBotError
from game_scanner.feed.client import DEFAULT_FEED_URL
from game_scanner.feed.models import GameCategory
from game_scanner.main import (
    ScannerBot,
    ScannerConfig,
    load_env_file,
    main_async,
    parse_args,
    singleton_lock,
)
from game_scanner.notify.dispatcher import DispatcherConfig

ENV_VARS = [
    "SETTINGS_PATH",
    "DISCORD_TOKEN",
    "OWNER_ID",
    "FEED_URLS",
    "POLL_INTERVAL_SECONDS",
    "HISTORY_LOOKBACK",
    "RENEW_DELAY_SECONDS",
    "DASHBOARD_ENABLED",
    "DASHBOARD_PORT",
    "COMMAND_PREFIX",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        # setenv records the prior value for teardown
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


class TestScannerConfig:

    def test_defaults(self, clean_env):
        config = ScannerConfig.from_env()

        assert config.settings_path == "settings.json"
        assert config.discord_token is None
        assert config.owner_id is None
        assert config.feed_urls == [DEFAULT_FEED_URL]
        assert config.dashboard_enabled is False
        assert config.command_prefix == "-mmh"

    def test_from_env(self, clean_env):
        clean_env.setenv("DISCORD_TOKEN", "tok")
        clean_env.setenv("OWNER_ID", "42")
        clean_env.setenv("FEED_URLS", "https://a.example/list, https://b.example/list")
        clean_env.setenv("POLL_INTERVAL_SECONDS", "2.5")
        clean_env.setenv("HISTORY_LOOKBACK", "12")
        clean_env.setenv("DASHBOARD_ENABLED", "TRUE")
        clean_env.setenv("DASHBOARD_PORT", "9999")

        config = ScannerConfig.from_env()

        assert config.discord_token == "tok"
        assert config.owner_id == 42
        assert config.feed_urls == ["https://a.example/list", "https://b.example/list"]
        assert config.poll_interval_seconds == 2.5
        assert config.dashboard_enabled is True
        assert config.dashboard_port == 9999
        assert config.dispatcher_config().history_lookback == 12

    def test_component_configs(self, clean_env):
        clean_env.setenv("RENEW_DELAY_SECONDS", "0.5")
        config = ScannerConfig.from_env()

        assert config.feed_config().poll_interval == 5.0
        assert config.feed_config().empty_hold_seconds == 60.0
        assert config.dispatcher_config().renew_delay == 0.5


class TestParseArgs:

    def test_defaults(self):
        args = parse_args([])

        assert args.settings is None
        assert args.log_level is None
        assert args.once is False

    def test_flags(self):
        args = parse_args(["--settings", "other.json", "--log-level", "DEBUG", "--once"])

        assert args.settings == "other.json"
        assert args.log_level == "DEBUG"
        assert args.once is True


class TestLoadEnvFile:

    def test_sets_missing_only(self, tmp_path, clean_env):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# comment\n"
            "DISCORD_TOKEN='from-file'\n"
            "OWNER_ID=7\n"
            "not a pair\n"
        )
        clean_env.setenv("OWNER_ID", "42")

        load_env_file(str(env_file))

        assert os.environ["DISCORD_TOKEN"] == "from-file"
        assert os.environ["OWNER_ID"] == "42"

    def test_missing_file_is_ignored(self, tmp_path):
        load_env_file(str(tmp_path / "nope.env"))


class TestSingletonLock:

    def test_second_instance_is_rejected(self, tmp_path):
        pid_file = str(tmp_path / "scanner.pid")

        with singleton_lock(pid_file):
            assert open(pid_file).read() == str(os.getpid())
            with pytest.raises(SingletonBotError, match=str(os.getpid())):
                with singleton_lock(pid_file):
                    pass

        assert not os.path.exists(pid_file)

    def test_lock_is_reusable_after_release(self, tmp_path):
        pid_file = str(tmp_path / "scanner.pid")

        with singleton_lock(pid_file):
            pass
        with singleton_lock(pid_file):
            pass


class TestScannerBotEvents:
    """Discord event routing, with the components replaced by mocks."""

    @pytest.fixture
    def bot(self):
        bot = ScannerBot(ScannerConfig(), MagicMock())
        bot._store.release_held.return_value = set()
        bot._registry = MagicMock()
        bot._registry.subscribe = AsyncMock(return_value=set())
        bot._commands = MagicMock()
        bot._commands.handle = AsyncMock(return_value="Channel registered for notifications: AOC.")
        return bot

    @pytest.fixture
    def message(self):
        message = MagicMock()
        message.channel.id = 1001
        message.channel.send = AsyncMock()
        message.author.id = 42
        return message

    @pytest.mark.asyncio
    async def test_command_reply_is_sent(self, bot, message):
        message.content = "-mmh register aoc"

        await bot.on_message(message)

        message.channel.send.assert_awaited_once_with("Channel registered for notifications: AOC.")

    @pytest.mark.asyncio
    async def test_chatter_renews_status(self, bot, message):
        message.content = "anyone up for a game?"
        dispatcher = MagicMock()
        bot._registry.dispatcher_for.return_value = dispatcher

        await bot.on_message(message)

        bot._commands.handle.assert_not_called()
        dispatcher.renew_status_message.assert_called_once()

    @pytest.mark.asyncio
    async def test_direct_messages_ignored(self, bot, message):
        message.guild = None
        message.content = "-mmh list"

        await bot.on_message(message)

        bot._commands.handle.assert_not_called()

    def test_restore_does_not_rewrite_settings(self, bot):
        bot._restoring = True
        bot._persist_subscriptions({1001: frozenset()})
        bot._store.save_channels.assert_not_called()

        bot._restoring = False
        bot._persist_subscriptions({1001: frozenset()})
        bot._store.save_channels.assert_called_once_with({1001: frozenset()})

    @pytest.mark.asyncio
    async def test_on_ready_holds_invisible_channels(self, bot):
        bot._store.owner = 0
        bot._store.settings.channels = {1001: {GameCategory.AOC}, 1002: {GameCategory.TL}}
        bot._client = MagicMock()
        bot._client.get_channel.side_effect = lambda cid: MagicMock() if cid == 1001 else None
        bot._platform = MagicMock()
        bot._platform.bot_identity.return_value = "Scanner#0001"
        bot._feed_service = MagicMock()
        bot._feed_service.start = AsyncMock()

        with patch("game_scanner.main.logger") as mock_logger:
            await bot.on_ready()

        mock_logger.info.assert_any_call("Connected to Discord as Scanner#0001")
        bot._registry.subscribe.assert_awaited_once_with(1001, {GameCategory.AOC})
        bot._store.hold_channels.assert_called_once_with({1002: {GameCategory.TL}})
        bot._feed_service.start.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_held_channel_restored_on_activity(self, bot, message):
        bot._store.release_held.return_value = {GameCategory.TL}
        message.content = "anyone up for a game?"

        await bot.on_message(message)

        bot._store.release_held.assert_called_once_with(1001)
        bot._registry.subscribe.assert_awaited_once_with(1001, {GameCategory.TL})

    @pytest.mark.asyncio
    async def test_owner_name_and_avatar(self, bot):
        bot._store.owner = 42
        bot._client = MagicMock()
        bot._client.get_user.return_value = SimpleNamespace(
            name="owner", display_avatar=SimpleNamespace(url="https://cdn.example/owner.png")
        )
        bot._registry.config = DispatcherConfig()

        await bot._resolve_owner()

        assert bot._registry.config.owner_name == "owner"
        assert bot._registry.config.owner_icon_url == "https://cdn.example/owner.png"


class TestMainAsync:

    @pytest.mark.asyncio
    async def test_unreadable_settings_exit_cleanly(self, clean_env, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")

        assert await main_async(parse_args(["--settings", str(path)])) == 1
