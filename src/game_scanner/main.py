"""
MMH Scanner - Main Entry Point

Watches the MakeMeHost game listing and keeps Discord channels informed about
hosted games of the types they registered for.

Usage:
    python -m game_scanner.main [--settings settings.json] [--log-level DEBUG]
    python -m game_scanner.main --once     # Fetch and classify once, then exit

Configuration:
    The scanner reads configuration from:
    1. Environment variables (optionally from a .env file)
    2. The settings JSON file (token, owner, registered channels)
    3. Command line arguments

Environment Variables:
    SETTINGS_PATH                     Settings JSON file (default: settings.json)
    DISCORD_TOKEN                     Overrides the token in the settings file
    OWNER_ID                          Overrides the owner in the settings file
    FEED_URLS                         Comma-separated listing URLs
    POLL_INTERVAL_SECONDS             Listing poll interval (default: 5)
    REQUEST_TIMEOUT_SECONDS           HTTP timeout (default: 15)
    EMPTY_HOLD_SECONDS                Ignore an empty listing this long (default: 60)
    STATUS_REFRESH_INTERVAL_SECONDS   Status message refresh (default: 5)
    HISTORY_LOOKBACK                  Messages checked for "status is newest" (default: 8)
    PURGE_HISTORY_LIMIT               Messages scanned when purging (default: 256)
    RENEW_DELAY_SECONDS               Debounce before moving the status down (default: 2)
    RENEW_TIMEOUT_SECONDS             Bound on one status move (default: 7)
    COMMAND_PREFIX                    Admin command prefix (default: -mmh)
    DASHBOARD_ENABLED                 Serve the status API (default: false)
    DASHBOARD_HOST                    Dashboard host (default: 127.0.0.1)
    DASHBOARD_PORT                    Dashboard port (default: 9050)
    LOG_LEVEL                         Logging level (DEBUG/INFO/WARNING/ERROR)
    PID_FILE                          Singleton lock file (default: /tmp/game-scanner.pid)
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import fcntl
import logging
import os
import signal
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generator, Optional

# Configure logging before imports
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

import discord  # noqa: E402

from game_scanner.bot import CommandHandler, DiscordPlatform, ScannerClient, command_context  # noqa: E402
from game_scanner.exceptions import (  # noqa: E402
    InvalidTokenError,
    ScannerError,
    SettingsError,
    SingletonBotError,
)
from game_scanner.feed import (  # noqa: E402
    DEFAULT_FEED_URL,
    FeedClient,
    FeedConfig,
    FeedService,
    Reconciler,
)
from game_scanner.monitoring import HealthChecker, HealthStatus, run_dashboard  # noqa: E402
from game_scanner.notify import DestinationRegistry, DispatcherConfig, ReliablePlatform  # noqa: E402
from game_scanner.settings import SettingsStore  # noqa: E402

# Default PID file location
DEFAULT_PID_FILE = "/tmp/game-scanner.pid"


@contextmanager
def singleton_lock(pid_file: str = DEFAULT_PID_FILE) -> Generator[None, None, None]:
    """
    Context manager that ensures only one scanner instance runs at a time.

    Uses file locking (fcntl.LOCK_EX | fcntl.LOCK_NB). Two scanners on the
    same token would fight over the same status messages.

    Args:
        pid_file: Path to the PID file

    Raises:
        SingletonBotError: If another instance is already running
    """
    pid_path = Path(pid_file)

    # Read existing PID before opening (which would truncate)
    existing_pid = None
    try:
        existing_pid = pid_path.read_text().strip()
    except FileNotFoundError:
        pass

    fp = open(pid_path, "a+")

    try:
        fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fp.close()
        if existing_pid:
            raise SingletonBotError(
                f"Another scanner instance is already running (PID: {existing_pid})"
            )
        raise SingletonBotError("Another scanner instance is already running")

    # We have the lock - now truncate and write our PID
    fp.seek(0)
    fp.truncate()
    fp.write(str(os.getpid()))
    fp.flush()

    def cleanup():
        try:
            fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
            fp.close()
            pid_path.unlink(missing_ok=True)
        except OSError:
            pass

    atexit.register(cleanup)

    try:
        logger.info(f"Acquired singleton lock (PID: {os.getpid()}, file: {pid_file})")
        yield
    finally:
        cleanup()
        atexit.unregister(cleanup)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


@dataclass
class ScannerConfig:
    settings_path: str = "settings.json"
    discord_token: Optional[str] = None
    owner_id: Optional[int] = None

    # Feed
    feed_urls: list[str] = field(default_factory=lambda: [DEFAULT_FEED_URL])
    poll_interval_seconds: float = 5.0
    request_timeout_seconds: float = 15.0
    empty_hold_seconds: float = 60.0

    # Dispatch
    status_refresh_interval_seconds: float = 5.0
    history_lookback: int = 8
    purge_history_limit: int = 256
    renew_delay_seconds: float = 2.0
    renew_timeout_seconds: float = 7.0
    command_prefix: str = "-mmh"

    # Monitoring
    dashboard_enabled: bool = False
    dashboard_host: str = "127.0.0.1"
    dashboard_port: int = 9050
    health_check_interval_seconds: float = 30.0

    pid_file: str = DEFAULT_PID_FILE

    @classmethod
    def from_env(cls) -> "ScannerConfig":
        """Load configuration from environment variables."""
        owner = os.environ.get("OWNER_ID", "").strip()
        urls = [u.strip() for u in os.environ.get("FEED_URLS", "").split(",") if u.strip()]

        return cls(
            settings_path=os.environ.get("SETTINGS_PATH", "settings.json"),
            discord_token=os.environ.get("DISCORD_TOKEN") or None,
            owner_id=int(owner) if owner else None,
            feed_urls=urls or [DEFAULT_FEED_URL],
            poll_interval_seconds=float(os.environ.get("POLL_INTERVAL_SECONDS", "5")),
            request_timeout_seconds=float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "15")),
            empty_hold_seconds=float(os.environ.get("EMPTY_HOLD_SECONDS", "60")),
            status_refresh_interval_seconds=float(os.environ.get("STATUS_REFRESH_INTERVAL_SECONDS", "5")),
            history_lookback=int(os.environ.get("HISTORY_LOOKBACK", "8")),
            purge_history_limit=int(os.environ.get("PURGE_HISTORY_LIMIT", "256")),
            renew_delay_seconds=float(os.environ.get("RENEW_DELAY_SECONDS", "2")),
            renew_timeout_seconds=float(os.environ.get("RENEW_TIMEOUT_SECONDS", "7")),
            command_prefix=os.environ.get("COMMAND_PREFIX", "-mmh"),
            dashboard_enabled=_env_bool("DASHBOARD_ENABLED", "false"),
            dashboard_host=os.environ.get("DASHBOARD_HOST", "127.0.0.1"),
            dashboard_port=int(os.environ.get("DASHBOARD_PORT", "9050")),
            pid_file=os.environ.get("PID_FILE", DEFAULT_PID_FILE),
        )

    def feed_config(self) -> FeedConfig:
        return FeedConfig(
            poll_interval=self.poll_interval_seconds,
            empty_hold_seconds=self.empty_hold_seconds,
        )

    def dispatcher_config(self) -> DispatcherConfig:
        return DispatcherConfig(
            status_refresh_interval=self.status_refresh_interval_seconds,
            history_lookback=self.history_lookback,
            purge_history_limit=self.purge_history_limit,
            renew_delay=self.renew_delay_seconds,
            renew_timeout=self.renew_timeout_seconds,
        )


class ScannerBot:
    """
    Main scanner orchestrator.

    Manages the lifecycle of all components:
    - Feed service (poll, classify, reconcile)
    - Destination registry (one dispatcher per registered channel)
    - Discord client and command handling
    - Monitoring (health checks, dashboard)
    """

    def __init__(self, config: ScannerConfig, store: SettingsStore):
        self.config = config
        self._store = store
        self._running = False
        self._restoring = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized on start)
        self._feed_service: Optional[FeedService] = None
        self._registry: Optional[DestinationRegistry] = None
        self._client: Optional[ScannerClient] = None
        self._platform: Optional[ReliablePlatform] = None
        self._commands: Optional[CommandHandler] = None
        self._health_checker: Optional[HealthChecker] = None
        self._client_task: Optional[asyncio.Task] = None
        self._dashboard_task: Optional[asyncio.Task] = None

    @property
    def feed_service(self) -> Optional[FeedService]:
        return self._feed_service

    @property
    def registry(self) -> Optional[DestinationRegistry]:
        return self._registry

    async def start(self) -> None:
        """Start the scanner and run until shutdown."""
        logger.info("=" * 60)
        logger.info("MMH SCANNER")
        logger.info("=" * 60)
        logger.info(f"Feed: {', '.join(self.config.feed_urls)}")
        logger.info(f"Registered channels: {len(self._store.settings.channels)}")
        logger.info("=" * 60)

        self._running = True
        self._shutdown_event.clear()

        # Setup signal handlers FIRST to catch early signals
        self._setup_signal_handlers()

        try:
            self._init_feed()
            self._init_discord()
            self._init_monitoring()

            self._client_task = asyncio.create_task(
                self._client.start(self._store.token), name="discord_client"
            )

            await self._run_loop()

        except Exception as e:
            logger.exception(f"Fatal error: {e}")
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the scanner gracefully."""
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        # Stop components in reverse order
        if self._feed_service:
            try:
                await self._feed_service.stop()
            except Exception as e:
                logger.warning(f"Error stopping feed service: {e}")

        if self._registry:
            try:
                await self._registry.close(purge=False)
            except Exception as e:
                logger.warning(f"Error closing destinations: {e}")

        if self._dashboard_task:
            self._dashboard_task.cancel()
            await asyncio.gather(self._dashboard_task, return_exceptions=True)

        if self._client:
            try:
                await self._client.close()
            except Exception as e:
                logger.warning(f"Error closing Discord client: {e}")

        if self._client_task:
            await asyncio.gather(self._client_task, return_exceptions=True)

        try:
            self._store.save()
        except OSError as e:
            logger.warning(f"Error writing settings: {e}")

        logger.info("Shutdown complete")

    def request_shutdown(self, reason: str = "manual") -> None:
        if not self._running:
            return
        logger.warning(f"Shutdown requested: {reason}")
        self._shutdown_event.set()

    # =========================================================================
    # Initialization
    # =========================================================================

    def _init_feed(self) -> None:
        client = FeedClient(
            urls=self.config.feed_urls,
            timeout=self.config.request_timeout_seconds,
        )
        self._feed_service = FeedService(
            client=client,
            reconciler=Reconciler(),
            config=self.config.feed_config(),
        )

    def _init_discord(self) -> None:
        self._client = ScannerClient(
            on_ready_callback=self.on_ready,
            on_message_callback=self.on_message,
        )
        self._platform = ReliablePlatform(DiscordPlatform(self._client))
        self._registry = DestinationRegistry(
            self._platform,
            self._feed_service.snapshot,
            config=self.config.dispatcher_config(),
            on_change=self._persist_subscriptions,
        )
        self._feed_service.set_event_callback(self._registry.publish)
        self._commands = CommandHandler(
            self._registry,
            owner_id=self._store.owner or None,
            prefix=self.config.command_prefix,
        )

    def _init_monitoring(self) -> None:
        self._health_checker = HealthChecker(
            feed_service=self._feed_service,
            platform=self._platform,
            registry=self._registry,
        )

        if self.config.dashboard_enabled:
            self._dashboard_task = asyncio.create_task(
                run_dashboard(
                    self._feed_service,
                    self._registry,
                    self._health_checker,
                    host=self.config.dashboard_host,
                    port=self.config.dashboard_port,
                ),
                name="dashboard",
            )

    # =========================================================================
    # Discord events
    # =========================================================================

    async def on_ready(self) -> None:
        """Restore registered channels, then start polling."""
        logger.info(f"Connected to Discord as {self._platform.bot_identity()}")
        await self._resolve_owner()

        unresolved = {}
        self._restoring = True
        try:
            for channel_id, categories in sorted(self._store.settings.channels.items()):
                if self._client.get_channel(channel_id) is None:
                    logger.warning(f"Registered channel {channel_id} is not visible, keeping it for later")
                    unresolved[channel_id] = categories
                    continue
                await self._registry.subscribe(channel_id, categories)
        finally:
            self._restoring = False
        self._store.hold_channels(unresolved)

        logger.info(f"Restored {len(self._registry)} channels")
        await self._feed_service.start()

    async def on_message(self, message: discord.Message) -> None:
        context = command_context(message)
        if context is None:
            return

        held = self._store.release_held(context.destination_id)
        if held:
            logger.info(f"Channel {context.destination_id} is visible again, restoring it")
            await self._registry.subscribe(context.destination_id, held)

        if message.content.startswith(self.config.command_prefix):
            reply = await self._commands.handle(context, message.content)
            if reply:
                try:
                    await message.channel.send(reply)
                except discord.HTTPException as e:
                    logger.warning(f"Could not reply in {context.destination_id}: {e}")
            return

        dispatcher = self._registry.dispatcher_for(context.destination_id)
        if dispatcher is not None:
            dispatcher.renew_status_message()

    async def _resolve_owner(self) -> None:
        owner_id = self._store.owner
        if not owner_id:
            return
        try:
            user = self._client.get_user(owner_id) or await self._client.fetch_user(owner_id)
        except discord.HTTPException as e:
            logger.warning(f"Could not look up owner {owner_id}: {e}")
            return
        self._registry.config.owner_name = user.name
        self._registry.config.owner_icon_url = str(user.display_avatar.url)

    def _persist_subscriptions(self, subscriptions: dict) -> None:
        if self._restoring:
            return
        self._store.save_channels(subscriptions)

    # =========================================================================
    # Run loop
    # =========================================================================

    async def _run_loop(self) -> None:
        """Wait for shutdown, checking health periodically."""
        interval = self.config.health_check_interval_seconds
        shutdown_waiter = asyncio.ensure_future(self._shutdown_event.wait())

        try:
            while self._running:
                done, _ = await asyncio.wait(
                    {shutdown_waiter, self._client_task},
                    timeout=interval,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if shutdown_waiter in done:
                    break

                if self._client_task in done:
                    error = self._client_task.exception()
                    if error is not None:
                        raise ScannerError(f"Discord client stopped: {error}") from error
                    logger.warning("Discord client stopped")
                    break

                try:
                    health = await self._health_checker.check_all()
                    unhealthy = [c for c in health.components if c.status == HealthStatus.UNHEALTHY]
                    if unhealthy:
                        logger.warning(f"Health check failed: {[c.component for c in unhealthy]}")

                    stats = self._feed_service.stats
                    logger.info(
                        f"Stats: polls={stats.polls}, failed={stats.failed_polls}, "
                        f"games={len(self._feed_service.snapshot())}, channels={len(self._registry)}"
                    )
                except Exception as e:
                    logger.error(f"Error in main loop: {e}")
        finally:
            shutdown_waiter.cancel()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


async def run_once(config: ScannerConfig) -> int:
    """Fetch and classify the listing once and print the result."""
    async with FeedClient(urls=config.feed_urls, timeout=config.request_timeout_seconds) as client:
        result = await client.fetch_rows()

    reconciler = Reconciler()
    classified, errors = reconciler.classify_rows(result.rows)

    for row, category in classified:
        print(f"{category.name:<16} {row.account_id:<16} {row.realm.value:<7} ({row.player_count}) {row.title}")
    print(
        f"\n{len(classified)} classified of {len(result.rows)} rows "
        f"({result.skipped + errors} skipped)"
    )
    return 0


def load_env_file(path: str = ".env") -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(path)
    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip('"').strip("'")
                    os.environ.setdefault(key.strip(), value)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="MMH Scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--settings",
        type=str,
        help="Path to the settings JSON file (overrides SETTINGS_PATH)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Fetch and classify the listing once, print it and exit",
    )
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    config = ScannerConfig.from_env()
    if args.settings:
        config.settings_path = args.settings

    if args.once:
        try:
            return await run_once(config)
        except ScannerError as e:
            logger.error(str(e))
            return 1

    store = SettingsStore(config.settings_path)
    try:
        store.load(token_override=config.discord_token, owner_override=config.owner_id)
    except (InvalidTokenError, SettingsError) as e:
        logger.error(str(e))
        return 1

    bot = ScannerBot(config, store)

    try:
        await bot.start()
        return 0
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main() -> int:
    """Main entry point."""
    load_env_file()

    args = parse_args()

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    if args.once:
        return asyncio.run(main_async(args))

    # Ensure only one scanner instance runs at a time
    try:
        with singleton_lock(os.environ.get("PID_FILE", DEFAULT_PID_FILE)):
            try:
                return asyncio.run(main_async(args))
            except KeyboardInterrupt:
                return 0
    except SingletonBotError as e:
        logger.error(str(e))
        print(f"\n{e}\n", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
