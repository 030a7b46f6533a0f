"""
Exception hierarchy for the scanner.

Feed errors are recoverable per tick or per row. Platform errors are
recoverable per action. Only startup errors (InvalidTokenError, SettingsError,
SingletonBotError) are fatal.
"""
from __future__ import annotations

from typing import Optional


class ScannerError(Exception):
    """Base exception for all scanner errors."""
    pass


# =============================================================================
# Feed
# =============================================================================


class FeedFetchError(ScannerError):
    """The source listing could not be fetched (connection, timeout, bad status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RowParseError(ScannerError):
    """A single table row could not be turned into a GameRow."""
    pass


# =============================================================================
# Chat platform
# =============================================================================


class PlatformError(ScannerError):
    """Base exception for chat platform failures."""
    pass


class RateLimitedError(PlatformError):
    """The platform asked us to slow down."""

    def __init__(self, retry_after: float, message: str = "Rate limited"):
        super().__init__(f"{message} (retry after {retry_after:.2f}s)")
        self.retry_after = max(0.0, float(retry_after))


class PermissionDeniedError(PlatformError):
    """The bot lacks a capability required for an action in a destination."""
    pass


class MessageNotFoundError(PlatformError):
    """The targeted message no longer exists."""
    pass


# =============================================================================
# Startup / administration
# =============================================================================


class InvalidTokenError(ScannerError):
    """The configured bot token is missing or still the placeholder."""
    pass


class SettingsError(ScannerError):
    """The settings file exists but cannot be read."""
    pass


class CommandError(ScannerError):
    """Invalid administrative command input. The message is shown to the user."""
    pass


class SingletonBotError(ScannerError):
    """Raised when another scanner instance is already running."""
    pass
