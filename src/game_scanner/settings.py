"""
Persisted bot settings.

The settings file is a JSON document:

    {
        "token": "...",
        "owner": 123456789,
        "channels": {
            "987654321": {"types": ["AOC", "TL"]}
        }
    }

It is read once at startup and rewritten after every subscription change.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Union

from game_scanner.exceptions import InvalidTokenError, SettingsError
from game_scanner.feed.models import GameCategory

logger = logging.getLogger(__name__)

TOKEN_PLACEHOLDER = "PUT_TOKEN_HERE"


@dataclass
class Settings:
    token: str = TOKEN_PLACEHOLDER
    owner: int = 0
    # channel id -> subscribed categories
    channels: dict[int, set[GameCategory]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "owner": self.owner,
            "channels": {
                str(channel_id): {"types": [c.name for c in GameCategory if c in types]}
                for channel_id, types in sorted(self.channels.items())
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "Settings":
        channels: dict[int, set[GameCategory]] = {}

        raw_channels = data.get("channels") or {}
        if not isinstance(raw_channels, Mapping):
            raise SettingsError("channels must be an object keyed by channel id")

        for key, entry in raw_channels.items():
            try:
                channel_id = int(key)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring channel with invalid id {key!r} in settings")
                continue

            if not isinstance(entry, Mapping):
                logger.warning(f"Ignoring malformed entry for channel {channel_id} in settings")
                continue

            types = set()
            for name in entry.get("types") or []:
                category = GameCategory.from_name(str(name))
                if category is None:
                    logger.warning(f"Ignoring unknown game type {name!r} for channel {channel_id}")
                else:
                    types.add(category)
            if types:
                channels[channel_id] = types

        owner = data.get("owner") or 0
        try:
            owner = int(owner)
        except (TypeError, ValueError):
            raise SettingsError(f"Owner must be a Discord user id, got {owner!r}")

        return cls(
            token=str(data.get("token") or TOKEN_PLACEHOLDER),
            owner=owner,
            channels=channels,
        )


class SettingsStore:
    """
    Loads and saves Settings at a fixed path.

    Usage:
        store = SettingsStore("settings.json")
        settings = store.load()
        registry = DestinationRegistry(..., on_change=store.save_channels)
    """

    def __init__(self, path: Union[str, Path] = "settings.json"):
        self._path = Path(path)
        self._settings = Settings()
        # env overrides are never written back to the file
        self._token_override: Optional[str] = None
        self._owner_override: Optional[int] = None
        # saved channels that could not be resolved at startup
        self._held: dict[int, set[GameCategory]] = {}

    @property
    def path(self) -> Path:
        return self._path

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def token(self) -> str:
        return self._token_override or self._settings.token

    @property
    def owner(self) -> int:
        return self._owner_override or self._settings.owner

    def load(self, token_override: Optional[str] = None, owner_override: Optional[int] = None) -> Settings:
        """
        Read the settings file, creating it with a placeholder token if missing.

        Raises:
            SettingsError: If the file is not a valid settings document
            InvalidTokenError: If no usable token is configured
        """
        if not self._path.exists():
            logger.info(f"Settings file {self._path} not found, creating it")
            self._settings = Settings()
            self.save()
        else:
            try:
                with self._path.open("r", encoding="utf-8") as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise SettingsError(f"{self._path} is not valid JSON: {e}") from e
            if not isinstance(data, dict):
                raise SettingsError(f"{self._path} must hold a JSON object")

            try:
                self._settings = Settings.from_dict(data)
            except SettingsError as e:
                raise SettingsError(f"{self._path}: {e}") from e
            logger.info(
                f"Read settings from {self._path}: {len(self._settings.channels)} channels, "
                f"owner={self._settings.owner or 'unset'}"
            )

        self._token_override = token_override or None
        self._owner_override = owner_override or None

        token = self.token.strip()
        if not token or token == TOKEN_PLACEHOLDER:
            raise InvalidTokenError(f"Replace the placeholder token in {self._path} or set DISCORD_TOKEN")

        return self._settings

    def save(self) -> None:
        """Write the settings atomically."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self._path.parent), prefix=".settings-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._settings.to_dict(), f, indent=2)
            os.replace(tmp_path, self._path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.info(f"Wrote settings to {self._path}")

    def hold_channels(self, channels: Mapping[int, set]) -> None:
        """
        Keep channels that exist in the file but are not subscribed right now.

        Held channels are written back by save_channels until a subscription
        change names them.
        """
        self._held = {channel_id: set(types) for channel_id, types in channels.items() if types}

    def release_held(self, channel_id: int) -> set:
        """Stop holding a channel, returning its saved categories (empty if not held)."""
        return self._held.pop(channel_id, set())

    def save_channels(self, channels: Mapping[int, frozenset]) -> None:
        """Replace the persisted subscriptions and write the file."""
        for channel_id in channels:
            self._held.pop(channel_id, None)

        merged = {channel_id: set(types) for channel_id, types in self._held.items()}
        merged.update(
            (channel_id, set(types)) for channel_id, types in channels.items() if types
        )
        self._settings.channels = merged
        self.save()
