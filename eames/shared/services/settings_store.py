"""Global key/value settings stored in ~/.eames/settings.json.

Holds provider selection, the default permission mode, and cost history.
Values are arbitrary JSON. A settings file left in the working directory
by older releases (./.eames/settings.json) is migrated on first load.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from eames.shared.services.durable_write import atomic_write_json

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"
LEGACY_SETTINGS_PATH = Path(".eames") / SETTINGS_FILENAME


def default_settings_path() -> Path:
    return Path.home() / ".eames" / SETTINGS_FILENAME


class SettingsStore:
    """Read-modify-write access to the settings file."""

    def __init__(
        self,
        path: Path | None = None,
        legacy_path: Path | None = LEGACY_SETTINGS_PATH,
    ) -> None:
        self._path = Path(path) if path is not None else default_settings_path()
        self._legacy_path = Path(legacy_path) if legacy_path is not None else None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        """Return all settings, or {} when missing or unreadable."""
        data = self._read(self._path)
        if data is not None:
            return data

        if self._legacy_path is not None and self._legacy_path.exists():
            legacy = self._read(self._legacy_path)
            if legacy is not None:
                logger.info(
                    "Migrating settings from %s to %s",
                    self._legacy_path, self._path,
                )
                self.save(legacy)
                return legacy
        return {}

    def save(self, settings: dict[str, Any]) -> bool:
        try:
            atomic_write_json(self._path, settings)
        except (OSError, TypeError, ValueError):
            logger.warning("Failed to save settings to %s", self._path, exc_info=True)
            return False
        return True

    def get(self, key: str, default: Any = None) -> Any:
        settings = self.load()
        return settings[key] if key in settings else default

    def set(self, key: str, value: Any) -> bool:
        settings = self.load()
        settings[key] = value
        return self.save(settings)

    def delete(self, key: str) -> bool:
        settings = self.load()
        if key not in settings:
            return False
        del settings[key]
        return self.save(settings)

    @staticmethod
    def _read(path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Failed to load settings from %s", path)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object settings file %s", path)
            return None
        return data
