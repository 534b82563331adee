from __future__ import annotations

import contextlib
import logging
import os
import tempfile
import threading
from pathlib import Path

from pydantic import ValidationError

from quote_ticker.config.ticker import Settings, normalize_settings

logger = logging.getLogger("quote_ticker.config")


class SettingsStore:
    """JSON file holding the user's ticker settings."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> Settings:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return normalize_settings(Settings())
        except OSError:
            logger.warning("settings_read_failed", exc_info=True)
            return normalize_settings(Settings())
        try:
            settings = Settings.model_validate_json(raw)
        except ValidationError:
            logger.warning("settings_invalid", exc_info=True)
            return normalize_settings(Settings())
        return normalize_settings(settings)

    def write(self, settings: Settings) -> Settings:
        settings = normalize_settings(settings)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".settings-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(settings.model_dump_json(indent=2))
            os.replace(tmp, self._path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
            raise
        return settings


class SettingsCell:
    """Shared settings value.

    Readers get a deep copy taken under the lock, so nothing downstream ever
    holds the lock across network I/O or sees a half-updated value.
    """

    def __init__(self, settings: Settings, *, store: SettingsStore | None = None) -> None:
        self._lock = threading.Lock()
        self._settings = normalize_settings(settings)
        self._store = store

    @classmethod
    def from_store(cls, store: SettingsStore) -> SettingsCell:
        return cls(store.read(), store=store)

    def snapshot(self) -> Settings:
        with self._lock:
            return self._settings.model_copy(deep=True)

    def replace(self, settings: Settings) -> None:
        settings = normalize_settings(settings)
        with self._lock:
            self._settings = settings

    def commit(self, settings: Settings) -> Settings:
        """Persist then publish; store errors propagate and leave the cell untouched."""
        if self._store is not None:
            settings = self._store.write(settings)
        else:
            settings = normalize_settings(settings)
        with self._lock:
            self._settings = settings
        return settings.model_copy(deep=True)
