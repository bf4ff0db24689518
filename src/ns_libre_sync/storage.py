"""Persistencia JSON para configuración (config.json) y cursor (last.json)."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

from ns_libre_sync.errors import ConfigError
from ns_libre_sync.model import SyncCursor, start_of_utc_day

logger = logging.getLogger(__name__)


class ConfigStore:
    """JSON file holding the persisted configuration."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        """Return the saved configuration, creating ``{}`` on first use.

        Raises:
            ConfigError: If the file is not a JSON object.
        """
        if not self._path.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text("{}", encoding="utf-8")
            logger.info("Created config file at %s", self._path)
            return {}

        try:
            data: Any = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Config file {self._path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {self._path} must contain a JSON object")
        return data

    def save(self, config: Mapping[str, Any]) -> None:
        """Overwrite the file with ``config``."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(dict(config), indent="\t"), encoding="utf-8")


class CursorStore:
    """JSON file holding the last successfully synced timestamp."""

    def __init__(
        self,
        path: Path,
        today: Callable[[], datetime] = start_of_utc_day,
    ) -> None:
        """Create the store.

        Args:
            path: Location of ``last.json``.
            today: Returns the default ``last`` for a missing cursor.
        """
        self._path = path
        self._today = today

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SyncCursor:
        """Read the cursor.

        A missing file yields the default cursor, which is written right
        away. An unreadable file is reported and left as is; the default
        cursor is returned for this run only.
        """
        default = SyncCursor(last=self._today())
        if not self._path.exists():
            self._write(default)
            logger.info("Created new cursor file at %s", self._path)
            return default

        try:
            cursor = SyncCursor.from_json(
                json.loads(self._path.read_text(encoding="utf-8"))
            )
        except (ValueError, OverflowError) as exc:  # JSONDecodeError is a ValueError
            logger.error(
                "Error reading cursor file %s: %s (file left untouched)",
                self._path,
                exc,
            )
            return default

        logger.info("Retrieved cursor: last=%s", cursor.to_json()["last"])
        return cursor

    def save(self, cursor: SyncCursor) -> None:
        """Overwrite the cursor file. Call only after a confirmed transfer."""
        self._write(cursor)

    def _write(self, cursor: SyncCursor) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(cursor.to_json(), indent=2), encoding="utf-8")
