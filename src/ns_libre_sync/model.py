"""Modelos tipados: configuración efectiva, cursor, ventana y resultados."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from dateutil import parser as date_parser
from dateutil import tz

from ns_libre_sync.errors import ConfigError

Entry = Mapping[str, Any]

CONFIG_KEYS: dict[str, str] = {
    "nightscout_url": "nightscoutUrl",
    "nightscout_token": "nightscoutToken",
    "libre_username": "libreUsername",
    "libre_password": "librePassword",
    "libre_device": "libreDevice",
    "glucose": "glucose",
    "food": "food",
    "insulin": "insulin",
    "auto": "auto",
}

_SECRET_KEYS = ("librePassword", "nightscoutToken")


class EntryKind(str, Enum):
    """Kinds of records copied from the source to the sink."""

    GLUCOSE = "glucose"
    FOOD = "food"
    INSULIN = "insulin"


class RunMode(str, Enum):
    """How the current run was started."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class SyncStatus(str, Enum):
    """Terminal states of a run that did not raise."""

    NOOP = "noop"
    COMMITTED = "committed"


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(tz=tz.UTC)


def start_of_utc_day(now: datetime | None = None) -> datetime:
    """Midnight (UTC) of the day containing ``now``."""
    current = (now or utc_now()).astimezone(tz.UTC)
    return current.replace(hour=0, minute=0, second=0, microsecond=0)


def format_utc(value: datetime) -> str:
    """Format as ISO-8601 UTC with millisecond precision and ``Z`` suffix.

    Matches the timestamps written by earlier versions of ``last.json``.
    """
    utc = value.astimezone(tz.UTC)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_utc(text: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive timestamps are read as UTC.

    Raises:
        ValueError: If ``text`` is not an ISO-8601 timestamp.
    """
    parsed = date_parser.isoparse(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz.UTC)
    return parsed.astimezone(tz.UTC)


@dataclass(frozen=True)
class EffectiveConfig:
    """Merged, run-ready configuration."""

    nightscout_url: str
    nightscout_token: str | None
    libre_username: str
    libre_password: str
    libre_device: str
    glucose: bool = True
    food: bool = True
    insulin: bool = True
    auto: bool = False

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> EffectiveConfig:
        """Build a config from a persisted/merged JSON mapping.

        Args:
            raw: Mapping keyed by the persisted names (``nightscoutUrl``...).

        Returns:
            Validated configuration.

        Raises:
            ConfigError: If a required field is empty or a toggle is not boolean.
        """
        for attr in ("nightscout_url", "libre_username", "libre_password", "libre_device"):
            key = CONFIG_KEYS[attr]
            value = raw.get(key)
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"Missing required setting: {key}")

        token = raw.get("nightscoutToken")
        if token is not None and not isinstance(token, str):
            raise ConfigError("nightscoutToken must be a string")

        flags = {
            attr: _flag(raw, CONFIG_KEYS[attr], default=attr != "auto")
            for attr in ("glucose", "food", "insulin", "auto")
        }
        return cls(
            nightscout_url=str(raw["nightscoutUrl"]).strip(),
            nightscout_token=token or None,
            libre_username=str(raw["libreUsername"]).strip(),
            libre_password=str(raw["librePassword"]),
            libre_device=str(raw["libreDevice"]).strip(),
            **flags,
        )

    def to_mapping(self) -> dict[str, Any]:
        """Return the persisted JSON form."""
        return {key: getattr(self, attr) for attr, key in CONFIG_KEYS.items()}

    def masked(self) -> dict[str, Any]:
        """Mapping safe to print in logs (secrets hidden)."""
        out = self.to_mapping()
        for key in _SECRET_KEYS:
            if out.get(key):
                out[key] = "***"
        return out

    def enabled(self, kind: EntryKind) -> bool:
        """Whether ``kind`` is transferred by this configuration."""
        return bool(getattr(self, kind.value))


def _flag(raw: Mapping[str, Any], key: str, *, default: bool) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"{key} must be true/false (or 1/0), got {value!r}")


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval ``[start, end)`` to fetch."""

    start: datetime
    end: datetime

    @property
    def from_iso(self) -> str:
        return format_utc(self.start)

    @property
    def to_iso(self) -> str:
        return format_utc(self.end)


@dataclass(frozen=True)
class SyncCursor:
    """Persisted progress of automatic runs.

    ``last`` is the inclusive lower bound of the next automatic window. The
    entry tuples hold the most recent transferred batch for operator
    inspection only.
    """

    last: datetime
    glucose_entries: tuple[Entry, ...] | None = None
    food_entries: tuple[Entry, ...] | None = None
    insulin_entries: tuple[Entry, ...] | None = None

    @classmethod
    def default(cls, now: datetime | None = None) -> SyncCursor:
        """Cursor used on the first-ever run: start of the current UTC day."""
        return cls(last=start_of_utc_day(now))

    @classmethod
    def from_json(cls, data: Any) -> SyncCursor:
        """Parse the ``last.json`` object.

        Raises:
            ValueError: If the payload is not an object with a valid ``last``.
        """
        if not isinstance(data, dict):
            raise ValueError("cursor file must contain a JSON object")
        last = data.get("last")
        if not isinstance(last, str):
            raise ValueError("cursor file has no 'last' timestamp")
        return cls(
            last=parse_utc(last),
            glucose_entries=_entries(data.get("glucoseEntries")),
            food_entries=_entries(data.get("foodEntries")),
            insulin_entries=_entries(data.get("insulinEntries")),
        )

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {"last": format_utc(self.last)}
        for key, entries in (
            ("glucoseEntries", self.glucose_entries),
            ("foodEntries", self.food_entries),
            ("insulinEntries", self.insulin_entries),
        ):
            if entries is not None:
                out[key] = [dict(entry) for entry in entries]
        return out


def _entries(raw: Any) -> tuple[Entry, ...] | None:
    if not isinstance(raw, list):
        return None
    return tuple(item for item in raw if isinstance(item, dict))


@dataclass(frozen=True)
class EntryBatch:
    """Entries fetched for one window, one tuple per kind."""

    glucose: tuple[Entry, ...] = ()
    food: tuple[Entry, ...] = ()
    insulin: tuple[Entry, ...] = ()

    @classmethod
    def from_kinds(cls, fetched: Mapping[EntryKind, Sequence[Entry]]) -> EntryBatch:
        return cls(
            glucose=tuple(fetched.get(EntryKind.GLUCOSE, ())),
            food=tuple(fetched.get(EntryKind.FOOD, ())),
            insulin=tuple(fetched.get(EntryKind.INSULIN, ())),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.glucose or self.food or self.insulin)

    def counts(self) -> dict[str, int]:
        return {
            EntryKind.GLUCOSE.value: len(self.glucose),
            EntryKind.FOOD.value: len(self.food),
            EntryKind.INSULIN.value: len(self.insulin),
        }


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a run that finished without raising."""

    status: SyncStatus
    window: TimeWindow
    counts: dict[str, int] = field(default_factory=dict)
    cursor: SyncCursor | None = None
