"""Lectura de glucosa, comidas e insulina desde la API REST de Nightscout."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any

import requests
from dateutil import tz

from ns_libre_sync.errors import FetchError
from ns_libre_sync.model import Entry, EntryKind, TimeWindow, parse_utc
from ns_libre_sync.sources.base import EntrySource

logger = logging.getLogger(__name__)

MAX_COUNT = 131072

# Record numbers are "<prefix><YYYYmmddHHMMSSfff>" so kinds never collide.
_RECORD_PREFIX = {
    EntryKind.GLUCOSE: "1",
    EntryKind.FOOD: "2",
    EntryKind.INSULIN: "4",
}


class NightscoutSource(EntrySource):
    """Nightscout v1 API reader."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Create the source.

        Args:
            base_url: Site URL, e.g. ``https://my-site.herokuapp.com``.
            token: Access token (``token`` query parameter), if the site needs one.
            session: HTTP session shared by every call. Without one, each
                thread opens its own session, so concurrent fetches never
                share a connection pool.
            timeout: Per-request timeout in seconds.
        """
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._shared_session = session
        self._local = threading.local()
        self._timeout = timeout

    def get_entries(self, kind: EntryKind, window: TimeWindow) -> list[Entry]:
        """Fetch and convert the records of ``kind`` in ``window``."""
        if kind is EntryKind.GLUCOSE:
            raw = self._get(
                "/api/v1/entries.json",
                {
                    "find[dateString][$gte]": window.from_iso,
                    "find[dateString][$lt]": window.to_iso,
                },
            )
            out = [_glucose_entry(item) for item in raw if _is_sgv(item)]
        else:
            field = "carbs" if kind is EntryKind.FOOD else "insulin"
            raw = self._get(
                "/api/v1/treatments.json",
                {
                    "find[created_at][$gte]": window.from_iso,
                    "find[created_at][$lt]": window.to_iso,
                    f"find[{field}][$gt]": 0,
                },
            )
            convert = _food_entry if kind is EntryKind.FOOD else _insulin_entry
            out = [convert(item) for item in raw if _number(item.get(field))]

        _deduplicate_record_numbers(out)
        logger.info("Fetched %d %s entries from Nightscout", len(out), kind.value)
        return out

    def _http(self) -> requests.Session:
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    def _get(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        query = {**params, "count": MAX_COUNT}
        if self._token:
            query["token"] = self._token
        url = f"{self._base_url}{path}"
        try:
            response = self._http().get(
                url,
                params=query,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            raise FetchError(f"Nightscout request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise FetchError(f"Nightscout returned invalid JSON for {path}") from exc

        if not isinstance(data, list):
            raise FetchError(f"Nightscout returned {type(data).__name__} for {path}, expected a list")
        return [item for item in data if isinstance(item, dict)]


def _is_sgv(item: dict[str, Any]) -> bool:
    return item.get("type", "sgv") == "sgv" and _number(item.get("sgv")) is not None


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _timestamp(item: dict[str, Any]) -> datetime:
    """Moment of a record: epoch milliseconds (``date``/``mills``) or ISO string."""
    for key in ("date", "mills"):
        value = item.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value / 1000, tz=tz.UTC)
    for key in ("dateString", "created_at"):
        value = item.get(key)
        if isinstance(value, str) and value:
            try:
                return parse_utc(value)
            except ValueError as exc:
                raise FetchError(f"Unparsable Nightscout timestamp {value!r}") from exc
    raise FetchError(f"Nightscout record without timestamp: {item.get('_id', item)!r}")


def _base_entry(kind: EntryKind, moment: datetime) -> dict[str, Any]:
    return {
        "extendedProperties": {
            "factoryTimestamp": moment.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
        },
        "recordNumber": int(
            _RECORD_PREFIX[kind]
            + moment.strftime("%Y%m%d%H%M%S")
            + f"{moment.microsecond // 1000:03d}"
        ),
        "timestamp": moment.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
    }


def _glucose_entry(item: dict[str, Any]) -> Entry:
    moment = _timestamp(item)
    value = _number(item.get("sgv")) or 0.0
    entry = _base_entry(EntryKind.GLUCOSE, moment)
    entry["extendedProperties"].update(
        {
            "highOutOfRange": "true" if value >= 400 else "false",
            "lowOutOfRange": "true" if value <= 40 else "false",
            "isFirstAfterTimeChange": False,
            "canMerge": "true",
        }
    )
    entry["valueInMgPerDl"] = int(round(value))
    return entry


def _food_entry(item: dict[str, Any]) -> Entry:
    entry = _base_entry(EntryKind.FOOD, _timestamp(item))
    entry["gramsCarbs"] = _number(item.get("carbs"))
    entry["foodType"] = "Unknown"
    return entry


def _insulin_entry(item: dict[str, Any]) -> Entry:
    entry = _base_entry(EntryKind.INSULIN, _timestamp(item))
    event = str(item.get("eventType") or "")
    entry["units"] = _number(item.get("insulin"))
    entry["insulinType"] = "LongActing" if "basal" in event.lower() else "RapidActing"
    return entry


def _deduplicate_record_numbers(entries: list[Entry]) -> None:
    """Bump colliding record numbers so each one is unique in the batch."""
    seen: set[int] = set()
    for entry in entries:
        number = entry["recordNumber"]
        while number in seen:
            number += 1
        seen.add(number)
        entry["recordNumber"] = number  # type: ignore[index]
