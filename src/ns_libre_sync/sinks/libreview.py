"""Autenticación y carga de mediciones en LibreView."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import requests

from ns_libre_sync.errors import TransferError
from ns_libre_sync.model import Entry
from ns_libre_sync.sinks.base import EntrySink

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api-eu.libreview.io"
GATEWAY_TYPE = "FSLibreLink.Android"
DOMAIN = "Libreview"

_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
    "User-Agent": "okhttp/4.9.0",
}

_DEVICE_HEADER = {
    "hardwareDescriptor": "Pixel 6",
    "osVersion": "33",
    "modelName": "com.freestylelibre.app.de",
    "osType": "Android",
    "hardwareName": "Google Pixel 6",
}

_CAPABILITIES = [
    "scheduledContinuousGlucose",
    "unscheduledContinuousGlucose",
    "bloodGlucose",
    "insulin",
    "food",
    "generic-com.abbottdiabetescare.informatics.exercise",
    "generic-com.abbottdiabetescare.informatics.customnote",
    "generic-com.abbottdiabetescare.informatics.ondemandalarm.low",
    "generic-com.abbottdiabetescare.informatics.ondemandalarm.high",
    "generic-com.abbottdiabetescare.informatics.ondemandalarm.projectedlow",
    "generic-com.abbottdiabetescare.informatics.ondemandalarm.projectedhigh",
    "generic-com.abbottdiabetescare.informatics.sensorstart",
    "generic-com.abbottdiabetescare.informatics.error",
    "generic-com.abbottdiabetescare.informatics.isfGlucoseAlarm",
    "generic-com.abbottdiabetescare.informatics.alarmSetting",
]


@dataclass(frozen=True)
class LibreSession:
    """Authenticated LibreView session."""

    user_token: str


class LibreViewSink(EntrySink):
    """LibreView measurement uploader."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout

    def authenticate(
        self,
        username: str,
        password: str,
        device_id: str,
        reset_device: bool,
    ) -> LibreSession | None:
        """Log in as ``device_id``; ``reset_device`` re-registers the device.

        Returns:
            The session, or None if LibreView refused the login.
        """
        body = {
            "DeviceId": device_id,
            "GatewayType": GATEWAY_TYPE,
            "SetDevice": reset_device,
            "UserName": username,
            "Domain": DOMAIN,
            "Password": password,
        }
        try:
            data = self._post("/lsl/api/nisperson/getauthentication", body)
        except (requests.RequestException, ValueError) as exc:
            logger.error("LibreView authentication request failed: %s", exc)
            return None

        if data.get("status") != 0:
            logger.error("LibreView authentication rejected: status=%s", data.get("status"))
            return None
        result = data.get("result")
        token = result.get("UserToken") if isinstance(result, dict) else None
        if not token:
            logger.error("LibreView authentication returned no user token")
            return None

        logger.info("Authenticated against LibreView as device %s", device_id)
        return LibreSession(user_token=str(token))

    def transfer(
        self,
        device_id: str,
        session: LibreSession,
        glucose: Sequence[Entry],
        food: Sequence[Entry],
        insulin: Sequence[Entry],
    ) -> None:
        """Upload one batch of measurements.

        Raises:
            TransferError: On HTTP errors or a non-zero LibreView status.
        """
        body = {
            "UserToken": session.user_token,
            "GatewayType": GATEWAY_TYPE,
            "DeviceData": {
                "header": {"device": {**_DEVICE_HEADER, "uniqueIdentifier": device_id}},
                "measurementLog": {
                    "capabilities": _CAPABILITIES,
                    "bloodGlucoseEntries": [],
                    "genericEntries": [],
                    "scheduledContinuousGlucoseEntries": [dict(e) for e in glucose],
                    "unscheduledContinuousGlucoseEntries": [],
                    "insulinEntries": [dict(e) for e in insulin],
                    "foodEntries": [dict(e) for e in food],
                },
            },
            "Domain": DOMAIN,
        }
        try:
            data = self._post("/lsl/api/measurements", body)
        except (requests.RequestException, ValueError) as exc:
            raise TransferError(f"LibreView transfer failed: {exc}") from exc

        if data.get("status") != 0:
            raise TransferError(f"LibreView rejected the transfer: status={data.get('status')}")
        logger.info(
            "Transferred %d glucose, %d food and %d insulin entries to LibreView",
            len(glucose),
            len(food),
            len(insulin),
        )

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        response = self._session.post(
            f"{self._base_url}{path}",
            json=body,
            headers=_HEADERS,
            timeout=self._timeout,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"unexpected LibreView response for {path}")
        return data
