"""Clases base para destinos de datos."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from ns_libre_sync.model import Entry


class EntrySink(ABC):
    """Abstract sink: authenticate, then transfer a batch."""

    @abstractmethod
    def authenticate(
        self,
        username: str,
        password: str,
        device_id: str,
        reset_device: bool,
    ) -> Any:
        """Open a session on the sink.

        Returns:
            An opaque session, or a falsy value when authentication failed.
        """

    @abstractmethod
    def transfer(
        self,
        device_id: str,
        session: Any,
        glucose: Sequence[Entry],
        food: Sequence[Entry],
        insulin: Sequence[Entry],
    ) -> None:
        """Upload one batch.

        Raises:
            TransferError: If the sink did not accept the batch.
        """
