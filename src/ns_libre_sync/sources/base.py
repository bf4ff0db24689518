"""Clases base para fuentes de datos."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ns_libre_sync.model import Entry, EntryKind, TimeWindow


class EntrySource(ABC):
    """Abstract source of glucose/food/insulin entries."""

    @abstractmethod
    def get_entries(self, kind: EntryKind, window: TimeWindow) -> list[Entry]:
        """Fetch the entries of ``kind`` whose timestamps fall in ``window``.

        Args:
            kind: Entry kind to fetch.
            window: Half-open ``[start, end)`` interval.

        Returns:
            Entries ready to be handed to a sink.

        Raises:
            FetchError: If the source cannot be read.
        """
