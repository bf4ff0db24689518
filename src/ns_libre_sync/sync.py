"""Orquestación de una corrida: leer, autenticar, transferir, guardar cursor."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from ns_libre_sync.errors import AuthError
from ns_libre_sync.model import (
    EffectiveConfig,
    Entry,
    EntryBatch,
    EntryKind,
    SyncCursor,
    SyncResult,
    SyncStatus,
    TimeWindow,
)
from ns_libre_sync.sinks.base import EntrySink
from ns_libre_sync.sources.base import EntrySource
from ns_libre_sync.storage import CursorStore

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Runs one fetch → authenticate → transfer → checkpoint pipeline.

    The cursor is written only once the sink accepted the transfer. Fetch
    and transfer errors propagate with the cursor untouched, so the next
    run fetches the same window again.
    """

    def __init__(
        self,
        source: EntrySource,
        sink: EntrySink,
        cursor_store: CursorStore,
        *,
        concurrent_fetch: bool = False,
    ) -> None:
        """Create the orchestrator.

        Args:
            source: Where entries are read from.
            sink: Where entries are transferred to.
            cursor_store: Persists the cursor after a committed transfer.
            concurrent_fetch: Fetch the enabled kinds in parallel threads.
        """
        self._source = source
        self._sink = sink
        self._cursor_store = cursor_store
        self._concurrent_fetch = concurrent_fetch

    def run(
        self,
        config: EffectiveConfig,
        window: TimeWindow,
        reset_device: bool = False,
    ) -> SyncResult:
        """Sync ``window`` from the source to the sink.

        Args:
            config: Effective configuration.
            window: Interval to fetch.
            reset_device: Ask the sink to re-register the device id.

        Returns:
            ``NOOP`` when nothing was fetched, ``COMMITTED`` with the new
            cursor otherwise.

        Raises:
            AuthError: If the sink returned no session.
            FetchError: If the source could not be read.
            TransferError: If the sink rejected the batch.
        """
        logger.info("Transfer time period: %s - %s", window.from_iso, window.to_iso)
        batch = self._fetch(config, window)
        counts = batch.counts()

        if batch.is_empty:
            logger.info("No glucose, food or insulin entries found for the period specified")
            return SyncResult(status=SyncStatus.NOOP, window=window, counts=counts)

        session = self._sink.authenticate(
            config.libre_username,
            config.libre_password,
            config.libre_device,
            reset_device,
        )
        if not session:
            raise AuthError("LibreView authentication failed")

        self._sink.transfer(
            config.libre_device,
            session,
            batch.glucose,
            batch.food,
            batch.insulin,
        )

        cursor = SyncCursor(
            last=window.end,
            glucose_entries=batch.glucose,
            food_entries=batch.food,
            insulin_entries=batch.insulin,
        )
        self._cursor_store.save(cursor)
        logger.info("Sync committed, cursor advanced to %s", window.to_iso)
        return SyncResult(
            status=SyncStatus.COMMITTED, window=window, counts=counts, cursor=cursor
        )

    def _fetch(self, config: EffectiveConfig, window: TimeWindow) -> EntryBatch:
        kinds = [kind for kind in EntryKind if config.enabled(kind)]
        fetched: dict[EntryKind, list[Entry]] = {}
        if self._concurrent_fetch and len(kinds) > 1:
            with ThreadPoolExecutor(max_workers=len(kinds)) as pool:
                futures = {
                    kind: pool.submit(self._source.get_entries, kind, window)
                    for kind in kinds
                }
                for kind, future in futures.items():
                    fetched[kind] = future.result()
        else:
            for kind in kinds:
                fetched[kind] = self._source.get_entries(kind, window)
        return EntryBatch.from_kinds(fetched)
