"""
Ingestion pipeline - reconciles the telemetry snapshot into the store.

Each tick:
1. Fetch: one GET for the full snapshot
2. Diff: load the existing device_ids in one query
3. Write: insert new devices, replace existing ones whose updated_at is
   strictly newer than the freshness index entry
4. Seed: persist settings carried by the snapshot (overwrite for new
   devices, insert-if-absent for existing ones)
5. Index: record the written timestamps, then stamp last_checked

updated_at comparison, not arrival order, decides what gets written: a
replayed or reordered snapshot never regresses a device.
"""

import logging
import threading
import time
from typing import Any, List, Optional, Set

from fleetsync.config import config
from fleetsync.errors import FleetSyncError, StorageError, UpstreamUnavailableError, ValidationError
from fleetsync.freshness import FreshnessIndex
from fleetsync.ingestion.telemetry_client import DeviceSnapshot, TelemetryClient
from fleetsync.models.device_settings import settings_values
from fleetsync.store import DocumentStore
from fleetsync.timestamps import to_storage

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """
    Manages the ingestion lifecycle.

    Coordinates the telemetry client, the document store and the
    freshness index. Can run as a background thread for continuous
    polling.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        store: Optional[DocumentStore] = None,
        freshness: Optional[FreshnessIndex] = None,
    ):
        """
        Initialize the ingestion pipeline.

        Args:
            client: anything with fetch_snapshot() -> list (created from config if None)
            store: document store (default session factory if None)
            freshness: freshness index shared with the change query
        """
        self.client = client if client is not None else TelemetryClient.from_config()
        self.store = store if store is not None else DocumentStore()
        self.freshness = freshness if freshness is not None else FreshnessIndex()

        # One tick at a time: background loop and forced resync share it
        self._tick_lock = threading.Lock()

        # State tracking
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_fetch_time: float = 0
        self._fetch_count: int = 0
        self._error_count: int = 0
        self._skipped_count: int = 0

    def _seed_settings(self, snapshot: DeviceSnapshot, overwrite: bool) -> None:
        """Persist settings carried by a snapshot entry, at version 1."""
        if snapshot.settings is None:
            return

        try:
            values = settings_values(snapshot.settings)
        except ValidationError as e:
            logger.warning(f'Ignoring settings for {snapshot.device_id}: {e}')
            return

        values.update({
            'device_id': snapshot.device_id,
            'updated_at': to_storage(snapshot.updated_at),
            'version': 1,
        })

        try:
            seeded = self.store.seed_settings(values, overwrite=overwrite)
        except StorageError as e:
            # The device row is already written; settings fall back to lazy defaults
            logger.error(f'Failed to seed settings for {snapshot.device_id}: {e}')
            return

        if seeded:
            logger.debug(f'Seeded settings for {snapshot.device_id}')

    def _write_device(self, snapshot: DeviceSnapshot, existing: Set[str]) -> bool:
        """
        Insert or replace one device.

        Returns True when the device was written.
        """
        if snapshot.device_id not in existing:
            self.store.insert_device(snapshot.device_id, snapshot.updated_at, snapshot.attributes)
            existing.add(snapshot.device_id)
            self._seed_settings(snapshot, overwrite=True)
            logger.debug(f'Inserted new device {snapshot.device_id}')
            return True

        if not self.freshness.is_newer(snapshot.device_id, snapshot.updated_at):
            return False

        if not self.store.replace_device(snapshot.device_id, snapshot.updated_at, snapshot.attributes):
            # Deleted between the id scan and the replace
            logger.warning(f'Device {snapshot.device_id} vanished before replace')
            return False

        if not self.store.has_settings(snapshot.device_id):
            self._seed_settings(snapshot, overwrite=False)
        return True

    def process_snapshot(self, entries: List[Any]) -> int:
        """
        Reconcile a raw result_list into the store and the index.

        Returns count of devices written.
        """
        existing = self.store.device_ids()
        written = 0

        for raw in entries:
            snapshot = DeviceSnapshot.from_dict(raw)
            if snapshot is None:
                self._skipped_count += 1
                device_id = raw.get('device_id') if isinstance(raw, dict) else None
                logger.warning(f'Skipping malformed snapshot entry (device_id={device_id!r})')
                continue

            try:
                if not self._write_device(snapshot, existing):
                    continue
            except FleetSyncError as e:
                self._error_count += 1
                logger.error(f'Failed to store device {snapshot.device_id}: {e}')
                continue

            self.freshness.set(snapshot.device_id, snapshot.updated_at)
            written += 1

        return written

    def fetch_and_process(self) -> int:
        """
        Execute one ingestion cycle.

        Returns count of devices written, or -1 on error.
        """
        with self._tick_lock:
            try:
                entries = self.client.fetch_snapshot()
            except UpstreamUnavailableError as e:
                self._error_count += 1
                logger.error(f'Telemetry fetch failed: {e}')
                return -1

            self._last_fetch_time = time.time()
            self._fetch_count += 1

            try:
                written = self.process_snapshot(entries)
            except FleetSyncError as e:
                self._error_count += 1
                logger.error(f'Ingestion error: {e}')
                return -1

            checked = self.freshness.mark_checked()

        logger.info(
            f'Processed {len(entries)} devices, wrote {written}, '
            f'last checked {checked.isoformat()}'
        )
        return written

    def resync(self) -> int:
        """
        Forced resync: drop every stored record and the index, then run
        one ingestion pass from scratch.

        Returns count of devices written, or -1 if the pass failed.
        """
        with self._tick_lock:
            self.store.clear_all()
            self.freshness.clear()
        logger.info('Store and freshness index cleared, resyncing')
        return self.fetch_and_process()

    def run_continuous(self, interval: Optional[float] = None) -> None:
        """
        Run ingestion loop continuously.

        This method blocks - use start_background() for non-blocking.
        """
        interval = interval or config.ingestion.poll_interval
        self._running = True
        self._stop_event.clear()

        logger.info(f'Starting continuous ingestion (interval={interval}s)')

        while self._running:
            try:
                self.fetch_and_process()
            except Exception as e:
                self._error_count += 1
                logger.exception(f'Unexpected ingestion error: {e}')
            if self._stop_event.wait(interval):
                break

        self._running = False
        logger.info('Ingestion stopped')

    def start_background(self, interval: Optional[float] = None) -> None:
        """Start ingestion in background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning('Ingestion already running')
            return

        self._thread = threading.Thread(
            target=self.run_continuous,
            args=(interval,),
            name='ingestion',
            daemon=True,
        )
        self._thread.start()
        logger.info('Background ingestion started')

    def stop(self) -> None:
        """Stop background ingestion."""
        self._running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
        logger.info('Ingestion stopped')

    @property
    def stats(self) -> dict:
        """Get ingestion statistics."""
        return {
            'fetch_count': self._fetch_count,
            'error_count': self._error_count,
            'skipped_count': self._skipped_count,
            'last_fetch_time': self._last_fetch_time,
            'running': self._running,
        }
