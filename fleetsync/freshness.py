"""
In-memory freshness index for cheap change polling.

Maps each device_id to the source timestamp of the last telemetry the
ingestion loop wrote for it, plus one process-wide "last checked" stamp
set at the end of every ingestion pass.

Design rationale:
Scanning the device collection on every client poll does not scale with
the number of polling dashboards. The index answers "has anything changed
since T" from memory, so the store is only queried for the changed subset.

Many request threads read the index while the single ingestion thread
writes it, hence the reader/writer lock. The lock is only ever held around
the dictionary or timestamp access, never around network or store I/O.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, Optional

from fleetsync.timestamps import as_utc, format_timestamp, utcnow

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """
    Many concurrent readers or one writer.

    Writers are preferred: once a writer is waiting, new readers queue
    behind it so a steady stream of polls cannot starve ingestion.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class FreshnessIndex:
    """
    Thread-safe device_id -> last update timestamp map.

    Entries for devices never seen are absent, not zero-valued.
    """

    def __init__(self, last_checked: Optional[datetime] = None):
        self._lock = ReadWriteLock()
        self._entries: Dict[str, datetime] = {}
        self._last_checked = self._truncate(last_checked or utcnow())

    @staticmethod
    def _truncate(value: datetime) -> datetime:
        # Clients echo lastUpdate back at second precision
        return as_utc(value).replace(microsecond=0)

    def get(self, device_id: str) -> Optional[datetime]:
        """Last recorded timestamp for a device, or None if never seen."""
        with self._lock.read():
            return self._entries.get(device_id)

    def set(self, device_id: str, timestamp: datetime) -> None:
        timestamp = as_utc(timestamp)
        with self._lock.write():
            self._entries[device_id] = timestamp

    def is_newer(self, device_id: str, timestamp: datetime) -> bool:
        """True if timestamp is strictly after the recorded one (or none is recorded)."""
        recorded = self.get(device_id)
        return recorded is None or as_utc(timestamp) > recorded

    @property
    def last_checked(self) -> datetime:
        with self._lock.read():
            return self._last_checked

    def mark_checked(self, timestamp: Optional[datetime] = None) -> datetime:
        """Stamp the end of an ingestion pass. Returns the stored value."""
        stamped = self._truncate(timestamp or utcnow())
        with self._lock.write():
            self._last_checked = stamped
        return stamped

    def clear(self) -> None:
        """Forget every device; last_checked is kept."""
        with self._lock.write():
            self._entries.clear()
        logger.info('Freshness index cleared')

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)

    def __contains__(self, device_id: str) -> bool:
        with self._lock.read():
            return device_id in self._entries

    @property
    def stats(self) -> dict:
        """Get index statistics."""
        with self._lock.read():
            return {
                'entries': len(self._entries),
                'last_checked': format_timestamp(self._last_checked),
            }
