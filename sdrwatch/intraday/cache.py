"""In-memory TTL cache for cumulative end-of-day reports.

Entries are keyed by (partition, report date) and expire ``ttl_seconds``
after they were stored.  Empty reports are never cached, so a day that had
not been published yet is fetched again on the next request.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date
from typing import Callable

from sdrwatch.config import Settings, get_settings
from sdrwatch.intraday.base import Partition, TradeRecord

logger = logging.getLogger("sdrwatch.intraday.cache")


class HistoryCache:
    """Per-partition, per-day cache of cumulative report rows."""

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        s = settings or get_settings()
        self._ttl = s.historical_cache_ttl_seconds
        self._clock = clock
        # (partition key, date) -> (stored at, rows)
        self._entries: dict[tuple[str, date], tuple[float, tuple[TradeRecord, ...]]] = {}
        self._lock = threading.Lock()

    def get(self, partition: Partition, report_date: date) -> list[TradeRecord] | None:
        """Return the cached rows for a day, or None if absent or expired."""
        key = (partition.key, report_date)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, rows = entry
            if self._clock() - stored_at > self._ttl:
                del self._entries[key]
                return None
            return list(rows)

    def set(self, partition: Partition, report_date: date, rows: list[TradeRecord]) -> None:
        if not rows:
            return
        with self._lock:
            self._entries[(partition.key, report_date)] = (self._clock(), tuple(rows))
        logger.debug(
            "Cached %d rows for %s %s", len(rows), partition, report_date.isoformat()
        )

    def clear(self) -> int:
        """Drop every entry.  Returns the number of entries removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        logger.info("Cleared history cache (%d entries)", removed)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
