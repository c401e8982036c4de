"""Server-side sync coordinator for intraday slices.

Coordinates the catch-up workflow for one partition:
1. Discover the slice ids published today
2. Work out which ones are newer than the caller's last known id and
   not yet applied
3. Fetch and apply them one at a time, in ascending id order
4. Skip any slice that fails, is missing, or decodes to nothing; it is
   retried on the next cycle because it was never marked applied
5. Return the store delta since the caller's last known id

The coordinator keeps no durable state of its own; everything lives in the
injected BatchStore, plus a TTL cache of cumulative reports for historical
ranges.  Pure reads (get_all, get_since, get_metadata) never touch the
network.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime

from sdrwatch.intraday.base import (
    Partition,
    SliceNotFound,
    SliceOk,
    SliceSource,
    SliceTransientFailure,
    TradeRecord,
)
from sdrwatch.intraday.cache import HistoryCache
from sdrwatch.intraday.dates import business_dates
from sdrwatch.intraday.mock import generate_mock_batch
from sdrwatch.intraday.store import BatchDelta, BatchStore, StoreMetadata

logger = logging.getLogger("sdrwatch.intraday.coordinator")

#: Size of the first batch used to seed a partition in mock mode
MOCK_SEED_SIZE = 10


@dataclass
class SyncResult:
    """Result of one bootstrap or catch-up cycle.

    Attributes:
        partition:        Partition that was synced.
        records:          Store delta since the caller's last known id.
        slice_ids:        Sorted ids that ``records`` came from.
        applied_ids:      Ids applied during this cycle.
        skipped_ids:      Ids attempted this cycle but left unapplied.
        highest_slice_id: Highest applied id after the cycle.
        last_updated:     Partition's last update time.
        status:           'success', 'partial', or 'error'.
        error:            Error summary when something went wrong.
    """

    partition: Partition
    records: list[TradeRecord] = field(default_factory=list)
    slice_ids: list[int] = field(default_factory=list)
    applied_ids: list[int] = field(default_factory=list)
    skipped_ids: list[int] = field(default_factory=list)
    highest_slice_id: int = 0
    last_updated: datetime | None = None
    status: str = "success"
    error: str | None = None


@dataclass
class HistoryResult:
    records: list[TradeRecord]
    cache_hit: bool = False
    cached_days: int = 0


class SyncCoordinator:
    """Drive discover → fetch → apply cycles against a BatchStore.

    Cycles for the same partition are serialized with a per-partition
    asyncio.Lock, so overlapping requests never fetch the same slice twice.

    Usage::

        coordinator = SyncCoordinator(store=BatchStore(), source=DtccSliceSource())
        await coordinator.bootstrap(partition)
        result = await coordinator.catch_up(partition, since_id=last_known)
    """

    def __init__(
        self,
        store: BatchStore,
        source: SliceSource,
        rng: random.Random | None = None,
        history_cache: HistoryCache | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store:  The accumulation store (shared by every request).
            source: Remote feed to discover and fetch slices from.
            rng:    Random source for mock batches (seed it in tests).
            history_cache: Cache for cumulative reports (a fresh one by default).
        """
        self._store = store
        self._source = source
        self._rng = rng or random.Random()
        self._history_cache = history_cache or HistoryCache()
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def store(self) -> BatchStore:
        return self._store

    @property
    def history_cache(self) -> HistoryCache:
        return self._history_cache

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def bootstrap(self, partition: Partition, seed_id: int | None = None) -> SyncResult:
        """Make sure a partition has a non-empty baseline.

        If the partition already holds batches this is a no-op.  Otherwise the
        earliest available id at or above ``seed_id`` is fetched (falling back
        to the earliest available id at all), trying later ids until one
        applies.

        Args:
            partition: Partition to seed.
            seed_id:   Preferred first slice (defaults to the earliest).

        Returns:
            SyncResult whose records are the full snapshot after bootstrap.
        """
        async with self._lock_for(partition):
            result = SyncResult(partition=partition)
            if self._store.metadata(partition).batch_count > 0:
                return self._finish(result, since_id=0, errors=[])

            errors: list[str] = []
            try:
                available = await self._source.discover_slices(partition)
                floor = seed_id or 0
                candidates = [i for i in available if i >= floor] or available
                if not candidates:
                    logger.info("Bootstrap: no slices published yet for %s", partition)
                for slice_id in candidates:
                    if await self._apply_slice(partition, slice_id, result, errors):
                        break
            except Exception as exc:
                logger.exception("Bootstrap failed for %s", partition)
                errors.append(f"Bootstrap failed: {exc}")

            return self._finish(result, since_id=0, errors=errors)

    async def catch_up(self, partition: Partition, since_id: int) -> SyncResult:
        """Fetch and apply every published slice newer than ``since_id``.

        Slices are applied strictly in ascending id order.  A failing slice
        is skipped for this cycle without blocking later ids.  Exceptions are
        caught here and reported in ``SyncResult.error`` next to whatever the
        store already holds.
        """
        async with self._lock_for(partition):
            result = SyncResult(partition=partition)
            errors: list[str] = []
            try:
                available = await self._source.discover_slices(partition)
                work = [
                    i for i in available
                    if i > since_id and not self._store.is_applied(partition, i)
                ]
                if work:
                    logger.info(
                        "Catch-up for %s since %d: fetching %s", partition, since_id, work
                    )
                for slice_id in work:
                    await self._apply_slice(partition, slice_id, result, errors)
            except Exception as exc:
                logger.exception("Catch-up failed for %s", partition)
                errors.append(f"Catch-up failed: {exc}")

            return self._finish(result, since_id=since_id, errors=errors)

    async def full_sync(self, partition: Partition) -> SyncResult:
        return await self.catch_up(partition, 0)

    def reset(self, partition: Partition) -> None:
        self._store.reset(partition)

    # ------------------------------------------------------------------
    # Mock batches (test aid)
    # ------------------------------------------------------------------

    def seed_mock(self, partition: Partition, count: int = MOCK_SEED_SIZE) -> bool:
        """Apply mock batch 1 if the partition is empty."""
        if self._store.metadata(partition).batch_count > 0:
            return False
        logger.info("No data found for %s, generating initial batch", partition)
        records = generate_mock_batch(partition, 1, count, self._rng)
        return self._store.apply_batch(partition, 1, records)

    def generate_mock_batch(self, partition: Partition, count: int | None = None) -> int:
        """Synthesize and apply batch ``highest + 1``.

        Args:
            partition: Partition to extend.
            count:     Number of rows (random 3–7 when omitted).

        Returns:
            The new batch id.
        """
        batch_id = self._store.metadata(partition).highest_applied_batch_id + 1
        size = count if count is not None else self._rng.randint(3, 7)
        logger.info("Generating new mock batch %d for %s", batch_id, partition)
        self._store.apply_batch(
            partition, batch_id, generate_mock_batch(partition, batch_id, size, self._rng)
        )
        return batch_id

    # ------------------------------------------------------------------
    # Pure reads
    # ------------------------------------------------------------------

    def get_all(self, partition: Partition) -> list[TradeRecord]:
        return self._store.snapshot(partition)

    def get_since(self, partition: Partition, since_id: int) -> BatchDelta:
        return self._store.delta(partition, since_id)

    def get_metadata(self, partition: Partition) -> StoreMetadata:
        return self._store.metadata(partition)

    # ------------------------------------------------------------------
    # Historical
    # ------------------------------------------------------------------

    async def fetch_history(
        self, partition: Partition, start_date: date, end_date: date
    ) -> HistoryResult:
        """Return cumulative report rows for every business day in a range.

        Days held in the history cache are served from it; the rest are
        fetched in one bounded fan-out and cached when non-empty.  Rows come
        back in date order.  Nothing touches the intraday store.
        """
        days = business_dates(start_date, end_date)
        by_day: dict[date, list[TradeRecord]] = {}
        missing: list[date] = []
        for day in days:
            cached = self._history_cache.get(partition, day)
            if cached is None:
                missing.append(day)
            else:
                by_day[day] = cached

        if missing:
            fetched = await self._source.fetch_history(partition, missing)
            for day, rows in fetched.items():
                self._history_cache.set(partition, day, rows)
                by_day[day] = rows
        else:
            logger.info("History cache hit for %s (%s → %s)", partition, start_date, end_date)

        records = [record for day in days for record in by_day.get(day, [])]
        return HistoryResult(
            records=records,
            cache_hit=bool(days) and not missing,
            cached_days=len(days) - len(missing),
        )

    def clear_cache(self, include_intraday: bool = False) -> None:
        """Drop cached historical reports, and optionally every intraday partition."""
        self._history_cache.clear()
        if include_intraday:
            self._store.reset_all()

    async def aclose(self) -> None:
        await self._source.aclose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_for(self, partition: Partition) -> asyncio.Lock:
        lock = self._locks.get(partition.key)
        if lock is None:
            lock = self._locks[partition.key] = asyncio.Lock()
        return lock

    async def _apply_slice(
        self,
        partition: Partition,
        slice_id: int,
        result: SyncResult,
        errors: list[str],
    ) -> bool:
        """Fetch one slice and apply it.  Returns True if it was applied."""
        outcome = await self._source.fetch_slice(partition, slice_id)

        if isinstance(outcome, SliceOk):
            if not outcome.records:
                logger.info("No trades found in slice %d for %s", slice_id, partition)
                result.skipped_ids.append(slice_id)
                return False
            if self._store.apply_batch(partition, slice_id, outcome.records):
                result.applied_ids.append(slice_id)
                return True
            return False

        result.skipped_ids.append(slice_id)
        if isinstance(outcome, SliceNotFound):
            # Listed in the catalog but not downloadable yet: publication lag
            logger.info(
                "Slice %d for %s listed but not found, will retry next cycle",
                slice_id, partition,
            )
        elif isinstance(outcome, SliceTransientFailure):
            kind = "decode" if outcome.decode else "fetch"
            logger.warning(
                "Skipping slice %d for %s after %s failure: %s",
                slice_id, partition, kind, outcome.reason,
            )
            errors.append(f"Slice {slice_id} {kind} failed: {outcome.reason}")
        return False

    def _finish(self, result: SyncResult, since_id: int, errors: list[str]) -> SyncResult:
        delta = self._store.delta(partition=result.partition, since_id=since_id)
        result.records = delta.records
        result.slice_ids = delta.applied_ids
        result.highest_slice_id = delta.highest_applied_batch_id
        result.last_updated = delta.last_updated

        if errors and not result.applied_ids:
            result.status = "error"
        elif errors:
            result.status = "partial"
        result.error = "; ".join(errors[:3]) if errors else None

        logger.info(
            "Sync complete for %s: applied=%s skipped=%s highest=%d status=%s",
            result.partition, result.applied_ids, result.skipped_ids,
            result.highest_slice_id, result.status,
        )
        return result
