"""In-memory, append-only ledger of applied slices per partition.

Dedup key:
    (partition, slice_id): a slice is applied at most once.  A repeated
    apply with the same id is a no-op even if the records differ.

Ordering:
    ``accumulated`` groups records by ascending slice id with batch-internal
    order preserved, whatever order the batches were applied in.  A slice
    skipped in one cycle and applied in a later one is inserted ahead of
    any higher ids already present.

State is created lazily on first touch of a partition and lives for the
process lifetime.  Nothing is persisted.
"""

from __future__ import annotations

import bisect
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from sdrwatch.intraday.base import Partition, TradeRecord

logger = logging.getLogger("sdrwatch.intraday.store")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PartitionState:
    """Mutable per-partition ledger.  Only BatchStore touches it.

    Attributes:
        applied_batches:         slice_id → records of that slice.
        batch_ids:               Applied ids, kept sorted.
        accumulated:             All records, grouped by ascending slice id.
        highest_applied_batch_id: Max applied id, 0 when empty.
        last_updated:            UTC time of the last apply or reset.
    """

    applied_batches: dict[int, tuple[TradeRecord, ...]] = field(default_factory=dict)
    batch_ids: list[int] = field(default_factory=list)
    accumulated: list[TradeRecord] = field(default_factory=list)
    highest_applied_batch_id: int = 0
    last_updated: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class BatchDelta:
    """Records from every applied slice newer than a caller's last known id.

    Attributes:
        records:                  Concatenated records, ascending slice id.
        applied_ids:              Sorted ids the records came from.
        highest_applied_batch_id: Current highest applied id.
        last_updated:             Partition's last update time.
    """

    records: list[TradeRecord]
    applied_ids: list[int]
    highest_applied_batch_id: int
    last_updated: datetime


@dataclass(frozen=True)
class StoreMetadata:
    total_records: int
    batch_count: int
    highest_applied_batch_id: int
    last_updated: datetime
    sorted_batch_ids: list[int]


class BatchStore:
    """Idempotent accumulation store for intraday slices.

    Construct one per application and inject it where needed.  All mutation
    for all partitions is serialized by a single re-entrant lock, so a reader
    never sees a half-applied batch; reads return copies.

    Usage::

        store = BatchStore()
        store.apply_batch(partition, 1, records)
        delta = store.delta(partition, since_id=0)
    """

    def __init__(self) -> None:
        self._partitions: dict[str, PartitionState] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply_batch(
        self, partition: Partition, batch_id: int, records: Iterable[TradeRecord]
    ) -> bool:
        """Apply a batch unless its id was applied before.

        Args:
            partition: Partition the batch belongs to.
            batch_id:  Non-negative slice id.
            records:   Records in published order.

        Returns:
            True if the batch was applied, False if it was a duplicate.

        Raises:
            ValueError: If ``batch_id`` is negative.
        """
        if batch_id < 0:
            raise ValueError(f"batch_id must be non-negative, got {batch_id}")

        batch = tuple(records)
        with self._lock:
            state = self._state(partition)
            if batch_id in state.applied_batches:
                logger.info(
                    "Batch %d already processed for %s, skipping", batch_id, partition
                )
                return False

            position = bisect.bisect_left(state.batch_ids, batch_id)
            offset = sum(len(state.applied_batches[i]) for i in state.batch_ids[:position])
            state.batch_ids.insert(position, batch_id)
            state.applied_batches[batch_id] = batch
            state.accumulated[offset:offset] = batch
            state.highest_applied_batch_id = max(state.highest_applied_batch_id, batch_id)
            state.last_updated = utc_now()
            total = len(state.accumulated)

        logger.info(
            "Added batch %d with %d trades for %s. Total accumulated: %d",
            batch_id, len(batch), partition, total,
        )
        return True

    def reset(self, partition: Partition) -> None:
        """Clear a partition back to the empty state."""
        with self._lock:
            self._partitions[partition.key] = PartitionState()
        logger.info("Reset store for %s", partition)

    def reset_all(self) -> None:
        """Drop every partition."""
        with self._lock:
            self._partitions.clear()
        logger.info("Reset all partitions")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self, partition: Partition) -> list[TradeRecord]:
        """Return an independent copy of all accumulated records."""
        with self._lock:
            return list(self._state(partition).accumulated)

    def delta(self, partition: Partition, since_id: int) -> BatchDelta:
        """Return records from applied batches with id > ``since_id``.

        If ``since_id`` is at or beyond the highest applied id the delta is
        empty and the highest id is returned unchanged.
        """
        with self._lock:
            state = self._state(partition)
            highest = state.highest_applied_batch_id
            if since_id >= highest:
                return BatchDelta([], [], highest, state.last_updated)

            newer = state.batch_ids[bisect.bisect_right(state.batch_ids, since_id):]
            records: list[TradeRecord] = []
            for batch_id in newer:
                records.extend(state.applied_batches[batch_id])
            return BatchDelta(records, newer, highest, state.last_updated)

    def metadata(self, partition: Partition) -> StoreMetadata:
        with self._lock:
            state = self._state(partition)
            return StoreMetadata(
                total_records=len(state.accumulated),
                batch_count=len(state.applied_batches),
                highest_applied_batch_id=state.highest_applied_batch_id,
                last_updated=state.last_updated,
                sorted_batch_ids=list(state.batch_ids),
            )

    def is_applied(self, partition: Partition, batch_id: int) -> bool:
        with self._lock:
            return batch_id in self._state(partition).applied_batches

    def partitions(self) -> list[str]:
        """Return the keys of every partition touched so far."""
        with self._lock:
            return sorted(self._partitions)

    def _state(self, partition: Partition) -> PartitionState:
        # Caller must hold self._lock
        state = self._partitions.get(partition.key)
        if state is None:
            state = self._partitions[partition.key] = PartitionState()
        return state
