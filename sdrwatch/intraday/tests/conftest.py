"""Shared fixtures and fakes for intraday sync tests."""

from __future__ import annotations

import io
import zipfile
from datetime import date
from typing import Sequence

import pytest
from openpyxl import Workbook

from sdrwatch.config import Settings
from sdrwatch.intraday.base import (
    Agency,
    AssetClass,
    Partition,
    SliceFetchResult,
    SliceOk,
    SliceSource,
    TradeRecord,
)
from sdrwatch.intraday.config_loader import FeedConfig, load_feed_config
from sdrwatch.intraday.store import BatchStore


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_trade_records(
    slice_id: int, count: int, tag: str = "", source_file: str = "slice.csv"
) -> list[TradeRecord]:
    return [
        TradeRecord(
            slice_id=slice_id,
            source_file=source_file,
            fields={"Unique ID": f"{tag}{slice_id}_{i}", "Action": "NEW"},
        )
        for i in range(count)
    ]


def build_zip(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in members.items():
            archive.writestr(name, data)
    return buffer.getvalue()


def build_xlsx(rows: list[list[object]]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class FakeSliceSource(SliceSource):
    """In-memory SliceSource.

    ``results`` maps a slice id to a queue of outcomes; the last outcome
    repeats once the queue is drained.  Ids with no entry return two
    generated records.
    """

    DISPLAY_NAME = "Fake"

    def __init__(self) -> None:
        self.available: list[int] = []
        self.results: dict[int, list[SliceFetchResult]] = {}
        self.history: dict[date, list[TradeRecord]] = {}
        self.history_calls: list[list[date]] = []
        self.discover_error: Exception | None = None
        self.fetch_calls: list[int] = []
        self.closed = False

    async def discover_slices(self, partition: Partition) -> list[int]:
        if self.discover_error is not None:
            raise self.discover_error
        return sorted(self.available)

    async def fetch_slice(self, partition: Partition, slice_id: int) -> SliceFetchResult:
        self.fetch_calls.append(slice_id)
        queued = self.results.get(slice_id)
        if queued:
            return queued.pop(0) if len(queued) > 1 else queued[0]
        return SliceOk(slice_id=slice_id, records=tuple(make_trade_records(slice_id, 2)))

    async def fetch_history(
        self, partition: Partition, days: Sequence[date]
    ) -> dict[date, list[TradeRecord]]:
        self.history_calls.append(list(days))
        return {day: list(self.history[day]) for day in days if day in self.history}

    async def aclose(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def partition() -> Partition:
    return Partition(Agency.CFTC, AssetClass.RATES)


@pytest.fixture
def other_partition() -> Partition:
    return Partition(Agency.SEC, AssetClass.CREDITS)


@pytest.fixture
def make_records():
    return make_trade_records


@pytest.fixture
def zip_bytes():
    return build_zip


@pytest.fixture
def xlsx_bytes():
    return build_xlsx


@pytest.fixture
def store() -> BatchStore:
    return BatchStore()


@pytest.fixture
def fake_source() -> FakeSliceSource:
    return FakeSliceSource()


@pytest.fixture
def feed_config() -> FeedConfig:
    """Load the bundled feed config for tests."""
    return load_feed_config()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        max_retries=3,
        backoff_base_seconds=1.0,
        max_concurrent_tasks=2,
        request_timeout_seconds=5.0,
        polling_interval_seconds=30.0,
    )
