"""Fixtures for API tests: an app wired to an in-memory slice source."""

from __future__ import annotations

from datetime import date
from typing import Sequence

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from sdrwatch.config import Settings
from sdrwatch.intraday.base import (
    Partition,
    SliceFetchResult,
    SliceOk,
    SliceSource,
    TradeRecord,
)
from sdrwatch.main import create_app


def slice_records(slice_id: int, count: int) -> tuple[TradeRecord, ...]:
    return tuple(
        TradeRecord(
            slice_id=slice_id,
            source_file=f"CFTC_SLICE_RATES_{slice_id}.csv",
            fields={"Unique ID": f"{slice_id}_{i}"},
        )
        for i in range(count)
    )


class StubSliceSource(SliceSource):
    """Serves three records for every id in ``available``."""

    DISPLAY_NAME = "Stub"

    def __init__(self) -> None:
        self.available: list[int] = []
        self.history: dict[date, list[TradeRecord]] = {}
        self.history_calls: list[list[date]] = []
        self.closed = False

    async def discover_slices(self, partition: Partition) -> list[int]:
        return list(self.available)

    async def fetch_slice(self, partition: Partition, slice_id: int) -> SliceFetchResult:
        return SliceOk(slice_id=slice_id, records=slice_records(slice_id, 3))

    async def fetch_history(
        self, partition: Partition, days: Sequence[date]
    ) -> dict[date, list[TradeRecord]]:
        self.history_calls.append(list(days))
        return {day: list(self.history[day]) for day in days if day in self.history}

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def stub_source() -> StubSliceSource:
    return StubSliceSource()


@pytest.fixture
def mock_app(stub_source: StubSliceSource) -> FastAPI:
    """App serving mock batches only (live fetching disabled)."""
    return create_app(
        settings=Settings(_env_file=None, live_fetch_enabled=False),
        source=stub_source,
    )


@pytest.fixture
def live_app(stub_source: StubSliceSource) -> FastAPI:
    """App syncing from the stub source."""
    return create_app(
        settings=Settings(_env_file=None, live_fetch_enabled=True),
        source=stub_source,
    )


@pytest.fixture
def api(mock_app: FastAPI) -> TestClient:
    with TestClient(mock_app) as client:
        yield client


@pytest.fixture
def live_api(live_app: FastAPI) -> TestClient:
    with TestClient(live_app) as client:
        yield client
