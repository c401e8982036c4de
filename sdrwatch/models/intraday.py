"""Pydantic models for intraday and historical trade responses."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import Field

from sdrwatch.intraday.base import TradeRecord
from sdrwatch.models.base import SdrBase


class TradeRead(SdrBase):
    slice_id: int
    source_file: str
    fields: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: TradeRecord) -> "TradeRead":
        return cls(
            slice_id=record.slice_id,
            source_file=record.source_file,
            fields=dict(record.fields),
        )


# ---------- Intraday ----------

class IntradayMetadata(SdrBase):
    count: int
    agency: str
    asset_class: str
    highest_slice_id: int
    processed_slice_ids: list[int] = Field(default_factory=list)
    last_updated: datetime | None = None
    cache_hit: bool | None = None
    fetch_duration: float = 0.0  # milliseconds
    error: str | None = None


class IntradayResponse(SdrBase):
    trades: list[TradeRead]
    metadata: IntradayMetadata


# ---------- Historical ----------

class HistoricalMetadata(SdrBase):
    count: int
    agency: str
    asset_class: str
    start_date: date
    end_date: date
    cache_hit: bool = False
    fetch_duration: float = 0.0  # milliseconds


class HistoricalResponse(SdrBase):
    trades: list[TradeRead]
    metadata: HistoricalMetadata


# ---------- Cache ----------

class CacheClearResponse(SdrBase):
    success: bool
    message: str
