"""Query endpoints for intraday slices, historical cumulative reports, and
the history cache.

Errors use the ``{"error": "..."}`` body the polling client expects rather
than FastAPI's default ``{"detail": ...}``.
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from sdrwatch.dependencies import AppSettings, Coordinator
from sdrwatch.intraday.base import Partition, TradeRecord
from sdrwatch.models.base import ErrorResponse
from sdrwatch.models.intraday import (
    CacheClearResponse,
    HistoricalMetadata,
    HistoricalResponse,
    IntradayMetadata,
    IntradayResponse,
    TradeRead,
)

router = APIRouter(prefix="/dtcc", tags=["dtcc"])
logger = logging.getLogger("sdrwatch.routers.intraday")

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _flag(value: str | None) -> bool:
    return value == "true"


def _parse_int(value: str | None, name: str, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if parsed < 0:
        raise ValueError(f"{name} must be non-negative, got {parsed}")
    return parsed


def _parse_date(value: str, name: str) -> date:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValueError(f"{name} must be an ISO date, got {value!r}") from None


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


def _intraday_response(
    partition: Partition,
    records: list[TradeRecord],
    processed_ids: list[int],
    highest: int,
    last_updated: datetime | None,
    started: float,
    cache_hit: bool | None = None,
    error: str | None = None,
) -> IntradayResponse:
    return IntradayResponse(
        trades=[TradeRead.from_record(r) for r in records],
        metadata=IntradayMetadata(
            count=len(records),
            agency=partition.agency.value,
            asset_class=partition.asset_class.value,
            highest_slice_id=highest,
            processed_slice_ids=processed_ids,
            last_updated=last_updated,
            cache_hit=cache_hit,
            fetch_duration=_elapsed_ms(started),
            error=error,
        ),
    )


# ---------- Intraday ----------

@router.get(
    "/intraday",
    response_model=IntradayResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def get_intraday(
    coordinator: Coordinator,
    settings: AppSettings,
    agency: str | None = Query(default=None),
    asset_class: str | None = Query(default=None, alias="assetClass"),
    min_slice_id: str | None = Query(default=None, alias="minSliceId"),
    last_known_slice_id: str | None = Query(default=None, alias="lastKnownSliceId"),
    reset: str | None = Query(default=None),
    check_new: str | None = Query(default=None, alias="checkNew"),
    generate_mock_batch: str | None = Query(default=None, alias="generateMockBatch"),
) -> Any:
    """Return the accumulated trades for a partition, or only the new ones.

    Order of operations: ``reset`` → ``generateMockBatch`` → either the
    incremental branch (``checkNew=true``) or the full branch.
    ``generateMockBatch`` is rejected with 400 while live fetching is on.
    """
    started = time.perf_counter()
    try:
        partition = Partition.parse(agency, asset_class)
        min_slice = _parse_int(min_slice_id, "minSliceId", 1)
        last_known = _parse_int(last_known_slice_id, "lastKnownSliceId", 0)
    except ValueError as exc:
        return _error(400, str(exc))

    live = settings.live_fetch_enabled
    if live and _flag(generate_mock_batch):
        # A synthetic batch would claim an id the live feed has yet to publish
        return _error(400, "generateMockBatch is only available when live fetching is disabled")

    try:
        if _flag(reset):
            logger.info("Resetting intraday store for %s", partition)
            coordinator.reset(partition)
            if live:
                await coordinator.bootstrap(partition, seed_id=1)
            else:
                coordinator.seed_mock(partition)

        if _flag(generate_mock_batch):
            coordinator.generate_mock_batch(partition)

        if _flag(check_new):
            logger.info("Checking for new intraday data for %s since %d", partition, last_known)
            if live:
                result = await coordinator.catch_up(partition, last_known)
                return _intraday_response(
                    partition,
                    result.records,
                    result.slice_ids,
                    result.highest_slice_id,
                    result.last_updated,
                    started,
                    error=result.error,
                )
            delta = coordinator.get_since(partition, last_known)
            return _intraday_response(
                partition,
                delta.records,
                delta.applied_ids,
                delta.highest_applied_batch_id,
                delta.last_updated,
                started,
            )

        cache_hit = coordinator.get_metadata(partition).batch_count > 0
        error: str | None = None
        if not cache_hit:
            if live:
                error = (await coordinator.bootstrap(partition, seed_id=min_slice)).error
            else:
                coordinator.seed_mock(partition)

        records = coordinator.get_all(partition)
        metadata = coordinator.get_metadata(partition)
        return _intraday_response(
            partition,
            records,
            metadata.sorted_batch_ids,
            metadata.highest_applied_batch_id,
            metadata.last_updated,
            started,
            cache_hit=cache_hit,
            error=error,
        )
    except Exception as exc:
        logger.exception("Error in intraday endpoint for %s", partition)
        return _error(500, f"Server error: {exc}")


# ---------- Historical ----------

@router.get(
    "/historical",
    response_model=HistoricalResponse,
    responses=_ERROR_RESPONSES,
)
async def get_historical(
    coordinator: Coordinator,
    settings: AppSettings,
    agency: str | None = Query(default=None),
    asset_class: str | None = Query(default=None, alias="assetClass"),
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
) -> Any:
    """Fetch cumulative end-of-day reports for a date range.

    Per-day reports are cached for ``historical_cache_ttl_seconds``;
    ``metadata.cacheHit`` is true when every day came from the cache.
    """
    started = time.perf_counter()
    if not start_date or not end_date:
        return _error(400, "Missing required parameters")
    try:
        partition = Partition.parse(agency, asset_class)
        start = _parse_date(start_date, "startDate")
        end = _parse_date(end_date, "endDate")
    except ValueError as exc:
        return _error(400, str(exc))

    span = (end - start).days
    if span < 0:
        return _error(400, "End date must be after start date")
    if span > settings.historical_max_days:
        return _error(400, f"Date range cannot exceed {settings.historical_max_days} days")

    try:
        history = await coordinator.fetch_history(partition, start, end)
    except Exception as exc:
        logger.exception("Error in historical endpoint for %s", partition)
        return _error(500, f"Server error: {exc}")

    return HistoricalResponse(
        trades=[TradeRead.from_record(r) for r in history.records],
        metadata=HistoricalMetadata(
            count=len(history.records),
            agency=partition.agency.value,
            asset_class=partition.asset_class.value,
            start_date=start,
            end_date=end,
            cache_hit=history.cache_hit,
            fetch_duration=_elapsed_ms(started),
        ),
    )


# ---------- Cache ----------

@router.delete(
    "/cache",
    response_model=CacheClearResponse,
    responses={500: {"model": ErrorResponse}},
)
async def clear_cache(
    coordinator: Coordinator,
    intraday: str | None = Query(default=None),
) -> Any:
    """Drop cached historical reports.

    With ``intraday=true`` every intraday partition is reset as well.
    """
    try:
        coordinator.clear_cache(include_intraday=_flag(intraday))
    except Exception as exc:
        logger.exception("Error clearing cache")
        return _error(500, f"Server error: {exc}")
    return CacheClearResponse(success=True, message="Cache cleared successfully")
