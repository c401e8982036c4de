"""DTCC public price dissemination (PPD) feed adapter.

Discovers and downloads intraday slices, and cumulative end-of-day
reports for historical ranges.

Endpoints used (relative to ``base_url`` from feed_config.yaml):
    /api/slice/{AGENCY}/{code}  (slice catalog)
    /api/report/intraday/{agency}/{AGENCY}_SLICE_{ASSET}_{id}.zip
    /api/report/cumulative/{agency}/{AGENCY}_CUMULATIVE_{ASSET}_{YYYY_MM_DD}.zip

Retry policy: transient errors (timeouts, connection failures, 5xx and any
other non-404 HTTP error) are retried up to ``max_retries`` times with
exponential backoff ``backoff_base * 2**(attempt-1)`` seconds.  A 404 is
terminal and returned immediately.  Nothing raises past this module; every
outcome is a tagged SliceFetchResult.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Awaitable, Callable, Sequence
from zoneinfo import ZoneInfo

import httpx

from sdrwatch.config import Settings, get_settings
from sdrwatch.intraday.archive import decode_archive
from sdrwatch.intraday.base import (
    Partition,
    SliceFetchResult,
    SliceNotFound,
    SliceOk,
    SliceSource,
    SliceTransientFailure,
    TradeRecord,
)
from sdrwatch.intraday.config_loader import FeedConfig, get_feed_config
from sdrwatch.intraday.dates import feed_today
from sdrwatch.intraday.exceptions import ArchiveDecodeError

logger = logging.getLogger("sdrwatch.intraday.source")

#: slice_id used for rows that come from cumulative (non-intraday) reports
CUMULATIVE_SLICE_ID = 0


def parse_slice_id(file_name: object, partition: Partition) -> int | None:
    """Extract the numeric id from ``{AGENCY}_SLICE_{ASSET}_{id}.{ext}``.

    Returns None if the name does not belong to the partition or has no id.
    """
    if not isinstance(file_name, str):
        return None
    base = file_name.rsplit("/", 1)[-1]
    pattern = (
        rf"^{re.escape(partition.agency.value)}_SLICE_"
        rf"{re.escape(partition.asset_class.value)}_(\d+)(?:\.\w+)?$"
    )
    match = re.match(pattern, base, re.IGNORECASE)
    return int(match.group(1)) if match else None


def parse_published_at(value: object, timezone: str) -> datetime | None:
    """Parse a catalog ``dissemDTM`` value into an aware datetime in ``timezone``.

    Naive timestamps are taken to already be in the feed's local time.
    """
    if not isinstance(value, str) or not value:
        return None
    tz = ZoneInfo(timezone)
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable publication timestamp: %r", value)
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


@dataclass(frozen=True)
class _Download:
    """Outcome of one retried GET."""

    status: str  # 'ok' | 'not_found' | 'failed'
    content: bytes = b""
    reason: str = ""
    attempts: int = 0


class DtccSliceSource(SliceSource):
    """Slice source backed by the DTCC PPD HTTP API.

    Usage::

        source = DtccSliceSource()
        ids = await source.discover_slices(partition)
        result = await source.fetch_slice(partition, ids[0])
        match result:
            case SliceOk(records=records): ...
    """

    DISPLAY_NAME = "DTCC PPD"

    def __init__(
        self,
        settings: Settings | None = None,
        feed_config: FeedConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        today: Callable[[], date] | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            settings:    Retry, timeout and concurrency settings.
            feed_config: Endpoint and header constants.
            http_client: Optional pre-configured httpx client (for testing).
            sleep:       Backoff sleep, injectable so tests do not wait.
            today:       Returns the publication date to discover (defaults
                         to today in ``settings.feed_timezone``).
        """
        s = settings or get_settings()
        self._max_retries = max(1, s.max_retries)
        self._backoff_base = s.backoff_base_seconds
        self._max_concurrent = max(1, s.max_concurrent_tasks)
        self._timeout = s.request_timeout_seconds
        self._timezone = s.feed_timezone
        self._config = feed_config or get_feed_config()
        self._http_client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep
        self._today = today or (lambda: feed_today(self._timezone))

    # ------------------------------------------------------------------
    # SliceSource interface
    # ------------------------------------------------------------------

    async def discover_slices(self, partition: Partition) -> list[int]:
        """Return the ids published today for ``partition``, ascending.

        Catalog descriptors published on another day, or with names that do
        not parse, are ignored.  Any transport or decode error yields an
        empty list.
        """
        url = self._config.catalog_url(partition)
        try:
            response = await self._client().get(
                url, headers=self._config.request_headers(partition)
            )
            response.raise_for_status()
            descriptors = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Slice discovery failed for %s: %s", partition, exc)
            return []

        if not isinstance(descriptors, list):
            logger.warning(
                "Slice catalog for %s returned %s, expected a list",
                partition, type(descriptors).__name__,
            )
            return []

        today = self._today()
        ids: set[int] = set()
        for descriptor in descriptors:
            if not isinstance(descriptor, dict):
                continue
            published = parse_published_at(descriptor.get("dissemDTM"), self._timezone)
            if published is None or published.date() != today:
                continue
            slice_id = parse_slice_id(descriptor.get("fileName"), partition)
            if slice_id is not None:
                ids.add(slice_id)

        logger.debug("Discovered %d slices for %s", len(ids), partition)
        return sorted(ids)

    async def fetch_slice(self, partition: Partition, slice_id: int) -> SliceFetchResult:
        """Download and decode one intraday slice."""
        label = f"{partition} slice {slice_id}"
        download = await self._get_with_retry(
            self._config.slice_url(partition, slice_id), partition, label
        )

        if download.status == "not_found":
            return SliceNotFound(slice_id=slice_id)
        if download.status == "failed":
            return SliceTransientFailure(
                slice_id=slice_id, reason=download.reason, attempts=download.attempts
            )

        if not download.content:
            logger.info("No content for %s", label)
            return SliceOk(slice_id=slice_id, records=())

        try:
            records = decode_archive(
                download.content, slice_id, self._config.tabular_extensions
            )
        except ArchiveDecodeError as exc:
            logger.warning("Decode failed for %s: %s", label, exc)
            return SliceTransientFailure(
                slice_id=slice_id, reason=str(exc), attempts=download.attempts, decode=True
            )

        logger.info("Fetched %s: %d records", label, len(records))
        return SliceOk(slice_id=slice_id, records=tuple(records))

    async def fetch_history(
        self, partition: Partition, days: Sequence[date]
    ) -> dict[date, list[TradeRecord]]:
        """Fetch the cumulative report for each of ``days``.

        At most ``max_concurrent_tasks`` downloads are in flight at once.
        Rows are tagged with CUMULATIVE_SLICE_ID.  Days that are missing,
        fail, or do not decode are left out of the result.
        """
        if not days:
            return {}

        logger.info(
            "Fetching %d cumulative reports for %s (%s → %s)",
            len(days), partition, min(days), max(days),
        )
        semaphore = asyncio.Semaphore(self._max_concurrent)
        results = await asyncio.gather(
            *(self._fetch_cumulative(partition, day, semaphore) for day in days)
        )
        return {day: rows for day, rows in zip(days, results) if rows is not None}

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _fetch_cumulative(
        self, partition: Partition, report_date: date, semaphore: asyncio.Semaphore
    ) -> list[TradeRecord] | None:
        label = f"{partition} cumulative {report_date.isoformat()}"
        async with semaphore:
            download = await self._get_with_retry(
                self._config.cumulative_url(partition, report_date), partition, label
            )

        if download.status != "ok":
            return None
        if not download.content:
            return []
        try:
            return decode_archive(
                download.content, CUMULATIVE_SLICE_ID, self._config.tabular_extensions
            )
        except ArchiveDecodeError as exc:
            logger.warning("Decode failed for %s: %s", label, exc)
            return None

    async def _get_with_retry(self, url: str, partition: Partition, label: str) -> _Download:
        """GET ``url`` with bounded exponential backoff.

        Returns a _Download; never raises for HTTP or transport errors.
        """
        headers = self._config.request_headers(partition)
        last_error = ""

        for attempt in range(1, self._max_retries + 1):
            try:
                response = await self._client().get(url, headers=headers)
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                if response.status_code == 404:
                    logger.info("No data found for %s", label)
                    return _Download(status="not_found", attempts=attempt)
                if response.is_success:
                    return _Download(status="ok", content=response.content, attempts=attempt)
                last_error = f"HTTP {response.status_code}"

            if attempt < self._max_retries:
                wait = self._backoff_base * (2 ** (attempt - 1))
                logger.warning(
                    "Error fetching %s (%s). Retrying in %.1fs (attempt %d/%d)",
                    label, last_error, wait, attempt, self._max_retries,
                )
                await self._sleep(wait)

        logger.error("Max retries exceeded for %s: %s", label, last_error)
        return _Download(status="failed", reason=last_error, attempts=self._max_retries)

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout, follow_redirects=True
            )
        return self._http_client
