"""HTTP client for the intraday query surface (``GET /api/dtcc/intraday``)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

import httpx

from sdrwatch.intraday.base import Partition, TradeRecord
from sdrwatch.intraday.exceptions import AgentRequestError

logger = logging.getLogger("sdrwatch.intraday.client")

INTRADAY_PATH = "/api/dtcc/intraday"


@dataclass(frozen=True)
class IntradayPayload:
    """Decoded body of an intraday response.

    Attributes:
        trades:              Records in the response (full set or delta).
        highest_slice_id:    Highest slice applied on the server.
        processed_slice_ids: Slice ids the records came from.
        last_updated:        Server-side partition update time.
        cache_hit:           True when a full fetch needed no bootstrap.
        error:               Non-fatal server-side sync error, if any.
    """

    trades: tuple[TradeRecord, ...]
    highest_slice_id: int
    processed_slice_ids: tuple[int, ...]
    last_updated: datetime | None = None
    cache_hit: bool | None = None
    error: str | None = None

    @classmethod
    def from_json(cls, body: dict) -> "IntradayPayload":
        metadata = body.get("metadata") or {}
        last_updated = metadata.get("lastUpdated")
        return cls(
            trades=tuple(TradeRecord.from_dict(t) for t in body.get("trades") or []),
            highest_slice_id=int(metadata.get("highestSliceId") or 0),
            processed_slice_ids=tuple(int(i) for i in metadata.get("processedSliceIds") or []),
            last_updated=(
                datetime.fromisoformat(last_updated.replace("Z", "+00:00"))
                if isinstance(last_updated, str) else None
            ),
            cache_hit=metadata.get("cacheHit"),
            error=metadata.get("error"),
        )


class IntradayApiClient:
    """Thin async wrapper around the intraday endpoint.

    Args:
        base_url:    Root URL of the SDR Watch API.
        http_client: Optional pre-configured httpx client (for testing, e.g.
                     one built on ``httpx.ASGITransport``).
        timeout:     Request timeout in seconds when the client is owned.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout

    async def fetch_all(self, partition: Partition, min_slice_id: int = 1) -> IntradayPayload:
        """Request the full accumulated record set (bootstrapping if empty)."""
        return await self._get(
            {
                "agency": partition.agency.value,
                "assetClass": partition.asset_class.value,
                "minSliceId": str(min_slice_id),
            }
        )

    async def check_new(self, partition: Partition, last_known_slice_id: int) -> IntradayPayload:
        """Request records from slices newer than ``last_known_slice_id``."""
        return await self._get(
            {
                "agency": partition.agency.value,
                "assetClass": partition.asset_class.value,
                "checkNew": "true",
                "lastKnownSliceId": str(last_known_slice_id),
            }
        )

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _get(self, params: dict[str, str]) -> IntradayPayload:
        """GET the intraday endpoint and decode the body.

        Raises:
            AgentRequestError: On transport errors, non-2xx responses, or bodies
                that are not JSON objects.
        """
        url = f"{self._base_url}{INTRADAY_PATH}"
        try:
            response = await self._client().get(url, params=params)
        except httpx.HTTPError as exc:
            raise AgentRequestError(f"Request failed: {exc}") from exc

        if not response.is_success:
            raise AgentRequestError(
                f"HTTP error {response.status_code}", status_code=response.status_code
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise AgentRequestError(f"Invalid JSON response: {exc}") from exc
        if not isinstance(body, dict):
            raise AgentRequestError("Unexpected response shape")
        return IntradayPayload.from_json(body)

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client
