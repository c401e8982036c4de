"""Tests for the intraday and historical query endpoints."""

from __future__ import annotations

from datetime import date

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from sdrwatch.intraday.agent import ClientSyncAgent
from sdrwatch.intraday.base import Agency, AssetClass, Partition, TradeRecord
from sdrwatch.intraday.client import IntradayApiClient
from sdrwatch.intraday.exceptions import AgentRequestError

INTRADAY = "/api/dtcc/intraday"
HISTORICAL = "/api/dtcc/historical"
CACHE = "/api/dtcc/cache"
RATES = {"agency": "CFTC", "assetClass": "RATES"}


# ---------------------------------------------------------------------------
# Parameter validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_missing_params(self, api: TestClient) -> None:
        response = api.get(INTRADAY, params={"agency": "CFTC"})
        assert response.status_code == 400
        assert response.json() == {"error": "Missing required parameters"}

    def test_unknown_agency(self, api: TestClient) -> None:
        response = api.get(INTRADAY, params={"agency": "FCA", "assetClass": "RATES"})
        assert response.status_code == 400
        assert "Unknown partition" in response.json()["error"]

    def test_non_integer_slice_id(self, api: TestClient) -> None:
        response = api.get(
            INTRADAY, params={**RATES, "checkNew": "true", "lastKnownSliceId": "abc"}
        )
        assert response.status_code == 400
        assert "lastKnownSliceId" in response.json()["error"]

    def test_lowercase_partition_accepted(self, api: TestClient) -> None:
        response = api.get(INTRADAY, params={"agency": "cftc", "assetClass": "rates"})
        assert response.status_code == 200
        assert response.json()["metadata"]["agency"] == "CFTC"

    def test_unexpected_error_is_500(self, api: TestClient, mock_app: FastAPI, monkeypatch) -> None:
        def boom(partition: Partition):
            raise RuntimeError("store offline")

        monkeypatch.setattr(mock_app.state.coordinator, "get_all", boom)
        response = api.get(INTRADAY, params=RATES)

        assert response.status_code == 500
        assert response.json() == {"error": "Server error: store offline"}


# ---------------------------------------------------------------------------
# Mock mode
# ---------------------------------------------------------------------------


class TestMockMode:
    def test_first_fetch_seeds_batch_one(self, api: TestClient) -> None:
        body = api.get(INTRADAY, params=RATES).json()
        meta = body["metadata"]

        assert meta["count"] == 10
        assert meta["highestSliceId"] == 1
        assert meta["processedSliceIds"] == [1]
        assert meta["cacheHit"] is False
        assert meta["assetClass"] == "RATES"
        assert "lastUpdated" in meta
        assert "fetchDuration" in meta
        assert "error" not in meta
        assert body["trades"][0]["sliceId"] == 1
        assert body["trades"][0]["sourceFile"] == "mock.csv"

        again = api.get(INTRADAY, params=RATES).json()
        assert again["metadata"]["cacheHit"] is True
        assert again["metadata"]["count"] == 10

    def test_generate_mock_batch_then_check_new(self, api: TestClient) -> None:
        api.get(INTRADAY, params=RATES)
        api.get(INTRADAY, params={**RATES, "generateMockBatch": "true"})

        body = api.get(
            INTRADAY, params={**RATES, "checkNew": "true", "lastKnownSliceId": "1"}
        ).json()

        assert body["metadata"]["highestSliceId"] == 2
        assert body["metadata"]["processedSliceIds"] == [2]
        assert 3 <= body["metadata"]["count"] <= 7
        assert all(t["sliceId"] == 2 for t in body["trades"])
        assert "cacheHit" not in body["metadata"]

    def test_check_new_when_up_to_date(self, api: TestClient) -> None:
        api.get(INTRADAY, params=RATES)
        body = api.get(
            INTRADAY, params={**RATES, "checkNew": "true", "lastKnownSliceId": "1"}
        ).json()

        assert body["trades"] == []
        assert body["metadata"]["count"] == 0
        assert body["metadata"]["highestSliceId"] == 1

    def test_reset_reseeds_partition(self, api: TestClient) -> None:
        api.get(INTRADAY, params=RATES)
        api.get(INTRADAY, params={**RATES, "generateMockBatch": "true"})

        body = api.get(INTRADAY, params={**RATES, "reset": "true"}).json()

        assert body["metadata"]["highestSliceId"] == 1
        assert body["metadata"]["count"] == 10

    def test_flags_must_be_literal_true(self, api: TestClient) -> None:
        api.get(INTRADAY, params=RATES)
        body = api.get(INTRADAY, params={**RATES, "generateMockBatch": "1"}).json()
        assert body["metadata"]["highestSliceId"] == 1


# ---------------------------------------------------------------------------
# Live mode
# ---------------------------------------------------------------------------


class TestLiveMode:
    def test_bootstrap_from_min_slice_then_catch_up(
        self, live_api: TestClient, stub_source
    ) -> None:
        stub_source.available = [1, 2, 3]

        body = live_api.get(INTRADAY, params={**RATES, "minSliceId": "2"}).json()
        assert body["metadata"]["processedSliceIds"] == [2]
        assert body["metadata"]["cacheHit"] is False

        body = live_api.get(
            INTRADAY, params={**RATES, "checkNew": "true", "lastKnownSliceId": "2"}
        ).json()
        assert body["metadata"]["processedSliceIds"] == [3]
        assert body["metadata"]["highestSliceId"] == 3
        assert body["metadata"]["count"] == 3

    def test_mock_batch_rejected_so_real_slice_still_syncs(
        self, live_api: TestClient, stub_source
    ) -> None:
        stub_source.available = [1]
        live_api.get(INTRADAY, params=RATES)

        response = live_api.get(INTRADAY, params={**RATES, "generateMockBatch": "true"})
        assert response.status_code == 400
        assert "live fetching" in response.json()["error"]

        stub_source.available = [1, 2]
        body = live_api.get(
            INTRADAY, params={**RATES, "checkNew": "true", "lastKnownSliceId": "0"}
        ).json()

        assert body["metadata"]["processedSliceIds"] == [1, 2]
        slice_two = {t["sourceFile"] for t in body["trades"] if t["sliceId"] == 2}
        assert slice_two == {"CFTC_SLICE_RATES_2.csv"}

    def test_nothing_published_returns_empty(self, live_api: TestClient) -> None:
        body = live_api.get(INTRADAY, params=RATES).json()
        assert body["trades"] == []
        assert body["metadata"]["highestSliceId"] == 0

    def test_lifespan_closes_source(
        self, live_app: FastAPI, stub_source
    ) -> None:
        with TestClient(live_app):
            assert not stub_source.closed
        assert stub_source.closed


# ---------------------------------------------------------------------------
# Historical
# ---------------------------------------------------------------------------


class TestHistorical:
    def test_missing_dates(self, api: TestClient) -> None:
        response = api.get(HISTORICAL, params=RATES)
        assert response.status_code == 400
        assert response.json() == {"error": "Missing required parameters"}

    def test_end_before_start(self, api: TestClient) -> None:
        response = api.get(
            HISTORICAL, params={**RATES, "startDate": "2026-03-10", "endDate": "2026-03-01"}
        )
        assert response.status_code == 400

    def test_range_too_long(self, api: TestClient) -> None:
        response = api.get(
            HISTORICAL, params={**RATES, "startDate": "2026-01-01", "endDate": "2026-03-01"}
        )
        assert response.status_code == 400
        assert "30 days" in response.json()["error"]

    def test_returns_history_without_storing(
        self, api: TestClient, stub_source, mock_app: FastAPI
    ) -> None:
        stub_source.history = {
            date(2026, 3, 2): [
                TradeRecord(slice_id=0, source_file="cumulative.csv", fields={"Unique ID": str(i)})
                for i in range(4)
            ],
        }
        response = api.get(
            HISTORICAL, params={**RATES, "startDate": "2026-03-02", "endDate": "2026-03-06"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["metadata"]["count"] == 4
        assert body["metadata"]["startDate"] == "2026-03-02"
        assert body["metadata"]["cacheHit"] is False
        assert mock_app.state.store.partitions() == []

    def test_repeat_request_is_a_cache_hit_until_cleared(
        self, api: TestClient, stub_source
    ) -> None:
        stub_source.history = {
            date(2026, 3, 2): [
                TradeRecord(slice_id=0, source_file="cumulative.csv", fields={"Unique ID": "a"})
            ],
        }
        params = {**RATES, "startDate": "2026-03-02", "endDate": "2026-03-02"}

        assert api.get(HISTORICAL, params=params).json()["metadata"]["cacheHit"] is False
        body = api.get(HISTORICAL, params=params).json()
        assert body["metadata"]["cacheHit"] is True
        assert body["metadata"]["count"] == 1
        assert len(stub_source.history_calls) == 1

        response = api.delete(CACHE)
        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Cache cleared successfully"}

        assert api.get(HISTORICAL, params=params).json()["metadata"]["cacheHit"] is False
        assert len(stub_source.history_calls) == 2


class TestCacheClear:
    def test_clear_keeps_intraday_data_by_default(self, api: TestClient) -> None:
        api.get(INTRADAY, params=RATES)
        api.delete(CACHE)
        assert api.get(INTRADAY, params=RATES).json()["metadata"]["cacheHit"] is True

    def test_clear_with_intraday_resets_every_partition(
        self, api: TestClient, mock_app: FastAPI
    ) -> None:
        api.get(INTRADAY, params=RATES)
        api.get(INTRADAY, params={"agency": "SEC", "assetClass": "CREDITS"})
        assert len(mock_app.state.store.partitions()) == 2

        response = api.delete(CACHE, params={"intraday": "true"})

        assert response.status_code == 200
        assert mock_app.state.store.partitions() == []

    def test_failure_returns_server_error(
        self, api: TestClient, mock_app: FastAPI, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def boom() -> int:
            raise RuntimeError("cache unavailable")

        monkeypatch.setattr(mock_app.state.coordinator.history_cache, "clear", boom)
        response = api.delete(CACHE)

        assert response.status_code == 500
        assert response.json() == {"error": "Server error: cache unavailable"}


class TestHealth:
    def test_health(self, api: TestClient) -> None:
        body = api.get("/health").json()
        assert body["status"] == "healthy"
        assert body["live_fetch"] is False


# ---------------------------------------------------------------------------
# Agent against the real query surface
# ---------------------------------------------------------------------------


class TestAgentEndToEnd:
    @pytest.mark.asyncio
    async def test_agent_bootstraps_and_merges_new_batches(self, mock_app: FastAPI) -> None:
        http_client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=mock_app), base_url="http://test"
        )
        client = IntradayApiClient(base_url="http://test", http_client=http_client)
        partition = Partition(Agency.CFTC, AssetClass.RATES)

        agent = ClientSyncAgent(client, partition, enabled=False)
        await agent.start()
        assert agent.state.trade_count == 10
        assert agent.state.last_known_slice_id == 1

        mock_app.state.coordinator.generate_mock_batch(partition, count=4)
        await agent.refresh()

        assert agent.state.trade_count == 14
        assert agent.state.last_known_slice_id == 2
        assert agent.state.processed_slice_ids == (2,)
        assert agent.state.status_indicator == "live"

        await agent.stop()
        await http_client.aclose()

    @pytest.mark.asyncio
    async def test_client_raises_on_error_status(self, mock_app: FastAPI) -> None:
        http_client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=mock_app), base_url="http://test"
        )
        client = IntradayApiClient(base_url="http://test", http_client=http_client)
        partition = Partition(Agency.CFTC, AssetClass.RATES)

        with pytest.raises(AgentRequestError) as exc_info:
            await client.check_new(partition, -1)
        assert exc_info.value.status_code == 400
        await http_client.aclose()
