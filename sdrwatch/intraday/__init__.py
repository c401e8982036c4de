"""SDR Watch intraday slice synchronization.

Remote feed → idempotent store → catch-up coordinator on the server side,
and a polling agent with a stable-merge update discipline on the client side.

Core modules:
    base         : SliceSource ABC, partition key, records, tagged fetch results
    source       : DTCC PPD feed adapter (discovery, retrying fetch, history)
    archive      : ZIP/CSV/XLSX slice decoding
    store        : Per-partition append-only batch ledger
    coordinator  : Bootstrap / catch-up orchestration, pure reads, history
    cache        : TTL cache of cumulative reports per partition and day
    client       : HTTP client for the intraday query surface
    agent        : Client-side bootstrap + polling state machine
    config_loader: Load/validate/hot-reload feed_config.yaml
"""

from sdrwatch.intraday.base import (
    Agency,
    AssetClass,
    Partition,
    SliceFetchResult,
    SliceNotFound,
    SliceOk,
    SliceSource,
    SliceTransientFailure,
    TradeRecord,
)
from sdrwatch.intraday.cache import HistoryCache
from sdrwatch.intraday.config_loader import FeedConfig, get_feed_config
from sdrwatch.intraday.coordinator import HistoryResult, SyncCoordinator, SyncResult
from sdrwatch.intraday.store import BatchStore

__all__ = [
    "Agency",
    "AssetClass",
    "Partition",
    "TradeRecord",
    "SliceSource",
    "SliceFetchResult",
    "SliceOk",
    "SliceNotFound",
    "SliceTransientFailure",
    "BatchStore",
    "SyncCoordinator",
    "SyncResult",
    "HistoryCache",
    "HistoryResult",
    "FeedConfig",
    "get_feed_config",
]
