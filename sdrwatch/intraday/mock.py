"""Synthetic trade batches for demos and tests.

Rows imitate the column names of real intraday slices closely enough for
downstream tables to render them.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

from sdrwatch.intraday.base import AssetClass, Partition, TradeRecord

MOCK_SOURCE_FILE = "mock.csv"

_PRODUCTS: dict[AssetClass, list[tuple[str, str]]] = {
    AssetClass.RATES: [("IRS", "SOFR"), ("OIS", "SOFR"), ("FRA", "EURIBOR"), ("Swaption", "SOFR")],
    AssetClass.CREDITS: [("CDS", "CDX.NA.IG"), ("CDS", "iTraxx Europe"), ("CDS", "CDX.NA.HY")],
    AssetClass.EQUITIES: [("TRS", "SPX"), ("Variance Swap", "SPX"), ("Option", "NDX")],
    AssetClass.FOREX: [("NDF", "USD/BRL"), ("Forward", "EUR/USD"), ("Option", "USD/JPY")],
    AssetClass.COMMODITIES: [("Swap", "WTI"), ("Option", "Brent"), ("Swap", "Henry Hub")],
}


def generate_mock_batch(
    partition: Partition,
    batch_id: int,
    count: int,
    rng: random.Random | None = None,
) -> list[TradeRecord]:
    """Build ``count`` trade-like records for one batch.

    Each row carries a ``Unique ID`` of ``"{batch_id}_{index}"`` so tests can
    detect duplicates across batches.
    """
    rng = rng or random.Random()
    now = datetime.now(timezone.utc)
    products = _PRODUCTS[partition.asset_class]

    records: list[TradeRecord] = []
    for index in range(count):
        product, underlying = rng.choice(products)
        executed = now - timedelta(seconds=rng.randint(5, 900))
        effective = executed.date() + timedelta(days=2)
        tenor_days = rng.choice([30, 90, 365, 730, 1825, 3650])
        notional = rng.randint(1, 500) * 1_000_000
        records.append(
            TradeRecord(
                slice_id=batch_id,
                source_file=MOCK_SOURCE_FILE,
                fields={
                    "Unique ID": f"{batch_id}_{index}",
                    "Dissemination Date and Time": now.strftime("%Y-%m-%d %H:%M:%S"),
                    "Execution Date and Time": executed.strftime("%Y-%m-%d %H:%M:%S"),
                    "Effective Date": effective.isoformat(),
                    "End Date": (effective + timedelta(days=tenor_days)).isoformat(),
                    "Action": "NEW",
                    "Asset Class": partition.asset_class.value,
                    "Product": product,
                    "Underlying Asset": underlying,
                    "Notional Amount 1": str(notional),
                    "Fixed Rate 1": f"{rng.uniform(0.5, 6.0):.4f}",
                },
            )
        )
    return records
