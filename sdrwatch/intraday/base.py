"""Base classes and canonical data models for the intraday sync pipeline.

Every remote feed implementation must subclass SliceSource and return the
tagged SliceFetchResult types below.  These types are the single source of
truth consumed by the batch store, the sync coordinator, and the API layer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Sequence, Union

from sdrwatch.intraday.exceptions import InvalidPartitionError

logger = logging.getLogger("sdrwatch.intraday")


# ---------------------------------------------------------------------------
# Partition key
# ---------------------------------------------------------------------------


class Agency(str, Enum):
    CFTC = "CFTC"
    SEC = "SEC"


class AssetClass(str, Enum):
    RATES = "RATES"
    CREDITS = "CREDITS"
    EQUITIES = "EQUITIES"
    FOREX = "FOREX"
    COMMODITIES = "COMMODITIES"


@dataclass(frozen=True)
class Partition:
    """An independent slice sequence space: one agency + one asset class.

    Attributes:
        agency:      Reporting regime ('CFTC' or 'SEC').
        asset_class: Asset class the slices belong to.
    """

    agency: Agency
    asset_class: AssetClass

    @classmethod
    def parse(cls, agency: str | None, asset_class: str | None) -> "Partition":
        """Build a Partition from raw query-string values.

        Raises:
            InvalidPartitionError: If either value is missing or unknown.
        """
        if not agency or not asset_class:
            raise InvalidPartitionError("Missing required parameters")
        try:
            return cls(Agency(agency.upper()), AssetClass(asset_class.upper()))
        except ValueError as exc:
            raise InvalidPartitionError(
                f"Unknown partition {agency}/{asset_class}. "
                f"Agencies: {[a.value for a in Agency]}, "
                f"asset classes: {[c.value for c in AssetClass]}"
            ) from exc

    @property
    def key(self) -> str:
        return f"{self.agency.value}_{self.asset_class.value}"

    def __str__(self) -> str:
        return f"{self.agency.value}-{self.asset_class.value}"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TradeRecord:
    """One parsed tabular row from a published slice.

    The row content is opaque to the sync pipeline; only the slice it came
    from and its position within that slice matter.

    Attributes:
        slice_id:    Id of the slice (batch) that delivered this row.
        source_file: Archive member the row was read from.
        fields:      Column name → cell value, read-only.
    """

    slice_id: int
    source_file: str
    fields: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def to_dict(self) -> dict:
        return {
            "sliceId": self.slice_id,
            "sourceFile": self.source_file,
            "fields": dict(self.fields),
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "TradeRecord":
        raw_fields = data.get("fields") or {}
        return cls(
            slice_id=int(data.get("sliceId", 0)),
            source_file=str(data.get("sourceFile", "")),
            fields={str(k): "" if v is None else str(v) for k, v in raw_fields.items()},
        )


# ---------------------------------------------------------------------------
# Tagged fetch results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SliceOk:
    """The slice was downloaded and every tabular member decoded."""

    slice_id: int
    records: tuple[TradeRecord, ...]


@dataclass(frozen=True)
class SliceNotFound:
    """The feed answered 404: this id currently has no content."""

    slice_id: int


@dataclass(frozen=True)
class SliceTransientFailure:
    """Retries were exhausted, or the payload could not be decoded.

    Attributes:
        slice_id: The slice that failed.
        reason:   Last error message.
        attempts: Number of HTTP attempts made.
        decode:   True when the download worked but decoding failed.
    """

    slice_id: int
    reason: str
    attempts: int = 0
    decode: bool = False


SliceFetchResult = Union[SliceOk, SliceNotFound, SliceTransientFailure]


# ---------------------------------------------------------------------------
# Abstract base source
# ---------------------------------------------------------------------------


class SliceSource(ABC):
    """Abstract base class for remote slice feeds.

    Subclasses must implement:
        - discover_slices()
        - fetch_slice()

    Optional overrides:
        - fetch_history()  (returns no days by default)
        - aclose()
    """

    #: Human-readable name for logging.
    DISPLAY_NAME: str = "Unknown Feed"

    @abstractmethod
    async def discover_slices(self, partition: Partition) -> list[int]:
        """Return the ids published today for a partition, ascending.

        Must not raise on transport errors: log and return an empty list so
        the caller retries on its next cycle.
        """

    @abstractmethod
    async def fetch_slice(self, partition: Partition, slice_id: int) -> SliceFetchResult:
        """Download and decode one slice.

        Must not raise: every outcome is expressed as a SliceFetchResult.
        """

    async def fetch_history(
        self, partition: Partition, days: Sequence[date]
    ) -> dict[date, list[TradeRecord]]:
        """Fetch cumulative end-of-day reports for the given days.

        Returns a map of report date to rows.  Days that are unpublished or
        fail to download are left out.
        """
        return {}

    async def aclose(self) -> None:
        """Release network resources held by the source."""
        return None
