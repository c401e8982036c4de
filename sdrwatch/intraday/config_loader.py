"""Load, validate, and hot-reload the remote feed configuration.

The config lives in ``feed_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_feed_config()`` to re-read from
disk after an edit, no restart required.

Usage::

    from sdrwatch.intraday.config_loader import get_feed_config

    config = get_feed_config()
    code = config.catalog_code(AssetClass.RATES)   # "IR"
    url = config.slice_url(partition, 42)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

import yaml

from sdrwatch.intraday.base import AssetClass, Partition

logger = logging.getLogger("sdrwatch.intraday.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "feed_config.yaml"


@dataclass
class FeedConfig:
    """Complete, validated feed configuration.

    Attributes:
        version:            Config schema version string.
        base_url:           Root URL of the dissemination service.
        catalog_codes:      Asset class → short code used by the catalog endpoint.
        tabular_extensions: Archive member suffixes that hold tabular rows.
        headers:            Extra request headers sent with every call.
    """

    version: str
    base_url: str
    catalog_codes: dict[str, str]
    tabular_extensions: tuple[str, ...]
    headers: dict[str, str] = field(default_factory=dict)

    def catalog_code(self, asset_class: AssetClass) -> str:
        return self.catalog_codes[asset_class.value]

    def catalog_url(self, partition: Partition) -> str:
        code = self.catalog_code(partition.asset_class)
        return f"{self.base_url}/api/slice/{partition.agency.value}/{code}"

    def slice_filename(self, partition: Partition, slice_id: int) -> str:
        return f"{partition.agency.value}_SLICE_{partition.asset_class.value}_{slice_id}.zip"

    def slice_url(self, partition: Partition, slice_id: int) -> str:
        return (
            f"{self.base_url}/api/report/intraday/{partition.agency.value.lower()}/"
            f"{self.slice_filename(partition, slice_id)}"
        )

    def cumulative_url(self, partition: Partition, report_date: date) -> str:
        agency = partition.agency.value
        return (
            f"{self.base_url}/api/report/cumulative/{agency.lower()}/"
            f"{agency}_CUMULATIVE_{partition.asset_class.value}_{report_date:%Y_%m_%d}.zip"
        )

    def request_headers(self, partition: Partition) -> dict[str, str]:
        """Return headers for a request on behalf of a partition's dashboard."""
        headers = dict(self.headers)
        headers["referer"] = f"{self.base_url}/{partition.agency.value.lower()}dashboard"
        return headers


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class FeedConfigError(ValueError):
    """Raised when feed_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        FeedConfigError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Feed config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise FeedConfigError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> FeedConfig:
    """Validate the raw YAML dict and construct a FeedConfig.

    Raises:
        FeedConfigError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    base_url = raw.get("base_url")
    if not isinstance(base_url, str) or not base_url:
        errors.append("'base_url' must be a non-empty string")
        base_url = ""

    codes_raw: Any = raw.get("catalog_codes") or {}
    catalog_codes: dict[str, str] = {}
    if not isinstance(codes_raw, dict):
        errors.append("'catalog_codes' must be a mapping of asset class → code")
    else:
        catalog_codes = {str(k).upper(): str(v) for k, v in codes_raw.items()}
        missing = [c.value for c in AssetClass if c.value not in catalog_codes]
        if missing:
            errors.append(f"catalog_codes is missing asset classes: {missing}")

    ext_raw = raw.get("tabular_extensions") or [".csv", ".xlsx"]
    if not isinstance(ext_raw, list) or not all(isinstance(e, str) for e in ext_raw):
        errors.append("'tabular_extensions' must be a list of strings")
        ext_raw = []

    headers_raw = raw.get("headers") or {}
    if not isinstance(headers_raw, dict):
        errors.append("'headers' must be a mapping")
        headers_raw = {}

    if errors:
        raise FeedConfigError(
            f"feed_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return FeedConfig(
        version=str(raw.get("version", "1.0")),
        base_url=base_url.rstrip("/"),
        catalog_codes=catalog_codes,
        tabular_extensions=tuple(e.lower() for e in ext_raw),
        headers={str(k): str(v) for k, v in headers_raw.items()},
    )


def load_feed_config(path: Path | None = None) -> FeedConfig:
    """Load and validate the feed config from disk.

    Args:
        path: Override path to YAML. Uses the bundled feed_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded feed config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: FeedConfig | None = None
_config_lock = threading.Lock()


def get_feed_config() -> FeedConfig:
    """Return the global FeedConfig, loading it on first call.

    Thread-safe.  Use ``reload_feed_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_feed_config()
    return _config


def reload_feed_config(path: Path | None = None) -> FeedConfig:
    """Reload the feed config from disk and replace the global instance.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        FeedConfigError:   If the new config is invalid.
        FileNotFoundError: If the config file is missing.
    """
    global _config
    new_config = load_feed_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded feed config: %s → %s", old_version, new_config.version)
    return new_config
