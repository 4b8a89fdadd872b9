"""Vendor list loading."""

from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import ValidationError

from src.models.config import VendorOverride, VendorScrapeConfig
from src.models.errors import ConfigurationError


def apply_override(vendor: VendorScrapeConfig, override: Optional[VendorOverride]) -> VendorScrapeConfig:
    """Apply frequency and timeout from the override table."""
    if override is None:
        return vendor
    if override.frequency is not None:
        vendor.scrape_frequency = override.frequency
    if override.timeout_ms is not None:
        vendor.timeout_ms = override.timeout_ms
    return vendor


def load_vendors(path: Path, overrides: Optional[Dict[str, VendorOverride]] = None) -> List[VendorScrapeConfig]:
    """
    Load and validate the vendor list from YAML.

    Args:
        path: YAML file with a top-level ``vendors`` list
        overrides: Vendor override table keyed by slug

    Returns:
        Validated vendor configs

    Raises:
        ConfigurationError: If the file is missing or an entry is malformed
    """
    if not path.exists():
        raise ConfigurationError(f"Vendor file not found: {path}")

    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}

    entries = raw.get("vendors", []) if isinstance(raw, dict) else raw
    overrides = overrides or {}
    vendors: List[VendorScrapeConfig] = []
    seen = set()
    for index, entry in enumerate(entries):
        try:
            vendor = VendorScrapeConfig(**entry)
        except (TypeError, ValidationError) as e:
            raise ConfigurationError(f"Invalid vendor entry #{index} in {path}: {e}") from e
        if vendor.vendor_id in seen:
            raise ConfigurationError(f"Duplicate vendor_id in {path}: {vendor.vendor_id}")
        seen.add(vendor.vendor_id)
        vendors.append(apply_override(vendor, overrides.get(vendor.vendor_id)))
    return vendors
