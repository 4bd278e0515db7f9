"""
Configuration Loader (``royalty_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into the frozen
dataclasses of ``royalty_config.schema``.  Runtime callers use
``royalty_config.get_active_config()``, never this module directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Bad values  -> ``ValueError`` from ``validate_config``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from royalty_config.schema import (
    AdjustmentDef,
    AccessDef,
    CalculationDef,
    LockingDef,
    RollbackDef,
    RoyaltyEngineConfig,
    ValidationDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def merge_overrides(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively overlay ``overrides`` on ``base`` (neither is mutated)."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_overrides(merged[key], value)
        else:
            merged[key] = value
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> RoyaltyEngineConfig:
    """
    Build a RoyaltyEngineConfig from a parsed YAML document.

    ``config_id`` is required; every section is optional and falls back to
    schema defaults.
    """
    calc = data.get("calculation", {}) or {}
    locking = data.get("locking", {}) or {}
    rollback = data.get("rollback", {}) or {}
    adjustments = data.get("adjustments", {}) or {}
    validation = data.get("validation", {}) or {}
    access = data.get("access", {}) or {}

    defaults = CalculationDef()
    return RoyaltyEngineConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        scope=str(data.get("scope", "default")),
        calculation=CalculationDef(
            enable_license_proration=bool(
                calc.get("enable_license_proration", defaults.enable_license_proration)
            ),
            enable_usage_revenue=bool(
                calc.get("enable_usage_revenue", defaults.enable_usage_revenue)
            ),
            default_minimum_payout_cents=int(
                calc.get("default_minimum_payout_cents", defaults.default_minimum_payout_cents)
            ),
            timeout_seconds=float(calc.get("timeout_seconds", defaults.timeout_seconds)),
        ),
        locking=LockingDef(
            lease_seconds=float(locking.get("lease_seconds", LockingDef().lease_seconds)),
        ),
        rollback=RollbackDef(
            minimum_reason_length=int(
                rollback.get("minimum_reason_length", RollbackDef().minimum_reason_length)
            ),
        ),
        adjustments=AdjustmentDef(
            approval_threshold_cents=int(
                adjustments.get(
                    "approval_threshold_cents",
                    AdjustmentDef().approval_threshold_cents,
                )
            ),
        ),
        validation=ValidationDef(
            outlier_median_multiplier=int(
                validation.get(
                    "outlier_median_multiplier",
                    ValidationDef().outlier_median_multiplier,
                )
            ),
        ),
        access=AccessDef(
            administrator_ids=tuple(
                UUID(str(value)) for value in access.get("administrator_ids", ()) or ()
            ),
        ),
        checksum=compute_checksum(data),
    )


def validate_config(config: RoyaltyEngineConfig) -> list[str]:
    """Return a list of human-readable problems; empty means valid."""
    errors: list[str] = []
    calc = config.calculation

    if not config.scope:
        errors.append("scope must be a non-empty string")
    if calc.timeout_seconds <= 0:
        errors.append("calculation.timeout_seconds must be positive")
    if calc.default_minimum_payout_cents < 0:
        errors.append("calculation.default_minimum_payout_cents cannot be negative")
    if config.locking.lease_seconds <= calc.timeout_seconds:
        errors.append(
            "locking.lease_seconds must exceed calculation.timeout_seconds "
            f"({config.locking.lease_seconds} <= {calc.timeout_seconds})"
        )
    if config.rollback.minimum_reason_length < 1:
        errors.append("rollback.minimum_reason_length must be at least 1")
    if config.adjustments.approval_threshold_cents < 0:
        errors.append("adjustments.approval_threshold_cents cannot be negative")
    if config.validation.outlier_median_multiplier < 1:
        errors.append("validation.outlier_median_multiplier must be at least 1")

    return errors
