"""
Configuration schema (``royalty_config.schema``).

Frozen dataclasses describing one royalty engine configuration.  Produced
by ``royalty_config.loader`` from YAML; consumed through
``royalty_config.bridges``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class CalculationDef:
    enable_license_proration: bool = True
    enable_usage_revenue: bool = True
    default_minimum_payout_cents: int = 0
    timeout_seconds: float = 300.0


@dataclass(frozen=True)
class LockingDef:
    lease_seconds: float = 600.0


@dataclass(frozen=True)
class RollbackDef:
    minimum_reason_length: int = 20


@dataclass(frozen=True)
class AdjustmentDef:
    # Manual adjustments above this absolute amount wait for approval
    approval_threshold_cents: int = 100_000


@dataclass(frozen=True)
class ValidationDef:
    outlier_median_multiplier: int = 3


@dataclass(frozen=True)
class AccessDef:
    administrator_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class RoyaltyEngineConfig:
    """
    A complete, validated engine configuration.

    checksum is the SHA-256 of the canonical JSON of the source document,
    so two configs with the same content always share a checksum.
    """

    config_id: str
    version: int
    scope: str
    calculation: CalculationDef = field(default_factory=CalculationDef)
    locking: LockingDef = field(default_factory=LockingDef)
    rollback: RollbackDef = field(default_factory=RollbackDef)
    adjustments: AdjustmentDef = field(default_factory=AdjustmentDef)
    validation: ValidationDef = field(default_factory=ValidationDef)
    access: AccessDef = field(default_factory=AccessDef)
    checksum: str = ""
