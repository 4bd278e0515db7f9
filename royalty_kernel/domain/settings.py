"""
Engine settings consumed by kernel services.

The kernel never reads configuration files; royalty_config.bridges turns a
loaded RoyaltyEngineConfig into an EngineSettings.  Defaults here are the
production defaults, so kernel services and tests can run without a config.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class EngineSettings:
    scope: str = "default"

    # Revenue collection
    enable_license_proration: bool = True
    enable_usage_revenue: bool = True

    # Threshold used when a creator has no minimum payout of their own
    default_minimum_payout_cents: int = 0

    # Guarded operations
    calculation_timeout_seconds: float = 300.0
    lock_lease_seconds: float = 600.0

    # Rollback
    minimum_rollback_reason_length: int = 20

    # Manual adjustments larger than this (absolute) wait for approval
    adjustment_approval_threshold_cents: int = 100_000

    # Validation report
    outlier_median_multiplier: int = 3
