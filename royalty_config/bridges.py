"""
Config -> Kernel Bridges.

Functions that convert a RoyaltyEngineConfig into kernel inputs.  They live
here because royalty_kernel must never import royalty_config.

Usage:
    config = get_active_config()
    settings = build_engine_settings(config)
    roles = build_role_resolver(config)
"""

from __future__ import annotations

from royalty_config.schema import RoyaltyEngineConfig
from royalty_kernel.domain.access import StaticRoleResolver
from royalty_kernel.domain.settings import EngineSettings


def build_engine_settings(config: RoyaltyEngineConfig) -> EngineSettings:
    calc = config.calculation
    return EngineSettings(
        scope=config.scope,
        enable_license_proration=calc.enable_license_proration,
        enable_usage_revenue=calc.enable_usage_revenue,
        default_minimum_payout_cents=calc.default_minimum_payout_cents,
        calculation_timeout_seconds=calc.timeout_seconds,
        lock_lease_seconds=config.locking.lease_seconds,
        minimum_rollback_reason_length=config.rollback.minimum_reason_length,
        adjustment_approval_threshold_cents=config.adjustments.approval_threshold_cents,
        outlier_median_multiplier=config.validation.outlier_median_multiplier,
    )


def build_role_resolver(config: RoyaltyEngineConfig) -> StaticRoleResolver:
    """Administrators are the configured ids; everyone else is a reviewer."""
    return StaticRoleResolver(frozenset(config.access.administrator_ids))
