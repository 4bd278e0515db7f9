"""Domain models for the royalty kernel."""

from royalty_kernel.models.audit_event import AuditAction, AuditEvent
from royalty_kernel.models.catalog import (
    Creator,
    IPAsset,
    IPOwnership,
    License,
    LicenseRevenueEvent,
    LicenseStatus,
    LicenseType,
)
from royalty_kernel.models.run import (
    IMMUTABLE_RUN_STATUSES,
    INACTIVE_RUN_STATUSES,
    SETTLED_RUN_STATUSES,
    RoyaltyRun,
    RunStatus,
)
from royalty_kernel.models.run_lock import RunLockLease
from royalty_kernel.models.sequence import SequenceCounter
from royalty_kernel.models.statement import (
    SIGNED_LINE_KINDS,
    AdjustmentStatus,
    LineKind,
    RoyaltyAdjustment,
    RoyaltyLine,
    RoyaltyStatement,
    StatementStatus,
)

__all__ = [
    "AuditAction",
    "AuditEvent",
    "Creator",
    "IPAsset",
    "IPOwnership",
    "License",
    "LicenseRevenueEvent",
    "LicenseStatus",
    "LicenseType",
    "IMMUTABLE_RUN_STATUSES",
    "INACTIVE_RUN_STATUSES",
    "SETTLED_RUN_STATUSES",
    "RoyaltyRun",
    "RunStatus",
    "RunLockLease",
    "SequenceCounter",
    "SIGNED_LINE_KINDS",
    "AdjustmentStatus",
    "LineKind",
    "RoyaltyAdjustment",
    "RoyaltyLine",
    "RoyaltyStatement",
    "StatementStatus",
]
