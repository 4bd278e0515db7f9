"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable structures that cross the service boundary: run, statement
    and line snapshots, per-license revenue with provenance, calculation
    and rollback results, and the validation report.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters invoked only from
    the service layer.

Invariants enforced:
    - All money fields are int minor units; shares are int basis points.
    - Collections are tuples, ordered deterministically by the producer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from royalty_kernel.domain.line_detail import LineDetail, decode_detail
from royalty_kernel.models.run import RunStatus
from royalty_kernel.models.statement import AdjustmentStatus, LineKind, StatementStatus

if TYPE_CHECKING:
    from royalty_kernel.models.run import RoyaltyRun as RoyaltyRunModel
    from royalty_kernel.models.statement import (
        RoyaltyAdjustment as RoyaltyAdjustmentModel,
        RoyaltyLine as RoyaltyLineModel,
        RoyaltyStatement as RoyaltyStatementModel,
    )


@dataclass(frozen=True)
class RunInfo:
    """Read-only view of a royalty run."""

    id: UUID
    scope: str
    period_start: date
    period_end: date
    status: RunStatus
    total_revenue_cents: int
    total_royalties_cents: int
    created_by_id: UUID
    calculated_at: datetime | None = None
    locked_at: datetime | None = None
    locked_by_id: UUID | None = None
    notes: str | None = None

    @classmethod
    def from_model(cls, model: RoyaltyRunModel) -> RunInfo:
        return cls(
            id=model.id,
            scope=model.scope,
            period_start=model.period_start,
            period_end=model.period_end,
            status=RunStatus(model.status),
            total_revenue_cents=model.total_revenue_cents,
            total_royalties_cents=model.total_royalties_cents,
            created_by_id=model.created_by_id,
            calculated_at=model.calculated_at,
            locked_at=model.locked_at,
            locked_by_id=model.locked_by_id,
            notes=model.notes,
        )


@dataclass(frozen=True)
class LineInfo:
    id: UUID
    line_seq: int
    kind: LineKind
    license_id: UUID | None
    asset_id: UUID | None
    revenue_cents: int
    share_bps: int
    calculated_royalty_cents: int
    period_start: date
    period_end: date
    detail: LineDetail

    @classmethod
    def from_model(cls, model: RoyaltyLineModel) -> LineInfo:
        kind = LineKind(model.line_kind)
        return cls(
            id=model.id,
            line_seq=model.line_seq,
            kind=kind,
            license_id=model.license_id,
            asset_id=model.asset_id,
            revenue_cents=model.revenue_cents,
            share_bps=model.share_bps,
            calculated_royalty_cents=model.calculated_royalty_cents,
            period_start=model.period_start,
            period_end=model.period_end,
            detail=decode_detail(kind, model.detail),
        )


@dataclass(frozen=True)
class AdjustmentInfo:
    """Read-only view of a manual adjustment request."""

    id: UUID
    statement_id: UUID
    adjustment_number: int
    adjustment_type: str
    amount_cents: int
    reason: str
    status: AdjustmentStatus
    requires_approval: bool
    requested_by_id: UUID
    requested_at: datetime
    decided_by_id: UUID | None = None
    decided_at: datetime | None = None
    decision_notes: str | None = None
    applied_line_seq: int | None = None
    reversal_line_seq: int | None = None
    reversal_reason: str | None = None

    @classmethod
    def from_model(cls, model: RoyaltyAdjustmentModel) -> AdjustmentInfo:
        return cls(
            id=model.id,
            statement_id=model.statement_id,
            adjustment_number=model.adjustment_number,
            adjustment_type=model.adjustment_type,
            amount_cents=model.amount_cents,
            reason=model.reason,
            status=AdjustmentStatus(model.status),
            requires_approval=model.requires_approval,
            requested_by_id=model.requested_by_id,
            requested_at=model.requested_at,
            decided_by_id=model.decided_by_id,
            decided_at=model.decided_at,
            decision_notes=model.decision_notes,
            applied_line_seq=model.applied_line_seq,
            reversal_line_seq=model.reversal_line_seq,
            reversal_reason=model.reversal_reason,
        )


@dataclass(frozen=True)
class StatementInfo:
    """Read-only view of a statement and its lines (lines ordered by line_seq)."""

    id: UUID
    run_id: UUID
    creator_id: UUID
    status: StatementStatus
    total_earnings_cents: int
    carryover_in_cents: int
    carryover_out_cents: int
    minimum_payout_cents: int
    lines: tuple[LineInfo, ...] = field(default_factory=tuple)
    dispute_reason: str | None = None
    payment_reference: str | None = None
    adjustments: tuple[AdjustmentInfo, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, model: RoyaltyStatementModel) -> StatementInfo:
        return cls(
            id=model.id,
            run_id=model.run_id,
            creator_id=model.creator_id,
            status=StatementStatus(model.status),
            total_earnings_cents=model.total_earnings_cents,
            carryover_in_cents=model.carryover_in_cents,
            carryover_out_cents=model.carryover_out_cents,
            minimum_payout_cents=model.minimum_payout_cents,
            lines=tuple(LineInfo.from_model(line) for line in model.lines),
            dispute_reason=model.dispute_reason,
            payment_reference=model.payment_reference,
            adjustments=tuple(AdjustmentInfo.from_model(a) for a in model.adjustments),
        )

    def lines_of_kind(self, kind: LineKind) -> tuple[LineInfo, ...]:
        return tuple(line for line in self.lines if line.kind == kind)


@dataclass(frozen=True)
class LicenseRevenue:
    """
    Revenue attributed to one license for one run, with provenance.

    revenue_cents = fee_component_cents + usage_component_cents.
    """

    license_id: UUID
    asset_id: UUID
    revenue_cents: int
    fee_component_cents: int
    usage_component_cents: int
    formula: str
    overlap_start: date
    overlap_end: date
    overlap_days: int
    license_total_days: int

    @property
    def prorated(self) -> bool:
        return self.fee_component_cents > 0 and self.overlap_days < self.license_total_days


@dataclass(frozen=True)
class CalculationResult:
    """Outcome of a successful calculation pass."""

    run_id: UUID
    status: RunStatus
    total_revenue_cents: int
    total_royalties_cents: int
    license_count: int
    statements: tuple[StatementInfo, ...]

    @property
    def statement_ids(self) -> tuple[UUID, ...]:
        return tuple(s.id for s in self.statements)

    def statement_for(self, creator_id: UUID) -> StatementInfo | None:
        for statement in self.statements:
            if statement.creator_id == creator_id:
                return statement
        return None


@dataclass(frozen=True)
class RollbackResult:
    """Outcome of a rollback; archive_record is the line appended to the notes."""

    run_id: UUID
    previous_status: RunStatus
    status: RunStatus
    reason: str
    deleted_statement_count: int
    deleted_line_count: int
    archive_record: str


# ---------------------------------------------------------------------------
# Validation report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationIssue:
    """A single error or warning raised by a named check or outlier scan."""

    code: str
    message: str
    check: str
    entity_id: str | None = None
    details: dict[str, Any] | None = None


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    errors: tuple[ValidationIssue, ...] = ()


@dataclass(frozen=True)
class OutlierFlag:
    kind: str  # "high_earner" | "zero_earnings"
    creator_id: UUID
    statement_id: UUID
    earnings_cents: int
    median_cents: int | None = None


@dataclass(frozen=True)
class ValidationSummary:
    total_revenue_cents: int
    total_royalties_cents: int
    statement_total_cents: int
    carryover_in_cents: int
    carryover_out_cents: int
    statement_count: int
    line_count: int
    creator_count: int
    license_count: int
    asset_count: int
    disputed_count: int
    median_creator_earnings_cents: int


@dataclass(frozen=True)
class ValidationReport:
    """
    Read-only report over a calculated (or later) run.

    Guarantees:
        - is_valid is True iff every named check passed.
        - Warnings never affect is_valid.
        - Deterministic for a fixed run state: every collection is sorted.
    """

    run_id: UUID
    run_status: RunStatus
    is_valid: bool
    errors: tuple[ValidationIssue, ...]
    warnings: tuple[ValidationIssue, ...]
    summary: ValidationSummary
    revenue_by_asset: tuple[tuple[UUID, int], ...]
    earnings_by_creator: tuple[tuple[UUID, int], ...]
    checks: tuple[CheckResult, ...]
    outliers: tuple[OutlierFlag, ...]

    def check(self, name: str) -> CheckResult:
        for result in self.checks:
            if result.name == name:
                return result
        raise KeyError(name)

    @property
    def error_codes(self) -> tuple[str, ...]:
        return tuple(sorted({e.code for e in self.errors}))
