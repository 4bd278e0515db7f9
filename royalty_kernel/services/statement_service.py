"""
StatementService -- per-statement workflow after calculation.

Responsibility:
    Creator review and dispute, dispute resolution, manual adjustments and
    their approval workflow on a CALCULATED run, administrator corrections
    on a LOCKED run, and the payout hook that marks a statement PAID.

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only.

Invariants enforced:
    - Review, dispute, resolution and manual adjustments require the run to
      be CALCULATED; on a LOCKED (or later) run they raise RunLockedError.
    - After lock, only issue_correction() (administrator, additive line,
      ``correction`` tag), reject_adjustment() (no money moves) and
      mark_paid() (``payout`` tag) write.
    - Every money movement moves the statement total and the run royalties
      together, so the mathematical consistency check keeps holding.
    - Every money movement re-runs the payout threshold: carryover_out,
      the PENDING/REVIEWED hold and a ThresholdNote line follow the new
      total, so the next run carries in what this statement now holds.
    - A statement total never goes negative.
    - Adjustments above the approval threshold wait as PENDING_APPROVAL
      and move no money until an administrator approves them.  Reversal
      is additive: the original adjustment line stays.

Failure modes:
    - StatementNotFoundError, StatementStateError, RunLockedError,
      RunInvalidStateError, InsufficientPrivilegeError,
      InvalidAdjustmentError, AdjustmentNotFoundError,
      AdjustmentStateError.

Audit relevance:
    One STATEMENT_* or ADJUSTMENT_* audit event per mutation, recorded
    against the statement.
"""

from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from royalty_engines.thresholds import ThresholdOutcome, accumulate
from royalty_kernel.db.immutability import MutationTag, mutation_context
from royalty_kernel.domain.access import ActorRole, RoleResolver, StaticRoleResolver
from royalty_kernel.domain.clock import Clock
from royalty_kernel.domain.dtos import AdjustmentInfo, StatementInfo
from royalty_kernel.domain.line_detail import (
    AdjustmentReversal,
    CorrectionDetail,
    DisputeResolution,
    LineDetail,
    ManualAdjustment,
    ThresholdNote,
    encode_detail,
)
from royalty_kernel.domain.settings import EngineSettings
from royalty_kernel.exceptions import (
    AdjustmentNotFoundError,
    AdjustmentStateError,
    InsufficientPrivilegeError,
    InvalidAdjustmentError,
    RunInvalidStateError,
    RunLockedError,
    StatementNotFoundError,
    StatementStateError,
)
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.audit_event import AuditAction
from royalty_kernel.models.run import IMMUTABLE_RUN_STATUSES, RoyaltyRun, RunStatus
from royalty_kernel.models.statement import (
    THRESHOLD_HOLD_FLAG,
    AdjustmentStatus,
    RoyaltyAdjustment,
    LineKind,
    RoyaltyLine,
    RoyaltyStatement,
    StatementStatus,
)
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.base import BaseService

logger = get_logger("services.statement")


class AdjustmentType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"
    BONUS = "bonus"
    CORRECTION = "correction"
    REFUND = "refund"


# Required sign of the amount per adjustment type (None = either).
_ADJUSTMENT_SIGN = {
    AdjustmentType.CREDIT: 1,
    AdjustmentType.BONUS: 1,
    AdjustmentType.DEBIT: -1,
    AdjustmentType.CORRECTION: None,
    AdjustmentType.REFUND: None,
}

PAYABLE_STATUSES = frozenset(
    {StatementStatus.PENDING, StatementStatus.REVIEWED, StatementStatus.RESOLVED}
)

DEFAULT_PENDING_LIMIT = 50


class StatementService(BaseService[RoyaltyStatement]):
    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
        role_resolver: RoleResolver | None = None,
        settings: EngineSettings | None = None,
    ):
        super().__init__(session, clock)
        self._auditor = auditor
        self._roles = role_resolver or StaticRoleResolver()
        self._settings = settings or EngineSettings()

    # Loading and guards

    def _load(self, statement_id: UUID) -> RoyaltyStatement:
        statement = self.session.execute(
            select(RoyaltyStatement)
            .where(RoyaltyStatement.id == statement_id)
            .with_for_update()
        ).scalar_one_or_none()
        if statement is None:
            raise StatementNotFoundError(str(statement_id))
        return statement

    def _load_adjustment(self, adjustment_id: UUID) -> RoyaltyAdjustment:
        adjustment = self.session.execute(
            select(RoyaltyAdjustment)
            .where(RoyaltyAdjustment.id == adjustment_id)
            .with_for_update()
        ).scalar_one_or_none()
        if adjustment is None:
            raise AdjustmentNotFoundError(str(adjustment_id))
        return adjustment

    def _require_calculated_run(self, statement: RoyaltyStatement, operation: str) -> RoyaltyRun:
        run = statement.run
        status = RunStatus(run.status)
        if status in IMMUTABLE_RUN_STATUSES:
            logger.warning(
                "statement_mutation_on_locked_run",
                extra={
                    "statement_id": str(statement.id),
                    "run_id": str(run.id),
                    "operation": operation,
                },
            )
            raise RunLockedError(str(run.id), operation)
        if status != RunStatus.CALCULATED:
            raise RunInvalidStateError(
                str(run.id), status.value, (RunStatus.CALCULATED.value,), operation
            )
        return run

    def _require_locked_run(self, statement: RoyaltyStatement, operation: str) -> RoyaltyRun:
        run = statement.run
        status = RunStatus(run.status)
        if status not in IMMUTABLE_RUN_STATUSES:
            raise RunInvalidStateError(
                str(run.id),
                status.value,
                tuple(s.value for s in (RunStatus.LOCKED, RunStatus.PROCESSING, RunStatus.COMPLETED)),
                operation,
            )
        return run

    def _require_status(
        self,
        statement: RoyaltyStatement,
        allowed: frozenset[StatementStatus],
        operation: str,
    ) -> StatementStatus:
        status = StatementStatus(statement.status)
        if status not in allowed:
            raise StatementStateError(str(statement.id), status.value, operation)
        return status

    def _require_owner(self, statement: RoyaltyStatement, creator_id: UUID, operation: str) -> None:
        if statement.creator_id != creator_id:
            logger.warning(
                "statement_ownership_denied",
                extra={"statement_id": str(statement.id), "operation": operation},
            )
            raise InsufficientPrivilegeError(str(creator_id), "statement_owner", operation)

    def _require_administrator(self, actor_id: UUID, operation: str) -> None:
        role = self._roles.resolve_role(actor_id)
        if not role.has_authority(ActorRole.ADMINISTRATOR):
            raise InsufficientPrivilegeError(
                str(actor_id), ActorRole.ADMINISTRATOR.value, operation
            )

    def _touch(self, statement: RoyaltyStatement, actor_id: UUID) -> None:
        statement.updated_at = self._clock.now()
        statement.updated_by_id = actor_id

    def _append_line(
        self,
        statement: RoyaltyStatement,
        detail: LineDetail,
        amount_cents: int,
        actor_id: UUID,
    ) -> RoyaltyLine:
        run = statement.run
        kind, payload = encode_detail(detail)
        next_seq = max((line.line_seq for line in statement.lines), default=0) + 1
        line = RoyaltyLine(
            line_seq=next_seq,
            line_kind=kind,
            revenue_cents=0,
            share_bps=0,
            calculated_royalty_cents=amount_cents,
            period_start=run.period_start,
            period_end=run.period_end,
            detail=payload,
            created_at=self._clock.now(),
            created_by_id=actor_id,
        )
        statement.lines.append(line)
        return line

    def _require_adjustment_status(
        self,
        adjustment: RoyaltyAdjustment,
        allowed: frozenset[AdjustmentStatus],
        operation: str,
    ) -> None:
        status = AdjustmentStatus(adjustment.status)
        if status not in allowed:
            logger.warning(
                "adjustment_state_refused",
                extra={
                    "adjustment_id": str(adjustment.id),
                    "status": status.value,
                    "operation": operation,
                },
            )
            raise AdjustmentStateError(str(adjustment.id), status.value, operation)

    def _move_totals(self, statement: RoyaltyStatement, amount_cents: int) -> None:
        new_total = statement.total_earnings_cents + amount_cents
        if new_total < 0:
            raise InvalidAdjustmentError(
                f"statement total would become negative ({new_total})"
            )
        statement.total_earnings_cents = new_total
        statement.run.total_royalties_cents += amount_cents

    def _settle_threshold(self, statement: RoyaltyStatement, actor_id: UUID) -> ThresholdOutcome:
        """Re-apply the payout threshold to the statement's current total."""
        outcome = accumulate(
            carryover_cents=0,
            allocations_cents=[statement.total_earnings_cents],
            minimum_payout_cents=statement.minimum_payout_cents,
        )
        statement.carryover_out_cents = outcome.carryover_out_cents

        details: dict[str, Any] = dict(statement.details or {})
        status = StatementStatus(statement.status)
        if outcome.below_threshold:
            if status == StatementStatus.PENDING:
                statement.status = StatementStatus.REVIEWED
                statement.reviewed_at = self._clock.now()
                details[THRESHOLD_HOLD_FLAG] = True
            self._append_line(
                statement,
                ThresholdNote(
                    accumulated_cents=outcome.accumulated_cents,
                    minimum_payout_cents=outcome.minimum_payout_cents,
                    carryover_out_cents=outcome.carryover_out_cents,
                ),
                0,
                actor_id,
            )
        elif details.pop(THRESHOLD_HOLD_FLAG, False) and status == StatementStatus.REVIEWED:
            statement.status = StatementStatus.PENDING
            statement.reviewed_at = None

        statement.details = details or None
        logger.info(
            "statement_threshold_settled",
            extra={
                "statement_id": str(statement.id),
                "accumulated_cents": outcome.accumulated_cents,
                "minimum_payout_cents": outcome.minimum_payout_cents,
                "carryover_out_cents": outcome.carryover_out_cents,
                "status": StatementStatus(statement.status).value,
            },
        )
        return outcome

    def _book(
        self,
        statement: RoyaltyStatement,
        detail: LineDetail,
        amount_cents: int,
        actor_id: UUID,
    ) -> RoyaltyLine:
        """
        Move the totals, append the movement line, then re-run the threshold.

        A PAID statement keeps its settlement; corrections after payout do
        not feed the next run's carry-in.
        """
        self._move_totals(statement, amount_cents)
        line = self._append_line(statement, detail, amount_cents, actor_id)
        if StatementStatus(statement.status) != StatementStatus.PAID:
            self._settle_threshold(statement, actor_id)
        return line

    # Creator workflow

    def verify_statement_ownership(self, statement_id: UUID, creator_id: UUID) -> bool:
        statement = self.session.get(RoyaltyStatement, statement_id)
        if statement is None:
            raise StatementNotFoundError(str(statement_id))
        return statement.creator_id == creator_id

    def review_statement(self, statement_id: UUID, creator_id: UUID) -> StatementInfo:
        """PENDING -> REVIEWED by the statement's creator."""
        statement = self._load(statement_id)
        self._require_owner(statement, creator_id, "review_statement")
        self._require_calculated_run(statement, "review_statement")
        self._require_status(
            statement, frozenset({StatementStatus.PENDING}), "review_statement"
        )

        statement.status = StatementStatus.REVIEWED
        statement.reviewed_at = self._clock.now()
        self._touch(statement, creator_id)
        self.session.flush()

        self._auditor.record_statement_action(
            statement.id, AuditAction.STATEMENT_REVIEWED, creator_id
        )
        logger.info("statement_reviewed", extra={"statement_id": str(statement.id)})
        return StatementInfo.from_model(statement)

    def dispute_statement(
        self,
        statement_id: UUID,
        reason: str,
        creator_id: UUID,
    ) -> StatementInfo:
        """PENDING|REVIEWED -> DISPUTED.  Blocks the run lock until resolved."""
        if not reason or not reason.strip():
            raise InvalidAdjustmentError("dispute reason is required")

        statement = self._load(statement_id)
        self._require_owner(statement, creator_id, "dispute_statement")
        self._require_calculated_run(statement, "dispute_statement")
        self._require_status(
            statement,
            frozenset({StatementStatus.PENDING, StatementStatus.REVIEWED}),
            "dispute_statement",
        )

        statement.status = StatementStatus.DISPUTED
        statement.disputed_at = self._clock.now()
        statement.dispute_reason = reason.strip()
        self._touch(statement, creator_id)
        self.session.flush()

        self._auditor.record_statement_action(
            statement.id,
            AuditAction.STATEMENT_DISPUTED,
            creator_id,
            {"reason": statement.dispute_reason},
        )
        logger.info("statement_disputed", extra={"statement_id": str(statement.id)})
        return StatementInfo.from_model(statement)

    def resolve_dispute(
        self,
        statement_id: UUID,
        resolution: str,
        actor_id: UUID,
        adjustment_cents: int = 0,
    ) -> StatementInfo:
        """DISPUTED -> RESOLVED, optionally with a signed DisputeResolution line."""
        if not resolution or not resolution.strip():
            raise InvalidAdjustmentError("resolution is required")

        statement = self._load(statement_id)
        self._require_calculated_run(statement, "resolve_dispute")
        self._require_status(
            statement, frozenset({StatementStatus.DISPUTED}), "resolve_dispute"
        )

        statement.status = StatementStatus.RESOLVED
        statement.resolved_at = self._clock.now()
        statement.resolution = resolution.strip()
        if adjustment_cents:
            self._book(
                statement,
                DisputeResolution(resolution=resolution.strip(), actor_id=str(actor_id)),
                adjustment_cents,
                actor_id,
            )
        self._touch(statement, actor_id)
        self.session.flush()

        self._auditor.record_statement_action(
            statement.id,
            AuditAction.STATEMENT_RESOLVED,
            actor_id,
            {"resolution": statement.resolution, "adjustment_cents": adjustment_cents},
        )
        logger.info(
            "statement_dispute_resolved",
            extra={"statement_id": str(statement.id), "adjustment_cents": adjustment_cents},
        )
        return StatementInfo.from_model(statement)

    # Money movements

    def apply_adjustment(
        self,
        statement_id: UUID,
        amount_cents: int,
        reason: str,
        adjustment_type: AdjustmentType | str,
        actor_id: UUID,
    ) -> StatementInfo:
        """
        Request a manual adjustment on a statement of a CALCULATED run.

        Amounts up to the approval threshold are applied at once as a
        ManualAdjustment line.  Larger amounts are recorded as
        PENDING_APPROVAL and move nothing until approve_adjustment().
        Either way the request shows up in StatementInfo.adjustments.
        """
        try:
            adjustment_type = AdjustmentType(adjustment_type)
        except ValueError:
            raise InvalidAdjustmentError(
                f"unknown adjustment type '{adjustment_type}'"
            ) from None
        if amount_cents == 0:
            raise InvalidAdjustmentError("amount must be non-zero")
        sign = _ADJUSTMENT_SIGN[adjustment_type]
        if sign is not None and (amount_cents > 0) != (sign > 0):
            raise InvalidAdjustmentError(
                f"{adjustment_type.value} adjustment must be "
                f"{'positive' if sign > 0 else 'negative'}"
            )
        if not reason or not reason.strip():
            raise InvalidAdjustmentError("reason is required")

        statement = self._load(statement_id)
        self._require_calculated_run(statement, "apply_adjustment")
        self._require_status(
            statement,
            frozenset(StatementStatus) - {StatementStatus.PAID},
            "apply_adjustment",
        )

        requires_approval = (
            abs(amount_cents) > self._settings.adjustment_approval_threshold_cents
        )
        now = self._clock.now()
        adjustment = RoyaltyAdjustment(
            statement_id=statement.id,
            adjustment_number=len(statement.adjustments) + 1,
            adjustment_type=adjustment_type.value,
            amount_cents=amount_cents,
            reason=reason.strip(),
            status=AdjustmentStatus.APPLIED,
            requires_approval=requires_approval,
            requested_at=now,
            requested_by_id=actor_id,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        statement.adjustments.append(adjustment)

        if requires_approval:
            adjustment.status = AdjustmentStatus.PENDING_APPROVAL
        else:
            self._apply(statement, adjustment, actor_id)
        self._touch(statement, actor_id)
        self.session.flush()

        self._auditor.record_statement_action(
            statement.id,
            AuditAction.ADJUSTMENT_REQUESTED if requires_approval else AuditAction.STATEMENT_ADJUSTED,
            actor_id,
            {
                "adjustment_number": adjustment.adjustment_number,
                "amount_cents": amount_cents,
                "adjustment_type": adjustment_type.value,
                "reason": reason.strip(),
            },
        )
        logger.info(
            "adjustment_pending_approval" if requires_approval else "statement_adjusted",
            extra={
                "statement_id": str(statement.id),
                "adjustment_number": adjustment.adjustment_number,
                "amount_cents": amount_cents,
                "adjustment_type": adjustment_type.value,
            },
        )
        return StatementInfo.from_model(statement)

    def _apply(
        self,
        statement: RoyaltyStatement,
        adjustment: RoyaltyAdjustment,
        actor_id: UUID,
    ) -> None:
        line = self._book(
            statement,
            ManualAdjustment(
                adjustment_type=adjustment.adjustment_type,
                reason=adjustment.reason,
                actor_id=str(actor_id),
                adjustment_number=adjustment.adjustment_number,
            ),
            adjustment.amount_cents,
            actor_id,
        )
        adjustment.status = AdjustmentStatus.APPLIED
        adjustment.applied_line_seq = line.line_seq

    def approve_adjustment(
        self,
        adjustment_id: UUID,
        actor_id: UUID,
        notes: str | None = None,
    ) -> AdjustmentInfo:
        """PENDING_APPROVAL -> APPLIED by an administrator on a CALCULATED run."""
        adjustment = self._load_adjustment(adjustment_id)
        statement = self._load(adjustment.statement_id)
        self._require_administrator(actor_id, "approve_adjustment")
        self._require_adjustment_status(
            adjustment, frozenset({AdjustmentStatus.PENDING_APPROVAL}), "approve_adjustment"
        )
        self._require_calculated_run(statement, "approve_adjustment")
        self._require_status(
            statement,
            frozenset(StatementStatus) - {StatementStatus.PAID},
            "approve_adjustment",
        )

        now = self._clock.now()
        self._apply(statement, adjustment, actor_id)
        adjustment.decided_at = now
        adjustment.decided_by_id = actor_id
        adjustment.decision_notes = notes.strip() if notes and notes.strip() else None
        adjustment.updated_at = now
        adjustment.updated_by_id = actor_id
        self._touch(statement, actor_id)
        self.session.flush()

        self._auditor.record_statement_action(
            statement.id,
            AuditAction.ADJUSTMENT_APPROVED,
            actor_id,
            {
                "adjustment_number": adjustment.adjustment_number,
                "amount_cents": adjustment.amount_cents,
                "notes": adjustment.decision_notes,
            },
        )
        logger.info(
            "adjustment_approved",
            extra={
                "statement_id": str(statement.id),
                "adjustment_number": adjustment.adjustment_number,
                "amount_cents": adjustment.amount_cents,
            },
        )
        return AdjustmentInfo.from_model(adjustment)

    def reject_adjustment(
        self,
        adjustment_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> AdjustmentInfo:
        """
        PENDING_APPROVAL -> REJECTED.  No money moves.

        Allowed on a locked run too, so a request left pending at lock time
        can still be closed.
        """
        if not reason or not reason.strip():
            raise InvalidAdjustmentError("rejection reason is required")

        adjustment = self._load_adjustment(adjustment_id)
        self._require_administrator(actor_id, "reject_adjustment")
        self._require_adjustment_status(
            adjustment, frozenset({AdjustmentStatus.PENDING_APPROVAL}), "reject_adjustment"
        )

        now = self._clock.now()
        adjustment.status = AdjustmentStatus.REJECTED
        adjustment.decided_at = now
        adjustment.decided_by_id = actor_id
        adjustment.decision_notes = reason.strip()
        adjustment.updated_at = now
        adjustment.updated_by_id = actor_id
        self.session.flush()

        self._auditor.record_statement_action(
            adjustment.statement_id,
            AuditAction.ADJUSTMENT_REJECTED,
            actor_id,
            {
                "adjustment_number": adjustment.adjustment_number,
                "amount_cents": adjustment.amount_cents,
                "reason": adjustment.decision_notes,
            },
        )
        logger.info(
            "adjustment_rejected",
            extra={
                "statement_id": str(adjustment.statement_id),
                "adjustment_number": adjustment.adjustment_number,
            },
        )
        return AdjustmentInfo.from_model(adjustment)

    def reverse_adjustment(
        self,
        adjustment_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> AdjustmentInfo:
        """
        APPLIED -> REVERSED on a CALCULATED run.

        Appends an AdjustmentReversal line of the negated amount; the
        original ManualAdjustment line stays on the statement.
        """
        if not reason or not reason.strip():
            raise InvalidAdjustmentError("reversal reason is required")

        adjustment = self._load_adjustment(adjustment_id)
        statement = self._load(adjustment.statement_id)
        self._require_administrator(actor_id, "reverse_adjustment")
        self._require_adjustment_status(
            adjustment, frozenset({AdjustmentStatus.APPLIED}), "reverse_adjustment"
        )
        self._require_calculated_run(statement, "reverse_adjustment")
        self._require_status(
            statement,
            frozenset(StatementStatus) - {StatementStatus.PAID},
            "reverse_adjustment",
        )

        line = self._book(
            statement,
            AdjustmentReversal(
                adjustment_number=adjustment.adjustment_number,
                original_adjustment_type=adjustment.adjustment_type,
                reason=reason.strip(),
                actor_id=str(actor_id),
            ),
            -adjustment.amount_cents,
            actor_id,
        )
        now = self._clock.now()
        adjustment.status = AdjustmentStatus.REVERSED
        adjustment.reversed_at = now
        adjustment.reversed_by_id = actor_id
        adjustment.reversal_reason = reason.strip()
        adjustment.reversal_line_seq = line.line_seq
        adjustment.updated_at = now
        adjustment.updated_by_id = actor_id
        self._touch(statement, actor_id)
        self.session.flush()

        self._auditor.record_statement_action(
            statement.id,
            AuditAction.ADJUSTMENT_REVERSED,
            actor_id,
            {
                "adjustment_number": adjustment.adjustment_number,
                "amount_cents": -adjustment.amount_cents,
                "reason": adjustment.reversal_reason,
            },
        )
        logger.info(
            "adjustment_reversed",
            extra={
                "statement_id": str(statement.id),
                "adjustment_number": adjustment.adjustment_number,
                "amount_cents": -adjustment.amount_cents,
            },
        )
        return AdjustmentInfo.from_model(adjustment)

    def get_statement_adjustments(self, statement_id: UUID) -> tuple[AdjustmentInfo, ...]:
        statement = self.session.get(RoyaltyStatement, statement_id)
        if statement is None:
            raise StatementNotFoundError(str(statement_id))
        return tuple(AdjustmentInfo.from_model(a) for a in statement.adjustments)

    def get_pending_adjustments(
        self,
        run_id: UUID | None = None,
        limit: int = DEFAULT_PENDING_LIMIT,
    ) -> tuple[AdjustmentInfo, ...]:
        """Oldest PENDING_APPROVAL requests first, optionally for one run."""
        stmt = select(RoyaltyAdjustment).where(
            RoyaltyAdjustment.status == AdjustmentStatus.PENDING_APPROVAL
        )
        if run_id is not None:
            stmt = stmt.join(
                RoyaltyStatement, RoyaltyStatement.id == RoyaltyAdjustment.statement_id
            ).where(RoyaltyStatement.run_id == run_id)
        stmt = stmt.order_by(
            RoyaltyAdjustment.requested_at,
            RoyaltyAdjustment.statement_id,
            RoyaltyAdjustment.adjustment_number,
        ).limit(limit)
        return tuple(
            AdjustmentInfo.from_model(a) for a in self.session.execute(stmt).scalars()
        )

    def issue_correction(
        self,
        statement_id: UUID,
        amount_cents: int,
        reason: str,
        actor_id: UUID,
    ) -> StatementInfo:
        """
        Additive administrator correction on a LOCKED (or later) run.

        Appends a CorrectionDetail line and an entry to the statement's
        correction history; earlier lines are never touched.
        """
        if amount_cents == 0:
            raise InvalidAdjustmentError("amount must be non-zero")
        if not reason or not reason.strip():
            raise InvalidAdjustmentError("reason is required")

        statement = self._load(statement_id)
        self._require_locked_run(statement, "issue_correction")
        self._require_administrator(actor_id, "issue_correction")
        correction_number = 1 + sum(
            1 for line in statement.lines if LineKind(line.line_kind) == LineKind.CORRECTION
        )
        now = self._clock.now()

        with mutation_context(self.session, MutationTag.CORRECTION):
            self._book(
                statement,
                CorrectionDetail(
                    reason=reason.strip(),
                    actor_id=str(actor_id),
                    correction_number=correction_number,
                ),
                amount_cents,
                actor_id,
            )
            details: dict[str, Any] = dict(statement.details or {})
            details["corrections"] = list(details.get("corrections", [])) + [
                {
                    "correction_number": correction_number,
                    "amount_cents": amount_cents,
                    "reason": reason.strip(),
                    "actor_id": str(actor_id),
                    "issued_at": now.isoformat(),
                }
            ]
            statement.details = details
            self._touch(statement, actor_id)
            self.session.flush()

        self._auditor.record_statement_action(
            statement.id,
            AuditAction.STATEMENT_CORRECTED,
            actor_id,
            {
                "correction_number": correction_number,
                "amount_cents": amount_cents,
                "reason": reason.strip(),
            },
        )
        logger.info(
            "statement_corrected",
            extra={
                "statement_id": str(statement.id),
                "correction_number": correction_number,
                "amount_cents": amount_cents,
            },
        )
        return StatementInfo.from_model(statement)

    def mark_paid(
        self,
        statement_id: UUID,
        payment_reference: str,
        actor_id: UUID,
    ) -> StatementInfo:
        """Payout hook: PENDING|REVIEWED|RESOLVED -> PAID on a locked run."""
        if not payment_reference or not payment_reference.strip():
            raise InvalidAdjustmentError("payment reference is required")

        statement = self._load(statement_id)
        self._require_locked_run(statement, "mark_paid")
        self._require_status(statement, PAYABLE_STATUSES, "mark_paid")
        if statement.total_earnings_cents < statement.minimum_payout_cents:
            # Held below threshold; the balance is paid from a later statement.
            raise StatementStateError(str(statement.id), "below_threshold", "mark_paid")

        with mutation_context(self.session, MutationTag.PAYOUT):
            statement.status = StatementStatus.PAID
            statement.paid_at = self._clock.now()
            statement.payment_reference = payment_reference.strip()
            self._touch(statement, actor_id)
            self.session.flush()

        self._auditor.record_statement_action(
            statement.id,
            AuditAction.STATEMENT_PAID,
            actor_id,
            {
                "payment_reference": statement.payment_reference,
                "amount_cents": statement.total_earnings_cents,
            },
        )
        logger.info(
            "statement_paid",
            extra={
                "statement_id": str(statement.id),
                "payment_reference": statement.payment_reference,
            },
        )
        return StatementInfo.from_model(statement)
