"""
RunLifecycleService -- royalty run creation and state transitions.

Responsibility:
    Opens runs (period validation + overlap check), drives the direct
    lifecycle edges, and owns the single "become immutable" event: the
    approved CALCULATED -> LOCKED transition.  Every status change writes
    one audit event.

Architecture position:
    Kernel > Services -- imperative shell.  CalculationService and
    RollbackService reuse apply_transition() so the state machine in
    domain/run_state.py is consulted in exactly one place.

Invariants enforced:
    - period_end > period_start; periods are half-open.
    - No two active runs in one scope overlap (CANCELLED/FAILED ignored).
    - DRAFT -> CALCULATED only via calculation, * -> DRAFT only via
      rollback, CALCULATED -> LOCKED only via lock approval with zero
      disputes and a clean validation report.
    - Flush-only: never commits or rolls back.

Failure modes:
    - InvalidPeriodError, RunOverlapError on open_run().
    - RunNotFoundError, InvalidTransitionError on transition().
    - RunInvalidStateError, UnresolvedDisputesError, ValidationFailedError
      on approve_lock().

Audit relevance:
    RUN_OPENED on creation, RUN_TRANSITIONED (or a more specific action)
    on every edge, with from/to status and the actor.
"""

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from royalty_kernel.domain.archive import snapshot_run_state
from royalty_kernel.domain.clock import Clock
from royalty_kernel.domain.dtos import RunInfo, ValidationReport
from royalty_kernel.domain.run_state import TransitionSource, check_transition
from royalty_kernel.exceptions import (
    InvalidPeriodError,
    InvalidTransitionError,
    RunInvalidStateError,
    RunNotFoundError,
    RunOverlapError,
    UnresolvedDisputesError,
    ValidationFailedError,
)
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.audit_event import AuditAction
from royalty_kernel.models.run import RoyaltyRun, RunStatus
from royalty_kernel.models.statement import StatementStatus
from royalty_kernel.selectors.run_selector import RunSelector
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.base import BaseService

logger = get_logger("services.run_lifecycle")

# Lifecycle timestamp stamped when a status is entered.
_ENTRY_TIMESTAMPS = {
    RunStatus.CALCULATED: "calculated_at",
    RunStatus.LOCKED: "locked_at",
    RunStatus.PROCESSING: "processing_at",
    RunStatus.COMPLETED: "completed_at",
}


class RunLifecycleService(BaseService[RoyaltyRun]):
    """
    Run creation and lifecycle transitions.

    Contract:
        Accepts run ids and returns frozen RunInfo DTOs.  Mutations flush
        within the caller's transaction.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._auditor = auditor
        self._runs = RunSelector(session)

    def open_run(
        self,
        period_start: date,
        period_end: date,
        actor_id: UUID,
        notes: str | None = None,
        scope: str = "default",
    ) -> RunInfo:
        """
        Create a DRAFT run over [period_start, period_end).

        Raises:
            InvalidPeriodError: If period_end <= period_start.
            RunOverlapError: If an active run in ``scope`` intersects the period.
        """
        if period_end <= period_start:
            logger.warning(
                "run_period_invalid",
                extra={"period_start": period_start, "period_end": period_end},
            )
            raise InvalidPeriodError(period_start, period_end)

        overlapping = self._runs.overlapping_runs(scope, period_start, period_end)
        if overlapping:
            existing = overlapping[0]
            logger.warning(
                "run_period_overlap",
                extra={
                    "scope": scope,
                    "period_start": period_start,
                    "period_end": period_end,
                    "existing_run_id": str(existing.id),
                },
            )
            raise RunOverlapError(period_start, period_end, str(existing.id), scope)

        now = self._clock.now()
        run = RoyaltyRun(
            scope=scope,
            period_start=period_start,
            period_end=period_end,
            status=RunStatus.DRAFT,
            total_revenue_cents=0,
            total_royalties_cents=0,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
            notes=notes or None,
        )
        self.session.add(run)
        self.session.flush()

        self._auditor.record_run_opened(
            run.id,
            actor_id,
            {
                "scope": scope,
                "period_start": period_start,
                "period_end": period_end,
            },
        )

        logger.info(
            "run_opened",
            extra={
                "run_id": str(run.id),
                "scope": scope,
                "period_start": period_start,
                "period_end": period_end,
            },
        )
        return RunInfo.from_model(run)

    def get_run(self, run_id: UUID) -> RoyaltyRun:
        run = self.session.get(RoyaltyRun, run_id)
        if run is None:
            raise RunNotFoundError(str(run_id))
        return run

    def get_run_for_update(self, run_id: UUID) -> RoyaltyRun:
        """Load a run with a row lock (no-op on SQLite)."""
        run = self.session.execute(
            select(RoyaltyRun)
            .where(RoyaltyRun.id == run_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if run is None:
            raise RunNotFoundError(str(run_id))
        return run

    def require_status(
        self,
        run: RoyaltyRun,
        expected: tuple[RunStatus, ...],
        operation: str,
    ) -> RunStatus:
        status = RunStatus(run.status)
        if status not in expected:
            logger.warning(
                "run_state_rejected",
                extra={
                    "run_id": str(run.id),
                    "operation": operation,
                    "before": snapshot_run_state(run),
                },
            )
            raise RunInvalidStateError(
                str(run.id),
                status.value,
                tuple(s.value for s in expected),
                operation,
            )
        return status

    def apply_transition(
        self,
        run: RoyaltyRun,
        target: RunStatus,
        actor_id: UUID,
        source: TransitionSource,
        action: AuditAction = AuditAction.RUN_TRANSITIONED,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Move ``run`` to ``target`` if ``source`` may take that edge.

        Stamps the entry timestamp and writes the audit event.  Shared by
        calculation, lock approval and rollback.
        """
        current = RunStatus(run.status)
        try:
            check_transition(run.id, current, target, source)
        except InvalidTransitionError:
            logger.warning(
                "run_transition_rejected",
                extra={
                    "run_id": str(run.id),
                    "from_status": current.value,
                    "to_status": target.value,
                    "source": source.value,
                    "before": snapshot_run_state(run),
                },
            )
            raise

        now = self._clock.now()
        run.status = target
        stamp = _ENTRY_TIMESTAMPS.get(target)
        if stamp is not None:
            setattr(run, stamp, now)
        run.updated_at = now
        run.updated_by_id = actor_id
        self.session.flush()

        self._auditor.record_run_transition(
            run.id,
            actor_id,
            current.value,
            target.value,
            action=action,
            details=details,
        )

        logger.info(
            "run_transitioned",
            extra={
                "run_id": str(run.id),
                "from_status": current.value,
                "to_status": target.value,
                "source": source.value,
            },
        )

    def transition(self, run_id: UUID, target: RunStatus | str, actor_id: UUID) -> RunInfo:
        """
        Drive a direct lifecycle edge (cancel, fail, start processing, complete).

        Raises:
            RunNotFoundError: If the run does not exist.
            InvalidTransitionError: If the edge is not in the lifecycle or is
                reserved for calculation, lock approval or rollback.
        """
        run = self.get_run_for_update(run_id)
        self.apply_transition(run, RunStatus(target), actor_id, TransitionSource.DIRECT)
        return RunInfo.from_model(run)

    def approve_lock(
        self,
        run_id: UUID,
        actor_id: UUID,
        report: ValidationReport,
        notes: str | None = None,
    ) -> RunInfo:
        """
        CALCULATED -> LOCKED: the run becomes immutable.

        ``report`` must have been built for this run in the current
        transaction.

        Raises:
            RunInvalidStateError: If the run is not CALCULATED.
            UnresolvedDisputesError: If any statement is DISPUTED.
            ValidationFailedError: If the report is not valid.
        """
        run = self.get_run_for_update(run_id)
        self.require_status(run, (RunStatus.CALCULATED,), "lock")

        disputed = self._runs.count_statements_in_status(run.id, StatementStatus.DISPUTED)
        if disputed:
            logger.warning(
                "run_lock_blocked_by_disputes",
                extra={"run_id": str(run.id), "disputed_count": disputed},
            )
            raise UnresolvedDisputesError(str(run.id), disputed)

        if not report.is_valid:
            logger.warning(
                "run_lock_blocked_by_validation",
                extra={"run_id": str(run.id), "error_codes": list(report.error_codes)},
            )
            raise ValidationFailedError(str(run.id), list(report.error_codes))

        run.locked_by_id = actor_id
        if notes:
            run.append_note(notes)
        self.apply_transition(
            run,
            RunStatus.LOCKED,
            actor_id,
            TransitionSource.LOCK_APPROVAL,
            action=AuditAction.RUN_LOCKED,
            details={
                "total_revenue_cents": run.total_revenue_cents,
                "total_royalties_cents": run.total_royalties_cents,
                "warning_count": len(report.warnings),
            },
        )
        return RunInfo.from_model(run)
