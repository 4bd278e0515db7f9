"""
CalculationService -- one full calculation pass over a DRAFT run.

Responsibility:
    Collect license revenue, build statements and lines, set run totals,
    append the calculation summary to the notes ledger and take the
    DRAFT -> CALCULATED edge.  All of this happens inside the caller's
    single transaction, so a failure anywhere leaves the run DRAFT with no
    statements.

Architecture position:
    Kernel > Services -- orchestrates RevenueCollector, StatementBuilder and
    RunLifecycleService.  The operation surface owns commit/rollback, the
    run lease and the CALCULATION_FAILED audit record of a failed pass.

Invariants enforced:
    - Only DRAFT runs are calculated (RunInvalidStateError otherwise).
    - The CALCULATED status is reachable only from here
      (TransitionSource.CALCULATION).
    - total_royalties_cents == sum of all allocations of the pass.

Failure modes:
    - Every RoyaltyKernelError propagates unchanged.
    - Any other exception is wrapped in CalculationError.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from royalty_kernel.domain.archive import snapshot_run_state
from royalty_kernel.domain.clock import Clock
from royalty_kernel.domain.dtos import CalculationResult, StatementInfo
from royalty_kernel.domain.run_state import TransitionSource
from royalty_kernel.domain.settings import EngineSettings
from royalty_kernel.exceptions import CalculationError, RoyaltyKernelError
from royalty_kernel.logging_config import LogContext, get_logger
from royalty_kernel.models.audit_event import AuditAction
from royalty_kernel.models.run import RoyaltyRun, RunStatus
from royalty_kernel.services.base import BaseService
from royalty_kernel.services.deadline import OperationDeadline
from royalty_kernel.services.revenue_collector import RevenueCollector
from royalty_kernel.services.run_lifecycle_service import RunLifecycleService
from royalty_kernel.services.statement_builder import StatementBuilder
from royalty_kernel.utils.hashing import canonicalize_json

logger = get_logger("services.calculation")

CALCULATION_NOTE_TAG = "[calculation]"


class CalculationService(BaseService[RoyaltyRun]):
    def __init__(
        self,
        session: Session,
        lifecycle: RunLifecycleService,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
    ):
        super().__init__(session, clock)
        self._lifecycle = lifecycle
        self._settings = settings or EngineSettings()
        self._collector = RevenueCollector(session, self._settings)
        self._builder = StatementBuilder(session, self._clock, self._settings)

    def calculate(
        self,
        run_id: UUID,
        actor_id: UUID,
        deadline: OperationDeadline | None = None,
    ) -> CalculationResult:
        """
        Calculate a DRAFT run and move it to CALCULATED.

        Raises:
            RunNotFoundError, RunInvalidStateError: run missing or not DRAFT.
            OwnershipSplitError, LicenseTermError: bad catalog data.
            NegativeAmountError, RoundingMismatchError: consistency failures.
            TransactionTimeoutError: the deadline passed mid-calculation.
            CalculationError: any unexpected failure.
        """
        run = self._lifecycle.get_run_for_update(run_id)
        self._lifecycle.require_status(run, (RunStatus.DRAFT,), "calculate")

        with LogContext.bind(run_id=str(run.id), operation="calculate_run"):
            before = snapshot_run_state(run)
            try:
                return self._calculate(run, actor_id, deadline)
            except RoyaltyKernelError as exc:
                logger.error(
                    "calculation_failed",
                    extra={"error_code": exc.code, "before": before},
                )
                raise
            except Exception as exc:
                logger.exception(
                    "calculation_failed_unexpectedly",
                    extra={"before": before},
                )
                raise CalculationError(str(run.id), str(exc)) from exc

    def _calculate(
        self,
        run: RoyaltyRun,
        actor_id: UUID,
        deadline: OperationDeadline | None,
    ) -> CalculationResult:
        logger.info(
            "calculation_started",
            extra={"period_start": run.period_start, "period_end": run.period_end},
        )

        revenues = self._collector.collect(run.period_start, run.period_end, deadline)
        outcome = self._builder.build(run, revenues, actor_id, deadline)

        run.total_revenue_cents = outcome.total_revenue_cents
        run.total_royalties_cents = outcome.total_royalties_cents

        summary = {
            "calculated_at": self._clock.now(),
            "license_count": len(revenues),
            "statement_count": len(outcome.statements),
            "total_revenue_cents": outcome.total_revenue_cents,
            "total_royalties_cents": outcome.total_royalties_cents,
        }
        run.append_note(f"{CALCULATION_NOTE_TAG} {canonicalize_json(summary)}")

        self._lifecycle.apply_transition(
            run,
            RunStatus.CALCULATED,
            actor_id,
            TransitionSource.CALCULATION,
            action=AuditAction.RUN_CALCULATED,
            details={k: v for k, v in summary.items() if k != "calculated_at"},
        )

        logger.info(
            "calculation_completed",
            extra={
                "license_count": len(revenues),
                "statement_count": len(outcome.statements),
                "total_revenue_cents": outcome.total_revenue_cents,
                "total_royalties_cents": outcome.total_royalties_cents,
            },
        )

        ordered = sorted(outcome.statements, key=lambda s: str(s.creator_id))
        return CalculationResult(
            run_id=run.id,
            status=RunStatus(run.status),
            total_revenue_cents=run.total_revenue_cents,
            total_royalties_cents=run.total_royalties_cents,
            license_count=len(revenues),
            statements=tuple(StatementInfo.from_model(s) for s in ordered),
        )
