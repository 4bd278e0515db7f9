"""
royalty_services.royalty_engine -- Operation surface of the royalty engine.

Responsibility:
    The single entry point embedding applications and the CLI call:
    open_run, calculate_run, lock_run, rollback_run, transition,
    get_validation_report, plus the statement workflow and adjustment
    approval hooks.  Owns what
    kernel services deliberately do not: transaction boundaries, the run
    lease lock, the operation deadline and outbound events.

Architecture position:
    Services -- sits above royalty_kernel (and royalty_config via
    from_config()).  KernelServices is the one place kernel services are
    constructed and wired for a session.

Guarded operation protocol:
    1. acquire the lease for the run (or the scope, for open_run) in its
       own short transaction;
    2. run the work in one session_scope() with an OperationDeadline;
    3. check the deadline and verify the lease inside the work transaction,
       then commit;
    4. release the lease (always; a failed release is logged and the
       lease left to expire, so it never masks the outcome of the work);
    5. publish events (only after a successful commit).

Failure modes:
    - Every kernel error propagates unchanged after rollback.
    - A failed calculation also records CALCULATION_FAILED in a separate
      transaction so the failure survives the rollback.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import date
from typing import TYPE_CHECKING, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from royalty_kernel.db.engine import session_scope
from royalty_kernel.domain.access import RoleResolver, StaticRoleResolver
from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.domain.dtos import (
    AdjustmentInfo,
    CalculationResult,
    RollbackResult,
    RunInfo,
    StatementInfo,
    ValidationReport,
)
from royalty_kernel.domain.settings import EngineSettings
from royalty_kernel.exceptions import (
    AdjustmentNotFoundError,
    LockNotAcquiredError,
    RoyaltyKernelError,
    RunInvalidStateError,
    RunNotFoundError,
    StatementNotFoundError,
)
from royalty_kernel.logging_config import LogContext, get_logger
from royalty_kernel.models.run import RunStatus
from royalty_kernel.models.statement import RoyaltyAdjustment, RoyaltyStatement
from royalty_kernel.selectors.run_selector import RunSelector
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.calculation_service import CalculationService
from royalty_kernel.services.deadline import OperationDeadline
from royalty_kernel.services.rollback_service import RollbackService
from royalty_kernel.services.run_lifecycle_service import RunLifecycleService
from royalty_kernel.services.run_lock_service import RunLease, RunLockService, run_lock_key
from royalty_kernel.services.statement_service import (
    DEFAULT_PENDING_LIMIT,
    AdjustmentType,
    StatementService,
)
from royalty_kernel.services.validation_reporter import ValidationReporter
from royalty_services.events import (
    CacheInvalidated,
    EventPublisher,
    InMemoryEventBus,
    StatementReady,
    run_cache_key,
    statement_cache_key,
)

if TYPE_CHECKING:
    from royalty_config.schema import RoyaltyEngineConfig

logger = get_logger("services.royalty_engine")

T = TypeVar("T")

SCOPE_LOCK_PREFIX = "royalty_scope"


class KernelServices:
    """Kernel services wired for one session.  Never commits."""

    def __init__(
        self,
        session: Session,
        clock: Clock,
        settings: EngineSettings,
        role_resolver: RoleResolver,
    ) -> None:
        self.session = session
        self.auditor = AuditorService(session, clock)
        self.lifecycle = RunLifecycleService(session, self.auditor, clock)
        self.calculation = CalculationService(session, self.lifecycle, clock, settings)
        self.reporter = ValidationReporter(session, settings)
        self.rollback = RollbackService(
            session, self.auditor, self.lifecycle, clock, settings, role_resolver
        )
        self.statements = StatementService(
            session, self.auditor, clock, role_resolver, settings
        )
        self.runs = RunSelector(session)


class RoyaltyEngine:
    """
    Transactional, lock-guarded royalty operations.

    Contract:
        Every public method runs in its own transaction(s) taken from
        ``session_factory`` and returns frozen DTOs.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: EngineSettings | None = None,
        role_resolver: RoleResolver | None = None,
        clock: Clock | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self._factory = session_factory
        self.settings = settings or EngineSettings()
        self._roles = role_resolver or StaticRoleResolver()
        self._clock = clock or SystemClock()
        self.publisher = publisher if publisher is not None else InMemoryEventBus()

    @classmethod
    def from_config(
        cls,
        session_factory: sessionmaker[Session],
        config: RoyaltyEngineConfig,
        clock: Clock | None = None,
        publisher: EventPublisher | None = None,
    ) -> RoyaltyEngine:
        from royalty_config.bridges import build_engine_settings, build_role_resolver

        return cls(
            session_factory,
            settings=build_engine_settings(config),
            role_resolver=build_role_resolver(config),
            clock=clock,
            publisher=publisher,
        )

    # Infrastructure

    def _services(self, session: Session) -> KernelServices:
        return KernelServices(session, self._clock, self.settings, self._roles)

    def _guarded(
        self,
        lock_key: str,
        operation: str,
        work: Callable[[KernelServices, OperationDeadline], T],
    ) -> T:
        with session_scope(self._factory) as session:
            lease = RunLockService(session, self._clock).acquire(
                lock_key, self.settings.lock_lease_seconds
            )

        try:
            with session_scope(self._factory) as session:
                deadline = OperationDeadline(
                    self._clock, self.settings.calculation_timeout_seconds, operation
                )
                deadline.apply_statement_timeout(session)
                result = work(self._services(session), deadline)
                deadline.check("before_commit")
                RunLockService(session, self._clock).verify(lease)
            return result
        finally:
            self._release(lease)

    def _release(self, lease: RunLease) -> None:
        """Release ``lease``; on failure it is left to expire."""
        try:
            with session_scope(self._factory) as session:
                RunLockService(session, self._clock).release(lease)
        except Exception:
            logger.exception(
                "run_lease_release_failed",
                extra={
                    "lock_key": lease.lock_key,
                    "lease_seconds": self.settings.lock_lease_seconds,
                },
            )

    def _publish_invalidation(self, reason: str, run_id: UUID, statement_ids=()) -> None:
        keys = [run_cache_key(run_id)]
        keys.extend(statement_cache_key(sid) for sid in sorted(statement_ids, key=str))
        self.publisher.publish(CacheInvalidated(keys=tuple(keys), reason=reason))

    # Run operations

    def open_run(
        self,
        period_start: date,
        period_end: date,
        actor_id: UUID,
        notes: str | None = None,
        scope: str | None = None,
    ) -> RunInfo:
        scope = scope or self.settings.scope
        with LogContext.bind(
            correlation_id=str(uuid.uuid4()), actor_id=str(actor_id), operation="open_run"
        ):
            info = self._guarded(
                f"{SCOPE_LOCK_PREFIX}:{scope}",
                "open_run",
                lambda svc, _deadline: svc.lifecycle.open_run(
                    period_start, period_end, actor_id, notes=notes, scope=scope
                ),
            )
        self._publish_invalidation("open_run", info.id)
        return info

    def calculate_run(self, run_id: UUID, actor_id: UUID) -> CalculationResult:
        with LogContext.bind(
            correlation_id=str(uuid.uuid4()),
            run_id=str(run_id),
            actor_id=str(actor_id),
            operation="calculate_run",
        ):
            try:
                result = self._guarded(
                    run_lock_key(run_id),
                    "calculate_run",
                    lambda svc, deadline: svc.calculation.calculate(
                        run_id, actor_id, deadline
                    ),
                )
            except (LockNotAcquiredError, RunNotFoundError, RunInvalidStateError):
                raise
            except Exception as exc:
                self._record_calculation_failure(run_id, actor_id, exc)
                raise

        for statement in result.statements:
            self.publisher.publish(
                StatementReady(
                    statement_id=statement.id,
                    run_id=result.run_id,
                    creator_id=statement.creator_id,
                    total_earnings_cents=statement.total_earnings_cents,
                    status=statement.status.value,
                )
            )
        self._publish_invalidation("calculate_run", run_id, result.statement_ids)
        return result

    def _record_calculation_failure(self, run_id: UUID, actor_id: UUID, exc: Exception) -> None:
        code = exc.code if isinstance(exc, RoyaltyKernelError) else "UNEXPECTED_ERROR"
        try:
            with session_scope(self._factory) as session:
                AuditorService(session, self._clock).record_calculation_failed(
                    run_id,
                    actor_id,
                    code,
                    str(exc),
                    {
                        "exception_type": type(exc).__name__,
                        "attributes": {
                            k: v if isinstance(v, (str, int, float, bool)) else str(v)
                            for k, v in vars(exc).items()
                            if not k.startswith("_")
                        },
                    },
                )
        except Exception:
            # The original failure is re-raised by the caller.
            logger.exception("calculation_failure_audit_failed", extra={"error_code": code})

    def lock_run(
        self,
        run_id: UUID,
        actor_id: UUID,
        approve: bool,
        notes: str | None = None,
    ) -> RunInfo | RollbackResult:
        """
        Approve (CALCULATED -> LOCKED) or reject the run.

        Rejection is a rollback with ``notes`` as the reason, so it carries
        the same privilege and reason-length requirements.
        """
        if not approve:
            return self.rollback_run(run_id, actor_id, notes or "")

        def work(svc: KernelServices, _deadline: OperationDeadline):
            report = svc.reporter.build_report(run_id)
            info = svc.lifecycle.approve_lock(run_id, actor_id, report, notes=notes)
            return info, [s.id for s in svc.runs.statements(run_id)]

        with LogContext.bind(
            correlation_id=str(uuid.uuid4()),
            run_id=str(run_id),
            actor_id=str(actor_id),
            operation="lock_run",
        ):
            info, statement_ids = self._guarded(run_lock_key(run_id), "lock_run", work)
        self._publish_invalidation("lock_run", run_id, statement_ids)
        return info

    def rollback_run(self, run_id: UUID, actor_id: UUID, reason: str) -> RollbackResult:
        def work(svc: KernelServices, _deadline: OperationDeadline):
            statement_ids = [s.id for s in svc.runs.statements(run_id)]
            return svc.rollback.rollback(run_id, actor_id, reason), statement_ids

        with LogContext.bind(
            correlation_id=str(uuid.uuid4()),
            run_id=str(run_id),
            actor_id=str(actor_id),
            operation="rollback_run",
        ):
            result, statement_ids = self._guarded(run_lock_key(run_id), "rollback_run", work)
        self._publish_invalidation("rollback_run", run_id, statement_ids)
        return result

    def transition(self, run_id: UUID, target: RunStatus | str, actor_id: UUID) -> RunInfo:
        with LogContext.bind(
            correlation_id=str(uuid.uuid4()),
            run_id=str(run_id),
            actor_id=str(actor_id),
            operation="transition",
        ):
            info = self._guarded(
                run_lock_key(run_id),
                "transition",
                lambda svc, _deadline: svc.lifecycle.transition(run_id, target, actor_id),
            )
        self._publish_invalidation("transition", run_id)
        return info

    # Reads

    def get_validation_report(self, run_id: UUID) -> ValidationReport:
        with session_scope(self._factory) as session:
            return self._services(session).reporter.build_report(run_id)

    def get_run(self, run_id: UUID) -> RunInfo:
        with session_scope(self._factory) as session:
            info = RunSelector(session).get_run(run_id)
        if info is None:
            raise RunNotFoundError(str(run_id))
        return info

    def get_statements(self, run_id: UUID) -> tuple[StatementInfo, ...]:
        with session_scope(self._factory) as session:
            return RunSelector(session).statements(run_id)

    def validate_audit_chain(self) -> bool:
        with session_scope(self._factory) as session:
            return AuditorService(session, self._clock).validate_chain()

    # Statement workflow

    def _adjustment_statement_id(self, adjustment_id: UUID) -> UUID:
        with session_scope(self._factory) as session:
            adjustment = session.get(RoyaltyAdjustment, adjustment_id)
            if adjustment is None:
                raise AdjustmentNotFoundError(str(adjustment_id))
            return adjustment.statement_id

    def _statement_run_id(self, statement_id: UUID) -> UUID:
        with session_scope(self._factory) as session:
            statement = session.get(RoyaltyStatement, statement_id)
            if statement is None:
                raise StatementNotFoundError(str(statement_id))
            return statement.run_id

    def _statement_operation(
        self,
        statement_id: UUID,
        actor_id: UUID,
        operation: str,
        work: Callable[[StatementService], T],
    ) -> T:
        run_id = self._statement_run_id(statement_id)
        with LogContext.bind(
            correlation_id=str(uuid.uuid4()),
            run_id=str(run_id),
            statement_id=str(statement_id),
            actor_id=str(actor_id),
            operation=operation,
        ):
            info = self._guarded(
                run_lock_key(run_id),
                operation,
                lambda svc, _deadline: work(svc.statements),
            )
        self._publish_invalidation(operation, run_id, [statement_id])
        return info

    def review_statement(self, statement_id: UUID, creator_id: UUID) -> StatementInfo:
        return self._statement_operation(
            statement_id,
            creator_id,
            "review_statement",
            lambda svc: svc.review_statement(statement_id, creator_id),
        )

    def dispute_statement(self, statement_id: UUID, reason: str, creator_id: UUID) -> StatementInfo:
        return self._statement_operation(
            statement_id,
            creator_id,
            "dispute_statement",
            lambda svc: svc.dispute_statement(statement_id, reason, creator_id),
        )

    def resolve_dispute(
        self,
        statement_id: UUID,
        resolution: str,
        actor_id: UUID,
        adjustment_cents: int = 0,
    ) -> StatementInfo:
        return self._statement_operation(
            statement_id,
            actor_id,
            "resolve_dispute",
            lambda svc: svc.resolve_dispute(
                statement_id, resolution, actor_id, adjustment_cents
            ),
        )

    def apply_adjustment(
        self,
        statement_id: UUID,
        amount_cents: int,
        reason: str,
        adjustment_type: AdjustmentType | str,
        actor_id: UUID,
    ) -> StatementInfo:
        return self._statement_operation(
            statement_id,
            actor_id,
            "apply_adjustment",
            lambda svc: svc.apply_adjustment(
                statement_id, amount_cents, reason, adjustment_type, actor_id
            ),
        )

    def issue_correction(
        self,
        statement_id: UUID,
        amount_cents: int,
        reason: str,
        actor_id: UUID,
    ) -> StatementInfo:
        return self._statement_operation(
            statement_id,
            actor_id,
            "issue_correction",
            lambda svc: svc.issue_correction(statement_id, amount_cents, reason, actor_id),
        )

    def mark_paid(self, statement_id: UUID, payment_reference: str, actor_id: UUID) -> StatementInfo:
        return self._statement_operation(
            statement_id,
            actor_id,
            "mark_paid",
            lambda svc: svc.mark_paid(statement_id, payment_reference, actor_id),
        )

    # Adjustment approval workflow

    def approve_adjustment(
        self,
        adjustment_id: UUID,
        actor_id: UUID,
        notes: str | None = None,
    ) -> AdjustmentInfo:
        return self._statement_operation(
            self._adjustment_statement_id(adjustment_id),
            actor_id,
            "approve_adjustment",
            lambda svc: svc.approve_adjustment(adjustment_id, actor_id, notes),
        )

    def reject_adjustment(self, adjustment_id: UUID, actor_id: UUID, reason: str) -> AdjustmentInfo:
        return self._statement_operation(
            self._adjustment_statement_id(adjustment_id),
            actor_id,
            "reject_adjustment",
            lambda svc: svc.reject_adjustment(adjustment_id, actor_id, reason),
        )

    def reverse_adjustment(self, adjustment_id: UUID, actor_id: UUID, reason: str) -> AdjustmentInfo:
        return self._statement_operation(
            self._adjustment_statement_id(adjustment_id),
            actor_id,
            "reverse_adjustment",
            lambda svc: svc.reverse_adjustment(adjustment_id, actor_id, reason),
        )

    def get_statement_adjustments(self, statement_id: UUID) -> tuple[AdjustmentInfo, ...]:
        with session_scope(self._factory) as session:
            return self._services(session).statements.get_statement_adjustments(statement_id)

    def get_pending_adjustments(
        self,
        run_id: UUID | None = None,
        limit: int = DEFAULT_PENDING_LIMIT,
    ) -> tuple[AdjustmentInfo, ...]:
        with session_scope(self._factory) as session:
            return self._services(session).statements.get_pending_adjustments(run_id, limit)
