"""
RollbackService -- controlled, audited reversal of a calculated or locked run.

Responsibility:
    Returns a CALCULATED or LOCKED run to DRAFT: archives its statements and
    lines as a versioned record in the notes ledger, deletes them, zeroes
    the totals and clears the lifecycle timestamps.  This is the only path
    back to DRAFT and the only code allowed to delete statements.

Architecture position:
    Kernel > Services -- imperative shell.  Runs inside the caller's
    transaction, so either every step happens or none does.

Invariants enforced:
    - Preconditions are checked before any write, in this order: status
      (CALCULATED or LOCKED), no PAID statement, administrator authority,
      reason length.
    - The archive record is appended before anything is deleted.
    - Deletes happen under the ``rollback`` mutation tag; nothing else can
      remove rows of a locked run.

Failure modes:
    - RunNotFoundError, RunInvalidStateError, PaidStatementsError,
      InsufficientPrivilegeError, RollbackReasonError.

Audit relevance:
    RUN_TRANSITIONED (to DRAFT) plus RUN_ROLLED_BACK carrying the reason and
    the full before/after snapshot.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from royalty_kernel.db.immutability import MutationTag, mutation_context
from royalty_kernel.domain.access import ActorRole, RoleResolver, StaticRoleResolver
from royalty_kernel.domain.archive import build_archive, snapshot_run_state
from royalty_kernel.domain.clock import Clock
from royalty_kernel.domain.dtos import RollbackResult
from royalty_kernel.domain.run_state import TransitionSource
from royalty_kernel.domain.settings import EngineSettings
from royalty_kernel.exceptions import (
    InsufficientPrivilegeError,
    PaidStatementsError,
    RollbackReasonError,
)
from royalty_kernel.logging_config import LogContext, get_logger
from royalty_kernel.models.run import RoyaltyRun, RunStatus
from royalty_kernel.models.statement import StatementStatus
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.base import BaseService
from royalty_kernel.services.run_lifecycle_service import RunLifecycleService

logger = get_logger("services.rollback")

ROLLBACK_SOURCE_STATUSES = (RunStatus.CALCULATED, RunStatus.LOCKED)


class RollbackService(BaseService[RoyaltyRun]):
    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        lifecycle: RunLifecycleService,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        role_resolver: RoleResolver | None = None,
    ):
        super().__init__(session, clock)
        self._auditor = auditor
        self._lifecycle = lifecycle
        self._settings = settings or EngineSettings()
        self._roles = role_resolver or StaticRoleResolver()

    def rollback(self, run_id: UUID, actor_id: UUID, reason: str) -> RollbackResult:
        run = self._lifecycle.get_run_for_update(run_id)
        with LogContext.bind(run_id=str(run.id), actor_id=str(actor_id), operation="rollback_run"):
            self._check_preconditions(run, actor_id, reason)
            return self._rollback(run, actor_id, reason.strip())

    def _check_preconditions(self, run: RoyaltyRun, actor_id: UUID, reason: str) -> None:
        self._lifecycle.require_status(run, ROLLBACK_SOURCE_STATUSES, "roll back")

        paid = sum(1 for s in run.statements if StatementStatus(s.status) == StatementStatus.PAID)
        if paid:
            logger.warning(
                "rollback_blocked_by_payments",
                extra={"paid_count": paid, "before": snapshot_run_state(run)},
            )
            raise PaidStatementsError(str(run.id), paid)

        role = self._roles.resolve_role(actor_id)
        if not role.has_authority(ActorRole.ADMINISTRATOR):
            logger.warning(
                "rollback_privilege_denied",
                extra={"role": role.value},
            )
            raise InsufficientPrivilegeError(
                str(actor_id), ActorRole.ADMINISTRATOR.value, "rollback_run"
            )

        length = len((reason or "").strip())
        if length < self._settings.minimum_rollback_reason_length:
            raise RollbackReasonError(length, self._settings.minimum_rollback_reason_length)

    def _rollback(self, run: RoyaltyRun, actor_id: UUID, reason: str) -> RollbackResult:
        previous_status = RunStatus(run.status)
        statements = list(run.statements)
        line_count = sum(len(s.lines) for s in statements)

        archive = build_archive(run, statements, self._clock.now(), actor_id, reason)
        record = archive.to_record()

        with mutation_context(self.session, MutationTag.ROLLBACK):
            run.append_note(record)
            for statement in statements:
                self.session.delete(statement)
            self.session.flush()
            self.session.expire(run, ["statements"])

            run.total_revenue_cents = 0
            run.total_royalties_cents = 0
            run.calculated_at = None
            run.locked_at = None
            run.locked_by_id = None
            run.processing_at = None
            self._lifecycle.apply_transition(
                run,
                RunStatus.DRAFT,
                actor_id,
                TransitionSource.ROLLBACK,
            )

        after = snapshot_run_state(run)
        after["statement_count"] = 0
        self._auditor.record_rollback(
            run.id,
            actor_id,
            reason,
            before=archive.to_dict(),
            after=after,
        )

        logger.info(
            "run_rolled_back",
            extra={
                "previous_status": previous_status.value,
                "deleted_statement_count": len(statements),
                "deleted_line_count": line_count,
            },
        )
        return RollbackResult(
            run_id=run.id,
            previous_status=previous_status,
            status=RunStatus(run.status),
            reason=reason,
            deleted_statement_count=len(statements),
            deleted_line_count=line_count,
            archive_record=record,
        )
