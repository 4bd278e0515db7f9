"""
Module: royalty_kernel.selectors.run_selector
Responsibility: Read-only queries over royalty runs and statements: run
    lookup, period overlap detection, statement listings and the prior
    statement that supplies a creator's carried-over balance.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/dtos.py and selectors/base.py.

Invariants enforced:
    - Overlap uses half-open intervals: [a, b) and [c, d) overlap iff
      a < d and c < b.  CANCELLED and FAILED runs never block.
    - The prior statement is the creator's statement in the most recent
      earlier settled run of the same scope (period_end <= period_start),
      so a balance is carried exactly once.
"""

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from royalty_kernel.domain.dtos import RunInfo, StatementInfo
from royalty_kernel.models.run import (
    INACTIVE_RUN_STATUSES,
    SETTLED_RUN_STATUSES,
    RoyaltyRun,
)
from royalty_kernel.models.statement import RoyaltyStatement, StatementStatus
from royalty_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class PriorBalance:
    """Carryover brought forward from an earlier statement."""

    statement_id: UUID
    run_id: UUID
    carryover_out_cents: int


class RunSelector(BaseSelector[RoyaltyRun]):
    def __init__(self, session: Session):
        super().__init__(session)

    def get_run(self, run_id: UUID) -> RunInfo | None:
        run = self.session.get(RoyaltyRun, run_id)
        return RunInfo.from_model(run) if run is not None else None

    def overlapping_runs(
        self,
        scope: str,
        period_start: date,
        period_end: date,
    ) -> list[RunInfo]:
        """Active runs in ``scope`` whose period intersects [period_start, period_end)."""
        rows = self.session.execute(
            select(RoyaltyRun)
            .where(
                RoyaltyRun.scope == scope,
                RoyaltyRun.status.not_in(list(INACTIVE_RUN_STATUSES)),
                RoyaltyRun.period_start < period_end,
                RoyaltyRun.period_end > period_start,
            )
            .order_by(RoyaltyRun.period_start, RoyaltyRun.id)
        ).scalars().all()
        return [RunInfo.from_model(run) for run in rows]

    def list_runs(self, scope: str | None = None) -> list[RunInfo]:
        query = select(RoyaltyRun).order_by(RoyaltyRun.period_start, RoyaltyRun.id)
        if scope is not None:
            query = query.where(RoyaltyRun.scope == scope)
        return [RunInfo.from_model(run) for run in self.session.execute(query).scalars()]

    def statements(self, run_id: UUID) -> tuple[StatementInfo, ...]:
        """All statements of a run with their lines, ordered by creator identity."""
        rows = self.session.execute(
            select(RoyaltyStatement)
            .where(RoyaltyStatement.run_id == run_id)
            .options(selectinload(RoyaltyStatement.lines))
        ).scalars().all()
        ordered = sorted(rows, key=lambda s: str(s.creator_id))
        return tuple(StatementInfo.from_model(s) for s in ordered)

    def get_statement(self, statement_id: UUID) -> StatementInfo | None:
        statement = self.session.get(RoyaltyStatement, statement_id)
        return StatementInfo.from_model(statement) if statement is not None else None

    def count_statements_in_status(self, run_id: UUID, status: StatementStatus) -> int:
        return self.session.execute(
            select(func.count(RoyaltyStatement.id)).where(
                RoyaltyStatement.run_id == run_id,
                RoyaltyStatement.status == status,
            )
        ).scalar_one()

    def prior_balance(
        self,
        creator_id: UUID,
        scope: str,
        period_start: date,
    ) -> PriorBalance | None:
        row = self.session.execute(
            select(RoyaltyStatement.id, RoyaltyStatement.run_id, RoyaltyStatement.carryover_out_cents)
            .join(RoyaltyRun, RoyaltyStatement.run_id == RoyaltyRun.id)
            .where(
                RoyaltyStatement.creator_id == creator_id,
                RoyaltyRun.scope == scope,
                RoyaltyRun.period_end <= period_start,
                RoyaltyRun.status.in_(list(SETTLED_RUN_STATUSES)),
            )
            .order_by(
                RoyaltyRun.period_end.desc(),
                RoyaltyRun.period_start.desc(),
                RoyaltyRun.created_at.desc(),
            )
            .limit(1)
        ).first()
        if row is None:
            return None
        return PriorBalance(
            statement_id=row.id,
            run_id=row.run_id,
            carryover_out_cents=row.carryover_out_cents,
        )

    def carryover_candidates(self, scope: str, period_start: date) -> set[UUID]:
        """
        Creators who carried a balance out of any earlier settled run.

        A superset: prior_balance() decides whether the balance is still
        outstanding on the creator's most recent statement.
        """
        rows = self.session.execute(
            select(RoyaltyStatement.creator_id)
            .join(RoyaltyRun, RoyaltyStatement.run_id == RoyaltyRun.id)
            .where(
                RoyaltyRun.scope == scope,
                RoyaltyRun.period_end <= period_start,
                RoyaltyRun.status.in_(list(SETTLED_RUN_STATUSES)),
                RoyaltyStatement.carryover_out_cents > 0,
            )
            .distinct()
        ).scalars().all()
        return set(rows)
