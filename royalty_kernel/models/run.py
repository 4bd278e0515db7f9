"""
Module: royalty_kernel.models.run
Responsibility: ORM persistence for royalty runs -- one calculation over a
    fixed accounting period.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - period_end is exclusive; period_start < period_end (service layer).
    - total_royalties_cents <= total_revenue_cents once LOCKED or later
      (validation report, lock gate).
    - Status changes only through RunLifecycleService, CalculationService
      and RollbackService.

Audit relevance:
    notes is an append-only ledger: free-form operator notes, calculation
    summaries and versioned rollback archive records.  Every status change
    produces a RUN_TRANSITIONED (or more specific) audit event.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import BigInteger, Date, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from royalty_kernel.db.base import TrackedBase, UUIDString


class RunStatus(str, Enum):
    """Lifecycle status of a royalty run.

    Forward path DRAFT -> CALCULATED -> LOCKED -> PROCESSING -> COMPLETED,
    escape paths DRAFT -> CANCELLED and DRAFT -> FAILED, and the privileged
    CALCULATED|LOCKED -> DRAFT rollback edge.
    """

    DRAFT = "draft"
    CALCULATED = "calculated"
    LOCKED = "locked"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


# Statuses in which statements and lines are frozen.
IMMUTABLE_RUN_STATUSES = frozenset(
    {RunStatus.LOCKED, RunStatus.PROCESSING, RunStatus.COMPLETED}
)

# Statuses whose periods no longer block new runs.
INACTIVE_RUN_STATUSES = frozenset({RunStatus.CANCELLED, RunStatus.FAILED})

# Statuses whose statements count as an earlier period's outcome.
SETTLED_RUN_STATUSES = frozenset(
    {
        RunStatus.CALCULATED,
        RunStatus.LOCKED,
        RunStatus.PROCESSING,
        RunStatus.COMPLETED,
    }
)


class RoyaltyRun(TrackedBase):
    """
    A royalty run over the half-open period [period_start, period_end).

    Guarantees:
        - Money totals are integer minor units.
        - Lifecycle timestamps are stamped from the injected clock.

    Non-goals:
        - This model does NOT enforce non-overlapping periods; that is
          checked by RunLifecycleService at creation time.
    """

    __tablename__ = "royalty_runs"

    __table_args__ = (
        Index("idx_run_scope_period", "scope", "period_start", "period_end"),
        Index("idx_run_status", "status"),
    )

    # Partition key for the overlap check (e.g. a publisher or catalog)
    scope: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="default",
    )

    # Inclusive start, exclusive end (UTC calendar dates)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[RunStatus] = mapped_column(
        String(20),
        default=RunStatus.DRAFT,
        nullable=False,
    )

    total_revenue_cents: Mapped[int] = mapped_column(
        BigInteger, default=0, nullable=False
    )
    total_royalties_cents: Mapped[int] = mapped_column(
        BigInteger, default=0, nullable=False
    )

    calculated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    locked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    processing_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    statements: Mapped[list["RoyaltyStatement"]] = relationship(  # noqa: F821
        back_populates="run",
        order_by="RoyaltyStatement.creator_id",
    )

    def __repr__(self) -> str:
        return (
            f"<RoyaltyRun {self.id} {self.period_start}..{self.period_end}: "
            f"{RunStatus(self.status).value}>"
        )

    @property
    def is_draft(self) -> bool:
        return self.status == RunStatus.DRAFT

    @property
    def is_immutable(self) -> bool:
        """True once the run has been locked (LOCKED, PROCESSING, COMPLETED)."""
        return RunStatus(self.status) in IMMUTABLE_RUN_STATUSES

    def overlaps(self, period_start: date, period_end: date) -> bool:
        """Half-open interval intersection with [period_start, period_end)."""
        return self.period_start < period_end and period_start < self.period_end

    def append_note(self, text: str) -> None:
        """Append a block to the notes ledger without touching earlier blocks."""
        if self.notes:
            self.notes = f"{self.notes}\n{text}"
        else:
            self.notes = text
