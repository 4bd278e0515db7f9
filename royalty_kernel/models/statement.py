"""
Module: royalty_kernel.models.statement
Responsibility: ORM persistence for per-creator royalty statements and their
    line items.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Exactly one statement per (run, creator) (uq_statement_run_creator).
    - Money is integer minor units.
    - Statements and lines under a LOCKED-or-later run are immutable except
      for tagged correction and payout sessions (db/immutability.py).

Audit relevance:
    Lines carry their own provenance (line_kind + detail).  A reviewer can
    trace every cent of a statement total back to a license, a carried-over
    balance or an explicit adjustment.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from royalty_kernel.db.base import Base, TrackedBase, UUIDString


# Statement.details flag: the status was moved to REVIEWED by the payout
# threshold rather than by the creator, and returns to PENDING once the
# balance reaches the threshold again.
THRESHOLD_HOLD_FLAG = "threshold_hold"


class StatementStatus(str, Enum):
    """Per-creator statement status.

    PENDING   -- at or above the payout threshold, awaiting review/payment
    REVIEWED  -- reviewed by the creator, or held below threshold
    DISPUTED  -- blocks the run lock until resolved
    RESOLVED  -- dispute closed, optionally with an adjustment line
    PAID      -- payout executed; blocks rollback
    """

    PENDING = "pending"
    REVIEWED = "reviewed"
    DISPUTED = "disputed"
    RESOLVED = "resolved"
    PAID = "paid"


class LineKind(str, Enum):
    """Discriminator for RoyaltyLine.detail (see domain/line_detail.py)."""

    LICENSE_CONTRIBUTION = "license_contribution"
    CARRYOVER = "carryover"
    THRESHOLD_NOTE = "threshold_note"
    MANUAL_ADJUSTMENT = "manual_adjustment"
    DISPUTE_RESOLUTION = "dispute_resolution"
    CORRECTION = "correction"
    ADJUSTMENT_REVERSAL = "adjustment_reversal"


# Line kinds that may legitimately carry a negative (debit) amount.
SIGNED_LINE_KINDS = frozenset(
    {
        LineKind.MANUAL_ADJUSTMENT,
        LineKind.DISPUTE_RESOLUTION,
        LineKind.CORRECTION,
        LineKind.ADJUSTMENT_REVERSAL,
    }
)


class AdjustmentStatus(str, Enum):
    """Manual adjustment request status.

    PENDING_APPROVAL -- above the approval threshold, no money moved yet
    APPLIED          -- ManualAdjustment line written, totals moved
    REJECTED         -- refused by an administrator, no money moved
    REVERSED         -- an AdjustmentReversal line cancelled the applied amount
    """

    PENDING_APPROVAL = "pending_approval"
    APPLIED = "applied"
    REJECTED = "rejected"
    REVERSED = "reversed"


class RoyaltyStatement(TrackedBase):
    """
    One creator's statement for one run.

    total_earnings_cents includes carryover_in_cents (the balance brought
    forward) plus this run's contributions and any adjustments.
    """

    __tablename__ = "royalty_statements"

    __table_args__ = (
        UniqueConstraint("run_id", "creator_id", name="uq_statement_run_creator"),
        Index("idx_statement_creator", "creator_id"),
        Index("idx_statement_status", "status"),
    )

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("royalty_runs.id"),
        nullable=False,
    )

    creator_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("creators.id"),
        nullable=False,
    )

    total_earnings_cents: Mapped[int] = mapped_column(
        BigInteger, default=0, nullable=False
    )

    # Balance brought forward from the creator's previous statement
    carryover_in_cents: Mapped[int] = mapped_column(
        BigInteger, default=0, nullable=False
    )

    # Balance carried into the next period (non-zero only below threshold)
    carryover_out_cents: Mapped[int] = mapped_column(
        BigInteger, default=0, nullable=False
    )

    # Threshold in force when the statement was built
    minimum_payout_cents: Mapped[int] = mapped_column(
        BigInteger, default=0, nullable=False
    )

    status: Mapped[StatementStatus] = mapped_column(
        String(20),
        default=StatementStatus.PENDING,
        nullable=False,
    )

    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    disputed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Structured metadata (correction history)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    run: Mapped["RoyaltyRun"] = relationship(back_populates="statements")  # noqa: F821
    lines: Mapped[list["RoyaltyLine"]] = relationship(
        back_populates="statement",
        order_by="RoyaltyLine.line_seq",
        cascade="all, delete-orphan",
    )
    adjustments: Mapped[list["RoyaltyAdjustment"]] = relationship(
        back_populates="statement",
        order_by="RoyaltyAdjustment.adjustment_number",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return (
            f"<RoyaltyStatement {self.id} creator={self.creator_id} "
            f"total={self.total_earnings_cents}>"
        )

    @property
    def is_disputed(self) -> bool:
        return self.status == StatementStatus.DISPUTED

    @property
    def is_paid(self) -> bool:
        return self.status == StatementStatus.PAID


class RoyaltyLine(Base):
    """
    A single statement line.

    license_id and asset_id are set for license contributions and NULL for
    synthetic lines (carryover, threshold note, adjustments).  The detail
    payload is decoded by domain.line_detail.decode_detail according to
    line_kind.
    """

    __tablename__ = "royalty_lines"

    __table_args__ = (
        UniqueConstraint("statement_id", "line_seq", name="uq_line_statement_seq"),
        Index("idx_line_license", "license_id"),
        Index("idx_line_asset", "asset_id"),
    )

    statement_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("royalty_statements.id"),
        nullable=False,
    )

    # Position within the statement (stable display / hashing order)
    line_seq: Mapped[int] = mapped_column(Integer, nullable=False)

    line_kind: Mapped[LineKind] = mapped_column(String(30), nullable=False)

    license_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("licenses.id"), nullable=True
    )
    asset_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("ip_assets.id"), nullable=True
    )

    # License revenue this line was derived from (0 for synthetic lines)
    revenue_cents: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    share_bps: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    calculated_royalty_cents: Mapped[int] = mapped_column(
        BigInteger, default=0, nullable=False
    )

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    detail: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    statement: Mapped[RoyaltyStatement] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return (
            f"<RoyaltyLine {LineKind(self.line_kind).value} "
            f"{self.calculated_royalty_cents}>"
        )


class RoyaltyAdjustment(TrackedBase):
    """
    A manual adjustment request against one statement.

    Money only moves through lines: applying writes a ManualAdjustment line
    (applied_line_seq) and reversing writes an AdjustmentReversal line
    (reversal_line_seq).  The request row records who asked, who decided
    and when.
    """

    __tablename__ = "royalty_adjustments"

    __table_args__ = (
        UniqueConstraint(
            "statement_id", "adjustment_number", name="uq_adjustment_statement_number"
        ),
        Index("idx_adjustment_status", "status"),
    )

    statement_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("royalty_statements.id"),
        nullable=False,
    )

    # 1-based position within the statement
    adjustment_number: Mapped[int] = mapped_column(Integer, nullable=False)

    adjustment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[AdjustmentStatus] = mapped_column(String(20), nullable=False)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    requested_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decision_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    applied_line_seq: Mapped[int | None] = mapped_column(Integer, nullable=True)

    reversed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reversed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reversal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reversal_line_seq: Mapped[int | None] = mapped_column(Integer, nullable=True)

    statement: Mapped[RoyaltyStatement] = relationship(back_populates="adjustments")

    def __repr__(self) -> str:
        return (
            f"<RoyaltyAdjustment {self.statement_id}#{self.adjustment_number} "
            f"{AdjustmentStatus(self.status).value} {self.amount_cents}>"
        )
