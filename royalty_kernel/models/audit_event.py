"""
Module: royalty_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (db/immutability.py).
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash),
      validated by AuditorService.validate_chain().
    - seq is strictly increasing, allocated by SequenceService.

Audit relevance:
    AuditEvent IS the audit trail.  Every run transition, calculation
    (successful or failed), rollback and statement mutation produces one.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Run lifecycle
    RUN_OPENED = "run_opened"
    RUN_TRANSITIONED = "run_transitioned"
    RUN_CALCULATED = "run_calculated"
    RUN_LOCKED = "run_locked"
    RUN_ROLLED_BACK = "run_rolled_back"
    CALCULATION_FAILED = "calculation_failed"

    # Statement workflow
    STATEMENT_REVIEWED = "statement_reviewed"
    STATEMENT_DISPUTED = "statement_disputed"
    STATEMENT_RESOLVED = "statement_resolved"
    STATEMENT_ADJUSTED = "statement_adjusted"
    STATEMENT_CORRECTED = "statement_corrected"
    STATEMENT_PAID = "statement_paid"

    # Adjustment requests (recorded against the statement)
    ADJUSTMENT_REQUESTED = "adjustment_requested"
    ADJUSTMENT_APPROVED = "adjustment_approved"
    ADJUSTMENT_REJECTED = "adjustment_rejected"
    ADJUSTMENT_REVERSED = "adjustment_reversed"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT compute hashes; AuditorService does.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_seq", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # e.g. "RoyaltyRun", "RoyaltyStatement"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<AuditEvent {AuditAction(self.action).value} on "
            f"{self.entity_type}:{self.entity_id}>"
        )

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
