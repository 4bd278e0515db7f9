"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every run transition,
    calculation outcome, rollback and statement mutation.  Provides chain
    validation and per-entity traces.

Architecture position:
    Kernel > Services -- called by RunLifecycleService, CalculationService,
    RollbackService and StatementService.

Invariants enforced:
    - seq comes from SequenceService, never a max+1 query.
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
    - Append-only (ORM listeners in db/immutability.py).

Failure modes:
    - AuditChainBrokenError when a stored hash or link does not match.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.exceptions import AuditChainBrokenError
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.audit_event import AuditAction, AuditEvent
from royalty_kernel.services.sequence_service import SequenceService
from royalty_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")

RUN_ENTITY = "RoyaltyRun"
STATEMENT_ENTITY = "RoyaltyStatement"


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


class AuditorService:
    """Creates hash-chained audit events.  Flushes, never commits."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        return self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = to_json_safe(payload or {})
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return audit_event

    # Run lifecycle

    def record_run_opened(self, run_id: UUID, actor_id: UUID, payload: dict[str, Any]) -> AuditEvent:
        return self._create_audit_event(
            RUN_ENTITY, run_id, AuditAction.RUN_OPENED, actor_id, payload
        )

    def record_run_transition(
        self,
        run_id: UUID,
        actor_id: UUID,
        from_status: str,
        to_status: str,
        action: AuditAction = AuditAction.RUN_TRANSITIONED,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        payload = {"from_status": from_status, "to_status": to_status}
        if details:
            payload.update(details)
        return self._create_audit_event(RUN_ENTITY, run_id, action, actor_id, payload)

    def record_calculation_failed(
        self,
        run_id: UUID,
        actor_id: UUID,
        error_code: str,
        reason: str,
        context: dict[str, Any],
    ) -> AuditEvent:
        return self._create_audit_event(
            RUN_ENTITY,
            run_id,
            AuditAction.CALCULATION_FAILED,
            actor_id,
            {"error_code": error_code, "reason": reason, "context": context},
        )

    def record_rollback(
        self,
        run_id: UUID,
        actor_id: UUID,
        reason: str,
        before: dict[str, Any],
        after: dict[str, Any],
    ) -> AuditEvent:
        return self._create_audit_event(
            RUN_ENTITY,
            run_id,
            AuditAction.RUN_ROLLED_BACK,
            actor_id,
            {"reason": reason, "before": before, "after": after},
        )

    # Statement workflow

    def record_statement_action(
        self,
        statement_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        return self._create_audit_event(
            STATEMENT_ENTITY, statement_id, action, actor_id, payload
        )

    # Verification and queries

    def validate_chain(self) -> bool:
        """
        Recompute every hash and link in seq order.

        Raises:
            AuditChainBrokenError: At the first mismatch.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        previous: AuditEvent | None = None
        for event in events:
            expected_prev = previous.hash if previous is not None else None
            if event.prev_hash != expected_prev:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id), str(expected_prev), str(event.prev_hash)
                )

            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=AuditAction(event.action).value,
                payload_hash=hash_payload(event.payload or {}),
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash or event.payload_hash != hash_payload(
                event.payload or {}
            ):
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)
            previous = event

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=event.seq,
                    action=AuditAction(event.action),
                    occurred_at=event.occurred_at,
                    actor_id=event.actor_id,
                    payload=event.payload or {},
                    hash=event.hash,
                )
                for event in events
            ),
        )
