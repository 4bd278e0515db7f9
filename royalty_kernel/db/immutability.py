"""
ORM-Level Immutability Enforcement.

===============================================================================
WHAT IS PROTECTED
===============================================================================

Entity            | When Immutable                      | Escape hatch
------------------|-------------------------------------|------------------------------
AuditEvent        | ALWAYS (from creation)              | none
RoyaltyRun        | Financial fields once LOCKED        | "rollback", "correction"
RoyaltyStatement  | While its run is LOCKED or later    | "rollback", "correction", "payout"
RoyaltyLine       | While its run is LOCKED or later    | "rollback", "correction"

Escape hatches are session-scoped tags set by the owning service through
``mutation_context(session, tag)``:

    with mutation_context(session, MutationTag.ROLLBACK):
        ...delete lines and statements...

Any other write raises ImmutabilityViolationError (a RoyaltyStateError)
before SQL reaches the database.

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_insert / before_update / before_delete]
         |      run status read through the flush connection
         v
    ImmutabilityViolationError  or  SQL sent to database

A run is "locked before" this flush if its status was LOCKED/PROCESSING/
COMPLETED before the pending change (attribute history), so the lock
transition itself is allowed.

===============================================================================
USAGE
===============================================================================

    register_immutability_listeners()     # once at startup (idempotent)
    unregister_immutability_listeners()   # TESTS ONLY
"""

from contextlib import contextmanager
from enum import Enum
from typing import Iterator

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session, object_session
from sqlalchemy.orm.attributes import get_history

from royalty_kernel.exceptions import ImmutabilityViolationError
from royalty_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_INFO_KEY = "royalty_mutation_tags"

# Run fields that may change after lock without a tag.
_RUN_POST_LOCK_FIELDS = frozenset(
    {"status", "processing_at", "completed_at", "notes", "updated_at", "updated_by_id"}
)


class MutationTag(str, Enum):
    ROLLBACK = "rollback"
    CORRECTION = "correction"
    PAYOUT = "payout"


@contextmanager
def mutation_context(session: Session, tag: MutationTag) -> Iterator[Session]:
    """Permit ``tag``-class writes to locked rows for the duration of the block."""
    tags: list = session.info.setdefault(_INFO_KEY, [])
    tags.append(tag)
    try:
        yield session
    finally:
        tags.remove(tag)


def _active_tags(target) -> frozenset:
    session = object_session(target)
    if session is None:
        return frozenset()
    return frozenset(session.info.get(_INFO_KEY, ()))


def _is_locked_status(status) -> bool:
    from royalty_kernel.models.run import IMMUTABLE_RUN_STATUSES, RunStatus

    if status is None:
        return False
    return RunStatus(status) in IMMUTABLE_RUN_STATUSES


def _run_status(connection, run_id):
    from royalty_kernel.models.run import RoyaltyRun

    return connection.execute(
        select(RoyaltyRun.status).where(RoyaltyRun.id == run_id)
    ).scalar_one_or_none()


def _statement_run_status(connection, statement_id):
    from royalty_kernel.models.run import RoyaltyRun
    from royalty_kernel.models.statement import RoyaltyStatement

    return connection.execute(
        select(RoyaltyRun.status)
        .join(RoyaltyStatement, RoyaltyStatement.run_id == RoyaltyRun.id)
        .where(RoyaltyStatement.id == statement_id)
    ).scalar_one_or_none()


def _block(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


# AuditEvent


def _check_audit_event_update(mapper, connection, target):
    _block("AuditEvent", target.id, "UPDATE", "Audit events are append-only")


def _check_audit_event_delete(mapper, connection, target):
    _block("AuditEvent", target.id, "DELETE", "Audit events cannot be deleted")


# RoyaltyRun


def _check_run_update(mapper, connection, target):
    status_history = get_history(target, "status")
    if status_history.deleted:
        was_locked = _is_locked_status(status_history.deleted[0])
    else:
        was_locked = _is_locked_status(target.status)
    if not was_locked:
        return
    if _active_tags(target) & {MutationTag.ROLLBACK, MutationTag.CORRECTION}:
        return

    for attr in inspect(target).attrs:
        if attr.key in _RUN_POST_LOCK_FIELDS:
            continue
        if attr.history.has_changes():
            _block(
                "RoyaltyRun",
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a locked run",
            )


# RoyaltyStatement


def _check_statement_write(operation: str, allowed: frozenset):
    def listener(mapper, connection, target):
        if not _is_locked_status(_run_status(connection, target.run_id)):
            return
        if _active_tags(target) & allowed:
            return
        _block(
            "RoyaltyStatement",
            target.id,
            operation,
            f"Statements of a locked run cannot be {operation.lower()}d",
        )

    return listener


_check_statement_insert = _check_statement_write(
    "INSERT", frozenset({MutationTag.CORRECTION})
)
_check_statement_update = _check_statement_write(
    "UPDATE",
    frozenset({MutationTag.ROLLBACK, MutationTag.CORRECTION, MutationTag.PAYOUT}),
)
_check_statement_delete = _check_statement_write(
    "DELETE", frozenset({MutationTag.ROLLBACK})
)


# RoyaltyLine


def _check_line_write(operation: str, allowed: frozenset):
    def listener(mapper, connection, target):
        if not _is_locked_status(_statement_run_status(connection, target.statement_id)):
            return
        if _active_tags(target) & allowed:
            return
        _block(
            "RoyaltyLine",
            target.id,
            operation,
            f"Lines of a locked run cannot be {operation.lower()}d",
        )

    return listener


_check_line_insert = _check_line_write("INSERT", frozenset({MutationTag.CORRECTION}))
_check_line_update = _check_line_write("UPDATE", frozenset())
_check_line_delete = _check_line_write("DELETE", frozenset({MutationTag.ROLLBACK}))


def _listeners():
    from royalty_kernel.models.audit_event import AuditEvent
    from royalty_kernel.models.run import RoyaltyRun
    from royalty_kernel.models.statement import RoyaltyLine, RoyaltyStatement

    return (
        (AuditEvent, "before_update", _check_audit_event_update),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (RoyaltyRun, "before_update", _check_run_update),
        (RoyaltyStatement, "before_insert", _check_statement_insert),
        (RoyaltyStatement, "before_update", _check_statement_update),
        (RoyaltyStatement, "before_delete", _check_statement_delete),
        (RoyaltyLine, "before_insert", _check_line_insert),
        (RoyaltyLine, "before_update", _check_line_update),
        (RoyaltyLine, "before_delete", _check_line_delete),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners.  Safe to call more than once."""
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners.  TESTS ONLY."""
    for target, event_name, fn in _listeners():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
