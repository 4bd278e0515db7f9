"""
Tests for ORM-level immutability of locked runs.

After the lock, statements and lines cannot be inserted, updated or
deleted except under the mutation tag of the owning service, and audit
events can never be changed.
"""

import pytest
from sqlalchemy import select

from royalty_kernel.db.immutability import MutationTag, mutation_context
from royalty_kernel.exceptions import ImmutabilityViolationError
from royalty_kernel.models.audit_event import AuditEvent
from royalty_kernel.models.run import RoyaltyRun
from royalty_kernel.models.statement import LineKind, RoyaltyLine, RoyaltyStatement

from tests.conftest import ADMIN_ID


def _first_statement(session, run_id) -> RoyaltyStatement:
    return session.execute(
        select(RoyaltyStatement)
        .where(RoyaltyStatement.run_id == run_id)
        .order_by(RoyaltyStatement.creator_id)
    ).scalars().first()


class TestLockedRunImmutability:
    def test_line_update_blocked(self, session, locked_run):
        line = _first_statement(session, locked_run.run_id).lines[0]
        line.calculated_royalty_cents += 1

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"

    def test_line_update_blocked_even_with_payout_tag(self, session, locked_run):
        line = _first_statement(session, locked_run.run_id).lines[0]

        with mutation_context(session, MutationTag.PAYOUT):
            line.revenue_cents = 1
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_statement_update_blocked(self, session, locked_run):
        statement = _first_statement(session, locked_run.run_id)
        statement.total_earnings_cents = 1

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_statement_delete_blocked(self, session, locked_run):
        session.delete(_first_statement(session, locked_run.run_id))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_line_insert_blocked(self, session, locked_run):
        statement = _first_statement(session, locked_run.run_id)
        template = statement.lines[0]
        statement.lines.append(
            RoyaltyLine(
                line_seq=99,
                line_kind=LineKind.MANUAL_ADJUSTMENT,
                revenue_cents=0,
                share_bps=0,
                calculated_royalty_cents=500,
                period_start=template.period_start,
                period_end=template.period_end,
                detail={"adjustment_type": "bonus", "reason": "sneaky", "actor_id": "x"},
            )
        )

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_run_totals_blocked(self, session, locked_run):
        run = session.get(RoyaltyRun, locked_run.run_id)
        run.total_royalties_cents = 0

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_run_notes_may_grow_after_lock(self, session, locked_run):
        run = session.get(RoyaltyRun, locked_run.run_id)
        run.append_note("Payout batch scheduled")

        session.flush()

    def test_payout_tag_permits_statement_update(self, session, locked_run):
        statement = _first_statement(session, locked_run.run_id)

        with mutation_context(session, MutationTag.PAYOUT):
            statement.payment_reference = "PAY-1"
            session.flush()

        assert session.info.get("royalty_mutation_tags") == []


class TestCalculatedRunIsMutable:
    def test_statement_update_allowed_before_lock(self, session, calculated_run):
        statement = _first_statement(session, calculated_run.run_id)
        statement.dispute_reason = "checking"

        session.flush()


class TestAuditEventImmutability:
    def test_update_blocked(self, session, calculated_run):
        event = session.execute(select(AuditEvent).limit(1)).scalar_one()
        event.payload = {"tampered": True}

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, calculated_run):
        event = session.execute(select(AuditEvent).limit(1)).scalar_one()
        session.delete(event)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
