"""
RoyaltyEngine (operation surface) tests.

Tests cover:
- End-to-end lifecycle across committed transactions
- Outbound events: StatementReady and CacheInvalidated, only after commit
- Lease lock: contention, release after success and failure, release
  failures never masking the operation outcome
- Adjustment approval workflow through the facade
- Operation deadline: timeout rolls back and is audited
- Failed calculations recorded as CALCULATION_FAILED
- Rejection at lock time is a rollback

These tests never use the ``session`` fixture: on in-memory SQLite all
sessions share one connection, so data is seeded through session_scope().
"""

from datetime import datetime
from uuid import uuid4

import pytest

from royalty_kernel.db.engine import session_scope
from royalty_kernel.domain.clock import DeterministicClock
from royalty_kernel.domain.dtos import RollbackResult
from royalty_kernel.domain.settings import EngineSettings
from royalty_kernel.exceptions import (
    AdjustmentNotFoundError,
    LockNotAcquiredError,
    OwnershipSplitError,
    RunInvalidStateError,
    RunNotFoundError,
    StatementNotFoundError,
    TransactionTimeoutError,
    UnresolvedDisputesError,
)
from royalty_kernel.logging_config import LogContext
from royalty_kernel.models.audit_event import AuditAction
from royalty_kernel.models.run import RunStatus
from royalty_kernel.models.statement import AdjustmentStatus, StatementStatus
from royalty_kernel.services.auditor_service import RUN_ENTITY, AuditorService
from royalty_kernel.services.run_lock_service import RunLockService, run_lock_key
from royalty_services import (
    CacheInvalidated,
    InMemoryEventBus,
    RoyaltyEngine,
    StatementReady,
    run_cache_key,
    statement_cache_key,
)

from tests.conftest import (
    ADMIN_ID,
    FEB_1,
    JAN_1,
    REVIEWER_ID,
    CatalogBuilder,
    seed_two_creator_catalog,
)

REASON = "Usage feed for January was incomplete"


class SteppingClock(DeterministicClock):
    """Advances by ``step`` seconds every time it is read (0 = frozen)."""

    step: float = 0

    def now(self) -> datetime:
        self.advance(self.step)
        return super().now()


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def engine(session_factory, settings, role_resolver, clock, bus) -> RoyaltyEngine:
    return RoyaltyEngine(
        session_factory,
        settings=settings,
        role_resolver=role_resolver,
        clock=clock,
        publisher=bus,
    )


@pytest.fixture
def parties(session_factory):
    with session_scope(session_factory) as s:
        return seed_two_creator_catalog(CatalogBuilder(s))


def _trace(session_factory, run_id):
    with session_scope(session_factory) as s:
        return AuditorService(s).get_trace(RUN_ENTITY, run_id)


def _lock_holder(session_factory, run_id):
    with session_scope(session_factory) as s:
        return RunLockService(s).holder(run_lock_key(run_id))


def _broken_release(self, lease):
    raise RuntimeError("connection reset during release")


class TestLifecycle:
    def test_full_lifecycle(self, engine, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID, notes="January close")
        result = engine.calculate_run(run.id, ADMIN_ID)

        assert result.total_royalties_cents == 10_000
        assert engine.get_validation_report(run.id).is_valid

        locked = engine.lock_run(run.id, REVIEWER_ID, approve=True, notes="Approved")
        assert locked.status == RunStatus.LOCKED

        engine.transition(run.id, RunStatus.PROCESSING, ADMIN_ID)
        for statement in engine.get_statements(run.id):
            engine.mark_paid(statement.id, f"PAY-{statement.creator_id}", ADMIN_ID)
        engine.transition(run.id, "completed", ADMIN_ID)

        final = engine.get_run(run.id)
        assert final.status == RunStatus.COMPLETED
        assert {s.status for s in engine.get_statements(run.id)} == {StatementStatus.PAID}
        assert engine.validate_audit_chain()

    def test_state_survives_commit(self, engine, session_factory, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        engine.calculate_run(run.id, ADMIN_ID)

        statements = engine.get_statements(run.id)

        assert [s.total_earnings_cents for s in statements] == [6_000, 4_000]
        assert _trace(session_factory, run.id).last_action == AuditAction.RUN_CALCULATED

    def test_unknown_run(self, engine):
        with pytest.raises(RunNotFoundError):
            engine.get_run(uuid4())

    def test_unknown_statement(self, engine):
        with pytest.raises(StatementNotFoundError):
            engine.review_statement(uuid4(), ADMIN_ID)

    def test_log_context_restored(self, engine, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        engine.calculate_run(run.id, ADMIN_ID)

        assert LogContext.get_all() == {}


class TestEvents:
    def test_calculation_publishes_statement_ready(self, engine, bus, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        bus.clear()

        result = engine.calculate_run(run.id, ADMIN_ID)

        ready = bus.of_type(StatementReady)
        assert [(e.creator_id, e.total_earnings_cents, e.status) for e in ready] == [
            (parties.creator_a, 6_000, "pending"),
            (parties.creator_b, 4_000, "pending"),
        ]
        assert all(e.run_id == run.id for e in ready)

        (invalidated,) = bus.of_type(CacheInvalidated)
        assert invalidated.reason == "calculate_run"
        assert invalidated.keys == (
            run_cache_key(run.id),
            *sorted((statement_cache_key(sid) for sid in result.statement_ids)),
        )
        assert bus.events[-1] is invalidated

    def test_statement_mutation_invalidates_statement(self, engine, bus, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        result = engine.calculate_run(run.id, ADMIN_ID)
        statement = result.statement_for(parties.creator_a)
        bus.clear()

        engine.review_statement(statement.id, parties.creator_a)

        assert bus.invalidated_keys() == [
            run_cache_key(run.id),
            statement_cache_key(statement.id),
        ]

    def test_failed_operation_publishes_nothing(self, engine, bus):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        engine.transition(run.id, RunStatus.CANCELLED, ADMIN_ID)
        bus.clear()

        with pytest.raises(RunInvalidStateError):
            engine.calculate_run(run.id, ADMIN_ID)

        assert bus.events == []


class TestLeaseLock:
    def test_lease_released_after_success(self, engine, session_factory, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        engine.calculate_run(run.id, ADMIN_ID)

        assert _lock_holder(session_factory, run.id) is None

    def test_contended_run_is_refused(self, engine, session_factory, clock, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        with session_scope(session_factory) as s:
            RunLockService(s, clock).acquire(run_lock_key(run.id), lease_seconds=60)

        with pytest.raises(LockNotAcquiredError):
            engine.calculate_run(run.id, ADMIN_ID)

        assert engine.get_run(run.id).status == RunStatus.DRAFT
        assert AuditAction.CALCULATION_FAILED not in _trace(session_factory, run.id).actions

    def test_release_failure_does_not_mask_error(
        self, engine, session_factory, monkeypatch, captured_logs, parties
    ):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        engine.transition(run.id, RunStatus.CANCELLED, ADMIN_ID)

        monkeypatch.setattr(RunLockService, "release", _broken_release)

        with pytest.raises(RunInvalidStateError):
            engine.calculate_run(run.id, ADMIN_ID)

        (failure,) = [r for r in captured_logs() if r["message"] == "run_lease_release_failed"]
        assert failure["lock_key"] == run_lock_key(run.id)
        assert failure["exc_type"] == "RuntimeError"
        # Left to expire
        assert _lock_holder(session_factory, run.id) is not None

    def test_release_failure_keeps_result(self, engine, monkeypatch, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        monkeypatch.setattr(RunLockService, "release", _broken_release)

        result = engine.calculate_run(run.id, ADMIN_ID)

        assert result.status == RunStatus.CALCULATED
        assert engine.get_run(run.id).status == RunStatus.CALCULATED

    def test_expired_lease_does_not_block(self, engine, session_factory, clock, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        with session_scope(session_factory) as s:
            RunLockService(s, clock).acquire(run_lock_key(run.id), lease_seconds=60)
        clock.advance(61)

        result = engine.calculate_run(run.id, ADMIN_ID)

        assert result.status == RunStatus.CALCULATED


class TestFailures:
    def test_timeout_rolls_back_and_is_audited(self, session_factory, role_resolver, bus, parties):
        clock = SteppingClock(datetime.fromisoformat("2026-03-02T09:00:00+00:00"))
        engine = RoyaltyEngine(
            session_factory,
            settings=EngineSettings(calculation_timeout_seconds=5),
            role_resolver=role_resolver,
            clock=clock,
            publisher=bus,
        )
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        clock.step = 1

        with pytest.raises(TransactionTimeoutError):
            engine.calculate_run(run.id, ADMIN_ID)

        assert engine.get_run(run.id).status == RunStatus.DRAFT
        assert engine.get_statements(run.id) == ()
        assert _lock_holder(session_factory, run.id) is None
        failure = _trace(session_factory, run.id).entries[-1]
        assert failure.action == AuditAction.CALCULATION_FAILED
        assert failure.payload["error_code"] == "TRANSACTION_TIMEOUT"
        assert failure.payload["context"]["attributes"]["operation"] == "calculate_run"

    def test_catalog_error_rolls_back_and_is_audited(self, engine, session_factory):
        with session_scope(session_factory) as s:
            builder = CatalogBuilder(s)
            asset_id = builder.asset("Orphaned")
            builder.ownership(asset_id, builder.creator("Partial"), 9_000)
            builder.license(asset_id, JAN_1, FEB_1, fee_cents=1_000)
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)

        with pytest.raises(OwnershipSplitError):
            engine.calculate_run(run.id, ADMIN_ID)

        assert engine.get_run(run.id).status == RunStatus.DRAFT
        failure = _trace(session_factory, run.id).entries[-1]
        assert failure.action == AuditAction.CALCULATION_FAILED
        assert failure.payload["error_code"] == "OWNERSHIP_SPLIT_INVALID"
        assert failure.payload["context"]["exception_type"] == "OwnershipSplitError"
        assert engine.validate_audit_chain()


class TestLockDecision:
    def test_reject_rolls_back(self, engine, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        engine.calculate_run(run.id, ADMIN_ID)

        result = engine.lock_run(run.id, ADMIN_ID, approve=False, notes=REASON)

        assert isinstance(result, RollbackResult)
        assert engine.get_run(run.id).status == RunStatus.DRAFT
        assert engine.get_statements(run.id) == ()

    def test_dispute_blocks_lock_until_resolved(self, engine, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        result = engine.calculate_run(run.id, ADMIN_ID)
        statement = result.statement_for(parties.creator_b)
        engine.dispute_statement(statement.id, "Share should be 50%", parties.creator_b)

        with pytest.raises(UnresolvedDisputesError):
            engine.lock_run(run.id, REVIEWER_ID, approve=True)
        assert engine.get_run(run.id).status == RunStatus.CALCULATED

        engine.resolve_dispute(statement.id, "Share confirmed at 40%", ADMIN_ID)
        assert engine.lock_run(run.id, REVIEWER_ID, approve=True).status == RunStatus.LOCKED

    def test_correction_after_lock(self, engine, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        result = engine.calculate_run(run.id, ADMIN_ID)
        engine.lock_run(run.id, REVIEWER_ID, approve=True)

        corrected = engine.issue_correction(
            result.statement_for(parties.creator_a).id, -100, "Duplicate usage event", ADMIN_ID
        )

        assert corrected.total_earnings_cents == 5_900
        assert engine.get_run(run.id).total_royalties_cents == 9_900


class TestAdjustmentWorkflow:
    @pytest.fixture
    def strict_engine(self, session_factory, role_resolver, clock, bus) -> RoyaltyEngine:
        return RoyaltyEngine(
            session_factory,
            settings=EngineSettings(adjustment_approval_threshold_cents=1_000),
            role_resolver=role_resolver,
            clock=clock,
            publisher=bus,
        )

    def test_request_approve_reverse(self, strict_engine, bus, parties):
        run = strict_engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        statement = strict_engine.calculate_run(run.id, ADMIN_ID).statement_for(parties.creator_a)

        requested = strict_engine.apply_adjustment(
            statement.id, 2_000, "Sync placement bonus", "bonus", ADMIN_ID
        )
        assert requested.total_earnings_cents == 6_000
        (pending,) = strict_engine.get_pending_adjustments(run.id)
        assert pending.id == requested.adjustments[0].id

        bus.clear()
        approved = strict_engine.approve_adjustment(pending.id, ADMIN_ID, notes="Placement confirmed")

        assert approved.status == AdjustmentStatus.APPLIED
        assert bus.invalidated_keys() == [
            run_cache_key(run.id),
            statement_cache_key(statement.id),
        ]
        assert strict_engine.get_run(run.id).total_royalties_cents == 12_000
        assert strict_engine.get_pending_adjustments() == ()

        reversed_ = strict_engine.reverse_adjustment(pending.id, ADMIN_ID, "Placement was cancelled")

        assert reversed_.status == AdjustmentStatus.REVERSED
        (adjustment,) = strict_engine.get_statement_adjustments(statement.id)
        assert adjustment.status == AdjustmentStatus.REVERSED
        assert strict_engine.get_run(run.id).total_royalties_cents == 10_000
        assert strict_engine.get_validation_report(run.id).is_valid

    def test_reject(self, strict_engine, parties):
        run = strict_engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        statement = strict_engine.calculate_run(run.id, ADMIN_ID).statement_for(parties.creator_b)
        requested = strict_engine.apply_adjustment(
            statement.id, -1_500, "Advance recouped", "debit", ADMIN_ID
        )

        rejected = strict_engine.reject_adjustment(
            requested.adjustments[0].id, ADMIN_ID, "Advance already recouped in December"
        )

        assert rejected.status == AdjustmentStatus.REJECTED
        assert strict_engine.get_run(run.id).total_royalties_cents == 10_000

    def test_unknown_adjustment(self, strict_engine):
        with pytest.raises(AdjustmentNotFoundError):
            strict_engine.approve_adjustment(uuid4(), ADMIN_ID)
