"""
Structured logging tests.

Tests cover:
- JSON encoding of the values the engine logs: period dates, run
  statuses, UUIDs, nested state snapshots, kernel errors
- LogContext.bind nesting and restoration
- Context fields on records emitted inside RoyaltyEngine operations
- "before" run snapshots attached to refused state changes
"""

import json
import logging
from datetime import datetime, timezone
from uuid import UUID, uuid4

import pytest

from royalty_kernel.db.engine import session_scope
from royalty_kernel.exceptions import (
    InvalidTransitionError,
    PaidStatementsError,
    RunInvalidStateError,
)
from royalty_kernel.logging_config import LogContext, StructuredFormatter
from royalty_kernel.models.run import RunStatus
from royalty_services import InMemoryEventBus, RoyaltyEngine

from tests.conftest import (
    ADMIN_ID,
    FEB_1,
    JAN_1,
    CatalogBuilder,
    seed_two_creator_catalog,
)

RUN_ID = UUID("00000000-0000-4000-8000-000000000111")
REASON = "Usage feed for January was incomplete"


def _format(message: str, exc_info=None, **extra) -> dict:
    logger = logging.getLogger("royalty_kernel.tests")
    record = logger.makeRecord(
        logger.name, logging.WARNING, __file__, 0, message, (), exc_info, extra=extra
    )
    return json.loads(StructuredFormatter().format(record))


def _records(captured_logs, message: str) -> list[dict]:
    return [r for r in captured_logs() if r["message"] == message]


class TestStructuredFormatter:
    def test_period_and_status_values(self):
        record = _format(
            "run_opened",
            run_id=RUN_ID,
            period_start=JAN_1,
            period_end=FEB_1,
            status=RunStatus.DRAFT,
        )

        assert record["run_id"] == str(RUN_ID)
        assert record["period_start"] == "2026-01-01"
        assert record["period_end"] == "2026-02-01"
        assert record["status"] == "draft"
        assert record["level"] == "WARNING"
        assert record["logger"] == "royalty_kernel.tests"

    def test_nested_snapshot_values(self):
        record = _format(
            "run_state_rejected",
            before={
                "status": RunStatus.LOCKED,
                "locked_at": datetime(2026, 2, 3, 12, 0, tzinfo=timezone.utc),
                "period": (JAN_1, FEB_1),
            },
        )

        assert record["before"] == {
            "status": "locked",
            "locked_at": "2026-02-03T12:00:00+00:00",
            "period": ["2026-01-01", "2026-02-01"],
        }

    def test_status_sets_become_lists(self):
        record = _format("run_lock_refused", expected=frozenset({RunStatus.CALCULATED}))

        assert record["expected"] == ["calculated"]

    def test_kernel_error_fields_flattened(self):
        try:
            raise RunInvalidStateError(str(RUN_ID), "draft", ("calculated",), "lock")
        except RunInvalidStateError as exc:
            record = _format("lock_failed", exc_info=(type(exc), exc, exc.__traceback__))

        assert record["exc_type"] == "RunInvalidStateError"
        assert record["exc_code"] == "RUN_INVALID_STATE"
        assert record["exc_run_id"] == str(RUN_ID)
        assert record["exc_status"] == "draft"
        assert record["exc_expected"] == ["calculated"]
        assert record["exc_operation"] == "lock"
        assert "RunInvalidStateError" in record["traceback"]

    def test_bound_context_wins_over_extra(self):
        with LogContext.bind(run_id=RUN_ID, operation="rollback_run"):
            record = _format("run_state_rejected", run_id="other", operation="roll back")

        assert record["run_id"] == str(RUN_ID)
        assert record["operation"] == "rollback_run"


class TestLogContext:
    def test_nested_bind_restores_outer_fields(self):
        statement_id = uuid4()

        with LogContext.bind(run_id=RUN_ID, actor_id=ADMIN_ID, operation="calculate_run"):
            with LogContext.bind(statement_id=statement_id, operation="review_statement"):
                assert LogContext.get_all() == {
                    "run_id": str(RUN_ID),
                    "statement_id": str(statement_id),
                    "actor_id": str(ADMIN_ID),
                    "operation": "review_statement",
                }
            assert LogContext.get_all() == {
                "run_id": str(RUN_ID),
                "actor_id": str(ADMIN_ID),
                "operation": "calculate_run",
            }

        assert LogContext.get_all() == {}

    def test_bind_restores_after_error(self):
        with pytest.raises(RunInvalidStateError):
            with LogContext.bind(run_id=RUN_ID):
                raise RunInvalidStateError(str(RUN_ID), "draft", ("calculated",), "lock")

        assert LogContext.get_all() == {}

    def test_none_and_unknown_fields_ignored(self):
        with LogContext.bind(run_id=None, creator_id="not-a-context-field"):
            assert LogContext.get_all() == {}


class TestEngineOperationContext:
    @pytest.fixture
    def engine(self, session_factory, settings, role_resolver, clock) -> RoyaltyEngine:
        return RoyaltyEngine(
            session_factory,
            settings=settings,
            role_resolver=role_resolver,
            clock=clock,
            publisher=InMemoryEventBus(),
        )

    @pytest.fixture
    def parties(self, session_factory):
        with session_scope(session_factory) as s:
            return seed_two_creator_catalog(CatalogBuilder(s))

    def test_calculation_records_carry_run_context(self, engine, captured_logs, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        engine.calculate_run(run.id, ADMIN_ID)

        (started,) = _records(captured_logs, "calculation_started")
        (completed,) = _records(captured_logs, "calculation_completed")
        for record in (started, completed):
            assert record["run_id"] == str(run.id)
            assert record["actor_id"] == str(ADMIN_ID)
            assert record["operation"] == "calculate_run"
        assert started["correlation_id"] == completed["correlation_id"]
        assert LogContext.get_all() == {}

    def test_operations_get_distinct_correlation_ids(self, engine, captured_logs, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        engine.calculate_run(run.id, ADMIN_ID)

        (opened,) = _records(captured_logs, "run_opened")
        (completed,) = _records(captured_logs, "calculation_completed")
        assert opened["operation"] == "open_run"
        assert opened["correlation_id"] != completed["correlation_id"]

    def test_statement_operation_binds_statement(self, engine, captured_logs, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)
        statement = engine.calculate_run(run.id, ADMIN_ID).statement_for(parties.creator_a)

        engine.review_statement(statement.id, parties.creator_a)

        (reviewed,) = _records(captured_logs, "statement_reviewed")
        assert reviewed["statement_id"] == str(statement.id)
        assert reviewed["run_id"] == str(run.id)
        assert reviewed["actor_id"] == str(parties.creator_a)
        assert reviewed["operation"] == "review_statement"

    def test_refused_operation_logged_inside_context(self, engine, captured_logs, parties):
        run = engine.open_run(JAN_1, FEB_1, ADMIN_ID)

        with pytest.raises(RunInvalidStateError):
            engine.rollback_run(run.id, ADMIN_ID, REASON)

        (rejected,) = _records(captured_logs, "run_state_rejected")
        assert rejected["operation"] == "rollback_run"
        assert rejected["run_id"] == str(run.id)
        assert rejected["before"]["status"] == "draft"


class TestStateSnapshots:
    def test_refused_transition_logs_before_state(self, lifecycle, captured_logs):
        run = lifecycle.open_run(JAN_1, FEB_1, ADMIN_ID)

        with pytest.raises(InvalidTransitionError):
            lifecycle.transition(run.id, RunStatus.LOCKED, ADMIN_ID)

        (rejected,) = _records(captured_logs, "run_transition_rejected")
        assert rejected["level"] == "WARNING"
        assert rejected["from_status"] == "draft"
        assert rejected["to_status"] == "locked"
        assert rejected["before"] == {
            "run_id": str(run.id),
            "status": "draft",
            "total_revenue_cents": 0,
            "total_royalties_cents": 0,
            "calculated_at": None,
            "locked_at": None,
            "locked_by_id": None,
        }

    def test_paid_rollback_logs_locked_snapshot(
        self, rollback_service, statement_service, locked_run, captured_logs
    ):
        statement_service.mark_paid(locked_run.statements[0].id, "PAY-0001", ADMIN_ID)

        with pytest.raises(PaidStatementsError):
            rollback_service.rollback(locked_run.run_id, ADMIN_ID, REASON)

        (blocked,) = _records(captured_logs, "rollback_blocked_by_payments")
        assert blocked["paid_count"] == 1
        before = blocked["before"]
        assert before["run_id"] == str(locked_run.run_id)
        assert before["status"] == "locked"
        assert before["total_royalties_cents"] == 10_000
        assert before["locked_at"] is not None
