"""
StatementService tests.

Tests cover:
- Creator review and dispute, with ownership checks
- Dispute resolution with and without an adjustment line
- Manual adjustments: sign rules, totals kept consistent
- Adjustment approval workflow: pending requests, approve, reject, reverse
- Payout threshold re-applied after every money movement
- Post-lock: mutations refused, corrections and payouts allowed
- One audit event per mutation
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from royalty_kernel.domain.line_detail import (
    AdjustmentReversal,
    CorrectionDetail,
    DisputeResolution,
    ManualAdjustment,
    ThresholdNote,
)
from royalty_kernel.domain.settings import EngineSettings
from royalty_kernel.exceptions import (
    AdjustmentNotFoundError,
    AdjustmentStateError,
    InsufficientPrivilegeError,
    InvalidAdjustmentError,
    RunInvalidStateError,
    RunLockedError,
    StatementNotFoundError,
    StatementStateError,
)
from royalty_kernel.models.audit_event import AuditAction
from royalty_kernel.models.run import RoyaltyRun
from royalty_kernel.models.statement import (
    AdjustmentStatus,
    LineKind,
    RoyaltyAdjustment,
    RoyaltyStatement,
    StatementStatus,
)
from royalty_kernel.services.auditor_service import STATEMENT_ENTITY
from royalty_kernel.services.statement_service import StatementService

from tests.conftest import ADMIN_ID, FEB_1, JAN_1, MAR_1, REVIEWER_ID, seed_two_creator_catalog


@pytest.fixture
def statement_a(calculated_run, two_creator_catalog):
    return calculated_run.statement_for(two_creator_catalog.creator_a)


@pytest.fixture
def locked_statement_a(locked_run, two_creator_catalog):
    return locked_run.statement_for(two_creator_catalog.creator_a)


class TestCreatorWorkflow:
    def test_review(self, statement_service, auditor, statement_a):
        reviewed = statement_service.review_statement(statement_a.id, statement_a.creator_id)

        assert reviewed.status == StatementStatus.REVIEWED
        trace = auditor.get_trace(STATEMENT_ENTITY, statement_a.id)
        assert trace.actions == (AuditAction.STATEMENT_REVIEWED,)

    def test_review_by_other_creator_denied(self, statement_service, statement_a, two_creator_catalog):
        with pytest.raises(InsufficientPrivilegeError):
            statement_service.review_statement(statement_a.id, two_creator_catalog.creator_b)

    def test_review_twice_rejected(self, statement_service, statement_a):
        statement_service.review_statement(statement_a.id, statement_a.creator_id)

        with pytest.raises(StatementStateError):
            statement_service.review_statement(statement_a.id, statement_a.creator_id)

    def test_dispute_after_review(self, statement_service, auditor, statement_a):
        statement_service.review_statement(statement_a.id, statement_a.creator_id)

        disputed = statement_service.dispute_statement(
            statement_a.id, "  Missing the March sync fee  ", statement_a.creator_id
        )

        assert disputed.status == StatementStatus.DISPUTED
        assert disputed.dispute_reason == "Missing the March sync fee"
        entry = auditor.get_trace(STATEMENT_ENTITY, statement_a.id).entries[-1]
        assert entry.payload == {"reason": "Missing the March sync fee"}

    def test_dispute_requires_reason(self, statement_service, statement_a):
        with pytest.raises(InvalidAdjustmentError):
            statement_service.dispute_statement(statement_a.id, " ", statement_a.creator_id)

    def test_ownership_check(self, statement_service, statement_a, two_creator_catalog):
        assert statement_service.verify_statement_ownership(statement_a.id, statement_a.creator_id)
        assert not statement_service.verify_statement_ownership(
            statement_a.id, two_creator_catalog.creator_b
        )
        with pytest.raises(StatementNotFoundError):
            statement_service.verify_statement_ownership(uuid4(), statement_a.creator_id)


class TestDisputeResolution:
    @pytest.fixture
    def disputed(self, statement_service, statement_a):
        return statement_service.dispute_statement(
            statement_a.id, "Share should be 70%", statement_a.creator_id
        )

    def test_resolve_without_adjustment(self, statement_service, disputed):
        resolved = statement_service.resolve_dispute(disputed.id, "Share confirmed at 60%", ADMIN_ID)

        assert resolved.status == StatementStatus.RESOLVED
        assert resolved.total_earnings_cents == 6_000
        assert resolved.lines_of_kind(LineKind.DISPUTE_RESOLUTION) == ()

    def test_resolve_with_adjustment(self, session, statement_service, reporter, disputed):
        resolved = statement_service.resolve_dispute(
            disputed.id, "Duplicate license removed", ADMIN_ID, adjustment_cents=-250
        )

        assert resolved.total_earnings_cents == 5_750
        (line,) = resolved.lines_of_kind(LineKind.DISPUTE_RESOLUTION)
        assert line.calculated_royalty_cents == -250
        assert line.line_seq == 2
        assert line.detail == DisputeResolution(
            resolution="Duplicate license removed", actor_id=str(ADMIN_ID)
        )
        assert session.get(RoyaltyRun, disputed.run_id).total_royalties_cents == 9_750
        assert reporter.build_report(disputed.run_id).is_valid

    def test_resolve_requires_dispute(self, statement_service, statement_a):
        with pytest.raises(StatementStateError):
            statement_service.resolve_dispute(statement_a.id, "Nothing to resolve", ADMIN_ID)


class TestAdjustments:
    def test_bonus(self, statement_service, auditor, statement_a):
        adjusted = statement_service.apply_adjustment(
            statement_a.id, 500, "Chart bonus", "bonus", ADMIN_ID
        )

        assert adjusted.total_earnings_cents == 6_500
        (line,) = adjusted.lines_of_kind(LineKind.MANUAL_ADJUSTMENT)
        assert line.detail == ManualAdjustment(
            adjustment_type="bonus",
            reason="Chart bonus",
            actor_id=str(ADMIN_ID),
            adjustment_number=1,
        )
        entry = auditor.get_trace(STATEMENT_ENTITY, statement_a.id).entries[-1]
        assert entry.action == AuditAction.STATEMENT_ADJUSTED
        assert entry.payload["amount_cents"] == 500

    @pytest.mark.parametrize(
        ("amount", "adjustment_type"),
        [(-100, "credit"), (-100, "bonus"), (100, "debit"), (0, "refund"), (100, "gift")],
    )
    def test_invalid_adjustments(self, statement_service, statement_a, amount, adjustment_type):
        with pytest.raises(InvalidAdjustmentError):
            statement_service.apply_adjustment(
                statement_a.id, amount, "reason", adjustment_type, ADMIN_ID
            )

    def test_signed_types_accept_either_sign(self, statement_service, statement_a):
        statement_service.apply_adjustment(statement_a.id, -100, "Overpaid", "refund", ADMIN_ID)
        adjusted = statement_service.apply_adjustment(
            statement_a.id, 40, "Rounding fix", "correction", ADMIN_ID
        )

        assert adjusted.total_earnings_cents == 5_940
        assert [line.line_seq for line in adjusted.lines] == [1, 2, 3]

    def test_total_cannot_go_negative(self, statement_service, statement_a):
        with pytest.raises(InvalidAdjustmentError):
            statement_service.apply_adjustment(
                statement_a.id, -6_001, "Too much", "debit", ADMIN_ID
            )

    def test_unknown_statement(self, statement_service):
        with pytest.raises(StatementNotFoundError):
            statement_service.apply_adjustment(uuid4(), 100, "reason", "bonus", ADMIN_ID)


class TestLockedRun:
    def test_creator_actions_refused(self, statement_service, locked_statement_a):
        with pytest.raises(RunLockedError):
            statement_service.review_statement(
                locked_statement_a.id, locked_statement_a.creator_id
            )
        with pytest.raises(RunLockedError):
            statement_service.dispute_statement(
                locked_statement_a.id, "Too late", locked_statement_a.creator_id
            )

    def test_adjustment_refused(self, statement_service, locked_statement_a):
        with pytest.raises(RunLockedError):
            statement_service.apply_adjustment(
                locked_statement_a.id, 100, "bonus", "bonus", ADMIN_ID
            )

    def test_correction_appends_line(self, session, statement_service, reporter, locked_statement_a):
        first = statement_service.issue_correction(
            locked_statement_a.id, -120, "Duplicate usage event", ADMIN_ID
        )
        second = statement_service.issue_correction(
            locked_statement_a.id, 20, "Late usage report", ADMIN_ID
        )

        assert first.total_earnings_cents == 5_880
        assert second.total_earnings_cents == 5_900
        corrections = second.lines_of_kind(LineKind.CORRECTION)
        assert [c.detail.correction_number for c in corrections] == [1, 2]
        assert corrections[1].detail == CorrectionDetail(
            reason="Late usage report", actor_id=str(ADMIN_ID), correction_number=2
        )
        assert second.lines[0].calculated_royalty_cents == 6_000
        assert session.get(RoyaltyRun, locked_statement_a.run_id).total_royalties_cents == 9_900
        assert reporter.build_report(locked_statement_a.run_id).is_valid

    def test_correction_requires_administrator(self, statement_service, locked_statement_a):
        with pytest.raises(InsufficientPrivilegeError):
            statement_service.issue_correction(
                locked_statement_a.id, 100, "Late usage report", REVIEWER_ID
            )

    def test_correction_requires_locked_run(self, statement_service, statement_a):
        with pytest.raises(RunInvalidStateError):
            statement_service.issue_correction(statement_a.id, 100, "Too early", ADMIN_ID)

    def test_mark_paid(self, statement_service, auditor, locked_statement_a):
        paid = statement_service.mark_paid(locked_statement_a.id, " PAY-2026-01 ", ADMIN_ID)

        assert paid.status == StatementStatus.PAID
        assert paid.payment_reference == "PAY-2026-01"
        entry = auditor.get_trace(STATEMENT_ENTITY, locked_statement_a.id).entries[-1]
        assert entry.action == AuditAction.STATEMENT_PAID
        assert entry.payload["amount_cents"] == 6_000

        with pytest.raises(StatementStateError):
            statement_service.mark_paid(locked_statement_a.id, "PAY-2026-02", ADMIN_ID)

    def test_mark_paid_requires_locked_run(self, statement_service, statement_a):
        with pytest.raises(RunInvalidStateError):
            statement_service.mark_paid(statement_a.id, "PAY-1", ADMIN_ID)

    def test_below_threshold_statement_not_payable(
        self, lifecycle, calculation, reporter, statement_service, catalog
    ):
        parties = seed_two_creator_catalog(catalog, minimum_payout_cents=5_000)
        run = lifecycle.open_run(JAN_1, FEB_1, ADMIN_ID)
        result = calculation.calculate(run.id, ADMIN_ID)
        lifecycle.approve_lock(run.id, REVIEWER_ID, reporter.build_report(run.id))
        held = result.statement_for(parties.creator_b)

        with pytest.raises(StatementStateError) as exc_info:
            statement_service.mark_paid(held.id, "PAY-1", ADMIN_ID)
        assert exc_info.value.status == "below_threshold"


class TestThresholdAfterMovement:
    """Creators A (6,000) and B (4,000) against a 5,000 minimum payout."""

    @pytest.fixture
    def parties(self, catalog):
        return seed_two_creator_catalog(catalog, minimum_payout_cents=5_000)

    @pytest.fixture
    def january(self, lifecycle, calculation, parties):
        run = lifecycle.open_run(JAN_1, FEB_1, ADMIN_ID)
        return calculation.calculate(run.id, ADMIN_ID)

    def test_credit_on_held_statement_carries_into_next_run(
        self, lifecycle, calculation, statement_service, january, parties
    ):
        held = january.statement_for(parties.creator_b)

        adjusted = statement_service.apply_adjustment(
            held.id, 500, "Late usage report", "credit", ADMIN_ID
        )

        assert adjusted.total_earnings_cents == 4_500
        assert adjusted.carryover_out_cents == 4_500
        assert adjusted.status == StatementStatus.REVIEWED
        assert [line.kind for line in adjusted.lines] == [
            LineKind.LICENSE_CONTRIBUTION,
            LineKind.THRESHOLD_NOTE,
            LineKind.MANUAL_ADJUSTMENT,
            LineKind.THRESHOLD_NOTE,
        ]
        assert adjusted.lines[-1].detail == ThresholdNote(
            accumulated_cents=4_500, minimum_payout_cents=5_000, carryover_out_cents=4_500
        )

        run = lifecycle.open_run(FEB_1, MAR_1, ADMIN_ID)
        february = calculation.calculate(run.id, ADMIN_ID)

        assert february.statement_for(parties.creator_b).carryover_in_cents == 4_500

    def test_credit_reaching_threshold_releases_hold(self, statement_service, january, parties):
        held = january.statement_for(parties.creator_b)

        adjusted = statement_service.apply_adjustment(
            held.id, 1_000, "Late usage report", "credit", ADMIN_ID
        )

        assert adjusted.total_earnings_cents == 5_000
        assert adjusted.carryover_out_cents == 0
        assert adjusted.status == StatementStatus.PENDING
        assert len(adjusted.lines_of_kind(LineKind.THRESHOLD_NOTE)) == 1
        # Back in the creator's hands
        reviewed = statement_service.review_statement(held.id, parties.creator_b)
        assert reviewed.status == StatementStatus.REVIEWED

    def test_debit_below_threshold_holds_payable_statement(
        self, lifecycle, reporter, statement_service, january, parties
    ):
        payable = january.statement_for(parties.creator_a)

        adjusted = statement_service.apply_adjustment(
            payable.id, -1_500, "Advance recouped", "debit", ADMIN_ID
        )

        assert adjusted.total_earnings_cents == 4_500
        assert adjusted.carryover_out_cents == 4_500
        assert adjusted.status == StatementStatus.REVIEWED
        assert adjusted.lines[-1].kind == LineKind.THRESHOLD_NOTE

        lifecycle.approve_lock(january.run_id, REVIEWER_ID, reporter.build_report(january.run_id))
        with pytest.raises(StatementStateError) as exc_info:
            statement_service.mark_paid(payable.id, "PAY-1", ADMIN_ID)
        assert exc_info.value.status == "below_threshold"

    def test_correction_after_lock_releases_hold(
        self, lifecycle, reporter, statement_service, january, parties
    ):
        held = january.statement_for(parties.creator_b)
        lifecycle.approve_lock(january.run_id, REVIEWER_ID, reporter.build_report(january.run_id))

        corrected = statement_service.issue_correction(
            held.id, 1_200, "Missed sync fee", ADMIN_ID
        )

        assert corrected.total_earnings_cents == 5_200
        assert corrected.carryover_out_cents == 0
        assert corrected.status == StatementStatus.PENDING
        paid = statement_service.mark_paid(held.id, "PAY-2", ADMIN_ID)
        assert paid.status == StatementStatus.PAID

    def test_correction_keeping_hold_adds_note(
        self, session, lifecycle, reporter, statement_service, january, parties
    ):
        held = january.statement_for(parties.creator_b)
        lifecycle.approve_lock(january.run_id, REVIEWER_ID, reporter.build_report(january.run_id))

        corrected = statement_service.issue_correction(
            held.id, -300, "Duplicate usage event", ADMIN_ID
        )

        assert corrected.carryover_out_cents == 3_700
        assert corrected.lines[-1].detail == ThresholdNote(
            accumulated_cents=3_700, minimum_payout_cents=5_000, carryover_out_cents=3_700
        )
        assert session.get(RoyaltyStatement, held.id).details["corrections"][0][
            "correction_number"
        ] == 1

    def test_resolution_adjustment_settles_threshold(self, statement_service, january, parties):
        held = january.statement_for(parties.creator_b)
        statement_service.dispute_statement(held.id, "Share should be 50%", parties.creator_b)

        resolved = statement_service.resolve_dispute(
            held.id, "Share corrected to 50%", ADMIN_ID, adjustment_cents=1_000
        )

        assert resolved.status == StatementStatus.RESOLVED
        assert resolved.carryover_out_cents == 0


class TestAdjustmentApproval:
    """Approval threshold of 1,000 cents against creator A's 6,000 statement."""

    @pytest.fixture
    def approvals(self, session, auditor, clock, role_resolver):
        return StatementService(
            session,
            auditor,
            clock,
            role_resolver,
            EngineSettings(adjustment_approval_threshold_cents=1_000),
        )

    @pytest.fixture
    def pending(self, approvals, statement_a):
        info = approvals.apply_adjustment(
            statement_a.id, 2_500, "Sync placement bonus", "bonus", ADMIN_ID
        )
        return info.adjustments[-1]

    def test_amount_at_threshold_applied_at_once(self, approvals, statement_a):
        info = approvals.apply_adjustment(
            statement_a.id, 1_000, "Chart bonus", "bonus", ADMIN_ID
        )

        (adjustment,) = info.adjustments
        assert adjustment.status == AdjustmentStatus.APPLIED
        assert adjustment.requires_approval is False
        assert adjustment.applied_line_seq == 2
        assert info.total_earnings_cents == 7_000

    def test_large_amount_waits_for_approval(
        self, approvals, auditor, statement_a, pending, calculated_run
    ):
        assert pending.status == AdjustmentStatus.PENDING_APPROVAL
        assert pending.requires_approval is True
        assert pending.applied_line_seq is None
        adjustments = approvals.get_statement_adjustments(statement_a.id)
        assert adjustments == (pending,)
        assert approvals.get_pending_adjustments() == (pending,)
        assert approvals.get_pending_adjustments(run_id=calculated_run.run_id) == (pending,)
        assert approvals.get_pending_adjustments(run_id=uuid4()) == ()
        entry = auditor.get_trace(STATEMENT_ENTITY, statement_a.id).entries[-1]
        assert entry.action == AuditAction.ADJUSTMENT_REQUESTED
        assert entry.payload["amount_cents"] == 2_500

    def test_pending_request_moves_no_money(self, session, statement_a, pending):
        statement = session.get(RoyaltyStatement, statement_a.id)

        assert statement.total_earnings_cents == 6_000
        assert statement.run.total_royalties_cents == 10_000
        assert [line.line_kind for line in statement.lines] == [LineKind.LICENSE_CONTRIBUTION]

    def test_approve_applies_amount(self, session, approvals, reporter, statement_a, pending):
        approved = approvals.approve_adjustment(pending.id, ADMIN_ID, notes=" Confirmed ")

        assert approved.status == AdjustmentStatus.APPLIED
        assert approved.decided_by_id == ADMIN_ID
        assert approved.decision_notes == "Confirmed"
        assert approved.applied_line_seq == 2
        statement = session.get(RoyaltyStatement, statement_a.id)
        assert statement.total_earnings_cents == 8_500
        assert statement.run.total_royalties_cents == 12_500
        assert approvals.get_pending_adjustments() == ()
        assert reporter.build_report(statement_a.run_id).is_valid

    def test_approve_requires_administrator(self, approvals, pending):
        with pytest.raises(InsufficientPrivilegeError):
            approvals.approve_adjustment(pending.id, REVIEWER_ID)

    def test_reject_records_reason(self, session, approvals, auditor, statement_a, pending):
        rejected = approvals.reject_adjustment(pending.id, ADMIN_ID, " No placement found ")

        assert rejected.status == AdjustmentStatus.REJECTED
        assert rejected.decision_notes == "No placement found"
        assert session.get(RoyaltyStatement, statement_a.id).total_earnings_cents == 6_000
        entry = auditor.get_trace(STATEMENT_ENTITY, statement_a.id).entries[-1]
        assert entry.action == AuditAction.ADJUSTMENT_REJECTED

        with pytest.raises(AdjustmentStateError) as exc_info:
            approvals.approve_adjustment(pending.id, ADMIN_ID)
        assert exc_info.value.status == "rejected"

    def test_reject_requires_reason(self, approvals, pending):
        with pytest.raises(InvalidAdjustmentError):
            approvals.reject_adjustment(pending.id, ADMIN_ID, "  ")

    def test_reverse_appends_reversal_line(self, session, approvals, reporter, statement_a):
        info = approvals.apply_adjustment(statement_a.id, 800, "Late usage", "credit", ADMIN_ID)
        (adjustment,) = info.adjustments

        reversed_ = approvals.reverse_adjustment(adjustment.id, ADMIN_ID, "Usage was already counted")

        assert reversed_.status == AdjustmentStatus.REVERSED
        assert reversed_.reversal_line_seq == 3
        assert reversed_.reversal_reason == "Usage was already counted"
        statement = session.get(RoyaltyStatement, statement_a.id)
        assert statement.total_earnings_cents == 6_000
        assert [line.calculated_royalty_cents for line in statement.lines] == [6_000, 800, -800]
        assert statement.lines[-1].line_kind == LineKind.ADJUSTMENT_REVERSAL
        assert statement.lines[-1].detail["original_adjustment_type"] == "credit"
        assert reporter.build_report(statement_a.run_id).is_valid

        with pytest.raises(AdjustmentStateError):
            approvals.reverse_adjustment(adjustment.id, ADMIN_ID, "Second attempt")

    def test_reversal_line_detail(self, statement_service, statement_a):
        info = statement_service.apply_adjustment(
            statement_a.id, -200, "Refund of duplicate fee", "refund", ADMIN_ID
        )

        statement_service.reverse_adjustment(info.adjustments[0].id, ADMIN_ID, "Fee was not duplicated")

        (reversal,) = statement_service.review_statement(
            statement_a.id, statement_a.creator_id
        ).lines_of_kind(LineKind.ADJUSTMENT_REVERSAL)
        assert reversal.calculated_royalty_cents == 200
        assert reversal.detail == AdjustmentReversal(
            adjustment_number=1,
            original_adjustment_type="refund",
            reason="Fee was not duplicated",
            actor_id=str(ADMIN_ID),
        )

    def test_pending_request_cannot_be_reversed(self, approvals, pending):
        with pytest.raises(AdjustmentStateError):
            approvals.reverse_adjustment(pending.id, ADMIN_ID, "Never applied")

    def test_adjustments_numbered_per_statement(self, approvals, statement_a, pending):
        info = approvals.apply_adjustment(statement_a.id, 100, "Rounding", "credit", ADMIN_ID)

        assert [a.adjustment_number for a in info.adjustments] == [1, 2]
        assert [a.status for a in info.adjustments] == [
            AdjustmentStatus.PENDING_APPROVAL,
            AdjustmentStatus.APPLIED,
        ]

    def test_pending_request_after_lock_can_only_be_rejected(
        self, lifecycle, reporter, approvals, calculated_run, pending
    ):
        lifecycle.approve_lock(
            calculated_run.run_id, REVIEWER_ID, reporter.build_report(calculated_run.run_id)
        )

        with pytest.raises(RunLockedError):
            approvals.approve_adjustment(pending.id, ADMIN_ID)
        rejected = approvals.reject_adjustment(pending.id, ADMIN_ID, "Run closed before approval")
        assert rejected.status == AdjustmentStatus.REJECTED

    def test_rollback_removes_adjustments(self, session, rollback_service, calculated_run, pending):
        rollback_service.rollback(
            calculated_run.run_id, ADMIN_ID, "Usage feed for January was incomplete"
        )

        assert session.execute(select(RoyaltyAdjustment)).scalars().all() == []

    def test_unknown_adjustment(self, approvals):
        with pytest.raises(AdjustmentNotFoundError):
            approvals.approve_adjustment(uuid4(), ADMIN_ID)
