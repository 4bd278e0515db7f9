"""
ValidationReporter -- read-only integrity report over a calculated run.

Responsibility:
    Runs the named integrity checks a reviewer needs before approving a
    run, flags informational outliers and summarizes revenue and earnings.
    The lock gate (RunLifecycleService.approve_lock) refuses any report
    that is not is_valid.

Architecture position:
    Kernel > Services -- read-only.  Never adds, flushes or deletes.

Named checks (each a CheckResult; any error makes the report invalid):
    mathematical_consistency -- run royalties == sum(statement totals) -
                                sum(carryover_in); each statement total ==
                                sum of its lines; royalties <= revenue
                                (a precondition of the lock).
    ownership_integrity      -- every referenced asset's ownership shares
                                over each contribution window sum to 10,000.
    period_boundary          -- every line window lies inside the run window.
    dispute_gate             -- no DISPUTED statement.
    non_negativity           -- no negative statement total; negative
                                amounts only on signed adjustment kinds.

Warnings (never affect is_valid):
    HIGH_EARNER_OUTLIER, ZERO_EARNINGS_STATEMENT.

Invariants enforced:
    - Deterministic for a fixed run state: every collection is sorted.
"""

from collections import defaultdict
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from royalty_engines.outliers import HIGH_EARNER, EarningsSample, detect_outliers, median
from royalty_kernel.domain.dtos import (
    CheckResult,
    OutlierFlag,
    ValidationIssue,
    ValidationReport,
    ValidationSummary,
)
from royalty_kernel.domain.settings import EngineSettings
from royalty_kernel.exceptions import RunInvalidStateError, RunNotFoundError
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.run import (
    SETTLED_RUN_STATUSES,
    RoyaltyRun,
    RunStatus,
)
from royalty_kernel.models.statement import (
    SIGNED_LINE_KINDS,
    LineKind,
    RoyaltyStatement,
    StatementStatus,
)
from royalty_kernel.selectors.catalog_selector import CatalogSelector

logger = get_logger("services.validation_reporter")

CHECK_MATHEMATICAL_CONSISTENCY = "mathematical_consistency"
CHECK_OWNERSHIP_INTEGRITY = "ownership_integrity"
CHECK_PERIOD_BOUNDARY = "period_boundary"
CHECK_DISPUTE_GATE = "dispute_gate"
CHECK_NON_NEGATIVITY = "non_negativity"

OUTLIERS = "outliers"


class ValidationReporter:
    def __init__(self, session: Session, settings: EngineSettings | None = None):
        self._session = session
        self._settings = settings or EngineSettings()
        self._catalog = CatalogSelector(session)

    def build_report(self, run_id: UUID) -> ValidationReport:
        """
        Build the report for a CALCULATED (or later) run.

        Raises:
            RunNotFoundError: If the run does not exist.
            RunInvalidStateError: If the run was never calculated or is
                CANCELLED/FAILED.
        """
        run = self._session.get(RoyaltyRun, run_id)
        if run is None:
            raise RunNotFoundError(str(run_id))
        status = RunStatus(run.status)
        if status not in SETTLED_RUN_STATUSES:
            raise RunInvalidStateError(
                str(run.id),
                status.value,
                tuple(s.value for s in sorted(SETTLED_RUN_STATUSES, key=lambda s: s.value)),
                "validate",
            )

        statements = sorted(
            self._session.execute(
                select(RoyaltyStatement)
                .where(RoyaltyStatement.run_id == run.id)
                .options(selectinload(RoyaltyStatement.lines))
            ).scalars().all(),
            key=lambda s: str(s.creator_id),
        )

        checks = (
            self._check_mathematical_consistency(run, statements),
            self._check_ownership_integrity(statements),
            self._check_period_boundary(run, statements),
            self._check_dispute_gate(statements),
            self._check_non_negativity(statements),
        )
        errors = tuple(issue for check in checks for issue in check.errors)

        outliers = self._outliers(statements)
        warnings = tuple(self._outlier_warning(flag) for flag in outliers)

        report = ValidationReport(
            run_id=run.id,
            run_status=status,
            is_valid=all(check.passed for check in checks),
            errors=errors,
            warnings=warnings,
            summary=self._summary(run, statements),
            revenue_by_asset=self._revenue_by_asset(statements),
            earnings_by_creator=tuple(
                (s.creator_id, s.total_earnings_cents) for s in statements
            ),
            checks=checks,
            outliers=outliers,
        )

        logger.info(
            "validation_report_built",
            extra={
                "run_id": str(run.id),
                "is_valid": report.is_valid,
                "error_count": len(errors),
                "warning_count": len(warnings),
            },
        )
        return report

    # Named checks

    def _check_mathematical_consistency(self, run, statements) -> CheckResult:
        issues: list[ValidationIssue] = []

        statement_total = sum(s.total_earnings_cents for s in statements)
        carried_in = sum(s.carryover_in_cents for s in statements)
        if statement_total - carried_in != run.total_royalties_cents:
            issues.append(
                ValidationIssue(
                    code="RUN_TOTAL_MISMATCH",
                    message=(
                        f"Run royalties {run.total_royalties_cents} != statement totals "
                        f"{statement_total} net of carryover {carried_in}"
                    ),
                    check=CHECK_MATHEMATICAL_CONSISTENCY,
                    entity_id=str(run.id),
                    details={
                        "total_royalties_cents": run.total_royalties_cents,
                        "statement_total_cents": statement_total,
                        "carryover_in_cents": carried_in,
                    },
                )
            )

        for statement in statements:
            line_total = sum(line.calculated_royalty_cents for line in statement.lines)
            if line_total != statement.total_earnings_cents:
                issues.append(
                    ValidationIssue(
                        code="STATEMENT_LINE_MISMATCH",
                        message=(
                            f"Statement total {statement.total_earnings_cents} != "
                            f"sum of lines {line_total}"
                        ),
                        check=CHECK_MATHEMATICAL_CONSISTENCY,
                        entity_id=str(statement.id),
                    )
                )

        # Must hold before the lock is granted, and forever after.
        if run.total_royalties_cents > run.total_revenue_cents:
            issues.append(
                ValidationIssue(
                    code="ROYALTIES_EXCEED_REVENUE",
                    message=(
                        f"Royalties {run.total_royalties_cents} exceed revenue "
                        f"{run.total_revenue_cents}"
                    ),
                    check=CHECK_MATHEMATICAL_CONSISTENCY,
                    entity_id=str(run.id),
                )
            )

        return CheckResult(CHECK_MATHEMATICAL_CONSISTENCY, not issues, tuple(issues))

    def _check_ownership_integrity(self, statements) -> CheckResult:
        windows = sorted(
            {
                (line.asset_id, line.period_start, line.period_end)
                for s in statements
                for line in s.lines
                if LineKind(line.line_kind) == LineKind.LICENSE_CONTRIBUTION
                and line.asset_id is not None
            },
            key=lambda w: (str(w[0]), w[1], w[2]),
        )

        issues: list[ValidationIssue] = []
        for asset_id, start, end in windows:
            shares = self._catalog.ownerships_for_asset(asset_id, start, end)
            total = sum(o.share_bps for o in shares)
            if total != 10_000:
                issues.append(
                    ValidationIssue(
                        code="OWNERSHIP_SPLIT_INVALID",
                        message=f"Asset {asset_id} shares total {total} bps over {start}..{end}",
                        check=CHECK_OWNERSHIP_INTEGRITY,
                        entity_id=str(asset_id),
                        details={"total_bps": total, "window": [start, end]},
                    )
                )
        return CheckResult(CHECK_OWNERSHIP_INTEGRITY, not issues, tuple(issues))

    def _check_period_boundary(self, run, statements) -> CheckResult:
        issues: list[ValidationIssue] = []
        for statement in statements:
            for line in statement.lines:
                inside = (
                    run.period_start <= line.period_start
                    and line.period_end <= run.period_end
                    and line.period_start <= line.period_end
                )
                if not inside:
                    issues.append(
                        ValidationIssue(
                            code="LINE_OUTSIDE_PERIOD",
                            message=(
                                f"Line window {line.period_start}..{line.period_end} "
                                f"outside run {run.period_start}..{run.period_end}"
                            ),
                            check=CHECK_PERIOD_BOUNDARY,
                            entity_id=str(line.id),
                        )
                    )
        return CheckResult(CHECK_PERIOD_BOUNDARY, not issues, tuple(issues))

    def _check_dispute_gate(self, statements) -> CheckResult:
        issues = tuple(
            ValidationIssue(
                code="STATEMENT_DISPUTED",
                message=f"Statement for creator {s.creator_id} is disputed",
                check=CHECK_DISPUTE_GATE,
                entity_id=str(s.id),
                details={"dispute_reason": s.dispute_reason},
            )
            for s in statements
            if StatementStatus(s.status) == StatementStatus.DISPUTED
        )
        return CheckResult(CHECK_DISPUTE_GATE, not issues, issues)

    def _check_non_negativity(self, statements) -> CheckResult:
        issues: list[ValidationIssue] = []
        for statement in statements:
            if statement.total_earnings_cents < 0:
                issues.append(
                    ValidationIssue(
                        code="NEGATIVE_STATEMENT_TOTAL",
                        message=f"Statement total is {statement.total_earnings_cents}",
                        check=CHECK_NON_NEGATIVITY,
                        entity_id=str(statement.id),
                    )
                )
            for line in statement.lines:
                kind = LineKind(line.line_kind)
                if kind in SIGNED_LINE_KINDS:
                    continue
                if line.calculated_royalty_cents < 0 or line.revenue_cents < 0:
                    issues.append(
                        ValidationIssue(
                            code="NEGATIVE_LINE_AMOUNT",
                            message=(
                                f"{kind.value} line has amount "
                                f"{line.calculated_royalty_cents}"
                            ),
                            check=CHECK_NON_NEGATIVITY,
                            entity_id=str(line.id),
                        )
                    )
        return CheckResult(CHECK_NON_NEGATIVITY, not issues, tuple(issues))

    # Outliers and summaries

    def _outliers(self, statements) -> tuple[OutlierFlag, ...]:
        samples = [
            EarningsSample(
                creator_id=s.creator_id,
                statement_id=s.id,
                earnings_cents=s.total_earnings_cents,
                line_count=len(s.lines),
            )
            for s in statements
        ]
        return detect_outliers(
            samples=samples,
            multiplier=self._settings.outlier_median_multiplier,
        )

    def _outlier_warning(self, flag: OutlierFlag) -> ValidationIssue:
        if flag.kind == HIGH_EARNER:
            return ValidationIssue(
                code="HIGH_EARNER_OUTLIER",
                message=(
                    f"Creator {flag.creator_id} earns {flag.earnings_cents}, more than "
                    f"{self._settings.outlier_median_multiplier}x the median {flag.median_cents}"
                ),
                check=OUTLIERS,
                entity_id=str(flag.statement_id),
            )
        return ValidationIssue(
            code="ZERO_EARNINGS_STATEMENT",
            message=f"Statement for creator {flag.creator_id} has lines but totals zero",
            check=OUTLIERS,
            entity_id=str(flag.statement_id),
        )

    def _revenue_by_asset(self, statements) -> tuple[tuple[UUID, int], ...]:
        per_license: dict[UUID, tuple[UUID, int]] = {}
        for statement in statements:
            for line in statement.lines:
                if LineKind(line.line_kind) != LineKind.LICENSE_CONTRIBUTION:
                    continue
                per_license[line.license_id] = (line.asset_id, line.revenue_cents)

        per_asset: dict[UUID, int] = defaultdict(int)
        for asset_id, revenue in per_license.values():
            per_asset[asset_id] += revenue
        return tuple(sorted(per_asset.items(), key=lambda item: str(item[0])))

    def _summary(self, run, statements) -> ValidationSummary:
        contribution_lines = [
            line
            for s in statements
            for line in s.lines
            if LineKind(line.line_kind) == LineKind.LICENSE_CONTRIBUTION
        ]
        return ValidationSummary(
            total_revenue_cents=run.total_revenue_cents,
            total_royalties_cents=run.total_royalties_cents,
            statement_total_cents=sum(s.total_earnings_cents for s in statements),
            carryover_in_cents=sum(s.carryover_in_cents for s in statements),
            carryover_out_cents=sum(s.carryover_out_cents for s in statements),
            statement_count=len(statements),
            line_count=sum(len(s.lines) for s in statements),
            creator_count=len({s.creator_id for s in statements}),
            license_count=len({line.license_id for line in contribution_lines}),
            asset_count=len({line.asset_id for line in contribution_lines}),
            disputed_count=sum(
                1 for s in statements if StatementStatus(s.status) == StatementStatus.DISPUTED
            ),
            median_creator_earnings_cents=int(
                median([s.total_earnings_cents for s in statements])
            ),
        )
