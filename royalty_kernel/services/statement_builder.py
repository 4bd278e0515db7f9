"""
StatementBuilder -- turns per-license revenue into persisted statements.

Responsibility:
    Splits each license's revenue across the asset's owners, folds every
    creator's allocations with the balance carried in from earlier runs,
    applies the payout threshold and writes one statement (plus lines) per
    creator.

Architecture position:
    Kernel > Services -- imperative shell.  Pure arithmetic is delegated to
    royalty_engines.splits and royalty_engines.thresholds; catalog and
    prior-statement reads go through the selectors.  Called only by
    CalculationService, inside its transaction.

Invariants enforced:
    - A statement exists for every creator with a non-zero allocation or a
      non-zero carried-in balance, and for no one else.
    - Line order within a statement: carryover, license contributions (by
      license, then asset identity), threshold note.
    - total_earnings_cents == carryover_in + sum(contribution lines).
    - No negative amount is ever persisted (NegativeAmountError aborts).
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from royalty_engines.splits import Allocation, OwnerShare, allocate_split
from royalty_engines.thresholds import ThresholdOutcome, accumulate
from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.domain.dtos import LicenseRevenue
from royalty_kernel.domain.line_detail import (
    CarryoverDetail,
    LicenseContribution,
    LineDetail,
    ThresholdNote,
    encode_detail,
)
from royalty_kernel.domain.settings import EngineSettings
from royalty_kernel.exceptions import NegativeAmountError
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.run import RoyaltyRun
from royalty_kernel.models.statement import (
    THRESHOLD_HOLD_FLAG,
    RoyaltyLine,
    RoyaltyStatement,
    StatementStatus,
)
from royalty_kernel.selectors.catalog_selector import CatalogSelector
from royalty_kernel.selectors.run_selector import RunSelector
from royalty_kernel.services.deadline import OperationDeadline

logger = get_logger("services.statement_builder")

SOURCE_PRIOR_STATEMENT = "prior_statement"
SOURCE_OPENING_BALANCE = "opening_balance"


@dataclass(frozen=True)
class Contribution:
    """One creator's share of one license's revenue."""

    revenue: LicenseRevenue
    allocation: Allocation


@dataclass(frozen=True)
class CarryIn:
    amount_cents: int
    detail: CarryoverDetail | None


@dataclass(frozen=True)
class BuildOutcome:
    statements: tuple[RoyaltyStatement, ...]
    total_revenue_cents: int
    total_royalties_cents: int


class StatementBuilder:
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()
        self._catalog = CatalogSelector(session)
        self._runs = RunSelector(session)

    def build(
        self,
        run: RoyaltyRun,
        revenues: tuple[LicenseRevenue, ...],
        actor_id: UUID,
        deadline: OperationDeadline | None = None,
    ) -> BuildOutcome:
        contributions = self._split_revenues(revenues, deadline)
        carry_ins = self._carry_ins(run, set(contributions))

        creators = {
            creator_id
            for creator_id, items in contributions.items()
            if any(c.allocation.amount_cents > 0 for c in items)
        }
        creators |= {cid for cid, carry in carry_ins.items() if carry.amount_cents > 0}

        profiles = self._catalog.creator_profiles(creators)

        statements: list[RoyaltyStatement] = []
        for creator_id in sorted(creators, key=str):
            if deadline is not None:
                deadline.check("statement_build")
            profile = profiles.get(creator_id)
            threshold = (
                profile.minimum_payout_cents
                if profile is not None and profile.minimum_payout_cents is not None
                else self._settings.default_minimum_payout_cents
            )
            statements.append(
                self._build_statement(
                    run,
                    creator_id,
                    [c for c in contributions.get(creator_id, []) if c.allocation.amount_cents > 0],
                    carry_ins.get(creator_id, CarryIn(0, None)),
                    threshold,
                    actor_id,
                )
            )

        self._session.flush()

        total_revenue = sum(r.revenue_cents for r in revenues)
        total_royalties = sum(
            c.allocation.amount_cents for items in contributions.values() for c in items
        )

        logger.info(
            "statements_built",
            extra={
                "run_id": str(run.id),
                "statement_count": len(statements),
                "line_count": sum(len(s.lines) for s in statements),
                "total_revenue_cents": total_revenue,
                "total_royalties_cents": total_royalties,
            },
        )
        return BuildOutcome(
            statements=tuple(statements),
            total_revenue_cents=total_revenue,
            total_royalties_cents=total_royalties,
        )

    def _split_revenues(
        self,
        revenues: tuple[LicenseRevenue, ...],
        deadline: OperationDeadline | None,
    ) -> dict[UUID, list[Contribution]]:
        contributions: dict[UUID, list[Contribution]] = defaultdict(list)
        for revenue in revenues:
            if deadline is not None:
                deadline.check("split_distribution")
            ownerships = self._catalog.ownerships_for_asset(
                revenue.asset_id, revenue.overlap_start, revenue.overlap_end
            )
            allocations = allocate_split(
                revenue_cents=revenue.revenue_cents,
                shares=[OwnerShare(o.creator_id, o.share_bps) for o in ownerships],
                asset_id=str(revenue.asset_id),
            )
            for allocation in allocations:
                contributions[allocation.owner_id].append(Contribution(revenue, allocation))
        return contributions

    def _carry_ins(self, run: RoyaltyRun, allocated: set[UUID]) -> dict[UUID, CarryIn]:
        """Balance brought forward per candidate creator."""
        candidates = (
            allocated
            | self._runs.carryover_candidates(run.scope, run.period_start)
            | self._catalog.creators_with_opening_balance()
        )
        profiles = self._catalog.creator_profiles(candidates)

        carry_ins: dict[UUID, CarryIn] = {}
        for creator_id in sorted(candidates, key=str):
            prior = self._runs.prior_balance(creator_id, run.scope, run.period_start)
            if prior is not None:
                carry_ins[creator_id] = CarryIn(
                    prior.carryover_out_cents,
                    CarryoverDetail(
                        source=SOURCE_PRIOR_STATEMENT,
                        source_statement_id=str(prior.statement_id),
                        source_run_id=str(prior.run_id),
                    ),
                )
                continue
            profile = profiles.get(creator_id)
            opening = profile.opening_carryover_cents if profile is not None else 0
            carry_ins[creator_id] = CarryIn(
                opening,
                CarryoverDetail(source=SOURCE_OPENING_BALANCE) if opening else None,
            )
        return carry_ins

    def _build_statement(
        self,
        run: RoyaltyRun,
        creator_id: UUID,
        contributions: list[Contribution],
        carry_in: CarryIn,
        minimum_payout_cents: int,
        actor_id: UUID,
    ) -> RoyaltyStatement:
        contributions = sorted(
            contributions,
            key=lambda c: (str(c.revenue.license_id), str(c.revenue.asset_id)),
        )
        outcome: ThresholdOutcome = accumulate(
            carryover_cents=carry_in.amount_cents,
            allocations_cents=[c.allocation.amount_cents for c in contributions],
            minimum_payout_cents=minimum_payout_cents,
        )

        now = self._clock.now()
        statement = RoyaltyStatement(
            run=run,
            run_id=run.id,
            creator_id=creator_id,
            total_earnings_cents=outcome.accumulated_cents,
            carryover_in_cents=outcome.carryover_in_cents,
            carryover_out_cents=outcome.carryover_out_cents,
            minimum_payout_cents=minimum_payout_cents,
            status=StatementStatus.PENDING if outcome.payable else StatementStatus.REVIEWED,
            reviewed_at=None if outcome.payable else now,
            details=None if outcome.payable else {THRESHOLD_HOLD_FLAG: True},
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self._session.add(statement)

        seq = 0
        if carry_in.amount_cents and carry_in.detail is not None:
            seq += 1
            self._add_line(
                statement,
                seq,
                carry_in.detail,
                amount_cents=carry_in.amount_cents,
                period_start=run.period_start,
                period_end=run.period_end,
                actor_id=actor_id,
            )

        for contribution in contributions:
            revenue = contribution.revenue
            seq += 1
            self._add_line(
                statement,
                seq,
                LicenseContribution(
                    formula=revenue.formula,
                    overlap_start=revenue.overlap_start,
                    overlap_end=revenue.overlap_end,
                    overlap_days=revenue.overlap_days,
                    license_total_days=revenue.license_total_days,
                    fee_component_cents=revenue.fee_component_cents,
                    usage_component_cents=revenue.usage_component_cents,
                    prorated=revenue.prorated,
                ),
                amount_cents=contribution.allocation.amount_cents,
                period_start=revenue.overlap_start,
                period_end=revenue.overlap_end,
                actor_id=actor_id,
                license_id=revenue.license_id,
                asset_id=revenue.asset_id,
                revenue_cents=revenue.revenue_cents,
                share_bps=contribution.allocation.share_bps,
            )

        if outcome.below_threshold:
            seq += 1
            self._add_line(
                statement,
                seq,
                ThresholdNote(
                    accumulated_cents=outcome.accumulated_cents,
                    minimum_payout_cents=minimum_payout_cents,
                    carryover_out_cents=outcome.carryover_out_cents,
                ),
                amount_cents=0,
                period_start=run.period_start,
                period_end=run.period_end,
                actor_id=actor_id,
            )
            logger.info(
                "statement_below_threshold",
                extra={
                    "creator_id": str(creator_id),
                    "accumulated_cents": outcome.accumulated_cents,
                    "minimum_payout_cents": minimum_payout_cents,
                },
            )

        return statement

    def _add_line(
        self,
        statement: RoyaltyStatement,
        seq: int,
        detail: LineDetail,
        *,
        amount_cents: int,
        period_start: date,
        period_end: date,
        actor_id: UUID,
        license_id: UUID | None = None,
        asset_id: UUID | None = None,
        revenue_cents: int = 0,
        share_bps: int = 0,
    ) -> RoyaltyLine:
        if amount_cents < 0 or revenue_cents < 0:
            raise NegativeAmountError(
                "calculated_royalty_cents",
                min(amount_cents, revenue_cents),
                str(statement.creator_id),
            )
        kind, payload = encode_detail(detail)
        line = RoyaltyLine(
            line_seq=seq,
            line_kind=kind,
            license_id=license_id,
            asset_id=asset_id,
            revenue_cents=revenue_cents,
            share_bps=share_bps,
            calculated_royalty_cents=amount_cents,
            period_start=period_start,
            period_end=period_end,
            detail=payload,
            created_at=self._clock.now(),
            created_by_id=actor_id,
        )
        statement.lines.append(line)
        return line
