"""
Module: royalty_kernel.selectors.catalog_selector
Responsibility: Read-only access to the externally-owned catalog: licenses
    active in a period, ownership shares of an asset, usage revenue events
    and creator payout profiles.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Half-open windows: a license [start, end) is active in a period
      [period_start, period_end) iff start < period_end and end > period_start.
    - Zero-length or inverted terms are returned, not filtered, so the
      revenue collector can reject them loudly (LicenseTermError).
    - Results are ordered by identity for deterministic calculation.

Failure modes:
    - Returns empty collections when nothing matches; never raises.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from royalty_kernel.models.catalog import (
    Creator,
    IPOwnership,
    License,
    LicenseRevenueEvent,
    LicenseStatus,
)
from royalty_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class LicenseTerm:
    license_id: UUID
    asset_id: UUID
    start_date: date
    end_date: date
    fee_cents: int
    rev_share_bps: int
    license_type: str


@dataclass(frozen=True)
class OwnershipRecord:
    ownership_id: UUID
    asset_id: UUID
    creator_id: UUID
    share_bps: int
    start_date: date
    end_date: date | None


@dataclass(frozen=True)
class CreatorProfile:
    creator_id: UUID
    name: str
    minimum_payout_cents: int | None
    opening_carryover_cents: int


class CatalogSelector(BaseSelector[License]):
    """Catalog reads used by revenue collection and validation."""

    def __init__(self, session: Session):
        super().__init__(session)

    def active_licenses(self, period_start: date, period_end: date) -> list[LicenseTerm]:
        """ACTIVE, non-deleted licenses whose term intersects the period."""
        rows = self.session.execute(
            select(License)
            .where(
                License.status == LicenseStatus.ACTIVE,
                License.deleted_at.is_(None),
                License.start_date < period_end,
                License.end_date > period_start,
            )
            .order_by(License.id)
        ).scalars().all()

        return [
            LicenseTerm(
                license_id=lic.id,
                asset_id=lic.asset_id,
                start_date=lic.start_date,
                end_date=lic.end_date,
                fee_cents=lic.fee_cents,
                rev_share_bps=lic.rev_share_bps,
                license_type=str(getattr(lic.license_type, "value", lic.license_type)),
            )
            for lic in rows
        ]

    def ownerships_for_asset(
        self,
        asset_id: UUID,
        window_start: date,
        window_end: date,
    ) -> list[OwnershipRecord]:
        """Ownership records of ``asset_id`` active at any point in the window."""
        query = (
            select(IPOwnership)
            .where(
                IPOwnership.asset_id == asset_id,
                IPOwnership.start_date < window_end,
            )
            .order_by(IPOwnership.creator_id, IPOwnership.id)
        )
        rows = self.session.execute(query).scalars().all()

        return [
            OwnershipRecord(
                ownership_id=row.id,
                asset_id=row.asset_id,
                creator_id=row.creator_id,
                share_bps=row.share_bps,
                start_date=row.start_date,
                end_date=row.end_date,
            )
            for row in rows
            if row.is_active_during(window_start, window_end)
        ]

    def usage_revenue_cents(
        self,
        license_id: UUID,
        period_start: date,
        period_end: date,
    ) -> int:
        """Sum of revenue events with period_start <= occurred_on < period_end."""
        total = self.session.execute(
            select(func.coalesce(func.sum(LicenseRevenueEvent.amount_cents), 0)).where(
                LicenseRevenueEvent.license_id == license_id,
                LicenseRevenueEvent.occurred_on >= period_start,
                LicenseRevenueEvent.occurred_on < period_end,
            )
        ).scalar_one()
        return int(total)

    def creator_profiles(self, creator_ids: Iterable[UUID]) -> dict[UUID, CreatorProfile]:
        ids = sorted(set(creator_ids), key=str)
        if not ids:
            return {}
        rows = self.session.execute(
            select(Creator).where(Creator.id.in_(ids))
        ).scalars().all()
        return {
            row.id: CreatorProfile(
                creator_id=row.id,
                name=row.name,
                minimum_payout_cents=row.minimum_payout_cents,
                opening_carryover_cents=row.opening_carryover_cents,
            )
            for row in rows
        }

    def creators_with_opening_balance(self) -> set[UUID]:
        rows = self.session.execute(
            select(Creator.id).where(Creator.opening_carryover_cents > 0)
        ).scalars().all()
        return set(rows)
