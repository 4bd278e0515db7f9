"""
Module: royalty_kernel.models.catalog
Responsibility: ORM mappings for the externally-owned catalog the royalty
    engine reads: creators, IP assets, ownership shares, licenses and
    license revenue events.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - The royalty engine never writes these tables; they are maintained by
      the catalog/licensing collaborators.  Tests seed them directly.
    - Dates are half-open: start_date inclusive, end_date exclusive.
    - share_bps is an integer in 0..10,000; the sum per asset is checked by
      the split distributor, never normalized here.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from royalty_kernel.db.base import Base, UUIDString


class LicenseStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"
    TERMINATED = "terminated"


class LicenseType(str, Enum):
    """Commercial shape of a license (informational; revenue is driven by terms)."""

    FLAT_FEE = "flat_fee"
    REVENUE_SHARE = "revenue_share"
    HYBRID = "hybrid"


class Creator(Base):
    """
    Creator payout profile.

    minimum_payout_cents NULL means "use the configured default threshold".
    opening_carryover_cents is an unpaid balance migrated from before the
    first royalty run; it is consulted only when the creator has no earlier
    statement.
    """

    __tablename__ = "creators"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    minimum_payout_cents: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True
    )

    opening_carryover_cents: Mapped[int] = mapped_column(
        BigInteger, default=0, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Creator {self.name}>"


class IPAsset(Base):
    __tablename__ = "ip_assets"

    title: Mapped[str] = mapped_column(String(300), nullable=False)

    ownerships: Mapped[list["IPOwnership"]] = relationship(back_populates="asset")

    def __repr__(self) -> str:
        return f"<IPAsset {self.title}>"


class IPOwnership(Base):
    """A creator's basis-point share of an asset over [start_date, end_date)."""

    __tablename__ = "ip_ownerships"

    __table_args__ = (Index("idx_ownership_asset", "asset_id"),)

    asset_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ip_assets.id"), nullable=False
    )
    creator_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("creators.id"), nullable=False
    )

    share_bps: Mapped[int] = mapped_column(Integer, nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    # NULL = open-ended
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    asset: Mapped[IPAsset] = relationship(back_populates="ownerships")

    def is_active_during(self, period_start: date, period_end: date) -> bool:
        """Half-open intersection with [period_start, period_end)."""
        if self.start_date >= period_end:
            return False
        return self.end_date is None or self.end_date > period_start


class License(Base):
    """
    A license granting use of one asset.

    fee_cents is the flat fee for the whole term [start_date, end_date);
    rev_share_bps > 0 marks the license as share-based, with revenue taken
    from LicenseRevenueEvent rows.
    """

    __tablename__ = "licenses"

    __table_args__ = (
        Index("idx_license_asset", "asset_id"),
        Index("idx_license_term", "start_date", "end_date"),
    )

    asset_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ip_assets.id"), nullable=False
    )

    licensee: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    status: Mapped[LicenseStatus] = mapped_column(
        String(20), default=LicenseStatus.ACTIVE, nullable=False
    )

    license_type: Mapped[LicenseType] = mapped_column(
        String(20), default=LicenseType.FLAT_FEE, nullable=False
    )

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    fee_cents: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    rev_share_bps: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    asset: Mapped[IPAsset] = relationship()

    def __repr__(self) -> str:
        return f"<License {self.id} {self.start_date}..{self.end_date}>"


class LicenseRevenueEvent(Base):
    """Usage/revenue reported against a share-based license on a given day."""

    __tablename__ = "license_revenue_events"

    __table_args__ = (
        Index("idx_revenue_event_license_day", "license_id", "occurred_on"),
    )

    license_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("licenses.id"), nullable=False
    )
    occurred_on: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
