"""
Module: royalty_engines.splits
Responsibility:
    Split one license's revenue across an asset's owners by basis-point
    share using the largest remainder method, so that every cent is
    allocated exactly once.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Conservation: sum(allocations) == revenue_cents, always, checked
      after every split.
    - Determinism: leftover cents go to the largest fractional remainders;
      ties break by ascending owner identity (string form).  Identical
      input always yields identical output, ordered by owner identity.
    - Shares must total exactly 10,000 bps.  Nothing is normalized.

Failure modes:
    - OwnershipSplitError: empty share set, a share outside 0..10,000, or a
      total other than 10,000.
    - NegativeAmountError: negative revenue.
    - RoundingMismatchError: allocations do not add back up to revenue.

Usage:
    from royalty_engines.splits import OwnerShare, allocate_split

    allocations = allocate_split(
        revenue_cents=100,
        shares=[OwnerShare("a", 3334), OwnerShare("b", 3333), OwnerShare("c", 3333)],
    )
    # -> a: 34, b: 33, c: 33
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from royalty_engines.tracer import traced_engine
from royalty_kernel.exceptions import (
    NegativeAmountError,
    OwnershipSplitError,
    RoundingMismatchError,
)
from royalty_kernel.logging_config import get_logger

logger = get_logger("engines.splits")

BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class OwnerShare:
    owner_id: str | UUID
    share_bps: int


@dataclass(frozen=True)
class Allocation:
    """
    One owner's cut of a split.

    remainder is the fractional part of the raw entitlement, as a numerator
    over 10,000; bonus_cent is True when the owner received a leftover cent.
    """

    owner_id: str | UUID
    share_bps: int
    amount_cents: int
    remainder: int
    bonus_cent: bool


def merge_shares(shares: Sequence[OwnerShare]) -> tuple[OwnerShare, ...]:
    """Combine duplicate records for one owner; result ordered by owner identity."""
    merged: dict[str, OwnerShare] = {}
    for share in shares:
        key = str(share.owner_id)
        existing = merged.get(key)
        if existing is None:
            merged[key] = OwnerShare(share.owner_id, share.share_bps)
        else:
            merged[key] = OwnerShare(
                existing.owner_id, existing.share_bps + share.share_bps
            )
    return tuple(merged[key] for key in sorted(merged))


def validate_shares(shares: Sequence[OwnerShare], asset_id: str | None = None) -> int:
    """Return the share total, or raise OwnershipSplitError."""
    if not shares:
        raise OwnershipSplitError(0, asset_id, "no ownership records")
    for share in shares:
        if not 0 <= share.share_bps <= BPS_DENOMINATOR:
            raise OwnershipSplitError(
                sum(s.share_bps for s in shares),
                asset_id,
                f"share {share.share_bps} bps for owner {share.owner_id} out of range",
            )
    total = sum(s.share_bps for s in shares)
    if total != BPS_DENOMINATOR:
        raise OwnershipSplitError(total, asset_id)
    return total


@traced_engine("splits", "1.0", fingerprint_fields=("revenue_cents", "shares"))
def allocate_split(
    *,
    revenue_cents: int,
    shares: Sequence[OwnerShare],
    asset_id: str | None = None,
) -> tuple[Allocation, ...]:
    """
    Largest-remainder split of ``revenue_cents`` by basis-point shares.

    Returns one Allocation per distinct owner, ordered by owner identity.
    """
    if revenue_cents < 0:
        raise NegativeAmountError("revenue_cents", revenue_cents, asset_id)

    validate_shares(shares, asset_id)
    owners = merge_shares(shares)

    floors: list[int] = []
    remainders: list[int] = []
    for owner in owners:
        raw = revenue_cents * owner.share_bps
        floors.append(raw // BPS_DENOMINATOR)
        remainders.append(raw % BPS_DENOMINATOR)

    leftover = revenue_cents - sum(floors)

    # Largest remainder first; owners are already in identity order, so a
    # stable sort on -remainder breaks ties by identity.
    ranked = sorted(range(len(owners)), key=lambda i: -remainders[i])
    winners = set(ranked[:leftover])

    allocations = tuple(
        Allocation(
            owner_id=owner.owner_id,
            share_bps=owner.share_bps,
            amount_cents=floors[i] + (1 if i in winners else 0),
            remainder=remainders[i],
            bonus_cent=i in winners,
        )
        for i, owner in enumerate(owners)
    )

    allocated = sum(a.amount_cents for a in allocations)
    if allocated != revenue_cents:
        logger.error(
            "split_rounding_mismatch",
            extra={
                "asset_id": asset_id,
                "revenue_cents": revenue_cents,
                "allocated_cents": allocated,
            },
        )
        raise RoundingMismatchError(revenue_cents, allocated)

    return allocations
