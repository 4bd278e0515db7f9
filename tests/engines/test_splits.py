"""
Tests for the largest-remainder split engine.

Covers:
- Exact splits and the three-owner 100-cent scenario
- Leftover cents to the largest remainders, ties by owner identity
- Duplicate owner records merged
- Share validation (never normalized)
- Ordering and determinism
"""

import pytest

from royalty_engines.splits import (
    BPS_DENOMINATOR,
    OwnerShare,
    allocate_split,
    merge_shares,
    validate_shares,
)
from royalty_kernel.exceptions import NegativeAmountError, OwnershipSplitError


def _amounts(allocations) -> dict[str, int]:
    return {str(a.owner_id): a.amount_cents for a in allocations}


class TestExactSplits:
    def test_sixty_forty_split_of_full_fee(self):
        result = allocate_split(
            revenue_cents=10_000,
            shares=[OwnerShare("a", 6_000), OwnerShare("b", 4_000)],
        )

        assert _amounts(result) == {"a": 6_000, "b": 4_000}
        assert not any(a.bonus_cent for a in result)

    def test_sixty_forty_split_of_prorated_fee(self):
        result = allocate_split(
            revenue_cents=3_225,
            shares=[OwnerShare("a", 6_000), OwnerShare("b", 4_000)],
        )

        assert _amounts(result) == {"a": 1_935, "b": 1_290}
        assert sum(a.amount_cents for a in result) == 3_225

    def test_single_owner_takes_everything(self):
        result = allocate_split(revenue_cents=987, shares=[OwnerShare("solo", 10_000)])

        assert _amounts(result) == {"solo": 987}

    def test_zero_revenue_allocates_zero(self):
        result = allocate_split(
            revenue_cents=0,
            shares=[OwnerShare("a", 5_000), OwnerShare("b", 5_000)],
        )

        assert _amounts(result) == {"a": 0, "b": 0}


class TestLargestRemainder:
    def test_three_owner_leftover_cent(self):
        """3,334/3,333/3,333 on 100 cents -> 34/33/33."""
        result = allocate_split(
            revenue_cents=100,
            shares=[OwnerShare("c", 3_333), OwnerShare("a", 3_334), OwnerShare("b", 3_333)],
        )

        assert _amounts(result) == {"a": 34, "b": 33, "c": 33}
        winner = next(a for a in result if a.owner_id == "a")
        assert winner.bonus_cent
        assert winner.remainder == 3_400

    def test_tie_broken_by_owner_identity(self):
        """Equal remainders: the lower identity gets the cent."""
        result = allocate_split(
            revenue_cents=1,
            shares=[OwnerShare("b", 5_000), OwnerShare("a", 5_000)],
        )

        assert _amounts(result) == {"a": 1, "b": 0}

    def test_multiple_leftover_cents(self):
        result = allocate_split(
            revenue_cents=10,
            shares=[
                OwnerShare("a", 2_500),
                OwnerShare("b", 2_500),
                OwnerShare("c", 2_500),
                OwnerShare("d", 2_500),
            ],
        )

        # floors 2/2/2/2, leftover 2 -> a and b by identity
        assert _amounts(result) == {"a": 3, "b": 3, "c": 2, "d": 2}

    def test_zero_share_owner_never_gets_a_bonus_cent(self):
        result = allocate_split(
            revenue_cents=1,
            shares=[OwnerShare("a", 0), OwnerShare("b", 10_000)],
        )

        assert _amounts(result) == {"a": 0, "b": 1}


class TestOrderingAndMerging:
    def test_result_ordered_by_owner_identity(self):
        result = allocate_split(
            revenue_cents=1_000,
            shares=[OwnerShare("zeta", 2_000), OwnerShare("alpha", 8_000)],
        )

        assert [a.owner_id for a in result] == ["alpha", "zeta"]

    def test_duplicate_owner_records_merged(self):
        result = allocate_split(
            revenue_cents=1_000,
            shares=[
                OwnerShare("a", 3_000),
                OwnerShare("b", 4_000),
                OwnerShare("a", 3_000),
            ],
        )

        assert _amounts(result) == {"a": 600, "b": 400}
        assert next(a for a in result if a.owner_id == "a").share_bps == 6_000

    def test_merge_shares_sorts_and_sums(self):
        merged = merge_shares([OwnerShare("b", 1), OwnerShare("a", 2), OwnerShare("b", 3)])

        assert merged == (OwnerShare("a", 2), OwnerShare("b", 4))

    def test_repeated_calls_are_identical(self):
        shares = [OwnerShare("x", 1_111), OwnerShare("y", 2_222), OwnerShare("z", 6_667)]

        first = allocate_split(revenue_cents=12_345, shares=shares)
        second = allocate_split(revenue_cents=12_345, shares=list(reversed(shares)))

        assert first == second


class TestShareValidation:
    def test_total_below_denominator_rejected(self):
        with pytest.raises(OwnershipSplitError) as exc_info:
            allocate_split(
                revenue_cents=100,
                shares=[OwnerShare("a", 6_000), OwnerShare("b", 3_999)],
                asset_id="asset-1",
            )

        assert exc_info.value.total_bps == 9_999
        assert exc_info.value.asset_id == "asset-1"
        assert exc_info.value.code == "OWNERSHIP_SPLIT_INVALID"

    def test_total_above_denominator_rejected(self):
        with pytest.raises(OwnershipSplitError):
            allocate_split(
                revenue_cents=100,
                shares=[OwnerShare("a", 6_000), OwnerShare("b", 4_001)],
            )

    def test_empty_share_set_rejected(self):
        with pytest.raises(OwnershipSplitError):
            allocate_split(revenue_cents=100, shares=[])

    def test_out_of_range_share_rejected(self):
        with pytest.raises(OwnershipSplitError):
            validate_shares([OwnerShare("a", 12_000), OwnerShare("b", -2_000)])

    def test_negative_revenue_rejected(self):
        with pytest.raises(NegativeAmountError):
            allocate_split(revenue_cents=-1, shares=[OwnerShare("a", BPS_DENOMINATOR)])
