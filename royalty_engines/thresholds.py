"""
Module: royalty_engines.thresholds
Responsibility:
    Fold one creator's allocations for a run together with the balance
    carried in from earlier runs and decide whether the result is payable.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - accumulated = carryover_in + sum(allocations).
    - accumulated >= threshold: payable, carryover_out = 0.
    - accumulated <  threshold: held, carryover_out = accumulated.  The
      balance is never dropped and never presented for payment twice.

Failure modes:
    - NegativeAmountError on a negative carryover or allocation.
    - ValueError on a negative threshold.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from royalty_engines.tracer import traced_engine
from royalty_kernel.exceptions import NegativeAmountError


@dataclass(frozen=True)
class ThresholdOutcome:
    carryover_in_cents: int
    earned_cents: int
    accumulated_cents: int
    minimum_payout_cents: int
    payable: bool
    carryover_out_cents: int

    @property
    def below_threshold(self) -> bool:
        return not self.payable


@traced_engine(
    "thresholds",
    "1.0",
    fingerprint_fields=("carryover_cents", "allocations_cents", "minimum_payout_cents"),
)
def accumulate(
    *,
    carryover_cents: int,
    allocations_cents: Sequence[int],
    minimum_payout_cents: int = 0,
) -> ThresholdOutcome:
    if minimum_payout_cents < 0:
        raise ValueError(f"Minimum payout cannot be negative: {minimum_payout_cents}")
    if carryover_cents < 0:
        raise NegativeAmountError("carryover_cents", carryover_cents)
    for amount in allocations_cents:
        if amount < 0:
            raise NegativeAmountError("allocation_cents", amount)

    earned = sum(allocations_cents)
    accumulated = carryover_cents + earned
    payable = accumulated >= minimum_payout_cents

    return ThresholdOutcome(
        carryover_in_cents=carryover_cents,
        earned_cents=earned,
        accumulated_cents=accumulated,
        minimum_payout_cents=minimum_payout_cents,
        payable=payable,
        carryover_out_cents=0 if payable else accumulated,
    )
