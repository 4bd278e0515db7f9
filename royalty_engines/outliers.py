"""
Module: royalty_engines.outliers
Responsibility:
    Informational outlier scan over a run's statements: creators earning
    more than a multiple of the median creator earnings, and statements
    that total zero despite having lines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Exact integer/rational arithmetic; the median of an even-sized
      sample is the exact midpoint, compared without rounding.
    - The high-earner scan is skipped when the median is not positive.
    - Output is ordered by (kind, creator identity).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from fractions import Fraction
from uuid import UUID

from royalty_engines.tracer import traced_engine
from royalty_kernel.domain.dtos import OutlierFlag

HIGH_EARNER = "high_earner"
ZERO_EARNINGS = "zero_earnings"


@dataclass(frozen=True)
class EarningsSample:
    creator_id: UUID
    statement_id: UUID
    earnings_cents: int
    line_count: int


def median(values: Sequence[int]) -> Fraction:
    """Exact median; 0 for an empty sample."""
    if not values:
        return Fraction(0)
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return Fraction(ordered[mid])
    return Fraction(ordered[mid - 1] + ordered[mid], 2)


@traced_engine("outliers", "1.0", fingerprint_fields=("samples", "multiplier"))
def detect_outliers(
    *,
    samples: Sequence[EarningsSample],
    multiplier: int = 3,
) -> tuple[OutlierFlag, ...]:
    mid = median([s.earnings_cents for s in samples])
    median_cents = int(mid)  # floor for display; comparisons use the exact value
    flags: list[OutlierFlag] = []

    if mid > 0:
        for sample in samples:
            if sample.earnings_cents > multiplier * mid:
                flags.append(
                    OutlierFlag(
                        kind=HIGH_EARNER,
                        creator_id=sample.creator_id,
                        statement_id=sample.statement_id,
                        earnings_cents=sample.earnings_cents,
                        median_cents=median_cents,
                    )
                )

    for sample in samples:
        if sample.earnings_cents == 0 and sample.line_count > 0:
            flags.append(
                OutlierFlag(
                    kind=ZERO_EARNINGS,
                    creator_id=sample.creator_id,
                    statement_id=sample.statement_id,
                    earnings_cents=0,
                )
            )

    return tuple(sorted(flags, key=lambda f: (f.kind, str(f.creator_id))))
