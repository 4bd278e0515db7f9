"""
Module: royalty_engines.proration
Responsibility:
    Calendar-day overlap between a license term and a run period, and the
    pro-rated share of a flat license fee for that overlap.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Half-open intervals everywhere: start inclusive, end exclusive.
    - prorated = floor(fee_cents * overlap_days / license_total_days) in
      integer arithmetic; a term that exactly matches the period yields the
      full fee with no rounding loss.
    - A zero-length term is an error, never a silent zero.

Failure modes:
    - ValueError when license_total_days <= 0 (callers translate this into
      LicenseTermError with the offending license id before calling).
    - NegativeAmountError on a negative fee.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from royalty_engines.tracer import traced_engine
from royalty_kernel.exceptions import NegativeAmountError


@dataclass(frozen=True)
class OverlapWindow:
    """Intersection of two half-open date ranges; days == 0 means disjoint."""

    start: date
    end: date
    days: int

    @property
    def is_empty(self) -> bool:
        return self.days == 0


def term_days(start: date, end: date) -> int:
    """Length of [start, end) in days."""
    return (end - start).days


def overlap_window(
    term_start: date,
    term_end: date,
    period_start: date,
    period_end: date,
) -> OverlapWindow:
    start = max(term_start, period_start)
    end = min(term_end, period_end)
    if end <= start:
        return OverlapWindow(start=start, end=start, days=0)
    return OverlapWindow(start=start, end=end, days=(end - start).days)


@traced_engine(
    "proration",
    "1.0",
    fingerprint_fields=("fee_cents", "overlap_days", "license_total_days"),
)
def prorate_fee(*, fee_cents: int, overlap_days: int, license_total_days: int) -> int:
    """
    Pro-rate a flat fee by calendar-day overlap.

    Overlap is clamped to the license term so a caller can never earn more
    than the full fee.
    """
    if license_total_days <= 0:
        raise ValueError(f"License term must be positive, got {license_total_days} days")
    if fee_cents < 0:
        raise NegativeAmountError("fee_cents", fee_cents)
    days = max(0, min(overlap_days, license_total_days))
    return fee_cents * days // license_total_days
