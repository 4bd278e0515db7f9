"""
Module: royalty_engines
Responsibility:
    Pure calculation engines for royalty runs: proration, largest-remainder
    splits, payout thresholds and outlier detection.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  May import
    royalty_kernel.domain and royalty_kernel.exceptions only.

Invariants enforced:
    - Integer minor units only; no float anywhere.
    - Engines never read the clock; dates are passed in.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine``, emitting a
    ROYALTY_ENGINE_TRACE record with an input fingerprint.
"""

from royalty_engines.outliers import EarningsSample, detect_outliers, median
from royalty_engines.proration import OverlapWindow, overlap_window, prorate_fee, term_days
from royalty_engines.splits import (
    Allocation,
    OwnerShare,
    allocate_split,
    merge_shares,
    validate_shares,
)
from royalty_engines.thresholds import ThresholdOutcome, accumulate
from royalty_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "EarningsSample",
    "detect_outliers",
    "median",
    "OverlapWindow",
    "overlap_window",
    "prorate_fee",
    "term_days",
    "Allocation",
    "OwnerShare",
    "allocate_split",
    "merge_shares",
    "validate_shares",
    "ThresholdOutcome",
    "accumulate",
    "compute_input_fingerprint",
    "traced_engine",
]
