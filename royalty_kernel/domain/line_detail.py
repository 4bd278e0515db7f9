"""
Line detail -- closed tagged variant for RoyaltyLine.detail.

Responsibility:
    One frozen dataclass per line kind.  Statement builder, statement
    service and validation reporter construct and match on these types;
    nobody reads string keys of the stored JSON directly.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imports only models.statement for
    the LineKind discriminator.

Invariants enforced:
    - The variant set is closed: decode_detail() refuses an unknown kind.
    - encode/decode round-trips exactly (kind stored in its own column).
"""

from dataclasses import asdict, dataclass, fields
from datetime import date
from typing import Any, ClassVar, Union

from royalty_kernel.models.statement import LineKind


@dataclass(frozen=True)
class LicenseContribution:
    """Provenance of a (license, asset) contribution line."""

    kind: ClassVar[LineKind] = LineKind.LICENSE_CONTRIBUTION

    formula: str
    overlap_start: date
    overlap_end: date
    overlap_days: int
    license_total_days: int
    fee_component_cents: int
    usage_component_cents: int
    prorated: bool


@dataclass(frozen=True)
class CarryoverDetail:
    """Balance brought forward from an earlier statement or opening balance."""

    kind: ClassVar[LineKind] = LineKind.CARRYOVER

    source: str  # "prior_statement" | "opening_balance"
    source_statement_id: str | None = None
    source_run_id: str | None = None


@dataclass(frozen=True)
class ThresholdNote:
    """Informational line: accumulated balance is below the payout threshold."""

    kind: ClassVar[LineKind] = LineKind.THRESHOLD_NOTE

    accumulated_cents: int
    minimum_payout_cents: int
    carryover_out_cents: int


@dataclass(frozen=True)
class ManualAdjustment:
    kind: ClassVar[LineKind] = LineKind.MANUAL_ADJUSTMENT

    adjustment_type: str
    reason: str
    actor_id: str
    adjustment_number: int | None = None


@dataclass(frozen=True)
class AdjustmentReversal:
    """Additive line cancelling an applied manual adjustment."""

    kind: ClassVar[LineKind] = LineKind.ADJUSTMENT_REVERSAL

    adjustment_number: int
    original_adjustment_type: str
    reason: str
    actor_id: str


@dataclass(frozen=True)
class DisputeResolution:
    kind: ClassVar[LineKind] = LineKind.DISPUTE_RESOLUTION

    resolution: str
    actor_id: str


@dataclass(frozen=True)
class CorrectionDetail:
    """Administrator-issued additive correction on a locked run."""

    kind: ClassVar[LineKind] = LineKind.CORRECTION

    reason: str
    actor_id: str
    correction_number: int


LineDetail = Union[
    LicenseContribution,
    CarryoverDetail,
    ThresholdNote,
    ManualAdjustment,
    AdjustmentReversal,
    DisputeResolution,
    CorrectionDetail,
]

_VARIANTS: dict[LineKind, type] = {
    LicenseContribution.kind: LicenseContribution,
    CarryoverDetail.kind: CarryoverDetail,
    ThresholdNote.kind: ThresholdNote,
    ManualAdjustment.kind: ManualAdjustment,
    AdjustmentReversal.kind: AdjustmentReversal,
    DisputeResolution.kind: DisputeResolution,
    CorrectionDetail.kind: CorrectionDetail,
}

_DATE_FIELDS = frozenset({"overlap_start", "overlap_end"})


def encode_detail(detail: LineDetail) -> tuple[LineKind, dict[str, Any]]:
    """Split a variant into (line_kind, JSON-safe payload)."""
    payload = asdict(detail)
    for key in _DATE_FIELDS & payload.keys():
        payload[key] = payload[key].isoformat()
    return detail.kind, payload


def decode_detail(kind: LineKind | str, payload: dict[str, Any]) -> LineDetail:
    """
    Rebuild the variant stored under ``kind``.

    Raises:
        ValueError: If ``kind`` is not a known line kind.
    """
    cls = _VARIANTS[LineKind(kind)]
    known = {f.name for f in fields(cls)}
    values = {k: v for k, v in payload.items() if k in known}
    for key in _DATE_FIELDS & values.keys():
        values[key] = date.fromisoformat(values[key])
    return cls(**values)
