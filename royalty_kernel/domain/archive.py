"""
Rollback archive -- versioned, schema-independent snapshot of a run.

Responsibility:
    Captures a run's status, totals, lifecycle timestamps and every statement
    with its lines before RollbackService deletes them.  The record is
    appended to the run's notes ledger as one line:

        [rollback-archive v1] {"archive_version":1,...}

    and parse_archive_records() reads those lines back.  Downstream audit
    tooling depends only on this format, never on the live schema.

    The same snapshot shape (snapshot_run_state) is used for the
    before/after context of state and consistency error logs.

Architecture position:
    Kernel > Domain -- pure.  Snapshot helpers read ORM attributes but
    perform no queries beyond what the caller has loaded.

Invariants enforced:
    - archive_version is written into every record; readers refuse
      versions they do not know.
    - All identifiers, dates and timestamps are strings; all money is int.
"""

import json
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from royalty_kernel.utils.hashing import canonicalize_json, to_json_safe

ARCHIVE_VERSION = 1
ARCHIVE_TAG = f"[rollback-archive v{ARCHIVE_VERSION}]"

_RECORD_PATTERN = re.compile(r"^\[rollback-archive v(\d+)\] (\{.*\})$")


@dataclass(frozen=True)
class LineSnapshot:
    id: str
    line_seq: int
    line_kind: str
    license_id: str | None
    asset_id: str | None
    revenue_cents: int
    share_bps: int
    calculated_royalty_cents: int
    period_start: str
    period_end: str
    detail: dict[str, Any]


@dataclass(frozen=True)
class StatementSnapshot:
    id: str
    creator_id: str
    status: str
    total_earnings_cents: int
    carryover_in_cents: int
    carryover_out_cents: int
    minimum_payout_cents: int
    dispute_reason: str | None
    payment_reference: str | None
    details: dict[str, Any] | None
    lines: tuple[LineSnapshot, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RunArchive:
    archive_version: int
    run_id: str
    scope: str
    period_start: str
    period_end: str
    status: str
    total_revenue_cents: int
    total_royalties_cents: int
    calculated_at: str | None
    locked_at: str | None
    locked_by_id: str | None
    archived_at: str
    archived_by_id: str
    reason: str
    statements: tuple[StatementSnapshot, ...] = field(default_factory=tuple)

    @property
    def statement_totals(self) -> dict[str, int]:
        """creator_id -> total_earnings_cents."""
        return {s.creator_id: s.total_earnings_cents for s in self.statements}

    def to_dict(self) -> dict[str, Any]:
        return to_json_safe(asdict(self))

    def to_record(self) -> str:
        """Single-line ledger record for the run notes."""
        return f"[rollback-archive v{self.archive_version}] {canonicalize_json(self.to_dict())}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunArchive":
        statements = tuple(
            StatementSnapshot(
                **{k: v for k, v in s.items() if k != "lines"},
                lines=tuple(LineSnapshot(**line) for line in s.get("lines", ())),
            )
            for s in data.get("statements", ())
        )
        values = {k: v for k, v in data.items() if k != "statements"}
        return cls(**values, statements=statements)


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def _str(value) -> str | None:
    return str(value) if value is not None else None


def snapshot_line(line) -> LineSnapshot:
    return LineSnapshot(
        id=str(line.id),
        line_seq=line.line_seq,
        line_kind=str(getattr(line.line_kind, "value", line.line_kind)),
        license_id=_str(line.license_id),
        asset_id=_str(line.asset_id),
        revenue_cents=line.revenue_cents,
        share_bps=line.share_bps,
        calculated_royalty_cents=line.calculated_royalty_cents,
        period_start=line.period_start.isoformat(),
        period_end=line.period_end.isoformat(),
        detail=to_json_safe(dict(line.detail or {})),
    )


def snapshot_statement(statement) -> StatementSnapshot:
    lines = sorted(statement.lines, key=lambda line: line.line_seq)
    return StatementSnapshot(
        id=str(statement.id),
        creator_id=str(statement.creator_id),
        status=str(getattr(statement.status, "value", statement.status)),
        total_earnings_cents=statement.total_earnings_cents,
        carryover_in_cents=statement.carryover_in_cents,
        carryover_out_cents=statement.carryover_out_cents,
        minimum_payout_cents=statement.minimum_payout_cents,
        dispute_reason=statement.dispute_reason,
        payment_reference=statement.payment_reference,
        details=to_json_safe(statement.details) if statement.details else None,
        lines=tuple(snapshot_line(line) for line in lines),
    )


def snapshot_run_state(run) -> dict[str, Any]:
    """Status, totals and timestamps of a run (no statements)."""
    return {
        "run_id": str(run.id),
        "status": str(getattr(run.status, "value", run.status)),
        "total_revenue_cents": run.total_revenue_cents,
        "total_royalties_cents": run.total_royalties_cents,
        "calculated_at": _iso(run.calculated_at),
        "locked_at": _iso(run.locked_at),
        "locked_by_id": _str(run.locked_by_id),
    }


def build_archive(run, statements, archived_at, archived_by_id, reason: str) -> RunArchive:
    """Snapshot ``run`` and ``statements`` (ordered by creator) into a RunArchive."""
    ordered = sorted(statements, key=lambda s: str(s.creator_id))
    state = snapshot_run_state(run)
    return RunArchive(
        archive_version=ARCHIVE_VERSION,
        run_id=state["run_id"],
        scope=run.scope,
        period_start=run.period_start.isoformat(),
        period_end=run.period_end.isoformat(),
        status=state["status"],
        total_revenue_cents=state["total_revenue_cents"],
        total_royalties_cents=state["total_royalties_cents"],
        calculated_at=state["calculated_at"],
        locked_at=state["locked_at"],
        locked_by_id=state["locked_by_id"],
        archived_at=archived_at.isoformat(),
        archived_by_id=str(archived_by_id),
        reason=reason,
        statements=tuple(snapshot_statement(s) for s in ordered),
    )


def parse_archive_records(notes: str | None) -> list[RunArchive]:
    """
    Extract every rollback archive record from a run's notes ledger, oldest first.

    Raises:
        ValueError: If a record declares an archive version this reader
            does not support, or its JSON body is malformed.
    """
    records: list[RunArchive] = []
    if not notes:
        return records
    for raw in notes.splitlines():
        match = _RECORD_PATTERN.match(raw.strip())
        if match is None:
            continue
        version = int(match.group(1))
        if version != ARCHIVE_VERSION:
            raise ValueError(f"Unsupported rollback archive version: {version}")
        data = json.loads(match.group(2))
        records.append(RunArchive.from_dict(data))
    return records
