"""
Typed Exception Hierarchy for the Royalty Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Royalty runs move real money to real people. Callers must be able to tell a
bad input apart from a run in the wrong state, an arithmetic inconsistency,
or a transient infrastructure failure, without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        engine.lock_run(run_id, approve=True, actor_id=actor)
    except UnresolvedDisputesError as e:
        notify_reviewer(run_id=e.run_id, disputed=e.disputed_count)
    except RoyaltyInfrastructureError:
        schedule_retry()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RoyaltyKernelError (base)
    |
    +-- RoyaltyValidationError            (bad input, never retry)
    |   +-- InvalidPeriodError
    |   +-- RunOverlapError
    |   +-- OwnershipSplitError
    |   +-- LicenseTermError
    |   +-- InvalidAdjustmentError
    |   +-- RollbackReasonError
    |
    +-- RoyaltyStateError                 (operation not allowed right now)
    |   +-- RunNotFoundError
    |   +-- StatementNotFoundError
    |   +-- AdjustmentNotFoundError
    |   +-- RunInvalidStateError
    |   +-- InvalidTransitionError
    |   +-- UnresolvedDisputesError
    |   +-- ValidationFailedError
    |   +-- PaidStatementsError
    |   +-- InsufficientPrivilegeError
    |   +-- RunLockedError
    |   +-- StatementStateError
    |   +-- AdjustmentStateError
    |   +-- ImmutabilityViolationError
    |
    +-- RoyaltyConsistencyError           (arithmetic invariant broken)
    |   +-- RoundingMismatchError
    |   +-- NegativeAmountError
    |   +-- CalculationError
    |   +-- AuditChainBrokenError
    |
    +-- RoyaltyInfrastructureError        (transient, safe to retry)
        +-- LockNotAcquiredError
        +-- LeaseExpiredError
        +-- TransactionTimeoutError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_PERIOD              | period_end <= period_start
                | RUN_OVERLAP                 | Period intersects a live run
                | OWNERSHIP_SPLIT_INVALID     | Shares do not sum to 10,000 bps
                | LICENSE_TERM_INVALID        | License term has zero length
                | INVALID_ADJUSTMENT          | Bad adjustment type/amount
                | ROLLBACK_REASON_INVALID     | Reason missing or too short
----------------|-----------------------------|-----------------------------------------
State           | RUN_NOT_FOUND               | Run ID doesn't exist
                | STATEMENT_NOT_FOUND         | Statement ID doesn't exist
                | ADJUSTMENT_NOT_FOUND        | Adjustment ID doesn't exist
                | RUN_INVALID_STATE           | Operation needs another status
                | INVALID_TRANSITION          | Edge not in the state machine
                | UNRESOLVED_DISPUTES         | Lock attempted with disputes
                | VALIDATION_FAILED           | Lock attempted on failing report
                | PAID_STATEMENTS             | Rollback attempted after payout
                | INSUFFICIENT_PRIVILEGE      | Actor lacks administrator role
                | RUN_LOCKED                  | Mutation attempted on locked run
                | STATEMENT_INVALID_STATE     | Statement workflow edge refused
                | ADJUSTMENT_INVALID_STATE    | Adjustment workflow edge refused
                | IMMUTABILITY_VIOLATION      | ORM guard blocked a write
----------------|-----------------------------|-----------------------------------------
Consistency     | ROUNDING_MISMATCH           | Split sum != revenue
                | NEGATIVE_AMOUNT             | Negative money where forbidden
                | CALCULATION_ERROR           | Unexpected failure mid-calculation
                | AUDIT_CHAIN_BROKEN          | Audit hash chain mismatch
----------------|-----------------------------|-----------------------------------------
Infrastructure  | LOCK_NOT_ACQUIRED           | Run lease held by another worker
                | LEASE_EXPIRED               | Lease lost before commit
                | TRANSACTION_TIMEOUT         | Operation deadline exceeded

===============================================================================
"""


class RoyaltyKernelError(Exception):
    """
    Base exception for all royalty kernel errors.

    All subclasses have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "ROYALTY_KERNEL_ERROR"


# Validation errors


class RoyaltyValidationError(RoyaltyKernelError):
    """Base exception for rejected input."""

    code: str = "ROYALTY_VALIDATION_ERROR"


class InvalidPeriodError(RoyaltyValidationError):
    """Run period end is not strictly after its start."""

    code: str = "INVALID_PERIOD"

    def __init__(self, period_start, period_end):
        self.period_start = str(period_start)
        self.period_end = str(period_end)
        super().__init__(
            f"Invalid period: end {period_end} must be after start {period_start}"
        )


class RunOverlapError(RoyaltyValidationError):
    """Requested period overlaps an existing non-cancelled, non-failed run."""

    code: str = "RUN_OVERLAP"

    def __init__(self, period_start, period_end, existing_run_id: str, scope: str):
        self.period_start = str(period_start)
        self.period_end = str(period_end)
        self.existing_run_id = existing_run_id
        self.scope = scope
        super().__init__(
            f"Period {period_start}..{period_end} overlaps run "
            f"{existing_run_id} in scope '{scope}'"
        )


class OwnershipSplitError(RoyaltyValidationError):
    """
    Ownership shares for an asset do not sum to exactly 10,000 bps.

    Never normalized: a bad split is an upstream data defect.
    """

    code: str = "OWNERSHIP_SPLIT_INVALID"

    def __init__(self, total_bps: int, asset_id: str | None = None, reason: str = ""):
        self.total_bps = total_bps
        self.asset_id = asset_id
        self.reason = reason
        where = f" for asset {asset_id}" if asset_id else ""
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Ownership shares{where} total {total_bps} bps, expected 10000{detail}"
        )


class LicenseTermError(RoyaltyValidationError):
    """License term has zero (or negative) length and cannot be pro-rated."""

    code: str = "LICENSE_TERM_INVALID"

    def __init__(self, license_id: str, start_date, end_date):
        self.license_id = license_id
        self.start_date = str(start_date)
        self.end_date = str(end_date)
        super().__init__(
            f"License {license_id} has an empty term {start_date}..{end_date}"
        )


class InvalidAdjustmentError(RoyaltyValidationError):
    """Adjustment or correction request is malformed."""

    code: str = "INVALID_ADJUSTMENT"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid adjustment: {reason}")


class RollbackReasonError(RoyaltyValidationError):
    """Rollback reason is missing or shorter than the configured minimum."""

    code: str = "ROLLBACK_REASON_INVALID"

    def __init__(self, length: int, minimum: int):
        self.length = length
        self.minimum = minimum
        super().__init__(
            f"Rollback reason must be at least {minimum} characters (got {length})"
        )


# State errors


class RoyaltyStateError(RoyaltyKernelError):
    """Base exception for operations refused in the current state."""

    code: str = "ROYALTY_STATE_ERROR"


class RunNotFoundError(RoyaltyStateError):
    """Run with given ID was not found."""

    code: str = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = str(run_id)
        super().__init__(f"Royalty run not found: {run_id}")


class StatementNotFoundError(RoyaltyStateError):
    """Statement with given ID was not found."""

    code: str = "STATEMENT_NOT_FOUND"

    def __init__(self, statement_id: str):
        self.statement_id = str(statement_id)
        super().__init__(f"Royalty statement not found: {statement_id}")


class AdjustmentNotFoundError(RoyaltyStateError):
    """Adjustment request with given ID was not found."""

    code: str = "ADJUSTMENT_NOT_FOUND"

    def __init__(self, adjustment_id: str):
        self.adjustment_id = str(adjustment_id)
        super().__init__(f"Royalty adjustment not found: {adjustment_id}")


class RunInvalidStateError(RoyaltyStateError):
    """Operation requires the run to be in one of a set of statuses."""

    code: str = "RUN_INVALID_STATE"

    def __init__(self, run_id: str, status: str, expected: tuple[str, ...], operation: str):
        self.run_id = str(run_id)
        self.status = status
        self.expected = expected
        self.operation = operation
        super().__init__(
            f"Cannot {operation} run {run_id} in status {status}; "
            f"expected one of {', '.join(expected)}"
        )


class InvalidTransitionError(RoyaltyStateError):
    """Requested edge does not exist in the run state machine."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, run_id: str, from_status: str, to_status: str, reason: str = ""):
        self.run_id = str(run_id)
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Invalid transition for run {run_id}: {from_status} -> {to_status}{detail}"
        )


class UnresolvedDisputesError(RoyaltyStateError):
    """Run cannot be locked while statements are disputed."""

    code: str = "UNRESOLVED_DISPUTES"

    def __init__(self, run_id: str, disputed_count: int):
        self.run_id = str(run_id)
        self.disputed_count = disputed_count
        super().__init__(
            f"Run {run_id} has {disputed_count} disputed statement(s)"
        )


class ValidationFailedError(RoyaltyStateError):
    """Run cannot be locked because its validation report has errors."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, run_id: str, error_codes: list[str]):
        self.run_id = str(run_id)
        self.error_codes = error_codes
        super().__init__(
            f"Run {run_id} failed validation: {', '.join(error_codes)}"
        )


class PaidStatementsError(RoyaltyStateError):
    """Run cannot be rolled back because statements have been paid."""

    code: str = "PAID_STATEMENTS"

    def __init__(self, run_id: str, paid_count: int):
        self.run_id = str(run_id)
        self.paid_count = paid_count
        super().__init__(
            f"Run {run_id} has {paid_count} paid statement(s) and cannot be rolled back"
        )


class InsufficientPrivilegeError(RoyaltyStateError):
    """Actor lacks the role required for the operation."""

    code: str = "INSUFFICIENT_PRIVILEGE"

    def __init__(self, actor_id: str, required_role: str, operation: str):
        self.actor_id = str(actor_id)
        self.required_role = required_role
        self.operation = operation
        super().__init__(
            f"Actor {actor_id} needs role {required_role} to {operation}"
        )


class RunLockedError(RoyaltyStateError):
    """Mutation attempted on a locked (or later) run."""

    code: str = "RUN_LOCKED"

    def __init__(self, run_id: str, operation: str):
        self.run_id = str(run_id)
        self.operation = operation
        super().__init__(f"Run {run_id} is locked; cannot {operation}")


class StatementStateError(RoyaltyStateError):
    """Statement workflow edge refused."""

    code: str = "STATEMENT_INVALID_STATE"

    def __init__(self, statement_id: str, status: str, operation: str):
        self.statement_id = str(statement_id)
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} statement {statement_id} in status {status}"
        )


class AdjustmentStateError(RoyaltyStateError):
    """Adjustment approval or reversal refused in the current status."""

    code: str = "ADJUSTMENT_INVALID_STATE"

    def __init__(self, adjustment_id: str, status: str, operation: str):
        self.adjustment_id = str(adjustment_id)
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} adjustment {adjustment_id} in status {status}"
        )


class ImmutabilityViolationError(RoyaltyStateError):
    """
    Attempted to modify or delete an immutable record.

    Statements and lines of locked runs, and audit events, are immutable
    outside explicitly tagged rollback, correction and payout sessions.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Consistency errors


class RoyaltyConsistencyError(RoyaltyKernelError):
    """Base exception for broken arithmetic invariants."""

    code: str = "ROYALTY_CONSISTENCY_ERROR"


class RoundingMismatchError(RoyaltyConsistencyError):
    """Allocated cents do not add back up to the revenue being split."""

    code: str = "ROUNDING_MISMATCH"

    def __init__(self, revenue_cents: int, allocated_cents: int):
        self.revenue_cents = revenue_cents
        self.allocated_cents = allocated_cents
        super().__init__(
            f"Split allocated {allocated_cents} of {revenue_cents} cents"
        )


class NegativeAmountError(RoyaltyConsistencyError):
    """A money amount that must be non-negative went negative."""

    code: str = "NEGATIVE_AMOUNT"

    def __init__(self, field: str, amount_cents: int, entity_id: str | None = None):
        self.field = field
        self.amount_cents = amount_cents
        self.entity_id = str(entity_id) if entity_id is not None else None
        where = f" on {entity_id}" if entity_id is not None else ""
        super().__init__(f"Negative {field}{where}: {amount_cents}")


class CalculationError(RoyaltyConsistencyError):
    """Unexpected failure during a calculation pass; the run stays DRAFT."""

    code: str = "CALCULATION_ERROR"

    def __init__(self, run_id: str, reason: str):
        self.run_id = str(run_id)
        self.reason = reason
        super().__init__(f"Calculation of run {run_id} failed: {reason}")


class AuditChainBrokenError(RoyaltyConsistencyError):
    """Audit hash chain validation failed; treat as tampering."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: expected {expected_hash}, "
            f"found {actual_hash}"
        )


# Infrastructure errors


class RoyaltyInfrastructureError(RoyaltyKernelError):
    """Base exception for transient infrastructure failures; safe to retry."""

    code: str = "ROYALTY_INFRASTRUCTURE_ERROR"


class LockNotAcquiredError(RoyaltyInfrastructureError):
    """Run lease is held by another worker."""

    code: str = "LOCK_NOT_ACQUIRED"

    def __init__(self, lock_key: str, held_by: str | None = None):
        self.lock_key = lock_key
        self.held_by = held_by
        super().__init__(f"Lock {lock_key} is held by another worker")


class LeaseExpiredError(RoyaltyInfrastructureError):
    """Run lease expired (or was taken over) before the operation committed."""

    code: str = "LEASE_EXPIRED"

    def __init__(self, lock_key: str, owner_token: str):
        self.lock_key = lock_key
        self.owner_token = owner_token
        super().__init__(f"Lease on {lock_key} is no longer held by {owner_token}")


class TransactionTimeoutError(RoyaltyInfrastructureError):
    """Operation exceeded its deadline and was rolled back."""

    code: str = "TRANSACTION_TIMEOUT"

    def __init__(self, operation: str, timeout_seconds: float):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{operation} exceeded its {timeout_seconds}s deadline"
        )
