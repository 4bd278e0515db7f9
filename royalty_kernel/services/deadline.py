"""
OperationDeadline -- bounded duration for a guarded operation.

The deadline is measured on the injected clock and checked at safe points
(per license during calculation, and before commit).  On PostgreSQL the
transaction additionally gets ``SET LOCAL statement_timeout`` so a single
slow statement cannot outlive the deadline.
"""

from datetime import datetime, timedelta

from sqlalchemy import text
from sqlalchemy.orm import Session

from royalty_kernel.db.engine import is_postgres
from royalty_kernel.domain.clock import Clock
from royalty_kernel.exceptions import TransactionTimeoutError
from royalty_kernel.logging_config import get_logger

logger = get_logger("services.deadline")


class OperationDeadline:
    def __init__(self, clock: Clock, timeout_seconds: float, operation: str):
        if timeout_seconds <= 0:
            raise ValueError(f"Timeout must be positive, got {timeout_seconds}")
        self._clock = clock
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        self.started_at: datetime = clock.now_utc()
        self.expires_at: datetime = self.started_at + timedelta(seconds=timeout_seconds)

    @property
    def remaining_seconds(self) -> float:
        return (self.expires_at - self._clock.now_utc()).total_seconds()

    @property
    def expired(self) -> bool:
        return self._clock.now_utc() >= self.expires_at

    def check(self, stage: str = "") -> None:
        """Raise TransactionTimeoutError once the deadline has passed."""
        if self.expired:
            logger.error(
                "operation_deadline_exceeded",
                extra={
                    "operation": self.operation,
                    "stage": stage,
                    "timeout_seconds": self.timeout_seconds,
                },
            )
            raise TransactionTimeoutError(self.operation, self.timeout_seconds)

    def apply_statement_timeout(self, session: Session) -> None:
        """Bound individual SQL statements of this transaction (PostgreSQL only)."""
        if not is_postgres(session):
            return
        timeout_ms = max(1, int(self.timeout_seconds * 1000))
        session.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))
