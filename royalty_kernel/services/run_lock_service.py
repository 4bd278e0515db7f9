"""
RunLockService -- named, time-bounded mutual exclusion keyed on run identity.

Responsibility:
    Lease rows in ``run_locks`` serialize calculation, lock and rollback of
    the same run.  A holder is identified by a random owner token; a lease
    whose expires_at has passed may be taken over by the next caller.

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only like every kernel
    service: the operation surface acquires and releases in their own short
    transactions so the row is visible to competing processes, and verifies
    the lease inside the work transaction just before commit.

Invariants enforced:
    - At most one live lease per key (unique lock_key + row lock on read).
    - release() deletes only the caller's own row.
    - verify() fails if the lease expired or was taken over.

Failure modes:
    - LockNotAcquiredError: the key is held by a live lease.
    - LeaseExpiredError: verify() after expiry or takeover.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from royalty_kernel.domain.clock import Clock, as_utc
from royalty_kernel.exceptions import LeaseExpiredError, LockNotAcquiredError
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.run_lock import RunLockLease
from royalty_kernel.services.base import BaseService

logger = get_logger("services.run_lock")

RUN_LOCK_PREFIX = "royalty_run"


def run_lock_key(run_id: UUID) -> str:
    return f"{RUN_LOCK_PREFIX}:{run_id}"


@dataclass(frozen=True)
class RunLease:
    lock_key: str
    owner_token: str
    acquired_at: datetime
    expires_at: datetime


class RunLockService(BaseService[RunLockLease]):
    """Lease-based run lock.  Never commits."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def _locked_row(self, lock_key: str) -> RunLockLease | None:
        return self.session.execute(
            select(RunLockLease)
            .where(RunLockLease.lock_key == lock_key)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def acquire(self, lock_key: str, lease_seconds: float) -> RunLease:
        """
        Take the lease on ``lock_key`` for ``lease_seconds``.

        Raises:
            LockNotAcquiredError: If a live lease is held by someone else.
        """
        now = self._clock.now_utc()
        expires_at = now + timedelta(seconds=lease_seconds)
        token = secrets.token_hex(16)

        row = self._locked_row(lock_key)
        if row is None:
            savepoint = self.session.begin_nested()
            try:
                self.session.add(
                    RunLockLease(
                        lock_key=lock_key,
                        owner_token=token,
                        acquired_at=now,
                        expires_at=expires_at,
                    )
                )
                self.session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                logger.warning("run_lock_contended", extra={"lock_key": lock_key})
                raise LockNotAcquiredError(lock_key) from None
        elif as_utc(row.expires_at) <= now:
            logger.warning(
                "run_lock_taken_over",
                extra={
                    "lock_key": lock_key,
                    "previous_owner": row.owner_token,
                    "expired_at": as_utc(row.expires_at),
                },
            )
            row.owner_token = token
            row.acquired_at = now
            row.expires_at = expires_at
            self.session.flush()
        else:
            logger.warning(
                "run_lock_held",
                extra={"lock_key": lock_key, "held_until": as_utc(row.expires_at)},
            )
            raise LockNotAcquiredError(lock_key, held_by=row.owner_token)

        logger.info(
            "run_lock_acquired",
            extra={"lock_key": lock_key, "expires_at": expires_at},
        )
        return RunLease(
            lock_key=lock_key,
            owner_token=token,
            acquired_at=now,
            expires_at=expires_at,
        )

    def verify(self, lease: RunLease) -> None:
        """
        Confirm ``lease`` is still held by its owner and unexpired.

        Raises:
            LeaseExpiredError: If the lease expired or was taken over.
        """
        row = self.session.execute(
            select(RunLockLease)
            .where(RunLockLease.lock_key == lease.lock_key)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        now = self._clock.now_utc()
        if (
            row is None
            or row.owner_token != lease.owner_token
            or as_utc(row.expires_at) <= now
        ):
            logger.error(
                "run_lock_lease_lost",
                extra={"lock_key": lease.lock_key, "owner_token": lease.owner_token},
            )
            raise LeaseExpiredError(lease.lock_key, lease.owner_token)

    def release(self, lease: RunLease) -> bool:
        """Delete the caller's lease row.  Returns False if it was no longer held."""
        result = self.session.execute(
            delete(RunLockLease).where(
                RunLockLease.lock_key == lease.lock_key,
                RunLockLease.owner_token == lease.owner_token,
            )
        )
        released = result.rowcount == 1
        logger.info(
            "run_lock_released",
            extra={"lock_key": lease.lock_key, "released": released},
        )
        return released

    def holder(self, lock_key: str) -> RunLease | None:
        row = self.session.execute(
            select(RunLockLease).where(RunLockLease.lock_key == lock_key)
        ).scalar_one_or_none()
        if row is None:
            return None
        return RunLease(
            lock_key=row.lock_key,
            owner_token=row.owner_token,
            acquired_at=as_utc(row.acquired_at),
            expires_at=as_utc(row.expires_at),
        )
