"""
Module: royalty_kernel.models.run_lock
Responsibility: Lease rows backing the named, time-bounded run lock.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - lock_key is unique: at most one holder per key at any instant.
    - A row whose expires_at has passed may be taken over by a new owner.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import Base


class RunLockLease(Base):
    __tablename__ = "run_locks"

    # e.g. "royalty_run:<run id>"
    lock_key: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)

    # Random token identifying the holder; release/verify match on it
    owner_token: Mapped[str] = mapped_column(String(64), nullable=False)

    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    def __repr__(self) -> str:
        return f"<RunLockLease {self.lock_key} until {self.expires_at}>"
