"""
Outbound messages of the royalty engine.

Published by RoyaltyEngine only after the owning transaction has
committed, so a consumer never sees a message for state that was rolled
back.

    StatementReady    -- one per statement created by a calculation pass.
    CacheInvalidated  -- keys ``royalty_run:<id>`` and
                         ``royalty_statement:<id>`` touched by a mutating
                         transition or statement mutation.

Delivery is behind the EventPublisher protocol.  InMemoryEventBus collects
messages (tests, embedding); LoggingEventBus emits each one as a
structured log record for a log-shipping pipeline to forward.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Protocol, TypeVar, Union
from uuid import UUID

from royalty_kernel.logging_config import get_logger

logger = get_logger("services.events")

RUN_CACHE_PREFIX = "royalty_run"
STATEMENT_CACHE_PREFIX = "royalty_statement"

EVENT_STATEMENT_READY = "statement_ready"
EVENT_CACHE_INVALIDATED = "cache_invalidated"


def run_cache_key(run_id: UUID) -> str:
    return f"{RUN_CACHE_PREFIX}:{run_id}"


def statement_cache_key(statement_id: UUID) -> str:
    return f"{STATEMENT_CACHE_PREFIX}:{statement_id}"


@dataclass(frozen=True)
class StatementReady:
    statement_id: UUID
    run_id: UUID
    creator_id: UUID
    total_earnings_cents: int
    status: str

    event_type: str = field(default=EVENT_STATEMENT_READY, init=False)


@dataclass(frozen=True)
class CacheInvalidated:
    keys: tuple[str, ...]
    reason: str

    event_type: str = field(default=EVENT_CACHE_INVALIDATED, init=False)


RoyaltyEvent = Union[StatementReady, CacheInvalidated]

E = TypeVar("E", StatementReady, CacheInvalidated)


class EventPublisher(Protocol):
    def publish(self, event: RoyaltyEvent) -> None: ...


class InMemoryEventBus:
    """Collects published events in order."""

    def __init__(self) -> None:
        self.events: list[RoyaltyEvent] = []

    def publish(self, event: RoyaltyEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[E]) -> list[E]:
        return [e for e in self.events if isinstance(e, event_type)]

    def invalidated_keys(self) -> list[str]:
        return [key for e in self.of_type(CacheInvalidated) for key in e.keys]

    def clear(self) -> None:
        self.events.clear()


class LoggingEventBus:
    """Emits every event as a ``royalty_event_published`` log record."""

    def publish(self, event: RoyaltyEvent) -> None:
        payload = asdict(event)
        if "keys" in payload:
            payload["keys"] = list(payload["keys"])
        logger.info("royalty_event_published", extra=payload)
