"""
royalty_services -- Package init and public API.

Responsibility:
    The operation surface (RoyaltyEngine), outbound events and the batch
    CLI.  This is the only layer that owns transaction boundaries, the run
    lease lock and event publication.

Architecture position:
    Services -- orchestration over royalty_kernel and royalty_engines.

    Dependency direction:
        royalty_services/ -> royalty_kernel/, royalty_engines/, royalty_config/  (allowed)
        royalty_kernel/   -> royalty_services/                                  (FORBIDDEN)
        royalty_engines/  -> royalty_services/                                  (FORBIDDEN)

Invariants enforced:
    - Kernel services are wired only in KernelServices; no kernel service
      constructs its own collaborators.
    - Events are published only after the owning transaction committed.
"""

from royalty_services.events import (
    CacheInvalidated,
    EventPublisher,
    InMemoryEventBus,
    LoggingEventBus,
    StatementReady,
    run_cache_key,
    statement_cache_key,
)
from royalty_services.royalty_engine import KernelServices, RoyaltyEngine

__all__ = [
    "CacheInvalidated",
    "EventPublisher",
    "InMemoryEventBus",
    "KernelServices",
    "LoggingEventBus",
    "RoyaltyEngine",
    "StatementReady",
    "run_cache_key",
    "statement_cache_key",
]
