"""Database layer - engine, base classes, types and immutability listeners."""

from royalty_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from royalty_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from royalty_kernel.db.immutability import (
    MutationTag,
    mutation_context,
    register_immutability_listeners,
    unregister_immutability_listeners,
)

__all__ = [
    "build_engine",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "MutationTag",
    "mutation_context",
    "register_immutability_listeners",
    "unregister_immutability_listeners",
]
