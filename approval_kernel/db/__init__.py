"""Database layer - engine, base classes and column types."""

from approval_kernel.db.base import Base, TrackedBase, UUIDString
from approval_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from approval_kernel.db.types import UTCDateTime

__all__ = [
    "build_engine",
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
]
