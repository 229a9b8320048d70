"""Database layer - engine, declarative bases and exact column types."""

from bakery_kernel.db.base import Base, TrackedBase
from bakery_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    session_scope,
)
from bakery_kernel.db.types import DecimalString, UUIDString

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "DecimalString",
]
