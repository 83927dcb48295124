"""Database layer - engine, base classes, types and immutability."""

from budget_kernel.db.base import Base, TrackedBase, UUIDString
from budget_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from budget_kernel.db.types import Money, round_money

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "Money",
    "round_money",
]
