"""Persistence for tracked events and pending bets."""

from .database import create_db_engine, init_db, session_scope
from .events import EventStore

__all__ = [
    "EventStore",
    "create_db_engine",
    "init_db",
    "session_scope",
]
