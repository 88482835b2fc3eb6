"""
Storage module for tournament data.

Provides a unified Fixture Store interface for multiple database backends:
- SQLite (local development, self-hosted)
- Turso (cloud SQLite)
- Supabase (PostgreSQL)

Usage:
    from tourney.storage import get_store

    store = get_store()  # Uses DB_TYPE env var
    bracket = store.get_knockout_bracket(competition_id)
"""

from .base import FixtureStore
from .factory import get_store, reset_store
from .exceptions import (
    DatabaseError,
    ConnectionError,
    ConfigurationError,
    SchemaError,
    QueryError
)

__all__ = [
    'FixtureStore',
    'get_store',
    'reset_store',
    'DatabaseError',
    'ConnectionError',
    'ConfigurationError',
    'SchemaError',
    'QueryError'
]
