"""
Turso Fixture Store.

Provides cloud-hosted SQLite-compatible storage using Turso's libSQL.
Key differences from local SQLite:
- Connection via URL + auth token
- One shared connection, serialized with a lock
- Transactions use the driver's commit()/rollback() instead of explicit
  BEGIN IMMEDIATE/COMMIT statements
- No executemany()/executescript(); the SQLite store already avoids both

Every query is inherited from SQLiteFixtureStore.

Requires: pip install libsql-experimental
"""

import logging
import os
import threading
from contextlib import contextmanager
from typing import Any, Iterator, List, Dict, Tuple

from .exceptions import ConfigurationError, ConnectionError, QueryError
from .sqlite_db import SQLiteFixtureStore, rows_to_dicts
from ..exceptions import EngineError

logger = logging.getLogger(__name__)


class TursoFixtureStore(SQLiteFixtureStore):
    """
    Turso cloud fixture store.

    Uses libSQL for SQLite-compatible cloud storage with edge replicas.
    Implements the FixtureStore abstract base class.
    """

    # libsql reports statement failures as plain ValueError/RuntimeError
    _driver_errors: Tuple[type, ...] = (ValueError, RuntimeError)

    def __init__(self):
        """
        Create Turso store instance.

        Reads configuration from environment variables:
        - TURSO_DATABASE_URL: Database URL (e.g., libsql://your-db.turso.io)
        - TURSO_AUTH_TOKEN: Authentication token
        """
        self._url = os.environ.get('TURSO_DATABASE_URL')
        self._token = os.environ.get('TURSO_AUTH_TOKEN')
        self._conn = None
        self._lock = threading.RLock()
        self._initialized = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def initialize(self) -> None:
        """Initialize the database connection and schema."""
        if self._initialized:
            return

        if not self._url:
            raise ConfigurationError(
                "TURSO_DATABASE_URL environment variable is required for Turso backend"
            )
        if not self._token:
            raise ConfigurationError(
                "TURSO_AUTH_TOKEN environment variable is required for Turso backend"
            )

        self._init_schema()
        self._initialized = True
        logger.info("Turso fixture store ready")

    def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # =========================================================================
    # CONNECTION MANAGEMENT
    # =========================================================================

    def _get_connection(self):
        """Get or create database connection."""
        if self._conn is None:
            try:
                import libsql_experimental as libsql
            except ImportError:
                raise ConfigurationError(
                    "libsql-experimental package not installed. "
                    "Install with: pip install libsql-experimental"
                )

            try:
                self._conn = libsql.connect(
                    self._url,
                    auth_token=self._token
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Turso: {e}")

        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Context manager for write transactions on the shared connection."""
        with self._lock:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except EngineError:
                conn.rollback()
                raise
            except self._driver_errors as e:
                conn.rollback()
                logger.error(f"Transaction failed: {e}")
                raise QueryError(str(e)) from e
            except Exception:
                conn.rollback()
                raise

    def _fetch(self, sql: str, params: Tuple = ()) -> List[Dict[str, Any]]:
        with self._lock:
            conn = self._get_connection()
            try:
                return rows_to_dicts(conn.execute(sql, params))
            except self._driver_errors as e:
                logger.error(f"Query failed: {e}")
                raise QueryError(str(e)) from e
