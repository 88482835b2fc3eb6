"""
Factory function to create the appropriate fixture store implementation.

Reads configuration from environment variables to determine which
store backend to use.
"""

import logging
import os
from typing import Optional

from .base import FixtureStore
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Singleton instance
_store_instance: Optional[FixtureStore] = None


def get_store() -> FixtureStore:
    """
    Get or create the fixture store instance.

    Uses the DB_TYPE environment variable to determine which implementation:
    - "sqlite" (default): Local SQLite database
    - "turso": Turso cloud database
    - "supabase": Supabase PostgreSQL database

    Additional environment variables per type:
    - SQLite: DATA_DIR, or uses "data" directory
    - Turso: TURSO_DATABASE_URL, TURSO_AUTH_TOKEN
    - Supabase: SUPABASE_URL, SUPABASE_KEY

    Returns:
        FixtureStore implementation

    Raises:
        ConfigurationError: If required env vars are missing
    """
    global _store_instance

    if _store_instance is not None:
        return _store_instance

    db_type = os.environ.get('DB_TYPE', 'sqlite').lower()
    logger.info(f"Fixture store type: {db_type}")

    if db_type == 'sqlite':
        from .sqlite_db import SQLiteFixtureStore

        # Read at call time so tests can patch DATA_DIR
        data_dir = (
            os.environ.get('DATA_DIR') or
            ('/app/data' if os.path.exists('/app') else 'data')
        )
        db_path = os.path.join(data_dir, 'tourney.db')

        _store_instance = SQLiteFixtureStore(db_path=db_path)

    elif db_type == 'turso':
        from .turso_db import TursoFixtureStore
        _store_instance = TursoFixtureStore()

    elif db_type == 'supabase':
        from .supabase_db import SupabaseFixtureStore
        _store_instance = SupabaseFixtureStore()

    else:
        raise ConfigurationError(
            f"Unknown DB_TYPE: {db_type}. "
            f"Valid options: sqlite, turso, supabase"
        )

    try:
        _store_instance.initialize()
    except Exception:
        _store_instance = None
        raise

    return _store_instance


def reset_store() -> None:
    """
    Reset the store singleton.

    Used for testing or when switching configurations.
    """
    global _store_instance
    if _store_instance is not None:
        _store_instance.close()
        _store_instance = None
