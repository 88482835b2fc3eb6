"""
Application configuration.

Loads settings from environment variables with sensible defaults.
"""

import logging
import os
from typing import Optional


def _get_int(key: str, default: int) -> int:
    """Get integer from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_bool(key: str, default: bool) -> bool:
    """Get boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ('true', '1', 'yes')


def _get_str(key: str, default: str) -> str:
    """Get string from environment variable."""
    return os.environ.get(key, default)


# =============================================================================
# STORAGE SETTINGS
# =============================================================================
# Backend selection is read by storage.factory at call time: sqlite, turso, supabase
DB_TYPE = _get_str('DB_TYPE', 'sqlite')

# Directory holding the local SQLite file
# Priority: DATA_DIR > /app/data (container) > data (local)
DATA_DIR = (
    os.environ.get('DATA_DIR') or
    ('/app/data' if os.path.exists('/app') else 'data')
)

# =============================================================================
# GROUP STAGE
# =============================================================================
MAX_GROUP_SIZE = _get_int('MAX_GROUP_SIZE', 4)

# Players per group that advance to the knockout stage
QUALIFIED_PER_GROUP = _get_int('QUALIFIED_PER_GROUP', 2)

GROUP_NAME_PREFIX = _get_str('GROUP_NAME_PREFIX', 'Group')

# =============================================================================
# KNOCKOUT STAGE
# =============================================================================
# Largest number of added (and removed) players tolerated before a persisted
# bracket is regenerated
BRACKET_DRIFT_TOLERANCE = _get_int('BRACKET_DRIFT_TOLERANCE', 1)

# =============================================================================
# RATINGS
# =============================================================================
# Ratings are computed by the store's stored procedure; we only invoke it
RATING_ENABLED = _get_bool('RATING_ENABLED', True)
RATING_K_FACTOR = _get_int('RATING_K_FACTOR', 32)

# =============================================================================
# LOGGING
# =============================================================================
LOG_LEVEL = _get_str('LOG_LEVEL', 'INFO')


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for CLI and scripts."""
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
