"""
Shared test fixtures and configuration.

Provides reusable fixtures for all test files including store instances,
services wired to a temporary SQLite database, and sample rosters.
"""

import pytest
import os
import random
import shutil
import tempfile
from typing import Callable, List
from unittest.mock import patch

from tourney.engine.locks import CompetitionLocks
from tourney.models import Competition, CompetitionType
from tourney.services.competition_service import CompetitionService
from tourney.storage import get_store, reset_store


# =============================================================================
# STORE FIXTURES
# =============================================================================

@pytest.fixture
def test_data_dir():
    """Provide a temporary directory for test data."""
    temp_dir = tempfile.mkdtemp(prefix="tourney_test_")
    yield temp_dir

    # Cleanup
    if os.path.exists(temp_dir):
        try:
            shutil.rmtree(temp_dir)
        except PermissionError:
            pass  # Windows file locking, ignore


@pytest.fixture
def store_fixture(test_data_dir):
    """Provide a clean SQLite fixture store."""
    with patch.dict(os.environ, {'DB_TYPE': 'sqlite', 'DATA_DIR': test_data_dir}, clear=False):
        reset_store()
        store = get_store()
        yield store
        reset_store()  # Close connection before cleanup


@pytest.fixture
def service(store_fixture):
    """Provide a CompetitionService with its own locks and a seeded shuffle."""
    return CompetitionService(
        store=store_fixture,
        locks=CompetitionLocks(),
        rng=random.Random(7)
    )


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def make_players(store_fixture) -> Callable[[int], List[int]]:
    """Create `count` players and return their ids."""
    def _make(count: int) -> List[int]:
        players = store_fixture.create_players(
            [{'nickname': f'player{i}'} for i in range(count)]
        )
        return [p.id for p in players]
    return _make


@pytest.fixture
def elimination(store_fixture) -> Competition:
    """An empty elimination competition."""
    return store_fixture.create_competition('Cup', CompetitionType.ELIMINATION, sets_type=3, points_type=11)


@pytest.fixture
def group_knockout(store_fixture) -> Competition:
    """An empty group_knockout competition."""
    return store_fixture.create_competition('Open', CompetitionType.GROUP_KNOCKOUT)


@pytest.fixture
def seeded_elimination(store_fixture, elimination, make_players):
    """Elimination competition with five registered players."""
    player_ids = make_players(5)
    store_fixture.add_competition_players(elimination.id, player_ids)
    return elimination, player_ids
