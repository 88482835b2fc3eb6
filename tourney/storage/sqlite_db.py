"""
SQLite Fixture Store.

Provides local storage of competitions, groups, fixtures and knockout
brackets with:
- Indexed queries per competition and group
- Write transactions taken with BEGIN IMMEDIATE, so read-decide-write
  sequences of concurrent processes are serialized
- Conditional knockout updates for optimistic slot writes
- Concurrent read access via WAL mode

This is the SQLite implementation of the FixtureStore interface. Only
execute() and cursor.description are used, so the Turso store can share
every query.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Iterator, List, Dict, Any, Tuple

from .base import FixtureStore, check_knockout_fields
from .exceptions import QueryError, SchemaError
from .standings import qualified_from_groups
from .. import config
from ..exceptions import ConflictError, EngineError, NotFoundError, ValidationError
from ..models import (
    BracketRound,
    Competition,
    CompetitionType,
    Group,
    GroupDraft,
    GroupMember,
    KnockoutMatch,
    Match,
    Player,
)
from ..types import PlayerInputDict

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = [
    # Metadata
    '''CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )''',

    # Competitions
    '''CREATE TABLE IF NOT EXISTS competitions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL DEFAULT '',
        type TEXT NOT NULL,
        sets_type INTEGER,
        points_type INTEGER,
        management TEXT,
        created TEXT DEFAULT CURRENT_TIMESTAMP
    )''',

    # Players
    '''CREATE TABLE IF NOT EXISTS players (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        nickname TEXT,
        name TEXT,
        lastname TEXT,
        image_url TEXT,
        auth_user_id TEXT,
        created TEXT DEFAULT CURRENT_TIMESTAMP
    )''',

    # Registrations
    '''CREATE TABLE IF NOT EXISTS competitions_players (
        competition_id INTEGER NOT NULL REFERENCES competitions(id),
        player_id INTEGER NOT NULL REFERENCES players(id),
        created TEXT DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (competition_id, player_id)
    )''',

    # Groups and memberships
    '''CREATE TABLE IF NOT EXISTS groups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        competition_id INTEGER NOT NULL REFERENCES competitions(id),
        name TEXT NOT NULL
    )''',
    '''CREATE TABLE IF NOT EXISTS groups_players (
        group_id INTEGER NOT NULL REFERENCES groups(id),
        player_id INTEGER NOT NULL REFERENCES players(id),
        position INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (group_id, player_id)
    )''',

    # Fixtures and realized matches
    '''CREATE TABLE IF NOT EXISTS matches (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        competition_id INTEGER NOT NULL REFERENCES competitions(id),
        group_id INTEGER REFERENCES groups(id),
        player1_id INTEGER NOT NULL,
        player2_id INTEGER NOT NULL,
        player1_score INTEGER,
        player2_score INTEGER,
        date TEXT,
        stage TEXT,
        created TEXT DEFAULT CURRENT_TIMESTAMP
    )''',

    # Knockout bracket
    '''CREATE TABLE IF NOT EXISTS knockout_matches (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        competition_id INTEGER NOT NULL REFERENCES competitions(id),
        round_name TEXT NOT NULL,
        round_order INTEGER NOT NULL,
        position INTEGER NOT NULL DEFAULT 0,
        player1_id INTEGER,
        player2_id INTEGER,
        player1_score INTEGER,
        player2_score INTEGER,
        winner_id INTEGER,
        next_match_id INTEGER REFERENCES knockout_matches(id),
        match_id INTEGER REFERENCES matches(id),
        created TEXT DEFAULT CURRENT_TIMESTAMP
    )''',

    # Indexes
    'CREATE INDEX IF NOT EXISTS idx_groups_competition ON groups(competition_id)',
    'CREATE INDEX IF NOT EXISTS idx_matches_competition ON matches(competition_id)',
    'CREATE INDEX IF NOT EXISTS idx_matches_group ON matches(group_id)',
    'CREATE INDEX IF NOT EXISTS idx_matches_date ON matches(date)',
    'CREATE INDEX IF NOT EXISTS idx_knockout_competition ON knockout_matches(competition_id, round_order, position)',
]

TABLES = (
    'knockout_matches',
    'matches',
    'groups_players',
    'groups',
    'competitions_players',
    'players',
    'competitions',
)

MATCH_COLUMNS = (
    'competition_id',
    'group_id',
    'player1_id',
    'player2_id',
    'player1_score',
    'player2_score',
    'date',
    'stage',
)


def rows_to_dicts(cursor) -> List[Dict[str, Any]]:
    """Materialize a cursor's rows as dicts keyed by column name."""
    if cursor.description is None:
        return []
    columns = [d[0] for d in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def placeholders(values) -> str:
    return ', '.join('?' for _ in values)


def pair_key(player_a: int, player_b: int) -> Tuple[int, int]:
    return (min(player_a, player_b), max(player_a, player_b))


class SQLiteFixtureStore(FixtureStore):
    """
    SQLite fixture store.
    Thread-safe with connection per thread.

    Implements the FixtureStore abstract base class.
    """

    SCHEMA_VERSION = 1

    # Driver exceptions wrapped in QueryError
    _driver_errors: Tuple[type, ...] = (sqlite3.Error,)

    def __init__(self, db_path: str = "data/tourney.db"):
        """
        Create SQLite store instance.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._initialized = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def initialize(self) -> None:
        """Initialize the database connection and schema."""
        if self._initialized:
            return

        # Ensure parent directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()
        self._initialized = True
        logger.info(f"SQLite fixture store ready at {self.db_path}")

    def close(self) -> None:
        """Close database connections and clean up resources."""
        if getattr(self._local, 'conn', None) is not None:
            self._local.conn.close()
            self._local.conn = None

    def health_check(self) -> bool:
        """Check if the database connection is healthy."""
        try:
            conn = self._get_connection()
            conn.execute("SELECT 1")
            return True
        except Exception:
            return False

    # =========================================================================
    # CONNECTION MANAGEMENT
    # =========================================================================

    def _get_connection(self):
        """Get thread-local database connection."""
        if getattr(self._local, 'conn', None) is None:
            # Autocommit; transactions are opened explicitly
            self._local.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=30.0,
                isolation_level=None
            )
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA synchronous=NORMAL")
        return self._local.conn

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """
        Context manager for write transactions.

        Engine errors raised inside the block roll back and propagate
        unchanged; driver errors roll back and surface as QueryError.
        """
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except self._driver_errors as e:
            logger.error(f"Could not start transaction: {e}")
            raise QueryError(f"Could not start transaction: {e}") from e

        try:
            yield conn
            conn.execute("COMMIT")
        except EngineError:
            self._rollback(conn)
            raise
        except self._driver_errors as e:
            self._rollback(conn)
            logger.error(f"Transaction failed: {e}")
            raise QueryError(str(e)) from e
        except Exception:
            self._rollback(conn)
            raise

    def _rollback(self, conn) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    def _fetch(self, sql: str, params: Tuple = ()) -> List[Dict[str, Any]]:
        """Run a read query outside any transaction."""
        conn = self._get_connection()
        try:
            return rows_to_dicts(conn.execute(sql, params))
        except self._driver_errors as e:
            logger.error(f"Query failed: {e}")
            raise QueryError(str(e)) from e

    def _init_schema(self) -> None:
        """
        Initialize database schema.

        Raises:
            SchemaError: If the schema cannot be created, or the database was
                         written by a newer schema version
        """
        try:
            with self.transaction() as conn:
                for statement in SCHEMA_STATEMENTS:
                    conn.execute(statement)
                rows = rows_to_dicts(conn.execute(
                    "SELECT value FROM metadata WHERE key = 'schema_version'"
                ))
                if rows and int(rows[0]["value"]) > self.SCHEMA_VERSION:
                    raise SchemaError(
                        f"Database schema version {rows[0]['value']} is newer than "
                        f"supported version {self.SCHEMA_VERSION}"
                    )
                conn.execute(
                    "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
                    ('schema_version', str(self.SCHEMA_VERSION))
                )
        except QueryError as e:
            raise SchemaError(f"Could not initialize schema: {e}") from e

    # =========================================================================
    # COMPETITIONS & PLAYERS
    # =========================================================================

    def get_competition(self, competition_id: int) -> Optional[Competition]:
        rows = self._fetch('SELECT * FROM competitions WHERE id = ?', (competition_id,))
        return Competition(**rows[0]) if rows else None

    def create_competition(
        self,
        name: str,
        type: CompetitionType,
        sets_type: Optional[int] = None,
        points_type: Optional[int] = None,
        management: Optional[str] = None
    ) -> Competition:
        with self.transaction() as conn:
            rows = rows_to_dicts(conn.execute('''
                INSERT INTO competitions (name, type, sets_type, points_type, management)
                VALUES (?, ?, ?, ?, ?)
                RETURNING *
            ''', (name, CompetitionType(type).value, sets_type, points_type, management)))
        return Competition(**rows[0])

    def create_players(self, players: List[PlayerInputDict]) -> List[Player]:
        created = []
        with self.transaction() as conn:
            for p in players:
                rows = rows_to_dicts(conn.execute('''
                    INSERT INTO players (nickname, name, lastname, image_url, auth_user_id)
                    VALUES (?, ?, ?, ?, ?)
                    RETURNING *
                ''', (
                    p.get('nickname'),
                    p.get('name'),
                    p.get('lastname'),
                    p.get('image_url'),
                    p.get('auth_user_id')
                )))
                created.append(Player(**rows[0]))
        return created

    def list_competition_players(self, competition_id: int) -> List[int]:
        rows = self._fetch(
            'SELECT player_id FROM competitions_players WHERE competition_id = ? ORDER BY player_id',
            (competition_id,)
        )
        return [r['player_id'] for r in rows]

    def add_competition_players(self, competition_id: int, player_ids: List[int]) -> int:
        added = 0
        with self.transaction() as conn:
            for player_id in player_ids:
                rows = rows_to_dicts(conn.execute('''
                    INSERT OR IGNORE INTO competitions_players (competition_id, player_id)
                    VALUES (?, ?)
                    RETURNING player_id
                ''', (competition_id, player_id)))
                added += len(rows)
        return added

    def remove_competition_player(self, competition_id: int, player_id: int) -> bool:
        with self.transaction() as conn:
            rows = rows_to_dicts(conn.execute('''
                DELETE FROM competitions_players
                WHERE competition_id = ? AND player_id = ?
                RETURNING player_id
            ''', (competition_id, player_id)))
        return bool(rows)

    def list_qualified_players(
        self,
        competition_id: int,
        per_group: Optional[int] = None
    ) -> List[int]:
        """
        Players qualified for the knockout stage.

        Group standings are computed from the stored fixtures (3/1/0 points,
        then score difference, then wins, then player id).
        """
        competition = self.get_competition(competition_id)
        if competition is None:
            raise NotFoundError(f"Competition {competition_id} not found")

        if competition.type is CompetitionType.ELIMINATION:
            return self.list_competition_players(competition_id)
        if competition.type is not CompetitionType.GROUP_KNOCKOUT:
            return []

        per_group = config.QUALIFIED_PER_GROUP if per_group is None else per_group
        groups = self.list_groups(competition_id)
        fixtures = {g.id: self.list_group_fixtures(g.id) for g in groups}
        return qualified_from_groups(groups, fixtures, per_group)

    # =========================================================================
    # KNOCKOUT BRACKET
    # =========================================================================

    def get_knockout_bracket(self, competition_id: int) -> List[KnockoutMatch]:
        rows = self._fetch('''
            SELECT * FROM knockout_matches
            WHERE competition_id = ?
            ORDER BY round_order, position, id
        ''', (competition_id,))
        return [KnockoutMatch(**r) for r in rows]

    def replace_knockout_bracket(
        self,
        competition_id: int,
        rounds: List[BracketRound]
    ) -> List[KnockoutMatch]:
        with self.transaction() as conn:
            played = rows_to_dicts(conn.execute('''
                SELECT id FROM knockout_matches
                WHERE competition_id = ? AND winner_id IS NOT NULL
                LIMIT 1
            ''', (competition_id,)))
            if played:
                raise ConflictError(
                    f"Competition {competition_id} has recorded knockout results"
                )

            conn.execute('DELETE FROM knockout_matches WHERE competition_id = ?', (competition_id,))

            ids: Dict[str, int] = {}
            for bracket_round in rounds:
                for match in bracket_round.matches:
                    rows = rows_to_dicts(conn.execute('''
                        INSERT INTO knockout_matches
                        (competition_id, round_name, round_order, position, player1_id, player2_id)
                        VALUES (?, ?, ?, ?, ?, ?)
                        RETURNING id
                    ''', (
                        competition_id,
                        bracket_round.name,
                        bracket_round.order,
                        match.match_index,
                        match.player1_id,
                        match.player2_id
                    )))
                    ids[match.key] = rows[0]['id']

            for bracket_round in rounds:
                for match in bracket_round.matches:
                    if match.next_match_key is None:
                        continue
                    if match.next_match_key not in ids:
                        raise ValidationError(f"Unknown successor key {match.next_match_key}")
                    conn.execute(
                        'UPDATE knockout_matches SET next_match_id = ? WHERE id = ?',
                        (ids[match.next_match_key], ids[match.key])
                    )

        logger.info(f"Stored {len(ids)} knockout matches for competition {competition_id}")
        return self.get_knockout_bracket(competition_id)

    def update_knockout_match(
        self,
        match_id: int,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None
    ) -> bool:
        check_knockout_fields(fields)
        expected = expected or {}
        check_knockout_fields(expected)
        if not fields:
            return False

        assignments = ', '.join(f'{column} = ?' for column in fields)
        conditions = ''.join(f' AND {column} IS ?' for column in expected)
        params = tuple(fields.values()) + (match_id,) + tuple(expected.values())

        with self.transaction() as conn:
            rows = rows_to_dicts(conn.execute(
                f'UPDATE knockout_matches SET {assignments} WHERE id = ?{conditions} RETURNING id',
                params
            ))
        return bool(rows)

    def delete_knockout_matches(self, competition_id: int, match_ids: List[int]) -> int:
        if not match_ids:
            return 0

        with self.transaction() as conn:
            rows = rows_to_dicts(conn.execute(f'''
                DELETE FROM knockout_matches
                WHERE competition_id = ? AND winner_id IS NULL AND id IN ({placeholders(match_ids)})
                RETURNING id
            ''', (competition_id, *match_ids)))
            deleted = [r['id'] for r in rows]
            if deleted:
                conn.execute(
                    f'UPDATE knockout_matches SET next_match_id = NULL '
                    f'WHERE next_match_id IN ({placeholders(deleted)})',
                    tuple(deleted)
                )
        return len(deleted)

    # =========================================================================
    # GROUPS
    # =========================================================================

    def get_group(self, group_id: int) -> Optional[Group]:
        rows = self._fetch('SELECT * FROM groups WHERE id = ?', (group_id,))
        if not rows:
            return None
        members = self._fetch(
            'SELECT player_id FROM groups_players WHERE group_id = ? ORDER BY position, player_id',
            (group_id,)
        )
        return Group(**rows[0], player_ids=[m['player_id'] for m in members])

    def list_groups(self, competition_id: int) -> List[Group]:
        rows = self._fetch(
            'SELECT * FROM groups WHERE competition_id = ? ORDER BY id',
            (competition_id,)
        )
        members: Dict[int, List[int]] = {}
        for member in self.list_group_members(competition_id):
            members.setdefault(member.group_id, []).append(member.player_id)
        return [Group(**r, player_ids=members.get(r['id'], [])) for r in rows]

    def list_group_members(self, competition_id: int) -> List[GroupMember]:
        rows = self._fetch('''
            SELECT gp.group_id, gp.player_id
            FROM groups_players gp
            JOIN groups g ON g.id = gp.group_id
            WHERE g.competition_id = ?
            ORDER BY gp.group_id, gp.position, gp.player_id
        ''', (competition_id,))
        return [GroupMember(**r) for r in rows]

    def replace_group_partition(
        self,
        competition_id: int,
        groups: List[GroupDraft]
    ) -> List[Group]:
        with self.transaction() as conn:
            old_ids = [r['id'] for r in rows_to_dicts(conn.execute(
                'SELECT id FROM groups WHERE competition_id = ?', (competition_id,)
            ))]

            if old_ids:
                ph = placeholders(old_ids)
                conn.execute(f'DELETE FROM groups_players WHERE group_id IN ({ph})', tuple(old_ids))
                conn.execute(f'DELETE FROM groups WHERE id IN ({ph})', tuple(old_ids))

            created = []
            group_of_pair: Dict[Tuple[int, int], int] = {}
            for draft in groups:
                rows = rows_to_dicts(conn.execute(
                    'INSERT INTO groups (competition_id, name) VALUES (?, ?) RETURNING id',
                    (competition_id, draft.name)
                ))
                group_id = rows[0]['id']
                for position, player_id in enumerate(draft.player_ids):
                    conn.execute(
                        'INSERT INTO groups_players (group_id, player_id, position) VALUES (?, ?, ?)',
                        (group_id, player_id, position)
                    )
                for i, player_a in enumerate(draft.player_ids):
                    for player_b in draft.player_ids[i + 1:]:
                        group_of_pair[pair_key(player_a, player_b)] = group_id
                created.append(Group(
                    id=group_id,
                    competition_id=competition_id,
                    name=draft.name,
                    player_ids=list(draft.player_ids)
                ))

            # Fixtures of the old groups, plus played ones detached earlier
            scope = 'player1_score IS NOT NULL AND player2_score IS NOT NULL AND group_id IS NULL'
            if old_ids:
                scope += f' OR group_id IN ({placeholders(old_ids)})'
            fixtures = rows_to_dicts(conn.execute(f'''
                SELECT id, group_id, player1_id, player2_id, player1_score, player2_score
                FROM matches
                WHERE competition_id = ? AND stage IS NULL AND ({scope})
            ''', (competition_id, *old_ids)))

            stale = []
            for row in fixtures:
                new_group = group_of_pair.get(pair_key(row['player1_id'], row['player2_id']))
                if new_group is None and (row['player1_score'] is None or row['player2_score'] is None):
                    stale.append(row['id'])
                elif new_group != row['group_id']:
                    conn.execute(
                        'UPDATE matches SET group_id = ? WHERE id = ?',
                        (new_group, row['id'])
                    )
            if stale:
                conn.execute(f'DELETE FROM matches WHERE id IN ({placeholders(stale)})', tuple(stale))

        return created

    # =========================================================================
    # FIXTURES
    # =========================================================================

    def list_group_fixtures(self, group_id: int) -> List[Match]:
        rows = self._fetch('SELECT * FROM matches WHERE group_id = ? ORDER BY id', (group_id,))
        return [Match(**r) for r in rows]

    def insert_fixtures(self, fixtures: List[Match]) -> List[Match]:
        created = []
        with self.transaction() as conn:
            for fixture in fixtures:
                created.append(self._insert_match(conn, fixture))
        return created

    def insert_match(self, match: Match) -> Match:
        with self.transaction() as conn:
            return self._insert_match(conn, match)

    def _insert_match(self, conn, match: Match) -> Match:
        rows = rows_to_dicts(conn.execute(f'''
            INSERT INTO matches ({', '.join(MATCH_COLUMNS)})
            VALUES ({placeholders(MATCH_COLUMNS)})
            RETURNING *
        ''', tuple(getattr(match, column) for column in MATCH_COLUMNS)))
        return Match(**rows[0])

    def update_match_scores(
        self,
        match_id: int,
        player1_score: int,
        player2_score: int,
        date: Optional[str] = None
    ) -> Optional[Match]:
        with self.transaction() as conn:
            rows = rows_to_dicts(conn.execute('''
                UPDATE matches
                SET player1_score = ?, player2_score = ?, date = COALESCE(?, date)
                WHERE id = ?
                RETURNING *
            ''', (player1_score, player2_score, date, match_id)))
        return Match(**rows[0]) if rows else None

    def list_next_matches(self, competition_id: int) -> List[Match]:
        rows = self._fetch('''
            SELECT * FROM matches
            WHERE competition_id = ?
            AND (player1_score IS NULL OR player2_score IS NULL)
            ORDER BY date IS NULL, date, id
        ''', (competition_id,))
        return [Match(**r) for r in rows]

    def apply_match_rating(self, match: Match, k_factor: int) -> bool:
        # Ratings live in the hosted database's procedure
        logger.debug(f"No rating procedure in SQLite; skipping match {match.id}")
        return False

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def clear_all(self) -> None:
        """Delete all data from the database."""
        with self.transaction() as conn:
            for table in TABLES:
                conn.execute(f'DELETE FROM {table}')
