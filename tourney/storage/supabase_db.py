"""
Supabase Fixture Store.

Provides PostgreSQL-based cloud storage using Supabase's REST API.
Key differences from SQLite:
- Uses supabase-py client library (REST API)
- No multi-statement transactions: bracket replacement deletes only
  winnerless rows and re-checks afterwards, raising ConflictError if a
  result was recorded in between
- Conditional updates expressed as eq()/is_() filters on the update
- Group standings come from the fn_get_groups_with_stats procedure and
  rating updates from fn_apply_match_elo
- Batch size limits (chunk large inserts at 500 rows)
- initialize() verifies tables exist (doesn't create them)

Requires: pip install supabase
Schema must be created first via scripts/supabase_schema.sql
"""

import logging
import os
from typing import Optional, List, Dict, Any, Tuple

from .base import FixtureStore, check_knockout_fields
from .exceptions import ConfigurationError, ConnectionError, QueryError
from .. import config
from ..exceptions import ConflictError, NotFoundError, ValidationError
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
from ..types import GroupStatsRowDict, PlayerInputDict

logger = logging.getLogger(__name__)

# Batch size for insert operations
BATCH_SIZE = 500

# Filter matching fixtures that still miss a score
UNPLAYED_FILTER = 'player1_score.is.null,player2_score.is.null'

# Columns needed to move a fixture with its pair on a group rebuild
FIXTURE_PAIR_COLUMNS = 'id, player1_id, player2_id, player1_score, player2_score'


def pair_key(player_a: int, player_b: int) -> Tuple[int, int]:
    return (min(player_a, player_b), max(player_a, player_b))


class SupabaseFixtureStore(FixtureStore):
    """
    Supabase cloud fixture store.

    Uses PostgreSQL via Supabase's REST API.
    Implements the FixtureStore abstract base class.
    """

    def __init__(self):
        """
        Create Supabase store instance.

        Reads configuration from environment variables:
        - SUPABASE_URL: Project URL (e.g., https://your-project.supabase.co)
        - SUPABASE_KEY: Anon or service key
        """
        self._url = os.environ.get('SUPABASE_URL')
        self._key = os.environ.get('SUPABASE_KEY')
        self._client = None
        self._initialized = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def initialize(self) -> None:
        """Initialize the database connection and verify schema."""
        if self._initialized:
            return

        if not self._url:
            raise ConfigurationError(
                "SUPABASE_URL environment variable is required for Supabase backend"
            )
        if not self._key:
            raise ConfigurationError(
                "SUPABASE_KEY environment variable is required for Supabase backend"
            )

        # Verify connection and schema
        client = self._get_client()
        try:
            client.table('knockout_matches').select('id').limit(1).execute()
        except Exception as e:
            raise ConnectionError(
                f"Failed to connect to Supabase or schema not initialized. "
                f"Run scripts/supabase_schema.sql in Supabase SQL Editor first. "
                f"Error: {e}"
            )

        self._initialized = True
        logger.info("Supabase fixture store ready")

    def _get_client(self):
        """Get or create Supabase client."""
        if self._client is None:
            try:
                from supabase import create_client
            except ImportError:
                raise ConfigurationError(
                    "supabase package not installed. "
                    "Install with: pip install supabase"
                )

            try:
                self._client = create_client(self._url, self._key)
            except Exception as e:
                raise ConnectionError(f"Failed to create Supabase client: {e}")

        return self._client

    def close(self) -> None:
        """Close database connection (no-op for Supabase REST API)."""
        # REST API doesn't maintain persistent connections
        self._client = None

    def health_check(self) -> bool:
        """Check if the database connection is healthy."""
        try:
            client = self._get_client()
            client.table('competitions').select('id').limit(1).execute()
            return True
        except Exception:
            return False

    def _run(self, query) -> List[Dict[str, Any]]:
        """Execute a query builder, wrapping client failures in QueryError."""
        try:
            response = query.execute()
        except Exception as e:
            logger.error(f"Supabase query failed: {e}")
            raise QueryError(str(e)) from e
        return response.data or []

    # =========================================================================
    # COMPETITIONS & PLAYERS
    # =========================================================================

    def get_competition(self, competition_id: int) -> Optional[Competition]:
        client = self._get_client()
        rows = self._run(
            client.table('competitions').select('*').eq('id', competition_id).limit(1)
        )
        return Competition(**rows[0]) if rows else None

    def create_competition(
        self,
        name: str,
        type: CompetitionType,
        sets_type: Optional[int] = None,
        points_type: Optional[int] = None,
        management: Optional[str] = None
    ) -> Competition:
        client = self._get_client()
        rows = self._run(client.table('competitions').insert({
            'name': name,
            'type': CompetitionType(type).value,
            'sets_type': sets_type,
            'points_type': points_type,
            'management': management,
        }))
        return Competition(**rows[0])

    def create_players(self, players: List[PlayerInputDict]) -> List[Player]:
        client = self._get_client()
        rows = [
            {
                'nickname': p.get('nickname'),
                'name': p.get('name'),
                'lastname': p.get('lastname'),
                'image_url': p.get('image_url'),
                'auth_user_id': p.get('auth_user_id'),
            }
            for p in players
        ]

        created = []
        for i in range(0, len(rows), BATCH_SIZE):
            batch = rows[i:i + BATCH_SIZE]
            created.extend(self._run(client.table('players').insert(batch)))
        return [Player(**r) for r in created]

    def list_competition_players(self, competition_id: int) -> List[int]:
        client = self._get_client()
        rows = self._run(
            client.table('competitions_players')
            .select('player_id')
            .eq('competition_id', competition_id)
            .order('player_id')
        )
        return [r['player_id'] for r in rows]

    def add_competition_players(self, competition_id: int, player_ids: List[int]) -> int:
        registered = set(self.list_competition_players(competition_id))
        new_ids = []
        for player_id in player_ids:
            if player_id not in registered and player_id not in new_ids:
                new_ids.append(player_id)
        if not new_ids:
            return 0

        client = self._get_client()
        rows = [{'competition_id': competition_id, 'player_id': pid} for pid in new_ids]
        self._run(
            client.table('competitions_players')
            .upsert(rows, on_conflict='competition_id,player_id', ignore_duplicates=True)
        )
        return len(new_ids)

    def remove_competition_player(self, competition_id: int, player_id: int) -> bool:
        client = self._get_client()
        rows = self._run(
            client.table('competitions_players')
            .delete()
            .eq('competition_id', competition_id)
            .eq('player_id', player_id)
        )
        return bool(rows)

    def list_qualified_players(
        self,
        competition_id: int,
        per_group: Optional[int] = None
    ) -> List[int]:
        """
        Players qualified for the knockout stage.

        Group rankings come from fn_get_groups_with_stats.
        """
        competition = self.get_competition(competition_id)
        if competition is None:
            raise NotFoundError(f"Competition {competition_id} not found")

        if competition.type is CompetitionType.ELIMINATION:
            return self.list_competition_players(competition_id)
        if competition.type is not CompetitionType.GROUP_KNOCKOUT:
            return []

        per_group = config.QUALIFIED_PER_GROUP if per_group is None else per_group
        client = self._get_client()
        rows: List[GroupStatsRowDict] = self._run(client.rpc(
            'fn_get_groups_with_stats',
            {'p_competition_id': competition_id}
        ))

        ranked = sorted(
            (r for r in rows if r.get('player_id') and (r.get('ranking') or 0) <= per_group),
            key=lambda r: (r.get('group_id') or 0, r.get('ranking') or 0)
        )
        qualified = []
        for row in ranked:
            if row['player_id'] not in qualified:
                qualified.append(row['player_id'])
        return qualified

    # =========================================================================
    # KNOCKOUT BRACKET
    # =========================================================================

    def get_knockout_bracket(self, competition_id: int) -> List[KnockoutMatch]:
        client = self._get_client()
        rows = self._run(
            client.table('knockout_matches')
            .select('*')
            .eq('competition_id', competition_id)
            .order('round_order')
            .order('position')
            .order('id')
        )
        return [KnockoutMatch(**r) for r in rows]

    def replace_knockout_bracket(
        self,
        competition_id: int,
        rounds: List[BracketRound]
    ) -> List[KnockoutMatch]:
        client = self._get_client()

        played = self._run(
            client.table('knockout_matches')
            .select('id')
            .eq('competition_id', competition_id)
            .not_.is_('winner_id', 'null')
            .limit(1)
        )
        if played:
            raise ConflictError(f"Competition {competition_id} has recorded knockout results")

        # Only winnerless rows; a result recorded meanwhile survives and is detected below
        self._run(
            client.table('knockout_matches')
            .delete()
            .eq('competition_id', competition_id)
            .is_('winner_id', 'null')
        )
        remaining = self._run(
            client.table('knockout_matches').select('id').eq('competition_id', competition_id)
        )
        if remaining:
            raise ConflictError(
                f"Competition {competition_id} received knockout results during regeneration"
            )

        rows = [
            {
                'competition_id': competition_id,
                'round_name': bracket_round.name,
                'round_order': bracket_round.order,
                'position': match.match_index,
                'player1_id': match.player1_id,
                'player2_id': match.player2_id,
            }
            for bracket_round in rounds
            for match in bracket_round.matches
        ]
        inserted = []
        for i in range(0, len(rows), BATCH_SIZE):
            batch = rows[i:i + BATCH_SIZE]
            inserted.extend(self._run(client.table('knockout_matches').insert(batch)))

        by_slot = {(r['round_order'], r['position']): r['id'] for r in inserted}
        ids = {}
        for bracket_round in rounds:
            for match in bracket_round.matches:
                ids[match.key] = by_slot[(bracket_round.order, match.match_index)]

        for bracket_round in rounds:
            for match in bracket_round.matches:
                if match.next_match_key is None:
                    continue
                if match.next_match_key not in ids:
                    raise ValidationError(f"Unknown successor key {match.next_match_key}")
                self._run(
                    client.table('knockout_matches')
                    .update({'next_match_id': ids[match.next_match_key]})
                    .eq('id', ids[match.key])
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

        client = self._get_client()
        query = client.table('knockout_matches').update(fields).eq('id', match_id)
        for column, value in expected.items():
            if value is None:
                query = query.is_(column, 'null')
            else:
                query = query.eq(column, value)
        return bool(self._run(query))

    def delete_knockout_matches(self, competition_id: int, match_ids: List[int]) -> int:
        if not match_ids:
            return 0

        # next_match_id references are cleared by ON DELETE SET NULL
        client = self._get_client()
        rows = self._run(
            client.table('knockout_matches')
            .delete()
            .eq('competition_id', competition_id)
            .is_('winner_id', 'null')
            .in_('id', list(match_ids))
        )
        return len(rows)

    # =========================================================================
    # GROUPS
    # =========================================================================

    def get_group(self, group_id: int) -> Optional[Group]:
        client = self._get_client()
        rows = self._run(client.table('groups').select('*').eq('id', group_id).limit(1))
        if not rows:
            return None
        members = self._run(
            client.table('groups_players')
            .select('player_id')
            .eq('group_id', group_id)
            .order('position')
            .order('player_id')
        )
        return Group(**rows[0], player_ids=[m['player_id'] for m in members])

    def list_groups(self, competition_id: int) -> List[Group]:
        client = self._get_client()
        rows = self._run(
            client.table('groups').select('*').eq('competition_id', competition_id).order('id')
        )
        members: Dict[int, List[int]] = {}
        for member in self._members_of([r['id'] for r in rows]):
            members.setdefault(member.group_id, []).append(member.player_id)
        return [Group(**r, player_ids=members.get(r['id'], [])) for r in rows]

    def list_group_members(self, competition_id: int) -> List[GroupMember]:
        client = self._get_client()
        rows = self._run(
            client.table('groups').select('id').eq('competition_id', competition_id).order('id')
        )
        return self._members_of([r['id'] for r in rows])

    def _members_of(self, group_ids: List[int]) -> List[GroupMember]:
        if not group_ids:
            return []
        client = self._get_client()
        rows = self._run(
            client.table('groups_players')
            .select('group_id, player_id')
            .in_('group_id', group_ids)
            .order('group_id')
            .order('position')
            .order('player_id')
        )
        return [GroupMember(**r) for r in rows]

    def replace_group_partition(
        self,
        competition_id: int,
        groups: List[GroupDraft]
    ) -> List[Group]:
        client = self._get_client()
        old_ids = [
            r['id'] for r in self._run(
                client.table('groups').select('id').eq('competition_id', competition_id)
            )
        ]

        fixtures: List[Dict[str, Any]] = []
        if old_ids:
            # Read before the groups go; ON DELETE SET NULL detaches their fixtures
            fixtures = self._run(
                client.table('matches')
                .select(FIXTURE_PAIR_COLUMNS)
                .in_('group_id', old_ids)
                .is_('stage', 'null')
            )
            self._run(client.table('groups_players').delete().in_('group_id', old_ids))
            self._run(client.table('groups').delete().in_('id', old_ids))

        created = []
        group_of_pair: Dict[Tuple[int, int], int] = {}
        for draft in groups:
            row = self._run(
                client.table('groups').insert({'competition_id': competition_id, 'name': draft.name})
            )[0]
            if draft.player_ids:
                self._run(client.table('groups_players').insert([
                    {'group_id': row['id'], 'player_id': pid, 'position': position}
                    for position, pid in enumerate(draft.player_ids)
                ]))
            for i, player_a in enumerate(draft.player_ids):
                for player_b in draft.player_ids[i + 1:]:
                    group_of_pair[pair_key(player_a, player_b)] = row['id']
            created.append(Group(
                id=row['id'],
                competition_id=competition_id,
                name=draft.name,
                player_ids=list(draft.player_ids)
            ))

        # Played fixtures detached by an earlier rebuild
        seen = {r['id'] for r in fixtures}
        detached = self._run(
            client.table('matches')
            .select(FIXTURE_PAIR_COLUMNS)
            .eq('competition_id', competition_id)
            .is_('group_id', 'null')
            .is_('stage', 'null')
            .not_.is_('player1_score', 'null')
            .not_.is_('player2_score', 'null')
        )
        fixtures = fixtures + [r for r in detached if r['id'] not in seen]

        stale = []
        for row in fixtures:
            new_group = group_of_pair.get(pair_key(row['player1_id'], row['player2_id']))
            if new_group is not None:
                self._run(client.table('matches').update({'group_id': new_group}).eq('id', row['id']))
            elif row['player1_score'] is None or row['player2_score'] is None:
                stale.append(row['id'])
        if stale:
            self._run(client.table('matches').delete().in_('id', stale))

        return created

    # =========================================================================
    # FIXTURES
    # =========================================================================

    def list_group_fixtures(self, group_id: int) -> List[Match]:
        client = self._get_client()
        rows = self._run(client.table('matches').select('*').eq('group_id', group_id).order('id'))
        return [Match(**r) for r in rows]

    def insert_fixtures(self, fixtures: List[Match]) -> List[Match]:
        client = self._get_client()
        rows = [self._match_row(f) for f in fixtures]

        created = []
        for i in range(0, len(rows), BATCH_SIZE):
            batch = rows[i:i + BATCH_SIZE]
            created.extend(self._run(client.table('matches').insert(batch)))
        return [Match(**r) for r in created]

    def insert_match(self, match: Match) -> Match:
        client = self._get_client()
        rows = self._run(client.table('matches').insert(self._match_row(match)))
        return Match(**rows[0])

    @staticmethod
    def _match_row(match: Match) -> Dict[str, Any]:
        return match.model_dump(exclude={'id', 'created'})

    def update_match_scores(
        self,
        match_id: int,
        player1_score: int,
        player2_score: int,
        date: Optional[str] = None
    ) -> Optional[Match]:
        fields: Dict[str, Any] = {'player1_score': player1_score, 'player2_score': player2_score}
        if date is not None:
            fields['date'] = date

        client = self._get_client()
        rows = self._run(client.table('matches').update(fields).eq('id', match_id))
        return Match(**rows[0]) if rows else None

    def list_next_matches(self, competition_id: int) -> List[Match]:
        client = self._get_client()
        rows = self._run(
            client.table('matches')
            .select('*')
            .eq('competition_id', competition_id)
            .or_(UNPLAYED_FILTER)
            .order('date', nullsfirst=False)
            .order('id')
        )
        return [Match(**r) for r in rows]

    def apply_match_rating(self, match: Match, k_factor: int) -> bool:
        client = self._get_client()
        self._run(client.rpc('fn_apply_match_elo', {
            'p_competition_id': match.competition_id,
            'p_player1_id': match.player1_id,
            'p_player2_id': match.player2_id,
            'p_score1': match.player1_score,
            'p_score2': match.player2_score,
            'p_k': k_factor,
        }))
        return True

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def clear_all(self) -> None:
        """Clear all data from database."""
        client = self._get_client()

        # Composite-key tables first
        client.table('groups_players').delete().neq('group_id', 0).execute()
        client.table('competitions_players').delete().neq('competition_id', 0).execute()

        # Delete other tables in order to respect foreign keys
        for table in ['knockout_matches', 'matches', 'groups', 'players', 'competitions']:
            client.table(table).delete().neq('id', 0).execute()
