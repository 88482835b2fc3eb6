"""
Round-robin fixture generation for groups.

Every unordered pair of group members meets once. Generation only ever
adds the pairs that are missing, so it can run after any roster change
without touching fixtures that already exist, played or not.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from ..exceptions import NotFoundError, ValidationError
from ..models import Group, Match
from ..storage.base import FixtureStore
from .bracket_builder import sanitize_players
from .locks import CompetitionLocks, default_locks

logger = logging.getLogger(__name__)


def pair_key(player_a: int, player_b: int) -> Tuple[int, int]:
    return (min(player_a, player_b), max(player_a, player_b))


def missing_pairings(
    member_ids: Iterable[int],
    existing: Iterable[Match]
) -> List[Tuple[int, int]]:
    """
    Pairs of members that do not have a fixture yet.

    Args:
        member_ids: Group members in membership order
        existing: Fixtures already stored for the group

    Returns:
        (player1_id, player2_id) pairs in member order
    """
    members = sanitize_players(member_ids)
    known = {m.pair_key() for m in existing}

    pairs = []
    for i, player_a in enumerate(members):
        for player_b in members[i + 1:]:
            key = pair_key(player_a, player_b)
            if key in known:
                continue
            known.add(key)
            pairs.append((player_a, player_b))
    return pairs


class RoundRobinGenerator:
    """
    Creates the missing group fixtures of a competition.
    """

    def __init__(self, store: FixtureStore, locks: Optional[CompetitionLocks] = None):
        self.store = store
        self.locks = locks or default_locks

    def generate_for_group(self, group: Group) -> List[Match]:
        """
        Insert fixtures for every member pair without one.

        Returns:
            Only the newly created fixtures
        """
        with self.locks.hold(group.competition_id):
            existing = self.store.list_group_fixtures(group.id)
            pairs = missing_pairings(group.player_ids, existing)
            if not pairs:
                logger.debug(f"Group {group.id} fixtures are complete")
                return []

            fixtures = [
                Match(
                    competition_id=group.competition_id,
                    group_id=group.id,
                    player1_id=player1_id,
                    player2_id=player2_id,
                )
                for player1_id, player2_id in pairs
            ]
            created = self.store.insert_fixtures(fixtures)
            logger.info(f"Created {len(created)} fixtures for group {group.name} ({group.id})")
            return created

    def generate_for_group_id(self, group_id: int) -> List[Match]:
        """
        Raises:
            ValidationError: If group_id is missing
            NotFoundError: If the group does not exist
        """
        if group_id is None:
            raise ValidationError('group id is required')
        group = self.store.get_group(group_id)
        if group is None:
            raise NotFoundError(f"Group {group_id} not found")
        return self.generate_for_group(group)

    def generate_for_competition(self, competition_id: int) -> List[Match]:
        """Generate missing fixtures for every group of a competition."""
        created = []
        with self.locks.hold(competition_id):
            for group in self.store.list_groups(competition_id):
                created.extend(self.generate_for_group(group))
        return created
