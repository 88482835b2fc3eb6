"""
Random partition of a competition's players into balanced groups.
"""

import logging
import math
import random
import string
from typing import List, Optional

from .. import config
from ..exceptions import NotFoundError, ValidationError
from ..models import Group, GroupDraft
from ..storage.base import FixtureStore
from .bracket_builder import sanitize_players
from .locks import CompetitionLocks, default_locks

logger = logging.getLogger(__name__)


def group_label(index: int) -> str:
    """Spreadsheet-style label: 0 -> A, 25 -> Z, 26 -> AA."""
    label = ''
    index += 1
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        label = string.ascii_uppercase[remainder] + label
    return label


def partition_players(
    player_ids: List[int],
    max_group_size: int,
    rng: Optional[random.Random] = None,
    prefix: Optional[str] = None
) -> List[GroupDraft]:
    """
    Shuffle players and deal them into ceil(n / max_group_size) groups.

    Player i of the shuffled list goes to group i % group_count, so group
    sizes differ by at most one.

    Raises:
        ValidationError: If max_group_size is below 2
    """
    if max_group_size is None or max_group_size < 2:
        raise ValidationError(f"Group size must be at least 2, got {max_group_size}")

    players = sanitize_players(player_ids)
    if not players:
        return []

    prefix = config.GROUP_NAME_PREFIX if prefix is None else prefix
    shuffled = list(players)
    (rng or random.Random()).shuffle(shuffled)

    group_count = math.ceil(len(shuffled) / max_group_size)
    buckets: List[List[int]] = [[] for _ in range(group_count)]
    for i, player_id in enumerate(shuffled):
        buckets[i % group_count].append(player_id)

    return [
        GroupDraft(name=f"{prefix} {group_label(i)}".strip(), player_ids=bucket)
        for i, bucket in enumerate(buckets)
    ]


class GroupPartitioner:
    """
    Rebuilds the group partition of a competition from its registered players.
    """

    def __init__(
        self,
        store: FixtureStore,
        rng: Optional[random.Random] = None,
        locks: Optional[CompetitionLocks] = None
    ):
        self.store = store
        self.rng = rng
        self.locks = locks or default_locks

    def rebuild(self, competition_id: int, max_group_size: Optional[int] = None) -> List[Group]:
        """
        Replace all groups of a competition with a fresh random partition.

        Played fixtures of the old groups are kept by the store (re-homed or
        detached); unplayed ones are deleted and must be regenerated.

        Returns:
            The new groups

        Raises:
            NotFoundError: If the competition does not exist
            ValidationError: If max_group_size is below 2
        """
        size = config.MAX_GROUP_SIZE if max_group_size is None else max_group_size
        if size < 2:
            raise ValidationError(f"Group size must be at least 2, got {size}")

        with self.locks.hold(competition_id):
            if self.store.get_competition(competition_id) is None:
                raise NotFoundError(f"Competition {competition_id} not found")

            players = self.store.list_competition_players(competition_id)
            drafts = partition_players(players, size, rng=self.rng)
            groups = self.store.replace_group_partition(competition_id, drafts)

        logger.info(
            f"Partitioned {len(players)} players of competition {competition_id} "
            f"into {len(groups)} groups (max {size})"
        )
        return groups
