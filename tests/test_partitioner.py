"""Tests for group partitioning."""

import random

import pytest

from tourney.engine.locks import CompetitionLocks
from tourney.engine.partitioner import GroupPartitioner, group_label, partition_players
from tourney.exceptions import NotFoundError, ValidationError
from tourney.models import GroupDraft, Match


class TestGroupLabel:
    """Tests for spreadsheet-style labels."""

    @pytest.mark.parametrize('index,label', [(0, 'A'), (1, 'B'), (25, 'Z'), (26, 'AA'), (27, 'AB'), (52, 'BA')])
    def test_labels(self, index, label):
        assert group_label(index) == label


class TestPartitionPlayers:
    """Tests for the pure partition function."""

    @pytest.mark.parametrize('count,max_size,groups', [(4, 4, 1), (5, 4, 2), (9, 4, 3), (10, 3, 4), (2, 2, 1)])
    def test_group_count_and_balance(self, count, max_size, groups):
        drafts = partition_players(list(range(1, count + 1)), max_size, rng=random.Random(1))

        sizes = [len(d.player_ids) for d in drafts]
        assert len(drafts) == groups
        assert max(sizes) - min(sizes) <= 1
        assert max(sizes) <= max_size
        assert sorted(p for d in drafts for p in d.player_ids) == list(range(1, count + 1))

    def test_names(self):
        drafts = partition_players(list(range(9)), 4, rng=random.Random(1), prefix='Group')
        assert [d.name for d in drafts] == ['Group A', 'Group B', 'Group C']

    def test_empty_prefix(self):
        drafts = partition_players([1, 2, 3], 2, rng=random.Random(1), prefix='')
        assert [d.name for d in drafts] == ['A', 'B']

    def test_seeded_shuffle_is_reproducible(self):
        first = partition_players(list(range(20)), 4, rng=random.Random(3))
        second = partition_players(list(range(20)), 4, rng=random.Random(3))
        assert first == second

    def test_empty_roster(self):
        assert partition_players([], 4) == []

    @pytest.mark.parametrize('max_size', [None, 0, 1])
    def test_group_size_below_two(self, max_size):
        with pytest.raises(ValidationError):
            partition_players([1, 2, 3], max_size)


class TestGroupPartitioner:
    """Tests for GroupPartitioner.rebuild against the SQLite store."""

    @pytest.fixture
    def partitioner(self, store_fixture):
        return GroupPartitioner(store_fixture, rng=random.Random(5), locks=CompetitionLocks())

    @pytest.fixture
    def registered(self, store_fixture, group_knockout, make_players):
        player_ids = make_players(6)
        store_fixture.add_competition_players(group_knockout.id, player_ids)
        return group_knockout.id, player_ids

    def _all_matches(self, store, competition_id):
        rows = store._fetch('SELECT * FROM matches WHERE competition_id = ? ORDER BY id', (competition_id,))
        return [Match(**r) for r in rows]

    def test_rebuild_persists_groups(self, store_fixture, partitioner, registered):
        competition_id, player_ids = registered

        groups = partitioner.rebuild(competition_id, max_group_size=4)

        assert [len(g.player_ids) for g in groups] == [3, 3]
        assert store_fixture.list_groups(competition_id) == groups
        members = store_fixture.list_group_members(competition_id)
        assert sorted(m.player_id for m in members) == player_ids

    def test_rebuild_replaces_previous_groups(self, store_fixture, partitioner, registered):
        competition_id, _ = registered
        old = partitioner.rebuild(competition_id, max_group_size=2)

        new = partitioner.rebuild(competition_id, max_group_size=6)

        assert len(old) == 3 and len(new) == 1
        assert [g.id for g in store_fixture.list_groups(competition_id)] == [new[0].id]
        assert all(store_fixture.get_group(g.id) is None for g in old)

    def test_unplayed_fixture_moves_with_its_pair(self, store_fixture, partitioner, registered):
        competition_id, _ = registered
        (group,) = partitioner.rebuild(competition_id, max_group_size=6)
        (pending,) = store_fixture.insert_fixtures([
            Match(competition_id=competition_id, group_id=group.id,
                  player1_id=group.player_ids[0], player2_id=group.player_ids[1])
        ])

        (new_group,) = partitioner.rebuild(competition_id, max_group_size=6)

        assert [m.id for m in store_fixture.list_group_fixtures(new_group.id)] == [pending.id]

    def test_unplayed_fixtures_of_a_leaver_are_deleted(self, store_fixture, partitioner, registered):
        competition_id, player_ids = registered
        (group,) = partitioner.rebuild(competition_id, max_group_size=6)
        _, kept = store_fixture.insert_fixtures([
            Match(competition_id=competition_id, group_id=group.id,
                  player1_id=player_ids[0], player2_id=player_ids[1]),
            Match(competition_id=competition_id, group_id=group.id,
                  player1_id=player_ids[2], player2_id=player_ids[3]),
        ])
        store_fixture.remove_competition_player(competition_id, player_ids[0])

        (new_group,) = partitioner.rebuild(competition_id, max_group_size=6)

        assert [m.id for m in self._all_matches(store_fixture, competition_id)] == [kept.id]
        assert [m.id for m in store_fixture.list_group_fixtures(new_group.id)] == [kept.id]

    def test_played_fixture_moves_with_its_pair(self, store_fixture, partitioner, registered):
        competition_id, _ = registered
        (group,) = partitioner.rebuild(competition_id, max_group_size=6)
        played = store_fixture.insert_match(
            Match(competition_id=competition_id, group_id=group.id,
                  player1_id=group.player_ids[0], player2_id=group.player_ids[1],
                  player1_score=2, player2_score=1)
        )

        (new_group,) = partitioner.rebuild(competition_id, max_group_size=6)

        assert [m.id for m in store_fixture.list_group_fixtures(new_group.id)] == [played.id]

    def test_played_fixture_is_detached_when_pair_splits(self, store_fixture, partitioner, registered):
        competition_id, _ = registered
        (group,) = partitioner.rebuild(competition_id, max_group_size=6)
        played = store_fixture.insert_match(
            Match(competition_id=competition_id, group_id=group.id,
                  player1_id=group.player_ids[0], player2_id=group.player_ids[1],
                  player1_score=2, player2_score=1)
        )

        groups = partitioner.rebuild(competition_id, max_group_size=2)

        home = next(
            (g.id for g in groups if {played.player1_id, played.player2_id} <= set(g.player_ids)),
            None
        )
        (stored,) = self._all_matches(store_fixture, competition_id)
        assert stored.id == played.id
        assert stored.group_id == home
        assert stored.player1_score == 2

    def test_detached_fixture_is_rehomed_later(self, store_fixture, partitioner, registered):
        competition_id, player_ids = registered
        played = store_fixture.insert_match(
            Match(competition_id=competition_id, player1_id=player_ids[0], player2_id=player_ids[1],
                  player1_score=0, player2_score=2)
        )

        (group,) = partitioner.rebuild(competition_id, max_group_size=6)

        assert [m.id for m in store_fixture.list_group_fixtures(group.id)] == [played.id]

    def test_knockout_matches_are_not_rehomed(self, store_fixture, partitioner, registered):
        competition_id, player_ids = registered
        store_fixture.insert_match(
            Match(competition_id=competition_id, player1_id=player_ids[0], player2_id=player_ids[1],
                  player1_score=3, player2_score=0, stage='final')
        )

        (group,) = partitioner.rebuild(competition_id, max_group_size=6)

        assert store_fixture.list_group_fixtures(group.id) == []

    def test_empty_roster_clears_groups(self, store_fixture, partitioner, group_knockout):
        store_fixture.replace_group_partition(
            group_knockout.id, [GroupDraft(name='Group A', player_ids=[])]
        )

        assert partitioner.rebuild(group_knockout.id) == []
        assert store_fixture.list_groups(group_knockout.id) == []

    def test_unknown_competition(self, partitioner):
        with pytest.raises(NotFoundError):
            partitioner.rebuild(999)

    def test_invalid_group_size(self, partitioner, registered):
        competition_id, _ = registered
        with pytest.raises(ValidationError):
            partitioner.rebuild(competition_id, max_group_size=1)
