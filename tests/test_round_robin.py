"""Tests for round-robin group fixtures."""

import pytest

from tourney.engine.locks import CompetitionLocks
from tourney.engine.round_robin import RoundRobinGenerator, missing_pairings
from tourney.exceptions import NotFoundError, ValidationError
from tourney.models import GroupDraft, Match


def _fixture(p1, p2, **kwargs):
    return Match(competition_id=1, group_id=1, player1_id=p1, player2_id=p2, **kwargs)


@pytest.fixture
def generator(store_fixture):
    return RoundRobinGenerator(store_fixture, locks=CompetitionLocks())


@pytest.fixture
def group_of_four(store_fixture, group_knockout, make_players):
    player_ids = make_players(4)
    (group,) = store_fixture.replace_group_partition(
        group_knockout.id, [GroupDraft(name='Group A', player_ids=player_ids)]
    )
    return group


class TestMissingPairings:
    """Tests for the pure pairing function."""

    def test_all_pairs_of_new_group(self):
        assert missing_pairings([1, 2, 3], []) == [(1, 2), (1, 3), (2, 3)]

    def test_existing_pairs_in_either_order_are_skipped(self):
        existing = [_fixture(2, 1), _fixture(3, 1, player1_score=2, player2_score=0)]
        assert missing_pairings([1, 2, 3], existing) == [(2, 3)]

    def test_ignores_duplicate_members(self):
        assert missing_pairings([1, 2, 2, None], []) == [(1, 2)]

    def test_single_member_has_no_pairs(self):
        assert missing_pairings([5], []) == []

    @pytest.mark.parametrize('size', [2, 3, 4, 5, 8])
    def test_pair_count(self, size):
        assert len(missing_pairings(range(1, size + 1), [])) == size * (size - 1) // 2


class TestRoundRobinGenerator:
    """Tests for RoundRobinGenerator against the SQLite store."""

    def test_creates_every_pair_once(self, store_fixture, generator, group_of_four):
        created = generator.generate_for_group(group_of_four)

        assert len(created) == 6
        assert all(m.id is not None for m in created)
        assert all(m.group_id == group_of_four.id for m in created)
        assert all(not m.is_played for m in created)
        assert len({m.pair_key() for m in created}) == 6

    def test_is_idempotent(self, store_fixture, generator, group_of_four):
        generator.generate_for_group(group_of_four)

        assert generator.generate_for_group(group_of_four) == []
        assert len(store_fixture.list_group_fixtures(group_of_four.id)) == 6

    def test_new_member_gets_only_missing_pairs(self, store_fixture, generator, group_of_four, make_players):
        generator.generate_for_group(group_of_four)
        (newcomer,) = make_players(1)
        grown = group_of_four.model_copy(update={'player_ids': group_of_four.player_ids + [newcomer]})

        created = generator.generate_for_group(grown)

        assert len(created) == 4
        assert all(newcomer in (m.player1_id, m.player2_id) for m in created)

    def test_removed_member_keeps_existing_fixtures(self, store_fixture, generator, group_of_four):
        """Shrinking membership never deletes; the remaining trio is already complete."""
        generator.generate_for_group(group_of_four)
        shrunk = group_of_four.model_copy(update={'player_ids': group_of_four.player_ids[:3]})

        assert generator.generate_for_group(shrunk) == []
        assert len(store_fixture.list_group_fixtures(group_of_four.id)) == 6

    def test_played_fixture_is_untouched(self, store_fixture, generator, group_of_four):
        created = generator.generate_for_group(group_of_four)
        store_fixture.update_match_scores(created[0].id, 3, 1)

        generator.generate_for_group(group_of_four)

        fixtures = {m.id: m for m in store_fixture.list_group_fixtures(group_of_four.id)}
        assert (fixtures[created[0].id].player1_score, fixtures[created[0].id].player2_score) == (3, 1)

    def test_by_group_id(self, generator, group_of_four):
        assert len(generator.generate_for_group_id(group_of_four.id)) == 6

    def test_missing_group_id(self, generator):
        with pytest.raises(ValidationError):
            generator.generate_for_group_id(None)

    def test_unknown_group(self, generator):
        with pytest.raises(NotFoundError):
            generator.generate_for_group_id(999)

    def test_whole_competition(self, store_fixture, generator, group_knockout, make_players):
        player_ids = make_players(7)
        store_fixture.replace_group_partition(group_knockout.id, [
            GroupDraft(name='Group A', player_ids=player_ids[:4]),
            GroupDraft(name='Group B', player_ids=player_ids[4:]),
        ])

        created = generator.generate_for_competition(group_knockout.id)

        assert len(created) == 6 + 3
