"""Tests for knockout result recording and winner propagation."""

import threading

import pytest
from unittest.mock import patch

from tourney.engine.locks import CompetitionLocks
from tourney.engine.propagator import (
    WinnerPropagator,
    decide_winner,
    find_successor,
    find_target,
    parity_slot,
)
from tourney.engine.reconciler import BracketReconciler
from tourney.exceptions import ConflictError, NotFoundError, ValidationError
from tourney.models import KnockoutMatch, KnockoutMatchRef


def _ref(competition_id, p1, p2, round_name=None, **kwargs):
    return KnockoutMatchRef(
        competition_id=competition_id,
        player1_id=p1,
        player2_id=p2,
        round_name=round_name,
        **kwargs
    )


@pytest.fixture
def bracket_of_four(store_fixture, elimination):
    """Semifinals 1-2 and 3-4 with an empty final."""
    locks = CompetitionLocks()
    BracketReconciler(store_fixture, locks=locks).reconcile(elimination.id, [1, 2, 3, 4])
    return elimination.id, WinnerPropagator(store_fixture, locks=locks)


def _by_round(store, competition_id, order):
    return [m for m in store.get_knockout_bracket(competition_id) if m.round_order == order]


class TestHelpers:
    """Tests for pure helper functions."""

    def test_decide_winner(self):
        match = KnockoutMatch(id=1, competition_id=1, round_name='final', round_order=1,
                              player1_id=10, player2_id=20)
        assert decide_winner(match, 11, 5) == 10
        assert decide_winner(match, 5, 11) == 20
        assert decide_winner(match, 7, 7) is None

    def test_parity_slot(self):
        assert parity_slot(0) == 1
        assert parity_slot(1) == 2
        assert parity_slot(6) == 1

    def test_successor_fallback_without_link(self):
        """Without next_match_id the open match at position // 2 is used."""
        rows = [
            KnockoutMatch(id=1, competition_id=1, round_name='semifinals', round_order=1, position=1,
                          player1_id=3, player2_id=4),
            KnockoutMatch(id=2, competition_id=1, round_name='final', round_order=2, position=0),
        ]
        assert find_successor(rows, rows[0]).id == 2

    def test_successor_fallback_unique_open_match(self):
        rows = [
            KnockoutMatch(id=1, competition_id=1, round_name='r1', round_order=1, position=4),
            KnockoutMatch(id=2, competition_id=1, round_name='r2', round_order=2, position=0,
                          player1_id=1, player2_id=2),
            KnockoutMatch(id=3, competition_id=1, round_name='r2', round_order=2, position=1,
                          player1_id=5),
        ]
        assert find_successor(rows, rows[0]).id == 3

    def test_pair_in_several_rounds_needs_round_name(self):
        rows = [
            KnockoutMatch(id=1, competition_id=1, round_name='semifinals', round_order=1,
                          player1_id=3, player2_id=4),
            KnockoutMatch(id=2, competition_id=1, round_name='final', round_order=2,
                          player1_id=4, player2_id=3),
        ]

        with pytest.raises(ValidationError):
            find_target(rows, _ref(1, 3, 4))
        assert find_target(rows, _ref(1, 3, 4, 'final')).id == 2

    def test_final_has_no_successor(self):
        final = KnockoutMatch(id=9, competition_id=1, round_name='final', round_order=2)
        assert find_successor([final], final) is None


class TestRecordResult:
    """Tests for WinnerPropagator.record_result."""

    def test_winner_fills_successor_slot_by_parity(self, store_fixture, bracket_of_four):
        competition_id, propagator = bracket_of_four

        result = propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (11, 5))

        assert result.propagated is True
        assert result.updated_match.winner_id == 1
        final = _by_round(store_fixture, competition_id, 2)[0]
        assert result.successor_id == final.id
        assert (final.player1_id, final.player2_id) == (1, None)

    def test_odd_position_fills_second_slot(self, store_fixture, bracket_of_four):
        competition_id, propagator = bracket_of_four

        propagator.record_result(_ref(competition_id, 3, 4, 'semifinals'), (2, 6))

        final = _by_round(store_fixture, competition_id, 2)[0]
        assert (final.player1_id, final.player2_id) == (None, 4)

    def test_correction_replaces_the_same_slot(self, store_fixture, bracket_of_four):
        """A vs B 11-5 then corrected to 5-11: B takes A's slot."""
        competition_id, propagator = bracket_of_four
        propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (11, 5))

        result = propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (5, 11))

        assert result.updated_match.winner_id == 2
        final = _by_round(store_fixture, competition_id, 2)[0]
        assert (final.player1_id, final.player2_id) == (2, None)

    def test_scores_follow_caller_player_order(self, store_fixture, bracket_of_four):
        competition_id, propagator = bracket_of_four

        result = propagator.record_result(_ref(competition_id, 2, 1, 'semifinals'), (11, 5))

        assert result.updated_match.winner_id == 2
        assert (result.updated_match.player1_score, result.updated_match.player2_score) == (5, 11)

    def test_tie_records_scores_without_advancing(self, store_fixture, bracket_of_four):
        competition_id, propagator = bracket_of_four

        result = propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (7, 7))

        assert result.warning == 'tie'
        assert result.propagated is False
        assert _by_round(store_fixture, competition_id, 2)[0].is_empty
        first = _by_round(store_fixture, competition_id, 1)[0]
        assert (first.player1_score, first.player2_score, first.winner_id) == (7, 7, None)

    def test_tie_over_recorded_winner_is_rejected(self, store_fixture, bracket_of_four):
        competition_id, propagator = bracket_of_four
        propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (11, 5))

        with pytest.raises(ConflictError):
            propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (9, 9))

        assert _by_round(store_fixture, competition_id, 1)[0].winner_id == 1

    def test_repeated_result_is_idempotent(self, store_fixture, bracket_of_four):
        competition_id, propagator = bracket_of_four
        propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (11, 5))

        result = propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (11, 5))

        assert result.propagated is True
        final = _by_round(store_fixture, competition_id, 2)[0]
        assert (final.player1_id, final.player2_id) == (1, None)

    def test_final_result(self, store_fixture, bracket_of_four):
        competition_id, propagator = bracket_of_four
        propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (11, 5))
        propagator.record_result(_ref(competition_id, 3, 4, 'semifinals'), (11, 9))

        result = propagator.record_result(_ref(competition_id, 3, 1, 'final'), (11, 8))

        assert result.updated_match.winner_id == 3
        assert result.successor_id is None
        assert result.warning is None

    def test_correction_over_played_successor_is_rejected(self, store_fixture, bracket_of_four):
        competition_id, propagator = bracket_of_four
        propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (11, 5))
        propagator.record_result(_ref(competition_id, 3, 4, 'semifinals'), (11, 9))
        propagator.record_result(_ref(competition_id, 1, 3, 'final'), (11, 8))

        with pytest.raises(ConflictError):
            propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (5, 11))

        final = _by_round(store_fixture, competition_id, 2)[0]
        assert final.winner_id == 1
        assert final.players() == {1, 3}
        assert _by_round(store_fixture, competition_id, 1)[0].winner_id == 1

    def test_lookup_by_knockout_id_and_match_link(self, store_fixture, bracket_of_four):
        competition_id, propagator = bracket_of_four
        second = _by_round(store_fixture, competition_id, 1)[1]

        result = propagator.record_result(
            _ref(competition_id, 4, 3, knockout_match_id=second.id, match_id=42),
            (11, 3)
        )

        assert result.updated_match.winner_id == 4
        assert result.updated_match.match_id == 42

    def test_knockout_id_with_other_players(self, bracket_of_four, store_fixture):
        competition_id, propagator = bracket_of_four
        second = _by_round(store_fixture, competition_id, 1)[1]

        with pytest.raises(ValidationError):
            propagator.record_result(_ref(competition_id, 1, 2, knockout_match_id=second.id), (1, 0))

    def test_unknown_pair(self, bracket_of_four):
        competition_id, propagator = bracket_of_four
        with pytest.raises(NotFoundError):
            propagator.record_result(_ref(competition_id, 1, 3, 'semifinals'), (11, 5))

    def test_wrong_round(self, bracket_of_four):
        competition_id, propagator = bracket_of_four
        with pytest.raises(NotFoundError):
            propagator.record_result(_ref(competition_id, 1, 2, 'final'), (11, 5))

    def test_no_bracket(self, store_fixture, elimination):
        propagator = WinnerPropagator(store_fixture, locks=CompetitionLocks())
        with pytest.raises(NotFoundError):
            propagator.record_result(_ref(elimination.id, 1, 2), (11, 5))

    @pytest.mark.parametrize('scores', [None, (11,), (11, None), ('a', 3), (-1, 3)])
    def test_invalid_scores(self, bracket_of_four, scores):
        competition_id, propagator = bracket_of_four
        with pytest.raises(ValidationError):
            propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), scores)

    def test_full_successor_is_a_warning(self, store_fixture, bracket_of_four):
        competition_id, propagator = bracket_of_four
        final = _by_round(store_fixture, competition_id, 2)[0]
        store_fixture.update_knockout_match(final.id, {'player1_id': 8, 'player2_id': 9})

        result = propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (11, 5))

        assert result.propagated is False
        assert result.warning == 'successor_full'
        assert _by_round(store_fixture, competition_id, 1)[0].winner_id == 1

    def test_lost_slot_race_raises_conflict(self, store_fixture, bracket_of_four):
        """Another writer took the slot between our read and our write."""
        competition_id, propagator = bracket_of_four
        final = _by_round(store_fixture, competition_id, 2)[0]
        original_update = store_fixture.update_knockout_match

        def racing_update(match_id, fields, expected=None):
            if match_id == final.id and 'player1_id' in fields:
                original_update(final.id, {'player1_id': 99})
            return original_update(match_id, fields, expected)

        with patch.object(store_fixture, 'update_knockout_match', side_effect=racing_update):
            with pytest.raises(ConflictError):
                propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (11, 5))

    def test_losing_race_to_same_winner_is_benign(self, store_fixture, bracket_of_four):
        competition_id, propagator = bracket_of_four
        final = _by_round(store_fixture, competition_id, 2)[0]
        original_update = store_fixture.update_knockout_match

        def racing_update(match_id, fields, expected=None):
            if match_id == final.id and 'player1_id' in fields:
                original_update(final.id, {'player1_id': 1})
            return original_update(match_id, fields, expected)

        with patch.object(store_fixture, 'update_knockout_match', side_effect=racing_update):
            result = propagator.record_result(_ref(competition_id, 1, 2, 'semifinals'), (11, 5))

        assert result.propagated is True
        assert _by_round(store_fixture, competition_id, 2)[0].player1_id == 1

    def test_concurrent_semifinals_fill_both_slots(self, store_fixture, bracket_of_four):
        competition_id, propagator = bracket_of_four
        errors = []

        def record(p1, p2):
            try:
                propagator.record_result(_ref(competition_id, p1, p2, 'semifinals'), (11, 0))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=record, args=pair) for pair in ((1, 2), (3, 4))]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        final = _by_round(store_fixture, competition_id, 2)[0]
        assert (final.player1_id, final.player2_id) == (1, 3)


class TestAdvanceByes:
    """Tests for bye walkovers."""

    def _setup(self, store, competition_id, players):
        locks = CompetitionLocks()
        BracketReconciler(store, locks=locks).reconcile(competition_id, players)
        return WinnerPropagator(store, locks=locks)

    def test_single_bye(self, store_fixture, elimination):
        propagator = self._setup(store_fixture, elimination.id, [1, 2, 3])

        assert propagator.advance_byes(elimination.id) == 1

        final = _by_round(store_fixture, elimination.id, 2)[0]
        assert (final.player1_id, final.player2_id) == (None, 3)
        assert all(m.winner_id is None for m in store_fixture.get_knockout_bracket(elimination.id))

    def test_walkover_through_dead_feeder(self, store_fixture, elimination):
        """Five players: player 5 walks over the empty fourth match into the final."""
        propagator = self._setup(store_fixture, elimination.id, [1, 2, 3, 4, 5])

        assert propagator.advance_byes(elimination.id) == 2

        semis = _by_round(store_fixture, elimination.id, 2)
        final = _by_round(store_fixture, elimination.id, 3)[0]
        assert semis[0].is_empty
        assert (semis[1].player1_id, semis[1].player2_id) == (5, None)
        assert (final.player1_id, final.player2_id) == (None, 5)

    def test_idempotent(self, store_fixture, elimination):
        propagator = self._setup(store_fixture, elimination.id, [1, 2, 3, 4, 5])
        propagator.advance_byes(elimination.id)

        with patch.object(store_fixture, 'update_knockout_match') as update:
            assert propagator.advance_byes(elimination.id) == 0
        update.assert_not_called()

    def test_full_bracket_has_no_walkovers(self, store_fixture, elimination):
        propagator = self._setup(store_fixture, elimination.id, [1, 2, 3, 4])
        assert propagator.advance_byes(elimination.id) == 0

    def test_walkover_after_result(self, store_fixture, elimination):
        """Six players: the winner of match 3 walks over the dead fourth match."""
        propagator = self._setup(store_fixture, elimination.id, [1, 2, 3, 4, 5, 6])
        propagator.advance_byes(elimination.id)

        propagator.record_result(_ref(elimination.id, 5, 6, 'quarterfinals'), (11, 4))
        propagator.advance_byes(elimination.id)

        final = _by_round(store_fixture, elimination.id, 3)[0]
        assert final.player2_id == 5
