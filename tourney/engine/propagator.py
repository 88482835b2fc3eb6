"""
Knockout result recording and winner propagation.

A result is written on its knockout match, then the winner is seated in the
successor match. Corrections replace the previous winner's exact slot; a
recorded winner is never cleared by a tie and a successor with its own
result is never re-seeded. Slot writes are conditional on the slot's
previous value so a concurrent writer is detected instead of overwritten.
"""

import logging
from typing import Dict, List, Optional, Tuple

from ..exceptions import ConflictError, NotFoundError, ValidationError
from ..models import KnockoutMatch, KnockoutMatchRef, KnockoutResult
from ..storage.base import FixtureStore
from .locks import CompetitionLocks, default_locks

logger = logging.getLogger(__name__)


def decide_winner(match: KnockoutMatch, player1_score: int, player2_score: int) -> Optional[int]:
    """Winner by strictly higher score in slot order; None on a tie."""
    if player1_score > player2_score:
        return match.player1_id
    if player2_score > player1_score:
        return match.player2_id
    return None


def parity_slot(position: int) -> int:
    """Successor slot fed by a match at `position` (even = 1, odd = 2)."""
    return 1 if position % 2 == 0 else 2


def find_target(bracket: List[KnockoutMatch], ref: KnockoutMatchRef) -> KnockoutMatch:
    """
    Locate the knockout match a result belongs to.

    By explicit id when given, otherwise by round name and the unordered
    player pair.

    Raises:
        NotFoundError: If no match fits the reference
        ValidationError: If the id names a match between other players, or
                         the pair is found in more than one match
    """
    if ref.knockout_match_id is not None:
        match = next((m for m in bracket if m.id == ref.knockout_match_id), None)
        if match is None:
            raise NotFoundError(f"Knockout match {ref.knockout_match_id} not found")
        if not match.has_pair(ref.player1_id, ref.player2_id):
            raise ValidationError(
                f"Knockout match {match.id} is not between players "
                f"{ref.player1_id} and {ref.player2_id}"
            )
        return match

    candidates = [
        m for m in bracket
        if m.has_pair(ref.player1_id, ref.player2_id)
        and (ref.round_name is None or m.round_name == ref.round_name)
    ]
    if not candidates:
        raise NotFoundError(
            f"No knockout match between players {ref.player1_id} and {ref.player2_id}"
            + (f" in {ref.round_name}" if ref.round_name else "")
        )
    if len(candidates) > 1:
        raise ValidationError(
            f"Players {ref.player1_id} and {ref.player2_id} meet in knockout matches "
            f"{sorted(m.id for m in candidates)}; give a round name or match id"
        )
    return candidates[0]


def find_successor(bracket: List[KnockoutMatch], match: KnockoutMatch) -> Optional[KnockoutMatch]:
    """
    The match receiving `match`'s winner.

    Uses the stored link; without one, the open match at the same tree
    position in the next round, else the only open match of that round.
    """
    if match.next_match_id is not None:
        return next((m for m in bracket if m.id == match.next_match_id), None)

    next_round = [m for m in bracket if m.round_order == match.round_order + 1]
    open_matches = [m for m in next_round if m.player1_id is None or m.player2_id is None]

    by_position = next((m for m in open_matches if m.position == match.position // 2), None)
    if by_position is not None:
        return by_position
    if len(open_matches) == 1:
        return open_matches[0]
    return None


class WinnerPropagator:
    """
    Records knockout results and advances winners through the bracket.
    """

    def __init__(self, store: FixtureStore, locks: Optional[CompetitionLocks] = None):
        self.store = store
        self.locks = locks or default_locks

    # =========================================================================
    # RESULTS
    # =========================================================================

    def record_result(self, ref: KnockoutMatchRef, scores: Tuple[int, int]) -> KnockoutResult:
        """
        Record a knockout result and seat the winner in the successor match.

        Args:
            ref: Identifies the match; players in the caller's order
            scores: (score of ref.player1_id, score of ref.player2_id)

        Returns:
            KnockoutResult with the updated match and propagation details

        Raises:
            ValidationError: Scores missing or players do not match
            NotFoundError: No knockout match fits the reference
            ConflictError: Tie over a recorded winner, correction over a played
                           successor, or a lost write race
        """
        score_a, score_b = self._check_scores(scores)

        with self.locks.hold(ref.competition_id):
            bracket = self.store.get_knockout_bracket(ref.competition_id)
            if not bracket:
                raise NotFoundError(f"No knockout bracket for competition {ref.competition_id}")

            target = find_target(bracket, ref)
            if target.player1_id == ref.player1_id:
                player1_score, player2_score = score_a, score_b
            else:
                player1_score, player2_score = score_b, score_a

            winner = decide_winner(target, player1_score, player2_score)
            previous = target.winner_id
            if winner is None and previous is not None:
                raise ConflictError(
                    f"Knockout match {target.id} already has winner {previous}; a tie cannot replace it"
                )

            successor = find_successor(bracket, target)
            if (winner is not None and previous not in (None, winner)
                    and successor is not None and successor.has_winner
                    and successor.slot_of(previous)):
                raise ConflictError(
                    f"Knockout match {successor.id} already has a result; "
                    f"cannot replace player {previous} with {winner}"
                )

            fields = {
                'player1_score': player1_score,
                'player2_score': player2_score,
                'winner_id': winner,
            }
            if ref.match_id is not None:
                fields['match_id'] = ref.match_id

            if not self.store.update_knockout_match(target.id, fields, {'winner_id': previous}):
                current = self._reload(ref.competition_id, target.id)
                if current is None or current.winner_id != winner:
                    raise ConflictError(f"Knockout match {target.id} was updated concurrently")
                logger.info(f"Knockout match {target.id} already recorded with winner {winner}")
            updated = target.model_copy(update=fields)

            if winner is None:
                logger.warning(f"Tie recorded on knockout match {target.id}; nobody advances")
                return KnockoutResult(updated_match=updated, warning='tie')

            if successor is None:
                if any(m.round_order > target.round_order for m in bracket):
                    logger.warning(f"No open successor for knockout match {target.id}")
                    return KnockoutResult(updated_match=updated, warning='successor_full')
                logger.info(f"Final decided: player {winner} wins competition {ref.competition_id}")
                return KnockoutResult(updated_match=updated)

            if target.next_match_id is None:
                self.store.update_knockout_match(
                    target.id, {'next_match_id': successor.id}, {'next_match_id': None}
                )
                updated = updated.model_copy(update={'next_match_id': successor.id})

            return self._seat_winner(updated, successor, winner, previous)

    # =========================================================================
    # BYES
    # =========================================================================

    def advance_byes(self, competition_id: int) -> int:
        """
        Walk bye players over into the next round.

        A first-round match with exactly one player is a walkover; so is a
        later-round match with one player whose other feeder can never
        produce one. The walkover player is seated by position parity without
        writing a winner_id. Idempotent.

        Returns:
            Number of slots seated
        """
        seated = 0
        with self.locks.hold(competition_id):
            bracket = {m.id: m for m in self.store.get_knockout_bracket(competition_id)}

            changed = True
            while changed:
                changed = False
                feeders = self._feeders(bracket)
                dead: Dict[int, bool] = {}

                for match in sorted(bracket.values(), key=lambda m: (m.round_order, m.position)):
                    if match.has_winner or len(match.players()) != 1:
                        continue
                    if match.round_order > 1:
                        live = [f for f in feeders.get(match.id, []) if not self._is_dead(f, bracket, feeders, dead)]
                        if len(live) > 1:
                            continue

                    successor = find_successor(list(bracket.values()), match)
                    if successor is None or successor.has_winner:
                        continue

                    (player_id,) = match.players()
                    if successor.slot_of(player_id):
                        continue

                    field = f'player{parity_slot(match.position)}_id'
                    if getattr(successor, field) is not None:
                        logger.warning(
                            f"Walkover slot {field} of knockout match {successor.id} is taken"
                        )
                        continue

                    if self.store.update_knockout_match(successor.id, {field: player_id}, {field: None}):
                        bracket[successor.id] = successor.model_copy(update={field: player_id})
                        seated += 1
                        changed = True
                        logger.info(
                            f"Walkover: player {player_id} advances to knockout match {successor.id}"
                        )

        return seated

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _seat_winner(
        self,
        updated: KnockoutMatch,
        successor: KnockoutMatch,
        winner: int,
        previous: Optional[int]
    ) -> KnockoutResult:
        correction_slot = None
        if previous is not None and previous != winner:
            correction_slot = successor.slot_of(previous)

        if correction_slot and successor.has_winner:
            raise ConflictError(
                f"Knockout match {successor.id} already has a result; "
                f"cannot replace player {previous} with {winner}"
            )

        if correction_slot:
            slot, expected = correction_slot, previous
        elif successor.slot_of(winner):
            return KnockoutResult(updated_match=updated, propagated=True, successor_id=successor.id)
        elif successor.is_empty:
            slot, expected = parity_slot(updated.position), None
        elif successor.player1_id is None:
            slot, expected = 1, None
        elif successor.player2_id is None:
            slot, expected = 2, None
        else:
            logger.warning(
                f"Successor knockout match {successor.id} is full; player {winner} not seated"
            )
            return KnockoutResult(
                updated_match=updated, successor_id=successor.id, warning='successor_full'
            )

        field = f'player{slot}_id'
        if not self.store.update_knockout_match(successor.id, {field: winner}, {field: expected}):
            current = self._reload(updated.competition_id, successor.id)
            if current is None or getattr(current, field) != winner:
                raise ConflictError(
                    f"Slot {field} of knockout match {successor.id} was taken concurrently"
                )

        logger.info(f"Player {winner} advances to knockout match {successor.id} ({field})")
        return KnockoutResult(updated_match=updated, propagated=True, successor_id=successor.id)

    def _reload(self, competition_id: int, match_id: int) -> Optional[KnockoutMatch]:
        return next(
            (m for m in self.store.get_knockout_bracket(competition_id) if m.id == match_id),
            None,
        )

    @staticmethod
    def _check_scores(scores) -> Tuple[int, int]:
        if scores is None or len(scores) != 2 or any(s is None for s in scores):
            raise ValidationError('both scores are required for a knockout result')
        try:
            score_a, score_b = int(scores[0]), int(scores[1])
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid scores: {scores!r}")
        if score_a < 0 or score_b < 0:
            raise ValidationError(f"Scores cannot be negative: {scores!r}")
        return score_a, score_b

    @staticmethod
    def _feeders(bracket: Dict[int, KnockoutMatch]) -> Dict[int, List[KnockoutMatch]]:
        feeders: Dict[int, List[KnockoutMatch]] = {}
        for match in bracket.values():
            if match.next_match_id is not None:
                feeders.setdefault(match.next_match_id, []).append(match)
        return feeders

    def _is_dead(
        self,
        match: KnockoutMatch,
        bracket: Dict[int, KnockoutMatch],
        feeders: Dict[int, List[KnockoutMatch]],
        memo: Dict[int, bool]
    ) -> bool:
        """A match that can never produce a player for its successor."""
        if match.id in memo:
            return memo[match.id]
        match = bracket.get(match.id, match)
        if match.has_winner or not match.is_empty:
            result = False
        elif match.round_order == 1:
            result = True
        else:
            result = all(self._is_dead(f, bracket, feeders, memo) for f in feeders.get(match.id, []))
        memo[match.id] = result
        return result
