"""
Bracket reconciliation.

Decides whether a persisted bracket still matches the qualified roster and
regenerates it only when that is both needed and safe. Regeneration is
destructive, so it is skipped for small drift (a late joiner, one
substitution) and refused outright once any match has a recorded winner:
stale-but-safe data is preferred over destructive correction.

Roster helpers used by player registration and withdrawal live here too:
seating newcomers in open first-round slots and releasing a withdrawn
player's slots, both restricted to matches without a recorded winner.
"""

import logging
from collections import defaultdict
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel

from .. import config
from ..exceptions import ConflictError, ValidationError
from ..models import KnockoutMatch, KnockoutRound, RoundShape
from ..storage.base import FixtureStore
from .bracket_builder import bracket_size, build_bracket, expected_round_shapes, sanitize_players
from .locks import CompetitionLocks, default_locks

logger = logging.getLogger(__name__)


class ReconcileAction(str, Enum):
    CREATED = "created"
    UNCHANGED = "unchanged"
    TOLERATED = "tolerated"
    REGENERATED = "regenerated"
    GUARDED = "guarded"
    SHRUNK = "shrunk"
    PRUNED = "pruned"


class ReconcileOutcome(BaseModel):
    """What reconciliation did and the bracket it left behind."""

    competition_id: int
    action: ReconcileAction
    rounds: List[KnockoutRound] = []
    removed: List[int] = []
    added: List[int] = []


def group_by_round(matches: Iterable[KnockoutMatch]) -> List[KnockoutRound]:
    """Group persisted matches into rounds ordered by round_order/position."""
    ordered = sorted(matches, key=lambda m: (m.round_order, m.position, m.id))
    rounds: List[KnockoutRound] = []
    for match in ordered:
        if not rounds or rounds[-1].order != match.round_order:
            rounds.append(KnockoutRound(name=match.round_name, order=match.round_order))
        rounds[-1].matches.append(match)
    return rounds


def has_structure_mismatch(existing: List[KnockoutMatch], expected: List[RoundShape]) -> bool:
    """
    True if the persisted bracket cannot be the builder's output for the roster.

    Persisted rounds may hold more matches than expected (leftovers are the
    pruner's concern); fewer matches, a wrong name, an unexpected round or a
    short total all count as mismatch.
    """
    if not expected:
        return len(existing) > 0

    counts = defaultdict(int)
    names = defaultdict(set)
    for match in existing:
        counts[match.round_order] += 1
        if match.round_name:
            names[match.round_order].add(match.round_name)

    for shape in expected:
        if counts.get(shape.order, 0) < shape.match_count:
            return True
        if names[shape.order] and shape.name not in names[shape.order]:
            return True

    expected_orders = {shape.order for shape in expected}
    if any(order not in expected_orders for order in counts):
        return True

    return len(existing) < sum(shape.match_count for shape in expected)


def player_drift(existing: List[KnockoutMatch], qualified: List[int]) -> Tuple[List[int], List[int]]:
    """
    Compare bracket players with the qualified roster.

    Returns:
        (removed, added): bracket players no longer qualified, and qualified
        players missing from the bracket
    """
    in_bracket = set()
    for match in existing:
        in_bracket |= match.players()
    qualified_set = set(qualified)
    removed = sorted(in_bracket - qualified_set)
    added = [player_id for player_id in qualified if player_id not in in_bracket]
    return removed, added


def persisted_bracket_size(existing: List[KnockoutMatch]) -> int:
    """Bracket size implied by the first round, 0 if there is none."""
    first_round = {m.position for m in existing if m.round_order == 1}
    if not first_round:
        return 0
    return bracket_size(2 * len(first_round))


def find_orphans(existing: List[KnockoutMatch]) -> List[KnockoutMatch]:
    """
    Empty rows outside the persisted tree's shape.

    An orphan has no players, no winner and no realized match, and either
    sits in a round beyond the final, at a position past the round's size,
    or duplicates a (round_order, position) already taken by another row.
    """
    size = persisted_bracket_size(existing)
    if size == 0:
        return []

    rounds = size.bit_length() - 1
    orphans = []
    seen = set()
    ordered = sorted(existing, key=lambda m: (m.is_empty, m.id))
    for match in ordered:
        slot = (match.round_order, match.position)
        out_of_shape = (
            match.round_order > rounds
            or match.position >= size >> match.round_order
            or slot in seen
        )
        seen.add(slot)
        if out_of_shape and match.is_empty and not match.has_winner and match.match_id is None:
            orphans.append(match)
    return orphans


class BracketReconciler:
    """
    Keeps a competition's persisted bracket in step with its qualified players.
    """

    def __init__(
        self,
        store: FixtureStore,
        drift_tolerance: Optional[int] = None,
        locks: Optional[CompetitionLocks] = None
    ):
        """
        Args:
            store: Fixture store to read and write through
            drift_tolerance: Max added and max removed players tolerated
                             without regeneration (defaults to config)
            locks: Lock registry (defaults to the shared one)
        """
        self.store = store
        self.drift_tolerance = (
            config.BRACKET_DRIFT_TOLERANCE if drift_tolerance is None else drift_tolerance
        )
        self.locks = locks or default_locks

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    def reconcile(
        self,
        competition_id: int,
        qualified: Optional[List[int]] = None
    ) -> ReconcileOutcome:
        """
        Bring the persisted bracket in line with the qualified players.

        Args:
            competition_id: The competition
            qualified: Qualified player ids; read from the store when omitted

        Returns:
            ReconcileOutcome describing the decision taken

        Raises:
            ValidationError: If fewer than two players qualify
        """
        with self.locks.hold(competition_id):
            if qualified is None:
                qualified = self.store.list_qualified_players(competition_id)
            qualified = sanitize_players(qualified)
            if len(qualified) < 2:
                raise ValidationError('not enough qualified players')

            existing = self.store.get_knockout_bracket(competition_id)
            if not existing:
                stored = self.store.replace_knockout_bracket(competition_id, build_bracket(qualified))
                logger.info(f"Created knockout bracket for competition {competition_id}")
                return self._outcome(competition_id, ReconcileAction.CREATED, stored)

            removed, added = player_drift(existing, qualified)
            mismatch = has_structure_mismatch(existing, expected_round_shapes(len(qualified)))

            if not mismatch and not removed and not added:
                logger.debug(f"Knockout bracket for competition {competition_id} is up to date")
                return self._outcome(competition_id, ReconcileAction.UNCHANGED, existing)

            if (
                not mismatch
                and len(removed) <= self.drift_tolerance
                and len(added) <= self.drift_tolerance
            ):
                logger.warning(
                    f"Tolerating roster drift for competition {competition_id} "
                    f"({len(added)} added, {len(removed)} removed)"
                )
                return self._outcome(
                    competition_id, ReconcileAction.TOLERATED, existing, removed, added
                )

            if mismatch:
                logger.warning(
                    f"Knockout structure for competition {competition_id} does not fit "
                    f"{len(qualified)} qualified players"
                )
            return self._regenerate(
                competition_id, qualified, existing, ReconcileAction.REGENERATED, removed, added
            )

    def shrink_after_removal(
        self,
        competition_id: int,
        qualified: Optional[List[int]] = None
    ) -> ReconcileOutcome:
        """
        Rebuild at a smaller size after a withdrawal, or tidy orphaned rows.

        A rebuild happens only when the qualified count now fits a strictly
        smaller bracket and no winner is recorded. Otherwise only orphaned
        empty rows are deleted; the tree's own matches are never touched.
        """
        with self.locks.hold(competition_id):
            if qualified is None:
                qualified = self.store.list_qualified_players(competition_id)
            qualified = sanitize_players(qualified)

            existing = self.store.get_knockout_bracket(competition_id)
            if not existing:
                return self._outcome(competition_id, ReconcileAction.UNCHANGED, existing)

            removed, added = player_drift(existing, qualified)
            current_size = persisted_bracket_size(existing)
            has_winners = any(m.has_winner for m in existing)

            if (
                len(qualified) >= 2
                and bracket_size(len(qualified)) < current_size
                and not has_winners
            ):
                logger.info(
                    f"Shrinking bracket for competition {competition_id} from {current_size} "
                    f"to {bracket_size(len(qualified))} slots"
                )
                return self._regenerate(
                    competition_id, qualified, existing, ReconcileAction.SHRUNK, removed, added
                )

            orphans = find_orphans(existing)
            if not orphans:
                return self._outcome(
                    competition_id, ReconcileAction.UNCHANGED, existing, removed, added
                )

            deleted = self.store.delete_knockout_matches(competition_id, [m.id for m in orphans])
            logger.info(f"Pruned {deleted} orphaned knockout rows for competition {competition_id}")
            return self._outcome(
                competition_id,
                ReconcileAction.PRUNED,
                self.store.get_knockout_bracket(competition_id),
                removed,
                added,
            )

    # =========================================================================
    # ROSTER SLOTS
    # =========================================================================

    def fill_open_slots(self, competition_id: int, player_ids: List[int]) -> List[int]:
        """
        Seat newly registered players in open first-round slots.

        Only first-round matches without a winner are used, in position order.
        If the match's existing player had been walked over into the next
        round, that walkover is withdrawn since the match now has to be played.

        Returns:
            Player ids that were seated
        """
        with self.locks.hold(competition_id):
            bracket = {m.id: m for m in self.store.get_knockout_bracket(competition_id)}
            seated_anywhere = set()
            for match in bracket.values():
                seated_anywhere |= match.players()

            seated = []
            for player_id in sanitize_players(player_ids):
                if player_id in seated_anywhere:
                    continue

                target = next(
                    (
                        m for m in sorted(bracket.values(), key=lambda m: m.position)
                        if m.round_order == 1 and not m.has_winner
                        and (m.player1_id is None or m.player2_id is None)
                    ),
                    None,
                )
                if target is None:
                    break

                field = 'player1_id' if target.player1_id is None else 'player2_id'
                if not self.store.update_knockout_match(target.id, {field: player_id}, {field: None}):
                    raise ConflictError(f"Knockout match {target.id} changed while seating players")
                bracket[target.id] = target.model_copy(update={field: player_id})
                seated.append(player_id)
                seated_anywhere.add(player_id)
                logger.info(f"Seated player {player_id} in knockout match {target.id} ({field})")

                opponent = target.player2_id if field == 'player1_id' else target.player1_id
                successor = bracket.get(target.next_match_id) if target.next_match_id else None
                # A walkover may have carried the opponent through several rounds
                while opponent is not None and successor is not None and not successor.has_winner:
                    slot = successor.slot_of(opponent)
                    if not slot:
                        break
                    slot_field = f'player{slot}_id'
                    self.store.update_knockout_match(
                        successor.id, {slot_field: None}, {slot_field: opponent}
                    )
                    bracket[successor.id] = successor.model_copy(update={slot_field: None})
                    logger.info(
                        f"Withdrew walkover of player {opponent} from knockout match {successor.id}"
                    )
                    successor = bracket.get(successor.next_match_id) if successor.next_match_id else None

            return seated

    def release_player(self, competition_id: int, player_id: int) -> int:
        """
        Clear a withdrawn player's slots in matches without a recorded winner.

        Returns:
            Number of slots cleared
        """
        cleared = 0
        with self.locks.hold(competition_id):
            for match in self.store.get_knockout_bracket(competition_id):
                if match.has_winner:
                    continue
                for slot in (1, 2):
                    field = f'player{slot}_id'
                    if getattr(match, field) != player_id:
                        continue
                    if self.store.update_knockout_match(match.id, {field: None}, {field: player_id}):
                        cleared += 1
                        logger.info(f"Released player {player_id} from knockout match {match.id} ({field})")
        return cleared

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _regenerate(
        self,
        competition_id: int,
        qualified: List[int],
        existing: List[KnockoutMatch],
        action: ReconcileAction,
        removed: List[int],
        added: List[int]
    ) -> ReconcileOutcome:
        if any(m.has_winner for m in existing):
            logger.warning(
                f"Not regenerating bracket for competition {competition_id}: results already recorded"
            )
            return self._outcome(competition_id, ReconcileAction.GUARDED, existing, removed, added)

        try:
            stored = self.store.replace_knockout_bracket(competition_id, build_bracket(qualified))
        except ConflictError as e:
            logger.warning(f"Bracket regeneration for competition {competition_id} refused: {e}")
            return self._outcome(
                competition_id,
                ReconcileAction.GUARDED,
                self.store.get_knockout_bracket(competition_id),
                removed,
                added,
            )

        logger.info(
            f"Regenerated bracket for competition {competition_id} "
            f"(removed: {len(removed)}, added: {len(added)})"
        )
        return self._outcome(competition_id, action, stored, removed, added)

    @staticmethod
    def _outcome(
        competition_id: int,
        action: ReconcileAction,
        matches: List[KnockoutMatch],
        removed: Optional[List[int]] = None,
        added: Optional[List[int]] = None
    ) -> ReconcileOutcome:
        return ReconcileOutcome(
            competition_id=competition_id,
            action=action,
            rounds=group_by_round(matches),
            removed=removed or [],
            added=added or [],
        )
