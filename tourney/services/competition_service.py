"""
Competition Service - Entry point for bracket and fixture operations.

Wires the engine components to one Fixture Store and applies the
competition-type rules: which formats have groups, which have a bracket,
and what has to be regenerated after a roster change or a result.
Every mutating operation holds the competition's lock, so the engine calls
it makes run as one serialized sequence.
"""

import logging
import random
from typing import Any, Dict, List, Optional, Tuple

from ..engine import bracket_builder
from ..engine.bracket_builder import sanitize_players
from ..engine.locks import CompetitionLocks, default_locks
from ..engine.partitioner import GroupPartitioner
from ..engine.propagator import WinnerPropagator
from ..engine.reconciler import BracketReconciler, ReconcileAction, ReconcileOutcome, group_by_round
from ..engine.round_robin import RoundRobinGenerator, pair_key
from ..exceptions import DependencyError, NotFoundError, ValidationError
from ..models import (
    BracketRound,
    Competition,
    CompetitionType,
    Group,
    KnockoutMatchRef,
    KnockoutResult,
    KnockoutRound,
    Match,
    Player,
    RecordedMatch,
)
from ..storage import FixtureStore, get_store
from .. import config

logger = logging.getLogger(__name__)

# Reconcile outcomes after which bye players still have to walk over
_FRESH_BRACKET = (ReconcileAction.CREATED, ReconcileAction.REGENERATED, ReconcileAction.SHRUNK)


class CompetitionService:
    """
    Service layer over the bracket and fixture engine.
    Uses the store factory unless a store is injected.
    """

    def __init__(
        self,
        store: Optional[FixtureStore] = None,
        locks: Optional[CompetitionLocks] = None,
        rng: Optional[random.Random] = None
    ):
        self.store: FixtureStore = store or get_store()
        self.locks = locks or default_locks

        self.reconciler = BracketReconciler(self.store, locks=self.locks)
        self.propagator = WinnerPropagator(self.store, locks=self.locks)
        self.round_robin = RoundRobinGenerator(self.store, locks=self.locks)
        self.partitioner = GroupPartitioner(self.store, rng=rng, locks=self.locks)

    # =========================================================================
    # SETUP
    # =========================================================================

    def create_competition(
        self,
        name: str,
        type: CompetitionType,
        sets_type: Optional[int] = None,
        points_type: Optional[int] = None,
        management: Optional[str] = None
    ) -> Competition:
        competition = self.store.create_competition(name, type, sets_type, points_type, management)
        logger.info(f"Created {competition.type.value} competition {competition.id} ({name})")
        return competition

    def create_players(self, nicknames: List[str]) -> List[Player]:
        return self.store.create_players([{'nickname': n} for n in nicknames])

    # =========================================================================
    # KNOCKOUT STAGE
    # =========================================================================

    def build_bracket(self, qualified_ids: List[int]) -> List[BracketRound]:
        """Build a bracket without persisting it."""
        return bracket_builder.build_bracket(qualified_ids)

    def reconcile_bracket(self, competition_id: int) -> ReconcileOutcome:
        """
        Create, keep or regenerate the competition's bracket.

        Raises:
            NotFoundError: Unknown competition
            ValidationError: Competition has no knockout stage, or fewer than
                             two players qualify
        """
        competition = self._competition(competition_id)
        if not competition.type.has_bracket:
            raise ValidationError(
                f"Competition {competition_id} is a {competition.type.value} and has no bracket"
            )

        with self.locks.hold(competition_id):
            outcome = self.reconciler.reconcile(competition_id)
            if outcome.action in _FRESH_BRACKET:
                outcome = self._after_walkovers(outcome)
        return outcome

    def record_knockout_result(
        self,
        ref: KnockoutMatchRef,
        scores: Tuple[int, int]
    ) -> KnockoutResult:
        """Record a knockout result, advance the winner and any walkovers it unlocks."""
        with self.locks.hold(ref.competition_id):
            result = self.propagator.record_result(ref, scores)
            if result.propagated:
                self.propagator.advance_byes(ref.competition_id)
        return result

    def get_bracket(self, competition_id: int) -> List[KnockoutRound]:
        self._competition(competition_id)
        return group_by_round(self.store.get_knockout_bracket(competition_id))

    def advance_byes(self, competition_id: int) -> int:
        self._competition(competition_id)
        return self.propagator.advance_byes(competition_id)

    # =========================================================================
    # GROUP STAGE
    # =========================================================================

    def generate_group_fixtures(self, group_id: int) -> int:
        """
        Create the missing round-robin fixtures of one group.

        Returns:
            Number of fixtures created
        """
        return len(self.round_robin.generate_for_group_id(group_id))

    def partition_groups(
        self,
        competition_id: int,
        max_group_size: Optional[int] = None
    ) -> List[Group]:
        """
        Re-partition the registered players into groups and generate fixtures.

        Raises:
            ValidationError: Competition has no group stage or bad group size
        """
        competition = self._competition(competition_id)
        if not competition.type.has_groups:
            raise ValidationError(
                f"Competition {competition_id} is a {competition.type.value} and has no groups"
            )

        with self.locks.hold(competition_id):
            groups = self.partitioner.rebuild(competition_id, max_group_size)
            self.round_robin.generate_for_competition(competition_id)
        return groups

    # =========================================================================
    # ROSTER
    # =========================================================================

    def add_players(self, competition_id: int, player_ids: List[int]) -> int:
        """
        Register players and update groups or bracket.

        group_knockout: groups are rebuilt and fixtures generated.
        elimination: newcomers take open first-round slots, then the bracket
        is reconciled.

        Returns:
            Number of newly registered players
        """
        player_ids = sanitize_players(player_ids)
        if not player_ids:
            raise ValidationError('no player ids given')
        competition = self._competition(competition_id)

        with self.locks.hold(competition_id):
            added = self.store.add_competition_players(competition_id, player_ids)
            logger.info(f"Registered {added} players in competition {competition_id}")

            if competition.type is CompetitionType.GROUP_KNOCKOUT:
                self.partitioner.rebuild(competition_id)
                self.round_robin.generate_for_competition(competition_id)

            elif competition.type is CompetitionType.ELIMINATION:
                self.reconciler.fill_open_slots(competition_id, player_ids)
                if len(self.store.list_competition_players(competition_id)) >= 2:
                    outcome = self.reconciler.reconcile(competition_id)
                    logger.info(f"Bracket after registration: {outcome.action.value}")
                    self.propagator.advance_byes(competition_id)

        return added

    def remove_player(self, competition_id: int, player_id: int) -> bool:
        """
        Unregister a player and update groups or bracket.

        Returns:
            False if the player was not registered
        """
        if player_id is None:
            raise ValidationError('player id is required')
        competition = self._competition(competition_id)

        with self.locks.hold(competition_id):
            if not self.store.remove_competition_player(competition_id, player_id):
                return False
            logger.info(f"Removed player {player_id} from competition {competition_id}")

            if competition.type.has_groups:
                self.partitioner.rebuild(competition_id)
                self.round_robin.generate_for_competition(competition_id)

            if competition.type.has_bracket:
                released = self.reconciler.release_player(competition_id, player_id)
                outcome = self.reconciler.shrink_after_removal(competition_id)
                logger.info(
                    f"Released {released} bracket slots; bracket {outcome.action.value}"
                )
                # The withdrawn player's opponents may now have a walkover
                self.propagator.advance_byes(competition_id)

        return True

    # =========================================================================
    # RESULTS
    # =========================================================================

    def record_match(
        self,
        competition_id: int,
        player1_id: int,
        player2_id: int,
        player1_score: int,
        player2_score: int,
        date: Optional[str] = None,
        stage: Optional[str] = None
    ) -> RecordedMatch:
        """
        Persist a played match and apply its consequences.

        Without a stage the result fills the pending group fixture of the
        pair, or is stored as a new fixture. With a stage the result is first
        recorded and propagated in the bracket; only then is the realized
        fixture stored, or updated in place when the result is a correction.
        Newly created fixtures are handed to the store's rating procedure.
        """
        if player1_id is None or player2_id is None or player1_id == player2_id:
            raise ValidationError('two distinct players are required')
        if player1_score is None or player2_score is None:
            raise ValidationError('both scores are required')
        self._competition(competition_id)

        knockout = None
        created = True
        with self.locks.hold(competition_id):
            if stage is None:
                match = self._fill_group_fixture(
                    competition_id, player1_id, player2_id, player1_score, player2_score, date
                )
            else:
                ref = KnockoutMatchRef(
                    competition_id=competition_id,
                    player1_id=player1_id,
                    player2_id=player2_id,
                    round_name=stage,
                )
                # The fixture is written only once the bracket accepted the result
                knockout = self.record_knockout_result(ref, (player1_score, player2_score))
                match, created = self._realize_knockout_match(knockout, date, stage)
                knockout = knockout.model_copy(update={
                    'updated_match': knockout.updated_match.model_copy(update={'match_id': match.id})
                })

        if not created:
            logger.info(f"Match {match.id} corrected; rating is not applied again")
        return RecordedMatch(
            match=match,
            knockout=knockout,
            rating_applied=created and self._apply_rating(match),
        )

    def list_next_matches(self, competition_id: int) -> List[Match]:
        self._competition(competition_id)
        return self.store.list_next_matches(competition_id)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _competition(self, competition_id: int) -> Competition:
        if competition_id is None:
            raise ValidationError('competition id is required')
        competition = self.store.get_competition(competition_id)
        if competition is None:
            raise NotFoundError(f"Competition {competition_id} not found")
        return competition

    def _after_walkovers(self, outcome: ReconcileOutcome) -> ReconcileOutcome:
        if self.propagator.advance_byes(outcome.competition_id) == 0:
            return outcome
        return outcome.model_copy(update={
            'rounds': group_by_round(self.store.get_knockout_bracket(outcome.competition_id))
        })

    def _fill_group_fixture(
        self,
        competition_id: int,
        player1_id: int,
        player2_id: int,
        player1_score: int,
        player2_score: int,
        date: Optional[str]
    ) -> Match:
        group_id = None
        for group in self.store.list_groups(competition_id):
            if player1_id not in group.player_ids or player2_id not in group.player_ids:
                continue
            group_id = group.id
            for fixture in self.store.list_group_fixtures(group.id):
                if fixture.is_played or fixture.pair_key() != pair_key(player1_id, player2_id):
                    continue
                if fixture.player1_id == player1_id:
                    scores = (player1_score, player2_score)
                else:
                    scores = (player2_score, player1_score)
                updated = self.store.update_match_scores(fixture.id, *scores, date=date)
                if updated is not None:
                    return updated

        return self.store.insert_match(Match(
            competition_id=competition_id,
            group_id=group_id,
            player1_id=player1_id,
            player2_id=player2_id,
            player1_score=player1_score,
            player2_score=player2_score,
            date=date,
        ))

    def _realize_knockout_match(
        self,
        result: KnockoutResult,
        date: Optional[str],
        stage: str
    ) -> Tuple[Match, bool]:
        """
        Store a recorded knockout result as a fixture, in bracket slot order.

        A correction updates the fixture already linked to the knockout match.

        Returns:
            (fixture, True if it was created)
        """
        target = result.updated_match
        if target.match_id is not None:
            match = self.store.update_match_scores(
                target.match_id, target.player1_score, target.player2_score, date=date
            )
            if match is not None:
                return match, False

        match = self.store.insert_match(Match(
            competition_id=target.competition_id,
            player1_id=target.player1_id,
            player2_id=target.player2_id,
            player1_score=target.player1_score,
            player2_score=target.player2_score,
            date=date,
            stage=stage,
        ))
        linked = self.store.update_knockout_match(
            target.id, {'match_id': match.id}, {'match_id': target.match_id}
        )
        if not linked:
            logger.warning(
                f"Knockout match {target.id} was relinked concurrently; match {match.id} left unlinked"
            )
        return match, True

    def _apply_rating(self, match: Match) -> bool:
        if not config.RATING_ENABLED:
            return False
        try:
            return self.store.apply_match_rating(match, config.RATING_K_FACTOR)
        except DependencyError as e:
            # The result is already committed; ratings can be replayed later
            logger.error(f"Rating update failed for match {match.id}: {e}")
            return False


def result_summary(recorded: RecordedMatch) -> Dict[str, Any]:
    """Flat dict describing a recorded match, for CLI output."""
    summary: Dict[str, Any] = {
        'match_id': recorded.match.id,
        'group_id': recorded.match.group_id,
        'stage': recorded.match.stage,
        'rating_applied': recorded.rating_applied,
    }
    if recorded.knockout is not None:
        summary.update({
            'knockout_match_id': recorded.knockout.updated_match.id,
            'winner_id': recorded.knockout.updated_match.winner_id,
            'propagated': recorded.knockout.propagated,
            'successor_id': recorded.knockout.successor_id,
            'warning': recorded.knockout.warning,
        })
    return summary
