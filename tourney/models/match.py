"""Fixture and knockout match data models."""

from typing import Optional
from pydantic import BaseModel


class Match(BaseModel):
    """
    A group/league fixture or a realized knockout match.

    Scores are None until the match is played.
    """

    id: Optional[int] = None
    competition_id: int
    group_id: Optional[int] = None
    player1_id: int
    player2_id: int
    player1_score: Optional[int] = None
    player2_score: Optional[int] = None
    date: Optional[str] = None
    created: Optional[str] = None
    stage: Optional[str] = None  # knockout round name

    @property
    def is_played(self) -> bool:
        return self.player1_score is not None and self.player2_score is not None

    def pair_key(self) -> tuple[int, int]:
        """Slot-order independent key of the two players."""
        return (min(self.player1_id, self.player2_id), max(self.player1_id, self.player2_id))


class KnockoutMatch(BaseModel):
    """
    One node of a persisted knockout bracket.

    `next_match_id` points at the match receiving this match's winner.
    A non-null `winner_id` marks a recorded result, which reconciliation
    never deletes or reassigns.
    """

    id: int
    competition_id: int
    round_name: str
    round_order: int
    position: int = 0
    player1_id: Optional[int] = None
    player2_id: Optional[int] = None
    player1_score: Optional[int] = None
    player2_score: Optional[int] = None
    winner_id: Optional[int] = None
    next_match_id: Optional[int] = None
    match_id: Optional[int] = None

    def players(self) -> set[int]:
        """Players currently seated in this match."""
        return {p for p in (self.player1_id, self.player2_id) if p is not None}

    def slot_of(self, player_id: int) -> Optional[int]:
        """Slot number (1 or 2) holding the player, if any."""
        if self.player1_id == player_id:
            return 1
        if self.player2_id == player_id:
            return 2
        return None

    def has_pair(self, player_a: int, player_b: int) -> bool:
        return {self.player1_id, self.player2_id} == {player_a, player_b}

    @property
    def is_empty(self) -> bool:
        return self.player1_id is None and self.player2_id is None

    @property
    def has_winner(self) -> bool:
        return self.winner_id is not None


class KnockoutRound(BaseModel):
    """Persisted bracket matches of one round, in position order."""

    name: str
    order: int
    matches: list[KnockoutMatch] = []


class KnockoutMatchRef(BaseModel):
    """
    Identifies the knockout match a result belongs to.

    Either `knockout_match_id` or `round_name` plus the two players. The
    players may be given in any slot order.
    """

    competition_id: int
    player1_id: int
    player2_id: int
    round_name: Optional[str] = None
    knockout_match_id: Optional[int] = None
    match_id: Optional[int] = None  # realized fixture to link


class KnockoutResult(BaseModel):
    """Outcome of recording a knockout result."""

    updated_match: KnockoutMatch
    propagated: bool = False
    successor_id: Optional[int] = None
    warning: Optional[str] = None  # "tie" or "successor_full"


class RecordedMatch(BaseModel):
    """A committed match result and what it triggered."""

    match: Match
    knockout: Optional[KnockoutResult] = None
    rating_applied: bool = False
