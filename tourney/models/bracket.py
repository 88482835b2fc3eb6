"""Immutable bracket values produced by the bracket builder."""

from typing import Optional
from pydantic import BaseModel


class BracketMatch(BaseModel):
    """A synthesized match, linked to its successor by key."""

    key: str
    round_index: int
    match_index: int
    player1_id: Optional[int] = None
    player2_id: Optional[int] = None
    next_match_key: Optional[str] = None
    is_bye: bool = False

    class Config:
        """Pydantic configuration."""

        frozen = True


class BracketRound(BaseModel):
    """A named round of a synthesized bracket."""

    name: str
    order: int
    matches: tuple[BracketMatch, ...]

    class Config:
        """Pydantic configuration."""

        frozen = True


class RoundShape(BaseModel):
    """Expected name and size of one round for a given player count."""

    order: int
    name: str
    match_count: int

    class Config:
        """Pydantic configuration."""

        frozen = True
