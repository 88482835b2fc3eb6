"""Data models for the tournament engine."""

from tourney.models.bracket import BracketMatch, BracketRound, RoundShape
from tourney.models.competition import (
    Competition,
    CompetitionType,
    Group,
    GroupDraft,
    GroupMember,
)
from tourney.models.match import (
    KnockoutMatch,
    KnockoutMatchRef,
    KnockoutResult,
    KnockoutRound,
    Match,
    RecordedMatch,
)
from tourney.models.player import Player

__all__ = [
    "BracketMatch",
    "BracketRound",
    "RoundShape",
    "Competition",
    "CompetitionType",
    "Group",
    "GroupDraft",
    "GroupMember",
    "KnockoutMatch",
    "KnockoutMatchRef",
    "KnockoutResult",
    "KnockoutRound",
    "Match",
    "RecordedMatch",
    "Player",
]
