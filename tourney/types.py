"""
Type definitions for the tournament engine.

Provides TypedDict classes for raw row payloads exchanged with the stores.
"""

from typing import TypedDict, Optional


class PlayerInputDict(TypedDict, total=False):
    """Player fields accepted by FixtureStore.create_players."""
    nickname: str
    name: Optional[str]
    lastname: Optional[str]
    image_url: Optional[str]
    auth_user_id: Optional[str]


class StandingDict(TypedDict):
    """One player's line in a group table."""
    player_id: int
    played: int
    wins: int
    draws: int
    losses: int
    points: int
    score_for: int
    score_against: int
    ranking: int


class GroupStatsRowDict(TypedDict, total=False):
    """
    Row returned by the fn_get_groups_with_stats procedure.

    One row per group member, already ranked within its group.
    """
    group_id: int
    group_name: str
    player_id: int
    ranking: int
    points: int
