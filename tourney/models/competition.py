"""Competition and group data models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator


class CompetitionType(str, Enum):
    """Format of a competition; decides which sub-engines apply."""

    LEAGUE = "league"
    ELIMINATION = "elimination"
    GROUP_KNOCKOUT = "group_knockout"

    @property
    def has_bracket(self) -> bool:
        return self in (CompetitionType.ELIMINATION, CompetitionType.GROUP_KNOCKOUT)

    @property
    def has_groups(self) -> bool:
        return self is CompetitionType.GROUP_KNOCKOUT


class Competition(BaseModel):
    """Represents a competition and its match shape."""

    id: int
    name: str = ""
    type: CompetitionType
    sets_type: Optional[int] = None  # best-of
    points_type: Optional[int] = None  # points-to-win
    management: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value):
        # Older rows carry "group_knockouts"
        if isinstance(value, str):
            value = value.strip().lower()
            if value == "group_knockouts":
                return CompetitionType.GROUP_KNOCKOUT
        return value


class Group(BaseModel):
    """A group of one competition with its ordered members."""

    id: int
    competition_id: int
    name: str
    player_ids: list[int] = []


class GroupMember(BaseModel):
    """One row of the group membership relation."""

    group_id: int
    player_id: int


class GroupDraft(BaseModel):
    """A group computed by the partitioner, not yet persisted."""

    name: str
    player_ids: list[int]

    class Config:
        """Pydantic configuration."""

        frozen = True
