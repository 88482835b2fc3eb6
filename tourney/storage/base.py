"""
Abstract base class defining the Fixture Store interface.

All store implementations must inherit from this class and implement
all abstract methods. This ensures consistent behavior across backends.
The engine only reads and writes through this interface; it does not own
persistence.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any

from ..models import (
    BracketRound,
    Competition,
    CompetitionType,
    Group,
    GroupDraft,
    GroupMember,
    KnockoutMatch,
    Match,
    Player,
)
from ..types import PlayerInputDict

# Columns of a knockout match that may be written after creation
KNOCKOUT_MUTABLE_FIELDS = frozenset({
    'player1_id',
    'player2_id',
    'player1_score',
    'player2_score',
    'winner_id',
    'next_match_id',
    'match_id',
})


def check_knockout_fields(fields: Dict[str, Any]) -> None:
    """Reject writes to columns outside KNOCKOUT_MUTABLE_FIELDS."""
    unknown = set(fields) - KNOCKOUT_MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update knockout columns: {sorted(unknown)}")


class FixtureStore(ABC):
    """
    Abstract interface for tournament storage.

    All methods must be implemented by concrete store classes.
    Methods should be thread-safe where applicable.
    """

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @abstractmethod
    def initialize(self) -> None:
        """
        Initialize the connection and schema.

        Called once when the store is first created.
        Should be idempotent (safe to call multiple times).
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close connections and clean up resources."""
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """
        Check if the store is reachable.

        Returns:
            True if the store is accessible, False otherwise
        """
        pass

    # =========================================================================
    # COMPETITIONS & PLAYERS
    # =========================================================================

    @abstractmethod
    def get_competition(self, competition_id: int) -> Optional[Competition]:
        """Get a competition by id, or None if it does not exist."""
        pass

    @abstractmethod
    def create_competition(
        self,
        name: str,
        type: CompetitionType,
        sets_type: Optional[int] = None,
        points_type: Optional[int] = None,
        management: Optional[str] = None
    ) -> Competition:
        """Create a competition and return it with its assigned id."""
        pass

    @abstractmethod
    def create_players(self, players: List[PlayerInputDict]) -> List[Player]:
        """
        Create players.

        Args:
            players: Dicts with 'nickname' and optionally 'name', 'lastname',
                     'image_url', 'auth_user_id'

        Returns:
            Created players, in input order
        """
        pass

    @abstractmethod
    def list_competition_players(self, competition_id: int) -> List[int]:
        """Registered player ids of a competition, ordered by id."""
        pass

    @abstractmethod
    def add_competition_players(self, competition_id: int, player_ids: List[int]) -> int:
        """
        Register players in a competition.

        Already registered players are ignored.

        Returns:
            Number of newly registered players
        """
        pass

    @abstractmethod
    def remove_competition_player(self, competition_id: int, player_id: int) -> bool:
        """
        Unregister a player from a competition.

        Returns:
            True if the player was registered
        """
        pass

    @abstractmethod
    def list_qualified_players(
        self,
        competition_id: int,
        per_group: Optional[int] = None
    ) -> List[int]:
        """
        Players qualified for the knockout stage.

        For group_knockout competitions: the top `per_group` players of each
        group by standings, group by group. For elimination competitions:
        every registered player.

        Args:
            competition_id: The competition
            per_group: Players advancing per group (defaults to config)

        Returns:
            Ordered, de-duplicated player ids
        """
        pass

    # =========================================================================
    # KNOCKOUT BRACKET
    # =========================================================================

    @abstractmethod
    def get_knockout_bracket(self, competition_id: int) -> List[KnockoutMatch]:
        """
        Get every knockout match of a competition.

        Returns:
            Matches ordered by round_order, position, id
        """
        pass

    @abstractmethod
    def replace_knockout_bracket(
        self,
        competition_id: int,
        rounds: List[BracketRound]
    ) -> List[KnockoutMatch]:
        """
        Replace the persisted bracket with a freshly built one.

        Behavior:
            - Re-check recorded winners inside the write boundary and raise
              ConflictError if any match already has a winner_id
            - Delete the old matches, insert the new ones with their
              round/position, then resolve each next_match_key to the id
              assigned to the corresponding new match

        Returns:
            The new bracket, as get_knockout_bracket would return it
        """
        pass

    @abstractmethod
    def update_knockout_match(
        self,
        match_id: int,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Update columns of one knockout match.

        Args:
            match_id: Knockout match id
            fields: Columns to write (see KNOCKOUT_MUTABLE_FIELDS)
            expected: Optional column values the row must still hold;
                      None values match NULL. Makes the write conditional.

        Returns:
            True if the row was updated, False if it was missing or no
            longer matched `expected`
        """
        pass

    @abstractmethod
    def delete_knockout_matches(self, competition_id: int, match_ids: List[int]) -> int:
        """
        Delete knockout matches that carry no recorded winner.

        Returns:
            Number of rows deleted
        """
        pass

    # =========================================================================
    # GROUPS
    # =========================================================================

    @abstractmethod
    def get_group(self, group_id: int) -> Optional[Group]:
        """Get a group with its members, or None."""
        pass

    @abstractmethod
    def list_groups(self, competition_id: int) -> List[Group]:
        """Groups of a competition with members, ordered by id."""
        pass

    @abstractmethod
    def list_group_members(self, competition_id: int) -> List[GroupMember]:
        """Membership rows of every group of a competition."""
        pass

    @abstractmethod
    def replace_group_partition(
        self,
        competition_id: int,
        groups: List[GroupDraft]
    ) -> List[Group]:
        """
        Replace all groups and memberships of a competition.

        Behavior:
            - Delete unplayed fixtures of the old groups
            - Delete old memberships and groups, create the new ones
            - Re-home played fixtures to the new group holding both players,
              or detach them (group_id NULL) when the players were split

        Returns:
            The new groups
        """
        pass

    # =========================================================================
    # FIXTURES
    # =========================================================================

    @abstractmethod
    def list_group_fixtures(self, group_id: int) -> List[Match]:
        """Every fixture of a group, played or not, ordered by id."""
        pass

    @abstractmethod
    def insert_fixtures(self, fixtures: List[Match]) -> List[Match]:
        """Insert fixtures and return them with ids."""
        pass

    @abstractmethod
    def insert_match(self, match: Match) -> Match:
        """Insert a realized match and return it with its id."""
        pass

    @abstractmethod
    def update_match_scores(
        self,
        match_id: int,
        player1_score: int,
        player2_score: int,
        date: Optional[str] = None
    ) -> Optional[Match]:
        """Record scores on an existing fixture. Returns None if missing."""
        pass

    @abstractmethod
    def list_next_matches(self, competition_id: int) -> List[Match]:
        """Unplayed fixtures of a competition, ordered by date then id."""
        pass

    @abstractmethod
    def apply_match_rating(self, match: Match, k_factor: int) -> bool:
        """
        Hand a committed result to the external rating procedure.

        Returns:
            True if the backend applied a rating update
        """
        pass

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    @abstractmethod
    def clear_all(self) -> None:
        """
        Delete all data from the store.

        Used for testing. Does not drop tables/schema, just data.
        """
        pass
