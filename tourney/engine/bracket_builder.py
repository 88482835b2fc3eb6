"""
Single-elimination bracket synthesis.

Pure functions: qualified player ids in, an immutable tree of rounds out.
Byes are appended after the real players and round-1 pairing is positional,
so slots 2i and 2i+1 meet in match i. Later rounds are placeholders filled
by winner propagation; every match except the final names the match that
receives its winner.
"""

import logging
from typing import Iterable, Optional

from ..exceptions import ValidationError
from ..models.bracket import BracketMatch, BracketRound, RoundShape

logger = logging.getLogger(__name__)

# Indexed by distance from the final
ROUND_NAMES = (
    'final',
    'semifinals',
    'quarterfinals',
    'one_eighth_finals',
    'one_sixteenth_finals',
    'one_thirty_second_finals',
    'one_sixty_fourth_finals',
)


def sanitize_players(player_ids: Iterable[Optional[int]]) -> list[int]:
    """Drop empty and duplicate ids, keeping first-seen order."""
    seen = set()
    result = []
    for player_id in player_ids:
        if player_id is None or player_id == '' or player_id in seen:
            continue
        seen.add(player_id)
        result.append(player_id)
    return result


def bracket_size(player_count: int) -> int:
    """Smallest power of two holding `player_count` players (at least 2)."""
    count = max(player_count, 2)
    return 1 << (count - 1).bit_length()


def total_rounds(size: int) -> int:
    return size.bit_length() - 1


def round_name(order: int, rounds: int) -> str:
    """
    Name a round by its distance from the final.

    Args:
        order: 1-based round order (1 = earliest)
        rounds: Total number of rounds in the bracket
    """
    distance = rounds - order
    if 0 <= distance < len(ROUND_NAMES):
        return ROUND_NAMES[distance]
    return f'round_{order}'


def match_key(order: int, match_index: int) -> str:
    return f'R{order}M{match_index + 1}'


def expected_round_shapes(player_count: int) -> list[RoundShape]:
    """Round order, name and match count the builder produces for a count."""
    if player_count < 2:
        return []

    size = bracket_size(player_count)
    rounds = total_rounds(size)
    return [
        RoundShape(
            order=index + 1,
            name=round_name(index + 1, rounds),
            match_count=size >> (index + 1),
        )
        for index in range(rounds)
    ]


def build_bracket(player_ids: Iterable[Optional[int]]) -> list[BracketRound]:
    """
    Build a complete knockout tree for the qualified players.

    Args:
        player_ids: Qualified player ids in seeding order

    Returns:
        Rounds ordered from the first round to the final

    Raises:
        ValidationError: If fewer than two distinct players qualify
    """
    players = sanitize_players(player_ids)
    if len(players) < 2:
        raise ValidationError('not enough qualified players')

    size = bracket_size(len(players))
    rounds = total_rounds(size)
    slots: list[Optional[int]] = players + [None] * (size - len(players))

    result = []
    for round_index in range(rounds):
        order = round_index + 1
        match_count = size >> order
        is_last = round_index == rounds - 1
        matches = []

        for match_index in range(match_count):
            if round_index == 0:
                player1 = slots[2 * match_index]
                player2 = slots[2 * match_index + 1]
                is_bye = player1 is None or player2 is None
            else:
                player1 = player2 = None
                is_bye = False

            matches.append(BracketMatch(
                key=match_key(order, match_index),
                round_index=round_index,
                match_index=match_index,
                player1_id=player1,
                player2_id=player2,
                next_match_key=None if is_last else match_key(order + 1, match_index // 2),
                is_bye=is_bye,
            ))

        result.append(BracketRound(
            name=round_name(order, rounds),
            order=order,
            matches=tuple(matches),
        ))

    logger.info(
        f"Built bracket of size {size} for {len(players)} players "
        f"({size - len(players)} byes, {rounds} rounds)"
    )
    return result
