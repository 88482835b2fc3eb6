"""
Group standings for stores without a ranking procedure.

Played fixtures between members score 3 points for a win, 1 for a draw and
0 for a loss. Ties break on score difference, then wins, then player id.
"""

from typing import Dict, Iterable, List

from ..models import Group, Match
from ..types import StandingDict

WIN_POINTS = 3
DRAW_POINTS = 1


def compute_standings(member_ids: Iterable[int], fixtures: Iterable[Match]) -> List[StandingDict]:
    """
    Build a ranked table for one group.

    Fixtures involving non-members are ignored.
    """
    table: Dict[int, StandingDict] = {}
    for player_id in member_ids:
        table.setdefault(player_id, {
            'player_id': player_id,
            'played': 0,
            'wins': 0,
            'draws': 0,
            'losses': 0,
            'points': 0,
            'score_for': 0,
            'score_against': 0,
            'ranking': 0,
        })

    for match in fixtures:
        if not match.is_played:
            continue
        home = table.get(match.player1_id)
        away = table.get(match.player2_id)
        if home is None or away is None:
            continue

        for line, scored, conceded in (
            (home, match.player1_score, match.player2_score),
            (away, match.player2_score, match.player1_score),
        ):
            line['played'] += 1
            line['score_for'] += scored
            line['score_against'] += conceded
            if scored > conceded:
                line['wins'] += 1
                line['points'] += WIN_POINTS
            elif scored == conceded:
                line['draws'] += 1
                line['points'] += DRAW_POINTS
            else:
                line['losses'] += 1

    ranked = sorted(
        table.values(),
        key=lambda s: (
            -s['points'],
            -(s['score_for'] - s['score_against']),
            -s['wins'],
            s['player_id'],
        )
    )
    for position, line in enumerate(ranked, start=1):
        line['ranking'] = position
    return ranked


def qualified_from_groups(
    groups: List[Group],
    fixtures_by_group: Dict[int, List[Match]],
    per_group: int
) -> List[int]:
    """Top `per_group` players of each group, group by group."""
    qualified: List[int] = []
    seen = set()
    for group in groups:
        table = compute_standings(group.player_ids, fixtures_by_group.get(group.id, []))
        for line in table[:per_group]:
            if line['player_id'] not in seen:
                seen.add(line['player_id'])
                qualified.append(line['player_id'])
    return qualified
