"""Bracket and fixture generation engine."""

from tourney.engine.bracket_builder import (
    bracket_size,
    build_bracket,
    expected_round_shapes,
    round_name,
)
from tourney.engine.locks import CompetitionLocks, default_locks
from tourney.engine.partitioner import GroupPartitioner, partition_players
from tourney.engine.propagator import WinnerPropagator
from tourney.engine.reconciler import (
    BracketReconciler,
    ReconcileAction,
    ReconcileOutcome,
    group_by_round,
)
from tourney.engine.round_robin import RoundRobinGenerator, missing_pairings

__all__ = [
    "bracket_size",
    "build_bracket",
    "expected_round_shapes",
    "round_name",
    "CompetitionLocks",
    "default_locks",
    "GroupPartitioner",
    "partition_players",
    "WinnerPropagator",
    "BracketReconciler",
    "ReconcileAction",
    "ReconcileOutcome",
    "group_by_round",
    "RoundRobinGenerator",
    "missing_pairings",
]
