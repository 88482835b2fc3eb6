"""
Command-line interface for the tournament engine.

Each command runs one CompetitionService operation against the store
selected by DB_TYPE and prints the result as JSON.

Usage:
    python -m tourney create-competition "Spring Cup" --type group_knockout
    python -m tourney create-players alice bob carol dave
    python -m tourney add-players 1 1 2 3 4
    python -m tourney reconcile 1
    python -m tourney record 1 3 4 11 5 --stage semifinals
"""

import argparse
import json
import logging
import sys
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from . import config
from .exceptions import ConflictError, DependencyError, EngineError, NotFoundError, ValidationError
from .models import CompetitionType
from .services.competition_service import CompetitionService, result_summary

logger = logging.getLogger(__name__)

# Exit codes per error category
EXIT_CODES = {
    ValidationError: 2,
    NotFoundError: 3,
    ConflictError: 4,
    DependencyError: 5,
}


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode='json')
    if isinstance(value, (list, tuple)):
        return [_dump(v) for v in value]
    if isinstance(value, dict):
        return {k: _dump(v) for k, v in value.items()}
    return value


def _print_json(value: Any) -> None:
    print(json.dumps(_dump(value), indent=2, ensure_ascii=False))


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_create_competition(service: CompetitionService, args: argparse.Namespace) -> Any:
    return service.create_competition(
        args.name,
        CompetitionType(args.type),
        sets_type=args.sets,
        points_type=args.points,
    )


def cmd_create_players(service: CompetitionService, args: argparse.Namespace) -> Any:
    return service.create_players(args.nicknames)


def cmd_add_players(service: CompetitionService, args: argparse.Namespace) -> Any:
    return {'added': service.add_players(args.competition_id, args.player_ids)}


def cmd_remove_player(service: CompetitionService, args: argparse.Namespace) -> Any:
    return {'removed': service.remove_player(args.competition_id, args.player_id)}


def cmd_partition(service: CompetitionService, args: argparse.Namespace) -> Any:
    return service.partition_groups(args.competition_id, args.max_group_size)


def cmd_fixtures(service: CompetitionService, args: argparse.Namespace) -> Any:
    return {'created': service.generate_group_fixtures(args.group_id)}


def cmd_reconcile(service: CompetitionService, args: argparse.Namespace) -> Any:
    return service.reconcile_bracket(args.competition_id)


def cmd_bracket(service: CompetitionService, args: argparse.Namespace) -> Any:
    return service.get_bracket(args.competition_id)


def cmd_preview(service: CompetitionService, args: argparse.Namespace) -> Any:
    return service.build_bracket(args.player_ids)


def cmd_record(service: CompetitionService, args: argparse.Namespace) -> Any:
    recorded = service.record_match(
        args.competition_id,
        args.player1_id,
        args.player2_id,
        args.player1_score,
        args.player2_score,
        date=args.date,
        stage=args.stage,
    )
    return result_summary(recorded)


def cmd_next_matches(service: CompetitionService, args: argparse.Namespace) -> Any:
    return service.list_next_matches(args.competition_id)


def cmd_byes(service: CompetitionService, args: argparse.Namespace) -> Any:
    return {'seated': service.advance_byes(args.competition_id)}


def cmd_health(service: CompetitionService, args: argparse.Namespace) -> Any:
    return {'healthy': service.store.health_check()}


COMMANDS: Dict[str, Callable[[CompetitionService, argparse.Namespace], Any]] = {
    'create-competition': cmd_create_competition,
    'create-players': cmd_create_players,
    'add-players': cmd_add_players,
    'remove-player': cmd_remove_player,
    'partition': cmd_partition,
    'fixtures': cmd_fixtures,
    'reconcile': cmd_reconcile,
    'bracket': cmd_bracket,
    'preview': cmd_preview,
    'record': cmd_record,
    'next-matches': cmd_next_matches,
    'byes': cmd_byes,
    'health': cmd_health,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='tourney',
        description='Bracket and fixture generation for tournaments',
    )
    parser.add_argument('--log-level', default=None, help=f'Log level (default: {config.LOG_LEVEL})')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('create-competition', help='Create a competition')
    p.add_argument('name')
    p.add_argument('--type', choices=[t.value for t in CompetitionType], default='group_knockout')
    p.add_argument('--sets', type=int, default=None, help='Best-of sets')
    p.add_argument('--points', type=int, default=None, help='Points to win a set')

    p = sub.add_parser('create-players', help='Create players by nickname')
    p.add_argument('nicknames', nargs='+')

    p = sub.add_parser('add-players', help='Register players in a competition')
    p.add_argument('competition_id', type=int)
    p.add_argument('player_ids', type=int, nargs='+')

    p = sub.add_parser('remove-player', help='Withdraw a player from a competition')
    p.add_argument('competition_id', type=int)
    p.add_argument('player_id', type=int)

    p = sub.add_parser('partition', help='Rebuild groups and their fixtures')
    p.add_argument('competition_id', type=int)
    p.add_argument('--max-group-size', type=int, default=None)

    p = sub.add_parser('fixtures', help='Generate missing fixtures of a group')
    p.add_argument('group_id', type=int)

    p = sub.add_parser('reconcile', help='Create or reconcile the knockout bracket')
    p.add_argument('competition_id', type=int)

    p = sub.add_parser('bracket', help='Show the knockout bracket')
    p.add_argument('competition_id', type=int)

    p = sub.add_parser('preview', help='Build a bracket without storing it')
    p.add_argument('player_ids', type=int, nargs='+')

    p = sub.add_parser('record', help='Record a played match')
    p.add_argument('competition_id', type=int)
    p.add_argument('player1_id', type=int)
    p.add_argument('player2_id', type=int)
    p.add_argument('player1_score', type=int)
    p.add_argument('player2_score', type=int)
    p.add_argument('--stage', default=None, help='Knockout round name')
    p.add_argument('--date', default=None)

    p = sub.add_parser('next-matches', help='List unplayed fixtures')
    p.add_argument('competition_id', type=int)

    p = sub.add_parser('byes', help='Advance bye players')
    p.add_argument('competition_id', type=int)

    sub.add_parser('health', help='Check the store connection')

    return parser


def main(argv: Optional[List[str]] = None, service: Optional[CompetitionService] = None) -> int:
    """
    Run one command.

    Returns:
        Process exit code: 0 on success, 2-5 per error category, 1 otherwise
    """
    args = build_parser().parse_args(argv)
    config.setup_logging(args.log_level)

    try:
        service = service or CompetitionService()
        _print_json(COMMANDS[args.command](service, args))
    except EngineError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"error: {e}", file=sys.stderr)
        for error_type, code in EXIT_CODES.items():
            if isinstance(e, error_type):
                return code
        return 1
    return 0
