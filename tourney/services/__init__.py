"""Services for the tournament engine."""

from tourney.services.competition_service import CompetitionService

__all__ = ["CompetitionService"]
