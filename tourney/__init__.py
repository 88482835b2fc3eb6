"""Bracket and fixture generation engine for tournaments."""

__version__ = "1.0.0"
