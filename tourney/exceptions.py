"""
Engine exceptions.

Error categories reported by the bracket and fixture engine:
- ValidationError: malformed or missing identifiers, too few qualified players
- ConflictError: regeneration over recorded results, slot contention
- NotFoundError: no bracket/group/fixture for the given reference
- DependencyError: Fixture Store read/write failure
"""


class EngineError(Exception):
    """Base exception for all engine errors."""
    pass


class ValidationError(EngineError):
    """Input rejected before touching the store."""
    pass


class ConflictError(EngineError):
    """Operation would overwrite recorded results or lost a write race."""
    pass


class NotFoundError(EngineError):
    """Referenced competition, group or match does not exist."""
    pass


class DependencyError(EngineError):
    """Fixture Store failure. Surfaced to the caller, never retried here."""
    pass
