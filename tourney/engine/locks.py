"""Per-competition serialization of bracket and group mutations."""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class CompetitionLocks:
    """
    Registry of re-entrant locks keyed by competition id.

    Every read-decide-write sequence on one competition runs under its lock,
    so two requests cannot both observe the same empty successor slot.
    Re-entrant because service operations nest engine calls.
    """

    def __init__(self) -> None:
        self._locks: Dict[int, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, competition_id: int) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(competition_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[competition_id] = lock
            return lock

    @contextmanager
    def hold(self, competition_id: int) -> Iterator[None]:
        """Hold the competition's lock for the duration of the block."""
        with self.get(competition_id):
            yield


# Shared by every engine component unless one is injected
default_locks = CompetitionLocks()
