from contextlib import contextmanager
import threading
from typing import Callable, Dict, List, Optional

from wagerplay.errors import MatchNotFound


class MatchRegistry:
    """Live matches keyed by id.

    Each match has its own re-entrant lock, so two submissions for the same
    match run one after the other while distinct matches never wait on each
    other. ``_guard`` only protects the dictionaries themselves and is never
    held across a mutation.
    """

    def __init__(self):
        self._matches: Dict[str, object] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def __len__(self):
        with self._guard:
            return len(self._matches)

    def __contains__(self, match_id):
        with self._guard:
            return match_id in self._matches

    def add(self, match) -> None:
        with self._guard:
            if match.id in self._matches:
                raise ValueError(f"Match {match.id} is already registered")
            self._matches[match.id] = match
            self._locks[match.id] = threading.RLock()

    def get(self, match_id) -> Optional[object]:
        with self._guard:
            return self._matches.get(match_id)

    def list(self, status: Optional[str] = None, predicate: Optional[Callable] = None) -> List[object]:
        with self._guard:
            matches = list(self._matches.values())
        if status is not None:
            matches = [m for m in matches if m.status == status]
        if predicate is not None:
            matches = [m for m in matches if predicate(m)]
        return sorted(matches, key=lambda m: m.created_at)

    def remove(self, match_id):
        with self._guard:
            self._locks.pop(match_id, None)
            return self._matches.pop(match_id, None)

    def replace(self, match) -> None:
        """Swap in a new state. Caller must hold the match lock."""
        with self._guard:
            if match.id in self._matches:
                self._matches[match.id] = match

    @contextmanager
    def locked(self, match_id, missing: Optional[Callable] = None):
        """Hold the match lock and yield its current state.

        ``missing`` is called with the id before MatchNotFound is raised, so
        callers can raise something more specific for archived matches.
        """
        with self._guard:
            lock = self._locks.get(match_id)
        if lock is None:
            self._missing(match_id, missing)
        with lock:
            with self._guard:
                # The match may have been settled and removed while we waited
                current = self._matches.get(match_id)
                still_registered = self._locks.get(match_id) is lock
            if current is None or not still_registered:
                self._missing(match_id, missing)
            yield current

    @staticmethod
    def _missing(match_id, missing):
        if missing is not None:
            missing(match_id)
        raise MatchNotFound(match_id)
