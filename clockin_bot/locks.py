import threading
from contextlib import contextmanager

from .errors import RequestInProgress


class KeyedLocks:
    """One lock per key, created on demand and dropped when nobody holds it.

    Serialises the find -> compute -> write sequence for a single
    (employee, date) so two commands for the same key cannot both read the
    old row and write over each other.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # key -> [lock, holders]

    @staticmethod
    def key(*parts) -> str:
        return "|".join(str(p or "").strip().lower() for p in parts)

    @contextmanager
    def hold(self, *parts):
        k = self.key(*parts)
        with self._guard:
            entry = self._locks.setdefault(k, [threading.Lock(), 0])
            entry[1] += 1
        try:
            if not entry[0].acquire(timeout=self.timeout):
                raise RequestInProgress()
            try:
                yield
            finally:
                entry[0].release()
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(k, None)

    def __len__(self):
        with self._guard:
            return len(self._locks)
