"""
Per-(account, season) apply serialization.

Apply calls for the same season run one at a time inside this process; the
database transaction and the ledger's unique key cover concurrent processes.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Tuple


class SeasonLockRegistry:
    """Lazily created lock per (account_id, season_id)"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}

    def lock_for(self, account_id: str, season_id: str) -> threading.Lock:
        key = (str(account_id), str(season_id))
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, account_id: str, season_id: str) -> Iterator[None]:
        lock = self.lock_for(account_id, season_id)
        with lock:
            yield


# Process-wide registry shared by every ApplyService built by the route layer
season_locks = SeasonLockRegistry()
