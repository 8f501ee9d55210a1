"""Lazily-created per-key locks (one mutex per repository or per task)."""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Union

logger = logging.getLogger(__name__)


class LockRegistry:
    """
    Hands out one ``threading.Lock`` per key, created on first use.

    Keys are independent: holding the lock for one repository never blocks
    work on another. Locks live for the life of the registry.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _normalize(self, key: Union[str, Path]) -> str:
        return str(key)

    def get(self, key: Union[str, Path]) -> threading.Lock:
        """Return the lock for key, creating it if this is the first request."""
        normalized = self._normalize(key)
        with self._guard:
            lock = self._locks.get(normalized)
            if lock is None:
                lock = threading.Lock()
                self._locks[normalized] = lock
                logger.debug(f"Created lock for {normalized}")
            return lock

    @contextmanager
    def hold(self, key: Union[str, Path]) -> Iterator[None]:
        """Context manager that acquires and releases the lock for key."""
        lock = self.get(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class RepoLockRegistry(LockRegistry):
    """Lock registry keyed by repository path.

    Paths are resolved, so ``./repo`` and ``/abs/path/repo`` map to the same
    lock. Every operation that moves a repository's default branch holds it.
    """

    def _normalize(self, key: Union[str, Path]) -> str:
        return str(Path(key).expanduser().resolve())
