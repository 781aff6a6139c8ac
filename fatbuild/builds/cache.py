"""In-memory memoization of expensive toolchain queries.

This module handles:
- Storing the outcome (value or error) of a query per exact-match key
- Collapsing concurrent lookups of the same key into one computation

Entries are written once and never expire; a cache lives as long as the
orchestrator that owns it. Build settings are cached by
``BuildArguments`` and simulator destinations by ``SDK``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Generic, TypeVar

from fatbuild.errors import BuildCancelledError, BuildError

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True)
class _Outcome(Generic[V]):
    value: V | None = None
    error: BuildError | None = None

    def unwrap(self) -> V:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class SettingsCache(Generic[K, V]):
    """Write-once cache of query outcomes.

    The first ``get_value`` for a key runs ``compute`` and stores its
    result, or the ``BuildError`` it raised. Later calls return the stored
    value or re-raise the stored error. Concurrent callers asking for the
    same unseen key wait for the single in-flight computation. Other
    exceptions (and cancellations) are not stored, so the next caller
    computes again.

    Args:
        name: Name used in log messages.
    """

    def __init__(self, name: str = "cache") -> None:
        self.name = name
        self._entries: dict[K, _Outcome[V]] = {}
        self._key_locks: dict[K, threading.Lock] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def _key_lock(self, key: K) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def get_value(self, key: K, compute: Callable[[K], V]) -> V:
        """Return the cached outcome for a key, computing it on first use.

        Args:
            key: Exact-match cache key.
            compute: Function producing the value for the key.

        Returns:
            The stored value.

        Raises:
            BuildError: The stored error of a failed computation.
        """
        with self._lock:
            outcome = self._entries.get(key)
        if outcome is not None:
            logger.debug("%s hit: %s", self.name, key)
            return outcome.unwrap()

        with self._key_lock(key):
            with self._lock:
                outcome = self._entries.get(key)
            if outcome is None:
                logger.debug("%s miss: %s", self.name, key)
                try:
                    outcome = _Outcome(value=compute(key))
                except BuildCancelledError:
                    raise
                except BuildError as e:
                    outcome = _Outcome(error=e)
                with self._lock:
                    self._entries[key] = outcome
        return outcome.unwrap()


__all__ = ["SettingsCache"]
