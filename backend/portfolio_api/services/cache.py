from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Callable, List, Optional

from loguru import logger

from portfolio_api.models.records import Snapshot

CACHE_KEY = "portfolio"


class CacheState(str, Enum):
    EMPTY = "empty"
    WARM = "warm"
    STALE = "stale"


class PortfolioCache:
    """
    In-memory holder for the latest portfolio snapshot.

    The snapshot object is immutable and swapped under a lock, so readers see
    either the old snapshot or the new one, never a mix. A snapshot from an
    older generation than the installed one is dropped.
    """

    def __init__(self, ttl_s: float, serve_stale: bool = False, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self.serve_stale = serve_stale
        self.clock = clock
        self.refreshing = False
        self._snapshot: Optional[Snapshot] = None
        self._stored_at = 0.0
        self._invalidated = False
        self.mu = threading.Lock()

    def _state(self) -> CacheState:
        if self._snapshot is None:
            return CacheState.EMPTY
        if self._invalidated or (self.clock() - self._stored_at) >= self.ttl_s:
            return CacheState.STALE
        return CacheState.WARM

    @property
    def state(self) -> CacheState:
        with self.mu:
            return self._state()

    def get(self) -> Optional[Snapshot]:
        with self.mu:
            state = self._state()
            if state is CacheState.WARM or (state is CacheState.STALE and self.serve_stale):
                return self._snapshot
            return None

    def peek(self) -> Optional[Snapshot]:
        with self.mu:
            return self._snapshot

    def set(self, snapshot: Snapshot) -> bool:
        with self.mu:
            current = self._snapshot
            if current is not None and snapshot.generation < current.generation:
                logger.info(
                    f"Discarding snapshot from generation {snapshot.generation}; "
                    f"generation {current.generation} is installed"
                )
                return False
            self._snapshot = snapshot
            self._stored_at = self.clock()
            self._invalidated = False
        return True

    def invalidate(self) -> None:
        """Mark the snapshot stale; it stays available to peek() and stale reads."""
        with self.mu:
            self._invalidated = True

    def age(self) -> Optional[float]:
        with self.mu:
            if self._snapshot is None:
                return None
            return self.clock() - self._stored_at

    def keys(self) -> List[str]:
        with self.mu:
            return [CACHE_KEY] if self._snapshot is not None else []
