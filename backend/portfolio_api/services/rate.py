# backend/portfolio_api/services/rate.py
from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable

from loguru import logger

# ---- Token bucket limiter (async callers) ----
class TokenBucket:
    """capacity == refill rate per minute (rpm)."""

    def __init__(self, rpm: int, clock: Callable[[], float] = time.monotonic):
        self.capacity = float(max(1, rpm))
        self.tokens = self.capacity
        self.rate = self.capacity / 60.0
        self.clock = clock
        self.t = clock()
        self.mu = threading.Lock()

    def _take(self, tokens: float) -> float:
        """Take tokens if available; otherwise return the seconds to wait."""
        with self.mu:
            now = self.clock()
            self.tokens = min(self.capacity, self.tokens + (now - self.t) * self.rate)
            self.t = now
            if self.tokens >= tokens:
                self.tokens -= tokens
                return 0.0
            return (tokens - self.tokens) / self.rate

    async def acquire(self, tokens: float = 1.0) -> None:
        while True:
            need = self._take(tokens)
            if need <= 0:
                return
            # sleep outside lock
            await asyncio.sleep(min(need, 1.0))

# ---- Circuit breaker for a flaky upstream ----
class CircuitBreaker:
    def __init__(self, name: str, fail_threshold: int = 5, cooldown_sec: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.fail_threshold = fail_threshold
        self.cooldown_sec = cooldown_sec
        self.clock = clock
        self._failures = 0
        self._open_until = 0.0
        self.mu = threading.Lock()

    @property
    def is_open(self) -> bool:
        with self.mu:
            return self.clock() < self._open_until

    def allow(self) -> bool:
        return not self.is_open

    def record_success(self) -> None:
        with self.mu:
            self._failures = 0
            self._open_until = 0.0

    def record_failure(self) -> None:
        with self.mu:
            self._failures += 1
            if self._failures >= self.fail_threshold:
                self._open_until = self.clock() + self.cooldown_sec
                self._failures = 0
                logger.warning(f"circuit_open source={self.name} cooldown={self.cooldown_sec:.0f}s")
