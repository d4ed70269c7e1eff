from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, NamedTuple, Optional, Protocol

from loguru import logger

from portfolio_api.core.errors import BuildTimeout
from portfolio_api.core.settings import Settings
from portfolio_api.models.records import Snapshot
from portfolio_api.services.cache import CacheState, PortfolioCache
from portfolio_api.services.enrich import EnrichmentPipeline
from portfolio_api.services.fetcher import MarketDataFetcher
from portfolio_api.services.fundamentals import get_fundamentals_source
from portfolio_api.services.io_utils import SheetSource
from portfolio_api.services.normalize import HoldingRows
from portfolio_api.services.quotes import get_quote_provider
from portfolio_api.services.rate import CircuitBreaker
from portfolio_api.services.resolve import build_resolver


class RowSource(Protocol):
    def read_rows(self) -> list: ...


class PortfolioRead(NamedTuple):
    snapshot: Snapshot
    cached: bool
    stale: bool = False
    refresh_error: Optional[str] = None


class PortfolioService:
    """
    Owns the cache, the enrichment pipeline and the holdings source.

    At most one refresh run is in flight; every trigger (schedule, manual
    refresh, cache miss) joins it instead of starting another. Each run is
    stamped with a generation id and its snapshot is only installed while
    that generation is still current.

    After a failed run, reads of a stale snapshot stop starting new runs for
    refresh_backoff_s seconds. Scheduled and manual refreshes are not held back.
    """

    def __init__(
        self,
        source: RowSource,
        pipeline: EnrichmentPipeline,
        cache: PortfolioCache,
        request_timeout_s: float = 15.0,
        refresh_backoff_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.pipeline = pipeline
        self.cache = cache
        self.request_timeout_s = request_timeout_s
        self._generation = 0
        self._inflight: Optional[asyncio.Task] = None
        self.last_error: Optional[str] = None
        self.backoff = CircuitBreaker("stale-refresh", fail_threshold=1, cooldown_sec=refresh_backoff_s, clock=clock)

    @classmethod
    def from_settings(cls, s: Settings) -> "PortfolioService":
        fetcher = MarketDataFetcher(
            provider=get_quote_provider(s.quote_provider, max_concurrency=s.quote_concurrency),
            fundamentals=get_fundamentals_source(
                s.fundamentals_source,
                default_exchange=s.default_exchange,
                timeout_s=s.http_timeout_s,
                rpm=s.scrape_rpm,
            ),
            timeout_s=s.batch_timeout_s,
        )
        pipeline = EnrichmentPipeline(
            resolver=build_resolver(s.symbol_map_path),
            fetcher=fetcher,
            batch_size=s.batch_size,
            batch_delay_s=s.batch_delay_s,
        )
        return cls(
            source=SheetSource(s.portfolio_path, s.sheet_header_rows),
            pipeline=pipeline,
            cache=PortfolioCache(s.cache_ttl_s, serve_stale=s.cache_serve_stale),
            request_timeout_s=s.request_timeout_s,
            refresh_backoff_s=s.refresh_backoff_s,
        )

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def refresh_in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    # ---------- runs ----------
    async def build_snapshot(self, generation: int) -> Snapshot:
        rows = await asyncio.to_thread(self.source.read_rows)
        holdings = await self.pipeline.enrich(HoldingRows(rows))
        return Snapshot(holdings=holdings, built_at=datetime.now(timezone.utc), generation=generation)

    async def _run(self, generation: int) -> Snapshot:
        started = time.monotonic()
        try:
            snapshot = await self.build_snapshot(generation)
        except Exception as e:
            self.last_error = str(e)
            self.backoff.record_failure()
            raise
        finally:
            self.cache.refreshing = False
        self.last_error = None
        self.backoff.record_success()

        if generation != self._generation:
            logger.info(f"Dropping result of refresh {generation}; generation is now {self._generation}")
        elif self.cache.set(snapshot):
            logger.info(
                f"Installed portfolio snapshot {generation} with {len(snapshot.holdings)} holdings "
                f"in {time.monotonic() - started:.1f}s"
            )
        return snapshot

    def _on_run_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Portfolio refresh failed: {exc}")

    def _ensure_run(self) -> asyncio.Task:
        task = self._inflight
        if task is not None and not task.done():
            logger.debug("Refresh already in flight; joining it")
            return task
        self._generation += 1
        self.cache.refreshing = True
        task = asyncio.create_task(self._run(self._generation))
        task.add_done_callback(self._on_run_done)
        self._inflight = task
        return task

    async def refresh(self) -> Snapshot:
        """Start a run, or join the one in flight, and wait for its snapshot."""
        return await asyncio.shield(self._ensure_run())

    async def force_refresh(self, synchronous: bool = True) -> Optional[Snapshot]:
        """
        Invalidate the snapshot and rebuild it.

        Synchronous callers wait for the run and get its error. Asynchronous
        callers return at once; the run installs its snapshot when done and
        failures are only logged.
        """
        self.cache.invalidate()
        if synchronous:
            return await self.refresh()
        self._ensure_run()
        return None

    # ---------- reads ----------
    async def get_portfolio(self, timeout: Optional[float] = None) -> PortfolioRead:
        snapshot = self.cache.get()
        if snapshot is not None:
            stale = self.cache.state is CacheState.STALE
            if stale and self.backoff.allow():
                self._ensure_run()
            return PortfolioRead(snapshot, cached=True, stale=stale, refresh_error=self.last_error if stale else None)

        timeout = self.request_timeout_s if timeout is None else timeout
        try:
            snapshot = await asyncio.wait_for(self.refresh(), timeout)
        except asyncio.TimeoutError as e:
            raise BuildTimeout(timeout) from e
        return PortfolioRead(snapshot, cached=False)

    def health(self) -> Dict[str, Any]:
        snapshot = self.cache.peek()
        keys = self.cache.keys()
        age = self.cache.age()
        return {
            "cacheKeys": len(keys),
            "keys": keys,
            "snapshotLoaded": snapshot is not None,
            "holdingCount": len(snapshot.holdings) if snapshot else 0,
            "state": self.cache.state.value,
            "refreshing": self.cache.refreshing,
            "lastRefreshError": self.last_error,
            "generation": self._generation,
            "snapshotTimestamp": snapshot.timestamp if snapshot else None,
            "ageSeconds": round(age, 1) if age is not None else None,
        }

    async def close(self) -> None:
        self._generation += 1
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            logger.info("Cancelled in-flight portfolio refresh")
        await self.pipeline.fetcher.aclose()
