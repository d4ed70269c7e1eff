from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import Dict, Iterable, Optional, Set

from loguru import logger

from portfolio_api.core.errors import ProviderError, ProviderTimeout, SecondaryEnrichmentError
from portfolio_api.models.records import Fundamentals, MarketRecord
from portfolio_api.services.fundamentals import FundamentalsSource
from portfolio_api.services.quotes import QuoteProvider


def needs_fundamentals(record: Optional[MarketRecord]) -> bool:
    return record is None or record.pe_ratio is None or record.earnings is None


def merge_fundamentals(record: Optional[MarketRecord], symbol: str, extra: Fundamentals, source: str) -> MarketRecord:
    """Fill only the fields the primary record left empty."""
    if record is None:
        return MarketRecord(symbol=symbol, pe_ratio=extra.pe_ratio, earnings=extra.earnings, source=source)
    return record.model_copy(update={
        "pe_ratio": record.pe_ratio if record.pe_ratio is not None else extra.pe_ratio,
        "earnings": record.earnings if record.earnings is not None else extra.earnings,
    })


class MarketDataFetcher:
    """
    Turns a batch of symbols into market records within a hard time budget.

    fetch_batch never raises: a timeout or provider failure yields whatever
    records had arrived, possibly none.
    """

    def __init__(
        self,
        provider: QuoteProvider,
        fundamentals: Optional[FundamentalsSource] = None,
        timeout_s: float = 8.0,
    ):
        self.provider = provider
        self.fundamentals = fundamentals
        self.timeout_s = timeout_s

    async def aclose(self) -> None:
        if self.fundamentals is not None:
            await self.fundamentals.aclose()

    async def fetch_batch(self, symbols: Iterable[str]) -> Dict[str, MarketRecord]:
        wanted: Set[str] = {s for s in symbols if s}
        records: Dict[str, MarketRecord] = {}
        if not wanted:
            return records

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_s

        try:
            await self._primary(wanted, records)
        except ProviderTimeout as e:
            logger.warning(f"{e}; kept {len(records)}/{len(wanted)} quotes")
        except ProviderError as e:
            logger.warning(f"Quote provider failed for {sorted(wanted)}: {e}")
        except Exception as e:
            logger.exception(f"Unexpected quote provider error for {sorted(wanted)}: {e}")

        if self.fundamentals is not None:
            await self._secondary(wanted, records, deadline - loop.time())
        return records

    async def _primary(self, wanted: Set[str], records: Dict[str, MarketRecord]) -> None:
        async def collect() -> None:
            async with aclosing(self.provider.iter_quotes(sorted(wanted))) as quotes:
                async for record in quotes:
                    if record.symbol in wanted:
                        records[record.symbol] = record

        try:
            await asyncio.wait_for(collect(), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            raise ProviderTimeout(f"Quote batch timed out after {self.timeout_s:g}s") from e

    async def _secondary(self, wanted: Set[str], records: Dict[str, MarketRecord], remaining: float) -> None:
        missing = [s for s in sorted(wanted) if needs_fundamentals(records.get(s))]
        if not missing:
            return
        if remaining <= 0:
            logger.warning(f"No time left for fundamentals of {len(missing)} symbols")
            return

        tasks = {asyncio.create_task(self._fundamentals_for(s)): s for s in missing}
        done, pending = await asyncio.wait(tasks, timeout=remaining)
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Fundamentals timed out for {sorted(tasks[t] for t in pending)}")

        for t in done:
            extra = t.result()
            if extra is not None:
                sym = tasks[t]
                records[sym] = merge_fundamentals(records.get(sym), sym, extra, self.fundamentals.name)

    async def _fundamentals_for(self, symbol: str) -> Optional[Fundamentals]:
        try:
            return await self.fundamentals.fetch_fundamentals(symbol)
        except SecondaryEnrichmentError as e:
            logger.warning(str(e))
        except Exception as e:
            logger.exception(f"Fundamentals lookup failed for {symbol}: {e}")
        return None
