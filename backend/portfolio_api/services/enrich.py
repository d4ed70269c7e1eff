from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar

from loguru import logger

from portfolio_api.models.records import Holding, MarketRecord
from portfolio_api.services.fetcher import MarketDataFetcher
from portfolio_api.services.resolve import SymbolResolver

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    size = max(1, size)
    for i in range(0, len(items), size):
        yield items[i:i + size]


def apply_record(holding: Holding, symbol: Optional[str], record: Optional[MarketRecord]) -> Holding:
    """Copy of holding carrying the record's market fields (or nulls)."""
    return holding.model_copy(update={
        "symbol": symbol,
        "current_price": record.current_price if record else None,
        "pe_ratio": record.pe_ratio if record else None,
        "latest_earnings": record.earnings if record else None,
    })


def with_portfolio_share(holdings: Sequence[Holding]) -> Tuple[Holding, ...]:
    """Second pass: needs the whole portfolio, so it cannot run per batch."""
    total = sum(h.investment for h in holdings)
    return tuple(
        h.model_copy(update={"portfolio_share": (h.investment / total * 100) if total > 0 else 0.0})
        for h in holdings
    )


class EnrichmentPipeline:
    """
    Adds live market data to holdings, one batch at a time.

    Batches run sequentially with a pause between network calls so the quote
    provider is not hit in bursts. A holding that cannot be resolved or priced
    keeps null market fields; nothing here aborts the run.
    """

    def __init__(
        self,
        resolver: SymbolResolver,
        fetcher: MarketDataFetcher,
        batch_size: int = 10,
        batch_delay_s: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.resolver = resolver
        self.fetcher = fetcher
        self.batch_size = max(1, batch_size)
        self.batch_delay_s = batch_delay_s
        self._sleep = sleep

    async def enrich(self, holdings: Iterable[Holding]) -> Tuple[Holding, ...]:
        items = list(holdings)
        enriched: List[Holding] = []
        fetched_last = False
        for batch in chunked(items, self.batch_size):
            if fetched_last and self.batch_delay_s > 0:
                await self._sleep(self.batch_delay_s)
            out, fetched_last = await self._enrich_batch(batch)
            enriched.extend(out)

        priced = sum(1 for h in enriched if h.current_price is not None)
        logger.info(f"Enriched {len(enriched)} holdings; {priced} priced")
        return with_portfolio_share(enriched)

    async def _enrich_batch(self, batch: Sequence[Holding]) -> Tuple[List[Holding], bool]:
        resolved: List[Optional[str]] = []
        for h in batch:
            symbol = self.resolver.resolve(h.name)
            if symbol is None:
                logger.warning(f"No symbol mapping for: {h.name}")
            resolved.append(symbol)

        symbols = {s for s in resolved if s}
        records: Dict[str, MarketRecord] = {}
        if symbols:
            records = await self.fetcher.fetch_batch(symbols)
            missing = symbols - set(records)
            if missing:
                logger.warning(f"No market data for {sorted(missing)}")

        out = [
            apply_record(h, sym, records.get(sym) if sym else None)
            for h, sym in zip(batch, resolved)
        ]
        return out, bool(symbols)
