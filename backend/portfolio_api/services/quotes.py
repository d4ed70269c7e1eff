from __future__ import annotations

import asyncio
import math
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Tuple, Type

import yfinance as yf
from loguru import logger

from portfolio_api.core.errors import ProviderError
from portfolio_api.models.records import MarketRecord


class QuoteProvider(ABC):
    """Primary market data source: prices plus whatever fundamentals it carries."""

    name: str = "base"

    @abstractmethod
    def iter_quotes(self, symbols: Iterable[str]) -> AsyncIterator[MarketRecord]:
        """Yield one record per symbol the provider could price, as they arrive."""
        raise NotImplementedError


class YFinanceQuoteProvider(QuoteProvider):
    """
    Yahoo Finance through yfinance.

    Each ``get_info`` lookup blocks, so lookups run in worker threads, at most
    ``max_concurrency`` at a time. Quotes are yielded in completion order, so a
    slow symbol does not hold back the rest of the batch.
    """

    name = "yfinance"

    def __init__(self, max_concurrency: int = 5):
        self.max_concurrency = max(1, max_concurrency)

    async def iter_quotes(self, symbols: Iterable[str]) -> AsyncIterator[MarketRecord]:
        sem = asyncio.Semaphore(self.max_concurrency)

        async def lookup(symbol: str) -> Tuple[str, Dict[str, Any]]:
            async with sem:
                return symbol, await asyncio.to_thread(self._fetch_info, symbol)

        tasks = [asyncio.create_task(lookup(s)) for s in symbols]
        try:
            for fut in asyncio.as_completed(tasks):
                try:
                    symbol, info = await fut
                except ProviderError as e:
                    logger.warning(f"Yahoo fetch failed: {e}")
                    continue
                record = self._map_info(symbol, info)
                if record is None:
                    logger.warning(f"yfinance returned no usable quote for {symbol}")
                    continue
                yield record
        finally:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    def _fetch_info(self, symbol: str) -> Dict[str, Any]:
        try:
            return yf.Ticker(symbol).get_info() or {}
        except Exception as e:
            raise ProviderError(f"{symbol}: {type(e).__name__}: {e}") from e

    def _map_info(self, symbol: str, info: Dict[str, Any]) -> Optional[MarketRecord]:
        price = _num(info.get("regularMarketPrice")) or _num(info.get("currentPrice"))
        if price is not None and price <= 0:
            price = None
        pe = _num(info.get("trailingPE"))
        eps = _num(info.get("trailingEps"))
        if price is None and pe is None and eps is None:
            return None
        return MarketRecord(symbol=symbol, current_price=price, pe_ratio=pe, earnings=eps, source=self.name)


def _num(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


PROVIDERS: Dict[str, Type[QuoteProvider]] = {
    "yfinance": YFinanceQuoteProvider,
}

def get_quote_provider(name: str = "yfinance", max_concurrency: int = 5) -> QuoteProvider:
    provider_class = PROVIDERS.get(name.strip().lower())
    if not provider_class:
        raise ValueError(f"Unknown quote provider: {name}")
    return provider_class(max_concurrency=max_concurrency)
