"""Test doubles for the quote provider, fundamentals source and sheet source."""
import asyncio
import time
from typing import Any, Dict, Iterable, List, Optional

from portfolio_api.core.errors import ProviderError, SecondaryEnrichmentError, SourceReadError
from portfolio_api.models.records import Fundamentals, MarketRecord
from portfolio_api.services.cache import PortfolioCache
from portfolio_api.services.enrich import EnrichmentPipeline
from portfolio_api.services.fetcher import MarketDataFetcher
from portfolio_api.services.fundamentals import FundamentalsSource
from portfolio_api.services.portfolio import PortfolioService
from portfolio_api.services.quotes import QuoteProvider
from portfolio_api.services.resolve import SymbolResolver

SECTOR = {"purchase_price": None, "quantity": None, "exchange": None}

SAMPLE_ROWS: List[Dict[str, Any]] = [
    {"name": "Tech Sector", **SECTOR},
    {"name": "Infy", "purchase_price": 1500, "quantity": 10, "exchange": "INFY"},
    {"name": "Tanla", "purchase_price": 1000, "quantity": 5, "exchange": "TANLA"},
    {"name": "Power Sector", **SECTOR},
    {"name": "Mystery Co", "purchase_price": 100, "quantity": 25, "exchange": ""},
]
SAMPLE_SYMBOLS = {"Infy": "INFY.NS", "Tanla": "TANLA.NS"}
SAMPLE_PRICES = {"INFY.NS": 1600.0, "TANLA.NS": 900.0}


class ManualClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(QuoteProvider):
    name = "fake"

    def __init__(
        self,
        prices: Dict[str, float],
        pe: Optional[Dict[str, float]] = None,
        eps: Optional[Dict[str, float]] = None,
        delays: Optional[Dict[str, float]] = None,
        fail: bool = False,
    ):
        self.prices = prices
        self.pe = pe or {}
        self.eps = eps or {}
        self.delays = delays or {}
        self.fail = fail
        self.calls: List[List[str]] = []

    async def iter_quotes(self, symbols: Iterable[str]):
        symbols = list(symbols)
        self.calls.append(symbols)
        if self.fail:
            raise ProviderError("upstream unavailable")
        for s in symbols:
            if self.delays.get(s):
                await asyncio.sleep(self.delays[s])
            if s in self.prices:
                yield MarketRecord(
                    symbol=s,
                    current_price=self.prices[s],
                    pe_ratio=self.pe.get(s),
                    earnings=self.eps.get(s),
                    source=self.name,
                )


class FakeFundamentals(FundamentalsSource):
    name = "scraped"

    def __init__(self, data: Dict[str, Fundamentals], failing: Iterable[str] = (), delay: float = 0.0):
        self.data = data
        self.failing = set(failing)
        self.delay = delay
        self.calls: List[str] = []
        self.closed = False

    async def fetch_fundamentals(self, symbol: str) -> Optional[Fundamentals]:
        self.calls.append(symbol)
        if self.delay:
            await asyncio.sleep(self.delay)
        if symbol in self.failing:
            raise SecondaryEnrichmentError(f"markup changed for {symbol}")
        return self.data.get(symbol)

    async def aclose(self) -> None:
        self.closed = True


class FakeSource:
    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, error: Optional[str] = None, delay: float = 0.0):
        self.rows = list(rows if rows is not None else SAMPLE_ROWS)
        self.error = error
        self.delay = delay
        self.reads = 0

    def read_rows(self) -> List[Dict[str, Any]]:
        self.reads += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise SourceReadError(self.error)
        return list(self.rows)


def make_service(
    source: Optional[FakeSource] = None,
    provider: Optional[FakeProvider] = None,
    symbols: Optional[Dict[str, str]] = None,
    ttl_s: float = 60.0,
    serve_stale: bool = False,
    request_timeout_s: float = 5.0,
    refresh_backoff_s: float = 60.0,
    fundamentals: Optional[FakeFundamentals] = None,
    clock=time.monotonic,
) -> PortfolioService:
    fetcher = MarketDataFetcher(provider or FakeProvider(SAMPLE_PRICES), fundamentals, timeout_s=2.0)
    pipeline = EnrichmentPipeline(
        SymbolResolver(SAMPLE_SYMBOLS if symbols is None else symbols),
        fetcher,
        batch_size=10,
        batch_delay_s=0,
    )
    return PortfolioService(
        source or FakeSource(),
        pipeline,
        PortfolioCache(ttl_s, serve_stale=serve_stale, clock=clock),
        request_timeout_s=request_timeout_s,
        refresh_backoff_s=refresh_backoff_s,
        clock=clock,
    )
