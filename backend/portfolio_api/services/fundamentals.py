"""
Secondary fundamentals sources.

These fill P/E and earnings when the quote provider leaves them empty. They
scrape public pages, so they break whenever the markup changes: every
failure is reported as SecondaryEnrichmentError and the fetcher degrades to
null fields. FUNDAMENTALS_SOURCE=none switches the step off.
"""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from portfolio_api.core.errors import SecondaryEnrichmentError
from portfolio_api.models.records import Fundamentals
from portfolio_api.services.rate import CircuitBreaker, TokenBucket

GOOGLE_QUOTE_URL = "https://www.google.com/finance/quote/{ticker}:{exchange}"

# Yahoo suffix -> Google Finance exchange code
_SUFFIX_EXCHANGES = {".NS": "NSE", ".BO": "BOM"}

_NUMBER_RE = re.compile(r"-?\d[\d,]*(?:\.\d+)?|-?\.\d+")

_PE_LABELS = ("Price to earnings ratio", "P/E ratio")
_EPS_LABELS = ("Earnings per share", "EPS")
_VALUE_CLASSES = ["P6K39c", "QXDnM"]


class FundamentalsSource(ABC):
    name: str = "base"

    @abstractmethod
    async def fetch_fundamentals(self, symbol: str) -> Optional[Fundamentals]:
        """Return fundamentals for a market symbol, None when the page has none."""
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def parse_number(text: Optional[str]) -> Optional[float]:
    """First number in a scraped cell: '₹1,234.50' -> 1234.5, '—' -> None."""
    if not text:
        return None
    m = _NUMBER_RE.search(text)
    if not m:
        return None
    try:
        return float(m.group(0).replace(",", ""))
    except ValueError:
        return None


def google_ticker(symbol: str, default_exchange: str = "NSE") -> Tuple[str, str]:
    s = symbol.strip().upper()
    for suffix, exchange in _SUFFIX_EXCHANGES.items():
        if s.endswith(suffix):
            return s[: -len(suffix)], exchange
    return s, default_exchange


def _labelled_value(soup: BeautifulSoup, aria_label: str, text_label: str) -> Optional[str]:
    node = soup.select_one(f'div[aria-label="{aria_label}"]')
    if node is not None:
        return node.get_text(strip=True)
    label = soup.find(string=lambda s: bool(s) and s.strip() == text_label)
    if label is not None:
        value = label.find_next(class_=_VALUE_CLASSES)
        if value is not None:
            return value.get_text(strip=True)
    return None


def parse_fundamentals(html: str) -> Fundamentals:
    soup = BeautifulSoup(html, "html.parser")
    return Fundamentals(
        pe_ratio=parse_number(_labelled_value(soup, *_PE_LABELS)),
        earnings=parse_number(_labelled_value(soup, *_EPS_LABELS)),
    )


class GoogleFinanceSource(FundamentalsSource):
    """Scrapes the Google Finance quote page."""

    name = "google"

    def __init__(
        self,
        default_exchange: str = "NSE",
        timeout_s: float = 10.0,
        rpm: int = 60,
        client: Optional[httpx.AsyncClient] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.default_exchange = default_exchange
        self.client = client or httpx.AsyncClient(
            timeout=timeout_s,
            follow_redirects=True,
            headers={"User-Agent": "Mozilla/5.0"},  # plain clients get a consent page
        )
        self.bucket = TokenBucket(rpm)
        self.breaker = breaker or CircuitBreaker("google-finance", fail_threshold=5, cooldown_sec=300.0)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def fetch_fundamentals(self, symbol: str) -> Optional[Fundamentals]:
        ticker, exchange = google_ticker(symbol, self.default_exchange)
        if not self.breaker.allow():
            raise SecondaryEnrichmentError(f"Google Finance circuit open, skipping {ticker}:{exchange}")

        await self.bucket.acquire()
        url = GOOGLE_QUOTE_URL.format(ticker=ticker, exchange=exchange)
        try:
            r = await self.client.get(url)
            r.raise_for_status()
        except httpx.HTTPError as e:
            self.breaker.record_failure()
            raise SecondaryEnrichmentError(f"Google Finance fetch failed for {ticker}:{exchange}: {e}") from e
        self.breaker.record_success()

        fundamentals = parse_fundamentals(r.text)
        if fundamentals.is_empty():
            logger.debug(f"No P/E or EPS found on {url}")
            return None
        return fundamentals


def get_fundamentals_source(
    name: str,
    default_exchange: str = "NSE",
    timeout_s: float = 10.0,
    rpm: int = 60,
) -> Optional[FundamentalsSource]:
    key = (name or "").strip().lower()
    if key in {"", "none", "off", "disabled"}:
        return None
    if key == "google":
        return GoogleFinanceSource(default_exchange=default_exchange, timeout_s=timeout_s, rpm=rpm)
    raise ValueError(f"Unknown fundamentals source: {name}")
