import asyncio

import httpx
import pytest

from portfolio_api.core.errors import SecondaryEnrichmentError
from portfolio_api.services.fundamentals import (
    GoogleFinanceSource,
    get_fundamentals_source,
    google_ticker,
    parse_fundamentals,
    parse_number,
)
from portfolio_api.services.rate import CircuitBreaker

QUOTE_PAGE = """
<html><body>
  <div class="gyFHrc">
    <span class="mfs7Fc">Market cap</span><div class="P6K39c">6.12T INR</div>
  </div>
  <div class="gyFHrc">
    <span class="mfs7Fc">P/E ratio</span><div class="P6K39c">23.45</div>
  </div>
  <div aria-label="Earnings per share">&#8377;1,057.63</div>
</body></html>
"""


def test_parse_number():
    assert parse_number("₹1,234.50") == 1234.5
    assert parse_number("-3.2%") == -3.2
    assert parse_number("—") is None
    assert parse_number(None) is None


def test_google_ticker_maps_suffixes():
    assert google_ticker("INFY.NS") == ("INFY", "NSE")
    assert google_ticker("532174.bo") == ("532174", "BOM")
    assert google_ticker("TCS", default_exchange="NSE") == ("TCS", "NSE")


def test_parse_fundamentals_from_label_and_aria_label():
    f = parse_fundamentals(QUOTE_PAGE)
    assert f.pe_ratio == 23.45
    assert f.earnings == 1057.63


def test_parse_fundamentals_on_unrelated_page_is_empty():
    assert parse_fundamentals("<html><p>consent</p></html>").is_empty()


def _source(handler, breaker=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleFinanceSource(client=client, rpm=600, breaker=breaker)


def test_fetch_builds_quote_url():
    seen = []

    def handler(request):
        seen.append(request.url.path)
        return httpx.Response(200, text=QUOTE_PAGE)

    async def scenario():
        src = _source(handler)
        try:
            return await src.fetch_fundamentals("INFY.NS")
        finally:
            await src.aclose()

    f = asyncio.run(scenario())
    assert seen == ["/finance/quote/INFY:NSE"]
    assert f.pe_ratio == 23.45


def test_page_without_figures_gives_none():
    async def scenario():
        src = _source(lambda request: httpx.Response(200, text="<html></html>"))
        try:
            return await src.fetch_fundamentals("INFY.NS")
        finally:
            await src.aclose()

    assert asyncio.run(scenario()) is None


def test_http_errors_open_the_breaker():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(500)

    async def scenario():
        src = _source(handler, breaker=CircuitBreaker("test", fail_threshold=2, cooldown_sec=60))
        try:
            for _ in range(2):
                with pytest.raises(SecondaryEnrichmentError, match="fetch failed"):
                    await src.fetch_fundamentals("INFY.NS")
            with pytest.raises(SecondaryEnrichmentError, match="circuit open"):
                await src.fetch_fundamentals("INFY.NS")
        finally:
            await src.aclose()

    asyncio.run(scenario())
    assert len(calls) == 2


def test_factory():
    assert get_fundamentals_source("none") is None
    assert get_fundamentals_source("") is None
    assert isinstance(get_fundamentals_source("Google"), GoogleFinanceSource)
    with pytest.raises(ValueError):
        get_fundamentals_source("bloomberg")
