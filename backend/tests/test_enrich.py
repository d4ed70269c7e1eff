import asyncio

from fakes import FakeProvider

from portfolio_api.models.records import Holding
from portfolio_api.services.enrich import EnrichmentPipeline, chunked, with_portfolio_share
from portfolio_api.services.fetcher import MarketDataFetcher
from portfolio_api.services.resolve import SymbolResolver


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def pipeline(prices, names, provider=None, batch_size=10, sleep=None, timeout_s=1.0):
    provider = provider or FakeProvider(prices)
    resolver = SymbolResolver({n: f"{n.upper()}.NS" for n in names})
    fetcher = MarketDataFetcher(provider, timeout_s=timeout_s)
    return EnrichmentPipeline(resolver, fetcher, batch_size=batch_size, batch_delay_s=1.0, sleep=sleep or RecordingSleep())


def test_fifteen_holdings_run_in_two_batches_with_one_pause():
    names = [f"co{i}" for i in range(15)]
    provider = FakeProvider({f"{n.upper()}.NS": 10.0 for n in names})
    sleep = RecordingSleep()
    p = pipeline({}, names, provider=provider, sleep=sleep)

    out = asyncio.run(p.enrich([Holding(name=n, purchase_price=1, quantity=1) for n in names]))

    assert [len(c) for c in provider.calls] == [10, 5]
    assert sleep.calls == [1.0]
    assert [h.name for h in out] == names
    assert all(h.current_price == 10.0 for h in out)


def test_unmapped_holding_keeps_null_market_fields_but_gets_share():
    p = pipeline({"KNOWN.NS": 12.0}, ["known"])
    holdings = [Holding(name="known", purchase_price=10, quantity=3), Holding(name="Mystery", purchase_price=10, quantity=1)]

    out = asyncio.run(p.enrich(holdings))

    known, mystery = out
    assert known.symbol == "KNOWN.NS" and known.present_value == 36
    assert mystery.symbol is None
    assert mystery.current_price is None and mystery.present_value is None and mystery.gain_loss is None
    assert mystery.portfolio_share == 25.0
    assert known.portfolio_share == 75.0


def test_batch_with_nothing_resolvable_makes_no_call_and_no_pause():
    provider = FakeProvider({})
    sleep = RecordingSleep()
    p = pipeline({}, [], provider=provider, batch_size=1, sleep=sleep)

    out = asyncio.run(p.enrich([Holding(name="x", purchase_price=1, quantity=1), Holding(name="y", purchase_price=1, quantity=1)]))

    assert provider.calls == []
    assert sleep.calls == []
    assert len(out) == 2


def test_timed_out_batch_does_not_abort_the_run():
    provider = FakeProvider({"A.NS": 1.0, "B.NS": 2.0}, delays={"A.NS": 5.0})
    p = pipeline({}, ["a", "b"], provider=provider, batch_size=1, timeout_s=0.1)

    out = asyncio.run(p.enrich([Holding(name="a", purchase_price=1, quantity=1), Holding(name="b", purchase_price=1, quantity=1)]))

    assert out[0].current_price is None
    assert out[1].current_price == 2.0


def test_portfolio_shares_sum_to_one_hundred():
    holdings = [Holding(name=str(i), purchase_price=p, quantity=q) for i, (p, q) in enumerate([(10, 3), (7, 7), (1, 13)])]
    shares = [h.portfolio_share for h in with_portfolio_share(holdings)]
    assert abs(sum(shares) - 100.0) < 1e-9


def test_zero_total_investment_gives_zero_shares():
    holdings = [Holding(name="a", purchase_price=0, quantity=5), Holding(name="b", purchase_price=0, quantity=1)]
    assert [h.portfolio_share for h in with_portfolio_share(holdings)] == [0.0, 0.0]


def test_chunked():
    assert [list(c) for c in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
    assert list(chunked([], 3)) == []
