"""Price service caching, pacing and failure handling."""
from datetime import date
import httpx
import pytest
from conftest import make_tx, mock_client
from cryptofolio.services.cache_service import CacheService
from cryptofolio.services.price_service import PriceService, get_coingecko_id, historical_key
from cryptofolio.tax_rules.italy.calculator import ItalyTaxCalculator
from cryptofolio.utils.rate_limit import IntervalGate


class Upstream:
    """Scripted CoinGecko responses keyed by path fragment."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for fragment, queue in self.responses.items():
            if fragment in request.url.path:
                return queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(404)


def history(eur):
    return httpx.Response(200, json={"market_data": {"current_price": {"eur": eur, "usd": eur * 1.1}}})


@pytest.fixture
def build(config, clock, recording_sleep):
    def factory(upstream, **kwargs):
        return PriceService(
            historical_prices=kwargs.pop("historical_prices", {}),
            cache_service=CacheService(clock=clock),
            client=mock_client(upstream),
            gate=IntervalGate(config.historical_price_delay_seconds, clock=clock, sleep=recording_sleep),
            config=config,
            clock=clock,
            **kwargs,
        )
    return factory


def test_symbol_mapping():
    assert get_coingecko_id("btc") == "bitcoin"
    assert get_coingecko_id("POL") == "matic-network"
    assert get_coingecko_id("NOPE") is None
    assert historical_key("eth", date(2023, 1, 5)) == "ETH_2023-01-05"


@pytest.mark.asyncio
async def test_live_prices_ttl_and_min_interval(build, clock):
    upstream = Upstream({"/simple/price": [httpx.Response(200, json={"bitcoin": {"eur": 30000, "usd": 33000}})]})
    updates = []
    service = build(upstream, on_update=lambda: updates.append(1))

    await service.refresh_current_prices(["BTC"])
    assert service.get_current_price("BTC") == 30000
    assert service.get_current_price("btc", "usd") == 33000
    assert updates == [1]

    clock.advance(30)
    await service.refresh_current_prices(["BTC"])
    assert len(upstream.requests) == 1

    clock.advance(60)
    assert not service.is_fresh("BTC")
    await service.refresh_current_prices(["BTC"])
    assert len(upstream.requests) == 2


@pytest.mark.asyncio
async def test_live_refresh_respects_min_interval_for_new_symbols(build, clock):
    upstream = Upstream({"/simple/price": [httpx.Response(200, json={"bitcoin": {"eur": 1}, "ethereum": {"eur": 2}})]})
    service = build(upstream)

    await service.refresh_current_prices(["BTC"])
    clock.advance(5)
    await service.refresh_current_prices(["ETH"])

    assert len(upstream.requests) == 1
    assert service.get_current_price("ETH") == 0.0
    clock.advance(6)
    await service.refresh_current_prices(["ETH"])
    assert service.get_current_price("ETH") == 2


@pytest.mark.asyncio
async def test_live_failure_keeps_stale_prices(build, clock):
    service = build(Upstream({"/simple/price": [httpx.Response(500)]}))
    service.live_prices["BTC"] = {"eur": 25000, "usd": 27000, "lastUpdate": 0}

    await service.refresh_current_prices(["BTC"])

    assert service.get_current_price("BTC") == 25000


@pytest.mark.asyncio
async def test_historical_price_is_fetched_once(build):
    upstream = Upstream({"/coins/bitcoin/history": [history(15000.5)]})
    service = build(upstream)

    assert await service.get_historical_price("BTC", "2023-01-01") == 15000.5
    assert await service.get_historical_price("BTC", "2023-01-01T10:00:00Z") == 15000.5

    assert len(upstream.requests) == 1
    assert upstream.requests[0].url.params["date"] == "01-01-2023"
    assert service.historical_prices == {"BTC_2023-01-01": 15000.5}


@pytest.mark.asyncio
async def test_unknown_symbol_returns_zero_without_io(build):
    upstream = Upstream()
    service = build(upstream, historical_prices={"ZZZ_2023-12-31": 2.5})

    assert await service.get_historical_price("ZZZ", "2023-12-31") == 2.5
    assert await service.get_historical_price("ZZZ", "2023-01-01") == 0.0
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_failures_are_negatively_cached(build, clock, config):
    upstream = Upstream({"/coins/ethereum/history": [httpx.Response(500), history(1200)]})
    service = build(upstream)

    assert await service.get_historical_price("ETH", "2023-03-01") == 0.0
    assert await service.get_historical_price("ETH", "2023-03-01") == 0.0
    assert len(upstream.requests) == 1
    assert "ETH_2023-03-01" not in service.historical_prices

    clock.advance(config.historical_failure_ttl_seconds + 1)
    assert await service.get_historical_price("ETH", "2023-03-01") == 1200
    assert len(upstream.requests) == 2


@pytest.mark.asyncio
async def test_missing_price_is_cached_longer(build, clock, config):
    upstream = Upstream({"/coins/ethereum/history": [httpx.Response(200, json={"id": "ethereum"})]})
    service = build(upstream)

    assert await service.get_historical_price("ETH", "2015-01-01") == 0.0
    clock.advance(config.historical_failure_ttl_seconds + 1)
    assert await service.get_historical_price("ETH", "2015-01-01") == 0.0
    assert len(upstream.requests) == 1


@pytest.mark.asyncio
async def test_rate_limit_backs_off_and_retries(build, recording_sleep):
    upstream = Upstream({"/coins/solana/history": [httpx.Response(429), history(20)]})
    service = build(upstream)

    assert await service.get_historical_price("SOL", "2023-06-01") == 20
    assert len(upstream.requests) == 2
    assert recording_sleep.calls == [6.0]


@pytest.mark.asyncio
async def test_batch_paces_uncached_requests(build, recording_sleep):
    upstream = Upstream({
        "/coins/bitcoin/history": [history(100)],
        "/coins/ethereum/history": [history(10)],
    })
    service = build(upstream, historical_prices={"BTC_2023-01-01": 99.0})

    result = await service.get_historical_prices_batch([
        ("BTC", "2023-01-01"),
        ("BTC", "2023-12-31"),
        ("ETH", "2023-12-31"),
        ("ETH", "2023-12-31"),
    ])

    assert result == {"BTC_2023-01-01": 99.0, "BTC_2023-12-31": 100, "ETH_2023-12-31": 10}
    assert len(upstream.requests) == 2
    assert recording_sleep.calls == [6.0]


@pytest.mark.asyncio
async def test_year_prices_for_tax(build):
    service = build(Upstream(), historical_prices={"BTC_2023-01-01": 15000.0, "BTC_2023-12-31": 38000.0})

    prices = await service.get_year_prices_for_tax(["btc", "BTC"], 2023)

    assert prices == {"BTC": {"january1": 15000.0, "december31": 38000.0}}
    assert await service.fetch_year_end_prices(["BTC"], [2023]) == {2023: {"BTC": 38000.0}}


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"market_data": {"current_price": {"eur": "n/a"}}},
    {"market_data": {"current_price": {"eur": True}}},
    {"market_data": {"current_price": [1, 2]}},
    {"market_data": "unavailable"},
    ["bitcoin"],
    "bitcoin",
])
async def test_malformed_history_payload_is_a_cached_miss(build, payload):
    upstream = Upstream({"/coins/bitcoin/history": [httpx.Response(200, json=payload)]})
    service = build(upstream)

    assert await service.get_historical_price("BTC", "2023-01-10") == 0.0
    assert await service.get_historical_price("BTC", "2023-01-10") == 0.0
    assert len(upstream.requests) == 1
    assert service.historical_prices == {}


@pytest.mark.asyncio
async def test_non_json_history_body_is_a_cached_failure(build):
    upstream = Upstream({"/coins/bitcoin/history": [httpx.Response(200, text="<html>busy</html>")]})
    service = build(upstream)

    assert await service.get_historical_price("BTC", "2023-01-10") == 0.0
    assert await service.get_historical_price("BTC", "2023-01-10") == 0.0
    assert len(upstream.requests) == 1


@pytest.mark.asyncio
async def test_malformed_live_quotes_are_skipped(build):
    upstream = Upstream({"/simple/price": [httpx.Response(200, json={
        "bitcoin": "oops",
        "ethereum": {"eur": "n/a", "usd": 5},
    })]})
    service = build(upstream)

    await service.refresh_current_prices(["BTC", "ETH"])

    assert "BTC" not in service.live_prices
    assert service.get_current_price("ETH") == 0.0
    assert service.get_current_price("ETH", "usd") == 5.0


@pytest.mark.asyncio
async def test_live_payload_of_wrong_shape_keeps_prices(build):
    service = build(Upstream({"/simple/price": [httpx.Response(200, json=[1, 2, 3])]}))
    service.live_prices["BTC"] = {"eur": 25000, "usd": 27000, "lastUpdate": 0}

    await service.refresh_current_prices(["BTC"])

    assert service.get_current_price("BTC") == 25000


def test_corrupted_cached_entries_read_as_unknown(build):
    service = build(Upstream(), live_prices={"BTC": "garbage", "ETH": {"eur": "x", "lastUpdate": "y"}})

    assert service.get_current_price("BTC") == 0.0
    assert service.get_current_price("ETH") == 0.0
    assert not service.is_fresh("ETH")


@pytest.mark.asyncio
async def test_tax_report_survives_garbage_prices(config, build):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"market_data": {"current_price": {"eur": "n/a"}}})

    service = build(handler)
    deposit = make_tx(type="deposit", coinIn="BTC", amountIn=1, timestamp="2023-01-10T00:00:00Z")

    report = await ItalyTaxCalculator(service, config).calculate_tax([deposit], 2023)

    assert report.year == 2023
    assert report.closing_value_eur == 0
    assert not report.complete
    assert report.warnings
