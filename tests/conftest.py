"""Shared fixtures."""
from typing import Callable, List
import itertools
import httpx
import pytest
from cryptofolio.config import Settings
from cryptofolio.models.transaction import Transaction, create_transaction
from cryptofolio.services.cache_service import CacheService
from cryptofolio.services.ledger_store import LedgerStore
from cryptofolio.services.persistence import LocalSnapshot, MemoryDocumentStore
from cryptofolio.services.price_service import PriceService
from cryptofolio.services.token_filter import TokenFilter
from cryptofolio.utils.rate_limit import IntervalGate


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSleep:
    """Async sleep that records the delay and moves the fake clock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)
        self.clock.advance(seconds)


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


_ids = itertools.count(1)


def make_tx(**values) -> Transaction:
    data = {"source": "test"}
    if "sourceId" not in values:
        data["sourceId"] = f"tx-{next(_ids)}"
    data.update(values)
    return create_transaction(data)


@pytest.fixture
def config(tmp_path) -> Settings:
    return Settings(
        data_dir=str(tmp_path),
        persist_debounce_seconds=0.01,
        token_security_enabled=False,
        historical_price_delay_seconds=6.0,
        moralis_api_keys=[],
        helius_api_key=None,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep(clock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def remote() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def store(remote, tmp_path, config) -> LedgerStore:
    return LedgerStore(remote=remote, local=LocalSnapshot(str(tmp_path / "snapshot.json")), config=config)


@pytest.fixture
def token_filter() -> TokenFilter:
    return TokenFilter()


@pytest.fixture
def offline_prices(config, clock, recording_sleep) -> PriceService:
    """Price service whose upstream always fails; only preloaded prices resolve."""
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    return PriceService(
        historical_prices={},
        cache_service=CacheService(clock=clock),
        client=mock_client(handler),
        gate=IntervalGate(config.historical_price_delay_seconds, clock=clock, sleep=recording_sleep),
        config=config,
        clock=clock,
    )
