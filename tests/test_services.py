"""Normalizer, wallet scanner, portfolio valuation and reconciliation."""
from decimal import Decimal
import httpx
import pytest
from conftest import make_tx, mock_client
from cryptofolio.models.balance import Balance
from cryptofolio.models.scan import ScanResult
from cryptofolio.models.transaction import TransactionType
from cryptofolio.models.wallet import WalletFamily
from cryptofolio.services.cache_service import CacheService
from cryptofolio.services.portfolio_service import PortfolioService
from cryptofolio.services.price_service import PriceService
from cryptofolio.services.reconciliation import reconcile
from cryptofolio.services.transaction_normalizer import TransactionNormalizer
from cryptofolio.services.wallet_scanner import WalletScanner
from cryptofolio.utils.errors import ErrorKind

EVM_WALLET = "0x" + "Ab" * 20


class FakeAdapter:
    """Returns a canned scan result and records the calls."""

    def __init__(self, result: ScanResult):
        self.result = result
        self.calls = []

    async def full_scan(self, address, chains=None):
        self.calls.append((address, chains))
        return self.result


# ----------------------------------------------------------------------
# Normalizer
# ----------------------------------------------------------------------

def test_normalize_dedups_and_sorts(offline_prices):
    late = make_tx(sourceId="a", coinIn="BTC", amountIn=1, timestamp="2023-05-01T00:00:00Z")
    early = make_tx(sourceId="b", coinIn="BTC", amountIn=1, timestamp="2023-01-01T00:00:00Z")
    twin = make_tx(sourceId="a", coinIn="BTC", amountIn=9, timestamp="2022-01-01T00:00:00Z")
    empty = make_tx(sourceId="c")

    result = TransactionNormalizer(offline_prices).normalize([late, early, twin, empty])

    assert [tx.source_id for tx in result] == ["b", "a"]
    assert result[1].amount_in == 1


def test_filter_by_year(offline_prices):
    transactions = [
        make_tx(coinIn="BTC", amountIn=1, timestamp="2022-12-31T23:59:59Z"),
        make_tx(coinIn="BTC", amountIn=1, timestamp="2023-01-01T00:00:00Z"),
    ]
    assert len(TransactionNormalizer.filter_by_year(transactions, 2023)) == 1


@pytest.mark.asyncio
async def test_enrich_fills_missing_values(offline_prices):
    offline_prices.historical_prices["ETH_2023-03-01"] = 1500.0
    normalizer = TransactionNormalizer(offline_prices)
    deposit = make_tx(type="deposit", coinIn="ETH", amountIn=2, timestamp="2023-03-01T12:00:00Z")
    priced = make_tx(type="deposit", coinIn="ETH", amountIn=2, priceEUR=1000, timestamp="2023-03-01T12:00:00Z")
    fee = make_tx(type="fee", coinOut="ETH", amountOut=0.01, feeCoin="ETH", feeAmount=0.01,
                  timestamp="2023-03-01T12:00:00Z")
    unknown = make_tx(type="deposit", coinIn="QQQ", amountIn=1, timestamp="2023-03-01T12:00:00Z")

    enriched = await normalizer.enrich([deposit, priced, fee, unknown])

    assert (enriched[0].price_eur, enriched[0].value_eur) == (1500.0, 3000.0)
    assert enriched[1].value_eur == 2000.0
    assert enriched[2].fee_eur == pytest.approx(15.0)
    assert enriched[3] is unknown
    assert deposit.value_eur == 0


@pytest.mark.asyncio
async def test_fiat_is_valued_at_face_value(offline_prices):
    normalizer = TransactionNormalizer(offline_prices)
    assert await normalizer.unit_price("eur", 0) == 1.0
    assert await normalizer.unit_price("USD", 0) == 0.0


@pytest.mark.asyncio
async def test_enrich_store_updates_in_place(store, offline_prices):
    offline_prices.historical_prices["BTC_2023-01-02"] = 15000.0
    tx = make_tx(type="deposit", coinIn="BTC", amountIn=0.5, timestamp="2023-01-02T00:00:00Z")
    store.add_transaction(tx)

    assert await TransactionNormalizer(offline_prices).enrich_store(store, year=2023) == 1
    assert store.get_transaction(tx.id).value_eur == 7500.0
    assert await TransactionNormalizer(offline_prices).enrich_store(store, year=2023) == 0


# ----------------------------------------------------------------------
# Wallet scanner
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_scanner_ingests_successful_scan(store, offline_prices):
    source = f"wallet_{EVM_WALLET.lower()}"
    tx = make_tx(source=source, sourceId="0xh", coinIn="ETH", amountIn=1)
    balance = Balance(coin="ETH", amount=1, source=source, chain="eth")
    adapter = FakeAdapter(ScanResult(chains=["eth"], balances=[balance], transactions=[tx, tx], warnings=["bsc: slow"]))
    scanner = WalletScanner(store, {WalletFamily.EVM: adapter}, TransactionNormalizer(offline_prices))

    summary = await scanner.scan(f" {EVM_WALLET} ", ["eth"], name="main")

    assert summary.success
    assert summary.address == EVM_WALLET.lower()
    assert (summary.transactions_found, summary.transactions_added, summary.balance_count) == (2, 1, 1)
    assert summary.warnings == ["bsc: slow"]
    assert adapter.calls == [(EVM_WALLET, ["eth"])]
    assert balance.key in store.get_balances()
    [wallet] = store.get_wallets()
    assert (wallet.address, wallet.name, wallet.family) == (EVM_WALLET.lower(), "main", WalletFamily.EVM)
    assert wallet.last_sync is not None

    again = await scanner.scan(EVM_WALLET)
    assert again.transactions_added == 0
    assert len(store.get_wallets()) == 1


@pytest.mark.asyncio
async def test_scanner_values_transactions_before_storing(store, offline_prices):
    offline_prices.historical_prices["ETH_2023-03-01"] = 1500.0
    source = f"wallet_{EVM_WALLET.lower()}"
    tx = make_tx(source=source, sourceId="0xv", coinIn="ETH", amountIn=2, type="deposit",
                 timestamp="2023-03-01T08:00:00Z")
    adapter = FakeAdapter(ScanResult(chains=["eth"], transactions=[tx]))
    scanner = WalletScanner(store, {WalletFamily.EVM: adapter}, TransactionNormalizer(offline_prices))

    summary = await scanner.scan(EVM_WALLET, ["eth"])

    assert summary.transactions_added == 1
    [stored] = store.get_transactions()
    assert (stored.price_eur, stored.value_eur) == (1500.0, 3000.0)


@pytest.mark.asyncio
async def test_scanner_pins_cosmos_chain(store):
    adapter = FakeAdapter(ScanResult(chains=["osmo"]))
    scanner = WalletScanner(store, {WalletFamily.COSMOS: adapter})

    await scanner.scan("osmo1qypqxpq9qcrsszg2pvxq6rs0zqg3yyc5a2ktl6", ["eth", "bsc"])

    assert adapter.calls[0][1] == ["osmo"]


@pytest.mark.asyncio
async def test_scanner_failures(store):
    failing = FakeAdapter(ScanResult.failure(ErrorKind.PRECONDITION, "No Moralis API key configured"))
    scanner = WalletScanner(store, {WalletFamily.EVM: failing})

    unknown = await scanner.scan("not-an-address")
    assert unknown.error_kind == "unrecognized"

    missing = await scanner.scan("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")
    assert (missing.family, missing.error_kind) == (WalletFamily.SOLANA, "precondition")

    failed = await scanner.scan(EVM_WALLET)
    assert not failed.success
    assert failed.error == "No Moralis API key configured"
    assert store.get_wallets() == []

    summaries = await scanner.scan_many(["bad", EVM_WALLET])
    assert [s.success for s in summaries] == [False, False]


# ----------------------------------------------------------------------
# Portfolio
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_portfolio_valuation(config, clock):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"bitcoin": {"eur": 30000, "usd": 33000}, "ethereum": {"eur": 2000, "usd": 2200}})

    prices = PriceService(client=mock_client(handler), cache_service=CacheService(clock=clock), config=config, clock=clock)
    balances = [
        Balance(coin="ETH", amount=2, source="wallet_a", chain="eth"),
        Balance(coin="ETH", amount=1, source="kraken"),
        Balance(coin="BTC", amount=0.1, source="kraken"),
        Balance(coin="EUR", amount=50, source="kraken"),
        Balance(coin="NOPE", amount=10, source="wallet_a", chain="eth", value_eur=3),
        Balance(coin="ZERO", amount=0, source="wallet_a"),
    ]

    valuation = await PortfolioService(prices).value_balances(balances)

    assert valuation.total_value_eur == pytest.approx(6000 + 3000 + 50 + 3)
    assert [a.coin for a in valuation.assets] == ["ETH", "BTC", "EUR", "NOPE"]
    assert valuation.assets[0].sources == ["wallet_a", "kraken"]
    assert valuation.assets[0].amount == 3
    assert valuation.unpriced == ["NOPE"]
    assert len(valuation.balances) == 5


# ----------------------------------------------------------------------
# Reconciliation
# ----------------------------------------------------------------------

def test_reconcile_reports_missing_history():
    transactions = [
        make_tx(type="deposit", coinIn="ETH", amountIn=2),
        make_tx(type="withdrawal", coinOut="ETH", amountOut=0.5),
        make_tx(type="deposit", coinIn="BTC", amountIn=1),
    ]
    balances = [
        Balance(coin="ETH", amount=1.5005, source="wallet_a"),
        Balance(coin="BTC", amount=0.5, source="kraken"),
        Balance(coin="SOL", amount=3, source="wallet_b"),
        Balance(coin="EUR", amount=100, source="kraken"),
    ]

    report = reconcile(balances, transactions)

    assert report.checked == 3
    assert report.matched == 1
    by_coin = {d.coin: d for d in report.discrepancies}
    assert set(by_coin) == {"BTC", "SOL"}
    assert by_coin["BTC"].difference == Decimal("-0.5")
    assert by_coin["SOL"].replayed_amount == 0


def test_reconcile_tolerance_is_configurable():
    transactions = [make_tx(type="deposit", coinIn="ETH", amountIn=1)]
    balances = [Balance(coin="ETH", amount=1.05, source="wallet_a")]

    assert len(reconcile(balances, transactions).discrepancies) == 1
    assert reconcile(balances, transactions, tolerance=Decimal("0.1")).discrepancies == []


def test_staking_type_is_neutral_for_reconciliation():
    transactions = [
        make_tx(type="deposit", coinIn="ATOM", amountIn=10),
        make_tx(type=TransactionType.STAKING, coinOut="ATOM", amountOut=10),
    ]
    assert reconcile([Balance(coin="ATOM", amount=10, source="wallet_c")], transactions).discrepancies == []
