"""Chain adapters: record parsing and scans against mocked upstreams."""
import json
import httpx
import pytest
from conftest import mock_client
from cryptofolio.models.transaction import TransactionType
from cryptofolio.services.chain_adapters.cosmos import CosmosAdapter, parse_coins
from cryptofolio.services.chain_adapters.evm import EvmAdapter
from cryptofolio.services.chain_adapters.solana import SolanaAdapter
from cryptofolio.utils.credentials import CredentialPool
from cryptofolio.utils.errors import ErrorKind
from cryptofolio.utils.rate_limit import IntervalGate

EVM_WALLET = "0x" + "ab" * 20
OTHER = "0x" + "cd" * 20
TERRA_WALLET = "terra1dp0taj85ruc299rkdvzp4z5pfg6z6swaed74e6"
TERRA_OTHER = "terra1x46rqay4d3cssq8gxxvqz8xt6nwlz4td20k38v"
ATOM_WALLET = "cosmos1qypqxpq9qcrsszg2pvxq6rs0zqg3yyc5lzv7xu"
SOL_WALLET = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
SOL_OTHER = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def no_io(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request {request.url}")


# ----------------------------------------------------------------------
# EVM
# ----------------------------------------------------------------------

def evm_adapter(config, handler=no_io, keys=("k1",)):
    return EvmAdapter(
        credentials=CredentialPool(keys),
        client=mock_client(handler),
        gate=IntervalGate(0),
        config=config,
    )


def native_tx(**overrides):
    raw = {
        "hash": "0xhash1",
        "block_timestamp": "2023-04-01T10:00:00.000Z",
        "from_address": OTHER,
        "to_address": EVM_WALLET,
        "value": "2000000000000000000",
        "gas_price": "20000000000",
        "receipt_gas_used": "21000",
        "receipt_status": "1",
    }
    raw.update(overrides)
    return raw


def test_evm_incoming_native_transfer(config):
    rows = evm_adapter(config).parse_transaction(native_tx(), EVM_WALLET, "eth")

    assert len(rows) == 1
    tx = rows[0]
    assert tx.type == TransactionType.DEPOSIT
    assert (tx.coin_in, tx.amount_in) == ("ETH", 2.0)
    assert tx.source == f"wallet_{EVM_WALLET}"
    assert tx.source_id == "0xhash1"
    assert tx.chain == "eth"
    assert tx.year == 2023


def test_evm_outgoing_transfer_adds_fee_row(config):
    raw = native_tx(from_address=EVM_WALLET.upper().replace("0X", "0x"), to_address=OTHER)
    rows = evm_adapter(config).parse_transaction(raw, EVM_WALLET, "bsc")

    send, fee = rows
    assert send.type == TransactionType.WITHDRAWAL
    assert (send.coin_out, send.amount_out) == ("BNB", 2.0)
    assert fee.type == TransactionType.FEE
    assert fee.source_id == "0xhash1_fee"
    assert fee.amount_out == pytest.approx(0.00042)
    assert (fee.fee_coin, fee.fee_amount) == (fee.coin_out, fee.amount_out)


def test_evm_failed_transaction_only_pays_gas(config):
    raw = native_tx(from_address=EVM_WALLET, to_address=OTHER, receipt_status="0")
    rows = evm_adapter(config).parse_transaction(raw, EVM_WALLET, "eth")

    assert [tx.type for tx in rows] == [TransactionType.FEE]
    assert "failed" in rows[0].notes


def test_evm_token_transfers_are_filtered(config):
    adapter = evm_adapter(config)
    base = {
        "transaction_hash": "0xtok",
        "log_index": 3,
        "block_timestamp": "2023-05-01T00:00:00Z",
        "from_address": OTHER,
        "to_address": EVM_WALLET,
        "value": "2500000",
        "token_decimals": "6",
        "token_symbol": "USDC",
        "token_name": "USD Coin",
        "address": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    }

    rows = adapter.parse_transaction(base, EVM_WALLET, "eth")
    assert rows[0].source_id == "0xtok_3"
    assert (rows[0].coin_in, rows[0].amount_in) == ("USDC", 2.5)

    assert adapter.parse_transaction({**base, "possible_spam": True}, EVM_WALLET, "eth") == []
    scam = {**base, "token_symbol": "VISIT", "token_name": "Visit claim-usdc.com"}
    assert adapter.parse_transaction(scam, EVM_WALLET, "eth") == []


def test_evm_native_dust_balance_is_dropped(config):
    adapter = evm_adapter(config)
    assert adapter.parse_balance({"balance": "10000000000000"}, EVM_WALLET, "eth") is None
    balance = adapter.parse_balance({"balance": "1500000000000000000"}, EVM_WALLET, "polygon")
    assert (balance.coin, balance.amount, balance.key) == ("MATIC", 1.5, f"MATIC_polygon_wallet_{EVM_WALLET}")


@pytest.mark.asyncio
async def test_evm_scan_without_keys_fails_before_io(config):
    result = await evm_adapter(config, keys=()).full_scan(EVM_WALLET)

    assert not result.success
    assert result.error_kind == ErrorKind.PRECONDITION


@pytest.mark.asyncio
async def test_evm_invalid_address_is_a_precondition_failure(config):
    result = await evm_adapter(config).scan_balances("0x1234")

    assert not result.success
    assert result.error_kind == ErrorKind.PRECONDITION


@pytest.mark.asyncio
async def test_evm_full_scan_rotates_refused_keys(config):
    seen_keys = []

    def handler(request: httpx.Request) -> httpx.Response:
        key = request.headers["X-API-Key"]
        seen_keys.append(key)
        if key == "spent":
            return httpx.Response(401)
        path = request.url.path
        if path.endswith("/balance"):
            return httpx.Response(200, json={"balance": "1500000000000000000"})
        if path.endswith("/erc20/transfers"):
            return httpx.Response(200, json={"result": []})
        if path.endswith("/erc20"):
            return httpx.Response(200, json=[
                {"token_address": "0xA0b8", "symbol": "USDC", "name": "USD Coin", "decimals": 6, "balance": "5000000"},
                {"token_address": "0xdead", "symbol": "FREE", "name": "Free money", "decimals": 18, "balance": "1"},
                {"token_address": "0xbeef", "symbol": "SPAM", "name": "x", "decimals": 18, "balance": "1", "possible_spam": True},
            ])
        return httpx.Response(200, json={"result": [native_tx()]})

    adapter = evm_adapter(config, handler, keys=("spent", "good"))
    result = await adapter.full_scan(EVM_WALLET, ["eth"])

    assert result.success
    assert result.chains == ["eth"]
    assert sorted(b.coin for b in result.balances) == ["ETH", "USDC"]
    assert [tx.source_id for tx in result.transactions] == ["0xhash1"]
    assert "spent" in seen_keys and "good" in seen_keys


@pytest.mark.asyncio
async def test_evm_exhausted_keys_become_warnings(config):
    adapter = evm_adapter(config, lambda request: httpx.Response(429), keys=("a", "b"))
    result = await adapter.scan_balances(EVM_WALLET, ["eth", "moonchain"])

    assert result.success
    assert result.balances == []
    assert any("exhausted" in w for w in result.warnings)
    assert any("moonchain" in w for w in result.warnings)


def test_evm_zero_decimal_token(config):
    adapter = evm_adapter(config)
    balance = adapter.parse_balance(
        {"token_address": "0xA0b8", "symbol": "TICKET", "name": "Ticket", "decimals": 0, "balance": "5"},
        EVM_WALLET, "eth",
    )
    transfer = {
        "transaction_hash": "0xzero",
        "log_index": 0,
        "block_timestamp": "2023-05-01T00:00:00Z",
        "from_address": OTHER,
        "to_address": EVM_WALLET,
        "value": "5",
        "token_decimals": "0",
        "token_symbol": "USDC",
        "address": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    }

    assert balance.amount == 5
    assert adapter.parse_transaction(transfer, EVM_WALLET, "eth")[0].amount_in == 5


def test_evm_missing_decimals_default_to_18(config):
    balance = evm_adapter(config).parse_balance(
        {"token_address": "0xA0b8", "symbol": "USDC", "decimals": None, "balance": "3000000000000000000"},
        EVM_WALLET, "eth",
    )
    assert balance.amount == 3.0


@pytest.mark.asyncio
async def test_evm_malformed_record_skips_only_that_record(config):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/erc20/transfers"):
            return httpx.Response(200, json={"result": []})
        if request.url.params["chain"] == "0x38":
            return httpx.Response(200, json={"result": [
                native_tx(hash="0xbad", from_address=EVM_WALLET, to_address=OTHER, gas_price="abc"),
                native_tx(hash="0xgood"),
            ]})
        return httpx.Response(200, json={"result": [native_tx()]})

    result = await evm_adapter(config, handler).scan_transactions(EVM_WALLET, ["eth", "bsc"])

    assert result.success
    assert result.chains == ["eth", "bsc"]
    assert [(tx.chain, tx.source_id) for tx in result.transactions] == [("eth", "0xhash1"), ("bsc", "0xgood")]
    assert any("bsc: skipped malformed record" in w for w in result.warnings)


@pytest.mark.asyncio
async def test_evm_unexpected_payload_shapes(config):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/balance"):
            return httpx.Response(200, json=["not", "a", "balance"])
        if path.endswith("/erc20"):
            return httpx.Response(200, json={"result": "nope"})
        if path.endswith("/erc20/transfers"):
            return httpx.Response(200, json="oops")
        return httpx.Response(200, json=[native_tx(), "junk"])

    result = await evm_adapter(config, handler).full_scan(EVM_WALLET, ["eth"])

    assert result.success
    assert result.balances == []
    assert result.transactions == []
    assert result.chains == ["eth"]


@pytest.mark.asyncio
async def test_evm_broken_chain_does_not_abort_others(config):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["chain"] == "0x38":
            return httpx.Response(500)
        if request.url.path.endswith("/balance"):
            return httpx.Response(200, json={"balance": "1500000000000000000"})
        return httpx.Response(200, json=[])

    result = await evm_adapter(config, handler).scan_balances(EVM_WALLET, ["bsc", "eth"])

    assert result.success
    assert [b.coin for b in result.balances] == ["ETH"]
    assert any(w.startswith("bsc:") for w in result.warnings)


# ----------------------------------------------------------------------
# Cosmos
# ----------------------------------------------------------------------

def cosmos_adapter(config, handler=no_io):
    return CosmosAdapter(client=mock_client(handler), gate=IntervalGate(0), config=config)


def sdk_send(sender, recipient, amount="1000000", denom="uatom", code=0):
    return {
        "txhash": "ABC",
        "timestamp": "2023-02-01T00:00:00Z",
        "code": code,
        "tx": {
            "body": {"messages": [{
                "@type": "/cosmos.bank.v1beta1.MsgSend",
                "from_address": sender,
                "to_address": recipient,
                "amount": [{"denom": denom, "amount": amount}, {"denom": "ibc/27394FB0", "amount": "5"}],
            }]},
            "auth_info": {"fee": {"amount": [{"denom": "uatom", "amount": "5000"}]}},
        },
    }


def test_parse_coins():
    assert parse_coins("123456uatom,5ibc/ABC") == [("123456", "uatom"), ("5", "ibc/ABC")]
    assert parse_coins("") == []


def test_cosmos_receive_has_no_fee_row(config):
    rows = cosmos_adapter(config).parse_transaction(sdk_send("cosmos1other", ATOM_WALLET), ATOM_WALLET, "atom")

    assert len(rows) == 1
    assert rows[0].type == TransactionType.DEPOSIT
    assert (rows[0].coin_in, rows[0].amount_in) == ("ATOM", 1.0)
    assert rows[0].source_id == "ABC_0_ATOM"


def test_cosmos_send_charges_fee_once(config):
    rows = cosmos_adapter(config).parse_transaction(sdk_send(ATOM_WALLET, "cosmos1other"), ATOM_WALLET, "atom")

    assert [tx.type for tx in rows] == [TransactionType.WITHDRAWAL, TransactionType.FEE]
    assert rows[1].source_id == "ABC_fee"
    assert rows[1].amount_out == pytest.approx(0.005)


def test_cosmos_failed_transaction_is_skipped(config):
    assert cosmos_adapter(config).parse_transaction(sdk_send(ATOM_WALLET, "x", code=5), ATOM_WALLET, "atom") == []


def test_cosmos_staking_messages(config):
    raw = {
        "txhash": "STK",
        "timestamp": "2023-03-01T00:00:00Z",
        "tx": {
            "body": {"messages": [
                {
                    "@type": "/cosmos.distribution.v1beta1.MsgWithdrawDelegatorReward",
                    "delegator_address": ATOM_WALLET,
                    "validator_address": "cosmosvaloper1x",
                },
                {
                    "@type": "/cosmos.staking.v1beta1.MsgDelegate",
                    "delegator_address": ATOM_WALLET,
                    "validator_address": "cosmosvaloper1x",
                    "amount": {"denom": "uatom", "amount": "2000000"},
                },
            ]},
            "auth_info": {"fee": {"amount": [{"denom": "uatom", "amount": "1000"}]}},
        },
        "logs": [
            {"msg_index": 0, "events": [
                {"type": "withdraw_rewards", "attributes": [{"key": "amount", "value": "123456uatom,5ibc/ABC"}]},
            ]},
            {"msg_index": 1, "events": []},
        ],
    }

    reward, delegate, fee = cosmos_adapter(config).parse_transaction(raw, ATOM_WALLET, "atom")

    assert reward.type == TransactionType.STAKING_REWARD
    assert reward.amount_in == pytest.approx(0.123456)
    assert delegate.type == TransactionType.STAKING
    assert (delegate.coin_out, delegate.amount_out) == ("ATOM", 2.0)
    assert fee.type == TransactionType.FEE


def test_cosmos_fcd_format(config):
    raw = {
        "txhash": "FCD1",
        "timestamp": "2022-01-10T00:00:00Z",
        "code": 0,
        "tx": {
            "type": "core/StdTx",
            "value": {
                "msg": [{
                    "type": "bank/MsgSend",
                    "value": {
                        "from_address": TERRA_OTHER,
                        "to_address": TERRA_WALLET,
                        "amount": [{"denom": "uluna", "amount": "3000000"}, {"denom": "uusd", "amount": "10000000"}],
                    },
                }],
                "fee": {"amount": [{"denom": "uusd", "amount": "100000"}]},
            },
        },
    }

    rows = cosmos_adapter(config).parse_transaction(raw, TERRA_WALLET, "terra")

    assert [(tx.coin_in, tx.amount_in) for tx in rows] == [("LUNC", 3.0), ("USTC", 10.0)]


def test_cosmos_balance_names_native_coin(config):
    adapter = cosmos_adapter(config)
    balance = adapter.parse_balance({"denom": "uluna", "amount": "5000000"}, TERRA_WALLET, "terra")

    assert (balance.coin, balance.name, balance.amount) == ("LUNC", "Terra Classic", 5.0)
    assert adapter.parse_balance({"denom": "uusd", "amount": "1"}, TERRA_WALLET, "terra") is None
    assert adapter.parse_balance({"denom": "ibc/X", "amount": "100000000"}, TERRA_WALLET, "terra") is None


@pytest.mark.asyncio
async def test_cosmos_terra_scan_paginates_fcd(config):
    config = config.model_copy(update={"cosmos_page_limit": 1})
    offsets = []
    fcd_tx = {
        "txhash": "FCD2",
        "timestamp": "2022-01-10T00:00:00Z",
        "tx": {"value": {"msg": [{
            "type": "bank/MsgSend",
            "value": {"from_address": TERRA_OTHER, "to_address": TERRA_WALLET, "amount": [{"denom": "uluna", "amount": "1000000"}]},
        }]}},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if "/bank/v1beta1/balances/" in request.url.path:
            return httpx.Response(200, json={"balances": [{"denom": "uluna", "amount": "2000000"}]})
        offset = int(request.url.params["offset"])
        offsets.append(offset)
        return httpx.Response(200, json={"txs": [fcd_tx] if offset == 0 else []})

    result = await cosmos_adapter(config, handler).full_scan(TERRA_WALLET)

    assert result.success
    assert result.chains == ["terra"]
    assert [b.coin for b in result.balances] == ["LUNC"]
    assert len(result.transactions) == 1
    assert offsets == [0, 1]


@pytest.mark.asyncio
async def test_cosmos_upstream_error_is_a_warning(config):
    result = await cosmos_adapter(config, lambda request: httpx.Response(500)).scan_balances(ATOM_WALLET)

    assert result.success
    assert result.balances == []
    assert result.warnings


# ----------------------------------------------------------------------
# Solana
# ----------------------------------------------------------------------

def solana_adapter(config, handler=no_io, api_key="helius-key"):
    return SolanaAdapter(api_key=api_key, client=mock_client(handler), config=config)


def test_solana_swap_becomes_one_trade_plus_fee(config):
    raw = {
        "signature": "sig1",
        "timestamp": 1_690_000_000,
        "type": "SWAP",
        "fee": 5000,
        "feePayer": SOL_WALLET,
        "tokenTransfers": [
            {"fromUserAccount": SOL_WALLET, "toUserAccount": SOL_OTHER, "mint": USDC_MINT, "tokenAmount": 50},
        ],
        "nativeTransfers": [
            {"fromUserAccount": SOL_OTHER, "toUserAccount": SOL_WALLET, "amount": 2_000_000_000},
        ],
    }

    trade, fee = solana_adapter(config).parse_transaction(raw, SOL_WALLET)

    assert trade.type == TransactionType.TRADE
    assert (trade.coin_out, trade.amount_out, trade.coin_in, trade.amount_in) == ("USDC", 50, "SOL", 2.0)
    assert trade.source_id == "sig1_0"
    assert fee.source_id == "sig1_fee"
    assert (fee.fee_coin, fee.fee_amount) == ("SOL", pytest.approx(0.000005))


def test_solana_failed_transaction_keeps_fee_only(config):
    raw = {
        "signature": "sig2",
        "timestamp": 1_690_000_000,
        "fee": 5000,
        "feePayer": SOL_WALLET,
        "transactionError": {"InstructionError": [0, "Custom"]},
        "nativeTransfers": [{"fromUserAccount": SOL_WALLET, "toUserAccount": SOL_OTHER, "amount": 1_000_000_000}],
    }

    rows = solana_adapter(config).parse_transaction(raw, SOL_WALLET)
    assert [tx.type for tx in rows] == [TransactionType.FEE]


def test_solana_unknown_mints_are_skipped(config):
    raw = {
        "signature": "sig3",
        "timestamp": 1_690_000_000,
        "tokenTransfers": [{"fromUserAccount": SOL_OTHER, "toUserAccount": SOL_WALLET, "mint": "Unknown111", "tokenAmount": 5}],
    }
    assert solana_adapter(config).parse_transaction(raw, SOL_WALLET) == []


def test_solana_das_balance(config):
    adapter = solana_adapter(config)
    asset = {
        "id": USDC_MINT,
        "interface": "FungibleToken",
        "token_info": {"balance": 12_500_000, "decimals": 6},
        "content": {"metadata": {"symbol": "USDC"}},
    }
    balance = adapter.parse_balance(asset, SOL_WALLET)

    assert (balance.coin, balance.amount, balance.contract_address) == ("USDC", 12.5, USDC_MINT)
    assert adapter.parse_balance({"interface": "V1_NFT", "id": "x"}, SOL_WALLET) is None


@pytest.mark.asyncio
async def test_solana_scan_requires_api_key(config):
    result = await solana_adapter(config, api_key="").full_scan(SOL_WALLET)
    assert result.error_kind == ErrorKind.PRECONDITION


@pytest.mark.asyncio
async def test_solana_full_scan(config):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["api-key"] == "helius-key"
        if request.method == "POST":
            method = json.loads(request.content)["method"]
            if method == "getBalance":
                return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"value": 1_500_000_000}})
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"message": "method disabled"}})
        return httpx.Response(200, json=[{
            "signature": "sig9",
            "timestamp": 1_690_000_000,
            "nativeTransfers": [{"fromUserAccount": SOL_OTHER, "toUserAccount": SOL_WALLET, "amount": 10_000_000}],
        }])

    result = await solana_adapter(config, handler).full_scan(SOL_WALLET)

    assert result.success
    assert [(b.coin, b.amount) for b in result.balances] == [("SOL", 1.5)]
    assert any("method disabled" in w for w in result.warnings)
    assert [tx.amount_in for tx in result.transactions] == [0.01]


def test_solana_unparseable_token_amount_drops_only_that_leg(config):
    raw = {
        "signature": "sig4",
        "timestamp": 1_690_000_000,
        "tokenTransfers": [{"fromUserAccount": SOL_OTHER, "toUserAccount": SOL_WALLET, "mint": USDC_MINT, "tokenAmount": "lots"}],
        "nativeTransfers": [{"fromUserAccount": SOL_OTHER, "toUserAccount": SOL_WALLET, "amount": 1_000_000_000}],
    }

    rows = solana_adapter(config).parse_transaction(raw, SOL_WALLET)

    assert [(tx.coin_in, tx.amount_in) for tx in rows] == [("SOL", 1.0)]


@pytest.mark.asyncio
async def test_solana_string_rpc_error_and_bad_records(config):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            method = json.loads(request.content)["method"]
            if method == "getBalance":
                return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": "rate limited"})
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"items": ["junk", {"interface": "V1_NFT"}]}})
        return httpx.Response(200, json=[
            {"signature": "sig-bad", "timestamp": 1_690_000_000, "tokenTransfers": "garbage"},
            "junk",
            {
                "signature": "sig-good",
                "timestamp": 1_690_000_000,
                "nativeTransfers": [{"fromUserAccount": SOL_OTHER, "toUserAccount": SOL_WALLET, "amount": 10_000_000}],
            },
        ])

    result = await solana_adapter(config, handler).full_scan(SOL_WALLET)

    assert result.success
    assert result.balances == []
    assert any("rate limited" in w for w in result.warnings)
    assert any("skipped malformed record" in w for w in result.warnings)
    assert [tx.source_id for tx in result.transactions] == ["sig-good_0"]


@pytest.mark.asyncio
async def test_solana_non_object_rpc_response_is_a_warning(config):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json=["not", "rpc"])
        return httpx.Response(200, json=[])

    result = await solana_adapter(config, handler).scan_balances(SOL_WALLET)

    assert result.success
    assert result.balances == []
    assert any("Unexpected Solana RPC" in w for w in result.warnings)


@pytest.mark.asyncio
async def test_cosmos_malformed_records_are_skipped(config):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"balances": [
            "junk",
            {"denom": "uatom", "amount": "3000000"},
            {"denom": ["uatom"], "amount": "1"},
        ]})

    result = await cosmos_adapter(config, handler).scan_balances(ATOM_WALLET)

    assert result.success
    assert [(b.coin, b.amount) for b in result.balances] == [("ATOM", 3.0)]
    assert any("skipped malformed record" in w for w in result.warnings)
