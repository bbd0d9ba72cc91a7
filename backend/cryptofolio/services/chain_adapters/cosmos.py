"""Cosmos SDK chain adapter (Terra Classic, Cosmos Hub, Osmosis)."""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
import logging
import re
import httpx
from cryptofolio.config import Settings
from cryptofolio.models.balance import Balance
from cryptofolio.models.scan import ScanResult
from cryptofolio.models.transaction import Transaction, TransactionType
from cryptofolio.models.wallet import WalletFamily
from cryptofolio.services.chain_adapters.address import cosmos_chain
from cryptofolio.services.chain_adapters.base import ChainAdapter, as_records, scale_amount
from cryptofolio.services.token_filter import TokenFilter
from cryptofolio.utils.errors import AdapterError
from cryptofolio.utils.rate_limit import IntervalGate

logger = logging.getLogger(__name__)

COSMOS_DUST = 0.000001

# "12345uluna,678uusd" as found in event attributes
COIN_STRING = re.compile(r"(\d+)([a-zA-Z][a-zA-Z0-9/:._-]*)")


@dataclass(frozen=True)
class CosmosChain:
    name: str
    symbol: str
    url_setting: str
    denoms: Dict[str, Tuple[str, int]] = field(default_factory=dict)
    fcd: bool = False


COSMOS_CHAINS = {
    "terra": CosmosChain(
        name="Terra Classic",
        symbol="LUNC",
        url_setting="terra_rest_url",
        denoms={"uluna": ("LUNC", 6), "uusd": ("USTC", 6)},
        fcd=True,
    ),
    "atom": CosmosChain(
        name="Cosmos Hub",
        symbol="ATOM",
        url_setting="cosmos_rest_url",
        denoms={"uatom": ("ATOM", 6)},
    ),
    "osmo": CosmosChain(
        name="Osmosis",
        symbol="OSMO",
        url_setting="osmosis_rest_url",
        denoms={"uosmo": ("OSMO", 6)},
    ),
}


def parse_coins(value: str) -> List[Tuple[str, str]]:
    """Split a Cosmos coin string into ``(amount, denom)`` pairs."""
    return COIN_STRING.findall(value or "")


class CosmosAdapter(ChainAdapter):
    """Adapter for Cosmos SDK chains through their public REST endpoints.

    Messages are expanded one row per recognized coin. Unrecognized message
    types and denoms (IBC vouchers, CW20, ...) are skipped silently.
    """
    family = WalletFamily.COSMOS
    tag = "[COSMOS]"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        token_filter: Optional[TokenFilter] = None,
        gate: Optional[IntervalGate] = None,
        config: Optional[Settings] = None,
    ):
        super().__init__(client=client, token_filter=token_filter, config=config)
        self.gate = gate or IntervalGate(self.config.cosmos_page_delay_seconds)

    def validate_address(self, address: str) -> bool:
        return bool(address) and cosmos_chain(address.strip().lower()) is not None

    def default_chains(self, address: str) -> List[str]:
        chain = cosmos_chain(address.strip().lower())
        return [chain] if chain else []

    def _api(self, chain: str) -> str:
        return getattr(self.config, COSMOS_CHAINS[chain].url_setting).rstrip("/")

    def _denom(self, chain: str, denom: str) -> Optional[Tuple[str, int]]:
        return COSMOS_CHAINS[chain].denoms.get(denom)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_balance(self, raw: dict, address: str, chain: str) -> Optional[Balance]:
        denom_info = self._denom(chain, raw.get("denom", ""))
        if denom_info is None:
            return None
        symbol, decimals = denom_info
        amount = scale_amount(raw.get("amount"), decimals)
        if amount <= COSMOS_DUST:
            return None
        config = COSMOS_CHAINS[chain]
        name = config.name if symbol == config.symbol else symbol
        return self.make_balance(address, chain, symbol, amount, name=name)

    def parse_transaction(self, raw: dict, address: str, chain: str) -> List[Transaction]:
        wallet = address.lower()
        tx_hash = raw.get("txhash") or ""
        if not tx_hash:
            return []
        # Failed transactions are skipped entirely
        if raw.get("code") not in (None, 0):
            return []

        timestamp = raw.get("timestamp")
        body = raw.get("tx") or {}
        messages = (body.get("body") or {}).get("messages") or (body.get("value") or {}).get("msg") or []

        rows: List[Transaction] = []
        signed = False
        for index, msg in enumerate(messages):
            msg_type = msg.get("@type") or msg.get("type") or ""
            value = msg.get("value") or msg

            if "MsgSend" in msg_type:
                from_address = (value.get("from_address") or "").lower()
                to_address = (value.get("to_address") or "").lower()
                outgoing = from_address == wallet
                incoming = to_address == wallet
                if not (outgoing or incoming):
                    continue
                signed = signed or outgoing
                for coin in value.get("amount") or []:
                    rows.extend(self._coin_row(
                        address, chain, tx_hash, index, timestamp, coin.get("denom"), coin.get("amount"),
                        TransactionType.WITHDRAWAL if outgoing else TransactionType.DEPOSIT,
                        incoming=not outgoing,
                        notes="Send" if outgoing else "Receive",
                    ))

            elif "MsgUndelegate" in msg_type or "MsgDelegate" in msg_type:
                if (value.get("delegator_address") or "").lower() != wallet:
                    continue
                signed = True
                coin = value.get("amount") or {}
                undelegate = "MsgUndelegate" in msg_type
                rows.extend(self._coin_row(
                    address, chain, tx_hash, index, timestamp, coin.get("denom"), coin.get("amount"),
                    TransactionType.STAKING,
                    incoming=undelegate,
                    notes="Undelegate (Unstaking)" if undelegate else "Delegate (Staking)",
                ))

            elif "MsgWithdrawDelegatorReward" in msg_type:
                if (value.get("delegator_address") or "").lower() != wallet:
                    continue
                signed = True
                for amount, denom in self._reward_coins(raw, index):
                    rows.extend(self._coin_row(
                        address, chain, tx_hash, index, timestamp, denom, amount,
                        TransactionType.STAKING_REWARD,
                        incoming=True,
                        notes="Staking reward",
                    ))

        if signed:
            rows.extend(self._fee_row(raw, address, chain, tx_hash, timestamp))
        return rows

    def _coin_row(
        self,
        address: str,
        chain: str,
        tx_hash: str,
        index: int,
        timestamp,
        denom: Optional[str],
        minor_amount,
        tx_type: TransactionType,
        incoming: bool,
        notes: str,
    ) -> List[Transaction]:
        denom_info = self._denom(chain, denom or "")
        if denom_info is None:
            return []
        symbol, decimals = denom_info
        amount = scale_amount(minor_amount, decimals)
        if amount <= 0:
            return []
        return [self.make_transaction(
            address, chain,
            sourceId=f"{tx_hash}_{index}_{symbol}",
            timestamp=timestamp,
            type=tx_type,
            coinIn=symbol if incoming else "",
            amountIn=amount if incoming else 0,
            coinOut="" if incoming else symbol,
            amountOut=0 if incoming else amount,
            notes=notes,
        )]

    def _fee_row(self, raw: dict, address: str, chain: str, tx_hash: str, timestamp) -> List[Transaction]:
        body = raw.get("tx") or {}
        fees = (
            ((body.get("auth_info") or {}).get("fee") or {}).get("amount")
            or ((body.get("value") or {}).get("fee") or {}).get("amount")
            or []
        )
        for fee in fees:
            denom_info = self._denom(chain, fee.get("denom", ""))
            if denom_info is None:
                continue
            symbol, decimals = denom_info
            amount = scale_amount(fee.get("amount"), decimals)
            if amount <= 0:
                continue
            # One fee row per transaction, paid in the first recognized denom
            return [self.make_transaction(
                address, chain,
                sourceId=f"{tx_hash}_fee",
                timestamp=timestamp,
                type=TransactionType.FEE,
                coinOut=symbol,
                amountOut=amount,
                feeCoin=symbol,
                feeAmount=amount,
                notes="Transaction fee",
            )]
        return []

    def _events_for(self, raw: dict, index: int) -> Iterable[dict]:
        logs = raw.get("logs") or []
        for log in logs:
            if int(log.get("msg_index", 0)) == index:
                yield from log.get("events") or []
        if logs:
            return
        # SDK 0.50+ drops logs; events carry a msg_index attribute instead
        for event in raw.get("events") or []:
            attributes = {a.get("key"): a.get("value") for a in event.get("attributes") or []}
            if str(attributes.get("msg_index")) == str(index):
                yield event

    def _reward_coins(self, raw: dict, index: int) -> List[Tuple[str, str]]:
        coins = []
        for event in self._events_for(raw, index):
            if event.get("type") != "withdraw_rewards":
                continue
            for attribute in event.get("attributes") or []:
                if attribute.get("key") == "amount":
                    coins.extend(parse_coins(attribute.get("value")))
        return coins

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    async def _scan_balances(self, address: str, chains: List[str]) -> ScanResult:
        result = ScanResult()
        for chain in chains:
            if chain not in COSMOS_CHAINS:
                continue
            logger.info(f"[COSMOS] Scanning {chain} balances for {address[:12]}...")
            try:
                data = await self._get_json(f"{self._api(chain)}/cosmos/bank/v1beta1/balances/{address}")
            except AdapterError as e:
                logger.warning(f"[COSMOS] Skipping {chain} balances: {e}")
                result.warnings.append(f"{chain}: {e}")
                continue
            result.chains.append(chain)
            for raw in as_records(data, "balances"):
                balance = self.parse_safely(self.parse_balance, raw, address, chain, result.warnings)
                if balance is not None:
                    result.balances.append(balance)
        logger.info(f"[COSMOS] Found {len(result.balances)} balances")
        return result

    async def _scan_transactions(self, address: str, chains: List[str]) -> ScanResult:
        result = ScanResult()
        for chain in chains:
            if chain not in COSMOS_CHAINS:
                continue
            try:
                if COSMOS_CHAINS[chain].fcd:
                    raw_txs = await self._fetch_fcd_txs(address, chain)
                else:
                    raw_txs = await self._fetch_sdk_txs(address, chain)
            except AdapterError as e:
                logger.warning(f"[COSMOS] Skipping {chain} transactions: {e}")
                result.warnings.append(f"{chain}: {e}")
                continue
            result.chains.append(chain)
            for raw in raw_txs:
                rows = self.parse_safely(self.parse_transaction, raw, address, chain, result.warnings)
                result.transactions.extend(rows or [])
        logger.info(f"[COSMOS] Parsed {len(result.transactions)} transactions")
        return result

    async def _fetch_fcd_txs(self, address: str, chain: str) -> List[dict]:
        """Terra FCD offset pagination, capped at the configured maximum."""
        limit = self.config.cosmos_page_limit
        offset = 0
        collected: List[dict] = []
        while len(collected) < self.config.cosmos_max_transactions:
            await self.gate.wait()
            data = await self._get_json(
                f"{self._api(chain)}/v1/txs",
                params={"account": address, "limit": limit, "offset": offset},
            )
            txs = as_records(data, "txs")
            if not txs:
                break
            collected.extend(txs)
            offset += limit
            logger.info(f"[COSMOS] Downloaded {len(collected)} {chain} transactions...")
            if len(txs) < limit:
                break
        return collected[:self.config.cosmos_max_transactions]

    async def _fetch_sdk_txs(self, address: str, chain: str) -> List[dict]:
        """Standard tx search, once as sender and once as recipient."""
        limit = self.config.cosmos_page_limit
        by_hash: Dict[str, dict] = {}
        for event in (f"message.sender='{address}'", f"transfer.recipient='{address}'"):
            offset = 0
            while len(by_hash) < self.config.cosmos_max_transactions:
                await self.gate.wait()
                data = await self._get_json(
                    f"{self._api(chain)}/cosmos/tx/v1beta1/txs",
                    params={
                        "events": event,
                        "pagination.limit": limit,
                        "pagination.offset": offset,
                        "order_by": "ORDER_BY_DESC",
                    },
                )
                responses = as_records(data, "tx_responses")
                for tx in responses:
                    by_hash.setdefault(tx.get("txhash", ""), tx)
                if len(responses) < limit:
                    break
                offset += limit
        return list(by_hash.values())[:self.config.cosmos_max_transactions]
