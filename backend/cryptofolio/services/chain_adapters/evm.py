"""EVM chain adapter (Moralis)."""
from typing import Any, Dict, List, Optional
import logging
import httpx
from cryptofolio.config import Settings
from cryptofolio.models.balance import Balance
from cryptofolio.models.scan import ScanResult
from cryptofolio.models.transaction import Transaction, TransactionType
from cryptofolio.models.wallet import WalletFamily
from cryptofolio.services.chain_adapters.address import is_valid_evm_address
from cryptofolio.services.chain_adapters.base import RECORD_ERRORS, ChainAdapter, as_records, scale_amount
from cryptofolio.services.token_filter import TokenFilter
from cryptofolio.utils.credentials import CredentialPool
from cryptofolio.utils.errors import AdapterError, ErrorKind
from cryptofolio.utils.rate_limit import IntervalGate

logger = logging.getLogger(__name__)

# Chain IDs for Moralis
MORALIS_CHAINS = {
    "eth": "0x1",
    "bsc": "0x38",
    "polygon": "0x89",
    "arbitrum": "0xa4b1",
    "base": "0x2105",
    "avalanche": "0xa86a",
    "fantom": "0xfa",
    "cronos": "0x19",
}

NATIVE_SYMBOLS = {
    "eth": "ETH",
    "bsc": "BNB",
    "polygon": "MATIC",
    "arbitrum": "ETH",
    "base": "ETH",
    "avalanche": "AVAX",
    "fantom": "FTM",
    "cronos": "CRO",
}

NATIVE_DECIMALS = 18
NATIVE_DUST = 0.0001

# Statuses that mean "this key is spent or refused, try the next one"
ROTATE_STATUSES = {401, 403, 429}


def token_decimals(value: Any) -> int:
    """Declared decimals; only a missing value defaults to 18, 0 is legitimate."""
    if value is None or value == "":
        return NATIVE_DECIMALS
    return int(value)


class EvmAdapter(ChainAdapter):
    """Adapter for EVM chains through the Moralis API."""
    family = WalletFamily.EVM
    tag = "[EVM]"

    def __init__(
        self,
        credentials: CredentialPool,
        client: Optional[httpx.AsyncClient] = None,
        token_filter: Optional[TokenFilter] = None,
        gate: Optional[IntervalGate] = None,
        config: Optional[Settings] = None,
    ):
        super().__init__(client=client, token_filter=token_filter, config=config)
        self.credentials = credentials
        self.base_url = self.config.moralis_base_url
        self.gate = gate or IntervalGate(self.config.evm_chain_delay_seconds)
        self.tx_limit = 100

    def validate_address(self, address: str) -> bool:
        return is_valid_evm_address(address)

    def default_chains(self, address: str) -> List[str]:
        return list(self.config.evm_default_chains)

    def check_preconditions(self, address: str) -> Optional[ScanResult]:
        failure = super().check_preconditions(address)
        if failure is not None:
            return failure
        if self.credentials.is_empty:
            return ScanResult.failure(ErrorKind.PRECONDITION, "No Moralis API key configured")
        return None

    async def _moralis_get(self, path: str, params: Dict[str, Any]) -> Optional[Any]:
        """GET with key rotation; None once every key has been refused."""
        url = f"{self.base_url}{path}"
        for attempt, api_key in enumerate(self.credentials.rotation(), start=1):
            try:
                response = await self.client.get(url, params=params, headers={"X-API-Key": api_key})
            except httpx.HTTPError as e:
                raise AdapterError(f"Error calling Moralis {path}: {str(e)}")

            if response.status_code in ROTATE_STATUSES:
                logger.warning(f"[EVM] HTTP {response.status_code} on key {attempt}, trying the next one")
                continue
            if response.is_error:
                raise AdapterError(f"Moralis HTTP {response.status_code} on {path}")
            try:
                return response.json()
            except ValueError as e:
                raise AdapterError(f"Invalid JSON from Moralis {path}: {str(e)}")

        logger.warning(f"[EVM] All {len(self.credentials)} API keys exhausted for {path}")
        return None

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_balance(self, raw: dict, address: str, chain: str) -> Optional[Balance]:
        if raw.get("token_address"):
            if raw.get("possible_spam") is True:
                return None
            decimals = token_decimals(raw.get("decimals"))
            amount = scale_amount(raw.get("balance"), decimals)
            if amount <= 0:
                return None
            symbol = raw.get("symbol") or "UNKNOWN"
            return self.make_balance(
                address, chain, symbol, amount,
                name=raw.get("name") or symbol,
                contract_address=raw["token_address"].lower(),
            )

        amount = scale_amount(raw.get("balance"), NATIVE_DECIMALS)
        if amount <= NATIVE_DUST:
            return None
        symbol = NATIVE_SYMBOLS[chain]
        return self.make_balance(address, chain, symbol, amount)

    def parse_transaction(self, raw: dict, address: str, chain: str) -> List[Transaction]:
        if raw.get("transaction_hash"):
            return self._parse_token_transfer(raw, address, chain)
        return self._parse_native_transfer(raw, address, chain)

    def _parse_native_transfer(self, raw: dict, address: str, chain: str) -> List[Transaction]:
        wallet = address.lower()
        tx_hash = raw.get("hash") or ""
        if not tx_hash:
            return []
        symbol = NATIVE_SYMBOLS[chain]
        timestamp = raw.get("block_timestamp")
        from_address = (raw.get("from_address") or "").lower()
        to_address = (raw.get("to_address") or "").lower()
        failed = str(raw.get("receipt_status", "1")) == "0"

        rows = []
        value = scale_amount(raw.get("value"), NATIVE_DECIMALS)
        if value > 0 and not failed and wallet in (from_address, to_address):
            incoming = to_address == wallet
            rows.append(self.make_transaction(
                address, chain,
                sourceId=tx_hash,
                timestamp=timestamp,
                type=TransactionType.DEPOSIT if incoming else TransactionType.WITHDRAWAL,
                coinIn=symbol if incoming else "",
                amountIn=value if incoming else 0,
                coinOut="" if incoming else symbol,
                amountOut=0 if incoming else value,
                notes="Receive" if incoming else "Send",
            ))

        if from_address == wallet:
            gas_used = raw.get("receipt_gas_used") or raw.get("gas") or 0
            fee = scale_amount(int(float(raw.get("gas_price") or 0)) * int(float(gas_used)), NATIVE_DECIMALS)
            if fee > 0:
                rows.append(self.make_transaction(
                    address, chain,
                    sourceId=f"{tx_hash}_fee",
                    timestamp=timestamp,
                    type=TransactionType.FEE,
                    coinOut=symbol,
                    amountOut=fee,
                    feeCoin=symbol,
                    feeAmount=fee,
                    notes="Gas fee" + (" (failed transaction)" if failed else ""),
                ))
        return rows

    def _parse_token_transfer(self, raw: dict, address: str, chain: str) -> List[Transaction]:
        wallet = address.lower()
        if raw.get("possible_spam") is True:
            return []
        from_address = (raw.get("from_address") or "").lower()
        to_address = (raw.get("to_address") or "").lower()
        if wallet not in (from_address, to_address):
            return []

        decimals = token_decimals(raw.get("token_decimals"))
        value = scale_amount(raw.get("value"), decimals)
        if value <= 0:
            return []

        symbol = raw.get("token_symbol") or "UNKNOWN"
        contract = (raw.get("address") or "").lower()
        verdict = self.token_filter.validate(raw.get("token_name"), symbol, value, 0, contract or None)
        if not verdict.is_valid:
            return []

        incoming = to_address == wallet
        return [self.make_transaction(
            address, chain,
            sourceId=f"{raw['transaction_hash']}_{raw.get('log_index', 0)}",
            timestamp=raw.get("block_timestamp"),
            type=TransactionType.DEPOSIT if incoming else TransactionType.WITHDRAWAL,
            coinIn=symbol if incoming else "",
            amountIn=value if incoming else 0,
            coinOut="" if incoming else symbol,
            amountOut=0 if incoming else value,
            notes=f"ERC-20 {'receive' if incoming else 'send'}",
        )]

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    async def _scan_balances(self, address: str, chains: List[str]) -> ScanResult:
        result = ScanResult()
        for chain in chains:
            if chain not in MORALIS_CHAINS:
                result.warnings.append(f"Unsupported EVM chain: {chain}")
                continue
            await self.gate.wait()
            logger.info(f"[EVM] Scanning {chain} balances for {address[:10]}...")
            try:
                await self._scan_chain_balances(address, chain, result)
            except (AdapterError, *RECORD_ERRORS) as e:
                logger.warning(f"[EVM] Skipping {chain}: {e}")
                result.warnings.append(f"{chain}: {e}")

        logger.info(f"[EVM] Found {len(result.balances)} balances")
        return result

    async def _scan_chain_balances(self, address: str, chain: str, result: ScanResult):
        params = {"chain": MORALIS_CHAINS[chain]}
        native = await self._moralis_get(f"/{address}/balance", params)
        tokens = await self._moralis_get(f"/{address}/erc20", params)
        if native is None and tokens is None:
            result.warnings.append(f"{chain}: API keys exhausted")
            return

        result.chains.append(chain)
        if isinstance(native, dict):
            balance = self.parse_safely(self.parse_balance, native, address, chain, result.warnings)
            if balance is not None:
                result.balances.append(balance)
        for token in as_records(tokens):
            balance = self.parse_safely(self.parse_balance, token, address, chain, result.warnings)
            if balance is not None and await self.accept_token(balance):
                result.balances.append(balance)

    async def _scan_transactions(self, address: str, chains: List[str]) -> ScanResult:
        result = ScanResult()
        for chain in chains:
            if chain not in MORALIS_CHAINS:
                result.warnings.append(f"Unsupported EVM chain: {chain}")
                continue
            await self.gate.wait()
            logger.info(f"[EVM] Fetching {chain} transactions for {address[:10]}...")
            try:
                await self._scan_chain_transactions(address, chain, result)
            except (AdapterError, *RECORD_ERRORS) as e:
                logger.warning(f"[EVM] Skipping {chain} transactions: {e}")
                result.warnings.append(f"{chain}: {e}")

        logger.info(f"[EVM] Found {len(result.transactions)} transactions")
        return result

    async def _scan_chain_transactions(self, address: str, chain: str, result: ScanResult):
        params = {"chain": MORALIS_CHAINS[chain], "limit": self.tx_limit}
        native = await self._moralis_get(f"/{address}", params)
        tokens = await self._moralis_get(f"/{address}/erc20/transfers", params)
        if native is None and tokens is None:
            result.warnings.append(f"{chain}: API keys exhausted")
            return

        result.chains.append(chain)
        for raw in as_records(native, "result") + as_records(tokens, "result"):
            rows = self.parse_safely(self.parse_transaction, raw, address, chain, result.warnings)
            result.transactions.extend(rows or [])
