"""Abstract base class for chain adapters."""
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, List, Optional
import logging
import httpx
from cryptofolio.config import Settings, settings as default_settings
from cryptofolio.models.balance import Balance
from cryptofolio.models.scan import ScanResult
from cryptofolio.models.transaction import Transaction, create_transaction
from cryptofolio.models.wallet import WalletFamily
from cryptofolio.services.chain_adapters.address import detect_wallet_type, normalize_address, wallet_source
from cryptofolio.services.token_filter import TokenFilter
from cryptofolio.utils.errors import AdapterError, CryptofolioError, ErrorKind, RateLimitedError

logger = logging.getLogger(__name__)

# Raised by parsers on malformed upstream fields; they skip the record, never the scan
RECORD_ERRORS = (ValueError, TypeError, KeyError, AttributeError, ArithmeticError)


def scale_amount(minor_units: Any, decimals: int) -> float:
    """Integer minor units to a float amount, e.g. wei to ETH."""
    try:
        return float(Decimal(str(minor_units or 0)) / (Decimal(10) ** int(decimals)))
    except (InvalidOperation, ValueError, TypeError):
        return 0.0


def as_records(payload: Any, key: Optional[str] = None) -> List[dict]:
    """Dict records of a list payload, or of ``payload[key]`` for an envelope."""
    if key is not None:
        payload = payload.get(key) if isinstance(payload, dict) else None
    if not isinstance(payload, list):
        return []
    return [record for record in payload if isinstance(record, dict)]


class ChainAdapter(ABC):
    """Abstract base class for blockchain adapters.

    Async entry points always return a ``ScanResult``; nothing escapes them.
    """
    family: WalletFamily
    tag: str = "[CHAIN]"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        token_filter: Optional[TokenFilter] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self.client = client or httpx.AsyncClient(timeout=self.config.http_timeout_seconds)
        self.token_filter = token_filter or TokenFilter()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.aclose()

    @abstractmethod
    def validate_address(self, address: str) -> bool:
        """
        Validate a wallet address format.

        Args:
            address: Wallet address to validate

        Returns:
            True if address is valid
        """
        pass

    @abstractmethod
    def parse_balance(self, raw: dict, address: str, chain: str) -> Optional[Balance]:
        """Scale one upstream holding; None for dust or unknown assets."""
        pass

    @abstractmethod
    def parse_transaction(self, raw: dict, address: str, chain: str) -> List[Transaction]:
        """
        Parse a raw transaction into normalized Transaction objects.

        Args:
            raw: Upstream record
            address: Wallet the record was fetched for
            chain: Chain key

        Returns:
            Zero or more canonical transactions (transfer rows plus fee rows)
        """
        pass

    @abstractmethod
    async def _scan_balances(self, address: str, chains: List[str]) -> ScanResult:
        pass

    @abstractmethod
    async def _scan_transactions(self, address: str, chains: List[str]) -> ScanResult:
        pass

    def default_chains(self, address: str) -> List[str]:
        detected = detect_wallet_type(address)
        return [detected.chain] if detected and detected.chain else []

    def check_preconditions(self, address: str) -> Optional[ScanResult]:
        """Failure to return before any network I/O, or None when the scan may run."""
        if not self.validate_address(address):
            return ScanResult.failure(ErrorKind.PRECONDITION, f"Invalid {self.family.value} address: {address}")
        return None

    async def _guarded(self, operation, address: str, chains: Optional[List[str]]) -> ScanResult:
        failure = self.check_preconditions(address)
        if failure is not None:
            return failure
        chains = chains or self.default_chains(address)
        try:
            return await operation(address, chains)
        except CryptofolioError as e:
            logger.error(f"{self.tag} Scan failed for {address}: {e}")
            return ScanResult.failure(e.kind, str(e))
        except Exception as e:
            logger.exception(f"{self.tag} Unexpected error scanning {address}")
            return ScanResult.failure(ErrorKind.UPSTREAM, str(e))

    async def scan_balances(self, address: str, chains: Optional[List[str]] = None) -> ScanResult:
        return await self._guarded(self._scan_balances, address, chains)

    async def scan_transactions(self, address: str, chains: Optional[List[str]] = None) -> ScanResult:
        return await self._guarded(self._scan_transactions, address, chains)

    async def full_scan(self, address: str, chains: Optional[List[str]] = None) -> ScanResult:
        """Balances then transactions; a failure of one half becomes a warning."""
        failure = self.check_preconditions(address)
        if failure is not None:
            return failure
        balances = await self.scan_balances(address, chains)
        transactions = await self.scan_transactions(address, chains)
        result = balances.merge(transactions)
        logger.info(
            f"{self.tag} Full scan {address[:10]}...: "
            f"{len(result.balances)} balances, {len(result.transactions)} transactions"
        )
        return result

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def source_for(self, address: str) -> str:
        return wallet_source(address, self.family)

    def make_transaction(self, address: str, chain: str, **values) -> Transaction:
        return create_transaction({
            "source": self.source_for(address),
            "wallet": normalize_address(address, self.family),
            "chain": chain,
            **values,
        })

    def make_balance(self, address: str, chain: str, coin: str, amount: float, **values) -> Balance:
        return Balance(
            coin=coin,
            name=values.pop("name", "") or coin,
            amount=amount,
            source=self.source_for(address),
            chain=chain,
            **values,
        )

    async def accept_token(self, balance: Balance) -> bool:
        result = await self.token_filter.validate_async(
            balance.name,
            balance.coin,
            balance.amount,
            balance.price_eur,
            balance.contract_address or None,
            balance.chain,
        )
        return result.is_valid

    async def _get_json(self, url: str, **kwargs) -> Any:
        try:
            response = await self.client.get(url, **kwargs)
        except httpx.HTTPError as e:
            raise AdapterError(f"Error calling {url}: {str(e)}")
        if response.status_code == 429:
            raise RateLimitedError(f"Rate limited by {url}")
        if response.is_error:
            raise AdapterError(f"HTTP {response.status_code} from {url}")
        try:
            return response.json()
        except ValueError as e:
            raise AdapterError(f"Invalid JSON from {url}: {str(e)}")

    def parse_safely(self, parse: Callable, raw: dict, address: str, chain: str, warnings: List[str]) -> Any:
        """Run one record parser; a malformed record becomes a warning and ``None``."""
        try:
            return parse(raw, address, chain)
        except RECORD_ERRORS as e:
            logger.warning(f"{self.tag} Skipping malformed {chain} record: {e}")
            warnings.append(f"{chain}: skipped malformed record ({e})")
            return None
