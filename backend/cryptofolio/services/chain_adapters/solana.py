"""Solana chain adapter (Helius)."""
from typing import Any, Dict, List, Optional, Tuple
import logging
import httpx
from cryptofolio.config import Settings
from cryptofolio.models.balance import Balance
from cryptofolio.models.scan import ScanResult
from cryptofolio.models.transaction import Transaction, TransactionType
from cryptofolio.models.wallet import WalletFamily
from cryptofolio.services.chain_adapters.address import is_valid_solana_address
from cryptofolio.services.chain_adapters.base import ChainAdapter, as_records, scale_amount
from cryptofolio.services.token_filter import TokenFilter
from cryptofolio.utils.errors import AdapterError, ErrorKind
from cryptofolio.utils.parsing import coerce_float

logger = logging.getLogger(__name__)

CHAIN = "solana"
SOL_DECIMALS = 9
SOL_MINT = "So11111111111111111111111111111111111111112"

# Well-known mints: symbol, name, decimals
KNOWN_TOKENS: Dict[str, Tuple[str, str, int]] = {
    SOL_MINT: ("SOL", "Solana", 9),
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": ("USDC", "USD Coin", 6),
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": ("USDT", "Tether USD", 6),
    "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263": ("BONK", "Bonk", 5),
    "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN": ("JUP", "Jupiter", 6),
    "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm": ("WIF", "dogwifhat", 6),
    "rndrizKT3MK1iimdxRdWabcF7Zg7AR5T4nud4EkHBof": ("RENDER", "Render Token", 8),
    "HZ1JovNiVvGrGNiiYvEozEVgZ58xaU3RKwX8eACQBCt3": ("PYTH", "Pyth Network", 6),
    "7vfCXTUXx5WJV5JADk17DUJ4ksgau7utNKj4b963voxs": ("ETH", "Wrapped Ether (Wormhole)", 8),
    "3NZ9JMVBmGAqocybic2c7LQCJScmgsAZ6vQqTDzcqmJh": ("WBTC", "Wrapped BTC (Wormhole)", 8),
    "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So": ("MSOL", "Marinade staked SOL", 9),
    "J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn": ("JITOSOL", "Jito Staked SOL", 9),
    "bSo13r4TkiE4KumL71LsHTPpL2euBYLFx6h9HP3piy1": ("BSOL", "BlazeStake Staked SOL", 9),
    "7dHbWXmci3dT8UFYWYZweBLXgycu7Y3iL6trKn1Y7ARj": ("STSOL", "Lido Staked SOL", 9),
    "orcaEKTdK7LKz57vaAYr9QeNsVEPfiu6QeMU1kektZE": ("ORCA", "Orca", 6),
    "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R": ("RAY", "Raydium", 6),
    "MNDEFzGvMt87ueuHvVU9VcTqsAP5b3fTGPsHuuPA5ey": ("MNDE", "Marinade", 9),
    "5z3EqYQo9HiCEs3R84RCDMu2n4DKWu2JB9xwkdM4pEUa": ("POPCAT", "Popcat", 9),
}

FUNGIBLE_INTERFACES = {"FungibleToken", "FungibleAsset"}


class SolanaAdapter(ChainAdapter):
    """Adapter for Solana through Helius RPC, DAS and enhanced transactions."""
    family = WalletFamily.SOLANA
    tag = "[SOLANA]"

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        token_filter: Optional[TokenFilter] = None,
        config: Optional[Settings] = None,
    ):
        super().__init__(client=client, token_filter=token_filter, config=config)
        self.api_key = api_key if api_key is not None else self.config.helius_api_key
        self.rpc_url = self.config.helius_rpc_url.rstrip("/")
        self.api_url = self.config.helius_api_url.rstrip("/")
        # mint -> (symbol, name) learned from DAS metadata during balance scans
        self._mint_symbols: Dict[str, Tuple[str, str]] = {}

    def validate_address(self, address: str) -> bool:
        return is_valid_solana_address(address)

    def default_chains(self, address: str) -> List[str]:
        return [CHAIN]

    def check_preconditions(self, address: str) -> Optional[ScanResult]:
        failure = super().check_preconditions(address)
        if failure is not None:
            return failure
        if not self.api_key:
            return ScanResult.failure(ErrorKind.PRECONDITION, "No Helius API key configured")
        return None

    async def _rpc_call(self, method: str, params: Any) -> Any:
        """Make RPC call to Solana."""
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params,
        }
        try:
            response = await self.client.post(f"{self.rpc_url}/", params={"api-key": self.api_key}, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise AdapterError(f"HTTP error calling Solana RPC {method}: {str(e)}")
        except ValueError as e:
            raise AdapterError(f"Invalid JSON from Solana RPC {method}: {str(e)}")

        if not isinstance(data, dict):
            raise AdapterError(f"Unexpected Solana RPC {method} payload")
        if "error" in data:
            error = data["error"]
            message = error.get("message", "Unknown error") if isinstance(error, dict) else error
            raise AdapterError(f"RPC error: {message}")
        return data.get("result")

    def token_info(self, mint: str, symbol: Optional[str] = None, name: Optional[str] = None) -> Optional[Tuple[str, str]]:
        """Symbol and name for a mint, or None when it cannot be identified."""
        if mint in KNOWN_TOKENS:
            known_symbol, known_name, _ = KNOWN_TOKENS[mint]
            return known_symbol, known_name
        if mint in self._mint_symbols:
            return self._mint_symbols[mint]
        if symbol:
            return symbol.upper(), name or symbol
        return None

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_balance(self, raw: dict, address: str, chain: str = CHAIN) -> Optional[Balance]:
        """Parse a DAS asset; ``{"lamports": n}`` stands for the native balance."""
        if "lamports" in raw:
            amount = scale_amount(raw["lamports"], SOL_DECIMALS)
            if amount <= 0:
                return None
            return self.make_balance(address, CHAIN, "SOL", amount, name="Solana", contract_address="native-sol")

        if raw.get("interface") not in FUNGIBLE_INTERFACES:
            return None
        token = raw.get("token_info") or {}
        metadata = (raw.get("content") or {}).get("metadata") or {}
        mint = raw.get("id") or ""
        decimals = token.get("decimals")
        amount = scale_amount(token.get("balance"), decimals if decimals is not None else SOL_DECIMALS)
        if amount <= 0:
            return None

        info = self.token_info(mint, token.get("symbol") or metadata.get("symbol"), metadata.get("name"))
        if info is None:
            return None
        symbol, name = info
        self._mint_symbols.setdefault(mint, info)
        return self.make_balance(address, CHAIN, symbol, amount, name=name, contract_address=mint)

    def parse_transaction(self, raw: dict, address: str, chain: str = CHAIN) -> List[Transaction]:
        signature = raw.get("signature") or ""
        if not signature:
            return []
        timestamp = raw.get("timestamp")
        legs = [] if raw.get("transactionError") else self._legs(raw, address)

        rows: List[Transaction] = []
        outgoing = [leg for leg in legs if leg[0] == "out"]
        incoming = [leg for leg in legs if leg[0] == "in"]
        if (raw.get("type") or "").upper() == "SWAP" and len(outgoing) == 1 and len(incoming) == 1:
            _, coin_out, amount_out = outgoing[0]
            _, coin_in, amount_in = incoming[0]
            rows.append(self.make_transaction(
                address, CHAIN,
                sourceId=f"{signature}_0",
                timestamp=timestamp,
                type=TransactionType.TRADE,
                coinIn=coin_in,
                amountIn=amount_in,
                coinOut=coin_out,
                amountOut=amount_out,
                notes=f"Swap {coin_out} -> {coin_in}",
            ))
        else:
            for index, (direction, coin, amount) in enumerate(legs):
                is_in = direction == "in"
                rows.append(self.make_transaction(
                    address, CHAIN,
                    sourceId=f"{signature}_{index}",
                    timestamp=timestamp,
                    type=TransactionType.DEPOSIT if is_in else TransactionType.WITHDRAWAL,
                    coinIn=coin if is_in else "",
                    amountIn=amount if is_in else 0,
                    coinOut="" if is_in else coin,
                    amountOut=0 if is_in else amount,
                    notes="Receive" if is_in else "Send",
                ))

        fee = scale_amount(raw.get("fee"), SOL_DECIMALS)
        if raw.get("feePayer") == address and fee > 0:
            rows.append(self.make_transaction(
                address, CHAIN,
                sourceId=f"{signature}_fee",
                timestamp=timestamp,
                type=TransactionType.FEE,
                coinOut="SOL",
                amountOut=fee,
                feeCoin="SOL",
                feeAmount=fee,
                notes="Transaction fee",
            ))
        return rows

    def _legs(self, raw: dict, address: str) -> List[Tuple[str, str, float]]:
        """``(direction, symbol, amount)`` for every movement touching the wallet."""
        legs = []
        for transfer in raw.get("tokenTransfers") or []:
            direction = self._direction(transfer, address)
            amount = coerce_float(transfer.get("tokenAmount"), "tokenAmount", [])
            if direction is None or amount <= 0:
                continue
            info = self.token_info(transfer.get("mint") or "", transfer.get("symbol"))
            if info is None:
                continue
            symbol, name = info
            if not self.token_filter.validate(name, symbol, amount, 0, transfer.get("mint")).is_valid:
                continue
            legs.append((direction, symbol, amount))

        for transfer in raw.get("nativeTransfers") or []:
            direction = self._direction(transfer, address)
            amount = scale_amount(transfer.get("amount"), SOL_DECIMALS)
            if direction is None or amount <= 0:
                continue
            legs.append((direction, "SOL", amount))
        return legs

    @staticmethod
    def _direction(transfer: dict, address: str) -> Optional[str]:
        if transfer.get("toUserAccount") == address:
            return "in"
        if transfer.get("fromUserAccount") == address:
            return "out"
        return None

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    async def _scan_balances(self, address: str, chains: List[str]) -> ScanResult:
        result = ScanResult(chains=[CHAIN])
        logger.info(f"[SOLANA] Scanning wallet {address[:8]}...")

        try:
            native = await self._rpc_call("getBalance", [address])
        except AdapterError as e:
            logger.warning(f"[SOLANA] SOL balance unavailable: {e}")
            result.warnings.append(str(e))
        else:
            lamports = native.get("value", 0) if isinstance(native, dict) else 0
            balance = self.parse_safely(self.parse_balance, {"lamports": lamports}, address, CHAIN, result.warnings)
            if balance is not None:
                result.balances.append(balance)

        try:
            assets = await self._rpc_call("getAssetsByOwner", {
                "ownerAddress": address,
                "page": 1,
                "limit": 1000,
                "displayOptions": {"showFungible": True},
            })
        except AdapterError as e:
            logger.warning(f"[SOLANA] Token balances unavailable: {e}")
            result.warnings.append(str(e))
            assets = None

        for asset in as_records(assets, "items"):
            balance = self.parse_safely(self.parse_balance, asset, address, CHAIN, result.warnings)
            if balance is not None and await self.accept_token(balance):
                result.balances.append(balance)

        logger.info(f"[SOLANA] Found {len(result.balances)} balances")
        return result

    async def _scan_transactions(self, address: str, chains: List[str]) -> ScanResult:
        logger.info(f"[SOLANA] Downloading transactions for {address[:8]}...")
        data = await self._get_json(
            f"{self.api_url}/addresses/{address}/transactions",
            params={"api-key": self.api_key, "limit": self.config.solana_tx_limit},
        )
        result = ScanResult(chains=[CHAIN])
        for raw in as_records(data):
            rows = self.parse_safely(self.parse_transaction, raw, address, CHAIN, result.warnings)
            result.transactions.extend(rows or [])
        logger.info(f"[SOLANA] Found {len(result.transactions)} transactions")
        return result
