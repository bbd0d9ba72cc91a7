"""Wallet scanning: route an address to its chain adapter and ingest the result."""
from typing import Dict, List, Optional
import logging
from cryptofolio.models.wallet import Wallet, WalletFamily, WalletScanSummary
from cryptofolio.services.chain_adapters.address import detect_wallet_type, normalize_address
from cryptofolio.services.chain_adapters.base import ChainAdapter
from cryptofolio.services.ledger_store import LedgerStore
from cryptofolio.services.transaction_normalizer import TransactionNormalizer
from cryptofolio.utils.errors import ErrorKind

logger = logging.getLogger(__name__)


class WalletScanner:
    """Detects the address family, runs the matching adapter and stores what it finds."""

    def __init__(
        self,
        store: LedgerStore,
        adapters: Dict[WalletFamily, ChainAdapter],
        normalizer: Optional[TransactionNormalizer] = None,
    ):
        self.store = store
        self.adapters = adapters
        self.normalizer = normalizer

    def adapter_for(self, family: WalletFamily) -> Optional[ChainAdapter]:
        return self.adapters.get(family)

    async def scan(self, address: str, chains: Optional[List[str]] = None, name: str = "") -> WalletScanSummary:
        address = (address or "").strip()
        detected = detect_wallet_type(address)
        if detected is None:
            logger.debug(f"[SCAN] Unrecognized address {address!r}")
            return WalletScanSummary(
                address=address,
                success=False,
                error=f"Unrecognized address format: {address}",
                error_kind=ErrorKind.UNRECOGNIZED.value,
            )

        adapter = self.adapter_for(detected.family)
        if adapter is None:
            return WalletScanSummary(
                address=address,
                family=detected.family,
                success=False,
                error=f"No adapter configured for {detected.family.value}",
                error_kind=ErrorKind.PRECONDITION.value,
            )

        # EVM scans cover several chains; the others are pinned to the detected one
        if detected.family != WalletFamily.EVM:
            chains = [detected.chain] if detected.chain else None

        result = await adapter.full_scan(address, chains)
        if not result.success:
            logger.warning(f"[SCAN] {address[:10]}... failed: {result.error}")
            return WalletScanSummary(
                address=address,
                family=detected.family,
                success=False,
                error=result.error,
                error_kind=result.error_kind.value if result.error_kind else None,
                warnings=result.warnings,
            )

        transactions = result.transactions
        if self.normalizer is not None:
            transactions = await self.normalizer.enrich(self.normalizer.normalize(transactions))
        added = self.store.add_transactions(transactions)

        for balance in result.balances:
            self.store.update_balance(balance.key, balance)

        normalized = normalize_address(address, detected.family)
        self.store.add_wallet(Wallet(
            address=normalized,
            name=name,
            family=detected.family,
            chain=detected.chain or "",
        ))
        self.store.touch_wallet(normalized)

        logger.info(
            f"[SCAN] {address[:10]}...: {len(result.balances)} balances, "
            f"{added}/{len(result.transactions)} new transactions"
        )
        return WalletScanSummary(
            address=normalized,
            family=detected.family,
            success=True,
            balance_count=len(result.balances),
            transactions_found=len(result.transactions),
            transactions_added=added,
            warnings=result.warnings,
        )

    async def scan_many(self, addresses: List[str], chains: Optional[List[str]] = None) -> List[WalletScanSummary]:
        """Scan addresses one after another; a failing address does not stop the rest."""
        return [await self.scan(address, chains) for address in addresses]
