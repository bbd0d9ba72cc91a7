"""Service wiring shared by the API routes."""
from pathlib import Path
from typing import Dict, Optional
import logging
from fastapi import Request
from cryptofolio.config import Settings, settings as default_settings
from cryptofolio.models.wallet import WalletFamily
from cryptofolio.services.cache_service import CacheService
from cryptofolio.services.cex_adapters.base import CexAdapter
from cryptofolio.services.cex_adapters.coinbase import CoinbaseAdapter
from cryptofolio.services.cex_adapters.kraken import KrakenAdapter
from cryptofolio.services.chain_adapters.base import ChainAdapter
from cryptofolio.services.chain_adapters.cosmos import CosmosAdapter
from cryptofolio.services.chain_adapters.evm import EvmAdapter
from cryptofolio.services.chain_adapters.solana import SolanaAdapter
from cryptofolio.services.ledger_store import LedgerStore
from cryptofolio.services.persistence import JsonFileDocumentStore, LocalSnapshot
from cryptofolio.services.portfolio_service import PortfolioService
from cryptofolio.services.price_service import PriceService
from cryptofolio.services.token_filter import SpamFilterPolicy, TokenFilter
from cryptofolio.services.token_security import TokenSecurityService
from cryptofolio.services.transaction_normalizer import TransactionNormalizer
from cryptofolio.services.wallet_scanner import WalletScanner
from cryptofolio.utils.credentials import CredentialPool

logger = logging.getLogger(__name__)


class AppContainer:
    """Every long-lived service of the application, built once at startup."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        store: Optional[LedgerStore] = None,
        price_service: Optional[PriceService] = None,
        adapters: Optional[Dict[WalletFamily, ChainAdapter]] = None,
    ):
        self.config = config or default_settings
        data_dir = Path(self.config.data_dir)
        self.store = store or LedgerStore(
            remote=JsonFileDocumentStore(str(data_dir), self.config.persist_collection),
            local=LocalSnapshot(str(data_dir / "local_snapshot.json")),
            config=self.config,
        )
        self.price_service = price_service or PriceService(
            live_prices=self.store.prices,
            historical_prices=self.store.historical_prices,
            on_update=self.store.mark_dirty,
            config=self.config,
        )
        self.security = TokenSecurityService(
            cache_service=CacheService(ttl_seconds=self.config.token_security_ttl_seconds),
            config=self.config,
        )
        self.token_filter = TokenFilter(SpamFilterPolicy.from_settings(self.config), self.security)
        self.credentials = CredentialPool(self.config.moralis_api_keys)
        self.adapters = adapters or {
            WalletFamily.EVM: EvmAdapter(self.credentials, token_filter=self.token_filter, config=self.config),
            WalletFamily.COSMOS: CosmosAdapter(token_filter=self.token_filter, config=self.config),
            WalletFamily.SOLANA: SolanaAdapter(token_filter=self.token_filter, config=self.config),
        }
        self.cex_adapters: Dict[str, CexAdapter] = {
            "kraken": KrakenAdapter(),
            "coinbase": CoinbaseAdapter(),
        }
        self.normalizer = TransactionNormalizer(self.price_service)
        self.scanner = WalletScanner(self.store, self.adapters, self.normalizer)
        self.portfolio = PortfolioService(self.price_service)

    async def startup(self):
        source = await self.store.initialize()
        # Keys saved by the user come on top of the configured ones
        for key in self.store.get_api_key("moralis"):
            self.credentials.add(key)
        helius_key = self.store.get_api_key("helius")
        solana = self.adapters.get(WalletFamily.SOLANA)
        if helius_key and isinstance(solana, SolanaAdapter) and not solana.api_key:
            solana.api_key = helius_key
        logger.info(
            f"[LEDGER] Ready ({source}): {len(self.store.transactions)} transactions, "
            f"{len(self.credentials)} Moralis keys"
        )

    async def shutdown(self):
        await self.store.flush()
        for adapter in self.adapters.values():
            await adapter.client.aclose()
        await self.security.client.aclose()
        await self.price_service.client.aclose()


def get_container(request: Request) -> AppContainer:
    """FastAPI dependency; tests replace it through ``dependency_overrides``."""
    return request.app.state.container
