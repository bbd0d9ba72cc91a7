"""Configuration management for the application."""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    api_title: str = "Cryptofolio Tax API"
    api_version: str = "1.0.0"
    api_prefix: str = "/api/v1"

    # CORS Configuration
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Logging
    log_level: str = "INFO"

    # Outbound HTTP
    http_timeout_seconds: float = 30.0

    # Price Service Configuration (CoinGecko)
    coingecko_api_key: Optional[str] = None
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    live_price_ttl_seconds: int = 60
    live_price_min_interval_seconds: float = 10.0
    historical_price_delay_seconds: float = 6.0
    historical_failure_ttl_seconds: int = 300  # transient upstream errors
    historical_missing_ttl_seconds: int = 86400  # upstream answered without a price
    default_price_assets: list[str] = ["BTC", "ETH", "BNB", "SOL", "MATIC", "ATOM", "OSMO", "LUNC", "USTC"]

    # EVM Configuration (Moralis)
    moralis_base_url: str = "https://deep-index.moralis.io/api/v2.2"
    moralis_api_keys: list[str] = []
    evm_default_chains: list[str] = ["eth", "bsc", "polygon"]
    evm_chain_delay_seconds: float = 0.5

    # Solana Configuration (Helius)
    helius_rpc_url: str = "https://mainnet.helius-rpc.com"
    helius_api_url: str = "https://api.helius.xyz/v0"
    helius_api_key: Optional[str] = None
    solana_tx_limit: int = 100

    # Cosmos Configuration
    terra_rest_url: str = "https://terra-classic-fcd.publicnode.com"
    cosmos_rest_url: str = "https://cosmos-rest.publicnode.com"
    osmosis_rest_url: str = "https://osmosis-rest.publicnode.com"
    cosmos_page_limit: int = 100
    cosmos_max_transactions: int = 5000
    cosmos_page_delay_seconds: float = 0.2

    # Token Security (GoPlus)
    token_security_enabled: bool = True
    goplus_base_url: str = "https://api.gopluslabs.io/api/v1"
    token_security_ttl_seconds: int = 86400
    token_security_interval_seconds: float = 2.0

    # Spam Filter
    spam_min_value_eur: float = 0.01
    spam_min_liquidity_usd: float = 1000.0
    spam_max_name_length: int = 40
    spam_max_symbol_length: int = 12

    # Cache Configuration
    cache_ttl_seconds: int = 3600  # 1 hour default
    enable_cache: bool = True

    # Italian tax rules
    capital_gains_rate: float = 0.26
    ivafe_rate: float = 0.002
    no_tax_threshold_eur: float = 2000.0
    default_cost_basis_method: str = "LIFO"

    # Persistence
    data_dir: str = "./data"
    persist_collection: str = "cryptofolio_v6"
    persist_debounce_seconds: float = 2.0
    persist_max_document_bytes: int = 900_000
    persist_chunk_size: int = 500
    persist_load_timeout_seconds: float = 10.0

    # Application Limits
    max_wallets: int = 10

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
