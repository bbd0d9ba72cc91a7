"""Current and historical price resolution (CoinGecko)."""
from datetime import datetime, date
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union
import asyncio
import logging
import math
import time
import httpx
from cryptofolio.config import Settings, settings as default_settings
from cryptofolio.services.cache_service import CacheService
from cryptofolio.utils.errors import PriceServiceError
from cryptofolio.utils.rate_limit import IntervalGate

logger = logging.getLogger(__name__)

# Token symbol to CoinGecko ID mapping
TOKEN_MAPPING = {
    # Major coins
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "BNB": "binancecoin",
    "SOL": "solana",
    "XRP": "ripple",
    "ADA": "cardano",
    "AVAX": "avalanche-2",
    "DOT": "polkadot",
    "MATIC": "matic-network",
    "POL": "matic-network",
    "LINK": "chainlink",
    "LTC": "litecoin",
    "NEAR": "near",
    "APT": "aptos",
    "SUI": "sui",
    "TON": "the-open-network",
    "TRX": "tron",
    "XLM": "stellar",
    "ALGO": "algorand",
    "FIL": "filecoin",
    "FTM": "fantom",
    "CRO": "crypto-com-chain",
    # Layer 2
    "ARB": "arbitrum",
    "OP": "optimism",
    "IMX": "immutable-x",
    # DeFi
    "UNI": "uniswap",
    "AAVE": "aave",
    "MKR": "maker",
    "CRV": "curve-dao-token",
    "COMP": "compound-governance-token",
    "SNX": "havven",
    "SUSHI": "sushi",
    "1INCH": "1inch",
    "CAKE": "pancakeswap-token",
    "LDO": "lido-dao",
    "JUP": "jupiter-exchange-solana",
    "RAY": "raydium",
    # Meme coins
    "DOGE": "dogecoin",
    "SHIB": "shiba-inu",
    "PEPE": "pepe",
    "FLOKI": "floki",
    "BONK": "bonk",
    "WIF": "dogwifcoin",
    # Stablecoins
    "USDT": "tether",
    "USDC": "usd-coin",
    "DAI": "dai",
    "BUSD": "binance-usd",
    "TUSD": "true-usd",
    "FRAX": "frax",
    "FDUSD": "first-digital-usd",
    # Cosmos ecosystem
    "ATOM": "cosmos",
    "OSMO": "osmosis",
    "INJ": "injective-protocol",
    "SEI": "sei-network",
    "TIA": "celestia",
    # Terra
    "LUNC": "terra-luna",
    "LUNA": "terra-luna-2",
    "USTC": "terrausd",
    # Wrapped
    "WETH": "weth",
    "WBTC": "wrapped-bitcoin",
    "WBNB": "wbnb",
    "WMATIC": "wmatic",
    "MSOL": "msol",
    "JITOSOL": "jito-staked-sol",
}

DateLike = Union[str, date, datetime]


def get_coingecko_id(token_symbol: str) -> Optional[str]:
    """Get CoinGecko ID from token symbol."""
    return TOKEN_MAPPING.get((token_symbol or "").upper())


def to_date_string(value: DateLike) -> str:
    """Normalize to ``YYYY-MM-DD``."""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()
    return datetime.strptime(str(value)[:10], "%Y-%m-%d").strftime("%Y-%m-%d")


def historical_key(token_symbol: str, day: DateLike) -> str:
    return f"{token_symbol.upper()}_{to_date_string(day)}"


def parse_price(value) -> Optional[float]:
    """Finite positive float from an upstream quote, else ``None``."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        price = float(value)
    except (ValueError, OverflowError):
        return None
    return price if math.isfinite(price) and price > 0 else None


class PriceService:
    """Service for fetching current and historical cryptocurrency prices in EUR.

    ``live_prices`` and ``historical_prices`` are plain dicts, usually the ones
    owned by the ledger store so they are persisted with it; ``on_update`` is
    called after either changes. Only positive historical prices enter the
    permanent map. Misses and failures go to a short-lived negative cache.
    """

    def __init__(
        self,
        live_prices: Optional[Dict[str, dict]] = None,
        historical_prices: Optional[Dict[str, float]] = None,
        on_update: Optional[Callable[[], None]] = None,
        cache_service: Optional[CacheService] = None,
        client: Optional[httpx.AsyncClient] = None,
        gate: Optional[IntervalGate] = None,
        config: Optional[Settings] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or default_settings
        self.base_url = self.config.coingecko_base_url
        self.api_key = self.config.coingecko_api_key
        self.live_prices = live_prices if live_prices is not None else {}
        self.historical_prices = historical_prices if historical_prices is not None else {}
        self._on_update = on_update
        self._clock = clock or time.time
        self.cache = cache_service or CacheService(clock=self._clock)
        self.client = client or httpx.AsyncClient(timeout=self.config.http_timeout_seconds)
        self.gate = gate or IntervalGate(self.config.historical_price_delay_seconds)
        self._last_live_fetch: Optional[float] = None
        self._refresh_task: Optional[asyncio.Task] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.aclose()

    def _params(self, **params) -> dict:
        if self.api_key:
            params["x_cg_demo_api_key"] = self.api_key
        return params

    def _notify(self):
        if self._on_update is not None:
            self._on_update()

    # ------------------------------------------------------------------
    # Current prices
    # ------------------------------------------------------------------

    def get_current_price(self, token_symbol: str, currency: str = "eur") -> float:
        """Cached live price; a stale entry is still returned, 0 means unknown."""
        entry = self.live_prices.get((token_symbol or "").upper())
        if not isinstance(entry, dict):
            return 0.0
        return parse_price(entry.get(currency.lower())) or 0.0

    def is_fresh(self, token_symbol: str) -> bool:
        entry = self.live_prices.get(token_symbol.upper())
        if not isinstance(entry, dict) or not isinstance(entry.get("lastUpdate"), (int, float)):
            return False
        age_ms = self._clock() * 1000 - entry["lastUpdate"]
        return age_ms < self.config.live_price_ttl_seconds * 1000

    async def refresh_current_prices(self, token_symbols: Optional[Iterable[str]] = None) -> Dict[str, dict]:
        """Refresh stale live prices with one batched request.

        A call made while another refresh is running waits for that one.
        """
        if self._refresh_task is not None and not self._refresh_task.done():
            return await asyncio.shield(self._refresh_task)
        self._refresh_task = asyncio.ensure_future(self._refresh(token_symbols))
        return await self._refresh_task

    async def _refresh(self, token_symbols: Optional[Iterable[str]]) -> Dict[str, dict]:
        symbols = [s.upper() for s in (token_symbols or self.config.default_price_assets) if s]
        symbols_by_id: Dict[str, List[str]] = {}
        for symbol in dict.fromkeys(symbols):
            if self.is_fresh(symbol):
                continue
            coingecko_id = get_coingecko_id(symbol)
            if coingecko_id:
                symbols_by_id.setdefault(coingecko_id, []).append(symbol)

        if not symbols_by_id:
            return self.live_prices

        now = self._clock()
        if (
            self._last_live_fetch is not None
            and now - self._last_live_fetch < self.config.live_price_min_interval_seconds
        ):
            logger.debug("[PRICE] Skipping live refresh, last request too recent")
            return self.live_prices
        self._last_live_fetch = now

        url = f"{self.base_url}/simple/price"
        params = self._params(ids=",".join(symbols_by_id), vs_currencies="eur,usd")
        logger.info(f"[PRICE] Fetching live prices for {','.join(symbols_by_id)}")
        try:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[PRICE] Live price fetch failed: {e}")
            return self.live_prices

        if not isinstance(data, dict):
            logger.error(f"[PRICE] Unexpected live price payload: {type(data).__name__}")
            return self.live_prices

        stamp = int(now * 1000)
        updated = 0
        for coingecko_id, quote in data.items():
            if not isinstance(quote, dict):
                logger.warning(f"[PRICE] Ignoring malformed quote for {coingecko_id}")
                continue
            for symbol in symbols_by_id.get(coingecko_id, []):
                self.live_prices[symbol] = {
                    "eur": parse_price(quote.get("eur")) or 0.0,
                    "usd": parse_price(quote.get("usd")) or 0.0,
                    "lastUpdate": stamp,
                }
                updated += 1

        logger.info(f"[PRICE] Updated {updated} live prices")
        if updated:
            self._notify()
        return self.live_prices

    # ------------------------------------------------------------------
    # Historical prices
    # ------------------------------------------------------------------

    async def get_historical_price(self, token_symbol: str, day: DateLike) -> float:
        """EUR price of ``token_symbol`` on ``day``; 0 when unavailable."""
        key = historical_key(token_symbol, day)
        cached = parse_price(self.historical_prices.get(key))
        if cached:
            return cached

        miss_key = CacheService.make_key("price_miss", key)
        if self.cache.get(miss_key) is not None:
            return 0.0

        coingecko_id = get_coingecko_id(token_symbol)
        if not coingecko_id:
            logger.debug(f"[PRICE] No CoinGecko id for {token_symbol}")
            return 0.0

        await self.gate.wait()
        try:
            price = await self._fetch_history(coingecko_id, to_date_string(day))
        except PriceServiceError as e:
            logger.error(f"[PRICE] Historical price {key} failed: {e}")
            self.cache.set(miss_key, "error", ttl_seconds=self.config.historical_failure_ttl_seconds)
            return 0.0

        if not price or price <= 0:
            logger.warning(f"[PRICE] No EUR price for {key}")
            self.cache.set(miss_key, "missing", ttl_seconds=self.config.historical_missing_ttl_seconds)
            return 0.0

        self.historical_prices[key] = price
        logger.info(f"[PRICE] {key} = {price} EUR")
        self._notify()
        return price

    async def _fetch_history(self, coingecko_id: str, day: str) -> Optional[float]:
        # Format: dd-mm-yyyy
        year, month, dd = day.split("-")
        url = f"{self.base_url}/coins/{coingecko_id}/history"
        params = self._params(date=f"{dd}-{month}-{year}", localization="false")

        try:
            response = await self.client.get(url, params=params)
            if response.status_code == 429:
                logger.warning(f"[PRICE] Rate limited on {coingecko_id} {day}, backing off")
                await self.gate.backoff()
                response = await self.client.get(url, params=params)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise PriceServiceError(f"HTTP error fetching price: {e.response.status_code}")
        except httpx.HTTPError as e:
            raise PriceServiceError(f"Error fetching price: {str(e)}")
        except ValueError as e:
            raise PriceServiceError(f"Invalid price payload: {str(e)}")

        market_data = data.get("market_data") if isinstance(data, dict) else None
        current = market_data.get("current_price") if isinstance(market_data, dict) else None
        if not isinstance(current, dict):
            return None
        return parse_price(current.get("eur"))

    async def get_historical_prices_batch(
        self,
        requests: Iterable[Tuple[str, DateLike]],
    ) -> Dict[str, float]:
        """Resolve many ``(symbol, date)`` pairs; uncached ones are fetched one at a time."""
        requests = list(requests)
        results: Dict[str, float] = {}
        to_fetch = []
        for symbol, day in requests:
            key = historical_key(symbol, day)
            cached = parse_price(self.historical_prices.get(key))
            if cached:
                results[key] = cached
            elif key not in results:
                results[key] = 0.0
                to_fetch.append((symbol, day))

        logger.info(f"[PRICE] Batch: {len(to_fetch)} to fetch, {len(requests) - len(to_fetch)} cached")
        for symbol, day in to_fetch:
            results[historical_key(symbol, day)] = await self.get_historical_price(symbol, day)
        return results

    async def get_january1_price(self, token_symbol: str, year: int) -> float:
        return await self.get_historical_price(token_symbol, f"{year}-01-01")

    async def get_december31_price(self, token_symbol: str, year: int) -> float:
        return await self.get_historical_price(token_symbol, f"{year}-12-31")

    async def get_year_prices_for_tax(self, token_symbols: Iterable[str], year: int) -> Dict[str, Dict[str, float]]:
        """Jan-1 and Dec-31 prices per asset, as used by the monitoring section."""
        result = {}
        for symbol in dict.fromkeys(s.upper() for s in token_symbols):
            result[symbol] = {
                "january1": await self.get_january1_price(symbol, year),
                "december31": await self.get_december31_price(symbol, year),
            }
        return result

    async def fetch_year_end_prices(
        self,
        token_symbols: Iterable[str],
        years: Iterable[int],
    ) -> Dict[int, Dict[str, float]]:
        """Dec-31 prices for several years at once."""
        symbols = list(dict.fromkeys(s.upper() for s in token_symbols))
        return {
            year: {symbol: await self.get_december31_price(symbol, year) for symbol in symbols}
            for year in years
        }
