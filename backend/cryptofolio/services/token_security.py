"""On-chain token security classification (GoPlus)."""
from dataclasses import dataclass, field
from typing import List, Optional
import logging
import httpx
from cryptofolio.config import Settings, settings as default_settings
from cryptofolio.services.cache_service import CacheService
from cryptofolio.utils.rate_limit import IntervalGate

logger = logging.getLogger(__name__)

# GoPlus identifies EVM chains by numeric chain id
GOPLUS_CHAIN_IDS = {
    "eth": "1",
    "bsc": "56",
    "polygon": "137",
    "arbitrum": "42161",
    "base": "8453",
    "avalanche": "43114",
    "fantom": "250",
    "cronos": "25",
}


@dataclass
class SecurityVerdict:
    is_safe: bool
    reason: str
    flags: List[str] = field(default_factory=list)


def _flag(info: dict, name: str) -> bool:
    return str(info.get(name, "")).strip() == "1"


def classify(info: dict) -> SecurityVerdict:
    """Turn a GoPlus token record into a verdict; anything but a record passes."""
    if not isinstance(info, dict):
        return SecurityVerdict(is_safe=True, reason="no data")
    flags = []
    if _flag(info, "is_honeypot"):
        flags.append("honeypot")
    if _flag(info, "cannot_sell_all"):
        flags.append("cannot sell")
    if _flag(info, "hidden_owner") and _flag(info, "is_mintable"):
        flags.append("hidden owner + mintable")
    if _flag(info, "can_take_back_ownership"):
        flags.append("ownership take-back")
    if str(info.get("is_true_token", "")).strip() == "0":
        flags.append("not a true token")

    if flags:
        return SecurityVerdict(is_safe=False, reason=", ".join(flags), flags=flags)
    return SecurityVerdict(is_safe=True, reason="passed")


class TokenSecurityService:
    """Async, cached and rate-limited token security lookups.

    Lookup problems never block a token: any error yields a passing verdict.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        cache_service: Optional[CacheService] = None,
        gate: Optional[IntervalGate] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self.base_url = self.config.goplus_base_url
        self.enabled = self.config.token_security_enabled
        self.client = client or httpx.AsyncClient(timeout=self.config.http_timeout_seconds)
        self.cache = cache_service or CacheService(ttl_seconds=self.config.token_security_ttl_seconds)
        self.gate = gate or IntervalGate(self.config.token_security_interval_seconds)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.aclose()

    async def check(self, chain: str, contract_address: str) -> SecurityVerdict:
        if not self.enabled or not contract_address:
            return SecurityVerdict(is_safe=True, reason="skipped")

        chain_id = GOPLUS_CHAIN_IDS.get((chain or "").lower())
        if chain_id is None:
            return SecurityVerdict(is_safe=True, reason="unsupported chain")

        address = contract_address.lower()
        cache_key = CacheService.make_key("token_security", chain_id, address)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        await self.gate.wait()
        url = f"{self.base_url}/token_security/{chain_id}"
        try:
            response = await self.client.get(url, params={"contract_addresses": address})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[SECURITY] Lookup failed for {chain}:{address}, treating as safe: {e}")
            return SecurityVerdict(is_safe=True, reason="lookup failed")

        result = data.get("result") if isinstance(data, dict) else None
        info = result.get(address) if isinstance(result, dict) else None
        if not info or not isinstance(info, dict):
            verdict = SecurityVerdict(is_safe=True, reason="no data")
        else:
            verdict = classify(info)
            if not verdict.is_safe:
                logger.info(f"[SECURITY] {chain}:{address} flagged: {verdict.reason}")

        self.cache.set(cache_key, verdict)
        return verdict
