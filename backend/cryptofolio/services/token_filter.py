"""Spam / scam token filter applied before tokens enter the ledger."""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import FrozenSet, List, Optional, Set, Tuple
import logging
import re
from cryptofolio.config import Settings, settings as default_settings
from cryptofolio.services.token_security import TokenSecurityService

logger = logging.getLogger(__name__)

SPAM_PATTERNS: Tuple[str, ...] = (
    # Domains
    ".com", ".org", ".io", ".xyz", ".net", ".co", ".me", ".app",
    "http", "www.", "://",
    # Lures
    "visit", "claim", "reward", "airdrop", "bonus", "free", "gift",
    "redeem", "collect", "activate", "unlock", "swap here",
    # Phishing
    "voucher", "ticket", "points", "winner", "prize", "lottery",
    "giveaway", "promo", "promotional",
    # Fake versions
    "v2.0", "v3.0", "2.0", "3.0", "new ", " new", "upgraded",
    # Symbols
    "$", "#", "!", "?", "*", "→", "⇒", "»",
    # Urgency
    "urgent", "limited", "hurry", "fast", "quick", "instant",
    "expire", "expiring", "deadline",
    # Celebrity and multiplier bait
    "elon", "musk", "bezos", "zuck", "trump",
    "double", "triple", "10x", "100x", "1000x",
    # Messages
    "congratulation", "selected", "eligible", "qualified",
    # Honeypot hints
    "safu", "safe ", " safe", "rug", "moon", "pump",
)

WHITELIST_TOKENS: FrozenSet[str] = frozenset({
    # Top market cap
    "BTC", "ETH", "BNB", "SOL", "XRP", "ADA", "AVAX", "DOGE", "DOT", "LINK",
    "MATIC", "POL", "LTC", "SHIB", "TRX", "ATOM", "UNI", "XLM", "NEAR", "APT",
    "FIL", "ARB", "OP", "VET", "HBAR", "ALGO", "ICP", "GRT", "FTM", "AAVE",
    "EOS", "MKR", "SAND", "AXS", "MANA", "THETA", "XTZ", "EGLD", "FLOW", "CHZ",
    "KCS", "NEO", "KAVA", "MINA", "XDC", "IOTA", "ZEC", "DASH", "ENJ", "BAT",
    # Stablecoins
    "USDT", "USDC", "DAI", "BUSD", "TUSD", "FRAX", "FDUSD", "PYUSD", "GUSD",
    "LUSD", "CRVUSD", "GHO", "USDD", "UST", "USTC", "MAI", "MIMATIC", "USDP",
    # Wrapped and liquid staking
    "WETH", "WBTC", "WBNB", "WMATIC", "WAVAX", "WFTM", "WCRO", "WPLS",
    "STETH", "RETH", "CBETH", "WSTETH", "FRXETH", "SFRXETH",
    "MSOL", "JITOSOL", "BSOL", "STSOL",
    # DeFi
    "CRV", "CVX", "COMP", "SNX", "SUSHI", "1INCH", "CAKE", "LDO", "RPL",
    "FXS", "PENDLE", "GMX", "DYDX", "JOE", "SPELL", "YFI", "BAL", "LQTY",
    # Layer 2
    "IMX", "LRC", "ZK", "STRK", "MANTA", "METIS", "BOBA", "CELO", "GLMR",
    "MOVR", "SKL", "CTSI", "SYN",
    # Exchange tokens
    "CRO", "OKB", "BGB", "GT", "HT", "LEO", "FTT", "MX", "WOO",
    # Meme coins
    "PEPE", "FLOKI", "BONK", "WIF", "BRETT", "POPCAT", "NEIRO", "TURBO",
    "COQ", "DEGEN", "TOSHI", "MEME", "LADYS", "MILADY", "WOJAK",
    "BABYDOGE", "ELON", "KISHU", "HOGE", "BONE", "LEASH",
    # AI / data
    "FET", "AGIX", "OCEAN", "RNDR", "RENDER", "TAO", "WLD", "ARKM", "AKT",
    # Gaming
    "GALA", "ILV", "PRIME", "MAGIC", "YGG", "PIXEL", "MAVIA", "BEAM",
    "BIGTIME", "GODS", "PYR", "REVV", "GHST", "ALICE", "TLM", "SUPER",
    # Infrastructure
    "API3", "BAND", "TRB", "UMA", "REQ", "COTI", "CELR", "ANKR", "STORJ",
    # PulseChain
    "PLS", "PLSX", "HEX", "INC", "LOAN", "MINT", "PHIAT", "SPARK", "EHEX",
    "BXN", "WBXN",
    # Cosmos
    "OSMO", "JUNO", "SCRT", "INJ", "SEI", "TIA", "DYM", "KUJI", "NTRN",
    "LUNA", "LUNC",
    # Solana
    "RAY", "ORCA", "MNDE", "SRM", "STEP", "SLND", "TULIP", "SHDW", "DUST",
    "JUP", "PYTH", "JTO", "TENSOR",
    # Other
    "MASK", "ENS", "RSS3", "ID", "BLUR", "X2Y2", "LOOKS", "RARE",
    "AUDIO", "JASMY", "HOT", "ONE", "ROSE", "QTUM", "ZIL", "ICX", "ONT",
    "WAVES", "SC", "DGB", "RVN", "FLUX", "KDA", "ERG", "CFX", "CKB",
})

SYMBOL_CHARS = re.compile(r"^[A-Za-z0-9._-]+$")


def _to_decimal(value) -> Decimal:
    try:
        number = Decimal(str(value or 0))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return number if number.is_finite() else Decimal("0")


@dataclass
class SpamFilterPolicy:
    """Versioned rule set; lists can be extended at runtime."""
    version: str = "6.1"
    patterns: Tuple[str, ...] = SPAM_PATTERNS
    whitelist: Set[str] = field(default_factory=lambda: set(WHITELIST_TOKENS))
    blacklist: Set[str] = field(default_factory=set)
    min_value_eur: Decimal = Decimal("0.01")
    min_liquidity_usd: Decimal = Decimal("1000")
    max_name_length: int = 40
    max_symbol_length: int = 12

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "SpamFilterPolicy":
        config = config or default_settings
        return cls(
            min_value_eur=_to_decimal(config.spam_min_value_eur),
            min_liquidity_usd=_to_decimal(config.spam_min_liquidity_usd),
            max_name_length=config.spam_max_name_length,
            max_symbol_length=config.spam_max_symbol_length,
        )

    def add_to_whitelist(self, symbol: str):
        self.whitelist.add((symbol or "").upper())

    def add_scam_contract(self, address: str):
        self.blacklist.add((address or "").lower())

    def set_min_value(self, value_eur):
        self.min_value_eur = _to_decimal(value_eur)

    def set_min_liquidity(self, liquidity_usd):
        self.min_liquidity_usd = _to_decimal(liquidity_usd)


@dataclass
class CheckResult:
    is_spam: bool
    reason: str


@dataclass
class FilterResult:
    is_valid: bool
    is_spam: bool
    reason: str
    checks: List[dict] = field(default_factory=list)


class TokenFilter:
    """Layered classifier: whitelist, patterns, contract blacklist, dust,
    pool liquidity, then the optional external security check.
    """

    def __init__(
        self,
        policy: Optional[SpamFilterPolicy] = None,
        security: Optional[TokenSecurityService] = None,
    ):
        self.policy = policy or SpamFilterPolicy.from_settings()
        self.security = security

    def is_whitelisted(self, symbol: Optional[str]) -> bool:
        return (symbol or "").upper() in self.policy.whitelist

    def check_pattern(self, name: Optional[str], symbol: Optional[str]) -> CheckResult:
        if self.is_whitelisted(symbol):
            return CheckResult(False, "whitelist")

        n = str(name or "").lower()
        s = str(symbol or "").lower()
        for pattern in self.policy.patterns:
            if pattern in n or pattern in s:
                return CheckResult(True, f'pattern: "{pattern}"')

        if len(n) > self.policy.max_name_length:
            return CheckResult(True, "name too long")
        if len(s) > self.policy.max_symbol_length:
            return CheckResult(True, "symbol too long")
        if not SYMBOL_CHARS.match(symbol or ""):
            return CheckResult(True, "invalid symbol chars")
        return CheckResult(False, "passed")

    def check_contract(self, contract_address: Optional[str]) -> CheckResult:
        if not contract_address:
            return CheckResult(False, "native")
        if contract_address.lower() in self.policy.blacklist:
            return CheckResult(True, "known scam contract")
        return CheckResult(False, "passed")

    def check_value(self, amount, price_eur) -> CheckResult:
        price = _to_decimal(price_eur)
        value = _to_decimal(amount) * price
        if price > 0 and value < self.policy.min_value_eur:
            return CheckResult(True, f"dust: {value:.4f} EUR")
        return CheckResult(False, "passed")

    def check_liquidity(self, liquidity_usd) -> CheckResult:
        """Only a reported liquidity is judged; ``None`` means unknown."""
        if liquidity_usd is None:
            return CheckResult(False, "unknown")
        liquidity = _to_decimal(liquidity_usd)
        if liquidity < self.policy.min_liquidity_usd:
            return CheckResult(True, f"low liquidity: ${liquidity}")
        return CheckResult(False, "passed")

    def validate(
        self,
        name: Optional[str],
        symbol: Optional[str],
        amount: float = 0,
        price_eur: float = 0,
        contract_address: Optional[str] = None,
        liquidity_usd: Optional[float] = None,
    ) -> FilterResult:
        """Run the synchronous checks in order, stopping at the first rejection."""
        if self.is_whitelisted(symbol):
            return FilterResult(True, False, "whitelist", [{"check": "whitelist", "is_spam": False}])

        checks = []
        for check, run in (
            ("pattern", lambda: self.check_pattern(name, symbol)),
            ("contract", lambda: self.check_contract(contract_address)),
            ("value", lambda: self.check_value(amount, price_eur)),
            ("liquidity", lambda: self.check_liquidity(liquidity_usd)),
        ):
            outcome = run()
            checks.append({"check": check, "is_spam": outcome.is_spam, "reason": outcome.reason})
            if outcome.is_spam:
                logger.debug(f"[FILTER] Rejected {symbol!r} ({name!r}): {outcome.reason}")
                return FilterResult(False, True, outcome.reason, checks)
        return FilterResult(True, False, "valid", checks)

    async def validate_async(
        self,
        name: Optional[str],
        symbol: Optional[str],
        amount: float = 0,
        price_eur: float = 0,
        contract_address: Optional[str] = None,
        chain: Optional[str] = None,
        liquidity_usd: Optional[float] = None,
    ) -> FilterResult:
        """``validate`` plus the external security lookup for survivors."""
        result = self.validate(name, symbol, amount, price_eur, contract_address, liquidity_usd)
        if not result.is_valid or result.reason == "whitelist":
            return result
        if self.security is None or not contract_address or not chain:
            return result

        verdict = await self.security.check(chain, contract_address)
        result.checks.append({"check": "security", "is_spam": not verdict.is_safe, "reason": verdict.reason})
        if not verdict.is_safe:
            logger.info(f"[FILTER] Rejected {symbol!r} on {chain}: {verdict.reason}")
            return FilterResult(False, True, verdict.reason, result.checks)
        return result
