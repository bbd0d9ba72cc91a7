"""Wallet address detection."""
from dataclasses import dataclass
from typing import Optional
import re
import base58
from cryptofolio.models.wallet import WalletFamily

EVM_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")
BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")

# bech32 human-readable prefix -> chain key
COSMOS_PREFIXES = {
    "terra1": "terra",
    "cosmos1": "atom",
    "osmo1": "osmo",
}


@dataclass(frozen=True)
class DetectedAddress:
    family: WalletFamily
    chain: Optional[str] = None


def is_valid_evm_address(address: str) -> bool:
    return bool(address) and EVM_ADDRESS.match(address) is not None


def is_valid_solana_address(address: str) -> bool:
    """
    Validate Solana address format.

    Solana addresses are base58 encoded, typically 32-44 characters.
    """
    if not address or BASE58_ADDRESS.match(address) is None:
        return False
    try:
        decoded = base58.b58decode(address)
    except ValueError:
        return False
    # Solana addresses are 32 bytes
    return len(decoded) == 32


def cosmos_chain(address: str) -> Optional[str]:
    for prefix, chain in COSMOS_PREFIXES.items():
        if address.startswith(prefix):
            return chain
    return None


def detect_wallet_type(address: Optional[str]) -> Optional[DetectedAddress]:
    """Classify an address; ``None`` means unrecognized."""
    address = (address or "").strip()
    if not address:
        return None
    if is_valid_evm_address(address):
        return DetectedAddress(WalletFamily.EVM)
    chain = cosmos_chain(address)
    if chain is not None:
        return DetectedAddress(WalletFamily.COSMOS, chain)
    if is_valid_solana_address(address):
        return DetectedAddress(WalletFamily.SOLANA, "solana")
    return None


def normalize_address(address: str, family: WalletFamily) -> str:
    """Hex and bech32 addresses are case-insensitive, base58 is not."""
    address = address.strip()
    return address if family == WalletFamily.SOLANA else address.lower()


def wallet_source(address: str, family: WalletFamily) -> str:
    return f"wallet_{normalize_address(address, family)}"
