"""Wallet models."""
from enum import Enum
from pydantic import BaseModel, Field
from typing import List, Optional
from cryptofolio.utils.parsing import now_ms


class WalletFamily(str, Enum):
    """Chain family an address belongs to."""
    EVM = "evm"
    COSMOS = "cosmos"
    SOLANA = "solana"


class Wallet(BaseModel):
    """Tracked wallet."""
    address: str
    name: str = ""
    family: WalletFamily
    chain: str = Field(default="", description="Chain key for single-chain families")
    added_at: int = Field(default_factory=now_ms, alias="addedAt")
    last_sync: Optional[int] = Field(default=None, alias="lastSync")

    class Config:
        populate_by_name = True


class WalletRequest(BaseModel):
    """Request model for wallet scanning."""
    addresses: List[str] = Field(..., min_length=1, max_length=10, description="List of wallet addresses")
    chains: Optional[List[str]] = Field(None, description="EVM chains to scan, defaults to configured chains")


class WalletScanSummary(BaseModel):
    """Per-address scan summary."""
    address: str
    family: Optional[WalletFamily] = None
    success: bool
    error: Optional[str] = None
    error_kind: Optional[str] = None
    balance_count: int = 0
    transactions_found: int = 0
    transactions_added: int = 0
    warnings: List[str] = Field(default_factory=list)


class WalletResponse(BaseModel):
    """Response model for wallet scanning."""
    results: List[WalletScanSummary]
    status: str
    message: Optional[str] = None
