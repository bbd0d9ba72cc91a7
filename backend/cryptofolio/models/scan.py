"""Structured results returned by adapter entry points."""
from typing import List, Optional
from pydantic import BaseModel, Field
from cryptofolio.models.balance import Balance
from cryptofolio.models.transaction import Transaction
from cryptofolio.utils.errors import ErrorKind


class ScanResult(BaseModel):
    """Outcome of a scan; failures carry a reason instead of raising."""
    success: bool = True
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    chains: List[str] = Field(default_factory=list)
    balances: List[Balance] = Field(default_factory=list)
    transactions: List[Transaction] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @classmethod
    def failure(cls, kind: ErrorKind, error: str, **kwargs) -> "ScanResult":
        return cls(success=False, error=error, error_kind=kind, **kwargs)

    def merge(self, other: "ScanResult") -> "ScanResult":
        """Combine two partial results; the merged result fails only if both did."""
        success = self.success or other.success
        errors = [e for e in (self.error, other.error) if e]
        return ScanResult(
            success=success,
            error=None if success else "; ".join(errors),
            error_kind=None if success else (self.error_kind or other.error_kind),
            chains=list(dict.fromkeys(self.chains + other.chains)),
            balances=self.balances + other.balances,
            transactions=self.transactions + other.transactions,
            # a partial failure is downgraded to a warning
            warnings=self.warnings + other.warnings + (errors if success else []),
        )
