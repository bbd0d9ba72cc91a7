"""Abstract base class for tax rule engines."""
from abc import ABC, abstractmethod
from typing import List, Optional, Union
from enum import Enum
from cryptofolio.models.transaction import Transaction
from cryptofolio.models.report import TaxReport


class CostBasisMethod(str, Enum):
    """Cost basis calculation methods."""
    FIFO = "FIFO"  # First In, First Out
    LIFO = "LIFO"  # Last In, First Out
    AVERAGE = "AVERAGE"  # Weighted average cost

    @classmethod
    def parse(cls, value: Union[str, "CostBasisMethod", None], default: "CostBasisMethod") -> "CostBasisMethod":
        """Accepts ``lifo``, ``AVERAGE_COST`` and friends."""
        if isinstance(value, cls):
            return value
        text = (value or "").strip().upper()
        if not text:
            return default
        if text.startswith("AVERAGE"):
            return cls.AVERAGE
        return cls(text)


class TaxRuleEngine(ABC):
    """Abstract base class for country-specific tax rule engines."""

    @abstractmethod
    async def calculate_tax(
        self,
        transactions: List[Transaction],
        year: int,
        method: Optional[CostBasisMethod] = None,
    ) -> TaxReport:
        """
        Calculate taxes for a list of transactions.

        Args:
            transactions: Full transaction history, every year
            year: Tax year
            method: Lot matching method, country default when None

        Returns:
            Complete tax report
        """
        pass

    @abstractmethod
    def get_cost_basis_method(self) -> CostBasisMethod:
        """Get default cost basis calculation method for this country."""
        pass

    @abstractmethod
    def get_country_code(self) -> str:
        """Get country code (e.g., 'IT' for Italy)."""
        pass
