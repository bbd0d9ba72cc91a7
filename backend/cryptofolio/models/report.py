"""Report models."""
from datetime import datetime
from decimal import Decimal
from typing import List
from pydantic import BaseModel, Field

ZERO = Decimal("0")


class Disposal(BaseModel):
    """One outbound leg matched against acquisition lots."""
    transaction_id: str
    source: str
    timestamp: int
    asset: str
    quantity: Decimal
    proceeds_eur: Decimal
    cost_basis_eur: Decimal
    gain_loss_eur: Decimal
    unmatched_quantity: Decimal = Field(default=ZERO, description="Oversold quantity booked at zero cost")

    class Config:
        json_encoders = {
            Decimal: str
        }


class HoldingValuation(BaseModel):
    """Replayed holding of one asset valued at a reference date."""
    asset: str
    opening_quantity: Decimal = ZERO
    opening_price_eur: Decimal = ZERO
    opening_value_eur: Decimal = ZERO
    closing_quantity: Decimal = ZERO
    closing_price_eur: Decimal = ZERO
    closing_value_eur: Decimal = ZERO

    class Config:
        json_encoders = {
            Decimal: str
        }


class TaxReport(BaseModel):
    """Complete yearly tax report.

    The RW section (monitoring / IVAFE) uses opening and closing values, the
    RT section (capital gains) uses the disposal totals.
    """
    country: str = Field(..., description="Country code")
    year: int = Field(..., description="Tax year")
    method: str = Field(..., description="Lot matching method")
    generated_at: datetime = Field(default_factory=datetime.utcnow, description="Report generation timestamp")

    opening_value_eur: Decimal = ZERO
    closing_value_eur: Decimal = ZERO
    ivafe_eur: Decimal = ZERO

    total_disposals_eur: Decimal = ZERO
    cost_basis_eur: Decimal = ZERO
    gross_gain_eur: Decimal = ZERO
    gross_loss_eur: Decimal = ZERO
    net_gain_eur: Decimal = ZERO
    net_loss_eur: Decimal = ZERO
    taxable_gain_eur: Decimal = ZERO
    tax_due_eur: Decimal = ZERO
    below_no_tax_threshold: bool = False

    transaction_count: int = 0
    complete: bool = True
    warnings: List[str] = Field(default_factory=list)
    disposals: List[Disposal] = Field(default_factory=list)
    holdings: List[HoldingValuation] = Field(default_factory=list)

    class Config:
        json_encoders = {
            Decimal: str,
            datetime: lambda v: v.isoformat()
        }

    def numeric_summary(self) -> dict:
        """Everything except the generation timestamp, for comparing runs."""
        return self.model_dump(mode="json", exclude={"generated_at"})
