"""Italian tax rules and regulations."""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from cryptofolio.config import Settings, settings as default_settings
from cryptofolio.tax_rules.base import CostBasisMethod

# Italian tax rules (defaults, overridable through settings)
ITALY_CAPITAL_GAINS_RATE = Decimal("0.26")  # 26% on net gains since 2023
ITALY_IVAFE_RATE = Decimal("0.002")  # 0.2% yearly on year-end value
ITALY_NO_TAX_THRESHOLD_EUR = Decimal("2000")  # evaluated on year-end wealth

# Cost basis method: LIFO unless the caller asks for another one
ITALY_COST_BASIS_METHOD = CostBasisMethod.LIFO


@dataclass(frozen=True)
class ItalyTaxRules:
    """Rates and thresholds used by one calculation."""
    capital_gains_rate: Decimal = ITALY_CAPITAL_GAINS_RATE
    ivafe_rate: Decimal = ITALY_IVAFE_RATE
    no_tax_threshold_eur: Decimal = ITALY_NO_TAX_THRESHOLD_EUR
    cost_basis_method: CostBasisMethod = ITALY_COST_BASIS_METHOD


def get_italy_tax_rules(config: Optional[Settings] = None) -> ItalyTaxRules:
    """Get Italian tax rules from settings."""
    config = config or default_settings
    return ItalyTaxRules(
        capital_gains_rate=Decimal(str(config.capital_gains_rate)),
        ivafe_rate=Decimal(str(config.ivafe_rate)),
        no_tax_threshold_eur=Decimal(str(config.no_tax_threshold_eur)),
        cost_basis_method=CostBasisMethod.parse(config.default_cost_basis_method, ITALY_COST_BASIS_METHOD),
    )
