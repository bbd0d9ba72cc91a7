"""Italian tax rules module."""
from cryptofolio.tax_rules.italy.calculator import ItalyTaxCalculator
from cryptofolio.tax_rules.registry import register_tax_engine

# Register Italy tax engine
register_tax_engine("IT", ItalyTaxCalculator)
