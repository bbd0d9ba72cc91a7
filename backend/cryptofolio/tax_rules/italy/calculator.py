"""Italian tax calculation engine."""
from decimal import Decimal
from typing import Dict, List, Optional
import logging
from cryptofolio.config import Settings, settings as default_settings
from cryptofolio.models.report import Disposal, HoldingValuation, TaxReport
from cryptofolio.models.transaction import Transaction, TransactionType
from cryptofolio.services.price_service import PriceService
from cryptofolio.tax_rules.base import CostBasisMethod, TaxRuleEngine
from cryptofolio.tax_rules.italy.rules import ItalyTaxRules, get_italy_tax_rules
from cryptofolio.tax_rules.lots import (
    INBOUND_TYPES,
    ZERO,
    LotBook,
    chronological,
    is_tracked,
    to_decimal,
)
from cryptofolio.utils.errors import PriceServiceError
from cryptofolio.utils.parsing import date_from_ms

logger = logging.getLogger(__name__)


class _Run:
    """Working state of one calculation, discarded afterwards."""

    def __init__(self, year: int, method: CostBasisMethod):
        self.year = year
        self.book = LotBook(method)
        self.disposals: List[Disposal] = []
        self.warnings: List[str] = []
        self._warned = set()

    def warn(self, message: str):
        if message not in self._warned:
            self._warned.add(message)
            self.warnings.append(message)


class ItalyTaxCalculator(TaxRuleEngine):
    """Tax calculator for Italy: capital gains (Quadro RT) and IVAFE monitoring (Quadro RW)."""

    def __init__(self, price_service: Optional[PriceService] = None, config: Optional[Settings] = None):
        self.config = config or default_settings
        self.price_service = price_service or PriceService(config=self.config)
        self.rules: ItalyTaxRules = get_italy_tax_rules(self.config)

    async def calculate_tax(
        self,
        transactions: List[Transaction],
        year: int,
        method: Optional[CostBasisMethod] = None,
    ) -> TaxReport:
        """
        Calculate taxes according to Italian tax rules.

        Italian tax rules:
        - Every transaction up to the tax year is replayed to rebuild lots
        - Gains realized in the tax year are netted against losses
        - 26% on the net gain, nothing when year-end wealth is under 2000 EUR
        - IVAFE at 0.2% of the year-end value of replayed holdings
        """
        method = CostBasisMethod.parse(method, self.rules.cost_basis_method)
        history = chronological(tx for tx in transactions if tx.year <= year)
        run = _Run(year, method)

        opening: Optional[Dict[str, Decimal]] = None
        year_count = 0
        for tx in history:
            if opening is None and tx.year >= year:
                opening = run.book.holdings()
            if tx.year == year:
                year_count += 1
            await self._apply(run, tx)
        if opening is None:
            opening = run.book.holdings()
        closing = run.book.holdings()

        holdings = await self._value_holdings(run, opening, closing)
        report = self._summarize(run, method, holdings)
        report.transaction_count = year_count

        logger.info(
            f"[TAX] IT {year} ({method.value}): {len(run.disposals)} disposals, "
            f"net gain {report.net_gain_eur}, tax due {report.tax_due_eur}, "
            f"IVAFE {report.ivafe_eur}, {len(run.warnings)} warnings"
        )
        return report

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    async def _apply(self, run: _Run, tx: Transaction):
        if tx.type == TransactionType.FEE:
            coin = tx.coin_out or tx.fee_coin
            self._consume_fee(run, tx, coin, tx.amount_out or tx.fee_amount)
            return
        if tx.type in (TransactionType.STAKING, TransactionType.UNKNOWN):
            return

        if tx.type in INBOUND_TYPES:
            if is_tracked(tx.coin_in) and tx.amount_in > 0:
                value = await self._leg_value(run, tx, tx.coin_in, tx.amount_in)
                self._acquire(run, tx, tx.coin_in, tx.amount_in, value)

        elif tx.type == TransactionType.TRADE:
            value = await self._trade_value(run, tx)
            if is_tracked(tx.coin_out) and tx.amount_out > 0:
                self._dispose(run, tx, tx.coin_out, tx.amount_out, value)
            if is_tracked(tx.coin_in) and tx.amount_in > 0:
                self._acquire(run, tx, tx.coin_in, tx.amount_in, value)

        elif tx.type == TransactionType.WITHDRAWAL:
            if is_tracked(tx.coin_out) and tx.amount_out > 0:
                value = await self._leg_value(run, tx, tx.coin_out, tx.amount_out)
                self._dispose(run, tx, tx.coin_out, tx.amount_out, value)

        if tx.fee_amount > 0:
            self._consume_fee(run, tx, tx.fee_coin, tx.fee_amount)

    def _acquire(self, run: _Run, tx: Transaction, asset: str, amount: float, value: Decimal):
        quantity = to_decimal(amount)
        run.book.acquire(asset, quantity, value / quantity, tx.timestamp)

    def _dispose(self, run: _Run, tx: Transaction, asset: str, amount: float, proceeds: Decimal):
        quantity = to_decimal(amount)
        consumption = run.book.dispose(asset, quantity)
        if consumption.unmatched > 0:
            run.warn(
                f"Oversell of {consumption.unmatched} {asset} on {date_from_ms(tx.timestamp)} "
                f"({tx.source}): remainder booked at zero cost"
            )
        if tx.year != run.year:
            return
        run.disposals.append(Disposal(
            transaction_id=tx.id,
            source=tx.source,
            timestamp=tx.timestamp,
            asset=asset,
            quantity=quantity,
            proceeds_eur=proceeds,
            cost_basis_eur=consumption.cost_eur,
            gain_loss_eur=proceeds - consumption.cost_eur,
            unmatched_quantity=consumption.unmatched,
        ))

    def _consume_fee(self, run: _Run, tx: Transaction, asset: str, amount: float):
        """Fees leave the lots without realizing a gain."""
        if not is_tracked(asset) or amount <= 0:
            return
        consumption = run.book.dispose(asset, to_decimal(amount))
        if consumption.unmatched > 0:
            run.warn(f"Fee of {consumption.unmatched} {asset} on {date_from_ms(tx.timestamp)} exceeds holdings")

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    async def _historical_price(self, run: _Run, asset: str, day: str) -> Decimal:
        try:
            price = await self.price_service.get_historical_price(asset, day)
        except PriceServiceError as e:
            logger.warning(f"[TAX] Price lookup failed for {asset} on {day}: {e}")
            price = 0.0
        if not price or price <= 0:
            run.warn(f"No EUR price for {asset} on {day}")
            return ZERO
        return to_decimal(price)

    async def _leg_value(self, run: _Run, tx: Transaction, asset: str, amount: float) -> Decimal:
        """EUR value of a single-asset movement."""
        quantity = to_decimal(amount)
        if asset.upper() == "EUR":
            return quantity
        if asset == tx.primary_coin:
            if tx.value_eur > 0:
                return to_decimal(tx.value_eur)
            if tx.price_eur > 0:
                return to_decimal(tx.price_eur) * quantity
        return await self._historical_price(run, asset, date_from_ms(tx.timestamp)) * quantity

    async def _trade_value(self, run: _Run, tx: Transaction) -> Decimal:
        """EUR value exchanged in a trade, shared by both legs."""
        if tx.coin_in.upper() == "EUR" and tx.amount_in > 0:
            return to_decimal(tx.amount_in)
        if tx.coin_out.upper() == "EUR" and tx.amount_out > 0:
            return to_decimal(tx.amount_out)
        if tx.value_eur > 0:
            return to_decimal(tx.value_eur)
        if tx.price_eur > 0:
            return to_decimal(tx.price_eur) * to_decimal(tx.primary_amount)

        day = date_from_ms(tx.timestamp)
        for asset, amount in ((tx.coin_in, tx.amount_in), (tx.coin_out, tx.amount_out)):
            if not is_tracked(asset) or amount <= 0:
                continue
            try:
                price = await self.price_service.get_historical_price(asset, day)
            except PriceServiceError as e:
                logger.warning(f"[TAX] Price lookup failed for {asset} on {day}: {e}")
                continue
            if price and price > 0:
                return to_decimal(price) * to_decimal(amount)
        run.warn(f"No EUR value for trade {tx.coin_out} -> {tx.coin_in} on {day}")
        return ZERO

    async def _value_holdings(
        self,
        run: _Run,
        opening: Dict[str, Decimal],
        closing: Dict[str, Decimal],
    ) -> List[HoldingValuation]:
        holdings = []
        for asset in sorted(set(opening) | set(closing)):
            valuation = HoldingValuation(asset=asset)
            opening_quantity = opening.get(asset, ZERO)
            if opening_quantity > 0:
                price = await self._historical_price(run, asset, f"{run.year}-01-01")
                valuation.opening_quantity = opening_quantity
                valuation.opening_price_eur = price
                valuation.opening_value_eur = opening_quantity * price
            closing_quantity = closing.get(asset, ZERO)
            if closing_quantity > 0:
                price = await self._historical_price(run, asset, f"{run.year}-12-31")
                valuation.closing_quantity = closing_quantity
                valuation.closing_price_eur = price
                valuation.closing_value_eur = closing_quantity * price
            holdings.append(valuation)
        return holdings

    def _summarize(self, run: _Run, method: CostBasisMethod, holdings: List[HoldingValuation]) -> TaxReport:
        gross_gain = sum((d.gain_loss_eur for d in run.disposals if d.gain_loss_eur > 0), ZERO)
        gross_loss = sum((-d.gain_loss_eur for d in run.disposals if d.gain_loss_eur < 0), ZERO)
        net_gain = max(ZERO, gross_gain - gross_loss)
        net_loss = max(ZERO, gross_loss - gross_gain)

        opening_value = sum((h.opening_value_eur for h in holdings), ZERO)
        closing_value = sum((h.closing_value_eur for h in holdings), ZERO)

        # The threshold looks at year-end wealth, not at the gain
        below_threshold = closing_value < self.rules.no_tax_threshold_eur
        taxable_gain = ZERO if below_threshold else net_gain

        return TaxReport(
            country=self.get_country_code(),
            year=run.year,
            method=method.value,
            opening_value_eur=opening_value,
            closing_value_eur=closing_value,
            ivafe_eur=closing_value * self.rules.ivafe_rate,
            total_disposals_eur=sum((d.proceeds_eur for d in run.disposals), ZERO),
            cost_basis_eur=sum((d.cost_basis_eur for d in run.disposals), ZERO),
            gross_gain_eur=gross_gain,
            gross_loss_eur=gross_loss,
            net_gain_eur=net_gain,
            net_loss_eur=net_loss,
            taxable_gain_eur=taxable_gain,
            tax_due_eur=taxable_gain * self.rules.capital_gains_rate,
            below_no_tax_threshold=below_threshold,
            complete=not run.warnings,
            warnings=list(run.warnings),
            disposals=run.disposals,
            holdings=holdings,
        )

    def get_cost_basis_method(self) -> CostBasisMethod:
        """Get Italian default cost basis method (LIFO)."""
        return self.rules.cost_basis_method

    def get_country_code(self) -> str:
        """Get country code."""
        return "IT"
