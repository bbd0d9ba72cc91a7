"""Compare stored balance snapshots with holdings replayed from transactions."""
from decimal import Decimal
from typing import Dict, Iterable, List
import logging
from pydantic import BaseModel, Field
from cryptofolio.models.balance import Balance
from cryptofolio.models.transaction import Transaction
from cryptofolio.tax_rules.lots import ZERO, is_tracked, replay_holdings, to_decimal

logger = logging.getLogger(__name__)

# Relative difference tolerated before a coin is reported
DEFAULT_TOLERANCE = Decimal("0.01")


class Discrepancy(BaseModel):
    """One coin whose snapshot and replayed quantity disagree."""
    coin: str
    snapshot_amount: Decimal
    replayed_amount: Decimal
    difference: Decimal

    class Config:
        json_encoders = {
            Decimal: str
        }


class ReconciliationReport(BaseModel):
    """Outcome of a reconciliation run."""
    checked: int = 0
    matched: int = 0
    discrepancies: List[Discrepancy] = Field(default_factory=list)

    class Config:
        json_encoders = {
            Decimal: str
        }


def _totals(balances: Iterable[Balance]) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = {}
    for balance in balances:
        if not is_tracked(balance.coin):
            continue
        totals[balance.coin] = totals.get(balance.coin, ZERO) + to_decimal(balance.amount)
    return totals


def reconcile(
    balances: Iterable[Balance],
    transactions: Iterable[Transaction],
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> ReconciliationReport:
    """Report coins whose snapshot total and replayed total differ by more than ``tolerance``.

    The two views stay separate; the report only points at missing history
    (deposits never scanned, exchanges never imported) or stale snapshots.
    """
    snapshot = _totals(balances)
    replayed = replay_holdings(transactions)

    report = ReconciliationReport()
    for coin in sorted(set(snapshot) | set(replayed)):
        have = snapshot.get(coin, ZERO)
        expected = replayed.get(coin, ZERO)
        report.checked += 1
        difference = have - expected
        scale = max(abs(have), abs(expected))
        if scale == 0 or abs(difference) <= scale * tolerance:
            report.matched += 1
            continue
        report.discrepancies.append(Discrepancy(
            coin=coin,
            snapshot_amount=have,
            replayed_amount=expected,
            difference=difference,
        ))

    if report.discrepancies:
        logger.info(
            f"[RECONCILE] {len(report.discrepancies)} of {report.checked} coins differ: "
            f"{', '.join(d.coin for d in report.discrepancies)}"
        )
    return report
