"""Acquisition lots and the matching strategies that consume them."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from cryptofolio.models.transaction import Transaction, TransactionType
from cryptofolio.tax_rules.base import CostBasisMethod

ZERO = Decimal("0")

# Fiat is cash, never a lot
FIAT_ASSETS = frozenset({"EUR", "USD", "GBP", "CHF"})

INBOUND_TYPES = {TransactionType.DEPOSIT, TransactionType.STAKING_REWARD, TransactionType.AIRDROP}


def to_decimal(value) -> Decimal:
    """Floats go through ``str`` so 0.1 stays 0.1."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value or 0))


def is_tracked(asset: str) -> bool:
    return bool(asset) and asset.upper() not in FIAT_ASSETS


@dataclass
class Lot:
    """Quantity of one asset acquired at one unit cost."""
    asset: str
    quantity: Decimal
    unit_cost_eur: Decimal
    acquired_at: int

    @property
    def cost_eur(self) -> Decimal:
        return self.quantity * self.unit_cost_eur


@dataclass
class Consumption:
    """What a disposal took out of a pool."""
    quantity: Decimal
    cost_eur: Decimal
    unmatched: Decimal = ZERO


class LotPool(ABC):
    """Holdings of one asset under one matching method."""

    def __init__(self, asset: str):
        self.asset = asset

    @property
    @abstractmethod
    def quantity(self) -> Decimal:
        pass

    @property
    @abstractmethod
    def total_cost(self) -> Decimal:
        pass

    @abstractmethod
    def add(self, lot: Lot):
        pass

    @abstractmethod
    def consume(self, quantity: Decimal) -> Consumption:
        """Remove ``quantity``; whatever the pool cannot cover comes back as ``unmatched``."""
        pass


class QueuePool(LotPool):
    """Individual lots consumed newest-first (LIFO) or oldest-first (FIFO)."""

    def __init__(self, asset: str, newest_first: bool):
        super().__init__(asset)
        self.newest_first = newest_first
        self.lots: List[Lot] = []

    @property
    def quantity(self) -> Decimal:
        return sum((lot.quantity for lot in self.lots), ZERO)

    @property
    def total_cost(self) -> Decimal:
        return sum((lot.cost_eur for lot in self.lots), ZERO)

    def add(self, lot: Lot):
        self.lots.append(lot)

    def consume(self, quantity: Decimal) -> Consumption:
        remaining = quantity
        cost = ZERO
        while remaining > 0 and self.lots:
            index = -1 if self.newest_first else 0
            lot = self.lots[index]
            if lot.quantity <= remaining:
                cost += lot.cost_eur
                remaining -= lot.quantity
                self.lots.pop(index)
            else:
                # Split the lot
                cost += remaining * lot.unit_cost_eur
                lot.quantity -= remaining
                remaining = ZERO
        return Consumption(quantity=quantity, cost_eur=cost, unmatched=remaining)


class AveragePool(LotPool):
    """One running pool per asset at weighted-average cost.

    Only quantity and total cost are kept, so a disposal costs
    ``total_cost * qty / quantity`` computed in one step.
    """

    def __init__(self, asset: str):
        super().__init__(asset)
        self._quantity = ZERO
        self._total_cost = ZERO

    @property
    def quantity(self) -> Decimal:
        return self._quantity

    @property
    def total_cost(self) -> Decimal:
        return self._total_cost

    def add(self, lot: Lot):
        self._quantity += lot.quantity
        self._total_cost += lot.cost_eur

    def consume(self, quantity: Decimal) -> Consumption:
        matched = min(quantity, self._quantity)
        if matched <= 0:
            return Consumption(quantity=quantity, cost_eur=ZERO, unmatched=quantity)
        if matched == self._quantity:
            cost = self._total_cost
            self._quantity = ZERO
            self._total_cost = ZERO
        else:
            cost = self._total_cost * matched / self._quantity
            self._quantity -= matched
            self._total_cost -= cost
        return Consumption(quantity=quantity, cost_eur=cost, unmatched=quantity - matched)


def make_pool(asset: str, method: CostBasisMethod) -> LotPool:
    if method == CostBasisMethod.AVERAGE:
        return AveragePool(asset)
    return QueuePool(asset, newest_first=method == CostBasisMethod.LIFO)


@dataclass
class LotBook:
    """Per-asset pools for one report run."""
    method: CostBasisMethod
    pools: Dict[str, LotPool] = field(default_factory=dict)

    def pool(self, asset: str) -> LotPool:
        if asset not in self.pools:
            self.pools[asset] = make_pool(asset, self.method)
        return self.pools[asset]

    def acquire(self, asset: str, quantity: Decimal, unit_cost_eur: Decimal, acquired_at: int):
        if quantity > 0:
            self.pool(asset).add(Lot(asset, quantity, unit_cost_eur, acquired_at))

    def dispose(self, asset: str, quantity: Decimal) -> Consumption:
        return self.pool(asset).consume(quantity)

    def holdings(self) -> Dict[str, Decimal]:
        return {asset: pool.quantity for asset, pool in sorted(self.pools.items()) if pool.quantity > 0}


def movements(tx: Transaction) -> List[tuple]:
    """Signed ``(asset, quantity)`` changes a transaction makes to tracked holdings.

    Fee rows move their quantity once; other rows also pay their fee leg.
    ``staking`` and ``unknown`` rows move nothing.
    """
    changes = []
    if tx.type == TransactionType.FEE:
        coin = tx.coin_out or tx.fee_coin
        amount = tx.amount_out or tx.fee_amount
        if is_tracked(coin) and amount > 0:
            changes.append((coin, -to_decimal(amount)))
        return changes
    if tx.type in (TransactionType.STAKING, TransactionType.UNKNOWN):
        return changes

    if tx.type in INBOUND_TYPES or tx.type == TransactionType.TRADE:
        if is_tracked(tx.coin_in) and tx.amount_in > 0:
            changes.append((tx.coin_in, to_decimal(tx.amount_in)))
    if tx.type in (TransactionType.WITHDRAWAL, TransactionType.TRADE):
        if is_tracked(tx.coin_out) and tx.amount_out > 0:
            changes.append((tx.coin_out, -to_decimal(tx.amount_out)))
    if is_tracked(tx.fee_coin) and tx.fee_amount > 0:
        changes.append((tx.fee_coin, -to_decimal(tx.fee_amount)))
    return changes


def chronological(transactions: Iterable[Transaction]) -> List[Transaction]:
    """Stable ascending sort; equal timestamps keep their input order."""
    return sorted(transactions, key=lambda tx: tx.timestamp)


def replay_holdings(transactions: Iterable[Transaction], until_ms: Optional[int] = None) -> Dict[str, Decimal]:
    """Quantities held after replaying every transaction strictly before ``until_ms``.

    Holdings never go negative; an oversell empties the asset.
    """
    holdings: Dict[str, Decimal] = {}
    for tx in chronological(transactions):
        if until_ms is not None and tx.timestamp >= until_ms:
            break
        for asset, delta in movements(tx):
            holdings[asset] = max(ZERO, holdings.get(asset, ZERO) + delta)
    return {asset: quantity for asset, quantity in sorted(holdings.items()) if quantity > 0}
