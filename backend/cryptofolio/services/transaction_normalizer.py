"""Transaction normalization service."""
from typing import Dict, Iterable, List, Optional, Set, Tuple
import logging
from cryptofolio.models.transaction import Transaction
from cryptofolio.services.ledger_store import LedgerStore
from cryptofolio.services.price_service import PriceService
from cryptofolio.utils.parsing import date_from_ms

logger = logging.getLogger(__name__)

# Fiat legs are valued at face value, never through the price service
FIAT_EUR_RATES = {"EUR": 1.0}
FIAT_CURRENCIES = {"EUR", "USD", "GBP", "CHF"}


class TransactionNormalizer:
    """Service for normalizing transactions from multiple sources."""

    def __init__(self, price_service: PriceService):
        self.price_service = price_service

    def normalize(self, transactions: Iterable[Transaction]) -> List[Transaction]:
        """
        Merge a batch from several producers.

        This method:
        1. Drops rows that move nothing
        2. Removes duplicates on (source, sourceId), keeping the first
        3. Sorts chronologically (stable)
        """
        seen: Set[Tuple[str, str]] = set()
        unique: List[Transaction] = []
        duplicates = empty = 0
        for tx in transactions:
            if tx.is_empty:
                empty += 1
                continue
            if tx.dedup_key in seen:
                duplicates += 1
                continue
            seen.add(tx.dedup_key)
            unique.append(tx)

        if duplicates or empty:
            logger.info(f"[NORMALIZE] Removed {duplicates} duplicates and {empty} empty rows")
        unique.sort(key=lambda tx: tx.timestamp)
        return unique

    @staticmethod
    def filter_by_year(transactions: Iterable[Transaction], year: int) -> List[Transaction]:
        return [tx for tx in transactions if tx.year == year]

    async def unit_price(self, coin: str, timestamp: int) -> float:
        coin = (coin or "").upper()
        if coin in FIAT_EUR_RATES:
            return FIAT_EUR_RATES[coin]
        if not coin or coin in FIAT_CURRENCIES:
            return 0.0
        return await self.price_service.get_historical_price(coin, date_from_ms(timestamp))

    async def valuation(self, tx: Transaction) -> Optional[Dict[str, float]]:
        """Missing EUR figures for ``tx``, or None when nothing can be added."""
        update: Dict[str, float] = {}

        if tx.value_eur == 0 and tx.price_eur == 0 and tx.primary_amount > 0:
            price = await self.unit_price(tx.primary_coin, tx.timestamp)
            if price > 0:
                update["price_eur"] = price
                update["value_eur"] = price * tx.primary_amount
            else:
                logger.debug(f"[ENRICH] No price for {tx.primary_coin} on {tx.date[:10]}")
        elif tx.value_eur == 0 and tx.price_eur > 0:
            update["value_eur"] = tx.price_eur * tx.primary_amount

        if tx.fee_amount > 0 and tx.fee_eur == 0 and tx.fee_coin:
            fee_price = await self.unit_price(tx.fee_coin, tx.timestamp)
            if fee_price > 0:
                update["fee_eur"] = fee_price * tx.fee_amount

        return update or None

    async def enrich(self, transactions: Iterable[Transaction]) -> List[Transaction]:
        """Copies of ``transactions`` with EUR prices filled in where resolvable."""
        enriched = []
        for tx in transactions:
            update = await self.valuation(tx)
            enriched.append(tx.model_copy(update=update) if update else tx)
        return enriched

    async def enrich_store(self, store: LedgerStore, year: Optional[int] = None) -> int:
        """Value stored transactions in place; returns how many were updated."""
        updated = 0
        for tx in sorted(store.get_transactions(year=year), key=lambda t: t.timestamp):
            update = await self.valuation(tx)
            if update and store.replace_valuation(tx.id, **update):
                updated += 1
        logger.info(f"[ENRICH] Valued {updated} transactions")
        return updated
