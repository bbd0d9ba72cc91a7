"""Portfolio valuation of stored balance snapshots."""
from typing import Dict, Iterable, List
import logging
from pydantic import BaseModel, Field
from cryptofolio.models.balance import Balance
from cryptofolio.services.price_service import PriceService

logger = logging.getLogger(__name__)


class AssetPosition(BaseModel):
    """Aggregated holding of one coin across sources."""
    coin: str
    amount: float = 0.0
    price_eur: float = 0.0
    value_eur: float = 0.0
    sources: List[str] = Field(default_factory=list)


class PortfolioValuation(BaseModel):
    """Mark-to-market view of the balances."""
    total_value_eur: float = 0.0
    balances: List[Balance] = Field(default_factory=list)
    assets: List[AssetPosition] = Field(default_factory=list)
    unpriced: List[str] = Field(default_factory=list)


class PortfolioService:
    """Values balance snapshots against live prices."""

    def __init__(self, price_service: PriceService):
        self.price_service = price_service

    def unit_price(self, coin: str) -> float:
        if coin.upper() == "EUR":
            return 1.0
        return self.price_service.get_current_price(coin, "eur")

    async def value_balances(self, balances: Iterable[Balance], refresh: bool = True) -> PortfolioValuation:
        """Price every balance, aggregate per coin and total the portfolio.

        Coins without a price keep their last stored value and are listed in
        ``unpriced``.
        """
        balances = [b for b in balances if b.amount > 0]
        if refresh and balances:
            await self.price_service.refresh_current_prices(sorted({b.coin.upper() for b in balances}))

        valued: List[Balance] = []
        positions: Dict[str, AssetPosition] = {}
        unpriced = set()
        for balance in balances:
            price = self.unit_price(balance.coin)
            if price > 0:
                balance = balance.model_copy(update={"price_eur": price, "value_eur": price * balance.amount})
            else:
                unpriced.add(balance.coin)
            valued.append(balance)

            position = positions.setdefault(balance.coin, AssetPosition(coin=balance.coin))
            position.amount += balance.amount
            position.value_eur += balance.value_eur
            if balance.price_eur:
                position.price_eur = balance.price_eur
            if balance.source not in position.sources:
                position.sources.append(balance.source)

        assets = sorted(positions.values(), key=lambda p: p.value_eur, reverse=True)
        total = sum(p.value_eur for p in assets)
        if unpriced:
            logger.info(f"[PORTFOLIO] No live price for {', '.join(sorted(unpriced))}")
        return PortfolioValuation(
            total_value_eur=total,
            balances=valued,
            assets=assets,
            unpriced=sorted(unpriced),
        )
