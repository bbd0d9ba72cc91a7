"""Portfolio endpoints."""
from decimal import Decimal
from fastapi import APIRouter, Depends, Query
from cryptofolio.api.dependencies import AppContainer, get_container
from cryptofolio.services.portfolio_service import PortfolioValuation
from cryptofolio.services.reconciliation import ReconciliationReport, reconcile

router = APIRouter()


@router.get("", response_model=PortfolioValuation)
async def get_portfolio(
    refresh: bool = Query(default=True, description="Refresh stale live prices first"),
    container: AppContainer = Depends(get_container),
):
    """Stored balances valued at live EUR prices."""
    balances = container.store.get_balances().values()
    return await container.portfolio.value_balances(balances, refresh=refresh)


@router.get("/reconcile", response_model=ReconciliationReport)
async def reconcile_portfolio(
    tolerance: float = Query(default=0.01, ge=0, le=1, description="Relative difference ignored"),
    container: AppContainer = Depends(get_container),
):
    """Coins whose balance snapshot disagrees with the replayed transaction history."""
    return reconcile(
        container.store.get_balances().values(),
        container.store.get_transactions(),
        tolerance=Decimal(str(tolerance)),
    )
