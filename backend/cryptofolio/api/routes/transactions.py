"""Ledger transaction endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from cryptofolio.api.dependencies import AppContainer, get_container
from cryptofolio.models.transaction import TransactionType

router = APIRouter()


@router.get("")
async def list_transactions(
    source: Optional[str] = Query(default=None, description="Exchange name or wallet_<address>"),
    year: Optional[int] = Query(default=None),
    coin: Optional[str] = Query(default=None),
    type: Optional[TransactionType] = Query(default=None),
    limit: int = Query(default=500, ge=1, le=10000),
    offset: int = Query(default=0, ge=0),
    container: AppContainer = Depends(get_container),
):
    """List stored transactions, newest first, in the canonical wire format."""
    transactions = container.store.get_transactions(source=source, year=year, coin=coin, type=type)
    page = transactions[offset:offset + limit]
    return {
        "total": len(transactions),
        "transactions": [tx.to_wire() for tx in page],
    }


@router.post("/enrich")
async def enrich_transactions(
    year: Optional[int] = Query(default=None),
    container: AppContainer = Depends(get_container),
):
    """Fill missing EUR values from historical prices."""
    updated = await container.normalizer.enrich_store(container.store, year=year)
    return {"updated": updated}


@router.delete("")
async def delete_transactions(
    source: Optional[str] = Query(default=None),
    year: Optional[int] = Query(default=None),
    coin: Optional[str] = Query(default=None),
    type: Optional[TransactionType] = Query(default=None),
    container: AppContainer = Depends(get_container),
):
    """Delete transactions matching every given filter; at least one filter is required."""
    if not any((source, year, coin, type)):
        raise HTTPException(status_code=400, detail="At least one filter is required")
    deleted = container.store.delete_transactions(source=source, year=year, coin=coin, type=type)
    return {"deleted": deleted}
