"""Wallet processing endpoints."""
from fastapi import APIRouter, Depends, HTTPException
from cryptofolio.api.dependencies import AppContainer, get_container
from cryptofolio.models.wallet import WalletRequest, WalletResponse
from cryptofolio.services.chain_adapters.address import detect_wallet_type

router = APIRouter()


@router.post("/scan", response_model=WalletResponse)
async def scan_wallets(request: WalletRequest, container: AppContainer = Depends(get_container)):
    """
    Scan wallet addresses of any supported chain family.

    This endpoint will:
    1. Detect the chain family of each address
    2. Fetch balances and transactions through the matching adapter
    3. Store new records in the ledger and return a per-address summary
    """
    if len(request.addresses) > container.config.max_wallets:
        raise HTTPException(
            status_code=400,
            detail=f"Maximum {container.config.max_wallets} wallets allowed"
        )

    results = await container.scanner.scan_many(request.addresses, request.chains)
    succeeded = sum(1 for r in results if r.success)
    added = sum(r.transactions_added for r in results)

    if succeeded == len(results):
        status = "success"
    elif succeeded:
        status = "partial"
    else:
        status = "error"

    return WalletResponse(
        results=results,
        status=status,
        message=f"Scanned {succeeded}/{len(results)} wallet(s), {added} new transactions"
    )


@router.get("/validate/{address}")
async def validate_wallet(address: str):
    """Detect which chain family an address belongs to."""
    detected = detect_wallet_type(address)

    return {
        "address": address,
        "valid": detected is not None,
        "family": detected.family.value if detected else None,
        "chain": detected.chain if detected else None,
        "message": "Address is valid" if detected else "Unrecognized address format"
    }


@router.get("")
async def list_wallets(container: AppContainer = Depends(get_container)):
    """List tracked wallets."""
    return {
        "wallets": [w.model_dump(by_alias=True, mode="json") for w in container.store.get_wallets()]
    }


@router.delete("/{address}")
async def delete_wallet(address: str, container: AppContainer = Depends(get_container)):
    """Remove a wallet with all its balances and transactions."""
    if not await container.store.remove_wallet(address):
        raise HTTPException(status_code=404, detail=f"Wallet {address} is not tracked")
    return {"address": address, "status": "deleted"}
