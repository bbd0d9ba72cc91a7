"""CEX integration endpoints."""
from fastapi import APIRouter, Depends, HTTPException, UploadFile, File
from cryptofolio.api.dependencies import AppContainer, get_container
from cryptofolio.utils.errors import CexIntegrationError
from cryptofolio.utils.parsing import now_ms

router = APIRouter()


@router.post("/upload/{exchange}")
async def upload_cex_csv(
    exchange: str,
    file: UploadFile = File(...),
    container: AppContainer = Depends(get_container),
):
    """
    Upload CSV file from a CEX and import it into the ledger.

    Supported exchanges: kraken, coinbase
    """
    adapter = container.cex_adapters.get(exchange.lower())
    if adapter is None:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported exchange: {exchange}"
        )

    try:
        content = await file.read()
        csv_content = content.decode("utf-8-sig")
        transactions = adapter.parse_csv(csv_content)
    except (CexIntegrationError, UnicodeDecodeError) as e:
        raise HTTPException(
            status_code=400,
            detail=f"Error parsing CSV: {str(e)}"
        )

    transactions = container.normalizer.normalize(transactions)
    added = container.store.add_transactions(transactions)
    container.store.set_exchange(adapter.exchange, {
        "lastImport": now_ms(),
        "filename": file.filename,
    })

    return {
        "exchange": adapter.exchange,
        "filename": file.filename,
        "status": "success",
        "transaction_count": len(transactions),
        "transactions_added": added,
        "message": f"Imported {added} new of {len(transactions)} transactions from CSV"
    }


@router.get("/formats")
async def list_formats(container: AppContainer = Depends(get_container)):
    """List supported exchanges and their CSV formats."""
    return {
        name: adapter.get_supported_csv_formats()
        for name, adapter in container.cex_adapters.items()
    }


@router.delete("/{exchange}")
async def delete_exchange(exchange: str, container: AppContainer = Depends(get_container)):
    """Remove every record imported from an exchange."""
    transactions, balances = await container.store.remove_source(exchange)
    return {
        "exchange": exchange.lower(),
        "transactions_removed": transactions,
        "balances_removed": balances,
    }
