"""Tax calculation endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from typing import List, Optional
import logging
from cryptofolio.api.dependencies import AppContainer, get_container
from cryptofolio.api.routes.reports import generate_excel_report
from cryptofolio.tax_rules.base import CostBasisMethod
from cryptofolio.tax_rules.registry import get_tax_engine, list_supported_countries
from cryptofolio.utils.errors import TaxCalculationError

logger = logging.getLogger(__name__)

router = APIRouter()


class TaxCalculationRequest(BaseModel):
    """Request model for tax calculation."""
    country: str = Field(default="IT", description="Country code (e.g., 'IT' for Italy)")
    year: int = Field(..., description="Tax year")
    method: Optional[str] = Field(None, description="LIFO, FIFO or AVERAGE; country default when omitted")
    sources: Optional[List[str]] = Field(None, description="Restrict to these sources (exchange or wallet_<address>)")
    enrich: bool = Field(default=True, description="Fill missing EUR values before calculating")


@router.post("/calculate")
async def calculate_tax(
    request: TaxCalculationRequest,
    format: str = Query(default="json", description="Response format: json or excel"),
    container: AppContainer = Depends(get_container),
):
    """
    Calculate taxes for the given country and year.

    This endpoint:
    1. Values stored transactions that still lack EUR prices
    2. Replays the whole history through the country's lot engine
    3. Returns a complete tax report (JSON or Excel)
    """
    try:
        tax_engine = get_tax_engine(
            request.country,
            price_service=container.price_service,
            config=container.config,
        )
    except TaxCalculationError as e:
        raise HTTPException(
            status_code=400,
            detail=f"Tax rules for country '{request.country}' not available: {str(e)}"
        )

    try:
        method = CostBasisMethod.parse(request.method, tax_engine.get_cost_basis_method())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown cost basis method: {request.method}")

    if request.enrich:
        await container.normalizer.enrich_store(container.store)

    transactions = container.store.get_transactions()
    if request.sources:
        wanted = set(request.sources)
        transactions = [tx for tx in transactions if tx.source in wanted]

    report = await tax_engine.calculate_tax(transactions, request.year, method)
    logger.info(f"[TAX] Report {request.country}/{request.year} over {len(transactions)} transactions")

    # Return Excel if requested
    if format.lower() == "excel":
        excel_file = generate_excel_report(report)
        return StreamingResponse(
            excel_file,
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers={
                "Content-Disposition": f"attachment; filename=tax-report-{report.country}-{request.year}.xlsx"
            }
        )

    # Return JSON
    return report


@router.get("/countries")
async def list_countries():
    """List all supported countries."""
    countries = list_supported_countries()
    return {
        "countries": [
            {"code": c["code"], "name": c["name"], "supported": True}
            for c in countries
        ]
    }
