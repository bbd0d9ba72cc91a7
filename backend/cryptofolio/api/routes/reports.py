"""Report generation and export endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from io import BytesIO
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment
from openpyxl.utils import get_column_letter
from cryptofolio.api.dependencies import AppContainer, get_container
from cryptofolio.models.report import TaxReport
from cryptofolio.tax_rules.base import CostBasisMethod
from cryptofolio.tax_rules.italy.calculator import ItalyTaxCalculator
from cryptofolio.tax_rules.italy.reporting import format_italian_report
from cryptofolio.utils.parsing import iso_from_ms

router = APIRouter()

HEADER_FILL = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
HEADER_FONT = Font(bold=True, color="FFFFFF")


def _style_header(row):
    for cell in row:
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center")


def _fit_columns(ws):
    for column in ws.columns:
        max_length = max((len(str(cell.value)) for cell in column if cell.value is not None), default=0)
        ws.column_dimensions[get_column_letter(column[0].column)].width = min(max_length + 2, 50)


def generate_excel_report(report: TaxReport) -> BytesIO:
    """
    Generate Excel report from tax report.

    Creates multiple sheets:
    1. Summary - Quadro RT and Quadro RW totals
    2. Disposals - One row per realized disposal
    3. Holdings - Opening and closing holdings with prices
    4. Warnings - Data-completeness warnings, when any
    """
    wb = Workbook()

    # Remove default sheet
    if "Sheet" in wb.sheetnames:
        wb.remove(wb["Sheet"])

    ws_summary = wb.create_sheet("Summary", 0)
    ws_summary.append(["Crypto Tax Report"])
    ws_summary.append(["Country", report.country])
    ws_summary.append(["Year", report.year])
    ws_summary.append(["Method", report.method])
    ws_summary.append(["Generated At", report.generated_at.isoformat()])
    ws_summary.append(["Metric", "Amount (EUR)"])
    _style_header(ws_summary[6])
    for label, value in (
        ("Opening Value", report.opening_value_eur),
        ("Closing Value", report.closing_value_eur),
        ("IVAFE", report.ivafe_eur),
        ("Disposal Proceeds", report.total_disposals_eur),
        ("Cost Basis", report.cost_basis_eur),
        ("Gross Gain", report.gross_gain_eur),
        ("Gross Loss", report.gross_loss_eur),
        ("Net Gain", report.net_gain_eur),
        ("Net Loss", report.net_loss_eur),
        ("Taxable Gain", report.taxable_gain_eur),
        ("Tax Due", report.tax_due_eur),
    ):
        ws_summary.append([label, str(value)])
    ws_summary.append(["Below No-Tax Threshold", "yes" if report.below_no_tax_threshold else "no"])
    ws_summary.append(["Transaction Count", report.transaction_count])
    _fit_columns(ws_summary)

    ws_disposals = wb.create_sheet("Disposals", 1)
    ws_disposals.append([
        "Date", "Asset", "Quantity", "Proceeds (EUR)", "Cost Basis (EUR)",
        "Gain/Loss (EUR)", "Unmatched Quantity", "Source", "Transaction ID",
    ])
    _style_header(ws_disposals[1])
    for disposal in report.disposals:
        ws_disposals.append([
            iso_from_ms(disposal.timestamp),
            disposal.asset,
            str(disposal.quantity),
            str(disposal.proceeds_eur),
            str(disposal.cost_basis_eur),
            str(disposal.gain_loss_eur),
            str(disposal.unmatched_quantity) if disposal.unmatched_quantity else "",
            disposal.source,
            disposal.transaction_id,
        ])
    _fit_columns(ws_disposals)

    ws_holdings = wb.create_sheet("Holdings", 2)
    ws_holdings.append([
        "Asset", "Jan 1 Quantity", "Jan 1 Price (EUR)", "Jan 1 Value (EUR)",
        "Dec 31 Quantity", "Dec 31 Price (EUR)", "Dec 31 Value (EUR)",
    ])
    _style_header(ws_holdings[1])
    for holding in report.holdings:
        ws_holdings.append([
            holding.asset,
            str(holding.opening_quantity),
            str(holding.opening_price_eur),
            str(holding.opening_value_eur),
            str(holding.closing_quantity),
            str(holding.closing_price_eur),
            str(holding.closing_value_eur),
        ])
    _fit_columns(ws_holdings)

    if report.warnings:
        ws_warnings = wb.create_sheet("Warnings", 3)
        ws_warnings.append(["Warnings"])
        for warning in report.warnings:
            ws_warnings.append([warning])

    # Save to BytesIO
    output = BytesIO()
    wb.save(output)
    output.seek(0)

    return output


@router.get("/{year}/italy")
async def italian_report(
    year: int,
    method: Optional[str] = Query(default=None, description="LIFO, FIFO or AVERAGE"),
    container: AppContainer = Depends(get_container),
):
    """
    Quadro RW / Quadro RT breakdown for the Italian tax return.

    Replays the full stored history up to ``year``.
    """
    calculator = ItalyTaxCalculator(container.price_service, container.config)
    try:
        cost_basis = CostBasisMethod.parse(method, calculator.get_cost_basis_method())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown cost basis method: {method}")

    report = await calculator.calculate_tax(container.store.get_transactions(), year, cost_basis)
    return format_italian_report(report)
