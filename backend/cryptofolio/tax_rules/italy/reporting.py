"""Italian tax report formatting."""
from decimal import Decimal, ROUND_HALF_UP
from cryptofolio.models.report import TaxReport

CENT = Decimal("0.01")


def _eur(value: Decimal) -> str:
    return str(value.quantize(CENT, rounding=ROUND_HALF_UP))


def format_italian_report(report: TaxReport) -> dict:
    """
    Format tax report for the Italian tax return (Modello Redditi PF).

    Returns a dictionary with sections:
    - Riepilogo (summary)
    - Quadro RW (foreign asset monitoring and IVAFE)
    - Quadro RT (capital gains)
    - Avvisi (data-completeness warnings)
    """
    quadro_rw = [
        {
            "asset": holding.asset,
            "quantita_iniziale": str(holding.opening_quantity),
            "valore_iniziale_eur": _eur(holding.opening_value_eur),
            "quantita_finale": str(holding.closing_quantity),
            "valore_finale_eur": _eur(holding.closing_value_eur),
        }
        for holding in report.holdings
    ]

    return {
        "anno": report.year,
        "metodo": report.method,
        "riepilogo": {
            "valore_iniziale_eur": _eur(report.opening_value_eur),
            "valore_finale_eur": _eur(report.closing_value_eur),
            "plusvalenze_nette_eur": _eur(report.net_gain_eur),
            "minusvalenze_nette_eur": _eur(report.net_loss_eur),
            "imposta_plusvalenze_eur": _eur(report.tax_due_eur),
            "ivafe_eur": _eur(report.ivafe_eur),
            "totale_dovuto_eur": _eur(report.tax_due_eur + report.ivafe_eur),
            "sotto_soglia": report.below_no_tax_threshold,
        },
        "quadro_rw": {
            "righe": quadro_rw,
            "valore_iniziale_eur": _eur(report.opening_value_eur),
            "valore_finale_eur": _eur(report.closing_value_eur),
            "ivafe_eur": _eur(report.ivafe_eur),
        },
        "quadro_rt": {
            "corrispettivi_eur": _eur(report.total_disposals_eur),
            "costo_fiscale_eur": _eur(report.cost_basis_eur),
            "plusvalenze_eur": _eur(report.gross_gain_eur),
            "minusvalenze_eur": _eur(report.gross_loss_eur),
            "imponibile_eur": _eur(report.taxable_gain_eur),
            "imposta_eur": _eur(report.tax_due_eur),
            "operazioni": len(report.disposals),
        },
        "completo": report.complete,
        "avvisi": list(report.warnings),
    }
