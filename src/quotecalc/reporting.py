import pandas as pd

from .models import QuoteResponse, QuoteResult
from .money import format_money, format_quantity, quantize_money

SUMMARY_ROWS = [
    ("Materials", "material_subtotal"),
    ("Labor", "labor_subtotal"),
    ("Markup", "markup_amount"),
    ("Overhead", "overhead_amount"),
    ("Profit", "profit_amount"),
    ("Tax", "tax_amount"),
    ("Total", "total"),
    ("Deposit", "deposit_amount"),
    ("Balance", "balance_amount"),
]


def line_items_frame(result: QuoteResult) -> pd.DataFrame:
    rows = [
        {
            "DESCRIPTION": line.description,
            "QUANTITY": format_quantity(line.quantity),
            "UNIT": line.unit,
            "MATERIAL_COST": quantize_money(line.material_cost),
            "LABOR_COST": quantize_money(line.labor_cost),
            "TOTAL_COST": quantize_money(line.total),
        }
        for line in result.line_items
    ]
    return pd.DataFrame(rows, columns=["DESCRIPTION", "QUANTITY", "UNIT", "MATERIAL_COST", "LABOR_COST", "TOTAL_COST"])


def summary_frame(response: QuoteResponse) -> pd.DataFrame:
    """One column per quote (``base`` or tier name), one row per aggregation stage."""

    data = {
        name: [format_money(getattr(result, attr)) for _, attr in SUMMARY_ROWS]
        for name, result in response.quotes.items()
    }
    return pd.DataFrame(data, index=[label for label, _ in SUMMARY_ROWS])


def make_summary_text(response: QuoteResponse) -> str:
    lines = [
        f"Tenant {response.tenant_id}, scheme {response.scheme_id} ({response.scheme_type}), "
        f"rate table version {response.rate_table_version}."
    ]
    for name, result in response.quotes.items():
        items = line_items_frame(result)
        top = items.sort_values("TOTAL_COST", ascending=False).head(5)
        lines.append(f"{name.title()} quote total: ${result.total:,.2f} ({len(items)} line item(s)).")
        if not top.empty:
            lines.append(f"Top cost drivers:\n{top.to_string(index=False)}")
    lines.append(f"Summary:\n{summary_frame(response).to_string()}")
    lines.append(f"Fingerprint: {response.fingerprint}")
    return "\n".join(lines) + "\n"
