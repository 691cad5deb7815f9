"""Quote aggregator: subtotals, markups, tax and deposit in a fixed order.

Order of operations (each stage rounded to cents once, half up)::

    material  = sum(line material)
    labor     = sum(line labor)
    markup    = (material + labor) * markup%
                (or labor * labor markup% + material * material markup%)
    overhead  = (material + labor + markup) * overhead%
    profit    = (material + labor + markup + overhead) * profit%
    tax       = tax base * tax%
    total     = material + labor + markup + overhead + profit + tax
    deposit   = total * deposit%
    balance   = total - deposit

The tax base is chosen per rate table: ``pre_markup`` is material + labor,
``post_markup`` adds the markup, ``running_total`` (the default) also adds
overhead and profit.

Separate labor and material markups apply when either is set on the rate
table; the side left unset falls back to the single markup percentage.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from .errors import ComputationError, ConfigurationError
from .models import LineItem, QuoteResult, RateTable, StrategyResult
from .money import ZERO, percent_of, quantize_money

logger = logging.getLogger(__name__)


def _check_non_negative(name: str, value: Decimal, *, field: Optional[str] = None) -> Decimal:
    if value < ZERO:
        raise ComputationError(f"Computed {name} is negative ({value})", field=field)
    return value


def _check_line(index: int, line: LineItem) -> None:
    where = f"surfaces[{line.surface_index}]" if line.surface_index is not None else f"lineItems[{index}]"
    _check_non_negative("material cost", line.material_cost, field=where)
    _check_non_negative("labor cost", line.labor_cost, field=where)


def tax_base_amount(
    tax_base: str,
    *,
    material: Decimal,
    labor: Decimal,
    markup: Decimal,
    overhead: Decimal,
    profit: Decimal,
) -> Decimal:
    if tax_base == "pre_markup":
        return material + labor
    if tax_base == "post_markup":
        return material + labor + markup
    if tax_base == "running_total":
        return material + labor + markup + overhead + profit
    raise ConfigurationError(f"Unknown tax base '{tax_base}'", field="taxBase")


def markup_amount(rate_table: RateTable, *, material: Decimal, labor: Decimal) -> Decimal:
    labor_percent = rate_table.labor_markup_percent
    material_percent = rate_table.material_markup_percent
    if labor_percent is None and material_percent is None:
        return percent_of(material + labor, rate_table.markup_percent)
    if labor_percent is None:
        labor_percent = rate_table.markup_percent
    if material_percent is None:
        material_percent = rate_table.markup_percent
    return percent_of(labor, labor_percent) + percent_of(material, material_percent)


def aggregate(result: StrategyResult, rate_table: RateTable, *, tier: Optional[str] = None) -> QuoteResult:
    """Fold a strategy result into a priced :class:`QuoteResult`."""

    for index, line in enumerate(result.line_items):
        _check_line(index, line)

    material = quantize_money(sum((line.material_cost for line in result.line_items), ZERO))
    labor = quantize_money(sum((line.labor_cost for line in result.line_items), ZERO))
    base = material + labor

    markup = quantize_money(markup_amount(rate_table, material=material, labor=labor))
    overhead = quantize_money(percent_of(base + markup, rate_table.overhead_percent))
    running = base + markup + overhead
    profit = quantize_money(percent_of(running, rate_table.net_profit_percent))
    running += profit

    taxable = tax_base_amount(
        rate_table.tax_base,
        material=material,
        labor=labor,
        markup=markup,
        overhead=overhead,
        profit=profit,
    )
    tax = quantize_money(percent_of(taxable, rate_table.tax_rate_percent))
    total = running + tax
    deposit = quantize_money(percent_of(total, rate_table.deposit_percent))
    balance = total - deposit

    for name, value in (
        ("material subtotal", material),
        ("labor subtotal", labor),
        ("markup", markup),
        ("overhead", overhead),
        ("profit", profit),
        ("tax", tax),
        ("deposit", deposit),
        ("balance", balance),
    ):
        _check_non_negative(name, value)
    if total < base:
        raise ComputationError(f"Total {total} is below material plus labor {base}")

    logger.debug(
        "Aggregated %s line(s)%s: material=%s labor=%s total=%s",
        len(result.line_items),
        f" for tier {tier}" if tier else "",
        material,
        labor,
        total,
    )
    return QuoteResult(
        line_items=result.line_items,
        material_subtotal=material,
        labor_subtotal=labor,
        markup_amount=markup,
        overhead_amount=overhead,
        profit_amount=profit,
        tax_amount=tax,
        deposit_amount=deposit,
        total=total,
        balance_amount=balance,
        tax_base=rate_table.tax_base,
        tier=tier,
        rate_table_version=rate_table.version,
    )


__all__ = ["aggregate", "markup_amount", "tax_base_amount"]
