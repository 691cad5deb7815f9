from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import make_table
from quotecalc.aggregator import aggregate, markup_amount, tax_base_amount
from quotecalc.errors import ComputationError, ConfigurationError
from quotecalc.models import LineItem, StrategyResult

D = Decimal

PERCENTS = dict(
    markup_percent=D("10"),
    overhead_percent=D("8"),
    net_profit_percent=D("12"),
    tax_rate_percent=D("7"),
    deposit_percent=D("30"),
)


def _result(*costs):
    return StrategyResult.from_lines(
        LineItem(f"line {i}", D("1"), "sqft", material_cost=D(m), labor_cost=D(l), surface_index=i)
        for i, (m, l) in enumerate(costs)
    )


def test_order_of_operations_running_total():
    quote = aggregate(_result(("1000", "2000")), make_table(**PERCENTS))
    assert quote.material_subtotal == D("1000.00")
    assert quote.labor_subtotal == D("2000.00")
    assert quote.markup_amount == D("300.00")
    assert quote.overhead_amount == D("264.00")
    assert quote.profit_amount == D("427.68")
    assert quote.tax_amount == D("279.42")
    assert quote.total == D("4271.10")
    assert quote.deposit_amount == D("1281.33")
    assert quote.balance_amount == D("2989.77")
    assert quote.tax_base == "running_total"
    assert quote.rate_table_version == "v1"


@pytest.mark.parametrize(
    "tax_base, tax, total, deposit, balance",
    [
        ("pre_markup", "210.00", "4201.68", "1260.50", "2941.18"),
        ("post_markup", "231.00", "4222.68", "1266.80", "2955.88"),
    ],
)
def test_tax_base_variants(tax_base, tax, total, deposit, balance):
    quote = aggregate(_result(("1000", "2000")), make_table(tax_base=tax_base, **PERCENTS))
    assert quote.tax_amount == D(tax)
    assert quote.total == D(total)
    assert quote.deposit_amount == D(deposit)
    assert quote.balance_amount == D(balance)


def test_subtotals_are_rounded_once_not_per_line():
    quote = aggregate(_result(("0.005", "0"), ("0.005", "0"), ("0.005", "0")), make_table())
    assert quote.material_subtotal == D("0.02")


def test_money_rounds_half_up():
    quote = aggregate(_result(("0", "10.125")), make_table())
    assert quote.labor_subtotal == D("10.13")


def test_total_reconciles_with_components():
    quote = aggregate(_result(("123.45", "678.91"), ("0", "55.55")), make_table(**PERCENTS))
    parts = (
        quote.material_subtotal
        + quote.labor_subtotal
        + quote.markup_amount
        + quote.overhead_amount
        + quote.profit_amount
        + quote.tax_amount
    )
    assert quote.total == parts
    assert quote.deposit_amount + quote.balance_amount == quote.total
    assert quote.total >= quote.material_subtotal + quote.labor_subtotal


def test_empty_result_is_zero_quote():
    quote = aggregate(StrategyResult.from_lines([]), make_table(**PERCENTS))
    assert quote.total == D("0")
    assert quote.balance_amount == D("0")


def test_negative_line_is_computation_error():
    with pytest.raises(ComputationError) as excinfo:
        aggregate(_result(("0", "10"), ("-1", "0")), make_table())
    assert excinfo.value.field == "surfaces[1]"
    assert excinfo.value.kind == "computation"


def test_tier_is_carried_through():
    assert aggregate(_result(("1", "1")), make_table(), tier="better").tier == "better"


def test_unknown_tax_base():
    with pytest.raises(ConfigurationError):
        tax_base_amount("gross", material=D("1"), labor=D("1"), markup=D("0"), overhead=D("0"), profit=D("0"))


def test_separate_labor_and_material_markups():
    table = make_table(labor_markup_percent=D("35"), material_markup_percent=D("20"))
    quote = aggregate(_result(("1000", "2000")), table)
    assert quote.markup_amount == D("900.00")
    assert quote.total == D("3900.00")


def test_unset_markup_side_uses_single_markup():
    table = make_table(markup_percent=D("10"), labor_markup_percent=D("35"))
    assert markup_amount(table, material=D("1000"), labor=D("2000")) == D("800")
    table = make_table(markup_percent=D("10"), material_markup_percent=D("0"))
    assert markup_amount(table, material=D("1000"), labor=D("2000")) == D("200")
    assert markup_amount(make_table(markup_percent=D("10")), material=D("1000"), labor=D("2000")) == D("300")
