from __future__ import annotations

from decimal import Decimal

import pytest

from quotecalc.errors import DivisionByZeroError, FormulaError, FormulaSyntaxError, UnknownVariableError
from quotecalc.formula import BASE_VARIABLES, MAX_LENGTH_LIMIT, evaluate_formula, parse_formula, tokenize
from quotecalc.money import format_money

D = Decimal


def test_rate_formula_with_material_cost_evaluates_to_1370():
    result = evaluate_formula(
        "(sqft * baseRate) + materialCost",
        {"sqft": D("500"), "baseRate": D("2.5"), "materialCost": D("120")},
    )
    assert result == D("1370")
    assert format_money(result) == "1370.00"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2 + 3 * 4", "14"),
        ("(2 + 3) * 4", "20"),
        ("10 - 4 - 3", "3"),
        ("10 / 4", "2.5"),
        ("-3 + 5", "2"),
        ("--2", "2"),
        ("+4", "4"),
        ("0.1 + 0.2", "0.3"),
        (".5 * 2", "1.0"),
        ("min(3, 1, 2)", "1"),
        ("max(3, 1, 2)", "3"),
        ("round(2.345, 2)", "2.35"),
        ("round(2.5)", "3"),
        ("round(-2.5)", "-3"),
        ("max(0, 5 - 10)", "0"),
    ],
)
def test_arithmetic(text, expected):
    assert evaluate_formula(text, {}) == D(expected)


def test_variables_are_collected():
    formula = parse_formula("sqft * baseRate + min(sqft, laborHours)")
    assert formula.variables == frozenset({"sqft", "baseRate", "laborHours"})


def test_parse_is_cached():
    assert parse_formula("sqft * 2") is parse_formula("sqft * 2")


def test_unknown_variable_is_an_error_not_zero():
    with pytest.raises(UnknownVariableError) as excinfo:
        evaluate_formula("sqft * mystery", {"sqft": D("10")})
    assert excinfo.value.name == "mystery"
    assert excinfo.value.formula == "sqft * mystery"


def test_require_variables_reports_first_unknown_name():
    formula = parse_formula("zeta + alpha + sqft")
    with pytest.raises(UnknownVariableError) as excinfo:
        formula.require_variables(BASE_VARIABLES, scheme_id=7)
    assert excinfo.value.name == "zeta"
    assert excinfo.value.scheme_id == 7
    assert "scheme 7" in str(excinfo.value)
    assert "zeta + alpha + sqft" in str(excinfo.value)


def test_allowed_names_must_also_be_bound():
    with pytest.raises(UnknownVariableError):
        evaluate_formula("sqft + tier", {"sqft": D("1")}, allowed=BASE_VARIABLES)


def test_division_by_zero():
    with pytest.raises(DivisionByZeroError) as excinfo:
        evaluate_formula("sqft / (laborHours - laborHours)", {"sqft": D("1"), "laborHours": D("3")})
    assert excinfo.value.position == 5
    assert excinfo.value.to_dict()["kind"] == "formula"


@pytest.mark.parametrize(
    "text",
    [
        "",
        "   ",
        "2 +",
        "(1 + 2",
        "1 + 2)",
        "2 ** 3",
        "1 2",
        "sqft; 1",
        "__import__('os')",
        "foo(1)",
        "min",
        "min()",
        "round(1, 2, 3)",
        "sqft.real",
        "1e5",
        "max(1,)",
    ],
)
def test_malformed_formulas_are_rejected_before_evaluation(text):
    with pytest.raises(FormulaSyntaxError):
        parse_formula(text)


def test_syntax_error_position_points_at_offending_character():
    with pytest.raises(FormulaSyntaxError) as excinfo:
        parse_formula("1 + $")
    assert excinfo.value.position == 4


def test_tokenize_positions():
    tokens = tokenize("sqft*(2 + x)")
    assert [(token.kind, token.text, token.position) for token in tokens] == [
        ("name", "sqft", 0),
        ("op", "*", 4),
        ("op", "(", 5),
        ("number", "2", 6),
        ("op", "+", 8),
        ("name", "x", 10),
        ("op", ")", 11),
        ("end", "", 12),
    ]


def test_length_is_bounded():
    text = "1+" * 300 + "1"
    with pytest.raises(FormulaSyntaxError, match="longer than 500"):
        parse_formula(text)
    with pytest.raises(FormulaSyntaxError):
        parse_formula("sqft * 2", max_length=5)


def test_nesting_depth_is_bounded():
    ok = "(" * 32 + "1" + ")" * 32
    assert parse_formula(ok).evaluate({}) == D("1")
    with pytest.raises(FormulaSyntaxError, match="nesting"):
        parse_formula("(" * 33 + "1" + ")" * 33)
    with pytest.raises(FormulaSyntaxError, match="nesting"):
        parse_formula("-" * 40 + "1")
    with pytest.raises(FormulaSyntaxError):
        parse_formula("((1))", max_depth=1)


def test_round_digits_must_be_small_whole_number():
    with pytest.raises(FormulaError, match="round"):
        evaluate_formula("round(1.23456, 7)", {})
    with pytest.raises(FormulaError, match="round"):
        evaluate_formula("round(1.5, 0.5)", {})


def test_long_chains_evaluate():
    text = " + ".join(["sqft"] * 60)
    assert evaluate_formula(text, {"sqft": D("2")}) == D("120")


def test_long_operator_chains_do_not_exhaust_the_stack():
    additions = " + ".join(["sqft"] * 700)
    assert len(additions) <= MAX_LENGTH_LIMIT
    assert evaluate_formula(additions, {"sqft": D("1")}, max_length=MAX_LENGTH_LIMIT) == D("700")
    products = "*".join(["1"] * 2000)
    assert evaluate_formula(products, {}, max_length=MAX_LENGTH_LIMIT) == D("1")


def test_configured_length_is_capped():
    text = " + ".join(["sqft"] * 2000)
    with pytest.raises(FormulaSyntaxError, match=f"longer than {MAX_LENGTH_LIMIT}"):
        evaluate_formula(text, {"sqft": D("1")}, max_length=20000)
