from __future__ import annotations

from decimal import Decimal

from conftest import eggshell, make_request, surface
from quotecalc.models import SQFT_LABOR_PAINT, PricingScheme
from quotecalc.reporting import line_items_frame, make_summary_text, summary_frame

D = Decimal

SCHEME = PricingScheme(id=2, tenant_id=1, name="Labor plus paint", scheme_type=SQFT_LABOR_PAINT, is_default=True)


def _response(engine_for):
    request = make_request(surface(product_index=0), surface("trim", "120", unit="linear_ft"), scheme_id=2, products=[eggshell()])
    return engine_for(SCHEME).compute(request)


def test_line_items_frame(engine_for):
    frame = line_items_frame(_response(engine_for).quote)
    assert list(frame.columns) == ["DESCRIPTION", "QUANTITY", "UNIT", "MATERIAL_COST", "LABOR_COST", "TOTAL_COST"]
    assert frame["DESCRIPTION"].tolist() == ["Interior wall", "Interior trim"]
    assert frame["TOTAL_COST"].tolist() == [D("1100.00"), D("240.00")]


def test_summary_frame(engine_for):
    frame = summary_frame(_response(engine_for))
    assert list(frame.columns) == ["base"]
    assert frame.loc["Total", "base"] == "1340.00"
    assert frame.loc["Materials", "base"] == "225.00"


def test_make_summary_text(engine_for):
    response = _response(engine_for)
    text = make_summary_text(response)
    assert "Base quote total: $1,340.00 (2 line item(s))." in text
    assert "Top cost drivers:" in text
    assert "Interior wall" in text
    assert f"Fingerprint: {response.fingerprint}" in text
    assert text.endswith("\n")
