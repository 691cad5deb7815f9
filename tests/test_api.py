from __future__ import annotations

import json
from decimal import Decimal

import pytest

from conftest import DATA_FILE, REQUEST_FILE
from quotecalc.api import QuoteOptions, build_engine, price_quote
from quotecalc.config import load_config
from quotecalc.errors import ComputationError, NoRateTableError, RequestSchemaError
from quotecalc.loader import load_pricing_data


def _payload(**changes):
    payload = json.loads(REQUEST_FILE.read_text())
    payload.update(changes)
    return payload


def test_price_quote_returns_tiers():
    result = price_quote(_payload(), QuoteOptions(data_path=DATA_FILE))
    assert result["pricingSchemeId"] == 2
    assert list(result["tiers"]) == ["good", "better", "best"]
    best = result["tiers"]["best"]
    assert best["rateTableVersion"] == "2026-10-01+best"
    assert best["total"].count(".") == 1 and len(best["total"].split(".")[1]) == 2


def test_price_quote_untiered_scheme():
    result = price_quote(_payload(pricingSchemeId=7), QuoteOptions(data_path=DATA_FILE))
    assert "tiers" not in result
    assert result["quote"]["tier"] is None
    assert len(result["quote"]["lineItems"]) == 4


def test_price_quote_propagates_errors():
    with pytest.raises(NoRateTableError):
        price_quote(_payload(tenantId=9), QuoteOptions(data_path=DATA_FILE))
    with pytest.raises(RequestSchemaError):
        price_quote(_payload(surfaces="none"), QuoteOptions(data_path=DATA_FILE))


def test_price_quote_reports_out_of_range_amounts():
    surfaces = [{"type": "wall", "category": "interior", "measurement": Decimal("1e27"), "productIndex": 0}]
    with pytest.raises(ComputationError):
        price_quote(_payload(surfaces=surfaces), QuoteOptions(data_path=DATA_FILE))


def test_build_engine_accepts_loaded_data(tmp_path):
    cfg = load_config({"QUOTE_DATA_PATH": str(tmp_path / "unused.json"), "QUOTE_TIMEOUT_MS": "900"})
    engine = build_engine(cfg, load_pricing_data(DATA_FILE))
    assert engine.timeout_ms == 900
    assert engine.max_formula_length == 500
