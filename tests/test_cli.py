from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import DATA_FILE, REQUEST_FILE
from quotecalc.cli import main


@pytest.fixture(autouse=True)
def no_policy(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("QUOTE_POLICY_PATH", str(tmp_path / "no-policy.json"))
    for name in ("QUOTE_DATA_PATH", "QUOTE_OUTPUT_DIR", "QUOTE_TAX_BASE", "QUOTE_TIMEOUT_MS"):
        monkeypatch.delenv(name, raising=False)


def _error(err: str) -> dict:
    return [json.loads(line) for line in err.splitlines() if line.startswith("{")][-1]


def test_price_prints_json(capsys):
    rc = main(["--data", str(DATA_FILE), "price", str(REQUEST_FILE)])
    assert rc == 0
    payload = json.loads(capsys.readouterr().out)
    assert list(payload["tiers"]) == ["good", "better", "best"]


def test_price_writes_output_and_summary(capsys, tmp_path: Path):
    rc = main(["--data", str(DATA_FILE), "--output-dir", str(tmp_path), "price", str(REQUEST_FILE), "--output", "quote.json", "--summary"])
    assert rc == 0
    written = json.loads((tmp_path / "quote.json").read_text())
    assert written["tenantId"] == 1
    out = capsys.readouterr().out
    assert "Good quote total:" in out
    assert "Fingerprint:" in out


def test_price_unknown_product_exits_with_validation_code(capsys, tmp_path: Path):
    request = json.loads(REQUEST_FILE.read_text())
    request["products"][0]["productId"] = 999
    path = tmp_path / "request.json"
    path.write_text(json.dumps(request))
    rc = main(["--data", str(DATA_FILE), "price", str(path)])
    assert rc == 2
    error = _error(capsys.readouterr().err)
    assert error["kind"] == "validation"
    assert error["field"] == "products[0].productId"


def test_price_missing_data_file_is_configuration_error(capsys, tmp_path: Path):
    rc = main(["--data", str(tmp_path / "nothing.json"), "price", str(REQUEST_FILE)])
    assert rc == 3
    assert _error(capsys.readouterr().err)["kind"] == "configuration"


def test_check_formula_evaluates(capsys):
    rc = main(
        [
            "check-formula",
            "(sqft * baseRate) + materialCost",
            "--var", "sqft=500",
            "--var", "baseRate=2.5",
            "--var", "materialCost=120",
        ]
    )
    assert rc == 0
    out = capsys.readouterr().out
    assert "Formula OK; variables: baseRate, materialCost, sqft" in out
    assert "Result: 1370.00" in out


def test_check_formula_without_bindings(capsys):
    assert main(["check-formula", "sqft * 2"]) == 0
    assert "Not evaluated; bind sqft" in capsys.readouterr().out


@pytest.mark.parametrize("text", ["sqft *", "sqft * travelFee", "sqft / 0"])
def test_check_formula_errors_exit_with_formula_code(capsys, text):
    args = ["check-formula", text, "--var", "sqft=10"]
    assert main(args) == 4
    assert _error(capsys.readouterr().err)["kind"] == "formula"


def test_validate_data_ok(capsys):
    assert main(["--data", str(DATA_FILE), "validate-data"]) == 0
    assert "no problems found" in capsys.readouterr().out


def test_validate_data_reports_problems(capsys, tmp_path: Path):
    data = tmp_path / "data.json"
    data.write_text(json.dumps({"rateTables": {"1": {}}, "schemes": {"1": [{"id": 1, "type": "mystery", "isDefault": True}]}}))
    assert main(["--data", str(data), "validate-data"]) == 3
    problems = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert problems == [
        {
            "kind": "configuration",
            "error": "ConfigurationError",
            "message": "Scheme 1 has unknown type 'mystery'",
            "field": "schemes[1].type",
        }
    ]
