from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace

import pytest

from quotecalc.config import BASE_DIR, load_config
from quotecalc.errors import ConfigurationError
from quotecalc.policy import apply_policy_defaults


def test_defaults_without_environment():
    cfg = load_config({})
    assert cfg.base_dir == BASE_DIR
    assert cfg.data_path == (BASE_DIR / "data_sample" / "pricing_data.json").resolve()
    assert cfg.output_dir == (BASE_DIR / "outputs").resolve()
    assert cfg.tax_base == "running_total"
    assert (cfg.formula_max_length, cfg.formula_max_depth, cfg.timeout_ms) == (500, 32, 250)
    assert cfg.verbose is False


def test_environment_values(tmp_path: Path):
    env = {
        "QUOTE_DATA_PATH": str(tmp_path / "data.yaml"),
        "QUOTE_OUTPUT_DIR": str(tmp_path / "out"),
        "QUOTE_TAX_BASE": " PRE_MARKUP ",
        "QUOTE_FORMULA_MAX_LENGTH": "200",
        "QUOTE_FORMULA_MAX_DEPTH": "8",
        "QUOTE_TIMEOUT_MS": "1000",
        "QUOTE_VERBOSE": "yes",
    }
    cfg = load_config(env)
    assert cfg.data_path == (tmp_path / "data.yaml").resolve()
    assert cfg.output_dir == (tmp_path / "out").resolve()
    assert cfg.tax_base == "pre_markup"
    assert (cfg.formula_max_length, cfg.formula_max_depth, cfg.timeout_ms) == (200, 8, 1000)
    assert cfg.verbose is True


@pytest.mark.parametrize("value", ["abc", "0", "-5", ""])
def test_malformed_numbers_fall_back(value):
    assert load_config({"QUOTE_TIMEOUT_MS": value}).timeout_ms == 250


def test_unknown_tax_base_falls_back():
    assert load_config({"QUOTE_TAX_BASE": "gross"}).tax_base == "running_total"


def test_cli_options_win(tmp_path: Path):
    args = SimpleNamespace(data=str(tmp_path / "other.json"), output_dir=None, tax_base="post_markup", verbose=True)
    cfg = load_config({"QUOTE_TAX_BASE": "pre_markup"}, args)
    assert cfg.data_path == (tmp_path / "other.json").resolve()
    assert cfg.tax_base == "post_markup"
    assert cfg.verbose is True


def test_policy_fills_only_blank_values(tmp_path: Path):
    policy = tmp_path / "policy.json"
    policy.write_text(json.dumps({"env_defaults": {"QUOTE_TAX_BASE": "pre_markup", "QUOTE_TIMEOUT_MS": "400"}}))
    env = {"QUOTE_TIMEOUT_MS": "900", "QUOTE_TAX_BASE": "  "}
    applied = apply_policy_defaults(policy, env)
    assert applied == ["QUOTE_TAX_BASE"]
    assert env == {"QUOTE_TIMEOUT_MS": "900", "QUOTE_TAX_BASE": "pre_markup"}
    assert load_config(env).tax_base == "pre_markup"


def test_policy_missing_or_invalid(tmp_path: Path):
    assert apply_policy_defaults(None, {}) == []
    assert apply_policy_defaults(tmp_path / "missing.json", {}) == []
    bad = tmp_path / "bad.json"
    bad.write_text("{oops")
    with pytest.raises(ConfigurationError) as excinfo:
        apply_policy_defaults(bad, {})
    assert excinfo.value.field == "policyPath"


def test_formula_limits_are_capped():
    cfg = load_config({"QUOTE_FORMULA_MAX_LENGTH": "100000", "QUOTE_FORMULA_MAX_DEPTH": "5000"})
    assert (cfg.formula_max_length, cfg.formula_max_depth) == (5000, 64)
