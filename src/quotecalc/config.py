from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace
from typing import Mapping, Optional

from .formula import DEFAULT_MAX_DEPTH, DEFAULT_MAX_LENGTH, MAX_DEPTH_LIMIT, MAX_LENGTH_LIMIT
from .models import DEFAULT_TAX_BASE, TAX_BASES

_BOOLEAN_TRUE = {"1", "true", "yes", "on"}

BASE_DIR = Path(__file__).resolve().parents[2]
DEFAULT_TIMEOUT_MS = 250


@dataclass(frozen=True)
class Config:
    """Runtime configuration assembled from environment variables and CLI options."""

    base_dir: Path
    data_path: Path
    output_dir: Path
    policy_path: Optional[Path]
    tax_base: str = DEFAULT_TAX_BASE
    formula_max_length: int = DEFAULT_MAX_LENGTH
    formula_max_depth: int = DEFAULT_MAX_DEPTH
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    verbose: bool = False


def _to_path(value: object | None) -> Optional[Path]:
    if value is None:
        return None
    if isinstance(value, Path):
        return value.expanduser().resolve()
    text = str(value).strip()
    if not text:
        return None
    return Path(text).expanduser().resolve()


def _to_int(value: object | None) -> Optional[int]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(float(text))
    except ValueError:
        return None


def _flag(value: object | None) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _BOOLEAN_TRUE


def _positive(value: Optional[int], default: int) -> int:
    if value is None or value < 1:
        return default
    return value


def _namespace(cli_args: object | None) -> SimpleNamespace:
    if cli_args is None:
        return SimpleNamespace()
    if isinstance(cli_args, SimpleNamespace):
        return cli_args
    if hasattr(cli_args, "__dict__"):
        return SimpleNamespace(**{k: v for k, v in vars(cli_args).items()})
    return SimpleNamespace()


def load_config(env: Mapping[str, str], cli_args: object | None = None) -> Config:
    """Build a runtime :class:`Config` from environment variables and CLI options.

    CLI options win over environment values. Malformed numbers fall back to
    the defaults, and an unknown tax base falls back to ``running_total``.
    """

    default_data = (BASE_DIR / "data_sample" / "pricing_data.json").resolve()
    default_output_dir = (BASE_DIR / "outputs").resolve()
    default_policy = (BASE_DIR / "references" / "policy.json").resolve()

    data_path = _to_path(env.get("QUOTE_DATA_PATH")) or default_data
    output_dir = _to_path(env.get("QUOTE_OUTPUT_DIR")) or default_output_dir
    policy_path = _to_path(env.get("QUOTE_POLICY_PATH"))
    if policy_path is None and default_policy.exists():
        policy_path = default_policy
    tax_base = str(env.get("QUOTE_TAX_BASE") or DEFAULT_TAX_BASE).strip().lower()
    if tax_base not in TAX_BASES:
        tax_base = DEFAULT_TAX_BASE
    formula_max_length = min(_positive(_to_int(env.get("QUOTE_FORMULA_MAX_LENGTH")), DEFAULT_MAX_LENGTH), MAX_LENGTH_LIMIT)
    formula_max_depth = min(_positive(_to_int(env.get("QUOTE_FORMULA_MAX_DEPTH")), DEFAULT_MAX_DEPTH), MAX_DEPTH_LIMIT)
    timeout_ms = _positive(_to_int(env.get("QUOTE_TIMEOUT_MS")), DEFAULT_TIMEOUT_MS)
    verbose = _flag(env.get("QUOTE_VERBOSE"))

    cli_ns = _namespace(cli_args)
    if getattr(cli_ns, "data", None):
        data_path = _to_path(cli_ns.data) or data_path
    if getattr(cli_ns, "output_dir", None):
        output_dir = _to_path(cli_ns.output_dir) or output_dir
    if getattr(cli_ns, "tax_base", None) in TAX_BASES:
        tax_base = cli_ns.tax_base
    if getattr(cli_ns, "verbose", False):
        verbose = bool(cli_ns.verbose)

    return Config(
        base_dir=BASE_DIR,
        data_path=data_path,
        output_dir=output_dir,
        policy_path=policy_path,
        tax_base=tax_base,
        formula_max_length=formula_max_length,
        formula_max_depth=formula_max_depth,
        timeout_ms=timeout_ms,
        verbose=verbose,
    )


__all__ = ["BASE_DIR", "Config", "load_config"]
