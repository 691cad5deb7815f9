from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .config import Config, load_config
from .engine import QuoteEngine
from .loader import PricingData, load_pricing_data
from .serialization import parse_request, response_to_dict


@dataclass
class QuoteOptions:
    data_path: Optional[Path] = None
    tax_base: Optional[str] = None
    timeout_ms: Optional[int] = None


def build_engine(config: Config, data: Optional[PricingData] = None) -> QuoteEngine:
    """Engine over ``data``, or over the data file named by ``config``."""

    if data is None:
        data = load_pricing_data(config.data_path, default_tax_base=config.tax_base)
    return QuoteEngine(
        data.catalog,
        data.rates,
        data.schemes,
        data.gbb,
        max_formula_length=config.formula_max_length,
        max_formula_depth=config.formula_max_depth,
        timeout_ms=config.timeout_ms,
    )


def price_quote(payload: Mapping[str, Any], options: Optional[QuoteOptions] = None) -> Dict[str, Any]:
    """Programmatic interface: price one request payload and return the response dict.

    Raises the engine's :class:`~quotecalc.errors.QuoteError` subclasses unchanged.
    """
    options = options or QuoteOptions()
    env = dict(os.environ)
    if options.data_path:
        env["QUOTE_DATA_PATH"] = str(options.data_path)
    if options.tax_base:
        env["QUOTE_TAX_BASE"] = options.tax_base
    if options.timeout_ms:
        env["QUOTE_TIMEOUT_MS"] = str(options.timeout_ms)

    cfg = load_config(env, None)
    engine = build_engine(cfg)
    response = engine.compute(parse_request(payload))
    return response_to_dict(response)


__all__ = ["QuoteOptions", "build_engine", "price_quote"]
