"""Load catalog, rate tables, schemes and tier configs from one data file."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .catalog import Catalog
from .errors import ConfigurationError, FormulaError, QuoteError
from .gbb import InMemoryGBBConfigProvider, gbb_config_from_dict
from .models import DEFAULT_TAX_BASE, GBBTierConfig, RateTable
from .rates import InMemoryRateTableProvider, SchemeRegistry, rate_table_from_dict, scheme_from_dict
from .strategies import STRATEGIES, strategy_for

logger = logging.getLogger(__name__)


@dataclass
class PricingData:
    catalog: Catalog
    rates: InMemoryRateTableProvider
    schemes: SchemeRegistry
    gbb: InMemoryGBBConfigProvider
    source: Optional[Path] = None
    tenants: List[int] = field(default_factory=list)


def read_data_file(path: Path) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Pricing data file not found: {path}", field="dataPath")
    with path.open("r", encoding="utf-8") as f:
        try:
            if path.suffix.lower() in {".yaml", ".yml"}:
                raw = yaml.safe_load(f)
            else:
                raw = json.load(f, parse_float=Decimal)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Could not parse pricing data {path}: {exc}", field="dataPath") from exc
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Pricing data {path} must be a mapping at the top level", field="dataPath")
    return dict(raw)


def pricing_data_from_dict(
    raw: Mapping[str, Any],
    *,
    default_tax_base: str = DEFAULT_TAX_BASE,
    source: Optional[Path] = None,
) -> PricingData:
    catalog = Catalog.from_dict(raw)

    tables: List[RateTable] = []
    for tenant_key, table_raw in (raw.get("rateTables") or {}).items():
        tables.append(rate_table_from_dict(int(tenant_key), table_raw or {}, default_tax_base=default_tax_base))

    schemes = []
    for tenant_key, entries in (raw.get("schemes") or {}).items():
        for entry in entries or []:
            schemes.append(scheme_from_dict(int(tenant_key), entry))

    configs = []
    for tenant_key, by_scheme in (raw.get("gbb") or {}).items():
        for scheme_key, config_raw in (by_scheme or {}).items():
            config: GBBTierConfig = gbb_config_from_dict(int(scheme_key), config_raw or {})
            configs.append((int(tenant_key), config))

    tenants = sorted({table.tenant_id for table in tables} | {scheme.tenant_id for scheme in schemes})
    logger.info(
        "Loaded pricing data: %s product(s), %s tenant(s), %s scheme(s), %s tier config(s)",
        len(catalog),
        len(tenants),
        len(schemes),
        len(configs),
    )
    return PricingData(
        catalog=catalog,
        rates=InMemoryRateTableProvider(tables),
        schemes=SchemeRegistry(schemes),
        gbb=InMemoryGBBConfigProvider(configs),
        source=source,
        tenants=tenants,
    )


def load_pricing_data(path: Path, *, default_tax_base: str = DEFAULT_TAX_BASE) -> PricingData:
    """Read a JSON or YAML pricing data file."""

    raw = read_data_file(path)
    return pricing_data_from_dict(raw, default_tax_base=default_tax_base, source=Path(path))


def check_pricing_data(data: PricingData, *, max_formula_length: int, max_formula_depth: int) -> List[QuoteError]:
    """Problems that would make quotes fail later; an empty list means the data is usable."""

    problems: List[QuoteError] = []
    for tenant_id in data.tenants:
        try:
            data.rates.get(tenant_id)
        except QuoteError as exc:
            problems.append(exc)
        try:
            data.schemes.default_for(tenant_id)
        except QuoteError as exc:
            problems.append(exc)
        for scheme in data.schemes.for_tenant(tenant_id):
            if scheme.scheme_type not in STRATEGIES:
                problems.append(
                    ConfigurationError(
                        f"Scheme {scheme.id} has unknown type '{scheme.scheme_type}'",
                        field=f"schemes[{scheme.id}].type",
                    )
                )
                continue
            try:
                strategy = strategy_for(scheme, max_length=max_formula_length, max_depth=max_formula_depth)
                if scheme.uses_formula:
                    allowed = strategy.required_variables + tuple(scheme.variables)
                    strategy.formula.require_variables(allowed, scheme_id=scheme.id)
            except FormulaError as exc:
                problems.append(exc)
    return problems


__all__ = ["PricingData", "check_pricing_data", "load_pricing_data", "pricing_data_from_dict", "read_data_file"]
