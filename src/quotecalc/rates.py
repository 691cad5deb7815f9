"""Rate table provider and pricing scheme registry.

Both hand out immutable snapshots. Editing a tenant's rates stores a new
:class:`RateTable` with a fresh version; a computation that already holds
the previous snapshot keeps using it.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .config import _flag
from .errors import ConfigurationError, NoDefaultSchemeError, NoRateTableError, ProtectedSchemeError, ValidationError
from .models import (
    DEFAULT_TAX_BASE,
    LEGACY_SCHEME_ALIASES,
    TAX_BASES,
    UNITS,
    LaborCategory,
    MaterialDefaults,
    PricingScheme,
    RateTable,
)
from .money import HUNDRED, ZERO, to_decimal

logger = logging.getLogger(__name__)

PERCENT_FIELDS = (
    "markup_percent",
    "overhead_percent",
    "net_profit_percent",
    "tax_rate_percent",
    "deposit_percent",
)

# Optional percentages; None means not configured.
SPLIT_MARKUP_FIELDS = ("labor_markup_percent", "material_markup_percent")

# camelCase keys of the stored record -> RateTable attribute
SCALAR_KEYS = {
    "hourlyRate": "hourly_rate",
    "billableLaborRate": "billable_labor_rate",
    "markupPercent": "markup_percent",
    "laborMarkupPercent": "labor_markup_percent",
    "materialMarkupPercent": "material_markup_percent",
    "overheadPercent": "overhead_percent",
    "netProfitPercent": "net_profit_percent",
    "taxRatePercent": "tax_rate_percent",
    "depositPercent": "deposit_percent",
}

MATERIAL_KEYS = {
    "coverage": "coverage",
    "coats": "coats",
    "wasteFactor": "waste_factor",
    "costPerGallon": "cost_per_gallon",
    "sprayCoverage": "spray_coverage",
}


def _decimal_map(raw: Optional[Mapping[str, Any]], where: str) -> Dict[str, Decimal]:
    return {
        str(key): to_decimal(value, field=f"{where}.{key}", error=ConfigurationError)
        for key, value in (raw or {}).items()
    }


def whole_number(value: Any, where: str) -> int:
    number = to_decimal(value, field=where, error=ConfigurationError)
    if number != number.to_integral_value():
        raise ConfigurationError(f"Expected a whole number, got {value!r}", field=where)
    return int(number)


def labor_category_from_raw(name: str, raw: Any, where: str) -> LaborCategory:
    if isinstance(raw, Mapping):
        unit = str(raw.get("measurementUnit") or "sqft")
        rate = to_decimal(raw.get("rate"), field=f"{where}.rate", error=ConfigurationError)
    else:
        unit = "sqft"
        rate = to_decimal(raw, field=where, error=ConfigurationError)
    return LaborCategory(rate=rate, measurement_unit=unit)


def material_defaults_from_dict(raw: Optional[Mapping[str, Any]], where: str = "materialDefaults") -> MaterialDefaults:
    raw = raw or {}
    values: Dict[str, Any] = {}
    for key, attr in MATERIAL_KEYS.items():
        if raw.get(key) is not None:
            values[attr] = to_decimal(raw[key], field=f"{where}.{key}", error=ConfigurationError)
    if raw.get("applicationMethod") is not None:
        values["application_method"] = str(raw["applicationMethod"]).strip().lower()
    if raw.get("includeMaterials") is not None:
        values["include_materials"] = _flag(raw["includeMaterials"])
    return MaterialDefaults(**values)


def rate_table_from_dict(
    tenant_id: int,
    raw: Mapping[str, Any],
    *,
    default_tax_base: str = DEFAULT_TAX_BASE,
    version: str = "0",
) -> RateTable:
    """Parse a stored rate-table record (camelCase keys) and validate it."""

    where = f"rateTables[{tenant_id}]"
    labor = {
        str(name): labor_category_from_raw(str(name), value, f"{where}.laborCategories.{name}")
        for name, value in (raw.get("laborCategories") or {}).items()
    }
    scalars: Dict[str, Any] = {}
    for key, attr in SCALAR_KEYS.items():
        if raw.get(key) is not None:
            scalars[attr] = to_decimal(raw[key], field=f"{where}.{key}", error=ConfigurationError)
    crew = raw.get("crewSizeDefault")
    table = RateTable(
        tenant_id=int(tenant_id),
        labor_categories=labor,
        production_rates=_decimal_map(raw.get("productionRates"), f"{where}.productionRates"),
        flat_unit_prices=_decimal_map(raw.get("flatUnitPrices"), f"{where}.flatUnitPrices"),
        turnkey_rates=_decimal_map(raw.get("turnkeyRates"), f"{where}.turnkeyRates"),
        crew_size_default=whole_number(crew, f"{where}.crewSizeDefault") if crew is not None else 1,
        material_defaults=material_defaults_from_dict(raw.get("materialDefaults"), f"{where}.materialDefaults"),
        tax_base=str(raw.get("taxBase") or default_tax_base),
        version=str(raw.get("version", version)),
        updated_at=raw.get("updatedAt"),
        **scalars,
    )
    validate_rate_table(table)
    return table


def validate_rate_table(table: RateTable) -> RateTable:
    """Check rate-table invariants; raises :class:`ConfigurationError` on the first violation."""

    where = f"rateTables[{table.tenant_id}]"
    for name in PERCENT_FIELDS + SPLIT_MARKUP_FIELDS:
        value = getattr(table, name)
        if value is None:
            continue
        if value < ZERO or value > HUNDRED:
            raise ConfigurationError(f"{name} must be between 0 and 100, got {value}", field=f"{where}.{name}")
    for name in ("hourly_rate", "billable_labor_rate"):
        if getattr(table, name) < ZERO:
            raise ConfigurationError(f"{name} must not be negative", field=f"{where}.{name}")
    for section in ("production_rates", "flat_unit_prices", "turnkey_rates"):
        for key, value in getattr(table, section).items():
            if value < ZERO:
                raise ConfigurationError(f"{section}.{key} must not be negative", field=f"{where}.{section}.{key}")
    for key, category in table.labor_categories.items():
        if category.rate < ZERO:
            raise ConfigurationError(f"Labor rate for {key} must not be negative", field=f"{where}.laborCategories.{key}")
        if category.measurement_unit not in UNITS:
            raise ConfigurationError(
                f"Labor category {key} has unknown unit '{category.measurement_unit}'",
                field=f"{where}.laborCategories.{key}.measurementUnit",
            )
    if table.crew_size_default < 1:
        raise ConfigurationError("crewSizeDefault must be at least 1", field=f"{where}.crewSizeDefault")
    if table.tax_base not in TAX_BASES:
        raise ConfigurationError(
            f"taxBase must be one of {', '.join(TAX_BASES)}, got '{table.tax_base}'",
            field=f"{where}.taxBase",
        )
    materials = table.material_defaults
    if materials.coverage <= ZERO or materials.spray_coverage <= ZERO:
        raise ConfigurationError("Material coverage must be positive", field=f"{where}.materialDefaults.coverage")
    if materials.coats <= ZERO:
        raise ConfigurationError("Material coats must be positive", field=f"{where}.materialDefaults.coats")
    if materials.waste_factor < Decimal("1"):
        raise ConfigurationError("Waste factor must be at least 1", field=f"{where}.materialDefaults.wasteFactor")
    if materials.cost_per_gallon is not None and materials.cost_per_gallon < ZERO:
        raise ConfigurationError("Cost per gallon must not be negative", field=f"{where}.materialDefaults.costPerGallon")
    if materials.application_method not in ("roll", "spray", "brush"):
        raise ConfigurationError(
            f"Unknown application method '{materials.application_method}'",
            field=f"{where}.materialDefaults.applicationMethod",
        )
    return table


class RateTableProvider:
    """Supplies one consistent :class:`RateTable` snapshot per tenant."""

    def get(self, tenant_id: int) -> RateTable:  # pragma: no cover - interface
        raise NotImplementedError


class InMemoryRateTableProvider(RateTableProvider):
    """Provider backed by a dict; ``put`` swaps whole snapshots under a lock."""

    def __init__(self, tables: Optional[Iterable[RateTable]] = None) -> None:
        self._lock = threading.Lock()
        self._tables: Dict[int, RateTable] = {}
        self._counter = 0
        for table in tables or ():
            self._tables[table.tenant_id] = table

    def get(self, tenant_id: int) -> RateTable:
        with self._lock:
            table = self._tables.get(tenant_id)
        if table is None:
            raise NoRateTableError(tenant_id)
        return table

    def put(self, table: RateTable) -> RateTable:
        """Store ``table`` as the tenant's current snapshot and return the stamped copy."""

        validate_rate_table(table)
        with self._lock:
            self._counter += 1
            stamped = replace(
                table,
                version=str(self._counter),
                updated_at=datetime.now(timezone.utc).isoformat(),
            )
            self._tables[table.tenant_id] = stamped
        logger.info("Rate table for tenant %s stored as version %s", stamped.tenant_id, stamped.version)
        return stamped

    def tenants(self) -> List[int]:
        with self._lock:
            return sorted(self._tables)


# ---------------------------------------------------------------------------
# Pricing schemes
# ---------------------------------------------------------------------------


def normalize_scheme_type(value: str) -> str:
    text = str(value or "").strip().lower()
    return LEGACY_SCHEME_ALIASES.get(text, text)


def scheme_from_dict(tenant_id: int, raw: Mapping[str, Any]) -> PricingScheme:
    where = f"schemes[{raw.get('id')}]"
    variables = {
        str(name): to_decimal(value, field=f"{where}.variables.{name}", error=ConfigurationError)
        for name, value in (raw.get("variables") or {}).items()
    }
    formula = raw.get("formula")
    return PricingScheme(
        id=int(raw["id"]),
        tenant_id=int(tenant_id),
        name=str(raw.get("name") or f"Scheme {raw['id']}"),
        scheme_type=normalize_scheme_type(raw.get("type", "")),
        formula=str(formula) if formula else None,
        is_default=_flag(raw.get("isDefault", False)),
        is_protected=_flag(raw.get("isProtected", False)),
        variables=variables,
    )


class SchemeRegistry:
    """Per-tenant pricing schemes, read-only to the engine."""

    def __init__(self, schemes: Optional[Iterable[PricingScheme]] = None) -> None:
        self._lock = threading.Lock()
        self._schemes: Dict[tuple[int, int], PricingScheme] = {}
        for scheme in schemes or ():
            self._schemes[(scheme.tenant_id, scheme.id)] = scheme

    def get(self, tenant_id: int, scheme_id: int) -> PricingScheme:
        with self._lock:
            scheme = self._schemes.get((tenant_id, scheme_id))
        if scheme is None:
            raise ValidationError(
                f"Pricing scheme {scheme_id} does not exist for tenant {tenant_id}",
                field="pricingSchemeId",
            )
        return scheme

    def for_tenant(self, tenant_id: int) -> List[PricingScheme]:
        with self._lock:
            return sorted(
                (scheme for (tenant, _), scheme in self._schemes.items() if tenant == tenant_id),
                key=lambda scheme: scheme.id,
            )

    def default_for(self, tenant_id: int) -> PricingScheme:
        defaults = [scheme for scheme in self.for_tenant(tenant_id) if scheme.is_default]
        if not defaults:
            raise NoDefaultSchemeError(f"Tenant {tenant_id} has no default pricing scheme", field="pricingSchemeId")
        if len(defaults) > 1:
            ids = ", ".join(str(scheme.id) for scheme in defaults)
            raise NoDefaultSchemeError(
                f"Tenant {tenant_id} has several default pricing schemes ({ids})",
                field="pricingSchemeId",
            )
        return defaults[0]

    def resolve(self, tenant_id: int, scheme_id: Optional[int]) -> PricingScheme:
        if scheme_id is None:
            return self.default_for(tenant_id)
        return self.get(tenant_id, scheme_id)

    def replace(
        self,
        scheme: PricingScheme,
        *,
        gate: Optional[Callable[[PricingScheme], bool]] = None,
    ) -> PricingScheme:
        """Store an edited scheme.

        Editing a protected scheme requires ``gate`` (the external PIN/2FA
        check) to return True for the stored scheme. Marking a scheme as the
        default clears the flag on the tenant's other schemes.
        """

        key = (scheme.tenant_id, scheme.id)
        with self._lock:
            existing = self._schemes.get(key)
            if existing is not None and existing.is_protected:
                if gate is None or not gate(existing):
                    raise ProtectedSchemeError(
                        f"Pricing scheme {scheme.id} is protected; edit refused",
                        field="pricingSchemeId",
                    )
            if scheme.is_default:
                for other_key, other in list(self._schemes.items()):
                    if other_key[0] == scheme.tenant_id and other_key != key and other.is_default:
                        self._schemes[other_key] = replace(other, is_default=False)
            self._schemes[key] = scheme
        logger.info("Pricing scheme %s for tenant %s updated", scheme.id, scheme.tenant_id)
        return scheme


__all__ = [
    "MATERIAL_KEYS",
    "SCALAR_KEYS",
    "PERCENT_FIELDS",
    "SPLIT_MARKUP_FIELDS",
    "whole_number",
    "RateTableProvider",
    "InMemoryRateTableProvider",
    "SchemeRegistry",
    "labor_category_from_raw",
    "material_defaults_from_dict",
    "normalize_scheme_type",
    "rate_table_from_dict",
    "scheme_from_dict",
    "validate_rate_table",
]
