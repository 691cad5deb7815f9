"""Good/Better/Best tier resolution.

A scheme's :class:`GBBTierConfig` holds one sparse :class:`RateTableOverride`
per tier. :func:`merge_rate_table` applies an override field by field:

* scalar fields (rates, percentages, crew size, tax base): the override wins
  when it is not ``None``;
* keyed sections (production rates, flat unit prices, turnkey rates): merged
  key by key, override keys win, base keys without an override are kept;
* labor categories: merged key by key, and within a category ``rate`` and
  ``measurement_unit`` are merged separately;
* material defaults: merged field by field.

The base table is never modified, so one tier's override cannot leak into
another tier's result.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ConfigurationError, ValidationError
from .models import (
    COUNT,
    HOURLY_TIME_MATERIALS,
    LINEAR_FT,
    PRODUCTION_BASED,
    ROOM_FLAT_RATE,
    SQFT,
    SQFT_LABOR_PAINT,
    SQFT_TURNKEY,
    TAX_BASES,
    TIERS,
    UNIT_PRICING,
    GBBTier,
    GBBTierConfig,
    LaborCategory,
    LaborCategoryOverride,
    MaterialDefaultsOverride,
    RateTable,
    RateTableOverride,
)
from .money import HUNDRED, ZERO, to_decimal
from .config import _flag
from .rates import MATERIAL_KEYS, PERCENT_FIELDS, SCALAR_KEYS, SPLIT_MARKUP_FIELDS, validate_rate_table, whole_number

logger = logging.getLogger(__name__)

# Scalar RateTable fields an override may replace.
OVERRIDABLE_SCALARS: Tuple[str, ...] = (
    "crew_size_default",
    "hourly_rate",
    "billable_labor_rate",
    "markup_percent",
    "labor_markup_percent",
    "material_markup_percent",
    "overhead_percent",
    "net_profit_percent",
    "tax_rate_percent",
    "deposit_percent",
    "tax_base",
)

KEYED_SECTIONS: Tuple[str, ...] = ("production_rates", "flat_unit_prices", "turnkey_rates")


@dataclass(frozen=True)
class GBBIssue:
    code: str
    field: str
    message: str
    value: Any = None
    severity: str = "error"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "field": self.field,
            "message": self.message,
            "value": str(self.value) if isinstance(self.value, Decimal) else self.value,
            "severity": self.severity,
        }


def _pick(override, base):
    return base if override is None else override


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def merge_rate_table(base: RateTable, override: RateTableOverride, *, tier: Optional[str] = None) -> RateTable:
    """Return ``base`` with ``override`` applied; raises :class:`ConfigurationError` if the result is invalid."""

    labor: Dict[str, LaborCategory] = dict(base.labor_categories)
    for name, patch in override.labor_categories.items():
        current = labor.get(name)
        if current is None:
            if patch.rate is None:
                raise ConfigurationError(
                    f"Tier {tier or '(base)'} adds labor category '{name}' without a rate",
                    field=f"gbb.{tier}.laborCategories.{name}.rate",
                )
            labor[name] = LaborCategory(rate=patch.rate, measurement_unit=patch.measurement_unit or SQFT)
        else:
            labor[name] = LaborCategory(
                rate=_pick(patch.rate, current.rate),
                measurement_unit=_pick(patch.measurement_unit, current.measurement_unit),
            )

    changes: Dict[str, Any] = {"labor_categories": labor}
    for section in KEYED_SECTIONS:
        merged = dict(getattr(base, section))
        merged.update(getattr(override, section))
        changes[section] = merged
    for name in OVERRIDABLE_SCALARS:
        changes[name] = _pick(getattr(override, name), getattr(base, name))

    material_changes = {
        item.name: getattr(override.material_defaults, item.name)
        for item in fields(MaterialDefaultsOverride)
        if getattr(override.material_defaults, item.name) is not None
    }
    changes["material_defaults"] = replace(base.material_defaults, **material_changes)
    if tier is not None:
        changes["version"] = f"{base.version}+{tier}"

    return validate_rate_table(replace(base, **changes))


def resolve_tiers(
    base: RateTable,
    config: Optional[GBBTierConfig],
    requested: Optional[str] = None,
) -> List[Tuple[Optional[str], RateTable]]:
    """Rate tables to price with, as ``(tier, table)`` pairs in tier order.

    Without tier pricing the single pair is ``(None, base)``. With tier
    pricing, ``requested`` selects one tier; ``None`` selects every enabled
    tier.
    """

    if config is None or not config.enabled:
        if requested is not None:
            raise ValidationError(
                f"Tier '{requested}' requested but the scheme does not offer tier pricing",
                field="gbbTier",
            )
        return [(None, base)]

    if requested is not None and requested not in TIERS:
        raise ValidationError(f"Unknown tier '{requested}'", field="gbbTier")

    names = [requested] if requested is not None else list(TIERS)
    resolved: List[Tuple[Optional[str], RateTable]] = []
    for name in names:
        tier = config.tiers.get(name) or GBBTier(name=name)
        if not tier.enabled:
            if requested is not None:
                raise ValidationError(f"Tier '{name}' is disabled for this scheme", field="gbbTier")
            continue
        resolved.append((name, merge_rate_table(base, tier.override, tier=name)))
    if not resolved:
        raise ConfigurationError(
            f"Tier pricing is enabled for scheme {config.scheme_id} but every tier is disabled",
            field=f"gbb[{config.scheme_id}].tiers",
        )
    return resolved


# ---------------------------------------------------------------------------
# Parsing and validation
# ---------------------------------------------------------------------------


def _labor_override(raw: Any, where: str) -> LaborCategoryOverride:
    if isinstance(raw, Mapping):
        rate = raw.get("rate")
        unit = raw.get("measurementUnit")
        return LaborCategoryOverride(
            rate=to_decimal(rate, field=f"{where}.rate", error=ConfigurationError) if rate is not None else None,
            measurement_unit=str(unit) if unit is not None else None,
        )
    return LaborCategoryOverride(rate=to_decimal(raw, field=where, error=ConfigurationError))


def override_from_dict(raw: Optional[Mapping[str, Any]], where: str = "override") -> RateTableOverride:
    """Parse a sparse override record; keys mirror the rate-table record."""

    raw = raw or {}
    values: Dict[str, Any] = {}
    values["labor_categories"] = {
        str(name): _labor_override(value, f"{where}.laborCategories.{name}")
        for name, value in (raw.get("laborCategories") or {}).items()
    }
    for key, attr in (
        ("productionRates", "production_rates"),
        ("flatUnitPrices", "flat_unit_prices"),
        ("turnkeyRates", "turnkey_rates"),
    ):
        values[attr] = {
            str(name): to_decimal(value, field=f"{where}.{key}.{name}", error=ConfigurationError)
            for name, value in (raw.get(key) or {}).items()
        }
    for key, attr in SCALAR_KEYS.items():
        if raw.get(key) is not None:
            values[attr] = to_decimal(raw[key], field=f"{where}.{key}", error=ConfigurationError)
    if raw.get("crewSizeDefault") is not None:
        values["crew_size_default"] = whole_number(raw["crewSizeDefault"], f"{where}.crewSizeDefault")
    if raw.get("taxBase") is not None:
        values["tax_base"] = str(raw["taxBase"])

    materials_raw = raw.get("materialDefaults") or {}
    materials: Dict[str, Any] = {}
    for key, attr in MATERIAL_KEYS.items():
        if materials_raw.get(key) is not None:
            materials[attr] = to_decimal(
                materials_raw[key], field=f"{where}.materialDefaults.{key}", error=ConfigurationError
            )
    if materials_raw.get("applicationMethod") is not None:
        materials["application_method"] = str(materials_raw["applicationMethod"]).strip().lower()
    if materials_raw.get("includeMaterials") is not None:
        materials["include_materials"] = _flag(materials_raw["includeMaterials"])
    values["material_defaults"] = MaterialDefaultsOverride(**materials)
    return RateTableOverride(**values)


def gbb_config_from_dict(scheme_id: int, raw: Mapping[str, Any]) -> GBBTierConfig:
    """Parse a scheme's tier record and reject it when :func:`validate_gbb_config` finds errors."""

    where = f"gbb[{scheme_id}]"
    tiers: Dict[str, GBBTier] = {}
    for name, entry in (raw.get("tiers") or {}).items():
        entry = entry or {}
        tiers[str(name)] = GBBTier(
            name=str(name),
            enabled=_flag(entry.get("enabled", True)),
            override=override_from_dict(entry.get("overrides"), f"{where}.{name}"),
            description=str(entry.get("description") or ""),
        )
    config = GBBTierConfig(
        scheme_id=int(scheme_id),
        enabled=_flag(raw.get("enabled", False)),
        tiers=tiers,
        version=str(raw.get("version", "0")),
    )
    errors = [issue for issue in validate_gbb_config(config) if issue.severity == "error"]
    if errors:
        first = errors[0]
        raise ConfigurationError(
            f"{first.message} ({len(errors)} issue{'s' if len(errors) != 1 else ''} in tier configuration)",
            field=first.field,
        )
    return config


def _is_whole(value: Decimal) -> bool:
    return value == value.to_integral_value()


def validate_gbb_config(config: GBBTierConfig) -> List[GBBIssue]:
    """Range-check every tier override; returns all issues rather than stopping at the first."""

    issues: List[GBBIssue] = []
    for name, tier in config.tiers.items():
        prefix = f"gbb[{config.scheme_id}].{name}"
        if name not in TIERS:
            issues.append(GBBIssue("UNKNOWN_TIER", prefix, f"Unknown tier '{name}'", name))
            continue
        override = tier.override

        for key, patch in override.labor_categories.items():
            if patch.rate is not None and patch.rate < ZERO:
                issues.append(
                    GBBIssue(
                        "INVALID_LABOR_RATE",
                        f"{prefix}.laborCategories.{key}",
                        f"Labor rate for {key} must be a number greater than or equal to 0",
                        patch.rate,
                    )
                )
            if patch.measurement_unit is not None and patch.measurement_unit not in (SQFT, LINEAR_FT, COUNT):
                issues.append(
                    GBBIssue(
                        "INVALID_MEASUREMENT_UNIT",
                        f"{prefix}.laborCategories.{key}.measurementUnit",
                        f"Unknown measurement unit '{patch.measurement_unit}'",
                        patch.measurement_unit,
                    )
                )
        for key, value in override.flat_unit_prices.items():
            if value < ZERO:
                issues.append(
                    GBBIssue(
                        "INVALID_UNIT_PRICE",
                        f"{prefix}.flatUnitPrices.{key}",
                        f"Unit price for {key} must be a number greater than or equal to 0",
                        value,
                    )
                )
        for key, value in override.production_rates.items():
            if value <= ZERO:
                issues.append(
                    GBBIssue(
                        "INVALID_PRODUCTION_RATE",
                        f"{prefix}.productionRates.{key}",
                        f"Production rate for {key} must be a number greater than 0",
                        value,
                    )
                )
        for key, value in override.turnkey_rates.items():
            if value < ZERO:
                issues.append(
                    GBBIssue(
                        "INVALID_BASE_RATE",
                        f"{prefix}.turnkeyRates.{key}",
                        "Base rate must be a number greater than or equal to 0",
                        value,
                    )
                )
        for attr in ("hourly_rate", "billable_labor_rate"):
            value = getattr(override, attr)
            if value is not None and value < ZERO:
                issues.append(
                    GBBIssue(
                        "INVALID_HOURLY_RATE",
                        f"{prefix}.{attr}",
                        "Hourly rate must be a number greater than or equal to 0",
                        value,
                    )
                )
        for attr in PERCENT_FIELDS + SPLIT_MARKUP_FIELDS:
            value = getattr(override, attr)
            if value is not None and not ZERO <= value <= HUNDRED:
                issues.append(
                    GBBIssue("INVALID_PERCENT", f"{prefix}.{attr}", f"{attr} must be between 0 and 100", value)
                )
        if override.crew_size_default is not None and override.crew_size_default < 1:
            issues.append(
                GBBIssue(
                    "INVALID_CREW_SIZE",
                    f"{prefix}.crewSizeDefault",
                    "Crew size must be at least 1",
                    override.crew_size_default,
                )
            )
        if override.tax_base is not None and override.tax_base not in TAX_BASES:
            issues.append(
                GBBIssue("INVALID_TAX_BASE", f"{prefix}.taxBase", f"Unknown tax base '{override.tax_base}'", override.tax_base)
            )

        materials = override.material_defaults
        if materials.cost_per_gallon is not None and materials.cost_per_gallon < ZERO:
            issues.append(
                GBBIssue(
                    "INVALID_COST_PER_GALLON",
                    f"{prefix}.materialDefaults.costPerGallon",
                    "Cost per gallon must be a number greater than or equal to 0",
                    materials.cost_per_gallon,
                )
            )
        if materials.coverage is not None and (
            not _is_whole(materials.coverage) or not Decimal(100) <= materials.coverage <= Decimal(500)
        ):
            issues.append(
                GBBIssue(
                    "INVALID_COVERAGE",
                    f"{prefix}.materialDefaults.coverage",
                    "Coverage must be an integer between 100 and 500 sqft per gallon",
                    materials.coverage,
                )
            )
        if materials.coats is not None and (
            not _is_whole(materials.coats) or not Decimal(1) <= materials.coats <= Decimal(5)
        ):
            issues.append(
                GBBIssue(
                    "INVALID_COATS",
                    f"{prefix}.materialDefaults.coats",
                    "Number of coats must be an integer between 1 and 5",
                    materials.coats,
                )
            )
        if materials.waste_factor is not None and not Decimal("1.0") <= materials.waste_factor <= Decimal("2.0"):
            issues.append(
                GBBIssue(
                    "INVALID_WASTE_FACTOR",
                    f"{prefix}.materialDefaults.wasteFactor",
                    "Waste factor must be a number between 1.0 and 2.0",
                    materials.waste_factor,
                )
            )
    return issues


def tier_ordering_issues(totals: Mapping[str, Decimal]) -> List[GBBIssue]:
    """Warnings when a cheaper tier costs more than a richer one."""

    issues: List[GBBIssue] = []
    for lower, higher in (("good", "better"), ("better", "best"), ("good", "best")):
        if lower in totals and higher in totals and totals[lower] > totals[higher]:
            issues.append(
                GBBIssue(
                    "TIER_PRICE_ORDERING_VIOLATION",
                    "tiers",
                    f"{lower.title()} tier price should not exceed {higher.title()} tier price",
                    {lower: str(totals[lower]), higher: str(totals[higher])},
                    severity="warning",
                )
            )
    return issues


# ---------------------------------------------------------------------------
# Starter tiers
# ---------------------------------------------------------------------------

_D = Decimal

_LABOR_DEFAULTS = {
    "good": {
        "wall": ("1.80", SQFT), "ceiling": ("1.50", SQFT), "trim": ("3.00", LINEAR_FT),
        "door": ("45.00", COUNT), "cabinet": ("65.00", COUNT), "exterior_wall": ("2.20", SQFT),
        "exterior_trim": ("3.50", LINEAR_FT), "exterior_door": ("50.00", COUNT), "deck": ("2.00", SQFT),
        "soffit": ("2.50", LINEAR_FT), "fascia": ("2.50", LINEAR_FT), "shutter": ("50.00", COUNT),
    },
    "better": {
        "wall": ("2.50", SQFT), "ceiling": ("2.00", SQFT), "trim": ("4.00", LINEAR_FT),
        "door": ("60.00", COUNT), "cabinet": ("85.00", COUNT), "exterior_wall": ("3.00", SQFT),
        "exterior_trim": ("4.50", LINEAR_FT), "exterior_door": ("65.00", COUNT), "deck": ("2.75", SQFT),
        "soffit": ("3.25", LINEAR_FT), "fascia": ("3.25", LINEAR_FT), "shutter": ("65.00", COUNT),
    },
    "best": {
        "wall": ("3.50", SQFT), "ceiling": ("2.80", SQFT), "trim": ("5.50", LINEAR_FT),
        "door": ("80.00", COUNT), "cabinet": ("110.00", COUNT), "exterior_wall": ("4.20", SQFT),
        "exterior_trim": ("6.00", LINEAR_FT), "exterior_door": ("85.00", COUNT), "deck": ("3.75", SQFT),
        "soffit": ("4.25", LINEAR_FT), "fascia": ("4.25", LINEAR_FT), "shutter": ("85.00", COUNT),
    },
}

# cost per gallon, coverage, coats, waste factor
_MATERIAL_DEFAULTS = {
    "good": ("40.00", "350", "2", "1.10"),
    "better": ("55.00", "350", "2", "1.10"),
    "best": ("70.00", "400", "3", "1.15"),
}

_UNIT_PRICE_DEFAULTS = {
    "good": {
        "door": "85.00", "small_room": "350.00", "medium_room": "450.00", "large_room": "600.00",
        "closet": "150.00", "accent_wall": "200.00", "cabinet": "125.00", "exterior_door": "95.00",
        "window": "75.00", "garage_door": "200.00", "shutter": "50.00",
    },
    "better": {
        "door": "110.00", "small_room": "450.00", "medium_room": "575.00", "large_room": "775.00",
        "closet": "195.00", "accent_wall": "260.00", "cabinet": "160.00", "exterior_door": "125.00",
        "window": "95.00", "garage_door": "260.00", "shutter": "65.00",
    },
    "best": {
        "door": "140.00", "small_room": "600.00", "medium_room": "750.00", "large_room": "1000.00",
        "closet": "250.00", "accent_wall": "340.00", "cabinet": "210.00", "exterior_door": "160.00",
        "window": "125.00", "garage_door": "340.00", "shutter": "85.00",
    },
}

_PRODUCTION_DEFAULTS = {
    "good": ("45.00", {
        "interior_wall": "300", "interior_ceiling": "350", "interior_trim": "150", "door": "2.0",
        "cabinet": "1.5", "exterior_wall": "250", "exterior_trim": "120", "soffit": "100", "fascia": "100",
    }),
    "better": ("60.00", {
        "interior_wall": "280", "interior_ceiling": "320", "interior_trim": "140", "door": "1.8",
        "cabinet": "1.3", "exterior_wall": "230", "exterior_trim": "110", "soffit": "90", "fascia": "90",
    }),
    "best": ("80.00", {
        "interior_wall": "250", "interior_ceiling": "300", "interior_trim": "125", "door": "1.5",
        "cabinet": "1.0", "exterior_wall": "200", "exterior_trim": "100", "soffit": "80", "fascia": "80",
    }),
}

_TURNKEY_DEFAULTS = {"good": "3.50", "better": "4.50", "best": "6.00"}

_DESCRIPTIONS = {
    SQFT_LABOR_PAINT: {
        "good": "Standard quality paint and workmanship",
        "better": "Premium paint with enhanced durability",
        "best": "Top-tier low-VOC paint with maximum coverage",
    },
    UNIT_PRICING: {
        "good": "Quality work at competitive prices",
        "better": "Enhanced quality and attention to detail",
        "best": "Premium service with finest materials",
    },
    PRODUCTION_BASED: {
        "good": "Standard production rates with quality workmanship",
        "better": "Enhanced attention to detail with premium materials",
        "best": "Meticulous craftsmanship with top-tier materials",
    },
    SQFT_TURNKEY: {
        "good": "Complete interior/exterior painting",
        "better": "Premium paint and enhanced prep work",
        "best": "Luxury finish with top-tier materials",
    },
}
_DESCRIPTIONS[ROOM_FLAT_RATE] = _DESCRIPTIONS[UNIT_PRICING]


def _materials(tier: str, *, waste: bool = True) -> MaterialDefaultsOverride:
    cost, coverage, coats, waste_factor = _MATERIAL_DEFAULTS[tier]
    return MaterialDefaultsOverride(
        cost_per_gallon=_D(cost),
        coverage=_D(coverage),
        coats=_D(coats),
        waste_factor=_D(waste_factor) if waste else None,
    )


def default_tier_overrides(scheme_type: str) -> Dict[str, GBBTier]:
    """Starter good/better/best tiers for a new scheme; contractors tune them afterwards."""

    tiers: Dict[str, GBBTier] = {}
    for tier in TIERS:
        if scheme_type == SQFT_LABOR_PAINT:
            override = RateTableOverride(
                labor_categories={
                    name: LaborCategoryOverride(rate=_D(rate), measurement_unit=unit)
                    for name, (rate, unit) in _LABOR_DEFAULTS[tier].items()
                },
                material_defaults=_materials(tier),
            )
        elif scheme_type in (UNIT_PRICING, ROOM_FLAT_RATE):
            override = RateTableOverride(
                flat_unit_prices={name: _D(price) for name, price in _UNIT_PRICE_DEFAULTS[tier].items()}
            )
        elif scheme_type == PRODUCTION_BASED:
            billable, rates = _PRODUCTION_DEFAULTS[tier]
            override = RateTableOverride(
                billable_labor_rate=_D(billable),
                production_rates={name: _D(rate) for name, rate in rates.items()},
                material_defaults=_materials(tier, waste=False),
            )
        elif scheme_type == SQFT_TURNKEY:
            rate = _D(_TURNKEY_DEFAULTS[tier])
            override = RateTableOverride(turnkey_rates={"interior": rate, "exterior": rate})
        elif scheme_type == HOURLY_TIME_MATERIALS:
            override = RateTableOverride()
        else:
            raise ConfigurationError(f"Unknown pricing scheme type '{scheme_type}'", field="type")
        description = _DESCRIPTIONS.get(scheme_type, {}).get(tier, "")
        tiers[tier] = GBBTier(name=tier, override=override, description=description)
    return tiers


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class GBBConfigProvider:
    """Supplies a :class:`GBBTierConfig` snapshot per (tenant, scheme)."""

    def get(self, tenant_id: int, scheme_id: int) -> GBBTierConfig:  # pragma: no cover - interface
        raise NotImplementedError


class InMemoryGBBConfigProvider(GBBConfigProvider):
    def __init__(self, configs: Optional[Iterable[Tuple[int, GBBTierConfig]]] = None) -> None:
        self._lock = threading.Lock()
        self._configs: Dict[Tuple[int, int], GBBTierConfig] = {}
        self._counter = 0
        for tenant_id, config in configs or ():
            self._configs[(tenant_id, config.scheme_id)] = config

    def get(self, tenant_id: int, scheme_id: int) -> GBBTierConfig:
        """Tier config for the scheme; schemes without one get tier pricing disabled."""

        with self._lock:
            config = self._configs.get((tenant_id, scheme_id))
        return config if config is not None else GBBTierConfig(scheme_id=scheme_id)

    def put(self, tenant_id: int, config: GBBTierConfig) -> GBBTierConfig:
        errors = [issue for issue in validate_gbb_config(config) if issue.severity == "error"]
        if errors:
            raise ConfigurationError(errors[0].message, field=errors[0].field)
        with self._lock:
            self._counter += 1
            stamped = replace(config, version=str(self._counter))
            self._configs[(tenant_id, config.scheme_id)] = stamped
        logger.info("Tier config for scheme %s (tenant %s) stored as version %s", config.scheme_id, tenant_id, stamped.version)
        return stamped


__all__ = [
    "GBBConfigProvider",
    "GBBIssue",
    "InMemoryGBBConfigProvider",
    "KEYED_SECTIONS",
    "OVERRIDABLE_SCALARS",
    "default_tier_overrides",
    "gbb_config_from_dict",
    "merge_rate_table",
    "override_from_dict",
    "resolve_tiers",
    "tier_ordering_issues",
    "validate_gbb_config",
]
