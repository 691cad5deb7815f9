from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, Literal, Mapping, Optional, Tuple

from .money import ZERO

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

SQFT_TURNKEY = "sqft_turnkey"
SQFT_LABOR_PAINT = "sqft_labor_paint"
HOURLY_TIME_MATERIALS = "hourly_time_materials"
UNIT_PRICING = "unit_pricing"
ROOM_FLAT_RATE = "room_flat_rate"
PRODUCTION_BASED = "production_based"

SCHEME_TYPES: Tuple[str, ...] = (
    SQFT_TURNKEY,
    SQFT_LABOR_PAINT,
    HOURLY_TIME_MATERIALS,
    UNIT_PRICING,
    ROOM_FLAT_RATE,
    PRODUCTION_BASED,
)

# Names used by newer tenant records for the same methodologies.
LEGACY_SCHEME_ALIASES: Dict[str, str] = {
    "turnkey": SQFT_TURNKEY,
    "rate_based_sqft": SQFT_LABOR_PAINT,
    "flat_rate_unit": UNIT_PRICING,
}

Tier = Literal["good", "better", "best"]
TIERS: Tuple[str, ...] = ("good", "better", "best")

TaxBase = Literal["pre_markup", "post_markup", "running_total"]
TAX_BASES: Tuple[str, ...] = ("pre_markup", "post_markup", "running_total")
DEFAULT_TAX_BASE = "running_total"

CATEGORIES: Tuple[str, ...] = ("interior", "exterior")

SQFT = "sqft"
LINEAR_FT = "linear_ft"
COUNT = "count"
UNITS: Tuple[str, ...] = (SQFT, LINEAR_FT, COUNT)

# Roller coverage in sqft per gallon.
DEFAULT_COVERAGE = Decimal("350")

DEFAULT_UNIT_BY_SURFACE: Dict[str, str] = {
    "wall": SQFT,
    "ceiling": SQFT,
    "siding": SQFT,
    "deck": SQFT,
    "floor": SQFT,
    "accent_wall": SQFT,
    "trim": LINEAR_FT,
    "baseboard": LINEAR_FT,
    "fascia": LINEAR_FT,
    "soffit": LINEAR_FT,
    "gutter": LINEAR_FT,
    "fence": SQFT,
    "door": COUNT,
    "window": COUNT,
    "cabinet": COUNT,
    "shutter": COUNT,
    "garage_door": COUNT,
    "closet": COUNT,
    "small_room": COUNT,
    "medium_room": COUNT,
    "large_room": COUNT,
}


def _frozen(mapping: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


# ---------------------------------------------------------------------------
# Request side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProductSelection:
    """A catalog product and sheen chosen for the job."""

    product_id: int
    sheen: str
    brand_id: Optional[int] = None
    price_override: Optional[Decimal] = None
    coverage_override: Optional[Decimal] = None
    gallons: Optional[Decimal] = None


@dataclass(frozen=True)
class SurfaceInput:
    """One measured surface of the job."""

    surface_type: str
    category: str
    measurement: Decimal
    unit: str = SQFT
    product_index: Optional[int] = None
    label: Optional[str] = None

    @property
    def description(self) -> str:
        if self.label:
            return self.label
        return f"{self.category.title()} {self.surface_type.replace('_', ' ')}"


@dataclass(frozen=True)
class QuoteRequest:
    tenant_id: int
    pricing_scheme_id: Optional[int]
    surfaces: Tuple[SurfaceInput, ...]
    products: Tuple[ProductSelection, ...] = ()
    gbb_tier: Optional[str] = None
    labor_hours: Optional[Decimal] = None
    material_cost: Optional[Decimal] = None
    multiplier: Decimal = Decimal("1")
    crew_size: Optional[int] = None
    variables: Mapping[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "variables", _frozen(self.variables))


# ---------------------------------------------------------------------------
# Configuration side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PricingScheme:
    id: int
    tenant_id: int
    name: str
    scheme_type: str
    formula: Optional[str] = None
    is_default: bool = False
    is_protected: bool = False
    variables: Mapping[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "variables", _frozen(self.variables))

    @property
    def uses_formula(self) -> bool:
        return bool(self.formula and self.formula.strip())


@dataclass(frozen=True)
class LaborCategory:
    rate: Decimal
    measurement_unit: str = SQFT


@dataclass(frozen=True)
class MaterialDefaults:
    coverage: Decimal = DEFAULT_COVERAGE
    coats: Decimal = Decimal("2")
    waste_factor: Decimal = Decimal("1")
    application_method: str = "roll"
    cost_per_gallon: Optional[Decimal] = None
    include_materials: bool = True
    spray_coverage: Decimal = Decimal("300")


@dataclass(frozen=True)
class RateTable:
    """A tenant's rates, read-only for the duration of one computation."""

    tenant_id: int
    labor_categories: Mapping[str, LaborCategory] = field(default_factory=dict)
    production_rates: Mapping[str, Decimal] = field(default_factory=dict)
    flat_unit_prices: Mapping[str, Decimal] = field(default_factory=dict)
    turnkey_rates: Mapping[str, Decimal] = field(default_factory=dict)
    crew_size_default: int = 1
    hourly_rate: Decimal = ZERO
    billable_labor_rate: Decimal = ZERO
    markup_percent: Decimal = ZERO
    # Separate labor and material markups; an unset side uses markup_percent.
    labor_markup_percent: Optional[Decimal] = None
    material_markup_percent: Optional[Decimal] = None
    overhead_percent: Decimal = ZERO
    net_profit_percent: Decimal = ZERO
    tax_rate_percent: Decimal = ZERO
    deposit_percent: Decimal = ZERO
    material_defaults: MaterialDefaults = field(default_factory=MaterialDefaults)
    tax_base: str = DEFAULT_TAX_BASE
    version: str = "0"
    updated_at: Optional[str] = None

    def __post_init__(self) -> None:
        for name in ("labor_categories", "production_rates", "flat_unit_prices", "turnkey_rates"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))


@dataclass(frozen=True)
class LaborCategoryOverride:
    rate: Optional[Decimal] = None
    measurement_unit: Optional[str] = None


@dataclass(frozen=True)
class MaterialDefaultsOverride:
    coverage: Optional[Decimal] = None
    coats: Optional[Decimal] = None
    waste_factor: Optional[Decimal] = None
    application_method: Optional[str] = None
    cost_per_gallon: Optional[Decimal] = None
    include_materials: Optional[bool] = None
    spray_coverage: Optional[Decimal] = None


@dataclass(frozen=True)
class RateTableOverride:
    """Sparse override of :class:`RateTable` fields; ``None`` inherits the base value."""

    labor_categories: Mapping[str, LaborCategoryOverride] = field(default_factory=dict)
    production_rates: Mapping[str, Decimal] = field(default_factory=dict)
    flat_unit_prices: Mapping[str, Decimal] = field(default_factory=dict)
    turnkey_rates: Mapping[str, Decimal] = field(default_factory=dict)
    crew_size_default: Optional[int] = None
    hourly_rate: Optional[Decimal] = None
    billable_labor_rate: Optional[Decimal] = None
    markup_percent: Optional[Decimal] = None
    labor_markup_percent: Optional[Decimal] = None
    material_markup_percent: Optional[Decimal] = None
    overhead_percent: Optional[Decimal] = None
    net_profit_percent: Optional[Decimal] = None
    tax_rate_percent: Optional[Decimal] = None
    deposit_percent: Optional[Decimal] = None
    material_defaults: MaterialDefaultsOverride = field(default_factory=MaterialDefaultsOverride)
    tax_base: Optional[str] = None

    def __post_init__(self) -> None:
        for name in ("labor_categories", "production_rates", "flat_unit_prices", "turnkey_rates"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))


@dataclass(frozen=True)
class GBBTier:
    name: str
    enabled: bool = True
    override: RateTableOverride = field(default_factory=RateTableOverride)
    description: str = ""


@dataclass(frozen=True)
class GBBTierConfig:
    scheme_id: int
    enabled: bool = False
    tiers: Mapping[str, GBBTier] = field(default_factory=dict)
    version: str = "0"

    def __post_init__(self) -> None:
        object.__setattr__(self, "tiers", _frozen(self.tiers))


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineItem:
    """A priced line; costs are unrounded until aggregation."""

    description: str
    quantity: Decimal
    unit: str
    material_cost: Decimal = ZERO
    labor_cost: Decimal = ZERO
    surface_index: Optional[int] = None
    details: Mapping[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "details", _frozen(self.details))

    @property
    def total(self) -> Decimal:
        return self.material_cost + self.labor_cost


@dataclass(frozen=True)
class StrategyResult:
    line_items: Tuple[LineItem, ...]
    material_subtotal: Decimal
    labor_subtotal: Decimal

    @classmethod
    def from_lines(cls, lines) -> "StrategyResult":
        items = tuple(lines)
        return cls(
            line_items=items,
            material_subtotal=sum((item.material_cost for item in items), ZERO),
            labor_subtotal=sum((item.labor_cost for item in items), ZERO),
        )


@dataclass(frozen=True)
class QuoteResult:
    line_items: Tuple[LineItem, ...]
    material_subtotal: Decimal
    labor_subtotal: Decimal
    markup_amount: Decimal
    overhead_amount: Decimal
    profit_amount: Decimal
    tax_amount: Decimal
    deposit_amount: Decimal
    total: Decimal
    balance_amount: Decimal
    tax_base: str = DEFAULT_TAX_BASE
    tier: Optional[str] = None
    rate_table_version: str = "0"


@dataclass(frozen=True)
class QuoteResponse:
    tenant_id: int
    scheme_id: int
    scheme_type: str
    fingerprint: str
    rate_table_version: str
    quotes: Mapping[str, QuoteResult]
    tiered: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "quotes", _frozen(self.quotes))

    @property
    def quote(self) -> QuoteResult:
        """The single result of an untiered (or single-tier) computation."""

        if len(self.quotes) != 1:
            raise KeyError("Response carries several tiers; index quotes by tier name")
        return next(iter(self.quotes.values()))


__all__ = [
    "DEFAULT_COVERAGE",
    "SQFT_TURNKEY",
    "SQFT_LABOR_PAINT",
    "HOURLY_TIME_MATERIALS",
    "UNIT_PRICING",
    "ROOM_FLAT_RATE",
    "PRODUCTION_BASED",
    "SCHEME_TYPES",
    "LEGACY_SCHEME_ALIASES",
    "TIERS",
    "TAX_BASES",
    "DEFAULT_TAX_BASE",
    "CATEGORIES",
    "SQFT",
    "LINEAR_FT",
    "COUNT",
    "UNITS",
    "DEFAULT_UNIT_BY_SURFACE",
    "ProductSelection",
    "SurfaceInput",
    "QuoteRequest",
    "PricingScheme",
    "LaborCategory",
    "MaterialDefaults",
    "RateTable",
    "LaborCategoryOverride",
    "MaterialDefaultsOverride",
    "RateTableOverride",
    "GBBTier",
    "GBBTierConfig",
    "LineItem",
    "StrategyResult",
    "QuoteResult",
    "QuoteResponse",
]
