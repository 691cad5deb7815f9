"""Scheme strategy dispatcher.

Each pricing scheme type maps to one :class:`PricingStrategy` subclass.
A strategy turns the request's surfaces into :class:`LineItem` objects
using a single rate-table snapshot; the aggregator does the rest.

Line item costs stay unrounded here. Money is rounded once per
aggregation stage in :mod:`quotecalc.aggregator`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import ROUND_CEILING, Decimal
from typing import Dict, List, Mapping, Optional, Tuple, Type

from .catalog import ResolvedProduct
from .errors import ComputationError, ConfigurationError, FormulaError, UnknownSchemeTypeError, ValidationError
from .formula import BASE_VARIABLES, DEFAULT_MAX_DEPTH, DEFAULT_MAX_LENGTH, Formula, parse_formula
from .models import (
    DEFAULT_COVERAGE,
    HOURLY_TIME_MATERIALS,
    PRODUCTION_BASED,
    ROOM_FLAT_RATE,
    SQFT,
    SQFT_LABOR_PAINT,
    SQFT_TURNKEY,
    UNIT_PRICING,
    LineItem,
    PricingScheme,
    QuoteRequest,
    RateTable,
    StrategyResult,
    SurfaceInput,
)
from .money import ZERO

logger = logging.getLogger(__name__)

TIER_NUMBERS = {"good": Decimal(1), "better": Decimal(2), "best": Decimal(3)}


@dataclass(frozen=True)
class PricingContext:
    """Everything a strategy may read while pricing one quote (or one tier)."""

    request: QuoteRequest
    scheme: PricingScheme
    rate_table: RateTable
    products: Tuple[ResolvedProduct, ...] = ()
    tier: Optional[str] = None

    def product_for(self, surface: SurfaceInput) -> Optional[ResolvedProduct]:
        if surface.product_index is not None:
            return self.products[surface.product_index]
        return self.products[0] if self.products else None


def _surface_field(index: Optional[int], name: str) -> Optional[str]:
    return f"surfaces[{index}].{name}" if index is not None else None


def _zero_line(surface: SurfaceInput, index: int) -> LineItem:
    return LineItem(
        description=surface.description,
        quantity=ZERO,
        unit=surface.unit,
        surface_index=index,
    )


def lookup_rate(section: Mapping, surface: SurfaceInput):
    """Find the entry for ``surface``: ``"exterior_wall"`` first, then ``"wall"``."""

    for key in (f"{surface.category}_{surface.surface_type}", surface.surface_type):
        if key in section:
            return section[key]
    return None


def paint_gallons(area: Decimal, coats: Decimal, waste_factor: Decimal, coverage: Decimal) -> Decimal:
    """Whole gallons needed to cover ``area``; always rounded up."""

    if coverage <= ZERO:
        raise ConfigurationError(f"Coverage must be positive, got {coverage}")
    raw = area * coats * waste_factor / coverage
    return raw.to_integral_value(rounding=ROUND_CEILING)


def paint_material(
    context: PricingContext,
    index: int,
    surface: SurfaceInput,
    *,
    required: bool,
) -> Tuple[Decimal, Dict[str, Decimal]]:
    """Material cost for painting ``surface`` plus the figures that produced it.

    Returns ``(ZERO, {})`` when materials are excluded, the surface is not an
    area, or (for ``required=False``) no price source is available.
    """

    defaults = context.rate_table.material_defaults
    if not defaults.include_materials or surface.unit != SQFT:
        return ZERO, {}
    product = context.product_for(surface)
    if product is not None:
        price = product.price_per_gallon
        coverage = product.coverage_rate
        overridden = product.coverage_overridden
    elif defaults.cost_per_gallon is not None:
        price = defaults.cost_per_gallon
        coverage = defaults.coverage
        overridden = False
    elif required:
        raise ValidationError(
            "Surface has no product selection and the rate table has no default cost per gallon",
            field=_surface_field(index, "productIndex"),
        )
    else:
        return ZERO, {}
    if defaults.application_method == "spray":
        if product is not None and not overridden:
            coverage = min(coverage, defaults.spray_coverage)
        elif product is None and coverage == DEFAULT_COVERAGE:
            # A contractor-set coverage is kept as configured.
            coverage = defaults.spray_coverage
    gallons = paint_gallons(surface.measurement, defaults.coats, defaults.waste_factor, coverage)
    details = {
        "gallons": gallons,
        "pricePerGallon": price,
        "coverage": coverage,
        "coats": defaults.coats,
        "wasteFactor": defaults.waste_factor,
    }
    return gallons * price, details


class PricingStrategy:
    """Base strategy: prices each surface independently.

    Subclasses set ``scheme_type``, list the extra formula variables they
    bind in ``extra_variables`` and implement :meth:`price_surface`.
    """

    scheme_type = ""
    extra_variables: Tuple[str, ...] = ()

    @property
    def required_variables(self) -> Tuple[str, ...]:
        return BASE_VARIABLES + self.extra_variables

    def price(self, context: PricingContext) -> StrategyResult:
        lines: List[LineItem] = []
        for index, surface in enumerate(context.request.surfaces):
            if surface.measurement.is_zero():
                lines.append(_zero_line(surface, index))
                continue
            lines.append(self.price_surface(context, index, surface))
        return StrategyResult.from_lines(lines)

    def price_surface(self, context: PricingContext, index: int, surface: SurfaceInput) -> LineItem:
        raise NotImplementedError

    def bindings(self, context: PricingContext, line: LineItem) -> Dict[str, Decimal]:
        """Formula variables for ``line``; scheme and request extras are added by the caller."""

        request = context.request
        details = line.details
        hours = details.get("hours")
        if hours is None:
            hours = request.labor_hours if request.labor_hours is not None else ZERO
        values = {
            "sqft": line.quantity,
            "baseRate": details.get("rate", ZERO),
            "materialCost": line.material_cost,
            "laborCost": line.labor_cost,
            "laborHours": hours,
            "hourlyRate": context.rate_table.hourly_rate,
            "tier": TIER_NUMBERS.get(context.tier or "", ZERO),
            "multiplier": request.multiplier,
        }
        for name in self.extra_variables:
            values[name] = details.get(name, ZERO)
        return values


class TurnkeyStrategy(PricingStrategy):
    """All-inclusive $/sqft by category; no separate material line."""

    scheme_type = SQFT_TURNKEY

    def price_surface(self, context, index, surface):
        if surface.unit != SQFT:
            raise ValidationError(
                f"Turnkey pricing needs an area in sqft, got {surface.unit}",
                field=_surface_field(index, "unit"),
            )
        rate = context.rate_table.turnkey_rates.get(surface.category)
        if rate is None:
            raise ConfigurationError(
                f"No turnkey rate configured for {surface.category} surfaces",
                field=f"rateTables[{context.rate_table.tenant_id}].turnkeyRates.{surface.category}",
            )
        return LineItem(
            description=surface.description,
            quantity=surface.measurement,
            unit=surface.unit,
            labor_cost=surface.measurement * rate,
            surface_index=index,
            details={"rate": rate},
        )


class LaborPaintStrategy(PricingStrategy):
    """Labor per unit from the labor categories plus paint by the gallon."""

    scheme_type = SQFT_LABOR_PAINT
    extra_variables = ("gallons", "pricePerGallon", "coverage", "coats", "wasteFactor")

    def labor_rate(self, context: PricingContext, index: int, surface: SurfaceInput):
        category = lookup_rate(context.rate_table.labor_categories, surface)
        if category is None:
            raise ConfigurationError(
                f"No labor rate configured for {surface.category} {surface.surface_type}",
                field=f"rateTables[{context.rate_table.tenant_id}].laborCategories.{surface.surface_type}",
            )
        if category.measurement_unit != surface.unit:
            raise ValidationError(
                f"Labor for {surface.surface_type} is priced per {category.measurement_unit}, "
                f"but the surface is measured in {surface.unit}",
                field=_surface_field(index, "unit"),
            )
        return category.rate

    def price_surface(self, context, index, surface):
        rate = self.labor_rate(context, index, surface)
        material, details = paint_material(context, index, surface, required=True)
        return LineItem(
            description=surface.description,
            quantity=surface.measurement,
            unit=surface.unit,
            material_cost=material,
            labor_cost=surface.measurement * rate,
            surface_index=index,
            details={"rate": rate, **details},
        )


class HourlyStrategy(PricingStrategy):
    """Time and materials: one line for the whole job."""

    scheme_type = HOURLY_TIME_MATERIALS
    extra_variables = ("gallons",)

    def price(self, context: PricingContext) -> StrategyResult:
        request = context.request
        table = context.rate_table
        if request.labor_hours is None:
            raise ValidationError("Hourly pricing needs laborHours", field="laborHours")
        if request.labor_hours > ZERO and table.hourly_rate <= ZERO:
            raise ConfigurationError(
                "Hourly pricing needs an hourly rate",
                field=f"rateTables[{table.tenant_id}].hourlyRate",
            )
        gallons = sum((product.gallons or ZERO for product in context.products), ZERO)
        if request.material_cost is not None:
            material = request.material_cost
        else:
            material = sum(
                ((product.gallons or ZERO) * product.price_per_gallon for product in context.products),
                ZERO,
            )
        area = sum((surface.measurement for surface in request.surfaces if surface.unit == SQFT), ZERO)
        line = LineItem(
            description="Time and materials",
            quantity=request.labor_hours,
            unit="hour",
            material_cost=material,
            labor_cost=request.labor_hours * table.hourly_rate,
            details={"rate": table.hourly_rate, "hours": request.labor_hours, "gallons": gallons, "area": area},
        )
        return StrategyResult.from_lines([line])

    def bindings(self, context, line):
        values = super().bindings(context, line)
        values["sqft"] = line.details.get("area", ZERO)
        return values


class UnitPricingStrategy(PricingStrategy):
    """Count times a flat price per unit type."""

    scheme_type = UNIT_PRICING
    extra_variables = ("count",)

    def price_surface(self, context, index, surface):
        price = lookup_rate(context.rate_table.flat_unit_prices, surface)
        if price is None:
            raise ConfigurationError(
                f"No flat price configured for {surface.surface_type}",
                field=f"rateTables[{context.rate_table.tenant_id}].flatUnitPrices.{surface.surface_type}",
            )
        return LineItem(
            description=surface.description,
            quantity=surface.measurement,
            unit=surface.unit,
            labor_cost=surface.measurement * price,
            surface_index=index,
            details={"rate": price, "count": surface.measurement},
        )


class RoomFlatRateStrategy(UnitPricingStrategy):
    scheme_type = ROOM_FLAT_RATE


class ProductionStrategy(PricingStrategy):
    """Hours from production rates and crew size, billed at the labor rate."""

    scheme_type = PRODUCTION_BASED
    extra_variables = ("productionRate", "crewSize", "gallons", "pricePerGallon")

    def price_surface(self, context, index, surface):
        table = context.rate_table
        production_rate = lookup_rate(table.production_rates, surface)
        if production_rate is None or production_rate <= ZERO:
            raise ConfigurationError(
                f"No production rate configured for {surface.surface_type}",
                field=f"rateTables[{table.tenant_id}].productionRates.{surface.surface_type}",
            )
        if table.billable_labor_rate <= ZERO:
            raise ConfigurationError(
                "Production pricing needs a billable labor rate",
                field=f"rateTables[{table.tenant_id}].billableLaborRate",
            )
        crew = context.request.crew_size or table.crew_size_default
        crew_size = Decimal(crew)
        hours = surface.measurement / (production_rate * crew_size)
        material, details = paint_material(context, index, surface, required=False)
        return LineItem(
            description=surface.description,
            quantity=surface.measurement,
            unit=surface.unit,
            material_cost=material,
            labor_cost=hours * table.billable_labor_rate,
            surface_index=index,
            details={
                "rate": table.billable_labor_rate,
                "hours": hours,
                "productionRate": production_rate,
                "crewSize": crew_size,
                **details,
            },
        )


class FormulaStrategy:
    """Wraps a strategy and replaces each line total with a contractor formula.

    The wrapped strategy computes the line first so its figures can be bound
    as variables. The formula result becomes the all-inclusive line total.
    """

    def __init__(self, inner: PricingStrategy, formula: Formula) -> None:
        self.inner = inner
        self.formula = formula
        self.scheme_type = inner.scheme_type

    @property
    def required_variables(self) -> Tuple[str, ...]:
        return self.inner.required_variables

    def allowed_variables(self, context: PricingContext) -> Tuple[str, ...]:
        return self.required_variables + tuple(context.scheme.variables)

    def check_variables(self, context: PricingContext) -> None:
        self.formula.require_variables(self.allowed_variables(context), scheme_id=context.scheme.id)

    def price(self, context: PricingContext) -> StrategyResult:
        self.check_variables(context)
        base = self.inner.price(context)
        lines = []
        for line in base.line_items:
            if line.surface_index is not None and line.quantity.is_zero():
                lines.append(line)
                continue
            bindings = self._bindings(context, line)
            total = self.formula.evaluate(bindings, scheme_id=context.scheme.id)
            if total < ZERO:
                raise ComputationError(
                    f"Formula for scheme {context.scheme.id} produced a negative line total ({total})",
                    field=_surface_field(line.surface_index, "measurement"),
                )
            details = dict(line.details)
            details["formulaTotal"] = total
            lines.append(replace(line, material_cost=ZERO, labor_cost=total, details=details))
        return StrategyResult.from_lines(lines)

    def _bindings(self, context: PricingContext, line: LineItem) -> Dict[str, Decimal]:
        values: Dict[str, Decimal] = dict(context.scheme.variables)
        values.update(context.request.variables)
        values.update(self.inner.bindings(context, line))
        return values


STRATEGIES: Mapping[str, Type[PricingStrategy]] = {
    cls.scheme_type: cls
    for cls in (
        TurnkeyStrategy,
        LaborPaintStrategy,
        HourlyStrategy,
        UnitPricingStrategy,
        RoomFlatRateStrategy,
        ProductionStrategy,
    )
}


def strategy_for(
    scheme: PricingScheme,
    *,
    max_length: int = DEFAULT_MAX_LENGTH,
    max_depth: int = DEFAULT_MAX_DEPTH,
):
    """Return the strategy for ``scheme``, wrapped in a formula when it has one."""

    cls = STRATEGIES.get(scheme.scheme_type)
    if cls is None:
        raise UnknownSchemeTypeError(scheme.scheme_type, field=f"schemes[{scheme.id}].type")
    strategy = cls()
    if not scheme.uses_formula:
        return strategy
    try:
        formula = parse_formula(scheme.formula.strip(), max_length=max_length, max_depth=max_depth)
    except FormulaError as exc:
        exc.scheme_id = scheme.id
        raise
    logger.debug("Scheme %s uses formula %r over %s", scheme.id, formula.text, sorted(formula.variables))
    return FormulaStrategy(strategy, formula)


__all__ = [
    "FormulaStrategy",
    "HourlyStrategy",
    "LaborPaintStrategy",
    "PricingContext",
    "PricingStrategy",
    "ProductionStrategy",
    "RoomFlatRateStrategy",
    "STRATEGIES",
    "TIER_NUMBERS",
    "TurnkeyStrategy",
    "UnitPricingStrategy",
    "lookup_rate",
    "paint_gallons",
    "paint_material",
    "strategy_for",
]
