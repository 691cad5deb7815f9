from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from quotecalc.catalog import Catalog, Product, SheenSpec
from quotecalc.engine import QuoteEngine
from quotecalc.gbb import InMemoryGBBConfigProvider
from quotecalc.models import (
    COUNT,
    LINEAR_FT,
    LaborCategory,
    MaterialDefaults,
    PricingScheme,
    ProductSelection,
    QuoteRequest,
    RateTable,
    SurfaceInput,
)
from quotecalc.rates import InMemoryRateTableProvider, SchemeRegistry

D = Decimal

ROOT = Path(__file__).resolve().parents[1]
DATA_FILE = ROOT / "data_sample" / "pricing_data.json"
REQUEST_FILE = ROOT / "data_sample" / "quote_request.json"


def make_table(**overrides) -> RateTable:
    values = dict(
        tenant_id=1,
        labor_categories={
            "wall": LaborCategory(D("1.25")),
            "ceiling": LaborCategory(D("1.10")),
            "trim": LaborCategory(D("2.00"), LINEAR_FT),
            "door": LaborCategory(D("45"), COUNT),
        },
        production_rates={"wall": D("150"), "door": D("1.5")},
        flat_unit_prices={"door": D("85"), "small_room": D("350")},
        turnkey_rates={"interior": D("3.50"), "exterior": D("4.25")},
        crew_size_default=2,
        hourly_rate=D("55"),
        billable_labor_rate=D("65"),
        material_defaults=MaterialDefaults(
            coverage=D("350"),
            coats=D("2"),
            waste_factor=D("1.1"),
            cost_per_gallon=D("40"),
        ),
        version="v1",
    )
    values.update(overrides)
    return RateTable(**values)


def make_catalog() -> Catalog:
    return Catalog(
        [
            Product(
                id=101,
                brand_id=1,
                name="ProClassic Interior",
                sheens={
                    "Eggshell": SheenSpec("Eggshell", D("45.00"), D("375")),
                    "Flat": SheenSpec("Flat", D("42.50"), D("400")),
                    "Semi-Gloss": SheenSpec("Semi-Gloss", D("48.00"), D("350")),
                },
            ),
            Product(
                id=102,
                brand_id=1,
                name="Duration Exterior",
                sheens={"Satin": SheenSpec("Satin", D("62.00"), D("325"))},
            ),
        ],
        brands={1: "Sherwin-Williams"},
    )


def surface(surface_type="wall", measurement="700", category="interior", unit="sqft", **kwargs) -> SurfaceInput:
    return SurfaceInput(surface_type=surface_type, category=category, measurement=D(measurement), unit=unit, **kwargs)


def make_request(*surfaces, scheme_id=1, products=(), **kwargs) -> QuoteRequest:
    return QuoteRequest(
        tenant_id=kwargs.pop("tenant_id", 1),
        pricing_scheme_id=scheme_id,
        surfaces=tuple(surfaces),
        products=tuple(products),
        **kwargs,
    )


def eggshell(**kwargs) -> ProductSelection:
    return ProductSelection(product_id=101, sheen="Eggshell", **kwargs)


@pytest.fixture
def catalog() -> Catalog:
    return make_catalog()


@pytest.fixture
def table() -> RateTable:
    return make_table()


@pytest.fixture
def engine_for(catalog):
    """Build an engine over ``schemes`` and one tenant rate table."""

    def build(*schemes: PricingScheme, table: RateTable = None, gbb=(), **kwargs) -> QuoteEngine:
        return QuoteEngine(
            catalog,
            InMemoryRateTableProvider([table or make_table()]),
            SchemeRegistry(schemes),
            InMemoryGBBConfigProvider(gbb),
            **kwargs,
        )

    return build
