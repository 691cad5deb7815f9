from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import make_catalog
from quotecalc.catalog import Catalog, normalize_sheen
from quotecalc.errors import ConfigurationError, InvalidSheenError, UnknownProductError, ValidationError
from quotecalc.models import ProductSelection

D = Decimal


def test_resolve_returns_price_and_coverage():
    price = make_catalog().resolve(101, "Eggshell")
    assert price.price_per_gallon == D("45.00")
    assert price.coverage_rate == D("375")


@pytest.mark.parametrize("sheen", ["semi gloss", "Semi_Gloss", " SEMI-GLOSS "])
def test_sheen_names_are_normalized(sheen):
    assert normalize_sheen(sheen) == "semi-gloss"
    assert make_catalog().resolve(101, sheen).price_per_gallon == D("48.00")


def test_unknown_product():
    with pytest.raises(UnknownProductError) as excinfo:
        make_catalog().resolve(999, "Flat", field="products[0]")
    assert excinfo.value.field == "products[0].productId"
    assert excinfo.value.kind == "validation"


def test_sheen_outside_declared_set():
    with pytest.raises(InvalidSheenError) as excinfo:
        make_catalog().resolve(102, "Gloss", field="products[1]")
    assert excinfo.value.field == "products[1].sheen"
    assert "Satin" in excinfo.value.message


def test_overrides_apply_to_selection():
    resolved = make_catalog().resolve_selection(
        ProductSelection(101, "Flat", price_override=D("39.99"), coverage_override=D("300"), gallons=D("2"))
    )
    assert resolved.price_per_gallon == D("39.99")
    assert resolved.coverage_rate == D("300")
    assert resolved.coverage_overridden is True
    assert resolved.gallons == D("2")
    assert resolved.description == "ProClassic Interior (Flat)"


def test_non_positive_coverage_override_rejected():
    with pytest.raises(ValidationError) as excinfo:
        make_catalog().resolve_selection(ProductSelection(101, "Flat", coverage_override=D("0")), field="products[0]")
    assert excinfo.value.field == "products[0].coverageOverride"


def test_brand_mismatch_rejected():
    with pytest.raises(ValidationError, match="belongs to brand 1"):
        make_catalog().resolve_selection(ProductSelection(101, "Flat", brand_id=2))


def test_from_dict_reads_sheens_and_brands():
    catalog = Catalog.from_dict(
        {
            "catalogVersion": "7",
            "brands": [{"id": 3, "name": "Behr"}],
            "products": [
                {"id": 5, "brandId": 3, "name": "Ultra", "sheens": {"Satin": {"pricePerGallon": "$41.50", "coverage": 400}}}
            ],
        }
    )
    assert catalog.version == "7"
    assert catalog.brand_name(3) == "Behr"
    assert 5 in catalog
    assert catalog.resolve(5, "satin").price_per_gallon == D("41.50")


def test_from_dict_rejects_bad_catalog_entries():
    with pytest.raises(ConfigurationError):
        Catalog.from_dict({"products": [{"id": 1, "sheens": {"Flat": {"pricePerGallon": "n/a", "coverage": 300}}}]})
    with pytest.raises(ConfigurationError, match="no sheens"):
        Catalog.from_dict({"products": [{"id": 1, "sheens": {}}]})
