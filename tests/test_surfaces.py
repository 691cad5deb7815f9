from __future__ import annotations

from decimal import Decimal

import pytest

from quotecalc.errors import ValidationError
from quotecalc.surfaces import default_unit, measurement_from_dimensions

D = Decimal


@pytest.mark.parametrize(
    "surface_type, dimensions, expected",
    [
        ("wall", {"length": 12, "width": 10, "height": 8}, (D("352"), "sqft")),
        ("siding", {"length": "40", "width": "30", "height": "10"}, (D("1400"), "sqft")),
        ("accent_wall", {"length": 12, "height": 8}, (D("96"), "sqft")),
        ("fence", {"linearFeet": 100, "height": 6}, (D("600"), "sqft")),
        ("ceiling", {"length": 20, "width": 10}, (D("200"), "sqft")),
        ("deck", {"area": 320}, (D("320"), "sqft")),
        ("trim", {"linearFeet": 120}, (D("120"), "linear_ft")),
        ("baseboard", {"length": 44}, (D("44"), "linear_ft")),
        ("door", {"count": 3}, (D("3"), "count")),
    ],
)
def test_measurement_from_dimensions(surface_type, dimensions, expected):
    assert measurement_from_dimensions(surface_type, dimensions) == expected


def test_default_units():
    assert default_unit("wall") == "sqft"
    assert default_unit("trim") == "linear_ft"
    assert default_unit("small_room") == "count"
    assert default_unit("gazebo") == "sqft"


def test_explicit_unit_wins():
    assert measurement_from_dimensions("cabinet", {"area": 40}, unit="sqft") == (D("40"), "sqft")


def test_missing_dimension_names_field():
    with pytest.raises(ValidationError) as excinfo:
        measurement_from_dimensions("wall", {"length": 12, "width": 10}, field="surfaces[2].dimensions")
    assert excinfo.value.field == "surfaces[2].dimensions.height"


def test_negative_dimension_rejected():
    with pytest.raises(ValidationError, match="negative"):
        measurement_from_dimensions("ceiling", {"length": -1, "width": 10})


def test_area_cannot_be_derived_for_unknown_shape():
    with pytest.raises(ValidationError):
        measurement_from_dimensions("gazebo", {"length": 1, "width": 1})
