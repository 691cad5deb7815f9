"""Measurements derived from raw surface dimensions."""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Optional, Tuple

from .errors import ValidationError
from .models import COUNT, DEFAULT_UNIT_BY_SURFACE, LINEAR_FT, SQFT
from .money import ZERO, to_decimal

PERIMETER_SURFACES = {"wall", "siding"}
SINGLE_PLANE_SURFACES = {"accent_wall", "fence"}
FLAT_SURFACES = {"ceiling", "deck", "floor"}


def default_unit(surface_type: str) -> str:
    return DEFAULT_UNIT_BY_SURFACE.get(surface_type, SQFT)


def _dimension(dimensions: Mapping[str, Any], names: Tuple[str, ...], field: str) -> Decimal:
    for name in names:
        if dimensions.get(name) is not None:
            value = to_decimal(dimensions[name], field=f"{field}.{name}")
            if value < ZERO:
                raise ValidationError(f"Dimension '{name}' must not be negative", field=f"{field}.{name}")
            return value
    raise ValidationError(f"Missing dimension '{names[0]}'", field=f"{field}.{names[0]}")


def measurement_from_dimensions(
    surface_type: str,
    dimensions: Mapping[str, Any],
    *,
    unit: Optional[str] = None,
    field: str = "dimensions",
) -> Tuple[Decimal, str]:
    """Return ``(measurement, unit)`` for a surface described by its dimensions.

    Walls and siding use the room perimeter, ``(length + width) * 2 * height``.
    Accent walls and fences are one plane, ``length * height``. Ceilings,
    decks and floors use ``length * width``. Trim-like surfaces take
    ``linearFeet`` and counted items take ``count``. Any area surface may
    pass ``area`` directly.
    """

    unit = unit or default_unit(surface_type)
    if unit == COUNT:
        return _dimension(dimensions, ("count",), field), COUNT
    if unit == LINEAR_FT:
        return _dimension(dimensions, ("linearFeet", "length"), field), LINEAR_FT

    if dimensions.get("area") is not None:
        return _dimension(dimensions, ("area",), field), SQFT
    if surface_type in PERIMETER_SURFACES:
        length = _dimension(dimensions, ("length",), field)
        width = _dimension(dimensions, ("width",), field)
        height = _dimension(dimensions, ("height",), field)
        return (length + width) * 2 * height, SQFT
    if surface_type in SINGLE_PLANE_SURFACES:
        length = _dimension(dimensions, ("length", "linearFeet"), field)
        height = _dimension(dimensions, ("height",), field)
        return length * height, SQFT
    if surface_type in FLAT_SURFACES:
        length = _dimension(dimensions, ("length",), field)
        width = _dimension(dimensions, ("width",), field)
        return length * width, SQFT
    raise ValidationError(
        f"Cannot derive an area for '{surface_type}' from dimensions; give 'area' or a measurement",
        field=field,
    )


__all__ = ["default_unit", "measurement_from_dimensions"]
