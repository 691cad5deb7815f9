"""JSON request parsing and response rendering.

Requests are checked against ``schemas/quote_request.schema.json`` with
``jsonschema`` before they are turned into :class:`QuoteRequest` objects.
Responses render every monetary value as a string with two fraction digits.
"""
from __future__ import annotations

import json
import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from jsonschema import Draft7Validator

from .errors import RequestSchemaError, ValidationError
from .models import LineItem, ProductSelection, QuoteRequest, QuoteResponse, QuoteResult, SurfaceInput
from .money import format_money, format_quantity, optional_decimal, to_decimal
from .surfaces import default_unit, measurement_from_dimensions

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"
REQUEST_SCHEMA_PATH = SCHEMA_DIR / "quote_request.schema.json"

_DETAIL_STEP = Decimal("0.0001")


@lru_cache(maxsize=1)
def request_validator() -> Draft7Validator:
    with REQUEST_SCHEMA_PATH.open("r", encoding="utf-8") as f:
        schema = json.load(f)
    Draft7Validator.check_schema(schema)
    return Draft7Validator(schema)


def json_path(parts: Iterable[Any]) -> Optional[str]:
    """``["surfaces", 2, "measurement"]`` -> ``"surfaces[2].measurement"``."""

    text = ""
    for part in parts:
        if isinstance(part, int):
            text += f"[{part}]"
        else:
            text += f".{part}" if text else str(part)
    return text or None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def _surface_from_dict(index: int, raw: Mapping[str, Any]) -> SurfaceInput:
    where = f"surfaces[{index}]"
    surface_type = str(raw["type"]).strip().lower()
    unit = raw.get("unit")
    if raw.get("measurement") is not None:
        measurement = to_decimal(raw["measurement"], field=f"{where}.measurement")
        unit = unit or default_unit(surface_type)
    elif raw.get("dimensions") is not None:
        measurement, unit = measurement_from_dimensions(
            surface_type, raw["dimensions"], unit=unit, field=f"{where}.dimensions"
        )
    else:
        raise ValidationError("Surface needs a measurement or dimensions", field=f"{where}.measurement")
    product_index = raw.get("productIndex")
    return SurfaceInput(
        surface_type=surface_type,
        category=str(raw["category"]),
        measurement=measurement,
        unit=unit,
        product_index=int(product_index) if product_index is not None else None,
        label=raw.get("label"),
    )


def _product_from_dict(index: int, raw: Mapping[str, Any]) -> ProductSelection:
    where = f"products[{index}]"
    brand_id = raw.get("brandId")
    return ProductSelection(
        product_id=int(raw["productId"]),
        sheen=str(raw["sheen"]),
        brand_id=int(brand_id) if brand_id is not None else None,
        price_override=optional_decimal(raw.get("priceOverride"), field=f"{where}.priceOverride"),
        coverage_override=optional_decimal(raw.get("coverageOverride"), field=f"{where}.coverageOverride"),
        gallons=optional_decimal(raw.get("gallons"), field=f"{where}.gallons"),
    )


def parse_request(payload: Mapping[str, Any]) -> QuoteRequest:
    """Validate a request payload and build a :class:`QuoteRequest`.

    Raises
    ------
    RequestSchemaError
        When the payload does not satisfy the request schema; ``field``
        points at the first offending location.
    ValidationError
        When surface dimensions cannot produce a measurement.
    """

    errors = sorted(request_validator().iter_errors(payload), key=lambda error: list(map(str, error.absolute_path)))
    if errors:
        first = errors[0]
        logger.debug("Request failed schema validation with %s error(s)", len(errors))
        raise RequestSchemaError(first.message, field=json_path(first.absolute_path))

    multiplier = payload.get("multiplier")
    crew_size = payload.get("crewSize")
    return QuoteRequest(
        tenant_id=int(payload["tenantId"]),
        pricing_scheme_id=payload.get("pricingSchemeId"),
        surfaces=tuple(_surface_from_dict(index, raw) for index, raw in enumerate(payload["surfaces"])),
        products=tuple(_product_from_dict(index, raw) for index, raw in enumerate(payload.get("products") or [])),
        gbb_tier=payload.get("gbbTier"),
        labor_hours=optional_decimal(payload.get("laborHours"), field="laborHours"),
        material_cost=optional_decimal(payload.get("materialCost"), field="materialCost"),
        multiplier=to_decimal(multiplier, field="multiplier") if multiplier is not None else Decimal("1"),
        crew_size=int(crew_size) if crew_size is not None else None,
        variables={
            str(name): to_decimal(value, field=f"variables.{name}")
            for name, value in (payload.get("variables") or {}).items()
        },
    )


def load_request(path: Path) -> QuoteRequest:
    path = Path(path)
    if not path.exists():
        raise ValidationError(f"Request file not found: {path}", field="request")
    with path.open("r", encoding="utf-8") as f:
        try:
            payload = json.load(f, parse_float=Decimal)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Request is not valid JSON: {exc}") from exc
    return parse_request(payload)


def _number(value: Optional[Decimal]) -> Optional[str]:
    return format_quantity(value) if value is not None else None


def request_to_dict(request: QuoteRequest) -> Dict[str, Any]:
    """Canonical form of a request; equal requests give equal dicts."""

    return {
        "tenantId": request.tenant_id,
        "pricingSchemeId": request.pricing_scheme_id,
        "surfaces": [
            {
                "type": surface.surface_type,
                "category": surface.category,
                "measurement": _number(surface.measurement),
                "unit": surface.unit,
                "productIndex": surface.product_index,
                "label": surface.label,
            }
            for surface in request.surfaces
        ],
        "products": [
            {
                "productId": product.product_id,
                "brandId": product.brand_id,
                "sheen": product.sheen,
                "priceOverride": _number(product.price_override),
                "coverageOverride": _number(product.coverage_override),
                "gallons": _number(product.gallons),
            }
            for product in request.products
        ],
        "gbbTier": request.gbb_tier,
        "laborHours": _number(request.labor_hours),
        "materialCost": _number(request.material_cost),
        "multiplier": _number(request.multiplier),
        "crewSize": request.crew_size,
        "variables": {name: _number(value) for name, value in sorted(request.variables.items())},
    }


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def line_item_to_dict(line: LineItem) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "description": line.description,
        "quantity": format_quantity(line.quantity),
        "unit": line.unit,
        "materialCost": format_money(line.material_cost),
        "laborCost": format_money(line.labor_cost),
        "total": format_money(line.total),
    }
    if line.surface_index is not None:
        payload["surfaceIndex"] = line.surface_index
    if line.details:
        payload["details"] = {
            name: format_quantity(value.quantize(_DETAIL_STEP)) for name, value in sorted(line.details.items())
        }
    return payload


def result_to_dict(result: QuoteResult) -> Dict[str, Any]:
    return {
        "tier": result.tier,
        "lineItems": [line_item_to_dict(line) for line in result.line_items],
        "materialSubtotal": format_money(result.material_subtotal),
        "laborSubtotal": format_money(result.labor_subtotal),
        "markupAmount": format_money(result.markup_amount),
        "overheadAmount": format_money(result.overhead_amount),
        "profitAmount": format_money(result.profit_amount),
        "taxAmount": format_money(result.tax_amount),
        "total": format_money(result.total),
        "depositAmount": format_money(result.deposit_amount),
        "balanceAmount": format_money(result.balance_amount),
        "taxBase": result.tax_base,
        "rateTableVersion": result.rate_table_version,
    }


def response_to_dict(response: QuoteResponse) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "tenantId": response.tenant_id,
        "pricingSchemeId": response.scheme_id,
        "schemeType": response.scheme_type,
        "fingerprint": response.fingerprint,
        "rateTableVersion": response.rate_table_version,
    }
    if response.tiered:
        payload["tiers"] = {name: result_to_dict(result) for name, result in response.quotes.items()}
    else:
        payload["quote"] = result_to_dict(response.quote)
    return payload


def dumps_response(response: QuoteResponse) -> str:
    return json.dumps(response_to_dict(response), indent=2)


__all__ = [
    "REQUEST_SCHEMA_PATH",
    "dumps_response",
    "json_path",
    "line_item_to_dict",
    "load_request",
    "parse_request",
    "request_to_dict",
    "request_validator",
    "response_to_dict",
    "result_to_dict",
]
