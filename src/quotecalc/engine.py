"""Quote engine: validates a request and prices it against one set of snapshots.

Computation is all or nothing. Any error propagates to the caller and no
partial result is returned. The engine holds no mutable state, so one
instance may serve any number of threads.
"""
from __future__ import annotations

import hashlib
import json
import logging
import time
from decimal import InvalidOperation, Overflow
from typing import Dict, Optional

from .aggregator import aggregate
from .catalog import Catalog
from .errors import ComputationError, ValidationError
from .formula import BASE_VARIABLES, DEFAULT_MAX_DEPTH, DEFAULT_MAX_LENGTH
from .gbb import GBBConfigProvider, resolve_tiers, tier_ordering_issues
from .models import CATEGORIES, TIERS, UNITS, PricingScheme, QuoteRequest, QuoteResponse, QuoteResult
from .money import ZERO
from .rates import RateTableProvider, SchemeRegistry
from .serialization import request_to_dict
from .strategies import PricingContext, strategy_for

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 250
UNTIERED = "base"


def validate_request(request: QuoteRequest) -> None:
    """Reject bad input before any lookup or computation."""

    if request.tenant_id is None or request.tenant_id <= 0:
        raise ValidationError("tenantId must be a positive integer", field="tenantId")
    if request.gbb_tier is not None and request.gbb_tier not in TIERS:
        raise ValidationError(f"gbbTier must be one of {', '.join(TIERS)} or null", field="gbbTier")
    for index, surface in enumerate(request.surfaces):
        where = f"surfaces[{index}]"
        if not surface.surface_type:
            raise ValidationError("Surface type is required", field=f"{where}.type")
        if surface.category not in CATEGORIES:
            raise ValidationError(
                f"Category must be interior or exterior, got '{surface.category}'",
                field=f"{where}.category",
            )
        if surface.unit not in UNITS:
            raise ValidationError(f"Unknown unit '{surface.unit}'", field=f"{where}.unit")
        if surface.measurement < ZERO:
            raise ValidationError("Measurement must not be negative", field=f"{where}.measurement")
        if surface.product_index is not None and not 0 <= surface.product_index < len(request.products):
            raise ValidationError(
                f"productIndex {surface.product_index} does not refer to a selected product",
                field=f"{where}.productIndex",
            )
    for index, product in enumerate(request.products):
        where = f"products[{index}]"
        for name in ("price_override", "gallons"):
            value = getattr(product, name)
            if value is not None and value < ZERO:
                raise ValidationError(f"{name} must not be negative", field=f"{where}.{name}")
    if request.labor_hours is not None and request.labor_hours < ZERO:
        raise ValidationError("laborHours must not be negative", field="laborHours")
    if request.material_cost is not None and request.material_cost < ZERO:
        raise ValidationError("materialCost must not be negative", field="materialCost")
    if request.multiplier < ZERO:
        raise ValidationError("multiplier must not be negative", field="multiplier")
    if request.crew_size is not None and request.crew_size < 1:
        raise ValidationError("crewSize must be at least 1", field="crewSize")
    for name in request.variables:
        if name in BASE_VARIABLES:
            raise ValidationError(f"Variable '{name}' is built in and cannot be supplied", field=f"variables.{name}")


def fingerprint(
    request: QuoteRequest,
    scheme: PricingScheme,
    rate_table_version: str,
    gbb_version: str,
    catalog_version: str = "0",
) -> str:
    """Stable hash of everything that determines a quote."""

    payload = {
        "scheme": {
            "id": scheme.id,
            "type": scheme.scheme_type,
            "formula": scheme.formula.strip() if scheme.uses_formula else None,
            "variables": {name: str(value) for name, value in scheme.variables.items()},
        },
        "rateTableVersion": rate_table_version,
        "gbbVersion": gbb_version,
        "catalogVersion": catalog_version,
        "request": request_to_dict(request),
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class QuoteEngine:
    def __init__(
        self,
        catalog: Catalog,
        rates: RateTableProvider,
        schemes: SchemeRegistry,
        gbb: Optional[GBBConfigProvider] = None,
        *,
        max_formula_length: int = DEFAULT_MAX_LENGTH,
        max_formula_depth: int = DEFAULT_MAX_DEPTH,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self.catalog = catalog
        self.rates = rates
        self.schemes = schemes
        self.gbb = gbb
        self.max_formula_length = max_formula_length
        self.max_formula_depth = max_formula_depth
        self.timeout_ms = timeout_ms

    def compute(self, request: QuoteRequest) -> QuoteResponse:
        started = time.perf_counter()
        validate_request(request)

        # One snapshot of each provider for the whole computation.
        rate_table = self.rates.get(request.tenant_id)
        scheme = self.schemes.resolve(request.tenant_id, request.pricing_scheme_id)
        gbb_config = self.gbb.get(request.tenant_id, scheme.id) if self.gbb is not None else None
        for name in request.variables:
            if name not in scheme.variables:
                raise ValidationError(
                    f"Scheme {scheme.id} does not declare a variable named '{name}'",
                    field=f"variables.{name}",
                )

        strategy = strategy_for(
            scheme,
            max_length=self.max_formula_length,
            max_depth=self.max_formula_depth,
        )
        products = tuple(
            self.catalog.resolve_selection(selection, field=f"products[{index}]")
            for index, selection in enumerate(request.products)
        )
        tables = resolve_tiers(rate_table, gbb_config, request.gbb_tier)
        tiered = gbb_config is not None and gbb_config.enabled

        quotes: Dict[str, QuoteResult] = {}
        for tier, table in tables:
            context = PricingContext(
                request=request,
                scheme=scheme,
                rate_table=table,
                products=products,
                tier=tier,
            )
            try:
                result = strategy.price(context)
                for line in result.line_items:
                    logger.debug(
                        "  %s: %s %s %s material=%s labor=%s",
                        tier or UNTIERED,
                        line.description,
                        line.quantity,
                        line.unit,
                        line.material_cost,
                        line.labor_cost,
                    )
                quotes[tier or UNTIERED] = aggregate(result, table, tier=tier)
            except (InvalidOperation, Overflow):
                raise ComputationError(
                    f"Quote amounts for {tier or UNTIERED} are out of range", field="surfaces"
                ) from None

        if len(quotes) > 1:
            for issue in tier_ordering_issues({name: quote.total for name, quote in quotes.items()}):
                logger.warning("Scheme %s: %s", scheme.id, issue.message)

        response = QuoteResponse(
            tenant_id=request.tenant_id,
            scheme_id=scheme.id,
            scheme_type=scheme.scheme_type,
            fingerprint=fingerprint(
                request,
                scheme,
                rate_table.version,
                gbb_config.version if gbb_config is not None else "0",
                self.catalog.version,
            ),
            rate_table_version=rate_table.version,
            quotes=quotes,
            tiered=tiered,
        )

        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > self.timeout_ms:
            logger.warning(
                "Quote for tenant %s took %.1f ms (budget %s ms)", request.tenant_id, elapsed_ms, self.timeout_ms
            )
        logger.info(
            "Priced tenant %s scheme %s (%s): %s",
            request.tenant_id,
            scheme.id,
            scheme.scheme_type,
            ", ".join(f"{name}={quote.total}" for name, quote in quotes.items()),
        )
        return response


__all__ = ["QuoteEngine", "UNTIERED", "fingerprint", "validate_request"]
