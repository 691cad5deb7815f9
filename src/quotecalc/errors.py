"""Error taxonomy for quote computation.

Every error raised by the engine derives from :class:`QuoteError` and
carries a ``kind`` plus the offending ``field`` so callers can point at a
specific surface, product line, or configuration entry.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class QuoteError(Exception):
    """Base class for all quote computation failures."""

    kind = "error"

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "kind": self.kind,
            "error": type(self).__name__,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return payload


# ---------------------------------------------------------------------------
# Bad input
# ---------------------------------------------------------------------------


class ValidationError(QuoteError):
    """Request input is missing or invalid; raised before computation."""

    kind = "validation"


class RequestSchemaError(ValidationError):
    """Request JSON does not satisfy the quote request schema."""


class UnknownProductError(ValidationError):
    """Selected product id is not in the catalog."""

    def __init__(self, product_id: int, *, field: Optional[str] = None) -> None:
        super().__init__(f"Unknown product id {product_id}", field=field)
        self.product_id = product_id


class InvalidSheenError(ValidationError):
    """Selected sheen is not offered for the product."""

    def __init__(self, product_id: int, sheen: str, allowed, *, field: Optional[str] = None) -> None:
        allowed_text = ", ".join(sorted(allowed)) or "(none)"
        super().__init__(
            f"Sheen '{sheen}' is not available for product {product_id}; allowed: {allowed_text}",
            field=field,
        )
        self.product_id = product_id
        self.sheen = sheen


# ---------------------------------------------------------------------------
# Setup problems
# ---------------------------------------------------------------------------


class ConfigurationError(QuoteError):
    """Tenant configuration is incomplete or inconsistent."""

    kind = "configuration"


class NoRateTableError(ConfigurationError):
    def __init__(self, tenant_id: int) -> None:
        super().__init__(f"No rate table configured for tenant {tenant_id}", field="tenantId")
        self.tenant_id = tenant_id


class NoDefaultSchemeError(ConfigurationError):
    pass


class UnknownSchemeTypeError(ConfigurationError):
    def __init__(self, scheme_type: str, *, field: Optional[str] = None) -> None:
        super().__init__(f"Unknown pricing scheme type '{scheme_type}'", field=field)
        self.scheme_type = scheme_type


class ProtectedSchemeError(ConfigurationError):
    """Edit of a protected scheme was refused by the external gate."""


# ---------------------------------------------------------------------------
# Formula problems
# ---------------------------------------------------------------------------


class FormulaError(QuoteError):
    """A contractor formula could not be parsed or evaluated."""

    kind = "formula"

    def __init__(
        self,
        message: str,
        *,
        formula: str,
        scheme_id: Optional[int] = None,
        position: Optional[int] = None,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message, field=field)
        self.formula = formula
        self.scheme_id = scheme_id
        self.position = position

    def __str__(self) -> str:
        scheme = f"scheme {self.scheme_id}: " if self.scheme_id is not None else ""
        return f"{scheme}{self.message} in formula {self.formula!r}"

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["formula"] = self.formula
        if self.scheme_id is not None:
            payload["schemeId"] = self.scheme_id
        if self.position is not None:
            payload["position"] = self.position
        return payload


class FormulaSyntaxError(FormulaError):
    pass


class UnknownVariableError(FormulaError):
    def __init__(self, name: str, *, formula: str, scheme_id: Optional[int] = None) -> None:
        super().__init__(f"Unknown variable '{name}'", formula=formula, scheme_id=scheme_id)
        self.name = name


class DivisionByZeroError(FormulaError):
    pass


# ---------------------------------------------------------------------------
# Engine bugs
# ---------------------------------------------------------------------------


class ComputationError(QuoteError):
    """An internal invariant was violated while computing a quote."""

    kind = "computation"


__all__ = [
    "QuoteError",
    "ValidationError",
    "RequestSchemaError",
    "UnknownProductError",
    "InvalidSheenError",
    "ConfigurationError",
    "NoRateTableError",
    "NoDefaultSchemeError",
    "UnknownSchemeTypeError",
    "ProtectedSchemeError",
    "FormulaError",
    "FormulaSyntaxError",
    "UnknownVariableError",
    "DivisionByZeroError",
    "ComputationError",
]
