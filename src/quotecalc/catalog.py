"""Catalog resolver: (product, sheen) selections to price per gallon and coverage."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional

from .errors import ConfigurationError, InvalidSheenError, UnknownProductError, ValidationError
from .models import ProductSelection
from .money import to_decimal

logger = logging.getLogger(__name__)

_SHEEN_SEPARATORS = re.compile(r"[\s_]+")


def normalize_sheen(value: str) -> str:
    """Canonical sheen key: ``"Semi Gloss"`` and ``"semi-gloss"`` compare equal."""

    return _SHEEN_SEPARATORS.sub("-", str(value or "").strip()).casefold()


@dataclass(frozen=True)
class SheenSpec:
    name: str
    price_per_gallon: Decimal
    coverage: Decimal


@dataclass(frozen=True)
class Product:
    id: int
    brand_id: Optional[int]
    name: str
    sheens: Mapping[str, SheenSpec] = field(default_factory=dict)

    def __post_init__(self) -> None:
        keyed = {normalize_sheen(key): spec for key, spec in dict(self.sheens).items()}
        object.__setattr__(self, "sheens", MappingProxyType(keyed))

    @property
    def sheen_names(self) -> list[str]:
        return [spec.name for spec in self.sheens.values()]


@dataclass(frozen=True)
class CatalogPrice:
    price_per_gallon: Decimal
    coverage_rate: Decimal


@dataclass(frozen=True)
class ResolvedProduct:
    """A product selection with overrides applied, ready for material math."""

    product_id: int
    name: str
    sheen: str
    price_per_gallon: Decimal
    coverage_rate: Decimal
    coverage_overridden: bool = False
    gallons: Optional[Decimal] = None

    @property
    def description(self) -> str:
        return f"{self.name} ({self.sheen})"


class Catalog:
    """Read-only product catalog snapshot."""

    def __init__(
        self,
        products: Iterable[Product],
        brands: Optional[Mapping[int, str]] = None,
        version: str = "0",
    ) -> None:
        self._products: Dict[int, Product] = {product.id: product for product in products}
        self._brands: Dict[int, str] = dict(brands or {})
        self.version = version

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._products

    def __len__(self) -> int:
        return len(self._products)

    def product(self, product_id: int, *, field: Optional[str] = None) -> Product:
        try:
            return self._products[product_id]
        except KeyError:
            raise UnknownProductError(product_id, field=field) from None

    def brand_name(self, brand_id: Optional[int]) -> Optional[str]:
        if brand_id is None:
            return None
        return self._brands.get(brand_id)

    def resolve(self, product_id: int, sheen: str, *, field: Optional[str] = None) -> CatalogPrice:
        """Price per gallon and coverage rate for ``product_id`` in ``sheen``.

        Raises
        ------
        UnknownProductError
            When the product is not in the catalog.
        InvalidSheenError
            When the sheen is not one of the product's declared sheens.
        """

        product = self.product(product_id, field=f"{field}.productId" if field else None)
        spec = product.sheens.get(normalize_sheen(sheen))
        if spec is None:
            raise InvalidSheenError(
                product_id,
                sheen,
                product.sheen_names,
                field=f"{field}.sheen" if field else None,
            )
        return CatalogPrice(price_per_gallon=spec.price_per_gallon, coverage_rate=spec.coverage)

    def resolve_selection(self, selection: ProductSelection, *, field: Optional[str] = None) -> ResolvedProduct:
        """Resolve a selection and apply its price/coverage overrides."""

        price = self.resolve(selection.product_id, selection.sheen, field=field)
        product = self._products[selection.product_id]
        if selection.brand_id is not None and product.brand_id is not None and selection.brand_id != product.brand_id:
            raise ValidationError(
                f"Product {product.id} belongs to brand {product.brand_id}, not {selection.brand_id}",
                field=f"{field}.brandId" if field else None,
            )

        price_per_gallon = price.price_per_gallon
        if selection.price_override is not None:
            price_per_gallon = selection.price_override
        coverage = price.coverage_rate
        if selection.coverage_override is not None:
            if selection.coverage_override <= 0:
                raise ValidationError(
                    "Coverage override must be positive",
                    field=f"{field}.coverageOverride" if field else None,
                )
            coverage = selection.coverage_override
        elif coverage <= 0:
            raise ConfigurationError(
                f"Catalog coverage for product {product.id} ({selection.sheen}) must be positive",
                field=f"products[{product.id}].sheens.{selection.sheen}.coverage",
            )

        spec = product.sheens[normalize_sheen(selection.sheen)]
        return ResolvedProduct(
            product_id=product.id,
            name=product.name,
            sheen=spec.name,
            price_per_gallon=price_per_gallon,
            coverage_rate=coverage,
            coverage_overridden=selection.coverage_override is not None,
            gallons=selection.gallons,
        )

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Catalog":
        """Build a catalog from the ``brands``/``products`` sections of a data file."""

        brands: Dict[int, str] = {}
        for entry in raw.get("brands") or []:
            brands[int(entry["id"])] = str(entry.get("name", ""))

        products = []
        for index, entry in enumerate(raw.get("products") or []):
            where = f"products[{index}]"
            sheens: Dict[str, SheenSpec] = {}
            for sheen_name, values in (entry.get("sheens") or {}).items():
                values = values or {}
                sheens[sheen_name] = SheenSpec(
                    name=str(sheen_name),
                    price_per_gallon=to_decimal(
                        values.get("pricePerGallon"),
                        field=f"{where}.sheens.{sheen_name}.pricePerGallon",
                        error=ConfigurationError,
                    ),
                    coverage=to_decimal(
                        values.get("coverage"),
                        field=f"{where}.sheens.{sheen_name}.coverage",
                        error=ConfigurationError,
                    ),
                )
            if not sheens:
                raise ConfigurationError(f"Product {entry.get('id')} declares no sheens", field=f"{where}.sheens")
            brand_id = entry.get("brandId")
            products.append(
                Product(
                    id=int(entry["id"]),
                    brand_id=int(brand_id) if brand_id is not None else None,
                    name=str(entry.get("name") or f"Product {entry['id']}"),
                    sheens=sheens,
                )
            )
        logger.debug("Catalog loaded with %s products and %s brands", len(products), len(brands))
        return cls(products, brands=brands, version=str(raw.get("catalogVersion", "0")))


__all__ = [
    "Catalog",
    "CatalogPrice",
    "Product",
    "ResolvedProduct",
    "SheenSpec",
    "normalize_sheen",
]
