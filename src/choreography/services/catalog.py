"""Product lookup used when placing orders."""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Protocol, runtime_checkable

from choreography.domain.values import Money, require_identifier
from choreography.exceptions import DomainValidationError


@dataclass(frozen=True)
class ProductInfo:
    """
    Read-only view of a product as needed by the order service.

    Attributes:
        product_id: Product identifier
        name: Display name
        price: Current unit price
        stock_quantity: Units available for sale
    """

    product_id: str
    name: str
    price: Money
    stock_quantity: int

    def __post_init__(self) -> None:
        if self.stock_quantity < 0:
            raise ValueError(f"stock_quantity must be >= 0, got {self.stock_quantity}")


@runtime_checkable
class ProductCatalog(Protocol):
    async def get_product(self, product_id: str) -> ProductInfo:
        """
        Look up a product.

        Raises:
            DomainValidationError: If the product does not exist
        """
        ...


class InMemoryProductCatalog:
    """
    Product catalog backed by a dict.

    Example:
        >>> catalog = InMemoryProductCatalog([
        ...     ProductInfo("prod-1", "Widget", Money.of("29.99", "USD"), 100),
        ... ])
    """

    def __init__(self, products: Iterable[ProductInfo] = ()) -> None:
        self._products: dict[str, ProductInfo] = {p.product_id: p for p in products}
        self._lock = asyncio.Lock()

    def add(self, product: ProductInfo) -> None:
        self._products[product.product_id] = product

    async def get_product(self, product_id: str) -> ProductInfo:
        product_id = require_identifier(product_id, "product_id")
        async with self._lock:
            product = self._products.get(product_id)
        if product is None:
            raise DomainValidationError(f"Unknown product: {product_id}")
        return product

    async def set_stock(self, product_id: str, stock_quantity: int) -> ProductInfo:
        async with self._lock:
            product = self._products.get(product_id)
            if product is None:
                raise DomainValidationError(f"Unknown product: {product_id}")
            updated = replace(product, stock_quantity=stock_quantity)
            self._products[product_id] = updated
            return updated


__all__ = ["InMemoryProductCatalog", "ProductCatalog", "ProductInfo"]
