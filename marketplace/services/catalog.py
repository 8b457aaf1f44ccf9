# marketplace/services/catalog.py
# Catalog store: governing-stock resolution and atomic stock/sales counters.
#
# A line item is governed either by the product's stock counter or by one
# variant's counter. LineTarget captures which one, and every stock mutation
# goes through a conditional UPDATE so concurrent checkouts can never
# overdraw a counter even when the preceding read was stale.

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from marketplace.core.errors import ProductUnavailable, VariantUnavailable
from marketplace.models.product import Product, ProductVariant, ProductStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductTarget:
    product_id: int


@dataclass(frozen=True)
class VariantTarget:
    product_id: int
    variant_id: int


LineTarget = Union[ProductTarget, VariantTarget]


def target_for(product_id: int, variant_id: Optional[int] = None) -> LineTarget:
    if variant_id is not None:
        return VariantTarget(product_id, variant_id)
    return ProductTarget(product_id)


def lock_order_key(target: LineTarget) -> tuple:
    """Sort key that makes every transaction lock catalog rows in the same order."""
    if isinstance(target, VariantTarget):
        return (target.product_id, target.variant_id)
    return (target.product_id, 0)


def _stock_row(target: LineTarget):
    if isinstance(target, VariantTarget):
        return ProductVariant, target.variant_id
    return Product, target.product_id


@dataclass
class ResolvedLine:
    """A line target with the catalog rows and pricing it resolved to."""

    target: LineTarget
    product: Product
    variant: Optional[ProductVariant]
    unit_price: Decimal
    available: int

    @property
    def sku(self) -> str:
        return self.variant.sku if self.variant is not None else self.product.sku

    @property
    def variant_details(self) -> Optional[dict]:
        return self.variant.details() if self.variant is not None else None


def resolve_line(db: Session, product_id: int, variant_id: Optional[int] = None,
                 lock: bool = False) -> ResolvedLine:
    """Loads the product (and variant) for a line and works out stock and price.

    With lock=True the rows are read with SELECT ... FOR UPDATE so the stock
    seen here stays valid until the surrounding transaction ends.
    """
    stmt = select(Product).where(Product.id == product_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    product = db.execute(stmt).scalar_one_or_none()
    if product is None or product.status != ProductStatus.active:
        raise ProductUnavailable(product_id)

    if variant_id is None:
        return ResolvedLine(
            target=ProductTarget(product.id),
            product=product,
            variant=None,
            unit_price=product.effective_price,
            available=product.stock_quantity,
        )

    vstmt = select(ProductVariant).where(
        ProductVariant.id == variant_id, ProductVariant.product_id == product.id
    )
    if lock:
        vstmt = vstmt.with_for_update().execution_options(populate_existing=True)
    variant = db.execute(vstmt).scalar_one_or_none()
    if variant is None or not variant.is_active:
        raise VariantUnavailable(variant_id)

    return ResolvedLine(
        target=VariantTarget(product.id, variant.id),
        product=product,
        variant=variant,
        unit_price=product.effective_price + Decimal(variant.price_adjustment or 0),
        available=variant.stock_quantity,
    )


def get_governing_stock(db: Session, target: LineTarget) -> int:
    """Current committed-or-own-transaction stock for the target, 0 if the row is gone."""
    model, row_id = _stock_row(target)
    value = db.execute(select(model.stock_quantity).where(model.id == row_id)).scalar_one_or_none()
    return value or 0


def decrement_stock(db: Session, target: LineTarget, quantity: int) -> bool:
    """Takes quantity off the governing counter only if enough stock remains.

    Returns False when the counter would go negative; nothing is changed then.
    """
    model, row_id = _stock_row(target)
    result = db.execute(
        update(model)
        .where(model.id == row_id, model.stock_quantity >= quantity)
        .values(stock_quantity=model.stock_quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def increment_stock(db: Session, target: LineTarget, quantity: int) -> bool:
    """Returns False when the governing row no longer exists."""
    model, row_id = _stock_row(target)
    result = db.execute(
        update(model)
        .where(model.id == row_id)
        .values(stock_quantity=model.stock_quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def increment_sales(db: Session, product_id: int, quantity: int) -> None:
    db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(total_sales=Product.total_sales + quantity)
        .execution_options(synchronize_session=False)
    )


def decrement_sales(db: Session, product_id: int, quantity: int) -> None:
    # Floored at zero
    db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(
            total_sales=case(
                (Product.total_sales >= quantity, Product.total_sales - quantity),
                else_=0,
            )
        )
        .execution_options(synchronize_session=False)
    )
