# marketplace/services/cart.py
# Cart aggregate: per-buyer staging area with derived totals.
# Stock is checked when lines change but never reserved here.

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.core.errors import InsufficientStock, InvalidRequest, NotFound
from marketplace.models.cart import Cart, CartItem
from marketplace.services.catalog import resolve_line
from marketplace.services.pricing import money

logger = logging.getLogger(__name__)


def find_cart(db: Session, user_id: int) -> Optional[Cart]:
    return db.execute(select(Cart).where(Cart.user_id == user_id)).scalar_one_or_none()


def get_or_create_cart(db: Session, user_id: int) -> Cart:
    cart = find_cart(db, user_id)
    if cart is None:
        cart = Cart(user_id=user_id, total_items=0, total_amount=Decimal("0"))
        db.add(cart)
        db.commit()
        db.refresh(cart)
    return cart


def recalculate_totals(cart: Cart) -> None:
    """Recomputes total_items and total_amount from the current lines."""
    total_items = 0
    total_amount = Decimal("0")
    for item in cart.items:
        price = item.product.effective_price
        if item.variant is not None:
            price += Decimal(item.variant.price_adjustment or 0)
        total_items += item.quantity
        total_amount += price * item.quantity
    cart.total_items = total_items
    cart.total_amount = money(total_amount)


def add_item(db: Session, user_id: int, product_id: int, variant_id: Optional[int] = None,
             quantity: int = 1) -> Cart:
    if quantity < 1:
        raise InvalidRequest("Quantity must be at least 1")
    line = resolve_line(db, product_id, variant_id)
    cart = get_or_create_cart(db, user_id)

    existing = next(
        (i for i in cart.items if i.product_id == product_id and i.variant_id == variant_id),
        None,
    )
    new_quantity = existing.quantity + quantity if existing else quantity
    if new_quantity > line.available:
        raise InsufficientStock(line.product.name, line.available, product_id, variant_id)

    if existing:
        existing.quantity = new_quantity
    else:
        cart.items.append(CartItem(product_id=product_id, variant_id=variant_id, quantity=quantity))
    db.flush()
    recalculate_totals(cart)
    db.commit()
    db.refresh(cart)
    return cart


def _owned_item(db: Session, user_id: int, item_id: int) -> CartItem:
    item = db.execute(
        select(CartItem).join(Cart).where(CartItem.id == item_id, Cart.user_id == user_id)
    ).scalar_one_or_none()
    if item is None:
        raise NotFound("Cart item not found")
    return item


def update_item(db: Session, user_id: int, item_id: int, quantity: int) -> Cart:
    if quantity < 1:
        raise InvalidRequest("Quantity must be at least 1")
    item = _owned_item(db, user_id, item_id)
    line = resolve_line(db, item.product_id, item.variant_id)
    if quantity > line.available:
        raise InsufficientStock(line.product.name, line.available, item.product_id, item.variant_id)
    item.quantity = quantity
    cart = item.cart
    recalculate_totals(cart)
    db.commit()
    db.refresh(cart)
    return cart


def remove_item(db: Session, user_id: int, item_id: int) -> Cart:
    item = _owned_item(db, user_id, item_id)
    cart = item.cart
    cart.items.remove(item)
    db.flush()
    recalculate_totals(cart)
    db.commit()
    db.refresh(cart)
    return cart


def clear_cart(db: Session, user_id: int) -> bool:
    """Deletes every line and zeroes the totals without committing.

    Checkout calls this inside its own transaction; returns False when the
    user has no cart.
    """
    cart = find_cart(db, user_id)
    if cart is None:
        return False
    cart.items.clear()
    cart.total_items = 0
    cart.total_amount = Decimal("0")
    db.flush()
    return True
