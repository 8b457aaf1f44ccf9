# marketplace/services/orders.py
# Order core: checkout, cancellation, status transitions and order reads.
#
# Checkout and cancellation are the only multi-statement transactions in the
# system. Both either commit every stock/sales/order change together or roll
# the session back and re-raise.

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, joinedload, selectinload

from marketplace.core.cache import ResponseCache
from marketplace.core.config import settings
from marketplace.core.errors import (
    EmptyOrder,
    Forbidden,
    InsufficientStock,
    InvalidAddress,
    InvalidRequest,
    InvalidStatusTransition,
    NotCancellable,
    OrderNotFound,
)
from marketplace.models.cart import Cart
from marketplace.models.order import (
    CANCELLABLE_STATUSES,
    TERMINAL_STATUSES,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from marketplace.models.product import Product
from marketplace.models.user import RoleEnum, User
from marketplace.services import catalog
from marketplace.services.addresses import find_owned_address
from marketplace.services.cart import clear_cart
from marketplace.services.pricing import compute_totals, line_total

logger = logging.getLogger(__name__)

# Seller-driven progression; cancelled sits outside it
STATUS_RANK = {
    OrderStatus.pending: 0,
    OrderStatus.confirmed: 1,
    OrderStatus.shipped: 2,
    OrderStatus.delivered: 3,
}

SORTABLE_FIELDS = {
    "created_at": Order.created_at,
    "total_amount": Order.total_amount,
    "order_number": Order.order_number,
    "status": Order.status,
}


@dataclass(frozen=True)
class LineRequest:
    product_id: int
    quantity: int
    variant_id: Optional[int] = None

    @property
    def key(self) -> tuple:
        return (self.product_id, self.variant_id)


def generate_order_number() -> str:
    return f"ORD-{uuid.uuid4()}"


def _lines_from_cart(db: Session, buyer_id: int) -> list[LineRequest]:
    cart = db.execute(select(Cart).where(Cart.user_id == buyer_id)).scalar_one_or_none()
    if cart is None:
        return []
    return [
        LineRequest(product_id=i.product_id, quantity=i.quantity, variant_id=i.variant_id)
        for i in cart.items
    ]


def load_order(db: Session, order_id: int) -> Optional[Order]:
    """Order with items, shipping address and buyer eagerly loaded."""
    return db.execute(
        select(Order)
        .options(
            selectinload(Order.items).joinedload(OrderItem.product),
            joinedload(Order.shipping_address),
            joinedload(Order.buyer),
        )
        .where(Order.id == order_id)
    ).scalar_one_or_none()


def _place_order(db: Session, buyer: User, lines: list[LineRequest], shipping_address_id: int,
                 payment_method: PaymentMethod, notes: Optional[str]) -> Order:
    address = find_owned_address(db, shipping_address_id, buyer.id)
    if address is None:
        raise InvalidAddress()

    # Lock catalog rows in a fixed order so concurrent multi-line checkouts
    # cannot deadlock each other
    resolved = {}
    for line in sorted(lines, key=lambda l: catalog.lock_order_key(catalog.target_for(*l.key))):
        if line.key not in resolved:
            resolved[line.key] = catalog.resolve_line(db, line.product_id, line.variant_id, lock=True)

    requested = defaultdict(int)
    for line in lines:
        requested[line.key] += line.quantity
    for key, quantity in requested.items():
        r = resolved[key]
        if quantity > r.available:
            raise InsufficientStock(r.product.name, r.available, key[0], key[1])

    subtotal = Decimal("0")
    priced = []
    for line in lines:
        r = resolved[line.key]
        total_price = line_total(r.unit_price, line.quantity)
        subtotal += total_price
        priced.append((line, r, total_price))
    totals = compute_totals(subtotal)

    order = Order(
        order_number=generate_order_number(),
        buyer_id=buyer.id,
        shipping_address_id=address.id,
        status=OrderStatus.pending,
        subtotal=totals.subtotal,
        tax_amount=totals.tax_amount,
        shipping_amount=totals.shipping_amount,
        discount_amount=totals.discount_amount,
        total_amount=totals.total_amount,
        payment_method=payment_method,
        payment_status=PaymentStatus.pending,
        notes=notes,
    )
    db.add(order)

    for line, r, total_price in priced:
        order.items.append(OrderItem(
            product_id=r.product.id,
            variant_id=r.variant.id if r.variant is not None else None,
            quantity=line.quantity,
            unit_price=r.unit_price,
            total_price=total_price,
            product_name=r.product.name,
            product_sku=r.sku,
            variant_details=r.variant_details,
        ))
        if not catalog.decrement_stock(db, r.target, line.quantity):
            # Lost a race against another checkout since the read above
            available = catalog.get_governing_stock(db, r.target)
            raise InsufficientStock(r.product.name, available, line.product_id, line.variant_id)
        catalog.increment_sales(db, r.product.id, line.quantity)

    clear_cart(db, buyer.id)
    db.flush()
    return order


def create_order(db: Session, buyer: User, items: Optional[Iterable[LineRequest]],
                 shipping_address_id: int, payment_method, notes: Optional[str] = None,
                 cache: Optional[ResponseCache] = None) -> Order:
    """Runs the checkout transaction and returns the committed order.

    When no items are given the buyer's cart lines are ordered instead.
    """
    lines = list(items or [])
    if not lines:
        lines = _lines_from_cart(db, buyer.id)
    if not lines:
        raise EmptyOrder()
    if any(line.quantity < 1 for line in lines):
        raise InvalidRequest("Quantity must be at least 1")

    try:
        order = _place_order(db, buyer, lines, shipping_address_id,
                             PaymentMethod(payment_method), notes)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Order {order.order_number} created for buyer {buyer.id}: "
        f"{len(lines)} line(s), total {order.total_amount}"
    )
    if cache is not None:
        cache.invalidate_order(order.id, buyer.id)
    return load_order(db, order.id)


def _item_target(item: OrderItem) -> Optional[catalog.LineTarget]:
    """Governing counter recorded on the order line, None if it no longer exists."""
    if item.product_id is None:
        return None
    if item.variant_details is not None and item.variant_id is None:
        return None
    return catalog.target_for(item.product_id, item.variant_id)


def cancel_order(db: Session, order_id: int, buyer: User, reason: Optional[str] = None,
                 cache: Optional[ResponseCache] = None) -> Order:
    """Cancels a pending/confirmed order and puts its stock back.

    Quantities and counters come from the order lines, not from the live
    catalog, so the restore is the exact inverse of checkout.
    """
    try:
        order = db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFound()
        if order.buyer_id != buyer.id:
            raise Forbidden("You can only cancel your own orders")
        if order.status not in CANCELLABLE_STATUSES:
            raise NotCancellable(order.status)

        for item in order.items:
            target = _item_target(item)
            if target is None or not catalog.increment_stock(db, target, item.quantity):
                logger.warning(
                    f"Order {order.order_number}: catalog row for item {item.id} is gone, "
                    "stock not restored"
                )
            if item.product_id is not None:
                catalog.decrement_sales(db, item.product_id, item.quantity)

        order.status = OrderStatus.cancelled
        note = f"Cancelled by customer: {reason}" if reason else "Cancelled by customer"
        order.notes = f"{order.notes}\n{note}" if order.notes else note
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Order {order.order_number} cancelled by buyer {buyer.id}")
    if cache is not None:
        cache.invalidate_order(order.id, order.buyer_id)
    return load_order(db, order.id)


def check_transition(current: OrderStatus, target: OrderStatus,
                     strict: Optional[bool] = None) -> None:
    """Raises InvalidStatusTransition when target is not reachable from current.

    Terminal orders never move and sellers never cancel. In strict mode the
    status may only stay put or move forward along
    pending -> confirmed -> shipped -> delivered.
    """
    strict = settings.STRICT_STATUS_TRANSITIONS if strict is None else strict
    if target == OrderStatus.cancelled:
        raise InvalidStatusTransition(current, target)
    if current == target:
        return
    if current in TERMINAL_STATUSES:
        raise InvalidStatusTransition(current, target)
    if strict and STATUS_RANK[target] < STATUS_RANK[current]:
        raise InvalidStatusTransition(current, target)


def seller_owns_item(order: Order, seller_id: int) -> bool:
    return any(
        item.product is not None and item.product.seller_id == seller_id
        for item in order.items
    )


def update_order_status(db: Session, order_id: int, actor: User, status,
                        tracking_number: Optional[str] = None, notes: Optional[str] = None,
                        cache: Optional[ResponseCache] = None) -> Order:
    """Moves an order along the seller-driven status table.

    The write only applies while the order still has the status that was
    checked; a concurrent change surfaces as InvalidStatusTransition.
    """
    target = OrderStatus(status)
    try:
        order = db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFound()
        if actor.role == RoleEnum.seller:
            if not seller_owns_item(order, actor.id):
                raise Forbidden("You can only update orders containing your products")
        elif actor.role != RoleEnum.admin:
            raise Forbidden("Only sellers and admins can update order status")

        observed = order.status
        check_transition(observed, target)

        now = datetime.utcnow()
        values = {"status": target, "updated_at": now}
        if tracking_number:
            values["tracking_number"] = tracking_number
        if notes:
            values["notes"] = notes
        # Stamps are set once; repeated calls keep the first value
        if target == OrderStatus.shipped:
            values["shipped_at"] = func.coalesce(Order.shipped_at, now)
        if target == OrderStatus.delivered:
            values["delivered_at"] = func.coalesce(Order.delivered_at, now)

        result = db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == observed)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = db.execute(select(Order.status).where(Order.id == order.id)).scalar_one()
            raise InvalidStatusTransition(current, target)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Order {order.order_number} set to {target.value} by {actor.role.value} {actor.id}")
    if cache is not None:
        cache.invalidate_order(order.id, order.buyer_id)
    return load_order(db, order.id)


def get_order_for(db: Session, order_id: int, user: User) -> Order:
    """Reads one order; buyers see their own, sellers orders with their products.

    Orders the user may not see are reported as missing.
    """
    order = load_order(db, order_id)
    if order is None:
        raise OrderNotFound()
    if user.role == RoleEnum.buyer and order.buyer_id != user.id:
        raise OrderNotFound()
    if user.role == RoleEnum.seller and not seller_owns_item(order, user.id):
        raise OrderNotFound()
    return order


def _sort_clause(sort_by: str, sort_order: str) -> tuple:
    column = SORTABLE_FIELDS.get(sort_by)
    if column is None:
        raise InvalidRequest(f"Cannot sort by '{sort_by}'")
    # Ties broken by id in the same direction
    if sort_order.lower() == "asc":
        return column.asc(), Order.id.asc()
    return column.desc(), Order.id.desc()


def list_buyer_orders(db: Session, buyer_id: int, page: int = 1, limit: int = 10,
                      status: Optional[OrderStatus] = None, sort_by: str = "created_at",
                      sort_order: str = "desc") -> tuple[list[Order], int]:
    conditions = [Order.buyer_id == buyer_id]
    if status is not None:
        conditions.append(Order.status == status)
    total = db.execute(select(func.count(Order.id)).where(*conditions)).scalar_one()
    orders = db.execute(
        select(Order)
        .options(selectinload(Order.items), joinedload(Order.shipping_address))
        .where(*conditions)
        .order_by(*_sort_clause(sort_by, sort_order))
        .limit(limit)
        .offset((page - 1) * limit)
    ).scalars().all()
    return list(orders), total


def list_seller_orders(db: Session, seller_id: int, page: int = 1, limit: int = 10,
                       status: Optional[OrderStatus] = None, sort_by: str = "created_at",
                       sort_order: str = "desc") -> tuple[list[Order], int]:
    """Orders containing at least one of the seller's products."""
    seller_order_ids = (
        select(OrderItem.order_id)
        .join(Product, OrderItem.product_id == Product.id)
        .where(Product.seller_id == seller_id)
    )
    conditions = [Order.id.in_(seller_order_ids)]
    if status is not None:
        conditions.append(Order.status == status)
    total = db.execute(select(func.count(Order.id)).where(*conditions)).scalar_one()
    orders = db.execute(
        select(Order)
        .options(
            selectinload(Order.items).joinedload(OrderItem.product),
            joinedload(Order.shipping_address),
            joinedload(Order.buyer),
        )
        .where(*conditions)
        .order_by(*_sort_clause(sort_by, sort_order))
        .limit(limit)
        .offset((page - 1) * limit)
    ).scalars().all()
    return list(orders), total
