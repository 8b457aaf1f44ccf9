# marketplace/api/orders.py
# Checkout, order history, cancellation and seller/admin status updates.
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from marketplace.core.cache import ResponseCache, get_cache, order_key, user_orders_key
from marketplace.core.config import settings
from marketplace.core.errors import PaymentGatewayError
from marketplace.core.security import get_current_user, require_buyer, require_seller
from marketplace.db.session import get_db
from marketplace.models.order import OrderStatus, PaymentMethod
from marketplace.models.user import RoleEnum, User
from marketplace.schemas.order import (
    CancelOrderRequest,
    CreateOrderRequest,
    OrderDetailOut,
    OrderOut,
    UpdateStatusRequest,
)
from marketplace.services import orders as order_service
from marketplace.services.payments import CashfreeClient, create_payment_link, get_gateway

logger = logging.getLogger(__name__)

router = APIRouter()


def _detail(order) -> dict:
    return OrderDetailOut.model_validate(order).model_dump(mode="json")


def _pagination(page: int, limit: int, total: int) -> dict:
    return {
        "current_page": page,
        "total_pages": (total + limit - 1) // limit,
        "total_items": total,
        "items_per_page": limit,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(body: CreateOrderRequest, db: Session = Depends(get_db),
                 current_user: User = Depends(require_buyer),
                 cache: ResponseCache = Depends(get_cache),
                 gateway: CashfreeClient = Depends(get_gateway)):
    lines = [
        order_service.LineRequest(product_id=i.product_id, quantity=i.quantity, variant_id=i.variant_id)
        for i in body.items or []
    ]
    order = order_service.create_order(
        db, current_user, lines, body.shipping_address_id, body.payment_method,
        notes=body.notes, cache=cache,
    )

    if settings.PAYMENT_LINK_ON_CHECKOUT and order.payment_method != PaymentMethod.cod:
        try:
            create_payment_link(db, order, gateway, cache=cache)
        except PaymentGatewayError as e:
            # The order stands; the buyer can request a link again later
            logger.error(f"Payment link for order {order.order_number} failed: {e.message}")
        order = order_service.load_order(db, order.id)

    return {"success": True, "message": "Order created successfully", "data": {"order": _detail(order)}}


@router.get("/my-orders")
def get_user_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                    status: Optional[OrderStatus] = None,
                    sort_by: str = "created_at", sort_order: str = "desc",
                    db: Session = Depends(get_db),
                    current_user: User = Depends(require_buyer),
                    cache: ResponseCache = Depends(get_cache)):
    query = {"page": page, "limit": limit, "status": status.value if status else None,
             "sort_by": sort_by, "sort_order": sort_order}
    key = user_orders_key(current_user.id, query)
    cached = cache.get_json(key)
    if cached is not None:
        return cached

    orders, total = order_service.list_buyer_orders(
        db, current_user.id, page, limit, status, sort_by, sort_order
    )
    payload = {
        "success": True,
        "data": {
            "orders": [OrderOut.model_validate(o).model_dump(mode="json") for o in orders],
            "pagination": _pagination(page, limit, total),
        },
    }
    cache.set_json(key, payload)
    return payload


@router.get("/seller/orders")
def get_seller_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                      status: Optional[OrderStatus] = None,
                      sort_by: str = "created_at", sort_order: str = "desc",
                      db: Session = Depends(get_db),
                      current_user: User = Depends(require_seller)):
    orders, total = order_service.list_seller_orders(
        db, current_user.id, page, limit, status, sort_by, sort_order
    )
    result = []
    for order in orders:
        data = _detail(order)
        if current_user.role == RoleEnum.seller:
            # Only the seller's own lines
            own = {i.id for i in order.items if i.product is not None and i.product.seller_id == current_user.id}
            data["items"] = [i for i in data["items"] if i["id"] in own]
        result.append(data)
    return {"success": True, "data": {"orders": result, "pagination": _pagination(page, limit, total)}}


@router.put("/{order_id}/status")
def update_order_status(order_id: int, body: UpdateStatusRequest, db: Session = Depends(get_db),
                        current_user: User = Depends(require_seller),
                        cache: ResponseCache = Depends(get_cache)):
    order = order_service.update_order_status(
        db, order_id, current_user, body.status,
        tracking_number=body.tracking_number, notes=body.notes, cache=cache,
    )
    return {"success": True, "message": "Order status updated successfully", "data": {"order": _detail(order)}}


@router.put("/{order_id}/cancel")
def cancel_order(order_id: int, body: Optional[CancelOrderRequest] = None,
                 db: Session = Depends(get_db),
                 current_user: User = Depends(require_buyer),
                 cache: ResponseCache = Depends(get_cache)):
    reason = body.reason if body else None
    order = order_service.cancel_order(db, order_id, current_user, reason, cache=cache)
    return {"success": True, "message": "Order cancelled successfully", "data": {"order": _detail(order)}}


@router.get("/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_db),
              current_user: User = Depends(get_current_user),
              cache: ResponseCache = Depends(get_cache)):
    key = order_key(order_id)
    if current_user.role == RoleEnum.buyer:
        cached = cache.get_json(key)
        if cached is not None and cached["data"]["order"]["buyer_id"] == current_user.id:
            return cached

    order = order_service.get_order_for(db, order_id, current_user)
    payload = {"success": True, "data": {"order": _detail(order)}}
    cache.set_json(key, payload)
    return payload
