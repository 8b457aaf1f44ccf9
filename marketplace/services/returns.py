# marketplace/services/returns.py
# Return requests raised against delivered order lines.

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.core.errors import Forbidden, InvalidRequest, NotFound, ReturnNotAllowed
from marketplace.models.order import Order, OrderItem, OrderStatus
from marketplace.models.return_request import ReturnRequest, ReturnStatus
from marketplace.models.user import RoleEnum, User
from marketplace.services.pricing import money

logger = logging.getLogger(__name__)


def create_return_request(db: Session, buyer: User, order_id: int, product_id: int, reason: str,
                          description: Optional[str] = None, quantity: int = 1) -> ReturnRequest:
    order = db.execute(
        select(Order).where(Order.id == order_id, Order.buyer_id == buyer.id)
    ).scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found or does not belong to you")
    if order.status != OrderStatus.delivered:
        raise ReturnNotAllowed("Only delivered orders can be returned")

    item = db.execute(
        select(OrderItem).where(OrderItem.order_id == order.id, OrderItem.product_id == product_id)
    ).scalars().first()
    if item is None:
        raise InvalidRequest("This product was not found in the specified order")
    if quantity < 1 or quantity > item.quantity:
        raise InvalidRequest(f"Quantity must be between 1 and {item.quantity}")

    existing = db.execute(
        select(ReturnRequest.id).where(
            ReturnRequest.order_id == order.id, ReturnRequest.product_id == product_id
        )
    ).first()
    if existing is not None:
        raise InvalidRequest("A return request has already been submitted for this item")

    request = ReturnRequest(
        user_id=buyer.id,
        order_id=order.id,
        product_id=product_id,
        reason=reason,
        description=description,
        quantity=quantity,
        # Refunds use the price paid, not today's price
        refund_amount=money(item.unit_price * quantity),
        status=ReturnStatus.pending,
    )
    db.add(request)
    db.commit()
    db.refresh(request)
    logger.info(f"Return request {request.id} opened for order {order.order_number}")
    return request


def list_user_returns(db: Session, user_id: int) -> list[ReturnRequest]:
    return list(
        db.execute(
            select(ReturnRequest)
            .where(ReturnRequest.user_id == user_id)
            .order_by(ReturnRequest.created_at.desc(), ReturnRequest.id.desc())
        ).scalars()
    )


def update_return_status(db: Session, actor: User, return_id: int, status,
                         admin_comment: Optional[str] = None) -> ReturnRequest:
    request = db.get(ReturnRequest, return_id)
    if request is None:
        raise NotFound("Return request not found")
    if actor.role == RoleEnum.seller:
        if request.product is None or request.product.seller_id != actor.id:
            raise Forbidden("You can only handle returns for your own products")
    elif actor.role != RoleEnum.admin:
        raise Forbidden("Only sellers and admins can update returns")

    request.status = ReturnStatus(status)
    if admin_comment:
        request.admin_comment = admin_comment
    db.commit()
    db.refresh(request)
    logger.info(f"Return request {request.id} marked {request.status.value}")
    return request
