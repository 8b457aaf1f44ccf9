# marketplace/api/payments.py
# Payment links and the gateway webhook receiver.
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from marketplace.core.cache import ResponseCache, get_cache
from marketplace.core.errors import Forbidden, NotFound, OrderNotFound
from marketplace.core.security import get_current_user
from marketplace.db.session import get_db
from marketplace.models.user import RoleEnum, User
from marketplace.schemas.payment import PaymentLinkRequest
from marketplace.services import orders as order_service
from marketplace.services import payments as payment_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _ensure_payer(order, user: User) -> None:
    if order.buyer_id != user.id and user.role != RoleEnum.admin:
        raise Forbidden("You can only pay for your own orders")


@router.post("/create-payment-link")
def create_payment_link(body: PaymentLinkRequest, db: Session = Depends(get_db),
                        current_user: User = Depends(get_current_user),
                        gateway: payment_service.CashfreeClient = Depends(payment_service.get_gateway),
                        cache: ResponseCache = Depends(get_cache)):
    order = order_service.load_order(db, body.order_id)
    if order is None:
        raise OrderNotFound()
    _ensure_payer(order, current_user)
    link = payment_service.create_payment_link(db, order, gateway, body.return_url, cache=cache)
    return {"success": True, "data": link}


@router.get("/link/{link_id}")
def get_link_details(link_id: str, db: Session = Depends(get_db),
                     current_user: User = Depends(get_current_user),
                     gateway: payment_service.CashfreeClient = Depends(payment_service.get_gateway)):
    order = payment_service.find_order_by_link(db, link_id)
    if order is None:
        if current_user.role != RoleEnum.admin:
            raise NotFound("Payment link not found")
    else:
        _ensure_payer(order, current_user)
    return {"success": True, "data": gateway.get_link(link_id)}


@router.post("/webhook", response_class=PlainTextResponse)
async def webhook(request: Request, db: Session = Depends(get_db),
                  cache: ResponseCache = Depends(get_cache)):
    """
    Gateway callback. Always answers 200 OK so the provider does not retry
    notifications we cannot use; problems are only logged.
    """
    raw_body = await request.body()
    try:
        # Blocking database work runs off the event loop
        outcome = await run_in_threadpool(
            payment_service.reconcile_webhook, db, raw_body, request.headers, cache=cache
        )
        logger.info(f"Payment webhook processed: {outcome.reason}")
    except Exception:
        logger.exception("Payment webhook processing failed")
    return "OK"
