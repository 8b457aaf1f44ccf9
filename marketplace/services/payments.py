# marketplace/services/payments.py
# Payment gateway integration (Cashfree payment links) and webhook
# reconciliation of Order.payment_status.
#
# Reconciliation only ever writes payment fields. Order status and stock stay
# owned by the order core.

import base64
import hashlib
import hmac
import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Mapping, Optional

import requests
from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.core.cache import ResponseCache
from marketplace.core.config import settings
from marketplace.core.errors import InvalidRequest, PaymentGatewayError
from marketplace.models.order import Order, PaymentMethod, PaymentStatus

logger = logging.getLogger(__name__)

FALLBACK_PHONE = "9999999999"

GATEWAY_STATUS_MAP = {
    "PAID": PaymentStatus.paid,
    "SUCCESS": PaymentStatus.paid,
    "PARTIALLY_PAID": PaymentStatus.partial,
    "FAILED": PaymentStatus.failed,
}


class CashfreeClient:
    """Thin wrapper over the Cashfree PG REST API."""

    def __init__(self, base_url: Optional[str] = None, client_id: Optional[str] = None,
                 client_secret: Optional[str] = None, api_version: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.base_url = (base_url or settings.CASHFREE_API_BASE).rstrip("/")
        self.client_id = client_id if client_id is not None else settings.CASHFREE_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.CASHFREE_CLIENT_SECRET
        self.api_version = api_version or settings.CASHFREE_API_VERSION
        self.timeout = timeout or settings.CASHFREE_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "x-api-version": self.api_version,
            "x-client-id": self.client_id,
            "x-client-secret": self.client_secret,
        }

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            resp = self.session.request(
                method, url, headers=self._headers(), json=payload, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Cashfree {method} {path} failed: {e}")
            raise PaymentGatewayError("Payment gateway is unreachable") from e

        try:
            body = resp.json() if resp.content else {}
        except ValueError:
            body = {"rawText": resp.text}

        if not resp.ok:
            logger.error(f"Cashfree {method} {path} returned {resp.status_code}: {body}")
            raise PaymentGatewayError(
                "Payment gateway rejected the request",
                gateway_status=resp.status_code,
                error=body,
            )
        return body

    def create_link(self, payload: dict) -> dict:
        return self._request("POST", "/links", payload)

    def get_link(self, link_id: str) -> dict:
        return self._request("GET", f"/links/{link_id}")


@lru_cache(maxsize=1)
def get_gateway() -> CashfreeClient:
    """Dependency returning the process-wide gateway client."""
    return CashfreeClient()


def normalize_phone(phone: Optional[str]) -> str:
    """Ten-digit numbers are sent as-is, anything else as +digits."""
    if not phone:
        return FALLBACK_PHONE
    digits = re.sub(r"\D", "", str(phone))
    if not digits:
        return FALLBACK_PHONE
    return digits if len(digits) == 10 else f"+{digits}"


def build_link_payload(order: Order, return_url: Optional[str] = None) -> dict:
    amount = Decimal(order.total_amount or 0)
    if amount <= 0:
        raise InvalidRequest("Invalid amount for link creation", amount=str(amount))
    buyer = order.buyer
    if not return_url:
        return_url = f"{settings.CLIENT_URL.rstrip('/')}/payment-return" if settings.CLIENT_URL else None
    payload = {
        "link_id": f"link_{order.order_number}",
        "link_amount": f"{amount:.2f}",
        "link_currency": settings.CURRENCY,
        "link_purpose": f"Order {order.order_number}",
        "customer_details": {
            "customer_name": buyer.full_name or "Customer",
            "customer_email": buyer.email,
            "customer_phone": normalize_phone(buyer.phone),
        },
        "link_notes": {"order_id": str(order.id)},
    }
    if return_url:
        payload["link_meta"] = {"return_url": return_url}
    return payload


def create_payment_link(db: Session, order: Order, gateway: CashfreeClient,
                        return_url: Optional[str] = None,
                        cache: Optional[ResponseCache] = None) -> dict:
    """Requests a hosted payment link for the order and stores its identifier."""
    if order.payment_method == PaymentMethod.cod:
        logger.warning(f"Creating a payment link for COD order {order.order_number}")

    link = gateway.create_link(build_link_payload(order, return_url))
    data = link.get("data") or {}
    order.payment_link_id = link.get("link_id") or data.get("link_id")
    order.payment_link_url = link.get("link_url") or data.get("link_url")
    order.payment_metadata = link
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Payment link {order.payment_link_id} created for order {order.order_number}")
    if cache is not None:
        cache.invalidate_order(order.id, order.buyer_id)
    return link


def expected_signature(raw_body: bytes, timestamp: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), timestamp.encode() + raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_signature(raw_body: bytes, headers: Mapping[str, str],
                     secret: Optional[str] = None) -> bool:
    """Checks the gateway's HMAC-SHA256 signature over timestamp + body."""
    secret = settings.CASHFREE_WEBHOOK_SECRET if secret is None else secret
    signature = headers.get("x-webhook-signature") or headers.get("x-cf-signature")
    timestamp = headers.get("x-webhook-timestamp") or headers.get("x-cf-timestamp")
    if not (signature and timestamp and secret):
        return False
    return hmac.compare_digest(expected_signature(raw_body, timestamp, secret), signature)


def map_gateway_status(value) -> Optional[PaymentStatus]:
    if not value:
        return None
    return GATEWAY_STATUS_MAP.get(str(value).upper())


def find_order_by_link(db: Session, link_id: str) -> Optional[Order]:
    return db.execute(select(Order).where(Order.payment_link_id == link_id)).scalar_one_or_none()


@dataclass
class WebhookOutcome:
    handled: bool
    reason: str
    order_id: Optional[int] = None
    payment_status: Optional[PaymentStatus] = None


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def reconcile_webhook(db: Session, raw_body: bytes, headers: Mapping[str, str],
                      secret: Optional[str] = None,
                      cache: Optional[ResponseCache] = None) -> WebhookOutcome:
    """Applies a gateway notification to the matching order's payment_status.

    Never raises for bad input: unverifiable signatures are logged and
    processing continues, unparseable or unknown notifications are ignored.
    The update is last-write-wins, so redelivery of the same notification
    leaves the order unchanged.
    """
    if not verify_signature(raw_body, headers, secret):
        logger.warning("Payment webhook signature missing or invalid, processing anyway")

    try:
        payload = json.loads(raw_body or b"")
    except ValueError:
        logger.error("Payment webhook with invalid JSON payload")
        return WebhookOutcome(False, "malformed")
    if not isinstance(payload, dict):
        logger.error("Payment webhook payload is not an object")
        return WebhookOutcome(False, "malformed")

    data = _as_dict(payload.get("data"))
    link_id = data.get("link_id") or _as_dict(data.get("link")).get("link_id") or payload.get("link_id")
    if not link_id:
        logger.warning("Payment webhook without link id")
        return WebhookOutcome(False, "no_link_id")

    order = find_order_by_link(db, link_id)
    if order is None:
        logger.warning(f"Payment webhook: no order for link id {link_id}")
        return WebhookOutcome(False, "unknown_link")

    raw_status = data.get("link_status") or _as_dict(data.get("order")).get("transaction_status")
    new_status = map_gateway_status(raw_status)
    if new_status is None:
        logger.info(f"Payment webhook for order {order.id} ignored, status {raw_status!r}")
        return WebhookOutcome(False, "ignored_status", order_id=order.id)

    order.payment_status = new_status
    payment_id = _as_dict(data.get("payment")).get("payment_id")
    if payment_id:
        order.payment_id = str(payment_id)
    order.payment_metadata = payload
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Order {order.id} payment status set to {new_status.value}")
    if cache is not None:
        cache.invalidate_order(order.id, order.buyer_id)
    return WebhookOutcome(True, "updated", order_id=order.id, payment_status=new_status)
