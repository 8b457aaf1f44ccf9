# marketplace/schemas/order.py
# Request and response models for checkout and order management.
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from marketplace.models.order import OrderStatus, PaymentMethod, PaymentStatus
from marketplace.schemas.address import AddressOut


class OrderLineIn(BaseModel):
    product_id: int = Field(ge=1)
    variant_id: Optional[int] = Field(default=None, ge=1)
    quantity: int = Field(ge=1)


class CreateOrderRequest(BaseModel):
    # Omitted or empty: order the buyer's cart
    items: Optional[list[OrderLineIn]] = None
    shipping_address_id: int = Field(ge=1)
    payment_method: PaymentMethod
    notes: Optional[str] = None


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class UpdateStatusRequest(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: Optional[int]
    variant_id: Optional[int]
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    product_name: str
    product_sku: str
    variant_details: Optional[dict] = None


class BuyerSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: EmailStr


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    buyer_id: int
    shipping_address_id: int
    status: OrderStatus
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_link_url: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: list[OrderItemOut] = []
    shipping_address: Optional[AddressOut] = None


class OrderDetailOut(OrderOut):
    buyer: Optional[BuyerSummary] = None
