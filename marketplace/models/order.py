# marketplace/models/order.py
# Order and OrderItem models. Amounts are fixed at checkout; OrderItem keeps
# a snapshot of name/SKU/variant/price taken at purchase time.
from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, DateTime, Enum, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal
from marketplace.db.base import Base
import enum


class OrderStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class PaymentMethod(str, enum.Enum):
    card = "card"
    upi = "upi"
    wallet = "wallet"
    cod = "cod"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    partial = "partial"
    failed = "failed"
    refunded = "refunded"

TERMINAL_STATUSES = frozenset({OrderStatus.delivered, OrderStatus.cancelled})
CANCELLABLE_STATUSES = frozenset({OrderStatus.pending, OrderStatus.confirmed})


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    shipping_address_id = Column(Integer, ForeignKey("addresses.id"), nullable=False)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.pending)

    subtotal = Column(Numeric(10, 2), nullable=False)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    shipping_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    discount_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    total_amount = Column(Numeric(10, 2), nullable=False)

    payment_method = Column(Enum(PaymentMethod), nullable=False)
    payment_status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.pending)
    payment_id = Column(String(100), nullable=True)
    payment_link_id = Column(String(100), nullable=True, index=True)
    payment_link_url = Column(String(500), nullable=True)
    payment_metadata = Column(JSON, nullable=True)

    tracking_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    buyer = relationship("User")
    shipping_address = relationship("Address")
    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    # Nulled when the catalog row is deleted; the snapshot columns stay
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    product_name = Column(String(200), nullable=False)
    product_sku = Column(String(100), nullable=False)
    variant_details = Column(JSON, nullable=True)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
