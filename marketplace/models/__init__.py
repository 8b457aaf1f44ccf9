# marketplace/models/__init__.py
# Importing this package registers every model on Base.metadata.
from marketplace.models.user import User, RoleEnum
from marketplace.models.product import Product, ProductVariant, ProductStatus
from marketplace.models.address import Address, AddressType
from marketplace.models.cart import Cart, CartItem
from marketplace.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    TERMINAL_STATUSES,
    CANCELLABLE_STATUSES,
)
from marketplace.models.return_request import ReturnRequest, ReturnStatus

__all__ = [
    "User", "RoleEnum",
    "Product", "ProductVariant", "ProductStatus",
    "Address", "AddressType",
    "Cart", "CartItem",
    "Order", "OrderItem", "OrderStatus", "PaymentMethod", "PaymentStatus",
    "TERMINAL_STATUSES", "CANCELLABLE_STATUSES",
    "ReturnRequest", "ReturnStatus",
]
