# marketplace/core/errors.py
# Domain exceptions raised by the services and rendered by the exception
# handler registered in marketplace.main.


class MarketplaceError(Exception):
    """Base class for errors that map to a specific HTTP outcome."""

    status_code = 400

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        body = {"success": False, "message": self.message}
        body.update(self.extra)
        return body


class InvalidRequest(MarketplaceError):
    status_code = 400


class InvalidAddress(MarketplaceError):
    status_code = 400

    def __init__(self, message: str = "Invalid shipping address"):
        super().__init__(message)


class EmptyOrder(MarketplaceError):
    status_code = 400

    def __init__(self, message: str = "At least one item is required"):
        super().__init__(message)


class ProductUnavailable(MarketplaceError):
    status_code = 400

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} is not available", product_id=product_id)


class VariantUnavailable(MarketplaceError):
    status_code = 400

    def __init__(self, variant_id: int):
        super().__init__(f"Product variant {variant_id} is not available", variant_id=variant_id)


class InsufficientStock(MarketplaceError):
    status_code = 400

    def __init__(self, product_name: str, available: int, product_id=None, variant_id=None):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}",
            available=available,
            product_id=product_id,
            variant_id=variant_id,
        )
        self.available = available


class NotCancellable(MarketplaceError):
    status_code = 400

    def __init__(self, status):
        super().__init__(f"Order cannot be cancelled in status '{_value(status)}'")


class ReturnNotAllowed(MarketplaceError):
    status_code = 400


class AddressInUse(MarketplaceError):
    status_code = 409

    def __init__(self, message: str = "Address is used by existing orders and cannot be deleted"):
        super().__init__(message)


class Forbidden(MarketplaceError):
    status_code = 403


class NotFound(MarketplaceError):
    status_code = 404


class OrderNotFound(NotFound):
    def __init__(self, message: str = "Order not found"):
        super().__init__(message)


class InvalidStatusTransition(MarketplaceError):
    status_code = 409

    def __init__(self, current, target):
        super().__init__(
            f"Cannot change order status from '{_value(current)}' to '{_value(target)}'",
            current_status=_value(current),
            requested_status=_value(target),
        )


class PaymentGatewayError(MarketplaceError):
    status_code = 502


def _value(status):
    return getattr(status, "value", status)
