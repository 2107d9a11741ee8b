"""Domain errors raised by the order pipeline.

Every error carries a stable machine ``code`` (used in API payloads and in
bulk results), a human readable message, a ``retryable`` hint for callers and
a ``details`` dict with the values needed to correct or retry the request.
Views translate these into HTTP responses; the domain service never catches
them except to roll back and record bulk results.
"""

from typing import Any, Optional


class OrderError(Exception):
    """Base class for recoverable order-pipeline failures."""

    code = "ORDER_ERROR"
    retryable = False

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error into the descriptor used by API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class InvalidOrderShape(OrderError):
    """Neither a single nor a bulk payload was given, or a line is incomplete."""

    code = "INVALID_ORDER_SHAPE"

    def __init__(self, reason: str):
        super().__init__(reason, {"reason": reason})


class ProductNotFound(OrderError):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(
            f"Product not found with ID: {product_id}",
            {"product_id": product_id},
        )


class RegionMismatch(OrderError):
    """A product belongs to a different region than the order."""

    code = "REGION_MISMATCH"

    def __init__(self, product_id: int, product_region: str, order_region: str):
        self.product_id = product_id
        super().__init__(
            f"Product {product_id} is not available in region {order_region}",
            {
                "product_id": product_id,
                "product_region": product_region,
                "order_region": order_region,
            },
        )


class InsufficientStock(OrderError):
    """The atomic reservation could not grant the requested quantity.

    Retryable: stock may be replenished later.
    """

    code = "INSUFFICIENT_STOCK"
    retryable = True

    def __init__(self, product_id: int, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id}. "
            f"Available: {available}, Requested: {requested}",
            {"product_id": product_id, "available": available, "requested": requested},
        )


class PricingConfigMissing(OrderError):
    code = "PRICING_CONFIG_MISSING"

    def __init__(self, region: str):
        self.region = region
        super().__init__(
            f"Pricing configuration not found for region: {region}",
            {"region": region},
        )


class InvalidPricingInput(OrderError):
    code = "INVALID_PRICING_INPUT"

    def __init__(self, message: str, base_price=None, vat_percentage=None):
        super().__init__(
            message,
            {
                "base_price": None if base_price is None else str(base_price),
                "vat_percentage": None if vat_percentage is None else str(vat_percentage),
            },
        )


class ConfirmationFailed(OrderError):
    """The external confirmation authority did not return a usable number.

    Retryable: a failed attempt rolls back the whole order, so nothing
    durable survives and a retry starts from scratch.
    """

    code = "CONFIRMATION_FAILED"
    retryable = True

    def __init__(self, order_id, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(
            f"Confirmation failed for order {order_id}: {reason}",
            {"order_id": str(order_id), "reason": reason},
        )


class SubOrderCrashed(OrderError):
    """An unexpected failure inside one bulk sub-order.

    The sub-order was rolled back; its siblings are unaffected. The cause
    is logged, only its type reaches the client.
    """

    code = "INTERNAL_ERROR"

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(
            "Unexpected error while placing the order",
            {"cause": type(cause).__name__},
        )
