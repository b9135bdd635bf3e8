"""Custom exceptions for MarketMatch."""


class MarketMatchError(Exception):
    """Base exception for all business-rule failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(MarketMatchError):
    """Raised for malformed or missing input."""

    pass


class InvalidQuantityError(ValidationError):
    """Raised when a cart quantity falls outside the allowed range."""

    def __init__(self, message: str = "Quantity must be between 1 and 100"):
        super().__init__(message)


class EmptyCartError(ValidationError):
    """Raised when checking out a cart with no lines."""

    def __init__(self):
        super().__init__("Cart is empty")


class NotFoundError(MarketMatchError):
    pass


class ConflictError(MarketMatchError):
    """Raised when the request conflicts with the current state of a document."""

    pass


class OutOfStockError(ConflictError):
    pass


class AlreadyPaidError(ConflictError):
    def __init__(self):
        super().__init__("Order has already been paid")


class OrderCancelledError(ConflictError):
    def __init__(self, status: str = "cancelled"):
        self.status = status
        super().__init__(f"Cannot process payment for {status} order")


class OrderNotPaidError(ConflictError):
    def __init__(self):
        super().__init__("Order has not been paid yet")


class AlreadyVerifiedError(ConflictError):
    def __init__(self):
        super().__init__("Email is already verified. Please login.")


class InvalidTransitionError(ConflictError):
    """Raised when an order cannot move from its current status to the requested one."""

    def __init__(self, current: str, target: str, message: str | None = None):
        self.current = current
        self.target = target
        super().__init__(message or f"Order cannot move from {current} to {target}")


class RefundWindowExpiredError(ConflictError):
    def __init__(self, days: int):
        self.days = days
        super().__init__(f"Refund period has expired ({days} days from delivery)")


class InsufficientInventoryError(MarketMatchError):
    """Raised when one or more cart lines can no longer be fulfilled."""

    def __init__(self, products: list[str]):
        self.products = products
        super().__init__(f"Some products are no longer available: {', '.join(products)}")


class InsufficientBalanceError(MarketMatchError):
    def __init__(self):
        super().__init__("Insufficient wallet balance")


class UnauthorizedError(MarketMatchError):
    pass


class ForbiddenError(MarketMatchError):
    pass


class InvariantViolationError(MarketMatchError):
    """Raised when stored order totals do not add up. Never corrected silently."""

    pass


class UpstreamFailureError(MarketMatchError):
    """Raised when an external provider fails after local state was committed."""

    pass


# Map exception types to HTTP status codes. Subclasses not listed inherit
# the code of their closest listed ancestor.
ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    OutOfStockError: 400,
    AlreadyPaidError: 400,
    AlreadyVerifiedError: 400,
    OrderCancelledError: 400,
    OrderNotPaidError: 400,
    InvalidTransitionError: 400,
    RefundWindowExpiredError: 400,
    InsufficientInventoryError: 400,
    InsufficientBalanceError: 400,
    UnauthorizedError: 401,
    ForbiddenError: 403,
    InvariantViolationError: 500,
    UpstreamFailureError: 500,
}


def status_code_for(exc: MarketMatchError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500
