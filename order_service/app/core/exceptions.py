"""
Typed failures raised by the Order Service.

Every failure carries the HTTP status and error type used by the error
handling middleware, so services never raise ``HTTPException`` themselves.
"""

from typing import Any, Dict, List, Optional


class OrderServiceError(Exception):
    """Base class for all Order Service failures"""

    status_code: int = 400
    error_type: str = "order_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(OrderServiceError):
    """Malformed or missing required fields"""

    status_code = 400
    error_type = "validation_error"


class ProductNotFoundError(OrderServiceError):
    """A referenced product does not exist in the catalog"""

    status_code = 404
    error_type = "product_not_found"

    def __init__(self, missing_product_ids: List[str]):
        super().__init__(
            "Some product was not found",
            details={"missing_product_ids": missing_product_ids},
        )
        self.missing_product_ids = missing_product_ids


class OrderNotFoundError(OrderServiceError):
    """No order exists for the given email and order id"""

    status_code = 404
    error_type = "order_not_found"

    def __init__(self, email: str, order_id: str):
        super().__init__(
            "Order not found", details={"email": email, "order_id": order_id}
        )
        self.email = email
        self.order_id = order_id


class InvalidOrderTransitionError(OrderServiceError):
    """The requested lifecycle transition is not allowed"""

    status_code = 409
    error_type = "invalid_order_transition"

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Invalid order transition from {current} to {target}",
            details={"current_state": current, "target_state": target},
        )


class PublishFailure(OrderServiceError):
    """A subscriber could not process a message within its retry budget"""

    status_code = 500
    error_type = "publish_failure"

    def __init__(self, subscription: str, attempts: int, cause: BaseException):
        super().__init__(
            f"Delivery to '{subscription}' failed after {attempts} attempts: {cause}",
            details={
                "subscription": subscription,
                "attempts": attempts,
                "cause_type": type(cause).__name__,
            },
        )
        self.subscription = subscription
        self.attempts = attempts
        self.cause = cause


class StoreUnavailable(OrderServiceError):
    """Transient backing store failure, safe to retry at the caller"""

    status_code = 503
    error_type = "store_unavailable"
