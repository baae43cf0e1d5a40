"""
Order service API schemas
"""

from .dead_letter import DeadLetterResponse
from .order import (
    CreateOrderRequest,
    OrderBillingResponse,
    OrderProductResponse,
    OrderResponse,
    OrderShippingResponse,
    ShippingRequest,
)
from .order_event import OrderEventSummary
from .product import ProductCreate, ProductResponse, ProductUpdate

__all__ = [
    # Orders
    "CreateOrderRequest",
    "ShippingRequest",
    "OrderResponse",
    "OrderBillingResponse",
    "OrderShippingResponse",
    "OrderProductResponse",
    # Order events
    "OrderEventSummary",
    # Catalog
    "ProductCreate",
    "ProductUpdate",
    "ProductResponse",
    # Operations
    "DeadLetterResponse",
]
