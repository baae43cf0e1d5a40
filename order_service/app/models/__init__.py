"""
Order Service Models

Database models for orders, the product catalog and the shared events table.
"""

from .base import OrderServiceBase, OrderServiceBaseModel
from .event import EventRecord
from .order import (
    ALLOWED_TRANSITIONS,
    Carrier,
    Order,
    OrderLifecycle,
    PaymentMethod,
    ShippingType,
    validate_transition,
)
from .product import Product

__all__ = [
    # Base classes
    "OrderServiceBase",
    "OrderServiceBaseModel",
    # Order models
    "Order",
    "OrderLifecycle",
    "PaymentMethod",
    "ShippingType",
    "Carrier",
    "ALLOWED_TRANSITIONS",
    "validate_transition",
    # Catalog
    "Product",
    # Event log
    "EventRecord",
]
