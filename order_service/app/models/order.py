from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import DECIMAL, JSON, BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from ..core.exceptions import InvalidOrderTransitionError
from .base import OrderServiceBaseModel


class PaymentMethod(str, Enum):
    CASH = "CASH"
    DEBIT_CARD = "DEBIT_CARD"
    CREDIT_CARD = "CREDIT_CARD"


class ShippingType(str, Enum):
    ECONOMIC = "ECONOMIC"
    URGENT = "URGENT"


class Carrier(str, Enum):
    CORREIOS = "CORREIOS"
    FEDEX = "FEDEX"


class OrderLifecycle(str, Enum):
    NONE = "NONE"
    CREATED = "CREATED"
    DELETED = "DELETED"


# DELETED is terminal
ALLOWED_TRANSITIONS = {
    OrderLifecycle.NONE: {OrderLifecycle.CREATED},
    OrderLifecycle.CREATED: {OrderLifecycle.DELETED},
    OrderLifecycle.DELETED: set(),
}


def validate_transition(current: OrderLifecycle, target: OrderLifecycle) -> None:
    """Raise InvalidOrderTransitionError unless current -> target is allowed."""
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidOrderTransitionError(current.value, target.value)


class Order(OrderServiceBaseModel):
    __tablename__ = "orders"

    customer_email: Mapped[str] = mapped_column(String(255), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    shipping_type: Mapped[str] = mapped_column(
        String(20), default=ShippingType.ECONOMIC.value, nullable=False
    )
    carrier: Mapped[str] = mapped_column(
        String(20), default=Carrier.FEDEX.value, nullable=False
    )
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), nullable=False)

    # Ordered, one entry per requested product (repeats kept)
    product_codes: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    # Per-line snapshot: [{"code": ..., "price": ...}]
    products: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)

    # Epoch milliseconds
    created_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
