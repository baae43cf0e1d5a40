"""
Order service event schemas.

Bodies of order and product lifecycle events plus the key layout used to
store them in the shared events table. Bodies travel inside
``events.base.BaseEvent`` on the fan-out publisher.
"""

import json
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

ORDER_PARTITION_PREFIX = "#order_"
PRODUCT_PARTITION_PREFIX = "#product_"
SORT_KEY_SEPARATOR = "#"


class OrderEventType(str, Enum):
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_DELETED = "ORDER_DELETED"


class ProductEventType(str, Enum):
    PRODUCT_CREATED = "PRODUCT_CREATED"
    PRODUCT_UPDATED = "PRODUCT_UPDATED"
    PRODUCT_DELETED = "PRODUCT_DELETED"


def normalize_email(email: str) -> str:
    """Trim and lowercase the domain part, leaving the local part untouched"""
    email = email.strip()
    local, sep, domain = email.rpartition("@")
    if not sep:
        return email
    return f"{local}@{domain.lower()}"


def order_partition_key(email: str) -> str:
    return f"{ORDER_PARTITION_PREFIX}{email}"


def product_partition_key(code: str) -> str:
    return f"{PRODUCT_PARTITION_PREFIX}{code}"


class OrderEventData(BaseModel):
    """Base event body; serialized with camelCase keys"""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dictionary for BaseEvent compatibility"""
        return self.model_dump(mode="json", by_alias=True)


class OrderShipping(OrderEventData):
    type: str
    carrier: str


class OrderBilling(OrderEventData):
    payment: str
    total_price: Decimal


class OrderEventBody(OrderEventData):
    """Order snapshot carried by ORDER_CREATED and ORDER_DELETED"""

    email: str
    order_id: str
    shipping: OrderShipping
    billing: OrderBilling
    product_codes: List[str]
    request_id: Optional[str] = None


class OrderEvent(OrderEventData):
    """
    One order lifecycle event as stored in the event log.

    ``timestamp`` is epoch milliseconds of the mutation, ``ttl`` an absolute
    epoch second after which the event is no longer returned.
    """

    event_type: OrderEventType
    email: str
    order_id: str
    request_id: Optional[str] = None
    timestamp: int
    ttl: Optional[int] = None
    body: OrderEventBody

    @property
    def partition_key(self) -> str:
        return order_partition_key(self.email)

    @property
    def sort_key(self) -> str:
        return SORT_KEY_SEPARATOR.join(
            [self.event_type.value, str(self.timestamp), self.order_id]
        )

    @property
    def payload(self) -> str:
        return json.dumps(self.body.to_dict())


class ProductEvent(OrderEventData):
    """Catalog mutation recorded under the product's partition"""

    event_type: ProductEventType
    product_id: str
    product_code: str
    product_price: Decimal
    email: str
    request_id: Optional[str] = None
    timestamp: int

    @property
    def partition_key(self) -> str:
        return product_partition_key(self.product_code)

    @property
    def sort_key(self) -> str:
        return SORT_KEY_SEPARATOR.join([self.event_type.value, str(self.timestamp)])

    @property
    def payload(self) -> str:
        return json.dumps(
            {
                "productId": self.product_id,
                "productCode": self.product_code,
                "productPrice": str(self.product_price),
                "email": self.email,
                "requestId": self.request_id,
            }
        )
