from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..events.schemas import OrderEvent


class OrderEventSummary(BaseModel):
    """Projection of a stored order event returned by the events query"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_type: str
    order_id: str
    email: str
    request_id: Optional[str] = None
    timestamp: int
    created_at: datetime
    total_price: Decimal
    payment: str
    product_codes: List[str]
    shipping_type: str
    carrier: str

    @classmethod
    def from_event(cls, event: OrderEvent) -> "OrderEventSummary":
        body = event.body
        return cls(
            event_type=event.event_type.value,
            order_id=event.order_id,
            email=event.email,
            request_id=event.request_id,
            timestamp=event.timestamp,
            created_at=datetime.fromtimestamp(event.timestamp / 1000, tz=timezone.utc),
            total_price=body.billing.total_price,
            payment=body.billing.payment,
            product_codes=list(body.product_codes),
            shipping_type=body.shipping.type,
            carrier=body.shipping.carrier,
        )
