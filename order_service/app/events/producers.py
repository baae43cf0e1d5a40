import time
from typing import Any, Dict, List, Optional

from ..models.order import Order
from ..utils.logging import setup_order_logging
from .base import BaseEvent, EventPublisher
from .schemas import (
    OrderBilling,
    OrderEvent,
    OrderEventBody,
    OrderEventType,
    OrderShipping,
)

logger = setup_order_logging("order_service.producer")


def build_order_event(
    order: Order,
    event_type: OrderEventType,
    request_id: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
    timestamp: Optional[int] = None,
) -> OrderEvent:
    """Snapshot ``order`` into a lifecycle event stamped with epoch ms"""
    timestamp = int(time.time() * 1000) if timestamp is None else timestamp
    body = OrderEventBody(
        email=order.customer_email,
        order_id=order.order_id,
        shipping=OrderShipping(type=order.shipping_type, carrier=order.carrier),
        billing=OrderBilling(
            payment=order.payment_method, total_price=order.total_price
        ),
        product_codes=list(order.product_codes),
        request_id=request_id,
    )
    return OrderEvent(
        event_type=event_type,
        email=order.customer_email,
        order_id=order.order_id,
        request_id=request_id,
        timestamp=timestamp,
        ttl=timestamp // 1000 + ttl_seconds if ttl_seconds is not None else None,
        body=body,
    )


class BaseEventProducer:
    """Base class for event producers with common functionality"""

    def __init__(
        self, event_publisher: EventPublisher, source_service: str = "order-service"
    ):
        self.event_publisher = event_publisher
        self.source_service = source_service

    async def _publish_event(
        self,
        event: BaseEvent,
        event_type_tag: str,
        log_data: Dict[str, Any],
    ) -> List[str]:
        try:
            routed = await self.event_publisher.publish(event, event_type_tag)
            logger.info(
                f"Published {event_type_tag} event",
                extra={**log_data, "event_id": event.event_id, "routed_to": routed},
            )
            return routed or []
        except Exception as e:
            logger.error(
                f"Failed to publish {event_type_tag} event: {e}",
                extra={**log_data, "event_id": event.event_id},
            )
            raise


class OrderEventProducer(BaseEventProducer):
    """Wraps order lifecycle events in an envelope and hands them to the publisher"""

    async def publish_order_event(self, order_event: OrderEvent) -> List[str]:
        event_type = order_event.event_type.value
        event = BaseEvent(
            event_type=event_type,
            source_service=self.source_service,
            correlation_id=order_event.request_id,
            data=order_event.to_dict(),
        )
        return await self._publish_event(
            event=event,
            event_type_tag=event_type,
            log_data={
                "order_id": order_event.order_id,
                "email": order_event.email,
                "request_id": order_event.request_id,
            },
        )
