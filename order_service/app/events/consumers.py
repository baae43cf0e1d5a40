"""
Order event subscribers.

Each handler runs on its own subscription of the fan-out publisher and may
see the same event more than once, so every handler is idempotent.
"""

import asyncio
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.setting import OrderSettings
from ..providers.email_provider import ORDER_CREATED_TEMPLATE, EmailProvider
from ..repository.order_event_repository import OrderEventRepository
from ..utils.logging import setup_order_logging
from .audit import ORDER_DETAIL_TYPE, ORDER_SOURCE, AuditEventBus
from .base import BaseEvent, BatchEventHandler, EventHandler
from .base.kafka_client import KafkaEventPublisher
from .broker import (
    BatchingSubscription,
    OrderEventPublisher,
    RetryPolicy,
    Subscription,
    event_type_filter,
)
from .schemas import OrderEvent, OrderEventType

logger = setup_order_logging("order_service.consumer")

EVENT_LOG_SUBSCRIPTION = "order-event-log"
BILLING_SUBSCRIPTION = "billing"
EMAIL_SUBSCRIPTION = "order-email"
AUDIT_SUBSCRIPTION = "audit"
KAFKA_SUBSCRIPTION = "kafka-bridge"


def order_event_from(event: BaseEvent) -> OrderEvent:
    return OrderEvent.model_validate(event.data)


class OrderEventLogWriter(EventHandler):
    """Append every order event to the event log"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def handle(self, event: BaseEvent) -> None:
        order_event = order_event_from(event)
        async with self.session_factory() as session:
            await OrderEventRepository(session).append(order_event)
        logger.info(
            "Order event stored",
            extra={
                "event_id": event.event_id,
                "event_type": order_event.event_type.value,
                "order_id": order_event.order_id,
                "email": order_event.email,
            },
        )


class BillingHandler(EventHandler):
    """Record the billing request for newly created orders"""

    async def handle(self, event: BaseEvent) -> None:
        order_event = order_event_from(event)
        billing = order_event.body.billing
        logger.info(
            f"Billing order {order_event.order_id}",
            extra={
                "event_id": event.event_id,
                "order_id": order_event.order_id,
                "email": order_event.email,
                "payment": billing.payment,
                "total_price": str(billing.total_price),
                "request_id": order_event.request_id,
            },
        )


class OrderEmailHandler(BatchEventHandler):
    """
    Send an order confirmation email for each event in a batch.

    Events already mailed are remembered by event id so a retried batch only
    resends the messages that failed. The ids of a batch are forgotten once
    the whole batch succeeds; at most ``max_remembered`` ids are kept.
    """

    subject = "Your order was received"

    def __init__(self, email_provider: EmailProvider, max_remembered: int = 10000):
        self.email_provider = email_provider
        self.max_remembered = max_remembered
        # Insertion ordered, oldest first
        self._sent: Dict[str, None] = {}

    def template_data(self, order_event: OrderEvent) -> Dict[str, Any]:
        body = order_event.body
        return {
            "email": order_event.email,
            "order_id": order_event.order_id,
            "product_codes": body.product_codes,
            "total_price": body.billing.total_price,
            "payment": body.billing.payment,
            "shipping_type": body.shipping.type,
            "carrier": body.shipping.carrier,
        }

    async def _send(self, event: BaseEvent) -> Dict[str, Any]:
        if event.event_id in self._sent:
            return {"success": True, "skipped": True}
        order_event = order_event_from(event)
        content = self.email_provider.render(
            ORDER_CREATED_TEMPLATE, self.template_data(order_event)
        )
        result = await self.email_provider.send_email(
            to_email=order_event.email,
            subject=self.subject,
            content=content,
            correlation_id=event.correlation_id,
        )
        if result.get("success"):
            self._remember(event.event_id)
        return result

    def _remember(self, event_id: str) -> None:
        self._sent[event_id] = None
        while len(self._sent) > self.max_remembered:
            del self._sent[next(iter(self._sent))]

    async def handle_batch(self, events: List[BaseEvent]) -> None:
        results = await asyncio.gather(*(self._send(event) for event in events))
        failed = [result for result in results if not result.get("success")]
        logger.info(
            "Order email batch sent",
            extra={"batch_size": len(events), "failed": len(failed)},
        )
        if failed:
            raise RuntimeError(
                f"{len(failed)} of {len(events)} order emails failed: "
                f"{failed[0].get('error')}"
            )
        for event in events:
            self._sent.pop(event.event_id, None)


class AuditForwardHandler(EventHandler):
    """Mirror order events onto the audit bus"""

    def __init__(self, audit_bus: AuditEventBus):
        self.audit_bus = audit_bus

    async def handle(self, event: BaseEvent) -> None:
        order_event = order_event_from(event)
        await self.audit_bus.put_event(
            source=ORDER_SOURCE,
            detail_type=ORDER_DETAIL_TYPE,
            detail={
                "eventType": order_event.event_type.value,
                "orderId": order_event.order_id,
                "email": order_event.email,
                "requestId": order_event.request_id,
            },
        )


class KafkaBridgeHandler(EventHandler):
    """Forward order events to Kafka for other services"""

    def __init__(self, kafka_publisher: KafkaEventPublisher, topic: str):
        self.kafka_publisher = kafka_publisher
        self.topic = topic

    async def handle(self, event: BaseEvent) -> None:
        await self.kafka_publisher.publish(event, topic=self.topic)


def build_order_event_subscriptions(
    publisher: OrderEventPublisher,
    session_factory: async_sessionmaker[AsyncSession],
    audit_bus: AuditEventBus,
    settings: OrderSettings,
    email_provider: Optional[EmailProvider] = None,
    kafka_publisher: Optional[KafkaEventPublisher] = None,
) -> List[Subscription]:
    """Register the standard order event subscribers on ``publisher``"""
    retry_policy = RetryPolicy(
        max_attempts=settings.PUBLISHER_MAX_ATTEMPTS,
        base_delay=settings.PUBLISHER_RETRY_DELAY_SECONDS,
        max_delay=settings.PUBLISHER_MAX_RETRY_DELAY_SECONDS,
    )
    created_only = event_type_filter(OrderEventType.ORDER_CREATED)

    subscriptions: List[Subscription] = [
        Subscription(
            EVENT_LOG_SUBSCRIPTION, OrderEventLogWriter(session_factory), None, retry_policy
        ),
        Subscription(BILLING_SUBSCRIPTION, BillingHandler(), created_only, retry_policy),
        Subscription(
            AUDIT_SUBSCRIPTION, AuditForwardHandler(audit_bus), None, retry_policy
        ),
    ]

    if email_provider is None and settings.SENDGRID_API_KEY and settings.FROM_EMAIL:
        email_provider = EmailProvider(
            sendgrid_api_key=settings.SENDGRID_API_KEY,
            from_email=settings.FROM_EMAIL,
            from_name=settings.FROM_NAME,
        )
    if email_provider is not None:
        subscriptions.append(
            BatchingSubscription(
                EMAIL_SUBSCRIPTION,
                OrderEmailHandler(email_provider),
                created_only,
                retry_policy,
                batch_size=settings.EMAIL_BATCH_SIZE,
                max_batching_window=settings.EMAIL_MAX_BATCHING_WINDOW_SECONDS,
                max_concurrent_batches=settings.EMAIL_MAX_CONCURRENT_BATCHES,
            )
        )
    else:
        logger.warning(
            "SendGrid is not configured, order emails are disabled",
            extra={"subscription": EMAIL_SUBSCRIPTION},
        )

    if kafka_publisher is not None:
        subscriptions.append(
            Subscription(
                KAFKA_SUBSCRIPTION,
                KafkaBridgeHandler(kafka_publisher, settings.KAFKA_TOPIC_ORDER_EVENTS),
                None,
                retry_policy,
            )
        )

    for subscription in subscriptions:
        publisher.subscribe(subscription)
    return subscriptions
