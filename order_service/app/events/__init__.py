"""
Events module for the Order Service.

Order lifecycle events are wrapped in a ``BaseEvent`` envelope and handed to
the in-process ``OrderEventPublisher``, which fans them out to independent
subscriptions:

    - order-event-log: appends every event to the event log
    - billing: ORDER_CREATED only
    - order-email: ORDER_CREATED only, buffered in batches
    - audit: mirrors every event onto the audit bus
    - kafka-bridge: optional forwarding to Kafka

Messages a subscription cannot process within its retry budget are moved to
the ``DeadLetterQueue``.
"""

from .audit import AuditEventBus, build_default_audit_bus
from .broker import (
    BatchingSubscription,
    OrderEventPublisher,
    RetryPolicy,
    Subscription,
    event_type_filter,
)
from .consumers import build_order_event_subscriptions
from .dead_letter import DeadLetterEntry, DeadLetterQueue
from .producers import OrderEventProducer, build_order_event
from .schemas import OrderEvent, OrderEventType, ProductEvent, ProductEventType

__all__ = [
    # Publisher
    "OrderEventPublisher",
    "Subscription",
    "BatchingSubscription",
    "RetryPolicy",
    "event_type_filter",
    "DeadLetterQueue",
    "DeadLetterEntry",
    # Producers and consumers
    "OrderEventProducer",
    "build_order_event",
    "build_order_event_subscriptions",
    # Audit
    "AuditEventBus",
    "build_default_audit_bus",
    # Schemas
    "OrderEvent",
    "OrderEventType",
    "ProductEvent",
    "ProductEventType",
]
