"""
Order Service Event Management
Builds the order event publisher, its subscriptions and the audit bus, and
runs the background sweep that purges expired order events.
"""

import asyncio
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..events.audit import AuditEventBus, build_default_audit_bus
from ..events.base.kafka_client import KafkaEventPublisher
from ..events.broker import OrderEventPublisher
from ..events.consumers import build_order_event_subscriptions
from ..events.dead_letter import DeadLetterQueue
from ..events.producers import OrderEventProducer
from ..providers.email_provider import EmailProvider
from ..repository.order_event_repository import OrderEventRepository
from ..utils.logging import setup_order_logging
from .setting import OrderSettings, get_settings

logger = setup_order_logging("order_service.core.events")

# Global instances
_order_event_publisher: Optional[OrderEventPublisher] = None
_order_event_producer: Optional[OrderEventProducer] = None
_audit_bus: Optional[AuditEventBus] = None
_kafka_publisher: Optional[KafkaEventPublisher] = None
_purge_task: Optional[asyncio.Task] = None


async def purge_expired_events(
    session_factory: async_sessionmaker[AsyncSession],
    dead_letters: Optional[DeadLetterQueue] = None,
    audit_bus: Optional[AuditEventBus] = None,
) -> int:
    """Delete expired order events and prune dead letters and the audit archive once"""
    async with session_factory() as session:
        purged = await OrderEventRepository(session).purge_expired()
    if dead_letters is not None:
        dead_letters.prune()
    if audit_bus is not None:
        audit_bus.prune_archive()
    if purged:
        logger.info("Purged expired order events", extra={"purged": purged})
    return purged


async def _purge_loop(
    session_factory: async_sessionmaker[AsyncSession],
    interval: float,
    dead_letters: DeadLetterQueue,
    audit_bus: AuditEventBus,
) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await purge_expired_events(session_factory, dead_letters, audit_bus)
        except Exception as e:
            logger.error(f"Expired event purge failed: {e}")


async def init_events(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Optional[OrderSettings] = None,
    email_provider: Optional[EmailProvider] = None,
    start_purge_task: bool = True,
) -> OrderEventPublisher:
    """Initialize the event publishing infrastructure"""
    global _order_event_publisher, _order_event_producer, _audit_bus
    global _kafka_publisher, _purge_task

    settings = settings or get_settings()

    _audit_bus = build_default_audit_bus(
        archive_retention_days=settings.AUDIT_ARCHIVE_RETENTION_DAYS,
        invoice_timeout_alarm_threshold=settings.AUDIT_INVOICE_TIMEOUT_ALARM_THRESHOLD,
        archive_max_events=settings.AUDIT_ARCHIVE_MAX_EVENTS,
        target_max_events=settings.AUDIT_TARGET_MAX_EVENTS,
    )
    dead_letters = DeadLetterQueue(retention_days=settings.DEAD_LETTER_RETENTION_DAYS)
    _order_event_publisher = OrderEventPublisher(dead_letters)

    if settings.KAFKA_ENABLED:
        try:
            _kafka_publisher = KafkaEventPublisher(
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                client_id=f"{settings.SERVICE_NAME}-producer",
                default_topic=settings.KAFKA_TOPIC_ORDER_EVENTS,
                enable_graceful_degradation=True,
            )
            await _kafka_publisher.start(timeout=30.0)
        except Exception as e:
            logger.warning(f"Kafka bridge initialization failed: {e}")
            logger.info("Service will continue without the Kafka bridge (degraded mode)")

    build_order_event_subscriptions(
        _order_event_publisher,
        session_factory,
        _audit_bus,
        settings,
        email_provider=email_provider,
        kafka_publisher=_kafka_publisher,
    )
    await _order_event_publisher.start()
    _order_event_producer = OrderEventProducer(
        _order_event_publisher, source_service=settings.SERVICE_NAME
    )

    if start_purge_task:
        _purge_task = asyncio.create_task(
            _purge_loop(
                session_factory,
                settings.ORDER_EVENTS_PURGE_INTERVAL_SECONDS,
                dead_letters,
                _audit_bus,
            ),
            name="order-events-purge",
        )

    logger.info(
        "Event publishing infrastructure initialized",
        extra={
            "subscriptions": [s.name for s in _order_event_publisher.subscriptions],
            "kafka_enabled": settings.KAFKA_ENABLED,
        },
    )
    return _order_event_publisher


async def close_events(drain_timeout: Optional[float] = 30.0) -> None:
    """Drain and stop the publisher, then release the Kafka bridge"""
    global _order_event_publisher, _order_event_producer, _audit_bus
    global _kafka_publisher, _purge_task

    try:
        if _purge_task is not None:
            _purge_task.cancel()
            await asyncio.gather(_purge_task, return_exceptions=True)
        if _order_event_publisher is not None:
            await _order_event_publisher.stop(drain=True, timeout=drain_timeout)
        if _kafka_publisher is not None:
            await _kafka_publisher.stop()
        logger.info("Event publishing infrastructure closed")
    except Exception as e:
        logger.error(f"Error closing event infrastructure: {e}")
    finally:
        _order_event_publisher = None
        _order_event_producer = None
        _audit_bus = None
        _kafka_publisher = None
        _purge_task = None


def get_event_producer() -> Optional[OrderEventProducer]:
    """Get the order event producer instance"""
    return _order_event_producer


def get_order_event_publisher() -> Optional[OrderEventPublisher]:
    return _order_event_publisher


def get_audit_bus() -> Optional[AuditEventBus]:
    return _audit_bus


async def health_check_events() -> Dict[str, Any]:
    """Report publisher, dead letter and Kafka bridge state"""
    publisher = _order_event_publisher
    status: Dict[str, Any] = {
        "publisher_running": bool(publisher and publisher.started),
        "dead_letters": len(publisher.dead_letters) if publisher else 0,
        "kafka_connected": None,
    }
    if _kafka_publisher is not None:
        status["kafka_connected"] = await _kafka_publisher.health_check()
    return status
