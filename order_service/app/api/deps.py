"""
FastAPI dependency injection for Order Service

Provides database sessions, services, the event publisher and request
context (correlation id, acting admin) to the API endpoints.
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import database_manager
from ..core.events import get_audit_bus, get_event_producer, get_order_event_publisher
from ..core.exceptions import StoreUnavailable, ValidationError
from ..core.setting import OrderSettings, get_settings
from ..events.audit import AuditEventBus
from ..events.broker import OrderEventPublisher
from ..events.producers import OrderEventProducer
from ..services.order_events_query_service import OrderEventsQueryService
from ..services.order_service import OrderService
from ..services.product_service import ProductService

# =====================================================
# DATABASE DEPENDENCIES
# =====================================================


async def get_async_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Provide an async session from the database manager the app was built with"""
    db_manager = getattr(request.app.state, "db_manager", database_manager)
    async for session in db_manager.get_async_session():
        yield session


def get_app_settings(request: Request) -> OrderSettings:
    """Settings the app was built with"""
    return getattr(request.app.state, "settings", None) or get_settings()


# =====================================================
# EVENT DEPENDENCIES
# =====================================================


def get_order_event_producer() -> Optional[OrderEventProducer]:
    """Provide OrderEventProducer instance"""
    return get_event_producer()


def get_optional_audit_bus() -> Optional[AuditEventBus]:
    return get_audit_bus()


def get_running_publisher() -> OrderEventPublisher:
    publisher = get_order_event_publisher()
    if publisher is None:
        raise StoreUnavailable("Order event publisher is not running")
    return publisher


# =====================================================
# SERVICE DEPENDENCIES
# =====================================================


def get_order_service(
    session: AsyncSession = Depends(get_async_session),
    event_producer: Optional[OrderEventProducer] = Depends(get_order_event_producer),
    audit_bus: Optional[AuditEventBus] = Depends(get_optional_audit_bus),
    settings: OrderSettings = Depends(get_app_settings),
) -> OrderService:
    """Provide OrderService instance with database and event publishing"""
    return OrderService(session, event_producer, audit_bus, settings)


def get_order_events_query_service(
    session: AsyncSession = Depends(get_async_session),
    settings: OrderSettings = Depends(get_app_settings),
) -> OrderEventsQueryService:
    return OrderEventsQueryService(session, settings)


def get_product_service(
    session: AsyncSession = Depends(get_async_session),
) -> ProductService:
    return ProductService(session)


# =====================================================
# REQUEST CONTEXT DEPENDENCIES
# =====================================================


def get_correlation_id(request: Request) -> Optional[str]:
    """Extract correlation ID from request headers or state"""
    correlation_id = (
        request.headers.get("X-Correlation-ID")
        or request.headers.get("correlation-id")
        or request.headers.get("x-request-id")
    )

    # Fallback to request state (from middleware)
    if not correlation_id:
        correlation_id = getattr(request.state, "correlation_id", None)

    return correlation_id


def get_admin_email(
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
) -> str:
    """Acting admin for catalog mutations"""
    if not x_user_email:
        raise ValidationError(
            "X-User-Email header is required", details={"header": "X-User-Email"}
        )
    return x_user_email


# =====================================================
# COMMON DEPENDENCY ALIASES
# =====================================================

CorrelationIdDep = Depends(get_correlation_id)
DatabaseDep = Depends(get_async_session)
AdminEmailDep = Depends(get_admin_email)

OrderServiceDep = Depends(get_order_service)
OrderEventsQueryServiceDep = Depends(get_order_events_query_service)
ProductServiceDep = Depends(get_product_service)
OrderEventProducerDep = Depends(get_order_event_producer)
PublisherDep = Depends(get_running_publisher)
