"""
Pytest configuration and fixtures for Order Service tests.
"""

import os
import tempfile
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, List
from unittest.mock import AsyncMock, Mock

import pytest

# Set up test environment before the app modules build their singletons
_TEST_DIR = tempfile.mkdtemp(prefix="order-service-tests-")
os.environ["ENVIRONMENT"] = "test"
os.environ["ORDER_DATABASE_URL"] = (
    f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'orders.db')}"
)
os.environ["KAFKA_ENABLED"] = "false"
os.environ["SENDGRID_API_KEY"] = ""
os.environ["FROM_EMAIL"] = ""

from order_service.app.core.database import OrderServiceDatabaseManager
from order_service.app.core.setting import OrderSettings
from order_service.app.events.audit import build_default_audit_bus
from order_service.app.events.base import BaseEvent, BatchEventHandler, EventHandler
from order_service.app.events.broker import OrderEventPublisher
from order_service.app.events.producers import OrderEventProducer
from order_service.app.repository.product_repository import ProductRepository


@pytest.fixture
def test_settings() -> OrderSettings:
    """Settings with fast retries and a short email batching window."""
    return OrderSettings(
        ENVIRONMENT="test",
        PUBLISHER_MAX_ATTEMPTS=3,
        PUBLISHER_RETRY_DELAY_SECONDS=0.0,
        PUBLISHER_MAX_RETRY_DELAY_SECONDS=0.0,
        EMAIL_BATCH_SIZE=5,
        EMAIL_MAX_BATCHING_WINDOW_SECONDS=0.05,
        ORDER_EVENTS_PURGE_INTERVAL_SECONDS=3600,
        KAFKA_ENABLED=False,
        SENDGRID_API_KEY="",
        FROM_EMAIL="",
    )


@pytest.fixture
async def db_manager(tmp_path) -> AsyncGenerator[OrderServiceDatabaseManager, None]:
    """File backed SQLite database, fresh for every test."""
    manager = OrderServiceDatabaseManager(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        pool_size=5,
        max_overflow=5,
    )
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
async def db_session(db_manager) -> AsyncGenerator[Any, None]:
    """Create a test database session."""
    async with db_manager.async_session_maker() as session:
        yield session


@pytest.fixture
async def catalog(db_session) -> Dict[str, Any]:
    """Products P1 (10.00) and P2 (5.00) in the catalog."""
    repository = ProductRepository(db_session)
    p1 = await repository.create_product(
        name="Product One", code="C1", price=Decimal("10.00"), product_id="P1"
    )
    p2 = await repository.create_product(
        name="Product Two", code="C2", price=Decimal("5.00"), product_id="P2"
    )
    return {"P1": p1, "P2": p2}


@pytest.fixture
def audit_bus():
    return build_default_audit_bus()


@pytest.fixture
async def publisher() -> AsyncGenerator[OrderEventPublisher, None]:
    """Started publisher without subscriptions."""
    publisher = OrderEventPublisher()
    await publisher.start()
    yield publisher
    await publisher.stop(drain=False)


@pytest.fixture
def recording_producer():
    """OrderEventProducer stand-in that records published order events."""
    producer = Mock(spec=OrderEventProducer)
    producer.published = []

    async def publish_order_event(order_event):
        producer.published.append(order_event)
        return ["recorder"]

    producer.publish_order_event = AsyncMock(side_effect=publish_order_event)
    return producer


class RecordingHandler(EventHandler):
    """Handler that records events and fails the first ``failures`` calls."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0
        self.events: List[BaseEvent] = []

    async def handle(self, event: BaseEvent) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"handler failure {self.calls}")
        self.events.append(event)


class RecordingBatchHandler(BatchEventHandler):
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0
        self.batches: List[List[BaseEvent]] = []

    async def handle_batch(self, events: List[BaseEvent]) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"batch failure {self.calls}")
        self.batches.append(list(events))


@pytest.fixture
def make_handler():
    return RecordingHandler


@pytest.fixture
def make_batch_handler():
    return RecordingBatchHandler


@pytest.fixture
def mock_call_next():
    """Mock call_next function for middleware testing."""

    async def call_next(request):
        from starlette.responses import Response

        return Response("OK", status_code=200)

    return call_next
