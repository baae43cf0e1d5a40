"""
Unit tests for Order Service order placement and removal.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, Mock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from order_service.app.core.exceptions import (
    InvalidOrderTransitionError,
    OrderNotFoundError,
    ProductNotFoundError,
    StoreUnavailable,
    ValidationError,
)
from order_service.app.events.schemas import OrderEventType
from order_service.app.models.order import Carrier, Order, PaymentMethod, ShippingType
from order_service.app.repository.order_event_repository import OrderEventRepository
from order_service.app.services.order_service import OrderService


@pytest.fixture
def order_service(db_session, recording_producer, audit_bus, test_settings):
    return OrderService(db_session, recording_producer, audit_bus, test_settings)


class TestCreateOrder:
    """Test cases for order creation."""

    @pytest.mark.asyncio
    async def test_create_order_totals_catalog_prices(self, order_service, catalog):
        order = await order_service.create_order(
            email="alice@example.com",
            product_ids=["P1", "P2"],
            payment=PaymentMethod.CREDIT_CARD,
        )

        assert order.customer_email == "alice@example.com"
        assert order.total_price == Decimal("15.00")
        assert order.product_codes == ["C1", "C2"]
        assert order.shipping_type == ShippingType.ECONOMIC.value
        assert order.carrier == Carrier.FEDEX.value
        assert order.payment_method == "CREDIT_CARD"
        assert len(order.order_id) == 32

    @pytest.mark.asyncio
    async def test_create_order_charges_repeated_products(self, order_service, catalog):
        order = await order_service.create_order(
            email="alice@example.com",
            product_ids=["P1", "P1", "P2"],
            payment=PaymentMethod.CASH,
        )

        assert order.total_price == Decimal("25.00")
        assert order.product_codes == ["C1", "C1", "C2"]
        assert [line["code"] for line in order.products] == ["C1", "C1", "C2"]

    @pytest.mark.asyncio
    async def test_create_order_publishes_created_event(
        self, order_service, catalog, recording_producer
    ):
        order = await order_service.create_order(
            email="alice@example.com",
            product_ids=["P1"],
            payment="DEBIT_CARD",
            shipping_type="URGENT",
            carrier="CORREIOS",
            request_id="req-1",
        )

        assert len(recording_producer.published) == 1
        event = recording_producer.published[0]
        assert event.event_type == OrderEventType.ORDER_CREATED
        assert event.order_id == order.order_id
        assert event.request_id == "req-1"
        assert event.timestamp == order.created_timestamp
        assert event.ttl == event.timestamp // 1000 + 300
        assert event.body.shipping.type == "URGENT"
        assert event.body.shipping.carrier == "CORREIOS"
        assert event.body.billing.total_price == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_unknown_product_persists_nothing(
        self, order_service, catalog, db_session, recording_producer, audit_bus
    ):
        with pytest.raises(ProductNotFoundError) as exc_info:
            await order_service.create_order(
                email="alice@example.com",
                product_ids=["P1", "MISSING"],
                payment=PaymentMethod.CASH,
                request_id="req-2",
            )

        assert exc_info.value.message == "Some product was not found"
        assert exc_info.value.missing_product_ids == ["MISSING"]
        assert exc_info.value.status_code == 404

        count = await db_session.scalar(select(func.count()).select_from(Order))
        assert count == 0
        assert recording_producer.published == []

        rule = audit_bus.get_rule("NonValidOrderRule")
        assert len(rule.target.received) == 1
        detail = rule.target.received[0].detail
        assert detail["reason"] == "PRODUCT_NOT_FOUND"
        assert detail["requestId"] == "req-2"
        assert detail["productIds"] == ["MISSING"]

    @pytest.mark.asyncio
    async def test_unknown_product_logs_marker(self, order_service, catalog, caplog):
        with caplog.at_level("ERROR", logger="order_service"):
            with pytest.raises(ProductNotFoundError):
                await order_service.create_order(
                    email="alice@example.com",
                    product_ids=["MISSING"],
                    payment=PaymentMethod.CASH,
                )

        assert any(
            record.getMessage() == "Some product was not found"
            for record in caplog.records
        )

    @pytest.mark.asyncio
    async def test_create_over_existing_order_is_invalid_transition(
        self, order_service, catalog, recording_producer
    ):
        with patch(
            "order_service.app.services.order_service.uuid.uuid4",
            return_value=Mock(hex="fixed-order-id"),
        ):
            first = await order_service.create_order(
                email="alice@example.com", product_ids=["P1"], payment="CASH"
            )
            with pytest.raises(InvalidOrderTransitionError) as exc_info:
                await order_service.create_order(
                    email="alice@example.com", product_ids=["P2"], payment="CASH"
                )

        assert exc_info.value.status_code == 409
        assert exc_info.value.details["current_state"] == "CREATED"
        orders = await order_service.list_orders(email="alice@example.com")
        assert [o.total_price for o in orders] == [first.total_price]
        assert len(recording_producer.published) == 1

    @pytest.mark.asyncio
    async def test_email_domain_is_normalized(self, order_service, catalog):
        order = await order_service.create_order(
            email=" alice@Example.COM ", product_ids=["P1"], payment="CASH"
        )

        assert order.customer_email == "alice@example.com"
        for email in ("alice@Example.COM", "alice@example.com"):
            assert [
                o.order_id for o in await order_service.list_orders(email=email)
            ] == [order.order_id]

    @pytest.mark.asyncio
    async def test_invalid_payment_rejected(self, order_service, catalog):
        with pytest.raises(ValidationError):
            await order_service.create_order(
                email="alice@example.com", product_ids=["P1"], payment="BITCOIN"
            )

    @pytest.mark.asyncio
    async def test_empty_product_list_rejected(self, order_service):
        with pytest.raises(ValidationError):
            await order_service.create_order(
                email="alice@example.com", product_ids=[], payment=PaymentMethod.CASH
            )

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_order(
        self, db_session, catalog, recording_producer, test_settings
    ):
        recording_producer.publish_order_event = AsyncMock(
            side_effect=RuntimeError("publisher down")
        )
        service = OrderService(db_session, recording_producer, None, test_settings)

        order = await service.create_order(
            email="alice@example.com", product_ids=["P1"], payment=PaymentMethod.CASH
        )

        assert order.order_id
        orders = await service.list_orders(email="alice@example.com")
        assert [o.order_id for o in orders] == [order.order_id]

    @pytest.mark.asyncio
    async def test_store_failure_maps_to_store_unavailable(
        self, order_service, catalog
    ):
        order_service.product_repository.get_products_by_ids = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("database is locked"))
        )

        with pytest.raises(StoreUnavailable):
            await order_service.create_order(
                email="alice@example.com", product_ids=["P1"], payment="CASH"
            )


class TestDeleteOrder:
    """Test cases for order removal."""

    @pytest.mark.asyncio
    async def test_delete_then_list_is_empty(
        self, order_service, catalog, recording_producer
    ):
        order = await order_service.create_order(
            email="alice@example.com", product_ids=["P1", "P2"], payment="CASH"
        )

        deleted = await order_service.delete_order("alice@example.com", order.order_id)

        assert deleted.order_id == order.order_id
        assert await order_service.list_orders(email="alice@example.com") == []
        assert [e.event_type for e in recording_producer.published] == [
            OrderEventType.ORDER_CREATED,
            OrderEventType.ORDER_DELETED,
        ]
        assert recording_producer.published[1].body.billing.total_price == Decimal(
            "15.00"
        )

    @pytest.mark.asyncio
    async def test_second_delete_is_not_found(
        self, order_service, catalog, recording_producer
    ):
        order = await order_service.create_order(
            email="alice@example.com", product_ids=["P1"], payment="CASH"
        )
        await order_service.delete_order("alice@example.com", order.order_id)

        with pytest.raises(OrderNotFoundError):
            await order_service.delete_order("alice@example.com", order.order_id)

        deleted_events = [
            e
            for e in recording_producer.published
            if e.event_type == OrderEventType.ORDER_DELETED
        ]
        assert len(deleted_events) == 1

    @pytest.mark.asyncio
    async def test_delete_of_logged_deleted_order_is_invalid_transition(
        self, order_service, catalog, recording_producer, db_session
    ):
        order = await order_service.create_order(
            email="alice@example.com", product_ids=["P1"], payment="CASH"
        )
        await order_service.delete_order("alice@example.com", order.order_id)
        await OrderEventRepository(db_session).append(recording_producer.published[-1])

        with pytest.raises(InvalidOrderTransitionError) as exc_info:
            await order_service.delete_order("alice@example.com", order.order_id)

        assert exc_info.value.details == {
            "current_state": "DELETED",
            "target_state": "DELETED",
        }
        assert len(recording_producer.published) == 2

    @pytest.mark.asyncio
    async def test_delete_accepts_differently_cased_domain(self, order_service, catalog):
        order = await order_service.create_order(
            email="alice@example.com", product_ids=["P1"], payment="CASH"
        )

        deleted = await order_service.delete_order("alice@EXAMPLE.com", order.order_id)

        assert deleted.order_id == order.order_id

    @pytest.mark.asyncio
    async def test_delete_requires_matching_email(self, order_service, catalog):
        order = await order_service.create_order(
            email="alice@example.com", product_ids=["P1"], payment="CASH"
        )

        with pytest.raises(OrderNotFoundError):
            await order_service.delete_order("bob@example.com", order.order_id)

    @pytest.mark.asyncio
    async def test_delete_requires_both_keys(self, order_service):
        with pytest.raises(ValidationError):
            await order_service.delete_order("alice@example.com", "")


class TestListOrders:
    """Test cases for order listing."""

    @pytest.mark.asyncio
    async def test_list_by_email_and_single_order(self, order_service, catalog):
        first = await order_service.create_order(
            email="alice@example.com", product_ids=["P1"], payment="CASH"
        )
        await order_service.create_order(
            email="alice@example.com", product_ids=["P2"], payment="CASH"
        )
        await order_service.create_order(
            email="bob@example.com", product_ids=["P2"], payment="CASH"
        )

        alice_orders = await order_service.list_orders(email="alice@example.com")
        assert len(alice_orders) == 2
        assert {o.customer_email for o in alice_orders} == {"alice@example.com"}

        single = await order_service.list_orders(
            email="alice@example.com", order_id=first.order_id
        )
        assert [o.order_id for o in single] == [first.order_id]

        assert len(await order_service.list_orders()) == 3

    @pytest.mark.asyncio
    async def test_unknown_order_lists_empty(self, order_service):
        assert (
            await order_service.list_orders(email="alice@example.com", order_id="nope")
            == []
        )

    @pytest.mark.asyncio
    async def test_order_id_without_email_rejected(self, order_service):
        with pytest.raises(ValidationError):
            await order_service.list_orders(order_id="abc")

    @pytest.mark.asyncio
    async def test_unfiltered_listing_is_bounded(
        self, db_session, catalog, recording_producer, test_settings
    ):
        settings = test_settings.model_copy(update={"ORDER_LIST_LIMIT": 2})
        service = OrderService(db_session, recording_producer, None, settings)
        for _ in range(3):
            await service.create_order(
                email="alice@example.com", product_ids=["P1"], payment="CASH"
            )

        assert len(await service.list_orders()) == 2
        assert len(await service.list_orders(email="alice@example.com")) == 3
