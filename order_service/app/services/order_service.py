"""
Order placement and removal.

Orders are validated against the product catalog, persisted, and announced
to the order event publisher. Publishing is fire-and-forget: the caller sees
the order outcome whatever happens downstream.
"""

import time
import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import (
    OrderNotFoundError,
    OrderServiceError,
    ProductNotFoundError,
    StoreUnavailable,
    ValidationError,
)
from ..core.setting import OrderSettings, get_settings
from ..events.audit import (
    ORDER_DETAIL_TYPE,
    ORDER_SOURCE,
    PRODUCT_NOT_FOUND,
    AuditEventBus,
)
from ..events.producers import OrderEventProducer, build_order_event
from ..events.schemas import OrderEventType, normalize_email
from ..models.order import (
    Carrier,
    Order,
    OrderLifecycle,
    PaymentMethod,
    ShippingType,
    validate_transition,
)
from ..repository.order_event_repository import OrderEventRepository
from ..repository.order_repository import OrderRepository
from ..repository.product_repository import ProductRepository
from ..utils.logging import setup_order_logging

logger = setup_order_logging("order_service")

PRODUCT_NOT_FOUND_MESSAGE = "Some product was not found"

E = TypeVar("E", bound=Enum)


def _coerce_enum(enum_cls: Type[E], value: Any, field: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(
            f"Invalid {field}: {value}",
            details={field: value, "allowed": [member.value for member in enum_cls]},
        )


def _now_ms() -> int:
    return int(time.time() * 1000)


class OrderService:
    def __init__(
        self,
        session: AsyncSession,
        event_producer: Optional[OrderEventProducer],
        audit_bus: Optional[AuditEventBus] = None,
        settings: Optional[OrderSettings] = None,
    ):
        self.session = session
        self.event_producer = event_producer
        self.audit_bus = audit_bus
        self.settings = settings or get_settings()
        self.order_repository = OrderRepository(session)
        self.event_repository = OrderEventRepository(session)
        self.product_repository = ProductRepository(session)

    async def create_order(
        self,
        email: str,
        product_ids: Sequence[str],
        payment: PaymentMethod,
        shipping_type: ShippingType = ShippingType.ECONOMIC,
        carrier: Carrier = Carrier.FEDEX,
        request_id: Optional[str] = None,
    ) -> Order:
        """
        Create an order for ``email`` from catalog product ids.

        A product id listed more than once is charged once per occurrence.
        Raises ProductNotFoundError, persisting nothing, when any id is
        unknown to the catalog.
        """
        email = normalize_email(email or "")
        if not email:
            raise ValidationError("email is required", details={"field": "email"})
        if not product_ids:
            raise ValidationError(
                "At least one product is required", details={"field": "productIds"}
            )
        payment = _coerce_enum(PaymentMethod, payment, "payment")
        shipping_type = _coerce_enum(ShippingType, shipping_type, "shipping_type")
        carrier = _coerce_enum(Carrier, carrier, "carrier")

        try:
            products = await self.product_repository.get_products_by_ids(product_ids)

            missing = [pid for pid in dict.fromkeys(product_ids) if pid not in products]
            if missing:
                logger.error(
                    PRODUCT_NOT_FOUND_MESSAGE,
                    extra={
                        "email": email,
                        "request_id": request_id,
                        "missing_product_ids": missing,
                    },
                )
                await self._report_product_not_found(email, missing, request_id)
                raise ProductNotFoundError(missing)

            order_id = uuid.uuid4().hex
            current = await self._lifecycle_state(email, order_id)
            validate_transition(current, OrderLifecycle.CREATED)

            lines = [products[pid] for pid in product_ids]
            total_price = sum((product.price for product in lines), Decimal("0.00"))
            timestamp = _now_ms()

            order = await self.order_repository.create_order(
                customer_email=email,
                order_id=order_id,
                payment_method=payment.value,
                shipping_type=shipping_type.value,
                carrier=carrier.value,
                total_price=total_price,
                product_codes=[product.code for product in lines],
                products=[
                    {"code": product.code, "price": str(product.price)}
                    for product in lines
                ],
                created_timestamp=timestamp,
            )
        except OrderServiceError:
            raise
        except SQLAlchemyError as e:
            raise await self._store_failure("create_order", e) from e

        logger.info(
            "Order created",
            extra={
                "order_id": order.order_id,
                "email": email,
                "total_price": str(order.total_price),
                "product_count": len(order.product_codes),
                "request_id": request_id,
            },
        )
        await self._publish(order, OrderEventType.ORDER_CREATED, request_id, timestamp)
        return order

    async def delete_order(
        self, email: str, order_id: str, request_id: Optional[str] = None
    ) -> Order:
        """
        Remove an order.

        An order that never existed is not found. Deleting an order whose
        ORDER_DELETED event is already in the event log is an invalid
        transition; until that event is logged a repeat delete is not found.
        """
        email = normalize_email(email or "")
        if not email or not order_id:
            raise ValidationError(
                "email and orderId are required",
                details={"email": email, "order_id": order_id},
            )

        try:
            order = await self.order_repository.get_order(email, order_id)
            if order is not None:
                current = OrderLifecycle.CREATED
            else:
                current = await self._lifecycle_state(email, order_id)
                if current == OrderLifecycle.NONE:
                    raise OrderNotFoundError(email, order_id)

            validate_transition(current, OrderLifecycle.DELETED)
            await self.order_repository.delete_order(order)
        except OrderServiceError:
            raise
        except SQLAlchemyError as e:
            raise await self._store_failure("delete_order", e) from e

        logger.info(
            "Order deleted",
            extra={"order_id": order_id, "email": email, "request_id": request_id},
        )
        await self._publish(order, OrderEventType.ORDER_DELETED, request_id, _now_ms())
        return order

    async def list_orders(
        self,
        email: Optional[str] = None,
        order_id: Optional[str] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Order]:
        """
        All orders (bounded), one customer's orders, or a single order when
        both email and order id are given.
        """
        if email:
            email = normalize_email(email)
        if order_id and not email:
            raise ValidationError(
                "orderId requires email", details={"order_id": order_id}
            )

        try:
            if email and order_id:
                order = await self.order_repository.get_order(email, order_id)
                return [order] if order else []
            if email:
                return await self.order_repository.get_orders_by_email(
                    email, skip=skip, limit=limit
                )
            return await self.order_repository.get_all_orders(
                skip=skip, limit=limit or self.settings.ORDER_LIST_LIMIT
            )
        except SQLAlchemyError as e:
            raise await self._store_failure("list_orders", e) from e

    async def _lifecycle_state(self, email: str, order_id: str) -> OrderLifecycle:
        # Stored order row first, then the event log
        if await self.order_repository.get_order(email, order_id) is not None:
            return OrderLifecycle.CREATED
        if await self.event_repository.has_event(
            email, order_id, OrderEventType.ORDER_DELETED
        ):
            return OrderLifecycle.DELETED
        return OrderLifecycle.NONE

    async def _publish(
        self,
        order: Order,
        event_type: OrderEventType,
        request_id: Optional[str],
        timestamp: int,
    ) -> None:
        if self.event_producer is None:
            logger.warning(
                "No event producer configured, order event not published",
                extra={"order_id": order.order_id, "event_type": event_type.value},
            )
            return
        try:
            order_event = build_order_event(
                order,
                event_type,
                request_id=request_id,
                ttl_seconds=self.settings.ORDER_EVENTS_TTL_SECONDS,
                timestamp=timestamp,
            )
            await self.event_producer.publish_order_event(order_event)
        except Exception as e:
            logger.error(
                f"Failed to publish {event_type.value} event: {e}",
                extra={
                    "order_id": order.order_id,
                    "email": order.customer_email,
                    "request_id": request_id,
                },
            )

    async def _report_product_not_found(
        self, email: str, missing: List[str], request_id: Optional[str]
    ) -> None:
        if self.audit_bus is None:
            return
        detail: Dict[str, Any] = {
            "reason": PRODUCT_NOT_FOUND,
            "email": email,
            "requestId": request_id,
            "productIds": missing,
        }
        try:
            await self.audit_bus.put_event(ORDER_SOURCE, ORDER_DETAIL_TYPE, detail)
        except Exception as e:
            logger.error(
                f"Failed to put audit event: {e}",
                extra={"email": email, "request_id": request_id},
            )

    async def _store_failure(
        self, operation: str, error: SQLAlchemyError
    ) -> StoreUnavailable:
        await self.session.rollback()
        logger.error(
            f"Order store failure during {operation}: {error}",
            extra={"operation": operation},
        )
        return StoreUnavailable(
            "Order store is temporarily unavailable", details={"operation": operation}
        )
