from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, status

from ...core.exceptions import OrderServiceError
from ...schemas.order import CreateOrderRequest, OrderResponse
from ...schemas.order_event import OrderEventSummary
from ...services.order_events_query_service import OrderEventsQueryService
from ...services.order_service import OrderService
from ...utils.logging import setup_order_logging
from ..deps import CorrelationIdDep, OrderEventsQueryServiceDep, OrderServiceDep

logger = setup_order_logging("order_service.api.orders")
router = APIRouter(prefix="/orders")


def _internal_error(operation: str, error: Exception, **context) -> HTTPException:
    logger.error(
        f"Failed to {operation}: {error}",
        extra={"operation": operation, **context},
        exc_info=True,
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {operation}",
    )


@router.get("", response_model=List[OrderResponse])
async def list_orders(
    email: Optional[str] = Query(None, description="Customer email"),
    order_id: Optional[str] = Query(None, alias="orderId"),
    skip: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    correlation_id: Optional[str] = CorrelationIdDep,
    order_service: OrderService = OrderServiceDep,
) -> List[OrderResponse]:
    """All orders, one customer's orders, or a single order"""
    try:
        orders = await order_service.list_orders(
            email=email, order_id=order_id, skip=skip, limit=limit
        )
        return [OrderResponse.from_order(order) for order in orders]
    except (HTTPException, OrderServiceError):
        raise
    except Exception as e:
        raise _internal_error("list orders", e, correlation_id=correlation_id)


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_request: CreateOrderRequest,
    correlation_id: Optional[str] = CorrelationIdDep,
    order_service: OrderService = OrderServiceDep,
) -> OrderResponse:
    try:
        order = await order_service.create_order(
            email=order_request.email,
            product_ids=order_request.product_ids,
            payment=order_request.payment,
            shipping_type=order_request.shipping.type,
            carrier=order_request.shipping.carrier,
            request_id=correlation_id,
        )
        return OrderResponse.from_order(order)
    except (HTTPException, OrderServiceError):
        raise
    except Exception as e:
        raise _internal_error("create order", e, correlation_id=correlation_id)


@router.delete("", response_model=OrderResponse)
async def delete_order(
    email: str = Query(..., description="Customer email"),
    order_id: str = Query(..., alias="orderId"),
    correlation_id: Optional[str] = CorrelationIdDep,
    order_service: OrderService = OrderServiceDep,
) -> OrderResponse:
    try:
        order = await order_service.delete_order(
            email=email, order_id=order_id, request_id=correlation_id
        )
        return OrderResponse.from_order(order)
    except (HTTPException, OrderServiceError):
        raise
    except Exception as e:
        raise _internal_error("delete order", e, correlation_id=correlation_id)


@router.get("/events", response_model=List[OrderEventSummary])
async def list_order_events(
    email: str = Query(..., description="Customer email"),
    event_type: Optional[str] = Query(None, alias="eventType"),
    since: Optional[int] = Query(None, ge=0, description="Epoch milliseconds"),
    until: Optional[int] = Query(None, ge=0, description="Epoch milliseconds"),
    correlation_id: Optional[str] = CorrelationIdDep,
    query_service: OrderEventsQueryService = OrderEventsQueryServiceDep,
) -> List[OrderEventSummary]:
    """Order event history for a customer, optionally narrowed by type"""
    try:
        return await query_service.query_order_events(
            email, event_type=event_type, since=since, until=until
        )
    except (HTTPException, OrderServiceError):
        raise
    except Exception as e:
        raise _internal_error("query order events", e, correlation_id=correlation_id)
