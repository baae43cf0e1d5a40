from typing import AsyncIterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import StoreUnavailable, ValidationError
from ..core.setting import OrderSettings, get_settings
from ..events.schemas import OrderEventType, normalize_email
from ..repository.order_event_repository import OrderEventRepository
from ..schemas.order_event import OrderEventSummary
from ..utils.logging import setup_order_logging

logger = setup_order_logging("order_service.events_query")


class OrderEventsQueryService:
    """Read access to a customer's order event history"""

    def __init__(self, session: AsyncSession, settings: Optional[OrderSettings] = None):
        self.settings = settings or get_settings()
        self.event_repository = OrderEventRepository(session)

    @staticmethod
    def _validate(
        email: Optional[str], event_type: Optional[str]
    ) -> Optional[OrderEventType]:
        if not email or not email.strip():
            raise ValidationError("email is required", details={"field": "email"})
        if event_type is None or event_type == "":
            return None
        try:
            return OrderEventType(event_type)
        except ValueError:
            raise ValidationError(
                f"Invalid eventType: {event_type}",
                details={
                    "event_type": event_type,
                    "allowed": [member.value for member in OrderEventType],
                },
            )

    async def iter_order_events(
        self,
        email: str,
        event_type: Optional[str] = None,
        since: Optional[int] = None,
        until: Optional[int] = None,
    ) -> AsyncIterator[OrderEventSummary]:
        """Lazily yield event projections ordered by event type, then time"""
        narrowed = self._validate(email, event_type)
        async for event in self.event_repository.query(
            normalize_email(email),
            event_type=narrowed,
            since=since,
            until=until,
            page_size=self.settings.ORDER_EVENTS_PAGE_SIZE,
        ):
            yield OrderEventSummary.from_event(event)

    async def query_order_events(
        self,
        email: str,
        event_type: Optional[str] = None,
        since: Optional[int] = None,
        until: Optional[int] = None,
    ) -> List[OrderEventSummary]:
        try:
            events = [
                summary
                async for summary in self.iter_order_events(
                    email, event_type, since, until
                )
            ]
        except SQLAlchemyError as e:
            logger.error(
                f"Event log query failed: {e}",
                extra={"email": email, "event_type": event_type},
            )
            raise StoreUnavailable("Event log is temporarily unavailable") from e

        logger.info(
            "Order events queried",
            extra={"email": email, "event_type": event_type, "count": len(events)},
        )
        return events
