import json
import time
from typing import AsyncIterator, List, Optional

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..events.schemas import (
    ORDER_PARTITION_PREFIX,
    PRODUCT_PARTITION_PREFIX,
    SORT_KEY_SEPARATOR,
    OrderEvent,
    OrderEventBody,
    OrderEventType,
    ProductEvent,
    product_partition_key,
)
from ..models.event import EventRecord


class EventLogRepository:
    """
    Writer for one key space of the shared events table.

    ``partition_prefix`` is the only key space the writer may touch; a record
    whose partition key falls outside it is refused with ``PermissionError``.
    Writes are upserts by (pk, sk), so re-delivering the same event leaves a
    single row.
    """

    partition_prefix: str = ""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _check_scope(self, pk: str) -> None:
        if not self.partition_prefix or not pk.startswith(self.partition_prefix):
            raise PermissionError(
                f"{type(self).__name__} may only write keys starting with "
                f"'{self.partition_prefix}', got '{pk}'"
            )

    async def put_record(self, record: EventRecord) -> None:
        self._check_scope(record.pk)
        await self.session.merge(record)
        await self.session.commit()


class OrderEventRepository(EventLogRepository):
    partition_prefix = ORDER_PARTITION_PREFIX

    async def append(self, event: OrderEvent) -> None:
        await self.put_record(
            EventRecord(
                pk=event.partition_key,
                sk=event.sort_key,
                email=event.email,
                event_type=event.event_type.value,
                order_id=event.order_id,
                request_id=event.request_id,
                payload=event.payload,
                created_at=event.timestamp,
                ttl=event.ttl,
            )
        )

    async def query(
        self,
        email: str,
        event_type: Optional[OrderEventType] = None,
        since: Optional[int] = None,
        until: Optional[int] = None,
        now: Optional[int] = None,
        page_size: int = 100,
    ) -> AsyncIterator[OrderEvent]:
        """
        Lazily yield a customer's order events ordered by sort key.

        ``since``/``until`` bound the event timestamp (epoch ms, inclusive);
        ``now`` is the epoch second used to hide expired events. Rows are
        fetched ``page_size`` at a time using the last (sk, pk) seen.
        """
        now = int(time.time()) if now is None else now
        conditions = [
            EventRecord.email == email,
            EventRecord.pk.startswith(ORDER_PARTITION_PREFIX, autoescape=True),
            or_(EventRecord.ttl.is_(None), EventRecord.ttl > now),
        ]
        if event_type is not None:
            prefix = f"{OrderEventType(event_type).value}{SORT_KEY_SEPARATOR}"
            conditions.append(EventRecord.sk.startswith(prefix, autoescape=True))
        if since is not None:
            conditions.append(EventRecord.created_at >= since)
        if until is not None:
            conditions.append(EventRecord.created_at <= until)

        last_key = None
        while True:
            stmt = select(EventRecord).where(*conditions)
            if last_key is not None:
                last_sk, last_pk = last_key
                stmt = stmt.where(
                    or_(
                        EventRecord.sk > last_sk,
                        and_(EventRecord.sk == last_sk, EventRecord.pk > last_pk),
                    )
                )
            stmt = stmt.order_by(EventRecord.sk, EventRecord.pk).limit(page_size)
            result = await self.session.execute(stmt)
            records = list(result.scalars().all())

            for record in records:
                yield self.to_event(record)

            if len(records) < page_size:
                return
            last_key = (records[-1].sk, records[-1].pk)

    async def has_event(
        self,
        email: str,
        order_id: str,
        event_type: OrderEventType,
        now: Optional[int] = None,
    ) -> bool:
        """Whether an unexpired ``event_type`` event is logged for the order"""
        now = int(time.time()) if now is None else now
        prefix = f"{OrderEventType(event_type).value}{SORT_KEY_SEPARATOR}"
        stmt = (
            select(EventRecord.pk)
            .where(
                EventRecord.email == email,
                EventRecord.order_id == order_id,
                EventRecord.pk.startswith(ORDER_PARTITION_PREFIX, autoescape=True),
                EventRecord.sk.startswith(prefix, autoescape=True),
                or_(EventRecord.ttl.is_(None), EventRecord.ttl > now),
            )
            .limit(1)
        )
        return (await self.session.scalar(stmt)) is not None

    async def purge_expired(self, now: Optional[int] = None) -> int:
        """Physically delete order events whose ttl has passed"""
        now = int(time.time()) if now is None else now
        stmt = delete(EventRecord).where(
            EventRecord.pk.startswith(ORDER_PARTITION_PREFIX, autoescape=True),
            EventRecord.ttl.is_not(None),
            EventRecord.ttl <= now,
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount or 0

    @staticmethod
    def to_event(record: EventRecord) -> OrderEvent:
        return OrderEvent(
            event_type=OrderEventType(record.event_type),
            email=record.email,
            order_id=record.order_id or "",
            request_id=record.request_id,
            timestamp=record.created_at,
            ttl=record.ttl,
            body=OrderEventBody.model_validate(json.loads(record.payload)),
        )


class ProductEventRepository(EventLogRepository):
    partition_prefix = PRODUCT_PARTITION_PREFIX

    async def append(self, event: ProductEvent) -> None:
        await self.put_record(
            EventRecord(
                pk=event.partition_key,
                sk=event.sort_key,
                email=event.email,
                event_type=event.event_type.value,
                product_id=event.product_id,
                request_id=event.request_id,
                payload=event.payload,
                created_at=event.timestamp,
            )
        )

    async def list_for_product(self, code: str) -> List[EventRecord]:
        result = await self.session.execute(
            select(EventRecord)
            .where(EventRecord.pk == product_partition_key(code))
            .order_by(EventRecord.sk)
        )
        return list(result.scalars().all())
