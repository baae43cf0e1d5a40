"""
Audit event bus.

A side channel for anomalies (orders referencing unknown products, invoice
import failures) kept apart from the normal order fan-out. Events are
matched against rules and handed to each matching rule's target; events
from ``app.order`` are also archived.
"""

import uuid
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from ..utils.logging import setup_order_logging

logger = setup_order_logging("order_service.audit")

ORDER_SOURCE = "app.order"
ORDER_DETAIL_TYPE = "order"
INVOICE_SOURCE = "app.invoice"
INVOICE_DETAIL_TYPE = "invoice"

PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
FAIL_NO_INVOICE_NUMBER = "FAIL_NO_INVOICE_NUMBER"
TIMEOUT = "TIMEOUT"


class AuditEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    source: str
    detail_type: str
    detail: Dict[str, Any] = Field(default_factory=dict)
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EventPattern(BaseModel):
    """
    Match on source, detail type and detail values.

    Each populated field is an allow-list; ``detail`` maps a detail key to
    the values accepted for it. Empty fields match anything.
    """

    source: List[str] = Field(default_factory=list)
    detail_type: List[str] = Field(default_factory=list)
    detail: Dict[str, List[Any]] = Field(default_factory=dict)

    def matches(self, event: AuditEvent) -> bool:
        if self.source and event.source not in self.source:
            return False
        if self.detail_type and event.detail_type not in self.detail_type:
            return False
        for key, allowed in self.detail.items():
            if event.detail.get(key) not in allowed:
                return False
        return True


class AuditTarget(ABC):
    @abstractmethod
    async def handle(self, event: AuditEvent) -> None:
        pass


class AuditRule:
    def __init__(
        self,
        name: str,
        pattern: EventPattern,
        target: AuditTarget,
        description: str = "",
    ):
        self.name = name
        self.pattern = pattern
        self.target = target
        self.description = description


class OrderErrorsHandler(AuditTarget):
    """Records the most recent orders rejected for data problems"""

    def __init__(self, max_events: int = 1000):
        self.received: Deque[AuditEvent] = deque(maxlen=max_events)

    async def handle(self, event: AuditEvent) -> None:
        self.received.append(event)
        logger.warning(
            "Non valid order detected",
            extra={"audit_event_id": event.event_id, "detail": event.detail},
        )


class InvoiceErrorsHandler(AuditTarget):
    """Records the most recent invoices that could not be processed"""

    def __init__(self, max_events: int = 1000):
        self.received: Deque[AuditEvent] = deque(maxlen=max_events)

    async def handle(self, event: AuditEvent) -> None:
        self.received.append(event)
        logger.warning(
            "Non valid invoice detected",
            extra={"audit_event_id": event.event_id, "detail": event.detail},
        )


class InvoiceImportTimeoutQueue(AuditTarget):
    """Holds timed-out invoice imports; warns once the depth reaches the threshold"""

    def __init__(self, alarm_threshold: int = 5):
        self.alarm_threshold = alarm_threshold
        self.messages: Deque[AuditEvent] = deque()

    def __len__(self) -> int:
        return len(self.messages)

    async def handle(self, event: AuditEvent) -> None:
        self.messages.append(event)
        if len(self.messages) >= self.alarm_threshold:
            logger.warning(
                "Invoice import timeout queue above threshold",
                extra={
                    "queue": "invoice-import-timeout",
                    "depth": len(self.messages),
                    "threshold": self.alarm_threshold,
                },
            )

    def drain(self) -> List[AuditEvent]:
        drained = list(self.messages)
        self.messages.clear()
        return drained


class AuditEventBus:
    def __init__(
        self,
        archive_sources: Sequence[str] = (ORDER_SOURCE,),
        archive_retention_days: int = 10,
        archive_max_events: int = 10000,
    ):
        self.rules: List[AuditRule] = []
        self.archive_sources = set(archive_sources)
        self.archive_retention = timedelta(days=archive_retention_days)
        # Oldest first; the oldest entries are dropped past archive_max_events
        self._archive: Deque[AuditEvent] = deque(maxlen=archive_max_events)

    def add_rule(self, rule: AuditRule) -> AuditRule:
        self.rules.append(rule)
        return rule

    def get_rule(self, name: str) -> Optional[AuditRule]:
        return next((rule for rule in self.rules if rule.name == name), None)

    async def put_event(
        self, source: str, detail_type: str, detail: Dict[str, Any]
    ) -> AuditEvent:
        """Archive the event if eligible and deliver it to every matching rule."""
        event = AuditEvent(source=source, detail_type=detail_type, detail=detail)
        if source in self.archive_sources:
            self.prune_archive(event.time)
            self._archive.append(event)

        matched = []
        for rule in self.rules:
            if not rule.pattern.matches(event):
                continue
            matched.append(rule.name)
            try:
                await rule.target.handle(event)
            except Exception as e:
                logger.error(
                    f"Audit target for rule {rule.name} failed: {e}",
                    extra={"rule": rule.name, "audit_event_id": event.event_id},
                )

        logger.info(
            "Audit event put",
            extra={
                "audit_event_id": event.event_id,
                "source": source,
                "detail_type": detail_type,
                "matched_rules": matched,
            },
        )
        return event

    def prune_archive(self, now: Optional[datetime] = None) -> int:
        """Drop archived events older than the retention window"""
        cutoff = (now or datetime.now(timezone.utc)) - self.archive_retention
        pruned = 0
        while self._archive and self._archive[0].time < cutoff:
            self._archive.popleft()
            pruned += 1
        return pruned

    def archived_events(self, now: Optional[datetime] = None) -> List[AuditEvent]:
        """Archived events still inside the retention window"""
        self.prune_archive(now)
        return list(self._archive)


def build_default_audit_bus(
    archive_retention_days: int = 10,
    invoice_timeout_alarm_threshold: int = 5,
    archive_max_events: int = 10000,
    target_max_events: int = 1000,
) -> AuditEventBus:
    bus = AuditEventBus(
        archive_retention_days=archive_retention_days,
        archive_max_events=archive_max_events,
    )
    bus.add_rule(
        AuditRule(
            name="NonValidOrderRule",
            description="Rule matching non valid order",
            pattern=EventPattern(
                source=[ORDER_SOURCE],
                detail_type=[ORDER_DETAIL_TYPE],
                detail={"reason": [PRODUCT_NOT_FOUND]},
            ),
            target=OrderErrorsHandler(target_max_events),
        )
    )
    bus.add_rule(
        AuditRule(
            name="NonValidInvoiceRule",
            description="Rule matching non valid invoice",
            pattern=EventPattern(
                source=[INVOICE_SOURCE],
                detail_type=[INVOICE_DETAIL_TYPE],
                detail={"errorDetail": [FAIL_NO_INVOICE_NUMBER]},
            ),
            target=InvoiceErrorsHandler(target_max_events),
        )
    )
    bus.add_rule(
        AuditRule(
            name="TimeoutImportInvoiceRule",
            description="Rule matching timeout import invoice",
            pattern=EventPattern(
                source=[INVOICE_SOURCE],
                detail_type=[INVOICE_DETAIL_TYPE],
                detail={"errorDetail": [TIMEOUT]},
            ),
            target=InvoiceImportTimeoutQueue(invoice_timeout_alarm_threshold),
        )
    )
    return bus
