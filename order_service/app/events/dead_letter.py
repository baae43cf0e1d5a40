"""
Dead letter channel for the order event publisher.

Messages land here once a subscription has used up its retry budget. They
stay until redriven or until the retention window passes.
"""

import uuid
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..core.exceptions import PublishFailure
from ..utils.logging import setup_order_logging
from .base import BaseEvent

logger = setup_order_logging("order_service.dead_letter")


class DeadLetterEntry(BaseModel):
    """A message that exhausted its retry budget on one subscription"""

    entry_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    subscription: str
    event: BaseEvent
    event_type_tag: Optional[str] = None
    attempts: int
    error_type: str
    error_message: str
    failed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_failure(
        cls, failure: PublishFailure, event: BaseEvent, event_type_tag: Optional[str]
    ) -> "DeadLetterEntry":
        return cls(
            subscription=failure.subscription,
            event=event,
            event_type_tag=event_type_tag,
            attempts=failure.attempts,
            error_type=type(failure.cause).__name__,
            error_message=str(failure.cause),
        )


class DeadLetterQueue:
    """In-process dead letter store keyed by entry id, oldest first"""

    def __init__(self, retention_days: int = 10):
        self.retention = timedelta(days=retention_days)
        self._entries: "OrderedDict[str, DeadLetterEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def send(self, entry: DeadLetterEntry) -> DeadLetterEntry:
        self._entries[entry.entry_id] = entry
        logger.error(
            "Message moved to dead letter queue",
            extra={
                "entry_id": entry.entry_id,
                "subscription": entry.subscription,
                "event_id": entry.event.event_id,
                "event_type": entry.event_type_tag,
                "attempts": entry.attempts,
                "error_type": entry.error_type,
                "error": entry.error_message,
            },
        )
        return entry

    def entries(self, subscription: Optional[str] = None) -> List[DeadLetterEntry]:
        return [
            entry
            for entry in self._entries.values()
            if subscription is None or entry.subscription == subscription
        ]

    def get(self, entry_id: str) -> Optional[DeadLetterEntry]:
        return self._entries.get(entry_id)

    def pop(self, entry_id: str) -> Optional[DeadLetterEntry]:
        return self._entries.pop(entry_id, None)

    def prune(self, now: Optional[datetime] = None) -> int:
        """Drop entries older than the retention window; returns how many"""
        cutoff = (now or datetime.now(timezone.utc)) - self.retention
        expired = [
            entry_id
            for entry_id, entry in self._entries.items()
            if entry.failed_at < cutoff
        ]
        for entry_id in expired:
            del self._entries[entry_id]
        if expired:
            logger.info(
                "Pruned dead letter entries", extra={"pruned": len(expired)}
            )
        return len(expired)

    def stats(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for entry in self._entries.values():
            counts[entry.subscription] = counts.get(entry.subscription, 0) + 1
        return counts
