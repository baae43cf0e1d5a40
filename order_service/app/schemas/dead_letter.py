from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel

from ..events.dead_letter import DeadLetterEntry


class DeadLetterResponse(BaseModel):
    entry_id: str
    subscription: str
    event_id: str
    event_type: Optional[str] = None
    correlation_id: Optional[str] = None
    attempts: int
    error_type: str
    error_message: str
    failed_at: datetime
    data: Dict[str, Any]

    @classmethod
    def from_entry(cls, entry: DeadLetterEntry) -> "DeadLetterResponse":
        return cls(
            entry_id=entry.entry_id,
            subscription=entry.subscription,
            event_id=entry.event.event_id,
            event_type=entry.event_type_tag,
            correlation_id=entry.event.correlation_id,
            attempts=entry.attempts,
            error_type=entry.error_type,
            error_message=entry.error_message,
            failed_at=entry.failed_at,
            data=entry.event.data,
        )
