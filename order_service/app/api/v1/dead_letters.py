"""Dead letter inspection and redrive"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, status

from ...events.broker import OrderEventPublisher
from ...schemas.dead_letter import DeadLetterResponse
from ..deps import PublisherDep

router = APIRouter(prefix="/dead-letters")


@router.get("", response_model=List[DeadLetterResponse])
async def list_dead_letters(
    subscription: Optional[str] = Query(None),
    publisher: OrderEventPublisher = PublisherDep,
) -> List[DeadLetterResponse]:
    return [
        DeadLetterResponse.from_entry(entry)
        for entry in publisher.dead_letters.entries(subscription)
    ]


@router.post("/{entry_id}/redrive", response_model=DeadLetterResponse)
async def redrive_dead_letter(
    entry_id: str, publisher: OrderEventPublisher = PublisherDep
) -> DeadLetterResponse:
    try:
        entry = await publisher.redrive(entry_id)
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Dead letter entry {entry_id} not found",
        )
    return DeadLetterResponse.from_entry(entry)
