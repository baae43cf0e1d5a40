from typing import Any, Dict

from fastapi import APIRouter

from ...core.events import health_check_events
from ...core.setting import get_settings

router = APIRouter()


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """Liveness plus event pipeline state"""
    settings = get_settings()
    events = await health_check_events()
    return {
        "status": "healthy" if events["publisher_running"] else "degraded",
        "service": settings.SERVICE_NAME,
        "version": settings.APP_VERSION,
        "events": events,
    }
