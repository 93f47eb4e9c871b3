"""
API Routes: health, plus the project and pipeline routers.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from radar import __version__
from radar.config import Capabilities, get_capabilities
from radar.schemas import HealthResponse

router = APIRouter()


# ── Health ──────────────────────────────────────────────

@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health(capabilities: Capabilities = Depends(get_capabilities)):
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        queue=capabilities.queue_enabled,
        email=capabilities.email_enabled,
        ai=capabilities.ai_enabled,
    )
