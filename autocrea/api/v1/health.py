"""Health check endpoints."""

from datetime import datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel

from autocrea import __version__

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    environment: str
    timestamp: datetime
    providers: list[str]
    poller_running: bool


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Check API health status."""
    scheduler = getattr(request.app.state, "scheduler", None)
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=request.app.state.settings.app_env,
        timestamp=datetime.utcnow(),
        providers=[p.value for p in request.app.state.registry.list_providers()],
        poller_running=bool(scheduler and scheduler.is_running),
    )
