"""Health check endpoints."""

from fastapi import APIRouter, Request

from nullroute import __version__
from nullroute.config import get_settings
from nullroute.ledger.database import ping_db

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "nullroute"}


@router.get("/health/detailed")
async def detailed_health(request: Request):
    """Detailed health check with configuration info."""
    settings = get_settings()
    database_ok = await ping_db()
    governor = request.app.state.governor
    return {
        "status": "healthy" if database_ok else "degraded",
        "service": "nullroute",
        "version": __version__,
        "database": "ok" if database_ok else "unreachable",
        "exchange": governor.client.name,
        "queue": governor.get_queue_status(),
        "config": settings.get_safe_dict(),
    }
