"""Request queue monitoring."""

from fastapi import APIRouter, Depends

from nullroute.api.contracts import QueueStatusResponse
from nullroute.api.dependencies import get_governor
from nullroute.governor import RequestGovernor

router = APIRouter(tags=["Queue"])


@router.get("/queue/status", response_model=QueueStatusResponse)
async def get_queue_status(governor: RequestGovernor = Depends(get_governor)) -> QueueStatusResponse:
    """Outbound request queue depth, for operational visibility."""
    return QueueStatusResponse(**governor.get_queue_status())
