"""
Worker Endpoint

POST|GET /api/v1/web-companion/worker/drain?limit=N - Drain pending uploads now

Lets a scheduler (or an operator) run a bounded drain synchronously; the
response lists one outcome per attempted job.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_worker
from src.api.v1.schemas import DrainResponse
from src.core.logging import LogContext
from src.modules.companion.services import UploadWorker

router = APIRouter()


@router.api_route(
    "/worker/drain",
    methods=["POST", "GET"],
    response_model=DrainResponse,
    response_model_exclude_none=True,
)
async def drain(
    limit: Optional[int] = Query(None, description="Jobs to attempt, clamped to the configured maximum"),
    worker: UploadWorker = Depends(get_worker),
):
    with LogContext(stage="drain"):
        outcomes = await worker.drain(limit)
    return DrainResponse(processed=len(outcomes), results=outcomes)
