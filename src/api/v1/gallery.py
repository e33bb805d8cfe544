"""
Gallery Endpoint

GET /api/v1/web-companion/gallery?groupKey=STK1 - Processed images, newest first
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_query_service
from src.api.v1.schemas import UploadListResponse
from src.modules.companion.services import UploadQueryService

router = APIRouter()


@router.get("/gallery", response_model=UploadListResponse)
async def gallery(
    group_key: Optional[str] = Query(None, alias="groupKey"),
    stock_number: Optional[str] = Query(None, alias="stockNumber"),
    service: UploadQueryService = Depends(get_query_service),
):
    """Processed uploads of one group, or of every group when none is given."""
    uploads = await service.gallery(group_key or stock_number)
    return UploadListResponse(uploads=uploads, total=len(uploads))
