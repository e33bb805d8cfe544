"""
Upload Endpoints

POST /api/v1/web-companion/uploads                  - Store an image and queue it
GET  /api/v1/web-companion/uploads                  - List uploads of a group
GET  /api/v1/web-companion/uploads/{id}             - Get one upload
POST /api/v1/web-companion/uploads/{id}/complete    - Record an external outcome
POST /api/v1/web-companion/uploads/{id}/processed   - Attach a client-processed image
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from src.api.dependencies import get_intake_service, get_query_service
from src.api.v1.schemas import CompleteUploadRequest, UploadListResponse, UploadResponse
from src.modules.companion.models import UploadStatus
from src.modules.companion.services import UploadIntakeService, UploadQueryService

router = APIRouter()


async def _read(file: Optional[UploadFile]):
    if file is None:
        return None, None, None
    data = await file.read()
    return data, file.content_type, file.filename


@router.post("/uploads", response_model=UploadResponse)
async def create_upload(
    file: Optional[UploadFile] = File(None),
    group_key: Optional[str] = Form(None, alias="groupKey"),
    stock_number: Optional[str] = Form(None, alias="stockNumber"),
    is_processed: bool = Form(False, alias="isProcessed"),
    service: UploadIntakeService = Depends(get_intake_service),
):
    """
    Store an original image and create its job.

    The job is queued for background removal unless ``isProcessed`` is set,
    in which case the image is recorded as already processed.
    """
    data, content_type, filename = await _read(file)
    upload = await service.create_upload(
        data=data,
        content_type=content_type,
        group_key=group_key or stock_number,
        filename=filename,
        is_processed=is_processed,
    )
    return UploadResponse(upload=upload)


@router.get("/uploads", response_model=UploadListResponse)
async def list_uploads(
    group_key: Optional[str] = Query(None, alias="groupKey"),
    stock_number: Optional[str] = Query(None, alias="stockNumber"),
    status: Optional[UploadStatus] = Query(None),
    service: UploadQueryService = Depends(get_query_service),
):
    """List uploads of one group, oldest first."""
    uploads = await service.list_uploads(group_key or stock_number, status=status)
    return UploadListResponse(uploads=uploads, total=len(uploads))


@router.get("/uploads/{upload_id}", response_model=UploadResponse)
async def get_upload(
    upload_id: str,
    service: UploadQueryService = Depends(get_query_service),
):
    upload = await service.get_upload(upload_id)
    return UploadResponse(upload=upload)


@router.post("/uploads/{upload_id}/complete", response_model=UploadResponse)
async def complete_upload(
    upload_id: str,
    request: CompleteUploadRequest,
    service: UploadIntakeService = Depends(get_intake_service),
):
    """Record the outcome of processing done outside the worker."""
    upload = await service.complete_upload(
        upload_id,
        status=request.status,
        processed_ref=request.processed_ref,
        error=request.error,
        sequence_index=request.sequence_index,
    )
    return UploadResponse(upload=upload)


@router.post("/uploads/{upload_id}/processed", response_model=UploadResponse)
async def attach_processed_image(
    upload_id: str,
    file: Optional[UploadFile] = File(None),
    sequence_index: Optional[int] = Form(None, alias="sequenceIndex", ge=0),
    service: UploadIntakeService = Depends(get_intake_service),
):
    """Upload a processed image for a pending job and mark it processed."""
    data, content_type, _ = await _read(file)
    upload = await service.attach_processed_image(
        upload_id,
        data=data,
        content_type=content_type,
        sequence_index=sequence_index,
    )
    return UploadResponse(upload=upload)
