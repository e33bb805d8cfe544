"""
Request/Response Schemas for the web companion routes.

Keys are camelCase on the wire, matching the stored job records.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.modules.companion.models import DrainOutcome, UploadJob, UploadStatus


class CompleteUploadRequest(BaseModel):
    """Outcome reported for a pending upload by an external processor."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: UploadStatus = UploadStatus.PROCESSED
    processed_ref: Optional[str] = None
    error: Optional[str] = Field(default=None, max_length=2000)
    sequence_index: Optional[int] = Field(default=None, ge=0)


class UploadResponse(BaseModel):
    success: bool = True
    upload: UploadJob


class UploadListResponse(BaseModel):
    success: bool = True
    uploads: List[UploadJob]
    total: int


class DrainResponse(BaseModel):
    success: bool = True
    processed: int
    results: List[DrainOutcome]
