"""
UploadJob Model with Forward-Only Status Tracking

One record per uploaded image:
- pending until the worker (or an external processor) reports an outcome
- processed or failed afterwards, never back to pending
"""

import uuid
from enum import Enum
from typing import Optional, Dict, Any, Union
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from src.core.exceptions import InvalidTransitionError


class UploadStatus(str, Enum):
    """Upload job status states."""
    PENDING = "pending"        # Stored, waiting for background removal
    PROCESSED = "processed"    # Processed image available
    FAILED = "failed"          # Processing failed, no automatic retry

    @property
    def is_terminal(self) -> bool:
        return self is not UploadStatus.PENDING


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadJob(BaseModel):
    """
    A single image's intake-through-processing record.

    Serialized with camelCase keys (``groupKey``, ``processedRef``...) both in
    the job store and in API responses.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    group_key: str = Field(min_length=1)
    original_ref: str = Field(min_length=1)
    original_key: Optional[str] = None
    processed_ref: Optional[str] = None
    status: UploadStatus = UploadStatus.PENDING
    sequence_index: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    error: Optional[str] = None

    # Client metadata
    original_filename: Optional[str] = None
    size: Optional[int] = None
    content_type: Optional[str] = None

    @model_validator(mode="after")
    def check_processed_ref(self) -> "UploadJob":
        has_ref = bool(self.processed_ref)
        if has_ref != (self.status == UploadStatus.PROCESSED):
            raise ValueError("processedRef must be set exactly when status is processed")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def _ensure_pending(self, target: UploadStatus):
        if self.status != UploadStatus.PENDING:
            raise InvalidTransitionError(self.status.value, target.value, job_id=self.id)

    def mark_processed(
        self,
        processed_ref: str,
        sequence_index: Optional[int] = None
    ) -> "UploadJob":
        """Return a copy moved from pending to processed."""
        self._ensure_pending(UploadStatus.PROCESSED)
        if not processed_ref:
            raise ValueError("processed_ref is required")
        update: Dict[str, Any] = {
            "status": UploadStatus.PROCESSED,
            "processed_ref": processed_ref,
            "processed_at": utcnow(),
            "error": None,
        }
        if sequence_index is not None:
            update["sequence_index"] = sequence_index
        return self.model_copy(update=update)

    def mark_failed(self, error: str) -> "UploadJob":
        """Return a copy moved from pending to failed."""
        self._ensure_pending(UploadStatus.FAILED)
        return self.model_copy(update={
            "status": UploadStatus.FAILED,
            "processed_at": utcnow(),
            "error": error or "processing failed",
        })

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def to_response_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        return self.model_dump(mode="json", by_alias=True)


def parse_job(raw: Union[str, bytes, None]) -> Optional[UploadJob]:
    """
    Decode a stored record.

    Returns None for missing or malformed records so index scans can skip them.
    """
    if not raw:
        return None
    try:
        return UploadJob.model_validate_json(raw)
    except (ValidationError, ValueError):
        return None


class DrainOutcome(BaseModel):
    """Result of one job attempted by a drain."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    status: UploadStatus
    processed_ref: Optional[str] = None
    error: Optional[str] = None
