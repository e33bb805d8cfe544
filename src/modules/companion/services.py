"""
Upload Queue Services

- UploadIntakeService: store an original, create its job, signal the worker
- UploadWorker: drain a bounded batch of pending jobs through background removal
- UploadQueryService: read-only listing and gallery views
"""

import asyncio
import uuid
from typing import Awaitable, List, Optional, TypeVar

from src.core.config import settings
from src.core.exceptions import (
    BadRequestError,
    CompanionError,
    InvalidTransitionError,
    NotFoundError,
    PayloadTooLargeError,
    StorageError,
    UnsupportedMediaTypeError,
)
from src.core.logging import get_logger, LogContext
from src.core.metrics import (
    record_drain,
    record_job_completion,
    record_upload,
    track_stage_latency,
)
from src.core.storage import IStorage, StoredObject, get_storage, sanitize_key_segment
from src.modules.companion.models import DrainOutcome, UploadJob, UploadStatus, utcnow
from src.modules.companion.repositories import UploadRepository
from src.pipeline.stages import BackgroundRemover, remove_background, run_background_removal

logger = get_logger(__name__)

T = TypeVar("T")

MAX_ERROR_LENGTH = 500


def blob_prefix(group_key: str, kind: str) -> str:
    """Blob key prefix, e.g. ``web-companion/STK1/original``."""
    return f"{settings.STORAGE_KEY_PREFIX}/{sanitize_key_segment(group_key)}/{kind}"


def validate_image(
    data: Optional[bytes],
    content_type: Optional[str],
    max_size: int
):
    """Reject missing, non-image or oversized payloads."""
    if not data:
        raise BadRequestError("file is required", reason="file_required")
    if not (content_type or "").lower().startswith("image/"):
        raise UnsupportedMediaTypeError(content_type)
    if len(data) > max_size:
        raise PayloadTooLargeError(len(data), max_size)


def short_error(exc: BaseException) -> str:
    if isinstance(exc, CompanionError):
        message = exc.message
    else:
        message = str(exc) or type(exc).__name__
    return message[:MAX_ERROR_LENGTH]


async def _with_storage_timeout(operation: Awaitable[T], timeout: float, action: str) -> T:
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise StorageError(f"Storage {action} timed out after {timeout:g}s") from e
    except FileNotFoundError as e:
        raise StorageError(f"Storage {action} failed: object not found") from e
    except StorageError:
        raise
    except Exception as e:
        raise StorageError(f"Storage {action} failed: {e}") from e


# =============================================================================
# Intake
# =============================================================================

class UploadIntakeService:
    """Accepts images, persists them and makes their jobs discoverable."""

    def __init__(
        self,
        repository: UploadRepository,
        storage: IStorage,
        trigger=None,
        max_upload_size: Optional[int] = None,
        storage_timeout: Optional[float] = None,
        drain_limit: Optional[int] = None
    ):
        self.repository = repository
        self.storage = storage
        self.trigger = trigger
        self.max_upload_size = max_upload_size or settings.MAX_UPLOAD_SIZE_BYTES
        self.storage_timeout = storage_timeout or settings.STORAGE_TIMEOUT_SECONDS
        self.drain_limit = drain_limit or settings.INTAKE_DRAIN_LIMIT

    async def _store(self, data: bytes, key_prefix: str, content_type: str) -> StoredObject:
        with track_stage_latency("storage_upload"):
            return await _with_storage_timeout(
                self.storage.upload(data, key_prefix=key_prefix, content_type=content_type),
                self.storage_timeout,
                "upload"
            )

    async def _get_existing(self, upload_id: str) -> UploadJob:
        upload = await self.repository.get(upload_id)
        if upload is None:
            raise NotFoundError(job_id=upload_id)
        return upload

    async def create_upload(
        self,
        data: Optional[bytes],
        content_type: Optional[str],
        group_key: Optional[str],
        filename: Optional[str] = None,
        is_processed: bool = False
    ) -> UploadJob:
        """
        Store an original image and create its job.

        The job starts ``pending`` (and the worker is signalled), or directly
        ``processed`` when the caller already removed the background, in which
        case the stored image serves as both original and processed reference.
        """
        group_key = (group_key or "").strip()
        try:
            if not group_key:
                raise BadRequestError("groupKey is required", reason="group_key_required")
            validate_image(data, content_type, self.max_upload_size)
        except CompanionError:
            record_upload("rejected")
            raise

        upload_id = str(uuid.uuid4())

        with LogContext(job_id=upload_id, stage="intake"):
            sequence_index = await self.repository.next_sequence_index(group_key)

            kind = "processed" if is_processed else "original"
            stored = await self._store(data, blob_prefix(group_key, kind), content_type)

            created_at = utcnow()
            upload = UploadJob(
                id=upload_id,
                group_key=group_key,
                original_ref=stored.url,
                original_key=stored.key,
                processed_ref=stored.url if is_processed else None,
                status=UploadStatus.PROCESSED if is_processed else UploadStatus.PENDING,
                sequence_index=sequence_index,
                created_at=created_at,
                processed_at=created_at if is_processed else None,
                original_filename=filename,
                size=len(data),
                content_type=content_type,
            )

            await self.repository.save(upload)
            await self.repository.add_to_indices(upload)
            record_upload(upload.status.value)

            logger.info(
                "upload_created",
                group_key=group_key,
                status=upload.status.value,
                sequence_index=sequence_index,
                size=upload.size
            )

            if upload.status == UploadStatus.PENDING and self.trigger is not None:
                await self.trigger.signal(self.drain_limit)

        return upload

    async def complete_upload(
        self,
        upload_id: str,
        status: UploadStatus = UploadStatus.PROCESSED,
        processed_ref: Optional[str] = None,
        error: Optional[str] = None,
        sequence_index: Optional[int] = None
    ) -> UploadJob:
        """Record an outcome computed outside this service for a pending job."""
        with LogContext(job_id=upload_id, stage="complete"):
            upload = await self._get_existing(upload_id)

            if status == UploadStatus.PROCESSED:
                if not processed_ref:
                    raise BadRequestError(
                        "processedRef is required for processed uploads",
                        reason="processed_ref_required",
                        job_id=upload_id
                    )
                updated = upload.mark_processed(processed_ref, sequence_index)
            elif status == UploadStatus.FAILED:
                updated = upload.mark_failed((error or "processing failed")[:MAX_ERROR_LENGTH])
                if sequence_index is not None:
                    updated = updated.model_copy(update={"sequence_index": sequence_index})
            else:
                raise BadRequestError(
                    "status must be processed or failed",
                    reason="invalid_status",
                    job_id=upload_id
                )

            await self._finish(updated)
            logger.info("upload_completed", status=updated.status.value)
            return updated

    async def attach_processed_image(
        self,
        upload_id: str,
        data: Optional[bytes],
        content_type: Optional[str],
        sequence_index: Optional[int] = None
    ) -> UploadJob:
        """Store a client-processed image and move the pending job to processed."""
        validate_image(data, content_type, self.max_upload_size)

        with LogContext(job_id=upload_id, stage="attach"):
            upload = await self._get_existing(upload_id)
            if upload.is_terminal:
                raise InvalidTransitionError(
                    upload.status.value,
                    UploadStatus.PROCESSED.value,
                    job_id=upload_id
                )

            stored = await self._store(data, blob_prefix(upload.group_key, "processed"), content_type)
            updated = upload.mark_processed(stored.url, sequence_index)

            await self._finish(updated)
            logger.info("processed_image_attached", processed_ref=stored.url)
            return updated

    async def _finish(self, updated: UploadJob):
        await self.repository.save(updated)
        await self.repository.add_to_indices(updated)
        await self.repository.remove_pending(updated.id)
        record_job_completion(updated.status.value)


# =============================================================================
# Worker
# =============================================================================

class UploadWorker:
    """
    Drains pending uploads through background removal.

    There is no claim step: two overlapping drains can pick the same job and
    both process it; the last record write wins.
    """

    def __init__(
        self,
        repository: UploadRepository,
        storage: IStorage,
        remover: Optional[BackgroundRemover] = None,
        removal_timeout: Optional[float] = None,
        storage_timeout: Optional[float] = None,
        scan_group_indices: Optional[bool] = None
    ):
        self.repository = repository
        self.storage = storage
        self.remover = remover or remove_background
        self.removal_timeout = removal_timeout or settings.BACKGROUND_REMOVAL_TIMEOUT_SECONDS
        self.storage_timeout = storage_timeout or settings.STORAGE_TIMEOUT_SECONDS
        self.scan_group_indices = (
            settings.WORKER_SCAN_GROUP_INDICES if scan_group_indices is None else scan_group_indices
        )

    @staticmethod
    def clamp_limit(limit: Optional[int]) -> int:
        if limit is None:
            return settings.WORKER_DEFAULT_LIMIT
        return max(1, min(int(limit), settings.WORKER_MAX_LIMIT))

    async def drain(self, limit: Optional[int] = None) -> List[DrainOutcome]:
        """
        Attempt up to ``limit`` pending jobs, one after another.

        A failing job is recorded as failed and the batch moves on. Only a
        failure to enumerate candidates propagates.
        """
        limit = self.clamp_limit(limit)
        logger.info("drain_started", limit=limit)

        candidates = await self.list_pending(limit)
        record_drain(len(candidates))

        outcomes: List[DrainOutcome] = []
        for candidate in candidates:
            outcome = await self.process_one(candidate.id)
            if outcome is not None:
                outcomes.append(outcome)

        logger.info(
            "drain_finished",
            attempted=len(outcomes),
            failed=sum(1 for o in outcomes if o.status == UploadStatus.FAILED)
        )
        return outcomes

    async def list_pending(self, limit: int) -> List[UploadJob]:
        """
        Pending jobs to attempt, oldest first (best effort).

        Index entries pointing at missing or terminal records are pruned from
        the pending index on the way.
        """
        pending_ids = await self.repository.pending_ids()
        uploads = await self.repository.get_many(pending_ids)

        found = {u.id for u in uploads}
        stale = [i for i in pending_ids if i not in found]
        candidates = []
        for upload in uploads:
            if upload.status == UploadStatus.PENDING:
                candidates.append(upload)
            else:
                stale.append(upload.id)

        for upload_id in stale:
            await self._prune(upload_id)

        if len(candidates) < limit and self.scan_group_indices:
            seen = set(pending_ids)
            for group_key in await self.repository.group_keys():
                group_ids = [i for i in await self.repository.group_ids(group_key) if i not in seen]
                seen.update(group_ids)
                for upload in await self.repository.get_many(group_ids):
                    if upload.status == UploadStatus.PENDING:
                        logger.info("unindexed_pending_upload_found", upload_id=upload.id)
                        candidates.append(upload)
                if len(candidates) >= limit:
                    break

        candidates.sort(key=lambda u: (u.created_at, u.sequence_index))
        return candidates[:limit]

    async def process_one(self, upload_id: str) -> Optional[DrainOutcome]:
        """Process one job; None when it was skipped because it is gone or terminal."""
        with LogContext(job_id=upload_id, stage="worker"):
            try:
                upload = await self.repository.get(upload_id)
            except CompanionError as e:
                logger.error("upload_reload_failed", error=e.message)
                return None

            if upload is None or upload.is_terminal:
                logger.info(
                    "upload_skipped",
                    reason="missing" if upload is None else upload.status.value
                )
                return None

            try:
                stored = await self._process(upload)
                updated = upload.mark_processed(stored.url)
                await self.repository.save(updated)
            except Exception as e:
                message = short_error(e)
                logger.error("job_failed", error=message, error_type=type(e).__name__)
                try:
                    await self.repository.save(upload.mark_failed(message))
                except CompanionError as save_error:
                    logger.error("job_failure_not_recorded", error=save_error.message)
                await self._prune(upload.id)
                record_job_completion(UploadStatus.FAILED.value)
                return DrainOutcome(id=upload.id, status=UploadStatus.FAILED, error=message)

            await self._prune(upload.id)
            record_job_completion(UploadStatus.PROCESSED.value)
            logger.info("job_processed", processed_ref=stored.url)
            return DrainOutcome(
                id=upload.id,
                status=UploadStatus.PROCESSED,
                processed_ref=stored.url
            )

    async def _process(self, upload: UploadJob) -> StoredObject:
        with track_stage_latency("storage_download"):
            original = await _with_storage_timeout(
                self.storage.download(upload.original_ref),
                self.storage_timeout,
                "download"
            )

        processed = await run_background_removal(self.remover, original, self.removal_timeout)

        with track_stage_latency("storage_upload"):
            return await _with_storage_timeout(
                self.storage.upload(
                    processed,
                    key_prefix=blob_prefix(upload.group_key, "processed"),
                    content_type="image/png"
                ),
                self.storage_timeout,
                "upload"
            )

    async def _prune(self, upload_id: str):
        try:
            await self.repository.remove_pending(upload_id)
        except CompanionError as e:
            logger.warning("pending_index_prune_failed", upload_id=upload_id, error=e.message)


# =============================================================================
# Query
# =============================================================================

class UploadQueryService:
    """Read-only projections over the job store."""

    def __init__(self, repository: UploadRepository):
        self.repository = repository

    async def get_upload(self, upload_id: str) -> UploadJob:
        upload = await self.repository.get(upload_id)
        if upload is None:
            raise NotFoundError(job_id=upload_id)
        return upload

    async def list_uploads(
        self,
        group_key: Optional[str],
        status: Optional[UploadStatus] = None
    ) -> List[UploadJob]:
        """Uploads of one group, oldest first."""
        group_key = (group_key or "").strip()
        if not group_key:
            raise BadRequestError("groupKey is required", reason="group_key_required")

        ids = await self.repository.group_ids(group_key)
        uploads = [
            u for u in await self.repository.get_many(ids)
            if u.group_key == group_key and (status is None or u.status == status)
        ]
        uploads.sort(key=lambda u: (u.created_at, u.sequence_index))
        return uploads

    async def gallery(self, group_key: Optional[str] = None) -> List[UploadJob]:
        """Processed uploads of one group or of every group, most recent first."""
        group_key = (group_key or "").strip()
        groups = [group_key] if group_key else await self.repository.group_keys()

        uploads: List[UploadJob] = []
        for group in groups:
            try:
                ids = await self.repository.group_ids(group)
                uploads.extend(
                    u for u in await self.repository.get_many(ids) if u.group_key == group
                )
            except CompanionError as e:
                logger.warning("gallery_group_skipped", group_key=group, error=e.message)

        processed = [
            u for u in uploads
            if u.status == UploadStatus.PROCESSED and u.processed_ref
        ]
        processed.sort(
            key=lambda u: (u.processed_at or u.created_at, u.sequence_index),
            reverse=True
        )
        return processed


def build_worker(
    redis_client,
    storage: Optional[IStorage] = None,
    remover: Optional[BackgroundRemover] = None,
    scan_group_indices: Optional[bool] = None
) -> UploadWorker:
    """Wire a worker from a Redis client (used by the Celery task and inline trigger)."""
    return UploadWorker(
        repository=UploadRepository(redis_client),
        storage=storage or get_storage(),
        remover=remover,
        scan_group_indices=scan_group_indices,
    )
