"""
Job Store Repository (Redis)

Key layout, all under the configured namespace:

    {ns}:upload:{id}              JSON upload record
    {ns}:stock:{group}:uploads    set of upload ids of one group (any status)
    {ns}:stock:{group}:seq        per-group sequence counter
    {ns}:pending                  set of upload ids awaiting processing

Every write is a single-key command; a failure between the record write and
an index write leaves the store and the indices out of step, and readers
tolerate that.
"""

import time
from typing import Iterable, List, Optional

from redis.exceptions import RedisError

from src.core.config import settings
from src.core.exceptions import JobStoreError
from src.core.logging import get_logger
from src.modules.companion.models import UploadJob, UploadStatus, parse_job

logger = get_logger(__name__)


class UploadRepository:
    """Repository for upload records and their indices in Redis.

    Expects a ``redis.asyncio`` client created with ``decode_responses=True``.
    """

    def __init__(
        self,
        redis_client,
        namespace: Optional[str] = None,
        max_index_scan: Optional[int] = None
    ):
        self.redis = redis_client
        self.prefix = namespace or settings.REDIS_NAMESPACE
        self.max_index_scan = max_index_scan or settings.MAX_INDEX_SCAN

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    def upload_key(self, upload_id: str) -> str:
        return f"{self.prefix}:upload:{upload_id}"

    def group_index_key(self, group_key: str) -> str:
        return f"{self.prefix}:stock:{group_key}:uploads"

    def sequence_key(self, group_key: str) -> str:
        return f"{self.prefix}:stock:{group_key}:seq"

    @property
    def pending_key(self) -> str:
        return f"{self.prefix}:pending"

    def group_from_index_key(self, index_key: str) -> Optional[str]:
        head = f"{self.prefix}:stock:"
        tail = ":uploads"
        if index_key.startswith(head) and index_key.endswith(tail):
            return index_key[len(head):-len(tail)] or None
        return None

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    async def get(self, upload_id: str) -> Optional[UploadJob]:
        """Get one upload; None when missing or unreadable."""
        try:
            raw = await self.redis.get(self.upload_key(upload_id))
        except RedisError as e:
            raise JobStoreError(f"Failed to read upload: {e}", job_id=upload_id) from e
        return parse_job(raw)

    async def get_many(self, upload_ids: Iterable[str]) -> List[UploadJob]:
        """Get uploads in one round-trip, skipping stale or malformed entries."""
        ids = list(upload_ids)
        if not ids:
            return []
        try:
            raws = await self.redis.mget([self.upload_key(i) for i in ids])
        except RedisError as e:
            raise JobStoreError(f"Failed to read uploads: {e}") from e

        uploads = []
        for upload_id, raw in zip(ids, raws):
            upload = parse_job(raw)
            if upload is None:
                logger.debug("stale_index_entry_skipped", upload_id=upload_id)
                continue
            uploads.append(upload)
        return uploads

    async def save(self, upload: UploadJob):
        """Upsert the upload record (last write wins)."""
        try:
            await self.redis.set(self.upload_key(upload.id), upload.to_json())
        except RedisError as e:
            raise JobStoreError(f"Failed to save upload: {e}", job_id=upload.id) from e

    # -------------------------------------------------------------------------
    # Indices
    # -------------------------------------------------------------------------

    async def add_to_indices(self, upload: UploadJob):
        """Register the upload in its group index and, while pending, the pending index."""
        try:
            await self.redis.sadd(self.group_index_key(upload.group_key), upload.id)
            if upload.status == UploadStatus.PENDING:
                await self.redis.sadd(self.pending_key, upload.id)
        except RedisError as e:
            raise JobStoreError(f"Failed to index upload: {e}", job_id=upload.id) from e

    async def remove_pending(self, upload_id: str):
        try:
            await self.redis.srem(self.pending_key, upload_id)
        except RedisError as e:
            raise JobStoreError(f"Failed to update pending index: {e}", job_id=upload_id) from e

    async def _members(self, key: str) -> List[str]:
        members: List[str] = []
        try:
            async for member in self.redis.sscan_iter(key, count=min(self.max_index_scan, 500)):
                members.append(member)
                if len(members) >= self.max_index_scan:
                    logger.warning("index_scan_truncated", index=key, limit=self.max_index_scan)
                    break
        except RedisError as e:
            raise JobStoreError(f"Failed to read index {key}: {e}") from e
        return members

    async def group_ids(self, group_key: str) -> List[str]:
        return await self._members(self.group_index_key(group_key))

    async def pending_ids(self) -> List[str]:
        return await self._members(self.pending_key)

    async def group_keys(self) -> List[str]:
        """
        Enumerate groups by scanning index keys.

        SCAN may be unsupported (some hosted Redis proxies) or fail midway;
        the groups found so far are returned instead of an error.
        """
        groups: List[str] = []
        try:
            async for index_key in self.redis.scan_iter(
                match=f"{self.prefix}:stock:*:uploads",
                count=500
            ):
                group_key = self.group_from_index_key(index_key)
                if group_key:
                    groups.append(group_key)
                if len(groups) >= self.max_index_scan:
                    logger.warning("group_scan_truncated", limit=self.max_index_scan)
                    break
        except (RedisError, AttributeError, NotImplementedError) as e:
            logger.warning("group_scan_unavailable", error=str(e), found=len(groups))
        return groups

    # -------------------------------------------------------------------------
    # Sequence
    # -------------------------------------------------------------------------

    async def next_sequence_index(self, group_key: str) -> int:
        """
        Next zero-based display index for the group.

        Falls back to the wall clock in milliseconds when INCR is unavailable;
        that value is only a rough ordering and may collide under concurrency.
        """
        try:
            raw_sequence = await self.redis.incr(self.sequence_key(group_key))
            return max(int(raw_sequence) - 1, 0)
        except (RedisError, AttributeError, NotImplementedError, ValueError) as e:
            fallback = int(time.time() * 1000)
            logger.warning(
                "sequence_counter_unavailable",
                group_key=group_key,
                error=str(e),
                fallback=fallback
            )
            return fallback
