"""
Celery Tasks for the Upload Queue

The drain is async end to end (redis.asyncio, storage, rembg in a thread);
each task runs it on a fresh event loop with its own Redis connection.
"""

import asyncio
import traceback
from typing import Optional, Dict, Any

import redis.asyncio as redis

from src.core.celery_app import celery_app
from src.core.config import settings
from src.core.logging import get_logger, LogContext
from src.modules.companion.services import build_worker

logger = get_logger(__name__)


async def _drain(limit: Optional[int], recover: bool = False) -> Dict[str, Any]:
    client = redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True
    )
    try:
        worker = build_worker(client, scan_group_indices=True if recover else None)
        outcomes = await worker.drain(limit)
    finally:
        await client.aclose()

    return {
        "processed": len(outcomes),
        "results": [o.model_dump(mode="json", by_alias=True, exclude_none=True) for o in outcomes],
    }


@celery_app.task(
    bind=True,
    name="src.pipeline.tasks.drain_pending_uploads",
    acks_late=True
)
def drain_pending_uploads(
    self,
    limit: Optional[int] = None,
    recover: bool = False
) -> Dict[str, Any]:
    """
    Celery task: drain up to ``limit`` pending uploads.

    Per-job failures are recorded on the jobs themselves; the task only fails
    when the pending jobs cannot be enumerated. It is never retried: the next
    intake signal or beat tick drains again.

    ``recover`` (set by the beat schedule) also scans the group indices for
    pending jobs whose pending-index entry was never written.
    """
    with LogContext(stage="drain"):
        try:
            logger.info("task_drain_started", task_id=self.request.id, limit=limit, recover=recover)
            result = asyncio.run(_drain(limit, recover))
            logger.info("task_drain_completed", processed=result["processed"])
            return result

        except Exception as e:
            logger.error(
                "task_drain_failed",
                error=str(e),
                traceback=traceback.format_exc()
            )
            raise
