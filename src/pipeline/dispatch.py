"""
Worker Triggers

Intake signals the worker through a DrainTrigger and does not wait for the
drain. Delivery is not guaranteed: a failed signal is logged and reported as
False, never raised, and the job simply waits for the next drain.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Set

from src.core.config import settings
from src.core.logging import get_logger

logger = get_logger(__name__)


class DrainTrigger(ABC):
    """Fire-and-forget request for a worker drain."""

    @abstractmethod
    async def signal(self, limit: int) -> bool:
        """Request a drain of up to ``limit`` jobs; True if the request was handed off."""
        pass


class CeleryDrainTrigger(DrainTrigger):
    """Publishes the drain task to the Celery broker."""

    async def signal(self, limit: int) -> bool:
        try:
            from src.pipeline.tasks import drain_pending_uploads

            result = await asyncio.to_thread(
                drain_pending_uploads.apply_async,
                kwargs={"limit": limit},
                ignore_result=True,
                retry=False,
            )
            logger.info("drain_triggered", mode="celery", limit=limit, task_id=str(result.id))
            return True
        except Exception as e:
            logger.warning("drain_trigger_failed", mode="celery", error=str(e))
            return False


class InlineDrainTrigger(DrainTrigger):
    """
    Runs the drain as a background asyncio task in the API process.

    ``worker_factory`` builds the worker at signal time; running tasks are
    referenced until they finish so the loop does not drop them.
    """

    _tasks: Set[asyncio.Task] = set()

    def __init__(self, worker_factory: Callable):
        self.worker_factory = worker_factory

    async def signal(self, limit: int) -> bool:
        try:
            worker = self.worker_factory()
            task = asyncio.create_task(worker.drain(limit))
        except Exception as e:
            logger.warning("drain_trigger_failed", mode="inline", error=str(e))
            return False

        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info("drain_triggered", mode="inline", limit=limit)
        return True

    @classmethod
    def _on_done(cls, task: asyncio.Task):
        cls._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("inline_drain_failed", error=str(exc), error_type=type(exc).__name__)

    @classmethod
    async def wait_idle(cls):
        """Wait for running inline drains (shutdown and tests)."""
        if cls._tasks:
            await asyncio.gather(*list(cls._tasks), return_exceptions=True)


class NoopDrainTrigger(DrainTrigger):
    """Leaves draining to an external scheduler calling the drain endpoint."""

    async def signal(self, limit: int) -> bool:
        logger.debug("drain_trigger_disabled", limit=limit)
        return False


def create_trigger(worker_factory: Callable, mode: str = None) -> DrainTrigger:
    """Build the trigger selected by WORKER_TRIGGER (celery, inline, none)."""
    mode = (mode or settings.WORKER_TRIGGER).lower()
    if mode == "celery":
        return CeleryDrainTrigger()
    if mode == "inline":
        return InlineDrainTrigger(worker_factory)
    if mode == "none":
        return NoopDrainTrigger()
    raise ValueError(f"Unsupported WORKER_TRIGGER: {mode}")
