"""
FastAPI Dependencies for the Upload Queue

Provides dependency injection for:
- Redis client (shared, from app state)
- Upload repository (per-request)
- Storage backend (singleton)
- Background remover and drain trigger
- Intake, worker and query services (per-request)
"""

from fastapi import Depends, Request

from src.core.storage import IStorage, get_storage
from src.modules.companion.repositories import UploadRepository
from src.modules.companion.services import (
    UploadIntakeService,
    UploadQueryService,
    UploadWorker,
)
from src.pipeline.dispatch import DrainTrigger, create_trigger
from src.pipeline.stages import BackgroundRemover, remove_background


# =============================================================================
# Infrastructure
# =============================================================================

def get_redis(request: Request):
    """Returns the Redis client opened in the application lifespan."""
    return request.app.state.redis


def get_repository(redis_client=Depends(get_redis)) -> UploadRepository:
    """Returns an upload repository bound to the shared Redis client."""
    return UploadRepository(redis_client)


def get_remover() -> BackgroundRemover:
    """Returns the background removal function (rembg)."""
    return remove_background


# =============================================================================
# Services
# =============================================================================

def get_worker(
    repository: UploadRepository = Depends(get_repository),
    storage: IStorage = Depends(get_storage),
    remover: BackgroundRemover = Depends(get_remover),
) -> UploadWorker:
    return UploadWorker(repository=repository, storage=storage, remover=remover)


def get_trigger(
    repository: UploadRepository = Depends(get_repository),
    storage: IStorage = Depends(get_storage),
    remover: BackgroundRemover = Depends(get_remover),
) -> DrainTrigger:
    """Returns the drain trigger selected by WORKER_TRIGGER.

    The inline trigger builds its worker from the same repository and storage
    as the request, so a drain it starts outlives the request safely.
    """
    return create_trigger(
        lambda: UploadWorker(repository=repository, storage=storage, remover=remover)
    )


def get_intake_service(
    repository: UploadRepository = Depends(get_repository),
    storage: IStorage = Depends(get_storage),
    trigger: DrainTrigger = Depends(get_trigger),
) -> UploadIntakeService:
    return UploadIntakeService(repository=repository, storage=storage, trigger=trigger)


def get_query_service(
    repository: UploadRepository = Depends(get_repository),
) -> UploadQueryService:
    return UploadQueryService(repository)
