"""
API v1 Router Module - Web Companion Upload Queue

All v1 endpoints are prefixed with /api/v1/

- /api/v1/web-companion/uploads* - Intake, listing and completion
- /api/v1/web-companion/worker/drain - On-demand drain
- /api/v1/web-companion/gallery - Processed images
- /api/v1/metrics - Prometheus metrics
"""

from fastapi import APIRouter

from src.api.v1.uploads import router as uploads_router
from src.api.v1.worker import router as worker_router
from src.api.v1.gallery import router as gallery_router
from src.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(uploads_router, prefix="/web-companion", tags=["uploads"])
api_v1_router.include_router(worker_router, prefix="/web-companion", tags=["worker"])
api_v1_router.include_router(gallery_router, prefix="/web-companion", tags=["gallery"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
