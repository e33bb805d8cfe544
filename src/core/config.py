"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings
from pathlib import Path
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Web Companion Upload Queue"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Infrastructure
    # ==========================================================================
    REDIS_URL: str = "redis://localhost:6379/1"

    # Prefix for every job store key (upload records, indices, counters)
    REDIS_NAMESPACE: str = "web-companion"

    # ==========================================================================
    # Storage Settings (The Bridge Pattern)
    # ==========================================================================
    STORAGE_BACKEND: str = "local"  # local, s3

    # Local storage path (development)
    LOCAL_STORAGE_PATH: str = "./data/storage"

    # Prefix of blob keys: {STORAGE_KEY_PREFIX}/{stock}/original|processed/...
    STORAGE_KEY_PREFIX: str = "web-companion"

    # S3 (production)
    AWS_REGION: Optional[str] = None
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    S3_BUCKET: Optional[str] = None

    # ==========================================================================
    # Intake Settings
    # ==========================================================================
    MAX_UPLOAD_SIZE_BYTES: int = 26214400  # 25MB
    STORAGE_TIMEOUT_SECONDS: float = 30.0

    # ==========================================================================
    # Worker Settings
    # ==========================================================================
    WORKER_DEFAULT_LIMIT: int = 5
    WORKER_MAX_LIMIT: int = 50
    INTAKE_DRAIN_LIMIT: int = 3
    BACKGROUND_REMOVAL_TIMEOUT_SECONDS: float = 120.0

    # How intake signals the worker: celery, inline, none
    WORKER_TRIGGER: str = "celery"

    # Celery beat drain interval, 0 disables the periodic drain
    WORKER_BEAT_INTERVAL_SECONDS: float = 60.0

    # Also look for pending jobs missing from the pending index on every drain
    WORKER_SCAN_GROUP_INDICES: bool = False

    # Beat drains scan the group indices to recover jobs missing from the pending index
    WORKER_BEAT_RECOVERY_SCAN: bool = True

    # Upper bound of index entries read per index
    MAX_INDEX_SCAN: int = 1000

    # ==========================================================================
    # Celery Settings
    # ==========================================================================
    CELERY_BROKER_URL: Optional[str] = None  # Falls back to REDIS_URL
    CELERY_RESULT_BACKEND: Optional[str] = None  # Falls back to REDIS_URL

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()

# Ensure critical directories exist
if settings.STORAGE_BACKEND == "local":
    Path(settings.LOCAL_STORAGE_PATH).mkdir(parents=True, exist_ok=True)
