"""
Web Companion Module - Upload Queue

Contains the upload job model, the Redis job store and the intake, worker
and query services built on top of it.
"""

from src.modules.companion.models import UploadJob, UploadStatus, DrainOutcome, parse_job

__all__ = ["UploadJob", "UploadStatus", "DrainOutcome", "parse_job"]
