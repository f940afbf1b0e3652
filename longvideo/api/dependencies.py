"""
Shared dependencies for API routes.
"""
import os
import shutil
import logging

from ..services.long_video_service import LongVideoService, get_long_video_service

logger = logging.getLogger(__name__)


def get_service() -> LongVideoService:
    """Get the process-wide LongVideoService."""
    return get_long_video_service()


def check_ffmpeg_available() -> bool:
    """Check if the local merge tier can run."""
    from ..config import config

    path = config.paths.ffmpeg_path
    return bool(shutil.which(path)) or os.path.exists(path)
