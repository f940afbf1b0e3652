"""
API Routes.
"""
from .health import router as health_router
from .long_video import router as long_video_router

__all__ = [
    "health_router",
    "long_video_router",
]
