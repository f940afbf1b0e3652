"""
FastAPI Application - Long Video Generation API.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .routes import health_router, long_video_router
from .exceptions import APIError, api_error_handler, domain_error_handler, generic_exception_handler
from ..exceptions import LongVideoError
from .. import __version__

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan handler."""
    logger.info("=" * 60)
    logger.info("Starting Long Video API...")
    logger.info("=" * 60)

    from ..config import config
    from ..services.long_video_service import get_long_video_service

    config.log_status()

    service = get_long_video_service()
    expired = service.cleanup_expired()
    interrupted = service.recover_interrupted()
    logger.info(f"Startup maintenance: {expired} expired, {interrupted} interrupted task(s)")

    logger.info("=" * 60)
    logger.info("Server ready! Long video generation available at /api/long-video/tasks")
    logger.info("=" * 60)

    yield

    logger.info("Shutting down Long Video API...")
    await service.aclose()


def create_app(debug: bool = False) -> FastAPI:
    """Create and configure FastAPI application."""
    from ..config import config

    app = FastAPI(
        title="Long Video API",
        description="Segmented long-form AI video generation",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
        debug=debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(LongVideoError, domain_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(long_video_router)

    # Merged videos and narration written by the media store
    media_dir = config.paths.media_dir
    media_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/media", StaticFiles(directory=str(media_dir)), name="media")
    logger.info(f"Static files mounted: /media -> {media_dir}")

    return app


app = create_app(debug=False)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "longvideo.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
