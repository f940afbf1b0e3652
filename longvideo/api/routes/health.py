"""
Health check endpoints.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status

from ..schemas import HealthResponse
from ..dependencies import get_service, check_ffmpeg_available
from ...persistence import get_storage_backend
from ...services.long_video_service import LongVideoService
from ... import __version__

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health Check",
    description="Check API status and whether generation is configured.",
)
async def health_check(service: LongVideoService = Depends(get_service)) -> HealthResponse:
    """
    Health check endpoint.
    Reports `degraded` when no upstream keys are configured.
    """
    return HealthResponse(
        status="healthy" if service.ready else "degraded",
        service="long-video-api",
        version=__version__,
        generation_ready=service.ready,
        storage_backend=get_storage_backend(),
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/health/live",
    status_code=status.HTTP_200_OK,
    summary="Liveness Probe",
    description="Kubernetes liveness probe endpoint.",
)
async def liveness() -> dict:
    """Liveness probe - always returns OK if app is running."""
    return {"status": "alive"}


@router.get(
    "/health/config",
    status_code=status.HTTP_200_OK,
    summary="Configuration Status",
    description="Check API key configuration status (does not expose actual keys).",
)
async def config_status() -> dict:
    from ...config import config

    status = config.validate()
    ffmpeg_ok = check_ffmpeg_available()

    return {
        "status": "configured" if status["ready_for_generation"] else "partial",
        "apis": {
            "vectorengine": f"{status['credentials']['pool_size']} keys" if status["credentials"]["pool_configured"] else "missing",
            "openrouter": "configured" if status["credentials"]["openrouter_configured"] else "not_set",
            "openai": "configured" if status["credentials"]["openai_configured"] else "not_set",
        },
        "capabilities": {
            "long_video_generation": status["ready_for_generation"],
            "backup_llm": status["credentials"]["backup_llm_configured"],
            "local_merge": ffmpeg_ok,
            "emergency_merge": True,
        },
        "batch": status["batch"],
        "storage": status["database"]["backend"],
        "notes": [] if status["ready_for_generation"] else ["Set VECTORENGINE_API_KEYS to enable generation"],
    }
