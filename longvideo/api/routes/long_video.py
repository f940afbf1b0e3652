"""
Long Video API Routes.

Tasks are created and started in the background; clients poll
/tasks/{task_id} or /tasks/{task_id}/stats for progress.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_service
from ..exceptions import ValidationError
from ..schemas import (
    CreateTaskRequest,
    CreateTaskResponse,
    RegenerateRequest,
    SegmentResponse,
    TaskResponse,
    TaskListResponse,
    TaskSummaryResponse,
    TaskStatsResponse,
    MergeResponse,
    MergeOptionsResponse,
    DeleteResponse,
)
from ...rendering.merge import BGM_OPTIONS, SUBTITLE_STYLES
from ...services.long_video_service import LongVideoService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/long-video", tags=["Long Video"])


@router.post("/tasks", response_model=CreateTaskResponse, status_code=202)
async def create_long_video_task(
    request: CreateTaskRequest,
    service: LongVideoService = Depends(get_service),
):
    """
    Create a long video task and start generating it.

    The story is analyzed once, then segments are generated batch by batch
    and merged into one video.
    """
    try:
        task = await service.create_and_start(
            request.duration_minutes,
            request.story,
            request.options.to_options(),
            user_id=request.user_id,
        )
    except ValueError as e:
        raise ValidationError("Invalid task parameters", detail=str(e))

    logger.info(f"Created long video task {task.id}: {task.total_segments} segments")
    return CreateTaskResponse(
        task_id=task.id,
        status=task.status.value,
        total_segments=task.total_segments,
        total_batches=task.total_batches,
        message=f"Generating {task.total_segments} segments in {task.total_batches} batches",
    )


@router.get("/tasks", response_model=TaskListResponse)
async def list_long_video_tasks(
    user_id: Optional[str] = Query(None),
    service: LongVideoService = Depends(get_service),
):
    tasks = service.list_tasks(user_id)
    return TaskListResponse(
        tasks=[TaskSummaryResponse.from_task(t) for t in tasks],
        total=len(tasks),
    )


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_long_video_task(task_id: str, service: LongVideoService = Depends(get_service)):
    return TaskResponse.from_task(service.get_task_status(task_id))


@router.get("/tasks/{task_id}/stats", response_model=TaskStatsResponse)
async def get_long_video_task_stats(task_id: str, service: LongVideoService = Depends(get_service)):
    return TaskStatsResponse(**service.get_task_stats(task_id))


@router.post("/tasks/{task_id}/segments/{segment_id}/regenerate", response_model=SegmentResponse)
async def regenerate_segment(
    task_id: str,
    segment_id: int,
    request: Optional[RegenerateRequest] = None,
    service: LongVideoService = Depends(get_service),
):
    """
    Re-run one stage (or all stages) of a finished segment.

    Returns 409 while the segment is still generating.
    """
    stage = (request or RegenerateRequest()).stage
    segment = await service.regenerate_segment(task_id, segment_id, stage)
    return SegmentResponse.model_validate(segment.to_dict())


@router.post("/tasks/{task_id}/merge", response_model=MergeResponse)
async def merge_long_video_task(task_id: str, service: LongVideoService = Depends(get_service)):
    """Merge the task's completed segments again (e.g. after regeneration)."""
    result = await service.merge_task(task_id)
    return MergeResponse.from_result(result)


@router.delete("/tasks/{task_id}", response_model=DeleteResponse)
async def delete_long_video_task(task_id: str, service: LongVideoService = Depends(get_service)):
    deleted = service.delete_task(task_id)
    return DeleteResponse(task_id=task_id, deleted=deleted)


@router.get("/merge-options", response_model=MergeOptionsResponse)
async def get_merge_options():
    """Background music and subtitle style catalogs."""
    return MergeOptionsResponse(bgm_options=BGM_OPTIONS, subtitle_styles=SUBTITLE_STYLES)
