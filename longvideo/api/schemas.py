"""
Pydantic schemas for API requests and responses.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Any, Dict, List
from datetime import datetime

from ..orchestration.enums import Language, SpeedMode, StoryMode, RegenerateStage
from ..orchestration.models import TaskOptions, Task
from ..rendering.merge import BGM_OPTIONS, SUBTITLE_STYLES, MergeResult


# =============================================================================
# Requests
# =============================================================================

class TaskOptionsRequest(BaseModel):
    """Optional generation parameters."""
    character_description: Optional[str] = Field(default=None, max_length=2000)
    visual_style: Optional[str] = Field(default=None, max_length=200)
    character_image_url: Optional[str] = Field(default=None, description="Reference image for character mode")
    language: Language = Field(default=Language.CANTONESE)
    voice_actor_id: str = Field(default="cantonese-male-narrator")
    speed_mode: SpeedMode = Field(default=SpeedMode.FAST)
    story_mode: StoryMode = Field(default=StoryMode.CHARACTER)
    llm_model: str = Field(default="gpt-4o-mini")
    image_model: str = Field(default="midjourney")
    video_model: str = Field(default="veo3.1-fast")
    narration_model: str = Field(default="tts-1-hd")
    bgm_type: str = Field(default="none", description=f"One of: {', '.join(BGM_OPTIONS)}")
    subtitle_style: str = Field(default="none", description=f"One of: {', '.join(SUBTITLE_STYLES)}")
    resolution: str = Field(default="1080p", description="720p, 1080p or 4k")
    output_format: str = Field(default="mp4")
    narration_volume: float = Field(default=1.0, ge=0, le=2.0)
    bgm_volume: float = Field(default=0.25, ge=0, le=2.0)
    original_volume: float = Field(default=0.3, ge=0, le=2.0)

    @field_validator("bgm_type")
    @classmethod
    def validate_bgm(cls, v: str) -> str:
        if v not in BGM_OPTIONS:
            raise ValueError(f"Unknown bgm_type: {v}")
        return v

    @field_validator("subtitle_style")
    @classmethod
    def validate_subtitle_style(cls, v: str) -> str:
        if v not in SUBTITLE_STYLES:
            raise ValueError(f"Unknown subtitle_style: {v}")
        return v

    def to_options(self) -> TaskOptions:
        return TaskOptions(**self.model_dump())


class CreateTaskRequest(BaseModel):
    """POST /api/long-video/tasks request body."""
    duration_minutes: float = Field(..., gt=0, le=120, description="Requested video length in minutes")
    story: str = Field(..., min_length=1, max_length=50000)
    user_id: Optional[str] = Field(default=None)
    options: TaskOptionsRequest = Field(default_factory=TaskOptionsRequest)

    @field_validator("story")
    @classmethod
    def validate_story(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("story must not be blank")
        return v


class RegenerateRequest(BaseModel):
    stage: RegenerateStage = Field(default=RegenerateStage.ALL, description="all, image, video or audio")


# =============================================================================
# Responses
# =============================================================================

class SegmentResponse(BaseModel):
    id: int
    batch_index: int
    start_time: float
    end_time: float
    status: str
    progress: int
    prompt: Optional[str] = None
    description: Optional[str] = None
    narration: Optional[str] = None
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class BatchResponse(BaseModel):
    index: int
    segment_ids: List[int]
    credential_group_index: int
    status: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class TaskResponse(BaseModel):
    """Full task snapshot."""
    id: str
    user_id: Optional[str] = None
    duration_minutes: float
    story: str
    options: Dict[str, Any]
    segment_duration: int
    batch_size: int
    total_segments: int
    total_batches: int
    status: str
    progress: int
    current_batch_index: int
    character_prompt: Optional[str] = None
    final_video_url: Optional[str] = None
    merge_mode: Optional[str] = None
    merge_message: Optional[str] = None
    segment_urls: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    segments: List[SegmentResponse] = Field(default_factory=list)
    batches: List[BatchResponse] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls.model_validate(task.to_dict())


class TaskSummaryResponse(BaseModel):
    """Task entry in list responses (no segment detail)."""
    id: str
    user_id: Optional[str] = None
    duration_minutes: float
    status: str
    progress: int
    total_segments: int
    final_video_url: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_task(cls, task: Task) -> "TaskSummaryResponse":
        data = task.to_dict()
        return cls.model_validate({k: data.get(k) for k in cls.model_fields})


class TaskListResponse(BaseModel):
    tasks: List[TaskSummaryResponse]
    total: int


class CreateTaskResponse(BaseModel):
    task_id: str
    status: str
    total_segments: int
    total_batches: int
    message: str


class TaskStatsResponse(BaseModel):
    task_id: str
    status: str
    progress: int
    total_segments: int
    completed_segments: int
    failed_segments: int
    generating_segments: int
    pending_segments: int
    total_batches: int
    completed_batches: int
    current_batch: int
    average_segment_seconds: Optional[float] = None
    estimated_seconds_remaining: float
    estimated_minutes_remaining: int


class MergeResponse(BaseModel):
    success: bool
    mode: Optional[str] = None
    video_url: Optional[str] = None
    segment_urls: List[str] = Field(default_factory=list)
    message: Optional[str] = None
    error: Optional[str] = None
    tiers_attempted: List[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: MergeResult) -> "MergeResponse":
        return cls.model_validate(result.to_dict())


class MergeOptionsResponse(BaseModel):
    bgm_options: Dict[str, Dict[str, Any]]
    subtitle_styles: Dict[str, Dict[str, Any]]


class DeleteResponse(BaseModel):
    task_id: str
    deleted: bool


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
    generation_ready: bool
    storage_backend: str
    timestamp: datetime
