"""
Data model for long video tasks.

Task is the root aggregate. Segments and batches are materialized up front
when the task is created; after that only their status and outputs change.
"""
from datetime import datetime, timezone
from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any

from .enums import (
    TaskStatus,
    SegmentStatus,
    BatchStatus,
    Language,
    SpeedMode,
    StoryMode,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Scene:
    """Per-segment narrative content produced by the story analyzer."""
    id: int
    description: str
    narration: str
    image_prompt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scene":
        return cls(
            id=int(data["id"]),
            description=data.get("description") or "",
            narration=data.get("narration") or "",
            image_prompt=data.get("image_prompt"),
        )


@dataclass
class Segment:
    """Smallest output unit. [start_time, end_time) is fixed at creation."""
    id: int
    batch_index: int
    start_time: float
    end_time: float
    status: SegmentStatus = SegmentStatus.PENDING
    progress: int = 0
    prompt: Optional[str] = None
    description: Optional[str] = None
    narration: Optional[str] = None
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def generation_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return max(0.0, (self.completed_at - self.started_at).total_seconds())
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "batch_index": self.batch_index,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "status": self.status.value,
            "progress": self.progress,
            "prompt": self.prompt,
            "description": self.description,
            "narration": self.narration,
            "image_url": self.image_url,
            "video_url": self.video_url,
            "audio_url": self.audio_url,
            "error": self.error,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Segment":
        return cls(
            id=int(data["id"]),
            batch_index=int(data["batch_index"]),
            start_time=float(data["start_time"]),
            end_time=float(data["end_time"]),
            status=SegmentStatus(data.get("status", "pending")),
            progress=int(data.get("progress", 0)),
            prompt=data.get("prompt"),
            description=data.get("description"),
            narration=data.get("narration"),
            image_url=data.get("image_url"),
            video_url=data.get("video_url"),
            audio_url=data.get("audio_url"),
            error=data.get("error"),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
        )


@dataclass
class Batch:
    """Consecutive segments sharing one credential group."""
    index: int
    segment_ids: List[int]
    credential_group_index: int
    status: BatchStatus = BatchStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "segment_ids": list(self.segment_ids),
            "credential_group_index": self.credential_group_index,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Batch":
        return cls(
            index=int(data["index"]),
            segment_ids=[int(i) for i in data.get("segment_ids", [])],
            credential_group_index=int(data.get("credential_group_index", 0)),
            status=BatchStatus(data.get("status", "pending")),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
        )


@dataclass
class TaskOptions:
    """Generation parameters chosen when the task is created."""
    character_description: Optional[str] = None
    visual_style: Optional[str] = None
    character_image_url: Optional[str] = None
    language: Language = Language.CANTONESE
    voice_actor_id: str = "cantonese-male-narrator"
    speed_mode: SpeedMode = SpeedMode.FAST
    story_mode: StoryMode = StoryMode.CHARACTER
    llm_model: str = "gpt-4o-mini"
    image_model: str = "midjourney"
    video_model: str = "veo3.1-fast"
    narration_model: str = "tts-1-hd"
    bgm_type: str = "none"
    subtitle_style: str = "none"
    resolution: str = "1080p"
    output_format: str = "mp4"
    narration_volume: float = 1.0
    bgm_volume: float = 0.25
    original_volume: float = 0.3

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["language"] = self.language.value
        data["speed_mode"] = self.speed_mode.value
        data["story_mode"] = self.story_mode.value
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TaskOptions":
        data = dict(data or {})
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in data.items() if k in known and v is not None}
        if "language" in kwargs:
            kwargs["language"] = Language(kwargs["language"])
        if "speed_mode" in kwargs:
            kwargs["speed_mode"] = SpeedMode(kwargs["speed_mode"])
        if "story_mode" in kwargs:
            kwargs["story_mode"] = StoryMode(kwargs["story_mode"])
        return cls(**kwargs)


@dataclass
class Task:
    """Long video generation task (root aggregate)."""
    id: str
    duration_minutes: float
    story: str
    options: TaskOptions
    segment_duration: int
    batch_size: int
    total_segments: int
    total_batches: int
    segments: List[Segment] = field(default_factory=list)
    batches: List[Batch] = field(default_factory=list)
    scenes: List[Scene] = field(default_factory=list)
    user_id: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    current_batch_index: int = 0
    character_prompt: Optional[str] = None
    final_video_url: Optional[str] = None
    merge_mode: Optional[str] = None
    merge_message: Optional[str] = None
    segment_urls: List[str] = field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        return self.duration_minutes * 60

    def get_segment(self, segment_id: int) -> Optional[Segment]:
        # ids are 1..N and stored in order
        if 1 <= segment_id <= len(self.segments):
            segment = self.segments[segment_id - 1]
            if segment.id == segment_id:
                return segment
        return next((s for s in self.segments if s.id == segment_id), None)

    def batch_segments(self, batch: Batch) -> List[Segment]:
        return [self.get_segment(i) for i in batch.segment_ids]

    def scene_for(self, segment_id: int) -> Optional[Scene]:
        """
        Scene for a segment. With fewer scenes than segments, scenes are
        spread evenly so consecutive segments share a scene.
        """
        if not self.scenes:
            return None
        count = len(self.scenes)
        if count >= self.total_segments:
            return self.scenes[segment_id - 1]
        return self.scenes[(segment_id - 1) * count // self.total_segments]

    def completed_segments(self) -> List[Segment]:
        """Completed segments with a video, ordered by id."""
        return sorted(
            (s for s in self.segments if s.status == SegmentStatus.COMPLETED and s.video_url),
            key=lambda s: s.id,
        )

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "duration_minutes": self.duration_minutes,
            "story": self.story,
            "options": self.options.to_dict(),
            "segment_duration": self.segment_duration,
            "batch_size": self.batch_size,
            "total_segments": self.total_segments,
            "total_batches": self.total_batches,
            "status": self.status.value,
            "progress": self.progress,
            "current_batch_index": self.current_batch_index,
            "character_prompt": self.character_prompt,
            "final_video_url": self.final_video_url,
            "merge_mode": self.merge_mode,
            "merge_message": self.merge_message,
            "segment_urls": list(self.segment_urls),
            "error": self.error,
            "segments": [s.to_dict() for s in self.segments],
            "batches": [b.to_dict() for b in self.batches],
            "scenes": [s.to_dict() for s in self.scenes],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            id=data["id"],
            user_id=data.get("user_id"),
            duration_minutes=float(data["duration_minutes"]),
            story=data.get("story", ""),
            options=TaskOptions.from_dict(data.get("options")),
            segment_duration=int(data["segment_duration"]),
            batch_size=int(data["batch_size"]),
            total_segments=int(data["total_segments"]),
            total_batches=int(data["total_batches"]),
            segments=[Segment.from_dict(s) for s in data.get("segments", [])],
            batches=[Batch.from_dict(b) for b in data.get("batches", [])],
            scenes=[Scene.from_dict(s) for s in data.get("scenes", [])],
            status=TaskStatus(data.get("status", "pending")),
            progress=int(data.get("progress", 0)),
            current_batch_index=int(data.get("current_batch_index", 0)),
            character_prompt=data.get("character_prompt"),
            final_video_url=data.get("final_video_url"),
            merge_mode=data.get("merge_mode"),
            merge_message=data.get("merge_message"),
            segment_urls=list(data.get("segment_urls") or []),
            error=data.get("error"),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            updated_at=_parse_dt(data.get("updated_at")) or utcnow(),
            completed_at=_parse_dt(data.get("completed_at")),
        )
