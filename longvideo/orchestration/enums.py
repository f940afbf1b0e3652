"""
Status and option enumerations for long video tasks.
"""
from enum import Enum


class TaskStatus(str, Enum):
    """
    Task lifecycle:
    pending -> analyzing -> generating -> merging -> completed | failed
    """
    PENDING = "pending"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class SegmentStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SegmentStatus.COMPLETED, SegmentStatus.FAILED)


class BatchStatus(str, Enum):
    """Derived from member segments, never set directly by callers."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED)


class RegenerateStage(str, Enum):
    """Which stage(s) a manual regeneration reruns."""
    ALL = "all"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class Language(str, Enum):
    CANTONESE = "cantonese"
    MANDARIN = "mandarin"
    ENGLISH = "english"


class SpeedMode(str, Enum):
    FAST = "fast"
    QUALITY = "quality"


class StoryMode(str, Enum):
    """
    CHARACTER: fixed character, scene images use a reference image.
    SCENE: pure scene generation.
    """
    CHARACTER = "character"
    SCENE = "scene"
