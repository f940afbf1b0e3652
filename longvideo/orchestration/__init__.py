"""
Task orchestration: data model, state machine, segment pipeline and the
batch-by-batch orchestration loop.
"""
from .enums import (
    TaskStatus,
    SegmentStatus,
    BatchStatus,
    RegenerateStage,
    Language,
    SpeedMode,
    StoryMode,
)
from .models import Task, TaskOptions, Segment, Batch, Scene
from .state_machine import (
    create_task,
    start_next_batch,
    update_segment,
    is_task_complete,
    get_stats,
)

__all__ = [
    "TaskStatus",
    "SegmentStatus",
    "BatchStatus",
    "RegenerateStage",
    "Language",
    "SpeedMode",
    "StoryMode",
    "Task",
    "TaskOptions",
    "Segment",
    "Batch",
    "Scene",
    "create_task",
    "start_next_batch",
    "update_segment",
    "is_task_complete",
    "get_stats",
]
