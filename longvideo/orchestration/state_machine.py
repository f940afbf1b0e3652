"""
Segment / Batch / Task state machine.

Single source of truth for decomposing a duration into segments and batches
and for aggregating status and progress. All functions operate on a Task in
place; persistence is the caller's concern.
"""
import math
import time
import random
import string
import logging
from typing import Optional, Dict, Any

from .enums import TaskStatus, SegmentStatus, BatchStatus
from .models import Task, TaskOptions, Segment, Batch, utcnow
from ..exceptions import SegmentNotFoundError, InvalidTransitionError

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_DURATION = 8
DEFAULT_BATCH_SIZE = 6
DEFAULT_CREDENTIAL_GROUPS = 3

# Allowed segment status moves. COMPLETED is absorbing so progress never drops.
SEGMENT_TRANSITIONS = {
    SegmentStatus.PENDING: {SegmentStatus.GENERATING, SegmentStatus.COMPLETED, SegmentStatus.FAILED},
    SegmentStatus.GENERATING: {SegmentStatus.COMPLETED, SegmentStatus.FAILED},
    SegmentStatus.FAILED: {SegmentStatus.GENERATING, SegmentStatus.COMPLETED, SegmentStatus.FAILED},
    SegmentStatus.COMPLETED: {SegmentStatus.COMPLETED},
}

IMMUTABLE_SEGMENT_FIELDS = frozenset({"id", "batch_index", "start_time", "end_time"})
MUTABLE_SEGMENT_FIELDS = frozenset({
    "status",
    "progress",
    "prompt",
    "description",
    "narration",
    "image_url",
    "video_url",
    "audio_url",
    "error",
    "started_at",
    "completed_at",
})


def generate_task_id() -> str:
    """long_video_<epoch ms>_<9 random base36 chars>"""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"long_video_{int(time.time() * 1000)}_{suffix}"


def count_segments(duration_minutes: float, segment_duration: int = DEFAULT_SEGMENT_DURATION) -> int:
    return math.ceil(duration_minutes * 60 / segment_duration)


def count_batches(total_segments: int, batch_size: int = DEFAULT_BATCH_SIZE) -> int:
    return math.ceil(total_segments / batch_size)


def create_task(
    duration_minutes: float,
    story: str,
    options: Optional[TaskOptions] = None,
    *,
    user_id: Optional[str] = None,
    segment_duration: int = DEFAULT_SEGMENT_DURATION,
    batch_size: int = DEFAULT_BATCH_SIZE,
    credential_groups: int = DEFAULT_CREDENTIAL_GROUPS,
    task_id: Optional[str] = None,
) -> Task:
    """
    Create a task with every segment and batch materialized in pending.

    Segment i covers [(i-1)*segment_duration, min(i*segment_duration, duration)).
    Batch b holds segments b*batch_size+1 .. (b+1)*batch_size and is bound to
    credential group b mod credential_groups.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    if segment_duration <= 0 or batch_size <= 0 or credential_groups <= 0:
        raise ValueError("segment_duration, batch_size and credential_groups must be positive")

    duration_seconds = duration_minutes * 60
    total_segments = count_segments(duration_minutes, segment_duration)
    total_batches = count_batches(total_segments, batch_size)

    segments = []
    for segment_id in range(1, total_segments + 1):
        start = (segment_id - 1) * segment_duration
        end = min(segment_id * segment_duration, duration_seconds)
        segments.append(Segment(
            id=segment_id,
            batch_index=(segment_id - 1) // batch_size,
            start_time=float(start),
            end_time=float(end),
        ))

    batches = []
    for index in range(total_batches):
        first = index * batch_size + 1
        last = min((index + 1) * batch_size, total_segments)
        batches.append(Batch(
            index=index,
            segment_ids=list(range(first, last + 1)),
            credential_group_index=index % credential_groups,
        ))

    task = Task(
        id=task_id or generate_task_id(),
        user_id=user_id,
        duration_minutes=duration_minutes,
        story=story,
        options=options or TaskOptions(),
        segment_duration=segment_duration,
        batch_size=batch_size,
        total_segments=total_segments,
        total_batches=total_batches,
        segments=segments,
        batches=batches,
    )

    logger.info(
        f"Created task {task.id}: {duration_minutes} min -> "
        f"{total_segments} segments in {total_batches} batches"
    )
    return task


def start_next_batch(task: Task) -> Optional[Batch]:
    """
    Move the first pending batch and its segments to generating.

    Returns None when no pending batch remains.
    """
    batch = next((b for b in task.batches if b.status == BatchStatus.PENDING), None)
    if batch is None:
        return None

    now = utcnow()
    batch.status = BatchStatus.PROCESSING
    batch.started_at = now
    for segment in task.batch_segments(batch):
        if segment.status == SegmentStatus.PENDING:
            segment.status = SegmentStatus.GENERATING
            segment.started_at = now

    task.current_batch_index = batch.index
    task.touch()
    return batch


def aggregate_batch_status(task: Task, batch: Batch) -> BatchStatus:
    statuses = [s.status for s in task.batch_segments(batch)]

    if statuses and all(s == SegmentStatus.FAILED for s in statuses):
        return BatchStatus.FAILED
    if statuses and all(s.is_terminal for s in statuses):
        return BatchStatus.COMPLETED
    if any(s != SegmentStatus.PENDING for s in statuses):
        return BatchStatus.PROCESSING
    return BatchStatus.PENDING


def compute_progress(task: Task) -> int:
    if not task.total_segments:
        return 0
    completed = sum(1 for s in task.segments if s.status == SegmentStatus.COMPLETED)
    return round(100 * completed / task.total_segments)


def _refresh_batch(task: Task, batch: Batch) -> None:
    status = aggregate_batch_status(task, batch)
    if status != batch.status:
        batch.status = status
        if status.is_terminal:
            batch.completed_at = utcnow()
        elif status == BatchStatus.PROCESSING and batch.started_at is None:
            batch.started_at = utcnow()


def update_segment(task: Task, segment_id: int, patch: Dict[str, Any]) -> Segment:
    """
    Merge a patch into one segment, then re-derive batch status and progress.

    Raises:
        SegmentNotFoundError: unknown segment id
        InvalidTransitionError: status move not allowed
        ValueError: patch touches the time range / identity or unknown fields
    """
    segment = task.get_segment(segment_id)
    if segment is None:
        raise SegmentNotFoundError(task.id, segment_id)

    frozen = IMMUTABLE_SEGMENT_FIELDS.intersection(patch)
    if frozen:
        raise ValueError(f"Segment fields are immutable: {', '.join(sorted(frozen))}")
    unknown = set(patch) - MUTABLE_SEGMENT_FIELDS
    if unknown:
        raise ValueError(f"Unknown segment fields: {', '.join(sorted(unknown))}")

    patch = dict(patch)
    if "status" in patch:
        target = SegmentStatus(patch["status"])
        patch["status"] = target
        if target != segment.status and target not in SEGMENT_TRANSITIONS[segment.status]:
            raise InvalidTransitionError(segment_id, segment.status.value, target.value)
        if target != segment.status:
            if target == SegmentStatus.GENERATING and "started_at" not in patch:
                patch["started_at"] = utcnow()
            elif target.is_terminal and "completed_at" not in patch:
                patch["completed_at"] = utcnow()

    for key, value in patch.items():
        setattr(segment, key, value)

    batch = task.batches[segment.batch_index]
    _refresh_batch(task, batch)

    task.progress = max(task.progress, compute_progress(task))
    task.touch()
    return segment


def is_task_complete(task: Task) -> bool:
    """True iff every batch is terminal."""
    return all(b.status.is_terminal for b in task.batches)


def all_segments_failed(task: Task) -> bool:
    return bool(task.segments) and all(s.status == SegmentStatus.FAILED for s in task.segments)


def set_task_status(task: Task, status: TaskStatus, error: Optional[str] = None) -> None:
    task.status = status
    if error is not None:
        task.error = error
    if status.is_terminal:
        task.completed_at = utcnow()
    task.touch()


def get_stats(task: Task, default_segment_seconds: float = 30.0) -> Dict[str, Any]:
    """
    Derived counters and ETA.

    ETA = remaining segments x average observed segment time, falling back to
    default_segment_seconds before any segment has finished. Pure function of
    the task, so repeated calls between updates agree.
    """
    counts = {status: 0 for status in SegmentStatus}
    durations = []
    for segment in task.segments:
        counts[segment.status] += 1
        if segment.status == SegmentStatus.COMPLETED and segment.generation_seconds is not None:
            durations.append(segment.generation_seconds)

    average = sum(durations) / len(durations) if durations else default_segment_seconds
    remaining = counts[SegmentStatus.PENDING] + counts[SegmentStatus.GENERATING]
    eta_seconds = remaining * average

    completed_batches = sum(1 for b in task.batches if b.status.is_terminal)

    return {
        "task_id": task.id,
        "status": task.status.value,
        "progress": task.progress,
        "total_segments": task.total_segments,
        "completed_segments": counts[SegmentStatus.COMPLETED],
        "failed_segments": counts[SegmentStatus.FAILED],
        "generating_segments": counts[SegmentStatus.GENERATING],
        "pending_segments": counts[SegmentStatus.PENDING],
        "total_batches": task.total_batches,
        "completed_batches": completed_batches,
        "current_batch": task.current_batch_index,
        "average_segment_seconds": round(average, 2),
        "estimated_seconds_remaining": round(eta_seconds, 2),
        "estimated_minutes_remaining": math.ceil(eta_seconds / 60),
    }
