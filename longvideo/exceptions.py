"""
Domain exceptions for long video generation.

Upstream faults are split into transient ones (retried in place) and
rejections (move on to the next model). Stage exhaustion is recorded on the
segment; only analysis failure and an all-failed task end a task.
"""
from typing import List, Optional


class LongVideoError(Exception):
    """Base long video error."""

    def __init__(self, message: str, code: str = "LONG_VIDEO_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


# ── Upstream faults ──────────────────────────────────────────────────────────

class TransientUpstreamError(LongVideoError):
    """429, 5xx, timeout or network error. Retried against the same model."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(message=message, code="TRANSIENT_UPSTREAM")


class UpstreamRequestError(LongVideoError):
    """Upstream rejected the request (4xx other than 429, bad payload)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message=message, code="UPSTREAM_REJECTED")


class CapabilityExhaustedError(LongVideoError):
    """Every model in a capability's fallback chain failed."""

    def __init__(
        self,
        capability: str,
        attempted: List[str],
        last_error: Optional[BaseException] = None,
    ):
        self.capability = capability
        self.attempted = list(attempted)
        self.last_error = last_error
        detail = f"{type(last_error).__name__}: {last_error}" if last_error else "no attempt made"
        super().__init__(
            message=f"{capability} failed after trying [{', '.join(attempted)}]: {detail}",
            code="CAPABILITY_EXHAUSTED",
        )


class AnalysisError(LongVideoError):
    """Story analysis failed entirely. Fatal to the task."""

    def __init__(self, message: str):
        super().__init__(message=message, code="ANALYSIS_FAILED")


class GenerationError(LongVideoError):
    """Image or video generation failed."""

    def __init__(self, message: str):
        super().__init__(message=message, code="GENERATION_FAILED")


class SynthesisError(LongVideoError):
    """Narration synthesis failed."""

    def __init__(self, message: str):
        super().__init__(message=message, code="SYNTHESIS_FAILED")


class MergeUnavailableError(LongVideoError):
    """Cloud and local merge both failed."""

    def __init__(self, message: str = "Automatic merging is unavailable"):
        super().__init__(message=message, code="MERGE_UNAVAILABLE")


class AllSegmentsFailedError(LongVideoError):
    """No segment of the task completed."""

    def __init__(self, task_id: str, total_segments: int):
        self.task_id = task_id
        self.total_segments = total_segments
        super().__init__(
            message=f"All {total_segments} segments failed to generate",
            code="ALL_SEGMENTS_FAILED",
        )


# ── Task bookkeeping ─────────────────────────────────────────────────────────

class TaskNotFoundError(LongVideoError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(message=f"Task not found: {task_id}", code="TASK_NOT_FOUND")


class SegmentNotFoundError(LongVideoError):
    def __init__(self, task_id: str, segment_id: int):
        self.task_id = task_id
        self.segment_id = segment_id
        super().__init__(
            message=f"Segment {segment_id} not found in task {task_id}",
            code="SEGMENT_NOT_FOUND",
        )


class InvalidTransitionError(LongVideoError):
    """A segment patch would move it to a status it cannot reach."""

    def __init__(self, segment_id: int, current: str, target: str):
        self.segment_id = segment_id
        self.current = current
        self.target = target
        super().__init__(
            message=f"Segment {segment_id} cannot move from {current} to {target}",
            code="INVALID_TRANSITION",
        )


class SegmentBusyError(LongVideoError):
    """Segment is being generated by the active batch."""

    def __init__(self, task_id: str, segment_id: int):
        self.task_id = task_id
        self.segment_id = segment_id
        super().__init__(
            message=f"Segment {segment_id} of task {task_id} is still generating",
            code="SEGMENT_BUSY",
        )


class TaskBusyError(LongVideoError):
    """Operation needs the task's generation loop to have finished."""

    def __init__(self, task_id: str, action: str):
        self.task_id = task_id
        super().__init__(
            message=f"Cannot {action} task {task_id} while it is still running",
            code="TASK_BUSY",
        )


class NotConfiguredError(LongVideoError):
    """No upstream credentials are configured."""

    def __init__(self, message: str = "No upstream API keys configured"):
        super().__init__(message=message, code="NOT_CONFIGURED")


class FallbackGraphError(LongVideoError):
    """Fallback configuration references unknown models or loops."""

    def __init__(self, message: str):
        super().__init__(message=message, code="FALLBACK_GRAPH_INVALID")
