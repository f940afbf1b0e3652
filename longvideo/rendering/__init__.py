"""
Rendering: merge engine tiers, SRT subtitles and the local media store.
"""
from .merge import (
    MergeEngine,
    MergeRequest,
    MergeResult,
    MergeMode,
    BGM_OPTIONS,
    SUBTITLE_STYLES,
    is_video_url,
)
from .local_merge import LocalMerger, build_filter_graph
from .media_store import LocalMediaStore
from .subtitles import generate_srt_content, format_srt_time

__all__ = [
    "MergeEngine",
    "MergeRequest",
    "MergeResult",
    "MergeMode",
    "BGM_OPTIONS",
    "SUBTITLE_STYLES",
    "is_video_url",
    "LocalMerger",
    "build_filter_graph",
    "LocalMediaStore",
    "generate_srt_content",
    "format_srt_time",
]
