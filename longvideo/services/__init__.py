"""
Services - credential rotation, retry/fallback and upstream capability contracts.

The task service facade lives in `long_video_service` and is imported
directly by the API layer.
"""
from .credential_pool import CredentialPool, CredentialGroup, mask_key
from .retry import (
    FallbackEngine,
    FallbackGraph,
    FallbackTarget,
    RetryPolicy,
    retry_with_backoff,
    is_transient,
)
from .capabilities import (
    AnalysisResult,
    Capabilities,
    StoryAnalyzer,
    ImageGenerator,
    VideoGenerator,
    NarrationSynthesizer,
    MergeService,
    HistorySink,
)

__all__ = [
    "CredentialPool",
    "CredentialGroup",
    "mask_key",
    "FallbackEngine",
    "FallbackGraph",
    "FallbackTarget",
    "RetryPolicy",
    "retry_with_backoff",
    "is_transient",
    "AnalysisResult",
    "Capabilities",
    "StoryAnalyzer",
    "ImageGenerator",
    "VideoGenerator",
    "NarrationSynthesizer",
    "MergeService",
    "HistorySink",
]
