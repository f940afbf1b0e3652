"""
Generation capability contracts.

The orchestration core depends only on these interfaces. Implementations make
exactly one upstream attempt per call with the model and API key chosen by
the FallbackEngine; retry and fallback are never done inside an adapter.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..orchestration.models import Scene


@dataclass
class AnalysisResult:
    """Story analyzer output."""
    scenes: List[Scene]
    character_prompt: Optional[str] = None
    model: Optional[str] = None


class StoryAnalyzer(ABC):
    """Turns free-text story input into per-segment narrative content."""

    @abstractmethod
    async def analyze(
        self,
        story: str,
        *,
        scene_count: int,
        character_description: Optional[str],
        visual_style: Optional[str],
        language: str,
        model: str,
        api_key: str,
        endpoint: Optional[str] = None,
    ) -> AnalysisResult:
        """
        Raises AnalysisError when the model output cannot be parsed,
        UpstreamRequestError / TransientUpstreamError for HTTP faults.
        """
        pass


class ImageGenerator(ABC):

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        reference_image_url: Optional[str],
        mode: str,
        model: str,
        api_key: str,
    ) -> str:
        """Return the scene image URL. Raises GenerationError."""
        pass


class VideoGenerator(ABC):

    @abstractmethod
    async def generate(
        self,
        image_url: str,
        prompt: str,
        *,
        model: str,
        api_key: str,
    ) -> str:
        """Return the clip URL. Raises GenerationError."""
        pass


class NarrationSynthesizer(ABC):

    @abstractmethod
    async def synthesize(
        self,
        text: str,
        *,
        voice_id: str,
        language: str,
        model: str,
        api_key: str,
    ) -> str:
        """Return the narration audio URL. Raises SynthesisError."""
        pass


class MergeService(ABC):
    """Remote merge endpoint (cloud tier of the merge engine)."""

    @abstractmethod
    async def merge(self, manifest: Dict[str, Any], *, model: str, api_key: str) -> str:
        """Return the merged video URL."""
        pass


class HistorySink(ABC):
    """
    Mirror of task state for history views.

    Best-effort: callers log and ignore any exception raised here.
    """

    @abstractmethod
    async def record_status(
        self,
        task_id: str,
        status: str,
        progress: int,
        outputs: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        pass


@dataclass
class Capabilities:
    """Bundle of capability implementations handed to the orchestrator."""
    analyzer: StoryAnalyzer
    image: ImageGenerator
    video: VideoGenerator
    narration: NarrationSynthesizer
    history: Optional[HistorySink] = None
