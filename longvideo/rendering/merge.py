"""
Merge Engine - three-tier fallback assembly of completed segments.

    pre-check  drop still-image URLs, fail fast when no video remains
    passthrough  one clip, no BGM, no subtitles: returned as is
    tier 1     cloud merge (merge endpoint, then concat) via the FallbackEngine
    tier 2     local FFmpeg merge, uploaded to the media store
    tier 3     emergency: first clip as preview plus the ordered clip list

Tier 3 cannot fail once at least one video URL survives the pre-check.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..exceptions import MergeUnavailableError
from ..services.capabilities import MergeService
from ..services.retry import FallbackEngine, MERGE

logger = logging.getLogger(__name__)


BGM_OPTIONS: Dict[str, Dict[str, Optional[str]]] = {
    "none": {"name": "No background music", "url": None},
    "cinematic": {"name": "Cinematic", "url": "https://cdn.pixabay.com/audio/2024/11/04/audio_4956b4edd1.mp3"},
    "emotional": {"name": "Emotional", "url": "https://cdn.pixabay.com/audio/2024/02/14/audio_8f506e3e0f.mp3"},
    "upbeat": {"name": "Upbeat", "url": "https://cdn.pixabay.com/audio/2024/09/12/audio_6e1d0b3a3a.mp3"},
    "dramatic": {"name": "Dramatic", "url": "https://cdn.pixabay.com/audio/2024/04/24/audio_36e7a0e4e4.mp3"},
    "peaceful": {"name": "Peaceful", "url": "https://cdn.pixabay.com/audio/2024/08/27/audio_4a1b2c3d4e.mp3"},
}

SUBTITLE_STYLES: Dict[str, Dict[str, Any]] = {
    "none": {"name": "No subtitles", "enabled": False},
    "bottom": {"name": "Bottom", "enabled": True, "position": "bottom", "fontSize": 24, "color": "white", "bgColor": "black@0.5"},
    "top": {"name": "Top", "enabled": True, "position": "top", "fontSize": 24, "color": "white", "bgColor": "black@0.5"},
    "cinematic": {"name": "Cinematic", "enabled": True, "position": "bottom", "fontSize": 28, "color": "white", "bgColor": "transparent"},
}

IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".webp", ".gif", ".bmp"})


def is_video_url(url: Optional[str]) -> bool:
    """False for empty URLs and for URLs whose path ends in a still-image extension."""
    if not url or not url.strip():
        return False
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    return suffix not in IMAGE_EXTENSIONS


class MergeMode(str, Enum):
    PASSTHROUGH = "passthrough"
    CLOUD = "cloud"
    LOCAL = "local"
    EMERGENCY = "emergency"


@dataclass
class MergeRequest:
    """
    Ordered merge input. audio_urls / narrations / durations are aligned with
    video_urls by index and may be shorter.
    """
    video_urls: List[str]
    audio_urls: List[Optional[str]] = field(default_factory=list)
    narrations: List[Optional[str]] = field(default_factory=list)
    durations: List[Optional[float]] = field(default_factory=list)
    bgm_type: str = "none"
    subtitle_style: str = "none"
    resolution: str = "1080p"
    output_format: str = "mp4"
    narration_volume: float = 1.0
    bgm_volume: float = 0.25
    original_volume: float = 0.3

    @property
    def bgm_url(self) -> Optional[str]:
        return BGM_OPTIONS.get(self.bgm_type, BGM_OPTIONS["none"])["url"]

    @property
    def subtitle(self) -> Dict[str, Any]:
        return SUBTITLE_STYLES.get(self.subtitle_style, SUBTITLE_STYLES["none"])

    @property
    def wants_subtitles(self) -> bool:
        return bool(self.subtitle.get("enabled")) and any(n for n in self.narrations)

    def _aligned(self, values: List[Any], index: int) -> Any:
        return values[index] if index < len(values) else None

    def filtered(self) -> "MergeRequest":
        """Copy keeping only entries whose URL is a video."""
        keep = [i for i, url in enumerate(self.video_urls) if is_video_url(url)]
        return MergeRequest(
            video_urls=[self.video_urls[i] for i in keep],
            audio_urls=[self._aligned(self.audio_urls, i) for i in keep],
            narrations=[self._aligned(self.narrations, i) for i in keep],
            durations=[self._aligned(self.durations, i) for i in keep],
            bgm_type=self.bgm_type,
            subtitle_style=self.subtitle_style,
            resolution=self.resolution,
            output_format=self.output_format,
            narration_volume=self.narration_volume,
            bgm_volume=self.bgm_volume,
            original_volume=self.original_volume,
        )

    def manifest(self) -> Dict[str, Any]:
        """Cloud merge request body."""
        return {
            "videos": [
                {
                    "url": url,
                    "audio": self._aligned(self.audio_urls, i),
                    "narration": self._aligned(self.narrations, i),
                }
                for i, url in enumerate(self.video_urls)
            ],
            "volumes": {
                "narration": self.narration_volume,
                "bgm": self.bgm_volume,
                "original": self.original_volume,
            },
            "bgm": self.bgm_url,
            "subtitle": self.subtitle,
            "output": {"format": self.output_format, "resolution": self.resolution},
        }


@dataclass
class MergeResult:
    success: bool
    mode: Optional[MergeMode] = None
    video_url: Optional[str] = None
    segment_urls: List[str] = field(default_factory=list)
    message: Optional[str] = None
    error: Optional[str] = None
    tiers_attempted: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "mode": self.mode.value if self.mode else None,
            "video_url": self.video_url,
            "segment_urls": list(self.segment_urls),
            "message": self.message,
            "error": self.error,
            "tiers_attempted": list(self.tiers_attempted),
        }


class MergeEngine:
    """
    Runs the merge tiers in order, each at most once per request.

    `cloud` and `local` are optional; a missing tier is skipped.
    """

    def __init__(
        self,
        engine: Optional[FallbackEngine] = None,
        cloud: Optional[MergeService] = None,
        local=None,
    ):
        self.engine = engine
        self.cloud = cloud
        self.local = local

    async def merge(self, request: MergeRequest) -> MergeResult:
        total = len(request.video_urls)
        request = request.filtered()
        if not request.video_urls:
            error = f"No video clips to merge: all {total} input URL(s) are empty or still images"
            logger.error(f"[MERGE] {error}")
            return MergeResult(success=False, error=error)

        if total != len(request.video_urls):
            logger.warning(f"[MERGE] Dropped {total - len(request.video_urls)} non-video URL(s)")

        if len(request.video_urls) == 1 and not request.bgm_url and not request.subtitle.get("enabled"):
            logger.info("[MERGE] Single clip without BGM or subtitles, passthrough")
            return MergeResult(
                success=True,
                mode=MergeMode.PASSTHROUGH,
                video_url=request.video_urls[0],
                segment_urls=list(request.video_urls),
            )

        attempted: List[str] = []
        reasons: List[str] = []

        # Tier 1
        if self.cloud is not None and self.engine is not None:
            attempted.append(MergeMode.CLOUD.value)
            manifest = request.manifest()
            try:
                url = await self.engine.run(
                    MERGE,
                    lambda target, api_key: self.cloud.merge(manifest, model=target.model, api_key=api_key),
                )
                logger.info(f"[MERGE] Cloud merge succeeded: {url}")
                return MergeResult(
                    success=True,
                    mode=MergeMode.CLOUD,
                    video_url=url,
                    segment_urls=list(request.video_urls),
                    tiers_attempted=attempted,
                )
            except Exception as e:
                reasons.append(f"cloud: {e}")
                logger.warning(f"[MERGE] Cloud merge failed: {e}")

        # Tier 2
        if self.local is not None and self.local.available():
            attempted.append(MergeMode.LOCAL.value)
            try:
                url = await self.local.merge(request)
                logger.info(f"[MERGE] Local merge succeeded: {url}")
                return MergeResult(
                    success=True,
                    mode=MergeMode.LOCAL,
                    video_url=url,
                    segment_urls=list(request.video_urls),
                    tiers_attempted=attempted,
                )
            except Exception as e:
                reasons.append(f"local: {e}")
                logger.warning(f"[MERGE] Local merge failed: {e}")
        else:
            reasons.append("local: FFmpeg not available" if self.local is not None else "local: not configured")

        # Tier 3
        unavailable = MergeUnavailableError(f"Automatic merging is unavailable ({'; '.join(reasons)})")
        logger.warning(f"[MERGE] {unavailable.message}, using emergency mode")
        attempted.append(MergeMode.EMERGENCY.value)
        count = len(request.video_urls)
        return MergeResult(
            success=True,
            mode=MergeMode.EMERGENCY,
            video_url=request.video_urls[0],
            segment_urls=list(request.video_urls),
            message=(
                "Automatic merging is unavailable right now. The first segment is provided "
                f"as a preview and all {count} segment clips are listed in order for download."
            ),
            error=unavailable.message,
            tiers_attempted=attempted,
        )
