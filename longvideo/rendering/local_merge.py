"""
Local FFmpeg merge (tier 2).

Downloads every clip with its narration track, probes durations, then runs
one FFmpeg invocation whose filter graph is:

    per clip   scale/pad to the output frame, original audio at
               original_volume (silence if the clip has none), narration at
               narration_volume padded/trimmed to the clip length, amixed
    concat     all clips in order
    bgm        looped input at bgm_volume, trimmed to the total, amixed
    subtitles  optional SRT burn-in with the chosen style
"""
import os
import json
import shutil
import asyncio
import logging
import tempfile
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import aiofiles

from .merge import MergeRequest
from .media_store import LocalMediaStore
from .subtitles import generate_srt_content

logger = logging.getLogger(__name__)

RESOLUTIONS: Dict[str, Tuple[int, int]] = {
    "720p": (1280, 720),
    "1080p": (1920, 1080),
    "4k": (3840, 2160),
}

DEFAULT_CLIP_SECONDS = 8.0


@dataclass
class ClipInput:
    """FFmpeg input indexes and probe results for one segment."""
    video_index: int
    duration: float
    has_audio: bool
    narration_index: Optional[int] = None


@dataclass
class FilterGraph:
    filter_complex: str
    video_label: str
    audio_label: str


def _escape_filter_path(path: str) -> str:
    return path.replace("\\", "/").replace(":", "\\:").replace("'", "\\'")


def _ass_colour(color: str) -> str:
    named = {"white": "&H00FFFFFF", "black": "&H00000000", "yellow": "&H0000FFFF"}
    return named.get(color, "&H00FFFFFF")


def subtitle_force_style(style: Dict[str, Any]) -> str:
    """ASS force_style for an entry of SUBTITLE_STYLES."""
    alignment = 8 if style.get("position") == "top" else 2
    parts = [
        f"FontSize={style.get('fontSize', 24)}",
        f"PrimaryColour={_ass_colour(style.get('color', 'white'))}",
        f"Alignment={alignment}",
    ]
    if style.get("bgColor", "transparent") != "transparent":
        parts += ["BorderStyle=3", "BackColour=&H80000000"]
    else:
        parts += ["BorderStyle=1", "Outline=2"]
    return ",".join(parts)


def build_filter_graph(
    clips: List[ClipInput],
    width: int,
    height: int,
    original_volume: float = 0.3,
    narration_volume: float = 1.0,
    bgm_index: Optional[int] = None,
    bgm_volume: float = 0.25,
    subtitle_path: Optional[str] = None,
    subtitle_style: Optional[Dict[str, Any]] = None,
) -> FilterGraph:
    if not clips:
        raise ValueError("build_filter_graph needs at least one clip")

    chains: List[str] = []
    concat_inputs: List[str] = []

    for i, clip in enumerate(clips):
        d = f"{clip.duration:.3f}"
        chains.append(
            f"[{clip.video_index}:v]scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1,fps=30[v{i}]"
        )

        if clip.has_audio:
            chains.append(
                f"[{clip.video_index}:a]volume={original_volume},apad,atrim=0:{d},asetpts=PTS-STARTPTS,"
                f"aformat=sample_rates=44100:channel_layouts=stereo[oa{i}]"
            )
        else:
            chains.append(f"anullsrc=r=44100:cl=stereo,atrim=0:{d}[oa{i}]")

        if clip.narration_index is not None:
            chains.append(
                f"[{clip.narration_index}:a]volume={narration_volume},apad,atrim=0:{d},asetpts=PTS-STARTPTS,"
                f"aformat=sample_rates=44100:channel_layouts=stereo[na{i}]"
            )
            chains.append(f"[oa{i}][na{i}]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[a{i}]")
        else:
            chains.append(f"[oa{i}]anull[a{i}]")

        concat_inputs.append(f"[v{i}][a{i}]")

    chains.append(f"{''.join(concat_inputs)}concat=n={len(clips)}:v=1:a=1[vcat][acat]")
    video_label, audio_label = "vcat", "acat"

    if bgm_index is not None:
        total = sum(c.duration for c in clips)
        chains.append(
            f"[{bgm_index}:a]volume={bgm_volume},atrim=0:{total:.3f},asetpts=PTS-STARTPTS,"
            f"aformat=sample_rates=44100:channel_layouts=stereo[bgm]"
        )
        chains.append(f"[{audio_label}][bgm]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[aout]")
        audio_label = "aout"

    if subtitle_path:
        style = subtitle_force_style(subtitle_style or {})
        chains.append(
            f"[{video_label}]subtitles='{_escape_filter_path(subtitle_path)}':force_style='{style}'[vout]"
        )
        video_label = "vout"

    return FilterGraph(";".join(chains), video_label, audio_label)


class LocalMerger:
    """FFmpeg-based merge tier."""

    def __init__(
        self,
        ffmpeg_path: str,
        ffprobe_path: str,
        media_store: LocalMediaStore,
        work_dir: Optional[Path] = None,
        timeout: float = 600.0,
        download_timeout: float = 120.0,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.media_store = media_store
        self.work_dir = Path(work_dir) if work_dir else None
        self.timeout = timeout
        self.download_timeout = download_timeout

    def available(self) -> bool:
        return bool(
            (os.path.exists(self.ffmpeg_path) or shutil.which(self.ffmpeg_path))
            and (os.path.exists(self.ffprobe_path) or shutil.which(self.ffprobe_path))
        )

    async def _download(self, client: httpx.AsyncClient, url: str, output_path: Path) -> Path:
        async with client.stream("GET", url) as response:
            if response.status_code != 200:
                raise Exception(f"Download failed ({response.status_code}): {url}")
            async with aiofiles.open(output_path, "wb") as f:
                async for chunk in response.aiter_bytes(chunk_size=8192):
                    await f.write(chunk)
        return output_path

    def _probe(self, path: Path) -> Tuple[float, bool]:
        """(duration, has_audio) using FFprobe."""
        probe_cmd = [
            self.ffprobe_path, "-v", "error",
            "-show_entries", "format=duration:stream=codec_type",
            "-of", "json",
            str(path),
        ]
        result = subprocess.run(probe_cmd, capture_output=True, text=True, timeout=30)
        if result.returncode != 0:
            raise Exception(f"FFprobe failed for {path.name}: {result.stderr[:200]}")

        data = json.loads(result.stdout or "{}")
        duration = float(data.get("format", {}).get("duration") or 0) or DEFAULT_CLIP_SECONDS
        has_audio = any(s.get("codec_type") == "audio" for s in data.get("streams", []))
        return duration, has_audio

    async def merge(self, request: MergeRequest) -> str:
        width, height = RESOLUTIONS.get(request.resolution, RESOLUTIONS["1080p"])
        if self.work_dir:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        tmp = Path(tempfile.mkdtemp(prefix="merge_", dir=str(self.work_dir) if self.work_dir else None))

        try:
            inputs: List[List[str]] = []
            clips: List[ClipInput] = []

            async with httpx.AsyncClient(timeout=self.download_timeout, follow_redirects=True) as client:
                for i, url in enumerate(request.video_urls):
                    video_path = await self._download(client, url, tmp / f"clip_{i:04d}.mp4")
                    duration, has_audio = await asyncio.to_thread(self._probe, video_path)

                    video_index = len(inputs)
                    inputs.append(["-i", str(video_path)])

                    narration_index = None
                    audio_url = request.audio_urls[i] if i < len(request.audio_urls) else None
                    if audio_url:
                        audio_path = await self._download(client, audio_url, tmp / f"narration_{i:04d}.mp3")
                        narration_index = len(inputs)
                        inputs.append(["-i", str(audio_path)])

                    clips.append(ClipInput(video_index, duration, has_audio, narration_index))

                bgm_index = None
                if request.bgm_url:
                    bgm_path = await self._download(client, request.bgm_url, tmp / "bgm.mp3")
                    bgm_index = len(inputs)
                    inputs.append(["-stream_loop", "-1", "-i", str(bgm_path)])

            subtitle_path = None
            if request.wants_subtitles:
                srt = generate_srt_content(request.narrations, [c.duration for c in clips])
                subtitle_path = tmp / "subtitles.srt"
                async with aiofiles.open(subtitle_path, "w", encoding="utf-8") as f:
                    await f.write(srt)

            graph = build_filter_graph(
                clips,
                width,
                height,
                original_volume=request.original_volume,
                narration_volume=request.narration_volume,
                bgm_index=bgm_index,
                bgm_volume=request.bgm_volume,
                subtitle_path=str(subtitle_path) if subtitle_path else None,
                subtitle_style=request.subtitle,
            )

            output_path = tmp / f"merged.{request.output_format}"
            cmd = [self.ffmpeg_path, "-y"]
            for args in inputs:
                cmd += args
            cmd += [
                "-filter_complex", graph.filter_complex,
                "-map", f"[{graph.video_label}]",
                "-map", f"[{graph.audio_label}]",
                "-c:v", "libx264",
                "-preset", "fast",
                "-c:a", "aac",
                "-movflags", "+faststart",
                str(output_path),
            ]

            logger.info(f"[MERGE] FFmpeg merging {len(clips)} clips at {width}x{height}")
            result = await asyncio.to_thread(
                subprocess.run, cmd, capture_output=True, text=True, timeout=self.timeout
            )
            if result.returncode != 0 or not output_path.exists():
                error_msg = result.stderr[-300:] if result.stderr else "Unknown error"
                raise Exception(f"FFmpeg merge failed: {error_msg}")

            return await self.media_store.save_file(output_path, prefix="long_video")
        finally:
            shutil.rmtree(tmp, ignore_errors=True)
