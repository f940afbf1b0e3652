"""
SRT subtitle generation from ordered segment narrations.
"""
from typing import List, Optional, Sequence

DEFAULT_CUE_SECONDS = 8.0


def format_srt_time(seconds: float) -> str:
    """Format seconds as HH:MM:SS,mmm."""
    total_ms = int(round(max(0.0, seconds) * 1000))
    hours, rest = divmod(total_ms, 3600 * 1000)
    minutes, rest = divmod(rest, 60 * 1000)
    secs, ms = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"


def generate_srt_content(
    narrations: Sequence[Optional[str]],
    durations: Optional[Sequence[Optional[float]]] = None,
) -> str:
    """
    Build an SRT document with one cue per narration.

    Cues are laid back to back; a missing or non-positive duration counts as
    DEFAULT_CUE_SECONDS. Empty narrations still advance the clock but emit
    no cue.
    """
    durations = list(durations or [])
    lines: List[str] = []
    current = 0.0
    number = 1

    for index, text in enumerate(narrations):
        duration = durations[index] if index < len(durations) else None
        if not duration or duration <= 0:
            duration = DEFAULT_CUE_SECONDS

        if text and text.strip():
            lines.append(str(number))
            lines.append(f"{format_srt_time(current)} --> {format_srt_time(current + duration)}")
            lines.append(text.strip())
            lines.append("")
            number += 1

        current += duration

    return "\n".join(lines) + ("\n" if lines else "")
