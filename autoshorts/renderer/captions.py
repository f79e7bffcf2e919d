"""
SRT caption generator for assembled shorts.

One cue per Timeline segment (one sentence per cue).  Cue times are absolute
positions on the output timeline, computed in integer milliseconds from the
segment offsets.

Sync rules:
  - Cue i spans [segment.start, segment.end) minus a 40 ms tail gap so
    adjacent captions never touch.
  - Minimum caption display time: 1 000 ms (a cue shorter than that keeps
    its full segment span instead of losing the gap).
  - Cues past *limit_s* (the muxed output duration) are dropped; a cue that
    straddles it is clipped.

Output: standard SRT (SubRip Text) format, UTF-8 encoded.  The assembler
muxes it as a separate mov_text stream; captions are never burned in.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from autoshorts.schemas.assets import SubtitleCue
from autoshorts.schemas.script import Timeline

logger = logging.getLogger(__name__)

_MIN_CAPTION_DURATION_MS: int = 1_000
_MIN_CAPTION_GAP_MS: int = 40


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def build_cues(timeline: Timeline, limit_s: Optional[float] = None) -> list[SubtitleCue]:
    """Return one SubtitleCue per segment, clipped to *limit_s* if given."""
    limit_ms = None if limit_s is None else int(round(limit_s * 1000))
    cues: list[SubtitleCue] = []
    for seg in timeline.segments:
        if not seg.text.strip():
            continue
        start_ms = int(round(seg.start_s * 1000))
        end_ms = int(round(seg.end_s * 1000))
        if end_ms - start_ms - _MIN_CAPTION_GAP_MS >= _MIN_CAPTION_DURATION_MS:
            end_ms -= _MIN_CAPTION_GAP_MS

        if limit_ms is not None:
            if start_ms >= limit_ms:
                break
            end_ms = min(end_ms, limit_ms)

        cues.append(
            SubtitleCue(
                index=len(cues) + 1,
                start_s=start_ms / 1000.0,
                end_s=end_ms / 1000.0,
                text=seg.text,
            )
        )
    return cues


def build_srt(cues: list[SubtitleCue]) -> str:
    """
    Build SRT subtitle content from *cues*.

    Returns:
        Complete SRT string (empty string if there are no cues).
    """
    if not cues:
        return ""
    blocks: list[str] = []
    for cue in cues:
        blocks.append(
            f"{cue.index}\n"
            f"{_ms_to_srt(int(round(cue.start_s * 1000)))} --> "
            f"{_ms_to_srt(int(round(cue.end_s * 1000)))}\n"
            f"{cue.text}"
        )
    return "\n\n".join(blocks) + "\n"


def write_srt(
    timeline: Timeline,
    output_path: Path,
    limit_s: Optional[float] = None,
) -> Optional[Path]:
    """
    Write the .srt file for *timeline* to *output_path*.

    Returns:
        *output_path*, or None when the timeline yields no cues (no file written).
    """
    content = build_srt(build_cues(timeline, limit_s=limit_s))
    if not content:
        logger.info("No captionable segments — skipping subtitle stream.")
        return None
    output_path = Path(output_path)
    output_path.write_text(content, encoding="utf-8")
    logger.info(
        "Wrote captions: %s (%d bytes, %d blocks)",
        output_path,
        len(content),
        content.count("\n\n") + 1,
    )
    return output_path


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _ms_to_srt(ms: int) -> str:
    """Convert milliseconds to SRT timestamp format: HH:MM:SS,mmm."""
    ms = max(0, ms)
    hours, remainder = divmod(ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    seconds, millis = divmod(remainder, 1_000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{millis:03d}"
