"""
Segment Timing Model — narration text → Timeline.

Pure and deterministic: the same (text, words_per_minute, min_segment_s)
always yields a byte-identical Timeline, so asset generation and assembly can
be retried without re-deriving different timings.

Splitting rule: a run of terminators (. ! ? …) followed by whitespace or end
of text closes a unit.  "3.5 million" therefore stays one unit.  Units are
stripped; empty units are discarded.
"""
from __future__ import annotations

import re

from autoshorts.errors import EmptyScriptError
from autoshorts.schemas.script import TimedSegment, Timeline, VisualKind

_UNIT_BOUNDARY = re.compile(r"[.!?…]+(?=\s|$)")


def split_units(narration_text: str) -> list[str]:
    """Split narration into sentence-like units (terminators dropped)."""
    units = (u.strip() for u in _UNIT_BOUNDARY.split(narration_text or ""))
    # A unit of bare punctuation (e.g. "!!" between spaces) carries no speech.
    return [u for u in units if u and re.search(r"\w", u)]


def estimate_duration(unit: str, words_per_minute: float, min_segment_s: float) -> float:
    """Spoken duration of *unit* in seconds, floored at *min_segment_s*, ms precision."""
    if words_per_minute <= 0:
        raise ValueError(f"words_per_minute must be positive, got {words_per_minute}")
    words = len(unit.split())
    seconds = words / words_per_minute * 60.0
    return round(max(seconds, min_segment_s), 3)


def build_timeline(
    narration_text: str,
    words_per_minute: float = 150.0,
    min_segment_s: float = 2.0,
) -> Timeline:
    """
    Build the Timeline for *narration_text*.

    Raises:
        EmptyScriptError: if the narration holds no sentence-like units.
        ValueError:       if words_per_minute or min_segment_s is not positive.
    """
    if min_segment_s <= 0:
        raise ValueError(f"min_segment_s must be positive, got {min_segment_s}")

    units = split_units(narration_text)
    if not units:
        raise EmptyScriptError("narration text contains no sentence-like units")

    segments: list[TimedSegment] = []
    start = 0.0
    for ordinal, unit in enumerate(units):
        duration = estimate_duration(unit, words_per_minute, min_segment_s)
        segments.append(
            TimedSegment(
                ordinal=ordinal,
                text=unit,
                estimated_duration_s=duration,
                visual_kind=VisualKind.IMAGE,
                visual_prompt=unit,
                start_s=start,
            )
        )
        start = round(start + duration, 3)

    return Timeline(
        segments=segments,
        words_per_minute=words_per_minute,
        min_segment_s=min_segment_s,
    )
