"""
Script, Segment and Timeline — the narration side of one production run.

Script is the structured output of the external text generator and is frozen
once handed to the pipeline.  Segments and the Timeline are derived from
Script.narration_text by production.timing.build_timeline and exist only for
the duration of a run.

Timeline invariants (validated on construction):
  - segments are ordered by ordinal, ordinals are 0..n-1
  - start offsets are contiguous: segments[i].start_s == sum(durations[0..i-1])
  - total_duration_s == sum of segment durations

All durations are stored rounded to milliseconds so canonical_json() is
byte-identical for identical inputs.
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

# Tolerance for contiguity checks on millisecond-rounded floats.
_OFFSET_EPSILON = 1e-6


class VisualKind(str, Enum):
    IMAGE = "image"
    CLIP = "clip"
    MOTION_GRAPHIC = "motion_graphic"


class Script(BaseModel):
    """
    Generated script for one video.

    Accepts the text generator's native keys ("script", "thumbnail_text") as
    aliases so its JSON can be validated without a translation step.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str = Field(min_length=1)
    hook: str = ""
    narration_text: str = Field(
        validation_alias=AliasChoices("narration_text", "narrationText", "script"),
    )
    thumbnail_caption: str = Field(
        default="",
        validation_alias=AliasChoices(
            "thumbnail_caption", "thumbnailCaption", "thumbnail_text"
        ),
    )
    tags: list[str] = Field(default_factory=list)
    description: str = ""

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must not be blank")
        return value.strip()


class Segment(BaseModel):
    """One sentence-like narration unit paired with a visual cue."""
    model_config = ConfigDict(frozen=True)

    ordinal: int = Field(ge=0)
    text: str
    estimated_duration_s: float = Field(gt=0)
    visual_kind: VisualKind = VisualKind.IMAGE
    visual_prompt: Optional[str] = None


class TimedSegment(Segment):
    """Segment placed on the Timeline at a cumulative start offset."""
    start_s: float = Field(ge=0)

    @property
    def end_s(self) -> float:
        return round(self.start_s + self.estimated_duration_s, 3)


class Timeline(BaseModel):
    """
    Ordered, offset-annotated sequence of segments.

    words_per_minute / min_segment_s record the parameters the timeline was
    derived with; they are part of the canonical form.
    """
    model_config = ConfigDict(frozen=True)

    segments: list[TimedSegment]
    words_per_minute: float
    min_segment_s: float

    @model_validator(mode="after")
    def _check_contiguous(self) -> "Timeline":
        if not self.segments:
            raise ValueError("timeline must contain at least one segment")
        expected_start = 0.0
        for index, seg in enumerate(self.segments):
            if seg.ordinal != index:
                raise ValueError(
                    f"segment ordinals must be 0..n-1; got {seg.ordinal} at position {index}"
                )
            if abs(seg.start_s - expected_start) > _OFFSET_EPSILON:
                raise ValueError(
                    f"segment {index} starts at {seg.start_s}, expected {expected_start}"
                )
            expected_start = round(expected_start + seg.estimated_duration_s, 3)
        return self

    def __len__(self) -> int:
        return len(self.segments)

    @property
    def total_duration_s(self) -> float:
        return round(sum(s.estimated_duration_s for s in self.segments), 3)

    @property
    def durations(self) -> list[float]:
        return [s.estimated_duration_s for s in self.segments]

    def canonical_json(self) -> str:
        """Sorted keys, compact separators — stable across pydantic versions."""
        return json.dumps(
            self.model_dump(mode="json"),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )

    def scaled_to(self, total_s: float) -> "Timeline":
        """
        Return a copy whose durations are stretched proportionally to *total_s*.

        Used when the measured narration audio length differs from the
        estimate.  The last segment absorbs rounding so the new total equals
        *total_s* to the millisecond.
        Raises ValueError when *total_s* cannot give every segment at least
        one millisecond.
        """
        if total_s <= 0:
            raise ValueError(f"total_s must be positive, got {total_s}")
        count = len(self.segments)
        total_ms = round(total_s * 1000)
        if total_ms < count:
            raise ValueError(f"{total_s}s is too short for {count} segment(s)")
        factor = total_s / self.total_duration_s
        durations = [round(d * factor, 3) for d in self.durations]
        durations[-1] = round(total_s - sum(durations[:-1]), 3)
        if min(durations) <= 0:
            # Some segment rounded away; spread whole milliseconds evenly instead.
            even_ms = total_ms // count
            durations = [even_ms / 1000] * count
            durations[-1] = (total_ms - even_ms * (count - 1)) / 1000

        start = 0.0
        rescaled: list[TimedSegment] = []
        for seg, dur in zip(self.segments, durations):
            rescaled.append(
                seg.model_copy(update={"estimated_duration_s": dur, "start_s": start})
            )
            start = round(start + dur, 3)
        return Timeline(
            segments=rescaled,
            words_per_minute=self.words_per_minute,
            min_segment_s=self.min_segment_s,
        )
