"""
Asset and AssetSet — what the synthesis coordinator hands to assembly.

Every asset lives inside the per-run Workspace; none outlives its run.
Visual assets carry the canonical frame size they were normalized to;
is_fallback marks a locally rendered stand-in for a failed synthesis.
"""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from autoshorts.schemas.config import FrameSize


class AssetKind(str, Enum):
    AUDIO_TRACK = "audio_track"
    VISUAL = "visual"
    THUMBNAIL = "thumbnail"
    SUBTITLE_CUE = "subtitle_cue"


class Asset(BaseModel):
    """
    One produced file.
    segment_ordinal is set for per-segment visuals; None for run-wide assets
    (audio track, thumbnail, subtitle file).
    """
    kind: AssetKind
    location: Path
    segment_ordinal: Optional[int] = None
    normalized_size: Optional[FrameSize] = None
    is_fallback: bool = False


class SubtitleCue(BaseModel):
    """One caption block; times are absolute seconds on the output timeline."""
    index: int = Field(ge=1)
    start_s: float = Field(ge=0)
    end_s: float
    text: str

    @model_validator(mode="after")
    def _end_after_start(self) -> "SubtitleCue":
        if self.end_s <= self.start_s:
            raise ValueError(f"cue {self.index}: end {self.end_s} <= start {self.start_s}")
        return self


class AssetSet(BaseModel):
    """Validated input to MediaAssemblyEngine."""
    audio: Asset
    visuals: list[Asset]
    thumbnail: Optional[Asset] = None
    subtitles: Optional[Asset] = None

    @model_validator(mode="after")
    def _check_kinds(self) -> "AssetSet":
        if self.audio.kind is not AssetKind.AUDIO_TRACK:
            raise ValueError(f"audio asset has kind {self.audio.kind.value}")
        if not self.visuals:
            raise ValueError("asset set needs at least one visual")
        for asset in self.visuals:
            if asset.kind is not AssetKind.VISUAL:
                raise ValueError(f"visual slot holds a {asset.kind.value} asset")
        if self.thumbnail is not None and self.thumbnail.kind is not AssetKind.THUMBNAIL:
            raise ValueError(f"thumbnail slot holds a {self.thumbnail.kind.value} asset")
        if self.subtitles is not None and self.subtitles.kind is not AssetKind.SUBTITLE_CUE:
            raise ValueError(f"subtitle slot holds a {self.subtitles.kind.value} asset")
        return self

    @property
    def fallback_count(self) -> int:
        return sum(1 for a in self.visuals if a.is_fallback)
