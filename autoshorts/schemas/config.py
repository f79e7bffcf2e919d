"""
AutomationConfig — every tunable of the production system in one tree.

Defaults describe the vertical short format: 1080x1920 canonical frame,
30 fps, CRF 23 / preset medium.  Encoding parameters live in named profiles
(ENCODING_PROFILES) so call sites never hardcode them.

load_config() reads an optional JSON file, then applies AUTOSHORTS_*
environment overrides (a .env file in the working directory is honoured).
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from autoshorts.errors import ConfigError

logger = logging.getLogger(__name__)


class FrameSize(BaseModel):
    """Canonical output frame.  Canonical field names: width, height, aspect."""
    width: int = Field(default=1080, gt=0)
    height: int = Field(default=1920, gt=0)
    aspect: str = "9:16"

    @property
    def label(self) -> str:
        return f"{self.width}x{self.height}"


class EncodingProfile(BaseModel):
    """Constant-quality encode settings; CRF, never a target bitrate."""
    name: str = "standard"
    fps: int = Field(default=30, gt=0)
    encoder: str = "libx264"
    crf: int = Field(default=23, ge=0, le=51)
    preset: str = "medium"
    pix_fmt: str = "yuv420p"
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"


ENCODING_PROFILES: dict[str, EncodingProfile] = {
    "preview":  EncodingProfile(name="preview", crf=28, preset="veryfast"),
    "standard": EncodingProfile(name="standard"),
    "high":     EncodingProfile(name="high", crf=18, preset="slow", audio_bitrate="192k"),
}


class FallbackConfig(BaseModel):
    """
    Locally rendered stand-ins for failed visual / thumbnail synthesis.
    placeholder_font_path: absolute path to a .ttf font on the render host.
    Default points to DejaVuSans on Ubuntu; Pillow's built-in font is used if absent.
    """
    placeholder_color: str = "#1a1a2e"
    placeholder_font_path: str = "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"
    placeholder_font_size: int = 48
    pad_color: str = "black"           # neutral background for scale+pad
    thumbnail_size: FrameSize = Field(
        default_factory=lambda: FrameSize(width=1280, height=720, aspect="16:9")
    )
    thumbnail_gradient: tuple[str, str] = ("#667eea", "#764ba2")


class TimingConfig(BaseModel):
    words_per_minute: float = Field(default=150.0, gt=0)
    min_segment_s: float = Field(default=2.0, gt=0)


class CallTimeouts(BaseModel):
    """Per-call wall-clock limits (seconds) for external collaborators."""
    hunt_s: float = 60.0
    script_s: float = 120.0
    voice_s: float = 180.0
    image_s: float = 120.0
    publish_s: float = 600.0
    encode_s: int = 600


class PipelineConfig(BaseModel):
    output_dir: Path = Path("output")
    workspace_root: Path = Path("workspace")
    publish_enabled: bool = True
    keep_published_media: bool = False
    subtitles_enabled: bool = True
    stretch_to_audio: bool = True
    max_underrun_s: float = Field(default=0.5, ge=0)
    max_visual_workers: int = Field(default=4, gt=0)
    encoding_profile: str = "standard"

    @field_validator("encoding_profile")
    @classmethod
    def _known_profile(cls, value: str) -> str:
        if value not in ENCODING_PROFILES:
            raise ValueError(
                f"unknown encoding profile {value!r}; supported: {sorted(ENCODING_PROFILES)}"
            )
        return value


class SchedulerConfig(BaseModel):
    enabled: bool = True
    fire_times: list[str] = Field(default_factory=lambda: ["09:00", "15:00", "21:00"])
    daily_quota: int = Field(default=3, ge=0)
    # True: every started run consumes quota; False: only completed runs do.
    count_failed_runs: bool = True
    cleanup_time: str = "02:00"
    retention_days: float = Field(default=7.0, gt=0)
    poll_interval_s: float = Field(default=30.0, gt=0)
    error_buffer_size: int = Field(default=10, gt=0)

    @field_validator("fire_times")
    @classmethod
    def _valid_times(cls, values: list[str]) -> list[str]:
        for value in values:
            parse_time_of_day(value)
        return sorted(set(values))

    @field_validator("cleanup_time")
    @classmethod
    def _valid_cleanup_time(cls, value: str) -> str:
        parse_time_of_day(value)
        return value


class AutomationConfig(BaseModel):
    frame: FrameSize = Field(default_factory=FrameSize)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    timeouts: CallTimeouts = Field(default_factory=CallTimeouts)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    run_log_path: Optional[Path] = Path("output/run_log.jsonl")

    @property
    def encoding(self) -> EncodingProfile:
        return ENCODING_PROFILES[self.pipeline.encoding_profile]


def parse_time_of_day(value: str) -> tuple[int, int]:
    """Parse "HH:MM" → (hour, minute); raises ValueError on bad input."""
    try:
        hour_s, minute_s = value.split(":", 1)
        hour, minute = int(hour_s), int(minute_s)
    except ValueError:
        raise ValueError(f"time of day must be HH:MM, got {value!r}")
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"time of day out of range: {value!r}")
    return hour, minute


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

# env var → (section, field)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "AUTOSHORTS_OUTPUT_DIR":       ("pipeline", "output_dir"),
    "AUTOSHORTS_WORKSPACE_ROOT":   ("pipeline", "workspace_root"),
    "AUTOSHORTS_PUBLISH_ENABLED":  ("pipeline", "publish_enabled"),
    "AUTOSHORTS_ENCODING_PROFILE": ("pipeline", "encoding_profile"),
    "AUTOSHORTS_DAILY_QUOTA":      ("scheduler", "daily_quota"),
    "AUTOSHORTS_FIRE_TIMES":       ("scheduler", "fire_times"),
    "AUTOSHORTS_COUNT_FAILED_RUNS": ("scheduler", "count_failed_runs"),
    "AUTOSHORTS_RETENTION_DAYS":   ("scheduler", "retention_days"),
    "AUTOSHORTS_WORDS_PER_MINUTE": ("timing", "words_per_minute"),
}


def load_config(path: Optional[Path] = None, *, use_env: bool = True) -> AutomationConfig:
    """
    Build an AutomationConfig from *path* (JSON) plus environment overrides.

    Raises:
        ConfigError: if the file is missing/unparseable or a value is invalid.
    """
    raw: dict = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"config file not found: {path}")
        try:
            raw = AutomationConfig.model_validate_json(
                path.read_text(encoding="utf-8")
            ).model_dump()
        except ValidationError as exc:
            raise ConfigError(f"invalid config {path.name}: {exc}") from exc

    if use_env:
        load_dotenv(find_dotenv(usecwd=True))
        for env_name, (section, field) in _ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value is None or value == "":
                continue
            if field == "fire_times":
                value = [v.strip() for v in value.split(",") if v.strip()]
            raw.setdefault(section, {})[field] = value
            logger.debug("config override %s → %s.%s", env_name, section, field)

    try:
        return AutomationConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc
