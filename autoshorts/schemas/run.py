"""
Run-side records: production run state, run-log rows, scheduler status and
the assembly result.

Timestamps are timezone-aware UTC datetimes; serialised as ISO 8601.
RunLogRecord is the only shape written to the external run-log store; it is
an append-only row keyed by run_id.
"""
from __future__ import annotations

import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class RunState(str, Enum):
    IDLE = "idle"
    HUNTING = "hunting"
    SCRIPTING = "scripting"
    ASSET_GENERATION = "asset_generation"
    ASSEMBLING = "assembling"
    PUBLISHING = "publishing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED)


class RunOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    PUBLISH_FAILED = "publish_failed"   # produced OK, upload failed


class ProductionRun(BaseModel):
    """Live run.  Owned exclusively by ProductionPipeline."""
    run_id: str
    trigger: str = "manual"                 # "manual" | "scheduled"
    state: RunState = RunState.IDLE
    started_at: datetime.datetime
    completed_at: Optional[datetime.datetime] = None
    produced_video: Optional[Path] = None
    published_id: Optional[str] = None
    last_error: Optional[str] = None
    error_type: Optional[str] = None
    failed_in: Optional[RunState] = None    # state the failure occurred in
    fallback_visuals: int = 0


class RunLogRecord(BaseModel):
    """One row of the append-only run log (§ run-log store)."""
    run_id: str
    outcome: RunOutcome
    trigger: str = "manual"
    started_at: datetime.datetime
    completed_at: datetime.datetime
    error: Optional[str] = None
    error_type: Optional[str] = None
    failed_in: Optional[str] = None
    produced_video: Optional[str] = None
    published_id: Optional[str] = None
    title: Optional[str] = None


class RunReport(BaseModel):
    """
    Result of one start request.
    already_running=True means the request was an idempotent no-op; run is None.
    """
    already_running: bool = False
    run: Optional[ProductionRun] = None

    @property
    def succeeded(self) -> bool:
        return self.run is not None and self.run.state is RunState.COMPLETED


class SchedulerStatus(BaseModel):
    is_active: bool = False
    last_run_at: Optional[datetime.datetime] = None
    next_run_at: Optional[datetime.datetime] = None
    runs_today: int = 0
    quota_day: Optional[datetime.date] = None
    daily_quota: int = 0
    total_success_count: int = 0
    recent_errors: list[str] = Field(default_factory=list)
    pipeline_state: RunState = RunState.IDLE


class EffectiveSettings(BaseModel):
    """Encode settings snapshot for one assembly — enables determinism proofs."""
    resolution: str   # e.g. "1080x1920"
    fps: str          # e.g. "30"
    encoder: str      # e.g. "libx264"
    crf: str
    preset: str
    audio_codec: str
    subtitles: bool = False


class AssemblyResult(BaseModel):
    output_path: Path
    duration_s: float
    video_sha256: str
    clip_count: int
    fallback_count: int = 0
    effective_settings: EffectiveSettings


class PipelineStatus(BaseModel):
    """Snapshot of the pipeline; current_run is None while idle."""
    state: RunState = RunState.IDLE
    current_run: Optional[ProductionRun] = None
    last_run: Optional[ProductionRun] = None
    success_count: int = 0
    production_count: int = 0
    failure_count: int = 0
