"""
Control surface — start / stop / status / trigger-now over one Scheduler.

Each operation returns a ControlResult whose exit_code the CLI passes to
sys.exit() unchanged:

  0  success
  0  idempotent no-op (run already in flight); already_running=True
  1  genuine failure (the triggered run failed)
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from autoshorts.production.pipeline import ProductionPipeline
from autoshorts.production.scheduler import Scheduler
from autoshorts.schemas.run import RunReport, RunState

EXIT_OK = 0
EXIT_FAILURE = 1


class ControlResult(BaseModel):
    ok: bool
    already_running: bool = False
    message: str = ""
    exit_code: int = EXIT_OK
    payload: dict[str, Any] = Field(default_factory=dict)


class ControlSurface:

    def __init__(self, scheduler: Scheduler, pipeline: Optional[ProductionPipeline] = None) -> None:
        self.scheduler = scheduler
        self.pipeline = pipeline or scheduler.pipeline

    def start(self, background: bool = True) -> ControlResult:
        was_active = self.scheduler.is_active
        status = self.scheduler.start(background=background)
        if was_active:
            message = "scheduler already active"
        elif status.is_active:
            message = "scheduler started"
        else:
            message = "scheduler disabled by configuration"
        return ControlResult(ok=True, message=message, payload=status.model_dump(mode="json"))

    def stop(self) -> ControlResult:
        was_active = self.scheduler.is_active
        status = self.scheduler.stop()
        message = "scheduler stopped" if was_active else "scheduler not active"
        return ControlResult(ok=True, message=message, payload=status.model_dump(mode="json"))

    def status(self, history: int = 5) -> ControlResult:
        scheduler_status = self.scheduler.status()
        pipeline_status = self.pipeline.status()
        return ControlResult(
            ok=True,
            message=f"pipeline {pipeline_status.state.value}",
            payload={
                "scheduler": scheduler_status.model_dump(mode="json"),
                "pipeline": pipeline_status.model_dump(mode="json"),
                "history": [r.model_dump(mode="json") for r in self.pipeline.history(history)],
            },
        )

    def trigger_now(self) -> ControlResult:
        return _from_report(self.scheduler.trigger_now())


def _from_report(report: RunReport) -> ControlResult:
    if report.already_running:
        return ControlResult(
            ok=True,
            already_running=True,
            message="a run is already in flight; request ignored",
            exit_code=EXIT_OK,
        )
    run = report.run
    payload = run.model_dump(mode="json") if run is not None else {}
    if run is not None and run.state is RunState.COMPLETED:
        return ControlResult(
            ok=True,
            message=f"run {run.run_id} completed",
            payload=payload,
        )
    error = f"{run.error_type}: {run.last_error}" if run is not None else "no run"
    return ControlResult(
        ok=False,
        message=f"run failed: {error}",
        exit_code=EXIT_FAILURE,
        payload=payload,
    )
