"""
Production Pipeline — the state machine for one production run.

  IDLE → HUNTING → SCRIPTING → ASSET_GENERATION → ASSEMBLING
       → PUBLISHING → COMPLETED                    (publishing optional)
  any non-terminal state → FAILED

After the terminal state is recorded the pipeline is IDLE again; failures are
not sticky.  try_start() is the only way in, for manual and scheduled
triggers alike: a non-blocking lock guards IDLE, so a second request while a
run is in flight returns ``RunReport(already_running=True)`` immediately
instead of queueing or raising.

Every run works inside its own Workspace, which is torn down on every exit
path.  The produced mp4 is the only thing left behind: deleted after a
successful publish (unless keep_published_media), kept when publishing
fails so it can be retried by hand.
"""
from __future__ import annotations

import datetime
import logging
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError

from autoshorts.errors import (
    AlreadyRunningError,
    AssemblyError,
    AutomationError,
    HuntingError,
    PublishError,
    ScriptingError,
)
from autoshorts.production.collaborators import Collaborators, invoke
from autoshorts.production.synthesis import AssetSynthesisCoordinator
from autoshorts.production.timing import build_timeline
from autoshorts.production.workspace import Workspace, WorkspaceManager
from autoshorts.renderer.assembler import MediaAssemblyEngine
from autoshorts.renderer.captions import write_srt
from autoshorts.schemas.assets import Asset, AssetKind, AssetSet
from autoshorts.schemas.config import AutomationConfig
from autoshorts.schemas.run import (
    AssemblyResult,
    PipelineStatus,
    ProductionRun,
    RunLogRecord,
    RunOutcome,
    RunReport,
    RunState,
)
from autoshorts.schemas.script import Script, Timeline

logger = logging.getLogger(__name__)

# Measured audio within this many seconds of the estimate is left alone.
_STRETCH_TOLERANCE_S = 0.001


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ProductionPipeline:
    """
    Usage::

        pipeline = ProductionPipeline(config, collaborators)
        report = pipeline.try_start("manual")
        if report.already_running: ...
    """

    def __init__(
        self,
        config: AutomationConfig,
        collaborators: Collaborators,
        workspaces: Optional[WorkspaceManager] = None,
        engine: Optional[MediaAssemblyEngine] = None,
        coordinator: Optional[AssetSynthesisCoordinator] = None,
        now: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.collaborators = collaborators
        self.workspaces = workspaces or WorkspaceManager(
            config.pipeline.workspace_root,
            output_dir=config.pipeline.output_dir,
            retention_days=config.scheduler.retention_days,
        )
        self.engine = engine or MediaAssemblyEngine(
            config.frame,
            config.encoding,
            pad_color=config.fallback.pad_color,
            max_underrun_s=config.pipeline.max_underrun_s,
            timeout=config.timeouts.encode_s,
        )
        self.coordinator = coordinator or AssetSynthesisCoordinator(
            collaborators.voice,
            collaborators.images,
            config.frame,
            config.fallback,
            config.timeouts,
            max_workers=config.pipeline.max_visual_workers,
        )
        self._now = now

        self._entry = threading.Lock()       # held for the whole run
        self._state_lock = threading.Lock()  # guards the fields below
        self._state = RunState.IDLE
        self._current: Optional[ProductionRun] = None
        self._last: Optional[ProductionRun] = None
        self.success_count = 0
        self.production_count = 0
        self.failure_count = 0

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def try_start(self, trigger: str = "manual") -> RunReport:
        """
        Run one production synchronously if the pipeline is idle.

        Never raises for run failures; the returned report's run carries the
        terminal state and error.  Returns ``already_running=True`` without
        side effects if a run is in flight.
        """
        if not self._entry.acquire(blocking=False):
            logger.info("Start requested (%s) while a run is in flight — ignored", trigger)
            return RunReport(already_running=True)
        try:
            run = self._execute(trigger)
        finally:
            with self._state_lock:
                self._state = RunState.IDLE
                self._current = None
            self._entry.release()
        return RunReport(run=run)

    def start_or_raise(self, trigger: str = "manual") -> RunReport:
        """try_start(), but an in-flight run raises AlreadyRunningError."""
        report = self.try_start(trigger)
        if report.already_running:
            raise AlreadyRunningError("a production run is already in flight")
        return report

    @property
    def is_idle(self) -> bool:
        with self._state_lock:
            return self._state is RunState.IDLE

    def status(self) -> PipelineStatus:
        with self._state_lock:
            return PipelineStatus(
                state=self._state,
                current_run=self._current.model_copy() if self._current else None,
                last_run=self._last.model_copy() if self._last else None,
                success_count=self.success_count,
                production_count=self.production_count,
                failure_count=self.failure_count,
            )

    def history(self, limit: int = 20) -> list[RunLogRecord]:
        store = self.collaborators.run_log
        return store.recent(limit) if store is not None else []

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _execute(self, trigger: str) -> ProductionRun:
        started = self._now()
        run = ProductionRun(
            run_id=f"{started:%Y%m%dT%H%M%SZ}-{uuid.uuid4().hex[:6]}",
            trigger=trigger,
            started_at=started,
        )
        with self._state_lock:
            self._current = run
        logger.info("Run %s started (trigger=%s)", run.run_id, trigger)

        script: Optional[Script] = None
        outcome = RunOutcome.FAILED
        try:
            with self.workspaces.workspace(run.run_id) as ws:
                self._transition(run, RunState.HUNTING)
                context = self._hunt()

                self._transition(run, RunState.SCRIPTING)
                script = self._write_script(context)
                timeline = build_timeline(
                    script.narration_text,
                    words_per_minute=self.config.timing.words_per_minute,
                    min_segment_s=self.config.timing.min_segment_s,
                )
                logger.info(
                    "Run %s: script %r → %d segment(s), %.3fs estimated",
                    run.run_id, script.title, len(timeline), timeline.total_duration_s,
                )

                self._transition(run, RunState.ASSET_GENERATION)
                assets = self.coordinator.synthesize(script, timeline, ws)
                run.fallback_visuals = assets.fallback_count

                self._transition(run, RunState.ASSEMBLING)
                result = self._assemble(run, timeline, assets, ws)
                run.produced_video = result.output_path
                with self._state_lock:
                    self.production_count += 1

                if self.config.pipeline.publish_enabled and self.collaborators.publisher is not None:
                    self._transition(run, RunState.PUBLISHING)
                    run.published_id = self._publish(script, result.output_path, assets)

            self._transition(run, RunState.COMPLETED)
            outcome = RunOutcome.COMPLETED
        except PublishError as exc:
            outcome = RunOutcome.PUBLISH_FAILED
            self._fail(run, exc)
        except AutomationError as exc:
            self._fail(run, exc)
        except Exception as exc:
            logger.exception("Run %s: unexpected error in %s", run.run_id, run.state.value)
            self._fail(run, exc)

        run.completed_at = self._now()
        with self._state_lock:
            if outcome is RunOutcome.COMPLETED:
                self.success_count += 1
            else:
                self.failure_count += 1
            self._last = run.model_copy()
        self._record(run, outcome, script)
        logger.info(
            "Run %s finished: %s in %.1fs",
            run.run_id, outcome.value, (run.completed_at - run.started_at).total_seconds(),
        )
        return run.model_copy()

    def _hunt(self) -> list[dict[str, Any]]:
        source = self.collaborators.trend_source
        result = invoke(source.hunt, timeout=self.config.timeouts.hunt_s, label="hunt")
        if not result.ok:
            raise HuntingError(f"trend source failed: {result.error_type}: {result.error}") from result.exception
        items = result.value or []
        if not items:
            raise HuntingError("trend source returned no items")
        logger.info("Hunting found %d trending item(s)", len(items))
        return list(items)

    def _write_script(self, context: list[dict[str, Any]]) -> Script:
        generator = self.collaborators.text_generator
        result = invoke(
            generator.generate_script, context,
            timeout=self.config.timeouts.script_s, label="script",
        )
        if not result.ok:
            raise ScriptingError(
                f"text generator failed: {result.error_type}: {result.error}"
            ) from result.exception
        value = result.value
        if isinstance(value, Script):
            return value
        try:
            if isinstance(value, (str, bytes)):
                return Script.model_validate_json(value)
            return Script.model_validate(value)
        except ValidationError as exc:
            raise ScriptingError(f"text generator returned a malformed script: {exc}") from exc

    def _assemble(
        self,
        run: ProductionRun,
        timeline: Timeline,
        assets: AssetSet,
        ws: Workspace,
    ) -> AssemblyResult:
        audio_s = self.engine.probe_audio(assets.audio)
        if (
            self.config.pipeline.stretch_to_audio
            and abs(audio_s - timeline.total_duration_s) > _STRETCH_TOLERANCE_S
        ):
            logger.info(
                "Run %s: re-timing %.3fs estimate to %.3fs of narration",
                run.run_id, timeline.total_duration_s, audio_s,
            )
            try:
                timeline = timeline.scaled_to(round(audio_s, 3))
            except ValueError as exc:
                raise AssemblyError(f"cannot re-time narration: {exc}") from exc

        if self.config.pipeline.subtitles_enabled:
            srt = write_srt(timeline, ws.subtitles_path, limit_s=audio_s)
            if srt is not None:
                assets = assets.model_copy(
                    update={"subtitles": Asset(kind=AssetKind.SUBTITLE_CUE, location=srt)}
                )

        output_path = Path(self.config.pipeline.output_dir) / f"{run.run_id}.mp4"
        return self.engine.assemble(
            timeline, assets, output_path,
            partial_dir=ws.root,
            audio_duration_s=audio_s,
        )

    def _publish(self, script: Script, media: Path, assets: AssetSet) -> str:
        metadata = {
            "title": script.title,
            "description": script.description or script.hook,
            "tags": list(script.tags),
            "thumbnail": str(assets.thumbnail.location) if assets.thumbnail else None,
        }
        result = invoke(
            self.collaborators.publisher.publish, media, metadata,
            timeout=self.config.timeouts.publish_s, label="publish",
        )
        if not result.ok:
            raise PublishError(
                f"publishing failed: {result.error_type}: {result.error}", media_path=media
            ) from result.exception
        published_id = str(result.value)
        logger.info("Published %s as %s", media.name, published_id)
        if not self.config.pipeline.keep_published_media:
            media.unlink(missing_ok=True)
        return published_id

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _transition(self, run: ProductionRun, state: RunState) -> None:
        with self._state_lock:
            logger.info("Run %s: %s → %s", run.run_id, run.state.value, state.value)
            run.state = state
            self._state = state

    def _fail(self, run: ProductionRun, exc: BaseException) -> None:
        with self._state_lock:
            run.failed_in = run.state
            run.state = RunState.FAILED
            run.last_error = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
            run.error_type = type(exc).__name__
            self._state = RunState.FAILED
        logger.error(
            "Run %s failed in %s: %s: %s",
            run.run_id, run.failed_in.value, run.error_type, run.last_error,
        )
        diagnostic = getattr(exc, "diagnostic", "")
        if diagnostic:
            logger.debug("Encoder diagnostic for %s:\n%s", run.run_id, diagnostic)

    def _record(self, run: ProductionRun, outcome: RunOutcome, script: Optional[Script]) -> None:
        store = self.collaborators.run_log
        if store is None:
            return
        record = RunLogRecord(
            run_id=run.run_id,
            outcome=outcome,
            trigger=run.trigger,
            started_at=run.started_at,
            completed_at=run.completed_at,
            error=run.last_error,
            error_type=run.error_type,
            failed_in=run.failed_in.value if run.failed_in else None,
            produced_video=str(run.produced_video) if run.produced_video else None,
            published_id=run.published_id,
            title=script.title if script else None,
        )
        try:
            store.append(record)
        except Exception:
            logger.exception("Run-log append failed for %s; run outcome unaffected", run.run_id)
