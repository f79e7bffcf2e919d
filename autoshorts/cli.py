#!/usr/bin/env python3
"""
autoshorts — command-line control surface.

Subcommands
-----------
  autoshorts start        Run the scheduler in the foreground until SIGINT/SIGTERM
  autoshorts trigger-now  Produce one video now (same entry guard as the scheduler)
  autoshorts status       Configured schedule and recent run-log records
  autoshorts sweep        Remove workspaces / outputs past the retention period
  autoshorts timeline     Print the canonical Timeline JSON for a narration text
  autoshorts render       Assemble local audio + images into an mp4

Exit codes: 0 success (including "already running" no-ops), 1 failure,
2 usage / configuration error.

Collaborators (trend source, text generator, synthesizers, publisher) are
wired with --collaborators pkg.module:callable, or AUTOSHORTS_COLLABORATORS.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from autoshorts.errors import AutomationError, ConfigError
from autoshorts.production.collaborators import build_collaborators
from autoshorts.production.control import EXIT_FAILURE, EXIT_OK, ControlResult, ControlSurface
from autoshorts.production.pipeline import ProductionPipeline
from autoshorts.production.run_log import JsonlRunLogStore
from autoshorts.production.scheduler import DailyTicker, Scheduler, SystemClock
from autoshorts.production.timing import build_timeline
from autoshorts.production.workspace import WorkspaceManager
from autoshorts.renderer.assembler import MediaAssemblyEngine
from autoshorts.renderer.captions import write_srt
from autoshorts.schemas.assets import Asset, AssetKind, AssetSet
from autoshorts.schemas.config import AutomationConfig, load_config

logger = logging.getLogger("autoshorts")

EXIT_USAGE = 2

_LOG_FORMAT = "%(asctime)s [autoshorts] %(levelname)s: %(message)s"


# =============================================================================
# Shared helpers
# =============================================================================

def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=_LOG_FORMAT)


def _emit(result: ControlResult) -> int:
    stream = sys.stdout if result.ok else sys.stderr
    print(json.dumps(
        {"ok": result.ok, "already_running": result.already_running,
         "message": result.message, "payload": result.payload},
        indent=2, default=str,
    ), file=stream)
    return result.exit_code


def _build_control(config: AutomationConfig, factory: Optional[str]) -> tuple[ControlSurface, WorkspaceManager]:
    """Wire collaborators → pipeline → scheduler → control surface."""
    factory = factory or os.getenv("AUTOSHORTS_COLLABORATORS")
    if not factory:
        raise ConfigError(
            "no collaborator factory: pass --collaborators pkg.module:callable "
            "or set AUTOSHORTS_COLLABORATORS"
        )
    collaborators = build_collaborators(factory, config)
    if collaborators.run_log is None and config.run_log_path is not None:
        collaborators.run_log = JsonlRunLogStore(config.run_log_path)

    workspaces = WorkspaceManager(
        config.pipeline.workspace_root,
        output_dir=config.pipeline.output_dir,
        retention_days=config.scheduler.retention_days,
    )
    pipeline = ProductionPipeline(config, collaborators, workspaces=workspaces)
    scheduler = Scheduler(pipeline, config.scheduler, workspaces=workspaces)
    return ControlSurface(scheduler, pipeline), workspaces


# =============================================================================
# Subcommands
# =============================================================================

def cmd_start(config: AutomationConfig, factory: Optional[str]) -> int:
    """Run the scheduler until SIGINT / SIGTERM, then stop and purge workspaces."""
    control, workspaces = _build_control(config, factory)
    logger.info("Encoder: ffmpeg %s", control.pipeline.engine.check_encoder())
    stop_requested = threading.Event()

    def _on_signal(signum, _frame) -> None:
        logger.info("Received %s; shutting down", signal.Signals(signum).name)
        stop_requested.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    result = control.start()
    _emit(result)
    if not result.payload.get("is_active"):
        return EXIT_FAILURE
    try:
        while not stop_requested.wait(1.0):
            pass
    finally:
        control.stop()
        workspaces.purge_all()
    return EXIT_OK


def cmd_trigger_now(config: AutomationConfig, factory: Optional[str]) -> int:
    control, _ = _build_control(config, factory)
    return _emit(control.trigger_now())


def cmd_status(config: AutomationConfig, history: int) -> int:
    """Configuration-level status; a live scheduler reports through `start` logs."""
    records = []
    if config.run_log_path is not None:
        records = JsonlRunLogStore(config.run_log_path).recent(history)
    next_fire = DailyTicker(config.scheduler.fire_times).next_after(SystemClock().now())
    payload = {
        "fire_times": config.scheduler.fire_times,
        "daily_quota": config.scheduler.daily_quota,
        "next_run_at": next_fire.isoformat() if next_fire else None,
        "history": [r.model_dump(mode="json") for r in records],
    }
    return _emit(ControlResult(ok=True, message=f"{len(records)} recent run(s)", payload=payload))


def cmd_sweep(config: AutomationConfig) -> int:
    workspaces = WorkspaceManager(
        config.pipeline.workspace_root,
        output_dir=config.pipeline.output_dir,
        retention_days=config.scheduler.retention_days,
    )
    removed = workspaces.sweep()
    return _emit(ControlResult(
        ok=True,
        message=f"removed {len(removed)} item(s)",
        payload={"removed": [str(p) for p in removed]},
    ))


def cmd_timeline(config: AutomationConfig, narration: Path) -> int:
    text = sys.stdin.read() if str(narration) == "-" else narration.read_text(encoding="utf-8")
    timeline = build_timeline(
        text,
        words_per_minute=config.timing.words_per_minute,
        min_segment_s=config.timing.min_segment_s,
    )
    print(timeline.canonical_json())
    return EXIT_OK


def cmd_render(
    config: AutomationConfig,
    narration: Path,
    audio: Path,
    visuals: list[Path],
    out: Path,
    subtitles: bool = True,
    dry_run: bool = False,
) -> int:
    """Assemble already-synthesized media without any collaborator calls."""
    timeline = build_timeline(
        narration.read_text(encoding="utf-8"),
        words_per_minute=config.timing.words_per_minute,
        min_segment_s=config.timing.min_segment_s,
    )
    engine = MediaAssemblyEngine(
        config.frame,
        config.encoding,
        pad_color=config.fallback.pad_color,
        max_underrun_s=config.pipeline.max_underrun_s,
        timeout=config.timeouts.encode_s,
    )
    if not dry_run:
        engine.check_encoder()
    workspaces = WorkspaceManager(config.pipeline.workspace_root)
    with workspaces.workspace("render") as ws:
        assets = AssetSet(
            audio=Asset(kind=AssetKind.AUDIO_TRACK, location=audio),
            visuals=[
                Asset(kind=AssetKind.VISUAL, location=path, segment_ordinal=i)
                for i, path in enumerate(visuals)
            ],
        )
        audio_s = engine.probe_audio(assets.audio)
        if config.pipeline.stretch_to_audio:
            timeline = timeline.scaled_to(round(audio_s, 3))
        if subtitles:
            srt = write_srt(timeline, ws.subtitles_path, limit_s=audio_s)
            if srt is not None:
                assets = assets.model_copy(
                    update={"subtitles": Asset(kind=AssetKind.SUBTITLE_CUE, location=srt)}
                )

        if dry_run:
            graph = engine.plan(timeline, assets, out, audio_s)
            print(json.dumps(graph.to_command(), indent=2))
            return EXIT_OK

        result = engine.assemble(timeline, assets, out, partial_dir=ws.root, audio_duration_s=audio_s)
    print(result.model_dump_json(indent=2))
    return EXIT_OK


# =============================================================================
# CLI entry point
# =============================================================================

def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autoshorts",
        description="autoshorts — unattended short-video production",
    )
    parser.add_argument(
        "--config", type=Path, default=None, metavar="PATH",
        help="JSON configuration file (AUTOSHORTS_* env vars override it)",
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # ── autoshorts start / trigger-now ───────────────────────────────────────
    for name, help_text in (
        ("start", "Run the scheduler in the foreground"),
        ("trigger-now", "Produce one video immediately"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument(
            "--collaborators", default=None, metavar="MODULE:CALLABLE",
            help="Factory returning a Collaborators bundle",
        )

    # ── autoshorts status ────────────────────────────────────────────────────
    status_parser = sub.add_parser("status", help="Show schedule and recent runs")
    status_parser.add_argument(
        "--history", type=int, default=5, metavar="N",
        help="Number of run-log records to show (default: 5)",
    )

    sub.add_parser("sweep", help="Apply the retention policy now")

    # ── autoshorts timeline ──────────────────────────────────────────────────
    timeline_parser = sub.add_parser("timeline", help="Print the Timeline for a narration")
    timeline_parser.add_argument(
        "narration", type=Path, metavar="PATH",
        help="Narration text file, or - for stdin",
    )

    # ── autoshorts render ────────────────────────────────────────────────────
    render_parser = sub.add_parser("render", help="Assemble local media into an mp4")
    render_parser.add_argument("--narration", type=Path, required=True, metavar="PATH",
                               help="Narration text file (drives segment timing)")
    render_parser.add_argument("--audio", type=Path, required=True, metavar="PATH",
                               help="Narration audio track")
    render_parser.add_argument("--visual", type=Path, action="append", required=True,
                               dest="visuals", metavar="PATH",
                               help="Visual image, one per segment in order (repeatable)")
    render_parser.add_argument("--out", type=Path, required=True, metavar="PATH",
                               help="Output mp4 path")
    render_parser.add_argument("--no-subtitles", action="store_true",
                               help="Do not mux a subtitle stream")
    render_parser.add_argument("--dry-run", action="store_true",
                               help="Print the ffmpeg command instead of running it")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = _parser().parse_args(argv)
    _configure_logging(args.log_level)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(EXIT_USAGE)

    try:
        if args.command == "start":
            code = cmd_start(config, args.collaborators)
        elif args.command == "trigger-now":
            code = cmd_trigger_now(config, args.collaborators)
        elif args.command == "status":
            code = cmd_status(config, args.history)
        elif args.command == "sweep":
            code = cmd_sweep(config)
        elif args.command == "timeline":
            code = cmd_timeline(config, args.narration)
        else:
            code = cmd_render(
                config,
                narration=args.narration,
                audio=args.audio,
                visuals=args.visuals,
                out=args.out,
                subtitles=not args.no_subtitles,
                dry_run=args.dry_run,
            )
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        code = EXIT_USAGE
    except AutomationError as exc:
        print(f"ERROR: {type(exc).__name__}: {exc}", file=sys.stderr)
        code = EXIT_FAILURE
    sys.exit(code)


if __name__ == "__main__":
    main()
