"""
Real-encoder tests for MediaAssemblyEngine and a full pipeline run.

Requires ffmpeg / ffprobe on PATH (skipped otherwise).  Marked slow.
Frame is 180x320 and the narration is silence so each encode takes about a
second.
"""
from __future__ import annotations

import datetime
import subprocess
from pathlib import Path
from typing import Optional

import pytest

from autoshorts.production.pipeline import ProductionPipeline
from autoshorts.production.timing import build_timeline
from autoshorts.production.workspace import WorkspaceManager
from autoshorts.renderer.assembler import MediaAssemblyEngine
from autoshorts.renderer.captions import write_srt
from autoshorts.renderer.ffmpeg_runner import probe_duration
from autoshorts.schemas.assets import Asset, AssetKind, AssetSet
from autoshorts.schemas.config import AutomationConfig
from autoshorts.schemas.run import RunState
from autoshorts.tests._fakes import NARRATION, FakeVoice, make_collaborators, write_silent_wav

# Container rounding (AAC priming, last frame) stays well inside this.
_DURATION_TOLERANCE_S = 0.15


def _stream_types(path: Path) -> list[str]:
    result = subprocess.run(
        ["ffprobe", "-v", "error", "-show_entries", "stream=codec_type", "-of", "csv=p=0", str(path)],
        capture_output=True, text=True, check=True,
    )
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def _stream_size(path: Path) -> tuple[int, int]:
    result = subprocess.run(
        ["ffprobe", "-v", "error", "-select_streams", "v:0",
         "-show_entries", "stream=width,height", "-of", "csv=p=0", str(path)],
        capture_output=True, text=True, check=True,
    )
    width, height = result.stdout.strip().split(",")
    return int(width), int(height)


@pytest.mark.slow
class TestAssemblyEngine:

    @pytest.fixture(autouse=True)
    def _need_ffmpeg(self, require_ffmpeg):
        """All tests require ffmpeg."""

    def _assets(self, test_assets_dir: Path, audio: Path, subtitles: Optional[Path] = None) -> AssetSet:
        return AssetSet(
            audio=Asset(kind=AssetKind.AUDIO_TRACK, location=audio),
            visuals=[
                Asset(kind=AssetKind.VISUAL, location=test_assets_dir / f"{name}.png", segment_ordinal=i)
                for i, name in enumerate(("red", "green"))
            ],
            subtitles=Asset(kind=AssetKind.SUBTITLE_CUE, location=subtitles) if subtitles else None,
        )

    def test_encode_matches_audio_and_frame(self, config: AutomationConfig, test_assets_dir: Path, tmp_path: Path):
        timeline = build_timeline(NARRATION)
        audio = write_silent_wav(tmp_path / "narration.wav", timeline.total_duration_s)
        srt = write_srt(timeline, tmp_path / "captions.srt")
        engine = MediaAssemblyEngine(config.frame, config.encoding)
        out = tmp_path / "out" / "video.mp4"
        work = tmp_path / "work"
        work.mkdir()

        result = engine.assemble(timeline, self._assets(test_assets_dir, audio, srt), out, partial_dir=work)

        assert out.exists()
        assert list(work.iterdir()) == []
        assert abs(probe_duration(str(out)) - 4.0) < _DURATION_TOLERANCE_S
        assert _stream_size(out) == (config.frame.width, config.frame.height)
        assert sorted(_stream_types(out)) == ["audio", "subtitle", "video"]
        assert result.effective_settings.subtitles
        assert result.clip_count == 2

    def test_shorter_audio_truncates_video(self, config: AutomationConfig, test_assets_dir: Path, tmp_path: Path):
        timeline = build_timeline(NARRATION)
        audio = write_silent_wav(tmp_path / "narration.wav", 3.0)
        engine = MediaAssemblyEngine(config.frame, config.encoding)
        out = tmp_path / "video.mp4"

        result = engine.assemble(timeline, self._assets(test_assets_dir, audio), out, partial_dir=tmp_path)

        assert result.duration_s == 3.0
        assert abs(probe_duration(str(out)) - 3.0) < _DURATION_TOLERANCE_S
        assert "subtitle" not in _stream_types(out)

    def test_probe_audio(self, config: AutomationConfig, tmp_path: Path):
        audio = write_silent_wav(tmp_path / "a.wav", 2.5)
        engine = MediaAssemblyEngine(config.frame, config.encoding)
        measured = engine.probe_audio(Asset(kind=AssetKind.AUDIO_TRACK, location=audio))
        assert abs(measured - 2.5) < 0.01


@pytest.mark.slow
class TestPipelineWithEncoder:

    @pytest.fixture(autouse=True)
    def _need_ffmpeg(self, require_ffmpeg):
        """All tests require ffmpeg."""

    def test_full_run_produces_video(self, config: AutomationConfig, tmp_path: Path):
        config.pipeline.publish_enabled = False
        wav = write_silent_wav(tmp_path / "voice.wav", 5.0)
        collaborators = make_collaborators(voice=FakeVoice(data=wav.read_bytes()))
        pipeline = ProductionPipeline(config, collaborators)

        report = pipeline.try_start("manual")

        run = report.run
        assert run.state is RunState.COMPLETED, run.last_error
        assert run.produced_video.exists()
        # Timeline re-timed to the measured 5 s of narration.
        assert abs(probe_duration(str(run.produced_video)) - 5.0) < _DURATION_TOLERANCE_S
        assert list(Path(config.pipeline.workspace_root).iterdir()) == []

    def test_retention_sweep_after_run(self, config: AutomationConfig, tmp_path: Path):
        config.pipeline.publish_enabled = False
        wav = write_silent_wav(tmp_path / "voice.wav", 4.0)
        pipeline = ProductionPipeline(config, make_collaborators(voice=FakeVoice(data=wav.read_bytes())))
        video = pipeline.try_start().run.produced_video

        later = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(days=30)
        manager = WorkspaceManager(
            config.pipeline.workspace_root, output_dir=config.pipeline.output_dir, retention_days=7,
        )
        assert video in manager.sweep(now=later)
        assert not video.exists()
