"""
Unit tests for production/synthesis.py.

Tests:
  - Happy path: audio + one normalized visual per segment + thumbnail.
  - Failure policy: K<N visual failures → placeholders; K=N → NoVisualAssetsError.
  - Undecodable image bytes count as failures.
  - Voice failure is fatal; thumbnail failure falls back to a gradient.
  - motion_graphic segments are rendered locally without an image call.
"""
from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

from autoshorts.errors import NoVisualAssetsError, VoiceSynthesisError
from autoshorts.production.synthesis import FAILURE_POLICY, AssetSynthesisCoordinator, FailurePolicy
from autoshorts.production.timing import build_timeline
from autoshorts.production.workspace import WorkspaceManager
from autoshorts.schemas.assets import AssetKind
from autoshorts.schemas.config import AutomationConfig
from autoshorts.schemas.script import Script, Timeline, VisualKind
from autoshorts.tests._fakes import SMALL_H, SMALL_W, FakeImages, FakeVoice

SCRIPT = Script(
    title="Test video",
    narration_text="First point here. Second point here. Third point here.",
    thumbnail_caption="THUMB",
)


def _coordinator(config: AutomationConfig, voice=None, images=None) -> AssetSynthesisCoordinator:
    return AssetSynthesisCoordinator(
        voice or FakeVoice(),
        images or FakeImages(),
        config.frame,
        config.fallback,
        config.timeouts,
        max_workers=2,
    )


@pytest.fixture()
def workspace(config: AutomationConfig):
    manager = WorkspaceManager(config.pipeline.workspace_root)
    with manager.workspace("synth-test") as ws:
        yield ws


class TestPolicyTable:

    def test_policy(self):
        assert FAILURE_POLICY[AssetKind.AUDIO_TRACK] is FailurePolicy.FATAL
        assert FAILURE_POLICY[AssetKind.VISUAL] is FailurePolicy.FALLBACK
        assert FAILURE_POLICY[AssetKind.THUMBNAIL] is FailurePolicy.FALLBACK


class TestSynthesize:

    def test_happy_path(self, config, workspace):
        images = FakeImages()
        timeline = build_timeline(SCRIPT.narration_text)
        assets = _coordinator(config, images=images).synthesize(SCRIPT, timeline, workspace)

        assert assets.audio.location.read_bytes() == b"ID3-fake-audio"
        assert [v.segment_ordinal for v in assets.visuals] == [0, 1, 2]
        assert assets.fallback_count == 0
        for visual in assets.visuals:
            with Image.open(visual.location) as img:
                assert img.size == (SMALL_W, SMALL_H)
        assert assets.thumbnail is not None and not assets.thumbnail.is_fallback
        with Image.open(assets.thumbnail.location) as img:
            assert img.size == (320, 180)
        # One image call per segment plus the thumbnail.
        assert len(images.prompts) == 4
        assert "THUMB" in images.prompts

    def test_visual_requests_sized_to_frame(self, config, workspace):
        images = FakeImages()
        _coordinator(config, images=images).synthesize(SCRIPT, build_timeline(SCRIPT.narration_text), workspace)
        frame_requests = [s for s in images.sizes if s.width == SMALL_W]
        assert len(frame_requests) == 3

    def test_some_visuals_fail_get_placeholders(self, config, workspace):
        images = FakeImages(fail_when=lambda p: p.startswith("Second"))
        assets = _coordinator(config, images=images).synthesize(
            SCRIPT, build_timeline(SCRIPT.narration_text), workspace
        )
        assert [v.is_fallback for v in assets.visuals] == [False, True, False]
        assert assets.fallback_count == 1
        placeholder = assets.visuals[1].location
        assert placeholder.exists() and placeholder.name.endswith("_fallback.png")
        with Image.open(placeholder) as img:
            assert img.size == (SMALL_W, SMALL_H)

    def test_undecodable_bytes_count_as_failure(self, config, workspace):
        images = FakeImages(garbage_when=lambda p: p.startswith("Third"))
        assets = _coordinator(config, images=images).synthesize(
            SCRIPT, build_timeline(SCRIPT.narration_text), workspace
        )
        assert [v.is_fallback for v in assets.visuals] == [False, False, True]

    def test_all_visuals_fail(self, config, workspace):
        images = FakeImages(fail_when=lambda p: p != "THUMB")
        with pytest.raises(NoVisualAssetsError):
            _coordinator(config, images=images).synthesize(
                SCRIPT, build_timeline(SCRIPT.narration_text), workspace
            )

    def test_voice_failure_is_fatal(self, config, workspace):
        voice = FakeVoice(error=RuntimeError("tts down"))
        with pytest.raises(VoiceSynthesisError, match="tts down"):
            _coordinator(config, voice=voice).synthesize(
                SCRIPT, build_timeline(SCRIPT.narration_text), workspace
            )

    def test_empty_audio_is_fatal(self, config, workspace):
        with pytest.raises(VoiceSynthesisError):
            _coordinator(config, voice=FakeVoice(data=b"")).synthesize(
                SCRIPT, build_timeline(SCRIPT.narration_text), workspace
            )

    def test_thumbnail_failure_falls_back(self, config, workspace):
        images = FakeImages(fail_when=lambda p: p == "THUMB")
        assets = _coordinator(config, images=images).synthesize(
            SCRIPT, build_timeline(SCRIPT.narration_text), workspace
        )
        assert assets.thumbnail.is_fallback
        assert assets.fallback_count == 0
        with Image.open(assets.thumbnail.location) as img:
            assert img.size == (320, 180)

    def test_thumbnail_uses_title_without_caption(self, config, workspace):
        images = FakeImages()
        script = SCRIPT.model_copy(update={"thumbnail_caption": ""})
        _coordinator(config, images=images).synthesize(
            script, build_timeline(script.narration_text), workspace
        )
        assert "Test video" in images.prompts

    def test_motion_graphic_rendered_locally(self, config, workspace):
        base = build_timeline(SCRIPT.narration_text)
        segments = [
            seg.model_copy(update={"visual_kind": VisualKind.MOTION_GRAPHIC}) if seg.ordinal == 0 else seg
            for seg in base.segments
        ]
        timeline = Timeline(segments=segments, words_per_minute=150, min_segment_s=2.0)
        images = FakeImages()
        assets = _coordinator(config, images=images).synthesize(SCRIPT, timeline, workspace)
        assert not assets.visuals[0].is_fallback
        assert "First point here" not in images.prompts
        assert Path(assets.visuals[0].location).exists()
