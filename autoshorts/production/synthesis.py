"""
Asset Synthesis Coordinator — Script + Timeline → AssetSet inside a Workspace.

Fan-out:
  - one voice call for the whole narration
  - one image call per segment, sized to the canonical frame
  - one image call for the thumbnail (caption as prompt, thumbnail size)
All calls run concurrently on a thread pool and are joined before returning;
visuals come back ordered by segment ordinal regardless of completion order.

What happens when a call fails is decided by FAILURE_POLICY, keyed by asset
kind, never by ad-hoc try/except at the call site:

  audio_track  FATAL     → VoiceSynthesisError, run fails
  visual       FALLBACK  → locally rendered placeholder at canonical size
  thumbnail    FALLBACK  → locally rendered gradient thumbnail

If every segment's visual had to fall back, NoVisualAssetsError is raised.
Synthesized image bytes are cover-cropped to the target size with Pillow;
bytes that do not decode count as a failed call.
"""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from autoshorts.errors import AutomationError, NoVisualAssetsError, VoiceSynthesisError
from autoshorts.production.collaborators import (
    CallResult,
    ImageSynthesizer,
    VoiceSynthesizer,
    invoke,
)
from autoshorts.production.workspace import Workspace
from autoshorts.renderer.normalize import normalize_image_bytes
from autoshorts.renderer.placeholder import generate_fallback_thumbnail, generate_placeholder
from autoshorts.schemas.assets import Asset, AssetKind, AssetSet
from autoshorts.schemas.config import CallTimeouts, FallbackConfig, FrameSize
from autoshorts.schemas.script import Script, TimedSegment, Timeline, VisualKind

logger = logging.getLogger(__name__)


class FailurePolicy(str, Enum):
    FATAL = "fatal"
    FALLBACK = "fallback"


FAILURE_POLICY: dict[AssetKind, FailurePolicy] = {
    AssetKind.AUDIO_TRACK: FailurePolicy.FATAL,
    AssetKind.VISUAL: FailurePolicy.FALLBACK,
    AssetKind.THUMBNAIL: FailurePolicy.FALLBACK,
}

_FATAL_ERRORS: dict[AssetKind, type[AutomationError]] = {
    AssetKind.AUDIO_TRACK: VoiceSynthesisError,
    AssetKind.VISUAL: NoVisualAssetsError,
}


class AssetSynthesisCoordinator:
    """
    Usage::

        coordinator = AssetSynthesisCoordinator(voice, images, config.frame,
                                                config.fallback, config.timeouts)
        with workspaces.workspace(run_id) as ws:
            assets = coordinator.synthesize(script, timeline, ws)
    """

    def __init__(
        self,
        voice: VoiceSynthesizer,
        images: ImageSynthesizer,
        frame: FrameSize,
        fallback: FallbackConfig,
        timeouts: CallTimeouts,
        max_workers: int = 4,
    ) -> None:
        self.voice = voice
        self.images = images
        self.frame = frame
        self.fallback = fallback
        self.timeouts = timeouts
        self.max_workers = max_workers

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def synthesize(self, script: Script, timeline: Timeline, workspace: Workspace) -> AssetSet:
        """
        Produce narration audio, one visual per segment and a thumbnail.

        Raises:
            VoiceSynthesisError: narration audio failed (policy FATAL).
            NoVisualAssetsError: every segment's visual fell back.
        """
        logger.info(
            "Synthesizing assets: %d segment(s), %d worker(s)",
            len(timeline), self.max_workers,
        )
        # +2: the voice and thumbnail calls run alongside the visual fan-out.
        pool = ThreadPoolExecutor(
            max_workers=self.max_workers + 2, thread_name_prefix="autoshorts-synth"
        )
        try:
            audio_future = pool.submit(self._audio, script, workspace)
            thumb_future = pool.submit(self._thumbnail, script, workspace)
            visual_futures: list[Future] = [
                pool.submit(self._visual, seg, workspace) for seg in timeline.segments
            ]
            try:
                audio = audio_future.result()
            except VoiceSynthesisError:
                for fut in visual_futures + [thumb_future]:
                    fut.cancel()
                raise
            visuals = [fut.result() for fut in visual_futures]
            thumbnail = thumb_future.result()
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

        fallback_count = sum(1 for v in visuals if v.is_fallback)
        if fallback_count == len(visuals):
            raise NoVisualAssetsError(
                f"visual synthesis failed for all {len(visuals)} segment(s)"
            )
        if fallback_count:
            logger.warning(
                "%d of %d visual(s) replaced by placeholders", fallback_count, len(visuals)
            )
        return AssetSet(audio=audio, visuals=visuals, thumbnail=thumbnail)

    # ------------------------------------------------------------------
    # Per-asset work
    # ------------------------------------------------------------------

    def _audio(self, script: Script, workspace: Workspace) -> Asset:
        def call() -> Path:
            data = self.voice.synthesize_voice(script.narration_text)
            if not data:
                raise ValueError("voice synthesizer returned no audio")
            workspace.audio_path.write_bytes(data)
            return workspace.audio_path

        result = invoke(call, timeout=self.timeouts.voice_s, label="voice")
        path = self._apply_policy(AssetKind.AUDIO_TRACK, result, "narration audio", None)
        return Asset(kind=AssetKind.AUDIO_TRACK, location=path)

    def _visual(self, seg: TimedSegment, workspace: Workspace) -> Asset:
        target = workspace.visual_path(seg.ordinal)

        if seg.visual_kind is VisualKind.MOTION_GRAPHIC:
            # Title cards are rendered locally; they are not a fallback.
            path = generate_placeholder(
                label=seg.visual_prompt or seg.text,
                width=self.frame.width,
                height=self.frame.height,
                color=self.fallback.placeholder_color,
                font_path=self.fallback.placeholder_font_path,
                font_size=self.fallback.placeholder_font_size,
                output_path=target,
                pattern=False,
            )
            return self._visual_asset(seg, path, is_fallback=False)

        prompt = seg.visual_prompt or seg.text

        def call() -> Path:
            data = self.images.synthesize_image(prompt, self.frame)
            return normalize_image_bytes(data, self.frame.width, self.frame.height, target)

        def fallback() -> Path:
            return generate_placeholder(
                label=seg.text,
                width=self.frame.width,
                height=self.frame.height,
                color=self.fallback.placeholder_color,
                font_path=self.fallback.placeholder_font_path,
                font_size=self.fallback.placeholder_font_size,
                output_path=_fallback_path(target),
            )

        result = invoke(call, timeout=self.timeouts.image_s, label=f"visual-{seg.ordinal}")
        path = self._apply_policy(
            AssetKind.VISUAL, result, f"visual for segment {seg.ordinal}", fallback
        )
        return self._visual_asset(seg, path, is_fallback=not result.ok)

    def _thumbnail(self, script: Script, workspace: Workspace) -> Asset:
        size = self.fallback.thumbnail_size
        caption = script.thumbnail_caption or script.title
        target = workspace.thumbnail_path

        def call() -> Path:
            data = self.images.synthesize_image(caption, size)
            return normalize_image_bytes(data, size.width, size.height, target)

        def fallback() -> Path:
            return generate_fallback_thumbnail(
                caption,
                size.width,
                size.height,
                output_path=_fallback_path(target),
                gradient=self.fallback.thumbnail_gradient,
                font_path=self.fallback.placeholder_font_path,
            )

        result = invoke(call, timeout=self.timeouts.image_s, label="thumbnail")
        path = self._apply_policy(AssetKind.THUMBNAIL, result, "thumbnail", fallback)
        return Asset(
            kind=AssetKind.THUMBNAIL,
            location=path,
            normalized_size=size,
            is_fallback=not result.ok,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply_policy(
        self,
        kind: AssetKind,
        result: CallResult,
        what: str,
        fallback: Optional[Callable[[], Path]],
    ) -> Path:
        if result.ok:
            return result.value
        policy = FAILURE_POLICY[kind]
        if policy is FailurePolicy.FATAL or fallback is None:
            raise _FATAL_ERRORS[kind](
                f"{what} failed: {result.error_type}: {result.error}"
            ) from result.exception
        logger.warning(
            "%s failed (%s: %s) — rendering local fallback", what, result.error_type, result.error
        )
        return fallback()

    def _visual_asset(self, seg: TimedSegment, path: Path, is_fallback: bool) -> Asset:
        return Asset(
            kind=AssetKind.VISUAL,
            location=path,
            segment_ordinal=seg.ordinal,
            normalized_size=self.frame,
            is_fallback=is_fallback,
        )


def _fallback_path(path: Path) -> Path:
    # Separate file so a late-finishing timed-out call cannot overwrite the fallback.
    return path.with_name(f"{path.stem}_fallback{path.suffix}")
