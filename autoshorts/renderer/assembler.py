"""
Media Assembly Engine — audio track + ordered visuals (+ subtitles) → one mp4.

Inputs:  Timeline + AssetSet (normalized visuals, one audio track,
         optional SRT subtitle asset)
Output:  <output_path>.mp4 and an AssemblyResult

Design guarantees:
  1. Deterministic — the FilterGraph is a pure function of
     (timeline, assets, frame, encoding, audio duration); identical inputs
     give an identical argv.  Encoder determinism flags are always applied.
  2. Order-preserving — clips follow Timeline order; segment i shows visual
     min(i, n-1), so a short visual list repeats its last visual rather than
     failing.  Consecutive segments sharing a visual become one clip.
  3. Dimensionally uniform — every clip is scaled (aspect preserved) and
     padded with a neutral colour to exactly the canonical frame.
  4. Never longer than the narration, never cuts narration — output
     duration = min(visual total, audio duration); a visual underrun larger
     than max_underrun_s raises AssemblyError instead.
  5. Subtitles are a separate mov_text stream, never burned in.
  6. No partial artifacts — the encode targets a hidden partial file that is
     moved into place only after ffmpeg succeeds and is deleted otherwise.
"""
from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel

from autoshorts.errors import AssemblyError
from autoshorts.renderer.ffmpeg_runner import (
    FFmpegError,
    FFmpegNotFound,
    probe_duration,
    run_ffmpeg,
    validate_ffmpeg,
)
from autoshorts.renderer.filter_graph import FilterChain, FilterGraph, GraphInput
from autoshorts.schemas.assets import Asset, AssetSet
from autoshorts.schemas.config import EncodingProfile, FrameSize
from autoshorts.schemas.run import AssemblyResult, EffectiveSettings
from autoshorts.schemas.script import Timeline

logger = logging.getLogger(__name__)

Runner = Callable[[list[str], int], None]
Probe = Callable[[str], float]


class Clip(BaseModel):
    """One still visual held on screen for duration_s."""
    path: Path
    duration_s: float
    segment_ordinals: list[int]
    is_fallback: bool = False


# ---------------------------------------------------------------------------
# Pure planning helpers
# ---------------------------------------------------------------------------

def plan_clips(timeline: Timeline, visuals: list[Asset]) -> list[Clip]:
    """
    Assign visuals to segments in Timeline order and merge repeats.

    Visuals are ordered by segment_ordinal (position breaks ties / fills
    None).  Segment i uses visual min(i, n-1).

    Raises:
        AssemblyError: if *visuals* is empty.
    """
    if not visuals:
        raise AssemblyError("no visuals to assemble")

    ordered = [
        asset for _, asset in sorted(
            enumerate(visuals),
            key=lambda pair: (
                pair[1].segment_ordinal if pair[1].segment_ordinal is not None else pair[0],
                pair[0],
            ),
        )
    ]
    if len(ordered) < len(timeline):
        logger.warning(
            "%d visuals for %d segments — repeating the last visual.",
            len(ordered), len(timeline),
        )

    clips: list[Clip] = []
    for index, seg in enumerate(timeline.segments):
        asset = ordered[min(index, len(ordered) - 1)]
        if clips and clips[-1].path == asset.location:
            last = clips[-1]
            clips[-1] = last.model_copy(update={
                "duration_s": round(last.duration_s + seg.estimated_duration_s, 3),
                "segment_ordinals": last.segment_ordinals + [seg.ordinal],
            })
        else:
            clips.append(
                Clip(
                    path=asset.location,
                    duration_s=seg.estimated_duration_s,
                    segment_ordinals=[seg.ordinal],
                    is_fallback=asset.is_fallback,
                )
            )
    return clips


def resolve_output_duration(
    visual_total_s: float,
    audio_duration_s: float,
    max_underrun_s: float,
) -> float:
    """
    Output duration = min(visual, audio).

    Raises:
        AssemblyError: if the visual stream ends more than *max_underrun_s*
                       before the narration does.
    """
    underrun = audio_duration_s - visual_total_s
    if underrun > max_underrun_s:
        raise AssemblyError(
            f"visual stream ({visual_total_s:.3f}s) underruns narration "
            f"({audio_duration_s:.3f}s) by {underrun:.3f}s "
            f"(limit {max_underrun_s:.3f}s); refusing to cut narration"
        )
    return round(min(visual_total_s, audio_duration_s), 3)


def build_assembly_graph(
    clips: list[Clip],
    audio_path: Path,
    output_path: Path,
    frame: FrameSize,
    encoding: EncodingProfile,
    duration_s: float,
    pad_color: str = "black",
    subtitle_path: Optional[Path] = None,
) -> FilterGraph:
    """
    Describe the encode: looped still inputs → scale/pad → concat → mux.

    Input order: clips 0..n-1, audio at n, subtitles (if any) at n+1.
    """
    w, h, fps = frame.width, frame.height, encoding.fps
    n = len(clips)

    inputs: list[GraphInput] = [
        GraphInput(
            path=str(clip.path),
            role="visual",
            options=["-loop", "1", "-framerate", str(fps), "-t", f"{clip.duration_s:.3f}"],
        )
        for clip in clips
    ]
    inputs.append(GraphInput(path=str(audio_path), role="audio"))
    if subtitle_path is not None:
        inputs.append(GraphInput(path=str(subtitle_path), role="subtitles"))

    chains: list[FilterChain] = [
        FilterChain(
            inputs=[f"{i}:v"],
            filters=[
                f"scale={w}:{h}:force_original_aspect_ratio=decrease",
                f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:color={pad_color}",
                "setsar=1",
                f"fps={fps}",
                f"format={encoding.pix_fmt}",
            ],
            outputs=[f"v{i}"],
        )
        for i in range(n)
    ]
    chains.append(
        FilterChain(
            inputs=[f"v{i}" for i in range(n)],
            filters=[f"concat=n={n}:v=1:a=0"],
            outputs=["vout"],
        )
    )

    maps = ["vout", f"{n}:a"]
    output_options = [
        "-c:v", encoding.encoder,
        "-crf", str(encoding.crf),
        "-preset", encoding.preset,
        "-pix_fmt", encoding.pix_fmt,
        "-r", str(fps),
        "-c:a", encoding.audio_codec,
        "-b:a", encoding.audio_bitrate,
    ]
    if subtitle_path is not None:
        maps.append(f"{n + 1}:s")
        output_options += [
            "-c:s", "mov_text",
            "-metadata:s:s:0", "language=eng",
        ]
    # Determinism flags:
    #   -fflags +bitexact / -flags:v +bitexact: suppress non-reproducible metadata
    #   -map_metadata -1                       : strip creation_time, encoder strings
    #   -movflags +faststart                   : consistent MP4 atom ordering
    output_options += [
        "-fflags", "+bitexact",
        "-flags:v", "+bitexact",
        "-flags:a", "+bitexact",
        "-map_metadata", "-1",
        "-movflags", "+faststart",
        "-f", "mp4",
    ]

    return FilterGraph(
        inputs=inputs,
        chains=chains,
        maps=maps,
        output_options=output_options,
        output_path=str(output_path),
        duration_s=duration_s,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class MediaAssemblyEngine:
    """
    Composes an AssetSet into one mp4.

    Usage::

        engine = MediaAssemblyEngine(config.frame, config.encoding)
        result = engine.assemble(timeline, assets, Path("output/run.mp4"),
                                 partial_dir=workspace.root)

    *runner* and *probe* default to the real ffmpeg / ffprobe helpers and are
    injectable so graph construction can be exercised without an encoder.
    """

    def __init__(
        self,
        frame: FrameSize,
        encoding: EncodingProfile,
        pad_color: str = "black",
        max_underrun_s: float = 0.5,
        timeout: int = 600,
        runner: Runner = run_ffmpeg,
        probe: Probe = probe_duration,
    ) -> None:
        self.frame = frame
        self.encoding = encoding
        self.pad_color = pad_color
        self.max_underrun_s = max_underrun_s
        self.timeout = timeout
        self._runner = runner
        self._probe = probe

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def check_encoder(self) -> str:
        """Fail fast when ffmpeg is missing; returns its version string."""
        try:
            return validate_ffmpeg()
        except FFmpegNotFound as exc:
            raise AssemblyError("encoder unavailable", diagnostic=str(exc)) from exc

    def probe_audio(self, audio: Asset) -> float:
        """Measured duration of the narration track in seconds."""
        try:
            duration = self._probe(str(audio.location))
        except (FFmpegError, FFmpegNotFound, TimeoutError) as exc:
            raise AssemblyError(
                f"cannot probe narration audio {audio.location.name}",
                diagnostic=getattr(exc, "stderr", "") or str(exc),
            ) from exc
        if duration <= 0:
            raise AssemblyError(f"narration audio {audio.location.name} has zero duration")
        return duration

    def plan(
        self,
        timeline: Timeline,
        assets: AssetSet,
        output_path: Path,
        audio_duration_s: float,
    ) -> FilterGraph:
        """Build the FilterGraph for this assembly without running it."""
        for asset in [assets.audio, *assets.visuals]:
            if not Path(asset.location).exists():
                raise AssemblyError(f"missing input asset: {asset.location}")

        clips = plan_clips(timeline, assets.visuals)
        visual_total = round(sum(c.duration_s for c in clips), 3)
        duration = resolve_output_duration(visual_total, audio_duration_s, self.max_underrun_s)
        subtitle_path = None
        if assets.subtitles is not None and Path(assets.subtitles.location).exists():
            subtitle_path = assets.subtitles.location

        return build_assembly_graph(
            clips,
            audio_path=assets.audio.location,
            output_path=output_path,
            frame=self.frame,
            encoding=self.encoding,
            duration_s=duration,
            pad_color=self.pad_color,
            subtitle_path=subtitle_path,
        )

    def assemble(
        self,
        timeline: Timeline,
        assets: AssetSet,
        output_path: Path,
        partial_dir: Path,
        audio_duration_s: Optional[float] = None,
    ) -> AssemblyResult:
        """
        Encode *assets* into *output_path*.

        The encode writes to a hidden partial file in *partial_dir* (the run's
        workspace) and is moved to *output_path* only on success.

        Raises:
            AssemblyError: on any probe / encode failure; no file is left at
                           *output_path* and the partial file is removed.
        """
        output_path = Path(output_path)
        partial_path = Path(partial_dir) / f".{output_path.stem}.partial.mp4"

        if audio_duration_s is None:
            audio_duration_s = self.probe_audio(assets.audio)

        graph = self.plan(timeline, assets, partial_path, audio_duration_s)
        logger.info(
            "Assembling %s | clips=%d | duration=%.3fs | frame=%s | subtitles=%s",
            output_path.name,
            len(graph.inputs) - (2 if graph.input_index("subtitles") is not None else 1),
            graph.duration_s,
            self.frame.label,
            graph.input_index("subtitles") is not None,
        )

        try:
            self._runner(graph.to_command(), self.timeout)
        except (FFmpegError, FFmpegNotFound, TimeoutError) as exc:
            _unlink_quietly(partial_path)
            raise AssemblyError(
                f"encode failed for {output_path.name}",
                diagnostic=getattr(exc, "stderr", "") or str(exc),
            ) from exc
        except BaseException:
            _unlink_quietly(partial_path)
            raise

        if not partial_path.exists() or partial_path.stat().st_size == 0:
            _unlink_quietly(partial_path)
            raise AssemblyError(f"encoder produced no output for {output_path.name}")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        os.replace(partial_path, output_path)

        clips = plan_clips(timeline, assets.visuals)
        result = AssemblyResult(
            output_path=output_path,
            duration_s=graph.duration_s,
            video_sha256=_sha256_file(output_path),
            clip_count=len(clips),
            fallback_count=assets.fallback_count,
            effective_settings=EffectiveSettings(
                resolution=self.frame.label,
                fps=str(self.encoding.fps),
                encoder=self.encoding.encoder,
                crf=str(self.encoding.crf),
                preset=self.encoding.preset,
                audio_codec=self.encoding.audio_codec,
                subtitles=graph.input_index("subtitles") is not None,
            ),
        )
        logger.info("Assembly complete → %s (%.3fs)", output_path, result.duration_s)
        return result


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------

def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(65_536), b""):
            h.update(chunk)
    return h.hexdigest()


def _unlink_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
