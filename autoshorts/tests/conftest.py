"""
Shared pytest fixtures for autoshorts/tests/.

Provides:
  - deterministic test PNGs (generated with Pillow, not committed binaries)
  - a small-frame AutomationConfig rooted in tmp_path
  - require_ffmpeg: skip-marker for tests that need the ffmpeg binary
"""
from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from autoshorts.schemas.config import AutomationConfig
from autoshorts.tests._fakes import SMALL_H, SMALL_W, png_bytes

# Deterministic solid-colour test images.
_ASSET_COLORS: dict[str, tuple[int, int, int]] = {
    "red": (200, 60, 60),
    "green": (60, 200, 60),
    "blue": (60, 60, 200),
}


@pytest.fixture(scope="session")
def test_assets_dir(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """Three solid-colour landscape PNGs (deliberately not 9:16)."""
    assets_dir = tmp_path_factory.mktemp("assets", numbered=False)
    for name, color in _ASSET_COLORS.items():
        (assets_dir / f"{name}.png").write_bytes(png_bytes(color, size=(640, 360)))
    return assets_dir


@pytest.fixture()
def config(tmp_path: Path) -> AutomationConfig:
    """Small-frame config with every directory under tmp_path."""
    return AutomationConfig.model_validate({
        "frame": {"width": SMALL_W, "height": SMALL_H},
        "pipeline": {
            "output_dir": str(tmp_path / "output"),
            "workspace_root": str(tmp_path / "workspace"),
            "encoding_profile": "preview",
        },
        "fallback": {
            "thumbnail_size": {"width": 320, "height": 180, "aspect": "16:9"},
            "placeholder_font_size": 16,
        },
        "timeouts": {"hunt_s": 5, "script_s": 5, "voice_s": 5, "image_s": 5, "publish_s": 5},
        "run_log_path": str(tmp_path / "output" / "run_log.jsonl"),
    })


@pytest.fixture(scope="session")
def require_ffmpeg():
    """Skip the test if ffmpeg / ffprobe are not on PATH."""
    if shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None:
        pytest.skip("ffmpeg not found on PATH")
