"""
Unit tests for schemas/config.py.

Tests:
  - Defaults describe the 1080x1920 / 30 fps / CRF 23 vertical format.
  - load_config() reads JSON and applies AUTOSHORTS_* overrides.
  - Invalid files and values raise ConfigError.
"""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from autoshorts.errors import ConfigError
from autoshorts.schemas.config import (
    ENCODING_PROFILES,
    AutomationConfig,
    load_config,
    parse_time_of_day,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    for name in (
        "AUTOSHORTS_DAILY_QUOTA", "AUTOSHORTS_FIRE_TIMES", "AUTOSHORTS_OUTPUT_DIR",
        "AUTOSHORTS_ENCODING_PROFILE", "AUTOSHORTS_PUBLISH_ENABLED",
        "AUTOSHORTS_WORKSPACE_ROOT", "AUTOSHORTS_COUNT_FAILED_RUNS",
        "AUTOSHORTS_RETENTION_DAYS", "AUTOSHORTS_WORDS_PER_MINUTE",
    ):
        monkeypatch.delenv(name, raising=False)
    # No stray .env from the repo root.
    monkeypatch.chdir(tmp_path)


class TestDefaults:

    def test_vertical_frame(self):
        cfg = AutomationConfig()
        assert (cfg.frame.width, cfg.frame.height, cfg.frame.aspect) == (1080, 1920, "9:16")
        assert cfg.frame.label == "1080x1920"

    def test_standard_encoding(self):
        enc = AutomationConfig().encoding
        assert (enc.fps, enc.crf, enc.preset, enc.encoder) == (30, 23, "medium", "libx264")

    def test_timing_defaults(self):
        t = AutomationConfig().timing
        assert (t.words_per_minute, t.min_segment_s) == (150.0, 2.0)

    def test_scheduler_defaults(self):
        s = AutomationConfig().scheduler
        assert s.daily_quota == 3
        assert s.error_buffer_size == 10
        assert s.retention_days == 7
        assert s.count_failed_runs is True

    def test_profiles_registry(self):
        assert set(ENCODING_PROFILES) == {"preview", "standard", "high"}


class TestValidation:

    def test_unknown_profile(self):
        with pytest.raises(ValueError):
            AutomationConfig.model_validate({"pipeline": {"encoding_profile": "ultra"}})

    def test_fire_times_sorted_and_deduplicated(self):
        cfg = AutomationConfig.model_validate({"scheduler": {"fire_times": ["21:00", "09:00", "09:00"]}})
        assert cfg.scheduler.fire_times == ["09:00", "21:00"]

    @pytest.mark.parametrize("bad", ["9", "24:00", "12:60", "ab:cd"])
    def test_bad_time_of_day(self, bad: str):
        with pytest.raises(ValueError):
            parse_time_of_day(bad)

    def test_good_time_of_day(self):
        assert parse_time_of_day("07:05") == (7, 5)


class TestLoadConfig:

    def test_no_file_gives_defaults(self):
        assert load_config(None, use_env=False) == AutomationConfig()

    def test_reads_json(self, tmp_path: Path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"scheduler": {"daily_quota": 5}, "pipeline": {"publish_enabled": False}}))
        cfg = load_config(path, use_env=False)
        assert cfg.scheduler.daily_quota == 5
        assert cfg.pipeline.publish_enabled is False

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"scheduler": {"daily_quota": 5}}))
        monkeypatch.setenv("AUTOSHORTS_DAILY_QUOTA", "1")
        monkeypatch.setenv("AUTOSHORTS_FIRE_TIMES", "10:00, 08:30")
        cfg = load_config(path)
        assert cfg.scheduler.daily_quota == 1
        assert cfg.scheduler.fire_times == ["08:30", "10:00"]

    def test_dotenv_file_is_loaded(self, tmp_path: Path):
        (tmp_path / ".env").write_text("AUTOSHORTS_ENCODING_PROFILE=high\n")
        cfg = load_config(None)
        assert cfg.encoding.crf == 18

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.json")

    def test_invalid_json_value(self, tmp_path: Path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"scheduler": {"daily_quota": -1}}))
        with pytest.raises(ConfigError):
            load_config(path, use_env=False)

    def test_invalid_env_value(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("AUTOSHORTS_DAILY_QUOTA", "many")
        with pytest.raises(ConfigError):
            load_config(None)
