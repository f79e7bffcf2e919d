"""
Unit tests for production/timing.py.

Tests:
  - Sentence splitting on . ! ? … and runs of them.
  - Duration = words / wpm * 60, floored, rounded to milliseconds.
  - Offsets are contiguous; total equals the sum of durations.
  - Identical input → byte-identical canonical JSON.
  - Empty / whitespace / terminator-only narration → EmptyScriptError.

No ffmpeg required.
"""
from __future__ import annotations

import pytest

from autoshorts.errors import EmptyScriptError
from autoshorts.production.timing import build_timeline, estimate_duration, split_units
from autoshorts.schemas.script import VisualKind


class TestSplitUnits:

    def test_basic_terminators(self):
        assert split_units("One. Two! Three? Four…") == ["One", "Two", "Three", "Four"]

    def test_runs_of_terminators_close_one_unit(self):
        assert split_units("Wait... What?! Really") == ["Wait", "What", "Really"]

    def test_decimal_point_does_not_split(self):
        assert split_units("It costs 3.5 million. Wow.") == ["It costs 3.5 million", "Wow"]

    def test_trailing_text_without_terminator_is_a_unit(self):
        assert split_units("First sentence. second part") == ["First sentence", "second part"]

    def test_whitespace_stripped_and_empties_dropped(self):
        assert split_units("  A.   \n\n  B.  ") == ["A", "B"]

    def test_punctuation_only_units_dropped(self):
        assert split_units("Hi. !! . Bye.") == ["Hi", "Bye"]


class TestEstimateDuration:

    def test_floor_applies(self):
        assert estimate_duration("Hello world", 150, 2.0) == 2.0

    def test_above_floor(self):
        # 10 words at 150 wpm = 4.0 s
        assert estimate_duration(" ".join(["w"] * 10), 150, 2.0) == 4.0

    def test_millisecond_rounding(self):
        # 7 words at 130 wpm = 3.2307692... s
        assert estimate_duration(" ".join(["w"] * 7), 130, 1.0) == 3.231

    def test_non_positive_wpm_rejected(self):
        with pytest.raises(ValueError):
            estimate_duration("word", 0, 2.0)


class TestBuildTimeline:

    def test_reference_example(self):
        tl = build_timeline("Hello world. This is a test.", words_per_minute=150, min_segment_s=2.0)
        assert len(tl) == 2
        assert [s.estimated_duration_s for s in tl.segments] == [2.0, 2.0]
        assert [s.start_s for s in tl.segments] == [0.0, 2.0]
        assert tl.total_duration_s == 4.0

    def test_segment_count_matches_units(self):
        text = "One. Two. Three. Four. Five."
        assert len(build_timeline(text)) == len(split_units(text)) == 5

    def test_offsets_contiguous_and_total_is_sum(self):
        text = (
            "This first sentence has quite a few words in it to exceed the floor. "
            "Short. Another medium length sentence follows here! And a question?"
        )
        tl = build_timeline(text, words_per_minute=137, min_segment_s=1.5)
        running = 0.0
        for seg in tl.segments:
            assert seg.start_s == pytest.approx(running, abs=1e-9)
            running = round(running + seg.estimated_duration_s, 3)
        assert tl.total_duration_s == pytest.approx(running, abs=1e-9)

    def test_ordinals_and_visual_cues(self):
        tl = build_timeline("Alpha beta. Gamma delta.")
        assert [s.ordinal for s in tl.segments] == [0, 1]
        assert all(s.visual_kind is VisualKind.IMAGE for s in tl.segments)
        assert tl.segments[1].visual_prompt == "Gamma delta"

    def test_single_unit_starts_at_zero(self):
        tl = build_timeline("Just one sentence without a terminator")
        assert len(tl) == 1
        assert tl.segments[0].start_s == 0.0

    def test_deterministic_canonical_json(self):
        text = "Same input. Same output! Every single time?"
        a = build_timeline(text, 143, 1.7).canonical_json()
        b = build_timeline(text, 143, 1.7).canonical_json()
        assert a == b
        assert a.encode("utf-8") == b.encode("utf-8")

    @pytest.mark.parametrize("text", ["", "   \n\t ", "...", "!?! … ."])
    def test_empty_narration_rejected(self, text: str):
        with pytest.raises(EmptyScriptError):
            build_timeline(text)

    def test_non_positive_floor_rejected(self):
        with pytest.raises(ValueError):
            build_timeline("Hello.", min_segment_s=0)
