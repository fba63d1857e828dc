"""Tests for timeline assembly under both spacing policies."""

import pytest

from conftest import FakeTTS
from slide_narrator.audio import NarrationSynthesizer
from slide_narrator.config import PromptPolicy, TimelineConfig
from slide_narrator.errors import EmptyTimelineError
from slide_narrator.timeline import TimelineAssembler
from slide_narrator.types import SegmentKind, SlideNote


def notes_from(*texts):
    return [SlideNote(index=i, text=text) for i, text in enumerate(texts, start=1)]


def assembler(voice, policy, config=None, tts=None, workers=1):
    synthesizer = NarrationSynthesizer(tts or FakeTTS(), voice)
    return TimelineAssembler(synthesizer, config or TimelineConfig(), policy=policy, workers=workers)


def test_empty_slide_duration_is_padding_plus_fallback(tmp_path, voice, timeline_config):
    timeline = assembler(voice, PromptPolicy.FIXED_CADENCE, timeline_config).assemble(notes_from(""), tmp_path)

    (duration,) = timeline.slide_durations
    assert duration.narration_seconds == 5.0
    assert duration.total_seconds == 8.0


def test_fixed_cadence_scenario(tmp_path, voice, timeline_config):
    timeline = assembler(voice, PromptPolicy.FIXED_CADENCE, timeline_config).assemble(
        notes_from("A", "", "B"), tmp_path
    )

    durations = timeline.slide_durations
    assert [d.slide_index for d in durations] == [1, 2, 3]
    assert durations[1].narration_seconds == 5.0
    assert durations[0].narration_seconds > 0
    assert durations[2].narration_seconds > 0
    assert durations[0].total_seconds == pytest.approx(durations[0].narration_seconds + 3.0)
    assert len(timeline.segments) == 9
    assert [s.kind for s in timeline.segments[:3]] == [SegmentKind.SILENCE, SegmentKind.NARRATION, SegmentKind.SILENCE]
    assert timeline.segments[4].path.name == "empty-slide-002.wav"


def test_prompt_inserted_when_any_later_slide_has_content(tmp_path, voice):
    tts = FakeTTS()
    timeline = assembler(voice, PromptPolicy.INTER_SLIDE_PROMPT, tts=tts).assemble(
        notes_from("A", "", "B"), tmp_path, inter_slide_prompt="Next"
    )

    names = [segment.path.name for segment in timeline.segments]
    assert names == [
        "slide-001.wav",
        "silence-pre-001.wav",
        "prompt.wav",
        "silence-post-001.wav",
        "silence-pre-002.wav",
        "prompt.wav",
        "silence-post-002.wav",
        "slide-003.wav",
    ]
    assert tts.calls.count("Next") == 1
    assert timeline.slide_durations == []


def test_no_prompt_after_last_narrated_slide(tmp_path, voice):
    timeline = assembler(voice, PromptPolicy.INTER_SLIDE_PROMPT).assemble(notes_from("A", "B", "", ""), tmp_path)

    kinds = [segment.kind for segment in timeline.segments]
    assert kinds == [
        SegmentKind.NARRATION,
        SegmentKind.SILENCE,
        SegmentKind.PROMPT,
        SegmentKind.SILENCE,
        SegmentKind.NARRATION,
    ]


def test_prompt_pauses_use_configured_lengths(tmp_path, voice):
    config = TimelineConfig(prompt_pre_silence=0.8, prompt_post_silence=1.2)
    timeline = assembler(voice, PromptPolicy.INTER_SLIDE_PROMPT, config).assemble(notes_from("A", "B"), tmp_path)

    silences = [s.duration_seconds for s in timeline.segments if s.kind is SegmentKind.SILENCE]
    assert silences == [0.8, 1.2]


@pytest.mark.parametrize("policy", list(PromptPolicy))
def test_zero_slides_is_an_empty_timeline(tmp_path, voice, policy):
    with pytest.raises(EmptyTimelineError):
        assembler(voice, policy).assemble([], tmp_path)


def test_all_empty_notes_with_prompts_is_an_empty_timeline(tmp_path, voice):
    with pytest.raises(EmptyTimelineError):
        assembler(voice, PromptPolicy.INTER_SLIDE_PROMPT).assemble(notes_from("", " ", ""), tmp_path)


def test_parallel_synthesis_keeps_slide_order(tmp_path, voice):
    texts = ["a" * n for n in range(1, 7)]
    timeline = assembler(voice, PromptPolicy.FIXED_CADENCE, workers=4).assemble(notes_from(*texts), tmp_path)

    narrations = [d.narration_seconds for d in timeline.slide_durations]
    assert narrations == sorted(narrations)
    assert narrations[0] == pytest.approx(0.1, abs=0.01)
