from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Sequence

import srt

from .types import SlideDuration, SlideNote


def build_slide_subtitles(
    notes: Sequence[SlideNote],
    durations: Sequence[SlideDuration],
    pre_slide_silence: float,
    offset_seconds: float = 0.0,
) -> list[srt.Subtitle]:
    """One cue per narrated slide, placed where its narration plays in the video."""

    subtitles = []
    cursor = offset_seconds
    for note, duration in zip(notes, durations):
        if note.has_content:
            start = cursor + pre_slide_silence
            subtitles.append(
                srt.Subtitle(
                    index=len(subtitles) + 1,
                    start=dt.timedelta(seconds=start),
                    end=dt.timedelta(seconds=start + duration.narration_seconds),
                    content=note.text,
                )
            )
        cursor += duration.total_seconds
    return subtitles


def write_slide_subtitles(
    notes: Sequence[SlideNote],
    durations: Sequence[SlideDuration],
    output_path: Path,
    pre_slide_silence: float,
    offset_seconds: float = 0.0,
) -> Path:
    subtitles = build_slide_subtitles(notes, durations, pre_slide_silence, offset_seconds)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(srt.compose(subtitles), encoding="utf-8")
    return output_path
