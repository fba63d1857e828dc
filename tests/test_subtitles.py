import datetime as dt

import srt

from slide_narrator.subtitles import build_slide_subtitles, write_slide_subtitles
from slide_narrator.types import SlideDuration, SlideNote


def deck():
    notes = [SlideNote(1, "Welcome"), SlideNote(2, ""), SlideNote(3, "Thanks")]
    durations = [SlideDuration(1, 1.5, 4.5), SlideDuration(2, 5.0, 8.0), SlideDuration(3, 2.0, 5.0)]
    return notes, durations


def test_cues_follow_slide_timing_and_skip_empty_slides():
    notes, durations = deck()

    cues = build_slide_subtitles(notes, durations, pre_slide_silence=2.0, offset_seconds=5.0)

    assert [cue.content for cue in cues] == ["Welcome", "Thanks"]
    assert [cue.index for cue in cues] == [1, 2]
    assert cues[0].start == dt.timedelta(seconds=7.0)
    assert cues[0].end == dt.timedelta(seconds=8.5)
    # 5.0 opening + 4.5 + 8.0 previous slides + 2.0 lead-in
    assert cues[1].start == dt.timedelta(seconds=19.5)


def test_written_file_parses_back(tmp_path):
    notes, durations = deck()

    path = write_slide_subtitles(notes, durations, tmp_path / "deck.srt", pre_slide_silence=2.0)

    parsed = list(srt.parse(path.read_text(encoding="utf-8")))
    assert [cue.content for cue in parsed] == ["Welcome", "Thanks"]
    assert parsed[1].end == dt.timedelta(seconds=16.5)
