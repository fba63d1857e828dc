"""Tests for the ffmpeg-backed audio mixer."""

import subprocess

import pytest

from conftest import write_silence
from slide_narrator.errors import MixError
from slide_narrator.mixer import AudioMixer
from slide_narrator.types import SegmentKind, TimelineSegment


def segments_in(directory, count):
    return [
        TimelineSegment(write_silence(directory / f"slide-{i:03d}.wav"), SegmentKind.NARRATION, 1.0)
        for i in range(1, count + 1)
    ]


def test_concatenate_writes_manifest_in_order(tmp_path, fake_ffmpeg):
    segments = segments_in(tmp_path, 3)
    output = tmp_path / "deck.wav"

    AudioMixer().concatenate(segments, output)

    (command,) = fake_ffmpeg.commands
    manifest = tmp_path / "deck_concat.txt"
    assert command[:8] == ["ffmpeg", "-y", "-f", "concat", "-safe", "0", "-i", str(manifest)]
    assert command[-3:] == ["-c", "copy", str(output)]
    listed = [line for line in manifest.read_text(encoding="utf-8").splitlines() if line.startswith("file ")]
    assert [line.rsplit("/", 1)[-1] for line in listed] == ["slide-001.wav'", "slide-002.wav'", "slide-003.wav'"]


def test_concatenate_without_segments_fails(tmp_path, fake_ffmpeg):
    with pytest.raises(MixError) as excinfo:
        AudioMixer().concatenate([], tmp_path / "deck.wav")

    assert excinfo.value.stage == "concat"
    assert fake_ffmpeg.commands == []


def test_background_is_attenuated_looped_and_mixed(tmp_path, fake_ffmpeg):
    narration = write_silence(tmp_path / "narration.wav")
    background = write_silence(tmp_path / "bgm001.wav")

    AudioMixer(sample_rate=44100, channels=2).mix_with_background(
        narration, background, tmp_path / "mixed.wav", gain=0.1
    )

    normalize_narration, normalize_background, mix = fake_ffmpeg.commands
    assert "volume=0.1" not in normalize_narration
    assert normalize_narration[-1].endswith("normalized_narration.wav")
    assert normalize_background[normalize_background.index("-filter:a") + 1] == "volume=0.1"
    assert ["-ar", "44100", "-ac", "2"] == normalize_background[4:8]
    assert mix[mix.index("-stream_loop") + 1] == "-1"
    assert "amix=inputs=2:duration=first:dropout_transition=0" in mix
    assert mix[-1] == str(tmp_path / "mixed.wav")


def test_assemble_final_skips_missing_sections(tmp_path, fake_ffmpeg):
    main = write_silence(tmp_path / "mixed.wav")
    closing = write_silence(tmp_path / "closing.wav")

    AudioMixer(channels=1).assemble_final(None, main, closing, tmp_path / "final.wav")

    normalize_closing, concat = fake_ffmpeg.commands
    assert normalize_closing[-1].endswith("normalized_closing.wav")
    assert concat[concat.index("-ac") + 1] == "1"
    manifest = (tmp_path / "audio_list.txt").read_text(encoding="utf-8")
    assert "mixed.wav" in manifest
    assert "normalized_closing.wav" in manifest
    assert "opening" not in manifest


def test_tool_failure_is_reported_with_stage(tmp_path, monkeypatch):
    def failing_run(command, **kwargs):
        return subprocess.CompletedProcess(command, 1, stdout="", stderr="Invalid data found")

    monkeypatch.setattr("slide_narrator.tooling.subprocess.run", failing_run)
    narration = write_silence(tmp_path / "narration.wav")

    with pytest.raises(MixError) as excinfo:
        AudioMixer().normalize(narration, tmp_path / "out.wav")

    assert excinfo.value.stage == "normalize"
    assert excinfo.value.diagnostics["returncode"] == 1
    assert "Invalid data found" in excinfo.value.diagnostics["stderr"]
