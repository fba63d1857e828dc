import zipfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from PIL import Image
from pydub import AudioSegment

from slide_narrator.config import PipelineConfig, TimelineConfig
from slide_narrator.tts import BaseTTS, VoiceSelection

P_NS = "http://schemas.openxmlformats.org/presentationml/2006/main"
A_NS = "http://schemas.openxmlformats.org/drawingml/2006/main"


def shape_xml(text: str, ph_type: Optional[str] = None, name: str = "Shape", with_ph: bool = True) -> str:
    if not with_ph:
        ph = ""
    elif ph_type is None:
        ph = '<p:ph idx="1"/>'
    else:
        ph = f'<p:ph type="{ph_type}" idx="1"/>'
    return (
        "<p:sp>"
        f'<p:nvSpPr><p:cNvPr id="2" name="{name}"/><p:cNvSpPr/><p:nvPr>{ph}</p:nvPr></p:nvSpPr>'
        f"<p:txBody><a:p><a:r><a:t>{text}</a:t></a:r></a:p></p:txBody>"
        "</p:sp>"
    )


def note_xml(*shapes: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<p:notes xmlns:a="{A_NS}" xmlns:p="{P_NS}"><p:cSld><p:spTree>'
        + "".join(shapes)
        + "</p:spTree></p:cSld></p:notes>"
    )


def body_note(text: str, slide_number: str = "1") -> str:
    return note_xml(
        shape_xml("", ph_type="sldImg", name="Slide Image Placeholder 1"),
        shape_xml(text, ph_type="body", name="Notes Placeholder 2"),
        shape_xml(slide_number, ph_type="sldNum", name="Slide Number Placeholder 3"),
    )


def write_presentation(path: Path, parts: Dict[str, str]) -> Path:
    """Write a minimal presentation package with the given notes parts (name -> xml)."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("[Content_Types].xml", "<Types/>")
        archive.writestr("ppt/presentation.xml", "<presentation/>")
        for name, xml in parts.items():
            archive.writestr(f"ppt/notesSlides/{name}", xml)
    return path


def presentation_with_notes(path: Path, texts: List[str]) -> Path:
    parts = {f"notesSlide{i}.xml": body_note(text, str(i)) for i, text in enumerate(texts, start=1)}
    return write_presentation(path, parts)


class FakeTTS(BaseTTS):
    """Writes 100ms of 24kHz mono audio per character next to the requested file."""

    def __init__(self, fail_on: Optional[str] = None):
        self.calls: List[str] = []
        self.fail_on = fail_on

    def synthesize(self, text: str, voice: VoiceSelection, output_dir: Path, file_stem: str) -> Path:
        self.calls.append(text)
        if self.fail_on is not None and self.fail_on in text:
            raise RuntimeError("Google TTS failed: 500")
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / f"{file_stem}-tts.wav"
        clip = AudioSegment.silent(duration=100 * len(text), frame_rate=24000)
        clip.export(str(path), format="wav").close()
        return path


class FakeRenderer:
    def __init__(self, count: Optional[int] = None):
        self.count = count
        self.calls = 0

    def render(self, document_path: Path, output_dir: Path, quality) -> List[Path]:
        self.calls += 1
        output_dir.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(document_path) as archive:
            slides = len([n for n in archive.namelist() if n.startswith("ppt/notesSlides/")])
        count = self.count if self.count is not None else slides
        images = []
        for number in range(1, count + 1):
            image_path = output_dir / f"{document_path.stem}_slide_{number}.png"
            Image.new("RGB", (32, 18), color="white").save(image_path)
            images.append(image_path)
        return images


class FakeComposer:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.items = None

    def compose(self, items, audio_path: Path, output_path: Path) -> Path:
        self.items = list(items)
        if self.error is not None:
            raise self.error
        output_path.write_bytes(b"mp4")
        return output_path


def write_silence(path: Path, seconds: float = 1.0, frame_rate: int = 44100, channels: int = 2) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    clip = AudioSegment.silent(duration=int(seconds * 1000), frame_rate=frame_rate).set_channels(channels)
    clip.export(str(path), format="wav").close()
    return path


class FakeFFmpeg:
    """Stands in for tooling.run_tool: records commands and writes 1s of audio to the output argument."""

    def __init__(self):
        self.commands: List[List[str]] = []

    def __call__(self, args, *, error_cls, stage, timeout=None):
        command = [str(arg) for arg in args]
        self.commands.append(command)
        output = Path(command[-1])
        if output.suffix == ".wav":
            write_silence(output)
        else:
            output.write_bytes(b"")
        return None


@pytest.fixture
def fake_tts() -> FakeTTS:
    return FakeTTS()


@pytest.fixture
def fake_ffmpeg(monkeypatch) -> FakeFFmpeg:
    fake = FakeFFmpeg()
    monkeypatch.setattr("slide_narrator.mixer.run_tool", fake)
    return fake


@pytest.fixture
def voice() -> VoiceSelection:
    return VoiceSelection(
        voice_name="ja-JP-Neural2-B",
        gender="female",
        language_code="ja-JP",
        speaking_rate=1.0,
        pitch=0.0,
    )


@pytest.fixture
def timeline_config() -> TimelineConfig:
    return TimelineConfig(pre_slide_silence=2.0, post_slide_silence=1.0, empty_slide_silence=5.0)


@pytest.fixture
def base_dir(tmp_path) -> Path:
    path = tmp_path / "presentations"
    path.mkdir()
    return path


@pytest.fixture
def temp_root(tmp_path) -> Path:
    path = tmp_path / "runs"
    path.mkdir()
    return path


@pytest.fixture
def make_config(base_dir, temp_root):
    def _make(preset=PipelineConfig.for_video, **overrides) -> PipelineConfig:
        overrides.setdefault("base_dir", base_dir)
        overrides.setdefault("temp_root", temp_root)
        overrides.setdefault("parallel_stages", False)
        return preset(**overrides)

    return _make
