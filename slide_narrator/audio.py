from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from .errors import MixError, SynthesisError
from .tts import BaseTTS, VoiceSelection

logger = logging.getLogger(__name__)

SAMPLE_WIDTH = 2  # 16-bit PCM
MIN_SILENCE_SECONDS = 0.1


def to_canonical(clip: AudioSegment, sample_rate: int, channels: int) -> AudioSegment:
    if clip.frame_rate != sample_rate:
        clip = clip.set_frame_rate(sample_rate)
    if clip.channels != channels:
        clip = clip.set_channels(channels)
    if clip.sample_width != SAMPLE_WIDTH:
        clip = clip.set_sample_width(SAMPLE_WIDTH)
    return clip


def make_silence(
    output_path: Path,
    seconds: float,
    sample_rate: int = 44100,
    channels: int = 2,
    minimum: float = MIN_SILENCE_SECONDS,
) -> float:
    """Write a silent PCM WAV and return its duration in seconds."""

    try:
        duration = max(minimum, float(seconds or 0))
    except (TypeError, ValueError):
        duration = minimum
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        silence = AudioSegment.silent(duration=int(round(duration * 1000)), frame_rate=sample_rate)
        to_canonical(silence, sample_rate, channels).export(str(output_path), format="wav").close()
    except OSError as exc:
        raise MixError(
            f"Failed to generate {duration:.2f}s of silence at {output_path}",
            stage="silence",
            diagnostics={"path": str(output_path), "seconds": duration, "error": str(exc)},
        ) from exc
    return duration


class NarrationSynthesizer:
    """Turns note text into canonical-format WAV segments through a TTS provider."""

    def __init__(self, tts: BaseTTS, voice: VoiceSelection, sample_rate: int = 44100, channels: int = 2):
        self.tts = tts
        self.voice = voice
        self.sample_rate = sample_rate
        self.channels = channels

    def synthesize(self, text: str, output_path: Path) -> Optional[float]:
        """Synthesize ``text`` to ``output_path``; returns its duration, or ``None`` for empty text."""

        trimmed = (text or "").strip()
        if not trimmed:
            logger.debug("Skipping empty narration for %s", output_path.name)
            return None

        diagnostics = {"output_path": str(output_path), "text": trimmed[:80]}
        logger.debug("Synthesizing %s chars with voice %s", len(trimmed), self.voice.voice_name)
        try:
            source = self.tts.synthesize(trimmed, self.voice, output_path.parent, output_path.stem)
        except Exception as exc:  # provider SDK and network errors alike
            raise SynthesisError(f"TTS failed to synthesize segment: {exc}", diagnostics=diagnostics) from exc

        if not source or not Path(source).exists():
            raise SynthesisError("TTS returned no audio file", diagnostics=diagnostics)

        source = Path(source)
        try:
            clip = AudioSegment.from_file(str(source), format=source.suffix.lstrip(".") or None)
            clip = to_canonical(clip, self.sample_rate, self.channels)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            clip.export(str(output_path), format="wav").close()
        except (CouldntDecodeError, OSError, ValueError) as exc:
            raise SynthesisError(f"Could not normalize TTS output {source.name}", diagnostics=diagnostics) from exc

        if source.resolve() != output_path.resolve():
            source.unlink(missing_ok=True)
        return clip.duration_seconds
