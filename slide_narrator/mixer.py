from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

from .errors import MixError
from .manifest import ConcatManifest
from .tooling import DEFAULT_TIMEOUT, run_tool
from .types import TimelineSegment

logger = logging.getLogger(__name__)


class AudioMixer:
    """ffmpeg-backed concatenation and background mixing in one canonical PCM format."""

    def __init__(
        self,
        sample_rate: int = 44100,
        channels: int = 2,
        timeout: float = DEFAULT_TIMEOUT,
        ffmpeg: str = "ffmpeg",
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.timeout = timeout
        self.ffmpeg = ffmpeg

    def _pcm_args(self) -> list:
        return ["-ar", str(self.sample_rate), "-ac", str(self.channels), "-c:a", "pcm_s16le"]

    def _run(self, args: Sequence, stage: str) -> None:
        run_tool([self.ffmpeg, *args], error_cls=MixError, stage=stage, timeout=self.timeout)

    def concatenate(self, segments: Sequence[TimelineSegment], output_path: Path) -> Path:
        """Stream-copy segments that already share one format into a single file."""

        if not segments:
            raise MixError("No audio segments to concatenate", stage="concat")
        manifest_path = output_path.with_name(f"{output_path.stem}_concat.txt")
        ConcatManifest.from_paths(segment.path for segment in segments).write(manifest_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        self._run(["-y", "-f", "concat", "-safe", "0", "-i", manifest_path, "-c", "copy", output_path], "concat")
        logger.info("Concatenated %s segments into %s", len(segments), output_path.name)
        return output_path

    def normalize(self, input_path: Path, output_path: Path, gain: Optional[float] = None) -> Path:
        args = ["-y", "-i", input_path, "-ar", str(self.sample_rate), "-ac", str(self.channels)]
        if gain is not None:
            args += ["-filter:a", f"volume={gain}"]
        args += ["-c:a", "pcm_s16le", output_path]
        self._run(args, "normalize")
        return output_path

    def mix_with_background(
        self,
        narration_path: Path,
        background_path: Path,
        output_path: Path,
        gain: float = 0.1,
    ) -> Path:
        """Lay a looping, attenuated background track under the narration for the narration's length."""

        work_dir = output_path.parent
        normalized_narration = self.normalize(narration_path, work_dir / "normalized_narration.wav")
        normalized_background = self.normalize(background_path, work_dir / "normalized_bgm.wav", gain=gain)
        self._run(
            [
                "-y",
                "-i", normalized_narration,
                "-stream_loop", "-1",
                "-i", normalized_background,
                "-filter_complex", "amix=inputs=2:duration=first:dropout_transition=0",
                "-c:a", "pcm_s16le",
                output_path,
            ],
            "mix",
        )
        logger.info("Mixed background music at %.0f%% under narration", gain * 100)
        return output_path

    def assemble_final(
        self,
        opening_path: Optional[Path],
        main_path: Path,
        closing_path: Optional[Path],
        output_path: Path,
    ) -> Path:
        """Join opening, main mix and closing (whichever exist) re-encoding to the canonical format."""

        work_dir = output_path.parent
        parts = []
        if opening_path is not None:
            parts.append(self.normalize(opening_path, work_dir / "normalized_opening.wav"))
        parts.append(main_path)
        if closing_path is not None:
            parts.append(self.normalize(closing_path, work_dir / "normalized_closing.wav"))
        manifest_path = output_path.with_name("audio_list.txt")
        ConcatManifest.from_paths(parts).write(manifest_path)
        self._run(
            ["-y", "-f", "concat", "-safe", "0", "-i", manifest_path, *self._pcm_args(), output_path],
            "concat",
        )
        return output_path
