from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

from moviepy import AudioFileClip, ImageClip, VideoClip, VideoFileClip, concatenate_videoclips

from .config import VideoConfig
from .errors import ComposeError
from .manifest import ConcatManifest
from .tooling import DEFAULT_TIMEOUT, ensure_tool, run_tool
from .types import DisplayItem, SlideDuration

logger = logging.getLogger(__name__)

EVEN_SCALE = "scale=trunc(iw/2)*2:trunc(ih/2)*2"


def image_to_video(image_path: Path, seconds: float, output_path: Path, fps: int = 30) -> Path:
    """Render a still image as a silent clip lasting ``seconds``."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with ImageClip(str(image_path), duration=seconds) as clip:
            clip.write_videofile(
                str(output_path),
                fps=fps,
                codec="libx264",
                audio=False,
                ffmpeg_params=["-vf", EVEN_SCALE],
                pixel_format="yuv420p",
                logger=None,
            )
    except (OSError, ValueError) as exc:
        raise ComposeError(
            f"Failed to render {image_path.name} as a video clip",
            stage="clip",
            diagnostics={"image": str(image_path), "seconds": seconds, "error": str(exc)},
        ) from exc
    return output_path


def build_display_timeline(
    slide_images: Sequence[Path],
    slide_durations: Sequence[SlideDuration],
    opening: Optional[DisplayItem] = None,
    closing: Optional[DisplayItem] = None,
) -> List[DisplayItem]:
    """Order visuals as opening -> slides -> closing, pairing slides with their durations."""

    if len(slide_images) != len(slide_durations):
        logger.warning(
            "Rendered %s slide images but timed %s slides; unmatched slides are dropped",
            len(slide_images),
            len(slide_durations),
        )
    items: List[DisplayItem] = []
    if opening is not None:
        items.append(opening)
    for image, duration in zip(slide_images, slide_durations):
        items.append(DisplayItem(Path(image), duration.total_seconds))
    if closing is not None:
        items.append(closing)
    return items


def fit_to_duration(clip: VideoClip, seconds: float, owned: List[VideoClip]) -> VideoClip:
    """Trim ``clip`` to ``seconds`` or hold its last frame until ``seconds`` is reached.

    Clips created along the way are appended to ``owned`` so the caller can close them.
    """

    if clip.duration is None or abs(clip.duration - seconds) < 1e-3:
        return clip
    if clip.duration > seconds:
        trimmed = clip.subclipped(0, seconds)
        owned.append(trimmed)
        return trimmed
    frame_time = max(0.0, clip.duration - 1.0 / (clip.fps or 30))
    hold = clip.to_ImageClip(t=frame_time, duration=seconds - clip.duration)
    extended = concatenate_videoclips([clip, hold], method="compose")
    owned.extend([hold, extended])
    return extended


class VideoComposer:
    """Mux a sequence of timed visuals with the final audio track into an MP4."""

    def __init__(self, config: Optional[VideoConfig] = None, timeout: float = DEFAULT_TIMEOUT, ffmpeg: str = "ffmpeg"):
        self.config = config or VideoConfig()
        self.timeout = timeout
        self.ffmpeg = ffmpeg

    def compose(self, items: Sequence[DisplayItem], audio_path: Path, output_path: Path) -> Path:
        if not items:
            raise ComposeError("Nothing to show: the display timeline is empty")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        total = sum(item.display_seconds for item in items)
        logger.info("Composing %s visuals (%.1fs) into %s", len(items), total, output_path.name)
        if any(item.is_video for item in items):
            return self._compose_clips(items, audio_path, output_path)
        return self._compose_stills(items, audio_path, output_path)

    def _compose_stills(self, items: Sequence[DisplayItem], audio_path: Path, output_path: Path) -> Path:
        ensure_tool([self.ffmpeg, "-version"], error_cls=ComposeError, stage="encode", hint="ffmpeg")
        manifest = ConcatManifest()
        for item in items:
            manifest.add(item.path, item.display_seconds)
        # the concat demuxer ignores the last duration unless the file is listed again
        manifest.add(items[-1].path)
        manifest_path = manifest.write(output_path.with_name("images.txt"))

        run_tool(
            [
                self.ffmpeg,
                "-y",
                "-f", "concat",
                "-safe", "0",
                "-i", manifest_path,
                "-i", audio_path,
                "-vf", EVEN_SCALE,
                "-c:v", "libx264",
                "-c:a", "aac",
                "-crf", str(self.config.crf),
                "-preset", self.config.preset,
                "-r", str(self.config.frame_rate),
                "-pix_fmt", "yuv420p",
                output_path,
            ],
            error_cls=ComposeError,
            stage="encode",
            timeout=self.timeout,
        )
        return output_path

    def _compose_clips(self, items: Sequence[DisplayItem], audio_path: Path, output_path: Path) -> Path:
        clips: List = []
        timeline_clips = []
        audio = None
        visual = None
        final = None
        try:
            for item in items:
                if item.is_video:
                    source = VideoFileClip(str(item.path)).without_audio()
                    clips.append(source)
                    # configured clips play for their section's audio length, not their own
                    fitted = fit_to_duration(source, item.display_seconds, clips)
                else:
                    fitted = ImageClip(str(item.path), duration=item.display_seconds)
                    clips.append(fitted)
                timeline_clips.append(fitted)
            visual = concatenate_videoclips(timeline_clips, method="compose")
            audio = AudioFileClip(str(audio_path))
            # stop at whichever stream ends first
            duration = min(visual.duration, audio.duration)
            final = visual.with_audio(audio).with_duration(duration)
            final.write_videofile(
                str(output_path),
                fps=self.config.frame_rate,
                codec="libx264",
                audio_codec="aac",
                preset=self.config.preset,
                ffmpeg_params=["-crf", str(self.config.crf), "-vf", EVEN_SCALE],
                pixel_format="yuv420p",
                temp_audiofile=str(output_path.with_name("temp-audio.m4a")),
                remove_temp=True,
                logger=None,
            )
        except (OSError, ValueError) as exc:
            raise ComposeError(
                f"Video encoding failed: {exc}",
                stage="encode",
                diagnostics={"items": [str(item.path) for item in items], "audio": str(audio_path)},
            ) from exc
        finally:
            for clip in (final, visual, *reversed(clips)):
                if clip is not None:
                    clip.close()
            if audio is not None:
                audio.close()
        return output_path
