import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class PromptPolicy(str, Enum):
    """How narration segments are spaced on the timeline."""

    INTER_SLIDE_PROMPT = "inter_slide_prompt"
    FIXED_CADENCE = "fixed_cadence"


class ChannelLayout(Enum):
    MONO = 1
    STEREO = 2

    @property
    def channels(self) -> int:
        return self.value


class OpeningClosingMode(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class QualityTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def dpi(self) -> int:
        return {"low": 150, "medium": 200, "high": 300}[self.value]


def _env_float(name: str, default: float, positive: bool = False) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default
    if positive and value <= 0:
        return default
    return value


@dataclass
class VoiceConfig:
    """Speech parameters shared by every TTS provider."""

    language_code: str = "ja-JP"
    speaking_rate: float = 1.0  # 0.25 - 4.0
    pitch: float = 0.0  # -20.0 - 20.0
    pronunciation_dict_path: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "VoiceConfig":
        dict_path = os.getenv("TTS_PRONUNCIATION_DICT") or None
        return cls(
            language_code=os.getenv("TTS_LANGUAGE_CODE") or "ja-JP",
            speaking_rate=_env_float("TTS_SPEAKING_RATE", 1.0, positive=True),
            pitch=_env_float("TTS_PITCH", 0.0),
            pronunciation_dict_path=Path(dict_path) if dict_path else None,
        )


@dataclass
class TTSConfig:
    """Configuration for text-to-speech synthesis."""

    provider: str = "google"
    model: str = "gpt-4o-mini-tts"
    format: str = "wav"
    api_base: Optional[str] = None
    api_key_env: Optional[str] = "GOOGLE_TTS_API_KEY"
    male_voice: Optional[str] = None
    female_voice: Optional[str] = None
    max_retries: int = 3
    retry_delay: float = 3.0
    request_timeout: float = 60.0


@dataclass
class ImageConfig:
    """Configuration for the opening/closing image generator."""

    provider: str = "openai"
    model: str = "gpt-image-1"
    api_base: Optional[str] = None
    api_key_env: Optional[str] = "OPENAI_API_KEY"


@dataclass
class TimelineConfig:
    """Silence padding used when laying out narration segments (seconds)."""

    pre_slide_silence: float = 2.0
    post_slide_silence: float = 1.0
    empty_slide_silence: float = 5.0
    prompt_pre_silence: float = 0.8
    prompt_post_silence: float = 1.2
    inter_slide_prompt: str = "次のスライドをお願いします。"
    min_silence: float = 0.1


@dataclass
class MixConfig:
    sample_rate: int = 44100
    background_gain: float = 0.1


@dataclass
class VideoConfig:
    frame_rate: int = 30
    crf: int = 23
    preset: str = "medium"
    quality: QualityTier = QualityTier.MEDIUM
    opening_closing_mode: OpeningClosingMode = OpeningClosingMode.IMAGE
    default_section_duration: float = 5.0
    aspect_ratio: str = "16:9"
    opening_image: Optional[Path] = None
    closing_image: Optional[Path] = None
    opening_video: Optional[Path] = None
    closing_video: Optional[Path] = None
    opening_prompt: str = (
        "Professional presentation opening image, elegant curtain opening scene, stage with spotlight, "
        "microphone and podium, audience silhouettes, theatrical presentation setup, sophisticated business "
        "presentation scene, warm lighting, cinematic quality, 16:9 aspect ratio"
    )
    closing_prompt: str = (
        "Professional presentation closing image with thank you message, elegant curtain closing scene, "
        "stage with spotlight, audience applause, theatrical presentation ending, sophisticated business "
        "presentation scene, warm lighting, cinematic quality, 16:9 aspect ratio"
    )
    negative_prompt: str = "text, watermark, logo, low quality, blurry"


@dataclass
class AssetConfig:
    """Fixed audio assets around the narration. ``None`` omits that part."""

    opening_audio: Optional[Path] = None
    background_music: Optional[Path] = None
    closing_audio: Optional[Path] = None

    @classmethod
    def from_dir(cls, assets_dir: Path) -> "AssetConfig":
        return cls(
            opening_audio=assets_dir / "Presentation.wav",
            background_music=assets_dir / "bgm001.wav",
            closing_audio=assets_dir / "presentation_long.wav",
        )

    def configured(self) -> list[Path]:
        return [p for p in (self.opening_audio, self.background_music, self.closing_audio) if p is not None]


@dataclass
class PipelineConfig:
    """Top level configuration for a presentation narration run."""

    base_dir: Path = Path("persistent_data/generated/presentations")
    temp_root: Optional[Path] = None
    prompt_policy: PromptPolicy = PromptPolicy.FIXED_CADENCE
    channel_layout: ChannelLayout = ChannelLayout.STEREO
    voice: VoiceConfig = field(default_factory=VoiceConfig.from_env)
    tts: TTSConfig = field(default_factory=TTSConfig)
    images: ImageConfig = field(default_factory=ImageConfig)
    timeline: TimelineConfig = field(default_factory=TimelineConfig)
    mix: MixConfig = field(default_factory=MixConfig)
    video: VideoConfig = field(default_factory=VideoConfig)
    assets: AssetConfig = field(default_factory=AssetConfig)
    tool_timeout: float = 600.0
    parallel_stages: bool = True
    synthesis_workers: int = 1
    write_subtitles: bool = False
    use_lease: bool = False
    lease_ttl: float = 180.0

    @classmethod
    def for_narration(cls, **overrides) -> "PipelineConfig":
        overrides.setdefault("prompt_policy", PromptPolicy.INTER_SLIDE_PROMPT)
        overrides.setdefault("channel_layout", ChannelLayout.MONO)
        return cls(**overrides)

    @classmethod
    def for_video(cls, **overrides) -> "PipelineConfig":
        overrides.setdefault("prompt_policy", PromptPolicy.FIXED_CADENCE)
        overrides.setdefault("channel_layout", ChannelLayout.STEREO)
        return cls(**overrides)
