from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class SlideNote:
    """Speaker notes of one slide, ``index`` is 1-based."""

    index: int
    text: str

    @property
    def has_content(self) -> bool:
        return bool(self.text.strip())


class SegmentKind(str, Enum):
    NARRATION = "narration"
    SILENCE = "silence"
    PROMPT = "prompt"


@dataclass
class TimelineSegment:
    """One audio clip on the narration timeline."""

    path: Path
    kind: SegmentKind
    duration_seconds: Optional[float] = None


@dataclass(frozen=True)
class SlideDuration:
    slide_index: int
    narration_seconds: float
    total_seconds: float


@dataclass
class NarrationTimeline:
    """Ordered segments plus per-slide durations (fixed cadence only)."""

    segments: List[TimelineSegment] = field(default_factory=list)
    slide_durations: List[SlideDuration] = field(default_factory=list)

    @property
    def total_seconds(self) -> float:
        return sum(segment.duration_seconds or 0.0 for segment in self.segments)

    def __len__(self) -> int:
        return len(self.segments)


@dataclass(frozen=True)
class DisplayItem:
    """A visual shown for ``display_seconds`` in the final video."""

    path: Path
    display_seconds: float
    is_video: bool = False


class Stage(str, Enum):
    INIT = "init"
    LEASE = "lease"
    EXTRACT_NOTES = "extract_notes"
    RENDER_SLIDES = "render_slides"
    SYNTHESIZE_NARRATION = "synthesize_narration"
    MIX_AUDIO = "mix_audio"
    COMPOSE_VIDEO = "compose_video"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PipelineRun:
    """State of one pipeline invocation; owns everything under ``working_dir``."""

    run_id: str
    source_path: Path
    output_path: Path
    working_dir: Optional[Path] = None
    stage: Stage = Stage.INIT


@dataclass
class PipelineResult:
    """User-facing outcome of a run."""

    success: bool
    message: str
    output_path: Optional[Path] = None
    stage: Optional[str] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    subtitles_path: Optional[Path] = None

    @property
    def file_name(self) -> Optional[str]:
        return self.output_path.name if self.output_path else None
