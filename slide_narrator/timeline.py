from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Sequence

from .audio import NarrationSynthesizer, make_silence
from .config import PromptPolicy, TimelineConfig
from .errors import EmptyTimelineError
from .types import NarrationTimeline, SegmentKind, SlideDuration, SlideNote, TimelineSegment

logger = logging.getLogger(__name__)


class TimelineAssembler:
    """Lays out narration, transition prompts and silences for a list of slide notes.

    ``INTER_SLIDE_PROMPT`` targets a standalone narration track: narrations are joined by
    ``pause, spoken prompt, pause`` whenever any later slide still has something to say.
    ``FIXED_CADENCE`` targets a video: every slide gets ``pre, narration-or-filler, post``
    and its total on-screen time is recorded.
    """

    def __init__(
        self,
        synthesizer: NarrationSynthesizer,
        config: Optional[TimelineConfig] = None,
        policy: PromptPolicy = PromptPolicy.FIXED_CADENCE,
        workers: int = 1,
    ):
        self.synthesizer = synthesizer
        self.config = config or TimelineConfig()
        self.policy = policy
        self.workers = max(1, workers)

    def assemble(
        self,
        notes: Sequence[SlideNote],
        segment_dir: Path,
        inter_slide_prompt: Optional[str] = None,
    ) -> NarrationTimeline:
        segment_dir.mkdir(parents=True, exist_ok=True)
        narration_seconds = self._synthesize_notes(notes, segment_dir)

        if self.policy is PromptPolicy.INTER_SLIDE_PROMPT:
            timeline = self._with_prompts(notes, narration_seconds, segment_dir, inter_slide_prompt)
        else:
            timeline = self._with_fixed_cadence(notes, narration_seconds, segment_dir)

        if not timeline.segments:
            raise EmptyTimelineError(
                "No slides provided or no segments generated.",
                diagnostics={"slides": len(notes), "policy": self.policy.value},
            )
        logger.info(
            "Assembled %s segments (%.1fs) for %s slides", len(timeline), timeline.total_seconds, len(notes)
        )
        return timeline

    def _synthesize_notes(self, notes: Sequence[SlideNote], segment_dir: Path) -> List[Optional[float]]:
        targets = [segment_dir / f"slide-{position:03d}.wav" for position in range(1, len(notes) + 1)]
        texts = [note.text for note in notes]
        if self.workers == 1 or len(notes) < 2:
            return [self.synthesizer.synthesize(text, target) for text, target in zip(texts, targets)]
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            # map() yields in submission order, so slide order is kept
            return list(executor.map(self.synthesizer.synthesize, texts, targets))

    def _silence(self, path: Path, seconds: float) -> TimelineSegment:
        duration = make_silence(
            path,
            seconds,
            sample_rate=self.synthesizer.sample_rate,
            channels=self.synthesizer.channels,
            minimum=self.config.min_silence,
        )
        return TimelineSegment(path=path, kind=SegmentKind.SILENCE, duration_seconds=duration)

    def _with_prompts(
        self,
        notes: Sequence[SlideNote],
        narration_seconds: List[Optional[float]],
        segment_dir: Path,
        inter_slide_prompt: Optional[str],
    ) -> NarrationTimeline:
        prompt_text = inter_slide_prompt if inter_slide_prompt is not None else self.config.inter_slide_prompt
        prompt_segment: Optional[TimelineSegment] = None
        prompt_ready = False
        timeline = NarrationTimeline()

        for position, note in enumerate(notes, start=1):
            seconds = narration_seconds[position - 1]
            if seconds is not None:
                timeline.segments.append(
                    TimelineSegment(segment_dir / f"slide-{position:03d}.wav", SegmentKind.NARRATION, seconds)
                )

            if not any(later.has_content for later in notes[position:]):
                continue

            if not prompt_ready:
                prompt_path = segment_dir / "prompt.wav"
                prompt_seconds = self.synthesizer.synthesize(prompt_text, prompt_path)
                if prompt_seconds is not None:
                    prompt_segment = TimelineSegment(prompt_path, SegmentKind.PROMPT, prompt_seconds)
                prompt_ready = True

            timeline.segments.append(
                self._silence(segment_dir / f"silence-pre-{position:03d}.wav", self.config.prompt_pre_silence)
            )
            if prompt_segment is not None:
                timeline.segments.append(prompt_segment)
            timeline.segments.append(
                self._silence(segment_dir / f"silence-post-{position:03d}.wav", self.config.prompt_post_silence)
            )
        return timeline

    def _with_fixed_cadence(
        self,
        notes: Sequence[SlideNote],
        narration_seconds: List[Optional[float]],
        segment_dir: Path,
    ) -> NarrationTimeline:
        timeline = NarrationTimeline()
        for position, note in enumerate(notes, start=1):
            pre = self._silence(segment_dir / f"pre-slide-{position:03d}.wav", self.config.pre_slide_silence)
            timeline.segments.append(pre)

            seconds = narration_seconds[position - 1]
            if seconds is not None:
                body = TimelineSegment(segment_dir / f"slide-{position:03d}.wav", SegmentKind.NARRATION, seconds)
            else:
                body = self._silence(
                    segment_dir / f"empty-slide-{position:03d}.wav", self.config.empty_slide_silence
                )
            timeline.segments.append(body)

            post = self._silence(segment_dir / f"post-slide-{position:03d}.wav", self.config.post_slide_silence)
            timeline.segments.append(post)

            timeline.slide_durations.append(
                SlideDuration(
                    slide_index=note.index,
                    narration_seconds=body.duration_seconds,
                    total_seconds=body.duration_seconds + pre.duration_seconds + post.duration_seconds,
                )
            )
            logger.debug("Slide %s lasts %.2fs", note.index, timeline.slide_durations[-1].total_seconds)
        return timeline
