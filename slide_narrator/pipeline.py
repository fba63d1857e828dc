from __future__ import annotations

import contextlib
import functools
import logging
import os
import shutil
import tempfile
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from openai import OpenAI

from .audio import NarrationSynthesizer
from .config import PipelineConfig, PromptPolicy
from .errors import ComposeError, InputError, PipelineError
from .imagery import BaseImageGenerator, SectionVisuals, build_image_generator
from .lease import acquire_lease
from .mixer import AudioMixer
from .notes import extract_slide_notes
from .slides import SlideRenderer
from .subtitles import write_slide_subtitles
from .timeline import TimelineAssembler
from .tooling import probe_duration
from .tts import BaseTTS, build_tts, select_voice
from .types import DisplayItem, NarrationTimeline, PipelineResult, PipelineRun, SlideNote, Stage
from .video import VideoComposer, build_display_timeline, image_to_video

logger = logging.getLogger(__name__)


class PresentationPipeline:
    """Turns a presentation's speaker notes into a narration track or a narrated video.

    Every run works inside its own temporary directory, which is removed whether the run
    succeeds or fails. Finished artifacts are moved next to the source document only
    after the last step succeeded, so a failed run never leaves partial output behind.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        tts: Optional[BaseTTS] = None,
        renderer: Optional[SlideRenderer] = None,
        image_generator: Optional[BaseImageGenerator] = None,
        mixer: Optional[AudioMixer] = None,
        composer: Optional[VideoComposer] = None,
        probe: Callable[[Path], float] = probe_duration,
        client: Optional[OpenAI] = None,
    ):
        self.config = config or PipelineConfig()
        self.client = client
        self.tts = tts or build_tts(self.config.tts, client=client)
        self.renderer = renderer or SlideRenderer(timeout=self.config.tool_timeout)
        self.image_generator = image_generator
        self.mixer = mixer or AudioMixer(
            sample_rate=self.config.mix.sample_rate,
            channels=self.config.channel_layout.channels,
            timeout=self.config.tool_timeout,
        )
        self.composer = composer or VideoComposer(self.config.video, timeout=self.config.tool_timeout)
        self.probe = probe

    # public entry points

    def create_narration(
        self,
        file_name: str,
        gender: str = "female",
        inter_slide_prompt: Optional[str] = None,
    ) -> PipelineResult:
        """Write ``<name>.wav`` with every slide's notes read aloud."""

        def body(run: PipelineRun, synthesizer: NarrationSynthesizer) -> Tuple[Path, Optional[Path]]:
            notes = self._extract_notes(run)
            self._advance(run, Stage.SYNTHESIZE_NARRATION)
            timeline = self._assemble(notes, run.working_dir / "segments", synthesizer, inter_slide_prompt)
            self._advance(run, Stage.MIX_AUDIO)
            narration = self.mixer.concatenate(timeline.segments, run.working_dir / run.output_path.name)
            return narration, None

        return self._execute(file_name, ".wav", gender, body, label="Narration WAV")

    def create_video(self, file_name: str, gender: str = "male") -> PipelineResult:
        """Write ``<name>.mp4``: opening, one shot per slide timed to its narration, closing."""

        if self.config.prompt_policy is not PromptPolicy.FIXED_CADENCE:
            raise ValueError("Video output needs the fixed cadence policy to time each slide.")

        def body(run: PipelineRun, synthesizer: NarrationSynthesizer) -> Tuple[Path, Optional[Path]]:
            work = run.working_dir
            base_name = run.source_path.stem
            notes = self._extract_notes(run)

            logger.info("Step 2/5: Rendering slides and synthesizing narration...")
            images, timeline, narration = self._render_and_narrate(run, notes, synthesizer)

            self._advance(run, Stage.MIX_AUDIO)
            logger.info("Step 3/5: Mixing audio...")
            final_audio, opening_seconds, closing_seconds = self._mix(narration, work)
            logger.info("Final audio duration: %.2fs", self.probe(final_audio))

            self._advance(run, Stage.COMPOSE_VIDEO)
            logger.info("Step 4/5: Composing video...")
            opening, closing = self._sections(work, base_name, opening_seconds, closing_seconds)
            items = build_display_timeline(images, timeline.slide_durations, opening, closing)
            video = self.composer.compose(items, final_audio, work / run.output_path.name)

            subtitles = None
            if self.config.write_subtitles:
                subtitles = write_slide_subtitles(
                    notes,
                    timeline.slide_durations,
                    work / f"{base_name}.srt",
                    pre_slide_silence=self.config.timeline.pre_slide_silence,
                    offset_seconds=opening_seconds or 0.0,
                )
            return video, subtitles

        return self._execute(file_name, ".mp4", gender, body, label="Video")

    # stages

    def _extract_notes(self, run: PipelineRun) -> List[SlideNote]:
        self._advance(run, Stage.EXTRACT_NOTES)
        logger.info("Step 1/5: Extracting speaker notes from %s...", run.source_path.name)
        return extract_slide_notes(run.source_path, run.working_dir / "extract")

    def _assemble(
        self,
        notes: List[SlideNote],
        segment_dir: Path,
        synthesizer: NarrationSynthesizer,
        inter_slide_prompt: Optional[str] = None,
    ) -> NarrationTimeline:
        assembler = TimelineAssembler(
            synthesizer,
            self.config.timeline,
            policy=self.config.prompt_policy,
            workers=self.config.synthesis_workers,
        )
        return assembler.assemble(notes, segment_dir, inter_slide_prompt=inter_slide_prompt)

    def _narrate(
        self, run: PipelineRun, notes: List[SlideNote], synthesizer: NarrationSynthesizer
    ) -> Tuple[NarrationTimeline, Path]:
        timeline = self._assemble(notes, run.working_dir / "segments", synthesizer)
        narration = self.mixer.concatenate(timeline.segments, run.working_dir / "narration.wav")
        return timeline, narration

    def _render(self, run: PipelineRun) -> List[Path]:
        return self.renderer.render(run.source_path, run.working_dir / "slides", self.config.video.quality)

    def _render_and_narrate(
        self, run: PipelineRun, notes: List[SlideNote], synthesizer: NarrationSynthesizer
    ) -> Tuple[List[Path], NarrationTimeline, Path]:
        if not self.config.parallel_stages:
            self._advance(run, Stage.RENDER_SLIDES)
            images = self._render(run)
            self._advance(run, Stage.SYNTHESIZE_NARRATION)
            timeline, narration = self._narrate(run, notes, synthesizer)
            return images, timeline, narration

        self._advance(run, Stage.SYNTHESIZE_NARRATION)
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix=f"run-{run.run_id[:8]}") as executor:
            images_future = executor.submit(self._render, run)
            narration_future = executor.submit(self._narrate, run, notes, synthesizer)
            timeline, narration = narration_future.result()
            images = images_future.result()
        return images, timeline, narration

    def _section_seconds(self, audio_path: Optional[Path]) -> Optional[float]:
        if audio_path is None:
            return None
        seconds = self.probe(audio_path)
        return seconds if seconds > 0 else self.config.video.default_section_duration

    def _mix(self, narration: Path, work: Path) -> Tuple[Path, Optional[float], Optional[float]]:
        assets = self.config.assets
        opening_seconds = self._section_seconds(assets.opening_audio)
        closing_seconds = self._section_seconds(assets.closing_audio)
        logger.info("Audio durations detected: opening=%s closing=%s", opening_seconds, closing_seconds)

        main = narration
        if assets.background_music is not None:
            main = self.mixer.mix_with_background(
                narration, assets.background_music, work / "mixed_audio.wav", gain=self.config.mix.background_gain
            )
        if assets.opening_audio is None and assets.closing_audio is None:
            return main, None, None
        final = self.mixer.assemble_final(assets.opening_audio, main, assets.closing_audio, work / "final_audio.wav")
        return final, opening_seconds, closing_seconds

    def _sections(
        self,
        work: Path,
        base_name: str,
        opening_seconds: Optional[float],
        closing_seconds: Optional[float],
    ) -> Tuple[Optional[DisplayItem], Optional[DisplayItem]]:
        if opening_seconds is None and closing_seconds is None:
            return None, None
        visuals = SectionVisuals(
            self.config.video,
            self._image_generator(),
            clip_writer=functools.partial(image_to_video, fps=self.config.video.frame_rate),
        )
        opening = visuals.opening(work, base_name, opening_seconds) if opening_seconds is not None else None
        closing = visuals.closing(work, base_name, closing_seconds) if closing_seconds is not None else None
        return opening, closing

    def _image_generator(self) -> Optional[BaseImageGenerator]:
        video = self.config.video
        if self.image_generator is not None:
            return self.image_generator
        if video.opening_image is not None and video.closing_image is not None:
            return None
        try:
            self.image_generator = build_image_generator(self.config.images, client=self.client)
        except Exception as exc:  # SDK construction fails without credentials
            raise ComposeError(f"Image generator unavailable: {exc}", stage="opening") from exc
        return self.image_generator

    # run lifecycle

    def _advance(self, run: PipelineRun, stage: Stage) -> None:
        run.stage = stage
        logger.debug("Run %s -> %s", run.run_id, stage.value)

    def _validate_input(self, file_name: str, suffix: str) -> PipelineRun:
        base_dir = self.config.base_dir
        source = (base_dir / file_name).resolve()
        if not source.is_file() or not os.access(source, os.R_OK):
            raise InputError(f"Presentation not found or unreadable: {source}", diagnostics={"path": str(source)})
        missing = [str(p) for p in self.config.assets.configured() if not Path(p).is_file()]
        if missing:
            raise InputError("Configured audio assets are missing", diagnostics={"missing": missing})
        output = source.parent / f"{source.stem}{suffix}"
        return PipelineRun(run_id=uuid.uuid4().hex, source_path=source, output_path=output)

    def _execute(
        self,
        file_name: str,
        suffix: str,
        gender: str,
        body: Callable[[PipelineRun, NarrationSynthesizer], Tuple[Path, Optional[Path]]],
        label: str,
    ) -> PipelineResult:
        run: Optional[PipelineRun] = None
        try:
            run = self._validate_input(file_name, suffix)
            logger.info("Starting run %s for %s", run.run_id, run.source_path)
            try:
                voice = select_voice(gender, self.config.voice, self.config.tts)
            except ValueError as exc:
                raise InputError(str(exc), diagnostics={"gender": gender, "provider": self.config.tts.provider}) from exc
            synthesizer = NarrationSynthesizer(
                self.tts,
                voice,
                sample_rate=self.config.mix.sample_rate,
                channels=self.config.channel_layout.channels,
            )
            logger.info("TTS voice %s (%s)", voice.voice_name, voice.gender)

            with contextlib.ExitStack() as stack:
                if self.config.use_lease:
                    self._advance(run, Stage.LEASE)
                    stack.enter_context(
                        acquire_lease(str(run.output_path), self.config.lease_ttl, run.output_path.parent, run.run_id)
                    )
                run.working_dir = self._make_working_dir(run)
                stack.callback(self._cleanup, run)

                artifact, subtitles = body(run, synthesizer)
                logger.info("Step 5/5: Publishing %s", run.output_path.name)
                self._publish(artifact, run.output_path)
                published_subtitles = None
                if subtitles is not None:
                    published_subtitles = run.output_path.with_suffix(".srt")
                    self._publish(subtitles, published_subtitles)

            run.stage = Stage.DONE
            logger.info("%s generated: %s", label, run.output_path)
            return PipelineResult(
                success=True,
                message=f"{label} generated: {run.output_path}",
                output_path=run.output_path,
                stage=Stage.DONE.value,
                subtitles_path=published_subtitles,
            )
        except PipelineError as exc:
            pipeline_stage = run.stage.value if run else Stage.INIT.value
            if run:
                run.stage = Stage.FAILED
            logger.error("%s generation failed during %s: %s", label, pipeline_stage, exc)
            diagnostics = dict(exc.diagnostics)
            diagnostics.setdefault("pipeline_stage", pipeline_stage)
            return PipelineResult(success=False, message=exc.message, stage=exc.stage, diagnostics=diagnostics)

    def _make_working_dir(self, run: PipelineRun) -> Path:
        temp_root = self.config.temp_root
        if temp_root is not None:
            temp_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"nar-{run.run_id[:8]}-", dir=temp_root))

    def _cleanup(self, run: PipelineRun) -> None:
        previous = run.stage
        self._advance(run, Stage.CLEANUP)
        if run.working_dir is not None:
            shutil.rmtree(run.working_dir, ignore_errors=True)
            logger.debug("Removed working directory %s", run.working_dir)
        run.stage = previous

    def _publish(self, artifact: Path, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(artifact), str(destination))
