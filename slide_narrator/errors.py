from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base class for failures that abort a pipeline run.

    ``stage`` names the sub-step that failed (e.g. ``normalize`` or ``encode``) and
    ``diagnostics`` carries whatever helps explain it: tool output, missing paths,
    scratch directory listings.
    """

    default_stage: Optional[str] = None

    def __init__(self, message: str, stage: Optional[str] = None, diagnostics: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage
        self.diagnostics = dict(diagnostics or {})

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class InputError(PipelineError):
    default_stage = "input"


class ExtractionError(PipelineError):
    default_stage = "extract"


class SynthesisError(PipelineError):
    default_stage = "synthesize"


class RenderError(PipelineError):
    default_stage = "render"


class MixError(PipelineError):
    default_stage = "mix"


class ComposeError(PipelineError):
    default_stage = "encode"


class EmptyTimelineError(PipelineError):
    default_stage = "timeline"


class LeaseBusyError(PipelineError):
    default_stage = "lease"
