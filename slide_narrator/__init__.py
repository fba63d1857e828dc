"""Narration tracks and narrated videos generated from presentation speaker notes."""

from .config import PipelineConfig
from .pipeline import PresentationPipeline
from .types import PipelineResult

__all__ = ["PresentationPipeline", "PipelineConfig", "PipelineResult"]
