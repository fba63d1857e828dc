from __future__ import annotations

import base64
import io
import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import requests
from openai import OpenAI
from PIL import Image, ImageOps

from .config import ImageConfig, OpeningClosingMode, VideoConfig
from .errors import ComposeError
from .types import DisplayItem

logger = logging.getLogger(__name__)

ASPECT_DIMS: Dict[str, Tuple[int, int]] = {
    "1:1": (1024, 1024),
    "3:4": (768, 1024),
    "4:3": (1024, 768),
    "16:9": (1024, 576),
    "9:16": (576, 1024),
}
REQUEST_SIZES: Dict[str, str] = {
    "1:1": "1024x1024",
    "3:4": "1024x1536",
    "4:3": "1536x1024",
    "16:9": "1536x1024",
    "9:16": "1024x1536",
}


def crop_to_aspect(data: bytes, aspect_ratio: str) -> bytes:
    """Scale to cover the target size and center-crop, returning PNG bytes."""

    width, height = ASPECT_DIMS[aspect_ratio]
    with Image.open(io.BytesIO(data)) as image:
        fitted = ImageOps.fit(image.convert("RGB"), (width, height), method=Image.Resampling.LANCZOS)
    buffer = io.BytesIO()
    fitted.save(buffer, format="PNG")
    return buffer.getvalue()


class BaseImageGenerator:
    def generate(self, prompt: str, aspect_ratio: str, output_path: Path, negative_prompt: Optional[str] = None) -> Path:
        raise NotImplementedError


class OpenAIImageGenerator(BaseImageGenerator):
    """Generate stills through an OpenAI-compatible images endpoint."""

    def __init__(self, config: ImageConfig, client: Optional[OpenAI] = None):
        self.config = config
        kwargs = {}
        if config.api_base:
            kwargs["base_url"] = config.api_base
        if config.api_key_env:
            api_key = os.getenv(config.api_key_env)
            if api_key:
                kwargs["api_key"] = api_key
        self.client = client or OpenAI(**kwargs)

    def generate(self, prompt: str, aspect_ratio: str, output_path: Path, negative_prompt: Optional[str] = None) -> Path:
        if aspect_ratio not in ASPECT_DIMS:
            raise ValueError(f"Unsupported aspect ratio: {aspect_ratio}")
        width, height = ASPECT_DIMS[aspect_ratio]
        enhanced = f"{prompt} (Aspect ratio: {aspect_ratio}, Dimensions: {width}x{height})"
        if negative_prompt:
            enhanced += f" --no {negative_prompt}"

        response = self.client.images.generate(model=self.config.model, prompt=enhanced, n=1, size=REQUEST_SIZES[aspect_ratio])
        image = response.data[0]
        if getattr(image, "b64_json", None):
            raw = base64.b64decode(image.b64_json)
        elif getattr(image, "url", None):
            download = requests.get(image.url, timeout=60)
            download.raise_for_status()
            raw = download.content
        else:
            raise RuntimeError("No image returned from image generation")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(crop_to_aspect(raw, aspect_ratio))
        logger.info("Generated image %s", output_path.name)
        return output_path


def build_image_generator(config: ImageConfig, client: Optional[OpenAI] = None) -> BaseImageGenerator:
    provider = (config.provider or "openai").lower()
    if provider == "openai":
        return OpenAIImageGenerator(config=config, client=client)
    raise ValueError(f"Unsupported image provider: {config.provider}")


class SectionVisuals:
    """Resolves the opening and closing visuals of a presentation video.

    Configured files win; otherwise a still is generated. In video mode stills are
    turned into clips of the section's length by ``clip_writer``.
    """

    def __init__(
        self,
        config: VideoConfig,
        image_generator: Optional[BaseImageGenerator],
        clip_writer: Callable[[Path, float, Path], Path],
    ):
        self.config = config
        self.image_generator = image_generator
        self.clip_writer = clip_writer

    def opening(self, work_dir: Path, base_name: str, seconds: float) -> DisplayItem:
        return self._resolve(
            "opening",
            work_dir / f"{base_name}_opening",
            seconds,
            self.config.opening_image,
            self.config.opening_video,
            self.config.opening_prompt,
        )

    def closing(self, work_dir: Path, base_name: str, seconds: float) -> DisplayItem:
        return self._resolve(
            "closing",
            work_dir / f"{base_name}_closing",
            seconds,
            self.config.closing_image,
            self.config.closing_video,
            self.config.closing_prompt,
        )

    def _resolve(
        self,
        section: str,
        target_base: Path,
        seconds: float,
        image_path: Optional[Path],
        video_path: Optional[Path],
        prompt: str,
    ) -> DisplayItem:
        video_mode = self.config.opening_closing_mode is OpeningClosingMode.VIDEO
        if video_mode and video_path is not None:
            return DisplayItem(Path(video_path), seconds, is_video=True)

        still = target_base.parent / f"{target_base.name}.png"
        try:
            if image_path is not None:
                shutil.copyfile(image_path, still)
            elif self.image_generator is not None:
                self.image_generator.generate(prompt, self.config.aspect_ratio, still, self.config.negative_prompt)
            else:
                raise RuntimeError("no image configured and no image generator available")
        except Exception as exc:  # generator SDK, network and file errors alike
            raise ComposeError(
                f"Failed to prepare {section} image: {exc}",
                stage=section,
                diagnostics={"image": str(image_path) if image_path else None},
            ) from exc

        if not video_mode:
            return DisplayItem(still, seconds)
        clip = self.clip_writer(still, seconds, target_base.parent / f"{target_base.name}.mp4")
        return DisplayItem(clip, seconds, is_video=True)
