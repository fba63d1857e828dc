from __future__ import annotations

import logging
import re
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from .config import QualityTier
from .errors import RenderError
from .tooling import DEFAULT_TIMEOUT, ensure_tool, run_tool

logger = logging.getLogger(__name__)

MAC_SOFFICE = "/Applications/LibreOffice.app/Contents/MacOS/soffice"
PAGE_RE = re.compile(r"^slide-(\d+)\.png$")
SLIDE_RE = re.compile(r"_slide_(\d+)\.png$")


def default_soffice() -> str:
    if sys.platform == "darwin":
        return MAC_SOFFICE
    return shutil.which("soffice") or shutil.which("libreoffice") or "libreoffice"


def slide_number(path: Path) -> int:
    match = SLIDE_RE.search(path.name)
    return int(match.group(1)) if match else 0


class SlideRenderer:
    """Rasterizes every slide of a presentation: office document -> PDF -> PNG pages."""

    def __init__(self, soffice: Optional[str] = None, pdftoppm: str = "pdftoppm", timeout: float = DEFAULT_TIMEOUT):
        self.soffice = soffice or default_soffice()
        self.pdftoppm = pdftoppm
        self.timeout = timeout

    def render(self, document_path: Path, output_dir: Path, quality: QualityTier = QualityTier.MEDIUM) -> List[Path]:
        output_dir.mkdir(parents=True, exist_ok=True)
        scratch = output_dir / "temp_pptx_to_png"
        scratch.mkdir(parents=True, exist_ok=True)
        try:
            pdf_path = self._to_pdf(document_path, scratch)
            pages = self._rasterize(pdf_path, scratch, quality)
            base_name = document_path.stem
            images = []
            for number, page in pages:
                target = output_dir / f"{base_name}_slide_{number}.png"
                page.replace(target)
                images.append(target)
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        images.sort(key=slide_number)
        logger.info("Rendered %s slide images at %s dpi", len(images), quality.dpi)
        return images

    def _listing(self, scratch: Path) -> List[str]:
        return sorted(p.name for p in scratch.iterdir()) if scratch.exists() else []

    def _to_pdf(self, document_path: Path, scratch: Path) -> Path:
        run_tool(
            [self.soffice, "--headless", "--convert-to", "pdf", "--outdir", scratch, document_path],
            error_cls=RenderError,
            stage="convert",
            timeout=self.timeout,
        )
        pdf_path = scratch / f"{document_path.stem}.pdf"
        if not pdf_path.exists():
            found = self._listing(scratch)
            raise RenderError(
                f"PDF conversion failed. Expected: {pdf_path}, Found: {', '.join(found) or 'nothing'}",
                stage="convert",
                diagnostics={"expected": str(pdf_path), "found": found},
            )
        return pdf_path

    def _rasterize(self, pdf_path: Path, scratch: Path, quality: QualityTier) -> List[tuple]:
        ensure_tool([self.pdftoppm, "-h"], error_cls=RenderError, stage="rasterize", hint="poppler (pdftoppm)")
        run_tool(
            [self.pdftoppm, "-png", "-r", str(quality.dpi), pdf_path, scratch / "slide"],
            error_cls=RenderError,
            stage="rasterize",
            timeout=self.timeout,
        )
        pages = []
        for path in scratch.iterdir():
            match = PAGE_RE.match(path.name)
            if match:
                pages.append((int(match.group(1)), path))
        if not pages:
            found = self._listing(scratch)
            raise RenderError(
                "Rasterization produced no slide images",
                stage="rasterize",
                diagnostics={"found": found},
            )
        # pdftoppm zero-pads page numbers by page count, so order numerically
        return sorted(pages)
