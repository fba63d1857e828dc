from __future__ import annotations

import logging
import re
import zipfile
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Iterable, List, Optional

from .errors import ExtractionError
from .types import SlideNote

logger = logging.getLogger(__name__)

NS = {
    "p": "http://schemas.openxmlformats.org/presentationml/2006/main",
    "a": "http://schemas.openxmlformats.org/drawingml/2006/main",
}
NOTES_DIR = Path("ppt") / "notesSlides"
NOTE_PART_RE = re.compile(r"^notesSlide(\d+)\.xml$", re.IGNORECASE)
EXCLUDED_PLACEHOLDERS = {"sldnum", "dt", "ftr", "hdr"}


def note_part_index(name: str) -> Optional[int]:
    match = NOTE_PART_RE.match(name)
    return int(match.group(1)) if match else None


def sorted_note_parts(names: Iterable[str]) -> List[str]:
    """Filter note-part file names and order them by their numeric suffix."""

    parts = [name for name in names if note_part_index(name) is not None]
    return sorted(parts, key=note_part_index)


def _placeholder_type(shape: ET.Element) -> Optional[str]:
    ph = shape.find("p:nvSpPr/p:nvPr/p:ph", NS)
    if ph is None:
        return None
    # <p:ph> without a type attribute is an object placeholder
    return ph.get("type", "obj").lower()


def _is_body(shape: ET.Element, ph_type: Optional[str]) -> bool:
    if ph_type == "body":
        return True
    c_nv_pr = shape.find("p:nvSpPr/p:cNvPr", NS)
    return c_nv_pr is not None and "notes placeholder" in c_nv_pr.get("name", "").lower()


def _shape_text(element: ET.Element) -> str:
    paragraphs = []
    for paragraph in element.iter(f"{{{NS['a']}}}p"):
        runs = [node.text or "" for node in paragraph.iter(f"{{{NS['a']}}}t")]
        paragraphs.append("".join(runs))
    if not paragraphs:
        paragraphs = [node.text or "" for node in element.iter(f"{{{NS['a']}}}t")]
    return " ".join(paragraphs)


def _normalize_space(text: str) -> str:
    return " ".join(text.split())


def parse_note_xml(xml_text: str) -> str:
    """Return the speaker-notes body text of one note-part.

    Slide-number, date, footer and header placeholders never contribute text. When no
    shape is recognisable as the notes body, every remaining shape is used instead.
    """

    root = ET.fromstring(xml_text)
    shapes = list(root.iter(f"{{{NS['p']}}}sp"))
    if not shapes:
        return _normalize_space(_shape_text(root))

    body, others = [], []
    for shape in shapes:
        ph_type = _placeholder_type(shape)
        if ph_type in EXCLUDED_PLACEHOLDERS:
            continue
        if ph_type is not None and _is_body(shape, ph_type):
            body.append(shape)
        else:
            others.append(shape)

    selected = body or others
    return _normalize_space(" ".join(_shape_text(shape) for shape in selected))


def extract_slide_notes(document_path: Path, scratch_dir: Path) -> List[SlideNote]:
    """Unpack a presentation package and read one note per notes part, in slide order."""

    scratch_dir.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(document_path) as archive:
            archive.extractall(scratch_dir)
    except (zipfile.BadZipFile, OSError, NotImplementedError, RuntimeError) as exc:
        # NotImplementedError: unsupported compression, RuntimeError: encrypted members
        raise ExtractionError(
            "Failed to read presentation (file corrupted or not a zip package).",
            diagnostics={"document": str(document_path), "error": str(exc)},
        ) from exc

    notes_dir = scratch_dir / NOTES_DIR
    if not notes_dir.is_dir():
        logger.info("No speaker notes found in %s", document_path.name)
        return []

    notes: List[SlideNote] = []
    for name in sorted_note_parts(p.name for p in notes_dir.iterdir()):
        index = note_part_index(name)
        try:
            text = parse_note_xml((notes_dir / name).read_text(encoding="utf-8"))
        except (ET.ParseError, OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not parse %s, treating slide %s as empty: %s", name, index, exc)
            text = ""
        notes.append(SlideNote(index=index, text=text))

    logger.info("Extracted notes for %s slides (%s with content)", len(notes), sum(n.has_content for n in notes))
    return notes
