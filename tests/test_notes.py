"""Tests for speaker-notes extraction."""

import random
import zipfile

import pytest

from conftest import body_note, note_xml, shape_xml, write_presentation
from slide_narrator.errors import ExtractionError
from slide_narrator.notes import extract_slide_notes, parse_note_xml, sorted_note_parts


def test_notes_are_ordered_numerically(tmp_path):
    parts = {f"notesSlide{i}.xml": body_note(f"note {i}", str(i)) for i in range(1, 13)}
    shuffled = dict(random.Random(7).sample(list(parts.items()), k=len(parts)))
    document = write_presentation(tmp_path / "deck.pptx", shuffled)

    notes = extract_slide_notes(document, tmp_path / "extract")

    assert [note.index for note in notes] == list(range(1, 13))
    assert [note.text for note in notes][8:11] == ["note 9", "note 10", "note 11"]


def test_sorted_note_parts_ignores_other_files():
    names = ["notesSlide10.xml", "notesSlide2.xml", "_rels", "notesSlide1.xml", "notesSlide3.xml.rels"]

    assert sorted_note_parts(names) == ["notesSlide1.xml", "notesSlide2.xml", "notesSlide10.xml"]


def test_slide_number_placeholder_is_excluded():
    xml = note_xml(
        shape_xml("Hello", ph_type="body", name="Notes Placeholder 2"),
        shape_xml("3", ph_type="sldNum", name="Slide Number Placeholder 3"),
    )

    assert parse_note_xml(xml) == "Hello"


def test_date_footer_header_are_excluded_and_whitespace_collapsed():
    xml = note_xml(
        shape_xml("2025/01/01", ph_type="dt"),
        shape_xml("  Welcome   to\n the   show  ", ph_type="body"),
        shape_xml("Company", ph_type="ftr"),
        shape_xml("Confidential", ph_type="hdr"),
    )

    assert parse_note_xml(xml) == "Welcome to the show"


def test_notes_placeholder_name_counts_as_body():
    xml = note_xml(
        shape_xml("Named body", ph_type=None, name="Notes Placeholder 2"),
        shape_xml("Other object", ph_type=None, name="Content Placeholder 4"),
    )

    assert parse_note_xml(xml) == "Named body"


def test_fallback_uses_remaining_shapes_when_no_body():
    xml = note_xml(
        shape_xml("Loose text", with_ph=False, name="TextBox 5"),
        shape_xml("7", ph_type="sldNum"),
    )

    assert parse_note_xml(xml) == "Loose text"


def test_corrupt_note_part_degrades_to_empty(tmp_path):
    document = write_presentation(
        tmp_path / "deck.pptx",
        {
            "notesSlide1.xml": body_note("first"),
            "notesSlide2.xml": "<p:notes><unclosed>",
            "notesSlide3.xml": body_note("third"),
        },
    )

    notes = extract_slide_notes(document, tmp_path / "extract")

    assert [note.text for note in notes] == ["first", "", "third"]


def test_presentation_without_notes_yields_nothing(tmp_path):
    document = write_presentation(tmp_path / "deck.pptx", {})

    assert extract_slide_notes(document, tmp_path / "extract") == []


def test_unreadable_archive_raises_extraction_error(tmp_path):
    broken = tmp_path / "broken.pptx"
    broken.write_bytes(b"definitely not a zip")

    with pytest.raises(ExtractionError) as excinfo:
        extract_slide_notes(broken, tmp_path / "extract")

    assert excinfo.value.stage == "extract"


@pytest.mark.parametrize(
    "error",
    [
        NotImplementedError("That compression method is not supported"),
        RuntimeError("File 'ppt/notesSlides/notesSlide1.xml' is encrypted, password required for extraction"),
    ],
)
def test_unsupported_archive_members_raise_extraction_error(tmp_path, monkeypatch, error):
    document = write_presentation(tmp_path / "deck.pptx", {"notesSlide1.xml": body_note("first")})

    def refuse(self, path=None, members=None, pwd=None):
        raise error

    monkeypatch.setattr(zipfile.ZipFile, "extractall", refuse)

    with pytest.raises(ExtractionError) as excinfo:
        extract_slide_notes(document, tmp_path / "extract")

    assert excinfo.value.diagnostics["error"] == str(error)
