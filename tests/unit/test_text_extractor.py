"""Text extraction, validation and cleaning."""

import docx
import pytest

from resumeflow.core.errors import ExtractionFailure, FileMissing, TextTooLong, TextTooSparse, UnsupportedFormat
from resumeflow.core.extraction import text_extractor
from resumeflow.core.models.enums import FileKind


def _words(count: int) -> str:
    return " ".join(f"word{i}" for i in range(count))


def test_unknown_extension_fails_before_reading(tmp_path):
    with pytest.raises(UnsupportedFormat) as exc:
        text_extractor.extract(tmp_path / "resume.odt")
    assert str(exc.value) == "Unsupported file type: .odt"


def test_missing_file_is_extraction_failure(tmp_path):
    with pytest.raises(FileMissing):
        text_extractor.extract(tmp_path / "gone.pdf")
    assert issubclass(FileMissing, ExtractionFailure)


def test_detect_kind_is_case_insensitive():
    assert text_extractor.detect_kind("CV.PDF") == FileKind.PDF
    assert text_extractor.detect_kind("cv.doc") == FileKind.DOCX
    assert text_extractor.detect_kind("cv.txt") == FileKind.TXT


def test_txt_extraction(tmp_path, resume_text):
    path = tmp_path / "cv.txt"
    path.write_text(resume_text, encoding="utf-8")
    assert text_extractor.extract(path) == resume_text


def test_docx_extraction_includes_tables(tmp_path):
    document = docx.Document()
    document.add_paragraph("Jane Doe")
    document.add_paragraph("Python developer")
    table = document.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Skills"
    table.rows[0].cells[1].text = "Python, SQL"
    path = tmp_path / "cv.docx"
    document.save(str(path))

    text = text_extractor.extract(path)
    assert "Jane Doe" in text
    assert "Skills | Python, SQL" in text


def test_corrupt_docx_wraps_error(tmp_path):
    path = tmp_path / "cv.docx"
    path.write_bytes(b"not a zip archive")
    with pytest.raises(ExtractionFailure) as exc:
        text_extractor.extract(path)
    assert str(exc.value).startswith("Text extraction failed:")


def test_validate_reasons():
    assert text_extractor.validate("short text") == (False, "Text too short (< 100 characters)")
    assert text_extractor.validate(_words(40)) == (False, "Not enough words (< 50)")
    assert text_extractor.validate("x" * 50_001) == (False, "Text too long (> 50000 characters)")
    assert text_extractor.validate(_words(60)).valid


def test_ensure_valid_raises_taxonomy_errors():
    with pytest.raises(TextTooSparse) as exc:
        text_extractor.ensure_valid(_words(40))
    assert str(exc.value) == "Invalid CV text: Not enough words (< 50)"

    with pytest.raises(TextTooLong):
        text_extractor.ensure_valid("word " * 12_000)


def test_extract_clean_text_rejects_sparse_file(tmp_path):
    path = tmp_path / "cv.txt"
    path.write_text(_words(40), encoding="utf-8")
    with pytest.raises(TextTooSparse):
        text_extractor.extract_clean_text(path)


def test_clean_normalizes_bullets_lines_and_punctuation():
    raw = "• Python developer\n• 5 years experience!!\nSkills: C++, C#"
    assert text_extractor.clean(raw) == "Python developer. 5 years experience! Skills: C++, C#."


def test_clean_keeps_vietnamese_and_drops_other_scripts():
    assert text_extractor.clean("Kỹ sư phần mềm 日本語\n\n\nHà Nội") == "Kỹ sư phần mềm. Hà Nội."


def test_clean_strips_zero_width_and_collapses_spaces():
    assert text_extractor.clean("Py\u200bthon    \t  dev\ufeff ,, ok") == "Python dev, ok."


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "• Python developer\n• 5 years experience!!\nSkills: C++, C#",
        ". leading dot\n\n, comma line ...\n???",
        "Email: a.b@example.com\r\nPhone: +84 912 345 678 ; ; \n- dash line -",
        "Tiếng Việt có dấú và 中文 (mixed) [tags] 100% & more",
        "a . . , b ! ? c\n\n\n d\te",
    ],
)
def test_clean_is_idempotent(raw, resume_text):
    once = text_extractor.clean(raw)
    assert text_extractor.clean(once) == once

    cleaned = text_extractor.clean(resume_text)
    assert text_extractor.clean(cleaned) == cleaned


def test_validate_upload_enforces_size(tmp_path):
    path = tmp_path / "cv.pdf"
    path.write_bytes(b"%PDF-1.4" + b"0" * 2048)
    assert text_extractor.validate_upload(path) == FileKind.PDF
    with pytest.raises(ExtractionFailure):
        text_extractor.validate_upload(path, max_bytes=1024)
