"""Turn stored résumé files into validated, normalized plain text."""

import re
import unicodedata
from pathlib import Path
from typing import Any, NamedTuple

import docx
import pdfplumber
import PyPDF2

from ..errors import ExtractionFailure, FileMissing, TextTooLong, TextTooSparse, UnsupportedFormat
from ..models.enums import FileKind
from ...observability.logger import get_logger

logger = get_logger(__name__)

EXTENSION_KINDS: dict[str, FileKind] = {
    ".pdf": FileKind.PDF,
    ".doc": FileKind.DOCX,
    ".docx": FileKind.DOCX,
    ".txt": FileKind.TXT,
}

MIN_CHARS = 100
MAX_CHARS = 50_000
MIN_WORDS = 50
MAX_FILE_BYTES = 5 * 1024 * 1024


class TextValidation(NamedTuple):
    valid: bool
    reason: str | None = None


def detect_kind(file_path: str | Path) -> FileKind:
    """Map a file extension to the extractor that handles it."""
    extension = Path(file_path).suffix.lower()
    kind = EXTENSION_KINDS.get(extension)
    if kind is None:
        raise UnsupportedFormat(extension or "<none>")
    return kind


def extract(file_path: str | Path, kind: FileKind | None = None) -> str:
    """Extract raw text from a PDF, DOC/DOCX or TXT file.

    Raises:
        UnsupportedFormat: extension is not supported (checked before any I/O)
        FileMissing: the file does not exist
        ExtractionFailure: the file exists but could not be read
    """
    path = Path(file_path)
    kind = FileKind(kind) if kind else detect_kind(path)

    if not path.exists():
        raise FileMissing(f"Text extraction failed: file not found: {path}")

    try:
        if kind == FileKind.PDF:
            text = _extract_pdf(path)
        elif kind == FileKind.DOCX:
            text = _extract_docx(path)
        else:
            text = path.read_bytes().decode("utf-8", errors="replace")
    except ExtractionFailure:
        raise
    except Exception as e:
        logger.warning("text_extraction_failed", file_path=str(path), kind=kind.value, error=str(e))
        raise ExtractionFailure(f"Text extraction failed: {e}") from e

    logger.info("text_extracted", file_path=str(path), kind=kind.value, text_length=len(text))
    return text


def _extract_pdf(path: Path) -> str:
    """pdfplumber first, PyPDF2 when pdfplumber fails or finds no text."""
    try:
        with pdfplumber.open(path) as pdf:
            parts = [page.extract_text() or "" for page in pdf.pages]
        text = "\n\n".join(part for part in parts if part)
        if text.strip():
            return text
    except Exception as e:
        logger.warning("pdfplumber_failed", file_path=str(path), error=str(e))

    with open(path, "rb") as f:
        reader = PyPDF2.PdfReader(f)
        parts = [page.extract_text() or "" for page in reader.pages]
    text = "\n\n".join(part for part in parts if part)
    logger.info("pdf_extracted_pypdf2", file_path=str(path), text_length=len(text))
    return text


def _extract_docx(path: Path) -> str:
    document: Any = docx.Document(str(path))
    lines = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                lines.append(" | ".join(cells))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate(
    text: str,
    min_chars: int = MIN_CHARS,
    max_chars: int = MAX_CHARS,
    min_words: int = MIN_WORDS,
) -> TextValidation:
    """Check that extracted text is worth sending to the AI client."""
    stripped = (text or "").strip()
    if len(stripped) < min_chars:
        return TextValidation(False, f"Text too short (< {min_chars} characters)")
    if len(stripped) > max_chars:
        return TextValidation(False, f"Text too long (> {max_chars} characters)")
    if len(stripped.split()) < min_words:
        return TextValidation(False, f"Not enough words (< {min_words})")
    return TextValidation(True)


def ensure_valid(text: str, **limits: int) -> None:
    """Raise the matching taxonomy error when ``validate`` rejects ``text``."""
    result = validate(text, **limits)
    if result.valid:
        return
    if result.reason and result.reason.startswith("Text too long"):
        raise TextTooLong(result.reason)
    raise TextTooSparse(result.reason or "invalid text")


def validate_upload(file_path: str | Path, max_bytes: int = MAX_FILE_BYTES) -> FileKind:
    """Check extension and size of an uploaded file before it is queued."""
    path = Path(file_path)
    kind = detect_kind(path)
    if not path.exists():
        raise FileMissing(f"File not found: {path}")
    size = path.stat().st_size
    if size > max_bytes:
        raise ExtractionFailure(f"File size exceeds {max_bytes // (1024 * 1024)}MB limit")
    return kind


# ---------------------------------------------------------------------------
# Cleaning
# ---------------------------------------------------------------------------

_BULLETS = re.compile(r"[•‣⁃∙▪▫■□●○◦▶►➢➤✓✔✗✘★☆◆◇❖·]")
_ZERO_WIDTH = re.compile(r"[\u00ad\u200b-\u200f\u2028\u2029\u202a-\u202e\u2060\ufeff]")
# Basic Latin letters and digits, Latin-1 and Latin Extended (covers Vietnamese),
# and the punctuation that carries meaning in résumés (emails, C++, C#, URLs).
_DISALLOWED = re.compile(
    r"[^0-9A-Za-z\u00c0-\u024f\u1e00-\u1eff\s.,;:!?()\[\]\-+#/@&%'_]"
)
_PUNCT_RUN = re.compile(r"([.,;:!?])(?:\s*[.,;:!?])+")
_SPACE_BEFORE_PUNCT = re.compile(r"\s+([.,;:!?])")
_TERMINAL = ".,;:!?"


def clean(text: str) -> str:
    """Normalize extracted text into a single line of sentences.

    Deterministic and idempotent: ``clean(clean(t)) == clean(t)``.
    """
    if not text:
        return ""

    text = unicodedata.normalize("NFC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _ZERO_WIDTH.sub("", text)
    text = _BULLETS.sub(" ", text)
    text = _DISALLOWED.sub(" ", text)

    sentences = []
    for line in text.split("\n"):
        line = " ".join(line.split())
        if not line:
            continue
        if line[-1] not in _TERMINAL:
            line += "."
        sentences.append(line)

    text = " ".join(sentences)
    text = _PUNCT_RUN.sub(r"\1", text)
    text = _SPACE_BEFORE_PUNCT.sub(r"\1", text)
    return " ".join(text.split())


def extract_clean_text(file_path: str | Path, **limits: int) -> tuple[str, int]:
    """Extract, validate and clean in one step.

    Returns:
        Tuple of (cleaned text, raw extracted length)
    """
    raw = extract(file_path)
    ensure_valid(raw, **limits)
    return clean(raw), len(raw)
