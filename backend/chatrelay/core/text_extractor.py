"""
Best-effort plain-text extraction from uploaded files
"""
import base64
import binascii
import csv
import io
import json
from pathlib import PurePath
from typing import Callable, Dict, List, Optional

import docx
from pypdf import PdfReader

from chatrelay.core.errors import ExtractionError, ValidationError
from chatrelay.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

PLAIN_TEXT_EXTENSIONS = {".txt", ".md", ".markdown", ".json", ".log"}


def decode_upload(data: str) -> bytes:
    """
    Decode the base64 payload of an uploaded file.

    Browsers usually send a data URL (``data:<mime>;base64,<payload>``), so the
    prefix is stripped when present.
    """
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("File payload is not valid base64", details=str(e))


def _extract_plain(name: str, data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ExtractionError(f"Could not decode {name} as UTF-8", name) from e


def _extract_delimited(name: str, data: bytes, delimiter: str) -> str:
    """Parse delimited records keyed by the header row and serialize them as JSON"""
    try:
        text = data.decode("utf-8-sig")
        reader = csv.DictReader(io.StringIO(text), delimiter=delimiter, restkey="_extra", strict=True)
        records: List[Dict] = [dict(row) for row in reader]
    except (UnicodeDecodeError, csv.Error) as e:
        raise ExtractionError(f"Could not parse {name} as delimited records", name) from e
    if not records and reader.fieldnames:
        # Header only: keep the column names
        return json.dumps({"columns": reader.fieldnames, "rows": []}, ensure_ascii=False, indent=2)
    return json.dumps(records, ensure_ascii=False, indent=2)


def _extract_pdf(name: str, data: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except Exception as e:
        raise ExtractionError(f"Could not read PDF {name}", name) from e
    return "\n\n".join(page.strip() for page in pages if page.strip())


def _extract_docx(name: str, data: bytes) -> str:
    try:
        document = docx.Document(io.BytesIO(data))
    except Exception as e:
        raise ExtractionError(f"Could not read DOCX {name}", name) from e
    return "\n".join(p.text for p in document.paragraphs if p.text and p.text.strip())


def _extract_fallback(name: str, data: bytes) -> str:
    # Binary formats come out as garbage here; that is accepted.
    return data.decode("utf-8", errors="replace")


_EXTRACTORS: Dict[str, Callable[[str, bytes], str]] = {
    ".csv": lambda name, data: _extract_delimited(name, data, ","),
    ".tsv": lambda name, data: _extract_delimited(name, data, "\t"),
    ".pdf": _extract_pdf,
    ".docx": _extract_docx,
}
for _ext in PLAIN_TEXT_EXTENSIONS:
    _EXTRACTORS[_ext] = _extract_plain


def extract_text(name: str, data: bytes) -> str:
    """
    Return the text contents of a file, dispatching on its lowercase extension.

    Raises:
        ExtractionError: if the file has a recognized extension but cannot be parsed
    """
    ext = PurePath(name or "").suffix.lower()
    extractor = _EXTRACTORS.get(ext, _extract_fallback)
    text = extractor(name, data)
    logger.debug(
        "Extracted file text",
        extra={"file_name": name, "extension": ext or None, "chars": len(text)}
    )
    return text


def truncate(text: str, max_chars: Optional[int]) -> str:
    """Cut extracted text down to the configured budget"""
    if max_chars is None or len(text) <= max_chars:
        return text
    return text[:max_chars] + "\n[... truncated ...]"
