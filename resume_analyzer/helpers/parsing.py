import logging
import re
from enum import Enum
from io import BytesIO
from pathlib import Path
from typing import Tuple
from urllib.parse import unquote, urlparse

import requests
from charset_normalizer import from_bytes
from docx import Document
from pdfminer.high_level import extract_text as pdf_extract
from unstructured.partition.auto import partition

from resume_analyzer.utils.exceptions import AcquisitionError

logging.getLogger("pdfminer").setLevel(logging.ERROR)

MAX_TEXT_LENGTH = 100000


class DocumentKind(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    DOC = "doc"
    IMAGE = "image"
    TEXT = "text"


MAGIC = [
    (b"%PDF", DocumentKind.PDF),
    (b"PK\x03\x04", DocumentKind.DOCX),
    (b"\xd0\xcf\x11\xe0", DocumentKind.DOC),
    (b"\x89PNG", DocumentKind.IMAGE),
    (b"\xff\xd8\xff", DocumentKind.IMAGE),
    (b"GIF8", DocumentKind.IMAGE),
    (b"II*\x00", DocumentKind.IMAGE),
    (b"MM\x00*", DocumentKind.IMAGE),
]

EXTENSIONS = {
    ".pdf": DocumentKind.PDF,
    ".docx": DocumentKind.DOCX,
    ".doc": DocumentKind.DOC,
    ".png": DocumentKind.IMAGE,
    ".jpg": DocumentKind.IMAGE,
    ".jpeg": DocumentKind.IMAGE,
    ".tif": DocumentKind.IMAGE,
    ".tiff": DocumentKind.IMAGE,
    ".gif": DocumentKind.IMAGE,
    ".txt": DocumentKind.TEXT,
    ".text": DocumentKind.TEXT,
    ".md": DocumentKind.TEXT,
}

CONTENT_TYPES = {
    "application/pdf": DocumentKind.PDF,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": DocumentKind.DOCX,
    "application/msword": DocumentKind.DOC,
}

ZERO_WIDTH = re.compile("[\u200b\u200c\u200d\u2060\ufeff]")


def detect_kind(data: bytes, filename: str = "", content_type: str = None) -> DocumentKind:
    """Magic bytes win over the extension, the extension over the declared MIME type"""
    head = data[:8]
    for magic, kind in MAGIC:
        if head.startswith(magic):
            return kind

    ext = Path(filename or "").suffix.lower()
    if ext in EXTENSIONS:
        return EXTENSIONS[ext]

    mime = (content_type or "").split(";")[0].strip().lower()
    if mime in CONTENT_TYPES:
        return CONTENT_TYPES[mime]
    if mime.startswith("image/"):
        return DocumentKind.IMAGE
    return DocumentKind.TEXT


def decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        pass

    best = from_bytes(data).best()
    if best is None:
        raise AcquisitionError("could not detect text encoding")
    return str(best)


def read_txt(data: bytes) -> str:
    return decode_text(data)


def read_docx(data: bytes) -> str:
    doc = Document(BytesIO(data))
    lines = [p.text for p in doc.paragraphs]
    # table cells hold most of the content in template-based CVs
    for table in doc.tables:
        for row in table.rows:
            lines.append(" | ".join(cell.text for cell in row.cells))
    return "\n".join(lines)


def read_with_unstructured(data: bytes, filename: str = "") -> str:
    elems = partition(file=BytesIO(data), metadata_filename=filename or None)
    return "\n".join([e.text for e in elems if hasattr(e, "text") and e.text])


def read_pdf(data: bytes, filename: str = "") -> str:
    try:
        text = pdf_extract(BytesIO(data))
    except Exception:
        text = ""
    if text and text.strip():
        return text
    # scanned PDF or broken text layer, fallback to unstructured
    return read_with_unstructured(data, filename)


def clean_text(x: str, max_length: int = MAX_TEXT_LENGTH) -> str:
    x = ZERO_WIDTH.sub("", x).replace("\r\n", "\n").replace("\r", "\n")
    lines = [re.sub(r"[ \t\f\v]+", " ", line).strip() for line in x.split("\n")]
    x = re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()
    return x[:max_length]


def extract_text_from_bytes(
    data: bytes, filename: str = "", content_type: str = None, max_length: int = MAX_TEXT_LENGTH
) -> str:
    if not data:
        raise AcquisitionError("document is empty")

    kind = detect_kind(data, filename, content_type)
    try:
        if kind == DocumentKind.PDF:
            text = read_pdf(data, filename)
        elif kind == DocumentKind.DOCX:
            text = read_docx(data)
        elif kind in (DocumentKind.DOC, DocumentKind.IMAGE):
            text = read_with_unstructured(data, filename)
        else:
            text = read_txt(data)
    except AcquisitionError:
        raise
    except Exception as e:
        raise AcquisitionError(f"could not read {kind.value} document: {e}", cause=e) from e
    return clean_text(text, max_length)


def read_path(path: str) -> Tuple[bytes, str]:
    p = Path(path)
    if not p.is_file():
        raise AcquisitionError(f"file not found: {path}")
    return p.read_bytes(), p.name


def fetch_url(url: str, timeout: float = 30) -> Tuple[bytes, str, str]:
    """Download a remote document. Returns (content, filename, content_type)"""
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise AcquisitionError(f"could not download {url}: {e}", cause=e) from e

    filename = unquote(Path(urlparse(url).path).name) or "document"
    content_type = resp.headers.get("Content-Type", "").split(";")[0].strip() or None
    return resp.content, filename, content_type
