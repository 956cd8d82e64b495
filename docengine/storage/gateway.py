"""Object store access: fetch raw document bytes, retry empties, unlock PDFs."""

import logging
import time
from pathlib import Path, PurePosixPath

import fitz  # PyMuPDF

from docengine.core.errors import DocumentNotFoundError, EmptyDocumentError

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"

_EXTENSION_MIME = {
    "pdf": PDF_MIME,
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
}

_MAGIC_MIME = (
    (b"%PDF", PDF_MIME),
    (b"\x89PNG", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
)


# ── Object Store ─────────────────────────────────────────────────────


class LocalObjectStore:
    """Directory-backed object store addressed by relative paths."""

    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(base_dir)

    def _abspath(self, path: str) -> Path:
        rel = PurePosixPath(path)
        if rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"Object path must stay inside the store: {path}")
        return self.base_dir / rel

    def exists(self, path: str) -> bool:
        return self._abspath(path).is_file()

    def download(self, path: str) -> bytes:
        target = self._abspath(path)
        if not target.is_file():
            raise DocumentNotFoundError(f"No object at {path}")
        return target.read_bytes()

    def upload(self, path: str, data: bytes) -> Path:
        target = self._abspath(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return target


# ── Gateway ──────────────────────────────────────────────────────────


class DocumentGateway:
    """Fetches document bytes for the pipeline."""

    def __init__(self, store, retry_delay: float = 1.0):
        self.store = store
        self.retry_delay = retry_delay

    def fetch(self, path: str) -> bytes:
        """Download ``path``, retrying once on empty content.

        PDFs come back re-serialized without encryption when possible.
        """
        data = self.store.download(path)
        if not data:
            logger.warning(
                "Empty download for %s, retrying in %.1fs", path, self.retry_delay
            )
            time.sleep(self.retry_delay)
            data = self.store.download(path)
            if not data:
                raise EmptyDocumentError(f"Document at {path} is empty (0 bytes after retry)")

        logger.info("Fetched %s (%d bytes)", path, len(data))
        if detect_mime_kind(path, data) == PDF_MIME:
            return repair_pdf(data)
        return data


def repair_pdf(pdf_bytes: bytes) -> bytes:
    """Re-save a PDF without encryption or permission flags.

    Returns the original bytes if PyMuPDF cannot load or save it.
    """
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as exc:
        logger.warning("PDF repair skipped, could not load document: %s", exc)
        return pdf_bytes

    try:
        if doc.needs_pass and not doc.authenticate(""):
            logger.warning("PDF repair skipped, document needs a password")
            return pdf_bytes
        encryption = (doc.metadata or {}).get("encryption")
        repaired = doc.tobytes(garbage=1, encryption=fitz.PDF_ENCRYPT_NONE)
        if encryption:
            logger.info("Removed PDF encryption (%s)", encryption)
        return repaired
    except Exception as exc:
        logger.warning("PDF repair failed, using original bytes: %s", exc)
        return pdf_bytes
    finally:
        doc.close()


def detect_mime_kind(path: str, data: bytes = b"") -> str:
    """MIME type from the file extension, else from magic bytes, else JPEG."""
    suffix = PurePosixPath(path).suffix.lower().lstrip(".")
    if suffix in _EXTENSION_MIME:
        return _EXTENSION_MIME[suffix]
    for magic, mime in _MAGIC_MIME:
        if data.startswith(magic):
            return mime
    return "image/jpeg"
