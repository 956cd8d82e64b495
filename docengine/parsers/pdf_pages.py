"""PDF page utilities: page counts, page-range slicing and page rendering."""

import logging

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)


# ── Public API ───────────────────────────────────────────────────────


def count_pages(pdf_bytes: bytes) -> int:
    """Total page count; 1 if the bytes are not a readable PDF."""
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as exc:
        logger.error("Could not read PDF page count, treating as single page: %s", exc)
        return 1
    try:
        return max(doc.page_count, 1)
    finally:
        doc.close()


def page_window(current_page: int, pages_per_chunk: int, total_pages: int) -> tuple[int, int]:
    """1-indexed inclusive page range one chunk covers, kept inside [1, total_pages]."""
    total = max(total_pages, 1)
    start = max(1, min(current_page, total))
    end = max(start, min(current_page + pages_per_chunk - 1, total))
    return start, end


def extract_page_range(pdf_bytes: bytes, start_page: int, end_page: int) -> bytes:
    """Build a standalone PDF holding pages start_page..end_page (1-indexed, inclusive).

    Out-of-range pages are clamped. On any failure the original bytes come
    back unchanged, so the caller parses the whole document instead.
    """
    try:
        src = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as exc:
        logger.error("Page extraction failed, using whole document: %s", exc)
        return pdf_bytes

    try:
        total_pages = src.page_count
        actual_start = max(1, min(start_page, total_pages))
        actual_end = max(actual_start, min(end_page, total_pages))

        out = fitz.open()
        try:
            out.insert_pdf(src, from_page=actual_start - 1, to_page=actual_end - 1)
            sliced = out.tobytes(garbage=1, deflate=True)
        finally:
            out.close()

        logger.info(
            "Extracted pages %d-%d of %d (%d bytes)",
            actual_start, actual_end, total_pages, len(sliced),
        )
        return sliced
    except Exception as exc:
        logger.error(
            "Page extraction %d-%d failed, using whole document: %s",
            start_page, end_page, exc,
        )
        return pdf_bytes
    finally:
        src.close()


def render_pages(pdf_bytes: bytes, dpi: int = 150) -> list[bytes]:
    """Render every page of a PDF to PNG bytes for a vision model."""
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    images: list[bytes] = []
    try:
        for page in doc:
            pix = page.get_pixmap(dpi=dpi)
            images.append(pix.tobytes("png"))
    finally:
        doc.close()
    return images
