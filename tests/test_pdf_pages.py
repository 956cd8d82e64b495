"""Tests for page counting, page-range slicing and rendering."""

import fitz
import pytest

from docengine.parsers.pdf_pages import (
    count_pages,
    extract_page_range,
    page_window,
    render_pages,
)


def _page_texts(pdf_bytes: bytes) -> list[str]:
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        return [page.get_text().strip() for page in doc]
    finally:
        doc.close()


# ── Page Count ───────────────────────────────────────────────────────


def test_count_pages(pdf_factory):
    assert count_pages(pdf_factory(7)) == 7


def test_count_pages_invalid_bytes_is_one():
    assert count_pages(b"definitely not a pdf") == 1
    assert count_pages(b"") == 1


# ── Range Extraction ─────────────────────────────────────────────────


def test_extract_middle_range(pdf_factory):
    sliced = extract_page_range(pdf_factory(12), 6, 10)
    texts = _page_texts(sliced)
    assert len(texts) == 5
    assert texts[0] == "Page 6"
    assert texts[-1] == "Page 10"


def test_extract_clamps_end_past_total(pdf_factory):
    texts = _page_texts(extract_page_range(pdf_factory(12), 11, 15))
    assert texts == ["Page 11", "Page 12"]


@pytest.mark.parametrize(
    "start, end, expected",
    [
        (-3, 2, ["Page 1", "Page 2"]),
        (0, 0, ["Page 1"]),
        (9, 20, ["Page 4"]),
        (3, 1, ["Page 3"]),
    ],
)
def test_extract_out_of_range_never_throws(pdf_factory, start, end, expected):
    assert _page_texts(extract_page_range(pdf_factory(4), start, end)) == expected


def test_extract_invalid_bytes_returns_original():
    original = b"%PDF-1.4 broken"
    assert extract_page_range(original, 1, 5) == original


def test_extract_failure_inside_copy_returns_original(pdf_factory, monkeypatch):
    original = pdf_factory(3)

    def boom(*args, **kwargs):
        raise RuntimeError("copy failed")

    monkeypatch.setattr(fitz.Document, "insert_pdf", boom)
    assert extract_page_range(original, 1, 2) == original


# ── Page Window ──────────────────────────────────────────────────────


def test_windows_for_twelve_pages_in_fives():
    assert page_window(1, 5, 12) == (1, 5)
    assert page_window(6, 5, 12) == (6, 10)
    assert page_window(11, 5, 12) == (11, 12)


@pytest.mark.parametrize("total", [1, 2, 5, 9, 13])
@pytest.mark.parametrize("per_chunk", [1, 3, 5])
def test_windows_stay_in_bounds(total, per_chunk):
    current = 1
    covered = []
    while current <= total:
        start, end = page_window(current, per_chunk, total)
        assert 1 <= start <= end <= total
        covered.extend(range(start, end + 1))
        current += per_chunk
    assert covered == list(range(1, total + 1))


# ── Rendering ────────────────────────────────────────────────────────


def test_render_pages_returns_png_per_page(pdf_factory):
    images = render_pages(pdf_factory(2), dpi=50)
    assert len(images) == 2
    assert all(img.startswith(b"\x89PNG") for img in images)
