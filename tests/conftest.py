"""Shared fixtures: generated PDFs, databases and a scripted extraction client."""

from unittest.mock import MagicMock

import pytest
from fpdf import FPDF

from docengine.agents.models import ExtractionResult
from docengine.core.database import DocumentDatabase
from docengine.storage.gateway import DocumentGateway, LocalObjectStore


def make_pdf(num_pages: int) -> bytes:
    """PDF with one line of text per page: 'Page N'."""
    pdf = FPDF()
    pdf.set_font("Helvetica", size=14)
    for n in range(1, num_pages + 1):
        pdf.add_page()
        pdf.cell(w=0, text=f"Page {n}")
    return bytes(pdf.output())


@pytest.fixture()
def pdf_factory():
    return make_pdf


@pytest.fixture()
def db(tmp_path):
    ddb = DocumentDatabase(tmp_path / "documents.db")
    yield ddb
    ddb.close()


@pytest.fixture()
def store(tmp_path):
    return LocalObjectStore(tmp_path / "objects")


@pytest.fixture()
def gateway(store):
    return DocumentGateway(store, retry_delay=0)


class RecordingDispatcher:
    """Collects continuation requests instead of sending them."""

    def __init__(self):
        self.requests = []

    def dispatch(self, request):
        self.requests.append(request)


@pytest.fixture()
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture()
def fake_client():
    """Extraction client whose results are scripted per test via side_effect."""
    client = MagicMock()
    client.extract.return_value = ExtractionResult(fields={})
    return client
