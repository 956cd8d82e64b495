"""Tests for the Ollama extraction client."""

import base64
from unittest.mock import MagicMock, call, patch

import ollama
import pytest

from docengine.agents.extraction_client import ExtractionClient
from docengine.core.errors import ExtractionServiceError, UnreadableDocumentError


def _response(content: str):
    resp = MagicMock()
    resp.message.content = content
    return resp


@pytest.fixture()
def client():
    return ExtractionClient(model="test-vision", render_dpi=50, retry_base_delay=2.0)


# ── Request Shape ────────────────────────────────────────────────────


def test_image_sent_inline(client):
    with patch("docengine.agents.extraction_client.ollama.chat") as mock_chat:
        mock_chat.return_value = _response('{"pan_number": "ABCDE1234F"}')
        result = client.extract(b"\x89PNG fake", "image/png", "Extract PAN.", 1000)

    assert result.fields == {"pan_number": "ABCDE1234F"}
    kwargs = mock_chat.call_args.kwargs
    assert kwargs["model"] == "test-vision"
    assert kwargs["options"]["num_predict"] == 1000
    assert kwargs["options"]["temperature"] == 0
    user = kwargs["messages"][-1]
    assert user["content"] == "Extract PAN."
    assert user["images"] == [base64.b64encode(b"\x89PNG fake").decode()]


def test_pdf_chunk_rendered_page_by_page(client, pdf_factory):
    with patch("docengine.agents.extraction_client.ollama.chat") as mock_chat:
        mock_chat.return_value = _response('{"a": 1}')
        client.extract(pdf_factory(3), "application/pdf", "prompt", 4000)

    images = mock_chat.call_args.kwargs["messages"][-1]["images"]
    assert len(images) == 3
    assert all(base64.b64decode(img).startswith(b"\x89PNG") for img in images)


def test_unrenderable_pdf_raises(client):
    with pytest.raises(UnreadableDocumentError):
        client.extract(b"not a pdf at all", "application/pdf", "prompt", 4000)


# ── Retry Policy ─────────────────────────────────────────────────────


def test_rate_limit_then_success(client):
    with patch("docengine.agents.extraction_client.ollama.chat") as mock_chat, \
         patch("docengine.agents.extraction_client.time.sleep") as mock_sleep:
        mock_chat.side_effect = [
            ollama.ResponseError("slow down", 429),
            _response('{"ok": true}'),
        ]
        result = client.extract(b"img", "image/jpeg", "prompt", 100)

    assert result.fields == {"ok": True}
    assert mock_chat.call_count == 2
    mock_sleep.assert_called_once_with(2.0)


def test_three_rate_limits_raise(client):
    with patch("docengine.agents.extraction_client.ollama.chat") as mock_chat, \
         patch("docengine.agents.extraction_client.time.sleep") as mock_sleep:
        mock_chat.side_effect = ollama.ResponseError("rate limited", 429)
        with pytest.raises(ExtractionServiceError) as excinfo:
            client.extract(b"img", "image/jpeg", "prompt", 100)

    assert excinfo.value.status_code == 429
    assert "rate limited" in excinfo.value.body
    assert mock_chat.call_count == 3
    assert mock_sleep.call_args_list == [call(2.0), call(4.0)]


def test_other_error_not_retried(client):
    with patch("docengine.agents.extraction_client.ollama.chat") as mock_chat, \
         patch("docengine.agents.extraction_client.time.sleep") as mock_sleep:
        mock_chat.side_effect = ollama.ResponseError("model not found", 404)
        with pytest.raises(ExtractionServiceError) as excinfo:
            client.extract(b"img", "image/jpeg", "prompt", 100)

    assert excinfo.value.status_code == 404
    assert "model not found" in str(excinfo.value)
    assert mock_chat.call_count == 1
    mock_sleep.assert_not_called()


# ── Response Handling ────────────────────────────────────────────────


def test_unparseable_response_flags_parse_error(client):
    with patch("docengine.agents.extraction_client.ollama.chat") as mock_chat:
        mock_chat.return_value = _response("Sorry, I cannot read this.")
        result = client.extract(b"img", "image/jpeg", "prompt", 100)

    assert result.parse_error is True
    assert result.fields == {"raw_text": "Sorry, I cannot read this."}


def test_empty_content_flags_parse_error(client):
    with patch("docengine.agents.extraction_client.ollama.chat") as mock_chat:
        mock_chat.return_value = _response(None)
        result = client.extract(b"img", "image/jpeg", "prompt", 100)

    assert result.parse_error is True
