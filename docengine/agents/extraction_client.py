"""Extraction client: one multimodal Ollama call per chunk, with rate-limit retry."""

import base64
import logging
import time

import ollama

from docengine.agents.models import ExtractionResult
from docengine.agents.prompts import SYSTEM_PROMPT
from docengine.agents.response_parser import parse_extraction_response
from docengine.core.errors import ExtractionServiceError, UnreadableDocumentError
from docengine.parsers.pdf_pages import render_pages
from docengine.storage.gateway import PDF_MIME

logger = logging.getLogger(__name__)

MODEL = "qwen2.5vl:7b"

_RATE_LIMIT_STATUS = 429
_MAX_RETRIES = 2
_RETRY_BASE_DELAY = 2.0


class ExtractionClient:
    """Sends chunk bytes plus an instruction to a vision model via Ollama."""

    def __init__(
        self,
        model: str = MODEL,
        render_dpi: int = 150,
        max_retries: int = _MAX_RETRIES,
        retry_base_delay: float = _RETRY_BASE_DELAY,
    ):
        self.model = model
        self.render_dpi = render_dpi
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    def extract(
        self,
        chunk_bytes: bytes,
        mime_kind: str,
        prompt: str,
        max_output_tokens: int,
    ) -> ExtractionResult:
        """Extract fields from one chunk. Unparseable output degrades, never raises."""
        images = self._encode_images(chunk_bytes, mime_kind)
        content = self._chat(prompt, images, max_output_tokens)
        logger.info("Extraction response received (%d chars)", len(content))

        result = parse_extraction_response(content)
        if result.parse_error:
            logger.warning("Extraction response was not valid JSON, keeping raw text")
        return result

    # ── Request ──────────────────────────────────────────────

    def _encode_images(self, chunk_bytes: bytes, mime_kind: str) -> list[str]:
        if mime_kind == PDF_MIME:
            try:
                pages = render_pages(chunk_bytes, dpi=self.render_dpi)
            except Exception as exc:
                raise UnreadableDocumentError(f"Could not render PDF pages: {exc}") from exc
            if not pages:
                raise UnreadableDocumentError("PDF chunk has no pages to render")
        else:
            pages = [chunk_bytes]
        return [base64.b64encode(page).decode() for page in pages]

    def _chat(self, prompt: str, images: list[str], max_output_tokens: int) -> str:
        """Call the model, retrying rate-limit responses with exponential backoff."""
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                wait = self.retry_base_delay * 2 ** (attempt - 1)
                logger.warning(
                    "Retry %d/%d after %.1fs", attempt, self.max_retries, wait
                )
                time.sleep(wait)

            try:
                response = ollama.chat(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt, "images": images},
                    ],
                    options={"temperature": 0, "num_predict": max_output_tokens},
                )
            except ollama.ResponseError as exc:
                if exc.status_code == _RATE_LIMIT_STATUS and attempt < self.max_retries:
                    logger.warning("Rate limited (429), will retry...")
                    continue
                logger.error("Extraction service error %s: %s", exc.status_code, exc.error)
                raise ExtractionServiceError(exc.status_code, exc.error) from exc

            return response.message.content or ""

        raise ExtractionServiceError(_RATE_LIMIT_STATUS, "Rate limit exceeded")  # pragma: no cover
