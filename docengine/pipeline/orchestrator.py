"""Chunk orchestrator: runs one chunk end to end and chains the next one."""

import logging
import math
from datetime import datetime, timezone

from pydantic import ValidationError

from docengine.agents.extraction_client import ExtractionClient
from docengine.agents.models import ChunkRequest, ChunkResponse
from docengine.agents.prompts import build_chunk_prompt
from docengine.core.config import DocumentRegistry, Settings, load_document_registry
from docengine.core.database import DocumentDatabase
from docengine.core.errors import SupersededJobError
from docengine.merge.strategies import merge_fields
from docengine.parsers.pdf_pages import count_pages, extract_page_range, page_window
from docengine.pipeline.continuation import HttpDispatcher, ThreadDispatcher
from docengine.pipeline.lifecycle import ParsingTracker, calculate_progress
from docengine.storage.gateway import PDF_MIME, DocumentGateway, LocalObjectStore, detect_mime_kind

logger = logging.getLogger(__name__)


class ChunkOrchestrator:
    """Stateless chunk handler; everything carried between chunks is in the request
    or in the persisted job record."""

    def __init__(
        self,
        tracker: ParsingTracker,
        gateway: DocumentGateway,
        client: ExtractionClient,
        dispatcher,
        registry: DocumentRegistry | None = None,
    ):
        self.tracker = tracker
        self.gateway = gateway
        self.client = client
        self.dispatcher = dispatcher
        self.registry = registry or load_document_registry()

    # ── Entry Points ─────────────────────────────────────────

    def handle_payload(self, payload: dict) -> ChunkResponse:
        """Validate an inbound wire request, then run it."""
        try:
            request = ChunkRequest.model_validate(payload)
        except ValidationError as exc:
            error = f"Invalid request: {_describe_validation(exc)}"
            logger.error(error)
            # Only the chain holding the current job token may fail the job.
            document_id = payload.get("documentId") or payload.get("document_id")
            token = payload.get("jobToken") or payload.get("job_token")
            if isinstance(document_id, str) and document_id and isinstance(token, str) and token:
                self._fail(document_id, token, error, None)
            return ChunkResponse(success=False, status="failed", error=error)
        return self.handle(request)

    def handle(self, request: ChunkRequest) -> ChunkResponse:
        token = request.job_token
        try:
            if request.is_fresh:
                token = self.tracker.start_job(
                    request.document_id, request.document_type, request.source_path
                )
            return self._run_chunk(request, token)
        except SupersededJobError as exc:
            logger.warning("Document %s: dropping chunk: %s", request.document_id, exc)
            return ChunkResponse(success=False, status="failed", error=str(exc))
        except Exception as exc:
            logger.exception(
                "Document %s: chunk from page %d failed",
                request.document_id, request.current_page,
            )
            self._fail(request.document_id, token, str(exc), request.current_page)
            return ChunkResponse(success=False, status="failed", error=str(exc))

    # ── Chunk ────────────────────────────────────────────────

    def _run_chunk(self, request: ChunkRequest, token: str | None) -> ChunkResponse:
        doc_config = self.registry.get(request.document_type)
        chunk_config = self.registry.resolve(request.document_type)
        pages_per_chunk = chunk_config.pages_per_chunk

        data = self.gateway.fetch(request.source_path)
        mime_kind = detect_mime_kind(request.source_path, data)
        is_pdf = mime_kind == PDF_MIME

        total_pages = request.total_pages
        if total_pages == 0:
            total_pages = count_pages(data) if is_pdf else 1
            logger.info("Document %s: %d pages discovered", request.document_id, total_pages)
        total_chunks = math.ceil(total_pages / pages_per_chunk)

        is_first_chunk = request.current_page == 1
        if is_first_chunk:
            self.tracker.mark_processing(request.document_id, token, total_pages, total_chunks)

        start_page, end_page = page_window(request.current_page, pages_per_chunk, total_pages)
        if is_pdf and total_pages > pages_per_chunk:
            chunk_bytes = extract_page_range(data, start_page, end_page)
        else:
            chunk_bytes = data

        prompt = build_chunk_prompt(
            doc_config.prompt,
            request.document_type,
            start_page,
            end_page,
            total_pages,
            request.accumulated_fields,
            doc_config.summary,
        )

        logger.info(
            "Document %s: extracting pages %d-%d of %d",
            request.document_id, start_page, end_page, total_pages,
        )
        result = self.client.extract(
            chunk_bytes, mime_kind, prompt, chunk_config.max_output_tokens
        )
        merged = merge_fields(
            request.accumulated_fields,
            result.as_field_map(),
            request.document_type,
            self.registry,
        )

        next_page = request.current_page + pages_per_chunk
        if next_page <= total_pages:
            progress = calculate_progress(request.current_page, total_pages, pages_per_chunk)
            self.tracker.record_progress(request.document_id, token, progress, merged)
            self.dispatcher.dispatch(
                request.model_copy(
                    update={
                        "current_page": next_page,
                        "total_pages": total_pages,
                        "accumulated_fields": merged,
                        "job_token": token,
                    }
                )
            )
            return ChunkResponse(
                success=True,
                status="processing",
                message=(
                    f"Processed pages {start_page}-{end_page} of {total_pages}; "
                    f"continuing from page {next_page}"
                ),
                data=progress.model_dump(exclude_none=True),
            )

        final = {
            **merged,
            "parsed_at": datetime.now(timezone.utc).isoformat(),
            "document_type": request.document_type,
        }
        self.tracker.mark_completed(request.document_id, token, final, total_pages, total_chunks)
        return ChunkResponse(
            success=True,
            status="completed",
            message=f"Parsed {total_pages} pages in {total_chunks} chunks",
            data=final,
        )

    def _fail(self, document_id: str, token: str | None, error: str, page: int | None) -> None:
        if not token:
            logger.warning("Document %s: no job token, failure not recorded", document_id)
            return
        try:
            self.tracker.mark_failed(document_id, token, error, failed_at_page=page)
        except SupersededJobError as exc:
            logger.warning("Document %s: failure not recorded: %s", document_id, exc)
        except Exception:
            logger.exception("Document %s: could not record failure", document_id)


# ── Assembly ─────────────────────────────────────────────────────────


def build_orchestrator(settings: Settings | None = None) -> ChunkOrchestrator:
    """Wire an orchestrator from settings.

    Continuations go over HTTP when ``self_url`` is set, else to a thread
    in this process.
    """
    settings = settings or Settings.from_env()
    db = DocumentDatabase(settings.db_path)
    gateway = DocumentGateway(
        LocalObjectStore(settings.store_root), retry_delay=settings.download_retry_delay
    )
    client = ExtractionClient(
        model=settings.model,
        render_dpi=settings.render_dpi,
        max_retries=settings.extraction_retries,
        retry_base_delay=settings.retry_base_delay,
    )
    registry = load_document_registry(settings.registry_path)

    if settings.self_url:
        dispatcher = HttpDispatcher(
            settings.self_url.rstrip("/") + "/parse-document",
            timeout=settings.continuation_timeout,
        )
    else:
        dispatcher = ThreadDispatcher()

    orchestrator = ChunkOrchestrator(ParsingTracker(db), gateway, client, dispatcher, registry)
    if isinstance(dispatcher, ThreadDispatcher):
        dispatcher.handler = orchestrator.handle
    return orchestrator


def _describe_validation(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err["loc"]) or "request"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)
