"""Parsing lifecycle: status transitions and progress persisted between chunks."""

import logging
import math
import uuid
from datetime import datetime, timedelta, timezone

from docengine.agents.models import JobStatus, ParsingProgress
from docengine.core.database import DocumentDatabase
from docengine.core.errors import JobNotFoundError

logger = logging.getLogger(__name__)


def calculate_progress(current_page: int, total_pages: int, pages_per_chunk: int) -> ParsingProgress:
    """Progress after the chunk starting at ``current_page`` has been merged."""
    total_chunks = math.ceil(total_pages / pages_per_chunk) if total_pages else 0
    chunks_completed = min(math.ceil(current_page / pages_per_chunk), total_chunks)
    last_page = min(current_page + pages_per_chunk - 1, total_pages)
    return ParsingProgress(
        current_page=last_page,
        total_pages=total_pages,
        chunks_completed=chunks_completed,
        total_chunks=total_chunks,
    )


class ParsingTracker:
    """Owns the parsing state machine of document jobs.

    pending → processing → completed, or pending|processing → failed.
    Every write after ``start_job`` carries the job token, so a restarted
    job cannot be overwritten by the chunk chain it replaced.
    """

    def __init__(self, db: DocumentDatabase):
        self.db = db

    def start_job(self, document_id: str, document_type: str, file_path: str) -> str:
        """Reset the document to a fresh pending job and return its token."""
        self.db.ensure_document(document_id, document_type, file_path)
        previous = self.db.get_document(document_id)
        if previous and previous["parsing_status"] == "processing":
            logger.warning(
                "Document %s: restarting while job %s is still processing",
                document_id, previous["job_token"],
            )

        token = uuid.uuid4().hex
        self.db.transition(
            document_id, "pending", job_token=token,
            parsing_progress=None, ocr_data=None,
            parsing_started_at=_now(), parsing_completed_at=None,
        )
        logger.info("Document %s: job %s created", document_id, token)
        return token

    def mark_processing(
        self, document_id: str, token: str | None, total_pages: int, total_chunks: int
    ) -> None:
        progress = ParsingProgress(
            current_page=0,
            total_pages=total_pages,
            chunks_completed=0,
            total_chunks=total_chunks,
        )
        self.db.transition(
            document_id, "processing", expected_token=token,
            parsing_progress=progress.model_dump(exclude_none=True),
        )
        logger.info(
            "Document %s: processing %d pages in %d chunks",
            document_id, total_pages, total_chunks,
        )

    def record_progress(
        self, document_id: str, token: str | None, progress: ParsingProgress, fields: dict
    ) -> None:
        """Persist progress and in-progress fields after a non-final chunk."""
        self.db.transition(
            document_id, "processing", expected_token=token,
            parsing_progress=progress.model_dump(exclude_none=True),
            ocr_data=fields,
        )
        logger.info(
            "Document %s: chunk %d/%d done (page %d/%d)",
            document_id, progress.chunks_completed, progress.total_chunks,
            progress.current_page, progress.total_pages,
        )

    def mark_completed(
        self,
        document_id: str,
        token: str | None,
        fields: dict,
        total_pages: int,
        total_chunks: int,
    ) -> None:
        progress = ParsingProgress(
            current_page=total_pages,
            total_pages=total_pages,
            chunks_completed=total_chunks,
            total_chunks=total_chunks,
        )
        self.db.transition(
            document_id, "completed", expected_token=token,
            parsing_progress=progress.model_dump(exclude_none=True),
            ocr_data=fields,
            parsing_completed_at=_now(),
        )
        logger.info("Document %s: parsing completed (%d fields)", document_id, len(fields))

    def mark_failed(
        self,
        document_id: str,
        token: str | None,
        error: str,
        failed_at_page: int | None = None,
    ) -> None:
        """Record an unrecoverable error; keeps page counts already known."""
        record = self.db.get_document(document_id)
        if record is None:
            raise JobNotFoundError(f"Document {document_id} not found")

        progress = ParsingProgress.model_validate(record["parsing_progress"] or {})
        progress.error = error or "Unknown error"
        progress.failed_at_page = failed_at_page
        self.db.transition(
            document_id, "failed", expected_token=token,
            parsing_progress=progress.model_dump(exclude_none=True),
        )
        logger.error("Document %s: parsing failed: %s", document_id, error)

    def get_status(self, document_id: str) -> JobStatus:
        record = self.db.get_document(document_id)
        if record is None:
            raise JobNotFoundError(f"Document {document_id} not found")
        record["document_id"] = record.pop("id")
        return JobStatus.model_validate(record)

    def get_stats(self) -> dict:
        """Job counts per parsing status plus a total."""
        return self.db.get_parsing_stats()

    def list_jobs(self, status: str) -> list[JobStatus]:
        jobs = []
        for record in self.db.get_documents_by_status(status):
            record["document_id"] = record.pop("id")
            jobs.append(JobStatus.model_validate(record))
        return jobs

    def fail_stale_jobs(self, max_age: timedelta) -> list[str]:
        """Fail processing jobs whose continuation never arrived within ``max_age``."""
        failed: list[str] = []
        for record in self.db.find_stale("processing", max_age):
            minutes = int(max_age.total_seconds() // 60)
            progress = record["parsing_progress"] or {}
            self.mark_failed(
                record["id"],
                record["job_token"],
                f"No progress for {minutes} minutes; continuation lost",
                failed_at_page=(progress.get("current_page") or 0) + 1,
            )
            failed.append(record["id"])
        if failed:
            logger.warning("Failed %d stale jobs: %s", len(failed), ", ".join(failed))
        return failed


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
