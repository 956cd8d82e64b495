"""HTTP entry point: one POST per chunk invocation, plus job status."""

import logging
from datetime import timedelta
from functools import lru_cache

from fastapi import Body, Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse

from docengine.agents.models import JobStatus, ParsingStatus
from docengine.core.config import Settings
from docengine.core.errors import JobNotFoundError
from docengine.pipeline.orchestrator import ChunkOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache(maxsize=1)
def get_orchestrator() -> ChunkOrchestrator:
    return build_orchestrator(get_settings())


def create_app() -> FastAPI:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    app = FastAPI(title="Document Extraction Engine")

    @app.get("/healthz", response_class=PlainTextResponse)
    def healthcheck() -> str:
        """Liveness probe."""
        return "ok"

    @app.post("/parse-document")
    def parse_document(
        payload: dict = Body(...),
        orchestrator: ChunkOrchestrator = Depends(get_orchestrator),
    ) -> JSONResponse:
        """Run one chunk. Returns as soon as that chunk is done, not the whole job."""
        response = orchestrator.handle_payload(payload)
        return JSONResponse(
            status_code=200 if response.success else 500,
            content=response.model_dump(mode="json", exclude_none=True),
        )

    @app.get("/documents/{document_id}/parsing-status", response_model=JobStatus)
    def parsing_status(
        document_id: str,
        orchestrator: ChunkOrchestrator = Depends(get_orchestrator),
    ) -> JobStatus:
        try:
            return orchestrator.tracker.get_status(document_id)
        except JobNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.get("/maintenance/stats")
    def parsing_stats(orchestrator: ChunkOrchestrator = Depends(get_orchestrator)) -> dict:
        """Job counts per parsing status."""
        return orchestrator.tracker.get_stats()

    @app.get("/documents", response_model=list[JobStatus])
    def list_documents(
        status: ParsingStatus,
        orchestrator: ChunkOrchestrator = Depends(get_orchestrator),
    ) -> list[JobStatus]:
        return orchestrator.tracker.list_jobs(status)

    @app.post("/maintenance/stale-jobs")
    def fail_stale_jobs(
        orchestrator: ChunkOrchestrator = Depends(get_orchestrator),
        settings: Settings = Depends(get_settings),
    ) -> dict:
        """Fail processing jobs whose continuation never arrived."""
        failed = orchestrator.tracker.fail_stale_jobs(
            timedelta(minutes=settings.stale_after_minutes)
        )
        return {"failed": failed, "count": len(failed)}

    return app


app = create_app()
