#!/usr/bin/env python3
"""Parse a local document end to end, or inspect and maintain parsing jobs."""

import argparse
import json
import logging
import sys
import time
import uuid
from datetime import timedelta
from pathlib import Path

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import uvicorn

from docengine.agents.models import ChunkRequest
from docengine.api.main import create_app
from docengine.core.config import Settings
from docengine.core.database import STATUSES
from docengine.core.errors import JobNotFoundError
from docengine.pipeline.orchestrator import build_orchestrator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("parse_document")

TERMINAL = ("completed", "failed")


# ── Commands ─────────────────────────────────────────────────────────


def cmd_parse(args: argparse.Namespace, settings: Settings) -> int:
    source = Path(args.file)
    if not source.is_file():
        logger.error("File not found: %s", source)
        return 1

    orchestrator = build_orchestrator(settings)
    document_id = args.document_id or uuid.uuid4().hex[:12]
    object_path = f"{document_id}/{source.name}"
    orchestrator.gateway.store.upload(object_path, source.read_bytes())
    logger.info("Uploaded %s as %s", source, object_path)

    t_start = time.time()
    response = orchestrator.handle(
        ChunkRequest(
            document_id=document_id,
            document_type=args.type,
            source_path=object_path,
        )
    )
    logger.info("First chunk: %s", response.message or response.error)

    # Continuations run on background threads; watch the persisted state.
    status = orchestrator.tracker.get_status(document_id)
    while status.parsing_status not in TERMINAL:
        if time.time() - t_start > args.timeout:
            logger.error("Gave up waiting after %ds (status: %s)", args.timeout, status.parsing_status)
            return 1
        time.sleep(args.poll_interval)
        status = orchestrator.tracker.get_status(document_id)
        if status.parsing_progress:
            p = status.parsing_progress
            logger.info("Progress: chunk %d/%d", p.chunks_completed, p.total_chunks)

    elapsed = time.time() - t_start
    logger.info("Document %s %s in %.1fs", document_id, status.parsing_status, elapsed)
    print(json.dumps(status.model_dump(mode="json"), indent=2, ensure_ascii=False))
    return 0 if status.parsing_status == "completed" else 1


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    orchestrator = build_orchestrator(settings)
    try:
        status = orchestrator.tracker.get_status(args.document_id)
    except JobNotFoundError as exc:
        logger.error("%s", exc)
        return 1
    print(json.dumps(status.model_dump(mode="json"), indent=2, ensure_ascii=False))
    return 0


def cmd_fail_stale(args: argparse.Namespace, settings: Settings) -> int:
    orchestrator = build_orchestrator(settings)
    minutes = args.minutes or settings.stale_after_minutes
    failed = orchestrator.tracker.fail_stale_jobs(timedelta(minutes=minutes))
    logger.info("Failed %d stale jobs", len(failed))
    return 0


def cmd_stats(args: argparse.Namespace, settings: Settings) -> int:
    orchestrator = build_orchestrator(settings)
    if args.status:
        jobs = orchestrator.tracker.list_jobs(args.status)
        print(json.dumps([j.model_dump(mode="json") for j in jobs], indent=2, ensure_ascii=False))
        return 0

    stats = orchestrator.tracker.get_stats()
    for status in STATUSES:
        logger.info("  %-10s %d", status, stats[status])
    logger.info("  %-10s %d", "total", stats["total_documents"])
    return 0


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    uvicorn.run(create_app(), host=args.host, port=args.port)
    return 0


# ── CLI ──────────────────────────────────────────────────────────────


def main() -> int:
    parser = argparse.ArgumentParser(description="Chunked document extraction")
    sub = parser.add_subparsers(dest="command", required=True)

    p_parse = sub.add_parser("parse", help="Parse a local PDF or image")
    p_parse.add_argument("file", help="Path to the document")
    p_parse.add_argument("--type", required=True, help="Document type, e.g. bank_statement")
    p_parse.add_argument("--document-id", default=None)
    p_parse.add_argument("--timeout", type=int, default=1800, help="Seconds to wait")
    p_parse.add_argument("--poll-interval", type=float, default=2.0)

    p_status = sub.add_parser("status", help="Show a document's parsing status")
    p_status.add_argument("document_id")

    p_stale = sub.add_parser("fail-stale", help="Fail jobs stuck in processing")
    p_stale.add_argument("--minutes", type=int, default=None)

    p_stats = sub.add_parser("stats", help="Job counts per status, or the jobs in one status")
    p_stats.add_argument("--status", choices=STATUSES, default=None)

    p_serve = sub.add_parser("serve", help="Run the HTTP parse endpoint")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()
    settings = Settings.from_env()

    commands = {
        "parse": cmd_parse,
        "status": cmd_status,
        "fail-stale": cmd_fail_stale,
        "stats": cmd_stats,
        "serve": cmd_serve,
    }
    return commands[args.command](args, settings)


if __name__ == "__main__":
    sys.exit(main())
