"""SQLite store for document parsing jobs, one row per document."""

import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

from docengine.core.errors import (
    InvalidTransitionError,
    JobNotFoundError,
    SupersededJobError,
)

logger = logging.getLogger(__name__)

# ── Parsing Lifecycle ────────────────────────────────────────────────

STATUSES = ("pending", "processing", "completed", "failed")

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    # pending → pending re-issues the job token of a job not yet started
    "pending": {"pending", "processing", "completed", "failed"},
    # processing → processing records progress; → pending is a restart
    "processing": {"processing", "completed", "failed", "pending"},
    # Terminal states: only a fresh restart leaves them
    "completed": {"pending"},
    "failed": {"pending"},
}

_JSON_COLUMNS = ("parsing_progress", "ocr_data")

# ── Schema DDL ───────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id                      TEXT PRIMARY KEY,
    document_type           TEXT NOT NULL,
    file_path               TEXT NOT NULL,
    parsing_status          TEXT NOT NULL DEFAULT 'pending'
                            CHECK (parsing_status IN
                                   ('pending', 'processing', 'completed', 'failed')),
    parsing_progress        TEXT,          -- JSON object
    ocr_data                TEXT,          -- JSON object
    job_token               TEXT,
    parsing_started_at      TEXT,
    parsing_completed_at    TEXT,
    created_at              TEXT NOT NULL,
    updated_at              TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(parsing_status);
"""


# ── DocumentDatabase ─────────────────────────────────────────────────


class DocumentDatabase:
    """SQLite state machine for document parsing jobs.

    Continuations and API workers run on other threads, so the connection is
    shared across threads and every statement runs under one lock.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    # ── Documents ────────────────────────────────────────────

    def ensure_document(self, document_id: str, document_type: str, file_path: str) -> None:
        """Insert the record if missing, else refresh its type and path."""
        now = _now()
        with self._lock:
            self._conn.execute(
                """INSERT INTO documents
                   (id, document_type, file_path, parsing_status, created_at, updated_at)
                   VALUES (?, ?, ?, 'pending', ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       document_type = excluded.document_type,
                       file_path = excluded.file_path,
                       updated_at = excluded.updated_at""",
                (document_id, document_type, file_path, now, now),
            )
            self._conn.commit()

    def get_document(self, document_id: str) -> dict | None:
        """Return the job record with JSON columns decoded, or None."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        return _decode(row) if row else None

    def get_documents_by_status(self, status: str) -> list[dict]:
        """Return all documents with the given parsing status."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM documents WHERE parsing_status = ?", (status,)
            ).fetchall()
        return [_decode(r) for r in rows]

    # ── Status ───────────────────────────────────────────────

    def transition(
        self,
        document_id: str,
        new_status: str,
        *,
        expected_token: str | None = None,
        **columns,
    ) -> None:
        """Move a document to a new parsing status, updating extra columns.

        With ``expected_token`` set, the write only lands while the record
        still carries that job token.
        """
        if new_status not in STATUSES:
            raise InvalidTransitionError(f"Invalid status: {new_status}")

        with self._lock:
            row = self._conn.execute(
                "SELECT parsing_status, job_token FROM documents WHERE id = ?",
                (document_id,),
            ).fetchone()
            if row is None:
                raise JobNotFoundError(f"Document {document_id} not found")

            if expected_token is not None and row["job_token"] != expected_token:
                raise SupersededJobError(
                    f"Document {document_id}: job {expected_token} was superseded "
                    f"by job {row['job_token']}"
                )

            current = row["parsing_status"]
            allowed = ALLOWED_TRANSITIONS.get(current, set())
            if new_status not in allowed:
                raise InvalidTransitionError(
                    f"Invalid transition: {current} → {new_status} "
                    f"(allowed: {allowed or 'none'})"
                )

            values = {"parsing_status": new_status, "updated_at": _now()}
            for name, value in columns.items():
                values[name] = json.dumps(value) if name in _JSON_COLUMNS and value is not None else value

            assignments = ", ".join(f"{name} = ?" for name in values)
            self._conn.execute(
                f"UPDATE documents SET {assignments} WHERE id = ?",
                (*values.values(), document_id),
            )
            self._conn.commit()

    def find_stale(self, status: str, older_than: timedelta) -> list[dict]:
        """Documents sitting in ``status`` with no update for ``older_than``."""
        cutoff = (datetime.now(timezone.utc) - older_than).isoformat()
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM documents WHERE parsing_status = ? AND updated_at < ?",
                (status, cutoff),
            ).fetchall()
        return [_decode(r) for r in rows]

    # ── Stats ────────────────────────────────────────────────

    def get_parsing_stats(self) -> dict:
        """Counts per parsing status plus a total."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT parsing_status, COUNT(*) as cnt FROM documents GROUP BY parsing_status"
            ).fetchall()
        stats = {status: 0 for status in STATUSES}
        stats.update({r["parsing_status"]: r["cnt"] for r in rows})
        stats["total_documents"] = sum(stats[s] for s in STATUSES)
        return stats

    # ── Cleanup ──────────────────────────────────────────────

    def close(self) -> None:
        with self._lock:
            self._conn.close()


# ── Helpers ──────────────────────────────────────────────────────────


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode(row: sqlite3.Row) -> dict:
    record = dict(row)
    for name in _JSON_COLUMNS:
        if record.get(name) is not None:
            record[name] = json.loads(record[name])
    return record
