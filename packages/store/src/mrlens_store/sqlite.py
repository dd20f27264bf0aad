"""SQLiteStore — the task queue and review history in one local database file.

Why SQLite:
- Batteries included: ships with Python, no extra dependencies.
- The queue needs exactly what SQLite gives cheaply: point inserts, a
  conditional single-row UPDATE for the atomic claim, indexed range scans
  by status and time, and GROUP BY counts.
- One scheduler runs per deployment, so a single writer is the normal case.

Concurrency: one connection shared by the scheduler thread and the worker
threads (check_same_thread=False), with every statement run under a
threading.Lock. The claim in dequeue() is still a conditional UPDATE checked
by rowcount, so several processes sharing a file never claim the same row.

Schema:
  review_queue    — one row per queued review task
  reviews         — one row per review, kept after the task is purged
  review_logs     — append-only result/error entries per review
  webhook_events  — inbound events, for provenance
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from typing import Any

from mrlens_store.base import BaseStore
from mrlens_store.models import TASK_STATUSES, NewTask, QueueTask, Review, ReviewLog

logger = logging.getLogger(__name__)

_DAY_MS = 24 * 60 * 60 * 1000

# Candidates examined per dequeue when another process wins a claim race.
_CLAIM_CANDIDATES = 5

_SCHEMA = """
CREATE TABLE IF NOT EXISTS review_queue (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id          TEXT NOT NULL,
    mr_iid              INTEGER NOT NULL,
    project_path        TEXT NOT NULL DEFAULT '',
    mr_title            TEXT NOT NULL DEFAULT '',
    mr_author           TEXT NOT NULL DEFAULT '',
    mr_description      TEXT,
    source_branch       TEXT NOT NULL DEFAULT '',
    target_branch       TEXT NOT NULL DEFAULT '',
    status              TEXT NOT NULL DEFAULT 'pending',
    priority            INTEGER NOT NULL DEFAULT 5,
    scheduled_at        INTEGER,
    locked_at           INTEGER,
    locked_by           TEXT,
    attempt_number      INTEGER NOT NULL DEFAULT 1,
    max_retries         INTEGER NOT NULL DEFAULT 3,
    next_retry_at       INTEGER,
    triggered_by        TEXT NOT NULL,
    trigger_event       TEXT,
    webhook_event_id    INTEGER,
    last_error_type     TEXT,
    last_error_message  TEXT,
    review_id           INTEGER,
    duration_ms         INTEGER,
    created_at          INTEGER NOT NULL,
    updated_at          INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_queue_status_priority ON review_queue (status, priority, created_at);
CREATE INDEX IF NOT EXISTS idx_queue_project_mr ON review_queue (project_id, mr_iid);
CREATE INDEX IF NOT EXISTS idx_queue_locked_at ON review_queue (locked_at);

CREATE TABLE IF NOT EXISTS reviews (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id          TEXT NOT NULL,
    project_path        TEXT NOT NULL DEFAULT '',
    mr_iid              INTEGER NOT NULL,
    mr_title            TEXT NOT NULL DEFAULT '',
    mr_author           TEXT NOT NULL DEFAULT '',
    mr_description      TEXT,
    source_branch       TEXT NOT NULL DEFAULT '',
    target_branch       TEXT NOT NULL DEFAULT '',
    status              TEXT NOT NULL DEFAULT 'pending',
    triggered_by        TEXT NOT NULL,
    trigger_event       TEXT,
    webhook_event_id    INTEGER,
    retry_count         INTEGER NOT NULL DEFAULT 0,
    last_error_message  TEXT,
    started_at          INTEGER,
    completed_at        INTEGER,
    created_at          INTEGER NOT NULL,
    updated_at          INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_reviews_project_mr ON reviews (project_id, mr_iid);
CREATE INDEX IF NOT EXISTS idx_reviews_status ON reviews (status);
CREATE INDEX IF NOT EXISTS idx_reviews_created_at ON reviews (created_at);

CREATE TABLE IF NOT EXISTS review_logs (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    review_id               INTEGER NOT NULL REFERENCES reviews (id) ON DELETE CASCADE,
    log_type                TEXT NOT NULL,
    inline_comments_json    TEXT,
    summary_json            TEXT,
    provider_used           TEXT,
    model_used              TEXT,
    duration_ms             INTEGER,
    inline_comments_posted  INTEGER NOT NULL DEFAULT 0,
    summary_posted          INTEGER NOT NULL DEFAULT 0,
    error_type              TEXT,
    error_message           TEXT,
    error_stack             TEXT,
    retryable               INTEGER NOT NULL DEFAULT 0,
    created_at              INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_review_logs_review_id ON review_logs (review_id);

CREATE TABLE IF NOT EXISTS webhook_events (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    object_kind     TEXT NOT NULL,
    payload_json    TEXT NOT NULL,
    project_id      TEXT,
    mr_iid          INTEGER,
    created_at      INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_webhook_events_kind ON webhook_events (object_kind);
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


class SQLiteStore(BaseStore):
    """Stores the queue and review history in a local SQLite database file.

    The database file path defaults to `.mrlens.db` in the current working
    directory. Configure via .mrlens.yml: `store_path: /path/to/mrlens.db`.
    """

    def __init__(self, db_path: str = ".mrlens.db"):
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
            return cursor

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    # ------------------------------------------------------------------ #
    # Task queue                                                           #
    # ------------------------------------------------------------------ #

    def enqueue(self, task: NewTask) -> int:
        project_id = str(task.project_id)
        now = _now_ms()
        with self._lock:
            existing = self._conn.execute(
                "SELECT id FROM review_queue WHERE project_id=? AND mr_iid=? AND status='pending' LIMIT 1",
                (project_id, task.mr_iid),
            ).fetchone()
            if existing is not None:
                logger.info(
                    "Task %d already pending for %s!%d, returning existing id", existing["id"], project_id, task.mr_iid
                )
                return existing["id"]

            cursor = self._conn.execute(
                """
                INSERT INTO review_queue
                  (project_id, mr_iid, project_path, mr_title, mr_author, mr_description,
                   source_branch, target_branch, status, priority, scheduled_at,
                   max_retries, triggered_by, trigger_event, webhook_event_id, review_id,
                   created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    project_id,
                    task.mr_iid,
                    task.project_path,
                    task.mr_title,
                    task.mr_author,
                    task.mr_description,
                    task.source_branch,
                    task.target_branch,
                    task.priority,
                    task.scheduled_at,
                    task.max_retries,
                    task.triggered_by,
                    task.trigger_event,
                    task.webhook_event_id,
                    task.review_id,
                    now,
                    now,
                ),
            )
            self._conn.commit()
            task_id = cursor.lastrowid

        logger.info("Task %d enqueued for %s!%d (priority %d)", task_id, project_id, task.mr_iid, task.priority)
        return task_id

    def dequeue(self, worker_id: str, now: int | None = None) -> QueueTask | None:
        now = _now_ms() if now is None else now
        with self._lock:
            candidates = self._conn.execute(
                """
                SELECT id FROM review_queue
                WHERE status='pending'
                  AND (scheduled_at IS NULL OR scheduled_at <= ?)
                  AND (next_retry_at IS NULL OR next_retry_at <= ?)
                ORDER BY priority ASC, created_at ASC, id ASC
                LIMIT ?
                """,
                (now, now, _CLAIM_CANDIDATES),
            ).fetchall()
            for candidate in candidates:
                cursor = self._conn.execute(
                    """
                    UPDATE review_queue
                    SET status='running', locked_at=?, locked_by=?, updated_at=?
                    WHERE id=? AND status='pending'
                    """,
                    (now, worker_id, now, candidate["id"]),
                )
                self._conn.commit()
                if cursor.rowcount == 1:
                    row = self._conn.execute("SELECT * FROM review_queue WHERE id=?", (candidate["id"],)).fetchone()
                    task = _row_to_task(row)
                    logger.debug(
                        "Task %d dequeued by %s (%s!%d)", task.id, worker_id, task.project_id, task.mr_iid
                    )
                    return task
        return None

    def release_lock(self, task_id: int) -> bool:
        cursor = self._execute(
            """
            UPDATE review_queue
            SET status='pending', locked_at=NULL, locked_by=NULL, updated_at=?
            WHERE id=? AND status='running'
            """,
            (_now_ms(), task_id),
        )
        released = cursor.rowcount == 1
        if released:
            logger.info("Task %d lock released", task_id)
        return released

    def cancel_task(self, task_id: int) -> bool:
        cursor = self._execute(
            "UPDATE review_queue SET status='cancelled', updated_at=? WHERE id=? AND status='pending'",
            (_now_ms(), task_id),
        )
        cancelled = cursor.rowcount == 1
        if cancelled:
            logger.info("Task %d cancelled", task_id)
        return cancelled

    def mark_completed(
        self, task_id: int, review_id: int, duration_ms: int, lock_token: int | None = None
    ) -> bool:
        sql = """
            UPDATE review_queue
            SET status='completed', review_id=?, duration_ms=?, locked_at=NULL, locked_by=NULL, updated_at=?
            WHERE id=?
        """
        params: tuple = (review_id, duration_ms, _now_ms(), task_id)
        if lock_token is not None:
            sql += " AND status='running' AND locked_at=?"
            params += (lock_token,)
        applied = self._execute(sql, params).rowcount == 1
        if applied:
            logger.info("Task %d completed (review %d, %dms)", task_id, review_id, duration_ms)
        else:
            logger.warning("Task %d completion discarded: claim is no longer current", task_id)
        return applied

    def mark_failed(
        self,
        task_id: int,
        error: BaseException,
        next_retry_at: int | None = None,
        review_id: int | None = None,
        lock_token: int | None = None,
    ) -> bool:
        error_type = type(error).__name__
        error_message = str(error)
        if next_retry_at is not None:
            sql = """
                UPDATE review_queue
                SET status='pending', attempt_number=attempt_number + 1, next_retry_at=?,
                    locked_at=NULL, locked_by=NULL, last_error_type=?, last_error_message=?,
                    review_id=COALESCE(?, review_id), updated_at=?
                WHERE id=?
            """
            params: tuple = (next_retry_at, error_type, error_message, review_id, _now_ms(), task_id)
        else:
            sql = """
                UPDATE review_queue
                SET status='failed', locked_at=NULL, locked_by=NULL, last_error_type=?, last_error_message=?,
                    review_id=COALESCE(?, review_id), updated_at=?
                WHERE id=?
            """
            params = (error_type, error_message, review_id, _now_ms(), task_id)
        if lock_token is not None:
            sql += " AND status='running' AND locked_at=?"
            params += (lock_token,)

        applied = self._execute(sql, params).rowcount == 1
        if not applied:
            logger.warning("Task %d failure discarded: claim is no longer current", task_id)
        elif next_retry_at is not None:
            logger.info("Task %d scheduled for retry at %d (%s)", task_id, next_retry_at, error_type)
        else:
            logger.info("Task %d permanently failed (%s)", task_id, error_type)
        return applied

    def get_stuck_tasks(self, timeout_ms: int, now: int | None = None) -> list[QueueTask]:
        now = _now_ms() if now is None else now
        rows = self._fetchall(
            "SELECT * FROM review_queue WHERE status='running' AND locked_at < ? ORDER BY locked_at",
            (now - timeout_ms,),
        )
        return [_row_to_task(r) for r in rows]

    def cleanup_old_tasks(self, retain_days: int, now: int | None = None) -> int:
        now = _now_ms() if now is None else now
        cursor = self._execute(
            "DELETE FROM review_queue WHERE status='completed' AND updated_at < ?",
            (now - retain_days * _DAY_MS,),
        )
        count = cursor.rowcount
        logger.info("Cleaned up %d completed task(s) older than %d day(s)", count, retain_days)
        return count

    def get_stats(self) -> dict[str, int]:
        stats = {status: 0 for status in TASK_STATUSES}
        for row in self._fetchall("SELECT status, COUNT(*) AS n FROM review_queue GROUP BY status"):
            if row["status"] in stats:
                stats[row["status"]] = row["n"]
        return stats

    def get_task(self, task_id: int) -> QueueTask | None:
        row = self._fetchone("SELECT * FROM review_queue WHERE id=?", (task_id,))
        return _row_to_task(row) if row is not None else None

    def list_tasks(self, status: str | None = None, limit: int = 50) -> list[QueueTask]:
        if status is not None:
            rows = self._fetchall(
                "SELECT * FROM review_queue WHERE status=? ORDER BY created_at DESC, id DESC LIMIT ?",
                (status, limit),
            )
        else:
            rows = self._fetchall("SELECT * FROM review_queue ORDER BY created_at DESC, id DESC LIMIT ?", (limit,))
        return [_row_to_task(r) for r in rows]

    # ------------------------------------------------------------------ #
    # Reviews                                                              #
    # ------------------------------------------------------------------ #

    def create_review(self, task: QueueTask, retry_count: int = 0) -> int:
        now = _now_ms()
        cursor = self._execute(
            """
            INSERT INTO reviews
              (project_id, project_path, mr_iid, mr_title, mr_author, mr_description,
               source_branch, target_branch, status, triggered_by, trigger_event,
               webhook_event_id, retry_count, started_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'running', ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.project_id,
                task.project_path,
                task.mr_iid,
                task.mr_title,
                task.mr_author,
                task.mr_description,
                task.source_branch,
                task.target_branch,
                task.triggered_by,
                task.trigger_event,
                task.webhook_event_id,
                retry_count,
                now,
                now,
                now,
            ),
        )
        return cursor.lastrowid

    def get_review(self, review_id: int) -> Review | None:
        row = self._fetchone("SELECT * FROM reviews WHERE id=?", (review_id,))
        return Review(**dict(row)) if row is not None else None

    def mark_review_running(self, review_id: int, retry_count: int) -> None:
        now = _now_ms()
        self._execute(
            """
            UPDATE reviews
            SET status='running', retry_count=?, started_at=?, completed_at=NULL, updated_at=?
            WHERE id=?
            """,
            (retry_count, now, now, review_id),
        )

    def finish_review(self, review_id: int, status: str, error_message: str | None = None) -> None:
        if status not in ("completed", "failed"):
            raise ValueError(f"A review can only finish as 'completed' or 'failed', got {status!r}")
        now = _now_ms()
        self._execute(
            """
            UPDATE reviews
            SET status=?, last_error_message=COALESCE(?, last_error_message), completed_at=?, updated_at=?
            WHERE id=?
            """,
            (status, error_message, now, now, review_id),
        )

    def list_reviews(
        self,
        project_id: str | None = None,
        mr_iid: int | None = None,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Review]:
        clauses: list[str] = []
        params: list[Any] = []
        if project_id is not None:
            clauses.append("project_id=?")
            params.append(str(project_id))
        if mr_iid is not None:
            clauses.append("mr_iid=?")
            params.append(mr_iid)
        if status is not None:
            clauses.append("status=?")
            params.append(status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(
            f"SELECT * FROM reviews {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            tuple(params) + (limit, offset),
        )
        return [Review(**dict(r)) for r in rows]

    def latest_review_for_mr(self, project_id: str, mr_iid: int) -> Review | None:
        reviews = self.list_reviews(project_id=project_id, mr_iid=mr_iid, limit=1)
        return reviews[0] if reviews else None

    # ------------------------------------------------------------------ #
    # Review logs                                                          #
    # ------------------------------------------------------------------ #

    def add_result_log(
        self,
        review_id: int,
        inline_comments: list[dict],
        summary: dict,
        provider_used: str,
        model_used: str,
        duration_ms: int,
        inline_comments_posted: int,
        summary_posted: bool,
    ) -> int:
        cursor = self._execute(
            """
            INSERT INTO review_logs
              (review_id, log_type, inline_comments_json, summary_json, provider_used, model_used,
               duration_ms, inline_comments_posted, summary_posted, created_at)
            VALUES (?, 'result', ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                review_id,
                json.dumps(inline_comments),
                json.dumps(summary),
                provider_used,
                model_used,
                duration_ms,
                inline_comments_posted,
                int(summary_posted),
                _now_ms(),
            ),
        )
        return cursor.lastrowid

    def add_error_log(
        self,
        review_id: int,
        error_type: str,
        error_message: str,
        error_stack: str | None = None,
        retryable: bool = True,
    ) -> int:
        cursor = self._execute(
            """
            INSERT INTO review_logs
              (review_id, log_type, error_type, error_message, error_stack, retryable, created_at)
            VALUES (?, 'error', ?, ?, ?, ?, ?)
            """,
            (review_id, error_type, error_message, error_stack, int(retryable), _now_ms()),
        )
        return cursor.lastrowid

    def list_review_logs(self, review_id: int) -> list[ReviewLog]:
        rows = self._fetchall("SELECT * FROM review_logs WHERE review_id=? ORDER BY id", (review_id,))
        return [_row_to_log(r) for r in rows]

    # ------------------------------------------------------------------ #
    # Webhook provenance                                                   #
    # ------------------------------------------------------------------ #

    def record_webhook_event(
        self,
        object_kind: str,
        payload: dict,
        project_id: str | None = None,
        mr_iid: int | None = None,
    ) -> int:
        cursor = self._execute(
            "INSERT INTO webhook_events (object_kind, payload_json, project_id, mr_iid, created_at) VALUES (?, ?, ?, ?, ?)",
            (object_kind, json.dumps(payload), None if project_id is None else str(project_id), mr_iid, _now_ms()),
        )
        return cursor.lastrowid

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _row_to_task(row: sqlite3.Row) -> QueueTask:
    return QueueTask(**dict(row))


def _row_to_log(row: sqlite3.Row) -> ReviewLog:
    return ReviewLog(
        id=row["id"],
        review_id=row["review_id"],
        log_type=row["log_type"],
        created_at=row["created_at"],
        inline_comments=json.loads(row["inline_comments_json"] or "[]"),
        summary=json.loads(row["summary_json"]) if row["summary_json"] else None,
        provider_used=row["provider_used"],
        model_used=row["model_used"],
        duration_ms=row["duration_ms"],
        inline_comments_posted=row["inline_comments_posted"],
        summary_posted=bool(row["summary_posted"]),
        error_type=row["error_type"],
        error_message=row["error_message"],
        error_stack=row["error_stack"],
        retryable=bool(row["retryable"]),
    )
