"""Queue and review-history data models.

Decoupled from mrlens_core so the store layer can be used independently and
mrlens_core has no knowledge of persistence concerns. All timestamps are epoch
milliseconds (UTC); None means "not set".
"""

from __future__ import annotations

from dataclasses import dataclass, field

TASK_STATUSES = ("pending", "running", "completed", "failed", "cancelled")
REVIEW_STATUSES = ("pending", "running", "completed", "failed")
TRIGGERS = ("webhook", "manual", "command")

DEFAULT_PRIORITY = 5


@dataclass
class NewTask:
    """What a caller supplies to enqueue a review.

    The MR fields are denormalized so a task is self-describing before any
    Review row exists.
    """

    project_id: str
    mr_iid: int
    triggered_by: str
    project_path: str = ""
    mr_title: str = ""
    mr_author: str = ""
    mr_description: str | None = None
    source_branch: str = ""
    target_branch: str = ""
    priority: int = DEFAULT_PRIORITY  # lower = more urgent
    scheduled_at: int | None = None
    trigger_event: str | None = None
    webhook_event_id: int | None = None
    review_id: int | None = None
    max_retries: int = 3


@dataclass
class QueueTask:
    id: int
    project_id: str
    mr_iid: int
    status: str
    triggered_by: str
    project_path: str = ""
    mr_title: str = ""
    mr_author: str = ""
    mr_description: str | None = None
    source_branch: str = ""
    target_branch: str = ""
    priority: int = DEFAULT_PRIORITY
    scheduled_at: int | None = None
    locked_at: int | None = None
    locked_by: str | None = None
    attempt_number: int = 1
    max_retries: int = 3
    next_retry_at: int | None = None
    trigger_event: str | None = None
    webhook_event_id: int | None = None
    last_error_type: str | None = None
    last_error_message: str | None = None
    review_id: int | None = None
    duration_ms: int | None = None
    created_at: int = 0
    updated_at: int = 0


@dataclass
class Review:
    """The durable record of a review, kept after its queue task is purged."""

    id: int
    project_id: str
    mr_iid: int
    status: str
    triggered_by: str
    project_path: str = ""
    mr_title: str = ""
    mr_author: str = ""
    mr_description: str | None = None
    source_branch: str = ""
    target_branch: str = ""
    trigger_event: str | None = None
    webhook_event_id: int | None = None
    retry_count: int = 0
    last_error_message: str | None = None
    started_at: int | None = None
    completed_at: int | None = None
    created_at: int = 0
    updated_at: int = 0


@dataclass
class ReviewLog:
    """One append-only entry for a review: an analysis result or an error."""

    id: int
    review_id: int
    log_type: str  # "result" | "error"
    created_at: int = 0
    # result fields
    inline_comments: list[dict] = field(default_factory=list)
    summary: dict | None = None
    provider_used: str | None = None
    model_used: str | None = None
    duration_ms: int | None = None
    inline_comments_posted: int = 0
    summary_posted: bool = False
    # error fields
    error_type: str | None = None
    error_message: str | None = None
    error_stack: str | None = None
    retryable: bool = False
