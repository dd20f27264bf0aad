"""Abstract store interface.

The queue, the review pipeline and the CLI depend on BaseStore, not on a
concrete backend. A backend must provide point inserts, a conditional
single-row update for the atomic claim in dequeue(), range scans by status
and time, and grouped counts.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mrlens_store.models import NewTask, QueueTask, Review, ReviewLog


class BaseStore(ABC):
    """Task queue, review history and webhook provenance.

    Time-dependent operations accept an optional ``now`` (epoch ms) so callers
    and tests can pin the clock; it defaults to the current time.
    """

    # ------------------------------------------------------------------ #
    # Task queue                                                           #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def enqueue(self, task: NewTask) -> int:
        """Insert a pending task, or return the id of the pending task already
        queued for the same (project_id, mr_iid)."""

    @abstractmethod
    def dequeue(self, worker_id: str, now: int | None = None) -> QueueTask | None:
        """Claim the most urgent eligible pending task, or return None.

        Eligible: ``scheduled_at`` and ``next_retry_at`` unset or elapsed.
        Order: priority ascending, then creation time ascending. The claim sets
        status=running, locked_at=now and locked_by=worker_id, and no two
        callers ever claim the same task.
        """

    @abstractmethod
    def release_lock(self, task_id: int) -> bool:
        """Return a running task to pending with its lock cleared."""

    @abstractmethod
    def cancel_task(self, task_id: int) -> bool:
        """Cancel a pending task. Tasks in any other state are left alone."""

    @abstractmethod
    def mark_completed(
        self, task_id: int, review_id: int, duration_ms: int, lock_token: int | None = None
    ) -> bool:
        """Mark a task completed.

        With ``lock_token`` (the ``locked_at`` of the caller's claim) the update
        only applies if the claim is still current. Returns whether it applied.
        """

    @abstractmethod
    def mark_failed(
        self,
        task_id: int,
        error: BaseException,
        next_retry_at: int | None = None,
        review_id: int | None = None,
        lock_token: int | None = None,
    ) -> bool:
        """Record a failed attempt.

        With ``next_retry_at`` the task goes back to pending with
        attempt_number + 1 and its lock cleared; without it the task becomes
        terminally failed. ``review_id`` links the task to the Review the
        attempt used so a retry reuses it.
        """

    @abstractmethod
    def get_stuck_tasks(self, timeout_ms: int, now: int | None = None) -> list[QueueTask]:
        """Running tasks whose lock is older than ``timeout_ms``."""

    @abstractmethod
    def cleanup_old_tasks(self, retain_days: int, now: int | None = None) -> int:
        """Delete completed tasks last updated before the retention window."""

    @abstractmethod
    def get_stats(self) -> dict[str, int]:
        """Task counts per status; every status is present."""

    @abstractmethod
    def get_task(self, task_id: int) -> QueueTask | None:
        """Fetch a task by id."""

    @abstractmethod
    def list_tasks(self, status: str | None = None, limit: int = 50) -> list[QueueTask]:
        """Most recent tasks first."""

    # ------------------------------------------------------------------ #
    # Reviews                                                              #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def create_review(self, task: QueueTask, retry_count: int = 0) -> int:
        """Create a running Review from a task's MR fields."""

    @abstractmethod
    def get_review(self, review_id: int) -> Review | None:
        """Fetch a review by id."""

    @abstractmethod
    def mark_review_running(self, review_id: int, retry_count: int) -> None:
        """Restart an existing Review for a new attempt."""

    @abstractmethod
    def finish_review(self, review_id: int, status: str, error_message: str | None = None) -> None:
        """Move a Review to ``completed`` or ``failed``."""

    @abstractmethod
    def list_reviews(
        self,
        project_id: str | None = None,
        mr_iid: int | None = None,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Review]:
        """Most recent reviews first. Returns an empty list if none match."""

    @abstractmethod
    def latest_review_for_mr(self, project_id: str, mr_iid: int) -> Review | None:
        """The most recently created Review of an MR."""

    # ------------------------------------------------------------------ #
    # Review logs                                                          #
    # ------------------------------------------------------------------ #

    @abstractmethod
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
        """Append an analysis-result entry."""

    @abstractmethod
    def add_error_log(
        self,
        review_id: int,
        error_type: str,
        error_message: str,
        error_stack: str | None = None,
        retryable: bool = True,
    ) -> int:
        """Append an error entry."""

    @abstractmethod
    def list_review_logs(self, review_id: int) -> list[ReviewLog]:
        """Entries for a review, oldest first."""

    # ------------------------------------------------------------------ #
    # Webhook provenance                                                   #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def record_webhook_event(
        self,
        object_kind: str,
        payload: dict,
        project_id: str | None = None,
        mr_iid: int | None = None,
    ) -> int:
        """Persist an inbound event and return its id."""

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional — subclasses that need cleanup should override this.
        Default is a no-op so callers can always call close() safely.
        """
