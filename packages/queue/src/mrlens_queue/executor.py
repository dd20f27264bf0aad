"""Turns one claimed QueueTask into a review run.

execute() never raises. Every outcome, including an orchestrator failure,
comes back as an ExecutionResult for the worker pool to act on.
"""

from __future__ import annotations

import logging
import time
import traceback
from dataclasses import dataclass
from typing import Callable

from mrlens_core.orchestrator import ReviewOrchestrator, ReviewRequest
from mrlens_store.base import BaseStore
from mrlens_store.models import QueueTask

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    success: bool
    task_id: int
    review_id: int | None = None
    error: BaseException | None = None
    duration_ms: int = 0


class TaskExecutor:
    def __init__(
        self,
        store: BaseStore,
        orchestrator: ReviewOrchestrator,
        is_retryable: Callable[[BaseException], bool] | None = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.is_retryable = is_retryable or (lambda _e: True)

    def execute(self, task: QueueTask) -> ExecutionResult:
        start = time.monotonic()
        review_id: int | None = None
        logger.info(
            "Executing task %d (%s!%d, attempt %d)", task.id, task.project_id, task.mr_iid, task.attempt_number
        )
        try:
            review_id = self._prepare_review(task)
            result = self.orchestrator.review_merge_request(
                ReviewRequest(
                    project_id=task.project_id,
                    mr_iid=task.mr_iid,
                    review_id=review_id,
                    triggered_by=task.triggered_by,
                    trigger_event=task.trigger_event,
                    webhook_event_id=task.webhook_event_id,
                )
            )
        except Exception as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.error("Task %d failed after %dms: %s", task.id, duration_ms, e)
            if review_id is not None:
                self._fail_review_if_running(review_id, e)
            return ExecutionResult(
                success=False, task_id=task.id, review_id=review_id, error=e, duration_ms=duration_ms
            )

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Task %d completed in %dms (review %d, %d inline comment(s))",
            task.id,
            duration_ms,
            review_id,
            result.inline_comments_posted,
        )
        return ExecutionResult(success=True, task_id=task.id, review_id=review_id, duration_ms=duration_ms)

    def _prepare_review(self, task: QueueTask) -> int:
        retry_count = task.attempt_number - 1
        if task.review_id is not None and self.store.get_review(task.review_id) is not None:
            self.store.mark_review_running(task.review_id, retry_count)
            logger.info("Task %d reusing review %d", task.id, task.review_id)
            return task.review_id
        review_id = self.store.create_review(task, retry_count=retry_count)
        logger.info("Task %d created review %d", task.id, review_id)
        return review_id

    def _fail_review_if_running(self, review_id: int, error: BaseException) -> None:
        # The orchestrator already logged and finished the review on analysis
        # failures; a fetch failure leaves it running.
        try:
            review = self.store.get_review(review_id)
            if review is None or review.status != "running":
                return
            self.store.add_error_log(
                review_id,
                error_type=type(error).__name__,
                error_message=str(error),
                error_stack="".join(traceback.format_exception(type(error), error, error.__traceback__)),
                retryable=self.is_retryable(error),
            )
            self.store.finish_review(review_id, "failed", error_message=str(error))
        except Exception as e:
            logger.error("Could not mark review %d failed: %s", review_id, e)
