"""Bounded pool of concurrent task executions.

Admission is a hard, non-blocking check: execute() raises PoolSaturatedError
when max_concurrent executions are already in flight. The scheduler sizes
its dequeues so that this does not happen in normal operation.

The pool owns the queue-side outcome of every execution: success marks the
task completed, failure consults the retry policy and either schedules the
next attempt or fails the task for good. Queue writes carry the claim's
lock token, so a run whose task was meanwhile recovered as stuck and claimed
again cannot overwrite the newer claim's state.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from functools import partial

from mrlens_queue.executor import ExecutionResult, TaskExecutor
from mrlens_queue.retry import RetryPolicy
from mrlens_store.base import BaseStore
from mrlens_store.models import QueueTask

logger = logging.getLogger(__name__)


class PoolSaturatedError(RuntimeError):
    """Raised when a task is submitted to a pool that is already full."""


@dataclass
class WorkerStats:
    worker_id: str
    running_tasks: int
    completed_tasks: int
    failed_tasks: int
    start_time: int  # epoch ms


class WorkerPool:
    def __init__(
        self,
        executor: TaskExecutor,
        store: BaseStore,
        retry_policy: RetryPolicy,
        max_concurrent: int,
        worker_id: str = "pool",
    ):
        self.executor = executor
        self.store = store
        self.retry_policy = retry_policy
        self.max_concurrent = max_concurrent
        self.worker_id = worker_id
        self.start_time = int(time.time() * 1000)
        self._threads = ThreadPoolExecutor(max_workers=max_concurrent, thread_name_prefix="mrlens-worker")
        # RLock: a future that is already done runs its callback in the submitting thread.
        self._lock = threading.RLock()
        # Keyed by (task id, lock token): a recovered task may be claimed again while its old run is in flight.
        self._active: dict[tuple[int, int | None], Future] = {}
        self._completed = 0
        self._failed = 0

    @property
    def running_count(self) -> int:
        with self._lock:
            return len(self._active)

    def execute(self, task: QueueTask) -> Future:
        """Start ``task`` in the background and return its future."""
        with self._lock:
            if len(self._active) >= self.max_concurrent:
                raise PoolSaturatedError(f"Max concurrent tasks limit reached: {self.max_concurrent}")
            key = (task.id, task.locked_at)
            logger.debug("Submitting task %d (%d active)", task.id, len(self._active))
            future = self._threads.submit(self._run, task)
            self._active[key] = future
            future.add_done_callback(partial(self._discard, key))
            return future

    def drain(self, timeout: float | None = None) -> None:
        """Wait for every in-flight execution to finish. Nothing is cancelled."""
        with self._lock:
            futures = list(self._active.values())
        logger.info("Waiting for %d active task(s) to complete...", len(futures))
        wait(futures, timeout=timeout)
        logger.info("All active tasks completed")

    def shutdown(self) -> None:
        self.drain()
        self._threads.shutdown(wait=True)

    def stats(self) -> WorkerStats:
        with self._lock:
            return WorkerStats(
                worker_id=self.worker_id,
                running_tasks=len(self._active),
                completed_tasks=self._completed,
                failed_tasks=self._failed,
                start_time=self.start_time,
            )

    def _discard(self, key: tuple[int, int | None], _future: Future) -> None:
        with self._lock:
            self._active.pop(key, None)

    def _run(self, task: QueueTask) -> ExecutionResult:
        try:
            result = self.executor.execute(task)
            if result.success:
                self.store.mark_completed(task.id, result.review_id, result.duration_ms, lock_token=task.locked_at)
                with self._lock:
                    self._completed += 1
            else:
                self._handle_failure(task, result.error, result.review_id)
                with self._lock:
                    self._failed += 1
            return result
        except Exception as e:
            logger.exception("Unexpected error executing task %d", task.id)
            try:
                self._handle_failure(task, e, None)
            except Exception:
                logger.exception("Could not record failure of task %d", task.id)
            with self._lock:
                self._failed += 1
            return ExecutionResult(success=False, task_id=task.id, error=e)

    def _handle_failure(self, task: QueueTask, error: BaseException, review_id: int | None) -> None:
        if self.retry_policy.should_retry(task.attempt_number, error, max_retries=task.max_retries):
            next_retry_at = self.retry_policy.next_retry_time(task.attempt_number - 1, error)
            self.store.mark_failed(
                task.id, error, next_retry_at=next_retry_at, review_id=review_id, lock_token=task.locked_at
            )
        else:
            self.store.mark_failed(task.id, error, review_id=review_id, lock_token=task.locked_at)
