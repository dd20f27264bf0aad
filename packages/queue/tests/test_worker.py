"""Tests for WorkerPool."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from mrlens_core.config import QueueConfig
from mrlens_core.errors import PlatformError, SchemaViolationError
from mrlens_queue.executor import ExecutionResult, TaskExecutor
from mrlens_queue.retry import RetryPolicy
from mrlens_queue.worker import PoolSaturatedError, WorkerPool
from mrlens_store.models import NewTask
from mrlens_store.sqlite import SQLiteStore


@pytest.fixture
def store(tmp_path):
    s = SQLiteStore(db_path=str(tmp_path / "queue.db"))
    yield s
    s.close()


def _claim(store, mr_iid=1, max_retries=3, now=None):
    store.enqueue(NewTask(project_id="7", mr_iid=mr_iid, triggered_by="manual", max_retries=max_retries))
    return store.dequeue("w", now=now)


def _executor(outcome):
    """An executor whose execute() returns ExecutionResult built from ``outcome``."""
    executor = MagicMock(spec=TaskExecutor)

    def execute(task):
        if isinstance(outcome, BaseException):
            return ExecutionResult(success=False, task_id=task.id, review_id=50, error=outcome, duration_ms=3)
        return ExecutionResult(success=True, task_id=task.id, review_id=50, duration_ms=3)

    executor.execute.side_effect = execute
    return executor


def _pool(store, executor, max_concurrent=2):
    policy = RetryPolicy(QueueConfig(max_retries=3, retry_backoff_ms=1_000))
    return WorkerPool(executor, store, policy, max_concurrent, worker_id="test-pool")


class TestOutcomes:
    def test_success_marks_completed(self, store):
        task = _claim(store)
        pool = _pool(store, _executor(None))

        result = pool.execute(task).result(timeout=5)
        pool.shutdown()

        assert result.success
        stored = store.get_task(task.id)
        assert stored.status == "completed"
        assert stored.review_id == 50
        assert pool.stats().completed_tasks == 1
        assert pool.stats().failed_tasks == 0

    def test_retryable_failure_rescheduled(self, store):
        task = _claim(store)
        pool = _pool(store, _executor(PlatformError("bad gateway", status_code=502)))

        pool.execute(task).result(timeout=5)
        pool.shutdown()

        stored = store.get_task(task.id)
        assert stored.status == "pending"
        assert stored.attempt_number == 2
        assert stored.next_retry_at is not None
        assert stored.review_id == 50
        assert pool.stats().failed_tasks == 1

    def test_permanent_failure(self, store):
        task = _claim(store)
        pool = _pool(store, _executor(SchemaViolationError("bad output")))
        pool.execute(task).result(timeout=5)
        pool.shutdown()
        stored = store.get_task(task.id)
        assert stored.status == "failed"
        assert stored.last_error_type == "SchemaViolationError"

    def test_exhausted_retries_fail(self, store):
        task = _claim(store, max_retries=1)
        pool = _pool(store, _executor(TimeoutError("slow")))
        pool.execute(task).result(timeout=5)
        pool.shutdown()
        assert store.get_task(task.id).status == "failed"

    def test_unexpected_executor_error_recorded(self, store):
        task = _claim(store)
        executor = MagicMock(spec=TaskExecutor)
        executor.execute.side_effect = ConnectionError("socket closed")
        pool = _pool(store, executor)

        result = pool.execute(task).result(timeout=5)
        pool.shutdown()

        assert result.success is False
        assert store.get_task(task.id).status == "pending"


class TestAdmission:
    def test_saturation_and_drain(self, store):
        gate = threading.Event()
        started = threading.Semaphore(0)
        executor = MagicMock(spec=TaskExecutor)

        def execute(task):
            started.release()
            gate.wait(timeout=5)
            return ExecutionResult(success=True, task_id=task.id, review_id=1)

        executor.execute.side_effect = execute
        pool = _pool(store, executor, max_concurrent=2)
        tasks = [_claim(store, mr_iid=i) for i in range(3)]

        pool.execute(tasks[0])
        pool.execute(tasks[1])
        assert pool.running_count == 2
        with pytest.raises(PoolSaturatedError):
            pool.execute(tasks[2])

        started.acquire(timeout=5)
        started.acquire(timeout=5)
        gate.set()
        pool.drain(timeout=5)

        assert pool.running_count == 0
        assert store.get_stats()["completed"] == 2
        assert store.get_task(tasks[2].id).status == "running"
        pool.shutdown()

    def test_stale_run_cannot_overwrite_new_claim(self, store):
        gate = threading.Event()
        executor = MagicMock(spec=TaskExecutor)

        def execute(task):
            if task.locked_at == 1_000:
                gate.wait(timeout=5)
                return ExecutionResult(success=False, task_id=task.id, error=SchemaViolationError("late"))
            return ExecutionResult(success=True, task_id=task.id, review_id=2)

        executor.execute.side_effect = execute
        pool = _pool(store, executor)

        stale = _claim(store, now=1_000)
        first = pool.execute(stale)
        store.release_lock(stale.id)
        fresh = store.dequeue("w", now=2_000)
        pool.execute(fresh).result(timeout=5)
        gate.set()
        first.result(timeout=5)
        pool.shutdown()

        stored = store.get_task(stale.id)
        assert stored.status == "completed"
        assert stored.review_id == 2

    def test_stats(self, store):
        pool = _pool(store, _executor(None), max_concurrent=4)
        stats = pool.stats()
        assert stats.worker_id == "test-pool"
        assert stats.running_tasks == 0
        assert stats.start_time > 0
        pool.shutdown()
