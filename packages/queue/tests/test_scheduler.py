"""Tests for the polling Scheduler."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from mrlens_core.config import QueueConfig
from mrlens_queue.scheduler import Scheduler
from mrlens_queue.worker import PoolSaturatedError, WorkerPool
from mrlens_store.base import BaseStore
from mrlens_store.models import NewTask
from mrlens_store.sqlite import SQLiteStore


@pytest.fixture
def store(tmp_path):
    s = SQLiteStore(db_path=str(tmp_path / "queue.db"))
    yield s
    s.close()


def _pool(running=0):
    pool = MagicMock(spec=WorkerPool)
    pool.running_count = running
    return pool


def _config(**kwargs):
    kwargs.setdefault("max_concurrent_tasks", 3)
    return QueueConfig(**kwargs)


def _fill(store, n):
    return [store.enqueue(NewTask(project_id="7", mr_iid=i, triggered_by="webhook")) for i in range(n)]


# ---------------------------------------------------------------------------
# poll
# ---------------------------------------------------------------------------


class TestPoll:
    def test_dispatches_up_to_free_slots(self, store):
        _fill(store, 5)
        pool = _pool()
        scheduler = Scheduler(store, pool, _config(), worker_id="sched-1")

        assert scheduler.poll() == 3
        assert pool.execute.call_count == 3
        stats = store.get_stats()
        assert stats["running"] == 3
        assert stats["pending"] == 2
        assert all(c.args[0].locked_by == "sched-1" for c in pool.execute.call_args_list)

    def test_partial_capacity(self, store):
        _fill(store, 5)
        pool = _pool(running=2)
        assert Scheduler(store, pool, _config()).poll() == 1

    def test_no_free_slots_still_recovers_stuck(self, store):
        _fill(store, 1)
        stuck = store.dequeue("crashed-worker", now=0)
        pool = _pool(running=3)
        scheduler = Scheduler(store, pool, _config(task_timeout_ms=1_000))

        assert scheduler.poll() == 0
        pool.execute.assert_not_called()
        recovered = store.get_task(stuck.id)
        assert recovered.status == "pending"
        assert recovered.attempt_number == 1

    def test_saturated_pool_gives_task_back(self, store):
        (task_id,) = _fill(store, 1)
        pool = _pool()
        pool.execute.side_effect = PoolSaturatedError("full")

        assert Scheduler(store, pool, _config()).poll() == 0
        assert store.get_task(task_id).status == "pending"

    def test_overlapping_poll_skipped(self, store):
        _fill(store, 1)
        pool = _pool()
        scheduler = Scheduler(store, pool, _config())
        scheduler._poll_guard.acquire()
        try:
            assert scheduler.poll() == 0
        finally:
            scheduler._poll_guard.release()
        pool.execute.assert_not_called()

    def test_empty_queue(self, store):
        pool = _pool()
        assert Scheduler(store, pool, _config()).poll() == 0
        pool.execute.assert_not_called()


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


class TestMaintenance:
    def test_recover_only_timed_out(self, store):
        _fill(store, 2)
        old = store.dequeue("w", now=0)
        store.dequeue("w")
        scheduler = Scheduler(store, _pool(), _config(task_timeout_ms=60_000))
        assert scheduler.recover_stuck_tasks() == 1
        assert store.get_task(old.id).status == "pending"

    def test_cleanup_uses_retention(self):
        store = MagicMock(spec=BaseStore)
        store.cleanup_old_tasks.return_value = 4
        scheduler = Scheduler(store, _pool(), _config(retain_completed_days=14))
        assert scheduler.cleanup() == 4
        store.cleanup_old_tasks.assert_called_once_with(14)

    def test_tick_swallows_errors(self):
        store = MagicMock(spec=BaseStore)
        store.dequeue.side_effect = RuntimeError("database is locked")
        scheduler = Scheduler(store, _pool(), _config())

        scheduler._tick(scheduler.poll)  # must not raise

        # The guard is released, so the next poll runs.
        store.dequeue.side_effect = None
        store.dequeue.return_value = None
        store.get_stuck_tasks.return_value = []
        assert scheduler.poll() == 0


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_start_polls_immediately_and_stop_drains(self, store):
        _fill(store, 1)
        pool = _pool()
        scheduler = Scheduler(store, pool, _config(polling_interval_ms=60_000))

        scheduler.start()
        try:
            assert scheduler.running
            pool.execute.assert_called_once()
        finally:
            scheduler.stop()

        assert not scheduler.running
        pool.drain.assert_called_once()

    def test_start_twice_is_noop(self, store):
        scheduler = Scheduler(store, _pool(), _config(polling_interval_ms=60_000))
        scheduler.start()
        threads = list(scheduler._threads)
        scheduler.start()
        assert scheduler._threads == threads
        scheduler.stop()

    def test_stop_when_not_running(self, store):
        pool = _pool()
        Scheduler(store, pool, _config()).stop()
        pool.drain.assert_not_called()

    def test_default_worker_id(self, store):
        assert Scheduler(store, _pool(), _config()).worker_id.startswith("scheduler-")
