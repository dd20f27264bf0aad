"""Polling scheduler: dequeues work into the worker pool, recovers stuck
tasks, and purges old completed tasks.

Two daemon threads drive it, one per interval, both waiting on the same
threading.Event so stop() wakes them immediately. A poll never blocks on a
review: tasks are handed to the pool and the poll returns. Overlapping poll
fires (the timer thread and a manual poll()) are harmless: the second one
finds the poll guard held and returns at once, and the claim in dequeue()
is atomic regardless.

Any exception inside a tick is logged and swallowed; it must never kill
the timer thread.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
import uuid
from typing import Callable

from mrlens_core.config import QueueConfig
from mrlens_queue.worker import PoolSaturatedError, WorkerPool
from mrlens_store.base import BaseStore

logger = logging.getLogger(__name__)


def _default_worker_id() -> str:
    return f"scheduler-{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


class Scheduler:
    def __init__(
        self,
        store: BaseStore,
        pool: WorkerPool,
        config: QueueConfig,
        worker_id: str | None = None,
    ):
        self.store = store
        self.pool = pool
        self.config = config
        self.worker_id = worker_id or _default_worker_id()
        self._running = False
        self._stop_event = threading.Event()
        self._poll_guard = threading.Lock()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            logger.warning("Scheduler already running")
            return
        self._running = True
        self._stop_event.clear()
        self._threads = [
            self._spawn("mrlens-poll", self.config.polling_interval_ms, self.poll),
            self._spawn("mrlens-cleanup", self.config.cleanup_interval_ms, self.cleanup),
        ]
        logger.info(
            "Scheduler %s started (poll every %dms, max %d concurrent task(s))",
            self.worker_id,
            self.config.polling_interval_ms,
            self.config.max_concurrent_tasks,
        )
        self._tick(self.poll)

    def stop(self) -> None:
        """Stop both timers, then wait for in-flight executions to finish."""
        if not self._running:
            logger.warning("Scheduler not running")
            return
        logger.info("Stopping scheduler...")
        self._running = False
        self._stop_event.set()
        for thread in self._threads:
            thread.join()
        self._threads = []
        self.pool.drain()
        logger.info("Scheduler stopped")

    def poll(self) -> int:
        """Dequeue up to the pool's free capacity, then recover stuck tasks.

        Returns the number of tasks dispatched.
        """
        if not self._poll_guard.acquire(blocking=False):
            logger.debug("Poll already in progress, skipping")
            return 0
        try:
            dispatched = 0
            slots = self.config.max_concurrent_tasks - self.pool.running_count
            if slots <= 0:
                logger.debug("No free worker slots")
            while dispatched < slots:
                task = self.store.dequeue(self.worker_id)
                if task is None:
                    break
                try:
                    self.pool.execute(task)
                except PoolSaturatedError:
                    # Lost a slot between the capacity check and submit; give the task back.
                    self.store.release_lock(task.id)
                    break
                dispatched += 1
                logger.info("Dispatched task %d (%s!%d)", task.id, task.project_id, task.mr_iid)
            self.recover_stuck_tasks()
            return dispatched
        finally:
            self._poll_guard.release()

    def recover_stuck_tasks(self) -> int:
        """Return tasks locked longer than the task timeout to pending.

        The attempt number is left alone: only an explicit failure consumes a retry.
        """
        recovered = 0
        for task in self.store.get_stuck_tasks(self.config.task_timeout_ms):
            if self.store.release_lock(task.id):
                recovered += 1
                logger.warning(
                    "Recovered stuck task %d (locked by %s at %s)", task.id, task.locked_by, task.locked_at
                )
        return recovered

    def cleanup(self) -> int:
        deleted = self.store.cleanup_old_tasks(self.config.retain_completed_days)
        if deleted:
            logger.info(
                "Purged %d completed task(s) older than %d day(s)", deleted, self.config.retain_completed_days
            )
        return deleted

    def _spawn(self, name: str, interval_ms: int, fn: Callable[[], object]) -> threading.Thread:
        def loop():
            while not self._stop_event.wait(interval_ms / 1000):
                self._tick(fn)

        thread = threading.Thread(target=loop, name=name, daemon=True)
        thread.start()
        return thread

    def _tick(self, fn: Callable[[], object]) -> None:
        try:
            fn()
        except Exception:
            logger.exception("Error in scheduler %s tick", getattr(fn, "__name__", "scheduler"))
