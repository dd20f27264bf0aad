"""Process-scoped wiring of every long-lived component.

AppContext is built once at startup from an immutable AppConfig and passed
explicitly to whatever needs it; there are no module-level singletons.
Changing configuration means building a new context.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from mrlens_core.analyzer import DiffAnalyzer
from mrlens_core.config import AppConfig
from mrlens_core.orchestrator import ReviewOrchestrator
from mrlens_core.platforms.base import BasePlatform
from mrlens_core.platforms.registry import build_platform
from mrlens_core.providers.base import BaseProvider
from mrlens_core.providers.registry import build_provider, resolve_model
from mrlens_queue.events import EventRouter
from mrlens_queue.executor import TaskExecutor
from mrlens_queue.retry import RetryPolicy
from mrlens_queue.scheduler import Scheduler
from mrlens_queue.worker import WorkerPool
from mrlens_store.base import BaseStore
from mrlens_store.models import DEFAULT_PRIORITY, NewTask
from mrlens_store.sqlite import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    config: AppConfig
    store: BaseStore
    platform: BasePlatform
    provider: BaseProvider
    analyzer: DiffAnalyzer
    orchestrator: ReviewOrchestrator
    retry_policy: RetryPolicy
    executor: TaskExecutor
    pool: WorkerPool
    scheduler: Scheduler
    router: EventRouter

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        store: BaseStore | None = None,
        platform: BasePlatform | None = None,
        provider: BaseProvider | None = None,
    ) -> "AppContext":
        """Build every component. Explicit collaborators replace the configured ones."""
        store = store or SQLiteStore(db_path=config.store_path)
        platform = platform or build_platform(config)
        provider = provider or build_provider(config.ai)
        retry_policy = RetryPolicy(config.queue)
        analyzer = DiffAnalyzer(provider, temperature=config.ai.temperature, max_tokens=config.ai.max_tokens)
        orchestrator = ReviewOrchestrator(
            platform,
            analyzer,
            store,
            config.review,
            model_id=resolve_model(config.ai),
            is_retryable=retry_policy.is_retryable,
        )
        executor = TaskExecutor(store, orchestrator, is_retryable=retry_policy.is_retryable)
        pool = WorkerPool(executor, store, retry_policy, config.queue.max_concurrent_tasks)
        scheduler = Scheduler(store, pool, config.queue)
        router = EventRouter(store, config.webhook, max_retries=config.queue.max_retries)
        return cls(
            config=config,
            store=store,
            platform=platform,
            provider=provider,
            analyzer=analyzer,
            orchestrator=orchestrator,
            retry_policy=retry_policy,
            executor=executor,
            pool=pool,
            scheduler=scheduler,
            router=router,
        )

    def start(self) -> None:
        if not self.config.queue.enabled:
            logger.info("Queue is disabled, not starting the scheduler")
            return
        self.scheduler.start()

    def stop(self) -> None:
        """Stop the scheduler (draining in-flight reviews) and release resources."""
        if self.scheduler.running:
            self.scheduler.stop()
        self.pool.shutdown()
        self.platform.close()
        self.store.close()

    def enqueue(
        self,
        project_id: str,
        mr_iid: int,
        triggered_by: str = "manual",
        trigger_event: str | None = None,
        review_id: int | None = None,
        priority: int = DEFAULT_PRIORITY,
        **mr_fields: Any,
    ) -> int:
        """Queue a review. ``mr_fields`` are the denormalized NewTask MR fields."""
        return self.store.enqueue(
            NewTask(
                project_id=str(project_id),
                mr_iid=mr_iid,
                triggered_by=triggered_by,
                trigger_event=trigger_event,
                review_id=review_id,
                priority=priority,
                max_retries=self.config.queue.max_retries,
                **mr_fields,
            )
        )

    def stats(self) -> dict[str, Any]:
        worker = self.pool.stats()
        return {
            "queue": self.store.get_stats(),
            "worker": asdict(worker),
            "utilization": worker.running_tasks / self.config.queue.max_concurrent_tasks,
        }
