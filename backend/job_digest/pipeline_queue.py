"""Enqueue pipeline runs with single-flight per run type."""
import logging
from typing import Callable, Optional

from .config import settings
from .run_registry import (
    RUN_CLEANUP,
    RUN_DAILY_SUMMARY,
    RUN_PROCESS_JOBS,
    AlreadyQueuedError,
    PipelineRun,
    RunRegistry,
)

logger = logging.getLogger(__name__)

# Lower value runs first (Redis transport priority steps 0..9)
TRIGGER_PRIORITY = {"manual": 0, "telegram": 0, "cron": 3}
CLEANUP_PRIORITY = 6


def _send_with_celery(run: PipelineRun) -> None:
    from .celery_app import celery_app

    celery_app.send_task(
        "job_digest.tasks.run_pipeline",
        args=[run.id],
        queue=settings.queue_name,
        priority=run.priority,
    )


class PipelineQueue:
    def __init__(self, registry: Optional[RunRegistry] = None, send: Optional[Callable[[PipelineRun], None]] = None):
        self.registry = registry or RunRegistry()
        self._send = send or _send_with_celery

    def enqueue(self, run_type: str, triggered_by: str = "manual", payload: Optional[dict] = None) -> PipelineRun:
        """Claim then hand the run to the worker. Raises AlreadyQueuedError when one is waiting or active."""
        if run_type == RUN_CLEANUP:
            priority = CLEANUP_PRIORITY
        else:
            priority = TRIGGER_PRIORITY.get(triggered_by, TRIGGER_PRIORITY["cron"])
        run = self.registry.claim(run_type, triggered_by=triggered_by, priority=priority, payload=payload)
        try:
            self._send(run)
        except Exception as e:
            # Without a broker message the claim would block this run type until it expires
            self.registry.mark_failed(run.id, f"could not enqueue: {e}")
            raise
        return run

    def enqueue_process_jobs(
        self,
        triggered_by: str = "manual",
        min_relevance_score: Optional[float] = None,
        chat_id: Optional[str] = None,
    ) -> PipelineRun:
        payload = {}
        if min_relevance_score is not None:
            payload["min_relevance_score"] = min_relevance_score
        if chat_id:
            payload["chat_id"] = chat_id
        return self.enqueue(RUN_PROCESS_JOBS, triggered_by, payload)

    def enqueue_daily_summary(self, triggered_by: str = "manual") -> PipelineRun:
        return self.enqueue(RUN_DAILY_SUMMARY, triggered_by)

    def enqueue_cleanup(self, triggered_by: str = "manual", retention_days: Optional[int] = None) -> PipelineRun:
        payload = {"retention_days": retention_days} if retention_days is not None else {}
        return self.enqueue(RUN_CLEANUP, triggered_by, payload)

    def queue_status(self) -> dict:
        current = self.registry.current_run()
        return {
            "stats": self.registry.stats(),
            "current_run": current.to_dict() if current else None,
        }

