"""
Celery tasks: run a queued pipeline run, and the beat entry point that enqueues
scheduled runs. DB session per task; run state lives in the Redis registry. Each
worker process keeps one Gmail token guardian, refreshed in the background.

Retry policy is decided in `execute_run` (plain function, unit tested); the
Celery task only turns a retry decision into `self.retry(countdown=...)`.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import logging

from celery import shared_task
from celery.signals import worker_process_init, worker_process_shutdown

from .config import settings
from .database import SessionLocal
from .gmail_service import GmailMailbox
from .notifier import (
    CompositeProgressSink,
    LogProgressSink,
    RegistryProgressSink,
    TelegramNotifier,
    build_notifier,
)
from .pipeline_queue import PipelineQueue
from .run_context import RunContext
from .run_registry import (
    RUN_CLEANUP,
    RUN_DAILY_SUMMARY,
    RUN_PROCESS_JOBS,
    STATE_COMPLETED,
    STATE_FAILED,
    AlreadyQueuedError,
    PipelineRun,
    RunRegistry,
    UnknownRunTypeError,
)
from .services.job_processor import JobProcessor
from .store import JobStore
from .token_guardian import GmailAuthRequiredError, TokenGuardian, TokenRefresher

logger = logging.getLogger(__name__)

_guardian: Optional[TokenGuardian] = None
_refresher: Optional[TokenRefresher] = None

RunHandler = Callable[[PipelineRun, RunContext], dict]

# Retrying cannot fix these; a human has to act first
NON_RETRYABLE = (GmailAuthRequiredError, UnknownRunTypeError)


@dataclass
class RunOutcome:
    state: str
    result: Optional[dict] = None
    error: Optional[str] = None
    retry_in: Optional[int] = None


def backoff_delay(attempt: int, base_s: Optional[int] = None) -> int:
    """Delay before the next attempt after `attempt` failed: base, 2*base, 4*base, ..."""
    base = settings.queue_backoff_base_s if base_s is None else base_s
    return base * (2 ** (attempt - 1))


def _notifier_for(run: PipelineRun):
    chat_id = (run.payload or {}).get("chat_id")
    if chat_id and settings.telegram_bot_token:
        # Telegram-triggered runs answer in the chat that asked
        return TelegramNotifier(settings.telegram_bot_token, str(chat_id))
    return build_notifier()


def get_token_guardian() -> TokenGuardian:
    """One guardian per worker process, shared by the runs and the background refresher."""
    global _guardian
    if _guardian is None:
        _guardian = TokenGuardian(notifier=build_notifier())
    return _guardian


@worker_process_init.connect
def start_token_refresher(**kwargs):
    global _refresher
    if not settings.gmail_refresh_token:
        logger.warning("GMAIL_REFRESH_TOKEN not set; background token refresh disabled")
        return
    _refresher = TokenRefresher(get_token_guardian())
    _refresher.start()
    logger.info(f"Gmail token refresher started (every {_refresher.interval_s}s)")


@worker_process_shutdown.connect
def stop_token_refresher(**kwargs):
    global _refresher
    if _refresher is not None:
        _refresher.stop()
        _refresher = None


def _process_jobs(run: PipelineRun, ctx: RunContext) -> dict:
    notifier = _notifier_for(run)
    db = SessionLocal()
    try:
        mailbox = GmailMailbox(get_token_guardian())
        processor = JobProcessor(JobStore(db), mailbox, notifier)
        return processor.process_job_alerts(ctx, min_relevance_score=run.payload.get("min_relevance_score"))
    finally:
        db.close()


def _daily_summary(run: PipelineRun, ctx: RunContext) -> dict:
    db = SessionLocal()
    try:
        processor = JobProcessor(JobStore(db), None, _notifier_for(run))
        return processor.send_daily_summary(ctx)
    finally:
        db.close()


def _cleanup(run: PipelineRun, ctx: RunContext) -> dict:
    db = SessionLocal()
    try:
        processor = JobProcessor(JobStore(db), None, _notifier_for(run))
        return processor.run_cleanup(run.payload.get("retention_days"), ctx)
    finally:
        db.close()


RUN_HANDLERS: Dict[str, RunHandler] = {
    RUN_PROCESS_JOBS: _process_jobs,
    RUN_DAILY_SUMMARY: _daily_summary,
    RUN_CLEANUP: _cleanup,
}


def execute_run(
    registry: RunRegistry,
    run_id: str,
    attempt: int = 1,
    *,
    handlers: Optional[Dict[str, RunHandler]] = None,
    max_attempts: Optional[int] = None,
    backoff_base_s: Optional[int] = None,
) -> RunOutcome:
    """
    Run one attempt of a queued run and record the outcome in the registry.

    On failure with attempts left the run goes back to `waiting` (claim kept)
    and the outcome carries the retry delay; after the last attempt it is
    `failed` and the claim is released.
    """
    handlers = RUN_HANDLERS if handlers is None else handlers
    max_attempts = settings.queue_max_attempts if max_attempts is None else max_attempts

    run = registry.get(run_id)
    if run is None:
        logger.warning(f"Run {run_id} not found in registry (expired or trimmed); skipping")
        return RunOutcome(state="missing")
    # acks_late can hand a message over again after its run ended
    if run.state in (STATE_COMPLETED, STATE_FAILED):
        logger.warning(f"{run.type} run {run_id} already {run.state}; ignoring redelivered message")
        return RunOutcome(state="skipped", error=f"already {run.state}")
    if not registry.holds_claim(run):
        logger.warning(f"{run.type} run {run_id} no longer holds the {run.type} claim; not running it")
        registry.mark_failed(run_id, "claim expired")
        return RunOutcome(state="skipped", error="claim expired")

    run = registry.mark_active(run_id, attempt)
    logger.info(f"Starting {run.type} run {run_id} (attempt {attempt}/{max_attempts})")
    ctx = RunContext(
        run_id=run_id,
        progress_sink=CompositeProgressSink([RegistryProgressSink(registry), LogProgressSink()]),
    )
    try:
        handler = handlers.get(run.type)
        if handler is None:
            raise UnknownRunTypeError(f"No handler for run type {run.type}")
        result = handler(run, ctx)
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
        if attempt < max_attempts and not isinstance(e, NON_RETRYABLE):
            delay = backoff_delay(attempt, backoff_base_s)
            logger.warning(f"{run.type} run {run_id} attempt {attempt} failed, retrying in {delay}s: {error}")
            registry.mark_waiting(run_id, error)
            return RunOutcome(state="waiting", error=error, retry_in=delay)
        logger.exception(f"{run.type} run {run_id} failed after {attempt} attempt(s)")
        registry.mark_failed(run_id, error)
        return RunOutcome(state="failed", error=error)

    registry.mark_completed(run_id, result)
    logger.info(f"{run.type} run {run_id} completed")
    return RunOutcome(state="completed", result=result)


@shared_task(bind=True, name="job_digest.tasks.run_pipeline")
def run_pipeline(self, run_id: str):
    """Worker entry point for a queued run."""
    attempt = self.request.retries + 1
    outcome = execute_run(RunRegistry(), run_id, attempt)
    if outcome.retry_in is not None:
        raise self.retry(countdown=outcome.retry_in, max_retries=settings.queue_max_attempts - 1)
    return {"run_id": run_id, "state": outcome.state, "error": outcome.error}


@shared_task(name="job_digest.tasks.enqueue_scheduled")
def enqueue_scheduled(run_type: str):
    """Beat entry point. A run of the same type still waiting or active means this tick is skipped."""
    queue = PipelineQueue()
    try:
        if run_type == RUN_PROCESS_JOBS:
            run = queue.enqueue_process_jobs(triggered_by="cron")
        elif run_type == RUN_DAILY_SUMMARY:
            run = queue.enqueue_daily_summary(triggered_by="cron")
        elif run_type == RUN_CLEANUP:
            run = queue.enqueue_cleanup(triggered_by="cron")
        else:
            raise UnknownRunTypeError(f"Unknown run type: {run_type}")
    except AlreadyQueuedError as e:
        logger.info(f"Scheduled {run_type} skipped: {e}")
        return None
    return run.id
