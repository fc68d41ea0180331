"""
Job-alert pipeline: fetch unread mail, classify, extract postings, dedupe,
score, persist and notify.

The run is a linear LangGraph:

    START -> init -> fetch_mail -> classify -> extract -> notify -> finalize -> END

Ordering rule for every message: the ProcessedEmail record is written first and
its failure aborts the run (ProcessedRecordWriteError); the mailbox side effect
(mark read / archive) comes second and its failure is only logged.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional
from zoneinfo import ZoneInfo

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from ..classification.hybrid import HybridClassifier, summarize
from ..classification.types import ClassificationResult, EmailCategory, InboundMessage, action_for
from ..config import settings
from ..job_extraction import ExtractedJob, JobExtractor
from ..job_identity import JobDeduplicator
from ..relevance import RelevanceScorer, ResumeAnalyzer, ResumeProfile
from ..run_context import RunContext
from ..store import JobStore, ProcessedRecordWriteError

logger = logging.getLogger(__name__)

EXTRACT_BAND_START = 40
EXTRACT_BAND_END = 80


class PipelineState(TypedDict, total=False):
    ctx: RunContext
    min_relevance_score: float
    profile: ResumeProfile
    messages: List[InboundMessage]
    classifications: List[ClassificationResult]
    summary: dict


def _band(position: float, total: int) -> int:
    if total <= 0:
        return EXTRACT_BAND_END
    span = EXTRACT_BAND_END - EXTRACT_BAND_START
    return EXTRACT_BAND_START + int(span * min(1.0, position / total))


def local_day_bounds(tz_name: str, now: Optional[datetime] = None) -> tuple:
    """Start and end of "today" in `tz_name`, as naive UTC datetimes (how rows are stored)."""
    tz = ZoneInfo(tz_name)
    local_now = (now or datetime.now(tz)).astimezone(tz)
    local_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    utc = ZoneInfo("UTC")
    start = local_start.astimezone(utc).replace(tzinfo=None)
    return start, start + timedelta(days=1)


class JobProcessor:
    def __init__(
        self,
        store: JobStore,
        mailbox,
        notifier,
        *,
        classifier: Optional[HybridClassifier] = None,
        extractor: Optional[JobExtractor] = None,
        scorer: Optional[RelevanceScorer] = None,
        resume_analyzer: Optional[ResumeAnalyzer] = None,
        min_relevance_score: Optional[float] = None,
        organize_non_job: Optional[bool] = None,
        job_delay_ms: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.mailbox = mailbox
        self.notifier = notifier
        self.classifier = classifier or HybridClassifier()
        self.extractor = extractor or JobExtractor()
        self.scorer = scorer or RelevanceScorer()
        self.resume_analyzer = resume_analyzer or ResumeAnalyzer()
        self.dedup = JobDeduplicator(store)
        self.min_relevance_score = settings.min_relevance_score if min_relevance_score is None else min_relevance_score
        self.organize_non_job = settings.email_organize_non_job if organize_non_job is None else organize_non_job
        self.job_delay_ms = settings.job_delay_ms if job_delay_ms is None else job_delay_ms
        self._sleep = sleep
        self.graph = self._build_graph()

    # =========================================================================
    # Graph
    # =========================================================================

    def _build_graph(self) -> Any:
        graph = StateGraph(PipelineState)
        graph.add_node("init", self._init_node)
        graph.add_node("fetch_mail", self._fetch_mail_node)
        graph.add_node("classify", self._classify_node)
        graph.add_node("extract", self._extract_node)
        graph.add_node("notify", self._notify_node)
        graph.add_node("finalize", self._finalize_node)

        graph.add_edge(START, "init")
        graph.add_edge("init", "fetch_mail")
        graph.add_edge("fetch_mail", "classify")
        graph.add_edge("classify", "extract")
        graph.add_edge("extract", "notify")
        graph.add_edge("notify", "finalize")
        graph.add_edge("finalize", END)
        return graph.compile()

    def process_job_alerts(self, ctx: Optional[RunContext] = None, min_relevance_score: Optional[float] = None) -> dict:
        """Run the whole pipeline once. Raises on fetch failures and fatal store errors."""
        ctx = ctx or RunContext()
        logger.info(f"[{ctx.run_id}] Starting job alert processing")
        state: PipelineState = {
            "ctx": ctx,
            "min_relevance_score": self.min_relevance_score if min_relevance_score is None else min_relevance_score,
        }
        result = self.graph.invoke(state)
        return result.get("summary") or ctx.summary()

    # =========================================================================
    # Nodes
    # =========================================================================

    def _init_node(self, state: PipelineState) -> dict:
        ctx = state["ctx"]
        ctx.report_progress(5, "Initializing")
        return {"profile": self._resume_profile(ctx)}

    def _fetch_mail_node(self, state: PipelineState) -> dict:
        ctx = state["ctx"]
        ctx.report_progress(20, "Fetching unread email")
        messages = self.mailbox.list_unread()
        ctx.messages_seen = len(messages)

        # Drop already-handled mail before classification so it costs no AI budget.
        fresh = []
        for message in messages:
            if self.store.is_message_processed(message.id):
                ctx.messages_skipped += 1
                continue
            fresh.append(message)
        logger.info(f"{len(messages)} unread message(s), {len(fresh)} not yet processed")
        return {"messages": fresh}

    def _classify_node(self, state: PipelineState) -> dict:
        ctx = state["ctx"]
        messages = state.get("messages") or []
        ctx.report_progress(30, f"Classifying {len(messages)} message(s)")
        self.classifier.ai.reset_cost_tracking(ctx)
        results = self.classifier.classify(messages, ctx)
        summary = summarize(results)
        jobs = sum(1 for r in results if r.is_job)
        logger.info(
            f"Classified {summary.total} message(s): {jobs} job-related, "
            f"{summary.rule_classified} by rules, {summary.ai_classified} by AI, cost ${summary.total_cost:.3f}"
        )
        ctx.report_progress(40, f"Found {jobs} job-related message(s)")
        return {"classifications": results}

    def _extract_node(self, state: PipelineState) -> dict:
        ctx = state["ctx"]
        messages = state.get("messages") or []
        results = state.get("classifications") or []
        profile = state["profile"]
        min_score = state["min_relevance_score"]

        job_pairs = [(m, r) for m, r in zip(messages, results) if r.is_job]
        other_pairs = [(m, r) for m, r in zip(messages, results) if not r.is_job]

        total = len(job_pairs)
        for index, (message, _result) in enumerate(job_pairs):
            ctx.report_progress(_band(index, total), f"Processing email {index + 1}/{total}")
            if self.store.is_message_processed(message.id):
                ctx.messages_skipped += 1
                continue
            self._process_job_message(ctx, message, profile, min_score, index, total)

        if self.organize_non_job:
            for message, result in other_pairs:
                self._organize_message(ctx, message, result)

        ctx.report_progress(EXTRACT_BAND_END, f"{ctx.jobs_new} new, {ctx.jobs_duplicate} duplicate(s)")
        return {}

    def _notify_node(self, state: PipelineState) -> dict:
        ctx = state["ctx"]
        ctx.report_progress(85, "Sending job notifications")
        relevant = sorted(ctx.relevant_jobs, key=lambda j: j.relevance_score, reverse=True)
        ctx.relevant_jobs = relevant
        if relevant:
            logger.info(f"Sending digest with {len(relevant)} relevant job(s)")
            try:
                self.notifier.send_job_digest(relevant)
            except Exception as e:
                # Postings are already stored; the daily summary still lists them.
                logger.error(f"Failed to send job digest: {e}")
                ctx.errors += 1
        else:
            logger.info("No relevant jobs to notify")

        self.store.mark_jobs_processed(ctx.new_job_ids)
        return {}

    def _finalize_node(self, state: PipelineState) -> dict:
        ctx = state["ctx"]
        ctx.report_progress(95, "Finalizing")
        summary = ctx.summary()
        logger.info(
            f"[{ctx.run_id}] Job processing completed. New: {ctx.jobs_new}, "
            f"duplicates: {ctx.jobs_duplicate}, relevant: {len(ctx.relevant_jobs)}, errors: {ctx.errors}"
        )
        try:
            self.notifier.send_status(
                f"Complete: {ctx.jobs_new} new, {ctx.jobs_duplicate} duplicates, {len(ctx.relevant_jobs)} sent"
            )
        except Exception as e:
            logger.warning(f"Failed to send completion status: {e}")
        return {"summary": summary}

    # =========================================================================
    # Per-message handling
    # =========================================================================

    def _resume_profile(self, ctx: RunContext) -> ResumeProfile:
        cached = self.store.latest_resume_analysis()
        if cached is not None and not cached.is_stale(settings.resume_analysis_max_age_days):
            return cached
        ctx.report_progress(10, "Analyzing resume")
        try:
            profile = self.resume_analyzer.analyze()
        except Exception as e:
            if cached is None:
                raise
            logger.warning(f"Resume re-analysis failed, using profile from {cached.analyzed_at}: {e}")
            return cached
        self.store.save_resume_analysis(profile)
        return profile

    def _process_job_message(
        self,
        ctx: RunContext,
        message: InboundMessage,
        profile: ResumeProfile,
        min_score: float,
        index: int,
        total: int,
    ) -> None:
        category = EmailCategory.JOB_OPPORTUNITY.value
        try:
            jobs = self.extractor.extract(message)
            new_count = self._handle_candidates(ctx, message, jobs, profile, min_score, index, total)
        except ProcessedRecordWriteError:
            raise
        except Exception as e:
            self._handle_failed_message(ctx, message, e)
            return

        ctx.messages_processed += 1
        if not jobs:
            logger.info(f"No jobs found in message {message.id}, marking read but not archiving")
            self.store.record_processed(message.id, 0, category=category)
            self._mailbox_effect(message.id, self.mailbox.mark_read, "mark as read")
            return

        self.store.record_processed(message.id, new_count, category=category)
        if self._mailbox_effect(message.id, self.mailbox.mark_read_and_archive, "archive"):
            self.store.record_processed(message.id, new_count, archived=True, category=category)
        logger.info(f"Message {message.id}: {new_count} new job(s), {len(jobs) - new_count} duplicate(s)")

    def _handle_candidates(
        self,
        ctx: RunContext,
        message: InboundMessage,
        jobs: List[ExtractedJob],
        profile: ResumeProfile,
        min_score: float,
        index: int,
        total: int,
    ) -> int:
        new_count = 0
        for job_index, job in enumerate(jobs):
            ctx.report_progress(
                _band(index + job_index / len(jobs), total),
                f"Job {job_index + 1}/{len(jobs)} from email {index + 1}/{total}",
            )
            outcome = self.dedup.check(job)
            if outcome.is_duplicate:
                ctx.jobs_duplicate += 1
                logger.info(f"Duplicate job skipped ({outcome.tier}): {job.title} at {job.company}")
                continue

            job.origin_message_id = message.id
            job.relevance_score = self.scorer.score(job, profile)
            self.store.save(job)
            new_count += 1
            ctx.jobs_new += 1
            ctx.new_job_ids.append(job.id)
            logger.info(f"New job saved: {job.title} at {job.company} (score {job.relevance_score:.2f})")
            if job.relevance_score >= min_score:
                ctx.relevant_jobs.append(job)
            if self.job_delay_ms > 0:
                self._sleep(self.job_delay_ms / 1000.0)
        return new_count

    def _handle_failed_message(self, ctx: RunContext, message: InboundMessage, error: Exception) -> None:
        """Mark a broken message processed so it cannot loop forever, then tell the operator."""
        ctx.errors += 1
        logger.error(f"Error processing message {message.id}: {error}")
        self.store.rollback()
        self.store.record_processed(
            message.id, 0, category=EmailCategory.JOB_OPPORTUNITY.value, error=str(error) or type(error).__name__
        )
        self._mailbox_effect(message.id, self.mailbox.mark_read, "mark as read")
        try:
            self.notifier.send_operator_alert(
                f'Failed to process email "{message.subject}" from {message.sender}: {error}'
            )
        except Exception as e:
            logger.error(f"Failed to send operator alert for message {message.id}: {e}")

    def _organize_message(self, ctx: RunContext, message: InboundMessage, result: ClassificationResult) -> None:
        ctx.non_job_messages += 1
        action = action_for(result.category)
        archived = action.archive
        self.store.record_processed(message.id, 0, archived=False, category=result.category.value)
        if action.is_noop:
            return
        if self._mailbox_effect(message.id, lambda msg_id: self.mailbox.apply_action(msg_id, action), "organize"):
            if archived:
                self.store.record_processed(message.id, 0, archived=True, category=result.category.value)

    def _mailbox_effect(self, msg_id: str, fn: Callable[[str], None], what: str) -> bool:
        try:
            fn(msg_id)
            return True
        except Exception as e:
            logger.warning(f"Failed to {what} message {msg_id}; it stays recorded as processed: {e}")
            return False

    # =========================================================================
    # Other run types
    # =========================================================================

    def send_daily_summary(self, ctx: Optional[RunContext] = None, now: Optional[datetime] = None) -> dict:
        ctx = ctx or RunContext()
        ctx.report_progress(10, "Fetching daily job data")
        start, end = local_day_bounds(settings.schedule_timezone, now)
        jobs = self.store.daily_jobs(start, end, self.min_relevance_score)
        stats = self.store.daily_stats(start, end, self.min_relevance_score)
        ctx.report_progress(50, "Generating summary report")
        self.notifier.send_daily_summary(jobs, stats)
        ctx.report_progress(90, "Daily summary sent")
        logger.info(f"Daily summary sent: {len(jobs)} relevant job(s), {stats['total_jobs_processed']} processed")
        return {"relevant_jobs": len(jobs), **{k: v for k, v in stats.items() if k != "top_sources"}}

    def recover_orphaned_messages(self) -> int:
        """
        Mark unread mail that has no processed record as processed (read, not archived).

        Operator tool for breaking retry loops after a crash; recovered messages are
        not mined for jobs.
        """
        recovered = 0
        for message in self.mailbox.list_unread():
            if self.store.is_message_processed(message.id):
                continue
            self.store.record_processed(message.id, 0, error="recovered without processing")
            self._mailbox_effect(message.id, self.mailbox.mark_read, "mark as read")
            recovered += 1
        if recovered:
            self.notifier.send_status(f"Recovered {recovered} email(s)")
        logger.info(f"Orphaned message recovery: {recovered} message(s)")
        return recovered

    def run_cleanup(self, retention_days: Optional[int] = None, ctx: Optional[RunContext] = None) -> dict:
        """
        Delete stale low-relevance postings in batches, plus expired processed records.

        A failing batch is logged and counted; the remaining batches still run.
        """
        ctx = ctx or RunContext()
        days = settings.cleanup_retention_days if retention_days is None else retention_days
        cutoff = datetime.utcnow() - timedelta(days=days)
        ctx.report_progress(10, f"Finding jobs older than {days} day(s)")
        ids = self.store.old_irrelevant_job_ids(cutoff, self.min_relevance_score)

        batch_size = max(1, settings.cleanup_batch_size)
        deleted = 0
        failed_batches = 0
        for start in range(0, len(ids), batch_size):
            batch = ids[start : start + batch_size]
            try:
                deleted += self.store.delete_jobs(batch)
            except Exception as e:
                failed_batches += 1
                ctx.errors += 1
                logger.error(f"Failed to delete cleanup batch at offset {start}: {e}")
            ctx.report_progress(10 + int(70 * min(1.0, (start + len(batch)) / len(ids))), f"Deleted {deleted} job(s)")

        ctx.report_progress(85, "Expiring processed email records")
        record_cutoff = datetime.utcnow() - timedelta(days=settings.processed_record_retention_days)
        records_deleted = self.store.delete_processed_records_before(record_cutoff)

        logger.info(
            f"Cleanup done: {deleted}/{len(ids)} job(s) deleted, {records_deleted} processed record(s) expired, "
            f"{failed_batches} failed batch(es)"
        )
        return {
            "jobs_found": len(ids),
            "jobs_deleted": deleted,
            "failed_batches": failed_batches,
            "processed_records_deleted": records_deleted,
        }
