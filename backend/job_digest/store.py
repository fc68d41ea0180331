"""
Job store over SQLAlchemy.

`record_processed` is the durable "do not reprocess" marker and the one write
the pipeline treats as fatal: it commits immediately (with lock retries) and
raises ProcessedRecordWriteError when it cannot.
"""

from __future__ import annotations

import logging
import random
import time
from collections import Counter
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from .job_extraction import ExtractedJob
from .job_identity import normalize_text, normalize_url
from .models import Job, ProcessedEmail, ResumeAnalysis
from .relevance import ResumeProfile

logger = logging.getLogger(__name__)


class ProcessedRecordWriteError(Exception):
    """The processed-message marker could not be persisted; the run must fail and retry."""


def _is_sqlite_locked_error(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return "database is locked" in msg or "sqlite_busy" in msg


def commit_with_retry(db: Session, *, max_retries: int = 6, base_sleep_s: float = 0.05) -> None:
    """
    SQLite can transiently raise 'database is locked' while the admin API reads.
    Retry commits with exponential backoff + jitter.
    """
    attempt = 0
    while True:
        try:
            db.commit()
            return
        except OperationalError as e:
            db.rollback()
            if attempt >= max_retries or not _is_sqlite_locked_error(e):
                raise
            sleep_s = min(2.0, base_sleep_s * (2 ** attempt)) + random.uniform(0, 0.05)
            time.sleep(sleep_s)
            attempt += 1


def job_from_row(row: Job) -> ExtractedJob:
    return ExtractedJob(
        id=row.id,
        title=row.title,
        company=row.company,
        location=row.location or "",
        is_remote=bool(row.is_remote),
        description=row.description or "",
        requirements=list(row.requirements or []),
        apply_url=row.apply_url or "",
        salary=row.salary,
        posted_date=row.posted_date or row.created_at,
        source=row.source or "Unknown",
        relevance_score=float(row.relevance_score or 0.0),
        origin_message_id=row.origin_message_id or "",
        processed=bool(row.processed),
        created_at=row.created_at,
    )


class JobStore:
    def __init__(self, db: Session):
        self.db = db

    # ---- jobs ---------------------------------------------------------------

    def exists(self, job_id: str) -> bool:
        return self.db.get(Job, job_id) is not None

    def find_similar(self, title: str, company: str, apply_url: str = "") -> List[Job]:
        """Stored jobs with the same normalized title+company, or the same normalized apply URL."""
        conditions = [
            (Job.normalized_title == normalize_text(title)) & (Job.normalized_company == normalize_text(company))
        ]
        url = normalize_url(apply_url)
        if url:
            conditions.append(Job.normalized_url == url)
        return list(self.db.scalars(select(Job).where(or_(*conditions)).limit(5)))

    def save(self, job: ExtractedJob) -> None:
        self.db.merge(
            Job(
                id=job.id,
                title=job.title,
                company=job.company,
                location=job.location,
                is_remote=job.is_remote,
                description=job.description,
                requirements=list(job.requirements),
                apply_url=job.apply_url,
                salary=job.salary,
                posted_date=job.posted_date,
                source=job.source,
                relevance_score=job.relevance_score,
                origin_message_id=job.origin_message_id,
                normalized_title=normalize_text(job.title),
                normalized_company=normalize_text(job.company),
                normalized_url=normalize_url(job.apply_url) or None,
                processed=job.processed,
                created_at=job.created_at,
            )
        )
        commit_with_retry(self.db)

    def mark_jobs_processed(self, job_ids: List[str]) -> int:
        if not job_ids:
            return 0
        rows = list(self.db.scalars(select(Job).where(Job.id.in_(job_ids))))
        for row in rows:
            row.processed = True
        commit_with_retry(self.db)
        return len(rows)

    def mark_job_processed(self, job_id: str) -> None:
        self.mark_jobs_processed([job_id])

    def count_jobs(self) -> int:
        return int(self.db.scalar(select(func.count()).select_from(Job)) or 0)

    # ---- processed messages -------------------------------------------------

    def is_message_processed(self, message_id: str) -> bool:
        return self.db.get(ProcessedEmail, message_id) is not None

    def record_processed(
        self,
        message_id: str,
        jobs_extracted: int = 0,
        *,
        archived: bool = False,
        category: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Idempotent upsert of the processed marker. Raises ProcessedRecordWriteError on failure."""
        try:
            row = self.db.get(ProcessedEmail, message_id)
            if row is None:
                row = ProcessedEmail(message_id=message_id)
                self.db.add(row)
            row.jobs_extracted = int(jobs_extracted)
            row.archived = bool(archived)
            if category is not None:
                row.category = category
            row.error = (error or None) and error[:2000]
            row.processed_at = datetime.utcnow()
            commit_with_retry(self.db)
        except SQLAlchemyError as e:
            try:
                self.db.rollback()
            except SQLAlchemyError:
                pass
            logger.error(f"Failed to record message {message_id} as processed: {e}")
            raise ProcessedRecordWriteError(f"could not record message {message_id} as processed: {e}") from e

    def rollback(self) -> None:
        self.db.rollback()

    def delete_processed_records_before(self, cutoff: datetime) -> int:
        rows = list(self.db.scalars(select(ProcessedEmail).where(ProcessedEmail.processed_at < cutoff)))
        for row in rows:
            self.db.delete(row)
        commit_with_retry(self.db)
        return len(rows)

    # ---- resume analysis ----------------------------------------------------

    def latest_resume_analysis(self) -> Optional[ResumeProfile]:
        row = self.db.scalars(select(ResumeAnalysis).order_by(ResumeAnalysis.analyzed_at.desc()).limit(1)).first()
        if row is None:
            return None
        return ResumeProfile(
            skills=list(row.skills or []),
            experience=list(row.experience or []),
            preferred_roles=list(row.preferred_roles or []),
            seniority=row.seniority or "mid",
            analyzed_at=row.analyzed_at,
        )

    def save_resume_analysis(self, profile: ResumeProfile) -> None:
        self.db.add(
            ResumeAnalysis(
                skills=list(profile.skills),
                experience=list(profile.experience),
                preferred_roles=list(profile.preferred_roles),
                seniority=profile.seniority,
                analyzed_at=profile.analyzed_at,
            )
        )
        commit_with_retry(self.db)

    # ---- summaries and cleanup ----------------------------------------------

    def daily_jobs(self, start: datetime, end: datetime, min_score: float) -> List[ExtractedJob]:
        rows = self.db.scalars(
            select(Job)
            .where(Job.created_at >= start, Job.created_at < end, Job.relevance_score >= min_score)
            .order_by(Job.relevance_score.desc())
        )
        return [job_from_row(r) for r in rows]

    def daily_stats(self, start: datetime, end: datetime, min_score: float) -> dict:
        jobs = list(self.db.scalars(select(Job).where(Job.created_at >= start, Job.created_at < end)))
        emails = self.db.scalar(
            select(func.count())
            .select_from(ProcessedEmail)
            .where(ProcessedEmail.processed_at >= start, ProcessedEmail.processed_at < end)
        )
        scores = [float(j.relevance_score or 0.0) for j in jobs]
        return {
            "total_jobs_processed": len(jobs),
            "relevant_jobs": sum(1 for s in scores if s >= min_score),
            "remote_jobs": sum(1 for j in jobs if j.is_remote),
            "emails_processed": int(emails or 0),
            "average_score": round(sum(scores) / len(scores), 3) if scores else 0.0,
            "top_sources": Counter(j.source or "Unknown" for j in jobs).most_common(3),
        }

    def old_irrelevant_job_ids(self, cutoff: datetime, min_score: float, limit: Optional[int] = None) -> List[str]:
        """Jobs older than `cutoff` that scored below the notification threshold (never surfaced)."""
        stmt = (
            select(Job.id)
            .where(Job.created_at < cutoff, Job.relevance_score < min_score)
            .order_by(Job.created_at)
        )
        if limit:
            stmt = stmt.limit(limit)
        return list(self.db.scalars(stmt))

    def delete_jobs(self, job_ids: List[str]) -> int:
        if not job_ids:
            return 0
        rows = list(self.db.scalars(select(Job).where(Job.id.in_(job_ids))))
        for row in rows:
            self.db.delete(row)
        commit_with_retry(self.db)
        return len(rows)
