"""SQLAlchemy models."""
from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Text,
    Float,
    Boolean,
    Index,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy import JSON

Base = declarative_base()


class Job(Base):
    """An extracted job posting. `id` is the content-hash identity (see job_identity)."""

    __tablename__ = "jobs"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    company = Column(String, nullable=False)
    location = Column(String, nullable=True)
    is_remote = Column(Boolean, default=False)
    description = Column(Text, nullable=True)
    requirements = Column(JSON, nullable=True)  # list[str]
    apply_url = Column(String, nullable=True)
    salary = Column(String, nullable=True)
    posted_date = Column(DateTime, nullable=True)
    source = Column(String, nullable=True)
    relevance_score = Column(Float, default=0.0)
    origin_message_id = Column(String, nullable=True, index=True)
    # Normalized copies used by the similarity lookup
    normalized_title = Column(String, nullable=True)
    normalized_company = Column(String, nullable=True)
    normalized_url = Column(String, nullable=True, index=True)
    processed = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class ProcessedEmail(Base):
    """Durable "already handled" marker for a mailbox message."""

    __tablename__ = "processed_emails"

    message_id = Column(String, primary_key=True)
    jobs_extracted = Column(Integer, default=0)
    archived = Column(Boolean, default=False)
    category = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    processed_at = Column(DateTime, default=datetime.utcnow, index=True)


class ResumeAnalysis(Base):
    """Cached candidate profile used for relevance scoring."""

    __tablename__ = "resume_analyses"

    id = Column(Integer, primary_key=True, index=True)
    skills = Column(JSON, nullable=True)
    experience = Column(JSON, nullable=True)
    preferred_roles = Column(JSON, nullable=True)
    seniority = Column(String, nullable=True)
    analyzed_at = Column(DateTime, default=datetime.utcnow, index=True)


Index("ix_jobs_title_company", Job.normalized_title, Job.normalized_company)
