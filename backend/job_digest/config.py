"""Application configuration. All sensitive config from .env."""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Pipeline settings from environment."""

    # Deployment environment; names the Celery queue (job-processing-<environment>)
    environment: str = "development"

    # Database - default SQLite for easy local dev; use DATABASE_URL for PostgreSQL
    database_url: str = "sqlite:///./job_digest.db"

    # SQLAlchemy pooling (Postgres only)
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout_s: int = 30
    db_pool_recycle_s: int = 1800

    # SQLite concurrency tuning (used when DATABASE_URL starts with sqlite://)
    sqlite_busy_timeout_ms: int = 5000

    # Redis (Celery broker + run registry)
    redis_url: str = "redis://localhost:6379/0"

    # Celery
    celery_broker_url: Optional[str] = None  # defaults to redis_url if not set

    # AI - set OPENAI_API_KEY for classification, extraction and scoring
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.1

    # Gmail - the worker never runs an interactive OAuth flow, it needs a refresh token
    gmail_client_id: str = ""
    gmail_client_secret: str = ""
    gmail_refresh_token: str = ""
    gmail_token_uri: str = "https://oauth2.googleapis.com/token"
    # Path used by scripts/generate_gmail_token.py for the downloaded OAuth client file
    credentials_path: str = "credentials.json"
    gmail_unread_window: str = "3d"
    gmail_max_results: int = 100
    gmail_fetch_batch_size: int = 10

    # Hybrid classification
    email_rule_confidence_threshold: float = 0.8
    email_ai_fallback_enabled: bool = True
    email_max_ai_cost_per_run: float = 0.10
    email_ai_cost_per_email: float = 0.002
    email_ai_delay_ms: int = 200
    # Only the first N chars of the body are matched against rule patterns
    email_rule_body_chars: int = 500
    # Record non-job mail as processed and apply its category action (mark read / archive)
    email_organize_non_job: bool = True

    # Pipeline
    min_relevance_score: float = 0.6
    resume_path: str = "resume.pdf"
    resume_analysis_max_age_days: int = 7
    # Pause between new postings (job sites are fetched for relevance scoring)
    job_delay_ms: int = 1000
    job_url_fetch_timeout_s: float = 10.0

    # Token guardian
    token_check_interval_s: int = 300
    token_refresh_horizon_s: int = 300
    token_alert_cooldown_s: int = 3600

    # Queue / worker
    queue_max_attempts: int = 3
    queue_backoff_base_s: int = 2
    queue_keep_completed: int = 5
    queue_keep_failed: int = 10
    # Upper bound on how long a crashed worker can hold the single-flight claim
    queue_claim_ttl_s: int = 7200
    cleanup_retention_days: int = 3
    cleanup_batch_size: int = 50
    # Must stay well above the unread window, or old unread mail would be reprocessed
    processed_record_retention_days: int = 30
    # Cron schedule runs in this timezone (hourly scans 06:00-20:00, summary 21:00)
    schedule_timezone: str = "Asia/Manila"

    # Notifications - when unset, digests and alerts only go to the log
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def celery_broker(self) -> str:
        return self.celery_broker_url or self.redis_url

    @property
    def queue_name(self) -> str:
        return f"job-processing-{self.environment}"


settings = Settings()
