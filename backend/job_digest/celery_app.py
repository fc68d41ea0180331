"""Celery app for the pipeline worker. One queue per environment, one run at a time."""
import logging

from celery import Celery
from celery.schedules import crontab

from .config import settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

celery_app = Celery(
    "job_digest",
    broker=settings.celery_broker,
    backend=settings.redis_url,
    include=["job_digest.tasks"],
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.schedule_timezone,
    enable_utc=True,
    task_default_queue=settings.queue_name,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_concurrency=1,
    worker_prefetch_multiplier=1,
    # Redis emulates priorities with one list per step; 0 is served first
    broker_transport_options={
        "priority_steps": list(range(10)),
        "sep": ":",
        "queue_order_strategy": "priority",
    },
    beat_schedule={
        "process-jobs-hourly": {
            "task": "job_digest.tasks.enqueue_scheduled",
            "schedule": crontab(minute=0, hour="6-20"),
            "args": ("process-jobs",),
        },
        "daily-summary": {
            "task": "job_digest.tasks.enqueue_scheduled",
            "schedule": crontab(minute=0, hour=21),
            "args": ("daily-summary",),
        },
        "cleanup-jobs": {
            "task": "job_digest.tasks.enqueue_scheduled",
            "schedule": crontab(minute=0, hour=0),
            "args": ("cleanup-jobs",),
        },
    },
)
