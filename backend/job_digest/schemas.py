"""Pydantic schemas for the admin API."""
from typing import Optional

from pydantic import BaseModel, Field


class ProcessJobsRequest(BaseModel):
    min_relevance_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    triggered_by: str = "manual"
    chat_id: Optional[str] = None


class CleanupRequest(BaseModel):
    retention_days: Optional[int] = Field(default=None, ge=1)
    triggered_by: str = "manual"


class EnqueuedResponse(BaseModel):
    run_id: str
    type: str
    state: str
    priority: int


class QueueStats(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0


class RunResponse(BaseModel):
    id: str
    type: str
    triggered_by: str
    priority: int
    state: str
    progress: int
    note: str = ""
    attempts: int = 0
    error: Optional[str] = None
    created_at: float
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    payload: dict = {}
    result: Optional[dict] = None


class QueueStatusResponse(BaseModel):
    stats: QueueStats
    current_run: Optional[RunResponse] = None
