"""Pipeline admin API: enqueue runs, queue status."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..pipeline_queue import AlreadyQueuedError, PipelineQueue
from ..run_registry import TRIGGERS, PipelineRun
from ..schemas import (
    CleanupRequest,
    EnqueuedResponse,
    ProcessJobsRequest,
    QueueStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pipeline", tags=["pipeline"])


def get_queue() -> PipelineQueue:
    return PipelineQueue()


def _check_trigger(triggered_by: str) -> None:
    if triggered_by not in TRIGGERS:
        raise HTTPException(status_code=422, detail=f"triggered_by must be one of {', '.join(TRIGGERS)}")


def _enqueued(run: PipelineRun) -> EnqueuedResponse:
    return EnqueuedResponse(run_id=run.id, type=run.type, state=run.state, priority=run.priority)


@router.post("/process-jobs", response_model=EnqueuedResponse, status_code=202)
def process_jobs(body: Optional[ProcessJobsRequest] = None, queue: PipelineQueue = Depends(get_queue)):
    body = body or ProcessJobsRequest()
    _check_trigger(body.triggered_by)
    try:
        run = queue.enqueue_process_jobs(
            triggered_by=body.triggered_by,
            min_relevance_score=body.min_relevance_score,
            chat_id=body.chat_id,
        )
    except AlreadyQueuedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _enqueued(run)


@router.post("/daily-summary", response_model=EnqueuedResponse, status_code=202)
def daily_summary(queue: PipelineQueue = Depends(get_queue)):
    try:
        run = queue.enqueue_daily_summary(triggered_by="manual")
    except AlreadyQueuedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _enqueued(run)


@router.post("/cleanup-jobs", response_model=EnqueuedResponse, status_code=202)
def cleanup_jobs(body: Optional[CleanupRequest] = None, queue: PipelineQueue = Depends(get_queue)):
    body = body or CleanupRequest()
    _check_trigger(body.triggered_by)
    try:
        run = queue.enqueue_cleanup(triggered_by=body.triggered_by, retention_days=body.retention_days)
    except AlreadyQueuedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _enqueued(run)


@router.get("/status", response_model=QueueStatusResponse)
def status(queue: PipelineQueue = Depends(get_queue)):
    return queue.queue_status()
