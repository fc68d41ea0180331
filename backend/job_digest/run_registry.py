"""
Redis-backed registry of pipeline runs.

Mutual exclusion per run type is the claim key `claim:<type>`, set with
NX + EX so two triggers racing each other cannot both win. The waiting/active
sets only feed the status endpoint: a pending run whose claim has expired or
moved to another run is stale (its worker died) and is failed on the next claim.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import List, Optional

import redis

from .config import settings

logger = logging.getLogger(__name__)

RUN_PROCESS_JOBS = "process-jobs"
RUN_DAILY_SUMMARY = "daily-summary"
RUN_CLEANUP = "cleanup-jobs"
RUN_TYPES = (RUN_PROCESS_JOBS, RUN_DAILY_SUMMARY, RUN_CLEANUP)

TRIGGERS = ("cron", "manual", "telegram")

STATE_WAITING = "waiting"
STATE_ACTIVE = "active"
STATE_COMPLETED = "completed"
STATE_FAILED = "failed"

_redis_client = None


class AlreadyQueuedError(Exception):
    """A run of this type is already waiting or active."""

    def __init__(self, run_type: str):
        super().__init__(f"{run_type} is already in queue or running")
        self.run_type = run_type


class UnknownRunTypeError(ValueError):
    pass


def get_redis_client():
    """Get or create the shared Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=5,
        )
    return _redis_client


@dataclass
class PipelineRun:
    id: str
    type: str
    triggered_by: str = "manual"
    priority: int = 0
    state: str = STATE_WAITING
    progress: int = 0
    note: str = ""
    attempts: int = 0
    error: Optional[str] = None
    created_at: float = 0.0
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    payload: dict = field(default_factory=dict)
    result: Optional[dict] = None

    def to_hash(self) -> dict:
        data = asdict(self)
        data["payload"] = json.dumps(self.payload or {})
        data["result"] = json.dumps(self.result) if self.result is not None else ""
        # Redis hashes cannot hold None
        return {k: ("" if v is None else v) for k, v in data.items()}

    @classmethod
    def from_hash(cls, data: dict) -> "PipelineRun":
        def _float(key):
            raw = data.get(key)
            return float(raw) if raw not in (None, "") else None

        return cls(
            id=data["id"],
            type=data["type"],
            triggered_by=data.get("triggered_by") or "manual",
            priority=int(data.get("priority") or 0),
            state=data.get("state") or STATE_WAITING,
            progress=int(data.get("progress") or 0),
            note=data.get("note") or "",
            attempts=int(data.get("attempts") or 0),
            error=data.get("error") or None,
            created_at=_float("created_at") or 0.0,
            started_at=_float("started_at"),
            finished_at=_float("finished_at"),
            payload=json.loads(data.get("payload") or "{}"),
            result=json.loads(data["result"]) if data.get("result") else None,
        )

    def to_dict(self) -> dict:
        return asdict(self)


class RunRegistry:
    def __init__(
        self,
        client=None,
        *,
        prefix: Optional[str] = None,
        claim_ttl_s: Optional[int] = None,
        keep_completed: Optional[int] = None,
        keep_failed: Optional[int] = None,
        clock=time.time,
    ):
        self.client = client if client is not None else get_redis_client()
        self.prefix = prefix or settings.queue_name
        self.claim_ttl_s = settings.queue_claim_ttl_s if claim_ttl_s is None else claim_ttl_s
        self.keep_completed = settings.queue_keep_completed if keep_completed is None else keep_completed
        self.keep_failed = settings.queue_keep_failed if keep_failed is None else keep_failed
        self._clock = clock

    # ---- keys ---------------------------------------------------------------

    def _run_key(self, run_id: str) -> str:
        return f"{self.prefix}:run:{run_id}"

    def _claim_key(self, run_type: str) -> str:
        return f"{self.prefix}:claim:{run_type}"

    def _state_key(self, state: str) -> str:
        return f"{self.prefix}:{state}"

    # ---- claim --------------------------------------------------------------

    def pending_runs(self, run_type: Optional[str] = None) -> List[PipelineRun]:
        runs = []
        for state in (STATE_ACTIVE, STATE_WAITING):
            for run_id in sorted(self.client.smembers(self._state_key(state))):
                run = self.get(run_id)
                if run is not None and (run_type is None or run.type == run_type):
                    runs.append(run)
        return runs

    def claim(
        self,
        run_type: str,
        triggered_by: str = "manual",
        priority: int = 0,
        payload: Optional[dict] = None,
    ) -> PipelineRun:
        """Create a waiting run, or raise AlreadyQueuedError if one of this type is waiting/active."""
        if run_type not in RUN_TYPES:
            raise UnknownRunTypeError(f"Unknown run type: {run_type}")
        for pending in self.pending_runs(run_type):
            if self.holds_claim(pending):
                raise AlreadyQueuedError(run_type)
            logger.warning(f"{run_type} run {pending.id} lost its claim while {pending.state}; marking failed")
            self.mark_failed(pending.id, "claim expired")

        run = PipelineRun(
            id=uuid.uuid4().hex,
            type=run_type,
            triggered_by=triggered_by,
            priority=priority,
            created_at=self._clock(),
            payload=dict(payload or {}),
        )
        if not self.client.set(self._claim_key(run_type), run.id, nx=True, ex=self.claim_ttl_s):
            raise AlreadyQueuedError(run_type)

        self._save(run)
        self.client.sadd(self._state_key(STATE_WAITING), run.id)
        logger.info(f"Queued {run_type} run {run.id} (triggered by {triggered_by}, priority {priority})")
        return run

    def holds_claim(self, run: PipelineRun) -> bool:
        return self.client.get(self._claim_key(run.type)) == run.id

    def release(self, run: PipelineRun) -> None:
        """Drop the claim if it still belongs to this run."""
        if self.holds_claim(run):
            self.client.delete(self._claim_key(run.type))

    # ---- run records --------------------------------------------------------

    def _save(self, run: PipelineRun) -> None:
        self.client.hset(self._run_key(run.id), mapping=run.to_hash())

    def get(self, run_id: str) -> Optional[PipelineRun]:
        data = self.client.hgetall(self._run_key(run_id))
        if not data:
            return None
        return PipelineRun.from_hash(data)

    def _require(self, run_id: str) -> PipelineRun:
        run = self.get(run_id)
        if run is None:
            raise KeyError(f"Unknown run {run_id}")
        return run

    def mark_active(self, run_id: str, attempt: int) -> PipelineRun:
        run = self._require(run_id)
        run.state = STATE_ACTIVE
        run.attempts = attempt
        run.started_at = self._clock()
        self._save(run)
        self.client.srem(self._state_key(STATE_WAITING), run_id)
        self.client.sadd(self._state_key(STATE_ACTIVE), run_id)
        self.client.expire(self._claim_key(run.type), self.claim_ttl_s)
        return run

    def mark_waiting(self, run_id: str, error: str) -> PipelineRun:
        """Between attempts: back to waiting, claim kept."""
        run = self._require(run_id)
        run.state = STATE_WAITING
        run.error = error
        self._save(run)
        self.client.srem(self._state_key(STATE_ACTIVE), run_id)
        self.client.sadd(self._state_key(STATE_WAITING), run_id)
        self.client.expire(self._claim_key(run.type), self.claim_ttl_s)
        return run

    def mark_completed(self, run_id: str, result: Optional[dict] = None) -> PipelineRun:
        run = self._require(run_id)
        run.state = STATE_COMPLETED
        run.progress = 100
        run.error = None
        run.result = result
        run.finished_at = self._clock()
        self._finish(run, STATE_COMPLETED, self.keep_completed)
        return run

    def mark_failed(self, run_id: str, error: str) -> PipelineRun:
        run = self._require(run_id)
        run.state = STATE_FAILED
        run.error = error
        run.finished_at = self._clock()
        self._finish(run, STATE_FAILED, self.keep_failed)
        return run

    def _finish(self, run: PipelineRun, state: str, keep: int) -> None:
        self._save(run)
        self.client.srem(self._state_key(STATE_ACTIVE), run.id)
        self.client.srem(self._state_key(STATE_WAITING), run.id)
        history = self._state_key(state)
        self.client.lpush(history, run.id)
        for evicted in self.client.lrange(history, keep, -1):
            self.client.delete(self._run_key(evicted))
        self.client.ltrim(history, 0, keep - 1)
        self.release(run)

    def update_progress(self, run_id: str, pct: int, note: str = "") -> None:
        """Monotonic: lower values than the stored progress are ignored. Keeps the claim alive."""
        key = self._run_key(run_id)
        current = self.client.hget(key, "progress")
        if current is None:
            logger.debug(f"Progress for unknown run {run_id} ignored")
            return
        pct = max(0, min(100, int(pct)))
        if pct < int(current or 0):
            return
        self.client.hset(key, mapping={"progress": pct, "note": note or ""})
        run_type = self.client.hget(key, "type")
        if run_type:
            self.client.expire(self._claim_key(run_type), self.claim_ttl_s)

    # ---- status -------------------------------------------------------------

    def recent(self, state: str) -> List[PipelineRun]:
        runs = []
        for run_id in self.client.lrange(self._state_key(state), 0, -1):
            run = self.get(run_id)
            if run is not None:
                runs.append(run)
        return runs

    def stats(self) -> dict:
        return {
            STATE_WAITING: self.client.scard(self._state_key(STATE_WAITING)),
            STATE_ACTIVE: self.client.scard(self._state_key(STATE_ACTIVE)),
            STATE_COMPLETED: self.client.llen(self._state_key(STATE_COMPLETED)),
            STATE_FAILED: self.client.llen(self._state_key(STATE_FAILED)),
        }

    def current_run(self) -> Optional[PipelineRun]:
        """The active run if any, otherwise the oldest waiting one."""
        pending = self.pending_runs()
        active = [r for r in pending if r.state == STATE_ACTIVE]
        if active:
            return active[0]
        waiting = sorted((r for r in pending if r.state == STATE_WAITING), key=lambda r: (r.priority, r.created_at))
        return waiting[0] if waiting else None
