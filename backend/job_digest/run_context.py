"""Per-run state passed through the pipeline. A fresh RunContext is created for every run."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    progress_sink: Optional[object] = None  # notifier.ProgressSink

    # AI spend for this run
    ai_cost: float = 0.0
    ai_calls: int = 0
    ai_skipped_over_budget: int = 0

    # Classification counters
    rule_classified: int = 0
    ai_classified: int = 0

    # Pipeline counters
    messages_seen: int = 0
    messages_processed: int = 0
    messages_skipped: int = 0
    non_job_messages: int = 0
    jobs_new: int = 0
    jobs_duplicate: int = 0
    errors: int = 0
    relevant_jobs: List = field(default_factory=list)
    new_job_ids: List[str] = field(default_factory=list)

    _last_progress: int = 0

    def can_afford(self, per_item_cost: float, max_cost_per_run: float) -> bool:
        # Small epsilon so 50 x 0.002 still fits a 0.10 budget despite float drift.
        return self.ai_cost + per_item_cost <= max_cost_per_run + 1e-9

    def reset_cost_tracking(self) -> None:
        self.ai_cost = 0.0
        self.ai_calls = 0
        self.ai_skipped_over_budget = 0

    def record_ai_call(self, cost: float) -> None:
        self.ai_cost += cost
        self.ai_calls += 1

    def report_progress(self, pct: int, note: str = "") -> None:
        """Forward a progress checkpoint to the sink. Values never go backwards within a run."""
        pct = max(0, min(100, int(pct)))
        if pct < self._last_progress:
            pct = self._last_progress
        self._last_progress = pct
        logger.info(f"[{self.run_id}] {pct}% {note}".rstrip())
        if self.progress_sink is not None:
            try:
                self.progress_sink.report_progress(self.run_id, pct, note)
            except Exception as e:
                # Progress is advisory; the run must not fail because a sink is down.
                logger.warning(f"Progress sink failed for run {self.run_id}: {e}")

    @property
    def progress(self) -> int:
        return self._last_progress

    def summary(self) -> dict:
        return {
            "run_id": self.run_id,
            "messages_seen": self.messages_seen,
            "messages_processed": self.messages_processed,
            "messages_skipped": self.messages_skipped,
            "non_job_messages": self.non_job_messages,
            "jobs_new": self.jobs_new,
            "jobs_duplicate": self.jobs_duplicate,
            "jobs_relevant": len(self.relevant_jobs),
            "errors": self.errors,
            "rule_classified": self.rule_classified,
            "ai_classified": self.ai_classified,
            "ai_calls": self.ai_calls,
            "ai_cost": round(self.ai_cost, 6),
        }
