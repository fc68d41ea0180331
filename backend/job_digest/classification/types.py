"""Shared classification types: categories, messages, rules, results and per-category actions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class EmailCategory(str, Enum):
    """Closed set of mailbox categories. Values are what the AI is asked to return."""

    JOB_OPPORTUNITY = "job_opportunity"
    SECURITY = "security"
    FINANCE = "finance"
    SHOPPING = "shopping"
    TRAVEL = "travel"
    HEALTH = "health"
    NEWSLETTER = "newsletter"
    PROMOTIONAL = "promotional"
    AUTOMATED = "automated"
    ENTERTAINMENT = "entertainment"
    PERSONAL = "personal"

    @classmethod
    def parse(cls, raw) -> Optional["EmailCategory"]:
        """Return the category for a raw string value, or None when it is not one of ours."""
        if not isinstance(raw, str):
            return None
        value = raw.strip().lower().replace("-", "_").replace(" ", "_")
        for category in cls:
            if category.value == value:
                return category
        return None


CLASSIFIED_BY_RULE = "rule"
CLASSIFIED_BY_AI = "ai"


@dataclass(frozen=True)
class InboundMessage:
    id: str
    subject: str
    sender: str
    body: str
    received_at: Optional[datetime] = None


@dataclass(frozen=True)
class ClassificationRule:
    category: EmailCategory
    confidence_threshold: float
    priority: int
    content_patterns: Tuple[str, ...] = ()
    from_patterns: Tuple[str, ...] = ()
    subject_patterns: Tuple[str, ...] = ()


@dataclass
class ClassificationResult:
    message_id: str
    category: EmailCategory
    confidence: float
    classified_by: str
    cost: float = 0.0
    latency_ms: float = 0.0

    @property
    def is_job(self) -> bool:
        return self.category == EmailCategory.JOB_OPPORTUNITY


@dataclass(frozen=True)
class EmailAction:
    mark_read: bool = False
    archive: bool = False

    @property
    def is_noop(self) -> bool:
        return not (self.mark_read or self.archive)


# Mailbox action per category. Job mail is handled by the pipeline itself
# (mark read, archive only when postings were extracted).
CATEGORY_ACTIONS = {
    EmailCategory.JOB_OPPORTUNITY: EmailAction(mark_read=True, archive=False),
    EmailCategory.SECURITY: EmailAction(),
    EmailCategory.FINANCE: EmailAction(),
    EmailCategory.SHOPPING: EmailAction(),
    EmailCategory.TRAVEL: EmailAction(),
    EmailCategory.HEALTH: EmailAction(),
    EmailCategory.NEWSLETTER: EmailAction(mark_read=True, archive=True),
    EmailCategory.PROMOTIONAL: EmailAction(mark_read=True, archive=True),
    EmailCategory.AUTOMATED: EmailAction(mark_read=True, archive=False),
    EmailCategory.ENTERTAINMENT: EmailAction(mark_read=True, archive=True),
    EmailCategory.PERSONAL: EmailAction(),
}

_missing = set(EmailCategory) - set(CATEGORY_ACTIONS)
if _missing:
    raise RuntimeError(f"CATEGORY_ACTIONS is missing categories: {sorted(c.value for c in _missing)}")


def action_for(category: EmailCategory) -> EmailAction:
    return CATEGORY_ACTIONS[category]


@dataclass
class ClassificationSummary:
    total: int = 0
    rule_classified: int = 0
    ai_classified: int = 0
    total_cost: float = 0.0
    avg_latency_ms: float = 0.0
    by_category: dict = field(default_factory=dict)
