"""Rule-based email classifier: fast, free, deterministic."""

from __future__ import annotations

import logging
import time
from typing import Iterable, List, Optional, Tuple

from ..config import settings
from .rules import rules_by_priority
from .types import (
    CLASSIFIED_BY_RULE,
    ClassificationResult,
    ClassificationRule,
    EmailCategory,
    InboundMessage,
)

logger = logging.getLogger(__name__)

CONTENT_WEIGHT = 0.6
FROM_WEIGHT = 0.3
SUBJECT_WEIGHT = 0.1

MAX_RULE_CONFIDENCE = 0.98
NO_MATCH_CONFIDENCE = 0.3
ERROR_CONFIDENCE = 0.1


def _matches_any(text: str, patterns: Iterable[str]) -> bool:
    return any(p in text for p in patterns)


def normalize_message(message: InboundMessage, body_chars: Optional[int] = None) -> Tuple[str, str, str]:
    """Lower-cased (subject, sender, body); body cut to the first `body_chars` characters."""
    limit = settings.email_rule_body_chars if body_chars is None else body_chars
    subject = (message.subject or "").lower().strip()
    sender = (message.sender or "").lower().strip()
    body = (message.body or "").lower()[:limit].strip()
    return subject, sender, body


def score_rule(rule: ClassificationRule, subject: str, sender: str, body: str) -> float:
    """
    Weighted score of one rule against normalized fields.

    Each pattern group is binary: any hit earns the group's full weight. The sum
    is divided by the weights of the groups the rule actually configures, so a
    rule without subject patterns can still reach 1.0.
    """
    score = 0.0
    max_score = 0.0
    content_text = f"{subject} {body}"

    if rule.content_patterns:
        max_score += CONTENT_WEIGHT
        if _matches_any(content_text, rule.content_patterns):
            score += CONTENT_WEIGHT
    if rule.from_patterns:
        max_score += FROM_WEIGHT
        if _matches_any(sender, rule.from_patterns):
            score += FROM_WEIGHT
    if rule.subject_patterns:
        max_score += SUBJECT_WEIGHT
        if _matches_any(subject, rule.subject_patterns):
            score += SUBJECT_WEIGHT

    return score / max_score if max_score > 0 else 0.0


class RuleClassifier:
    """Tries rules in descending priority; the first rule reaching its own threshold wins."""

    def __init__(self, rules: Optional[List[ClassificationRule]] = None, body_chars: Optional[int] = None):
        self.rules = rules_by_priority(rules)
        self.body_chars = body_chars
        logger.debug(f"RuleClassifier initialized with {len(self.rules)} rules")

    def classify(self, message: InboundMessage) -> ClassificationResult:
        started = time.monotonic()
        try:
            subject, sender, body = normalize_message(message, self.body_chars)
            category, confidence = self._first_firing_rule(subject, sender, body)
        except Exception as e:
            logger.error(f"Rule classification failed for message {message.id}: {e}")
            category, confidence = EmailCategory.PERSONAL, ERROR_CONFIDENCE
        return ClassificationResult(
            message_id=message.id,
            category=category,
            confidence=confidence,
            classified_by=CLASSIFIED_BY_RULE,
            cost=0.0,
            latency_ms=(time.monotonic() - started) * 1000.0,
        )

    def classify_many(self, messages: List[InboundMessage]) -> List[ClassificationResult]:
        results = [self.classify(m) for m in messages]
        threshold = settings.email_rule_confidence_threshold
        confident = sum(1 for r in results if r.confidence >= threshold)
        logger.info(f"Rule classification: {confident}/{len(messages)} high-confidence matches")
        return results

    def _first_firing_rule(self, subject: str, sender: str, body: str) -> Tuple[EmailCategory, float]:
        for rule in self.rules:
            score = score_rule(rule, subject, sender, body)
            if score >= rule.confidence_threshold:
                return rule.category, min(score, MAX_RULE_CONFIDENCE)
        return EmailCategory.PERSONAL, NO_MATCH_CONFIDENCE

    def test_rule(self, category: EmailCategory, sample_text: str) -> Tuple[bool, float]:
        """Score one category's rule against free text used as subject, sender and body."""
        rule = next((r for r in self.rules if r.category == category), None)
        if rule is None:
            return False, 0.0
        text = (sample_text or "").lower()
        score = score_rule(rule, text, text, text)
        return score >= rule.confidence_threshold, score
