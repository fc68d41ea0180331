"""Hybrid classification: rules for everything, AI only for what the rules were unsure about."""

from __future__ import annotations

import logging
from collections import Counter
from typing import List, Optional

from ..config import settings
from ..run_context import RunContext
from .ai_classifier import AIClassifier
from .rule_classifier import RuleClassifier
from .types import CLASSIFIED_BY_AI, CLASSIFIED_BY_RULE, ClassificationResult, ClassificationSummary, InboundMessage

logger = logging.getLogger(__name__)


class HybridClassifier:
    def __init__(
        self,
        rule_classifier: Optional[RuleClassifier] = None,
        ai_classifier: Optional[AIClassifier] = None,
        *,
        confidence_threshold: Optional[float] = None,
        ai_fallback_enabled: Optional[bool] = None,
    ):
        self.rules = rule_classifier or RuleClassifier()
        self.ai = ai_classifier or AIClassifier()
        self.confidence_threshold = (
            settings.email_rule_confidence_threshold if confidence_threshold is None else confidence_threshold
        )
        self.ai_fallback_enabled = (
            settings.email_ai_fallback_enabled if ai_fallback_enabled is None else ai_fallback_enabled
        )

    def classify(self, messages: List[InboundMessage], ctx: RunContext) -> List[ClassificationResult]:
        """One result per message, in input order. AI results replace low-confidence rule results."""
        rule_results = self.rules.classify_many(messages)
        uncertain_idx = [i for i, r in enumerate(rule_results) if r.confidence < self.confidence_threshold]

        final = list(rule_results)
        if uncertain_idx and self.ai_fallback_enabled:
            logger.info(f"{len(uncertain_idx)} of {len(messages)} message(s) need AI classification")
            ai_results = self.ai.classify_many([messages[i] for i in uncertain_idx], ctx)
            for i, ai_result in zip(uncertain_idx, ai_results):
                final[i] = ai_result

        ctx.rule_classified += sum(1 for r in final if r.classified_by == CLASSIFIED_BY_RULE)
        ctx.ai_classified += sum(1 for r in final if r.classified_by == CLASSIFIED_BY_AI)
        return final

    def classify_one(self, message: InboundMessage, ctx: RunContext) -> ClassificationResult:
        return self.classify([message], ctx)[0]


def summarize(results: List[ClassificationResult]) -> ClassificationSummary:
    total = len(results)
    return ClassificationSummary(
        total=total,
        rule_classified=sum(1 for r in results if r.classified_by == CLASSIFIED_BY_RULE),
        ai_classified=sum(1 for r in results if r.classified_by == CLASSIFIED_BY_AI),
        total_cost=sum(r.cost for r in results),
        avg_latency_ms=(sum(r.latency_ms for r in results) / total) if total else 0.0,
        by_category=dict(Counter(r.category.value for r in results)),
    )
