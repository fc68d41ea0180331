"""
LLM fallback classifier for messages the rules could not place confidently.

Spend is metered against the run's RunContext: once the next call would push the
run over `email_max_ai_cost_per_run`, remaining messages get a zero-cost
fallback instead of an API call.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from .. import llm
from ..config import settings
from ..run_context import RunContext
from .types import CLASSIFIED_BY_AI, ClassificationResult, EmailCategory, InboundMessage

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = EmailCategory.PERSONAL
FALLBACK_CONFIDENCE = 0.5
DEFAULT_CONFIDENCE = 0.7

SYSTEM_PROMPT = "You are an expert email classifier. Return only valid JSON with category and confidence."


def _build_prompt(message: InboundMessage) -> str:
    return f"""Classify this email into the most appropriate category:

From: {message.sender}
Subject: {message.subject}
Content Preview: {(message.body or '')[:400]}...

Return JSON in this exact format:
{{"category": "category_name", "confidence": 0.85}}

Available categories:
- job_opportunity: Job alerts, recruiter outreach, job board digests, hiring announcements
- security: 2FA codes, login alerts, account security, password resets
- finance: Banking, payments, bills, receipts, financial statements
- shopping: Orders, shipping, e-commerce, product receipts
- newsletter: Subscriptions, mailing lists, weekly/daily updates
- promotional: Marketing emails, sales, deals, advertisements
- automated: System notifications, confirmations, auto-generated messages
- travel: Flight bookings, hotel reservations, travel confirmations
- health: Medical appointments, health records, pharmacy notifications
- entertainment: Games, streaming services, social media, entertainment
- personal: Friends, family, personal correspondence, everything else

Guidelines:
- Use high confidence (0.8-0.9) for clear matches
- Use medium confidence (0.6-0.8) for likely matches
- Use lower confidence (0.5-0.6) for uncertain cases
- Default to "personal" category when unclear"""


def coerce_confidence(raw) -> float:
    """Accept a number or numeric string in [0, 1]; anything else becomes DEFAULT_CONFIDENCE."""
    value = None
    if isinstance(raw, bool):
        value = None
    elif isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            value = None
    if value is None or value != value or value < 0.0 or value > 1.0:
        return DEFAULT_CONFIDENCE
    return value


def fallback_result(message_id: str) -> ClassificationResult:
    return ClassificationResult(
        message_id=message_id,
        category=FALLBACK_CATEGORY,
        confidence=FALLBACK_CONFIDENCE,
        classified_by=CLASSIFIED_BY_AI,
        cost=0.0,
        latency_ms=0.0,
    )


class AIClassifier:
    def __init__(
        self,
        *,
        max_cost_per_run: Optional[float] = None,
        cost_per_email: Optional[float] = None,
        delay_ms: Optional[int] = None,
        call_llm: Optional[Callable[..., str]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_cost_per_run = settings.email_max_ai_cost_per_run if max_cost_per_run is None else max_cost_per_run
        self.cost_per_email = settings.email_ai_cost_per_email if cost_per_email is None else cost_per_email
        self.delay_ms = settings.email_ai_delay_ms if delay_ms is None else delay_ms
        self._call_llm = call_llm
        self._sleep = sleep

    def reset_cost_tracking(self, ctx: RunContext) -> None:
        """Start the run's AI budget from zero."""
        if ctx.ai_calls or ctx.ai_skipped_over_budget:
            logger.info(f"Resetting AI spend for run {ctx.run_id} (was ${ctx.ai_cost:.3f} over {ctx.ai_calls} call(s))")
        ctx.reset_cost_tracking()

    def classify_many(self, messages: List[InboundMessage], ctx: RunContext) -> List[ClassificationResult]:
        """Classify in order; never raises. Over-budget and failed items get the fallback."""
        results: List[ClassificationResult] = []
        made_call = False
        for message in messages:
            if not ctx.can_afford(self.cost_per_email, self.max_cost_per_run):
                ctx.ai_skipped_over_budget += 1
                results.append(fallback_result(message.id))
                continue
            if made_call and self.delay_ms > 0:
                self._sleep(self.delay_ms / 1000.0)
            made_call = True
            results.append(self._classify_one(message, ctx))

        if ctx.ai_skipped_over_budget:
            logger.warning(
                f"AI budget reached (${ctx.ai_cost:.3f} of ${self.max_cost_per_run:.3f}); "
                f"{ctx.ai_skipped_over_budget} message(s) got the fallback category"
            )
        logger.info(f"AI classification: {len(messages)} message(s), run cost ${ctx.ai_cost:.3f}")
        return results

    def classify(self, message: InboundMessage, ctx: RunContext) -> ClassificationResult:
        return self.classify_many([message], ctx)[0]

    def _classify_one(self, message: InboundMessage, ctx: RunContext) -> ClassificationResult:
        started = time.monotonic()
        call = self._call_llm or llm.call_llm
        try:
            text = call(
                _build_prompt(message),
                max_tokens=100,
                force_json=True,
                system=SYSTEM_PROMPT,
                temperature=0.1,
            )
        except Exception as e:
            logger.warning(f"AI classification failed for message {message.id}: {e}")
            return fallback_result(message.id)

        ctx.record_ai_call(self.cost_per_email)
        data = llm.parse_json_response(text)
        if not isinstance(data, dict):
            logger.warning(f"AI returned unparsable classification for message {message.id}")
            return fallback_result(message.id)

        category = EmailCategory.parse(data.get("category")) or FALLBACK_CATEGORY
        return ClassificationResult(
            message_id=message.id,
            category=category,
            confidence=coerce_confidence(data.get("confidence")),
            classified_by=CLASSIFIED_BY_AI,
            cost=self.cost_per_email,
            latency_ms=(time.monotonic() - started) * 1000.0,
        )
