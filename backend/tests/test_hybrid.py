"""Hybrid coordinator: rules first, AI for low-confidence results only."""
import json

from job_digest.classification.ai_classifier import AIClassifier
from job_digest.classification.hybrid import HybridClassifier, summarize
from job_digest.classification.types import EmailCategory, InboundMessage
from job_digest.run_context import RunContext

JOB = InboundMessage(
    id="job", subject="New jobs for you", sender="jobs-noreply@linkedin.com", body="Apply now"
)
FRIEND = InboundMessage(id="friend", subject="Dinner?", sender="bob@example.com", body="Saturday at 7?")


def _hybrid(fake_call_llm, **kwargs):
    ai = AIClassifier(max_cost_per_run=0.10, cost_per_email=0.002, delay_ms=0, call_llm=fake_call_llm)
    return HybridClassifier(ai_classifier=ai, confidence_threshold=0.8, **kwargs)


def test_only_uncertain_messages_reach_the_ai():
    prompts = []

    def fake_call_llm(prompt, **kwargs):
        prompts.append(prompt)
        return json.dumps({"category": "personal", "confidence": 0.9})

    ctx = RunContext()
    results = _hybrid(fake_call_llm).classify([JOB, FRIEND], ctx)

    assert [r.message_id for r in results] == ["job", "friend"]
    assert results[0].category == EmailCategory.JOB_OPPORTUNITY
    assert results[0].classified_by == "rule"
    assert results[1].classified_by == "ai"
    assert len(prompts) == 1
    assert "Dinner?" in prompts[0]
    assert ctx.rule_classified == 1
    assert ctx.ai_classified == 1


def test_ai_disabled_keeps_rule_results():
    def fake_call_llm(prompt, **kwargs):
        raise AssertionError("AI must not be called")

    ctx = RunContext()
    results = _hybrid(fake_call_llm, ai_fallback_enabled=False).classify([FRIEND], ctx)
    assert results[0].classified_by == "rule"
    assert results[0].category == EmailCategory.PERSONAL
    assert ctx.ai_calls == 0


def test_summarize_counts_sources_and_cost():
    def fake_call_llm(prompt, **kwargs):
        return json.dumps({"category": "job_opportunity", "confidence": 0.85})

    results = _hybrid(fake_call_llm).classify([JOB, FRIEND], RunContext())
    summary = summarize(results)
    assert summary.total == 2
    assert summary.rule_classified == 1
    assert summary.ai_classified == 1
    assert round(summary.total_cost, 6) == 0.002
    assert summary.by_category == {"job_opportunity": 2}
