"""AI fallback classifier: budget, coercion and failure handling."""
import json

from job_digest.classification.ai_classifier import AIClassifier, coerce_confidence
from job_digest.classification.types import EmailCategory, InboundMessage
from job_digest.run_context import RunContext


def _messages(n):
    return [InboundMessage(id=f"m{i}", subject=f"s{i}", sender="a@b.com", body="hello") for i in range(n)]


def _classifier(fake_call_llm, **kwargs):
    kwargs.setdefault("max_cost_per_run", 0.10)
    kwargs.setdefault("cost_per_email", 0.002)
    kwargs.setdefault("delay_ms", 0)
    return AIClassifier(call_llm=fake_call_llm, sleep=lambda s: None, **kwargs)


def test_cost_never_exceeds_budget_and_rest_fall_back():
    calls = {"n": 0}

    def fake_call_llm(prompt, **kwargs):
        calls["n"] += 1
        return json.dumps({"category": "finance", "confidence": 0.9})

    ctx = RunContext()
    results = _classifier(fake_call_llm).classify_many(_messages(60), ctx)

    assert len(results) == 60
    assert calls["n"] == 50
    assert ctx.ai_cost <= 0.10 + 1e-9
    assert ctx.ai_skipped_over_budget == 10
    assert all(r.category == EmailCategory.FINANCE for r in results[:50])
    for r in results[50:]:
        assert r.category == EmailCategory.PERSONAL
        assert r.confidence == 0.5
        assert r.cost == 0.0


def test_budget_is_per_run_context():
    def fake_call_llm(prompt, **kwargs):
        return json.dumps({"category": "travel", "confidence": 0.8})

    classifier = _classifier(fake_call_llm, max_cost_per_run=0.004)
    first = RunContext()
    classifier.classify_many(_messages(3), first)
    assert first.ai_calls == 2

    second = RunContext()
    classifier.classify_many(_messages(2), second)
    assert second.ai_calls == 2


def test_reset_cost_tracking_restores_the_budget():
    def fake_call_llm(prompt, **kwargs):
        return json.dumps({"category": "travel", "confidence": 0.8})

    classifier = _classifier(fake_call_llm, max_cost_per_run=0.004)
    ctx = RunContext()
    classifier.classify_many(_messages(3), ctx)
    assert (ctx.ai_calls, ctx.ai_skipped_over_budget) == (2, 1)

    classifier.reset_cost_tracking(ctx)
    assert (ctx.ai_cost, ctx.ai_calls, ctx.ai_skipped_over_budget) == (0.0, 0, 0)
    results = classifier.classify_many(_messages(2), ctx)
    assert [r.category for r in results] == [EmailCategory.TRAVEL, EmailCategory.TRAVEL]


def test_unknown_category_and_bad_confidence_are_coerced():
    def fake_call_llm(prompt, **kwargs):
        return '```json\n{"category": "spam", "confidence": "very"}\n```'

    result = _classifier(fake_call_llm).classify(_messages(1)[0], RunContext())
    assert result.category == EmailCategory.PERSONAL
    assert result.confidence == 0.7
    assert result.classified_by == "ai"


def test_provider_error_gives_fallback_without_cost():
    def fake_call_llm(prompt, **kwargs):
        raise RuntimeError("rate limited")

    ctx = RunContext()
    result = _classifier(fake_call_llm).classify(_messages(1)[0], ctx)
    assert result.category == EmailCategory.PERSONAL
    assert result.confidence == 0.5
    assert ctx.ai_cost == 0.0


def test_unparsable_output_falls_back():
    result = _classifier(lambda prompt, **kw: "I think it is a newsletter").classify(_messages(1)[0], RunContext())
    assert result.category == EmailCategory.PERSONAL
    assert result.confidence == 0.5


def test_delay_between_calls_only():
    slept = []
    classifier = AIClassifier(
        max_cost_per_run=1.0,
        cost_per_email=0.002,
        delay_ms=200,
        call_llm=lambda prompt, **kw: '{"category": "health", "confidence": 0.8}',
        sleep=slept.append,
    )
    classifier.classify_many(_messages(3), RunContext())
    assert slept == [0.2, 0.2]


def test_coerce_confidence():
    assert coerce_confidence(0.42) == 0.42
    assert coerce_confidence("0.9") == 0.9
    assert coerce_confidence(1.5) == 0.7
    assert coerce_confidence(None) == 0.7
    assert coerce_confidence(True) == 0.7
