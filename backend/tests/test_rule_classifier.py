"""Rule classifier: scoring, priority ordering and fallbacks."""
from job_digest.classification.rule_classifier import (
    NO_MATCH_CONFIDENCE,
    RuleClassifier,
    normalize_message,
    score_rule,
)
from job_digest.classification.rules import CLASSIFICATION_RULES, rules_by_priority
from job_digest.classification.types import (
    CATEGORY_ACTIONS,
    ClassificationRule,
    EmailCategory,
    InboundMessage,
)


def _msg(subject, sender, body, mid="m1"):
    return InboundMessage(id=mid, subject=subject, sender=sender, body=body)


def test_linkedin_job_alert_is_job_opportunity():
    result = RuleClassifier().classify(
        _msg("New jobs for you: Python Developer", "jobs-noreply@linkedin.com", "Apply now to 5 new roles")
    )
    assert result.category == EmailCategory.JOB_OPPORTUNITY
    # content + from + subject all hit; confidence is capped below 1
    assert result.confidence == 0.98
    assert result.classified_by == "rule"
    assert result.cost == 0.0


def test_job_rule_outranks_security_when_both_fire():
    message = _msg(
        "Security alert: Security Engineer job",
        "jobs-noreply@linkedin.com",
        "Job alert with a security alert theme. Apply now.",
    )
    security = next(r for r in CLASSIFICATION_RULES if r.category == EmailCategory.SECURITY)
    subject, sender, body = normalize_message(message)
    assert score_rule(security, subject, sender, body) >= security.confidence_threshold

    result = RuleClassifier().classify(message)
    assert result.category == EmailCategory.JOB_OPPORTUNITY


def test_newsletter_classified_by_rules():
    result = RuleClassifier().classify(
        _msg("Your weekly digest", "newsletter@medium.com", "Top stories this week. Click to unsubscribe.")
    )
    assert result.category == EmailCategory.NEWSLETTER
    assert result.confidence >= 0.85


def test_unmatched_message_is_low_confidence_personal():
    result = RuleClassifier().classify(_msg("Lunch tomorrow?", "alice@example.com", "Are you free at noon?"))
    assert result.category == EmailCategory.PERSONAL
    assert result.confidence == NO_MATCH_CONFIDENCE


def test_score_renormalizes_over_configured_groups():
    rule = ClassificationRule(
        category=EmailCategory.FINANCE,
        confidence_threshold=0.9,
        priority=1,
        content_patterns=("invoice",),
        from_patterns=("billing@",),
    )
    # No subject patterns configured: content + from reach a full score
    assert score_rule(rule, "hello", "billing@acme.com", "your invoice") == 1.0
    assert round(score_rule(rule, "hello", "someone@acme.com", "your invoice"), 6) == round(0.6 / 0.9, 6)


def test_body_is_truncated_before_matching():
    rule = ClassificationRule(
        category=EmailCategory.PROMOTIONAL,
        confidence_threshold=0.5,
        priority=1,
        content_patterns=("coupon",),
    )
    classifier = RuleClassifier(rules=[rule], body_chars=20)
    late = _msg("hi", "x@y.com", "a" * 50 + " coupon inside")
    early = _msg("hi", "x@y.com", "coupon inside")
    assert classifier.classify(late).category == EmailCategory.PERSONAL
    assert classifier.classify(early).category == EmailCategory.PROMOTIONAL


def test_higher_priority_rule_wins_regardless_of_declared_order():
    low = ClassificationRule(EmailCategory.PROMOTIONAL, 0.5, priority=10, content_patterns=("sale",))
    high = ClassificationRule(EmailCategory.SHOPPING, 0.5, priority=20, content_patterns=("sale",))
    classifier = RuleClassifier(rules=[low, high])
    assert [r.priority for r in classifier.rules] == [20, 10]
    assert classifier.classify(_msg("big sale", "a@b.com", "")).category == EmailCategory.SHOPPING


def test_rules_by_priority_is_descending_and_stable():
    ordered = rules_by_priority()
    priorities = [r.priority for r in ordered]
    assert priorities == sorted(priorities, reverse=True)
    assert ordered[0].category == EmailCategory.JOB_OPPORTUNITY
    # travel and health share priority 75; declaration order is kept
    same = [r.category for r in ordered if r.priority == 75]
    assert same == [EmailCategory.TRAVEL, EmailCategory.HEALTH]


def test_test_rule_reports_score():
    fired, score = RuleClassifier().test_rule(
        EmailCategory.JOB_OPPORTUNITY, "linkedin job alert: new job hiring"
    )
    assert fired is True
    assert score == 1.0


def test_every_category_has_an_action():
    assert set(CATEGORY_ACTIONS) == set(EmailCategory)
    assert CATEGORY_ACTIONS[EmailCategory.NEWSLETTER].archive is True
    assert CATEGORY_ACTIONS[EmailCategory.SECURITY].is_noop


def test_category_parse():
    assert EmailCategory.parse("Job Opportunity") == EmailCategory.JOB_OPPORTUNITY
    assert EmailCategory.parse("spam") is None
    assert EmailCategory.parse(None) is None
