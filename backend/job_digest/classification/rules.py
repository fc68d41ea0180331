"""
Static classification ruleset.

Rules are evaluated in descending priority; the first rule whose score reaches
its own threshold wins. Patterns are lower-case substrings.
"""

from __future__ import annotations

from typing import List, Optional

from .types import ClassificationRule, EmailCategory


CLASSIFICATION_RULES: List[ClassificationRule] = [
    ClassificationRule(
        category=EmailCategory.JOB_OPPORTUNITY,
        confidence_threshold=0.85,
        priority=110,
        content_patterns=(
            "job alert", "apply now", "new job", "hiring", "job opportunity",
            "jobs you may be interested in", "recommended jobs", "easy apply",
            "is hiring", "new jobs for you",
        ),
        from_patterns=(
            "linkedin", "jobstreet", "indeed", "glassdoor", "kalibrr",
            "jobs@", "careers@", "jobalerts", "jobs-noreply",
        ),
        subject_patterns=(
            "job", "hiring", "position", "opportunit", "role", "career",
        ),
    ),
    ClassificationRule(
        category=EmailCategory.SECURITY,
        confidence_threshold=0.95,
        priority=100,
        content_patterns=(
            "security alert", "login attempt", "password changed", "password reset",
            "verification code", "2fa", "two-factor", "suspicious activity",
            "account locked", "unauthorized access", "breach", "verify your account",
            "confirm your identity", "security notification",
        ),
        from_patterns=(
            "security@", "noreply@", "no-reply@", "alert@", "notifications@",
            "account@", "support@",
        ),
        subject_patterns=("security alert", "action required", "verify", "confirm", "suspicious"),
    ),
    ClassificationRule(
        category=EmailCategory.FINANCE,
        confidence_threshold=0.90,
        priority=90,
        content_patterns=(
            "bank", "payment", "invoice", "receipt", "statement", "bill",
            "transaction", "balance", "refund", "charge", "deposit",
            "withdrawal", "transfer", "account summary",
        ),
        from_patterns=(
            "paypal", "stripe", "bank", "billing@", "finance@", "payments@",
            "invoices@", "visa", "mastercard", "amex",
        ),
        subject_patterns=("payment", "invoice", "receipt", "statement", "bill", "refund"),
    ),
    ClassificationRule(
        category=EmailCategory.SHOPPING,
        confidence_threshold=0.85,
        priority=80,
        content_patterns=(
            "order", "shipping", "delivery", "tracking", "package",
            "shipped", "cart", "checkout", "purchase", "your order",
            "order confirmation", "delivery confirmation",
        ),
        from_patterns=(
            "amazon", "ebay", "etsy", "shopify", "orders@", "shipping@",
            "store@", "shop@",
        ),
        subject_patterns=("order", "shipping", "delivery", "tracking", "shipped"),
    ),
    ClassificationRule(
        category=EmailCategory.TRAVEL,
        confidence_threshold=0.85,
        priority=75,
        content_patterns=(
            "flight", "booking", "reservation", "hotel", "trip", "travel",
            "itinerary", "boarding pass", "check-in", "airline", "airport",
        ),
        from_patterns=(
            "booking", "expedia", "airbnb", "airlines", "hotel", "travel",
            "reservations@",
        ),
        subject_patterns=("booking", "flight", "hotel", "trip", "reservation", "itinerary"),
    ),
    ClassificationRule(
        category=EmailCategory.HEALTH,
        confidence_threshold=0.85,
        priority=75,
        content_patterns=(
            "appointment", "doctor", "medical", "health", "clinic", "hospital",
            "prescription", "pharmacy", "vaccine", "test results",
            "dental", "checkup",
        ),
        from_patterns=("health", "medical", "clinic", "hospital", "doctor", "pharmacy"),
        subject_patterns=("appointment", "medical", "health", "doctor", "clinic"),
    ),
    ClassificationRule(
        category=EmailCategory.NEWSLETTER,
        confidence_threshold=0.85,
        priority=70,
        content_patterns=(
            "newsletter", "unsubscribe", "weekly digest", "daily digest",
            "mailing list", "email preferences", "subscription",
            "roundup", "update",
        ),
        from_patterns=(
            "newsletter@", "digest@", "updates@", "mailer@", "news@",
            "subscriptions@",
        ),
        subject_patterns=("newsletter", "digest", "weekly", "daily", "roundup"),
    ),
    ClassificationRule(
        category=EmailCategory.PROMOTIONAL,
        confidence_threshold=0.80,
        priority=60,
        content_patterns=(
            "sale", "discount", "deal", "offer", "coupon", "% off",
            "limited time", "exclusive", "promotion", "special offer",
            "act now", "don't miss",
        ),
        from_patterns=("marketing@", "promo@", "offers@", "deals@", "sales@"),
        subject_patterns=("sale", "discount", "offer", "deal", "promotion", "% off"),
    ),
    ClassificationRule(
        category=EmailCategory.AUTOMATED,
        confidence_threshold=0.80,
        priority=50,
        content_patterns=(
            "confirmation", "automated", "system", "notification",
            "alert", "reminder", "auto-generated", "do not reply",
        ),
        from_patterns=(
            "noreply@", "no-reply@", "automated@", "system@",
            "notifications@", "alerts@",
        ),
        subject_patterns=("confirmation", "notification", "reminder", "alert", "automated"),
    ),
    ClassificationRule(
        category=EmailCategory.ENTERTAINMENT,
        confidence_threshold=0.75,
        priority=40,
        content_patterns=(
            "game", "gaming", "stream", "movie", "music", "podcast",
            "video", "entertainment", "social",
        ),
        from_patterns=(
            "netflix", "spotify", "youtube", "twitch", "gaming",
            "facebook", "twitter", "instagram",
        ),
        subject_patterns=("game", "stream", "movie", "music", "video"),
    ),
]


def rules_by_priority(rules: Optional[List[ClassificationRule]] = None) -> List[ClassificationRule]:
    """Rules sorted by priority, highest first. Equal priorities keep their declared order."""
    return sorted(rules if rules is not None else CLASSIFICATION_RULES, key=lambda r: -r.priority)


def rule_for_category(category: EmailCategory) -> Optional[ClassificationRule]:
    for rule in CLASSIFICATION_RULES:
        if rule.category == category:
            return rule
    return None
