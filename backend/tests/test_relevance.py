"""Resume analysis and relevance scoring."""
import json
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
import requests

from job_digest.job_extraction import ExtractedJob
from job_digest.relevance import (
    RelevanceScorer,
    ResumeAnalyzer,
    ResumeProfile,
    clamp_score,
    fetch_job_url_content,
)

PROFILE = ResumeProfile(skills=["Python"], experience=["5 years backend"], preferred_roles=["Backend Engineer"])


def _job(url="https://example.com/jobs/1"):
    return ExtractedJob(id="job_url_x", title="Backend Engineer", company="Acme", apply_url=url)


def test_resume_analyzer_parses_profile():
    def fake_call_llm(prompt, **kwargs):
        return json.dumps(
            {"skills": ["Python", "SQL"], "experience": ["6 years"], "preferredRoles": ["Backend"], "seniority": "Senior"}
        )

    profile = ResumeAnalyzer(call_llm=fake_call_llm).analyze_text("resume text")
    assert profile.skills == ["Python", "SQL"]
    assert profile.preferred_roles == ["Backend"]
    assert profile.seniority == "senior"


def test_resume_analyzer_rejects_invalid_json():
    with pytest.raises(ValueError):
        ResumeAnalyzer(call_llm=lambda prompt, **kw: "no json here").analyze_text("resume")


def test_profile_staleness():
    now = datetime(2026, 10, 19)
    assert ResumeProfile(analyzed_at=now - timedelta(days=8)).is_stale(7, now)
    assert not ResumeProfile(analyzed_at=now - timedelta(days=2)).is_stale(7, now)


def test_score_uses_fetched_page_when_available():
    prompts = []

    def fake_call_llm(prompt, **kwargs):
        prompts.append(prompt)
        return "0.82"

    scorer = RelevanceScorer(call_llm=fake_call_llm, fetch_url=lambda url: "Full posting text about Django")
    assert scorer.score(_job(), PROFILE) == 0.82
    assert "source: url + email" in prompts[0]
    assert "Full posting text about Django" in prompts[0]


def test_score_falls_back_to_email_when_fetch_fails():
    prompts = []

    def fake_call_llm(prompt, **kwargs):
        prompts.append(prompt)
        return "Score: 0.4"

    def failing_fetch(url):
        raise requests.Timeout("too slow")

    assert RelevanceScorer(call_llm=fake_call_llm, fetch_url=failing_fetch).score(_job(), PROFILE) == 0.4
    assert "source: email" in prompts[0]


def test_score_failure_is_zero():
    def fake_call_llm(prompt, **kwargs):
        raise RuntimeError("boom")

    assert RelevanceScorer(call_llm=fake_call_llm, fetch_url=lambda url: "").score(_job(), PROFILE) == 0.0


def test_clamp_score():
    assert clamp_score("1.7") == 1.0
    assert clamp_score("-3") == 0.0
    assert clamp_score("nothing") == 0.0


def test_fetch_job_url_content_strips_html_and_caps_length():
    session = MagicMock()
    session.get.return_value.text = "<html><script>x()</script><p>" + "word " * 1000 + "</p></html>"
    text = fetch_job_url_content("https://example.com/job", timeout=3, session=session)
    assert "x()" not in text
    assert len(text) == 3003
    assert text.endswith("...")
    assert session.get.call_args.kwargs["timeout"] == 3


def test_fetch_job_url_content_drops_consent_pages():
    session = MagicMock()
    session.get.return_value.text = "<p>We use cookie settings. Accept?</p>"
    assert fetch_job_url_content("https://example.com/job", session=session) == ""
