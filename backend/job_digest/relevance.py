"""Candidate profile (resume analysis) and job relevance scoring."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import PyPDF2
import requests

from . import llm
from .config import settings

logger = logging.getLogger(__name__)

MAX_URL_CONTENT_CHARS = 3000
_BOILERPLATE = ("cookie", "privacy policy", "terms of service", "©", "copyright")
_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

SENIORITY_LEVELS = ("junior", "mid", "senior", "lead", "principal")


@dataclass
class ResumeProfile:
    skills: List[str] = field(default_factory=list)
    experience: List[str] = field(default_factory=list)
    preferred_roles: List[str] = field(default_factory=list)
    seniority: str = "mid"
    analyzed_at: datetime = field(default_factory=datetime.utcnow)

    def is_stale(self, max_age_days: int, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return (now - self.analyzed_at).days >= max_age_days


def _resolve_path(path: str) -> Path:
    p = Path(path)
    if p.is_absolute():
        return p
    # backend/job_digest/relevance.py -> backend/
    return Path(__file__).resolve().parents[1] / p


def read_resume_text(path: str) -> str:
    """Text of a PDF (PyPDF2) or plain-text resume."""
    resolved = _resolve_path(path)
    if resolved.suffix.lower() == ".pdf":
        text_parts = []
        with open(resolved, "rb") as f:
            pdf_reader = PyPDF2.PdfReader(f)
            for page in pdf_reader.pages:
                text_parts.append(page.extract_text() or "")
        return "\n\n".join(text_parts)
    return resolved.read_text(encoding="utf-8", errors="replace")


def _str_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


class ResumeAnalyzer:
    def __init__(self, call_llm: Optional[Callable[..., str]] = None):
        self._call_llm = call_llm

    def analyze_text(self, resume_text: str) -> ResumeProfile:
        prompt = f"""Analyze this resume and extract key information for job matching:

Resume Content:
{resume_text[:12000]}

Return a JSON object with this structure:
{{
  "skills": ["skill1", "skill2"],
  "experience": ["experience1", "experience2"],
  "preferredRoles": ["role1", "role2"],
  "seniority": "junior|mid|senior|lead|principal"
}}

Focus on technical skills, years of experience and seniority, preferred job titles and key highlights."""
        call = self._call_llm or llm.call_llm
        text = call(
            prompt,
            max_tokens=1000,
            force_json=True,
            system="You are an expert at analyzing resumes. Return only valid JSON.",
            temperature=0.1,
        )
        data = llm.parse_json_response(text)
        if not isinstance(data, dict):
            raise ValueError("Resume analysis returned invalid JSON")
        seniority = str(data.get("seniority") or "mid").strip().lower()
        return ResumeProfile(
            skills=_str_list(data.get("skills")),
            experience=_str_list(data.get("experience")),
            preferred_roles=_str_list(data.get("preferredRoles") or data.get("preferred_roles")),
            seniority=seniority if seniority in SENIORITY_LEVELS else "mid",
        )

    def analyze(self, path: Optional[str] = None) -> ResumeProfile:
        path = path or settings.resume_path
        logger.info(f"Analyzing resume at {path}")
        return self.analyze_text(read_resume_text(path))


def html_to_text(html: str) -> str:
    text = re.sub(r"<script\b[\s\S]*?</script>", "", html or "", flags=re.I)
    text = re.sub(r"<style\b[\s\S]*?</style>", "", text, flags=re.I)
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"&[a-zA-Z0-9#]+;", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def fetch_job_url_content(url: str, timeout: Optional[float] = None, session=None) -> str:
    """
    Visible text of a job posting page, capped at MAX_URL_CONTENT_CHARS.

    Raises requests exceptions on timeout or HTTP errors; callers fall back to
    the email content.
    """
    timeout = settings.job_url_fetch_timeout_s if timeout is None else timeout
    http = session or requests
    response = http.get(url, headers=_BROWSER_HEADERS, timeout=timeout)
    response.raise_for_status()
    text = html_to_text(response.text)
    if len(text) > MAX_URL_CONTENT_CHARS:
        text = text[:MAX_URL_CONTENT_CHARS] + "..."
    # Consent walls and error pages are short and mostly boilerplate
    lowered = text.lower()
    if len(text) <= 10 or (len(text) < 200 and any(b in lowered for b in _BOILERPLATE)):
        return ""
    return text


def clamp_score(raw) -> float:
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        match = re.search(r"\d*\.?\d+", str(raw or ""))
        if not match:
            return 0.0
        value = float(match.group())
    if value != value:
        return 0.0
    return max(0.0, min(1.0, value))


class RelevanceScorer:
    def __init__(
        self,
        call_llm: Optional[Callable[..., str]] = None,
        fetch_url: Optional[Callable[[str], str]] = None,
    ):
        self._call_llm = call_llm
        self._fetch_url = fetch_url

    def _url_content(self, job) -> str:
        if not job.apply_url or job.apply_url.lower() == "unknown url":
            return ""
        fetch = self._fetch_url or fetch_job_url_content
        try:
            content = fetch(job.apply_url)
        except Exception as e:
            logger.info(f"Could not fetch {job.apply_url}, scoring from email data: {e}")
            return ""
        return (content or "").strip()

    def score(self, job, profile: ResumeProfile) -> float:
        """Relevance in [0, 1]. Any failure scores 0 rather than failing the message."""
        try:
            url_content = self._url_content(job)
            source = "url + email" if url_content else "email"
            description = job.description
            if url_content:
                description = f"{job.description}\n\nAdditional details from job posting:\n{url_content}"
            prompt = f"""Calculate how relevant this job is for this candidate based on their resume analysis.

Job Details (source: {source}):
- Title: {job.title}
- Company: {job.company}
- Location: {job.location}
- Remote: {job.is_remote}
- Description: {description}
- Requirements: {', '.join(job.requirements)}

Candidate Profile:
- Skills: {', '.join(profile.skills)}
- Experience: {', '.join(profile.experience)}
- Preferred Roles: {', '.join(profile.preferred_roles)}
- Seniority: {profile.seniority}

Return a relevance score between 0.0 and 1.0 where:
- 1.0 = Perfect match (exact skills, role, seniority)
- 0.8-0.9 = Excellent match (most skills align)
- 0.6-0.7 = Good match (some skills align)
- 0.4-0.5 = Fair match (limited alignment)
- 0.0-0.3 = Poor match (little to no alignment)

Return only the numeric score (e.g., 0.85)"""
            call = self._call_llm or llm.call_llm
            text = call(
                prompt,
                max_tokens=10,
                system="You are an expert job matching system. Return only a numeric relevance score.",
                temperature=0.1,
            )
            return clamp_score(text)
        except Exception as e:
            logger.error(f"Relevance scoring failed for {job.title} at {job.company}: {e}")
            return 0.0
