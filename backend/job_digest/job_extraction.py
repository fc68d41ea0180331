"""Extract structured job postings from job-alert email with one LLM call per message."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from . import llm
from .classification.types import InboundMessage
from .job_identity import generate_job_id

logger = logging.getLogger(__name__)

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_COMPANY = "Unknown Company"
UNKNOWN_LOCATION = "Unknown Location"
PRIVATE_ADVERTISER = "Private Advertiser"

_TRACKING_PARAMS = {"utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term", "fbclid"}

HYBRID_PATTERNS = (
    "hybrid", "office required", "on-site required", "onsite required",
    "in-person required", "must be located", "must be based", "local candidates only",
    "relocation required", "office presence", "days in office", "office days",
    "partially remote", "some remote work", "flexible work arrangement",
    "mix of remote and office", "combination of remote", "occasional office visits",
    "periodic office attendance",
)

REMOTE_PATTERNS = (
    "remote", "work from home", "wfh", "work-from-home", "telecommute", "telework",
    "home-based", "distributed team", "virtual team", "work from anywhere",
    "location independent", "no office required", "virtual collaboration",
    "digital nomad", "anywhere in", "virtual assistant", "online tutor",
    "virtual instructor", "online instructor", "virtual support", "online support",
    "flexible location",
)

REMOTE_LOCATION_PATTERNS = (
    "worldwide", "global", "anywhere", "any location", "home office", "virtual office",
)

_INVALID_COMPANY_WORDS = {
    "the", "a", "an", "this", "that", "you", "your", "our", "we", "they", "it",
    "job", "position", "role", "opportunity", "career", "work",
    "private", "advertiser", "company", "employer", "organization",
    "hiring", "recruiting", "seeking", "looking",
    "full", "part", "time", "remote", "onsite", "hybrid",
}

_COMPANY_PATTERNS = (
    re.compile(r"Company:\s*([A-Za-z][\w\s&.,'-]+?)(?:\s*\||\s*-|\s*\n|$)", re.I),
    re.compile(r"\bat\s+([A-Z][\w\s&.,'-]+?)(?:\s+is\s+|,|\.|!|\s*\n)"),
    re.compile(r"([A-Z][\w\s&.,'-]+?)\s+is\s+(?:hiring|looking|seeking)", re.I),
    re.compile(r"Join\s+([A-Z][\w\s&.,'-]+?)(?:\s+as|\s+team|,|\.|!)", re.I),
    re.compile(r"working\s+at\s+([A-Z][\w\s&.,'-]+)", re.I),
)

SYSTEM_PROMPT = "You are an expert at extracting structured job data from emails. Return only valid JSON."


@dataclass
class ExtractedJob:
    id: str
    title: str
    company: str
    location: str = UNKNOWN_LOCATION
    is_remote: bool = False
    description: str = ""
    requirements: List[str] = field(default_factory=list)
    apply_url: str = ""
    salary: Optional[str] = None
    posted_date: datetime = field(default_factory=datetime.utcnow)
    source: str = "Unknown"
    relevance_score: float = 0.0
    origin_message_id: str = ""
    processed: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)


def determine_source(sender: str) -> str:
    sender = (sender or "").lower()
    for needle, name in (("linkedin", "LinkedIn"), ("jobstreet", "JobStreet"), ("indeed", "Indeed"), ("glassdoor", "Glassdoor")):
        if needle in sender:
            return name
    return "Unknown"


def clean_apply_url(url: Optional[str], sender: str = "") -> str:
    """Strip per-platform tracking from an apply URL and make bare hosts absolute."""
    clean = (url or "").strip()
    if not clean:
        return ""
    sender = (sender or "").lower()

    if "linkedin" in sender or "linkedin.com" in clean:
        if "/company/" in clean and "/jobs/" not in clean:
            logger.warning(f"LinkedIn company URL instead of job URL: {clean}")
            return clean
        if "/jobs/view/" in clean or "linkedin.com/jobs" in clean:
            return clean.split("?")[0]

    if ("indeed" in sender or "indeed.com" in clean) and "/viewjob?jk=" in clean:
        # Keep only the job key parameter
        return clean.split("&")[0]

    if "jobstreet.com" in clean:
        try:
            parts = urlsplit(clean)
            query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in _TRACKING_PARAMS]
            return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))
        except ValueError:
            return clean

    if clean.startswith("http://") or clean.startswith("https://"):
        return clean
    if ".com" in clean or ".org" in clean:
        return f"https://{clean}"
    return clean


def is_valid_job_url(url: str) -> bool:
    if not url:
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and len(parts.hostname or "") >= 3


def detect_remote_work(title: str, description: str, location: str, requirements: List[str], ai_flag: bool) -> bool:
    """Hybrid/on-site phrases veto remote; otherwise any remote phrase (or the model's flag) makes it remote."""
    all_text = " ".join([title or "", description or "", location or "", *[str(r) for r in (requirements or [])]]).lower()
    if any(p in all_text for p in HYBRID_PATTERNS):
        return False
    if ai_flag:
        return True
    if any(p in all_text for p in REMOTE_PATTERNS):
        return True
    return any(p in (location or "").lower() for p in REMOTE_LOCATION_PATTERNS)


def _is_valid_company_name(name: str) -> bool:
    if not name or len(name) < 3 or len(name) >= 50:
        return False
    if name.lower() in _INVALID_COMPANY_WORDS or name.isdigit():
        return False
    return bool(re.search(r"[A-Za-z]", name)) and name[0].isalnum()


def enhance_company_name(company: str, title: str, description: str, email_body: str) -> str:
    """JobStreet hides some employers as "Private Advertiser"; try to recover the real name from the text."""
    if company != PRIVATE_ADVERTISER:
        return company
    all_text = " ".join([title or "", description or "", email_body or ""])
    patterns = list(_COMPANY_PATTERNS)
    if title:
        patterns.append(re.compile(rf"([A-Z][\w\s&.,'-]+?)\s*-\s*{re.escape(title)}", re.I))
    for pattern in patterns:
        match = pattern.search(all_text)
        if match and match.group(1):
            candidate = match.group(1).strip()
            if _is_valid_company_name(candidate):
                return candidate
    return company


def parse_posted_date(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        for fmt in ("%Y-%m-%d", "%Y/%m/%d", "%d %b %Y", "%b %d, %Y"):
            try:
                return datetime.strptime(raw, fmt)
            except ValueError:
                continue
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            return parsed.replace(tzinfo=None)
        except ValueError:
            logger.debug(f"Unparsable posted date {raw!r}, using now")
    return datetime.utcnow()


def _as_str_list(value) -> List[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def build_job(item: dict, message: InboundMessage) -> ExtractedJob:
    """Coerce one model-produced item into an ExtractedJob with a content-hash id."""
    title = str(item.get("title") or "").strip() or UNKNOWN_TITLE
    description = str(item.get("description") or "").strip()
    apply_url = clean_apply_url(item.get("applyUrl") or item.get("apply_url"), message.sender)
    if apply_url and not is_valid_job_url(apply_url):
        logger.warning(f"Job has an invalid apply URL: {title} - {apply_url}")
    company = enhance_company_name(
        str(item.get("company") or "").strip() or UNKNOWN_COMPANY, title, description, message.body
    )
    location = str(item.get("location") or "").strip() or UNKNOWN_LOCATION
    requirements = _as_str_list(item.get("requirements"))
    salary = item.get("salary")
    return ExtractedJob(
        id=generate_job_id(title, company, apply_url),
        title=title,
        company=company,
        location=location,
        is_remote=detect_remote_work(title, description, location, requirements, bool(item.get("isRemote") is True)),
        description=description,
        requirements=requirements,
        apply_url=apply_url,
        salary=str(salary).strip() if salary not in (None, "") else None,
        posted_date=parse_posted_date(item.get("postedDate")),
        source=str(item.get("source") or "").strip() or determine_source(message.sender),
        origin_message_id=message.id,
    )


def _build_prompt(message: InboundMessage) -> str:
    return f"""Extract job listings from this email content. This email is from a job platform like LinkedIn, JobStreet, etc.

Email From: {message.sender}
Email Subject: {message.subject}
Email Content:
{message.body}

Return a JSON object {{"jobs": [...]}} where each job has this structure:
{{
  "title": "Job Title",
  "company": "Company Name",
  "location": "Location",
  "isRemote": true/false,
  "description": "Job description",
  "requirements": ["requirement1", "requirement2"],
  "applyUrl": "https://...",
  "salary": "Salary range (if mentioned)",
  "postedDate": "YYYY-MM-DD",
  "source": "platform name (linkedin, jobstreet, etc)"
}}

Rules:
- Extract ALL job listings from the email
- "Private Advertiser" is a last resort; look for the real company name in the content first
- Set isRemote true for remote/work-from-home roles, false when hybrid, on-site or in-person is required
- For LinkedIn prefer URLs containing "/jobs/view/", for Indeed "/viewjob?jk=", never company profile pages
- Keep URLs complete, including query parameters
- If salary is not mentioned, use null
- Return {{"jobs": []}} if no jobs are found"""


class JobExtractor:
    def __init__(self, call_llm: Optional[Callable[..., str]] = None):
        self._call_llm = call_llm

    def extract(self, message: InboundMessage) -> List[ExtractedJob]:
        """
        Extract zero or more postings. Malformed model output yields an empty list;
        provider errors propagate so the caller can treat the message as failed.
        """
        call = self._call_llm or llm.call_llm
        text = call(_build_prompt(message), max_tokens=3000, force_json=True, system=SYSTEM_PROMPT, temperature=0.1)
        data = llm.parse_json_response(text)
        if isinstance(data, dict):
            items = data.get("jobs")
            if items is None and data.get("title"):
                items = [data]
        else:
            items = data
        if not isinstance(items, list):
            logger.warning(f"Extraction returned no usable job list for message {message.id}")
            return []

        jobs: List[ExtractedJob] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            jobs.append(build_job(item, message))
        logger.info(f"Extracted {len(jobs)} job(s) from message {message.id}")
        return jobs


