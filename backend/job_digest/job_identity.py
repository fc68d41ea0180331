"""
Job identity and deduplication.

A posting's id is a content hash: of its canonical apply URL when it has one,
otherwise of its normalized (title, company). The same real-world posting seen
in two different alert emails therefore maps to the same id.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

URL_ID_PREFIX = "job_url_"
TITLE_COMPANY_ID_PREFIX = "job_tc_"
_HASH_CHARS = 16


def normalize_text(value: Optional[str]) -> str:
    """Lower-case, trim and collapse internal whitespace."""
    return re.sub(r"\s+", " ", (value or "").strip().lower())


def normalize_url(url: Optional[str]) -> str:
    """
    Canonical form of an apply URL: scheme://host/path, lower-cased.

    Query string and fragment are dropped (they carry tracking parameters).
    Empty input or the "unknown url" placeholder yields "".
    """
    raw = (url or "").strip()
    if not raw or raw.lower() == "unknown url":
        return ""
    try:
        parts = urlsplit(raw)
    except ValueError:
        return raw.lower()
    if not parts.scheme or not parts.netloc:
        return raw.lower()
    host = parts.hostname or parts.netloc
    return f"{parts.scheme}://{host}{parts.path}".lower()


def _short_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:_HASH_CHARS]


def generate_job_id(title: Optional[str], company: Optional[str], apply_url: Optional[str]) -> str:
    normalized_url = normalize_url(apply_url)
    if normalized_url:
        return URL_ID_PREFIX + _short_hash(normalized_url)
    key = f"{normalize_text(title)}|{normalize_text(company)}"
    return TITLE_COMPANY_ID_PREFIX + _short_hash(key)


@dataclass(frozen=True)
class DedupOutcome:
    is_duplicate: bool
    tier: Optional[str] = None  # "id" or "similar"
    reason: str = ""


NEW_POSTING = DedupOutcome(is_duplicate=False)


class JobDeduplicator:
    """Two-tier duplicate check against the store: exact id, then normalized-field similarity."""

    def __init__(self, store):
        self.store = store

    def check(self, job) -> DedupOutcome:
        if self.store.exists(job.id):
            return DedupOutcome(True, "id", f"job id {job.id} already stored")
        similar = self.store.find_similar(job.title, job.company, job.apply_url)
        if similar:
            return DedupOutcome(True, "similar", f"{len(similar)} similar job(s) already stored")
        return NEW_POSTING
