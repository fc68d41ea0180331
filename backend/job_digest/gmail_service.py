"""Gmail API mailbox: unread listing, body extraction, mark-read / archive. All calls go through the token guardian."""
import base64
import html
import logging
import re
import time
from email.utils import parsedate_to_datetime
from typing import List, Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .classification.types import InboundMessage
from .config import settings
from .token_guardian import TokenGuardian

logger = logging.getLogger(__name__)

UNREAD_LABEL = "UNREAD"
INBOX_LABEL = "INBOX"
MAX_BODY_CHARS = 20000


def _decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def clean_html(raw: str) -> str:
    text = re.sub(r"<(script|style)\b[\s\S]*?</\1>", " ", raw or "", flags=re.I)
    # Keep link targets: job alert mail often only carries the apply URL in an href
    text = re.sub(r"<a\s[^>]*href=[\"']([^\"']+)[\"'][^>]*>", r" \1 ", text, flags=re.I)
    text = re.sub(r"<br\s*/?>|</p>|</div>|</tr>|</li>", "\n", text, flags=re.I)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html.unescape(text)
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    return re.sub(r"\n\s*\n+", "\n\n", text).strip()


def _get_body(payload: dict) -> str:
    """Prefer text/plain; fall back to cleaned text/html; walk nested multiparts."""
    mime = payload.get("mimeType", "")
    data = payload.get("body", {}).get("data")
    if data and not payload.get("parts"):
        text = _decode(data)
        return clean_html(text) if mime == "text/html" else text

    plain, rich = "", ""
    for part in payload.get("parts", []) or []:
        part_mime = part.get("mimeType", "")
        part_data = part.get("body", {}).get("data")
        if part_mime == "text/plain" and part_data and not plain:
            plain = _decode(part_data)
        elif part_mime == "text/html" and part_data and not rich:
            rich = clean_html(_decode(part_data))
        elif part_mime.startswith("multipart/"):
            nested = _get_body(part)
            if nested and not plain:
                plain = nested
    return plain or rich


def _get_headers(email: dict) -> dict:
    return {h["name"].lower(): h["value"] for h in email.get("payload", {}).get("headers", [])}


def _get_received_date(email: dict):
    date_str = _get_headers(email).get("date")
    if not date_str:
        return None
    try:
        return parsedate_to_datetime(date_str)
    except (TypeError, ValueError):
        return None


def email_to_message(email: dict) -> InboundMessage:
    headers = _get_headers(email)
    body = _get_body(email.get("payload", {})) or email.get("snippet", "")
    return InboundMessage(
        id=email["id"],
        subject=headers.get("subject", ""),
        sender=headers.get("from", ""),
        body=body[:MAX_BODY_CHARS],
        received_at=_get_received_date(email),
    )


# Rate limiting: exponential backoff
def _with_backoff(fn, max_retries: int = 5, sleep=time.sleep):
    for attempt in range(max_retries):
        try:
            return fn()
        except HttpError as e:
            if e.resp.status in (429, 500, 503) and attempt < max_retries - 1:
                sleep(2 ** attempt)
                continue
            raise


class GmailMailbox:
    def __init__(self, guardian: TokenGuardian, service=None):
        self.guardian = guardian
        self._service = service

    @property
    def service(self):
        if self._service is None:
            self._service = build("gmail", "v1", credentials=self.guardian.credentials, cache_discovery=False)
        return self._service

    def _call(self, fn):
        return self.guardian.execute_with_retry(lambda: _with_backoff(fn))

    def list_unread(self, window: Optional[str] = None) -> List[InboundMessage]:
        """Unread messages newer than `window` (Gmail syntax, e.g. "3d"). Per-message fetch failures are skipped."""
        query = f"is:unread newer_than:{window or settings.gmail_unread_window}"
        listing = self._call(
            lambda: self.service.users()
            .messages()
            .list(userId="me", q=query, maxResults=settings.gmail_max_results)
            .execute()
        )
        ids = [m["id"] for m in (listing or {}).get("messages", [])]
        logger.info(f"Found {len(ids)} unread message(s) for query {query!r}")

        messages: List[InboundMessage] = []
        batch_size = max(1, settings.gmail_fetch_batch_size)
        for start in range(0, len(ids), batch_size):
            for msg_id in ids[start : start + batch_size]:
                try:
                    email = self._call(
                        lambda: self.service.users().messages().get(userId="me", id=msg_id, format="full").execute()
                    )
                except HttpError as e:
                    logger.warning(f"Skipping message {msg_id}: {e}")
                    continue
                try:
                    messages.append(email_to_message(email))
                except (ValueError, KeyError, TypeError) as e:
                    # binascii.Error and UnicodeError are ValueErrors
                    logger.warning(f"Skipping message {msg_id}, payload could not be decoded: {e}")
        return messages

    def _modify(self, msg_id: str, remove: List[str]) -> None:
        self._call(
            lambda: self.service.users()
            .messages()
            .modify(userId="me", id=msg_id, body={"removeLabelIds": remove})
            .execute()
        )

    def mark_read(self, msg_id: str) -> None:
        self._modify(msg_id, [UNREAD_LABEL])

    def archive(self, msg_id: str) -> None:
        self._modify(msg_id, [INBOX_LABEL])

    def mark_read_and_archive(self, msg_id: str) -> None:
        self._modify(msg_id, [UNREAD_LABEL, INBOX_LABEL])

    def apply_action(self, msg_id: str, action) -> None:
        if action.mark_read and action.archive:
            self.mark_read_and_archive(msg_id)
        elif action.mark_read:
            self.mark_read(msg_id)
        elif action.archive:
            self.archive(msg_id)

    def test_connection(self) -> bool:
        try:
            self._call(lambda: self.service.users().getProfile(userId="me").execute())
            return True
        except Exception as e:
            logger.error(f"Gmail connection test failed: {e}")
            return False
