"""Gmail mailbox adapter: body parsing, backoff, label changes."""
import base64
from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from job_digest.classification.types import EmailAction
from job_digest.gmail_service import GmailMailbox, _with_backoff, clean_html, email_to_message


def _b64(text):
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def _http_error(status):
    resp = MagicMock()
    resp.status = status
    resp.reason = "error"
    return HttpError(resp, b"{}")


class PassThroughGuardian:
    credentials = None

    def execute_with_retry(self, fn):
        return fn()


def test_email_to_message_prefers_plain_text():
    email = {
        "id": "msg123",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "Subject", "value": "New jobs for you"},
                {"name": "From", "value": "jobs-noreply@linkedin.com"},
                {"name": "Date", "value": "Mon, 01 Jan 2024 12:00:00 +0000"},
            ],
            "parts": [
                {"mimeType": "text/html", "body": {"data": _b64("<p>html body</p>")}},
                {"mimeType": "text/plain", "body": {"data": _b64("plain body")}},
            ],
        },
    }
    message = email_to_message(email)
    assert message.id == "msg123"
    assert message.subject == "New jobs for you"
    assert message.sender == "jobs-noreply@linkedin.com"
    assert message.body == "plain body"
    assert message.received_at.year == 2024


def test_html_only_body_keeps_links():
    email = {
        "id": "m2",
        "payload": {
            "mimeType": "text/html",
            "headers": [],
            "body": {"data": _b64('<a href="https://linkedin.com/jobs/view/1">View job</a><br>Apply &amp; go')},
        },
    }
    body = email_to_message(email).body
    assert "https://linkedin.com/jobs/view/1" in body
    assert "Apply & go" in body


def test_clean_html_drops_scripts():
    assert "evil" not in clean_html("<script>evil()</script><p>ok</p>")


def test_backoff_retries_rate_limits():
    slept = []
    fn = MagicMock(side_effect=[_http_error(429), _http_error(503), "ok"])
    assert _with_backoff(fn, sleep=slept.append) == "ok"
    assert slept == [1, 2]


def test_backoff_does_not_retry_client_errors():
    fn = MagicMock(side_effect=_http_error(404))
    with pytest.raises(HttpError):
        _with_backoff(fn, sleep=lambda s: None)
    assert fn.call_count == 1


def test_list_unread_skips_failed_fetches():
    service = MagicMock()
    messages = service.users.return_value.messages.return_value
    messages.list.return_value.execute.return_value = {"messages": [{"id": "a"}, {"id": "b"}]}
    good = {"id": "a", "payload": {"headers": [{"name": "Subject", "value": "Hi"}], "body": {"data": _b64("x")}}}
    messages.get.return_value.execute.side_effect = [good, _http_error(404)]

    result = GmailMailbox(PassThroughGuardian(), service=service).list_unread(window="1d")
    assert [m.id for m in result] == ["a"]
    assert messages.list.call_args.kwargs["q"] == "is:unread newer_than:1d"


def test_list_unread_skips_undecodable_payloads():
    service = MagicMock()
    messages = service.users.return_value.messages.return_value
    messages.list.return_value.execute.return_value = {"messages": [{"id": "bad"}, {"id": "ok"}]}
    # A single base64 character can never decode
    bad = {"id": "bad", "payload": {"headers": [], "body": {"data": "A"}}}
    ok = {"id": "ok", "payload": {"headers": [], "body": {"data": _b64("fine")}}}
    messages.get.return_value.execute.side_effect = [bad, ok]

    result = GmailMailbox(PassThroughGuardian(), service=service).list_unread()
    assert [(m.id, m.body) for m in result] == [("ok", "fine")]


def test_label_changes():
    service = MagicMock()
    mailbox = GmailMailbox(PassThroughGuardian(), service=service)
    modify = service.users.return_value.messages.return_value.modify

    mailbox.mark_read_and_archive("m1")
    assert modify.call_args.kwargs["body"] == {"removeLabelIds": ["UNREAD", "INBOX"]}

    mailbox.apply_action("m2", EmailAction(mark_read=True))
    assert modify.call_args.kwargs == {"userId": "me", "id": "m2", "body": {"removeLabelIds": ["UNREAD"]}}

    modify.reset_mock()
    mailbox.apply_action("m3", EmailAction())
    assert not modify.called
