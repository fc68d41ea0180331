"""Token guardian: preemptive refresh, single retry on auth errors, throttled revoked alerts."""
import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from job_digest.token_guardian import (
    RefreshTokenRevokedError,
    TokenGuardian,
    TokenRefresher,
    is_auth_error,
    is_refresh_token_dead,
)

NOW = 1_800_000_000.0


class FakeCredentials:
    def __init__(self, token=None, expiry=None, refresh_error=None):
        self.token = token
        self.expiry = expiry
        self.refresh_error = refresh_error
        self.refresh_calls = 0

    def refresh(self, request):
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        self.token = f"token-{self.refresh_calls}"
        self.expiry = datetime.utcfromtimestamp(NOW) + timedelta(hours=1)


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def _guardian(creds, notifier=None, clock=None):
    return TokenGuardian(
        creds,
        notifier,
        check_interval_s=300,
        refresh_horizon_s=300,
        alert_cooldown_s=3600,
        clock=clock or Clock(),
        request_factory=lambda: None,
    )


def test_missing_token_triggers_refresh():
    creds = FakeCredentials()
    info = _guardian(creds).check_and_refresh()
    assert creds.refresh_calls == 1
    assert info.is_valid


def test_token_expiring_within_horizon_is_refreshed_preemptively():
    creds = FakeCredentials(token="old", expiry=datetime.utcfromtimestamp(NOW) + timedelta(seconds=120))
    _guardian(creds).check_and_refresh()
    assert creds.refresh_calls == 1
    assert creds.token == "token-1"


def test_valid_token_within_interval_is_not_refreshed():
    creds = FakeCredentials(token="ok", expiry=datetime.utcfromtimestamp(NOW) + timedelta(hours=1))
    clock = Clock()
    guardian = _guardian(creds, clock=clock)
    guardian.check_and_refresh()
    clock.now += 60
    guardian.check_and_refresh()
    assert creds.refresh_calls == 0


def test_auth_error_refreshes_once_and_retries_once():
    creds = FakeCredentials(token="ok", expiry=datetime.utcfromtimestamp(NOW) + timedelta(hours=1))
    guardian = _guardian(creds)
    calls = {"n": 0}

    def gmail_call():
        calls["n"] += 1
        if calls["n"] == 1:
            raise Exception("401 Unauthorized")
        return "done"

    assert guardian.execute_with_retry(gmail_call) == "done"
    assert calls["n"] == 2
    assert creds.refresh_calls == 1


def test_second_auth_failure_propagates():
    creds = FakeCredentials(token="ok", expiry=datetime.utcfromtimestamp(NOW) + timedelta(hours=1))
    guardian = _guardian(creds)

    def gmail_call():
        raise Exception("invalid_token")

    with pytest.raises(Exception, match="invalid_token"):
        guardian.execute_with_retry(gmail_call)
    assert creds.refresh_calls == 1


def test_non_auth_error_is_not_retried():
    creds = FakeCredentials(token="ok", expiry=datetime.utcfromtimestamp(NOW) + timedelta(hours=1))
    guardian = _guardian(creds)
    fn = MagicMock(side_effect=ValueError("bad request"))
    with pytest.raises(ValueError):
        guardian.execute_with_retry(fn)
    assert fn.call_count == 1
    assert creds.refresh_calls == 0


def test_revoked_refresh_token_alerts_once_per_cooldown():
    notifier = MagicMock()
    clock = Clock()
    creds = FakeCredentials(refresh_error=Exception("invalid_grant: Token has been expired or revoked."))
    guardian = _guardian(creds, notifier=notifier, clock=clock)

    with pytest.raises(RefreshTokenRevokedError):
        guardian.refresh()
    clock.now += 600
    with pytest.raises(RefreshTokenRevokedError):
        guardian.refresh()
    assert notifier.send_operator_alert.call_count == 1

    clock.now += 3600
    with pytest.raises(RefreshTokenRevokedError):
        guardian.refresh()
    assert notifier.send_operator_alert.call_count == 2


def test_token_info_never_raises():
    creds = FakeCredentials(refresh_error=Exception("invalid_grant"))
    info = _guardian(creds).token_info()
    assert info.is_valid is False
    assert info.refresh_token_expired is True


def test_error_classifiers():
    assert is_auth_error(Exception("Request had invalid authentication credentials: 401"))
    resp_error = Exception("boom")
    resp_error.resp = MagicMock(status=401)
    assert is_auth_error(resp_error)
    assert not is_auth_error(Exception("quota exceeded"))
    assert is_refresh_token_dead(Exception("invalid_grant"))
    assert not is_refresh_token_dead(Exception("timeout"))


def test_refresher_thread_checks_until_stopped():
    checked = threading.Event()
    guardian = MagicMock()
    guardian.check_interval_s = 0.01
    guardian.check_and_refresh.side_effect = lambda: checked.set()
    refresher = TokenRefresher(guardian)
    refresher.start()
    assert checked.wait(2.0)
    refresher.stop(timeout=1.0)
    assert not refresher._thread.is_alive()
