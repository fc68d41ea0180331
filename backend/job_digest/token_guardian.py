"""
Gmail OAuth token guardian.

Keeps the access token fresh (periodic check plus preemptive refresh shortly
before expiry) and wraps every Gmail call so an auth-class failure triggers
exactly one refresh-and-retry. A dead refresh token cannot be fixed by the
worker: it raises RefreshTokenRevokedError and alerts the operator, at most
once per cooldown window.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, TypeVar

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from .config import settings

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.modify"]

AUTH_ERROR_MARKERS = ("invalid_grant", "invalid_token", "unauthorized", "401")
REVOKED_MARKERS = ("invalid_grant", "refresh token", "revoked")

T = TypeVar("T")


class GmailAuthRequiredError(Exception):
    """Gmail credentials are missing or unusable; a human has to re-authorize."""


class RefreshTokenRevokedError(GmailAuthRequiredError):
    """The refresh token itself was rejected (expired or revoked)."""


@dataclass
class TokenInfo:
    is_valid: bool
    expires_at: Optional[datetime] = None
    needs_refresh: bool = False
    refresh_token_expired: bool = False
    error: Optional[str] = None


def _error_text(exc: BaseException) -> str:
    return f"{exc} {exc!r}".lower()


def is_auth_error(exc: BaseException) -> bool:
    status = getattr(getattr(exc, "resp", None), "status", None)
    if status == 401:
        return True
    text = _error_text(exc)
    return any(marker in text for marker in AUTH_ERROR_MARKERS)


def is_refresh_token_dead(exc: BaseException) -> bool:
    text = _error_text(exc)
    return any(marker in text for marker in REVOKED_MARKERS)


def build_credentials() -> Credentials:
    if not settings.gmail_refresh_token:
        raise GmailAuthRequiredError(
            "GMAIL_REFRESH_TOKEN is not set. Run scripts/generate_gmail_token.py and add it to .env."
        )
    return Credentials(
        token=None,
        refresh_token=settings.gmail_refresh_token,
        token_uri=settings.gmail_token_uri,
        client_id=settings.gmail_client_id,
        client_secret=settings.gmail_client_secret,
        scopes=SCOPES,
    )


class TokenGuardian:
    def __init__(
        self,
        credentials: Optional[Credentials] = None,
        notifier=None,
        *,
        check_interval_s: Optional[int] = None,
        refresh_horizon_s: Optional[int] = None,
        alert_cooldown_s: Optional[int] = None,
        clock: Callable[[], float] = time.time,
        request_factory: Callable[[], object] = Request,
    ):
        self.credentials = credentials if credentials is not None else build_credentials()
        self.notifier = notifier
        self.check_interval_s = settings.token_check_interval_s if check_interval_s is None else check_interval_s
        self.refresh_horizon_s = settings.token_refresh_horizon_s if refresh_horizon_s is None else refresh_horizon_s
        self.alert_cooldown_s = settings.token_alert_cooldown_s if alert_cooldown_s is None else alert_cooldown_s
        self._clock = clock
        self._request_factory = request_factory
        self._lock = threading.Lock()
        self.last_checked: Optional[float] = None
        self.last_alert_at: Optional[float] = None

    def _now_utc(self) -> datetime:
        # google-auth stores expiry as naive UTC
        return datetime.utcfromtimestamp(self._clock())

    def _expires_soon(self) -> bool:
        expiry = self.credentials.expiry
        if expiry is None:
            return False
        return expiry - self._now_utc() <= timedelta(seconds=self.refresh_horizon_s)

    def _info(self) -> TokenInfo:
        return TokenInfo(
            is_valid=bool(self.credentials.token) and not self._expires_soon(),
            expires_at=self.credentials.expiry,
            needs_refresh=not self.credentials.token or self._expires_soon(),
        )

    def refresh(self) -> TokenInfo:
        """Force a refresh. Raises RefreshTokenRevokedError when the refresh token is dead."""
        with self._lock:
            try:
                self.credentials.refresh(self._request_factory())
            except Exception as e:
                if is_refresh_token_dead(e):
                    self._alert_revoked(e)
                    raise RefreshTokenRevokedError(f"Gmail refresh token rejected: {e}") from e
                logger.error(f"Gmail token refresh failed: {e}")
                raise
            self.last_checked = self._clock()
            logger.info(f"Gmail access token refreshed, expires at {self.credentials.expiry}")
            return self._info()

    def check_and_refresh(self, force: bool = False) -> TokenInfo:
        """
        Refresh when there is no access token or it expires within the horizon.

        Within the check interval a still-valid token is returned without touching
        the network.
        """
        now = self._clock()
        if (
            not force
            and self.last_checked is not None
            and now - self.last_checked < self.check_interval_s
            and self.credentials.token
            and not self._expires_soon()
        ):
            return self._info()

        self.last_checked = now
        if not self.credentials.token:
            logger.info("No Gmail access token yet, refreshing")
            return self.refresh()
        if self._expires_soon():
            logger.info("Gmail access token expires soon, refreshing preemptively")
            return self.refresh()
        return self._info()

    def token_info(self) -> TokenInfo:
        """Non-raising health view for status endpoints."""
        try:
            return self.check_and_refresh()
        except RefreshTokenRevokedError as e:
            return TokenInfo(is_valid=False, refresh_token_expired=True, error=str(e))
        except Exception as e:
            return TokenInfo(is_valid=False, needs_refresh=True, error=str(e))

    def execute_with_retry(self, fn: Callable[[], T]) -> T:
        """Run fn; on an auth-class error refresh once and retry once. The second failure propagates."""
        self.check_and_refresh()
        try:
            return fn()
        except RefreshTokenRevokedError:
            raise
        except Exception as e:
            if not is_auth_error(e):
                raise
            logger.warning(f"Gmail call failed with auth error, refreshing and retrying once: {e}")
        self.refresh()
        return fn()

    def _alert_revoked(self, exc: BaseException) -> None:
        now = self._clock()
        if self.last_alert_at is not None and now - self.last_alert_at < self.alert_cooldown_s:
            logger.error(f"Gmail refresh token still rejected (alert suppressed by cooldown): {exc}")
            return
        self.last_alert_at = now
        message = (
            "Gmail refresh token expired or revoked. Re-authorize with "
            f"scripts/generate_gmail_token.py and update GMAIL_REFRESH_TOKEN. Error: {exc}"
        )
        logger.error(message)
        if self.notifier is not None:
            try:
                self.notifier.send_operator_alert(message)
            except Exception as e:
                logger.error(f"Failed to send token alert: {e}")


class TokenRefresher:
    """Background daemon thread calling check_and_refresh on the guardian's interval."""

    def __init__(self, guardian: TokenGuardian, interval_s: Optional[int] = None):
        self.guardian = guardian
        self.interval_s = guardian.check_interval_s if interval_s is None else interval_s
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="gmail-token-refresher", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.guardian.check_and_refresh()
            except Exception as e:
                logger.warning(f"Background token check failed: {e}")
            self._stop.wait(self.interval_s)
