"""
Outbound notifications and progress reporting.

The pipeline only talks to the Notifier and ProgressSink interfaces; the
concrete sink (log, Telegram, run registry) is chosen by the worker.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

import requests

from .config import settings

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
# Telegram rejects messages above 4096 characters
TELEGRAM_MAX_CHARS = 4000


def format_job_line(rank: int, job) -> str:
    remote = " (remote)" if job.is_remote else ""
    line = f"{rank}. {job.title} - {job.company}{remote} [{job.relevance_score:.2f}]"
    if job.location:
        line += f"\n   {job.location}"
    if job.salary:
        line += f" | {job.salary}"
    if job.apply_url:
        line += f"\n   {job.apply_url}"
    return line


def format_job_digest(jobs: List) -> str:
    header = f"{len(jobs)} new relevant job(s)"
    return "\n\n".join([header] + [format_job_line(i, job) for i, job in enumerate(jobs, start=1)])


def format_daily_summary(jobs: List, stats: dict) -> str:
    lines = [
        "Daily summary",
        f"Jobs processed: {stats.get('total_jobs_processed', 0)}",
        f"Relevant: {stats.get('relevant_jobs', 0)}  Remote: {stats.get('remote_jobs', 0)}",
        f"Emails processed: {stats.get('emails_processed', 0)}",
        f"Average score: {stats.get('average_score', 0.0):.2f}",
    ]
    sources = stats.get("top_sources") or []
    if sources:
        lines.append("Top sources: " + ", ".join(f"{name} ({count})" for name, count in sources))
    if jobs:
        lines.append("")
        lines.extend(format_job_line(i, job) for i, job in enumerate(jobs[:10], start=1))
    return "\n".join(lines)


class Notifier(ABC):
    @abstractmethod
    def send_job_digest(self, jobs: List) -> None:
        ...

    @abstractmethod
    def send_operator_alert(self, message: str) -> None:
        ...

    @abstractmethod
    def send_daily_summary(self, jobs: List, stats: dict) -> None:
        ...

    def send_status(self, message: str) -> None:
        logger.info(message)


class LogNotifier(Notifier):
    """Writes everything to the log. Used when no chat channel is configured."""

    def send_job_digest(self, jobs: List) -> None:
        logger.info(format_job_digest(jobs))

    def send_operator_alert(self, message: str) -> None:
        logger.warning(f"OPERATOR ALERT: {message}")

    def send_daily_summary(self, jobs: List, stats: dict) -> None:
        logger.info(format_daily_summary(jobs, stats))


class TelegramNotifier(Notifier):
    def __init__(self, bot_token: str, chat_id: str, session=None, timeout: float = 10.0):
        if not bot_token or not chat_id:
            raise ValueError("TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID must both be set")
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.session = session or requests.Session()
        self.timeout = timeout

    def _send(self, text: str) -> None:
        for chunk in _chunks(text, TELEGRAM_MAX_CHARS):
            response = self.session.post(
                f"{TELEGRAM_API}/bot{self.bot_token}/sendMessage",
                json={"chat_id": self.chat_id, "text": chunk, "disable_web_page_preview": True},
                timeout=self.timeout,
            )
            response.raise_for_status()

    def send_job_digest(self, jobs: List) -> None:
        self._send(format_job_digest(jobs))

    def send_operator_alert(self, message: str) -> None:
        self._send(f"Alert: {message}")

    def send_daily_summary(self, jobs: List, stats: dict) -> None:
        self._send(format_daily_summary(jobs, stats))

    def send_status(self, message: str) -> None:
        self._send(message)


def _chunks(text: str, size: int) -> Iterable[str]:
    """Split on blank lines where possible so a job entry is never cut in half."""
    current = ""
    for block in text.split("\n\n"):
        candidate = f"{current}\n\n{block}" if current else block
        if len(candidate) <= size:
            current = candidate
            continue
        if current:
            yield current
        while len(block) > size:
            yield block[:size]
            block = block[size:]
        current = block
    if current:
        yield current


def build_notifier() -> Notifier:
    if settings.telegram_bot_token and settings.telegram_chat_id:
        return TelegramNotifier(settings.telegram_bot_token, settings.telegram_chat_id)
    return LogNotifier()


class ProgressSink(ABC):
    @abstractmethod
    def report_progress(self, run_id: str, pct: int, note: str = "") -> None:
        ...


class LogProgressSink(ProgressSink):
    def report_progress(self, run_id: str, pct: int, note: str = "") -> None:
        logger.debug(f"run {run_id}: {pct}% {note}")


class RegistryProgressSink(ProgressSink):
    """Writes progress into the run registry so the status endpoint can show it."""

    def __init__(self, registry):
        self.registry = registry

    def report_progress(self, run_id: str, pct: int, note: str = "") -> None:
        self.registry.update_progress(run_id, pct, note)


class CompositeProgressSink(ProgressSink):
    def __init__(self, sinks: Iterable[Optional[ProgressSink]]):
        self.sinks = [s for s in sinks if s is not None]

    def report_progress(self, run_id: str, pct: int, note: str = "") -> None:
        for sink in self.sinks:
            try:
                sink.report_progress(run_id, pct, note)
            except Exception as e:
                logger.warning(f"{type(sink).__name__} failed to record progress: {e}")
