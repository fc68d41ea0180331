"""Notifier formatting, Telegram chunking, progress sinks."""
from unittest.mock import MagicMock

from job_digest.job_extraction import ExtractedJob
from job_digest.notifier import (
    CompositeProgressSink,
    LogNotifier,
    RegistryProgressSink,
    TelegramNotifier,
    _chunks,
    build_notifier,
    format_daily_summary,
    format_job_digest,
)


def _job(i, score=0.8):
    return ExtractedJob(
        id=f"job_tc_{i}",
        title=f"Engineer {i}",
        company="Acme",
        location="Manila",
        is_remote=True,
        apply_url=f"https://acme.com/jobs/{i}",
        relevance_score=score,
    )


def test_job_digest_lists_every_job():
    text = format_job_digest([_job(1, 0.9), _job(2, 0.7)])
    assert text.startswith("2 new relevant job(s)")
    assert "1. Engineer 1 - Acme (remote) [0.90]" in text
    assert "https://acme.com/jobs/2" in text


def test_daily_summary_format():
    text = format_daily_summary(
        [_job(1)],
        {
            "total_jobs_processed": 4,
            "relevant_jobs": 1,
            "remote_jobs": 2,
            "emails_processed": 3,
            "average_score": 0.55,
            "top_sources": [("LinkedIn", 3)],
        },
    )
    assert "Jobs processed: 4" in text
    assert "Top sources: LinkedIn (3)" in text


def test_telegram_posts_in_chunks():
    session = MagicMock()
    notifier = TelegramNotifier("TOKEN", "123", session=session)
    notifier.send_job_digest([_job(i) for i in range(200)])
    assert session.post.call_count > 1
    for call in session.post.call_args_list:
        assert call.args[0] == "https://api.telegram.org/botTOKEN/sendMessage"
        assert len(call.kwargs["json"]["text"]) <= 4000
        assert call.kwargs["json"]["chat_id"] == "123"


def test_chunks_split_on_blank_lines():
    parts = list(_chunks("aaa\n\nbbb\n\nccc", 8))
    assert parts == ["aaa\n\nbbb", "ccc"]
    assert list(_chunks("x" * 10, 4)) == ["xxxx", "xxxx", "xx"]


def test_build_notifier_without_telegram_logs(monkeypatch):
    monkeypatch.setattr("job_digest.notifier.settings.telegram_bot_token", "")
    assert isinstance(build_notifier(), LogNotifier)


def test_composite_sink_survives_a_failing_sink():
    registry = MagicMock()
    failing = MagicMock()
    failing.report_progress.side_effect = RuntimeError("redis down")
    CompositeProgressSink([failing, RegistryProgressSink(registry), None]).report_progress("r1", 40, "x")
    registry.update_progress.assert_called_once_with("r1", 40, "x")
