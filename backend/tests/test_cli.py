"""Operator CLI."""
import json

from job_digest import cli


def test_enqueue_and_conflict(monkeypatch, queue, capsys):
    monkeypatch.setattr(cli, "PipelineQueue", lambda: queue)
    assert cli.main(["enqueue", "process-jobs", "--min-score", "0.7"]) == 0
    assert "Queued process-jobs run" in capsys.readouterr().out

    assert cli.main(["enqueue", "process-jobs"]) == 1
    assert "already in queue or running" in capsys.readouterr().err


def test_retention_days_only_for_cleanup(monkeypatch, queue):
    monkeypatch.setattr(cli, "PipelineQueue", lambda: queue)
    assert cli.main(["enqueue", "daily-summary", "--retention-days", "3"]) == 2
    assert cli.main(["enqueue", "cleanup-jobs", "--retention-days", "3"]) == 0


def test_status_prints_json(monkeypatch, queue, capsys):
    monkeypatch.setattr(cli, "PipelineQueue", lambda: queue)
    assert cli.main(["status"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["stats"]["waiting"] == 0
