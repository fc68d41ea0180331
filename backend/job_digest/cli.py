"""
Operator command line.

  job-digest-enqueue enqueue process-jobs [--min-score 0.7]
  job-digest-enqueue enqueue cleanup-jobs [--retention-days 7]
  job-digest-enqueue enqueue daily-summary
  job-digest-enqueue status
  job-digest-enqueue recover      # mark unread, unrecorded mail processed (runs in-process)
"""
import argparse
import json
import logging
import sys

from .pipeline_queue import AlreadyQueuedError, PipelineQueue
from .run_registry import RUN_CLEANUP, RUN_DAILY_SUMMARY, RUN_PROCESS_JOBS, RUN_TYPES


def _enqueue(args) -> int:
    queue = PipelineQueue()
    try:
        if args.run_type == RUN_PROCESS_JOBS:
            run = queue.enqueue_process_jobs(triggered_by="manual", min_relevance_score=args.min_score)
        elif args.run_type == RUN_DAILY_SUMMARY:
            run = queue.enqueue_daily_summary(triggered_by="manual")
        else:
            run = queue.enqueue_cleanup(triggered_by="manual", retention_days=args.retention_days)
    except AlreadyQueuedError as e:
        print(str(e), file=sys.stderr)
        return 1
    print(f"Queued {run.type} run {run.id} (priority {run.priority})")
    return 0


def _status(args) -> int:
    print(json.dumps(PipelineQueue().queue_status(), indent=2, default=str))
    return 0


def _recover(args) -> int:
    from .database import SessionLocal
    from .gmail_service import GmailMailbox
    from .notifier import build_notifier
    from .services.job_processor import JobProcessor
    from .store import JobStore
    from .token_guardian import TokenGuardian

    notifier = build_notifier()
    db = SessionLocal()
    try:
        processor = JobProcessor(JobStore(db), GmailMailbox(TokenGuardian(notifier=notifier)), notifier)
        recovered = processor.recover_orphaned_messages()
    finally:
        db.close()
    print(f"Recovered {recovered} message(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="job-digest-enqueue", description="Job digest pipeline operator commands")
    sub = parser.add_subparsers(dest="command", required=True)

    enqueue = sub.add_parser("enqueue", help="Queue a pipeline run")
    enqueue.add_argument("run_type", choices=RUN_TYPES)
    enqueue.add_argument("--min-score", type=float, default=None, help="Relevance threshold for this run")
    enqueue.add_argument("--retention-days", type=int, default=None, help="Cleanup: delete jobs older than this")
    enqueue.set_defaults(func=_enqueue)

    status = sub.add_parser("status", help="Show queue counts and the current run")
    status.set_defaults(func=_status)

    recover = sub.add_parser("recover", help="Mark orphaned unread messages as processed")
    recover.set_defaults(func=_recover)
    return parser


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = build_parser().parse_args(argv)
    if args.command == "enqueue" and args.run_type != RUN_CLEANUP and args.retention_days is not None:
        print("--retention-days only applies to cleanup-jobs", file=sys.stderr)
        return 2
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
