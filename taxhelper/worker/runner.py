"""
Receipt worker process.
Run with: python -m taxhelper.worker.runner [--burst]

Listens on the receipts queue for process_receipts_job runs enqueued by uploads.
"""

import argparse
from typing import Optional, Sequence

import structlog
from redis import Redis
from rq import Worker

from taxhelper.config import settings
from taxhelper.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Process queued receipt extraction runs.")
    parser.add_argument(
        "--burst",
        action="store_true",
        help="Exit once the queue is empty instead of waiting for more runs.",
    )
    parser.add_argument("--queue", default=settings.QUEUE_NAME)
    return parser.parse_args(argv)


def build_worker(connection: Redis, queue_name: str) -> Worker:
    return Worker(
        queues=[queue_name],
        connection=connection,
        name=f"receipt-worker-{settings.APP_VERSION}",
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(role="worker")

    worker = build_worker(Redis.from_url(settings.REDIS_URL), args.queue)
    logger.info("receipt_worker_starting", queue=args.queue, burst=args.burst)
    worker.work(burst=args.burst, with_scheduler=False)
    logger.info("receipt_worker_stopped", queue=args.queue)


if __name__ == "__main__":
    main()
