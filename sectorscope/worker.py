"""Start one Celery worker per pipeline queue.

Each stage has its own concurrency limit, so every queue gets a dedicated
worker process tree instead of a single worker consuming all queues.

Usage:
    python -m sectorscope.worker                   # all queues + beat
    python -m sectorscope.worker stock-analysis    # a single queue
"""

from __future__ import annotations

import argparse
import signal
import subprocess
import sys
from typing import Optional, Sequence

from sectorscope.celery_app import MAINTENANCE_QUEUE
from sectorscope.core.logging import get_logger, setup_logging
from sectorscope.jobs.queues import QUEUE_CONFIGS


logger = get_logger("worker")

MAINTENANCE_CONCURRENCY = 1


def queue_concurrency() -> dict[str, int]:
    """Queue name -> number of parallel consumers."""
    limits = {config.name: config.concurrency for config in QUEUE_CONFIGS.values()}
    limits[MAINTENANCE_QUEUE] = MAINTENANCE_CONCURRENCY
    return limits


def worker_command(queue: str, concurrency: int, loglevel: str = "INFO") -> list[str]:
    return [
        sys.executable,
        "-m",
        "celery",
        "-A",
        "sectorscope.celery_app:celery_app",
        "worker",
        "-Q",
        queue,
        "-c",
        str(concurrency),
        "-n",
        f"{queue}@%h",
        "--loglevel",
        loglevel,
    ]


def beat_command(loglevel: str = "INFO") -> list[str]:
    return [
        sys.executable,
        "-m",
        "celery",
        "-A",
        "sectorscope.celery_app:celery_app",
        "beat",
        "--loglevel",
        loglevel,
    ]


def main(argv: Optional[Sequence[str]] = None) -> int:
    limits = queue_concurrency()

    parser = argparse.ArgumentParser(description="Run pipeline queue workers")
    parser.add_argument("queues", nargs="*", help="Queues to serve (default: all)")
    parser.add_argument("--no-beat", action="store_true", help="Do not start the beat scheduler")
    parser.add_argument("--loglevel", default="INFO")
    args = parser.parse_args(argv)

    unknown = sorted(set(args.queues) - set(limits))
    if unknown:
        parser.error(f"unknown queues: {', '.join(unknown)} (choose from {', '.join(sorted(limits))})")

    setup_logging()
    queues = args.queues or list(limits)

    commands = [worker_command(q, limits[q], args.loglevel) for q in queues]
    if not args.no_beat and not args.queues:
        commands.append(beat_command(args.loglevel))

    processes = []
    for command in commands:
        logger.info(f"Starting: {' '.join(command[2:])}")
        processes.append(subprocess.Popen(command))

    def _forward(signum, frame):
        for proc in processes:
            if proc.poll() is None:
                proc.send_signal(signum)

    signal.signal(signal.SIGTERM, _forward)
    signal.signal(signal.SIGINT, _forward)

    exit_code = 0
    for proc in processes:
        exit_code = proc.wait() or exit_code
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
