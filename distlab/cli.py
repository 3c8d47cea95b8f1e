"""Command-line entry points for the MapReduce coordinator and worker."""

import logging
import sys
import time

from distlab.apps import load_app
from distlab.coordinator import make_coordinator
from distlab.worker import run_worker

N_REDUCE = 10


def coordinator_main(argv: list | None = None) -> int:
    """Command line: ``mrcoordinator INPUTFILES...``; serve until the job is done."""
    files = sys.argv[1:] if argv is None else list(argv)
    if not files:
        print("Usage: mrcoordinator inputfiles...", file=sys.stderr)
        return 1
    logging.basicConfig(level=logging.INFO)
    coordinator = make_coordinator(files, N_REDUCE)
    try:
        while not coordinator.done():
            time.sleep(1)
        time.sleep(1)
    finally:
        coordinator.close()
    return 0


def worker_main(argv: list | None = None) -> int:
    """Command line: ``mrworker APP``; run tasks until the coordinator goes away."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        print("Usage: mrworker xxx.so", file=sys.stderr)
        return 1
    try:
        app = load_app(args[0])
    except LookupError:
        print(f"cannot load plugin {args[0]}", file=sys.stderr)
        return 1
    logging.basicConfig(level=logging.INFO)
    print("start worker")
    run_worker(app.map, app.reduce)
    return 0