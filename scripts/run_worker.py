"""Run rq workers for the evaluation queue.

Usage:
  source .venv/bin/activate
  python scripts/run_worker.py               # EVALUATION_WORKER_CONCURRENCY rq worker processes
  python scripts/run_worker.py --burst       # drain the queue once in this process and exit

Jobs build the Flask app once per worker process and run inside its app
context, so the Flask-SQLAlchemy session works as it does in request handlers.
rq handles SIGINT/SIGTERM: workers finish their current job, then exit.
"""
import argparse
import logging
import os
import sys

# Ensure project root is on sys.path when running from scripts/ or other cwd
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from evalpipe import create_app  # noqa: E402
from evalpipe.pipeline import get_pipeline  # noqa: E402


def main(argv=None):
    parser = argparse.ArgumentParser(description="evaluation queue worker")
    parser.add_argument("--burst", action="store_true", help="process what is queued, then exit")
    parser.add_argument("--concurrency", type=int, help="override EVALUATION_WORKER_CONCURRENCY")
    args = parser.parse_args(argv)

    overrides = {}
    if args.concurrency:
        overrides["EVALUATION_WORKER_CONCURRENCY"] = args.concurrency
    app = create_app(overrides)
    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s [%(process)d] %(message)s",
    )
    log = logging.getLogger("evalpipe.worker")
    pipeline = get_pipeline(app)

    if not pipeline.workers_enabled:
        log.error("workers are disabled (EVALUATION_WORKERS_ENABLED=false or ANTHROPIC_API_KEY unset)")
        return 1
    if not pipeline.queue.ping():
        log.error("queue store unreachable at %s", app.config.get("REDIS_URL"))
        return 2

    if args.burst:
        with app.app_context():
            pipeline.pool.reap()
        done = pipeline.pool.work(burst=True)
        log.info("burst finished, %d job(s) processed", done)
        return 0

    log.info("worker pool starting (pid %s)", os.getpid())
    try:
        pipeline.pool.start()
    finally:
        pipeline.shutdown()
        log.info("worker pool exiting (pid %s)", os.getpid())
    return 0


if __name__ == "__main__":
    sys.exit(main())
