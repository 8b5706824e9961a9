"""Wires the queue store and services together for one app.

One ``EvaluationPipeline`` per Flask app, built in the app factory and kept on
``app.extensions["evaluation_pipeline"]``. Request handlers, scripts and the
rq jobs all reach the queue through it.
"""
import logging

from flask import current_app

from .jobs.evaluate import EvaluationProcessor
from .queue import RetryPolicy, connect_queue
from .queue.worker import WorkerPool
from .services.backfill import BackfillOrchestrator
from .services.health import HealthMonitor
from .services.producer import EvaluationProducer
from .services.scoring import ScoringClient
from .services.status import StatusTracker

logger = logging.getLogger(__name__)

EXTENSION_KEY = "evaluation_pipeline"


def workers_enabled(config) -> bool:
    """Workers run only when switched on and a scoring key is configured."""
    return bool(config.get("EVALUATION_WORKERS_ENABLED")) and bool(config.get("ANTHROPIC_API_KEY"))


class EvaluationPipeline:

    def __init__(self, queue, scorer=None):
        self.queue = queue
        self.scorer = scorer
        self.app = None
        self.tracker = None
        self.producer = None
        self.processor = None
        self.pool = None
        self.backfill = None
        self.health = None
        self.workers_enabled = False

    def init_app(self, app):
        config = app.config
        self.app = app
        self.workers_enabled = workers_enabled(config)
        if self.scorer is None:
            self.scorer = ScoringClient.from_config(config)

        self.tracker = StatusTracker()
        self.producer = EvaluationProducer(
            self.queue,
            self.tracker,
            retry_policy=RetryPolicy.from_config(config),
            max_content_chars=int(config.get("EVALUATION_MAX_CONTENT_CHARS", 8000)),
        )
        self.processor = EvaluationProcessor(self.tracker, self.scorer, ai_model=config.get("ANTHROPIC_MODEL"))
        self.pool = WorkerPool.from_config(self.queue, self.processor, config, context_factory=app.app_context)
        self.backfill = BackfillOrchestrator(
            self.producer,
            default_limit=int(config.get("BACKFILL_DEFAULT_LIMIT", 50)),
            max_limit=int(config.get("BACKFILL_MAX_LIMIT", 500)),
        )
        self.health = HealthMonitor(
            self.queue,
            stale_after=float(config.get("WORKER_STALE_SECONDS", 60)),
            workers_enabled=self.workers_enabled,
        )
        app.extensions[EXTENSION_KEY] = self
        if not self.workers_enabled:
            logger.info("evaluation workers disabled (flag off or no scoring key); enqueues are still accepted")

    def use_scorer(self, scorer):
        """Swap the scoring callable (tests, offline scripts)."""
        self.scorer = scorer
        self.processor.scorer = scorer

    def shutdown(self, timeout=None):
        if self.pool is not None and self.pool.running:
            self.pool.stop_reaper(timeout)
        self.queue.close()


def build_pipeline(app, queue=None, scorer=None) -> EvaluationPipeline:
    pipeline = EvaluationPipeline(queue or connect_queue(app.config), scorer=scorer)
    pipeline.init_app(app)
    return pipeline


def get_pipeline(app=None) -> EvaluationPipeline:
    app = app or current_app
    return app.extensions[EXTENSION_KEY]
