import functools
import logging
import time
from datetime import timedelta

from flask import current_app, has_app_context
from rq import get_current_job

from ..errors import EntityNotFound, InvalidStatusTransition, PermanentScoringFailure
from ..models.base import utcnow
from ..queue.jobs import Job, JobState, parse_kind, payload_from_dict
from ..services.status import EvaluationStatus, short_reason

logger = logging.getLogger(__name__)

# longest error text kept on the job record
MAX_JOB_ERROR_CHARS = 1000


def evaluate_job(kind, payload):
    """rq entry point; runs inside a Flask app context like request handlers do."""
    app = _job_app()
    with app.app_context():
        processor = app.extensions["evaluation_pipeline"].processor
        return processor.run(get_current_job(), kind, payload)


def _job_app():
    if has_app_context():
        return current_app._get_current_object()
    return _worker_app()


@functools.lru_cache(maxsize=None)
def _worker_app():
    # rq worker processes started without an app context build one per process
    from .. import create_app
    return create_app()


class EvaluationProcessor:
    """Runs one claimed evaluation job against the scorer and records the outcome.

    `scorer` is any callable taking a job payload and returning the result dict;
    it raises Transient/PermanentScoringFailure to steer retries.
    """

    def __init__(self, tracker, scorer, ai_model=None, clock=time.monotonic):
        self.tracker = tracker
        self.scorer = scorer
        self.ai_model = ai_model
        self.clock = clock

    def run(self, rq_job, kind, payload):
        """One rq attempt: count it, process, and decide what rq does on failure.

        Exceptions are re-raised so rq records the attempt as failed. rq retries
        while the job has retries left; permanent failures clear them first.
        """
        job = self.start_attempt(rq_job, kind, payload)
        try:
            return self.process(job)
        except PermanentScoringFailure as exc:
            logger.error("job %s permanent failure: %s", job.id, exc)
            self._record_error(rq_job, exc, final=True)
            self.on_failed(job, exc, exhausted=False)
            raise
        except Exception as exc:
            if rq_job.retries_left:
                logger.warning("job %s attempt %d/%d failed, will retry: %s", job.id, job.attempts,
                               job.max_attempts, exc)
                self._record_error(rq_job, exc, final=False)
            else:
                logger.error("job %s failed on its last attempt: %s", job.id, exc)
                self._record_error(rq_job, exc, final=True)
                self.on_failed(job, exc, exhausted=True)
            raise

    def start_attempt(self, rq_job, kind, payload) -> Job:
        rq_job.meta["attempts"] = int(rq_job.meta.get("attempts", 0)) + 1
        rq_job.save_meta()
        kind = parse_kind(kind)
        job = Job(id=rq_job.id, kind=kind, payload=payload_from_dict(kind, payload),
                  max_attempts=int(rq_job.meta.get("max_attempts", 1)), state=JobState.ACTIVE,
                  attempts=rq_job.meta["attempts"], worker_id=getattr(rq_job, "worker_name", None))
        logger.info("processing job %s (%s %s, attempt %d/%d)", job.id, kind.value, job.entity_id,
                    job.attempts, job.max_attempts)
        return job

    def _record_error(self, rq_job, exc, final):
        rq_job.meta["last_error"] = str(exc)[:MAX_JOB_ERROR_CHARS]
        if final:
            # rq reads this after the job function returns
            rq_job.retries_left = 0
        rq_job.save_meta()

    def is_current(self, job) -> bool:
        view = self.tracker.current(job.kind, job.entity_id)
        if view is None:
            logger.info("job %s: %s %s no longer exists, skipping", job.id, job.kind.entity_kind, job.entity_id)
            return False
        if view.status is not EvaluationStatus.EVALUATING or view.job_id != job.id:
            logger.info("job %s is stale (%s %s is %s for job %s), skipping", job.id,
                        job.kind.entity_kind, job.entity_id, view.status.value, view.job_id)
            return False
        return True

    def process(self, job):
        if not self.is_current(job):
            return None
        started = self.clock()
        result = self.scorer(job.payload)
        elapsed_ms = int((self.clock() - started) * 1000)
        if not isinstance(result, dict):
            raise PermanentScoringFailure(f"scorer returned {type(result).__name__}, expected an object")
        try:
            written = self.tracker.complete(job.kind, job.entity_id, job.id, result,
                                            ai_model=self.ai_model, processing_time_ms=elapsed_ms)
        except (InvalidStatusTransition, EntityNotFound) as exc:
            logger.info("job %s result dropped: %s", job.id, exc)
            return None
        if written:
            logger.info("job %s completed %s %s in %d ms (score=%s)", job.id, job.kind.entity_kind,
                        job.entity_id, elapsed_ms, result.get("overallScore"))
        return result

    def on_failed(self, job, exc, exhausted):
        """Terminal failure: move the entity to 'error' with a readable reason."""
        if exhausted:
            reason = f"evaluation failed after {job.max_attempts} attempts: {exc}"
        else:
            reason = str(exc)
        try:
            self.tracker.fail(job.kind, job.entity_id, job.id, short_reason(reason))
        except (InvalidStatusTransition, EntityNotFound) as e:
            logger.info("job %s failure not recorded: %s", job.id, e)

    def reconcile(self, queue, grace_seconds=120.0):
        """Fail entities still 'evaluating' for a job that died or disappeared.

        Covers workers killed mid-job and failure writes that did not reach the
        database. Entities flipped less than `grace_seconds` ago are left alone,
        their job may not be written yet.
        """
        cutoff = utcnow() - timedelta(seconds=grace_seconds)
        flipped = []
        for kind, entity_id, job_id in self.tracker.in_flight(requested_before=cutoff):
            job = queue.get_job(job_id) if job_id else None
            if job is not None and job.state is not JobState.FAILED:
                continue
            if job is None:
                reason = "evaluation job is no longer in the queue"
            else:
                reason = job.last_error or "worker stopped before the evaluation finished"
            try:
                written = self.tracker.fail(kind, entity_id, job_id, short_reason(reason))
            except (InvalidStatusTransition, EntityNotFound) as exc:
                logger.info("reconcile %s %s skipped: %s", kind.entity_kind, entity_id, exc)
                continue
            if written:
                logger.warning("%s %s was stuck on job %s, moved to error", kind.entity_kind, entity_id, job_id)
                flipped.append((kind, entity_id))
        return flipped
