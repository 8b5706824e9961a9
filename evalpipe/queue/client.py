"""Queue store: a thin adapter over an rq ``Queue``.

rq owns the job records, the atomic dequeue, retries with backoff
(``Retry``), leases (``StartedJobRegistry``) and worker heartbeats. This
class adds what the pipeline needs on top of it: job ids known before the
enqueue, counts per state, pause/resume and ``QueueUnavailable`` whenever
Redis cannot be reached.
"""
import functools
import logging
import uuid
from datetime import timezone

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError
from rq import Queue, Worker
from rq.exceptions import NoSuchJobError
from rq.job import Job as RQJob
from rq.suspension import is_suspended, resume, suspend

from ..errors import QueueUnavailable
from .jobs import Job, JobState, entity_key, payload_to_dict

logger = logging.getLogger(__name__)

# resolved by rq in the worker process
EVALUATE_FUNC = "evalpipe.jobs.evaluate.evaluate_job"


def empty_counts():
    return {state.value: 0 for state in JobState}


def _unavailable_on_error(fn):
    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise QueueUnavailable(f"queue store unreachable: {exc}") from exc
    return wrapper


def _utc(dt):
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


class QueueClient:

    def __init__(self, connection, name="evaluation", job_timeout=180, result_ttl=86400, failure_ttl=604800):
        self.connection = connection
        self.name = name
        self.job_timeout = int(job_timeout)
        self.result_ttl = int(result_ttl)
        self.failure_ttl = int(failure_ttl)
        self.queue = Queue(name, connection=connection, default_timeout=self.job_timeout)

    @classmethod
    def from_url(cls, url, socket_timeout=5.0, **kwargs):
        # rq stores pickled jobs, so responses must stay bytes
        conn = redis.Redis.from_url(url, socket_timeout=socket_timeout,
                                    socket_connect_timeout=socket_timeout)
        return cls(conn, **kwargs)

    @classmethod
    def from_config(cls, config) -> "QueueClient":
        return cls.from_url(
            config.get("REDIS_URL"),
            socket_timeout=float(config.get("REDIS_SOCKET_TIMEOUT", 5)),
            name=config.get("QUEUE_NAME", "evaluation"),
            job_timeout=int(config.get("JOB_TIMEOUT", 180)),
            result_ttl=int(config.get("JOB_RESULT_TTL", 86400)),
            failure_ttl=int(config.get("JOB_FAILURE_TTL", 604800)),
        )

    def reserve_id(self) -> str:
        """Id the next enqueue will use, so the entity row can carry it first."""
        return uuid.uuid4().hex

    @_unavailable_on_error
    def enqueue(self, job_id, payload, retry_policy) -> str:
        rq_job = self.queue.enqueue(
            EVALUATE_FUNC,
            payload.kind.value,
            payload_to_dict(payload),
            job_id=job_id,
            retry=retry_policy.to_rq(),
            job_timeout=self.job_timeout,
            result_ttl=self.result_ttl,
            failure_ttl=self.failure_ttl,
            description=f"{payload.kind.value} {payload.entity_id}",
            meta={
                "entity_key": entity_key(payload.kind, payload.entity_id),
                "max_attempts": retry_policy.max_attempts,
                "attempts": 0,
            },
        )
        return rq_job.id

    @_unavailable_on_error
    def get_job(self, job_id):
        try:
            rq_job = RQJob.fetch(str(job_id), connection=self.connection)
        except NoSuchJobError:
            return None
        return Job.from_rq(rq_job, paused=self.is_paused())

    @_unavailable_on_error
    def counts(self) -> dict:
        q = self.queue
        registries = (q.started_job_registry, q.scheduled_job_registry, q.deferred_job_registry,
                      q.finished_job_registry, q.failed_job_registry)
        # raw sizes; the registries' own count properties run a cleanup first
        pipe = self.connection.pipeline(transaction=False)
        pipe.llen(q.key)
        for registry in registries:
            pipe.zcard(registry.key)
        waiting, active, scheduled, deferred, completed, failed = pipe.execute()

        out = empty_counts()
        out[JobState.PAUSED.value if self.is_paused() else JobState.WAITING.value] = int(waiting)
        out[JobState.ACTIVE.value] = int(active)
        out[JobState.DELAYED.value] = int(scheduled) + int(deferred)
        out[JobState.COMPLETED.value] = int(completed)
        out[JobState.FAILED.value] = int(failed)
        return out

    @_unavailable_on_error
    def recover_stalled(self):
        """Let rq requeue, or fail, jobs whose worker stopped heartbeating."""
        self.queue.started_job_registry.cleanup()

    @_unavailable_on_error
    def pause(self):
        # rq suspension applies to every worker on this Redis
        suspend(self.connection)
        logger.info("evaluation workers suspended")

    @_unavailable_on_error
    def resume(self):
        resume(self.connection)
        logger.info("evaluation workers resumed")

    @_unavailable_on_error
    def is_paused(self) -> bool:
        return bool(is_suspended(self.connection))

    def ping(self) -> bool:
        try:
            return bool(self.connection.ping())
        except RedisError:
            logger.warning("queue store ping failed", exc_info=True)
            return False

    @_unavailable_on_error
    def workers(self):
        """rq workers listening on this queue, with their last heartbeat (UTC)."""
        out = []
        for worker in Worker.all(connection=self.connection, queue=self.queue):
            state = worker.get_state()
            out.append({
                "name": worker.name,
                "state": getattr(state, "value", state),
                "last_heartbeat": _utc(worker.last_heartbeat),
                "current_job_id": worker.get_current_job_id(),
            })
        return out

    def close(self):
        self.connection.close()
