"""Worker side of the evaluation queue, on rq.

`WorkerPool.work` drains the queue in the calling process with an rq
``SimpleWorker`` (scripts, tests). `WorkerPool.start` runs `size` rq workers
under rq's own process pool; each worker scores one job at a time, so the
pool size is the upper bound on concurrent scoring calls. `reap` hands
expired leases back to rq and moves entities whose job died to 'error'.
"""
import contextlib
import logging
import threading

from rq import SimpleWorker
from rq.worker_pool import WorkerPool as RQWorkerPool

from ..errors import QueueUnavailable

logger = logging.getLogger(__name__)


class WorkerPool:

    def __init__(self, queue, processor, size=3, reap_interval=30.0, reconcile_grace=120.0,
                 context_factory=None):
        if size < 1:
            raise ValueError("worker pool size must be at least 1")
        self.queue = queue
        self.processor = processor
        self.size = size
        self.reap_interval = reap_interval
        self.reconcile_grace = reconcile_grace
        self.context_factory = context_factory or contextlib.nullcontext
        self._stop = threading.Event()
        self._reaper = None

    @classmethod
    def from_config(cls, queue, processor, config, context_factory=None):
        return cls(
            queue,
            processor,
            size=int(config.get("EVALUATION_WORKER_CONCURRENCY", 3)),
            reap_interval=float(config.get("WORKER_REAP_INTERVAL", 30.0)),
            reconcile_grace=float(config.get("RECONCILE_GRACE_SECONDS", 120.0)),
            context_factory=context_factory,
        )

    @property
    def running(self):
        return self._reaper is not None and self._reaper.is_alive()

    def work(self, burst=True, max_jobs=None) -> int:
        """Run jobs in this process; returns the number of attempts made.

        With burst=True stops as soon as nothing is ready to run.
        """
        worker = SimpleWorker([self.queue.queue], connection=self.queue.connection)
        with self.context_factory():
            worker.work(burst=burst, max_jobs=max_jobs)
        return worker.successful_job_count + worker.failed_job_count

    def start(self, burst=False):
        """Run `size` rq worker processes until SIGINT/SIGTERM; blocks."""
        self.start_reaper()
        pool = RQWorkerPool([self.queue.queue], connection=self.queue.connection, num_workers=self.size)
        logger.info("starting %d rq worker(s) on queue %s", self.size, self.queue.name)
        try:
            pool.start(burst=burst)
        finally:
            self.stop_reaper()

    def reap(self):
        """Hand expired leases back to rq, then fail entities whose job died.

        Returns the (kind, entity_id) pairs moved to 'error'.
        """
        self.queue.recover_stalled()
        with self.context_factory():
            return self.processor.reconcile(self.queue, grace_seconds=self.reconcile_grace)

    def start_reaper(self):
        if self.running:
            return
        self._stop.clear()
        self._reaper = threading.Thread(target=self._reap_loop, name="evalpipe-reaper", daemon=True)
        self._reaper.start()

    def stop_reaper(self, timeout=None):
        self._stop.set()
        if self._reaper is not None:
            self._reaper.join(timeout)

    def _reap_loop(self):
        while not self._stop.wait(self.reap_interval):
            try:
                self.reap()
            except QueueUnavailable as exc:
                logger.warning("reaper: queue unavailable (%s)", exc)
            except Exception:
                logger.exception("reaper tick failed")
