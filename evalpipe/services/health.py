import logging
from datetime import datetime, timezone

from ..errors import QueueUnavailable
from ..queue.client import empty_counts

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Read-only view over the queue store: depth per state, reachability, workers."""

    def __init__(self, queue, stale_after=60.0, workers_enabled=True, clock=None):
        self.queue = queue
        self.stale_after = stale_after
        self.workers_enabled = workers_enabled
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def workers(self):
        now = self.clock()
        out = []
        for info in sorted(self.queue.workers(), key=lambda w: w["name"]):
            seen = info.get("last_heartbeat")
            age = (now - seen).total_seconds() if seen is not None else None
            out.append({
                "id": info["name"],
                "state": info.get("state"),
                "currentJobId": info.get("current_job_id"),
                "lastSeenSecondsAgo": round(age, 1) if age is not None else None,
                "alive": age is not None and age <= self.stale_after,
            })
        return out

    def check(self):
        report = {
            "queueName": self.queue.name,
            "queueCounts": empty_counts(),
            "storeReachable": False,
            "paused": False,
            "workersAlive": False,
            "workers": [],
            "workersEnabled": self.workers_enabled,
            "checkedAt": self.clock().isoformat(),
        }
        if not self.queue.ping():
            return report
        try:
            report["queueCounts"] = self.queue.counts()
            report["paused"] = self.queue.is_paused()
            report["workers"] = self.workers()
        except QueueUnavailable as exc:
            logger.warning("health check: queue store went away mid-check: %s", exc)
            return report
        report["storeReachable"] = True
        report["workersAlive"] = any(w["alive"] for w in report["workers"])
        return report

    def liveness(self):
        reachable = self.queue.ping()
        return {"status": "ok" if reachable else "degraded", "storeReachable": reachable}

