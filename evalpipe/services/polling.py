"""Client side of the status polling contract.

Poll at a fixed interval, stop at the first terminal status, give up after a
maximum duration with PollTimeout.
"""
import logging
import time

import requests

from ..errors import EntityNotFound, EvaluationPipelineError, PollTimeout
from ..queue.jobs import parse_kind

logger = logging.getLogger(__name__)

TERMINAL = ("completed", "error")


def poll_status(fetch, interval=2.0, timeout=60.0, sleep=time.sleep, clock=time.monotonic):
    """Call fetch() until it returns a terminal status dict; returns that dict."""
    started = clock()
    last = None
    while True:
        data = fetch()
        last = data.get("status")
        if last in TERMINAL:
            return data
        waited = clock() - started
        if waited + interval > timeout:
            raise PollTimeout(last_status=last, waited=waited)
        sleep(interval)


class EvaluationStatusClient:
    """Talks to the evaluation HTTP API from another service or a script."""

    def __init__(self, base_url, admin_key=None, timeout=10.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.admin_key = admin_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self):
        return {"X-Admin-Key": self.admin_key} if self.admin_key else {}

    def _request(self, method, path, **kwargs):
        r = self.session.request(method, f"{self.base_url}{path}", headers=self._headers(),
                                 timeout=self.timeout, **kwargs)
        if r.status_code == 404:
            raise EntityNotFound(_error_message(r) or "not found")
        if r.status_code >= 400:
            err = EvaluationPipelineError(_error_message(r) or f"HTTP {r.status_code}")
            err.http_status = r.status_code
            raise err
        return r.json()

    def request_evaluation(self, kind, entity_id):
        kind = parse_kind(kind)
        return self._request("POST", "/api/queue/evaluate", json={"kind": kind.value, "entityId": entity_id})

    def status(self, kind, entity_id):
        kind = parse_kind(kind)
        return self._request("GET", f"/api/{kind.entity_kind}s/{entity_id}/evaluation-status")

    def wait(self, kind, entity_id, interval=2.0, timeout=60.0):
        return poll_status(lambda: self.status(kind, entity_id), interval=interval, timeout=timeout)

    def evaluate_and_wait(self, kind, entity_id, interval=2.0, timeout=60.0):
        handle = self.request_evaluation(kind, entity_id)
        logger.info("evaluation job %s requested for %s", handle.get("jobId"), entity_id)
        return self.wait(kind, entity_id, interval=interval, timeout=timeout)


def _error_message(r):
    try:
        return (r.json() or {}).get("error")
    except ValueError:
        return None
