"""Error taxonomy of the evaluation pipeline.

Every error carries the HTTP status the API blueprint answers with, so the
request handlers never need their own mapping table.
"""


class EvaluationPipelineError(Exception):
    code = "evaluation_error"
    http_status = 500

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class InvalidPayload(EvaluationPipelineError):
    """Content missing, oversized or incomplete. Never retried."""
    code = "invalid_payload"
    http_status = 400


class EntityNotFound(EvaluationPipelineError):
    code = "not_found"
    http_status = 404


class AlreadyInFlight(EvaluationPipelineError):
    """Entity already has an evaluation in flight.

    The producer resolves this into the existing job handle; it only reaches a
    caller when the in-flight job id cannot be determined.
    """
    code = "already_in_flight"
    http_status = 409

    def __init__(self, job_id=None, message=None):
        super().__init__(message or "evaluation already in progress")
        self.job_id = job_id


class InvalidStatusTransition(EvaluationPipelineError):
    code = "invalid_status_transition"
    http_status = 409

    def __init__(self, current, target):
        super().__init__(f"cannot move evaluation status from {current} to {target}")
        self.current = current
        self.target = target


class QueueUnavailable(EvaluationPipelineError):
    """Queue store unreachable. The caller may retry; nothing was written."""
    code = "queue_unavailable"
    http_status = 503


class ScoringFailure(EvaluationPipelineError):
    code = "scoring_failed"
    http_status = 502


class TransientScoringFailure(ScoringFailure):
    """Timeout, rate limit or server error from the scoring service."""
    code = "scoring_transient"


class PermanentScoringFailure(ScoringFailure):
    """Content rejected or non-retryable API error."""
    code = "scoring_permanent"


class PollTimeout(EvaluationPipelineError):
    """Client-side polling gave up before the evaluation reached a terminal status."""
    code = "poll_timeout"
    http_status = 504

    def __init__(self, last_status=None, waited=None):
        super().__init__(f"evaluation still {last_status or 'unknown'} after {waited or 0:.1f}s")
        self.last_status = last_status
        self.waited = waited
