import os
from dotenv import load_dotenv
load_dotenv()


def _env_bool(name, default=False):
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///evalpipe.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # rq queue store
    QUEUE_NAME = os.getenv("QUEUE_NAME", "evaluation")
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_SOCKET_TIMEOUT = float(os.getenv("REDIS_SOCKET_TIMEOUT", "5"))

    # retry policy encoded on every job at enqueue time
    JOB_MAX_ATTEMPTS = int(os.getenv("JOB_MAX_ATTEMPTS", "3"))
    JOB_BACKOFF_BASE = float(os.getenv("JOB_BACKOFF_BASE", "5"))
    JOB_BACKOFF_MAX = float(os.getenv("JOB_BACKOFF_MAX", "300"))
    # rq: per-attempt timeout, and how long finished / failed jobs stay readable
    JOB_TIMEOUT = int(os.getenv("JOB_TIMEOUT", "180"))
    JOB_RESULT_TTL = int(os.getenv("JOB_RESULT_TTL", "86400"))
    JOB_FAILURE_TTL = int(os.getenv("JOB_FAILURE_TTL", "604800"))

    # worker pool
    EVALUATION_WORKERS_ENABLED = _env_bool("EVALUATION_WORKERS_ENABLED", True)
    EVALUATION_WORKER_CONCURRENCY = int(os.getenv("EVALUATION_WORKER_CONCURRENCY", "3"))
    WORKER_REAP_INTERVAL = float(os.getenv("WORKER_REAP_INTERVAL", "30"))
    WORKER_STALE_SECONDS = float(os.getenv("WORKER_STALE_SECONDS", "60"))
    # entities evaluating for longer than this with a dead or missing job go to error
    RECONCILE_GRACE_SECONDS = float(os.getenv("RECONCILE_GRACE_SECONDS", "120"))

    # producer / backfill
    EVALUATION_MAX_CONTENT_CHARS = int(os.getenv("EVALUATION_MAX_CONTENT_CHARS", "8000"))
    BACKFILL_DEFAULT_LIMIT = int(os.getenv("BACKFILL_DEFAULT_LIMIT", "50"))
    BACKFILL_MAX_LIMIT = int(os.getenv("BACKFILL_MAX_LIMIT", "500"))

    # scoring service
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
    ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5-20250929")
    ANTHROPIC_BASE_URL = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com")
    SCORING_TIMEOUT = float(os.getenv("SCORING_TIMEOUT", "90"))
    SCORING_MAX_TOKENS = int(os.getenv("SCORING_MAX_TOKENS", "2048"))

    # shared secret for operator endpoints (bulk backfill, queue health)
    ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")
