"""Configuration for the embedding generation worker."""

import os
from typing import List
from dotenv import load_dotenv

from .errors import ConfigurationError

# Load environment variables
load_dotenv()

# Integer settings that could not be parsed, reported by validate_config()
INVALID_SETTINGS = {}


def _int_setting(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        INVALID_SETTINGS[name] = raw
        return default


# Supabase (queue table, source records, edge functions)
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

# Queue backend: "supabase" (embedding_generation_queue table) or "redis"
QUEUE_BACKEND = os.getenv("QUEUE_BACKEND", "supabase").lower()
QUEUE_TABLE = os.getenv("QUEUE_TABLE", "embedding_generation_queue")

# Redis Configuration (alternative queue backend)
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

# Worker Configuration
POLL_INTERVAL_MS = _int_setting("POLL_INTERVAL_MS", 5000)
BATCH_SIZE = _int_setting("BATCH_SIZE", 5)
MAX_ATTEMPTS = _int_setting("MAX_ATTEMPTS", 3)
HEARTBEAT_EVERY = _int_setting("HEARTBEAT_EVERY", 12)  # ~1 min at 5s polls
STALE_PROCESSING_SECONDS = _int_setting("STALE_PROCESSING_SECONDS", 600)  # 0 disables
FAIL_FAST_ON_MISSING_ENTITY = os.getenv("FAIL_FAST_ON_MISSING_ENTITY", "true").lower() == "true"

# Embedding functions
CANDIDATE_EMBEDDING_FUNCTION = os.getenv("CANDIDATE_EMBEDDING_FUNCTION", "generate-embeddings")
JOB_EMBEDDING_FUNCTION = os.getenv("JOB_EMBEDDING_FUNCTION", "generate-job-embeddings")
INVOKE_TIMEOUT_SECONDS = _int_setting("INVOKE_TIMEOUT_SECONDS", 60)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

SUPPORTED_BACKENDS = ("supabase", "redis")

# Source tables
CANDIDATE_TABLE = "candidate_profiles"
JOB_POSTING_TABLE = "job_postings"
CANDIDATE_EMBEDDINGS_TABLE = "candidate_embeddings"
JOB_POSTING_EMBEDDINGS_TABLE = "job_posting_embeddings"


def missing_required_settings() -> List[str]:
    """Return the names of required settings that are not set."""
    missing = []
    if not SUPABASE_URL:
        missing.append("SUPABASE_URL")
    if not SUPABASE_SERVICE_ROLE_KEY:
        missing.append("SUPABASE_SERVICE_ROLE_KEY")
    return missing


def validate_config():
    """Fail fast on configuration the worker cannot start without.

    Raises:
        ConfigurationError: If credentials are missing or a tunable is invalid
    """
    if INVALID_SETTINGS:
        details = ", ".join(f"{name}={raw!r}" for name, raw in INVALID_SETTINGS.items())
        raise ConfigurationError(f"Settings must be integers: {details}")

    missing = missing_required_settings()
    if missing:
        raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

    if QUEUE_BACKEND not in SUPPORTED_BACKENDS:
        raise ConfigurationError(
            f"QUEUE_BACKEND must be one of {', '.join(SUPPORTED_BACKENDS)}, got {QUEUE_BACKEND!r}"
        )

    for name, value in (
        ("POLL_INTERVAL_MS", POLL_INTERVAL_MS),
        ("BATCH_SIZE", BATCH_SIZE),
        ("MAX_ATTEMPTS", MAX_ATTEMPTS),
        ("HEARTBEAT_EVERY", HEARTBEAT_EVERY),
    ):
        if value <= 0:
            raise ConfigurationError(f"{name} must be positive, got {value}")
