"""Audio Dedup Pipeline - Configuration constants.

No external config libraries. All paths are relative to the repository root by
default and can be overridden with AUDIODEDUP_* environment variables.
"""

import os
from pathlib import Path

# Repository root (parent of audiodedup/)
REPO_ROOT = Path(__file__).parent.parent.resolve()


def _get_path(name: str, default: Path) -> Path:
    """Get a path from environment or use default.

    Args:
        name: Environment variable name.
        default: Path used when the variable is unset or empty.

    Returns:
        Resolved path.
    """
    env_val = os.environ.get(name)
    if env_val:
        return Path(env_val).expanduser().resolve()
    return default


def _get_int(name: str, default: int, minimum: int = 0) -> int:
    """Get a non-negative integer from environment or use default.

    Invalid or out-of-range values fall back to the default.

    Args:
        name: Environment variable name.
        default: Fallback value.
        minimum: Smallest accepted value.

    Returns:
        The configured integer.
    """
    env_val = os.environ.get(name)
    if env_val:
        try:
            value = int(env_val)
            if value >= minimum:
                return value
        except ValueError:
            pass
    return default


# Data directories
DATA_DIR = _get_path("AUDIODEDUP_DATA_DIR", REPO_ROOT / "data")

# Blob store root. Buckets are subdirectories.
BLOB_DIR = _get_path("AUDIODEDUP_BLOB_DIR", DATA_DIR / "blobs")
TEMP_BUCKET = "temp-uploads"
AUDIO_BUCKET = "audio-files"

# Database path
DB_PATH = _get_path("AUDIODEDUP_DB_PATH", DATA_DIR / "audiodedup.db")

# Queue directory and Huey database path
QUEUE_DIR = DATA_DIR / "queue"
HUEY_DB_PATH = _get_path("AUDIODEDUP_HUEY_DB_PATH", QUEUE_DIR / "huey.db")

# Chromaprint fpcalc binary (resolved through PATH when not absolute)
FPCALC_PATH = os.environ.get("AUDIODEDUP_FPCALC_PATH") or "fpcalc"

# Upper bound for a single fpcalc invocation. A timeout is an analysis failure.
FPCALC_TIMEOUT_SECONDS = _get_int("AUDIODEDUP_FPCALC_TIMEOUT_SEC", 120, minimum=1)

# In-process analysis worker threads. 0 disables the embedded pool
# (tasks then wait for a stand-alone huey consumer).
ANALYSIS_WORKERS = _get_int("AUDIODEDUP_ANALYSIS_WORKERS", 2)

# Per-subscriber event buffer. Events beyond this are dropped for that subscriber.
SUBSCRIBER_QUEUE_SIZE = _get_int("AUDIODEDUP_SUBSCRIBER_QUEUE_SIZE", 100, minimum=1)

# SSE keepalive interval
SSE_PING_SECONDS = _get_int("AUDIODEDUP_SSE_PING_SEC", 15, minimum=1)

# Upload size ceiling in bytes. 0 means unlimited.
MAX_UPLOAD_BYTES = _get_int("AUDIODEDUP_MAX_UPLOAD_BYTES", 0)

# Comma-separated list of allowed CORS origins
CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("AUDIODEDUP_CORS_ALLOW_ORIGINS", "*").split(",")
    if origin.strip()
]

# Cap for GET /upload/warnings
WARNINGS_LIST_LIMIT = 100
