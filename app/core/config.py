# app/core/config.py

from __future__ import annotations

import os
from pathlib import Path
from dotenv import load_dotenv


def _load_env():
    """
    Load .env from the project root (works locally + in containers where env vars exist anyway).
    We don't override existing OS env vars.
    """
    # This file: app/core/config.py  -> parents[2] = project root
    root_dir = Path(__file__).resolve().parents[2]
    env_path = root_dir / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=False)
    else:
        # fallback: try current working directory
        load_dotenv(override=False)


_load_env()


def _clean(s: str | None) -> str:
    s = (s or "").strip()
    # remove wrapping quotes if present
    if len(s) >= 2 and ((s[0] == s[-1] == '"') or (s[0] == s[-1] == "'")):
        s = s[1:-1].strip()
    return s


def _int(name: str, default: int) -> int:
    try:
        return int(_clean(os.getenv(name)) or default)
    except ValueError:
        return default


def _float(name: str, default: float) -> float:
    try:
        return float(_clean(os.getenv(name)) or default)
    except ValueError:
        return default


DATABASE_URL = _clean(os.getenv("DATABASE_URL")) or "sqlite:///./facescan.db"

# Helpful local fallback: if user kept docker hostname "db", replace with localhost
if DATABASE_URL.startswith("postgresql://") and "@db:" in DATABASE_URL:
    DATABASE_URL = DATABASE_URL.replace("@db:", "@localhost:")

JWT_SECRET = _clean(os.getenv("JWT_SECRET")) or "dev-secret"

# Queue / broker
REDIS_URL = _clean(os.getenv("REDIS_URL")) or "redis://localhost:6379/0"
CELERY_BROKER_URL = _clean(os.getenv("CELERY_BROKER_URL")) or REDIS_URL
CELERY_RESULT_BACKEND = _clean(os.getenv("CELERY_RESULT_BACKEND")) or REDIS_URL
# inline execution for local runs and tests only; jobs are not durable across restarts
CELERY_EAGER = (_clean(os.getenv("CELERY_EAGER")) or "0") == "1"

SCAN_MAX_ATTEMPTS = _int("SCAN_MAX_ATTEMPTS", 3)
SCAN_RETRY_BASE_SECONDS = _int("SCAN_RETRY_BASE_SECONDS", 5)
# liveness deadline for one attempt; a worker over it is killed and the message redelivered
SCAN_TASK_TIME_LIMIT = _int("SCAN_TASK_TIME_LIMIT", 30 * 60)

# Providers
GOOGLE_API_KEY = _clean(os.getenv("GOOGLE_API_KEY"))
GOOGLE_SEARCH_ENGINE_ID = _clean(os.getenv("GOOGLE_SEARCH_ENGINE_ID"))
SEARCH_PAGE_SIZE = _int("SEARCH_PAGE_SIZE", 10)

FACE_MATCHER_URL = _clean(os.getenv("FACE_MATCHER_URL"))
FACE_MATCHER_API_KEY = _clean(os.getenv("FACE_MATCHER_API_KEY"))

PROVIDER_TIMEOUT = _float("PROVIDER_TIMEOUT", 15.0)
IMAGE_FETCH_TIMEOUT = _float("IMAGE_FETCH_TIMEOUT", 10.0)
IMAGE_MAX_BYTES = _int("IMAGE_MAX_BYTES", 10 * 1024 * 1024)

STAGING_DIR = _clean(os.getenv("STAGING_DIR")) or None

DEFAULT_CONFIDENCE_THRESHOLD = _int("DEFAULT_CONFIDENCE_THRESHOLD", 80)
SCAN_SUBMIT_RATE = _clean(os.getenv("SCAN_SUBMIT_RATE")) or "10/minute"

# Social credentials without an explicit expiry from the provider
SOCIAL_TOKEN_TTL_DAYS = _int("SOCIAL_TOKEN_TTL_DAYS", 60)
CONNECT_STATE_TTL_SECONDS = _int("CONNECT_STATE_TTL_SECONDS", 10 * 60)

FRONTEND_ORIGIN = _clean(os.getenv("FRONTEND_ORIGIN")) or "*"
LOG_FORMAT = (_clean(os.getenv("LOG_FORMAT")) or "text").lower()
LOG_LEVEL = (_clean(os.getenv("LOG_LEVEL")) or "INFO").upper()


def web_search_configured() -> bool:
    return bool(GOOGLE_API_KEY and GOOGLE_SEARCH_ENGINE_ID)
