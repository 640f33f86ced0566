import os
import logging

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 30.0
API_PREFIX = "/api/v1"


def api_base_url() -> str:
    return os.getenv("KAIGO_API_BASE_URL", DEFAULT_BASE_URL).rstrip("/")


def api_timeout() -> float:
    raw = os.getenv("KAIGO_API_TIMEOUT", "").strip()
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric KAIGO_API_TIMEOUT=%r", raw)
        return DEFAULT_TIMEOUT
    return value if value > 0 else DEFAULT_TIMEOUT


def default_staff_name() -> str:
    return os.getenv("KAIGO_STAFF_NAME", "").strip()
