import os
import logging
from fastapi.responses import JSONResponse
from kaigo_server.api_v1 import error_envelope

logger = logging.getLogger(__name__)

_FLAG_CACHE = {}


def is_enabled(flag_name):
    if flag_name in _FLAG_CACHE:
        return _FLAG_CACHE[flag_name]
    val = os.environ.get(flag_name, "").strip().lower()
    enabled = val in ("true", "1", "yes", "on")
    _FLAG_CACHE[flag_name] = enabled
    return enabled


def clear_cache():
    _FLAG_CACHE.clear()


READ_ONLY = "KAIGO_READ_ONLY"

def is_read_only():
    return is_enabled(READ_ONLY)

def require_writable():
    """Gate check returning 403 JSONResponse while the facility is in read-only mode."""
    if is_read_only():
        logger.info("Write rejected: %s is enabled", READ_ONLY)
        return JSONResponse(
            status_code=403,
            content=error_envelope(
                "READ_ONLY",
                "Records are read-only. Unset KAIGO_READ_ONLY to allow changes.",
            ),
        )
    return None


RESIDENT_SOFT_DELETE = "KAIGO_RESIDENT_SOFT_DELETE"

def is_resident_soft_delete():
    return is_enabled(RESIDENT_SOFT_DELETE)


RUN_MIGRATIONS = "RUN_MIGRATIONS"

def should_run_migrations():
    return is_enabled(RUN_MIGRATIONS)
