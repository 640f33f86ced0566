import os
import logging

from psycopg2 import pool

logger = logging.getLogger(__name__)

DEFAULT_POOL_MIN = 2
DEFAULT_POOL_MAX = 10

_pool = None


def _env_int(name, default):
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


def pool_settings(min_conn=None, max_conn=None):
    """Pool bounds from arguments, then DB_POOL_MIN / DB_POOL_MAX, clamped to 1 <= min <= max."""
    if min_conn is None:
        min_conn = _env_int("DB_POOL_MIN", DEFAULT_POOL_MIN)
    if max_conn is None:
        max_conn = _env_int("DB_POOL_MAX", DEFAULT_POOL_MAX)
    if min_conn < 1:
        logger.warning("DB pool minimum %d below 1, using 1", min_conn)
        min_conn = 1
    if max_conn < min_conn:
        logger.warning("DB pool maximum %d below minimum %d, raising to %d", max_conn, min_conn, min_conn)
        max_conn = min_conn
    return min_conn, max_conn


def init_pool(database_url=None, min_conn=None, max_conn=None):
    global _pool
    if database_url is None:
        database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not set")
    min_conn, max_conn = pool_settings(min_conn, max_conn)
    _pool = pool.ThreadedConnectionPool(min_conn, max_conn, database_url)
    logger.info("Check-list DB pool ready (min=%d, max=%d)", min_conn, max_conn)


def get_pool():
    if _pool is None:
        raise RuntimeError("Connection pool not initialized; the app lifespan calls init_pool()")
    return _pool


def get_conn():
    return get_pool().getconn()


def put_conn(conn):
    get_pool().putconn(conn)


def close_pool():
    global _pool
    if _pool is None:
        return
    _pool.closeall()
    _pool = None
    logger.info("Check-list DB pool closed")


def check_health():
    """True when a pooled connection can see the residents table."""
    try:
        conn = get_conn()
    except Exception as e:
        logger.error("DB health: no connection: %s", e)
        return False
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT to_regclass('public.residents');")
            row = cur.fetchone()
        if row is None or row[0] is None:
            logger.error("DB health: residents table missing, migrations not applied")
            return False
        return True
    except Exception as e:
        logger.error("DB health check failed: %s", e)
        return False
    finally:
        put_conn(conn)
