import logging
from datetime import date, datetime

import psycopg2
from psycopg2 import errorcodes
from fastapi.responses import JSONResponse

from kaigo_server.db import get_conn, put_conn
from kaigo_server.api_v1 import envelope, collection_envelope, error_envelope

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 1000
MAX_LIST_LIMIT = 5000


def row_to_dict(row, columns):
    d = {}
    for i, col in enumerate(columns):
        val = row[i]
        if isinstance(val, (datetime, date)):
            d[col] = val.isoformat()
        else:
            d[col] = val
    return d


def parse_iso_date(value):
    """Accept 'YYYY-MM-DD' or an ISO datetime string; anything else yields None."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        if len(text) > 10:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError:
        return None


def validation_error(message, details=None):
    return JSONResponse(
        status_code=400,
        content=error_envelope("VALIDATION_ERROR", message, details=details),
    )


def not_found(kind, rec_id):
    return JSONResponse(
        status_code=404,
        content=error_envelope("NOT_FOUND", "%s not found: %s" % (kind, rec_id)),
    )


def collect_fields(body, text_fields=(), bool_fields=(), int_fields=(), choices=None):
    """Pick the editable fields present in ``body``.

    Returns ``(values, error_response)``. Absent keys are left out so the
    result can drive both INSERT and partial UPDATE statements.
    """
    choices = choices or {}
    values = {}
    for key in text_fields:
        if key not in body:
            continue
        val = body[key]
        if val is not None and not isinstance(val, str):
            return None, validation_error("%s must be a string or null" % key)
        allowed = choices.get(key)
        if allowed is not None and (val or "") not in allowed:
            return None, validation_error(
                "%s must be one of: %s" % (key, ", ".join(repr(a) for a in allowed))
            )
        values[key] = val
    for key in bool_fields:
        if key not in body:
            continue
        if not isinstance(body[key], bool):
            return None, validation_error("%s must be a boolean" % key)
        values[key] = body[key]
    for key in int_fields:
        if key not in body:
            continue
        val = body[key]
        if isinstance(val, bool) or not isinstance(val, int):
            return None, validation_error("%s must be an integer" % key)
        values[key] = val
    return values, None


def date_range_conditions(conditions, params, column, date_from, date_to):
    """Append inclusive from/to filters; returns an error response for bad dates."""
    if date_from:
        parsed = parse_iso_date(date_from)
        if parsed is None:
            return validation_error("from must be an ISO date (YYYY-MM-DD)")
        conditions.append("%s >= %%s" % column)
        params.append(parsed)
    if date_to:
        parsed = parse_iso_date(date_to)
        if parsed is None:
            return validation_error("to must be an ISO date (YYYY-MM-DD)")
        conditions.append("%s <= %%s" % column)
        params.append(parsed)
    return None


def _internal_error(handler, conn, e):
    logger.error("%s error: %s", handler, e)
    conn.rollback()
    return JSONResponse(status_code=500, content=error_envelope("INTERNAL", str(e)))


def fetch_collection(handler, table, columns, conditions, params, order_by="id ASC", limit=DEFAULT_LIST_LIMIT):
    where = ("WHERE " + " AND ".join(conditions)) if conditions else ""
    sql = "SELECT %s FROM %s %s ORDER BY %s LIMIT %%s" % (", ".join(columns), table, where, order_by)
    query_params = list(params) + [limit + 1]

    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(sql, query_params)
            rows = cur.fetchall()

        has_more = len(rows) > limit
        if has_more:
            rows = rows[:limit]
            logger.warning("%s truncated at %d rows", handler, limit)

        items = [row_to_dict(r, columns) for r in rows]
        return collection_envelope(items, has_more=has_more, limit=limit)
    except Exception as e:
        return _internal_error(handler, conn, e)
    finally:
        put_conn(conn)


def fetch_one(handler, table, columns, rec_id, kind):
    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT %s FROM %s WHERE id = %%s" % (", ".join(columns), table),
                (rec_id,),
            )
            row = cur.fetchone()

        if not row:
            return not_found(kind, rec_id)
        return envelope(row_to_dict(row, columns))
    except Exception as e:
        return _internal_error(handler, conn, e)
    finally:
        put_conn(conn)


def _integrity_response(handler, conn, kind, e):
    conn.rollback()
    if e.pgcode == errorcodes.UNIQUE_VIOLATION:
        logger.info("%s rejected duplicate %s: %s", handler, kind, e)
        return JSONResponse(
            status_code=409,
            content=error_envelope("DUPLICATE_SLOT", "A %s already exists for this slot" % kind),
        )
    if e.pgcode == errorcodes.FOREIGN_KEY_VIOLATION:
        return validation_error("resident_id does not reference an existing resident")
    logger.error("%s integrity error: %s", handler, e)
    return JSONResponse(status_code=500, content=error_envelope("INTERNAL", str(e)))


def insert_row(handler, table, columns, values, kind):
    keys = list(values.keys())
    sql = "INSERT INTO %s (%s) VALUES (%s) RETURNING %s" % (
        table,
        ", ".join(keys),
        ", ".join(["%s"] * len(keys)),
        ", ".join(columns),
    )

    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(sql, [values[k] for k in keys])
            row = cur.fetchone()
        conn.commit()
        logger.info("%s created %s %s", handler, kind, values.get("id"))
        return JSONResponse(status_code=201, content=envelope(row_to_dict(row, columns)))
    except psycopg2.IntegrityError as e:
        return _integrity_response(handler, conn, kind, e)
    except Exception as e:
        return _internal_error(handler, conn, e)
    finally:
        put_conn(conn)


def update_row(handler, table, columns, rec_id, updates, kind):
    set_clauses = []
    params = []
    for k, v in updates.items():
        set_clauses.append("%s = %%s" % k)
        params.append(v)
    set_clauses.append("updated_at = NOW()")
    params.append(rec_id)
    sql = "UPDATE %s SET %s WHERE id = %%s RETURNING %s" % (
        table,
        ", ".join(set_clauses),
        ", ".join(columns),
    )

    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(sql, params)
            row = cur.fetchone()

        if not row:
            conn.rollback()
            return not_found(kind, rec_id)
        conn.commit()
        return envelope(row_to_dict(row, columns))
    except psycopg2.IntegrityError as e:
        return _integrity_response(handler, conn, kind, e)
    except Exception as e:
        return _internal_error(handler, conn, e)
    finally:
        put_conn(conn)


def delete_row(handler, table, rec_id, kind):
    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM %s WHERE id = %%s RETURNING id" % table, (rec_id,))
            row = cur.fetchone()

        if not row:
            conn.rollback()
            return not_found(kind, rec_id)
        conn.commit()
        logger.info("%s deleted %s %s", handler, kind, rec_id)
        return envelope({"id": rec_id, "deleted": True})
    except Exception as e:
        return _internal_error(handler, conn, e)
    finally:
        put_conn(conn)


def upsert_row(handler, table, columns, values, conflict_columns, kind):
    """INSERT ... ON CONFLICT DO UPDATE; ``id`` is only used when a new row is inserted."""
    keys = list(values.keys())
    update_keys = [k for k in keys if k != "id" and k not in conflict_columns]
    set_clauses = ["%s = EXCLUDED.%s" % (k, k) for k in update_keys]
    set_clauses.append("updated_at = NOW()")
    sql = "INSERT INTO %s (%s) VALUES (%s) ON CONFLICT (%s) DO UPDATE SET %s RETURNING %s" % (
        table,
        ", ".join(keys),
        ", ".join(["%s"] * len(keys)),
        ", ".join(conflict_columns),
        ", ".join(set_clauses),
        ", ".join(columns),
    )

    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(sql, [values[k] for k in keys])
            row = cur.fetchone()
        conn.commit()
        return JSONResponse(status_code=201, content=envelope(row_to_dict(row, columns)))
    except psycopg2.IntegrityError as e:
        return _integrity_response(handler, conn, kind, e)
    except Exception as e:
        return _internal_error(handler, conn, e)
    finally:
        put_conn(conn)
