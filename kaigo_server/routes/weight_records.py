import logging
import math

from fastapi import APIRouter, Query

from kaigo_server.ids import generate_id
from kaigo_server.feature_flags import require_writable
from kaigo_server.record_store import (
    collect_fields,
    date_range_conditions,
    delete_row,
    fetch_collection,
    fetch_one,
    insert_row,
    parse_iso_date,
    update_row,
    validation_error,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1")

TABLE = "weight_records"
KIND = "Weight record"

WEIGHT_COLUMNS = [
    "id", "resident_id", "record_date", "staff_name", "weight", "notes",
    "created_at", "updated_at",
]
TEXT_FIELDS = ("staff_name", "weight", "notes")


def _validate_weight(value):
    if value is None or value == "":
        return None
    try:
        parsed = float(value)
    except ValueError:
        return "weight must be numeric"
    if not math.isfinite(parsed):
        return "weight must be a finite number"
    if parsed < 0 or parsed > 999:
        return "weight must be between 0 and 999"
    return None


@router.get("/weight-records")
def list_weight_records(
    date_from: str = Query(None, alias="from"),
    date_to: str = Query(None, alias="to"),
    resident_id: str = Query(None),
    limit: int = Query(1000, ge=1, le=5000),
):
    conditions = []
    params = []
    err = date_range_conditions(conditions, params, "record_date", date_from, date_to)
    if err:
        return err
    if resident_id:
        conditions.append("resident_id = %s")
        params.append(resident_id)
    return fetch_collection(
        "list_weight_records", TABLE, WEIGHT_COLUMNS, conditions, params,
        order_by="record_date ASC, id ASC", limit=limit,
    )


@router.post("/weight-records", status_code=201)
def create_weight_record(body: dict):
    blocked = require_writable()
    if blocked:
        return blocked

    resident_id = body.get("resident_id")
    if not resident_id or not isinstance(resident_id, str):
        return validation_error("resident_id is required and must be a string")

    record_date = parse_iso_date(body.get("record_date"))
    if record_date is None:
        return validation_error("record_date is required (YYYY-MM-DD)")

    values, err = collect_fields(body, text_fields=TEXT_FIELDS)
    if err:
        return err
    weight_err = _validate_weight(values.get("weight"))
    if weight_err:
        return validation_error(weight_err)

    values.update({
        "id": generate_id("wgt_"),
        "resident_id": resident_id,
        "record_date": record_date,
    })
    return insert_row("create_weight_record", TABLE, WEIGHT_COLUMNS, values, KIND)


@router.get("/weight-records/{rec_id}")
def get_weight_record(rec_id: str):
    return fetch_one("get_weight_record", TABLE, WEIGHT_COLUMNS, rec_id, KIND)


@router.patch("/weight-records/{rec_id}")
def update_weight_record(rec_id: str, body: dict):
    blocked = require_writable()
    if blocked:
        return blocked

    updates, err = collect_fields(body, text_fields=TEXT_FIELDS)
    if err:
        return err
    if "record_date" in body:
        record_date = parse_iso_date(body["record_date"])
        if record_date is None:
            return validation_error("record_date must be an ISO date (YYYY-MM-DD)")
        updates["record_date"] = record_date
    if "weight" in updates:
        weight_err = _validate_weight(updates["weight"])
        if weight_err:
            return validation_error(weight_err)

    if not updates:
        return validation_error("No updatable fields provided")

    return update_row("update_weight_record", TABLE, WEIGHT_COLUMNS, rec_id, updates, KIND)


@router.delete("/weight-records/{rec_id}")
def delete_weight_record(rec_id: str):
    blocked = require_writable()
    if blocked:
        return blocked
    return delete_row("delete_weight_record", TABLE, rec_id, KIND)
