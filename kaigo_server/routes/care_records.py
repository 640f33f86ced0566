import logging

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

TABLE = "care_records"
KIND = "Care record"

CATEGORIES = ("daily_care", "assistance", "observation")

CARE_COLUMNS = [
    "id", "resident_id", "record_date", "category", "description", "notes",
    "staff_name", "created_at", "updated_at",
]
TEXT_FIELDS = ("description", "notes", "staff_name")


@router.get("/care-records")
def list_care_records(
    date_from: str = Query(None, alias="from"),
    date_to: str = Query(None, alias="to"),
    resident_id: str = Query(None),
    category: str = Query(None),
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
    if category:
        if category not in CATEGORIES:
            return validation_error("category must be one of: %s" % ", ".join(CATEGORIES))
        conditions.append("category = %s")
        params.append(category)
    return fetch_collection(
        "list_care_records", TABLE, CARE_COLUMNS, conditions, params,
        order_by="record_date DESC, id ASC", limit=limit,
    )


@router.post("/care-records", status_code=201)
def create_care_record(body: dict):
    blocked = require_writable()
    if blocked:
        return blocked

    resident_id = body.get("resident_id")
    if not resident_id or not isinstance(resident_id, str):
        return validation_error("resident_id is required and must be a string")

    record_date = parse_iso_date(body.get("record_date"))
    if record_date is None:
        return validation_error("record_date is required (YYYY-MM-DD)")

    category = body.get("category")
    if category not in CATEGORIES:
        return validation_error("category must be one of: %s" % ", ".join(CATEGORIES))

    values, err = collect_fields(body, text_fields=TEXT_FIELDS)
    if err:
        return err

    values.update({
        "id": generate_id("care_"),
        "resident_id": resident_id,
        "record_date": record_date,
        "category": category,
    })
    return insert_row("create_care_record", TABLE, CARE_COLUMNS, values, KIND)


@router.get("/care-records/{rec_id}")
def get_care_record(rec_id: str):
    return fetch_one("get_care_record", TABLE, CARE_COLUMNS, rec_id, KIND)


@router.patch("/care-records/{rec_id}")
def update_care_record(rec_id: str, body: dict):
    blocked = require_writable()
    if blocked:
        return blocked

    updates, err = collect_fields(body, text_fields=TEXT_FIELDS)
    if err:
        return err

    if not updates:
        return validation_error("No updatable fields provided")

    return update_row("update_care_record", TABLE, CARE_COLUMNS, rec_id, updates, KIND)


@router.delete("/care-records/{rec_id}")
def delete_care_record(rec_id: str):
    blocked = require_writable()
    if blocked:
        return blocked
    return delete_row("delete_care_record", TABLE, rec_id, KIND)
