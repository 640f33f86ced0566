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
    upsert_row,
    validation_error,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1")

TABLE = "cleaning_linen_records"
KIND = "Cleaning/linen record"

MARK_VALUES = ("○", "2", "3", "")

CLEANING_LINEN_COLUMNS = [
    "id", "resident_id", "record_date", "day_of_week", "cleaning_value",
    "linen_value", "record_note", "staff_name", "created_at", "updated_at",
]
TEXT_FIELDS = ("cleaning_value", "linen_value", "record_note", "staff_name")
CHOICES = {"cleaning_value": MARK_VALUES, "linen_value": MARK_VALUES}


def _monday_based_weekday(record_date):
    return record_date.weekday()


def _create_values(body):
    resident_id = body.get("resident_id")
    if not resident_id or not isinstance(resident_id, str):
        return None, validation_error("resident_id is required and must be a string")

    record_date = parse_iso_date(body.get("record_date"))
    if record_date is None:
        return None, validation_error("record_date is required (YYYY-MM-DD)")

    values, err = collect_fields(body, text_fields=TEXT_FIELDS, int_fields=("day_of_week",), choices=CHOICES)
    if err:
        return None, err

    expected_dow = _monday_based_weekday(record_date)
    if "day_of_week" in values and values["day_of_week"] != expected_dow:
        return None, validation_error(
            "day_of_week does not match record_date",
            details={"expected": expected_dow, "provided": values["day_of_week"]},
        )

    for key in ("cleaning_value", "linen_value"):
        if values.get(key) is None:
            values[key] = ""
    values.update({
        "resident_id": resident_id,
        "record_date": record_date,
        "day_of_week": expected_dow,
    })
    return values, None


@router.get("/cleaning-linen-records")
def list_cleaning_linen_records(
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
        "list_cleaning_linen_records", TABLE, CLEANING_LINEN_COLUMNS, conditions, params,
        order_by="record_date ASC, id ASC", limit=limit,
    )


@router.post("/cleaning-linen-records", status_code=201)
def create_cleaning_linen_record(body: dict):
    blocked = require_writable()
    if blocked:
        return blocked

    values, err = _create_values(body)
    if err:
        return err
    values["id"] = generate_id("cln_")
    return insert_row("create_cleaning_linen_record", TABLE, CLEANING_LINEN_COLUMNS, values, KIND)


@router.post("/cleaning-linen-records/upsert", status_code=201)
def upsert_cleaning_linen_record(body: dict):
    blocked = require_writable()
    if blocked:
        return blocked

    values, err = _create_values(body)
    if err:
        return err
    values["id"] = generate_id("cln_")
    return upsert_row(
        "upsert_cleaning_linen_record", TABLE, CLEANING_LINEN_COLUMNS, values,
        ("resident_id", "record_date"), KIND,
    )


@router.get("/cleaning-linen-records/{rec_id}")
def get_cleaning_linen_record(rec_id: str):
    return fetch_one("get_cleaning_linen_record", TABLE, CLEANING_LINEN_COLUMNS, rec_id, KIND)


@router.patch("/cleaning-linen-records/{rec_id}")
def update_cleaning_linen_record(rec_id: str, body: dict):
    blocked = require_writable()
    if blocked:
        return blocked

    updates, err = collect_fields(body, text_fields=TEXT_FIELDS, choices=CHOICES)
    if err:
        return err
    for key in ("cleaning_value", "linen_value"):
        if key in updates and updates[key] is None:
            updates[key] = ""

    if not updates:
        return validation_error("No updatable fields provided")

    return update_row("update_cleaning_linen_record", TABLE, CLEANING_LINEN_COLUMNS, rec_id, updates, KIND)


@router.delete("/cleaning-linen-records/{rec_id}")
def delete_cleaning_linen_record(rec_id: str):
    blocked = require_writable()
    if blocked:
        return blocked
    return delete_row("delete_cleaning_linen_record", TABLE, rec_id, KIND)
