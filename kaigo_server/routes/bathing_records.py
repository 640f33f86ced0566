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

TABLE = "bathing_records"
KIND = "Bathing record"

BATH_TYPES = ("入浴", "シャワー浴", "清拭", "×", "")
TIMINGS = ("午前", "午後", "臨時", "前日", "")

BATHING_COLUMNS = [
    "id", "resident_id", "record_date", "timing", "hour", "minute",
    "staff_name", "bath_type", "temperature", "weight",
    "blood_pressure_systolic", "blood_pressure_diastolic", "pulse_rate",
    "oxygen_saturation", "notes", "rejection_reason", "nursing_check",
    "created_at", "updated_at",
]
TEXT_FIELDS = (
    "timing", "hour", "minute", "staff_name", "bath_type", "temperature",
    "weight", "blood_pressure_systolic", "blood_pressure_diastolic",
    "pulse_rate", "oxygen_saturation", "notes", "rejection_reason",
)
BOOL_FIELDS = ("nursing_check",)
CHOICES = {"bath_type": BATH_TYPES, "timing": TIMINGS}


@router.get("/bathing-records")
def list_bathing_records(
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
        "list_bathing_records", TABLE, BATHING_COLUMNS, conditions, params,
        order_by="record_date ASC, id ASC", limit=limit,
    )


@router.post("/bathing-records", status_code=201)
def create_bathing_record(body: dict):
    blocked = require_writable()
    if blocked:
        return blocked

    resident_id = body.get("resident_id")
    if not resident_id or not isinstance(resident_id, str):
        return validation_error("resident_id is required and must be a string")

    record_date = parse_iso_date(body.get("record_date"))
    if record_date is None:
        return validation_error("record_date is required (YYYY-MM-DD)")

    values, err = collect_fields(body, text_fields=TEXT_FIELDS, bool_fields=BOOL_FIELDS, choices=CHOICES)
    if err:
        return err

    values.update({
        "id": generate_id("bth_"),
        "resident_id": resident_id,
        "record_date": record_date,
    })
    return insert_row("create_bathing_record", TABLE, BATHING_COLUMNS, values, KIND)


@router.get("/bathing-records/{rec_id}")
def get_bathing_record(rec_id: str):
    return fetch_one("get_bathing_record", TABLE, BATHING_COLUMNS, rec_id, KIND)


@router.patch("/bathing-records/{rec_id}")
def update_bathing_record(rec_id: str, body: dict):
    blocked = require_writable()
    if blocked:
        return blocked

    updates, err = collect_fields(body, text_fields=TEXT_FIELDS, bool_fields=BOOL_FIELDS, choices=CHOICES)
    if err:
        return err
    if "record_date" in body:
        record_date = parse_iso_date(body["record_date"])
        if record_date is None:
            return validation_error("record_date must be an ISO date (YYYY-MM-DD)")
        updates["record_date"] = record_date

    if not updates:
        return validation_error("No updatable fields provided")

    return update_row("update_bathing_record", TABLE, BATHING_COLUMNS, rec_id, updates, KIND)


@router.delete("/bathing-records/{rec_id}")
def delete_bathing_record(rec_id: str):
    blocked = require_writable()
    if blocked:
        return blocked
    return delete_row("delete_bathing_record", TABLE, rec_id, KIND)
