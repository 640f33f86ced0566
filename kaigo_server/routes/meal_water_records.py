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

TABLE = "meal_water_records"
KIND = "Meal/water record"

MEAL_TIMES = ("朝", "10時", "昼", "15時", "夕")

MEAL_WATER_COLUMNS = [
    "id", "resident_id", "record_date", "meal_time", "main_amount",
    "side_amount", "water_intake", "supplement", "staff_name", "notes",
    "created_at", "updated_at",
]
TEXT_FIELDS = ("main_amount", "side_amount", "water_intake", "supplement", "staff_name", "notes")


@router.get("/meal-water-records")
def list_meal_water_records(
    date_from: str = Query(None, alias="from"),
    date_to: str = Query(None, alias="to"),
    resident_id: str = Query(None),
    meal_time: str = Query(None),
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
    if meal_time:
        if meal_time not in MEAL_TIMES:
            return validation_error("meal_time must be one of: %s" % ", ".join(MEAL_TIMES))
        conditions.append("meal_time = %s")
        params.append(meal_time)
    return fetch_collection(
        "list_meal_water_records", TABLE, MEAL_WATER_COLUMNS, conditions, params,
        order_by="record_date ASC, id ASC", limit=limit,
    )


@router.post("/meal-water-records", status_code=201)
def create_meal_water_record(body: dict):
    blocked = require_writable()
    if blocked:
        return blocked

    resident_id = body.get("resident_id")
    if not resident_id or not isinstance(resident_id, str):
        return validation_error("resident_id is required and must be a string")

    record_date = parse_iso_date(body.get("record_date"))
    if record_date is None:
        return validation_error("record_date is required (YYYY-MM-DD)")

    meal_time = body.get("meal_time")
    if meal_time not in MEAL_TIMES:
        return validation_error("meal_time must be one of: %s" % ", ".join(MEAL_TIMES))

    values, err = collect_fields(body, text_fields=TEXT_FIELDS)
    if err:
        return err

    values.update({
        "id": generate_id("mwr_"),
        "resident_id": resident_id,
        "record_date": record_date,
        "meal_time": meal_time,
    })
    return insert_row("create_meal_water_record", TABLE, MEAL_WATER_COLUMNS, values, KIND)


@router.get("/meal-water-records/{rec_id}")
def get_meal_water_record(rec_id: str):
    return fetch_one("get_meal_water_record", TABLE, MEAL_WATER_COLUMNS, rec_id, KIND)


@router.patch("/meal-water-records/{rec_id}")
def update_meal_water_record(rec_id: str, body: dict):
    blocked = require_writable()
    if blocked:
        return blocked

    updates, err = collect_fields(body, text_fields=TEXT_FIELDS)
    if err:
        return err

    if not updates:
        return validation_error("No updatable fields provided")

    return update_row("update_meal_water_record", TABLE, MEAL_WATER_COLUMNS, rec_id, updates, KIND)


@router.delete("/meal-water-records/{rec_id}")
def delete_meal_water_record(rec_id: str):
    blocked = require_writable()
    if blocked:
        return blocked
    return delete_row("delete_meal_water_record", TABLE, rec_id, KIND)
