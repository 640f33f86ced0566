import logging

from fastapi import APIRouter, Query

from kaigo_server.ids import generate_id
from kaigo_server.feature_flags import is_resident_soft_delete, require_writable
from kaigo_server.record_store import (
    collect_fields,
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

TABLE = "residents"
KIND = "Resident"

WEEKDAYS = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")
BATH_DAY_FIELDS = tuple("bath_%s" % d for d in WEEKDAYS)
BED_BATH_DAY_FIELDS = tuple("bathing_%s" % d for d in WEEKDAYS)

RESIDENT_COLUMNS = [
    "id", "room_number", "floor", "name", "gender", "care_level",
    "admission_date", "is_admitted", "notes", "is_active",
] + list(BATH_DAY_FIELDS) + list(BED_BATH_DAY_FIELDS) + ["created_at", "updated_at"]

TEXT_FIELDS = ("room_number", "floor", "name", "gender", "care_level", "notes")
BOOL_FIELDS = ("is_admitted", "is_active") + BATH_DAY_FIELDS + BED_BATH_DAY_FIELDS


def _collect(body):
    values, err = collect_fields(body, text_fields=TEXT_FIELDS, bool_fields=BOOL_FIELDS)
    if err:
        return None, err
    if "name" in values and not (values["name"] or "").strip():
        return None, validation_error("name must not be blank")
    if "admission_date" in body:
        if body["admission_date"] in (None, ""):
            values["admission_date"] = None
        else:
            admission_date = parse_iso_date(body["admission_date"])
            if admission_date is None:
                return None, validation_error("admission_date must be an ISO date (YYYY-MM-DD)")
            values["admission_date"] = admission_date
    return values, None


@router.get("/residents")
def list_residents(
    floor: str = Query(None),
    include_inactive: bool = Query(False),
    limit: int = Query(1000, ge=1, le=5000),
):
    conditions = []
    params = []
    if not include_inactive:
        conditions.append("is_active = TRUE")
    if floor:
        conditions.append("floor = %s")
        params.append(floor)
    return fetch_collection(
        "list_residents", TABLE, RESIDENT_COLUMNS, conditions, params,
        order_by="room_number ASC, id ASC", limit=limit,
    )


@router.get("/residents/{res_id}")
def get_resident(res_id: str):
    return fetch_one("get_resident", TABLE, RESIDENT_COLUMNS, res_id, KIND)


@router.post("/residents", status_code=201)
def create_resident(body: dict):
    blocked = require_writable()
    if blocked:
        return blocked

    name = body.get("name")
    if not name or not isinstance(name, str) or not name.strip():
        return validation_error("name is required and must be a string")

    values, err = _collect(body)
    if err:
        return err
    values["name"] = name.strip()
    values["id"] = generate_id("res_")
    return insert_row("create_resident", TABLE, RESIDENT_COLUMNS, values, KIND)


@router.patch("/residents/{res_id}")
def update_resident(res_id: str, body: dict):
    blocked = require_writable()
    if blocked:
        return blocked

    updates, err = _collect(body)
    if err:
        return err
    if not updates:
        return validation_error("No updatable fields provided")

    return update_row("update_resident", TABLE, RESIDENT_COLUMNS, res_id, updates, KIND)


@router.delete("/residents/{res_id}")
def delete_resident(res_id: str):
    blocked = require_writable()
    if blocked:
        return blocked

    if is_resident_soft_delete():
        return update_row("delete_resident", TABLE, RESIDENT_COLUMNS, res_id, {"is_active": False}, KIND)
    return delete_row("delete_resident", TABLE, res_id, KIND)
