"""One declarative description per record collection.

Query keys are ``(name, date_from, date_to)``; a key covers a slot when the
slot's date lies inside its range (a missing bound is open).
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from kaigo_client.formatting import month_start, parse_date
from kaigo_client.identity import SlotKey

QueryKey = Tuple[Any, ...]


@dataclass(frozen=True)
class ResourceSpec:
    name: str
    path: str
    fields: Tuple[str, ...]
    sub_slot_field: Optional[str] = None
    defaults: Mapping[str, Any] = field(default_factory=dict)
    monthly: bool = False
    slot_extras: Optional[Callable[[SlotKey], Dict[str, Any]]] = None

    @property
    def query_prefix(self) -> QueryKey:
        return (self.name,)

    def query_key(self, date_from: Optional[str] = None, date_to: Optional[str] = None) -> QueryKey:
        return (self.name, date_from, date_to)

    def list_params(self, key: QueryKey) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if len(key) > 1 and key[1]:
            params["from"] = key[1]
        if len(key) > 2 and key[2]:
            params["to"] = key[2]
        return params

    def slot_date(self, value: Any) -> str:
        text = str(value)[:10]
        return month_start(text) if self.monthly else text

    def slot_of(self, row: dict) -> SlotKey:
        sub = ""
        if self.sub_slot_field:
            sub = row.get(self.sub_slot_field) or ""
        return SlotKey(str(row["resident_id"]), self.slot_date(row["record_date"]), sub)

    def slot_fields(self, slot: SlotKey) -> Dict[str, Any]:
        values: Dict[str, Any] = {"resident_id": slot.resident_id, "record_date": slot.record_date}
        if self.sub_slot_field:
            values[self.sub_slot_field] = slot.sub_slot
        if self.slot_extras is not None:
            values.update(self.slot_extras(slot))
        return values

    def covers(self, key: QueryKey, slot: SlotKey) -> bool:
        if tuple(key[:1]) != self.query_prefix:
            return False
        date_from = key[1] if len(key) > 1 else None
        date_to = key[2] if len(key) > 2 else None
        if date_from and slot.record_date < self.slot_date(date_from):
            return False
        if date_to and slot.record_date > date_to:
            return False
        return True


def _cleaning_extras(slot: SlotKey) -> Dict[str, Any]:
    return {"day_of_week": parse_date(slot.record_date).weekday()}


BATHING = ResourceSpec(
    name="bathing-records",
    path="/bathing-records",
    fields=(
        "timing", "hour", "minute", "staff_name", "bath_type", "temperature",
        "weight", "blood_pressure_systolic", "blood_pressure_diastolic",
        "pulse_rate", "oxygen_saturation", "notes", "rejection_reason",
        "nursing_check",
    ),
    defaults={"nursing_check": False},
)

WEIGHT = ResourceSpec(
    name="weight-records",
    path="/weight-records",
    fields=("staff_name", "weight", "notes"),
    monthly=True,
)

MEAL_WATER = ResourceSpec(
    name="meal-water-records",
    path="/meal-water-records",
    fields=("main_amount", "side_amount", "water_intake", "supplement", "staff_name", "notes"),
    sub_slot_field="meal_time",
)

CLEANING_LINEN = ResourceSpec(
    name="cleaning-linen-records",
    path="/cleaning-linen-records",
    fields=("cleaning_value", "linen_value", "record_note", "staff_name"),
    defaults={"cleaning_value": "", "linen_value": ""},
    slot_extras=_cleaning_extras,
)

CARE = ResourceSpec(
    name="care-records",
    path="/care-records",
    fields=("description", "notes", "staff_name"),
    sub_slot_field="category",
)

RESIDENTS = ResourceSpec(
    name="residents",
    path="/residents",
    fields=(
        "room_number", "floor", "name", "gender", "care_level", "admission_date",
        "is_admitted", "notes", "is_active",
    ),
)
