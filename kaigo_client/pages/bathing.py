from typing import Any, List

from kaigo_client.field_editor import Option
from kaigo_client.formatting import WEEKDAY_NAMES, parse_date
from kaigo_client.identity import Pending, SlotKey
from kaigo_client.pages.base import CheckListPage, GridRow
from kaigo_client.resources import BATHING

BATH_TYPE_OPTIONS = ["", "入浴", "シャワー浴", "清拭", "×"]
TIMING_OPTIONS = ["", "午前", "午後", "臨時"]
HOUR_OPTIONS = [""] + ["%02d" % h for h in range(6, 24)]
MINUTE_OPTIONS = ["", "00", "15", "30", "45"]
TEMPERATURE_OPTIONS = ["%.1f" % (35.0 + i * 0.1) for i in range(50)]
SYSTOLIC_OPTIONS = [str(v) for v in range(80, 181)]
DIASTOLIC_OPTIONS = [str(v) for v in range(40, 121)]
PULSE_OPTIONS = [str(v) for v in range(40, 161)]
SPO2_OPTIONS = [str(v) for v in range(80, 101)]

_FIELD_OPTIONS = {
    "bath_type": BATH_TYPE_OPTIONS,
    "timing": TIMING_OPTIONS,
    "hour": HOUR_OPTIONS,
    "minute": MINUTE_OPTIONS,
    "temperature": TEMPERATURE_OPTIONS,
    "blood_pressure_systolic": SYSTOLIC_OPTIONS,
    "blood_pressure_diastolic": DIASTOLIC_OPTIONS,
    "pulse_rate": PULSE_OPTIONS,
    "oxygen_saturation": SPO2_OPTIONS,
}


class BathingCheckList(CheckListPage):
    """Daily bathing records; residents appear on their scheduled bath days only."""

    resource = BATHING

    def is_eligible(self, resident: dict, record_date: str) -> bool:
        weekday = WEEKDAY_NAMES[parse_date(record_date).weekday()]
        return bool(resident.get("bath_%s" % weekday))

    def options_for(self, field_name: str) -> List[Any]:
        if field_name in _FIELD_OPTIONS:
            return [Option(v, v) for v in _FIELD_OPTIONS[field_name]]
        return super().options_for(field_name)

    def toggle_nursing_check(self, slot: SlotKey):
        current = bool(self.display_value(slot, "nursing_check"))
        return self.save(slot, "nursing_check", not current)

    def is_entered(self, row: GridRow) -> bool:
        if not isinstance(row.record.get("id"), Pending):
            return True
        for name in BATHING.fields:
            value = self.display_value(row.slot, name, row.record)
            if value not in (None, "", False):
                return True
        return False

    def not_entered(self) -> List[GridRow]:
        return [row for row in self.grid() if not self.is_entered(row)]
