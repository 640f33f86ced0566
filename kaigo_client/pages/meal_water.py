from typing import Any, Dict, List

from kaigo_client.field_editor import Option
from kaigo_client.formatting import parse_int_or_zero
from kaigo_client.identity import SlotKey
from kaigo_client.pages.base import CheckListPage
from kaigo_client.resources import MEAL_WATER

MEAL_TIMES = ("朝", "10時", "昼", "15時", "夕")

AMOUNT_OPTIONS = ["10", "9", "8", "7", "6", "5", "4", "3", "2", "1", "0", "×", "欠"]
WATER_OPTIONS = ["", "300", "250", "200", "150", "100", "50", "0"]
SUPPLEMENT_OPTIONS = [
    "", "ラコール 200ml", "エンシュア 200ml", "メイバランス 200ml",
    "ツインラインNF 400ml", "エンシュア 250ml", "イノラス 187.5ml",
    "ラコールＮＦ半固形剤 300g",
]

_FIELD_OPTIONS = {
    "main_amount": AMOUNT_OPTIONS,
    "side_amount": AMOUNT_OPTIONS,
    "water_intake": WATER_OPTIONS,
    "supplement": SUPPLEMENT_OPTIONS,
}


class MealWaterCheckList(CheckListPage):
    """Meal and water intake per resident, date and meal time."""

    resource = MEAL_WATER
    sub_slots = MEAL_TIMES

    def options_for(self, field_name: str) -> List[Any]:
        if field_name in _FIELD_OPTIONS:
            return [Option(v, v) for v in _FIELD_OPTIONS[field_name]]
        return super().options_for(field_name)

    def water_total(self, resident_id: str, record_date: str) -> int:
        """Water for the day across the meal times, counting unsaved edits; non-numbers count as 0."""
        total = 0
        for meal_time in MEAL_TIMES:
            slot = SlotKey(resident_id, record_date, meal_time)
            total += parse_int_or_zero(self.display_value(slot, "water_intake"))
        return total

    def water_totals(self) -> Dict[SlotKey, int]:
        totals = {}
        for record_date in self.visible_dates():
            for resident in self.visible_residents():
                totals[SlotKey(resident["id"], record_date)] = self.water_total(resident["id"], record_date)
        return totals
