from typing import Any, List, Optional

from kaigo_client.field_editor import FieldEditor
from kaigo_client.formatting import final_format_weight, month_bounds, month_start
from kaigo_client.identity import SlotKey
from kaigo_client.pages.base import CheckListPage, GridRow
from kaigo_client.resources import WEIGHT


class WeightCheckList(CheckListPage):
    """Monthly weights: one slot per resident per month."""

    resource = WEIGHT

    async def load_month(self, month: str) -> List[dict]:
        date_from, date_to = month_bounds(month)
        return await self.load(date_from, date_to)

    @property
    def month(self) -> Optional[str]:
        return self.date_from[:7] if self.date_from else None

    def visible_dates(self) -> List[str]:
        return [month_start(self.date_from)] if self.date_from else []

    def slot_for(self, resident_id: str) -> SlotKey:
        return SlotKey(resident_id, month_start(self.date_from))

    def prepare_value(self, field_name: str, value: Any) -> Any:
        if field_name == "weight":
            return final_format_weight(value)
        return value

    def weight_editor(self, resident_id: str) -> FieldEditor:
        return self.editor(self.slot_for(resident_id), "weight", numeric=True)

    def missing(self) -> List[GridRow]:
        """Residents without a weight for the month."""
        return [
            row for row in self.grid()
            if self.display_value(row.slot, "weight", row.record) in (None, "")
        ]
