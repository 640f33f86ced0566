from typing import List

from kaigo_client.pages.base import CheckListPage, GridRow
from kaigo_client.resources import CARE

CATEGORIES = ("daily_care", "assistance", "observation")
CATEGORY_LABELS = {"daily_care": "日常生活", "assistance": "介助", "observation": "観察"}


class CareNotesCheckList(CheckListPage):
    """Care note cards keyed by resident, date and category."""

    resource = CARE
    sub_slots = CATEGORIES

    def cards(self, category: str = None) -> List[GridRow]:
        return [row for row in self.grid() if category is None or row.slot.sub_slot == category]

    def card_title(self, row: GridRow) -> str:
        """Card heading: room, name and category label, e.g. "101 山田 花子 / 観察"."""
        label = CATEGORY_LABELS.get(row.slot.sub_slot, row.slot.sub_slot)
        return "%s %s / %s" % (row.resident.get("room_number") or "", row.resident.get("name") or "", label)
