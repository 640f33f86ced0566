from typing import List, Optional

from kaigo_client.formatting import week_dates
from kaigo_client.identity import SlotKey
from kaigo_client.pages.base import CheckListPage
from kaigo_client.resources import CLEANING_LINEN

CYCLE = ("", "○", "2", "3")


def next_mark(current: Optional[str]) -> str:
    """Next mark in the cycle: blank, ○, 2, 3, blank again. Unknown marks restart it."""
    try:
        index = CYCLE.index(current or "")
    except ValueError:
        return CYCLE[1]
    return CYCLE[(index + 1) % len(CYCLE)]


class CleaningLinenCheckList(CheckListPage):
    """Weekly cleaning and linen marks, Monday first."""

    resource = CLEANING_LINEN

    async def load_week(self, any_day: str) -> List[dict]:
        days = week_dates(any_day)
        return await self.load(days[0], days[-1])

    def cycle(self, slot: SlotKey, field_name: str):
        if field_name not in ("cleaning_value", "linen_value"):
            raise ValueError("not a mark field: %s" % field_name)
        return self.save(slot, field_name, next_mark(self.display_value(slot, field_name)))
