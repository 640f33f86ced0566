"""Shared check-list page model: residents × dates × sub-slots, one editable row each."""
import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Tuple

from kaigo_client.api_client import KaigoApiClient
from kaigo_client.config import default_staff_name
from kaigo_client.field_editor import FieldEditor, Option
from kaigo_client.formatting import date_range, match_floor, parse_date, room_sort_key, weekday_label
from kaigo_client.identity import Pending, SlotKey, identity_of
from kaigo_client.locator import locate
from kaigo_client.mutations import MutationDispatcher, MutationOutcome, RecordUpsert
from kaigo_client.notifications import Notifier
from kaigo_client.overlay import LocalEditOverlay, OverlayKey
from kaigo_client.query_cache import QueryCache, QueryKey
from kaigo_client.resources import RESIDENTS, ResourceSpec

logger = logging.getLogger(__name__)

RESIDENTS_KEY = RESIDENTS.query_key()


class GridRow(NamedTuple):
    slot: SlotKey
    resident: dict
    record: dict

    @property
    def is_placeholder(self) -> bool:
        return isinstance(self.record.get("id"), Pending) and "_placeholder" in self.record


def filter_residents(residents: Iterable[dict], floor: Optional[str] = None,
                     resident_id: Optional[str] = None, include_inactive: bool = False) -> List[dict]:
    """Floor/resident filter and room-number order, as every list shows residents."""
    selected = [
        r for r in residents
        if (include_inactive or r.get("is_active", True) is not False)
        and match_floor(r.get("floor"), floor)
        and (not resident_id or resident_id == "all" or r.get("id") == resident_id)
    ]
    return sorted(selected, key=lambda r: room_sort_key(r.get("room_number")))


class CheckListPage:
    resource: ResourceSpec = None
    sub_slots: Tuple[str, ...] = ("",)

    def __init__(self, api: KaigoApiClient, cache: Optional[QueryCache] = None,
                 notifier: Optional[Notifier] = None, overlay: Optional[LocalEditOverlay] = None,
                 staff_name: Optional[str] = None):
        self.api = api
        self.cache = cache if cache is not None else QueryCache()
        self.notifier = notifier if notifier is not None else Notifier()
        self.dispatcher = MutationDispatcher(api)
        self.upsert = RecordUpsert(self.resource, self.cache, self.dispatcher, overlay, self.notifier)
        self.staff_name = staff_name if staff_name is not None else default_staff_name()

        self.date_from: Optional[str] = None
        self.date_to: Optional[str] = None
        self.floor: Optional[str] = None
        self.resident_filter: Optional[str] = None
        self._editors: Dict[OverlayKey, FieldEditor] = {}

    @property
    def overlay(self) -> LocalEditOverlay:
        return self.upsert.overlay

    @property
    def query_key(self) -> QueryKey:
        return self.resource.query_key(self.date_from, self.date_to)

    def subscribe(self, listener: Callable[[QueryKey], None]) -> Callable[[], None]:
        return self.cache.subscribe(listener)

    # -- loading ------------------------------------------------------------------

    async def load_residents(self) -> List[dict]:
        return await self.cache.ensure_query_data(RESIDENTS_KEY, lambda: self.api.list(RESIDENTS.path))

    async def load(self, date_from: Optional[str] = None, date_to: Optional[str] = None) -> List[dict]:
        if date_from is not None:
            self.date_from = date_from
        if date_to is not None:
            self.date_to = date_to
        key = self.query_key
        params = self.resource.list_params(key)
        records, _residents = await asyncio.gather(
            self.cache.fetch_query(key, lambda: self.api.list(self.resource.path, params)),
            self.load_residents(),
        )
        return records

    def residents(self) -> List[dict]:
        return self.cache.get_query_data(RESIDENTS_KEY) or []

    def records(self) -> List[dict]:
        return self.cache.get_query_data(self.query_key) or []

    # -- grid -----------------------------------------------------------------------

    def visible_residents(self) -> List[dict]:
        return filter_residents(self.residents(), self.floor, self.resident_filter)

    def visible_dates(self) -> List[str]:
        if not self.date_from:
            return []
        return date_range(self.date_from, self.date_to or self.date_from)

    def date_headers(self) -> List[Tuple[str, str]]:
        """Column headers for the visible dates: ("2024-03-04", "04(月)")."""
        return [(d, "%02d(%s)" % (parse_date(d).day, weekday_label(d))) for d in self.visible_dates()]

    def is_eligible(self, resident: dict, record_date: str) -> bool:
        return True

    def placeholder(self, slot: SlotKey) -> dict:
        row = {name: self.resource.defaults.get(name) for name in self.resource.fields}
        row.update(self.resource.slot_fields(slot))
        row["id"] = Pending(slot)
        row["_placeholder"] = True
        return row

    def grid(self) -> List[GridRow]:
        """Rows to render: the slot's record where one exists, otherwise a placeholder."""
        by_slot: Dict[SlotKey, List[dict]] = {}
        for record in self.records():
            try:
                by_slot.setdefault(self.resource.slot_of(record), []).append(record)
            except (KeyError, TypeError, ValueError):
                logger.debug("record without slot: %r", record)

        rows = []
        for record_date in self.visible_dates():
            for resident in self.visible_residents():
                if not self.is_eligible(resident, record_date):
                    continue
                for sub_slot in self.sub_slots:
                    slot = SlotKey(resident["id"], self.resource.slot_date(record_date), sub_slot)
                    located = locate(by_slot.get(slot, ()), slot, self.resource.slot_of)
                    rows.append(GridRow(slot, resident, located.row or self.placeholder(slot)))
        return rows

    def find_row(self, slot: SlotKey) -> Optional[dict]:
        return locate(self.records(), slot, self.resource.slot_of).row

    def display_value(self, slot: SlotKey, field_name: str, record: Optional[dict] = None) -> Any:
        if record is None:
            record = self.find_row(slot) or {}
        return self.upsert.display_value(slot, field_name, record.get(field_name))

    def is_persisted(self, slot: SlotKey) -> bool:
        row = self.find_row(slot)
        return row is not None and not isinstance(identity_of(row), Pending)

    # -- editing ------------------------------------------------------------------

    def prepare_value(self, field_name: str, value: Any) -> Any:
        return value

    def save(self, slot: SlotKey, field_name: str, value: Any) -> asyncio.Future:
        return self.upsert.save_field(slot, field_name, self.prepare_value(field_name, value))

    async def delete(self, slot: SlotKey) -> MutationOutcome:
        return await self.upsert.delete_record(slot)

    def staff_options(self) -> List[Option]:
        return [Option(self.staff_name, self.staff_name)] if self.staff_name else []

    def options_for(self, field_name: str) -> List[Any]:
        if field_name == "staff_name":
            return self.staff_options()
        return []

    def editor(self, slot: SlotKey, field_name: str, numeric: bool = False) -> FieldEditor:
        """The cell editor for a field, kept across renders and synced to the displayed value."""
        key = OverlayKey.for_slot(slot, field_name)
        current = self.display_value(slot, field_name)
        current = "" if current is None else str(current)
        editor = self._editors.get(key)
        if editor is None:
            editor = FieldEditor(
                current,
                on_save=lambda value: self.save(slot, field_name, value),
                options=self.options_for(field_name),
                numeric=numeric,
            )
            self._editors[key] = editor
        else:
            editor.sync(current)
        return editor
