import logging
from typing import Any, Dict, List, Optional

from kaigo_client.api_client import KaigoApiClient
from kaigo_client.formatting import WEEKDAY_NAMES
from kaigo_client.identity import Pending, Persisted, SlotKey, new_pending
from kaigo_client.mutations import (
    MutationDispatcher,
    MutationOutcome,
    identity_or_none,
    optimistic_mutation,
)
from kaigo_client.notifications import DELETE_FAILED, Notifier
from kaigo_client.pages.base import RESIDENTS_KEY, filter_residents
from kaigo_client.query_cache import QueryCache
from kaigo_client.resources import RESIDENTS

logger = logging.getLogger(__name__)

BATH_DAY_FLAGS = tuple("bath_%s" % d for d in WEEKDAY_NAMES)
BED_BATH_DAY_FLAGS = tuple("bathing_%s" % d for d in WEEKDAY_NAMES)
FLAG_FIELDS = ("is_admitted", "is_active") + BATH_DAY_FLAGS + BED_BATH_DAY_FLAGS

_NEW_RESIDENT_SLOT = SlotKey("", "")


class ResidentsPage:
    """Resident master list with optimistic create, edit, flag toggles and delete."""

    def __init__(self, api: KaigoApiClient, cache: Optional[QueryCache] = None,
                 notifier: Optional[Notifier] = None):
        self.api = api
        self.cache = cache if cache is not None else QueryCache()
        self.notifier = notifier if notifier is not None else Notifier()
        self.dispatcher = MutationDispatcher(api)
        self.floor: Optional[str] = None
        self.include_inactive = False

    async def load(self) -> List[dict]:
        return await self.cache.fetch_query(RESIDENTS_KEY, lambda: self.api.list(RESIDENTS.path))

    def residents(self) -> List[dict]:
        data = self.cache.get_query_data(RESIDENTS_KEY) or []
        return filter_residents(data, self.floor, include_inactive=self.include_inactive)

    def _rewrite(self, transform):
        data = self.cache.get_query_data(RESIDENTS_KEY)
        if data is not None:
            self.cache.set_query_data(RESIDENTS_KEY, transform(list(data)))

    def _replace(self, identity, new_row):
        self._rewrite(lambda rows: [new_row if identity_or_none(r) == identity else r for r in rows])

    async def create(self, fields: Dict[str, Any]) -> MutationOutcome:
        temp = new_pending(_NEW_RESIDENT_SLOT)
        mutation = self.dispatcher.create(RESIDENTS, fields)
        return await optimistic_mutation(
            self.cache, self.dispatcher, mutation,
            apply=lambda: self._rewrite(lambda rows: rows + [{"is_active": True, **fields, "id": temp}]),
            on_success=lambda row: self._replace(temp, row),
            notifier=self.notifier,
        )

    async def update(self, resident_id: str, fields: Dict[str, Any]) -> MutationOutcome:
        identity = Persisted(resident_id)
        mutation = self.dispatcher.update(RESIDENTS, identity, fields)

        def apply():
            self._rewrite(lambda rows: [
                {**r, **fields} if identity_or_none(r) == identity else r for r in rows
            ])

        return await optimistic_mutation(
            self.cache, self.dispatcher, mutation, apply,
            on_success=lambda row: self._replace(identity, row),
            notifier=self.notifier,
        )

    async def toggle(self, resident_id: str, flag: str) -> MutationOutcome:
        if flag not in FLAG_FIELDS:
            raise ValueError("unknown resident flag: %s" % flag)
        row = next((r for r in self.cache.get_query_data(RESIDENTS_KEY) or [] if r.get("id") == resident_id), {})
        return await self.update(resident_id, {flag: not bool(row.get(flag))})

    async def delete(self, identity) -> MutationOutcome:
        if isinstance(identity, str):
            identity = Persisted(identity)
        if isinstance(identity, Pending):
            self._rewrite(lambda rows: [r for r in rows if identity_or_none(r) != identity])
            return MutationOutcome(ok=True, skipped=True)

        mutation = self.dispatcher.delete(RESIDENTS, identity)
        return await optimistic_mutation(
            self.cache, self.dispatcher, mutation,
            apply=lambda: self._rewrite(lambda rows: [r for r in rows if identity_or_none(r) != identity]),
            notifier=self.notifier,
            error_title=DELETE_FAILED,
        )
