"""Optimistic mutations against the query cache.

Every write follows the same discipline: cancel in-flight reads under the
collection's prefix, snapshot, patch the cache, await the request, then
reconcile (invalidate and refetch) or roll back to the snapshot.

Edits of the same cell field carry sequence numbers. A mutation whose field
was edited again before it settled is superseded: it neither writes its
response nor restores its snapshot, but its settlement still invalidates the
collection so the cache converges on whatever the server kept. The overlay
holds the newer value on screen meanwhile.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from kaigo_client.api_client import ApiError, KaigoApiClient
from kaigo_client.identity import (
    Pending,
    PlaceholderIdentityError,
    RecordIdentity,
    SlotKey,
    identity_of,
    new_pending,
)
from kaigo_client.locator import build_payload, locate
from kaigo_client.notifications import DELETE_FAILED, SAVE_FAILED, Notifier
from kaigo_client.overlay import LocalEditOverlay, OverlayKey
from kaigo_client.query_cache import QueryCache, QueryKey
from kaigo_client.resources import ResourceSpec

logger = logging.getLogger(__name__)


@dataclass
class Mutation:
    kind: str
    path: str
    prefix: QueryKey
    fields: Dict[str, Any] = field(default_factory=dict)
    identity: Optional[RecordIdentity] = None

    @property
    def record_id(self) -> Optional[str]:
        return getattr(self.identity, "id", None)


@dataclass
class MutationOutcome:
    ok: bool
    data: Any = None
    error: Optional[BaseException] = None
    superseded: bool = False
    skipped: bool = False


def _require_persisted(identity: RecordIdentity, operation: str):
    if isinstance(identity, Pending):
        raise PlaceholderIdentityError(
            "%s called with pending identity for slot %r" % (operation, identity.slot)
        )


class MutationDispatcher:
    """Builds create/update/delete mutations and sends them to the backend."""

    def __init__(self, api: KaigoApiClient):
        self.api = api

    def update(self, resource: ResourceSpec, identity: RecordIdentity, fields: Dict[str, Any]) -> Mutation:
        _require_persisted(identity, "update")
        return Mutation("update", resource.path, resource.query_prefix, dict(fields), identity)

    def create(self, resource: ResourceSpec, fields: Dict[str, Any]) -> Mutation:
        return Mutation("create", resource.path, resource.query_prefix, dict(fields))

    def delete(self, resource: ResourceSpec, identity: RecordIdentity) -> Mutation:
        _require_persisted(identity, "delete")
        return Mutation("delete", resource.path, resource.query_prefix, identity=identity)

    async def send(self, mutation: Mutation) -> Any:
        if mutation.kind == "create":
            return await self.api.create(mutation.path, mutation.fields)
        if mutation.kind == "update":
            return await self.api.update(mutation.path, mutation.record_id, mutation.fields)
        if mutation.kind == "delete":
            return await self.api.delete(mutation.path, mutation.record_id)
        raise ValueError("unknown mutation kind: %s" % mutation.kind)


def _always() -> bool:
    return True


async def optimistic_mutation(cache: QueryCache, dispatcher: MutationDispatcher, mutation: Mutation,
                              apply: Callable[[], None],
                              on_success: Optional[Callable[[Any], None]] = None,
                              on_stale_success: Optional[Callable[[Any], None]] = None,
                              on_error: Optional[Callable[[ApiError], None]] = None,
                              is_current: Callable[[], bool] = _always,
                              notifier: Optional[Notifier] = None,
                              error_title: str = SAVE_FAILED) -> MutationOutcome:
    """Run one mutation with optimistic patch, rollback and reconcile.

    ``apply`` patches the cache synchronously. Backend failures (``ApiError``)
    are absorbed here: the snapshot is restored, ``on_error`` runs and a
    toast is emitted. Any other exception restores the snapshot and
    propagates.
    """
    prefix = mutation.prefix
    await cache.cancel_queries(prefix)
    snapshot = cache.snapshot(prefix)
    apply()

    try:
        data = await dispatcher.send(mutation)
    except ApiError as e:
        if not is_current():
            logger.info("superseded %s %s failed: %s", mutation.kind, mutation.path, e.message)
            cache.invalidate_queries(prefix)
            return MutationOutcome(ok=False, error=e, superseded=True)
        logger.warning("%s %s failed, rolling back: %s %s", mutation.kind, mutation.path, e.code, e.message)
        cache.restore(snapshot)
        if on_error is not None:
            on_error(e)
        if notifier is not None:
            notifier.error(error_title, e.message)
        cache.invalidate_queries(prefix)
        return MutationOutcome(ok=False, error=e)
    except Exception:
        logger.exception("%s %s raised unexpectedly", mutation.kind, mutation.path)
        cache.restore(snapshot)
        raise

    if not is_current():
        logger.debug("superseded %s %s settled; refetching", mutation.kind, mutation.path)
        if on_stale_success is not None:
            on_stale_success(data)
        # the server may have applied this write after the newer one
        cache.invalidate_queries(prefix)
        return MutationOutcome(ok=True, data=data, superseded=True)

    if on_success is not None:
        on_success(data)
    cache.invalidate_queries(prefix)
    return MutationOutcome(ok=True, data=data)


def identity_or_none(row: Any) -> Optional[RecordIdentity]:
    if not isinstance(row, dict):
        return None
    try:
        return identity_of(row)
    except ValueError:
        return None


class RecordUpsert:
    """Cell saves and deletes for one slot-keyed collection.

    A slot has at most one create in flight. Saves and deletes arriving
    meanwhile wait for it and then target whatever the create produced.
    """

    def __init__(self, resource: ResourceSpec, cache: QueryCache, dispatcher: MutationDispatcher,
                 overlay: Optional[LocalEditOverlay] = None, notifier: Optional[Notifier] = None):
        self.resource = resource
        self.cache = cache
        self.dispatcher = dispatcher
        self.overlay = overlay if overlay is not None else LocalEditOverlay()
        self.notifier = notifier
        self._pending_creates: Dict[SlotKey, asyncio.Future] = {}
        self._latest: Dict[OverlayKey, int] = {}
        self._in_flight: Dict[OverlayKey, List[int]] = {}

    # -- cache helpers ---------------------------------------------------------

    @property
    def prefix(self) -> QueryKey:
        return self.resource.query_prefix

    def cached_rows(self) -> List[dict]:
        rows = []
        for _key, data in self.cache.get_queries_data(self.prefix):
            rows.extend(r for r in data if isinstance(r, dict))
        return rows

    def _rewrite(self, transform: Callable[[QueryKey, List[dict]], Optional[List[dict]]]):
        for key, data in self.cache.get_queries_data(self.prefix):
            new_rows = transform(key, list(data))
            if new_rows is not None:
                self.cache.set_query_data(key, new_rows)

    def _in_slot(self, row: dict, slot: SlotKey) -> bool:
        try:
            return self.resource.slot_of(row) == slot
        except (KeyError, TypeError, ValueError):
            return False

    def display_value(self, slot: SlotKey, field_name: str, persisted_value: Any) -> Any:
        return self.overlay.resolve(OverlayKey.for_slot(slot, field_name), persisted_value)

    async def _wait_for_create(self, slot: SlotKey):
        while slot in self._pending_creates:
            await self._pending_creates[slot]

    # -- save ---------------------------------------------------------------------

    def save_field(self, slot: SlotKey, field_name: str, value: Any) -> asyncio.Future:
        """Record the edit in the overlay now and save it in the background."""
        key = OverlayKey.for_slot(slot, field_name)
        seq = self.overlay.put(key, value)
        self._latest[key] = seq
        self._in_flight.setdefault(key, []).append(seq)
        return asyncio.ensure_future(self._save(slot, field_name, value, key, seq))

    def _is_current(self, key: OverlayKey, seq: int) -> bool:
        return self._latest.get(key) == seq

    def _hand_back(self, key: OverlayKey, seq: int):
        # the cached value may still be an older save's optimistic patch; that
        # save stays responsible for rolling it back
        older = [s for s in self._in_flight.get(key, ()) if s < seq]
        if older and self._latest.get(key) == seq:
            self._latest[key] = max(older)
            self.overlay.retag(key, seq, max(older))

    async def _save(self, slot: SlotKey, field_name: str, value: Any, key: OverlayKey, seq: int) -> MutationOutcome:
        try:
            await self._wait_for_create(slot)
            if not self._is_current(key, seq):
                logger.debug("save of %s superseded before it was sent", key)
                return MutationOutcome(ok=True, superseded=True, skipped=True)

            located = locate(self.cached_rows(), slot, self.resource.slot_of)
            if located.is_persisted:
                if located.row is not None and located.row.get(field_name) == value:
                    self._hand_back(key, seq)
                    return MutationOutcome(ok=True, data=located.row, skipped=True)
                return await self._update(located.identity, field_name, value, key, seq)
            return await self._create(slot, located, field_name, value, key, seq)
        finally:
            self.overlay.clear(key, seq)
            if self._latest.get(key) == seq:
                del self._latest[key]
            self._in_flight[key].remove(seq)
            if not self._in_flight[key]:
                del self._in_flight[key]

    async def _update(self, identity: RecordIdentity, field_name: str, value: Any,
                      key: OverlayKey, seq: int) -> MutationOutcome:
        fields = {field_name: value}
        mutation = self.dispatcher.update(self.resource, identity, fields)

        def apply():
            def merge(_key, rows):
                changed = False
                for i, row in enumerate(rows):
                    if identity_or_none(row) == identity:
                        rows[i] = {**row, **fields}
                        changed = True
                return rows if changed else None
            self._rewrite(merge)

        def on_success(server_row):
            if not isinstance(server_row, dict):
                return

            def replace(_key, rows):
                changed = False
                for i, row in enumerate(rows):
                    if identity_or_none(row) == identity:
                        rows[i] = server_row
                        changed = True
                return rows if changed else None
            self._rewrite(replace)

        return await optimistic_mutation(
            self.cache, self.dispatcher, mutation, apply,
            on_success=on_success,
            on_error=lambda e: self.overlay.clear(key, seq),
            is_current=lambda: self._is_current(key, seq),
            notifier=self.notifier,
        )

    async def _create(self, slot: SlotKey, located, field_name: str, value: Any,
                      key: OverlayKey, seq: int) -> MutationOutcome:
        payload = build_payload(
            located, field_name, value, self.resource.fields,
            self.resource.slot_fields(slot), defaults=self.resource.defaults,
            displayed=lambda name, current: self.display_value(slot, name, current),
        )
        mutation = self.dispatcher.create(self.resource, payload)
        temp_identity = new_pending(slot)

        def is_pending_row(row):
            return isinstance(identity_or_none(row), Pending) and self._in_slot(row, slot)

        def apply():
            def insert(cache_key, rows):
                for i, row in enumerate(rows):
                    if is_pending_row(row):
                        rows[i] = {**row, **payload}
                        return rows
                if self.resource.covers(cache_key, slot):
                    rows.append({**payload, "id": temp_identity})
                    return rows
                return None
            self._rewrite(insert)

        def on_success(server_row):
            def replace(_key, rows):
                changed = False
                for i, row in enumerate(rows):
                    if is_pending_row(row):
                        rows[i] = server_row
                        changed = True
                return rows if changed else None
            self._rewrite(replace)

        def on_stale_success(server_row):
            # keep the newer optimistic values but adopt the server identity
            def adopt(_key, rows):
                changed = False
                for i, row in enumerate(rows):
                    if is_pending_row(row):
                        rows[i] = {**row, "id": server_row["id"]}
                        changed = True
                return rows if changed else None
            self._rewrite(adopt)

        loop = asyncio.get_running_loop()
        done = loop.create_future()
        self._pending_creates[slot] = done
        try:
            return await optimistic_mutation(
                self.cache, self.dispatcher, mutation, apply,
                on_success=on_success,
                on_stale_success=on_stale_success,
                on_error=lambda e: self.overlay.clear(key, seq),
                is_current=lambda: self._is_current(key, seq),
                notifier=self.notifier,
            )
        finally:
            del self._pending_creates[slot]
            done.set_result(None)

    # -- delete -------------------------------------------------------------------

    async def delete_record(self, slot: SlotKey) -> MutationOutcome:
        """Delete the slot's record; the page falls back to its placeholder.

        Pending rows never reached the server and are dropped locally.
        """
        await self._wait_for_create(slot)
        located = locate(self.cached_rows(), slot, self.resource.slot_of)
        if located.row is None:
            return MutationOutcome(ok=True, skipped=True)

        if not located.is_persisted:
            self._rewrite(lambda _key, rows: [r for r in rows if identity_or_none(r) != located.identity])
            self.overlay.clear_slot(slot)
            logger.debug("dropped pending row for %s", slot)
            return MutationOutcome(ok=True, skipped=True)

        identity = located.identity
        mutation = self.dispatcher.delete(self.resource, identity)

        def apply():
            def remove(_key, rows):
                kept = [r for r in rows if identity_or_none(r) != identity]
                return kept if len(kept) != len(rows) else None
            self._rewrite(remove)

        return await optimistic_mutation(
            self.cache, self.dispatcher, mutation, apply,
            on_success=lambda _data: self.overlay.clear_slot(slot),
            notifier=self.notifier,
            error_title=DELETE_FAILED,
        )
