import asyncio
import itertools
import json
from urllib.parse import unquote

import httpx
import pytest

from kaigo_client.api_client import KaigoApiClient

API_PREFIX = "/api/v1"

SLOT_COLUMNS = {
    "bathing-records": ("resident_id", "record_date"),
    "weight-records": ("resident_id", "record_month"),
    "meal-water-records": ("resident_id", "record_date", "meal_time"),
    "cleaning-linen-records": ("resident_id", "record_date"),
    "care-records": ("resident_id", "record_date", "category"),
    "residents": None,
}

ID_PREFIXES = {
    "bathing-records": "bth_",
    "weight-records": "wgt_",
    "meal-water-records": "mwr_",
    "cleaning-linen-records": "cln_",
    "care-records": "care_",
    "residents": "res_",
}

RESIDENTS = [
    {"id": "res_101", "room_number": "101", "floor": "1階", "name": "山田 花子", "is_active": True,
     "bath_monday": True, "bath_thursday": True},
    {"id": "res_102", "room_number": "102", "floor": "1F", "name": "佐藤 一郎", "is_active": True,
     "bath_tuesday": True, "bath_friday": True},
    {"id": "res_201", "room_number": "201", "floor": "2", "name": "鈴木 次郎", "is_active": True,
     "bath_monday": True},
]


def _slot_value(row, column):
    if column == "record_month":
        return (row.get("record_date") or "")[:7]
    return row.get(column)


def _error(status, code, message):
    return httpx.Response(status, json={"error": {"code": code, "message": message}, "meta": {}})


class _Held:
    def __init__(self, method, path):
        self.method = method
        self.path = path
        self.event = asyncio.Event()


class FakeBackend:
    """In-memory stand-in for the REST collections, served through httpx.MockTransport.

    ``pause()`` holds responses to writes until released, so tests can
    interleave edits and decide the order in which saves settle. By default
    the write is applied when the request arrives and only its response is
    held; ``pause(apply_on_release=True)`` applies it on release instead.
    """

    def __init__(self):
        self.tables = {name: {} for name in SLOT_COLUMNS}
        for row in RESIDENTS:
            self.tables["residents"][row["id"]] = dict(row)
        self.requests = []
        self.held = []
        self.paused = False
        self.apply_on_release = False
        self._failures = []
        self._ids = itertools.count(1)

    # -- test controls ------------------------------------------------------------

    def seed(self, collection, **row):
        row.setdefault("id", ID_PREFIXES[collection] + "seed%d" % next(self._ids))
        self.tables[collection][row["id"]] = row
        return row

    def rows(self, collection):
        return list(self.tables[collection].values())

    def fail_next(self, method, status=500, code="INTERNAL", message="boom"):
        self._failures.append((method, status, code, message))

    def pause(self, apply_on_release=False):
        self.paused = True
        self.apply_on_release = apply_on_release

    def resume(self):
        self.paused = False
        for held in self.held:
            held.event.set()

    def release(self, index):
        self.held[index].event.set()

    async def wait_held(self, count, max_spins=2000):
        for _ in range(max_spins):
            if len(self.held) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError("expected %d held requests, got %d" % (count, len(self.held)))

    def sent(self, method):
        return [r for r in self.requests if r[0] == method]

    def client(self):
        transport = httpx.MockTransport(self.handle)
        return KaigoApiClient(client=httpx.AsyncClient(transport=transport, base_url="http://kaigo.test"))

    # -- transport ----------------------------------------------------------------

    def _take_failure(self, method):
        for i, failure in enumerate(self._failures):
            if failure[0] == method:
                return self._failures.pop(i)
        return None

    async def handle(self, request):
        method = request.method
        path = unquote(request.url.path)
        assert path.startswith(API_PREFIX), path
        parts = path[len(API_PREFIX):].strip("/").split("/")
        collection = parts[0]
        rec_id = parts[1] if len(parts) > 1 else None
        body = json.loads(request.content) if request.content else None
        self.requests.append((method, "/" + "/".join(parts), body))

        if method == "GET":
            return self._list(collection, request.url.params)

        failure = self._take_failure(method)
        if not self.paused:
            return failure_response(failure) if failure else self._apply(method, collection, rec_id, body)

        held = _Held(method, path)
        self.held.append(held)
        if self.apply_on_release or failure:
            await held.event.wait()
            return failure_response(failure) if failure else self._apply(method, collection, rec_id, body)
        response = self._apply(method, collection, rec_id, body)
        await held.event.wait()
        return response

    def _list(self, collection, params):
        rows = self.rows(collection)
        if params.get("from"):
            rows = [r for r in rows if r["record_date"] >= params["from"]]
        if params.get("to"):
            rows = [r for r in rows if r["record_date"] <= params["to"]]
        return httpx.Response(200, json={"data": [dict(r) for r in rows], "meta": {}})

    def _apply(self, method, collection, rec_id, body):
        table = self.tables[collection]
        if method == "POST":
            slot_cols = SLOT_COLUMNS[collection]
            if slot_cols:
                slot = tuple(_slot_value(body, c) for c in slot_cols)
                if any(tuple(_slot_value(r, c) for c in slot_cols) == slot for r in table.values()):
                    return _error(409, "DUPLICATE_SLOT", "slot already recorded")
            row = dict(body)
            row["id"] = ID_PREFIXES[collection] + "%d" % next(self._ids)
            table[row["id"]] = row
            return httpx.Response(201, json={"data": dict(row), "meta": {}})
        if rec_id not in table:
            return _error(404, "NOT_FOUND", "%s not found" % rec_id)
        if method == "PATCH":
            table[rec_id].update(body)
            return httpx.Response(200, json={"data": dict(table[rec_id]), "meta": {}})
        if method == "DELETE":
            del table[rec_id]
            return httpx.Response(200, json={"data": {"id": rec_id, "deleted": True}, "meta": {}})
        return _error(405, "METHOD_NOT_ALLOWED", method)


def failure_response(failure):
    _method, status, code, message = failure
    return _error(status, code, message)


@pytest.fixture
def backend():
    return FakeBackend()
