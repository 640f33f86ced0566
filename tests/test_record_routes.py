import json
from datetime import date, datetime

import psycopg2
import pytest
from psycopg2 import errorcodes

from kaigo_server import feature_flags, record_store
from kaigo_server.routes import (
    bathing_records,
    care_records,
    cleaning_linen_records,
    meal_water_records,
    residents,
    weight_records,
)


class _UniqueViolation(psycopg2.IntegrityError):
    pgcode = errorcodes.UNIQUE_VIOLATION


class _ForeignKeyViolation(psycopg2.IntegrityError):
    pgcode = errorcodes.FOREIGN_KEY_VIOLATION


class _FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.conn.executed.append((sql, list(params or ())))
        if self.conn.error is not None:
            raise self.conn.error

    def fetchone(self):
        if not self.conn.rows:
            return None
        return self.conn.rows.pop(0)

    def fetchall(self):
        rows, self.conn.rows = self.conn.rows, []
        return rows


class _FakeConn:
    def __init__(self, rows=None, error=None):
        self.rows = list(rows or [])
        self.error = error
        self.executed = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return _FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


@pytest.fixture(autouse=True)
def _writable(monkeypatch):
    monkeypatch.delenv("KAIGO_READ_ONLY", raising=False)
    monkeypatch.delenv("KAIGO_RESIDENT_SOFT_DELETE", raising=False)
    feature_flags.clear_cache()
    yield
    feature_flags.clear_cache()


@pytest.fixture
def fake_db(monkeypatch):
    returned = []

    def install(rows=None, error=None):
        conn = _FakeConn(rows, error)
        monkeypatch.setattr(record_store, "get_conn", lambda: conn)
        monkeypatch.setattr(record_store, "put_conn", lambda c: returned.append(c))
        return conn

    install.returned = returned
    return install


def _body(resp):
    if isinstance(resp, dict):
        return resp
    return json.loads(resp.body)


def _row(columns, **values):
    return tuple(values.get(col) for col in columns)


def _weight_row(**values):
    base = {
        "id": "wgt_1", "resident_id": "res_1", "record_date": date(2024, 3, 1),
        "weight": "62.5", "created_at": datetime(2024, 3, 1, 9, 0),
    }
    base.update(values)
    return _row(weight_records.WEIGHT_COLUMNS, **base)


class TestCreate:
    def test_weight_created_with_generated_id(self, fake_db):
        conn = fake_db(rows=[_weight_row()])
        resp = weight_records.create_weight_record(
            {"resident_id": "res_1", "record_date": "2024-03-01", "weight": "62.5"}
        )
        assert resp.status_code == 201
        data = _body(resp)["data"]
        assert data["id"] == "wgt_1"
        assert data["record_date"] == "2024-03-01"
        assert data["created_at"] == "2024-03-01T09:00:00"

        sql, params = conn.executed[0]
        assert sql.startswith("INSERT INTO weight_records")
        assert "res_1" in params
        assert date(2024, 3, 1) in params
        assert any(isinstance(p, str) and p.startswith("wgt_") for p in params)
        assert conn.commits == 1
        assert fake_db.returned == [conn]

    def test_missing_resident_is_rejected_before_db(self, fake_db):
        conn = fake_db()
        resp = weight_records.create_weight_record({"record_date": "2024-03-01", "weight": "60"})
        assert resp.status_code == 400
        assert _body(resp)["error"]["code"] == "VALIDATION_ERROR"
        assert conn.executed == []

    def test_bad_date_is_rejected(self, fake_db):
        fake_db()
        resp = bathing_records.create_bathing_record({"resident_id": "res_1", "record_date": "03/01/2024"})
        assert resp.status_code == 400

    @pytest.mark.parametrize("weight", ["abc", "1000", "-1", "nan", "inf", "-Infinity"])
    def test_weight_must_be_finite_and_in_range(self, fake_db, weight):
        fake_db()
        resp = weight_records.create_weight_record(
            {"resident_id": "res_1", "record_date": "2024-03-01", "weight": weight}
        )
        assert resp.status_code == 400

    def test_bath_type_must_be_known(self, fake_db):
        conn = fake_db()
        resp = bathing_records.create_bathing_record(
            {"resident_id": "res_1", "record_date": "2024-03-01", "bath_type": "サウナ"}
        )
        assert resp.status_code == 400
        assert conn.executed == []

    def test_meal_time_required(self, fake_db):
        fake_db()
        resp = meal_water_records.create_meal_water_record(
            {"resident_id": "res_1", "record_date": "2024-03-01", "meal_time": "夜食"}
        )
        assert resp.status_code == 400

    def test_duplicate_slot_maps_to_conflict(self, fake_db):
        conn = fake_db(error=_UniqueViolation("duplicate key"))
        resp = care_records.create_care_record(
            {"resident_id": "res_1", "record_date": "2024-03-01", "category": "daily_care"}
        )
        assert resp.status_code == 409
        assert _body(resp)["error"]["code"] == "DUPLICATE_SLOT"
        assert conn.rollbacks == 1

    def test_second_weight_in_month_is_conflict(self, fake_db):
        fake_db(error=_UniqueViolation("uq_weight_records_resident_month"))
        resp = weight_records.create_weight_record(
            {"resident_id": "res_1", "record_date": "2024-03-20", "weight": "61"}
        )
        assert resp.status_code == 409
        assert _body(resp)["error"]["code"] == "DUPLICATE_SLOT"

    def test_unknown_resident_is_validation_error(self, fake_db):
        fake_db(error=_ForeignKeyViolation("fk"))
        resp = weight_records.create_weight_record({"resident_id": "res_missing", "record_date": "2024-03-01"})
        assert resp.status_code == 400

    def test_db_failure_is_internal_error(self, fake_db):
        conn = fake_db(error=RuntimeError("connection reset"))
        resp = weight_records.create_weight_record({"resident_id": "res_1", "record_date": "2024-03-01"})
        assert resp.status_code == 500
        assert _body(resp)["error"]["code"] == "INTERNAL"
        assert conn.rollbacks == 1
        assert fake_db.returned == [conn]


class TestCleaningLinen:
    def test_day_of_week_is_monday_based(self, fake_db):
        conn = fake_db(rows=[_row(cleaning_linen_records.CLEANING_LINEN_COLUMNS, id="cln_1")])
        # 2024-03-04 is a Monday
        resp = cleaning_linen_records.create_cleaning_linen_record(
            {"resident_id": "res_1", "record_date": "2024-03-04", "cleaning_value": "○"}
        )
        assert resp.status_code == 201
        sql, params = conn.executed[0]
        columns = sql.split("(", 1)[1].split(")", 1)[0].split(", ")
        values = dict(zip(columns, params))
        assert values["day_of_week"] == 0
        assert values["linen_value"] == ""
        assert values["cleaning_value"] == "○"

    def test_mismatched_day_of_week_rejected(self, fake_db):
        fake_db()
        resp = cleaning_linen_records.create_cleaning_linen_record(
            {"resident_id": "res_1", "record_date": "2024-03-04", "day_of_week": 3}
        )
        assert resp.status_code == 400
        assert _body(resp)["error"]["details"] == {"expected": 0, "provided": 3}

    def test_invalid_mark_rejected(self, fake_db):
        fake_db()
        resp = cleaning_linen_records.create_cleaning_linen_record(
            {"resident_id": "res_1", "record_date": "2024-03-04", "cleaning_value": "4"}
        )
        assert resp.status_code == 400

    def test_upsert_conflicts_on_slot(self, fake_db):
        conn = fake_db(rows=[_row(cleaning_linen_records.CLEANING_LINEN_COLUMNS, id="cln_1")])
        resp = cleaning_linen_records.upsert_cleaning_linen_record(
            {"resident_id": "res_1", "record_date": "2024-03-05", "linen_value": "2"}
        )
        assert resp.status_code == 201
        sql, _params = conn.executed[0]
        assert "ON CONFLICT (resident_id, record_date) DO UPDATE SET" in sql
        assert "linen_value = EXCLUDED.linen_value" in sql
        assert "id = EXCLUDED.id" not in sql


class TestUpdate:
    def test_partial_update_sets_only_given_field(self, fake_db):
        conn = fake_db(rows=[_row(bathing_records.BATHING_COLUMNS, id="bth_1", staff_name="")])
        resp = bathing_records.update_bathing_record("bth_1", {"staff_name": ""})
        assert _body(resp)["data"]["staff_name"] == ""
        sql, params = conn.executed[0]
        assert sql.startswith("UPDATE bathing_records SET staff_name = %s, updated_at = NOW() WHERE id = %s")
        assert params == ["", "bth_1"]
        assert conn.commits == 1

    def test_unknown_id_is_not_found(self, fake_db):
        conn = fake_db(rows=[])
        resp = meal_water_records.update_meal_water_record("mwr_missing", {"water_intake": "200"})
        assert resp.status_code == 404
        assert _body(resp)["error"]["code"] == "NOT_FOUND"
        assert conn.rollbacks == 1
        assert conn.commits == 0

    def test_empty_update_rejected(self, fake_db):
        conn = fake_db()
        resp = care_records.update_care_record("care_1", {"unknown": "x"})
        assert resp.status_code == 400
        assert conn.executed == []

    def test_non_string_text_rejected(self, fake_db):
        fake_db()
        resp = weight_records.update_weight_record("wgt_1", {"weight": 62.5})
        assert resp.status_code == 400

    def test_nursing_check_must_be_boolean(self, fake_db):
        fake_db()
        resp = bathing_records.update_bathing_record("bth_1", {"nursing_check": "yes"})
        assert resp.status_code == 400


class TestList:
    def test_date_range_and_resident_filters(self, fake_db):
        conn = fake_db(rows=[])
        resp = meal_water_records.list_meal_water_records(
            date_from="2024-03-01", date_to="2024-03-07", resident_id="res_1", meal_time="昼", limit=1000,
        )
        body = _body(resp)
        assert body["data"] == []
        assert body["meta"]["pagination"]["has_more"] is False
        sql, params = conn.executed[0]
        assert "WHERE record_date >= %s AND record_date <= %s AND resident_id = %s AND meal_time = %s" in sql
        assert params == [date(2024, 3, 1), date(2024, 3, 7), "res_1", "昼", 1001]

    def test_truncation_sets_has_more(self, fake_db):
        rows = [_weight_row(id="wgt_%d" % i) for i in range(3)]
        fake_db(rows=rows)
        body = _body(weight_records.list_weight_records(
            date_from=None, date_to=None, resident_id=None, limit=2,
        ))
        assert [r["id"] for r in body["data"]] == ["wgt_0", "wgt_1"]
        assert body["meta"]["pagination"]["has_more"] is True

    def test_bad_range_rejected(self, fake_db):
        conn = fake_db()
        resp = bathing_records.list_bathing_records(date_from="yesterday", date_to=None, resident_id=None, limit=10)
        assert resp.status_code == 400
        assert conn.executed == []

    def test_care_category_filter_validated(self, fake_db):
        fake_db()
        resp = care_records.list_care_records(
            date_from=None, date_to=None, resident_id=None, category="sleep", limit=10,
        )
        assert resp.status_code == 400

    def test_residents_default_to_active(self, fake_db):
        conn = fake_db(rows=[])
        residents.list_residents(floor="1F", include_inactive=False, limit=100)
        sql, params = conn.executed[0]
        assert "is_active = TRUE" in sql
        assert params == ["1F", 101]


class TestResidents:
    def test_blank_name_rejected(self, fake_db):
        fake_db()
        resp = residents.create_resident({"name": "   "})
        assert resp.status_code == 400

    def test_hard_delete_by_default(self, fake_db):
        conn = fake_db(rows=[("res_1",)])
        body = _body(residents.delete_resident("res_1"))
        assert body["data"] == {"id": "res_1", "deleted": True}
        assert conn.executed[0][0].startswith("DELETE FROM residents")

    def test_soft_delete_marks_inactive(self, fake_db, monkeypatch):
        monkeypatch.setenv("KAIGO_RESIDENT_SOFT_DELETE", "true")
        feature_flags.clear_cache()
        conn = fake_db(rows=[_row(residents.RESIDENT_COLUMNS, id="res_1", name="山田", is_active=False)])
        body = _body(residents.delete_resident("res_1"))
        assert body["data"]["is_active"] is False
        sql, params = conn.executed[0]
        assert sql.startswith("UPDATE residents SET is_active = %s")
        assert params == [False, "res_1"]

    def test_weekday_flags_must_be_boolean(self, fake_db):
        fake_db()
        resp = residents.update_resident("res_1", {"bath_monday": 1})
        assert resp.status_code == 400


def test_read_only_blocks_writes(fake_db, monkeypatch):
    monkeypatch.setenv("KAIGO_READ_ONLY", "1")
    feature_flags.clear_cache()
    conn = fake_db()
    resp = weight_records.create_weight_record({"resident_id": "res_1", "record_date": "2024-03-01"})
    assert resp.status_code == 403
    assert _body(resp)["error"]["code"] == "READ_ONLY"
    resp = weight_records.delete_weight_record("wgt_1")
    assert resp.status_code == 403
    assert conn.executed == []
