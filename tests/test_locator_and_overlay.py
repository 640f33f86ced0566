import pytest

from kaigo_client.identity import Pending, Persisted, SlotKey, identity_of, is_persisted, new_pending
from kaigo_client.locator import build_payload, locate
from kaigo_client.overlay import LocalEditOverlay, OverlayKey
from kaigo_client.resources import MEAL_WATER, WEIGHT

SLOT = SlotKey("res_1", "2024-03-04", "昼")


def _meal(**values):
    row = {"resident_id": "res_1", "record_date": "2024-03-04", "meal_time": "昼"}
    row.update(values)
    return row


class TestIdentity:
    def test_string_id_is_persisted(self):
        assert identity_of({"id": "mwr_1"}) == Persisted("mwr_1")
        assert is_persisted({"id": "mwr_1"})

    def test_pending_identity_passes_through(self):
        pending = new_pending(SLOT)
        assert identity_of({"id": pending}) is pending
        assert not is_persisted({"id": pending})

    def test_pending_tokens_differ(self):
        assert new_pending(SLOT) != new_pending(SLOT)

    @pytest.mark.parametrize("rid", [None, "", 12])
    def test_unusable_ids(self, rid):
        with pytest.raises(ValueError):
            identity_of({"id": rid})

    def test_slot_keys_compare_by_value(self):
        assert SlotKey("res_1", "2024-03-04", "昼") == SLOT
        assert len({SLOT, SlotKey("res_1", "2024-03-04", "昼")}) == 1


class TestLocate:
    def test_prefers_persisted_over_pending(self):
        pending_row = _meal(id=new_pending(SLOT), water_intake="100")
        real_row = _meal(id="mwr_1", water_intake="200")
        found = locate([pending_row, real_row], SLOT, MEAL_WATER.slot_of)
        assert found.is_persisted
        assert found.row is real_row

    def test_falls_back_to_pending_row(self):
        pending_row = _meal(id=new_pending(SLOT))
        other = _meal(id="mwr_2", meal_time="朝")
        found = locate([other, pending_row], SLOT, MEAL_WATER.slot_of)
        assert not found.is_persisted
        assert found.row is pending_row

    def test_empty_slot_gets_fresh_pending_identity(self):
        found = locate([], SLOT, MEAL_WATER.slot_of)
        assert found.row is None
        assert found.identity == Pending(SLOT)

    def test_malformed_rows_are_skipped(self):
        found = locate([{"id": "x"}, _meal(id=None)], SLOT, MEAL_WATER.slot_of)
        assert found.row is None

    def test_weight_rows_map_to_month_slot(self):
        row = {"id": "wgt_1", "resident_id": "res_1", "record_date": "2024-03-15"}
        found = locate([row], SlotKey("res_1", "2024-03-01"), WEIGHT.slot_of)
        assert found.row is row


class TestBuildPayload:
    def test_persisted_target_gets_partial_payload(self):
        found = locate([_meal(id="mwr_1", water_intake="200", main_amount="8")], SLOT, MEAL_WATER.slot_of)
        payload = build_payload(found, "water_intake", "", MEAL_WATER.fields, MEAL_WATER.slot_fields(SLOT))
        assert payload == {"water_intake": ""}

    def test_placeholder_target_gets_full_payload(self):
        found = locate([], SLOT, MEAL_WATER.slot_of)
        payload = build_payload(
            found, "water_intake", "150", MEAL_WATER.fields, MEAL_WATER.slot_fields(SLOT),
            displayed=lambda name, current: "8" if name == "main_amount" else current,
        )
        assert payload["resident_id"] == "res_1"
        assert payload["record_date"] == "2024-03-04"
        assert payload["meal_time"] == "昼"
        assert payload["water_intake"] == "150"
        assert payload["main_amount"] == "8"
        assert set(MEAL_WATER.fields) <= set(payload)

    def test_pending_row_values_carried_into_create(self):
        pending_row = _meal(id=new_pending(SLOT), supplement="エンシュア 200ml")
        found = locate([pending_row], SLOT, MEAL_WATER.slot_of)
        payload = build_payload(found, "water_intake", "50", MEAL_WATER.fields, MEAL_WATER.slot_fields(SLOT))
        assert payload["supplement"] == "エンシュア 200ml"
        assert "id" not in payload


class TestOverlay:
    def test_overlay_wins_over_persisted_value(self):
        overlay = LocalEditOverlay()
        key = OverlayKey.for_slot(SLOT, "water_intake")
        assert overlay.resolve(key, "200") == "200"
        overlay.put(key, "")
        assert overlay.resolve(key, "200") == ""

    def test_clear_respects_newer_edit(self):
        overlay = LocalEditOverlay()
        key = OverlayKey.for_slot(SLOT, "notes")
        first = overlay.put(key, "a")
        second = overlay.put(key, "b")
        assert not overlay.clear(key, first)
        assert overlay.get(key) == "b"
        assert overlay.clear(key, second)
        assert key not in overlay

    def test_retag_hands_entry_to_older_edit(self):
        overlay = LocalEditOverlay()
        key = OverlayKey.for_slot(SLOT, "notes")
        first = overlay.put(key, "b")
        second = overlay.put(key, "b")
        assert not overlay.retag(key, first, first)
        assert overlay.retag(key, second, first)
        assert not overlay.clear(key, second)
        assert overlay.clear(key, first)

    def test_clear_slot_only_touches_that_slot(self):
        overlay = LocalEditOverlay()
        overlay.put(OverlayKey.for_slot(SLOT, "notes"), "a")
        overlay.put(OverlayKey.for_slot(SLOT, "supplement"), "b")
        other = OverlayKey.for_slot(SlotKey("res_1", "2024-03-04", "夕"), "notes")
        overlay.put(other, "c")
        overlay.clear_slot(SLOT)
        assert len(overlay) == 1
        assert other in overlay

    def test_keys_are_tuples_not_strings(self):
        # joined with "-" these two would be the same string
        a = OverlayKey("res-1", "2024-03-04", "", "notes")
        b = OverlayKey("res", "1-2024-03-04", "", "notes")
        assert a != b
