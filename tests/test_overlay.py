# tests/test_overlay.py
import pytest

from conftest import make_record
from shift_recon.overlay import (
    EditOverlay,
    coerce_raw,
    diff_record,
    diff_totals,
    group_diff,
    path_tokens,
    set_deep,
    values_differ,
)
from shift_recon.payload import parse_records


@pytest.mark.parametrize("raw,expected", [
    ("", ""),
    ("null", None),
    ("true", True),
    ("false", False),
    ("12", 12),
    ("2.5", 2.5),
    ("abc", "abc"),
    ("2.4m", "2.4m"),
    ("1e400", "1e400"),
    ("1" * 5000, "1" * 5000),
])
def test_coerce_raw(raw, expected):
    assert coerce_raw(raw) == expected
    assert type(coerce_raw(raw)) is type(expected)


def test_path_tokens():
    assert path_tokens("a.b[0].c") == ["a", "b", 0, "c"]
    assert path_tokens("loads[2].weight") == ["loads", 2, "weight"]


def test_set_deep_creates_containers_and_clones():
    root = {"a": {"x": 1}}
    out = set_deep(root, "a.b[1].c", "7")
    assert out["a"]["b"] == [None, {"c": 7}]
    assert root == {"a": {"x": 1}}


def _overlay(payload, rule_table, **kw):
    recs = parse_records([make_record(1, payload, **kw)])
    return EditOverlay(recs, table=rule_table), recs[0]


def test_values_key_with_dots_is_literal(rule_table):
    ov, _ = _overlay({"activity": "Development", "sub": "Ground Support", "values": {"No. of Bolts": 4}}, rule_table)
    p = ov.set_field(1, "values.No. of Bolts", "6")
    assert p["values"]["No. of Bolts"] == 6
    assert "No" not in p["values"]


def test_overlay_never_mutates_original(rule_table):
    original = {"activity": "Hauling", "sub": "Production", "values": {"Distance": 2}, "loads": [{"weight": 10}]}
    ov, rec = _overlay(original, rule_table)
    ov.set_field(1, "loads[0].weight", "30")
    assert rec.payload["loads"][0]["weight"] == 10
    assert ov.original(1)["loads"][0]["weight"] == 10
    assert ov.effective(1)["loads"][0]["weight"] == 30
    # derived fields follow the edit
    assert ov.effective(1)["values"]["Tonnes Hauled"] == 30
    assert ov.effective(1)["values"]["Trucks"] == 1


def test_lookup_is_explicitly_optional(rule_table):
    ov, _ = _overlay({"activity": "Hoisting", "values": {}}, rule_table)
    assert ov.lookup(1) is None
    ov.set_field(1, "values.Ore Tonnes", "5")
    assert ov.lookup(1)["values"]["Ore Tonnes"] == 5
    ov.lookup(1)["values"]["Ore Tonnes"] = 99
    assert ov.effective(1)["values"]["Ore Tonnes"] == 5


def test_non_numeric_edit_is_kept_raw(rule_table):
    ov, _ = _overlay({"activity": "Hoisting", "values": {"Ore Tonnes": 5}}, rule_table)
    assert ov.set_field(1, "values.Ore Tonnes", "lots")["values"]["Ore Tonnes"] == "lots"


def test_oversized_numeric_edits_are_kept_as_typed(rule_table):
    ov, _ = _overlay({"activity": "Hoisting", "values": {"Ore Tonnes": 5}}, rule_table)
    huge = "1" * 5000
    assert ov.set_field(1, "values.Ore Tonnes", huge)["values"]["Ore Tonnes"] == huge
    assert ov.set_field(1, "values.Ore Tonnes", "1e400")["values"]["Ore Tonnes"] == "1e400"


def test_diff_with_overflowing_text_marks_changed():
    cells = diff_record({"values": {"Ore Tonnes": "1e400"}}, {"values": {"Ore Tonnes": "5"}}, ["values.Ore Tonnes"])
    assert cells[0].changed
    assert values_differ("1e400", 5)


def test_edits_are_isolated_per_record(rule_table):
    recs = parse_records([
        make_record(1, {"activity": "Hoisting", "values": {"Ore Tonnes": 5}}),
        make_record(2, {"activity": "Hoisting", "values": {"Ore Tonnes": 7}}),
    ])
    ov = EditOverlay(recs, table=rule_table)
    ov.set_field(1, "values.Ore Tonnes", "9")
    assert ov.is_edited(1) and not ov.is_edited(2)
    assert ov.lookup(2) is None
    assert ov.effective(2) == {"activity": "Hoisting", "values": {"Ore Tonnes": 7}}
    assert recs[1].payload["values"]["Ore Tonnes"] == 7
    assert recs[0].payload["values"]["Ore Tonnes"] == 5
    assert [e["id"] for e in ov.flush()] == [1]


def test_backfill_clamps_apply_at_edit_time(rule_table):
    ov, _ = _overlay({"activity": "Backfilling", "sub": "Surface", "values": {"Volume": 10}}, rule_table)
    assert ov.set_field(1, "values.Volume", "25000")["values"]["Volume"] == 10000
    assert ov.set_field(1, "values.Volume", "-4")["values"]["Volume"] == 0
    ov2, _ = _overlay({"activity": "Backfilling", "sub": "Underground", "values": {}}, rule_table)
    assert ov2.set_field(1, "values.Buckets", "300")["values"]["Buckets"] == 250


def test_flush_discard_and_mark_saved(rule_table):
    ov, _ = _overlay({"activity": "Hoisting", "values": {"Ore Tonnes": 5}}, rule_table)
    ov.set_field(1, "values.Ore Tonnes", "7")
    assert ov.flush() == [{"id": 1, "payload_json": ov.effective(1)}]
    assert ov.is_edited(1)  # flush does not clear
    ov.discard(1)
    assert ov.effective(1)["values"]["Ore Tonnes"] == 5

    ov.set_field(1, "values.Ore Tonnes", "8")
    ov.mark_saved()
    assert not ov.is_edited(1)
    assert ov.original(1)["values"]["Ore Tonnes"] == 8


def test_values_differ_tolerance():
    assert not values_differ(1.0, 1.0 + 1e-12)
    assert values_differ(1.0, 1.0 + 1e-6)
    assert not values_differ("5", 5)
    assert values_differ("abc", "abd")
    assert values_differ(True, "true")


def test_diff_record_changed_and_inapplicable():
    base = {"activity": "Hauling", "values": {"Trucks": "3", "Material": "Ore"}}
    cur = {"activity": "Hauling", "values": {"Trucks": 3.0000000000001, "Material": "Waste", "Distance": 2}}
    cells = {c.path: c for c in diff_record(base, cur, ["values.Trucks", "values.Material", "values.Distance", "values.Weight"])}
    assert not cells["values.Trucks"].changed
    assert cells["values.Material"].changed
    assert cells["values.Distance"].changed
    assert not cells["values.Weight"].applicable
    assert not cells["values.Weight"].changed


def test_diff_record_default_fields_cover_both_sides():
    cells = diff_record({"values": {"A": 1}}, {"values": {"B": 2}})
    assert {c.path for c in cells} == {"values.A", "values.B"}
    assert all(c.changed for c in cells)


def test_group_diff(rule_table):
    rec = parse_records([make_record(1, {})])[0]
    g = group_diff(rec, {"activity": "Hauling", "sub": "Production", "values": {"Source": "S1"}},
                   {"activity": "Hauling", "sub": "Production", "values": {"Source": "S2"}}, rule_table)
    assert g.group_changed and not g.activity_changed and not g.sub_activity_changed
    assert (g.group_before, g.group_after) == ("S1", "S2")


def test_diff_totals():
    before = {"Hauling": {"Production": {"Trucks": 3.0, "Weight": 35.0}}}
    after = {"Hauling": {"Production": {"Trucks": 3.0, "Weight": 40.0, "TKMs": 1.0}}}
    rows = {r.k: r for r in diff_totals(before, after)}
    assert set(rows) == {"Hauling|||Production|||Weight", "Hauling|||Production|||TKMs"}
    assert rows["Hauling|||Production|||TKMs"].before == 0
