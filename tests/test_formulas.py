# tests/test_formulas.py
import pytest

from shift_recon.formulas import compute_bucket, generic_sums
from shift_recon.load_rules import default_rule


def _p(activity, sub, values=None, **extra):
    d = {"activity": activity, "sub": sub, "values": values or {}}
    d.update(extra)
    return d


def test_hauling_loads_define_trucks_and_weight(rule_table):
    p = _p("Hauling", "Production", {"Distance": 2, "Weight": 99, "Trucks": 9},
           loads=[{"weight": 10}, {"weight": 20}, {"weight": 5}])
    t = compute_bucket("Hauling", "Production", [p], rule_table)
    assert t["Trucks"] == 3
    assert t["Weight"] == 35
    assert t["Distance"] == 6
    assert t["TKMs"] == 70


def test_hauling_without_loads_uses_trucks_times_weight(rule_table):
    ps = [
        _p("Hauling", "Development", {"Trucks": "2", "Weight": "50", "Distance": "1.5"}),
        _p("Hauling", "Development", {"Trucks": 1, "Weight": 40, "Distance": 2}),
    ]
    t = compute_bucket("Hauling", "Development", ps, rule_table)
    assert t["Trucks"] == 3
    assert t["Weight"] == 140
    assert t["Distance"] == pytest.approx(5.0)
    assert t["TKMs"] == pytest.approx(100 * 1.5 + 40 * 2)


def test_hauling_tkms_only_for_production_and_development(rule_table):
    t = compute_bucket("Hauling", "Surface", [_p("Hauling", "Surface", {"Trucks": 1, "Weight": 10, "Distance": 3})], rule_table)
    assert "TKMs" not in t
    assert t["Trucks"] == 1


def test_face_drilling_prefers_direct_value(rule_table):
    ps = [
        _p("Development", "Face Drilling", {"No of Holes": 40, "Cut Length": 3.5}),
        _p("Development", "Face Drilling", {"No of Holes": 40, "Cut Length": 3.5, "Face Drillm": 100}),
    ]
    t = compute_bucket("Development", "Face Drilling", ps, rule_table)
    assert t["Dev Drillm"] == pytest.approx(140 + 100)
    assert "Cut Length" not in t


def test_ground_support_strips_units(rule_table):
    p = _p("Development", "Ground Support", {"No. of Bolts": 4, "Bolt Length": "2.4m"})
    t = compute_bucket("Development", "Ground Support", [p], rule_table)
    assert t["GS Drillm"] == pytest.approx(9.6)
    assert "Bolt Length" not in t
    assert t["No. of Bolts"] == 4


def test_rehab_uses_direct_gs_drillm_when_positive(rule_table):
    ps = [
        _p("Development", "Rehab", {"No. of Bolts": 4, "Bolt Length": "2.4m", "GS Drillm": 12}),
        _p("Development", "Rehab", {"No. of Bolts": 2, "Bolt Length": "3", "GS Drillm": 0}),
    ]
    assert compute_bucket("Development", "Rehab", ps, rule_table)["GS Drillm"] == pytest.approx(18)


def test_firing_counts_distinct_stopes(rule_table):
    ps = [
        _p("Firing", "Production", {"Stope": "Stope A", "Tonnes Fired": 100}),
        _p("Firing", "Production", {"Stope": "Stope A", "Tonnes Fired": "50"}),
        _p("Firing", "Production", {"Stope": "Stope B"}),
        _p("Firing", "Production", {"Stope": ""}),
    ]
    t = compute_bucket("Firing", "Production", ps, rule_table)
    assert t["Stopes Fired"] == 2
    assert t["Tonnes Fired"] == 150


def test_firing_development_counts_headings(rule_table):
    ps = [_p("Firing", "Development", {"Heading": h}) for h in ("H1", "H2", "H1")]
    t = compute_bucket("Firing", "Development", ps, rule_table)
    assert t["Headings Fired"] == 2
    assert "Stopes Fired" not in t


def test_loading_buckets_with_legacy_fields(rule_table):
    prod = _p("Loading", "Production", {"Stope to Truck": 10, "Stope to SP": 5, "Stope SP to Truck": 3, "SP to SP": 2})
    t = compute_bucket("Loading", "Production", [prod], rule_table)
    assert t["Primary Stope Buckets"] == 15
    assert t["Rehandle Stope Buckets"] == 5

    dev = _p("Loading", "Development", {"Heading to Truck": 7, "Dev SP to SP": 1, "SP to Truck": 4})
    t = compute_bucket("Loading", "Development", [dev], rule_table)
    assert t["Primary Dev Buckets"] == 7
    assert t["Rehandle Dev Buckets"] == 5


def test_hoisting_and_backfilling(rule_table):
    t = compute_bucket("Hoisting", "Shaft", [_p("Hoisting", "Shaft", {"Ore Tonnes": "100", "Waste Tonnes": 20})], rule_table)
    assert (t["Ore Tonnes"], t["Waste Tonnes"]) == (100, 20)
    t = compute_bucket("Backfilling", "Surface", [_p("Backfilling", "Surface", {"Volume": 300}), _p("Backfilling", "Surface", {"Volume": "200"})], rule_table)
    assert t["Volume"] == 500
    t = compute_bucket("Backfilling", "Underground", [_p("Backfilling", "Underground", {"Buckets": 12})], rule_table)
    assert t["Buckets"] == 12


def test_production_drilling_from_holes(rule_table):
    p = _p("Production Drilling", "Stope", {"Metres Drilled": 999},
           holes={"Metres Drilled": [{"length_m": "12.5m"}, {"length_m": 10}], "Redrills": [{"length_m": "3"}]})
    t = compute_bucket("Production Drilling", "Stope", [p], rule_table)
    assert t["Metres Drilled"] == pytest.approx(22.5)
    assert t["Redrills"] == 3
    assert t["Cleanouts Drilled"] == 0


def test_charging_distinct_locations(rule_table):
    ps = [_p("Charging", "Development", {"Location": loc, "Charge Metres": 10}) for loc in ("H1", "H1", "H2")]
    t = compute_bucket("Charging", "Development", ps, rule_table)
    assert t["Headings Charged"] == 2
    assert t["Charge Metres"] == 30


def test_unknown_activity_uses_generic_sums(rule_table):
    ps = [_p("Survey", "Misc", {"Points": "3", "Note": "abc"}), _p("Survey", "Misc", {"Points": 4})]
    assert compute_bucket("Survey", "Misc", ps, rule_table) == {"Points": 7}


def test_generic_sums_skip_never_summed_inputs():
    rule = default_rule("X").model_copy(update={"never_summed": ["Bolt Length"]})
    assert generic_sums([{"values": {"Bolt Length": 2, "Bolts": 3}}], rule) == {"Bolts": 3}


def test_totals_are_non_negative_for_non_negative_inputs(rule_table):
    ps = [
        _p("Hauling", "Production", {"Distance": 0}, loads=[{"weight": 0}, {"weight": "x"}]),
        _p("Development", "Ground Support", {"No. of Bolts": "abc", "Bolt Length": ""}),
    ]
    for p in ps:
        t = compute_bucket(p["activity"], p["sub"], [p], rule_table)
        assert all(v >= 0 for v in t.values())
