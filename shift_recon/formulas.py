# shift_recon/formulas.py
"""
Metric formula library.

Every family is a pure function over the payloads of one
(activity, sub_activity) bucket:

    family(payloads, sub_activity, group_keys) -> {metric: number}

group_keys[i] is the resolved group key of payloads[i]. The bucket total is
the generic sum of every numeric values field (skipping the rule's
never_summed inputs) overlaid with the family's derived metrics.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from shift_recon.grouping import distinct_count, resolve_group_key
from shift_recon.load_rules import MetricRuleSpec, rule_for
from shift_recon.payload import (
    HOLE_BUCKETS,
    BackfillValues,
    ChargingValues,
    FaceDrillingValues,
    FiringValues,
    GroundSupportValues,
    HaulingValues,
    HoistingValues,
    LoadingValues,
    ProductionDrillingValues,
    parse_float,
    strip_numeric,
    to_number,
    values_of,
)

log = logging.getLogger("formulas")

Totals = Dict[str, float]
Formula = Callable[[List[Dict[str, Any]], str, List[str]], Totals]


def _add(out: Totals, metric: str, amount: float) -> None:
    out[metric] = out.get(metric, 0.0) + amount


def generic_sums(payloads: List[Dict[str, Any]], rule: Optional[MetricRuleSpec] = None) -> Totals:
    """Sum every values field that parses as a number. Non-numeric values contribute nothing."""
    out: Totals = {}
    for p in payloads:
        for key, raw in values_of(p).items():
            key = str(key or "")
            if rule is not None and rule.is_never_summed(key):
                continue
            num = parse_float(raw)
            if num is not None:
                _add(out, key, num)
    return out


# ---------- Development ----------
def development(payloads: List[Dict[str, Any]], sub: str, keys: List[str]) -> Totals:
    out: Totals = {}
    if sub == "Face Drilling":
        out["Dev Drillm"] = 0.0
        for p in payloads:
            v = FaceDrillingValues.model_validate(values_of(p))
            _add(out, "Dev Drillm", v.face_drillm if v.face_drillm > 0 else v.holes * v.cut_length)
    elif sub in ("Ground Support", "Rehab"):
        out["GS Drillm"] = 0.0
        for p in payloads:
            v = GroundSupportValues.model_validate(values_of(p))
            _add(out, "GS Drillm", v.gs_drillm if v.gs_drillm > 0 else v.bolts * v.bolt_length)
    return out


# ---------- Hauling ----------
def haul_trucks(p: Dict[str, Any]) -> float:
    loads = p.get("loads")
    if isinstance(loads, list):
        return float(len(loads))
    return HaulingValues.model_validate(values_of(p)).trucks


def haul_weight(p: Dict[str, Any]) -> float:
    """Total tonnes moved: sum of load weights, or trucks x Weight when there are no loads."""
    loads = p.get("loads")
    if isinstance(loads, list):
        return sum(to_number(l.get("weight", l.get("Weight"))) for l in loads if isinstance(l, dict))
    return haul_trucks(p) * HaulingValues.model_validate(values_of(p)).weight


def hauling(payloads: List[Dict[str, Any]], sub: str, keys: List[str]) -> Totals:
    out: Totals = {"Trucks": 0.0, "Weight": 0.0, "Distance": 0.0}
    with_tkms = sub in ("Production", "Development")
    if with_tkms:
        out["TKMs"] = 0.0
    for p in payloads:
        trucks = haul_trucks(p)
        weight = haul_weight(p)
        distance = HaulingValues.model_validate(values_of(p)).distance
        _add(out, "Trucks", trucks)
        _add(out, "Weight", weight)
        _add(out, "Distance", trucks * distance)
        if with_tkms:
            _add(out, "TKMs", weight * distance)
    return out


# ---------- Loading ----------
def loading(payloads: List[Dict[str, Any]], sub: str, keys: List[str]) -> Totals:
    out: Totals = {}
    if sub == "Production":
        primary, rehandle = "Primary Stope Buckets", "Rehandle Stope Buckets"
    elif sub == "Development":
        primary, rehandle = "Primary Dev Buckets", "Rehandle Dev Buckets"
    else:
        return out
    out[primary] = 0.0
    out[rehandle] = 0.0
    for p in payloads:
        v = LoadingValues.model_validate(values_of(p))
        # legacy SP to Truck / SP to SP rows count toward this sub-activity's rehandle
        legacy = v.sp_to_truck + v.sp_to_sp
        if sub == "Production":
            _add(out, primary, v.stope_to_truck + v.stope_to_sp)
            _add(out, rehandle, v.stope_sp_to_truck + v.stope_sp_to_sp + legacy)
        else:
            _add(out, primary, v.heading_to_truck + v.heading_to_sp)
            _add(out, rehandle, v.dev_sp_to_truck + v.dev_sp_to_sp + legacy)
    return out


# ---------- Firing ----------
def firing(payloads: List[Dict[str, Any]], sub: str, keys: List[str]) -> Totals:
    out: Totals = {"Tonnes Fired": sum(FiringValues.model_validate(values_of(p)).tonnes_fired for p in payloads)}
    if sub == "Production":
        out["Stopes Fired"] = float(distinct_count(keys))
    elif sub == "Development":
        out["Headings Fired"] = float(distinct_count(keys))
    return out


# ---------- Hoisting ----------
def hoisting(payloads: List[Dict[str, Any]], sub: str, keys: List[str]) -> Totals:
    views = [HoistingValues.model_validate(values_of(p)) for p in payloads]
    return {
        "Ore Tonnes": sum(v.ore_tonnes for v in views),
        "Waste Tonnes": sum(v.waste_tonnes for v in views),
    }


# ---------- Backfilling ----------
def backfilling(payloads: List[Dict[str, Any]], sub: str, keys: List[str]) -> Totals:
    views = [BackfillValues.model_validate(values_of(p)) for p in payloads]
    if sub == "Surface":
        return {"Volume": sum(v.volume for v in views)}
    if sub == "Underground":
        return {"Buckets": sum(v.buckets for v in views)}
    return {}


# ---------- Production Drilling ----------
def hole_bucket_metres(p: Dict[str, Any], bucket: str) -> float:
    holes = p.get("holes")
    rows = holes.get(bucket) if isinstance(holes, dict) else None
    if not isinstance(rows, list):
        return 0.0
    return sum(strip_numeric(h.get("length_m")) for h in rows if isinstance(h, dict))


def production_drilling(payloads: List[Dict[str, Any]], sub: str, keys: List[str]) -> Totals:
    out: Totals = {b: 0.0 for b in HOLE_BUCKETS}
    for p in payloads:
        if isinstance(p.get("holes"), dict):
            for b in HOLE_BUCKETS:
                _add(out, b, hole_bucket_metres(p, b))
        else:
            v = ProductionDrillingValues.model_validate(values_of(p))
            _add(out, "Metres Drilled", v.metres_drilled)
            _add(out, "Cleanouts Drilled", v.cleanouts_drilled)
            _add(out, "Redrills", v.redrills)
    return out


# ---------- Charging ----------
def charging(payloads: List[Dict[str, Any]], sub: str, keys: List[str]) -> Totals:
    out: Totals = {"Charge Metres": sum(ChargingValues.model_validate(values_of(p)).charge_metres for p in payloads)}
    if sub == "Development":
        out["Headings Charged"] = float(distinct_count(keys))
    elif sub == "Production":
        out["Stopes Charged"] = float(distinct_count(keys))
    return out


def generic(payloads: List[Dict[str, Any]], sub: str, keys: List[str]) -> Totals:
    return {}


FORMULAS: Dict[str, Formula] = {
    "generic": generic,
    "development": development,
    "hauling": hauling,
    "loading": loading,
    "firing": firing,
    "hoisting": hoisting,
    "backfilling": backfilling,
    "production_drilling": production_drilling,
    "charging": charging,
}


def compute_bucket(activity: str, sub_activity: str, payloads: List[Dict[str, Any]],
                   table: Optional[Dict[str, MetricRuleSpec]] = None) -> Totals:
    """Totals for one (activity, sub_activity) bucket: generic sums, then derived metrics on top."""
    rule = rule_for(activity, table)
    formula = FORMULAS.get(rule.formula)
    if formula is None:
        log.warning("Rule %s names unknown formula %r; using generic sums", rule.id, rule.formula)
        formula = generic
    totals = generic_sums(payloads, rule)
    keys = [resolve_group_key(activity, p, table) for p in payloads]
    totals.update(formula(payloads, sub_activity, keys))
    return totals


__all__ = [
    "FORMULAS",
    "compute_bucket",
    "generic_sums",
    "haul_trucks",
    "haul_weight",
    "hole_bucket_metres",
]
