# shift_recon/totals.py
"""
Aggregation pipeline: payloads -> TotalsTree (activity -> sub_activity -> metric -> number).

Provides:
 - compute_totals_by_sub(payloads): the tree for any list of payloads
 - filter_records / totals_for_records: dn / site / shift / user filtered totals
 - totals_by_shift: one tree per (dn, user), the per-shift totals_json
 - site_totals, flatten_totals, day_status, search_activities
 - flatten_activity_metrics: long-format rows for BI export
"""
import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from shift_recon.formulas import compute_bucket
from shift_recon.load_rules import MetricRuleSpec
from shift_recon.nested import reconcile_derived
from shift_recon.payload import (
    ActivityRecord,
    is_numeric_text,
    normalize,
    parse_float,
    to_text,
    values_of,
)

log = logging.getLogger("totals")

TotalsTree = Dict[str, Dict[str, Dict[str, float]]]
KEY_SEP = "|||"

# overlay lookup: record id -> edited payload, or None for "use persisted payload"
PayloadLookup = Callable[[int], Optional[Dict[str, Any]]]


def bucket_names(payload: Dict[str, Any]) -> Tuple[str, str]:
    activity = to_text(payload.get("activity")) or "(No Activity)"
    sub = to_text(payload.get("sub")) or to_text(payload.get("sub_activity")) or "(No Sub Activity)"
    return activity, sub


def compute_totals_by_sub(payloads: Iterable[Any], table: Optional[Dict[str, MetricRuleSpec]] = None) -> TotalsTree:
    """
    Group payloads by (activity, sub_activity) and apply the activity's formula to each bucket.
    Malformed payloads normalise to {} and land in the "(No Activity)" bucket with no metrics.
    Fields derived from loads / holes are recomputed first, so stale stored totals never leak in.
    """
    buckets: "OrderedDict[Tuple[str, str], List[Dict[str, Any]]]" = OrderedDict()
    for raw in payloads:
        p = reconcile_derived(raw)
        buckets.setdefault(bucket_names(p), []).append(p)

    tree: TotalsTree = {}
    for (activity, sub), ps in buckets.items():
        tree.setdefault(activity, {})[sub] = compute_bucket(activity, sub, ps, table)
    return tree


def record_payload(rec: ActivityRecord, lookup: Optional[PayloadLookup] = None) -> Dict[str, Any]:
    """Effective payload of a record. Fills activity / sub_activity from the row columns when missing."""
    edited = lookup(rec.id) if lookup is not None else None
    p = normalize(edited) if edited is not None else rec.payload
    if not to_text(p.get("activity")) and rec.activity:
        p["activity"] = rec.activity
    if not (to_text(p.get("sub")) or to_text(p.get("sub_activity"))) and rec.sub_activity:
        p["sub_activity"] = rec.sub_activity
    return p


def filter_records(records: Iterable[ActivityRecord], dn: Optional[str] = None, site: Optional[str] = None,
                   shift_ids: Optional[Iterable[int]] = None, user: Optional[str] = None) -> List[ActivityRecord]:
    """Empty / None filters match everything. Site "*" means all sites."""
    ids = set(shift_ids) if shift_ids else None
    user_key = to_text(user).lower()
    out = []
    for r in records:
        if dn and to_text(r.dn).upper() != to_text(dn).upper():
            continue
        if site and site != "*" and to_text(r.site).lower() != to_text(site).lower():
            continue
        if ids is not None and r.shift_id not in ids:
            continue
        if user_key and r.user_key != user_key:
            continue
        out.append(r)
    return out


def totals_for_records(records: Iterable[ActivityRecord], lookup: Optional[PayloadLookup] = None,
                       table: Optional[Dict[str, MetricRuleSpec]] = None, **filters) -> TotalsTree:
    recs = filter_records(records, **filters) if filters else list(records)
    return compute_totals_by_sub([record_payload(r, lookup) for r in recs], table)


def totals_by_shift(records: Iterable[ActivityRecord], lookup: Optional[PayloadLookup] = None,
                    table: Optional[Dict[str, MetricRuleSpec]] = None) -> Dict[Tuple[str, str], TotalsTree]:
    """One totals tree per (dn, user); records keep their submission order inside each shift."""
    groups: "OrderedDict[Tuple[str, str], List[Dict[str, Any]]]" = OrderedDict()
    for r in records:
        groups.setdefault((to_text(r.dn), r.user_key), []).append(record_payload(r, lookup))
    return {k: compute_totals_by_sub(ps, table) for k, ps in groups.items()}


def site_totals(records: Iterable[ActivityRecord], site: Optional[str] = None,
                lookup: Optional[PayloadLookup] = None,
                table: Optional[Dict[str, MetricRuleSpec]] = None) -> TotalsTree:
    return totals_for_records(records, lookup, table, site=site)


def flatten_totals(tree: TotalsTree) -> List[Dict[str, Any]]:
    """Rows keyed "activity|||sub|||metric", used by the totals diff and the API."""
    rows = []
    for activity, subs in tree.items():
        for sub, metrics in subs.items():
            for metric, value in metrics.items():
                rows.append({
                    "k": KEY_SEP.join((activity, sub, metric)),
                    "activity": activity,
                    "sub": sub,
                    "metric": metric,
                    "value": float(value or 0),
                })
    return rows


def day_status(validated_shifts: Iterable[Dict[str, Any]]) -> str:
    """green when every validated shift is validated, red when any is not, none when there are none."""
    flags = []
    for s in validated_shifts:
        raw = s.get("validated") if isinstance(s, dict) else getattr(s, "validated", None)
        flags.append(bool(raw) and to_text(raw).lower() not in ("0", "false"))
    if not flags:
        return "none"
    return "green" if all(flags) else "red"


SEARCH_SCOPES = ("operator", "equipment", "heading", "all")


def _equipment_text(payload: Dict[str, Any]) -> str:
    v = values_of(payload)
    for key in ("Equipment", "equipment", "equipment_id", "EquipmentId"):
        if to_text(v.get(key)):
            return to_text(v.get(key))
    return to_text(payload.get("equipment_id")) or to_text(payload.get("equipment"))


def _heading_text(payload: Dict[str, Any]) -> str:
    v = values_of(payload)
    for key in ("Location", "location", "Heading", "heading", "To", "to"):
        if to_text(v.get(key)):
            return to_text(v.get(key))
    return to_text(payload.get("location"))


def search_activities(records: Iterable[ActivityRecord], query: str, scope: str = "all") -> List[Dict[str, Any]]:
    """
    Case-insensitive substring search over operator, equipment and heading.
    Returns one entry per date: {date, n, scopes: {operator, equipment, heading}}.
    """
    q = to_text(query).lower()
    scope = to_text(scope).lower() or "all"
    if scope not in SEARCH_SCOPES:
        raise ValueError(f"scope must be one of {SEARCH_SCOPES}")
    if not q:
        return []

    by_date: Dict[str, Dict[str, Any]] = {}
    for r in records:
        p = r.payload
        hits = {
            "operator": q in to_text(r.user_name).lower() or q in to_text(r.user_email).lower(),
            "equipment": q in _equipment_text(p).lower(),
            "heading": q in _heading_text(p).lower(),
        }
        ok = any(hits.values()) if scope == "all" else hits[scope]
        if not ok:
            continue
        date = to_text(r.date)
        entry = by_date.setdefault(date, {"date": date, "n": 0, "scopes": {"operator": 0, "equipment": 0, "heading": 0}})
        entry["n"] += 1
        for name, hit in hits.items():
            if hit:
                entry["scopes"][name] += 1
    return [by_date[d] for d in sorted(by_date)]


_DIMENSION_KEYS = ("Source", "From", "To")


def flatten_activity_metrics(records: Iterable[ActivityRecord]) -> List[Dict[str, Any]]:
    """
    Long-format export. One row per record x values metric (metric_value is the
    number when the text is numeric, else None; metric_text always set), plus
    one row per distinct load weight with its load_count.
    """
    rows: List[Dict[str, Any]] = []
    for r in records:
        p = r.payload
        v = values_of(p)
        activity, sub = bucket_names(record_payload(r))
        base = {
            "task_id": r.id,
            "shift_id": r.shift_id,
            "date": to_text(r.date),
            "dn": to_text(r.dn),
            "site": to_text(r.site),
            "user_email": to_text(r.user_email),
            "user_name": to_text(r.user_name),
            "activity": activity,
            "sub_activity": sub,
            "equipment": to_text(p.get("equipment")) or None,
            "location": to_text(p.get("location")) or None,
            "source": to_text(v.get("Source")) or None,
            "from_location": to_text(v.get("From")) or None,
            "to_location": to_text(v.get("To")) or None,
        }
        for key, raw in v.items():
            if key in _DIMENSION_KEYS:
                continue
            rows.append(dict(
                base,
                metric_key=str(key),
                metric_value=parse_float(raw) if is_numeric_text(raw) else None,
                metric_text="" if raw is None else str(raw),
                task_item_type="metric",
                load_count=None,
            ))

        counts: "OrderedDict[float, int]" = OrderedDict()
        for load in p.get("loads") or []:
            w = load.get("weight", load.get("Weight"))
            if is_numeric_text(w):
                wf = float(parse_float(w))
                counts[wf] = counts.get(wf, 0) + 1
        for weight, n in counts.items():
            rows.append(dict(
                base,
                metric_key="Load Weight",
                metric_value=weight,
                metric_text=str(weight),
                task_item_type="load_weight",
                load_count=n,
            ))
    return rows


__all__ = [
    "KEY_SEP",
    "SEARCH_SCOPES",
    "TotalsTree",
    "bucket_names",
    "compute_totals_by_sub",
    "day_status",
    "filter_records",
    "flatten_activity_metrics",
    "flatten_totals",
    "record_payload",
    "search_activities",
    "site_totals",
    "totals_by_shift",
    "totals_for_records",
]
