# shift_recon/grouping.py
"""
Group key resolution and validated/live record pairing.

The group key of a payload depends on its activity:
 - Hauling, Loading   -> source
 - Backfilling        -> to (destination)
 - everything else    -> location

A non-empty top-level field for the role wins; otherwise the values map is
scanned through the role's aliases in order and the first non-empty wins.

Pairing a validated record with the live record it was copied from is a
best-effort heuristic: records carry no stable link, so we match on
(user, dn, activity, sub_activity, group key) first and fall back to the
same key without the group term.
"""
import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from shift_recon.load_rules import MetricRuleSpec, rule_for
from shift_recon.payload import ActivityRecord, to_text

log = logging.getLogger("grouping")

LOCATION_ALIASES = ("Location", "location", "Heading", "heading", "Stope", "stope", "Area", "area")
SOURCE_ALIASES = ("Source", "source", "From", "from")
TO_ALIASES = ("To", "to")

ROLE_ALIASES: Dict[str, Tuple[str, ...]] = {
    "location": LOCATION_ALIASES + TO_ALIASES,
    "source": SOURCE_ALIASES,
    "to": TO_ALIASES + LOCATION_ALIASES,
}

_DEFAULT_ROLES = {"hauling": "source", "loading": "source", "backfilling": "to"}


def group_role(activity: str, table: Optional[Dict[str, MetricRuleSpec]] = None) -> str:
    rule = rule_for(activity, table)
    if rule.id.startswith("default:"):
        return _DEFAULT_ROLES.get(str(activity or "").strip().lower(), "location")
    return rule.group_role


def _aliases(activity: str, table: Optional[Dict[str, MetricRuleSpec]]) -> Tuple[str, ...]:
    rule = rule_for(activity, table)
    if rule.group_aliases:
        return tuple(rule.group_aliases)
    return ROLE_ALIASES[group_role(activity, table)]


def resolve_group_key(activity: str, payload_or_values: Any, table: Optional[Dict[str, MetricRuleSpec]] = None) -> str:
    """
    Accepts either a full payload (with `values` and optional top-level
    location/source/to) or a bare values map.
    """
    obj = payload_or_values if isinstance(payload_or_values, dict) else {}
    if isinstance(obj.get("values"), dict):
        values = obj["values"]
        top = obj.get(group_role(activity, table))
        if to_text(top):
            return to_text(top)
    else:
        values = obj

    for alias in _aliases(activity, table):
        v = to_text(values.get(alias))
        if v:
            return v
    return ""


def rec_activity(rec: ActivityRecord, payload: Dict[str, Any]) -> str:
    return to_text(payload.get("activity")) or to_text(rec.activity) or "(No Activity)"


def rec_sub_activity(rec: ActivityRecord, payload: Dict[str, Any]) -> str:
    return (
        to_text(payload.get("sub"))
        or to_text(payload.get("sub_activity"))
        or to_text(rec.sub_activity)
        or "(No Sub Activity)"
    )


def pairing_key(rec: ActivityRecord, with_group: bool = True,
                table: Optional[Dict[str, MetricRuleSpec]] = None) -> Tuple[str, ...]:
    p = rec.payload
    base = (rec.user_key, to_text(rec.dn), rec_activity(rec, p), rec_sub_activity(rec, p))
    if with_group:
        return base + (resolve_group_key(base[2], p, table),)
    return base


def pair_records(validated: Iterable[ActivityRecord], live: Iterable[ActivityRecord],
                 table: Optional[Dict[str, MetricRuleSpec]] = None) -> Dict[int, Optional[int]]:
    """
    Map each validated record id to the id of the live record it most likely came from.

    Strict pass on (user, dn, activity, sub_activity, group key), then a loose
    pass without the group term over whatever live records are still unused.
    Within a candidate list an exact payload match is preferred over the
    next unused candidate. Unpaired records map to None.
    """
    validated = list(validated)
    live = list(live)
    used: set = set()
    out: Dict[int, Optional[int]] = OrderedDict((v.id, None) for v in validated)

    for with_group in (True, False):
        buckets: Dict[Tuple[str, ...], List[ActivityRecord]] = {}
        for rec in live:
            if rec.id in used:
                continue
            buckets.setdefault(pairing_key(rec, with_group, table), []).append(rec)

        for v in validated:
            if out[v.id] is not None:
                continue
            candidates = [c for c in buckets.get(pairing_key(v, with_group, table), []) if c.id not in used]
            if not candidates:
                continue
            v_payload = v.payload
            chosen = next((c for c in candidates if c.payload == v_payload), candidates[0])
            used.add(chosen.id)
            out[v.id] = chosen.id

    unpaired = [vid for vid, lid in out.items() if lid is None]
    if unpaired:
        log.debug("No live counterpart for validated records %s; using their own payloads", unpaired)
    return dict(out)


def baseline_payload(validated_rec: ActivityRecord, live_by_id: Dict[int, ActivityRecord],
                     pairing: Dict[int, Optional[int]]) -> Dict[str, Any]:
    """Paired live payload when one exists, else the validated record's original payload."""
    live_id = pairing.get(validated_rec.id)
    if live_id is not None and live_id in live_by_id:
        return live_by_id[live_id].payload
    return validated_rec.payload


def allowed_location_types(activity: str, sub_activity: str, field_name: str = "") -> List[str]:
    """Location kinds (Heading / Stope / Stockpile) a group field may reference."""
    a = to_text(activity)
    s = to_text(sub_activity)
    f = to_text(field_name)

    if a == "Development":
        if s in ("Face Drilling", "Ground Support", "Rehab", "Service Hole"):
            return ["Heading"]
        if s == "Stope":
            return ["Stope"]
    if a in ("Charging", "Loading"):
        if s == "Development":
            return ["Heading"]
        if s == "Production":
            return ["Stope"]
    if a == "Hauling" and s in ("Development", "Production"):
        if f == "Source":
            return ["Heading"] if s == "Development" else ["Stope"]
        return ["Stockpile"]
    return ["Heading", "Stope", "Stockpile"]


def distinct_count(keys: Iterable[str]) -> int:
    return len({to_text(k) for k in keys if to_text(k)})


__all__ = [
    "ROLE_ALIASES",
    "allowed_location_types",
    "baseline_payload",
    "distinct_count",
    "group_role",
    "pair_records",
    "pairing_key",
    "rec_activity",
    "rec_sub_activity",
    "resolve_group_key",
]
