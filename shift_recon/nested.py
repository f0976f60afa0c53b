# shift_recon/nested.py
"""
Nested-list reconciler for truck loads and drill holes.

Every editor clones the payload, mutates the clone and recomputes the parent
aggregates, so the caller's payload is never touched:
 - loads -> values.Trucks = len(loads), values["Tonnes Hauled"] = sum of load weights
 - holes -> values[bucket] = sum of the numeric part of each hole's length_m

Out-of-range indexes and unknown buckets are logged and return an unchanged clone.
"""
import copy
import logging
from typing import Any, Dict, Optional

from shift_recon.payload import HOLE_BUCKETS, normalize, strip_numeric, to_number

log = logging.getLogger("nested_reconciler")


def _num_out(x: float):
    """Integral floats are stored as ints so payloads stay tidy on the wire."""
    return int(x) if float(x).is_integer() else x


def _values(p: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(p.get("values"), dict):
        p["values"] = {}
    return p["values"]


def recompute_loads(p: Dict[str, Any]) -> Dict[str, Any]:
    loads = p.get("loads")
    if not isinstance(loads, list):
        return p
    v = _values(p)
    v["Trucks"] = len(loads)
    v["Tonnes Hauled"] = _num_out(sum(to_number(l.get("weight", l.get("Weight"))) for l in loads))
    return p


def recompute_holes(p: Dict[str, Any]) -> Dict[str, Any]:
    holes = p.get("holes")
    if not isinstance(holes, dict):
        return p
    v = _values(p)
    for bucket in HOLE_BUCKETS:
        if bucket not in holes and bucket not in v:
            continue
        rows = holes.get(bucket) or []
        v[bucket] = _num_out(sum(strip_numeric(h.get("length_m")) for h in rows))
    return p


def reconcile_derived(payload: Any) -> Dict[str, Any]:
    """Normalised clone with every nested-derived field recomputed. Idempotent."""
    p = normalize(payload)
    if not p:
        return p
    recompute_loads(p)
    recompute_holes(p)
    return p


def _clone(payload: Any) -> Dict[str, Any]:
    return copy.deepcopy(normalize(payload))


# ---------- Loads ----------
def add_load(payload: Any, weight: Any = 0, time_s: Optional[float] = None, kind: Optional[str] = None) -> Dict[str, Any]:
    p = _clone(payload)
    load: Dict[str, Any] = {"weight": _num_out(to_number(weight))}
    if time_s is not None:
        load["time_s"] = time_s
    if kind is not None:
        load["kind"] = kind
    p.setdefault("loads", []).append(load)
    return recompute_loads(p)


def set_load_weight(payload: Any, idx: int, weight: Any) -> Dict[str, Any]:
    p = _clone(payload)
    loads = p.get("loads") or []
    if not 0 <= idx < len(loads):
        log.warning("set_load_weight: index %s out of range (%d loads)", idx, len(loads))
        return p
    loads[idx]["weight"] = _num_out(to_number(weight))
    return recompute_loads(p)


def delete_load(payload: Any, idx: int) -> Dict[str, Any]:
    p = _clone(payload)
    loads = p.get("loads") or []
    if not 0 <= idx < len(loads):
        log.warning("delete_load: index %s out of range (%d loads)", idx, len(loads))
        return p
    del loads[idx]
    return recompute_loads(p)


# ---------- Holes ----------
def _known_bucket(bucket: str, op: str) -> bool:
    if bucket not in HOLE_BUCKETS:
        log.warning("%s: unknown hole bucket %r", op, bucket)
        return False
    return True


def add_hole(payload: Any, bucket: str, hole: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    p = _clone(payload)
    if not _known_bucket(bucket, "add_hole"):
        return p
    row = {"ring_id": "", "hole_id": "", "diameter": "", "length_m": ""}
    row.update(hole or {})
    p.setdefault("holes", {}).setdefault(bucket, []).append(row)
    return recompute_holes(p)


def _hole_rows(p: Dict[str, Any], bucket: str):
    holes = p.get("holes")
    return holes.get(bucket) if isinstance(holes, dict) else None


def set_hole_field(payload: Any, bucket: str, idx: int, patch: Dict[str, Any]) -> Dict[str, Any]:
    p = _clone(payload)
    if not _known_bucket(bucket, "set_hole_field"):
        return p
    rows = _hole_rows(p, bucket) or []
    if not 0 <= idx < len(rows):
        log.warning("set_hole_field: index %s out of range in %s (%d holes)", idx, bucket, len(rows))
        return p
    rows[idx].update(patch or {})
    return recompute_holes(p)


def move_hole_bucket(payload: Any, src: str, dst: str, idx: int) -> Dict[str, Any]:
    """Remove hole idx from src and append it to dst in one step; total length is conserved."""
    p = _clone(payload)
    if not (_known_bucket(src, "move_hole_bucket") and _known_bucket(dst, "move_hole_bucket")):
        return p
    rows = _hole_rows(p, src) or []
    if not 0 <= idx < len(rows):
        log.warning("move_hole_bucket: index %s out of range in %s (%d holes)", idx, src, len(rows))
        return p
    if src == dst:
        return recompute_holes(p)
    hole = rows.pop(idx)
    p["holes"].setdefault(dst, []).append(hole)
    return recompute_holes(p)


def delete_hole(payload: Any, bucket: str, idx: int) -> Dict[str, Any]:
    p = _clone(payload)
    if not _known_bucket(bucket, "delete_hole"):
        return p
    rows = _hole_rows(p, bucket) or []
    if not 0 <= idx < len(rows):
        log.warning("delete_hole: index %s out of range in %s (%d holes)", idx, bucket, len(rows))
        return p
    del rows[idx]
    return recompute_holes(p)


def total_hole_length(payload: Any) -> float:
    p = normalize(payload)
    holes = p.get("holes") or {}
    return sum(strip_numeric(h.get("length_m")) for rows in holes.values() for h in rows)


NESTED_OPS = {
    "add_load": add_load,
    "set_load_weight": set_load_weight,
    "delete_load": delete_load,
    "add_hole": add_hole,
    "set_hole_field": set_hole_field,
    "move_hole_bucket": move_hole_bucket,
    "delete_hole": delete_hole,
}


__all__ = [
    "NESTED_OPS",
    "add_hole",
    "add_load",
    "delete_hole",
    "delete_load",
    "move_hole_bucket",
    "reconcile_derived",
    "recompute_holes",
    "recompute_loads",
    "set_hole_field",
    "set_load_weight",
    "total_hole_length",
]
