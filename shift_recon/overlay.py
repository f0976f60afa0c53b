# shift_recon/overlay.py
"""
Edit overlay and diff engine.

The overlay maps record id -> edited payload and lives only as long as a
review session. Persisted records are never mutated: every edit clones the
effective payload, applies the change, recomputes nested-derived fields and
stores the clone. Absence from the overlay means "use the persisted payload".
"""
import copy
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel

from shift_recon.grouping import rec_activity, rec_sub_activity, resolve_group_key
from shift_recon.load_rules import MetricRuleSpec, rule_for
from shift_recon.nested import reconcile_derived
from shift_recon.payload import ActivityRecord, is_numeric_text, normalize, parse_float, to_text
from shift_recon.totals import TotalsTree, flatten_totals

log = logging.getLogger("edit_overlay")

NUMERIC_TOLERANCE = 1e-9
VALUES_PREFIX = "values."

_PATH_TOKEN = re.compile(r'([^.\[\]]+)|\[(\d+)\]')
_INT_LITERAL = re.compile(r'^\s*[+-]?\d+\s*$')

Token = Union[str, int]


# ---------- Coercion & paths ----------
def coerce_raw(raw: Any) -> Any:
    """
    Editor text back to a JSON scalar:
    "" -> "", "null" -> None, "true"/"false" -> bool, numbers -> int/float, anything else unchanged.
    """
    if not isinstance(raw, str):
        return raw
    if raw == "":
        return ""
    if raw == "null":
        return None
    if raw == "true":
        return True
    if raw == "false":
        return False
    if is_numeric_text(raw):
        if _INT_LITERAL.match(raw):
            try:
                return int(raw)
            except ValueError:
                # past the interpreter's int digit limit
                log.warning("coerce_raw: %d-digit integer kept as float", len(raw.strip()))
        num = parse_float(raw)
        if num is not None:
            return num
    return raw


def path_tokens(path: str) -> List[Token]:
    """Supports a.b[0].c"""
    tokens: List[Token] = []
    for m in _PATH_TOKEN.finditer(path or ""):
        if m.group(1):
            tokens.append(m.group(1))
        else:
            tokens.append(int(m.group(2)))
    return tokens


def _ensure_index(lst: list, idx: int) -> None:
    while len(lst) <= idx:
        lst.append(None)


def set_deep(root: Any, path: str, raw: Any) -> Dict[str, Any]:
    tokens = path_tokens(path)
    out = copy.deepcopy(root) if isinstance(root, dict) else {}
    if not tokens:
        return out

    cur: Any = out
    for i, t in enumerate(tokens[:-1]):
        nxt = tokens[i + 1]
        fresh: Any = [] if isinstance(nxt, int) else {}
        if isinstance(t, int):
            if not isinstance(cur, list):
                log.warning("set_deep: %s does not address a list at [%d]", path, t)
                return copy.deepcopy(root) if isinstance(root, dict) else {}
            _ensure_index(cur, t)
            if cur[t] is None:
                cur[t] = fresh
            cur = cur[t]
        else:
            if not isinstance(cur, dict):
                log.warning("set_deep: %s does not address an object at %r", path, t)
                return copy.deepcopy(root) if isinstance(root, dict) else {}
            if cur.get(t) is None:
                cur[t] = fresh
            cur = cur[t]

    leaf = tokens[-1]
    value = coerce_raw(raw)
    if isinstance(leaf, int):
        if not isinstance(cur, list):
            log.warning("set_deep: %s does not address a list at [%d]", path, leaf)
            return copy.deepcopy(root) if isinstance(root, dict) else {}
        _ensure_index(cur, leaf)
        cur[leaf] = value
    elif isinstance(cur, dict):
        cur[leaf] = value
    else:
        log.warning("set_deep: %s does not address an object at %r", path, leaf)
        return copy.deepcopy(root) if isinstance(root, dict) else {}
    return out


def set_values_key(payload: Any, metric_key: str, raw: Any) -> Dict[str, Any]:
    """payload.values[metric_key] = coerce(raw); the key is used literally ("No. of Bolts")."""
    out = copy.deepcopy(payload) if isinstance(payload, dict) else {}
    if not isinstance(out.get("values"), dict):
        out["values"] = {}
    out["values"][metric_key] = coerce_raw(raw)
    return out


def apply_clamp(payload: Dict[str, Any], field: str, rule: MetricRuleSpec) -> Dict[str, Any]:
    values = payload.get("values")
    if not isinstance(values, dict) or field not in values:
        return payload
    sub = to_text(payload.get("sub")) or to_text(payload.get("sub_activity"))
    bounds = rule.clamp_for(sub, field)
    value = values[field]
    if bounds is None or isinstance(value, bool) or not is_numeric_text(value):
        return payload
    lo, hi = bounds
    num = parse_float(value)
    clamped = min(max(num, lo), hi)
    if clamped != num:
        log.info("Clamped %s %s from %s to %s", rule.activity, field, num, clamped)
        values[field] = int(clamped) if float(clamped).is_integer() else clamped
    return payload


# ---------- Overlay store ----------
class EditOverlay:
    """
    Per-session store of edited payloads.

    load()     replace the persisted records and drop every edit
    mutate()   clone + change + recompute + store for one record
    flush()    edits ready for the bulk-save call (kept until mark_saved)
    discard()  drop one edit, or all of them
    """

    def __init__(self, records: Optional[Iterable[ActivityRecord]] = None,
                 table: Optional[Dict[str, MetricRuleSpec]] = None):
        self.table = table
        self.records: Dict[int, ActivityRecord] = {}
        self.edits: Dict[int, Dict[str, Any]] = {}
        if records is not None:
            self.load(records)

    def load(self, records: Iterable[ActivityRecord]) -> None:
        self.records = {r.id: r for r in records}
        self.edits = {}

    def lookup(self, record_id: int) -> Optional[Dict[str, Any]]:
        """Edited payload, or None when the record has no pending edit."""
        edit = self.edits.get(record_id)
        return copy.deepcopy(edit) if edit is not None else None

    def is_edited(self, record_id: int) -> bool:
        return record_id in self.edits

    def original(self, record_id: int) -> Dict[str, Any]:
        rec = self.records.get(record_id)
        if rec is None:
            raise KeyError(record_id)
        return rec.payload

    def effective(self, record_id: int) -> Dict[str, Any]:
        edited = self.lookup(record_id)
        return edited if edited is not None else self.original(record_id)

    def mutate(self, record_id: int, fn: Callable[[Dict[str, Any]], Dict[str, Any]]) -> Dict[str, Any]:
        current = self.effective(record_id)
        changed = fn(copy.deepcopy(current))
        updated = reconcile_derived(changed if changed is not None else current)
        self.edits[record_id] = updated
        return copy.deepcopy(updated)

    def set_field(self, record_id: int, field_path: str, raw: Any) -> Dict[str, Any]:
        if field_path.startswith(VALUES_PREFIX):
            key = field_path[len(VALUES_PREFIX):]
            rec = self.records.get(record_id)

            def change(p):
                p = set_values_key(p, key, raw)
                activity = rec_activity(rec, p) if rec is not None else to_text(p.get("activity"))
                return apply_clamp(p, key, rule_for(activity, self.table))
        else:
            def change(p):
                return set_deep(p, field_path, raw)
        return self.mutate(record_id, change)

    def pending_edits(self) -> List[Dict[str, Any]]:
        return [{"id": rid, "payload_json": copy.deepcopy(p)} for rid, p in sorted(self.edits.items())]

    def flush(self) -> List[Dict[str, Any]]:
        return self.pending_edits()

    def mark_saved(self, record_ids: Optional[Iterable[int]] = None) -> None:
        """Saved payloads become the new baseline of their records."""
        ids = list(self.edits) if record_ids is None else list(record_ids)
        for rid in ids:
            payload = self.edits.pop(rid, None)
            if payload is not None and rid in self.records:
                self.records[rid] = self.records[rid].model_copy(update={"payload_json": payload})

    def discard(self, record_id: Optional[int] = None) -> None:
        if record_id is None:
            self.edits.clear()
        else:
            self.edits.pop(record_id, None)

    def forget(self, record_id: int) -> None:
        """Record was hard-deleted."""
        self.edits.pop(record_id, None)
        self.records.pop(record_id, None)


# ---------- Diff ----------
class DiffCell(BaseModel):
    path: str
    baseline: Any = None
    current: Any = None
    applicable: bool = True
    changed: bool = False


class GroupDiff(BaseModel):
    activity_before: str
    activity_after: str
    sub_activity_before: str
    sub_activity_after: str
    group_before: str
    group_after: str
    activity_changed: bool = False
    sub_activity_changed: bool = False
    group_changed: bool = False


class TotalsDiffRow(BaseModel):
    k: str
    activity: str
    sub: str
    metric: str
    before: float = 0.0
    after: float = 0.0


def values_differ(a: Any, b: Any, tol: float = NUMERIC_TOLERANCE) -> bool:
    """Numeric (or numeric-looking) pairs compare within tol; everything else compares exactly."""
    if is_numeric_text(a) and is_numeric_text(b):
        return abs(parse_float(a) - parse_float(b)) > tol
    return a != b


_MISSING = object()


def flatten_payload(obj: Any, prefix: str = "") -> Dict[str, Any]:
    """Leaf paths of a payload: values.No. of Bolts, loads[0].weight, holes.Redrills[1].length_m"""
    out: Dict[str, Any] = {}
    if isinstance(obj, dict):
        if not obj and prefix:
            out[prefix] = {}
        for k, v in obj.items():
            out.update(flatten_payload(v, f"{prefix}.{k}" if prefix else str(k)))
    elif isinstance(obj, list):
        if not obj and prefix:
            out[prefix] = []
        for i, v in enumerate(obj):
            out.update(flatten_payload(v, f"{prefix}[{i}]"))
    else:
        out[prefix or "(root)"] = obj
    return out


def diff_record(baseline: Any, current: Any, fields: Optional[Iterable[str]] = None) -> List[DiffCell]:
    """
    Compare each displayed field of current against baseline. Fields default to
    every leaf path of either side. A field missing from both is inapplicable.
    """
    base_flat = flatten_payload(normalize(baseline))
    cur_flat = flatten_payload(normalize(current))
    if fields is None:
        fields = list(base_flat) + [k for k in cur_flat if k not in base_flat]

    cells = []
    for path in fields:
        b = base_flat.get(path, _MISSING)
        c = cur_flat.get(path, _MISSING)
        if b is _MISSING and c is _MISSING:
            cells.append(DiffCell(path=path, applicable=False))
            continue
        changed = (b is _MISSING) != (c is _MISSING) or values_differ(b, c)
        cells.append(DiffCell(
            path=path,
            baseline=None if b is _MISSING else b,
            current=None if c is _MISSING else c,
            changed=changed,
        ))
    return cells


def group_diff(rec: ActivityRecord, baseline: Any, current: Any,
               table: Optional[Dict[str, MetricRuleSpec]] = None) -> GroupDiff:
    b = normalize(baseline)
    c = normalize(current)
    act_b, act_c = rec_activity(rec, b), rec_activity(rec, c)
    sub_b, sub_c = rec_sub_activity(rec, b), rec_sub_activity(rec, c)
    grp_b, grp_c = resolve_group_key(act_b, b, table), resolve_group_key(act_c, c, table)
    return GroupDiff(
        activity_before=act_b,
        activity_after=act_c,
        sub_activity_before=sub_b,
        sub_activity_after=sub_c,
        group_before=grp_b,
        group_after=grp_c,
        activity_changed=act_b != act_c,
        sub_activity_changed=sub_b != sub_c,
        group_changed=grp_b != grp_c,
    )


def diff_totals(before: TotalsTree, after: TotalsTree, tol: float = NUMERIC_TOLERANCE) -> List[TotalsDiffRow]:
    """Rows keyed activity|||sub|||metric whose value differs; a metric missing on one side counts as 0."""
    b_rows = {r["k"]: r for r in flatten_totals(before)}
    a_rows = {r["k"]: r for r in flatten_totals(after)}
    out = []
    for k in list(b_rows) + [k for k in a_rows if k not in b_rows]:
        row = b_rows.get(k) or a_rows[k]
        bv = b_rows[k]["value"] if k in b_rows else 0.0
        av = a_rows[k]["value"] if k in a_rows else 0.0
        if abs(bv - av) > tol:
            out.append(TotalsDiffRow(k=k, activity=row["activity"], sub=row["sub"], metric=row["metric"], before=bv, after=av))
    return out


__all__ = [
    "NUMERIC_TOLERANCE",
    "DiffCell",
    "EditOverlay",
    "GroupDiff",
    "TotalsDiffRow",
    "apply_clamp",
    "coerce_raw",
    "diff_record",
    "diff_totals",
    "flatten_payload",
    "group_diff",
    "path_tokens",
    "set_deep",
    "set_values_key",
]
