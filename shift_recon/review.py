# shift_recon/review.py
"""
HTTP surface of the aggregation / reconciliation engine.

All endpoints are pure: they take payloads or records in the request body
and return derived data. Persistence stays with the site-admin service.

- POST /totals      -> totals tree + flattened rows (+ per-shift trees for records)
- POST /kpis        -> shift KPI summary
- POST /group-key   -> resolved group key for one payload
- POST /diff        -> per-field diff cells + group diff
- POST /pair        -> validated id -> live id pairing
- POST /reconcile   -> payload with nested-derived fields recomputed (optionally after a nested edit)
- POST /search      -> validation search hits per date
- POST /export      -> long-format metric rows
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from shift_recon import load_rules
from shift_recon.grouping import allowed_location_types, group_role, pair_records, resolve_group_key
from shift_recon.kpis import ShiftKpis, compute_kpis
from shift_recon.load_rules import MetricRuleSpec
from shift_recon.nested import NESTED_OPS, reconcile_derived
from shift_recon.overlay import DiffCell, GroupDiff, diff_record, group_diff
from shift_recon.payload import activity_of, normalize, parse_records, sub_activity_of
from shift_recon.totals import (
    KEY_SEP,
    compute_totals_by_sub,
    flatten_activity_metrics,
    flatten_totals,
    search_activities,
    totals_by_shift,
    totals_for_records,
)

log = logging.getLogger("uvicorn.error")
router = APIRouter()


# ---------- Request / Response Models ----------
class TotalsRequest(BaseModel):
    payloads: Optional[List[Any]] = None
    records: Optional[List[Dict[str, Any]]] = None
    dn: Optional[str] = None
    site: Optional[str] = None
    shift_ids: Optional[List[int]] = None
    user: Optional[str] = None


class TotalsResult(BaseModel):
    totals: Dict[str, Dict[str, Dict[str, float]]]
    rows: List[Dict[str, Any]]
    by_shift: Optional[Dict[str, Dict[str, Dict[str, Dict[str, float]]]]] = None
    details: Optional[Dict[str, Any]] = None


class KpiRequest(BaseModel):
    payloads: List[Any] = []


class GroupKeyRequest(BaseModel):
    activity: Optional[str] = None
    sub_activity: Optional[str] = None
    payload: Any = None
    field: Optional[str] = None


class GroupKeyResult(BaseModel):
    activity: str
    role: str
    group_key: str
    allowed_location_types: List[str]


class DiffRequest(BaseModel):
    record: Optional[Dict[str, Any]] = None
    baseline: Any = None
    current: Any = None
    fields: Optional[List[str]] = None


class DiffResult(BaseModel):
    cells: List[DiffCell]
    changed: List[str]
    group: Optional[GroupDiff] = None


class PairRequest(BaseModel):
    validated: List[Dict[str, Any]] = []
    live: List[Dict[str, Any]] = []


class ReconcileRequest(BaseModel):
    payload: Any = None
    op: Optional[str] = None
    args: Dict[str, Any] = {}


class SearchRequest(BaseModel):
    records: List[Dict[str, Any]] = []
    query: str = ""
    scope: str = "all"


def _rule_table(request: Request) -> Dict[str, MetricRuleSpec]:
    table = getattr(request.app.state, "rule_table", None)
    return table if table is not None else load_rules.RULE_TABLE


# ---------- Endpoints ----------
@router.post("/totals", response_model=TotalsResult)
def totals(payload: TotalsRequest, request: Request):
    table = _rule_table(request)
    details: Dict[str, Any] = {"errors": []}
    by_shift = None
    try:
        if payload.records is not None:
            records = parse_records(payload.records)
            filters = {
                "dn": payload.dn,
                "site": payload.site,
                "shift_ids": payload.shift_ids,
                "user": payload.user,
            }
            tree = totals_for_records(records, None, table, **filters)
            by_shift = {
                KEY_SEP.join(k): v
                for k, v in totals_by_shift(records, None, table).items()
            }
        else:
            tree = compute_totals_by_sub(payload.payloads or [], table)
    except Exception as e:
        log.exception("Totals computation failed: %s", e)
        details["errors"].append(str(e))
        tree = {}
    return TotalsResult(totals=tree, rows=flatten_totals(tree), by_shift=by_shift, details=details)


@router.post("/kpis", response_model=ShiftKpis)
def kpis(payload: KpiRequest):
    return compute_kpis(payload.payloads)


@router.post("/group-key", response_model=GroupKeyResult)
def group_key(payload: GroupKeyRequest, request: Request):
    table = _rule_table(request)
    # accepts a full payload or a bare values map
    p = normalize(payload.payload)
    activity = payload.activity or activity_of(p)
    if not activity:
        raise HTTPException(status_code=422, detail="activity is required")
    sub = payload.sub_activity or sub_activity_of(p)
    return GroupKeyResult(
        activity=activity,
        role=group_role(activity, table),
        group_key=resolve_group_key(activity, p, table),
        allowed_location_types=allowed_location_types(activity, sub, payload.field or ""),
    )


@router.post("/diff", response_model=DiffResult)
def diff(payload: DiffRequest, request: Request):
    table = _rule_table(request)
    baseline = payload.baseline
    rec = None
    if payload.record is not None:
        records = parse_records([payload.record])
        if not records:
            raise HTTPException(status_code=422, detail="record is not a valid activity row")
        rec = records[0]
        if baseline is None:
            baseline = rec.payload_json
    cells = diff_record(baseline, payload.current, payload.fields)
    group = group_diff(rec, baseline, payload.current, table) if rec is not None else None
    return DiffResult(cells=cells, changed=[c.path for c in cells if c.changed], group=group)


@router.post("/pair")
def pair(payload: PairRequest, request: Request):
    table = _rule_table(request)
    pairs = pair_records(parse_records(payload.validated), parse_records(payload.live), table)
    return {"pairs": {str(k): v for k, v in pairs.items()}}


@router.post("/reconcile")
def reconcile(payload: ReconcileRequest):
    if payload.op is None:
        return {"payload": reconcile_derived(payload.payload)}
    fn = NESTED_OPS.get(payload.op)
    if fn is None:
        raise HTTPException(status_code=404, detail=f"Unknown nested operation '{payload.op}'")
    try:
        updated = fn(payload.payload, **payload.args)
    except TypeError as e:
        raise HTTPException(status_code=422, detail=f"Bad arguments for {payload.op}: {e}")
    return {"payload": reconcile_derived(updated)}


@router.post("/search")
def search(payload: SearchRequest):
    try:
        results = search_activities(parse_records(payload.records), payload.query, payload.scope)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"ok": True, "results": results}


@router.post("/export")
def export(records: List[Dict[str, Any]]):
    return {"rows": flatten_activity_metrics(parse_records(records))}
