# shift_recon/main.py
"""
Shift activity aggregation engine - FastAPI main file.

Loads metric rules from shift_recon/rules, exposes:
- GET  /               -> "Aggregation Engine Ready!" + rules count
- GET  /rules          -> list rule summaries
- GET  /rules/{id}     -> full rule detail
- POST /rules/reload   -> reload rules from disk
- the engine endpoints from review.py (/totals, /kpis, /group-key, /diff, /pair, /reconcile, ...)
"""

import logging
from pathlib import Path
from typing import List, Dict, Any, Optional, Tuple
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from shift_recon.load_rules import MetricRuleSpec, build_rule_table, load_rules_from_folder
from shift_recon.review import router as review_router

log = logging.getLogger("uvicorn.error")

# Path to shift_recon/rules folder
BASE_DIR = Path(__file__).resolve().parent
RULES_DIR = BASE_DIR / "rules"


# ---------- RESPONSE MODELS ----------
class RuleSummary(BaseModel):
    id: str
    title: Optional[str] = None
    activity: Optional[str] = None
    formula: Optional[str] = None
    enabled: Optional[bool] = None
    version: Optional[str] = None


class RuleDetail(RuleSummary):
    group_role: Optional[str] = None
    group_aliases: Optional[List[str]] = None
    never_summed: Optional[List[str]] = None
    clamps: Optional[Dict[str, Dict[str, List[float]]]] = None
    notes: Optional[Any] = None


def _load() -> Tuple[Dict[str, MetricRuleSpec], List[Dict[str, Any]]]:
    try:
        return load_rules_from_folder(RULES_DIR)
    except Exception as e:
        log.exception("load_rules_from_folder failed: %s", e)
        return {}, [{"file": "loader_exception", "error": str(e)}]


def _install(app: FastAPI, rules_map: Dict[str, MetricRuleSpec], invalid_list: List[Dict[str, Any]]) -> None:
    app.state.rules = rules_map
    app.state.rule_table = build_rule_table(rules_map)
    app.state.invalid_rules = invalid_list


# ---------- LIFESPAN STARTUP ----------
@asynccontextmanager
async def _lifespan(app: FastAPI):
    rules_map, invalid_list = _load()
    _install(app, rules_map, invalid_list)
    log.info("Rule loader startup: %d valid, %d invalid", len(rules_map), len(invalid_list))
    yield


app = FastAPI(title="Shift Activity Aggregation Engine", lifespan=_lifespan)

# Engine endpoints
app.include_router(review_router)


def _rules_map() -> Dict[str, MetricRuleSpec]:
    rules_map = getattr(app.state, "rules", None)
    if rules_map is None:
        # app used without lifespan (e.g. a bare TestClient): fall back to the eager-loaded table
        from shift_recon import load_rules
        rules_map = load_rules.VALID_RULES
    return rules_map


# ---------- ROOT ----------
@app.get("/")
def root():
    return {
        "message": "Aggregation Engine Ready!",
        "rules_loaded": len(_rules_map()),
    }


# ---------- LIST RULES ----------
@app.get("/rules", response_model=List[RuleSummary])
def get_rules():
    return [
        RuleSummary(
            id=r.id,
            title=r.title,
            activity=r.activity,
            formula=r.formula,
            enabled=r.enabled,
            version=r.version,
        )
        for r in sorted(_rules_map().values(), key=lambda x: x.id)
    ]


# ---------- GET RULE DETAIL ----------
@app.get("/rules/{rule_id}", response_model=RuleDetail)
def get_rule_detail(rule_id: str):
    rule = _rules_map().get(rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail=f"Rule '{rule_id}' not found")
    return RuleDetail(**rule.model_dump())


# ---------- RELOAD RULES ----------
@app.post("/rules/reload")
def reload_rules():
    rules_map, invalid_list = _load()
    _install(app, rules_map, invalid_list)
    return {
        "loaded": len(rules_map),
        "invalid": invalid_list,
    }
