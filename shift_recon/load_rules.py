# shift_recon/load_rules.py
"""
Loader for the per-activity metric rule table (shift_recon/rules/*.json).

Each rule describes, for one activity:
 - which formula family derives its totals
 - which values fields are input-only and must never be summed directly
 - which semantic role its group key plays (location / source / to) and the alias scan order
 - edit-time numeric clamps per sub-activity

Provides:
 - VALID_RULES: validated rule objects (MetricRuleSpec) keyed by id
 - INVALID_REPORTS: parse/validation errors
 - RULE_TABLE: activity name -> MetricRuleSpec, used by the engine
"""
from pathlib import Path
import json
import logging
from typing import List, Dict, Any, Tuple, Optional
import datetime

from pydantic import BaseModel, ValidationError, field_validator

log = logging.getLogger("rule_loader")
log.setLevel(logging.INFO)

GROUP_ROLES = ("location", "source", "to")


# ---------------------------------------------------------
# MetricRuleSpec Model
# ---------------------------------------------------------
class MetricRuleSpec(BaseModel):
    id: str
    title: str
    activity: str
    formula: str = "generic"
    group_role: str = "location"
    group_aliases: Optional[List[str]] = None
    never_summed: List[str] = []
    # sub_activity (or "*") -> field -> [min, max]
    clamps: Dict[str, Dict[str, List[float]]] = {}
    enabled: bool = True
    version: Optional[str] = None
    notes: Optional[Any] = None

    @field_validator("id", "activity")
    @classmethod
    def _not_empty(cls, v):
        if not v or not isinstance(v, str) or v.strip() == "":
            raise ValueError("must be non-empty string")
        return v.strip()

    @field_validator("group_role")
    @classmethod
    def _known_role(cls, v):
        v = (v or "location").strip().lower()
        if v not in GROUP_ROLES:
            raise ValueError(f"group_role must be one of {GROUP_ROLES}")
        return v

    @field_validator("clamps")
    @classmethod
    def _clamp_pairs(cls, v):
        for sub, fields in (v or {}).items():
            for field, bounds in fields.items():
                if len(bounds) != 2 or bounds[0] > bounds[1]:
                    raise ValueError(f"clamp for {sub}/{field} must be [min, max]")
        return v

    def is_never_summed(self, field: str) -> bool:
        key = str(field or "").strip().lower()
        return any(key == f.strip().lower() for f in self.never_summed)

    def clamp_for(self, sub_activity: str, field: str) -> Optional[Tuple[float, float]]:
        for scope in (sub_activity, "*"):
            bounds = (self.clamps.get(scope) or {}).get(field)
            if bounds:
                return float(bounds[0]), float(bounds[1])
        return None


def default_rule(activity: str) -> MetricRuleSpec:
    """Rule used for activities without a rule file: generic sums, grouped by location."""
    name = activity or "(No Activity)"
    return MetricRuleSpec(id=f"default:{name}", title=f"{name} (generic sums)", activity=name)


# ---------------------------------------------------------
# Helper: Extract rule objects from mixed JSON formats
# ---------------------------------------------------------
def _iter_rule_objects_from_raw(raw: Any) -> List[Dict[str, Any]]:
    if raw is None:
        return []

    # List of rules
    if isinstance(raw, list):
        return raw

    if isinstance(raw, dict):
        # wrapper { "rules": [ ... ] }
        if "rules" in raw and isinstance(raw["rules"], list):
            return raw["rules"]

        # dict-of-rule-objects keyed by id
        values = list(raw.values())
        if (
            values
            and all(isinstance(v, dict) for v in values)
            and any(("activity" in v or "formula" in v) for v in values)
        ):
            out = []
            for k, v in raw.items():
                vr = dict(v)
                vr.setdefault("id", k)
                out.append(vr)
            return out

        # Single rule
        return [raw]

    return []


def build_rule_table(valid: Dict[str, MetricRuleSpec]) -> Dict[str, MetricRuleSpec]:
    """Index enabled rules by activity name. Later ids win on a clash, with a warning."""
    table: Dict[str, MetricRuleSpec] = {}
    for rid in sorted(valid):
        rule = valid[rid]
        if rule.activity in table:
            log.warning("Activity %s has more than one rule; %s replaces %s", rule.activity, rid, table[rule.activity].id)
        table[rule.activity] = rule
    return table


def rule_for(activity: str, table: Optional[Dict[str, MetricRuleSpec]] = None) -> MetricRuleSpec:
    t = RULE_TABLE if table is None else table
    rule = t.get(activity)
    if rule is None:
        # activity names are free text; tolerate case drift ("hauling" vs "Hauling")
        low = str(activity or "").strip().lower()
        rule = next((r for a, r in t.items() if a.lower() == low), None)
    return rule or default_rule(activity)


# ---------------------------------------------------------
# Main Loader
# ---------------------------------------------------------
def load_rules_from_folder(folder: Path) -> Tuple[Dict[str, MetricRuleSpec], List[Dict[str, Any]]]:
    """
    Loads all rule JSON files from folder
    Returns:
        (VALID_RULES, INVALID_REPORTS)
    AND stores RULE_TABLE at module level.
    """
    valid: Dict[str, MetricRuleSpec] = {}
    invalid: List[Dict[str, Any]] = []

    folder = Path(folder)

    if not folder.exists() or not folder.is_dir():
        log.warning(f"Rules folder does not exist: {folder}")
        globals()["VALID_RULES"] = valid
        globals()["INVALID_REPORTS"] = invalid
        globals()["RULE_TABLE"] = {}
        return valid, invalid

    # Load *.json files deterministically
    for f in sorted(folder.glob("*.json")):
        fname = f.name
        try:
            text = f.read_text(encoding="utf-8")
        except Exception as e:
            invalid.append({"file": fname, "error": f"read_error: {e}"})
            log.error(f"Failed to read {fname}: {e}")
            continue

        try:
            parsed = json.loads(text)
        except Exception as e:
            invalid.append({"file": fname, "error": f"json_parse_error: {e}"})
            log.error(f"JSON parse error in {fname}: {e}")
            continue

        for idx, raw_rule in enumerate(_iter_rule_objects_from_raw(parsed)):
            try:
                r = MetricRuleSpec.model_validate(raw_rule)
                if not r.enabled:
                    log.info(f"Rule {r.id} in {fname} is disabled; skipping")
                    continue
                if r.id in valid:
                    invalid.append({"file": fname, "index": idx, "error": f"duplicate rule id: {r.id}"})
                    log.error(f"Duplicate rule id {r.id} in {fname}")
                    continue
                valid[r.id] = r
                log.info(f"Loaded rule {r.id} ({r.activity}) from {fname}")
            except ValidationError as e:
                invalid.append({"file": fname, "index": idx, "error": f"validation_error: {e.json()}"})
            except Exception as e:
                invalid.append({"file": fname, "index": idx, "error": f"unexpected_error: {e}"})
                log.exception(f"Unexpected error validating rule in {fname}: {e}")

    table = build_rule_table(valid)

    globals()["VALID_RULES"] = valid
    globals()["INVALID_REPORTS"] = invalid
    globals()["RULE_TABLE"] = table
    globals()["LOADED_AT"] = datetime.datetime.now(datetime.timezone.utc).isoformat()

    log.info(f"Rule loader summary: {len(valid)} valid rules, {len(invalid)} invalid, {len(table)} activities")

    return valid, invalid


# ---------------------------------------------------------
# Eager load on import
# ---------------------------------------------------------
RULES_DIR = Path(__file__).parent / "rules"
LOADED_AT: Optional[str] = None
RULE_TABLE: Dict[str, MetricRuleSpec] = {}

try:
    VALID_RULES, INVALID_REPORTS = load_rules_from_folder(RULES_DIR)
except Exception as e:
    log.exception(f"Failed to eager-load rules: {e}")
    VALID_RULES = {}
    INVALID_REPORTS = []
    RULE_TABLE = {}

__all__ = [
    "load_rules_from_folder",
    "build_rule_table",
    "default_rule",
    "rule_for",
    "MetricRuleSpec",
    "VALID_RULES",
    "INVALID_REPORTS",
    "RULE_TABLE",
    "RULES_DIR",
]
