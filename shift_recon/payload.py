# shift_recon/payload.py
"""
Payload normalizer and typed value views for activity records.

Provides:
 - normalize(raw): JSON string / dict / None -> canonical payload dict ({} when malformed)
 - to_number / parse_float / strip_numeric: tolerant numeric helpers
 - ActivityRecord: one submitted (or validated) activity row
 - typed_values(payload): tagged union of per-activity value models with an open fallback

Payloads stay plain dicts (JSON documents) so they round-trip to the persistence
layer unchanged; the typed views are read-only projections used by the formulas.
"""

import copy
import json
import logging
import math
import re
from typing import Annotated, Any, Dict, List, Optional, Tuple, Type

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

log = logging.getLogger("payload_normalizer")

HOLE_BUCKETS: Tuple[str, ...] = ("Metres Drilled", "Cleanouts Drilled", "Redrills")

# ---------- Numeric helpers ----------
_LEADING_FLOAT = re.compile(r'^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)')
_STRICT_FLOAT = re.compile(r'^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?\s*$')
_NON_NUMERIC = re.compile(r'[^0-9.]')


def parse_float(value: Any) -> Optional[float]:
    """
    Leading-number parse used for generic summation.
    "12" -> 12.0, "2.4m" -> 2.4, "abc" / "" / None / bool -> None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            f = float(value)
        except OverflowError:
            return None
        return f if math.isfinite(f) else None
    m = _LEADING_FLOAT.match(str(value))
    if not m:
        return None
    try:
        f = float(m.group(1))
    except ValueError:
        return None
    return f if math.isfinite(f) else None


def to_number(value: Any) -> float:
    """Best-effort number; anything unparseable counts as 0."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    f = parse_float(value)
    return f if f is not None else 0.0


def strip_numeric(value: Any) -> float:
    """Drop every non-numeric character before parsing ("2.4m" -> 2.4, "3,5 m" -> 35)."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return to_number(value)
    return to_number(_NON_NUMERIC.sub("", str(value)))


def is_numeric_text(value: Any) -> bool:
    """True for numbers and strings that are entirely a finite decimal number ("1e400" is not)."""
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, (int, float)):
        return parse_float(value) is not None
    return bool(_STRICT_FLOAT.match(str(value))) and parse_float(value) is not None


def to_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


# ---------- Normalizer ----------
def _parse_raw(raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return {}
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            raw = json.loads(raw)
        except ValueError:
            log.debug("payload is not valid JSON; treating as empty")
            return {}
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        return {}
    return copy.deepcopy(raw)


def _clean_loads(loads: Any) -> Optional[List[Dict[str, Any]]]:
    if not isinstance(loads, list):
        return None
    return [dict(item) for item in loads if isinstance(item, dict)]


def _clean_holes(holes: Any) -> Optional[Dict[str, List[Dict[str, Any]]]]:
    if not isinstance(holes, dict):
        return None
    out: Dict[str, List[Dict[str, Any]]] = {}
    for bucket, rows in holes.items():
        if not isinstance(rows, list):
            continue
        out[str(bucket)] = [dict(h) for h in rows if isinstance(h, dict)]
    return out


def normalize(raw: Any) -> Dict[str, Any]:
    """
    Convert a stored payload into its canonical dict form.

    Never raises: malformed or non-object input yields {}. Only keys that are
    present get canonicalised, so normalize(normalize(x)) == normalize(x).
    """
    try:
        p = _parse_raw(raw)
        if not p:
            return {}

        if "activity" in p:
            p["activity"] = to_text(p.get("activity"))
        if "sub" in p and not to_text(p.get("sub_activity")):
            p["sub_activity"] = to_text(p.get("sub"))
        elif "sub_activity" in p:
            p["sub_activity"] = to_text(p.get("sub_activity"))

        if "values" in p and not isinstance(p.get("values"), dict):
            p["values"] = {}

        if "loads" in p:
            loads = _clean_loads(p.get("loads"))
            if loads is None:
                p.pop("loads", None)
            else:
                p["loads"] = loads

        # older clients stored production drilling holes under pd_holes
        if "holes" not in p and isinstance(p.get("pd_holes"), dict):
            p["holes"] = p.pop("pd_holes")
        if "holes" in p:
            holes = _clean_holes(p.get("holes"))
            if holes is None:
                p.pop("holes", None)
            else:
                p["holes"] = holes
        return p
    except Exception:
        log.exception("Unexpected error while normalising payload")
        return {}


def activity_of(payload: Dict[str, Any], fallback: str = "") -> str:
    return to_text((payload or {}).get("activity")) or to_text(fallback)


def sub_activity_of(payload: Dict[str, Any], fallback: str = "") -> str:
    p = payload or {}
    return to_text(p.get("sub")) or to_text(p.get("sub_activity")) or to_text(fallback)


def values_of(payload: Dict[str, Any]) -> Dict[str, Any]:
    v = (payload or {}).get("values")
    return v if isinstance(v, dict) else {}


# ---------- Activity records ----------
class ActivityRecord(BaseModel):
    """One row of the live or validated activity set as returned by the load-day endpoint."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: int
    shift_id: Optional[int] = None
    user_id: Optional[int] = None
    user_email: Optional[str] = None
    user_name: Optional[str] = None
    site: Optional[str] = None
    date: Optional[str] = None
    dn: Optional[str] = Field(default=None, validation_alias=AliasChoices("dn", "day_or_night_shift"))
    activity: Optional[str] = None
    sub_activity: Optional[str] = None
    payload_json: Any = None

    @property
    def payload(self) -> Dict[str, Any]:
        return normalize(self.payload_json)

    @property
    def user_key(self) -> str:
        if self.user_email:
            return self.user_email.strip().lower()
        return str(self.user_id) if self.user_id is not None else ""

    @property
    def activity_name(self) -> str:
        return activity_of(self.payload, self.activity or "") or "(No Activity)"

    @property
    def sub_activity_name(self) -> str:
        return sub_activity_of(self.payload, self.sub_activity or "") or "(No Sub Activity)"


def parse_records(rows: Any) -> List[ActivityRecord]:
    """Parse raw rows, skipping (and logging) anything without a usable id."""
    out: List[ActivityRecord] = []
    for idx, row in enumerate(rows or []):
        if isinstance(row, ActivityRecord):
            out.append(row)
            continue
        try:
            out.append(ActivityRecord.model_validate(row))
        except ValidationError as e:
            log.warning("Skipping activity row %d: %s", idx, e.errors()[:1])
    return out


# ---------- Typed value views ----------
Num = Annotated[float, BeforeValidator(to_number)]
Metres = Annotated[float, BeforeValidator(strip_numeric)]
Text = Annotated[str, BeforeValidator(to_text)]


class ActivityValues(BaseModel):
    model_config = ConfigDict(extra="allow")


class OpenValues(ActivityValues):
    """Unvalidated legacy values; every key is kept as-is."""


class FaceDrillingValues(ActivityValues):
    holes: Num = Field(0.0, validation_alias=AliasChoices("No of Holes", "No. of Holes"))
    cut_length: Num = Field(0.0, validation_alias=AliasChoices("Cut Length", "Cut length"))
    face_drillm: Num = Field(0.0, validation_alias="Face Drillm")
    location: Text = Field("", validation_alias=AliasChoices("Location", "location", "Heading", "heading"))


class GroundSupportValues(ActivityValues):
    bolts: Num = Field(0.0, validation_alias=AliasChoices("No. of Bolts", "No of Bolts", "No. of bolts", "No of bolts"))
    bolt_length: Metres = Field(0.0, validation_alias=AliasChoices("Bolt Length", "Bolt length"))
    gs_drillm: Num = Field(0.0, validation_alias="GS Drillm")
    location: Text = Field("", validation_alias=AliasChoices("Location", "location", "Heading", "heading"))


class HaulingValues(ActivityValues):
    trucks: Num = Field(0.0, validation_alias=AliasChoices("Trucks", "No of trucks", "No. of trucks", "No of Trucks", "No. of Trucks"))
    weight: Num = Field(0.0, validation_alias="Weight")
    distance: Num = Field(0.0, validation_alias="Distance")
    tonnes_hauled: Num = Field(0.0, validation_alias="Tonnes Hauled")
    material: Text = Field("", validation_alias=AliasChoices("Material", "material"))
    source: Text = Field("", validation_alias=AliasChoices("Source", "source"))


class LoadingValues(ActivityValues):
    stope_to_truck: Num = Field(0.0, validation_alias="Stope to Truck")
    stope_to_sp: Num = Field(0.0, validation_alias="Stope to SP")
    stope_sp_to_truck: Num = Field(0.0, validation_alias="Stope SP to Truck")
    stope_sp_to_sp: Num = Field(0.0, validation_alias="Stope SP to SP")
    heading_to_truck: Num = Field(0.0, validation_alias="Heading to Truck")
    heading_to_sp: Num = Field(0.0, validation_alias="Heading to SP")
    dev_sp_to_truck: Num = Field(0.0, validation_alias="Dev SP to Truck")
    dev_sp_to_sp: Num = Field(0.0, validation_alias="Dev SP to SP")
    sp_to_truck: Num = Field(0.0, validation_alias="SP to Truck")
    sp_to_sp: Num = Field(0.0, validation_alias="SP to SP")
    equipment: Text = Field("", validation_alias=AliasChoices("Equipment", "equipment"))
    material: Text = Field("", validation_alias=AliasChoices("Material", "material"))


class FiringValues(ActivityValues):
    tonnes_fired: Num = Field(0.0, validation_alias=AliasChoices("Tonnes Fired", "tonnes fired"))
    cut_length: Num = Field(0.0, validation_alias=AliasChoices("Cut Length", "Cut length"))


class HoistingValues(ActivityValues):
    ore_tonnes: Num = Field(0.0, validation_alias="Ore Tonnes")
    waste_tonnes: Num = Field(0.0, validation_alias="Waste Tonnes")


class BackfillValues(ActivityValues):
    volume: Num = Field(0.0, validation_alias="Volume")
    buckets: Num = Field(0.0, validation_alias="Buckets")
    to: Text = Field("", validation_alias=AliasChoices("To", "to"))


class ProductionDrillingValues(ActivityValues):
    metres_drilled: Num = Field(0.0, validation_alias="Metres Drilled")
    cleanouts_drilled: Num = Field(0.0, validation_alias="Cleanouts Drilled")
    redrills: Num = Field(0.0, validation_alias="Redrills")


class ChargingValues(ActivityValues):
    charge_metres: Num = Field(
        0.0,
        validation_alias=AliasChoices("Charge Metres", "Charge metres", "Charge m", "ChargeM", "Charge Metres (m)"),
    )


# (activity, sub_activity) -> model; a None sub matches every sub-activity of that activity
VALUE_MODELS: Dict[Tuple[str, Optional[str]], Type[ActivityValues]] = {
    ("Development", "Face Drilling"): FaceDrillingValues,
    ("Development", "Ground Support"): GroundSupportValues,
    ("Development", "Rehab"): GroundSupportValues,
    ("Hauling", None): HaulingValues,
    ("Loading", None): LoadingValues,
    ("Firing", None): FiringValues,
    ("Hoisting", None): HoistingValues,
    ("Backfilling", None): BackfillValues,
    ("Production Drilling", None): ProductionDrillingValues,
    ("Charging", None): ChargingValues,
}


def value_model_for(activity: str, sub_activity: str) -> Type[ActivityValues]:
    return (
        VALUE_MODELS.get((activity, sub_activity))
        or VALUE_MODELS.get((activity, None))
        or OpenValues
    )


def typed_values(payload: Dict[str, Any]) -> ActivityValues:
    """Project a normalized payload's values onto its activity's typed model."""
    model = value_model_for(activity_of(payload), sub_activity_of(payload))
    values = values_of(payload)
    try:
        return model.model_validate(values)
    except ValidationError as e:
        log.warning("Falling back to open values for %s: %s", model.__name__, e.errors()[:1])
        return OpenValues.model_validate(values)


__all__ = [
    "HOLE_BUCKETS",
    "ActivityRecord",
    "ActivityValues",
    "OpenValues",
    "VALUE_MODELS",
    "activity_of",
    "is_numeric_text",
    "normalize",
    "parse_float",
    "parse_records",
    "strip_numeric",
    "sub_activity_of",
    "to_number",
    "to_text",
    "typed_values",
    "value_model_for",
    "values_of",
]
