# shift_recon/kpis.py
"""Shift KPI summary computed straight from activity payloads."""
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel

from shift_recon.formulas import haul_trucks
from shift_recon.grouping import distinct_count, resolve_group_key
from shift_recon.payload import (
    BackfillValues,
    ChargingValues,
    FiringValues,
    GroundSupportValues,
    HaulingValues,
    HoistingValues,
    LoadingValues,
    ProductionDrillingValues,
    activity_of,
    normalize,
    sub_activity_of,
    values_of,
)


class ShiftKpis(BaseModel):
    headings_bored: int = 0
    headings_supported: int = 0
    gs_drillm: float = 0.0
    dev_bolts: float = 0.0
    prod_drillm: float = 0.0
    ore_trucks: float = 0.0
    waste_trucks: float = 0.0
    prod_trucks: float = 0.0
    dev_ore_trucks: float = 0.0
    dev_waste_trucks: float = 0.0
    headings_charged: int = 0
    stopes_charged: int = 0
    dev_charge_metres: float = 0.0
    stope_charge_metres: float = 0.0
    tonnes_fired: float = 0.0
    headings_fired: int = 0
    stopes_fired: int = 0
    primary_stope_buckets: float = 0.0
    rehandle_stope_buckets: float = 0.0
    primary_dev_buckets: float = 0.0
    rehandle_dev_buckets: float = 0.0
    ore_tonnes_hoisted: float = 0.0
    waste_tonnes_hoisted: float = 0.0
    backfill_volume: float = 0.0
    backfill_buckets: float = 0.0


def _select(payloads: List[Dict[str, Any]], activity: str, *subs: str) -> List[Dict[str, Any]]:
    return [p for p in payloads if activity_of(p) == activity and (not subs or sub_activity_of(p) in subs)]


def _distinct_locations(payloads: List[Dict[str, Any]], activity: str) -> int:
    return distinct_count(resolve_group_key(activity, p) for p in payloads)


def compute_kpis(raw_payloads: Iterable[Any]) -> ShiftKpis:
    payloads = [normalize(p) for p in raw_payloads]
    k = ShiftKpis()

    # Development
    k.headings_bored = _distinct_locations(_select(payloads, "Development", "Face Drilling"), "Development")
    k.headings_supported = _distinct_locations(_select(payloads, "Development", "Ground Support"), "Development")
    for p in _select(payloads, "Development", "Ground Support", "Rehab"):
        v = GroundSupportValues.model_validate(values_of(p))
        k.dev_bolts += v.bolts
        if v.gs_drillm > 0:
            k.gs_drillm += v.gs_drillm
        elif v.bolts > 0 and v.bolt_length > 0:
            k.gs_drillm += v.bolts * v.bolt_length

    # Production drilling
    for p in _select(payloads, "Production Drilling", "Stope", "Service Hole"):
        v = ProductionDrillingValues.model_validate(values_of(p))
        k.prod_drillm += v.metres_drilled + v.cleanouts_drilled + v.redrills

    # Haulage
    for p in _select(payloads, "Hauling"):
        v = HaulingValues.model_validate(values_of(p))
        trucks = haul_trucks(p)
        material = v.material.lower()
        sub = sub_activity_of(p).lower()
        if "ore" in material:
            k.ore_trucks += trucks
        elif "waste" in material:
            k.waste_trucks += trucks
        if "production" in sub or "stope" in sub:
            k.prod_trucks += trucks
        elif "development" in sub or "heading" in sub:
            if "ore" in material:
                k.dev_ore_trucks += trucks
            elif "waste" in material:
                k.dev_waste_trucks += trucks

    # Charging
    dev_charging = _select(payloads, "Charging", "Development")
    prod_charging = _select(payloads, "Charging", "Production")
    k.headings_charged = _distinct_locations(dev_charging, "Charging")
    k.stopes_charged = _distinct_locations(prod_charging, "Charging")
    k.dev_charge_metres = sum(ChargingValues.model_validate(values_of(p)).charge_metres for p in dev_charging)
    k.stope_charge_metres = sum(ChargingValues.model_validate(values_of(p)).charge_metres for p in prod_charging)

    # Firing
    prod_firing = _select(payloads, "Firing", "Production")
    k.tonnes_fired = sum(FiringValues.model_validate(values_of(p)).tonnes_fired for p in prod_firing)
    k.stopes_fired = _distinct_locations(prod_firing, "Firing")
    k.headings_fired = _distinct_locations(_select(payloads, "Firing", "Development"), "Firing")

    # Loading
    for p in _select(payloads, "Loading", "Production"):
        v = LoadingValues.model_validate(values_of(p))
        k.primary_stope_buckets += v.stope_to_truck + v.stope_to_sp
        k.rehandle_stope_buckets += v.stope_sp_to_truck + v.stope_sp_to_sp + v.sp_to_truck + v.sp_to_sp
    for p in _select(payloads, "Loading", "Development"):
        v = LoadingValues.model_validate(values_of(p))
        k.primary_dev_buckets += v.heading_to_truck + v.heading_to_sp
        k.rehandle_dev_buckets += v.dev_sp_to_truck + v.dev_sp_to_sp + v.sp_to_truck + v.sp_to_sp

    # Hoisting / Backfilling
    for p in _select(payloads, "Hoisting"):
        v = HoistingValues.model_validate(values_of(p))
        k.ore_tonnes_hoisted += v.ore_tonnes
        k.waste_tonnes_hoisted += v.waste_tonnes
    for p in _select(payloads, "Backfilling", "Surface"):
        k.backfill_volume += BackfillValues.model_validate(values_of(p)).volume
    for p in _select(payloads, "Backfilling", "Underground"):
        k.backfill_buckets += BackfillValues.model_validate(values_of(p)).buckets

    return k


__all__ = ["ShiftKpis", "compute_kpis"]
