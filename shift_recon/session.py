# shift_recon/session.py
"""
Supervisor review session for one site.

Holds the loaded day, the edit overlay and the validated/live pairing.
Network calls go through SiteAdminClient; engine work stays synchronous.

 - Each load is tagged with a request token; a response whose token has
   been superseded (the selected day changed meanwhile) is discarded.
 - Save, validate and delete reload the day on success; nothing is merged
   optimistically.
 - A failed round trip never touches the overlay; the failure becomes the
   session message and the review carries on.
"""
import enum
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel

from shift_recon.collaborator import DayBundle, PersistenceError, SiteAdminClient
from shift_recon.grouping import baseline_payload, pair_records
from shift_recon.kpis import ShiftKpis, compute_kpis
from shift_recon.load_rules import MetricRuleSpec
from shift_recon.nested import NESTED_OPS
from shift_recon.overlay import DiffCell, EditOverlay, GroupDiff, TotalsDiffRow, diff_record, diff_totals, group_diff
from shift_recon.payload import ActivityRecord
from shift_recon.totals import (
    TotalsTree,
    day_status,
    filter_records,
    record_payload,
    totals_by_shift,
    totals_for_records,
)

log = logging.getLogger("review_session")


class RecordState(str, enum.Enum):
    LIVE = "live"
    VALIDATED = "validated"
    EDITED = "edited"
    SAVED = "saved"
    DELETED = "deleted"


class ActionResult(BaseModel):
    ok: bool
    message: str = ""
    stale: bool = False
    data: Optional[Dict[str, Any]] = None


class RecordStateError(ValueError):
    pass


class ReviewSession:
    def __init__(self, client: SiteAdminClient, site: str,
                 table: Optional[Dict[str, MetricRuleSpec]] = None):
        self.client = client
        self.site = site
        self.table = table
        self.date: Optional[str] = None
        self.status: str = "none"
        self.message: str = ""
        self.shifts: List[Dict[str, Any]] = []
        self.validated_shifts: List[Dict[str, Any]] = []
        self.live: Dict[int, ActivityRecord] = {}
        self.overlay = EditOverlay(table=table)
        self.pairing: Dict[int, Optional[int]] = {}
        self.saved: Set[int] = set()
        self.deleted: Set[int] = set()
        self._token = 0

    # ---------- loading ----------
    def _next_token(self) -> int:
        self._token += 1
        return self._token

    def _apply(self, date: Optional[str], bundle: DayBundle) -> None:
        if date != self.date:
            self.saved.clear()
            self.deleted.clear()
        self.date = date
        self.shifts = bundle.shifts
        self.validated_shifts = bundle.validated_shifts
        self.live = {r.id: r for r in bundle.activities}
        self.overlay.load(bundle.validated_activities)
        self.pairing = pair_records(bundle.validated_activities, bundle.activities, self.table)
        self.status = bundle.status if bundle.status in ("green", "red") else day_status(bundle.validated_shifts)

    async def load(self, date: Any) -> ActionResult:
        token = self._next_token()
        try:
            bundle = await self.client.load_day(date, self.site)
        except (PersistenceError, ValueError) as e:
            if token != self._token:
                return ActionResult(ok=False, stale=True, message="superseded")
            log.warning("load-day failed for %s: %s", date, e)
            self.message = "Failed to load day"
            return ActionResult(ok=False, message=self.message)

        if token != self._token:
            log.info("Discarding stale load-day response for %s (token %d, current %d)", date, token, self._token)
            return ActionResult(ok=False, stale=True, message="superseded")

        self._apply(bundle.date, bundle)
        self.message = ""
        return ActionResult(ok=True, data={"date": self.date, "status": self.status})

    # ---------- records ----------
    @property
    def validated(self) -> List[ActivityRecord]:
        return list(self.overlay.records.values())

    def state_of(self, record_id: int) -> RecordState:
        if record_id in self.deleted:
            return RecordState.DELETED
        if self.overlay.is_edited(record_id):
            return RecordState.EDITED
        if record_id in self.overlay.records:
            return RecordState.SAVED if record_id in self.saved else RecordState.VALIDATED
        if record_id in self.live:
            return RecordState.LIVE
        raise KeyError(record_id)

    def _editable(self, record_id: int) -> None:
        state = self.state_of(record_id)
        if state in (RecordState.DELETED, RecordState.LIVE):
            raise RecordStateError(f"record {record_id} is {state.value} and cannot be edited")

    def set_field(self, record_id: int, field_path: str, raw: Any) -> Dict[str, Any]:
        self._editable(record_id)
        return self.overlay.set_field(record_id, field_path, raw)

    def nested_edit(self, record_id: int, op: str, **kwargs) -> Dict[str, Any]:
        self._editable(record_id)
        fn = NESTED_OPS.get(op)
        if fn is None:
            raise ValueError(f"unknown nested operation: {op}")
        return self.overlay.mutate(record_id, lambda p: fn(p, **kwargs))

    def discard(self, record_id: Optional[int] = None) -> None:
        self.overlay.discard(record_id)

    # ---------- persistence ----------
    async def _reload(self, done: str) -> str:
        """Reload after a successful write; the write stands even when the reload fails."""
        reloaded = await self.load(self.date)
        if reloaded.ok or reloaded.stale:
            return done
        log.warning("reload after %r failed: %s", done, reloaded.message)
        return f"{done}; failed to reload day"

    async def save(self) -> ActionResult:
        if not self.date:
            self.message = "Select a date"
            return ActionResult(ok=False, message=self.message)
        edits = self.overlay.flush()
        if not edits:
            self.message = "No edits to save"
            return ActionResult(ok=False, message=self.message)
        try:
            await self.client.save_edits(self.date, self.site, edits)
        except PersistenceError as e:
            log.warning("bulk-save failed; keeping %d edits: %s", len(edits), e)
            self.message = "Failed to save edits"
            return ActionResult(ok=False, message=self.message)

        ids = [e["id"] for e in edits]
        self.overlay.mark_saved(ids)
        self.saved.update(ids)
        self.message = await self._reload("Edits saved")
        return ActionResult(ok=True, message=self.message, data={"saved": ids})

    async def validate(self) -> ActionResult:
        if not self.date:
            self.message = "Select a date"
            return ActionResult(ok=False, message=self.message)
        try:
            await self.client.validate_day(self.date, self.site)
        except PersistenceError as e:
            log.warning("validate-day failed: %s", e)
            self.message = "Failed to validate"
            return ActionResult(ok=False, message=self.message)
        self.message = await self._reload("Validated")
        return ActionResult(ok=True, message=self.message, data={"status": self.status})

    async def delete(self, record_id: int) -> ActionResult:
        if not self.date:
            self.message = "Select a date"
            return ActionResult(ok=False, message=self.message)
        if self.state_of(record_id) == RecordState.DELETED:
            return ActionResult(ok=False, message="Already deleted")
        try:
            await self.client.delete_activity(self.date, self.site, record_id)
        except PersistenceError as e:
            log.warning("delete-activity %s failed: %s", record_id, e)
            self.message = "Failed to delete activity"
            return ActionResult(ok=False, message=self.message)
        self.deleted.add(record_id)
        self.overlay.forget(record_id)
        self.message = await self._reload("Activity deleted")
        return ActionResult(ok=True, message=self.message)

    # ---------- derived views ----------
    def baseline(self, record_id: int) -> Dict[str, Any]:
        rec = self.overlay.records[record_id]
        return baseline_payload(rec, self.live, self.pairing)

    def diff(self, record_id: int, fields: Optional[List[str]] = None) -> Tuple[List[DiffCell], GroupDiff]:
        rec = self.overlay.records[record_id]
        base = self.baseline(record_id)
        current = self.overlay.effective(record_id)
        return diff_record(base, current, fields), group_diff(rec, base, current, self.table)

    def totals(self, **filters) -> TotalsTree:
        return totals_for_records(self.validated, self.overlay.lookup, self.table, **filters)

    def live_totals(self, **filters) -> TotalsTree:
        return totals_for_records(self.live.values(), None, self.table, **filters)

    def shift_totals(self) -> Dict[Tuple[str, str], TotalsTree]:
        return totals_by_shift(self.validated, self.overlay.lookup, self.table)

    def totals_diff(self) -> List[TotalsDiffRow]:
        """Persisted validated totals against totals with pending edits applied."""
        before = totals_for_records(self.validated, None, self.table)
        return diff_totals(before, self.totals())

    def kpis(self, **filters) -> ShiftKpis:
        recs = filter_records(self.validated, **filters) if filters else self.validated
        return compute_kpis(record_payload(r, self.overlay.lookup) for r in recs)


__all__ = ["ActionResult", "RecordState", "RecordStateError", "ReviewSession"]
