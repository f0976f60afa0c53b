# shift_recon/collaborator.py
"""
Async client for the site-admin persistence endpoints.

    GET  /api/site-admin/day?date=&site=               -> day bundle
    POST /api/site-admin/update-validated              {date, site, edits: [{id, payload_json}]}
    POST /api/site-admin/validate                      {date, site}
    POST /api/site-admin/validated/delete-activity     {site, date, id}

Every failed round trip (transport error, non-2xx, unreadable body) surfaces
as PersistenceError; callers decide what to keep.
"""
import datetime
import logging
from typing import Any, Dict, List, Optional

import httpx
from dateutil import parser as du_parser
from pydantic import BaseModel, ConfigDict, field_validator

from shift_recon.payload import ActivityRecord, parse_records

log = logging.getLogger("site_admin_client")

# ---------------- CONFIG ----------------
DAY_PATH = "/api/site-admin/day"
SAVE_PATH = "/api/site-admin/update-validated"
VALIDATE_PATH = "/api/site-admin/validate"
DELETE_PATH = "/api/site-admin/validated/delete-activity"
DEFAULT_TIMEOUT = 20.0
# ----------------------------------------


class PersistenceError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, op: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.op = op


def normalize_day(value: Any) -> str:
    """
    Lenient day input -> "YYYY-MM-DD".
    Accepts date / datetime objects, ISO strings and anything dateutil can read ("19 Oct 2026").
    """
    if isinstance(value, datetime.datetime):
        return value.date().isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    s = str(value or "").strip()
    if not s:
        raise ValueError("date is required")
    try:
        return du_parser.isoparse(s).date().isoformat()
    except ValueError:
        pass
    try:
        return du_parser.parse(s).date().isoformat()
    except (ValueError, OverflowError) as e:
        raise ValueError(f"unreadable date: {value!r}") from e


class DayBundle(BaseModel):
    model_config = ConfigDict(extra="allow")

    date: Optional[str] = None
    site: Optional[str] = None
    status: str = "none"
    shifts: List[Dict[str, Any]] = []
    activities: List[ActivityRecord] = []
    validated_shifts: List[Dict[str, Any]] = []
    validated_activities: List[ActivityRecord] = []

    @field_validator("activities", "validated_activities", mode="before")
    @classmethod
    def _records(cls, v):
        return parse_records(v or [])

    @field_validator("shifts", "validated_shifts", mode="before")
    @classmethod
    def _rows(cls, v):
        return [r for r in (v or []) if isinstance(r, dict)]

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v):
        return str(v or "none")


class SiteAdminClient:
    def __init__(self, base_url: str = "", token: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None, timeout: float = DEFAULT_TIMEOUT):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def _request(self, op: str, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            log.warning("%s failed: %s", op, e)
            raise PersistenceError(f"{op} failed: {e}", op=op) from e

        if resp.status_code >= 400:
            detail = resp.text[:200]
            try:
                body = resp.json()
                if isinstance(body, dict):
                    detail = body.get("error") or body.get("detail") or detail
            except ValueError:
                pass
            log.warning("%s returned %s: %s", op, resp.status_code, detail)
            raise PersistenceError(f"{op} failed: {detail}", status_code=resp.status_code, op=op)

        if not resp.content:
            return {}
        try:
            body = resp.json()
        except ValueError as e:
            raise PersistenceError(f"{op} returned a non-JSON body", status_code=resp.status_code, op=op) from e
        return body if isinstance(body, dict) else {"data": body}

    async def load_day(self, date: Any, site: str) -> DayBundle:
        day = normalize_day(date)
        body = await self._request("load-day", "GET", DAY_PATH, params={"date": day, "site": site})
        body.setdefault("date", day)
        body.setdefault("site", site)
        return DayBundle.model_validate(body)

    async def save_edits(self, date: Any, site: str, edits: List[Dict[str, Any]]) -> Dict[str, Any]:
        payload = {"date": normalize_day(date), "site": site, "edits": edits}
        return await self._request("bulk-save", "POST", SAVE_PATH, json=payload)

    async def validate_day(self, date: Any, site: str) -> Dict[str, Any]:
        return await self._request("validate-day", "POST", VALIDATE_PATH,
                                   json={"date": normalize_day(date), "site": site})

    async def delete_activity(self, date: Any, site: str, record_id: int) -> Dict[str, Any]:
        return await self._request("delete-activity", "POST", DELETE_PATH,
                                   json={"site": site, "date": normalize_day(date), "id": record_id})


__all__ = [
    "DayBundle",
    "PersistenceError",
    "SiteAdminClient",
    "normalize_day",
]
