# tests/test_collaborator.py
import asyncio
import json
import datetime

import httpx
import pytest

from shift_recon.collaborator import PersistenceError, SiteAdminClient, normalize_day

DAY = {
    "date": "2026-10-19",
    "site": "North",
    "status": "red",
    "shifts": [{"shift_id": 1, "user_email": "a@x"}],
    "activities": [{"id": 1, "dn": "DS", "payload_json": '{"activity": "Hoisting"}'}],
    "validated_shifts": [{"id": 5, "validated": 0}],
    "validated_activities": [{"id": 11, "dn": "DS", "payload_json": {"activity": "Hoisting"}}, {"bad": "row"}],
}


def _client(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://site-admin.test")
    return SiteAdminClient(client=http)


@pytest.mark.parametrize("raw,expected", [
    ("2026-10-19", "2026-10-19"),
    ("2026-10-19T22:15:00+08:00", "2026-10-19"),
    ("19 Oct 2026", "2026-10-19"),
    (datetime.date(2026, 10, 19), "2026-10-19"),
])
def test_normalize_day(raw, expected):
    assert normalize_day(raw) == expected


def test_normalize_day_rejects_garbage():
    with pytest.raises(ValueError):
        normalize_day("not a day")
    with pytest.raises(ValueError):
        normalize_day("")


def test_load_day_parses_bundle():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=DAY)

    bundle = asyncio.run(_client(handler).load_day("19 Oct 2026", "North"))
    assert seen == {"path": "/api/site-admin/day", "params": {"date": "2026-10-19", "site": "North"}}
    assert bundle.status == "red"
    assert [r.id for r in bundle.activities] == [1]
    assert [r.id for r in bundle.validated_activities] == [11]
    assert bundle.validated_activities[0].payload == {"activity": "Hoisting"}


def test_save_validate_delete_bodies():
    calls = []

    def handler(request: httpx.Request):
        calls.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"ok": True})

    async def run():
        c = _client(handler)
        await c.save_edits("2026-10-19", "North", [{"id": 11, "payload_json": {"activity": "Hoisting"}}])
        await c.validate_day("2026-10-19", "North")
        await c.delete_activity("2026-10-19", "North", 11)

    asyncio.run(run())
    assert calls == [
        ("POST", "/api/site-admin/update-validated",
         {"date": "2026-10-19", "site": "North", "edits": [{"id": 11, "payload_json": {"activity": "Hoisting"}}]}),
        ("POST", "/api/site-admin/validate", {"date": "2026-10-19", "site": "North"}),
        ("POST", "/api/site-admin/validated/delete-activity", {"site": "North", "date": "2026-10-19", "id": 11}),
    ]


def test_http_error_becomes_persistence_error():
    def handler(request):
        return httpx.Response(500, json={"error": "db down"})

    with pytest.raises(PersistenceError) as exc:
        asyncio.run(_client(handler).save_edits("2026-10-19", "North", []))
    assert exc.value.status_code == 500
    assert "db down" in exc.value.message


def test_transport_error_becomes_persistence_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(PersistenceError):
        asyncio.run(_client(handler).validate_day("2026-10-19", "North"))
