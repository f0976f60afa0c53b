# tests/test_api.py
from fastapi.testclient import TestClient

from conftest import make_record
from shift_recon.main import app

HAUL = {"activity": "Hauling", "sub": "Production", "values": {"Source": "S1", "Distance": 2},
        "loads": [{"weight": 10}, {"weight": 20}, {"weight": 5}]}


def test_root_ready():
    with TestClient(app) as client:
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json()["rules_loaded"] >= 8


def test_totals_from_payloads():
    with TestClient(app) as client:
        resp = client.post("/totals", json={"payloads": [HAUL, "garbage"]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["totals"]["Hauling"]["Production"]["Trucks"] == 3
        assert body["totals"]["Hauling"]["Production"]["Weight"] == 35
        assert any(r["k"] == "Hauling|||Production|||TKMs" for r in body["rows"])
        assert body["details"]["errors"] == []


def test_totals_from_records_with_filters():
    client = TestClient(app)
    records = [make_record(1, HAUL, dn="DS", user_email="a@x"), make_record(2, HAUL, dn="NS", user_email="b@x")]
    resp = client.post("/totals", json={"records": records, "dn": "NS"})
    body = resp.json()
    assert body["totals"]["Hauling"]["Production"]["Trucks"] == 3
    assert set(body["by_shift"]) == {"DS|||a@x", "NS|||b@x"}


def test_kpis_endpoint():
    client = TestClient(app)
    resp = client.post("/kpis", json={"payloads": [
        {"activity": "Firing", "sub": "Production", "values": {"Stope": s}} for s in ("Stope A", "Stope A", "Stope B")
    ]})
    assert resp.status_code == 200
    assert resp.json()["stopes_fired"] == 2


def test_group_key_endpoint():
    client = TestClient(app)
    resp = client.post("/group-key", json={"payload": {"activity": "Backfilling", "sub": "Underground", "values": {"To": "Stope 4"}}})
    assert resp.json() == {
        "activity": "Backfilling",
        "role": "to",
        "group_key": "Stope 4",
        "allowed_location_types": ["Heading", "Stope", "Stockpile"],
    }
    resp = client.post("/group-key", json={"activity": "Hauling", "sub_activity": "Production",
                                           "payload": {"From": "SP1"}, "field": "Source"})
    assert resp.json()["group_key"] == "SP1"
    assert resp.json()["allowed_location_types"] == ["Stope"]
    assert client.post("/group-key", json={"payload": {}}).status_code == 422


def test_diff_endpoint():
    client = TestClient(app)
    rec = make_record(11, HAUL)
    current = dict(HAUL, values={"Source": "S2", "Distance": "2.0000000000001"})
    resp = client.post("/diff", json={"record": rec, "current": current})
    body = resp.json()
    assert "values.Distance" not in body["changed"]
    assert "values.Source" in body["changed"]
    assert body["group"]["group_changed"] is True


def test_pair_endpoint():
    client = TestClient(app)
    resp = client.post("/pair", json={"validated": [make_record(10, HAUL)], "live": [make_record(1, HAUL)]})
    assert resp.json() == {"pairs": {"10": 1}}


def test_reconcile_endpoint():
    client = TestClient(app)
    resp = client.post("/reconcile", json={"payload": HAUL})
    assert resp.json()["payload"]["values"]["Tonnes Hauled"] == 35
    resp = client.post("/reconcile", json={"payload": HAUL, "op": "delete_load", "args": {"idx": 0}})
    assert resp.json()["payload"]["values"]["Trucks"] == 2
    assert client.post("/reconcile", json={"payload": HAUL, "op": "explode"}).status_code == 404
    assert client.post("/reconcile", json={"payload": HAUL, "op": "delete_load", "args": {"bogus": 1}}).status_code == 422


def test_search_and_export_endpoints():
    client = TestClient(app)
    records = [make_record(1, dict(HAUL, equipment="TR7"), user_name="Sam")]
    resp = client.post("/search", json={"records": records, "query": "sam", "scope": "operator"})
    assert resp.json()["results"][0]["n"] == 1
    assert client.post("/search", json={"records": records, "query": "x", "scope": "bad"}).status_code == 422
    resp = client.post("/export", json=records)
    keys = [r["metric_key"] for r in resp.json()["rows"]]
    assert keys.count("Load Weight") == 3
    assert "Distance" in keys
