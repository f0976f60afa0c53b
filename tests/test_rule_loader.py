# tests/test_rule_loader.py
import json

from fastapi.testclient import TestClient

from shift_recon.load_rules import RULES_DIR, load_rules_from_folder, rule_for
from shift_recon.main import app
from shift_recon.validate_rules import validate_rule_file

client = TestClient(app)


def test_get_rules():
    resp = client.get("/rules")
    assert resp.status_code == 200
    data = resp.json()
    assert isinstance(data, list)
    ids = {r["id"] for r in data}
    assert {"hauling", "development", "backfilling"} <= ids


def test_get_rule_detail_and_404():
    resp = client.get("/rules/backfilling")
    assert resp.status_code == 200
    body = resp.json()
    assert body["group_role"] == "to"
    assert body["clamps"]["Surface"]["Volume"] == [0, 10000]
    assert client.get("/rules/nope").status_code == 404


def test_reload_rules():
    resp = client.post("/rules/reload")
    assert resp.status_code == 200
    assert resp.json()["loaded"] >= 8
    assert resp.json()["invalid"] == []


def test_shipped_rule_files_are_valid():
    for f in sorted(RULES_DIR.glob("*.json")):
        assert validate_rule_file(f) == [], f.name


def test_loader_reports_bad_files_without_failing(tmp_path):
    (tmp_path / "good.json").write_text(json.dumps({"id": "x", "title": "X", "activity": "Survey"}), encoding="utf-8")
    (tmp_path / "broken.json").write_text("{ not json", encoding="utf-8")
    (tmp_path / "bad_role.json").write_text(json.dumps({"id": "y", "title": "Y", "activity": "Z", "group_role": "elsewhere"}), encoding="utf-8")
    (tmp_path / "off.json").write_text(json.dumps({"id": "z", "title": "Z", "activity": "Off", "enabled": False}), encoding="utf-8")
    try:
        valid, invalid = load_rules_from_folder(tmp_path)
        assert set(valid) == {"x"}
        assert {i["file"] for i in invalid} == {"broken.json", "bad_role.json"}
    finally:
        load_rules_from_folder(RULES_DIR)


def test_rule_for_falls_back_to_generic():
    assert rule_for("hauling").id == "hauling"
    r = rule_for("Survey")
    assert r.formula == "generic" and r.group_role == "location"
