# tests/conftest.py
# Ensure project root is on sys.path so `import shift_recon` works reliably in pytest.
import sys
from pathlib import Path

import pytest

# Resolve project root as the parent of the tests folder
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    # put project root at front so local packages take precedence
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def rule_table():
    from shift_recon.load_rules import RULES_DIR, build_rule_table, load_rules_from_folder
    valid, _ = load_rules_from_folder(RULES_DIR)
    return build_rule_table(valid)


def make_record(rid, payload, **kw):
    row = {
        "id": rid,
        "shift_id": kw.pop("shift_id", 1),
        "user_id": kw.pop("user_id", 7),
        "user_email": kw.pop("user_email", "op@mine.test"),
        "user_name": kw.pop("user_name", "Op One"),
        "site": kw.pop("site", "North"),
        "date": kw.pop("date", "2026-10-19"),
        "dn": kw.pop("dn", "DS"),
        "payload_json": payload,
    }
    row.update(kw)
    return row
