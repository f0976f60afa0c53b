# shift_recon/validate_rules.py
# Run:
#   python -m shift_recon.validate_rules [rules_dir]
# Validates every .json in shift_recon/rules against MetricRuleSpec and prints
# errors with file/line/col (JSON) or field location (schema).

import json
from pathlib import Path
import sys
import traceback
from typing import List

from pydantic import ValidationError

from shift_recon.formulas import FORMULAS
from shift_recon.load_rules import MetricRuleSpec, _iter_rule_objects_from_raw

RULES_DIR = Path(__file__).resolve().parent.joinpath("rules")


def _print_context(txt: str, lineno: int) -> None:
    lines = txt.splitlines()
    ln = lineno - 1
    start = max(0, ln - 2)
    end = min(len(lines), ln + 2)
    print("---- context ----")
    for i in range(start, end):
        marker = ">>" if i == ln else "  "
        print(f"{marker} {i+1:4d}: {lines[i]}")
    print("-----------------")


def validate_rule_file(p: Path) -> List[str]:
    """Problems found in one rule file; an empty list means the file is valid."""
    try:
        txt = p.read_text(encoding="utf-8")
    except Exception as e:
        return [f"ERROR reading file: {e}"]
    try:
        parsed = json.loads(txt)
    except json.JSONDecodeError as e:
        print(f"{p.name}: JSON parse error: {e.msg} (line {e.lineno}, col {e.colno})")
        _print_context(txt, e.lineno)
        return [f"JSON parse error: {e.msg} (line {e.lineno}, col {e.colno})"]

    problems: List[str] = []
    raw_rules = _iter_rule_objects_from_raw(parsed)
    if not raw_rules:
        problems.append("no rule objects found")
    for idx, raw in enumerate(raw_rules):
        try:
            rule = MetricRuleSpec.model_validate(raw)
        except ValidationError as e:
            for err in e.errors():
                loc = ".".join(str(x) for x in err.get("loc", ()))
                problems.append(f"rule[{idx}] {loc}: {err.get('msg')}")
            continue
        if rule.formula not in FORMULAS:
            problems.append(f"rule[{idx}] {rule.id}: unknown formula {rule.formula!r} (known: {', '.join(sorted(FORMULAS))})")
    return problems


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    rules_dir = Path(argv[0]) if argv else RULES_DIR
    if not rules_dir.exists():
        print("Rules folder not found:", rules_dir.resolve())
        sys.exit(1)
    files = sorted(rules_dir.glob("*.json"))
    if not files:
        print("No .json files found in:", rules_dir.resolve())
        sys.exit(0)
    ok_count = 0
    bad_count = 0
    for f in files:
        try:
            problems = validate_rule_file(f)
        except Exception:
            print(f"{f.name}: Unexpected error while validating:")
            traceback.print_exc()
            problems = ["unexpected error"]
        if problems:
            bad_count += 1
            for msg in problems:
                print(f"{f.name}: {msg}")
        else:
            ok_count += 1
            print(f"{f.name}: OK")
    print(f"\nSummary: {ok_count} OK, {bad_count} INVALID ({len(files)} files checked)")
    if bad_count:
        sys.exit(2)


if __name__ == "__main__":
    main()
