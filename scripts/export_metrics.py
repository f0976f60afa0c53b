#!/usr/bin/env python3
"""
Flatten a saved load-day response into long-format metric rows (one row per
record x metric, plus one row per distinct load weight) for BI tools.
Run from the project root:

    python scripts/export_metrics.py day.json -o metrics.csv
    python scripts/export_metrics.py day.json --live --format json
"""

import argparse
import csv
import json
from pathlib import Path
import sys

from pydantic import ValidationError

from shift_recon.collaborator import DayBundle
from shift_recon.totals import flatten_activity_metrics

COLUMNS = [
    "task_id", "shift_id", "date", "dn", "site", "user_email", "user_name",
    "activity", "sub_activity", "equipment", "location", "source",
    "from_location", "to_location", "task_item_type", "metric_key",
    "metric_value", "metric_text", "load_count",
]


def main(argv=None):
    ap = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    ap.add_argument("src", type=Path, help="saved /api/site-admin/day response")
    ap.add_argument("-o", "--out", type=Path, help="output file (default: stdout)")
    ap.add_argument("--format", choices=("csv", "json"), default="csv")
    ap.add_argument("--live", action="store_true", help="export live activities instead of validated ones")
    args = ap.parse_args(argv)

    try:
        data = json.loads(args.src.read_text(encoding="utf-8"))
    except Exception as e:
        print("ERROR: Failed to read/parse JSON at", args.src, ":", e, file=sys.stderr)
        sys.exit(3)

    try:
        bundle = DayBundle.model_validate(data)
    except ValidationError as e:
        print("ERROR: Not a load-day response:", e, file=sys.stderr)
        sys.exit(3)

    records = bundle.activities if args.live else bundle.validated_activities
    rows = flatten_activity_metrics(records)

    out = open(args.out, "w", encoding="utf-8", newline="") if args.out else sys.stdout
    try:
        if args.format == "json":
            json.dump(rows, out, indent=2)
            out.write("\n")
        else:
            writer = csv.DictWriter(out, fieldnames=COLUMNS, extrasaction="ignore")
            writer.writeheader()
            writer.writerows(rows)
    finally:
        if args.out:
            out.close()

    if args.out:
        print(f"Wrote {len(rows)} rows from {len(records)} activities to:", args.out.resolve())


if __name__ == "__main__":
    main()
