#!/usr/bin/env python3
"""Print the columns of a spreadsheet, which ones are used for name/email, and the first rows."""

import json
import sys

from config import PREVIEW_ROWS
from data_loaders import load_rows, read_records


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print("Usage: inspect_excel.py DATA.xlsx|DATA.csv")
        return 1
    path = argv[0]
    try:
        records = read_records(path)
        rows, stats = load_rows(path)
    except (ValueError, ImportError, OSError) as e:
        print(f"Error reading {path}: {e}")
        return 1

    headers = list(records[0].keys()) if records else []
    print("Columns:")
    for i, c in enumerate(headers):
        mark = ""
        if c == stats["name_column"]:
            mark = "  <- name"
        elif c == stats["email_column"]:
            mark = "  <- email"
        print(f"  {i} {c!r}{mark}")
    print(f"\n{stats['loaded_rows']} rows, {stats['rows_without_email']} without a valid email")
    print(f"\nFirst {PREVIEW_ROWS} rows:")
    print(json.dumps([r._asdict() for r in rows[:PREVIEW_ROWS]], indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
