"""
Spreadsheet loading and row normalization.

Important: Keep imports light at module import time (Streamlit Cloud startup).
We import pandas only inside functions.
"""

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from config import PLACEHOLDER_NAME

Matcher = Callable[[Sequence[str]], Optional[str]]


class Row(NamedTuple):
    """One recipient. `name` is never empty; `email` is validated only at dispatch time."""

    raw: Dict[str, Any]
    name: str
    email: str
    source_name: str
    index: int


def find_column(headers: Sequence[str], exact: Optional[str], *subs) -> Optional[str]:
    """Find header by exact name or by substrings (all must match, case-insensitive)."""
    if exact and exact in headers:
        return exact
    low = exact.lower() if exact else ""
    for h in headers:
        hs = str(h).strip()
        if exact and hs.lower() == low:
            return h
        if subs and all(s.lower() in hs.lower() for s in subs):
            return h
    return None


def header_matcher(*subs) -> Matcher:
    """Matcher returning the first header containing every substring in `subs`."""

    def _match(headers: Sequence[str]) -> Optional[str]:
        return find_column(headers, None, *subs)

    return _match


match_name = header_matcher("name")
match_email = header_matcher("email")


def choose_columns(
    headers: Sequence[str],
    name_matcher: Matcher = match_name,
    email_matcher: Matcher = match_email,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Pick (name_column, email_column) for a header list.
    Name falls back to the first header; email to the second header, then None.
    """
    headers = list(headers)
    name_col = name_matcher(headers) or (headers[0] if headers else None)
    email_col = email_matcher(headers) or (headers[1] if len(headers) > 1 else None)
    return name_col, email_col


def _cell(v: Any) -> str:
    if v is None or (isinstance(v, float) and str(v) == "nan"):
        return ""
    return str(v).strip()


def normalize_rows(
    records: Iterable[Dict[str, Any]],
    name_matcher: Matcher = match_name,
    email_matcher: Matcher = match_email,
) -> List[Row]:
    """One Row per record, in input order. Never raises for missing values."""
    rows = []
    for i, r in enumerate(records, 1):
        name_col, email_col = choose_columns(list(r.keys()), name_matcher, email_matcher)
        source_name = _cell(r.get(name_col)) if name_col is not None else ""
        email = _cell(r.get(email_col)) if email_col is not None else ""
        rows.append(
            Row(
                raw=dict(r),
                name=source_name or PLACEHOLDER_NAME,
                email=email,
                source_name=source_name,
                index=i,
            )
        )
    return rows


def read_records(source: Any, filename: Optional[str] = None) -> List[Dict[str, str]]:
    """
    Read the first sheet of an Excel file (.xlsx/.xls) or a CSV into a list of
    {header: cell} dicts. Every cell is a string; blank cells are "".

    `source` may be a path or a file-like upload; pass `filename` for uploads
    so the format can be told from the extension.
    """
    import pandas as pd

    name = filename or (str(source) if isinstance(source, (str, Path)) else getattr(source, "name", ""))
    suf = Path(str(name)).suffix.lower()
    if suf in (".xlsx", ".xls"):
        try:
            df = pd.read_excel(source, sheet_name=0, dtype=str, keep_default_na=False)
        except ImportError as e:
            msg = str(e).lower()
            if "xlrd" in msg:
                raise ImportError(
                    "Reading legacy .xls requires xlrd. Install it with:\n  pip install xlrd\n"
                    "Or: pip install -e ."
                ) from e
            if "openpyxl" in msg:
                raise ImportError(
                    "Reading Excel requires openpyxl. Install it with:\n  pip install openpyxl\n"
                    "Or: pip install -e ."
                ) from e
            raise
    elif suf == ".csv":
        df = pd.read_csv(source, dtype=str, keep_default_na=False)
    else:
        raise ValueError(f"Spreadsheet must be .xlsx, .xls or .csv (got {name!r}).")

    df.columns = [str(c).strip() for c in df.columns]
    df = df.fillna("")
    return df.to_dict(orient="records")


def load_rows(
    source: Any,
    filename: Optional[str] = None,
    name_matcher: Matcher = match_name,
    email_matcher: Matcher = match_email,
) -> Tuple[List[Row], Dict[str, Any]]:
    """
    Read and normalize a spreadsheet.
    Returns (rows, load_stats) where load_stats mirrors what the UI reports.
    """
    records = read_records(source, filename=filename)
    rows = normalize_rows(records, name_matcher, email_matcher)
    headers = list(records[0].keys()) if records else []
    name_col, email_col = choose_columns(headers, name_matcher, email_matcher)
    with_email = sum(1 for r in rows if "@" in r.email)
    stats = {
        "source_rows": len(records),
        "loaded_rows": len(rows),
        "rows_with_email": with_email,
        "rows_without_email": len(rows) - with_email,
        "missing_name": sum(1 for r in rows if not r.source_name),
        "name_column": name_col,
        "email_column": email_col,
    }
    return rows, stats
