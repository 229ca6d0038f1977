import re
from typing import Optional, Set


def safe_pdf_filename(name: str, index: int) -> str:
    """
    Convert a display name into a safe PDF filename.
    - Keeps only letters/numbers/_/whitespace/./-
    - Falls back to 'student_{index}.pdf' when nothing is left
    """
    raw = "" if name is None else str(name)
    safe = re.sub(r"[^\w\s.-]", "", raw).strip()
    if not safe:
        safe = f"student_{index}"
    return f"{safe}.pdf"


def unique_filename(filename: str, taken: Set[str]) -> str:
    """
    Return `filename`, or `stem (n).pdf` with the smallest n >= 2 not in `taken`.
    Names compare case-insensitively: `taken` holds lowercased names, and the
    result is added to it.
    """
    candidate = filename
    if candidate.lower() in taken:
        stem, dot, ext = filename.rpartition(".")
        if not dot:
            stem, ext = filename, ""
        n = 2
        while True:
            candidate = f"{stem} ({n}).{ext}" if ext else f"{stem} ({n})"
            if candidate.lower() not in taken:
                break
            n += 1
    taken.add(candidate.lower())
    return candidate


def is_deliverable_email(email: Optional[str]) -> bool:
    return bool(email) and "@" in str(email)


def sniff_image_type(data: bytes) -> str:
    """'PNG' or 'JPEG' from magic bytes; anything that is not PNG is drawn as JPEG."""
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "PNG"
    return "JPEG"
