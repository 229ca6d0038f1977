import io
import zipfile

import pytest

from app import build_certificates_zip
from errors import RenderError


class _FakeGenerator:
    def __init__(self, broken=()):
        self.broken = set(broken)

    def create_pdf_bytes(self, row):
        if row.name in self.broken:
            raise RenderError(f"cannot draw {row.name}")
        return f"%PDF-fake {row.name}".encode()


def _names(data):
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return zf.namelist(), {n: zf.read(n) for n in zf.namelist()}


def test_zip_has_one_entry_per_rendered_row(make_row):
    rows = [make_row("Alice"), make_row("Bob"), make_row("Broken"), make_row("Carol")]
    errors_seen = []
    data, entries, errors = build_certificates_zip(
        rows, _FakeGenerator(broken={"Broken"}), on_error=lambda row, e: errors_seen.append(row.name)
    )
    names, contents = _names(data)
    assert names == entries == ["Alice.pdf", "Bob.pdf", "Carol.pdf"]
    assert all(contents[n] for n in names)
    assert [r.name for r, _ in errors] == ["Broken"]
    assert errors_seen == ["Broken"]


def test_zip_names_are_sanitized_with_positional_fallback(make_row):
    rows = [make_row("J/ane: Doe?"), make_row("", source_name=""), make_row("***")]
    data, entries, _ = build_certificates_zip(rows, _FakeGenerator())
    names, _ = _names(data)
    assert names == ["Jane Doe.pdf", f"student_{rows[1].index}.pdf", f"student_{rows[2].index}.pdf"]


def test_zip_duplicate_names_get_numeric_suffix(make_row):
    rows = [make_row("Sam"), make_row("Sam"), make_row("S/am"), make_row("Tia")]
    data, entries, _ = build_certificates_zip(rows, _FakeGenerator())
    names, contents = _names(data)
    assert names == ["Sam.pdf", "Sam (2).pdf", "Sam (3).pdf", "Tia.pdf"]
    assert len(names) == len(set(names)) == 4


def test_zip_with_real_renderer(background_png, make_row):
    from app import CertificateGenerator

    rows = [make_row("Alice"), make_row("Bob")]
    data, entries, errors = build_certificates_zip(rows, CertificateGenerator(background_png))
    names, contents = _names(data)
    assert names == ["Alice.pdf", "Bob.pdf"]
    assert all(c.startswith(b"%PDF") for c in contents.values())
    assert errors == []


def test_progress_callback(make_row):
    seen = []
    build_certificates_zip(
        [make_row("A"), make_row("B")],
        _FakeGenerator(),
        on_progress=lambda done, total, row: seen.append((done, total, row.name)),
    )
    assert seen == [(1, 2, "A"), (2, 2, "B")]


def test_zip_names_differing_only_in_case_do_not_clash(make_row):
    rows = [make_row("alice"), make_row("Alice"), make_row("ALICE")]
    data, entries, _ = build_certificates_zip(rows, _FakeGenerator())
    names, _ = _names(data)
    assert names == ["alice.pdf", "Alice (2).pdf", "ALICE (3).pdf"]
    assert len({n.lower() for n in names}) == 3


def test_zip_spool_closed_when_render_crashes(make_row, monkeypatch):
    import tempfile

    created = []
    real_spool = tempfile.SpooledTemporaryFile

    def _tracking_spool(*args, **kwargs):
        buf = real_spool(*args, **kwargs)
        created.append(buf)
        return buf

    class _CrashingGenerator:
        def create_pdf_bytes(self, row):
            raise KeyError(row.name)

    monkeypatch.setattr(tempfile, "SpooledTemporaryFile", _tracking_spool)
    with pytest.raises(KeyError):
        build_certificates_zip([make_row("Alice")], _CrashingGenerator())
    assert len(created) == 1
    assert created[0].closed


def test_zip_skips_rows_when_background_is_a_decompression_bomb(background_png, make_row, monkeypatch):
    from PIL import Image

    from app import CertificateGenerator

    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    rows = [make_row("Alice"), make_row("Bob")]
    data, entries, errors = build_certificates_zip(rows, CertificateGenerator(background_png))
    names, _ = _names(data)
    assert names == entries == []
    assert [r.name for r, _ in errors] == ["Alice", "Bob"]
