import struct
from io import BytesIO

import pytest

from data_loaders import Row


@pytest.fixture
def background_png() -> bytes:
    from PIL import Image

    buf = BytesIO()
    Image.new("RGB", (120, 85), (240, 235, 220)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def make_row():
    counter = {"n": 0}

    def _make(name="Alice", email="alice@example.com", source_name=None):
        counter["n"] += 1
        src = name if source_name is None else source_name
        return Row(raw={"Name": src, "Email": email}, name=name or "N/A", email=email, source_name=src, index=counter["n"])

    return _make


def _biff(rtype: int, data: bytes = b"") -> bytes:
    return struct.pack("<HH", rtype, len(data)) + data


def _biff_bof(stream_type: int) -> bytes:
    # BIFF8, build 3515, year 1996
    return _biff(0x0809, struct.pack("<HHHHII", 0x0600, stream_type, 0x0DBB, 0x07CC, 0, 0x06))


def _biff_label(row: int, col: int, text: str) -> bytes:
    raw = text.encode("latin-1")
    return _biff(0x0204, struct.pack("<HHHHB", row, col, 0, len(raw), 0) + raw)


def _workbook_stream(cells) -> bytes:
    sheet = _biff_bof(0x0010)
    sheet += b"".join(_biff_label(r, c, text) for (r, c), text in cells.items())
    sheet += _biff(0x000A)

    def globals_(sheet_offset: int) -> bytes:
        name = b"Sheet1"
        return (
            _biff_bof(0x0005)
            + _biff(0x0042, struct.pack("<H", 1200))
            + _biff(0x0085, struct.pack("<IBBBB", sheet_offset, 0, 0, len(name), 0) + name)
            + _biff(0x000A)
        )

    head = globals_(0)
    stream = globals_(len(head)) + sheet
    assert len(stream) <= 4096
    # 4096 bytes keeps the stream out of the mini-stream
    return stream.ljust(4096, b"\0")


def _compound_file(workbook: bytes) -> bytes:
    free, end, fat_sect, none = 0xFFFFFFFF, 0xFFFFFFFE, 0xFFFFFFFD, 0xFFFFFFFF
    header = struct.pack(
        "<8s16sHHHHH6sIIIIIIIII",
        b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1",
        b"\0" * 16,
        0x3E,
        3,
        0xFFFE,
        9,
        6,
        b"\0" * 6,
        0,  # directory sectors (v3)
        1,  # FAT sectors
        1,  # first directory sector
        0,
        4096,
        end,
        0,
        end,
        0,
    )
    header += struct.pack("<109I", 0, *([free] * 108))

    # sector 0: FAT, sector 1: directory, sectors 2-9: Workbook
    fat = [fat_sect, end, 3, 4, 5, 6, 7, 8, 9, end]
    fat += [free] * (128 - len(fat))

    def entry(name: str, etype: int, child: int = none, start: int = end, size: int = 0) -> bytes:
        raw = name.encode("utf-16-le") + b"\0\0" if name else b""
        return struct.pack(
            "<64sHBBIII16sIQQIII", raw, len(raw), etype, 1, none, none, child, b"\0" * 16, 0, 0, 0, start, size, 0
        )

    directory = entry("Root Entry", 5, child=1) + entry("Workbook", 2, start=2, size=len(workbook))
    directory += entry("", 0) * 2
    return header + struct.pack("<128I", *fat) + directory + workbook


@pytest.fixture
def legacy_xls(tmp_path):
    """Write a minimal BIFF8 .xls workbook (one sheet, text cells only) and return its path."""

    def _write(cells, filename="people.xls"):
        path = tmp_path / filename
        path.write_bytes(_compound_file(_workbook_stream(cells)))
        return path

    return _write
