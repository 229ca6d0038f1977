#!/usr/bin/env python3
"""
Certificate mail-merge
Draws each recipient's name onto a background image as an A4-landscape PDF,
then packs the PDFs into a ZIP or sends them to a mail relay.
"""

from __future__ import annotations

import os
import sys
import tempfile
import zipfile
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple, Union

from config import (
    DEFAULT_FONT_NAME,
    DEFAULT_FONT_SIZE,
    DEFAULT_FONT_STYLE,
    DEFAULT_NAME_X,
    DEFAULT_NAME_Y,
    ZIP_NAME,
    ZIP_SPOOL_MAX_BYTES,
)
from data_loaders import Row
from errors import RenderError, ValidationError
from utils import safe_pdf_filename, sniff_image_type, unique_filename

# jsPDF-style family/style names -> reportlab standard Type 1 fonts
STANDARD_FONTS: Dict[str, Dict[str, str]] = {
    "times": {
        "normal": "Times-Roman",
        "bold": "Times-Bold",
        "italic": "Times-Italic",
        "bolditalic": "Times-BoldItalic",
    },
    "helvetica": {
        "normal": "Helvetica",
        "bold": "Helvetica-Bold",
        "italic": "Helvetica-Oblique",
        "bolditalic": "Helvetica-BoldOblique",
    },
    "courier": {
        "normal": "Courier",
        "bold": "Courier-Bold",
        "italic": "Courier-Oblique",
        "bolditalic": "Courier-BoldOblique",
    },
}


def _normalize_style(style: Optional[str]) -> str:
    s = "".join(ch for ch in str(style or "").lower() if ch.isalpha())
    s = s.replace("oblique", "italic")
    if s == "italicbold":
        s = "bolditalic"
    return s or "normal"


def resolve_font(font_name: Optional[str], font_style: Optional[str] = None) -> str:
    """
    Map a font name/style to a font reportlab can draw with.
    Accepts times/helvetica/courier (+ normal/bold/italic/bolditalic), an exact
    reportlab font name, or a path to a .ttf file. Unsupported combinations
    fall back to the default family.
    """
    from reportlab.pdfbase import pdfmetrics

    style = _normalize_style(font_style)
    name = (font_name or "").strip()

    if name.lower().endswith(".ttf"):
        from reportlab.pdfbase.ttfonts import TTFont

        face = Path(name).stem
        if face not in pdfmetrics.getRegisteredFontNames():
            try:
                pdfmetrics.registerFont(TTFont(face, os.path.expanduser(name)))
            except Exception as e:
                print(f"[render] could not register {name}: {e}", flush=True)
                face = ""
        if face:
            return face
        name = ""

    family = STANDARD_FONTS.get(name.lower())
    if family is None and name:
        try:
            pdfmetrics.getFont(name)
            return name
        except Exception:
            family = None
    if family is None:
        family = STANDARD_FONTS[DEFAULT_FONT_NAME]
    return family.get(style) or family["normal"]


class RenderConfig(NamedTuple):
    """Name placement and font. position_x/position_y of 0 or None mean auto-center."""

    position_x: Optional[float] = DEFAULT_NAME_X
    position_y: Optional[float] = DEFAULT_NAME_Y
    font_size: float = DEFAULT_FONT_SIZE
    font_name: str = DEFAULT_FONT_NAME
    font_style: str = DEFAULT_FONT_STYLE
    text_color: Tuple[float, float, float] = (0, 0, 0)


class CertificateGenerator:
    """Renders certificates for one background image and render config."""

    def __init__(self, background: Union[bytes, str, Path], config: Optional[RenderConfig] = None):
        """
        Args:
            background: Background image bytes, or a path to a PNG/JPEG file
            config: Name placement and font settings
        """
        from reportlab.lib.pagesizes import A4, landscape

        self.background = background
        self.config = config or RenderConfig()
        self.page_width, self.page_height = landscape(A4)
        self._background_cache: Optional[Any] = None
        self._font: Optional[str] = None

    def load_background(self) -> "Image.Image":
        """Decode and cache the background image once per generator instance."""
        from PIL import Image

        if self._background_cache is not None:
            return self._background_cache
        try:
            if isinstance(self.background, (bytes, bytearray)):
                data = bytes(self.background)
            else:
                data = Path(self.background).read_bytes()
            img = Image.open(BytesIO(data))
            img.load()
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise RenderError(f"Background image could not be loaded: {e}") from e
        if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
            # Transparent areas become white paper, not black
            rgba = img.convert("RGBA")
            img = Image.new("RGB", rgba.size, (255, 255, 255))
            img.paste(rgba, mask=rgba.getchannel("A"))
        elif img.mode != "RGB":
            img = img.convert("RGB")
        print(f"[render] background {sniff_image_type(data)} {img.width}x{img.height}", flush=True)
        self._background_cache = img
        return img

    @property
    def font(self) -> str:
        if self._font is None:
            self._font = resolve_font(self.config.font_name, self.config.font_style)
        return self._font

    @property
    def font_size(self) -> float:
        try:
            size = float(self.config.font_size)
        except (TypeError, ValueError):
            size = 0
        return size if size > 0 else DEFAULT_FONT_SIZE

    def text_position(self, text: str) -> Tuple[float, float]:
        """
        (x, y) of the text baseline, measured from the page's top-left corner.
        Unset x centers the text horizontally; unset y uses the page middle.
        """
        from reportlab.pdfbase import pdfmetrics

        text_width = pdfmetrics.stringWidth(text, self.font, self.font_size)
        center_x = self.page_width / 2 - text_width / 2
        x = float(self.config.position_x) if self.config.position_x else center_x
        y = float(self.config.position_y) if self.config.position_y else self.page_height / 2
        return x, y

    def create_pdf_bytes(self, row: Row) -> bytes:
        """
        Create a certificate PDF (bytes) for one row (no filesystem writes).

        Raises:
            RenderError: background failed to load or drawing failed
        """
        from reportlab.lib.utils import ImageReader
        from reportlab.pdfgen import canvas

        img = self.load_background()
        text = row.name
        try:
            buf = BytesIO()
            c = canvas.Canvas(buf, pagesize=(self.page_width, self.page_height), pageCompression=1)
            c.drawImage(ImageReader(img), 0, 0, width=self.page_width, height=self.page_height)
            c.setFont(self.font, self.font_size)
            c.setFillColorRGB(*self.config.text_color)
            x, y = self.text_position(text)
            c.drawString(x, self.page_height - y, text)
            c.showPage()
            c.save()
        except Exception as e:
            raise RenderError(f"Could not draw certificate for {text}: {e}") from e
        return buf.getvalue()

    def create_pdf(self, row: Row, output_path: str) -> None:
        pdf_bytes = self.create_pdf_bytes(row)
        with open(output_path, "wb") as f:
            f.write(pdf_bytes)


def build_certificates_zip(
    rows: List[Row],
    generator: CertificateGenerator,
    on_error: Optional[Callable[[Row, Exception], None]] = None,
    on_progress: Optional[Callable[[int, int, Row], None]] = None,
) -> Tuple[bytes, List[str], List[Tuple[Row, str]]]:
    """
    Render every row into one ZIP archive.

    Rows that fail to render are reported (on_error / console) and left out.
    Duplicate filenames get a numeric suffix in input order.

    Returns:
        (zip_bytes, entry_names, errors)
    """
    entries: List[str] = []
    errors: List[Tuple[Row, str]] = []
    taken: set = set()
    total = len(rows)

    # Use a spooled temp file so large ZIPs spill to disk instead of RAM.
    with tempfile.SpooledTemporaryFile(max_size=ZIP_SPOOL_MAX_BYTES) as zip_buf:
        with zipfile.ZipFile(zip_buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for i, row in enumerate(rows):
                try:
                    pdf_bytes = generator.create_pdf_bytes(row)
                except RenderError as e:
                    print(f"[archive] pdf gen error for row {row.index} ({row.name}): {e}", flush=True)
                    errors.append((row, str(e)))
                    if on_error:
                        on_error(row, e)
                    continue
                filename = unique_filename(safe_pdf_filename(row.source_name, row.index), taken)
                zf.writestr(filename, pdf_bytes)
                entries.append(filename)
                if on_progress:
                    on_progress(i + 1, total, row)
        zip_buf.seek(0)
        data = zip_buf.read()
    return data, entries, errors


@dataclass
class Session:
    """Everything one run needs: uploads, render settings and the outcome log."""

    background: Optional[bytes] = None
    rows: List[Row] = field(default_factory=list)
    render: RenderConfig = RenderConfig()
    log: List[Any] = field(default_factory=list)

    def require_ready(self) -> None:
        if not self.background:
            raise ValidationError("Upload background template image first")
        if not self.rows:
            raise ValidationError("Upload Excel file first")

    def generator(self) -> CertificateGenerator:
        self.require_ready()
        return CertificateGenerator(self.background, self.render)


def _load_session(args) -> Session:
    from data_loaders import load_rows

    rows, stats = load_rows(args.data)
    print(
        f"Found {stats['loaded_rows']} rows "
        f"(name column: {stats['name_column']!r}, email column: {stats['email_column']!r})"
    )
    background = Path(args.background).read_bytes() if os.path.exists(args.background) else None
    if background is None:
        print(f"Error: Background image not found at {args.background}")
    return Session(
        background=background,
        rows=rows,
        render=RenderConfig(
            position_x=args.x,
            position_y=args.y,
            font_size=args.font_size,
            font_name=args.font,
            font_style=args.style,
        ),
    )


def _cmd_generate(args) -> int:
    session = _load_session(args)
    generator = session.generator()

    def _progress(done: int, total: int, row: Row) -> None:
        print(f"Generating certificate {done}/{total}: {row.name}")

    data, entries, errors = build_certificates_zip(session.rows, generator, on_progress=_progress)
    with open(args.output, "wb") as f:
        f.write(data)
    print(f"\nCompleted! Wrote {len(entries)} certificates to '{args.output}'")
    if errors:
        print(f"Skipped {len(errors)} row(s) that failed to render.")
    return 0


def _cmd_send(args) -> int:
    from dispatcher import RelayClient, format_outcome, send_certificates

    session = _load_session(args)
    generator = session.generator()
    if not args.yes:
        answer = input(
            f"Ready to send emails to {len(session.rows)} recipients via {args.relay_url}? [y/N] "
        )
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted.")
            return 1

    def _on_outcome(outcome) -> None:
        session.log.append(outcome)
        print(format_outcome(outcome), flush=True)

    with RelayClient(args.relay_url) as client:
        summary = send_certificates(
            session.rows,
            generator.create_pdf_bytes,
            client.send,
            batch_size=args.batch_size,
            max_attempts=args.max_attempts,
            on_outcome=_on_outcome,
        )
    print(f"\nBatch Complete! Successfully sent: {summary.sent} / {summary.attempted}")
    if summary.skipped:
        print(f"Skipped {summary.skipped} row(s) without a valid email.")
    return 0 if summary.failed == 0 else 2


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    import argparse

    from config import BATCH_SIZE, MAX_ATTEMPTS
    from dispatcher import resolve_relay_url

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("data", help="Path to Excel (.xlsx/.xls) or CSV with name/email columns")
    common.add_argument("background", help="Path to background image (PNG/JPEG)")
    common.add_argument("--x", type=float, default=DEFAULT_NAME_X, help="Name X in points (0 = center)")
    common.add_argument("--y", type=float, default=DEFAULT_NAME_Y, help="Name Y in points from the top (0 = middle)")
    common.add_argument("--font-size", type=float, default=DEFAULT_FONT_SIZE)
    common.add_argument("--font", default=DEFAULT_FONT_NAME, help="times/helvetica/courier or a .ttf path")
    common.add_argument("--style", default=DEFAULT_FONT_STYLE, help="normal/bold/italic/bolditalic")

    parser = argparse.ArgumentParser(description="Generate certificates from a spreadsheet and a background image")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", parents=[common], help="Write all certificates into a ZIP")
    gen.add_argument("-o", "--output", default=ZIP_NAME, help=f"Output ZIP (default: {ZIP_NAME})")
    gen.set_defaults(func=_cmd_generate)

    snd = sub.add_parser("send", parents=[common], help="Email each certificate through the relay")
    snd.add_argument("--relay-url", default=resolve_relay_url(), help="Relay endpoint URL")
    snd.add_argument("--batch-size", type=int, default=BATCH_SIZE)
    snd.add_argument("--max-attempts", type=int, default=MAX_ATTEMPTS)
    snd.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    snd.set_defaults(func=_cmd_send)

    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except (ValueError, RuntimeError, ImportError, OSError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
