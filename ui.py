#!/usr/bin/env python3
"""
Streamlit UI for the certificate mail-merge tool

Run with:
  streamlit run ui.py
"""

import html
import json
import time
import traceback

import streamlit as st

import pandas as pd

from app import RenderConfig, STANDARD_FONTS, Session, build_certificates_zip
from config import (
    BATCH_SIZE,
    DEFAULT_FONT_NAME,
    DEFAULT_FONT_SIZE,
    DEFAULT_FONT_STYLE,
    LOG_HEIGHT_PX,
    MAX_ATTEMPTS,
    PREVIEW_ROWS,
    ZIP_NAME,
)
from data_loaders import load_rows
from dispatcher import RelayClient, format_outcome, resolve_relay_url, send_certificates
from errors import ValidationError
from utils import sniff_image_type

# Startup timing (logged to stdout for Streamlit Cloud logs)
_UI_T0 = time.perf_counter()
def _ui_log(msg: str) -> None:
    print(f"[ui] +{time.perf_counter() - _UI_T0:.3f}s {msg}", flush=True)

_ui_log("ui.py start")

# Page config
st.set_page_config(
    page_title="Batch Certificate Generator",
    page_icon="📜",
    layout="centered"
)

st.markdown(
    """
<style>
  button, input, textarea, select {
    border-radius: 10px !important;
  }
  .main .block-container {
    max-width: 980px;
    padding-top: 1rem;
    padding-bottom: 2.5rem;
  }
  .delivery-log {
    font-family: monospace;
    font-size: 0.85rem;
  }
</style>
""",
    unsafe_allow_html=True,
)
_ui_log("rendered CSS/theme")

st.markdown(
    """
<div style="margin-top: 0.25rem; margin-bottom: 0.25rem;">
  <div style="font-size: 1.8rem; font-weight: 750; line-height: 1.15;">
    Batch Certificate Generator
  </div>
  <div style="font-size: 1.05rem; opacity: 0.8; margin-top: 0.2rem;">
    Merge a spreadsheet of names with a certificate template, then download or email the PDFs
  </div>
</div>
""",
    unsafe_allow_html=True,
)

with st.sidebar:
    with st.expander("About", expanded=False):
        st.markdown("**Batch Certificate Generator**")
        st.markdown("Output is forced to A4 landscape (842pt x 595pt). Your image is stretched to fit.")
_ui_log("rendered header/sidebar")

# Initialize session state
if "session" not in st.session_state:
    st.session_state.session = Session()
if "load_stats" not in st.session_state:
    st.session_state.load_stats = None
if "generated_zip" not in st.session_state:
    # {"zip_bytes": bytes, "count": int, "failed": int}
    st.session_state.generated_zip = None
if "preview_pdf" not in st.session_state:
    st.session_state.preview_pdf = None
if "delivery_lines" not in st.session_state:
    st.session_state.delivery_lines = []
if "delivery_summary" not in st.session_state:
    st.session_state.delivery_summary = None
if "confirm_send" not in st.session_state:
    st.session_state.confirm_send = False
if "_last_error" not in st.session_state:
    st.session_state._last_error = None

session: Session = st.session_state.session


def _reset_outputs():
    st.session_state.generated_zip = None
    st.session_state.preview_pdf = None
    st.session_state.delivery_lines = []
    st.session_state.delivery_summary = None
    st.session_state.confirm_send = False
    session.log = []


# --- 1) Background ---
st.subheader("1) Upload certificate background")
bg_file = st.file_uploader("Background image", type=["png", "jpg", "jpeg"], label_visibility="collapsed")
if bg_file is not None:
    data = bg_file.getvalue()
    if data != session.background:
        session.background = data
        _reset_outputs()
        _ui_log(f"background uploaded ({sniff_image_type(data)}, {len(data)} bytes)")
if session.background:
    st.image(session.background, caption="Template", use_container_width=True)

# --- 2) Spreadsheet ---
st.subheader("2) Upload Excel (.xlsx or .csv)")
with st.form("rows_load_form", clear_on_submit=False):
    data_file = st.file_uploader(
        "Upload data (Excel or CSV)",
        type=["csv", "xlsx", "xls"],
        help="Columns are detected by header: the first header containing 'name' and the first containing 'email'.",
    )
    load_uploaded = st.form_submit_button("📥 Load uploaded file")
if load_uploaded:
    if data_file is None:
        st.warning("Please upload a file first.")
    else:
        try:
            rows, stats = load_rows(data_file, filename=data_file.name)
            session.rows = rows
            st.session_state.load_stats = stats
            _reset_outputs()
            st.success(
                f"Loaded **{stats['loaded_rows']}** rows from **{data_file.name}** "
                f"(name column: `{stats['name_column']}`, email column: `{stats['email_column']}`, "
                f"rows without a valid email: {stats['rows_without_email']})."
            )
        except (ValueError, ImportError, OSError) as e:
            st.error(f"Error reading {data_file.name}: {e}")
        except Exception as e:
            st.error(f"Unexpected error reading {data_file.name}: {e}")

st.caption(f"Rows found: {len(session.rows)}")
if session.rows:
    st.dataframe(
        pd.DataFrame([{"Name": r.name, "Email": r.email} for r in session.rows]),
        use_container_width=True,
        height=220,
    )
    with st.expander(f"Debug: first {PREVIEW_ROWS} rows", expanded=False):
        st.code(
            json.dumps(
                [{"raw": r.raw, "name": r.name, "email": r.email} for r in session.rows[:PREVIEW_ROWS]],
                indent=2,
                default=str,
            ),
            language="json",
        )

# --- 3) Name placement ---
st.subheader("3) Name placement")
font_names = list(STANDARD_FONTS)
styles = list(STANDARD_FONTS[DEFAULT_FONT_NAME])
with st.form("render_form", clear_on_submit=False):
    c1, c2 = st.columns([1, 1])
    with c1:
        name_x = st.number_input("Name X (pts)", min_value=0.0, max_value=842.0,
                                 value=float(session.render.position_x or 0),
                                 help="Leave 0 to center (Max ~842)")
        font_size = st.number_input("Font size", min_value=1.0, max_value=300.0,
                                    value=float(session.render.font_size or DEFAULT_FONT_SIZE))
        font_style = st.selectbox("Font style", styles,
                                  index=styles.index(session.render.font_style)
                                  if session.render.font_style in styles else styles.index(DEFAULT_FONT_STYLE))
    with c2:
        name_y = st.number_input("Name Y (pts)", min_value=0.0, max_value=595.0,
                                 value=float(session.render.position_y or 0),
                                 help="Distance from the top edge. Leave 0 for the vertical middle (Max ~595)")
        font_name = st.selectbox("Font", font_names,
                                 index=font_names.index(session.render.font_name)
                                 if session.render.font_name in font_names else 0)
    apply_render = st.form_submit_button("Apply")
if apply_render:
    session.render = RenderConfig(
        position_x=name_x,
        position_y=name_y,
        font_size=font_size,
        font_name=font_name,
        font_style=font_style,
    )
    st.session_state.generated_zip = None
    st.session_state.preview_pdf = None

if st.button("👀 Preview first certificate"):
    try:
        generator = session.generator()
        st.session_state.preview_pdf = generator.create_pdf_bytes(session.rows[0])
    except ValidationError as e:
        st.warning(str(e))
    except RuntimeError as e:
        st.error(f"Could not render preview: {e}")
if st.session_state.preview_pdf:
    st.download_button(
        "⬇️ Download preview PDF",
        data=st.session_state.preview_pdf,
        file_name="preview.pdf",
        mime="application/pdf",
        key="dl_preview",
    )

st.markdown("---")

# --- 4) Download ZIP ---
st.subheader("4) Download ZIP (test)")
if st.button("🗜️ Generate ZIP", use_container_width=True):
    try:
        generator = session.generator()

        progress_bar = st.progress(0)
        status_text = st.empty()

        def _progress(done, total, row):
            progress_bar.progress(done / total)
            status_text.text(f"Prepared {done}/{total}: {row.name}")

        with st.spinner(f"Generating {len(session.rows)} certificate(s)..."):
            zip_bytes, entries, errors = build_certificates_zip(session.rows, generator, on_progress=_progress)
        progress_bar.empty()
        status_text.empty()
        st.session_state.generated_zip = {"zip_bytes": zip_bytes, "count": len(entries), "failed": len(errors)}
    except ValidationError as e:
        st.warning(str(e))
    except (RuntimeError, OSError) as e:
        st.error(f"Failed to generate ZIP: {e}")
    except Exception as e:
        st.error(f"Unexpected error during generation: {e}")
        st.code(traceback.format_exc())

if st.session_state.generated_zip is not None:
    z = st.session_state.generated_zip
    st.success(f"Prepared **{z['count']}** PDF(s).")
    if z["failed"]:
        st.warning(f"{z['failed']} row(s) failed to render and were left out.")
    st.download_button(
        "⬇️ Download ZIP",
        data=z["zip_bytes"],
        file_name=ZIP_NAME,
        mime="application/zip",
        key="dl_zip",
    )

st.markdown("---")

# --- 5) Email ---
st.subheader("5) Generate & email all")
secrets_relay = {}
try:
    secrets_relay = dict(st.secrets.get("relay", {}))  # type: ignore[attr-defined]
except Exception:
    secrets_relay = {}

relay_url = st.text_input("Relay URL", value=resolve_relay_url(secrets_relay),
                          help="Set `[relay] url` in Streamlit Secrets to change the default.")
st.caption(f"Sends in batches of {BATCH_SIZE}, up to {MAX_ATTEMPTS} attempts per recipient.")

if st.button("📧 Generate & Email All", type="primary", use_container_width=True):
    try:
        session.require_ready()
        st.session_state.confirm_send = True
    except ValidationError as e:
        st.warning(str(e))

if st.session_state.confirm_send:
    st.warning(
        f"Ready to send emails to **{len(session.rows)}** recipients?\n\n"
        "⚠️ IMPORTANT: Do not close this tab until finished."
    )
    ok_col, cancel_col = st.columns([1, 1])
    with ok_col:
        confirmed = st.button("Yes, send now", use_container_width=True)
    with cancel_col:
        if st.button("Cancel", use_container_width=True):
            st.session_state.confirm_send = False
            st.rerun()
    if confirmed:
        st.session_state.confirm_send = False
        st.session_state.delivery_lines = []
        st.session_state.delivery_summary = None
        session.log = []
        st.session_state._last_error = None
        progress_bar = st.progress(0)
        log_box = st.empty()
        total = len(session.rows)

        def _render_log():
            lines = st.session_state.delivery_lines
            log_box.code("\n".join(lines) or "Starting…", language=None)

        def _on_batch(number, batch):
            st.session_state.delivery_lines.insert(0, f"--- Processing Batch {number} ---")
            _render_log()

        def _on_outcome(outcome):
            session.log.append(outcome)
            st.session_state.delivery_lines.insert(0, format_outcome(outcome))
            done = sum(1 for o in session.log if o.kind != "retrying")
            progress_bar.progress(min(1.0, done / total))
            _render_log()

        try:
            generator = session.generator()
            with RelayClient(relay_url) as client:
                summary = send_certificates(
                    session.rows,
                    generator.create_pdf_bytes,
                    client.send,
                    on_outcome=_on_outcome,
                    on_batch=_on_batch,
                )
            st.session_state.delivery_summary = summary
            _ui_log(f"delivery finished: {summary.sent}/{summary.attempted} sent")
        except (ValueError, RuntimeError, ImportError) as e:
            st.session_state._last_error = traceback.format_exc()
            st.error(f"Error sending certificates: {e}")
        except Exception as e:
            st.session_state._last_error = traceback.format_exc()
            st.error(f"Unexpected error sending certificates: {e}")
        progress_bar.empty()
        log_box.empty()

if st.session_state.delivery_summary is not None:
    s = st.session_state.delivery_summary
    st.success(f"Batch Complete! Successfully sent: **{s.sent} / {s.attempted}**")
    if s.skipped:
        st.info(f"Skipped {s.skipped} row(s) without a valid email.")
    if s.failed:
        st.error(f"{s.failed} recipient(s) failed after {MAX_ATTEMPTS} attempts. See the log below.")

if st.session_state.delivery_lines:
    with st.container(height=LOG_HEIGHT_PX):
        st.markdown(
            "<div class='delivery-log'>" + "<br>".join(html.escape(line) for line in st.session_state.delivery_lines) + "</div>",
            unsafe_allow_html=True,
        )

if st.session_state._last_error:
    with st.expander("Show error details", expanded=False):
        st.code(st.session_state._last_error)

if not session.background:
    st.info("👆 Upload a background template image to get started.")
elif not session.rows:
    st.info("👆 Upload an Excel/CSV file with name and email columns.")

st.markdown("---")
