"""
Batched certificate delivery to the mail relay.

Rows are sent in fixed-size groups. Members of a group run concurrently on one
asyncio event loop; the next group starts only after the whole group settled,
followed by a short cooldown. Each row is retried a fixed number of times.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from config import (
    BATCH_COOLDOWN_S,
    BATCH_SIZE,
    DEFAULT_RELAY_URL,
    MAX_ATTEMPTS,
    RELAY_TIMEOUT_S,
    RELAY_URL_ENV,
    RETRY_DELAY_S,
)
from data_loaders import Row
from errors import RenderError, TransportError
from utils import is_deliverable_email

SENT = "sent"
RETRYING = "retrying"
FAILED = "failed"
SKIPPED = "skipped"


class DeliveryOutcome(NamedTuple):
    kind: str
    row: Row
    attempt: int = 0
    reason: str = ""


class DispatchSummary(NamedTuple):
    sent: int
    attempted: int
    failed: int
    skipped: int
    total: int


def format_outcome(outcome: DeliveryOutcome) -> str:
    """One line for the operator-facing log."""
    row = outcome.row
    if outcome.kind == SENT:
        return f"✅ Sent: {row.email}"
    if outcome.kind == RETRYING:
        return f"🔄 Retrying {row.name} (attempt {outcome.attempt} failed: {outcome.reason})"
    if outcome.kind == FAILED:
        return f"❌ Failed {row.name}: {outcome.reason}"
    return f"⏭️ Skipped {row.name}: {outcome.reason}"


def resolve_relay_url(secrets: Optional[Dict[str, Any]] = None) -> str:
    """Relay URL from Streamlit secrets (`[relay] url`), then the environment, then config."""
    url = ""
    if secrets:
        url = str(secrets.get("url", "") or "").strip()
    if not url:
        url = os.environ.get(RELAY_URL_ENV, "").strip()
    return url or DEFAULT_RELAY_URL


class CancelToken:
    """Cancels a run between attempts and batches. Waits end early once cancelled."""

    def __init__(self):
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    async def sleep(self, delay: float) -> None:
        if self._cancelled or delay <= 0:
            return
        if self._event is None:
            self._event = asyncio.Event()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass


class RelayClient:
    """
    Posts one certificate to the relay as multipart form data
    (`pdf`, `email`, `name`). Only the status code decides success.
    """

    def __init__(self, url: str, timeout_s: int = RELAY_TIMEOUT_S, session: Any = None):
        import requests

        self.url = (url or "").strip()
        if not self.url:
            raise ValueError("Relay URL is not configured.")
        self.timeout_s = timeout_s
        self._session = session if session is not None else requests.Session()

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "RelayClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def send(self, pdf_bytes: bytes, email: str, name: str) -> None:
        """
        Raises:
            TransportError: non-2xx response or the request failed
        """
        import requests

        try:
            resp = self._session.post(
                self.url,
                files={"pdf": ("certificate.pdf", pdf_bytes, "application/pdf")},
                data={"email": email, "name": name},
                timeout=(10, max(10, int(self.timeout_s))),
            )
        except requests.RequestException as e:
            raise TransportError(f"Relay request failed: {e}") from e
        if 200 <= resp.status_code < 300:
            return
        raise TransportError(_error_message(resp), status_code=resp.status_code)


def _error_message(resp) -> str:
    """Prefer the relay's JSON `error` field; fall back to the status line."""
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    reason = getattr(resp, "reason", "") or "Server Error"
    return f"{resp.status_code} {reason}"


async def _deliver_row(
    row: Row,
    render: Callable[[Row], bytes],
    send: Callable[[bytes, str, str], None],
    emit: Callable[[DeliveryOutcome], None],
    *,
    max_attempts: int,
    retry_delay_s: float,
    token: CancelToken,
) -> bool:
    if not is_deliverable_email(row.email):
        emit(DeliveryOutcome(SKIPPED, row, reason=f"invalid email {row.email!r}"))
        return False

    try:
        pdf_bytes = render(row)
    except RenderError as e:
        emit(DeliveryOutcome(FAILED, row, reason=str(e)))
        return False

    loop = asyncio.get_running_loop()
    attempts = max(1, int(max_attempts))
    for attempt in range(1, attempts + 1):
        if token.cancelled:
            return False
        try:
            await loop.run_in_executor(None, send, pdf_bytes, row.email, row.name)
        except TransportError as e:
            if attempt < attempts:
                emit(DeliveryOutcome(RETRYING, row, attempt=attempt, reason=str(e)))
                await token.sleep(retry_delay_s)
                continue
            emit(DeliveryOutcome(FAILED, row, attempt=attempt, reason=str(e)))
            return False
        emit(DeliveryOutcome(SENT, row, attempt=attempt))
        return True
    return False


async def dispatch(
    rows: List[Row],
    render: Callable[[Row], bytes],
    send: Callable[[bytes, str, str], None],
    *,
    batch_size: int = BATCH_SIZE,
    max_attempts: int = MAX_ATTEMPTS,
    retry_delay_s: float = RETRY_DELAY_S,
    cooldown_s: float = BATCH_COOLDOWN_S,
    on_outcome: Optional[Callable[[DeliveryOutcome], None]] = None,
    on_batch: Optional[Callable[[int, List[Row]], None]] = None,
    token: Optional[CancelToken] = None,
) -> DispatchSummary:
    """
    Deliver one certificate per row in batches of `batch_size`.

    `render` turns a row into PDF bytes; `send` posts them and raises
    TransportError on failure. Outcomes are reported through `on_outcome` as
    they resolve (completion order within a batch).
    """
    token = token or CancelToken()
    size = max(1, int(batch_size))
    log: List[DeliveryOutcome] = []

    def emit(outcome: DeliveryOutcome) -> None:
        log.append(outcome)
        if on_outcome:
            on_outcome(outcome)

    for start in range(0, len(rows), size):
        if token.cancelled:
            break
        if start > 0:
            await token.sleep(cooldown_s)
            if token.cancelled:
                break
        batch = rows[start : start + size]
        number = start // size + 1
        print(f"[dispatch] --- Processing Batch {number} ({len(batch)} rows) ---", flush=True)
        if on_batch:
            on_batch(number, batch)
        await asyncio.gather(
            *(
                _deliver_row(
                    row,
                    render,
                    send,
                    emit,
                    max_attempts=max_attempts,
                    retry_delay_s=retry_delay_s,
                    token=token,
                )
                for row in batch
            )
        )

    sent = sum(1 for o in log if o.kind == SENT)
    failed = sum(1 for o in log if o.kind == FAILED)
    skipped = sum(1 for o in log if o.kind == SKIPPED)
    return DispatchSummary(
        sent=sent,
        attempted=sent + failed,
        failed=failed,
        skipped=skipped,
        total=len(rows),
    )


def send_certificates(
    rows: List[Row],
    render: Callable[[Row], bytes],
    send: Callable[[bytes, str, str], None],
    **kwargs,
) -> DispatchSummary:
    """Blocking wrapper around `dispatch` for the UI and CLI."""
    return asyncio.run(dispatch(rows, render, send, **kwargs))
