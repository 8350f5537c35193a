"""Single-attempt execution: dispatch, timing, classification.

This module provides the per-attempt logic of a run:
- execute_request: one HTTP attempt through a Transport, timed
- failed_log_item: the error-flavoured LogItem for attempts without a usable response
- is_status_ok: 2xx classification

Timing uses perf_counter_ns; start/end dates are wall-clock UTC for display.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone

from .exceptions import ClobbrTransportError
from .models import LogItem, LogMetas, RunSettings
from .transport import Transport

# Nanoseconds to milliseconds conversion
NS_TO_MS = 1_000_000


def is_status_ok(status_code: int | None) -> bool:
    return status_code is not None and 200 <= status_code < 300


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def failed_log_item(
    index: int,
    error: BaseException | str,
    start_date: datetime,
    end_date: datetime | None = None,
    status_code: int | None = None,
    duration: float | None = None,
) -> LogItem:
    """Build the LogItem of a failed attempt.

    The item's own duration is always None so it never reaches the average;
    a measured duration (fail_on_status) is kept in metas for display.
    """
    if isinstance(error, BaseException):
        message = getattr(error, "message", None) or str(error) or type(error).__name__
    else:
        message = error
    return LogItem(
        index=index,
        duration=None,
        failed=True,
        status_ok=False,
        status_code=status_code,
        start_date=start_date,
        end_date=end_date or _utcnow(),
        metas=LogMetas(
            index=index,
            number=index + 1,
            duration=duration,
            status_ok=False,
            status_code=status_code,
            error_message=message,
        ),
    )


async def execute_request(
    transport: Transport,
    index: int,
    settings: RunSettings,
) -> LogItem:
    """Execute attempt `index` of a run and return its LogItem.

    Args:
        transport: Injected HTTP capability
        index: 0-based position of the attempt in the run
        settings: Run settings (verb, url, headers, body, timeout)

    Returns:
        A completed LogItem for any HTTP response, or a failed one when the
        transport raised ClobbrTransportError.

    Note:
        Other exceptions propagate; the runner converts them into failed
        LogItems at the attempt boundary.
    """
    headers = settings.prepared_headers()
    body = settings.body.encode("utf-8") if settings.body is not None else None

    start_date = _utcnow()
    start_ns = time.perf_counter_ns()
    try:
        response = await transport.send(
            settings.verb.value,
            settings.url,
            headers,
            body,
            settings.timeout_ms,
        )
    except ClobbrTransportError as e:
        return failed_log_item(index, e, start_date)

    elapsed_ms = (time.perf_counter_ns() - start_ns) / NS_TO_MS
    end_date = _utcnow()
    status_ok = is_status_ok(response.status_code)

    if settings.fail_on_status and not status_ok:
        return failed_log_item(
            index,
            f"HTTP {response.status_code}",
            start_date,
            end_date,
            status_code=response.status_code,
            duration=elapsed_ms,
        )

    return LogItem(
        index=index,
        duration=elapsed_ms,
        failed=False,
        status_ok=status_ok,
        status_code=response.status_code,
        start_date=start_date,
        end_date=end_date,
        metas=LogMetas(
            index=index,
            number=index + 1,
            duration=elapsed_ms,
            status_ok=status_ok,
            status_code=response.status_code,
        ),
    )
