"""Rich live view of a run, fed by the event stream."""

from __future__ import annotations

import sys
import time
from collections.abc import AsyncIterator, Sequence
from typing import TextIO

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .events import EventKind, RunEvent
from .logging_config import get_logger
from .metrics import duration_band, get_time_average, round_half_up, summarize
from .models import LogItem, RunResult, RunSettings
from .report import mask_error_message, mask_url

logger = get_logger("dashboard")

LIVE_REFRESH_PER_SEC = 4

# Latency band -> colour, mirrors duration_band()
DURATION_STYLES = {
    0: "green",
    1: "yellow",
    2: "dark_orange",
    3: "red",
}
CRITICAL_DURATION_STYLE = "bold red"


def duration_style(duration_ms: float) -> str:
    return DURATION_STYLES.get(duration_band(duration_ms), CRITICAL_DURATION_STYLE)


def _stdout_is_tty() -> bool:
    """True if stdout is a TTY (interactive terminal). False in Docker without -it, CI, pipes."""
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def build_progress_table(
    settings: RunSettings,
    logs: Sequence[LogItem],
    elapsed_seconds: float,
) -> Table:
    """Build a single Rich table with the current state of the run."""
    durations = [item.duration for item in logs if not item.failed and item.duration is not None]
    failed = sum(1 for item in logs if item.failed)
    completed = len(logs)
    pct = round_half_up(100 * completed / settings.iterations) if settings.iterations else 100
    average = get_time_average(durations)

    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan")
    table.add_column(style="green")
    table.add_row("Target", f"{settings.verb.value} {mask_url(settings.url)}")
    table.add_row("Mode", settings.mode)
    table.add_row("Progress", f"{completed}/{settings.iterations} ({pct}%)")
    if durations:
        table.add_row("Average (ms)", Text(f"{average:.1f}", style=duration_style(average)))
        table.add_row("Fastest / slowest (ms)", f"{min(durations):.1f} / {max(durations):.1f}")
    else:
        table.add_row("Average (ms)", "-")
        table.add_row("Fastest / slowest (ms)", "-")
    table.add_row("Failed", Text(str(failed), style="red" if failed else "green"))
    if logs:
        last = logs[-1]
        status = str(last.status_code) if last.status_code is not None else "error"
        table.add_row("Last response", f"#{last.metas.number} {status}")
    table.add_row("Elapsed", f"{elapsed_seconds:.1f}s")
    return table


def create_live_panel(
    settings: RunSettings,
    logs: Sequence[LogItem],
    start_time: float,
    state: str = "running",
) -> Panel:
    """Create Rich Panel for live display."""
    elapsed = time.perf_counter() - start_time if start_time else 0.0
    table = build_progress_table(settings, logs, elapsed)
    title = Text()
    title.append("clobbr ", style="bold magenta")
    title.append(f"| {settings.mode} | {settings.iterations} iterations", style="dim")
    title.append(f" | {state}", style="bold yellow")
    return Panel(table, title=title, border_style="blue")


def format_event_line(event: RunEvent, settings: RunSettings) -> str:
    """One plain-text line per event, for non-interactive output."""
    if event.kind is EventKind.RUN_STARTED:
        return f"clobbr | started {settings.verb.value} {mask_url(settings.url)} x{settings.iterations} ({settings.mode})\n"
    if event.kind.terminal:
        durations = [i.duration for i in event.logs if not i.failed and i.duration is not None]
        word = "cancelled" if event.kind is EventKind.RUN_CANCELLED else "finished"
        return (
            f"clobbr | {word} | {len(event.logs)}/{settings.iterations} "
            f"avg={get_time_average(durations):.1f}ms failed={len(event.logs) - len(durations)}\n"
        )
    item = event.item
    if item is None:
        return ""
    progress = f"{len(event.logs)}/{settings.iterations}"
    if item.failed:
        return f"clobbr | {progress} | #{item.metas.number} FAILED {item.metas.error_message or ''}\n"
    return f"clobbr | {progress} | #{item.metas.number} {item.status_code} {item.duration:.1f}ms\n"


async def run_streaming_fallback(
    events: AsyncIterator[RunEvent],
    settings: RunSettings,
    out: TextIO | None = None,
) -> None:
    """Print one line per event when not a TTY (Docker, CI) so output streams in real time."""
    out = out or sys.stdout
    async for event in events:
        line = format_event_line(event, settings)
        if line:
            out.write(line)
            out.flush()


async def watch_run(
    events: AsyncIterator[RunEvent],
    settings: RunSettings,
    console: Console | None = None,
) -> None:
    """Render events until the run ends: Rich Live on a TTY, plain lines otherwise."""
    if not _stdout_is_tty():
        await run_streaming_fallback(events, settings)
        return

    console = console or Console()
    logs: tuple[LogItem, ...] = ()
    start_time = time.perf_counter()
    with Live(
        create_live_panel(settings, logs, start_time),
        console=console,
        refresh_per_second=LIVE_REFRESH_PER_SEC,
    ) as live:
        async for event in events:
            if event.logs or event.kind.terminal:
                logs = event.logs
            if event.kind is EventKind.RUN_CANCELLED:
                state = "cancelled"
            elif event.kind.terminal:
                state = "finished"
            else:
                state = "running"
            live.update(create_live_panel(settings, logs, start_time, state=state))
    logger.debug("Live view closed after %d responses", len(logs))


def build_summary_table(result: RunResult, settings: RunSettings) -> Table:
    """Final per-run summary: latency percentiles, status codes, most common errors."""
    summary = summarize(result, settings.iterations)
    table = Table(title=f"{settings.verb.value} {mask_url(settings.url)}", show_header=False)
    table.add_column(style="cyan")
    table.add_column()
    table.add_row("Completed", f"{summary.completed}/{summary.iterations} ({summary.completeness_pct}%)")
    table.add_row("Failed", Text(str(summary.failed), style="red" if summary.failed else "green"))
    table.add_row("Average (ms)", Text(f"{result.average:.1f}", style=duration_style(result.average)))
    table.add_row("Min / max (ms)", f"{summary.min_ms:.1f} / {summary.max_ms:.1f}")
    table.add_row("P50 / P95 / P99 (ms)", f"{summary.p50_ms:.1f} / {summary.p95_ms:.1f} / {summary.p99_ms:.1f}")
    table.add_row("Wall time (ms)", f"{result.elapsed_ms:.1f}")
    if summary.status_code_counts:
        codes = ", ".join(f"{k}: {v}" for k, v in sorted(summary.status_code_counts.items()))
        table.add_row("Status codes", codes)
    for message, count in summary.top_errors.items():
        table.add_row("Error", Text(f"{count}x {mask_error_message(message)}", style="red"))
    if summary.all_failed:
        table.add_row("Verdict", Text("All requests failed", style="bold red"))
    if result.cancelled:
        table.add_row("Verdict", Text("Cancelled", style="bold yellow"))
    return table
