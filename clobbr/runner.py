"""Run orchestration: validate, dispatch N attempts, accumulate, emit.

Parallel mode schedules every attempt as an asyncio task at once and awaits
them jointly; sequential mode awaits each attempt before dispatching the
next. Either way every attempt runs to completion (no fail-fast), each
completion is recorded and published under the accumulator lock, and the
run ends with a RunResult.
"""

from __future__ import annotations

import asyncio
import signal
import time
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from rich.console import Console

from .dashboard import watch_run
from .engine import NS_TO_MS, execute_request, failed_log_item
from .events import EventBus, EventCallback, EventKind, RunEvent
from .exceptions import ClobbrRunnerError, ClobbrValidationError
from .logging_config import get_logger
from .metrics import RunAccumulator
from .models import LogItem, RunResult, RunSettings, Verb
from .report import generate_json_report, generate_junit_report
from .transport import HttpxTransport, Transport
from .validate import report_name, validate

logger = get_logger("runner")


class RunState(str, Enum):
    """Lifecycle of one RunOrchestrator."""

    IDLE = "idle"
    VALIDATING = "validating"
    REJECTED = "rejected"
    DISPATCHING = "dispatching"
    COMPLETING = "completing"
    DONE = "done"


def check_settings(settings: RunSettings) -> list[str]:
    """All reasons settings cannot be run; empty when they can."""
    errors = validate(settings.url, settings.verb).errors
    iterations = settings.iterations
    if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 1:
        errors.append(f"iterations must be a positive integer, got {settings.iterations!r}")
    return errors


class RunOrchestrator:
    """
    Drives one run. Instances are single-use.

    Args:
        settings: Immutable run settings
        transport: HTTP capability; an HttpxTransport is opened for the run when omitted
        bus: Event bus to publish on (a private one is created when omitted)
        cancel: Optional token. Once set, sequential runs stop dispatching and
            parallel runs stop waiting for outstanding attempts.
    """

    def __init__(
        self,
        settings: RunSettings,
        transport: Transport | None = None,
        bus: EventBus | None = None,
        cancel: asyncio.Event | None = None,
    ) -> None:
        self.settings = settings
        self.bus = bus or EventBus()
        self.cancel = cancel
        self.state = RunState.IDLE
        self._transport = transport
        self._accumulator = RunAccumulator()
        self._abandoned: set[asyncio.Task[None]] = set()
        self._closer: asyncio.Task[None] | None = None

    @property
    def accumulator(self) -> RunAccumulator:
        return self._accumulator

    def _validate(self) -> RunSettings:
        self.state = RunState.VALIDATING
        errors = check_settings(self.settings)
        if errors:
            self.state = RunState.REJECTED
            logger.warning("Run rejected: %s", "; ".join(errors), extra={"url": self.settings.url})
            raise ClobbrValidationError(errors, context={"url": self.settings.url})
        verb = Verb.parse(self.settings.verb)
        if verb is self.settings.verb:
            return self.settings
        return replace(self.settings, verb=verb)

    def _cancel_requested(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    def _emit(self, item: LogItem, logs: tuple[LogItem, ...]) -> None:
        kind = EventKind.RESPONSE_FAILED if item.failed else EventKind.RESPONSE_OK
        self.bus.publish(RunEvent(kind=kind, item=item, logs=logs))

    async def _attempt(self, transport: Transport, index: int, settings: RunSettings) -> None:
        start_date = datetime.now(timezone.utc)
        try:
            item = await execute_request(transport, index, settings)
        except Exception as e:  # noqa: BLE001 - attempt isolation boundary
            logger.warning(
                "Attempt raised %s: %s", type(e).__name__, e,
                extra={"attempt": index, "url": settings.url},
            )
            item = failed_log_item(index, e, start_date)
        self._accumulator.record(item, self._emit)

    async def _dispatch_sequence(self, transport: Transport, settings: RunSettings) -> bool:
        for index in range(settings.iterations):
            if self._cancel_requested():
                self._accumulator.close()
                return True
            await self._attempt(transport, index, settings)
        return False

    async def _dispatch_parallel(self, transport: Transport, settings: RunSettings) -> bool:
        if self._cancel_requested():
            self._accumulator.close()
            return True

        tasks = [
            asyncio.create_task(self._attempt(transport, index, settings))
            for index in range(settings.iterations)
        ]
        gathered = asyncio.gather(*tasks)
        if self.cancel is None:
            await gathered
            return False

        cancel_waiter = asyncio.create_task(self.cancel.wait())
        try:
            done, _ = await asyncio.wait({gathered, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_waiter.cancel()
        if gathered in done:
            gathered.result()
            return False

        # Abandon, do not kill: outstanding attempts finish on their own and are ignored.
        self._accumulator.close()
        gathered.add_done_callback(lambda f: f.cancelled() or f.exception())
        for task in tasks:
            if not task.done():
                self._abandoned.add(task)
                task.add_done_callback(self._abandoned.discard)
        logger.info(
            "Run cancelled: %d of %d attempts abandoned",
            len(self._abandoned), settings.iterations,
        )
        return True

    async def _dispatch(self, transport: Transport, settings: RunSettings) -> bool:
        if settings.parallel:
            return await self._dispatch_parallel(transport, settings)
        return await self._dispatch_sequence(transport, settings)

    async def _release(self, transport: HttpxTransport) -> None:
        """Close a run-owned transport, deferred until abandoned attempts have finished with it."""
        pending = [task for task in self._abandoned if not task.done()]
        if not pending:
            await transport.aclose()
            return

        async def _close_after() -> None:
            try:
                await asyncio.gather(*pending, return_exceptions=True)
            finally:
                await transport.aclose()
                logger.debug("Run transport closed after %d abandoned attempts", len(pending))

        self._closer = asyncio.create_task(_close_after())

    async def wait_closed(self) -> None:
        """Wait until abandoned attempts are done and a run-owned transport is closed."""
        if self._closer is not None:
            await self._closer

    async def run(self) -> RunResult:
        """Run all attempts. Raises ClobbrValidationError before dispatching anything if settings are invalid."""
        if self.state is not RunState.IDLE:
            raise ClobbrRunnerError(
                "RunOrchestrator instances can only run once",
                context={"state": self.state.value},
            )
        settings = self._validate()

        self.state = RunState.DISPATCHING
        logger.info(
            "Starting run: %s %s, iterations=%d, mode=%s, timeout_ms=%s",
            settings.verb.value, settings.url, settings.iterations, settings.mode, settings.timeout_ms,
            extra={"url": settings.url, "verb": settings.verb.value, "mode": settings.mode},
        )
        self.bus.publish(RunEvent(kind=EventKind.RUN_STARTED))

        start_ns = time.perf_counter_ns()
        if self._transport is None:
            transport = HttpxTransport()
            try:
                cancelled = await self._dispatch(transport, settings)
            finally:
                await self._release(transport)
        else:
            cancelled = await self._dispatch(self._transport, settings)
        elapsed_ms = (time.perf_counter_ns() - start_ns) / NS_TO_MS

        self.state = RunState.COMPLETING
        self._accumulator.close()
        result = self._accumulator.to_result(cancelled=cancelled, elapsed_ms=elapsed_ms)
        kind = EventKind.RUN_CANCELLED if cancelled else EventKind.RUN_FINISHED
        self.bus.publish(RunEvent(kind=kind, logs=tuple(result.logs)))
        self.state = RunState.DONE

        logger.info(
            "Run %s: completed=%d/%d, failed=%d, average_ms=%.2f, elapsed_ms=%.1f",
            "cancelled" if cancelled else "finished",
            len(result.logs), settings.iterations, result.failed_count, result.average, elapsed_ms,
        )
        return result


async def run(
    settings: RunSettings,
    on_event: EventCallback | None = None,
    *,
    transport: Transport | None = None,
    bus: EventBus | None = None,
    cancel: asyncio.Event | None = None,
) -> RunResult:
    """Run settings.iterations attempts in the mode chosen by settings.parallel.

    on_event(kind, item, logs_so_far) is called for every event of this run,
    in order, with the logs recorded up to and including item.
    """
    bus = bus or EventBus()
    unsubscribe = bus.subscribe_callback(on_event) if on_event is not None else None
    try:
        return await RunOrchestrator(settings, transport=transport, bus=bus, cancel=cancel).run()
    finally:
        if unsubscribe is not None:
            unsubscribe()


async def run_parallel(
    settings: RunSettings,
    on_event: EventCallback | None = None,
    **kwargs,
) -> RunResult:
    """Dispatch every attempt at once regardless of settings.parallel."""
    return await run(replace(settings, parallel=True), on_event, **kwargs)


async def run_sequence(
    settings: RunSettings,
    on_event: EventCallback | None = None,
    **kwargs,
) -> RunResult:
    """Dispatch attempts one after another regardless of settings.parallel."""
    return await run(replace(settings, parallel=False), on_event, **kwargs)


def _setup_signal_handlers(cancel: asyncio.Event) -> list[int]:
    """Route SIGINT/SIGTERM to the cancel token so a run stops gracefully. Returns installed signals."""
    loop = asyncio.get_running_loop()

    def _request_cancel(signum: int) -> None:
        if not cancel.is_set():
            logger.info("Shutdown signal received (signal %d), stopping run...", signum)
            cancel.set()

    installed: list[int] = []
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, _request_cancel, sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # Windows event loops and non-main threads cannot install handlers
            continue
        installed.append(sig)
    return installed


def _remove_signal_handlers(installed: list[int]) -> None:
    loop = asyncio.get_running_loop()
    for sig in installed:
        loop.remove_signal_handler(sig)


async def run_and_report(
    settings: RunSettings,
    *,
    live: bool = True,
    json_path: str | Path | None = None,
    junit_path: str | Path | None = None,
    transport: Transport | None = None,
    console: Console | None = None,
    handle_signals: bool = True,
) -> RunResult:
    """Full pipeline used by the CLI: live view, run, reports.

    The live view consumes the bus through its own stream so rendering never
    runs inside the accumulator lock.
    """
    console = console or Console()
    name = report_name(settings.url)
    bus = EventBus()
    cancel = asyncio.Event()
    stream = bus.stream() if live else None
    watcher = asyncio.create_task(watch_run(stream, settings, console=console)) if stream is not None else None
    installed = _setup_signal_handlers(cancel) if handle_signals else []

    start_dt = datetime.now(timezone.utc)
    try:
        result = await run(settings, transport=transport, bus=bus, cancel=cancel)
    except BaseException:
        if watcher is not None:
            watcher.cancel()
            stream.close()
        raise
    finally:
        _remove_signal_handlers(installed)
    if watcher is not None:
        await watcher
    end_dt = datetime.now(timezone.utc)

    if json_path:
        generate_json_report(json_path, result, settings, name=name, start_dt=start_dt, end_dt=end_dt)
        if live:
            console.print(f"[dim]JSON report:[/dim] {json_path}")
    if junit_path:
        generate_junit_report(junit_path, result, settings, name=name, start_dt=start_dt)
        if live:
            console.print(f"[dim]JUnit report:[/dim] {junit_path}")
    return result
