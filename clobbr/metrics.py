"""Run aggregation: averages, the synchronized run accumulator, post-run summary.

- get_time_average: mean of successful durations (0.0 when there are none)
- RunAccumulator: logs/results sequences shared by concurrent attempts;
  append-and-emit happens under one lock
- summarize: percentiles (T-Digest), status counts, common errors
"""

from __future__ import annotations

import math
import threading
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from tdigest import TDigest

from .logging_config import get_logger
from .models import LogItem, RunResult

logger = get_logger("metrics")

# Number of distinct error messages kept in a summary
TOP_ERRORS_LIMIT = 5
# Error messages are truncated before counting
ERROR_MESSAGE_MAX_LENGTH = 200


def get_time_average(results: Sequence[float]) -> float:
    """Arithmetic mean of durations in ms. Empty input averages to 0.0.

    math.fsum keeps the value independent of summation order, so the
    incremental value after the last append equals the final one.
    """
    if not results:
        return 0.0
    return math.fsum(results) / len(results)


def _percentile_from_digest(digest: TDigest, p: float) -> float:
    """Get percentile from T-Digest. Returns 0.0 if empty."""
    if not digest.n:
        return 0.0
    try:
        return digest.percentile(p) or 0.0
    except (ValueError, IndexError):
        return 0.0


def round_half_up(value: float) -> int:
    """Round halves up: 2.5 -> 3, 0.5 -> 1."""
    return math.floor(value + 0.5)


def duration_band(duration_ms: float) -> int:
    """Latency band by rounded seconds: 0 fast, 1 moderate, 2 slow, 3 very slow, 4+ critical."""
    return max(0, round_half_up(duration_ms / 1000))


class RunAccumulator:
    """
    Ordered logs/results of one run, safe to share between concurrent attempts.

    record() appends and calls the emitter while holding the lock, so an
    observer always sees logs that include the item it is told about and
    never a half-applied update. After close(), late completions (abandoned
    attempts of a cancelled run) are dropped.
    """

    __slots__ = ("_lock", "_logs", "_results", "_closed", "_dropped")

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._logs: list[LogItem] = []
        self._results: list[float] = []
        self._closed = False
        self._dropped = 0

    def record(
        self,
        item: LogItem,
        emit: Callable[[LogItem, tuple[LogItem, ...]], None] | None = None,
    ) -> bool:
        """Append a completed attempt and emit it. Returns False if the run was closed."""
        with self._lock:
            if self._closed:
                self._dropped += 1
                logger.debug("Dropping late completion of attempt %d", item.index)
                return False
            self._logs.append(item)
            if not item.failed and item.duration is not None:
                self._results.append(item.duration)
            if emit is not None:
                emit(item, tuple(self._logs))
            return True

    def close(self) -> None:
        with self._lock:
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dropped(self) -> int:
        """Completions ignored after close()."""
        return self._dropped

    @property
    def completed(self) -> int:
        with self._lock:
            return len(self._logs)

    @property
    def logs(self) -> list[LogItem]:
        with self._lock:
            return list(self._logs)

    @property
    def results(self) -> list[float]:
        with self._lock:
            return list(self._results)

    @property
    def average(self) -> float:
        with self._lock:
            return get_time_average(self._results)

    def to_result(self, cancelled: bool = False, elapsed_ms: float = 0.0) -> RunResult:
        with self._lock:
            return RunResult(
                results=list(self._results),
                logs=list(self._logs),
                average=get_time_average(self._results),
                cancelled=cancelled,
                elapsed_ms=elapsed_ms,
            )


@dataclass(slots=True)
class RunSummary:
    """Derived view of a RunResult for dashboards and reports."""

    iterations: int
    completed: int
    successful: int
    failed: int
    average_ms: float
    min_ms: float = 0.0
    max_ms: float = 0.0
    p50_ms: float = 0.0
    p95_ms: float = 0.0
    p99_ms: float = 0.0
    status_code_counts: dict[str, int] = field(default_factory=dict)
    top_errors: dict[str, int] = field(default_factory=dict)

    @property
    def completeness_pct(self) -> int:
        if self.iterations <= 0:
            return 100
        return round_half_up(100 * self.completed / self.iterations)

    @property
    def all_failed(self) -> bool:
        return self.iterations > 0 and self.failed == self.iterations

    @property
    def error_rate_pct(self) -> float:
        if self.completed == 0:
            return 0.0
        return 100.0 * self.failed / self.completed


def summarize(result: RunResult | Sequence[LogItem], iterations: int | None = None) -> RunSummary:
    """Summarize a finished (or partial) run in a single pass over its logs."""
    logs = result.logs if isinstance(result, RunResult) else list(result)
    digest = TDigest()
    durations: list[float] = []
    status_counts: Counter[str] = Counter()
    error_counts: Counter[str] = Counter()
    failed = 0

    for item in logs:
        key = str(item.status_code) if item.status_code is not None else "Error"
        status_counts[key] += 1
        if item.failed:
            failed += 1
            message = item.metas.error_message or (
                f"HTTP {item.status_code}" if item.status_code is not None else "Unknown error"
            )
            error_counts[message[:ERROR_MESSAGE_MAX_LENGTH]] += 1
            continue
        if item.duration is not None:
            durations.append(item.duration)
            digest.update(item.duration)

    return RunSummary(
        iterations=iterations if iterations is not None else len(logs),
        completed=len(logs),
        successful=len(logs) - failed,
        failed=failed,
        average_ms=get_time_average(durations),
        min_ms=min(durations) if durations else 0.0,
        max_ms=max(durations) if durations else 0.0,
        p50_ms=_percentile_from_digest(digest, 50),
        p95_ms=_percentile_from_digest(digest, 95),
        p99_ms=_percentile_from_digest(digest, 99),
        status_code_counts=dict(status_counts),
        top_errors=dict(error_counts.most_common(TOP_ERRORS_LIMIT)),
    )
