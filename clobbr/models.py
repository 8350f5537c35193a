"""Data models for clobbr.

- RunSettings: immutable input of one run
- LogItem / LogMetas: immutable record of one attempt
- RunResult: what a run hands back to the caller
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Verb(str, Enum):
    """HTTP verbs a run may use."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    @classmethod
    def parse(cls, value: "str | Verb") -> "Verb":
        """Case-insensitive lookup. Raises ValueError for unknown verbs."""
        if isinstance(value, Verb):
            return value
        return cls(str(value).strip().upper())


@dataclass(slots=True, frozen=True)
class RunSettings:
    """Configuration of a single run. Never mutated once a run starts.

    timeout_ms of 0 means no deadline. fail_on_status makes non-2xx
    responses count as failed attempts instead of completed ones.
    """

    url: str
    verb: Verb = Verb.GET
    iterations: int = 10
    timeout_ms: float = 10_000
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    parallel: bool = True
    fail_on_status: bool = False

    def prepared_headers(self) -> dict[str, str]:
        """Headers with Content-Type added when a body is sent without one."""
        h = dict(self.headers)
        if self.body and "content-type" not in {k.lower() for k in h}:
            h["Content-Type"] = "application/json"
        return h

    @property
    def mode(self) -> str:
        return "parallel" if self.parallel else "sequence"


@dataclass(slots=True, frozen=True)
class LogMetas:
    """Display metadata attached to every LogItem."""

    index: int
    number: int
    duration: float | None
    status_ok: bool
    status_code: int | None = None
    error_message: str | None = None


@dataclass(slots=True, frozen=True)
class LogItem:
    """Outcome and timing of one attempt.

    duration is None when the attempt failed: failed attempts never
    contribute to the run average.
    """

    index: int
    duration: float | None
    failed: bool
    status_ok: bool
    status_code: int | None
    start_date: datetime
    end_date: datetime
    metas: LogMetas

    def __repr__(self) -> str:
        duration = f"{self.duration:.2f}" if self.duration is not None else "-"
        return (
            f"LogItem(index={self.index}, status={self.status_code}, "
            f"duration_ms={duration}, failed={self.failed})"
        )


@dataclass(slots=True)
class RunResult:
    """Final state of a run.

    results holds durations of successful attempts and logs every attempt,
    both in completion order.
    """

    results: list[float]
    logs: list[LogItem]
    average: float
    cancelled: bool = False
    # Wall time of the whole run, dispatch of the first attempt to completion of the last
    elapsed_ms: float = 0.0

    @property
    def failed_count(self) -> int:
        return sum(1 for item in self.logs if item.failed)
