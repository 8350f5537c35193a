"""Pytest fixtures for clobbr tests."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from clobbr.models import LogItem, LogMetas, RunSettings, Verb
from clobbr.transport import TransportResponse


class FakeTransport:
    """In-memory transport with scripted outcomes.

    outcomes[i] applies to the i-th call (dispatch order): an exception
    instance is raised, a (status_code, latency_ms) tuple is returned after
    sleeping. Calls beyond the script use the defaults.
    """

    def __init__(
        self,
        latency_ms: float = 0.0,
        status_code: int = 200,
        outcomes: list | None = None,
        timeline: list | None = None,
    ) -> None:
        self.latency_ms = latency_ms
        self.status_code = status_code
        self.outcomes = list(outcomes or [])
        self.timeline = timeline if timeline is not None else []
        self.calls: list[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.entered = False
        self.closed = False

    async def send(self, method, url, headers, body, timeout_ms):
        call = len(self.calls)
        self.calls.append((method, url, headers, body, timeout_ms))
        self.timeline.append(("dispatch", call, time.perf_counter()))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            outcome = self.outcomes[call] if call < len(self.outcomes) else None
            if isinstance(outcome, BaseException):
                raise outcome
            status, latency = outcome if outcome is not None else (self.status_code, self.latency_ms)
            if latency:
                await asyncio.sleep(latency / 1000)
            return TransportResponse(status_code=status)
        finally:
            self.in_flight -= 1

    async def __aenter__(self) -> "FakeTransport":
        self.entered = True
        return self

    async def aclose(self) -> None:
        self.closed = True

    async def __aexit__(self, *exc) -> None:
        await self.aclose()


def make_item(
    index: int = 0,
    duration: float | None = 100.0,
    failed: bool = False,
    status_code: int | None = 200,
    error: str | None = None,
) -> LogItem:
    now = datetime.now(timezone.utc)
    status_ok = status_code is not None and 200 <= status_code < 300 and not failed
    return LogItem(
        index=index,
        duration=None if failed else duration,
        failed=failed,
        status_ok=status_ok,
        status_code=status_code,
        start_date=now,
        end_date=now,
        metas=LogMetas(
            index=index,
            number=index + 1,
            duration=None if failed else duration,
            status_ok=status_ok,
            status_code=status_code,
            error_message=error,
        ),
    )


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def settings() -> RunSettings:
    return RunSettings(url="http://x/test", verb=Verb.GET, iterations=3, timeout_ms=0, parallel=True)


@pytest.fixture
def tmp_path_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings file."""
    content = """
url: https://api.example.com/health
verb: post
iterations: 25
timeout_ms: 5000
parallel: false
headers:
  Authorization: Bearer abc
body: '{"ping": true}'
"""
    p = tmp_path / "settings.yaml"
    p.write_text(content, encoding="utf-8")
    return p
