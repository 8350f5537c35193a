"""Unit tests for averaging, the run accumulator and run summaries."""

from __future__ import annotations

import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from clobbr.metrics import RunAccumulator, RunSummary, duration_band, get_time_average, round_half_up, summarize
from clobbr.models import RunResult

from conftest import make_item


def test_get_time_average_empty_is_zero() -> None:
    assert get_time_average([]) == 0.0


def test_get_time_average_mean() -> None:
    assert get_time_average([100.0, 200.0, 300.0]) == 200.0
    assert get_time_average([50.0]) == 50.0


def test_get_time_average_order_independent() -> None:
    values = [random.uniform(0.1, 5000) for _ in range(500)]
    shuffled = list(values)
    random.shuffle(shuffled)
    assert get_time_average(values) == get_time_average(shuffled)


def test_incremental_average_converges_to_final() -> None:
    values = [12.5, 0.1, 999.9, 42.0, 3.3333]
    acc = RunAccumulator()
    incremental = []
    for i, v in enumerate(values):
        acc.record(make_item(i, duration=v))
        incremental.append(acc.average)
    assert incremental[-1] == get_time_average(values)
    assert incremental[0] == values[0]


def test_accumulator_record_success_and_failure() -> None:
    acc = RunAccumulator()
    acc.record(make_item(0, duration=80.0))
    acc.record(make_item(1, failed=True, status_code=None, error="refused"))
    assert acc.completed == 2
    assert acc.results == [80.0]
    assert [i.index for i in acc.logs] == [0, 1]
    assert acc.average == 80.0


def test_accumulator_emits_with_consistent_snapshot() -> None:
    acc = RunAccumulator()
    seen = []

    def emit(item, logs):
        seen.append((item.index, len(logs), logs[-1] is item))

    for i in range(3):
        acc.record(make_item(i), emit)
    assert seen == [(0, 1, True), (1, 2, True), (2, 3, True)]


def test_accumulator_close_drops_late_completions() -> None:
    acc = RunAccumulator()
    assert acc.record(make_item(0)) is True
    acc.close()
    emitted = []
    assert acc.record(make_item(1), lambda item, logs: emitted.append(item)) is False
    assert acc.completed == 1
    assert acc.dropped == 1
    assert emitted == []
    assert acc.closed is True


def test_accumulator_threaded_records_not_lost() -> None:
    acc = RunAccumulator()
    lengths = []

    def emit(item, logs):
        lengths.append(len(logs))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: acc.record(make_item(i, duration=float(i)), emit), range(400)))
    assert acc.completed == 400
    assert len(acc.results) == 400
    # Each emit saw a distinct, strictly growing snapshot
    assert sorted(lengths) == list(range(1, 401))


def test_accumulator_to_result() -> None:
    acc = RunAccumulator()
    acc.record(make_item(1, duration=10.0))
    acc.record(make_item(0, duration=30.0))
    result = acc.to_result(cancelled=False, elapsed_ms=42.0)
    assert isinstance(result, RunResult)
    assert result.results == [10.0, 30.0]
    assert [i.index for i in result.logs] == [1, 0]
    assert result.average == 20.0
    assert result.elapsed_ms == 42.0
    assert result.failed_count == 0


def test_summarize_empty() -> None:
    summary = summarize(RunResult(results=[], logs=[], average=0.0), iterations=5)
    assert summary.completed == 0
    assert summary.average_ms == 0.0
    assert summary.p95_ms == 0.0
    assert summary.completeness_pct == 0
    assert summary.all_failed is False
    assert summary.error_rate_pct == 0.0


def test_summarize_single_request() -> None:
    summary = summarize([make_item(0, duration=50.0)])
    assert summary.iterations == 1
    assert summary.p50_ms == 50
    assert summary.p95_ms == 50
    assert summary.p99_ms == 50
    assert summary.min_ms == summary.max_ms == 50


def test_summarize_mixed() -> None:
    logs = [
        make_item(0, duration=10.0),
        make_item(1, duration=20.0),
        make_item(2, duration=30.0, status_code=404),
        make_item(3, failed=True, status_code=None, error="Connection refused"),
        make_item(4, failed=True, status_code=None, error="Connection refused"),
        make_item(5, failed=True, status_code=None, error="Request timed out after 100 ms"),
    ]
    summary = summarize(RunResult(results=[10.0, 20.0, 30.0], logs=logs, average=20.0), iterations=8)
    assert summary.completed == 6
    assert summary.successful == 3
    assert summary.failed == 3
    assert summary.average_ms == 20.0
    assert summary.min_ms == 10.0
    assert summary.max_ms == 30.0
    assert summary.completeness_pct == 75
    assert summary.error_rate_pct == 50.0
    assert summary.status_code_counts == {"200": 2, "404": 1, "Error": 3}
    assert list(summary.top_errors.items())[0] == ("Connection refused", 2)
    assert summary.top_errors["Request timed out after 100 ms"] == 1


def test_summarize_all_failed() -> None:
    logs = [make_item(i, failed=True, status_code=None, error="refused") for i in range(3)]
    summary = summarize(logs, iterations=3)
    assert summary.all_failed is True
    assert summary.average_ms == 0.0


def test_summarize_failed_status_without_message() -> None:
    summary = summarize([make_item(0, failed=True, status_code=502)])
    assert summary.top_errors == {"HTTP 502": 1}


@pytest.mark.parametrize(
    ("duration", "band"),
    [(0, 0), (499, 0), (500, 1), (1499, 1), (1500, 2), (2500, 3), (2600, 3), (9000, 9)],
)
def test_duration_band(duration, band) -> None:
    assert duration_band(duration) == band


@pytest.mark.parametrize(("value", "expected"), [(0.5, 1), (1.5, 2), (2.5, 3), (2.49, 2), (12.5, 13)])
def test_round_half_up(value, expected) -> None:
    assert round_half_up(value) == expected


def test_completeness_pct_rounds_half_up() -> None:
    summary = RunSummary(iterations=8, completed=1, successful=1, failed=0, average_ms=10.0)
    assert summary.completeness_pct == 13
