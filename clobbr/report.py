"""Run export: JSON (orjson) and JUnit XML. URLs and error text are masked before writing."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import urlparse, urlunparse
from xml.dom import minidom

import orjson

from . import __version__ as clobbr_version
from .logging_config import get_logger
from .metrics import summarize
from .models import LogItem, RunResult, RunSettings

logger = get_logger("report")

REDACTED_PLACEHOLDER = "[REDACTED]"
# Headers that must be redacted in reports (case-insensitive)
SENSITIVE_HEADER_NAMES = frozenset(
    k.lower()
    for k in (
        "Authorization",
        "Cookie",
        "Set-Cookie",
        "X-Api-Key",
        "X-Auth-Token",
        "Api-Key",
        "ApiKey",
        "Token",
        "Proxy-Authorization",
    )
)


def mask_url(url: str, max_path_length: int = 120) -> str:
    """Remove query string and fragment from URL to avoid leaking tokens in reports."""
    if not url or not url.strip():
        return url
    try:
        parsed = urlparse(url)
        clean = urlunparse((parsed.scheme, parsed.netloc, parsed.path or "", "", "", ""))
    except ValueError:
        clean = url
    if len(clean) > max_path_length:
        clean = clean[: max_path_length - 3] + "..."
    return clean


def mask_error_message(msg: str | None, max_length: int = 200) -> str:
    """Truncate error message and redact URLs to avoid leaking sensitive data."""
    if not msg:
        return ""
    msg = re.sub(r"https?://[^\s]+", REDACTED_PLACEHOLDER, msg)
    if len(msg) > max_length:
        return msg[: max_length - 3] + "..."
    return msg


def mask_headers(headers: dict[str, str]) -> dict[str, str]:
    return {
        k: (REDACTED_PLACEHOLDER if k.lower() in SENSITIVE_HEADER_NAMES else v)
        for k, v in headers.items()
    }


def _isoformat(dt: datetime | None) -> str | None:
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ") if dt else None


def log_item_to_dict(item: LogItem) -> dict[str, Any]:
    return {
        "index": item.index,
        "number": item.metas.number,
        "duration_ms": round(item.duration, 4) if item.duration is not None else None,
        "failed": item.failed,
        "status_ok": item.status_ok,
        "status_code": item.status_code,
        "start_date": _isoformat(item.start_date),
        "end_date": _isoformat(item.end_date),
        "error_message": mask_error_message(item.metas.error_message) or None,
    }


def result_to_dict(
    result: RunResult,
    settings: RunSettings,
    name: str = "clobbr",
    start_dt: datetime | None = None,
    end_dt: datetime | None = None,
) -> dict[str, Any]:
    """Machine-readable view of a run: settings, summary, every attempt."""
    summary = summarize(result, settings.iterations)
    return {
        "name": name,
        "clobbr_version": clobbr_version,
        "start_datetime": _isoformat(start_dt),
        "end_datetime": _isoformat(end_dt),
        "settings": {
            "url": mask_url(settings.url),
            "verb": settings.verb.value,
            "iterations": settings.iterations,
            "parallel": settings.parallel,
            "timeout_ms": settings.timeout_ms,
            "headers": mask_headers(settings.headers),
            "fail_on_status": settings.fail_on_status,
        },
        "cancelled": result.cancelled,
        "elapsed_ms": round(result.elapsed_ms, 4),
        "average_ms": round(result.average, 4),
        "results": [round(d, 4) for d in result.results],
        "summary": {
            "completed": summary.completed,
            "successful": summary.successful,
            "failed": summary.failed,
            "completeness_pct": summary.completeness_pct,
            "all_failed": summary.all_failed,
            "error_rate_pct": round(summary.error_rate_pct, 4),
            "min_ms": round(summary.min_ms, 4),
            "max_ms": round(summary.max_ms, 4),
            "p50_ms": round(summary.p50_ms, 4),
            "p95_ms": round(summary.p95_ms, 4),
            "p99_ms": round(summary.p99_ms, 4),
            "status_code_counts": summary.status_code_counts,
            "top_errors": {mask_error_message(k): v for k, v in summary.top_errors.items()},
        },
        "logs": [log_item_to_dict(item) for item in result.logs],
    }


def generate_json_report(
    output_path: str | Path,
    result: RunResult,
    settings: RunSettings,
    name: str = "clobbr",
    start_dt: datetime | None = None,
    end_dt: datetime | None = None,
) -> Path:
    """Write machine-readable JSON report with the summary and every attempt."""
    payload = result_to_dict(result, settings, name=name, start_dt=start_dt, end_dt=end_dt)
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
    logger.debug("JSON report written to %s", out)
    return out


def generate_junit_report(
    output_path: str | Path,
    result: RunResult,
    settings: RunSettings,
    name: str = "clobbr",
    start_dt: datetime | None = None,
) -> Path:
    """Write JUnit XML report for CI (e.g. Jenkins, GitLab). Each attempt is a testcase; failed attempts fail."""
    classname = f"clobbr.{name}"
    failures = result.failed_count
    testsuite = ET.Element(
        "testsuite",
        name=classname,
        tests=str(len(result.logs)),
        failures=str(failures),
        errors="0",
        skipped=str(max(0, settings.iterations - len(result.logs))),
        time=f"{result.elapsed_ms / 1000:.3f}",
    )
    if start_dt:
        testsuite.set("timestamp", start_dt.strftime("%Y-%m-%dT%H:%M:%S"))

    for item in sorted(result.logs, key=lambda i: i.index):
        duration_ms = item.duration if item.duration is not None else (item.metas.duration or 0.0)
        testcase = ET.SubElement(
            testsuite,
            "testcase",
            name=f"{settings.verb.value} #{item.metas.number}",
            classname=classname,
            time=f"{duration_ms / 1000:.3f}",
        )
        if item.failed:
            failure = ET.SubElement(testcase, "failure", message="Request failed")
            failure.text = mask_error_message(item.metas.error_message)

    system_out = ET.SubElement(testsuite, "system-out")
    system_out.text = (
        f"url={mask_url(settings.url)} mode={settings.mode} "
        f"average_ms={result.average:.2f} failed={failures} cancelled={str(result.cancelled).lower()}"
    )

    root = ET.Element("testsuites")
    root.append(testsuite)
    xml_str = minidom.parseString(ET.tostring(root, encoding="unicode", method="xml")).toprettyxml(indent="  ")
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(xml_str, encoding="utf-8")
    logger.debug("JUnit report written to %s", out)
    return out
