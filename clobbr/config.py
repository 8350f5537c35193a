"""YAML settings loader for clobbr runs."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import orjson
import yaml

from .exceptions import ClobbrConfigError
from .logging_config import get_logger
from .models import RunSettings, Verb
from .validate import normalize_url

logger = get_logger("config")

# Iteration cap enforced at the configuration boundary; the runner itself has none.
MAX_ITERATIONS = 1000
DEFAULT_ITERATIONS = 10
DEFAULT_TIMEOUT_MS = 10_000.0


def _validate_settings(s: RunSettings) -> None:
    """Validate RunSettings bounds. Raises ClobbrConfigError if invalid."""
    if isinstance(s.iterations, bool) or not isinstance(s.iterations, int):
        raise ClobbrConfigError("iterations must be an integer")
    if s.iterations < 1:
        raise ClobbrConfigError("iterations must be >= 1")
    if s.iterations > MAX_ITERATIONS:
        raise ClobbrConfigError(f"iterations must be <= {MAX_ITERATIONS}")
    if s.timeout_ms < 0:
        raise ClobbrConfigError("timeout_ms must be >= 0")
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in s.headers.items()):
        raise ClobbrConfigError("headers must map strings to strings")
    if s.body is not None and not isinstance(s.body, str):
        raise ClobbrConfigError("body must be a string")


def validate_settings(settings: RunSettings) -> None:
    """Validate RunSettings. Raises ClobbrConfigError if invalid."""
    _validate_settings(settings)


def parse_timeout(value: Any) -> float:
    """Timeout in ms. Empty, non-numeric or negative input means no deadline (0)."""
    if value is None or value == "":
        return 0.0
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        return 0.0
    return timeout if timeout > 0 else 0.0


def parse_headers(raw: Any) -> dict[str, str]:
    """Headers from a YAML mapping or a list of 'Name: value' strings."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {str(k).strip(): str(v).strip() for k, v in raw.items()}
    if isinstance(raw, list):
        out: dict[str, str] = {}
        for entry in raw:
            if not isinstance(entry, str) or ":" not in entry:
                raise ClobbrConfigError(f"Invalid header entry: {entry!r} (expected 'Name: value')")
            k, _, v = entry.partition(":")
            out[k.strip()] = v.strip()
        return out
    raise ClobbrConfigError(
        "headers must be a mapping or a list of 'Name: value' strings",
        context={"actual_type": type(raw).__name__},
    )


def settings_from_dict(raw: dict[str, Any]) -> RunSettings:
    """Build validated RunSettings from a plain mapping (YAML document, CLI overrides)."""
    url = raw.get("url")
    if not url or not isinstance(url, str):
        raise ClobbrConfigError("url is required")

    try:
        verb = Verb.parse(raw.get("verb") or "GET")
    except ValueError as e:
        raise ClobbrConfigError(f"Unsupported verb: {raw.get('verb')!r}", original_error=e) from e

    body = raw.get("body")
    if isinstance(body, (dict, list)):
        body = orjson.dumps(body).decode("utf-8")

    try:
        settings = RunSettings(
            url=normalize_url(url, ssl=bool(raw.get("ssl", True))),
            verb=verb,
            iterations=int(raw.get("iterations", DEFAULT_ITERATIONS)),
            timeout_ms=parse_timeout(raw.get("timeout_ms", raw.get("timeout", DEFAULT_TIMEOUT_MS))),
            headers=parse_headers(raw.get("headers")),
            body=body,
            parallel=bool(raw.get("parallel", True)),
            fail_on_status=bool(raw.get("fail_on_status", False)),
        )
    except (TypeError, ValueError) as e:
        raise ClobbrConfigError(f"Invalid settings value: {e}", original_error=e) from e

    _validate_settings(settings)
    return settings


def load_settings(path: str | Path) -> RunSettings:
    """Load run settings from YAML file.

    Args:
        path: Path to YAML settings file

    Returns:
        Validated RunSettings instance

    Raises:
        ClobbrConfigError: If file not found, invalid YAML, or validation fails
    """
    p = Path(path)
    if not p.exists():
        raise ClobbrConfigError(
            f"Settings file not found: {path}",
            context={"path": str(path)}
        )

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        logger.exception("Failed to parse YAML settings file")
        raise ClobbrConfigError(
            f"Invalid YAML syntax in settings file: {e}",
            context={"path": str(path)},
            original_error=e
        ) from e
    except OSError as e:
        logger.exception("Failed to read settings file")
        raise ClobbrConfigError(
            f"Cannot read settings file: {e}",
            context={"path": str(path)},
            original_error=e
        ) from e

    if not isinstance(raw, dict):
        raise ClobbrConfigError(
            "Settings must be a YAML object/dictionary",
            context={"path": str(path), "actual_type": type(raw).__name__}
        )

    try:
        settings = settings_from_dict(raw)
    except ClobbrConfigError as e:
        raise e.with_context(path=str(path))
    logger.debug(
        "Loaded settings: %s %s, iterations=%s, parallel=%s",
        settings.verb.value, settings.url, settings.iterations, settings.parallel,
    )
    return settings
