"""
Run input validation: URL and verb checks done before any request leaves.

Pure functions, no network access. The runner calls validate() first and
refuses to dispatch anything when it reports errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlparse

from .models import Verb

SUPPORTED_SCHEMES = ("http", "https")


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


def validate(url: str | None, verb: str | Verb | None) -> ValidationResult:
    """
    Check that url is an absolute http(s) URL and verb is supported.

    Args:
        url: Full target URL (e.g. https://api.example.com/health).
        verb: HTTP method, as a Verb or a case-insensitive string.

    Returns:
        ValidationResult with valid=False and one message per problem found.
    """
    errors: list[str] = []

    url = (url or "").strip()
    if not url:
        errors.append("URL must not be empty")
    else:
        parsed = urlparse(url)
        if parsed.scheme.lower() not in SUPPORTED_SCHEMES:
            errors.append(f"URL must start with http:// or https://: {url}")
        elif not parsed.hostname:
            errors.append(f"URL has no host: {url}")

    if verb is None or (isinstance(verb, str) and not verb.strip()):
        errors.append("HTTP verb must not be empty")
    else:
        try:
            Verb.parse(verb)
        except ValueError:
            supported = ", ".join(v.value for v in Verb)
            errors.append(f"Unsupported HTTP verb {verb!r} (expected one of: {supported})")

    return ValidationResult(valid=not errors, errors=errors)


def normalize_url(url: str, ssl: bool = True) -> str:
    """Prefix a scheme onto scheme-less input; https when ssl is on, http otherwise."""
    url = url.strip()
    if not url or "://" in url:
        return url
    return f"{'https' if ssl else 'http'}://{url}"


def report_name(url: str) -> str:
    """Short label for report titles (host and port only)."""
    parsed = urlparse(url.strip())
    return parsed.netloc or "clobbr"
