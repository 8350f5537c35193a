"""Unit tests for URL/verb validation."""

from __future__ import annotations

import pytest

from clobbr.models import Verb
from clobbr.validate import normalize_url, report_name, validate


def test_validate_valid() -> None:
    result = validate("https://api.example.com/health", "GET")
    assert result.valid is True
    assert result.errors == []


def test_validate_accepts_verb_enum_and_lowercase() -> None:
    assert validate("http://x/test", Verb.DELETE).valid
    assert validate("http://x/test", "patch").valid


@pytest.mark.parametrize("url", ["", "   ", None])
def test_validate_empty_url(url) -> None:
    result = validate(url, "GET")
    assert result.valid is False
    assert result.errors == ["URL must not be empty"]


def test_validate_not_absolute() -> None:
    result = validate("not-a-url", "GET")
    assert result.valid is False
    assert "http:// or https://" in result.errors[0]


def test_validate_no_host() -> None:
    result = validate("http://", "GET")
    assert result.valid is False
    assert "no host" in result.errors[0]


def test_validate_unsupported_scheme() -> None:
    assert validate("ftp://files.example.com", "GET").valid is False


def test_validate_unsupported_verb() -> None:
    result = validate("https://api.example.com", "FETCH")
    assert result.valid is False
    assert "Unsupported HTTP verb" in result.errors[0]


def test_validate_collects_every_error() -> None:
    result = validate("", "")
    assert result.valid is False
    assert len(result.errors) == 2


def test_normalize_url_adds_scheme() -> None:
    assert normalize_url("api.example.com/x") == "https://api.example.com/x"
    assert normalize_url("api.example.com/x", ssl=False) == "http://api.example.com/x"


def test_normalize_url_keeps_existing_scheme() -> None:
    assert normalize_url("http://api.example.com", ssl=True) == "http://api.example.com"
    assert normalize_url("  ") == ""


def test_report_name() -> None:
    assert report_name("https://api.example.com/health") == "api.example.com"
    assert report_name("https://localhost:8080/path") == "localhost:8080"
    assert report_name("nonsense") == "clobbr"
