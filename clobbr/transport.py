"""HTTP transport: the single I/O dependency of a run.

The runner only needs "perform one HTTP call". Anything implementing the
Transport protocol can be injected (tests use in-memory fakes); the default
is HttpxTransport over one shared httpx.AsyncClient per run.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from types import TracebackType
from typing import Protocol

import httpx

from .exceptions import ClobbrTransportError
from .logging_config import get_logger

logger = get_logger("transport")

# Sized for a few hundred simultaneous attempts against one host.
DEFAULT_MAX_CONNECTIONS = 1000
DEFAULT_MAX_KEEPALIVE = 200
DEFAULT_KEEPALIVE_EXPIRY = 30.0
MS_PER_SEC = 1000.0


@dataclass(slots=True, frozen=True)
class TransportResponse:
    """What the runner needs from a response: its status code."""

    status_code: int


class Transport(Protocol):
    async def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_ms: float,
    ) -> TransportResponse:
        """Perform one HTTP call. Raise ClobbrTransportError when no response arrives."""
        ...


def create_client(
    http2: bool = True,
    verify: bool = True,
    limits: httpx.Limits | None = None,
) -> httpx.AsyncClient:
    """Create the shared async HTTP client for a run.

    Timeouts are set per request from the run settings, not on the client.
    """
    limits = limits or httpx.Limits(
        max_connections=DEFAULT_MAX_CONNECTIONS,
        max_keepalive_connections=DEFAULT_MAX_KEEPALIVE,
        keepalive_expiry=DEFAULT_KEEPALIVE_EXPIRY,
    )
    return httpx.AsyncClient(http2=http2, verify=verify, limits=limits, timeout=None)


def request_timeout(timeout_ms: float) -> httpx.Timeout:
    """httpx timeout for a run-level deadline in milliseconds (0 = no deadline)."""
    if not timeout_ms or timeout_ms <= 0:
        return httpx.Timeout(None)
    return httpx.Timeout(timeout_ms / MS_PER_SEC)


class HttpxTransport:
    """Transport backed by httpx. Use as an async context manager to close the client."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or create_client()
        self._owns_client = client is None

    async def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_ms: float,
    ) -> TransportResponse:
        request = self._client.request(
            method,
            url,
            headers=headers,
            content=body,
            timeout=request_timeout(timeout_ms),
        )
        try:
            # httpx timeouts bound each phase; the attempt as a whole gets one deadline
            if timeout_ms and timeout_ms > 0:
                response = await asyncio.wait_for(request, timeout_ms / MS_PER_SEC)
            else:
                response = await request
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            logger.debug("Attempt deadline expired", extra={"url": url, "verb": method})
            raise ClobbrTransportError(
                f"Request timed out after {timeout_ms:g} ms",
                context={"url": url},
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            raise ClobbrTransportError(
                str(e) or type(e).__name__,
                context={"url": url},
                original_error=e,
            ) from e
        return TransportResponse(status_code=response.status_code)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
