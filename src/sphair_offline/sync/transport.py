"""HTTP transport used by the interceptor and the sync engine.

The core only relies on the error shape raised here: ``NetworkError`` when
no response came back at all, ``HttpStatusError`` when the server answered
with a non-2xx status.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Optional, Protocol

import httpx

from .models import ApiResponse, HttpMethod

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

# Substrings that mark an error message as a connectivity problem rather
# than an application failure.
NETWORK_ERROR_SIGNATURES = (
    "network error",
    "connection refused",
    "connection reset",
    "connection aborted",
    "connection error",
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "timed out",
    "timeout",
    "unreachable",
)


class TransportError(Exception):
    """Base class for transport failures."""

    def __init__(self, message: str, response: Optional[ApiResponse] = None) -> None:
        super().__init__(message)
        self.response = response

    @property
    def status_code(self) -> Optional[int]:
        return self.response.status if self.response is not None else None


class NetworkError(TransportError):
    """The request never produced a response (DNS, refused, reset, offline)."""


class RequestTimeout(NetworkError):
    """The request exceeded its timeout before a response arrived."""


class HttpStatusError(TransportError):
    """The server responded with a non-success status code."""

    def __init__(self, message: str, response: ApiResponse) -> None:
        super().__init__(message, response=response)


def has_network_signature(error: BaseException) -> bool:
    """Return True when ``error`` looks like a connectivity failure.

    Errors carrying a response never qualify.
    """
    if getattr(error, "response", None) is not None:
        return False
    if isinstance(error, (NetworkError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    if isinstance(error, (httpx.TransportError, OSError)):
        return True
    message = str(error).lower()
    return any(signature in message for signature in NETWORK_ERROR_SIGNATURES)


class Transport(Protocol):
    """Performs one HTTP-shaped operation."""

    async def __call__(
        self,
        method: str,
        url: str,
        payload: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> ApiResponse: ...


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


class HttpxTransport:
    """
    ``Transport`` backed by ``httpx.AsyncClient``.

    The base URL is resolved on every call rather than at construction time,
    since the active backend may change between enqueue and replay.
    """

    def __init__(
        self,
        base_url: Callable[[], str] | str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Args:
            base_url: Server root, or a callable returning it at request time.
            timeout: Per-request timeout in seconds.
            client: Preconfigured client (tests inject one with a MockTransport).
        """
        self._base_url = base_url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def resolve_base_url(self) -> str:
        base = self._base_url() if callable(self._base_url) else self._base_url
        return base.rstrip("/")

    def build_url(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return f"{self.resolve_base_url()}/{url.lstrip('/')}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def __call__(
        self,
        method: str,
        url: str,
        payload: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> ApiResponse:
        verb = HttpMethod.parse(method)
        target = self.build_url(url)
        request_kwargs: dict[str, Any] = {"headers": dict(headers or {}), "timeout": self.timeout}
        if payload is not None and verb.has_body:
            request_kwargs["json"] = payload

        try:
            response = await self._get_client().request(verb.value, target, **request_kwargs)
        except httpx.TimeoutException as exc:
            raise RequestTimeout(f"Request timeout: {verb.value} {url}") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Network Error: {exc}") from exc

        result = ApiResponse(
            status=response.status_code,
            data=_decode_body(response),
            headers=dict(response.headers),
            status_text=response.reason_phrase,
        )
        if not result.ok:
            raise HttpStatusError(
                f"Request failed with status code {response.status_code}",
                response=result,
            )
        return result

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "HttpStatusError",
    "HttpxTransport",
    "NetworkError",
    "RequestTimeout",
    "Transport",
    "TransportError",
    "has_network_signature",
]
