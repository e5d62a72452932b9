"""Async HTTP client for the collections/listings REST API.

Wraps :class:`httpx.AsyncClient` with:

* **Automatic retries** for idempotent methods (``GET``, ``PUT``,
  ``DELETE``) — exponential back-off with random jitter via :mod:`tenacity`.
  ``POST`` creates an entity and is attempted exactly once.
* **Rate-limit awareness** — HTTP 429 responses pause retries for the
  duration given in the ``Retry-After`` header (or JSON body), then raise
  :class:`~anuncios.core.exceptions.RemoteRateLimitError` once the budget is
  spent.
* **Structured error mapping** — transient (5xx, network) errors are retried;
  other non-2xx statuses raise
  :class:`~anuncios.core.exceptions.RemoteOperationError` immediately, carrying
  the status code and the server's ``{"error": "..."}`` message.  Transport
  errors that survive every retry are wrapped in the same exception so callers
  only ever catch one type.

Typical usage::

    async with ApiHttpClient(base_url="https://app.example.com", token="…") as c:
        response = await c.get("/api/collections", params={"orgId": "org-1"})
        data = response.json()
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from anuncios.core.exceptions import (
    RemoteNotFoundError,
    RemoteOperationError,
    RemoteRateLimitError,
)

__all__ = ["ApiHttpClient"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: HTTP status codes that signal a transient server-side fault (safe to retry).
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({500, 502, 503, 504})

#: Methods that may be repeated without creating a second entity.
_IDEMPOTENT_METHODS: Final[frozenset[str]] = frozenset({"GET", "PUT", "DELETE"})

_DEFAULT_CONNECT_TIMEOUT: Final[float] = 10.0
_DEFAULT_READ_TIMEOUT: Final[float] = 30.0
_DEFAULT_WRITE_TIMEOUT: Final[float] = 10.0
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

#: Back-off between attempts: random exponential (1 s, 2 s, 4 s, ...), capped.
_BACKOFF = wait_random_exponential(multiplier=1.0, max=30.0)


# ---------------------------------------------------------------------------
# Internal sentinel exception
# ---------------------------------------------------------------------------


class _RetryableServerError(RemoteOperationError):
    """Internal: signals a 5xx status for tenacity to retry.

    Escapes :meth:`ApiHttpClient._request_with_retry` only as the final
    error once retries are exhausted, where it is still a
    :class:`RemoteOperationError`.
    """


# ---------------------------------------------------------------------------
# Retry wait strategy
# ---------------------------------------------------------------------------


def _api_wait(retry_state: RetryCallState) -> float:
    """Compute the wait duration before the next retry attempt.

    * :class:`RemoteRateLimitError` with a positive ``retry_after`` → honour
      that value exactly.
    * All other retryable errors → :data:`_BACKOFF`.
    """
    if retry_state.outcome is not None:
        exc = retry_state.outcome.exception()
        if (
            isinstance(exc, RemoteRateLimitError)
            and exc.retry_after is not None
            and exc.retry_after > 0
        ):
            logger.debug("Honouring API Retry-After of %.1f s", exc.retry_after)
            return exc.retry_after

    return _BACKOFF(retry_state)


# ---------------------------------------------------------------------------
# Public client
# ---------------------------------------------------------------------------


class ApiHttpClient:
    """Async HTTP client shared by every call of one API backend.

    Each public request method returns the :class:`httpx.Response` on HTTP
    2xx and raises on all other outcomes.

    Args:
        base_url: Base URL prepended to all relative request paths.
        token: Bearer token sent as ``Authorization`` header.  Empty = none.
        connect_timeout: TCP connection establishment timeout in seconds.
        read_timeout: Timeout for receiving the first byte of the response.
        write_timeout: Timeout for uploading the request body.
        max_attempts: Total attempts for idempotent requests (≥ 1).

    Raises:
        ValueError: If ``max_attempts`` is less than 1.
    """

    def __init__(
        self,
        *,
        base_url: str = "",
        token: str = "",
        connect_timeout: float = _DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = _DEFAULT_READ_TIMEOUT,
        write_timeout: float = _DEFAULT_WRITE_TIMEOUT,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._base_url = base_url
        self._token = token
        self._max_attempts = max_attempts
        self._timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=write_timeout,
            pool=5.0,
        )
        self._http: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ApiHttpClient:
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public request methods
    # ------------------------------------------------------------------

    async def get(self, url: str, *, params: dict[str, Any] | None = None) -> httpx.Response:
        """HTTP GET with retries."""
        return await self._request_with_retry("GET", url, params=params)

    async def post(
        self,
        url: str,
        *,
        json: Any | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """HTTP POST, attempted once."""
        return await self._request_with_retry("POST", url, json=json, params=params)

    async def put(self, url: str, *, json: Any | None = None) -> httpx.Response:
        """HTTP PUT with retries."""
        return await self._request_with_retry("PUT", url, json=json)

    async def delete(self, url: str) -> httpx.Response:
        """HTTP DELETE with retries."""
        return await self._request_with_retry("DELETE", url)

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call multiple times."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("ApiHttpClient HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Return the open HTTP client, creating it lazily if needed."""
        if self._http is None or self._http.is_closed:
            headers = {"Accept": "application/json"}
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                follow_redirects=True,
                headers=headers,
            )
            logger.debug(
                "ApiHttpClient session opened (base_url=%r).", self._base_url or "(none)"
            )
        return self._http

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
    ) -> httpx.Response:
        """Execute one logical request with tenacity-managed retries.

        Raises:
            RemoteRateLimitError: HTTP 429 after exhausting retries.
            RemoteOperationError: Every other failure after exhausting retries.
        """
        max_attempts = self._max_attempts if method in _IDEMPOTENT_METHODS else 1
        retry_types = (
            _RetryableServerError,
            RemoteRateLimitError,
            httpx.TransportError,
        )
        operation = f"{method} {url}"

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "HTTP %s — attempt %d/%d failed (%s). Retrying…",
                operation,
                rs.attempt_number,
                max_attempts,
                type(exc).__name__ if exc else "?",
            )

        response: httpx.Response | None = None

        try:
            async for attempt in AsyncRetrying(
                wait=_api_wait,
                stop=stop_after_attempt(max_attempts),
                retry=retry_if_exception_type(retry_types),
                reraise=True,
                before_sleep=_before_sleep,
            ):
                with attempt:
                    response = await self._single_request(
                        method=method,
                        url=url,
                        params=params,
                        json=json,
                        operation=operation,
                    )
        except httpx.TransportError as exc:
            raise RemoteOperationError(
                operation, f"Network error: {type(exc).__name__}: {exc}"
            ) from exc

        assert response is not None, "tenacity exited without a response or exception"
        return response

    async def _single_request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json: Any | None,
        operation: str,
    ) -> httpx.Response:
        """Perform exactly one HTTP request and map its status.

        Raises:
            RemoteRateLimitError: On HTTP 429.
            _RetryableServerError: On HTTP 5xx (internal sentinel).
            RemoteNotFoundError: On HTTP 404.
            RemoteOperationError: On other non-2xx statuses.
            httpx.TransportError: Network-level failures (propagated for retry).
        """
        client = await self._ensure_client()

        try:
            response = await client.request(method=method, url=url, params=params, json=json)
        except httpx.TransportError:
            logger.debug("Transport error on %s.", operation, exc_info=True)
            raise

        logger.debug("HTTP %s → %d", operation, response.status_code)

        if response.is_success:
            return response

        if response.status_code == 429:
            retry_after = _parse_retry_after(response)
            logger.warning("API rate limit on %s — retry_after=%.1f s", operation, retry_after)
            raise RemoteRateLimitError(operation, retry_after=retry_after)

        message = _error_message(response)

        if response.status_code in _RETRYABLE_STATUS:
            raise _RetryableServerError(operation, message, status_code=response.status_code)

        if response.status_code == 404:
            raise RemoteNotFoundError(operation, message, status_code=404)

        raise RemoteOperationError(operation, message, status_code=response.status_code)


# ---------------------------------------------------------------------------
# Response parsing helpers
# ---------------------------------------------------------------------------


def _error_message(response: httpx.Response) -> str:
    """Return the server's ``error`` message, or a generic one."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), str) and body["error"]:
        return body["error"]
    return f"HTTP error {response.status_code}"


def _parse_retry_after(response: httpx.Response) -> float:
    """Extract back-off duration from an HTTP 429 response (always ≥ 1.0 s)."""
    header = response.headers.get("retry-after", "")
    if header:
        try:
            return max(float(header), 1.0)
        except ValueError:
            logger.debug("Could not parse Retry-After header %r.", header)

    try:
        body = response.json()
    except ValueError:
        return 1.0
    if isinstance(body, dict):
        ra = body.get("retryAfter") or body.get("retry_after")
        if isinstance(ra, (int, float)) and not isinstance(ra, bool):
            return max(float(ra), 1.0)
    return 1.0
