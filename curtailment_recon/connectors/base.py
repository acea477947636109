"""Base connector infrastructure for upstream data sources.

Provides the BaseConnector class with:
- Async HTTP client via httpx with connection pooling
- Fixed-delay retry with a bounded attempt count via tenacity
- Minimum spacing between consecutive outbound calls (upstream rate limits)
- Structured logging via structlog
- A "not found" outcome (``None``) distinct from transport/server failure

Exception hierarchy:
- ConnectorError: base for all connector errors (non-retryable client errors)
- TransientSourceError: transport failure, HTTP 429 or 5xx after retries
- DataParsingError: response payload cannot be parsed
"""

import asyncio
import time
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from curtailment_recon.core.config import settings


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------
class ConnectorError(Exception):
    """Base exception for all connector errors."""


class TransientSourceError(ConnectorError):
    """Raised on transport failures or server errors.

    Retried up to the connector's attempt limit; surfaces to the caller only
    once every attempt has failed.
    """


class DataParsingError(ConnectorError):
    """Raised when response data cannot be parsed into the expected format."""


# ---------------------------------------------------------------------------
# BaseConnector
# ---------------------------------------------------------------------------
class BaseConnector:
    """Base class for upstream source connectors.

    Subclasses MUST override:
        SOURCE_NAME: str - identifier (e.g., "ELEXON", "DIFFICULTY")

    Tunables default to ``settings`` and may be overridden per instance.

    Usage::

        async with MyConnector() as conn:
            response = await conn._request("GET", "/path")
    """

    SOURCE_NAME: str = ""

    def __init__(
        self,
        base_url: str,
        *,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        min_interval: float | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = base_url
        self.max_attempts = (
            settings.source_max_attempts if max_attempts is None else max_attempts
        )
        self.retry_delay = (
            settings.source_retry_delay_seconds if retry_delay is None else retry_delay
        )
        self.min_interval = (
            settings.source_min_interval_seconds if min_interval is None else min_interval
        )
        self.timeout = settings.source_timeout_seconds if timeout is None else timeout

        self._client: httpx.AsyncClient | None = None
        self._throttle_lock = asyncio.Lock()
        self._last_call: float | None = None
        self.log = structlog.get_logger().bind(connector=self.SOURCE_NAME)

    async def __aenter__(self) -> "BaseConnector":
        """Create and configure the httpx async client."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            headers={"Accept": "application/json"},
            limits=httpx.Limits(
                max_connections=10,
                max_keepalive_connections=5,
            ),
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        """Close the httpx async client if open."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Return the active httpx client.

        Raises:
            ConnectorError: If the client has not been initialized via __aenter__.
        """
        if self._client is None:
            raise ConnectorError(
                f"{self.SOURCE_NAME}: HTTP client not initialized. "
                "Use 'async with connector:' context manager."
            )
        return self._client

    async def _throttle(self) -> None:
        """Wait until ``min_interval`` has elapsed since the previous call."""
        async with self._throttle_lock:
            if self._last_call is not None and self.min_interval > 0:
                wait = self.min_interval - (time.monotonic() - self._last_call)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_call = time.monotonic()

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self.log.warning(
            "request_retry",
            attempt=retry_state.attempt_number,
            max_attempts=self.max_attempts,
            error=str(exc),
        )

    async def _request(
        self, method: str, url: str, **kwargs: Any
    ) -> httpx.Response | None:
        """Throttled HTTP request with fixed-delay retry.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: URL path (relative to base_url) or absolute URL.
            **kwargs: Additional arguments passed to httpx.AsyncClient.request.

        Returns:
            The httpx.Response, or None when the source answers 404
            (legitimately no data; never retried).

        Raises:
            TransientSourceError: If every attempt hit a transport error,
                HTTP 429 or HTTP 5xx.
            ConnectorError: On any other 4xx response (not retried).
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(
                    (httpx.TransportError, TransientSourceError)
                ),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_fixed(self.retry_delay),
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    await self._throttle()
                    self.log.debug(
                        "http_request",
                        method=method,
                        url=url,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    response = await self.client.request(method, url, **kwargs)
                    status = response.status_code
                    if status == 404:
                        return None
                    if status == 429 or status >= 500:
                        raise TransientSourceError(
                            f"{self.SOURCE_NAME}: HTTP {status} for {url}"
                        )
                    if status >= 400:
                        raise ConnectorError(
                            f"{self.SOURCE_NAME}: HTTP {status} for {url}"
                        )
                    return response
        except httpx.TransportError as exc:
            raise TransientSourceError(
                f"{self.SOURCE_NAME}: transport failure for {url}: {exc}"
            ) from exc

        # Should not be reached, but satisfies type checker
        raise TransientSourceError(  # pragma: no cover
            f"{self.SOURCE_NAME}: request failed after retries"
        )
