"""Async HTTP client wrapper with configurable error handling and retry logic.

Outbound integrations (Google OAuth and Calendar today) share this wrapper so
timeouts and failure handling are configured in one place:

- Centralized timeout configuration from ``settings.http``
- Pluggable error handling strategies
- Optional retry logic with exponential backoff

Usage Examples:

    # Default behavior (raises on errors, no retries)
    client = AsyncHttpClient()
    response = await client.get("https://api.example.com/data")

    # Log and return None so the caller can degrade gracefully
    client = AsyncHttpClient(
        timeout=5,
        error_config=ErrorConfig(strategy=ErrorStrategy.LOG_AND_RETURN_NONE),
    )
    response = await client.post("https://oauth2.googleapis.com/token", data={...})
    if response is None:
        return None

Callers that need to inspect non-2xx responses themselves (for example a
``DELETE`` where 404 means "already gone") pass ``raise_for_status=False``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

import httpx

from config import settings

logger = logging.getLogger(__name__)


class ErrorStrategy(Enum):
    """Strategy for handling HTTP errors.

    - RAISE: Re-raise exceptions (default, for strict error handling)
    - LOG_AND_RETURN_NONE: Log error and return None (for graceful degradation)
    """

    RAISE = "raise"
    LOG_AND_RETURN_NONE = "log_and_return_none"


@dataclass
class ErrorConfig:
    """Configuration for error handling behavior.

    Args:
        strategy: How to handle HTTP errors
        log_level: Logging level for errors (default: ERROR)
        include_response_body: Whether to log response body on errors
    """

    strategy: ErrorStrategy = ErrorStrategy.RAISE
    log_level: int = logging.ERROR
    include_response_body: bool = False


@dataclass
class RetryConfig:
    """Configuration for retry logic with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (including initial attempt)
        retry_status_codes: HTTP status codes that should trigger a retry
        backoff_factor: Multiplier for exponential backoff (delay = backoff_factor * 2^attempt)
        max_backoff: Maximum backoff delay in seconds
        retry_exceptions: Exception types that should trigger a retry
    """

    max_attempts: int = 3
    retry_status_codes: set[int] = field(default_factory=lambda: {500, 502, 503, 504})
    backoff_factor: float = 2.0
    max_backoff: float = 60.0
    retry_exceptions: tuple[type[Exception], ...] = (
        httpx.ConnectError,
        httpx.ReadTimeout,
        httpx.PoolTimeout,
    )


class AsyncHttpClient:
    """Async HTTP client with configurable error handling and retries.

    Args:
        timeout: Request timeout in seconds (default: settings.http.timeout)
        connect_timeout: Connection timeout in seconds (default: settings.http.connect_timeout)
        error_config: Error handling configuration
        retry_config: Retry configuration (None = no retries)
    """

    def __init__(
        self,
        timeout: int | None = None,
        connect_timeout: int | None = None,
        error_config: ErrorConfig | None = None,
        retry_config: RetryConfig | None = None,
    ):
        """Initialize the async HTTP client."""
        self.timeout = timeout if timeout is not None else settings.http.timeout
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None else settings.http.connect_timeout
        )
        self.error_config = error_config or ErrorConfig()
        self.retry_config = retry_config

    async def get(self, url: str, **kwargs) -> httpx.Response | None:
        """Perform an async GET request."""
        return await self._request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response | None:
        """Perform an async POST request."""
        return await self._request("POST", url, **kwargs)

    async def delete(self, url: str, **kwargs) -> httpx.Response | None:
        """Perform an async DELETE request."""
        return await self._request("DELETE", url, **kwargs)

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response | None:
        """Execute an HTTP request with error handling and optional retries."""
        if self.retry_config is None:
            return await self._execute_once(method, url, **kwargs)
        return await self._execute_with_retry(method, url, **kwargs)

    def _timeout(self) -> httpx.Timeout:
        """Build the httpx timeout for one request."""
        return httpx.Timeout(self.timeout, connect=self.connect_timeout)

    async def _execute_once(
        self,
        method: str,
        url: str,
        *,
        raise_for_status: bool = True,
        **kwargs,
    ) -> httpx.Response | None:
        """Execute a single HTTP request with error handling."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout()) as client:
                response = await client.request(method, url, **kwargs)
                if raise_for_status:
                    response.raise_for_status()
                return response
        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            return self._handle_error(e, method, url)

    async def _execute_with_retry(
        self,
        method: str,
        url: str,
        *,
        raise_for_status: bool = True,
        **kwargs,
    ) -> httpx.Response | None:
        """Execute an HTTP request with retry logic and exponential backoff."""
        assert self.retry_config is not None
        last_exception: Exception | None = None

        for attempt in range(self.retry_config.max_attempts):
            try:
                async with httpx.AsyncClient(timeout=self._timeout()) as client:
                    response = await client.request(method, url, **kwargs)
                    if (
                        not raise_for_status
                        and response.status_code not in self.retry_config.retry_status_codes
                    ):
                        return response
                    response.raise_for_status()
                    return response
            except httpx.HTTPStatusError as e:
                last_exception = e
                if e.response.status_code not in self.retry_config.retry_status_codes:
                    return self._handle_error(e, method, url)
                if attempt + 1 >= self.retry_config.max_attempts:
                    break
                delay = self._backoff_delay(attempt)
                logger.warning(
                    f"HTTP {method} {url} failed with status {e.response.status_code}, "
                    f"retrying in {delay:.1f}s (attempt {attempt + 1}/{self.retry_config.max_attempts})"
                )
                await asyncio.sleep(delay)
            except self.retry_config.retry_exceptions as e:
                last_exception = e
                if attempt + 1 >= self.retry_config.max_attempts:
                    break
                delay = self._backoff_delay(attempt)
                logger.warning(
                    f"HTTP {method} {url} failed with {type(e).__name__}, "
                    f"retrying in {delay:.1f}s (attempt {attempt + 1}/{self.retry_config.max_attempts})"
                )
                await asyncio.sleep(delay)
            except httpx.RequestError as e:
                last_exception = e
                break

        assert last_exception is not None
        return self._handle_error(last_exception, method, url)

    def _backoff_delay(self, attempt: int) -> float:
        """Return the backoff delay in seconds for a zero-based attempt."""
        assert self.retry_config is not None
        return min(
            self.retry_config.backoff_factor * (2**attempt),
            self.retry_config.max_backoff,
        )

    def _handle_error(self, error: Exception, method: str, url: str) -> httpx.Response | None:
        """Handle HTTP errors according to configured strategy."""
        if self.error_config.strategy == ErrorStrategy.RAISE:
            raise error

        error_msg = f"HTTP {method} {url} failed: {error}"
        if isinstance(error, httpx.HTTPStatusError) and self.error_config.include_response_body:
            error_msg += f"\nResponse body: {error.response.text}"
        logger.log(self.error_config.log_level, error_msg)
        return None
