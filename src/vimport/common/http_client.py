"""Async HTTP transport with timeout, retries and exponential backoff.

All registry and GitHub fetches go through ``TransportClient``. Every
non-success status, socket error and timeout is retried; JSON decode
failures are not.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from ..constants import Constants
from ..errors import InvalidResponseError, NetworkError
from .logging_utils import Timer, extra_context, is_debug_enabled, safe_url

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryOptions:
    """Per-request timeout and retry policy. Durations are in seconds."""

    timeout: float = Constants.REQUEST_TIMEOUT
    max_retries: int = Constants.HTTP_RETRY_MAX  # total attempts
    initial_delay: float = Constants.HTTP_RETRY_BASE_DELAY_SEC
    max_delay: float = Constants.HTTP_RETRY_MAX_DELAY_SEC
    backoff_factor: float = Constants.HTTP_BACKOFF_FACTOR

    def with_overrides(self, **changes: Any) -> "RetryOptions":
        """Copy with the non-None ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


class TransportClient:
    """Fetches text or JSON over HTTP(S) using a shared aiohttp session."""

    def __init__(
        self,
        options: Optional[RetryOptions] = None,
        session: Optional[aiohttp.ClientSession] = None,
        headers: Optional[Dict[str, str]] = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        """Initialize the transport.

        Args:
            options: Default retry policy for every request.
            session: Externally owned session; it is not closed by ``stop``.
            headers: Extra request headers.
            sleep: Coroutine used for backoff waits.
        """
        self._options = options or RetryOptions()
        self._session = session
        self._owns_session = session is None
        self._headers = {"User-Agent": Constants.USER_AGENT, "Accept": "*/*"}
        if headers:
            self._headers.update(headers)
        self._sleep = sleep

    @property
    def options(self) -> RetryOptions:
        """Default retry policy."""
        return self._options

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

    async def stop(self) -> None:
        """Stop the HTTP session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _attempt(self, url: str, timeout: float) -> str:
        """Perform one GET, reading the full body before returning it."""
        assert self._session is not None
        try:
            async with self._session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=timeout),
                headers=self._headers,
            ) as response:
                if response.status >= 400:
                    raise NetworkError(
                        f"HTTP {response.status} - {response.reason}", response.status, url
                    )
                body = await response.read()
                return body.decode(response.charset or "utf-8", errors="replace")
        except asyncio.TimeoutError as exc:
            raise NetworkError("Request timeout", 408, url) from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(str(exc) or exc.__class__.__name__, 0, url) from exc

    async def fetch_text(self, url: str, options: Optional[RetryOptions] = None) -> str:
        """GET ``url`` and return its body as text.

        Raises:
            NetworkError: After ``max_retries`` failed attempts, carrying the
                last observed status.
        """
        opts = options or self._options
        if self._session is None:
            await self.start()
        attempts = max(1, opts.max_retries)
        delay = min(opts.initial_delay, opts.max_delay)
        safe_target = safe_url(url)
        last_error: Optional[NetworkError] = None

        for attempt in range(1, attempts + 1):
            with Timer() as t:
                if is_debug_enabled(logger):
                    logger.debug(
                        "Fetching %s (%d/%d)",
                        safe_target,
                        attempt,
                        attempts,
                        extra=extra_context(
                            event="http_request",
                            component="http_client",
                            action="GET",
                            target=safe_target,
                            attempt=attempt,
                        ),
                    )
                try:
                    text = await self._attempt(url, opts.timeout)
                except NetworkError as exc:
                    last_error = exc
                else:
                    if is_debug_enabled(logger):
                        logger.debug(
                            "HTTP response ok",
                            extra=extra_context(
                                event="http_response",
                                component="http_client",
                                action="GET",
                                outcome="success",
                                duration_ms=t.duration_ms(),
                                target=safe_target,
                            ),
                        )
                    return text

            if attempt < attempts:
                logger.warning(
                    "Request to %s failed: %s. Retrying in %.1fs...",
                    safe_target,
                    last_error,
                    delay,
                    extra=extra_context(
                        event="http_retry",
                        component="http_client",
                        outcome="retry",
                        status_code=last_error.status_code,
                        attempt=attempt,
                        target=safe_target,
                    ),
                )
                await self._sleep(delay)
                delay = min(delay * opts.backoff_factor, opts.max_delay)

        assert last_error is not None
        logger.debug(
            "Request failed after %d attempts",
            attempts,
            extra=extra_context(
                event="http_error",
                component="http_client",
                outcome="exhausted",
                status_code=last_error.status_code,
                target=safe_target,
            ),
        )
        raise last_error

    async def fetch_json(self, url: str, options: Optional[RetryOptions] = None) -> Any:
        """GET ``url`` and decode its body as JSON.

        Raises:
            NetworkError: When the fetch itself fails.
            InvalidResponseError: When the body is not valid JSON (not retried).
        """
        text = await self.fetch_text(url, options)
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidResponseError(f"Invalid JSON response from {url}: {exc}", url) from exc

    async def __aenter__(self) -> "TransportClient":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()
