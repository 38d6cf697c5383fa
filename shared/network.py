"""
Quarry Async Network Client
=============================

Async HTTP client built on **httpx** for scraping remote knowledge bases:

- Per-request timeout so a stalled server cannot hold a slot forever.
- Automatic retry with exponential backoff and full jitter.
- Pass-through statuses: callers can ask to receive specific non-2xx
  responses (e.g. ``406 Not Acceptable``) instead of an exception.

References:
    - AWS Architecture Blog (2015). Exponential Backoff and Jitter.
    - httpx documentation. https://www.python-httpx.org/
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Iterable, Optional

import httpx

logger = logging.getLogger("quarry.network")


class QuarryHTTPError(Exception):
    """Raised when a request fails after all retries or with a hard error.

    Attributes:
        url: Requested URL.
        status_code: Final HTTP status, or ``None`` for transport failures.
    """

    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class QuarryHTTP:
    """Async HTTP client with timeout and retry support.

    Usage::

        async with QuarryHTTP(base_url="https://malapi.io") as http:
            response = await http.fetch("/winapi/VirtualAllocEx",
                                        passthrough_status={406})

    Args:
        base_url:      Base URL prepended to relative paths.
        timeout:       Per-request timeout in seconds.
        max_retries:   Retries after the first attempt on transient errors.
        backoff_base:  Base delay (seconds) for exponential backoff.
        backoff_max:   Maximum delay cap (seconds).
        headers:       Default headers merged into every request.
        user_agent:    User-Agent header value.
        transport:     Optional httpx transport (used by tests).
    """

    # Transient server errors and rate limiting
    _RETRYABLE_STATUS: frozenset[int] = frozenset({429, 500, 502, 503, 504})

    def __init__(
        self,
        *,
        base_url: str = "",
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        headers: dict[str, str] | None = None,
        user_agent: str = "apiscan/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._max_retries = max(0, max_retries)
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max

        default_headers = {"User-Agent": user_agent}
        if headers:
            default_headers.update(headers)

        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
            headers=default_headers,
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> QuarryHTTP:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying httpx client."""
        await self._client.aclose()

    # ------------------------------------------------------------------ #
    #  Core fetch
    # ------------------------------------------------------------------ #

    async def fetch(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        passthrough_status: Iterable[int] = (),
    ) -> httpx.Response:
        """GET *url* with retry and backoff.

        Args:
            url:                URL path (relative to *base_url*) or absolute URL.
            params:             Query-string parameters.
            passthrough_status: Non-2xx statuses returned to the caller
                                instead of raising.

        Returns:
            The final :class:`httpx.Response`.

        Raises:
            QuarryHTTPError: On exhausted retries or a non-retryable status.
        """
        passthrough = frozenset(passthrough_status)
        attempts = self._max_retries + 1

        for attempt in range(attempts):
            try:
                response = await self._client.get(url, params=params)
            except httpx.TransportError as exc:
                logger.warning(
                    "Transport error on GET %s (attempt %d/%d): %s",
                    url, attempt + 1, attempts, exc,
                )
                if attempt + 1 < attempts:
                    await self._backoff(attempt)
                    continue
                raise QuarryHTTPError(
                    f"all {attempts} attempts failed for {url}: {exc}",
                    url=url,
                ) from exc

            status = response.status_code
            if status in passthrough or response.is_success:
                return response

            if status in self._RETRYABLE_STATUS:
                logger.warning(
                    "HTTP %d on GET %s (attempt %d/%d)",
                    status, url, attempt + 1, attempts,
                )
                if attempt + 1 < attempts:
                    await self._backoff(attempt)
                    continue

            raise QuarryHTTPError(
                f"HTTP {status} from {url}", url=url, status_code=status
            )

        # range() above always returns or raises
        raise QuarryHTTPError(f"no attempts made for {url}", url=url)

    async def fetch_text(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> str:
        """Convenience wrapper returning the decoded response body."""
        response = await self.fetch(url, params=params)
        return response.text

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    async def _backoff(self, attempt: int) -> None:
        """Sleep ``min(max, base * 2**attempt) * random()`` seconds."""
        base_delay = min(self._backoff_max, self._backoff_base * (2 ** attempt))
        jittered = base_delay * random.random()
        logger.debug("Backing off %.2fs (attempt %d)", jittered, attempt + 1)
        await asyncio.sleep(jittered)
