"""
Resilient JSON fetcher for public market-data relays.

Issues one GET per attempt under a hard per-attempt deadline, retries with
exponential backoff, and classifies every failure so callers can build a
readable error line. Relays often answer 200 OK with an HTML timeout page,
so the body is inspected before JSON decoding.

Usage:
    fetcher = ResilientFetcher(max_attempts=3, timeout=30.0)
    async with httpx.AsyncClient() as client:
        payload = await fetcher.fetch(client, "https://corsproxy.io/?...")
"""

import asyncio
import json
from typing import Any

import httpx
from loguru import logger

from kite_tracker.config import SyncConfig

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_BACKOFF_BASE_SECONDS = 1.5

HTML_MARKERS = ("<!doctype", "<html")
TRANSIENT_STATUS_CODES = frozenset({408, 429})


def backoff_delay(attempt: int, base: float = DEFAULT_BACKOFF_BASE_SECONDS) -> float:
    """Delay before retrying after 0-indexed ``attempt`` failed (1.5s, 3s, 6s, ...)."""
    return base * (2**attempt)


def is_transient_status(status_code: int) -> bool:
    return status_code in TRANSIENT_STATUS_CODES or status_code >= 500


def looks_like_html(body: str) -> bool:
    return body.lstrip()[:16].lower().startswith(HTML_MARKERS)


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}"


def decode_payload(body: str) -> Any:
    """Decode a response body, rejecting HTML error pages before JSON parsing."""
    if looks_like_html(body):
        raise DisguisedFailureError("代理伺服器回傳非預期 HTML 內容 (可能是超時頁面)")
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise MalformedPayloadError("回傳資料格式並非有效的 JSON") from e


class ResilientFetcher:
    """GET-with-retry wrapper around an ``httpx.AsyncClient``.

    Every failed attempt is retried, including permanent 4xx responses;
    the transient/permanent split only shapes the error message.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        backoff_base: float = DEFAULT_BACKOFF_BASE_SECONDS,
    ) -> None:
        self._max_attempts = max_attempts
        self._timeout = timeout
        self._backoff_base = backoff_base

    @classmethod
    def from_config(cls, config: SyncConfig) -> "ResilientFetcher":
        return cls(
            max_attempts=config.max_attempts,
            timeout=config.timeout_seconds,
            backoff_base=config.backoff_base_seconds,
        )

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def timeout(self) -> float:
        return self._timeout

    async def fetch(self, client: httpx.AsyncClient, url: str) -> Any:
        """Fetch ``url`` and return the decoded JSON value.

        Raises:
            SyncError: The classified error of the final attempt.
        """
        last_error: SyncError | None = None

        for attempt in range(self._max_attempts):
            try:
                return await self._attempt(client, url)
            except SyncError as e:
                last_error = e

            if attempt < self._max_attempts - 1:
                delay = backoff_delay(attempt, self._backoff_base)
                logger.warning(
                    "Fetcher: [retry {}/{}] {} failed: {}; retrying in {}s",
                    attempt + 1,
                    self._max_attempts,
                    _redact(url),
                    last_error,
                    _format_seconds(delay),
                )
                await asyncio.sleep(delay)

        if last_error is not None:
            raise last_error
        raise SourceUnreachableError("多次重試後仍無法取得資料")

    async def _attempt(self, client: httpx.AsyncClient, url: str) -> Any:
        """Run one request under the per-attempt deadline and classify its outcome."""
        timeout_error = FetchTimeoutError(f"請求超時 (超過 {_format_seconds(self._timeout)} 秒)")
        try:
            response = await asyncio.wait_for(
                client.get(url, headers={"Accept": "application/json"}, timeout=self._timeout),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise timeout_error from e
        except httpx.TransportError as e:
            raise SourceUnreachableError(f"無法連線至資料來源 ({type(e).__name__})") from e

        if not response.is_success:
            status = response.status_code
            if is_transient_status(status):
                raise TransientHTTPError(status, f"伺服器忙碌 (HTTP {status})")
            raise PermanentHTTPError(status, f"連線失敗 (HTTP {status})")

        return decode_payload(response.text)


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> Any:
    """Functional shortcut for ``ResilientFetcher(max_attempts, timeout).fetch()``."""
    return await ResilientFetcher(max_attempts=max_attempts, timeout=timeout).fetch(client, url)


def _redact(url: str) -> str:
    """Shorten relay URLs for log lines."""
    return url if len(url) <= 120 else url[:117] + "..."


# ── Exceptions ──────────────────────────────────────────────────────────────


class SyncError(Exception):
    """Base exception for price synchronization failures."""


class FetchTimeoutError(SyncError):
    """An attempt exceeded its deadline and was cancelled."""


class HTTPStatusFailure(SyncError):
    """Upstream or relay answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientHTTPError(HTTPStatusFailure):
    """HTTP 408, 429 or 5xx."""


class PermanentHTTPError(HTTPStatusFailure):
    """Any other 4xx."""


class DisguisedFailureError(SyncError):
    """A nominally successful response carrying an HTML page instead of JSON."""


class MalformedPayloadError(SyncError):
    """Body is not valid JSON or not the expected shape."""


class SourceUnreachableError(SyncError):
    """Transport failure, or retries exhausted without any classified error."""


class FallbackExhaustedError(SyncError):
    """The last relay in a fallback chain returned nothing usable."""
