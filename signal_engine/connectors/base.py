"""Gateway contract and shared HTTP plumbing for data sources.

The ingestion scheduler only knows ``DataSourceGateway``: something with a
``code`` and a ``fetch_batch(identifiers)`` coroutine returning one
``FetchResult`` per identifier it could answer for. A failure that concerns
one identifier is a failed result; a failure of the whole call (network,
5xx after retries, 429) raises.

``BaseConnector`` is the httpx implementation shared by the shipped
connectors: one pooled ``AsyncClient`` per connector, a semaphore capping
in-flight requests, and tenacity retries for transient errors.

Errors:
- ConnectorError: anything a connector raises on purpose
- RateLimitError: the source answered HTTP 429
- DataParsingError: a payload did not have the expected shape
"""

from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Protocol, runtime_checkable

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class ConnectorError(Exception):
    """A data source call failed."""


class RateLimitError(ConnectorError):
    """The data source rejected the call with HTTP 429."""


class DataParsingError(ConnectorError):
    """A data source payload could not be turned into fetched values."""


# ---------------------------------------------------------------------------
# Gateway result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FetchedValue:
    """One named value reported by a data source."""

    metric_name: str
    value: Decimal
    timestamp: datetime


@dataclass(frozen=True)
class FetchResult:
    """Outcome of fetching one identifier.

    A successful result may carry zero or more values. A failed result
    carries no values and an error message.
    """

    success: bool
    identifier: str
    values: tuple[FetchedValue, ...] = ()
    error_message: Optional[str] = None

    @classmethod
    def ok(cls, identifier: str, values: list[FetchedValue] | tuple[FetchedValue, ...]) -> "FetchResult":
        return cls(success=True, identifier=identifier, values=tuple(values))

    @classmethod
    def failure(cls, identifier: str, error_message: str) -> "FetchResult":
        return cls(success=False, identifier=identifier, error_message=error_message)


@runtime_checkable
class DataSourceGateway(Protocol):
    """Batch fetcher for one data source code.

    ``fetch_batch`` returns one entry per identifier it could answer for.
    Individual identifier failures are failure results; only transport-level
    problems raise.
    """

    code: str

    async def fetch_batch(self, identifiers: list[str]) -> dict[str, FetchResult]:
        ...


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, (httpx.ConnectError, httpx.TimeoutException))


# ---------------------------------------------------------------------------
# HTTP connector base
# ---------------------------------------------------------------------------
class BaseConnector(abc.ABC):
    """httpx-backed gateway with retries and a concurrency cap.

    Class attributes set by subclasses:
        SOURCE_NAME: data source code the connector answers for.
        BASE_URL: default API root, overridable per instance.
        RATE_LIMIT_PER_SECOND: requests allowed in flight at once.
        MAX_RETRIES: attempts per request, first one included.
        TIMEOUT_SECONDS: httpx timeout for each attempt.

    The client is created on first use and reused across ingestion cycles
    until ``aclose()``. ``async with`` closes it on exit.
    """

    SOURCE_NAME: str = ""
    BASE_URL: str = ""

    RATE_LIMIT_PER_SECOND: float = 5.0
    MAX_RETRIES: int = 3
    TIMEOUT_SECONDS: float = 30.0

    def __init__(self, base_url: Optional[str] = None) -> None:
        self.base_url = base_url if base_url is not None else self.BASE_URL
        self._http: Optional[httpx.AsyncClient] = None
        self._slots = asyncio.Semaphore(max(1, int(self.RATE_LIMIT_PER_SECOND)))
        self.log = structlog.get_logger(__name__).bind(connector=self.SOURCE_NAME)

    @property
    def code(self) -> str:
        return self.SOURCE_NAME

    @property
    def client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.TIMEOUT_SECONDS,
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return self._http

    async def __aenter__(self) -> "BaseConnector":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send one request, retrying transient failures.

        ``url`` is a path under ``base_url`` or an absolute URL. 5xx
        responses, connect errors and timeouts are retried with jittered
        exponential backoff up to ``MAX_RETRIES`` attempts; other 4xx
        responses raise ``httpx.HTTPStatusError`` at once.

        Raises:
            RateLimitError: On HTTP 429 (not retried).
            httpx.HTTPError: When the last attempt still fails.
        """
        async with self._slots:
            retrying = AsyncRetrying(
                retry=retry_if_exception(_is_retryable),
                stop=stop_after_attempt(self.MAX_RETRIES),
                wait=wait_exponential_jitter(initial=1, max=30, jitter=5),
                reraise=True,
            )
            async for attempt in retrying:
                with attempt:
                    self.log.debug(
                        "http_request",
                        method=method,
                        url=url,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    response = await self.client.request(method, url, **kwargs)
                    if response.status_code == 429:
                        raise RateLimitError(f"{self.SOURCE_NAME} returned HTTP 429")
                    response.raise_for_status()
            return response

    @abc.abstractmethod
    async def fetch_batch(self, identifiers: list[str]) -> dict[str, FetchResult]:
        """Fetch the latest values for distinct identifiers.

        Raises:
            ConnectorError or httpx.HTTPError: When the whole batch failed.
        """
