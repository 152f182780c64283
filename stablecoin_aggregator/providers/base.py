"""
Abstract base class for stablecoin data sources.
Defines the fetch contract every source adapter implements and the shared
HTTP, rate limiting and error categorization behavior.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime
import httpx
import asyncio

from ..api.schemas import FetchErrorKind, RETRYABLE_ERROR_KINDS, RawAssetRecord
from ..core.config import settings
from ..core.logging_config import create_logger

logger = create_logger(__name__)


class FetchError(Exception):
    """Base exception for source fetch failures."""

    kind = FetchErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        source: str,
        kind: Optional[FetchErrorKind] = None,
        retryable: Optional[bool] = None,
        status_code: Optional[int] = None
    ):
        self.message = message
        self.source = source
        if kind is not None:
            self.kind = kind
        self.retryable = self.kind in RETRYABLE_ERROR_KINDS if retryable is None else retryable
        self.status_code = status_code
        super().__init__(self.message)


class RateLimitError(FetchError):
    """Exception raised when source rate limit is exceeded."""
    kind = FetchErrorKind.RATE_LIMIT


class AuthenticationError(FetchError):
    """Exception raised when source authentication fails."""
    kind = FetchErrorKind.AUTH


class DataNotFoundError(FetchError):
    """Exception raised when requested data is not found."""
    kind = FetchErrorKind.NOT_FOUND


class ParseError(FetchError):
    """Exception raised when a source payload cannot be interpreted."""
    kind = FetchErrorKind.PARSE


def categorize_status(status_code: int) -> FetchErrorKind:
    """Map an HTTP status code to a fetch error kind."""
    if status_code in (401, 403):
        return FetchErrorKind.AUTH
    if status_code == 404:
        return FetchErrorKind.NOT_FOUND
    if status_code == 429:
        return FetchErrorKind.RATE_LIMIT
    if status_code >= 500:
        return FetchErrorKind.SERVER
    return FetchErrorKind.UNKNOWN


_ERRORS_BY_KIND = {
    FetchErrorKind.AUTH: AuthenticationError,
    FetchErrorKind.NOT_FOUND: DataNotFoundError,
    FetchErrorKind.RATE_LIMIT: RateLimitError,
}


def to_float(value: Any) -> Optional[float]:
    """Coerce numeric payload values, treating blanks and garbage as missing."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class BaseApiClient(ABC):
    """HTTP client shared by sources and platform supply providers."""

    def __init__(
        self,
        name: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.name = name
        self.api_key = api_key
        self.base_url = base_url.rstrip('/') if base_url else base_url
        self.max_retries = max_retries if max_retries is not None else settings.api_max_retries
        self.retry_delay = retry_delay if retry_delay is not None else settings.api_retry_delay_seconds
        self.client: Optional[httpx.AsyncClient] = None
        self._transport = transport
        self._request_count = 0
        self._last_request_time = datetime.utcnow()
        self._rate_limit_lock = asyncio.Lock()

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()

    async def connect(self) -> None:
        """Initialize HTTP client connection."""
        if self.client is None:
            timeout = httpx.Timeout(settings.fetch_timeout_seconds, connect=10.0)
            limits = httpx.Limits(max_keepalive_connections=5, max_connections=10)

            self.client = httpx.AsyncClient(
                timeout=timeout,
                limits=limits,
                headers=self._get_default_headers(),
                follow_redirects=True,
                transport=self._transport
            )

            logger.debug("Connected to source", extra={"source": self.name})

    async def disconnect(self) -> None:
        """Close HTTP client connection."""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.debug("Disconnected from source", extra={"source": self.name})

    def _get_default_headers(self) -> Dict[str, str]:
        """Get default HTTP headers for requests."""
        return {
            'User-Agent': 'Stablecoin-Aggregator/1.0.0',
            'Accept': 'application/json',
            'Accept-Encoding': 'gzip, deflate'
        }

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Any:
        """Make HTTP request with rate limiting, retries and error categorization."""

        if not self.client:
            await self.connect()

        await self._apply_rate_limit()

        request_headers = self._get_default_headers()
        if headers:
            request_headers.update(headers)

        auth_headers = self._get_auth_headers()
        if auth_headers:
            request_headers.update(auth_headers)

        attempts = max(1, self.max_retries)
        for attempt in range(attempts):
            try:
                logger.debug("Making request to source", extra={
                    "source": self.name,
                    "method": method,
                    "url": url,
                    "attempt": attempt + 1
                })

                response = await self.client.request(
                    method=method,
                    url=url,
                    params=params,
                    headers=request_headers
                )

                if response.status_code >= 400:
                    error = self._error_for_response(response)
                    if error.retryable and attempt < attempts - 1:
                        await asyncio.sleep(self._retry_wait(response, attempt))
                        continue
                    raise error

                try:
                    data = response.json()
                except ValueError as e:
                    raise ParseError(
                        f"Invalid JSON response from {self.name}: {str(e)}",
                        self.name,
                        status_code=response.status_code
                    ) from e

                logger.debug("Received response from source", extra={
                    "source": self.name,
                    "status_code": response.status_code,
                    "response_size": len(response.content)
                })
                return data

            except httpx.TimeoutException as e:
                logger.warning("Request timeout", extra={
                    "source": self.name,
                    "attempt": attempt + 1,
                    "url": url
                })
                if attempt < attempts - 1:
                    await asyncio.sleep(self.retry_delay * 2 ** attempt)
                    continue
                raise FetchError(
                    f"Request timeout for {self.name}",
                    self.name,
                    kind=FetchErrorKind.TIMEOUT
                ) from e

            except httpx.TransportError as e:
                logger.warning("Network error", extra={
                    "source": self.name,
                    "error": str(e),
                    "attempt": attempt + 1
                })
                if attempt < attempts - 1:
                    await asyncio.sleep(self.retry_delay * 2 ** attempt)
                    continue
                raise FetchError(
                    f"Network error for {self.name}: {str(e)}",
                    self.name,
                    kind=FetchErrorKind.NETWORK
                ) from e

        raise FetchError(f"Max retries exceeded for {self.name}", self.name)

    def _error_for_response(self, response: httpx.Response) -> FetchError:
        kind = categorize_status(response.status_code)
        error_class = _ERRORS_BY_KIND.get(kind, FetchError)

        log = logger.error if kind == FetchErrorKind.AUTH else logger.warning
        log("Source returned error status", extra={
            "source": self.name,
            "status_code": response.status_code,
            "error_kind": kind.value
        })

        return error_class(
            f"{self.name} returned HTTP {response.status_code}",
            self.name,
            kind=kind,
            status_code=response.status_code
        )

    def _retry_wait(self, response: httpx.Response, attempt: int) -> float:
        if response.status_code == 429:
            retry_after = to_float(response.headers.get('Retry-After'))
            if retry_after is not None:
                return min(retry_after, 60.0)
        return self.retry_delay * 2 ** attempt

    async def _apply_rate_limit(self) -> None:
        """Apply rate limiting to requests."""
        async with self._rate_limit_lock:
            now = datetime.utcnow()

            # Reset counter if more than a minute has passed
            if (now - self._last_request_time).total_seconds() > 60:
                self._request_count = 0
                self._last_request_time = now

            max_requests_per_minute = self._get_rate_limit()
            if self._request_count >= max_requests_per_minute:
                wait_time = 60 - (now - self._last_request_time).total_seconds()
                if wait_time > 0:
                    logger.debug("Rate limiting request", extra={
                        "source": self.name,
                        "wait_time": wait_time
                    })
                    await asyncio.sleep(wait_time)
                    self._request_count = 0
                    self._last_request_time = datetime.utcnow()

            self._request_count += 1

    @abstractmethod
    def _get_rate_limit(self) -> int:
        """Get the rate limit for this source (requests per minute)."""
        pass

    @abstractmethod
    def _get_auth_headers(self) -> Optional[Dict[str, str]]:
        """Get authentication headers for this source."""
        pass


class BaseSourceFetcher(BaseApiClient):
    """Abstract base class for stablecoin market-data sources."""

    # False for sources that only annotate coins reported elsewhere
    provides_market_data = True

    def is_configured(self) -> bool:
        """Whether the source has everything it needs (e.g. an API key) to be fetched."""
        return True

    async def fetch(self) -> List[RawAssetRecord]:
        """
        Fetch every stablecoin this source knows about.

        Returns:
            Records mapped into the common RawAssetRecord shape, with prices
            outside the configured stablecoin range filtered out

        Raises:
            FetchError: If the source cannot be fetched or its payload parsed
        """
        payload = await self._fetch_payload()

        try:
            records = self._transform(payload)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ParseError(
                f"Unexpected payload from {self.name}: {str(e)}",
                self.name
            ) from e

        accepted = [record for record in records if self._is_reasonable_price(record)]

        logger.info("Fetched records from source", extra={
            "source": self.name,
            "received": len(records),
            "accepted": len(accepted)
        })
        return accepted

    def _map_items(
        self,
        items: Any,
        mapper: Callable[[Dict[str, Any]], Optional[RawAssetRecord]]
    ) -> List[RawAssetRecord]:
        """Apply ``mapper`` to each payload item, skipping malformed ones."""
        if not isinstance(items, list):
            raise ParseError(
                f"Expected a list of assets from {self.name}, got {type(items).__name__}",
                self.name
            )

        records = []
        for item in items:
            try:
                record = mapper(item)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping malformed record", extra={
                    "source": self.name,
                    "error": str(e)
                })
                continue
            if record is not None:
                records.append(record)
        return records

    def _is_reasonable_price(self, record: RawAssetRecord) -> bool:
        if record.price is None:
            return True
        return settings.min_stablecoin_price <= record.price <= settings.max_stablecoin_price

    @abstractmethod
    async def _fetch_payload(self) -> Any:
        """
        Retrieve the raw payload from the source.

        Raises:
            FetchError: If the request fails
        """
        pass

    @abstractmethod
    def _transform(self, payload: Any) -> List[RawAssetRecord]:
        """
        Map the raw source payload into RawAssetRecord objects.

        This is the only place that knows the source's payload schema.
        """
        pass
