"""Base client for HTTP integrations with common functionality."""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp

from .. import __version__
from ..utils.exceptions import ConnectionError
from ..utils.logging_config import get_logger, get_security_logger


class RateLimiter:
    """Sliding-window rate limiter for API requests."""

    def __init__(self, max_requests: int = 100, time_window: int = 60):
        self.max_requests = max_requests
        self.time_window = time_window
        self.requests: List[float] = []
        self._lock = asyncio.Lock()
        self.logger = get_logger(__name__)

    async def acquire(self) -> None:
        """Acquire a permit, sleeping until the window has room."""
        while True:
            async with self._lock:
                now = time.time()

                # Remove old requests outside the time window
                self.requests = [
                    req_time
                    for req_time in self.requests
                    if now - req_time < self.time_window
                ]

                if len(self.requests) < self.max_requests:
                    self.requests.append(now)
                    return

                wait_time = self.time_window - (now - self.requests[0])

            if wait_time > 0:
                self.logger.warning(
                    f"Rate limit reached, waiting {wait_time:.2f} seconds"
                )
                await asyncio.sleep(wait_time)

    @property
    def current_usage(self) -> float:
        """Get current usage percentage."""
        now = time.time()
        active_requests = [req for req in self.requests if now - req < self.time_window]
        return (len(active_requests) / self.max_requests) * 100


@dataclass(frozen=True)
class HttpResponse:
    """Status and body of a completed request."""

    status: int
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_auth_failure(self) -> bool:
        return self.status in (401, 403)

    def json(self) -> Any:
        """Decode the body; raises ``ValueError`` for malformed JSON."""
        return json.loads(self.text) if self.text else None


class BaseIntegrationClient(ABC):
    """Base class for HTTP integration clients.

    Requests never raise for HTTP error statuses; callers inspect
    ``HttpResponse.status``. Transport failures raise ``ConnectionError``.
    """

    user_agent = f"SprintReportGenerator/{__version__}"

    def __init__(
        self,
        base_url: str,
        rate_limit: int = 100,
        timeout: int = 20,
    ):
        self.base_url = base_url.strip().rstrip("/")
        self.timeout = timeout
        self.logger = get_logger(self.__class__.__name__)
        self.security_logger = get_security_logger()

        self.rate_limiter = RateLimiter(max_requests=rate_limit, time_window=60)

        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

        self.metrics = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "total_latency": 0.0,
            "last_request_time": None,
        }

    @abstractmethod
    async def validate_connection(self) -> bool:
        """Validate the connection to the service."""

    @asynccontextmanager
    async def get_session(self):
        """Get or create aiohttp session with connection pooling."""
        async with self._session_lock:
            if self._session is None or self._session.closed:
                connector = aiohttp.TCPConnector(
                    limit=20,
                    limit_per_host=10,
                    ttl_dns_cache=300,
                )
                self._session = aiohttp.ClientSession(
                    connector=connector,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                    headers=self._get_default_headers(),
                    trust_env=True,  # honour HTTP(S)_PROXY like the system proxy
                )

        yield self._session

    def _get_default_headers(self) -> Dict[str, str]:
        """Get default headers for requests."""
        return {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
        }

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> HttpResponse:
        """Make an HTTP request with rate limiting and metrics."""
        await self.rate_limiter.acquire()

        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        self.logger.debug(
            f"Making {method} request to {endpoint}",
            extra={"params": params},
        )

        start_time = time.time()
        self.metrics["total_requests"] += 1

        try:
            async with self.get_session() as session:
                async with session.request(
                    method=method,
                    url=url,
                    headers=headers,
                    params=params,
                ) as response:
                    # proxies and error pages do not always honour their charset
                    text = await response.text(errors="replace")
                    result = HttpResponse(status=response.status, text=text)

        except (aiohttp.ClientError, asyncio.TimeoutError, LookupError) as e:
            self.metrics["failed_requests"] += 1
            self.logger.warning(f"Request failed: {method} {endpoint}: {e!r}")
            raise ConnectionError(
                f"{method} {endpoint} failed: {e}", details={"endpoint": endpoint}
            ) from e

        if result.ok:
            self.metrics["successful_requests"] += 1
        else:
            self.metrics["failed_requests"] += 1
        self.metrics["total_latency"] += time.time() - start_time
        self.metrics["last_request_time"] = datetime.now()

        self.logger.debug(f"{method} {endpoint} -> {result.status}")
        return result

    async def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        """Make GET request."""
        return await self._make_request("GET", endpoint, headers=headers, params=params)

    async def close(self):
        """Close the client and cleanup resources."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

        self.logger.info(
            "Client closed",
            extra={
                "metrics": self.metrics,
                "rate_limit_usage": f"{self.rate_limiter.current_usage:.1f}%",
            },
        )

    def get_metrics(self) -> Dict[str, Any]:
        """Get client metrics."""
        metrics = self.metrics.copy()

        if metrics["successful_requests"] > 0:
            metrics["average_latency"] = (
                metrics["total_latency"] / metrics["successful_requests"]
            )
        else:
            metrics["average_latency"] = 0.0

        metrics["rate_limit_usage"] = f"{self.rate_limiter.current_usage:.1f}%"

        return metrics

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        _ = exc_type, exc_val, exc_tb  # Unused but required by protocol
        await self.close()
