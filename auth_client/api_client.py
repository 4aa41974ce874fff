"""
HTTP network executor for the bearer auth client.

This module provides the default network collaborator of the auth
orchestrator: an aiohttp session with a shared set of outgoing headers,
status code checking and retry logic for connectivity failures.
"""

import asyncio
import logging
import random
from typing import Optional, Dict

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from auth_shared.exceptions import StatusCodeError, ConnectionFailedError
from auth_shared.interfaces import INetworkExecutor
from auth_shared.models import RequestDescriptor

logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry logic."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before retrying after the given attempt (0-based)."""
        delay = min(
            self.base_delay * (self.exponential_base ** attempt),
            self.max_delay
        )
        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)
        return delay


class AiohttpNetworkExecutor(INetworkExecutor):
    """
    Executes request descriptors over a shared aiohttp session.

    Headers set through set_header() are sent with every request until
    cleared. Non-success status codes are raised as StatusCodeError and are
    never retried; connectivity failures are retried with exponential
    backoff before ConnectionFailedError is raised.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
        default_headers: Optional[Dict[str, str]] = None
    ):
        self.timeout = ClientTimeout(total=timeout)
        self.retry_config = retry_config or RetryConfig()

        self._headers: Dict[str, str] = {'User-Agent': 'BearerAuthClient/1.0'}
        if default_headers:
            self._headers.update(default_headers)

        self._session: Optional[ClientSession] = None

        logger.info("Network executor initialized")

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30,
                enable_cleanup_closed=True
            )
            self._session = ClientSession(connector=connector, timeout=self.timeout)

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    @property
    def headers(self) -> Dict[str, str]:
        """Copy of the headers currently sent with every request."""
        return dict(self._headers)

    def set_header(self, name: str, value: str) -> None:
        self._headers[name] = value
        logger.debug(f"Shared header set: {name}")

    def clear_header(self, name: str) -> None:
        if self._headers.pop(name, None) is not None:
            logger.debug(f"Shared header cleared: {name}")

    async def execute(self, request: RequestDescriptor) -> bytes:
        """
        Execute a request with retry logic for connectivity failures.

        Args:
            request: Request to send

        Returns:
            Response body

        Raises:
            StatusCodeError: On a non-2xx response
            ConnectionFailedError: When the server stays unreachable
        """
        await self._ensure_session()

        headers = dict(self._headers)
        headers.update(request.headers)

        attempt = 0
        last_exception: Optional[BaseException] = None

        while attempt <= self.retry_config.max_retries:
            try:
                logger.debug(f"Making {request.method} request to {request.url} (attempt {attempt + 1})")

                async with self._session.request(
                    method=request.method,
                    url=request.url,
                    data=request.body,
                    headers=headers
                ) as response:
                    body = await response.read()
                    if 200 <= response.status < 300:
                        return body

                    logger.warning(f"{request.method} {request.url} returned status {response.status}")
                    raise StatusCodeError(response.status, body)

            except (ClientError, asyncio.TimeoutError, OSError) as e:
                last_exception = e
                logger.warning(f"Network error on attempt {attempt + 1}: {e}")

                if attempt >= self.retry_config.max_retries:
                    break

                delay = self.retry_config.delay_for(attempt)
                logger.info(f"Retrying in {delay:.1f} seconds...")
                await asyncio.sleep(delay)
                attempt += 1

        raise ConnectionFailedError(
            f"Network request failed after {self.retry_config.max_retries + 1} attempts: {last_exception}"
        ) from last_exception
