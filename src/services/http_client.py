"""Synchronous HTTP client wrapper over httpx.

Each call opens a fresh ``httpx.Client`` so timeouts and cleanup stay in one
place. Calls are attempted once; failures are logged and re-raised.
"""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)


class HttpClient:
    """Synchronous HTTP client with explicit timeouts.

    Args:
        timeout: Read/write/pool timeout in seconds
        connect_timeout: Connection timeout in seconds
        transport: Optional httpx transport, used by tests to stub responses
    """

    def __init__(
        self,
        timeout: float,
        connect_timeout: float,
        transport: httpx.BaseTransport | None = None,
    ):
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._transport = transport

    def post(self, url: str, **kwargs) -> httpx.Response:
        """Perform a synchronous POST request.

        Raises:
            httpx.HTTPError: If the request fails or returns an error status
        """
        try:
            with self._client() as client:
                response = client.post(url, **kwargs)
                response.raise_for_status()
                return response
        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            logger.error("HTTP POST %s failed: %s", url, e)
            raise

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
            transport=self._transport,
        )
