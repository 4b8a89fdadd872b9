"""Async HTTP client wrapper with timeout configuration."""

from typing import Any, Dict, Optional

import httpx


class AsyncHTTPClient:
    """
    Async HTTP client wrapper around httpx.AsyncClient.

    Provides:
    - Configurable connect and read timeouts
    - Connection pooling via httpx
    - Optional injected transport for tests
    """

    def __init__(
        self,
        base_url: str = "",
        headers: Optional[Dict[str, str]] = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize HTTP client.

        Args:
            base_url: Prefix for relative request URLs
            headers: Headers sent with every request
            connect_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
            transport: Custom transport (e.g. httpx.MockTransport)
        """
        self.base_url = base_url
        self.headers = headers or {}
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Enter async context manager."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        await self.close()

    async def open(self) -> None:
        if self._client is not None:
            return
        timeout = httpx.Timeout(self.read_timeout, connect=self.connect_timeout)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=timeout,
            transport=self.transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def post(self, url: str, json: Optional[Dict[str, Any]] = None, **kwargs) -> httpx.Response:
        """
        Perform POST request.

        Args:
            url: URL to request
            json: JSON body
            **kwargs: Additional arguments for httpx

        Returns:
            HTTP response
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        return await self._client.post(url, json=json, **kwargs)
