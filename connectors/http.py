"""JSON-over-HTTP client shared by the upstream connectors.

Handles session lifecycle, per-call timeouts and status-code mapping onto
the ``UpstreamError`` hierarchy. Callers pick the attempt strategy; this
client only performs one request.
"""

import asyncio
import json
from typing import Any, Dict, Optional

import aiohttp

from connectors.base import UpstreamError, UpstreamNotFoundError, UpstreamTimeoutError
from core.observability.logging import get_logger


logger = get_logger(__name__)


class JsonHttpClient:
    """
    Thin aiohttp wrapper returning decoded JSON.

    Usage:
        async with JsonHttpClient("https://loyalty.example.com/api") as client:
            data = await client.request("GET", "/departments", params={"page": "1"})
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.headers = {"Accept": "application/json", **(headers or {})}
        self._session = session
        self._owns_session = session is None

    async def connect(self) -> None:
        """Open the HTTP session if one was not injected."""
        if self._session is None:
            self._session = aiohttp.ClientSession(headers=self.headers)
            self._owns_session = True

    async def disconnect(self) -> None:
        """Close the HTTP session if this client opened it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "JsonHttpClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def build_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not path:
            return self.base_url
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str = "",
        params: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, Any]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> Any:
        """
        Perform one request and decode the JSON body.

        Args:
            method: HTTP method
            path: Path relative to base_url, or a complete URL
            params: Query parameters
            data: JSON request body
            timeout_seconds: Override for the client default

        Returns:
            Decoded JSON, or None for an empty body

        Raises:
            UpstreamNotFoundError: 404
            UpstreamTimeoutError: Timed out
            UpstreamError: Other HTTP error statuses and transport failures
        """
        await self.connect()
        url = self.build_url(path)
        timeout = aiohttp.ClientTimeout(total=timeout_seconds or self.timeout_seconds)

        try:
            async with self._session.request(
                method,
                url,
                params=params,
                json=data,
                timeout=timeout,
            ) as response:
                response_text = await response.text()

                if response.status < 400:
                    if response.status == 204 or not response_text:
                        return None
                    try:
                        return json.loads(response_text)
                    except json.JSONDecodeError as e:
                        raise UpstreamError(
                            f"Invalid JSON from {url}: {e}",
                            response.status,
                            response_text,
                        )

                if response.status == 404:
                    raise UpstreamNotFoundError(
                        f"Resource not found: {url}",
                        response.status,
                        response_text,
                    )

                raise UpstreamError(
                    f"API error {response.status}: {response_text[:200]}",
                    response.status,
                    response_text,
                )
        except asyncio.TimeoutError:
            raise UpstreamTimeoutError(f"Timed out after {timeout.total}s: {method} {url}")
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Request failed: {method} {url}: {e}")
