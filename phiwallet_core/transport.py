"""
Async JSON-over-HTTP transport for talking to chain nodes.

Built on ``aiohttp``.  Every failure that keeps a JSON body from being
returned (connection refused, timeout, non-2xx status, non-JSON payload)
is raised as :class:`NetworkError`, so callers deal with a single type.

Usage:
    async with HttpTransport(timeout=15.0) as transport:
        data = await transport.get_json("http://localhost:1317/cosmos/...")
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Protocol

import aiohttp

from phiwallet_core.errors import NetworkError

logger = logging.getLogger("phiwallet_transport")


class Transport(Protocol):
    """What the builder, resolver and queries need from the network."""

    async def get_json(self, url: str, params: Mapping[str, Any] | None = None) -> Any: ...

    async def post_json(self, url: str, payload: Any) -> Any: ...


class HttpTransport:
    """aiohttp-backed :class:`Transport` sharing one client session."""

    def __init__(self, timeout: float = 15.0,
                 session: aiohttp.ClientSession | None = None):
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> HttpTransport:
        self._ensure_session()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        session = self._ensure_session()
        logger.debug(f"{method} {url}")
        try:
            async with session.request(method, url, **kwargs) as resp:
                text = await resp.text()
                if resp.status < 200 or resp.status >= 300:
                    raise NetworkError(
                        f"{method} {url} returned HTTP {resp.status}: {text[:200]}",
                        url=url,
                        status=resp.status,
                    )
        except aiohttp.ClientError as exc:
            raise NetworkError(f"{method} {url} failed: {exc}", url=url) from exc
        except asyncio.TimeoutError as exc:
            raise NetworkError(f"{method} {url} timed out", url=url) from exc

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise NetworkError(f"{method} {url} returned non-JSON body", url=url,
                               status=resp.status) from exc

    async def get_json(self, url: str, params: Mapping[str, Any] | None = None) -> Any:
        return await self._request("GET", url, params=dict(params) if params else None)

    async def post_json(self, url: str, payload: Any) -> Any:
        return await self._request("POST", url, json=payload)
