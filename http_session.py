#!/usr/bin/env python3
"""
Pooled aiohttp transport shared by the OCC and HAC request paths
"""

import asyncio
import logging
from dataclasses import dataclass, field
from http.cookies import Morsel
from typing import Any, Dict, Mapping, Optional

import aiohttp
from aiohttp import ClientTimeout, TCPConnector

from hybris_errors import HybrisConnectionError, RequestTimeoutError

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


def _cookie_value(morsel: Morsel) -> Optional[str]:
    """Cookie value, or None when the Set-Cookie deletes it (Max-Age <= 0)"""
    max_age = morsel['max-age']
    if max_age:
        try:
            if int(max_age) <= 0:
                return None
        except ValueError:
            pass
    return morsel.value


@dataclass(frozen=True)
class RawResponse:
    """A fully read response; the underlying connection is already released"""
    status: int
    headers: Mapping[str, str]
    text: str
    url: str
    # None marks a cookie the server deleted
    cookies: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def location(self) -> str:
        return self.headers.get('Location', '') or ''

    @property
    def content_type(self) -> str:
        return (self.headers.get('Content-Type', '') or '').lower()

    @property
    def is_redirect(self) -> bool:
        return self.status in REDIRECT_STATUSES


class SessionManager:
    """Lazily created aiohttp session with connection pooling

    The client-side cookie jar is disabled: cookies for the HAC console are
    tracked explicitly by the HAC authenticator and sent as a Cookie header.
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        ssl_verify: bool = True,
        max_connections: int = 100,
        max_connections_per_host: int = 10
    ):
        self.timeout_seconds = timeout_seconds
        self.ssl_verify = ssl_verify
        self.max_connections = max_connections
        self.max_connections_per_host = max_connections_per_host
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create a session with connection pooling"""
        if self._session is None or self._session.closed:
            async with self._lock:
                if self._session is None or self._session.closed:
                    connector = TCPConnector(
                        limit=self.max_connections,
                        limit_per_host=self.max_connections_per_host,
                        ttl_dns_cache=300,
                        enable_cleanup_closed=True
                    )
                    self._session = aiohttp.ClientSession(
                        connector=connector,
                        timeout=ClientTimeout(total=self.timeout_seconds),
                        cookie_jar=aiohttp.DummyCookieJar()
                    )
                    logger.debug(f"Created new HTTP session (max connections: {self.max_connections})")
        return self._session

    async def send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        data: Any = None,
        auth: Optional[aiohttp.BasicAuth] = None,
        allow_redirects: bool = False
    ) -> RawResponse:
        """
        Send one request bounded by the configured timeout

        The body is read inside the request context so the connection is
        returned to the pool before this coroutine returns or raises.

        Raises:
            RequestTimeoutError: the round trip exceeded timeout_seconds
            HybrisConnectionError: the connection failed
        """
        session = await self.get_session()
        try:
            async with session.request(
                method,
                url,
                headers=headers,
                data=data,
                auth=auth,
                allow_redirects=allow_redirects,
                ssl=self.ssl_verify,
                timeout=ClientTimeout(total=self.timeout_seconds)
            ) as response:
                text = await response.text(errors='replace')
                cookies = {name: _cookie_value(morsel) for name, morsel in response.cookies.items()}
                return RawResponse(
                    status=response.status,
                    headers=response.headers.copy(),
                    text=text,
                    url=str(response.url),
                    cookies=cookies
                )
        except asyncio.TimeoutError as e:
            logger.warning(f"{method} {url} timed out after {self.timeout_seconds}s")
            raise RequestTimeoutError(self.timeout_seconds, url) from e
        except aiohttp.ClientError as e:
            raise HybrisConnectionError(f"{method} {url} failed: {e}") from e

    async def close(self):
        """Close the session and its connector"""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
