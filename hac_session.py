#!/usr/bin/env python3
"""
HAC (Hybris Administration Console) session management

The console authenticates through a Spring Security login form protected by a
rotating CSRF token. A session is the cookie set plus the CSRF token issued to
the authenticated landing page; it is obtained with a three-step login and
cached until a protected request is redirected back to the login page.
"""

import asyncio
import logging
import re
from typing import Dict, Mapping, Optional
from urllib.parse import urljoin

from pydantic import BaseModel, ConfigDict, Field

from http_session import RawResponse, SessionManager
from hybris_config import HybrisConfig
from hybris_errors import AuthenticationError, AuthProtocolError

logger = logging.getLogger(__name__)

CSRF_FIELD = '_csrf'
CSRF_HEADER = 'X-CSRF-TOKEN'
LOGIN_SUBMIT_PATH = '/j_spring_security_check'
LOGIN_ERROR_MARKER = 'error'

# Accepted token markup: (tag, value attribute). Each shape is matched with the
# name attribute either before or after the value attribute, and with either
# quote style on each attribute.
CSRF_MARKUP_SHAPES = (
    ('meta', 'content'),
    ('input', 'value'),
)


def _csrf_patterns(field_name: str):
    name = rf'''\bname\s*=\s*(?P<nq>["']){re.escape(field_name)}(?P=nq)'''
    patterns = []
    for tag, attr in CSRF_MARKUP_SHAPES:
        value = rf'''\b{attr}\s*=\s*(?P<vq>["'])(?P<token>[^"'<>]*)(?P=vq)'''
        patterns.append(re.compile(rf'<{tag}\b[^>]*?{name}[^>]*?{value}', re.IGNORECASE))
        patterns.append(re.compile(rf'<{tag}\b[^>]*?{value}[^>]*?{name}', re.IGNORECASE))
    return tuple(patterns)


_CSRF_PATTERNS = _csrf_patterns(CSRF_FIELD)


def extract_csrf_token(html: str) -> Optional[str]:
    """Return the _csrf token from a meta tag or hidden input, or None"""
    for pattern in _CSRF_PATTERNS:
        for match in pattern.finditer(html):
            token = match.group('token').strip()
            if token:
                return token
    return None


def merge_cookies(base: Mapping[str, str], update: Mapping[str, Optional[str]]) -> Dict[str, str]:
    """Merge two cookie sets; later values win, unrelated names are kept

    A None value in update is a cookie the server deleted and is dropped.
    """
    merged = dict(base)
    for name, value in update.items():
        if value is None:
            merged.pop(name, None)
        else:
            merged[name] = value
    return merged


def build_cookie_header(cookies: Mapping[str, str]) -> str:
    return "; ".join(f"{name}={value}" for name, value in cookies.items())


class HacSession(BaseModel):
    """Authenticated HAC state: session cookies and the post-login CSRF token"""
    model_config = ConfigDict(frozen=True)

    cookies: Dict[str, str] = Field(default_factory=dict, description="Cookie name to latest value")
    csrf_token: str = Field(description="CSRF token bound to the authenticated session")

    @property
    def cookie_header(self) -> str:
        return build_cookie_header(self.cookies)

    def request_headers(self) -> Dict[str, str]:
        """Headers that authenticate one request against the console"""
        return {
            'Cookie': self.cookie_header,
            CSRF_HEADER: self.csrf_token,
        }


class HacAuthenticator:
    """Owns the HAC login protocol and the cached session

    Concurrent callers that find no cached session share one in-flight login.
    """

    def __init__(self, config: HybrisConfig, http: SessionManager):
        self.config = config
        self.http = http
        self._session: Optional[HacSession] = None
        self._login_task: Optional[asyncio.Task] = None

    @property
    def hac_url(self) -> str:
        return f"{self.config.base_url}{self.config.hac_path}"

    @property
    def session(self) -> Optional[HacSession]:
        return self._session

    async def ensure_session(self) -> HacSession:
        """Return the cached session, logging in first if there is none"""
        session = self._session
        if session is not None:
            return session

        # a finished task may still be referenced until its done callback runs
        if self._login_task is None or self._login_task.done():
            self._login_task = asyncio.ensure_future(self._login())
            self._login_task.add_done_callback(self._login_finished)

        # shield: a cancelled waiter must not cancel the login the others share
        return await asyncio.shield(self._login_task)

    def invalidate(self):
        """Drop the cached session; the next ensure_session() logs in again"""
        if self._session is not None:
            logger.info("Invalidating cached HAC session")
        self._session = None

    def _login_finished(self, task: asyncio.Task):
        if self._login_task is task:
            self._login_task = None
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"HAC login failed: {task.exception()}")

    def _cookie_headers(self, cookies: Mapping[str, str]) -> Dict[str, str]:
        return {'Cookie': build_cookie_header(cookies)} if cookies else {}

    async def _login(self) -> HacSession:
        login_page, cookies = await self._fetch_login_page()

        login_token = extract_csrf_token(login_page.text)
        if not login_token:
            raise AuthProtocolError(
                f"CSRF token not found on HAC login page {login_page.url}"
            )

        submit_url = f"{self.hac_url}{LOGIN_SUBMIT_PATH}"
        headers = self._cookie_headers(cookies)
        headers['Content-Type'] = 'application/x-www-form-urlencoded'
        login_response = await self.http.send(
            'POST',
            submit_url,
            headers=headers,
            data={
                'j_username': self.config.username,
                'j_password': self.config.password,
                CSRF_FIELD: login_token,
            }
        )
        cookies = merge_cookies(cookies, login_response.cookies)

        location = login_response.location
        if not login_response.is_redirect or not location or LOGIN_ERROR_MARKER in location:
            raise AuthenticationError(
                f"HAC login failed for user '{self.config.username}' - "
                f"invalid credentials or login rejected (status {login_response.status})"
            )

        home_url = urljoin(submit_url, location)
        home = await self.http.send('GET', home_url, headers=self._cookie_headers(cookies))
        cookies = merge_cookies(cookies, home.cookies)

        session_token = extract_csrf_token(home.text)
        if not session_token:
            raise AuthProtocolError(f"CSRF token not found after HAC login at {home_url}")

        session = HacSession(cookies=cookies, csrf_token=session_token)
        self._session = session
        logger.info(f"Logged in to HAC at {self.hac_url} ({len(cookies)} cookies)")
        return session

    async def _fetch_login_page(self):
        """GET the console root, following one redirect to the login page"""
        root_url = f"{self.hac_url}/"
        page: RawResponse = await self.http.send('GET', root_url)
        cookies = merge_cookies({}, page.cookies)

        if page.is_redirect and page.location:
            login_url = urljoin(root_url, page.location)
            logger.debug(f"HAC root redirected to {login_url}")
            page = await self.http.send('GET', login_url, headers=self._cookie_headers(cookies))
            cookies = merge_cookies(cookies, page.cookies)

        return page, cookies
