#!/usr/bin/env python3
"""
Hybris API client for SAP Commerce Cloud

Two request families:
- OCC REST API (/rest/v2/...) with a static basic-auth header
- HAC console (/hac/...) through a cached form-login session, re-authenticated
  once when the console redirects a request back to its login page
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote, urlencode

import aiohttp
from bs4 import BeautifulSoup

from hac_session import CSRF_FIELD, HacAuthenticator
from http_session import RawResponse, SessionManager
from hybris_config import HybrisConfig
from hybris_errors import (
    HybrisError,
    RemoteError,
    SessionExpiredError,
    UnexpectedResponseError,
)

logger = logging.getLogger(__name__)

LOGIN_REDIRECT_MARKER = 'login'
BODY_PREFIX_LENGTH = 500
MAX_REAUTH_ATTEMPTS = 1

PRODUCT_SEARCH_FIELDS = 'products(code,name,description,price,stock,categories,images),pagination'
FORM_CONTENT_TYPE = 'application/x-www-form-urlencoded'


def looks_like_login_redirect(response: RawResponse) -> bool:
    """True when the console answered by redirecting to its login page"""
    return response.is_redirect and LOGIN_REDIRECT_MARKER in response.location.lower()


def _page_title(html: str) -> Optional[str]:
    soup = BeautifulSoup(html, 'lxml')
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return None


def decode_response(response: RawResponse, source: str = "Hybris API") -> Any:
    """
    Classify and decode a response that is not a login redirect

    Returns:
        Parsed JSON for JSON content types, otherwise the body text

    Raises:
        UnexpectedResponseError: an HTML document came back (any status), or JSON did not parse
        RemoteError: status >= 400
    """
    content_type = response.content_type
    body = response.text

    if 'text/html' in content_type and '<html' in body.lower():
        title = _page_title(body)
        raise UnexpectedResponseError(
            f"{source} returned an HTML page instead of data "
            f"(status {response.status}{', title: ' + repr(title) if title else ''}) - "
            "the session may have been rejected",
            body_prefix=body[:BODY_PREFIX_LENGTH],
            status=response.status,
            title=title
        )

    if response.status >= 400:
        raise RemoteError(response.status, body, source=source)

    if 'application/json' in content_type:
        try:
            return json.loads(body) if body.strip() else None
        except ValueError as e:
            raise UnexpectedResponseError(
                f"{source} returned malformed JSON: {e}",
                body_prefix=body[:BODY_PREFIX_LENGTH],
                status=response.status
            ) from e

    return body


def _segment(value: str) -> str:
    return quote(str(value), safe='')


class HybrisClient:
    """Client for one Hybris instance"""

    def __init__(
        self,
        config: HybrisConfig,
        http: Optional[SessionManager] = None,
        authenticator: Optional[HacAuthenticator] = None
    ):
        self.config = config
        self.http = http or SessionManager(
            timeout_seconds=config.timeout_seconds,
            ssl_verify=config.ssl_verify
        )
        self.authenticator = authenticator or HacAuthenticator(config, self.http)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        await self.http.close()

    @property
    def hac_prefix(self) -> str:
        return self.config.hac_path

    @property
    def occ_prefix(self) -> str:
        return f"/rest/v2/{_segment(self.config.base_site_id)}"

    @property
    def catalog_prefix(self) -> str:
        return (
            f"{self.occ_prefix}/catalogs/{_segment(self.config.catalog_id)}"
            f"/{_segment(self.config.catalog_version)}"
        )

    # ------------------------------------------------------------------
    # Request paths
    # ------------------------------------------------------------------

    async def request(
        self,
        endpoint: str,
        method: str = 'GET',
        json_body: Optional[Any] = None
    ) -> Any:
        """Basic-auth request against the OCC API"""
        headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }
        data = json.dumps(json_body) if json_body is not None else None
        response = await self.http.send(
            method,
            f"{self.config.base_url}{endpoint}",
            headers=headers,
            data=data,
            auth=aiohttp.BasicAuth(self.config.username, self.config.password),
            allow_redirects=True
        )
        return decode_response(response, source="Hybris API")

    async def hac_request(
        self,
        endpoint: str,
        method: str = 'GET',
        form: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None
    ) -> Any:
        """
        Session-authenticated request against the HAC console

        A redirect to the login page invalidates the cached session and the
        request is sent once more after a fresh login.

        Args:
            endpoint: Path relative to the base URL (including the HAC prefix)
            method: HTTP method
            form: Form fields; for POST the session's CSRF token is added as _csrf
            headers: Extra request headers

        Raises:
            SessionExpiredError: still redirected to login after re-authenticating
            AuthenticationError, AuthProtocolError: the (re-)login failed
        """
        method = method.upper()
        url = f"{self.config.base_url}{endpoint}"

        for attempt in range(MAX_REAUTH_ATTEMPTS + 1):
            session = await self.authenticator.ensure_session()

            request_headers = dict(headers or {})
            request_headers.update(session.request_headers())

            data = None
            if form is not None:
                data = dict(form)
                if method == 'POST':
                    data[CSRF_FIELD] = session.csrf_token
                request_headers.setdefault('Content-Type', FORM_CONTENT_TYPE)

            response = await self.http.send(
                method,
                url,
                headers=request_headers,
                data=data,
                allow_redirects=False
            )

            if looks_like_login_redirect(response):
                if attempt >= MAX_REAUTH_ATTEMPTS:
                    raise SessionExpiredError(
                        f"HAC request to {endpoint} was redirected to login again - "
                        "re-authentication did not restore a usable session"
                    )
                logger.info(f"HAC session expired (redirected to {response.location}), re-authenticating")
                self.authenticator.invalidate()
                continue

            return decode_response(response, source="HAC API")

    async def _hac_form_post(self, endpoint: str, form: Optional[Mapping[str, str]] = None) -> Any:
        return await self.hac_request(
            f"{self.hac_prefix}{endpoint}",
            method='POST',
            form=form or {}
        )

    # ------------------------------------------------------------------
    # OCC API methods (Omni Commerce Connect)
    # ------------------------------------------------------------------

    async def search_products(self, query: str, page_size: int = 20, current_page: int = 0) -> Dict[str, Any]:
        params = urlencode({
            'query': query,
            'pageSize': page_size,
            'currentPage': current_page,
            'fields': PRODUCT_SEARCH_FIELDS,
        })
        return await self.request(f"{self.occ_prefix}/products/search?{params}")

    async def get_product(self, product_code: str) -> Dict[str, Any]:
        return await self.request(f"{self.occ_prefix}/products/{_segment(product_code)}?fields=FULL")

    async def get_categories(self) -> List[Dict[str, Any]]:
        result = await self.request(f"{self.catalog_prefix}/categories")
        if isinstance(result, dict):
            return result.get('subcategories') or []
        return []

    async def get_category(self, category_code: str) -> Dict[str, Any]:
        return await self.request(f"{self.catalog_prefix}/categories/{_segment(category_code)}")

    async def get_orders(self, user_id: str) -> Dict[str, Any]:
        return await self.request(f"{self.occ_prefix}/users/{_segment(user_id)}/orders?fields=FULL")

    async def get_order(self, user_id: str, order_code: str) -> Dict[str, Any]:
        return await self.request(
            f"{self.occ_prefix}/users/{_segment(user_id)}/orders/{_segment(order_code)}?fields=FULL"
        )

    # ------------------------------------------------------------------
    # HAC console methods
    # ------------------------------------------------------------------

    async def execute_flexible_search(self, query: str, max_count: int = 100) -> Any:
        return await self._hac_form_post('/console/flexsearch/execute', {
            'flexibleSearchQuery': query,
            'maxCount': str(max_count),
        })

    async def execute_groovy_script(self, script: str) -> Any:
        return await self._hac_form_post('/console/scripting/execute', {
            'script': script,
            'scriptType': 'groovy',
        })

    async def import_impex(self, impex_content: str) -> Dict[str, Any]:
        result = await self._hac_form_post('/console/impex/import', {
            'scriptContent': impex_content,
        })
        if not isinstance(result, dict):
            raise UnexpectedResponseError(
                "HAC impex import did not return a JSON result",
                body_prefix=str(result)[:BODY_PREFIX_LENGTH]
            )
        return {
            'success': bool(result.get('success')),
            'message': result.get('output', ''),
            'errors': result.get('errors'),
        }

    async def export_impex(self, flex_query: str) -> Any:
        return await self._hac_form_post('/console/impex/export', {
            'flexibleSearchQuery': flex_query,
        })

    async def get_cron_jobs(self) -> Any:
        return await self.hac_request(f"{self.hac_prefix}/monitoring/cronjobs", method='GET')

    async def trigger_cron_job(self, cron_job_code: str) -> Any:
        return await self._hac_form_post(f"/monitoring/cronjobs/{_segment(cron_job_code)}/trigger")

    async def clear_cache(self, cache_type: Optional[str] = None) -> Any:
        endpoint = '/monitoring/cache/clear'
        if cache_type:
            endpoint = f"{endpoint}/{_segment(cache_type)}"
        return await self._hac_form_post(endpoint)

    async def get_system_info(self) -> Any:
        return await self.hac_request(f"{self.hac_prefix}/monitoring/system", method='GET')

    async def trigger_catalog_sync(self, catalog_id: str, source_version: str, target_version: str) -> Any:
        return await self._hac_form_post('/console/sync/execute', {
            'catalogId': catalog_id,
            'sourceVersion': source_version,
            'targetVersion': target_version,
        })

    # ------------------------------------------------------------------
    # Health check (OCC only, since HAC may not be deployed)
    # ------------------------------------------------------------------

    async def health_check(self) -> Dict[str, Any]:
        try:
            result = await self.search_products('', page_size=1, current_page=0)
        except HybrisError as e:
            logger.warning(f"Health check failed: {e}")
            return {
                'healthy': False,
                'details': {'error': str(e), 'error_type': type(e).__name__},
            }

        total = 'unknown'
        if isinstance(result, dict):
            total = (result.get('pagination') or {}).get('totalResults', 'unknown')
        return {
            'healthy': True,
            'details': {
                'baseSiteId': self.config.base_site_id,
                'totalProducts': total,
            },
        }
