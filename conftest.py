#!/usr/bin/env python3
"""
Shared fixtures: an in-process fake Hybris instance (HAC console + OCC API)
"""

import asyncio
import base64
from collections import Counter
from typing import Dict, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from hybris_client import HybrisClient
from hybris_config import HybrisConfig

USERNAME = 'admin'
PASSWORD = 'nimda'

LOGIN_PAGE = """<!DOCTYPE html>
<html>
<head><title>hAC | Login</title></head>
<body>
<form action="j_spring_security_check" method="POST">
  <input type="text" name="j_username">
  <input type="password" name="j_password">
  <input type="hidden" name="_csrf" value="tok1">
</form>
</body>
</html>"""

HOME_PAGE = """<!DOCTYPE html>
<html>
<head>
<title>hAC | Home</title>
<meta name="_csrf_header" content="X-CSRF-TOKEN" />
<meta name="_csrf" content="{token}" />
</head>
<body>Welcome</body>
</html>"""


class FakeHybris:
    """Minimal Hybris backend that speaks the HAC login protocol"""

    def __init__(self):
        self.hits: Counter = Counter()
        self.sessions: Dict[str, str] = {}
        self.logins = 0
        self.reject_logins = False
        self.always_redirect_to_login = False
        self.root_redirects = True
        self.delete_route_on_login = False
        self.login_page: str = LOGIN_PAGE
        self.home_page: Optional[str] = None
        self.system_info_html: Optional[str] = None
        self.slow_seconds = 1.0
        self.last_form: Dict[str, str] = {}
        self.last_headers: Dict[str, str] = {}

    def expire_sessions(self):
        self.sessions.clear()

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/hac/', self.hac_root)
        app.router.add_get('/hac/login.jsp', self.hac_login_page)
        app.router.add_post('/hac/j_spring_security_check', self.hac_login_submit)
        app.router.add_post('/hac/console/flexsearch/execute', self.flexsearch)
        app.router.add_post('/hac/console/scripting/execute', self.scripting)
        app.router.add_post('/hac/console/impex/import', self.impex_import)
        app.router.add_post('/hac/console/impex/export', self.impex_export)
        app.router.add_post('/hac/console/sync/execute', self.catalog_sync)
        app.router.add_get('/hac/monitoring/cronjobs', self.cronjobs)
        app.router.add_post('/hac/monitoring/cronjobs/{code}/trigger', self.cronjob_trigger)
        app.router.add_post('/hac/monitoring/cache/clear', self.cache_clear)
        app.router.add_post('/hac/monitoring/cache/clear/{cache_type}', self.cache_clear)
        app.router.add_get('/hac/monitoring/system', self.system_info)
        app.router.add_get('/hac/monitoring/broken', self.broken)
        app.router.add_get('/hac/monitoring/slow', self.slow)
        app.router.add_get('/rest/v2/electronics/products/search', self.occ_search)
        app.router.add_get('/rest/v2/electronics/catalogs/electronicsProductCatalog/Online/categories',
                           self.occ_categories)
        return app

    # -- helpers ----------------------------------------------------------

    @staticmethod
    def redirect(location: str) -> web.Response:
        return web.Response(status=302, headers={'Location': location})

    def session_token(self, request: web.Request) -> Optional[str]:
        return self.sessions.get(request.cookies.get('JSESSIONID', ''))

    async def protected(self, request: web.Request):
        """Return (form, None) for an authorized request, or (None, response)"""
        self.hits[request.path] += 1
        self.last_headers = dict(request.headers)
        token = self.session_token(request)
        if self.always_redirect_to_login or token is None:
            return None, self.redirect('/hac/login.jsp')
        form = dict(await request.post()) if request.method == 'POST' else {}
        self.last_form = form
        if request.method == 'POST':
            if request.headers.get('X-CSRF-TOKEN') != token or form.get('_csrf') != token:
                return None, web.json_response({'error': 'invalid csrf'}, status=403)
        return form, None

    # -- HAC login protocol -----------------------------------------------

    async def hac_root(self, request: web.Request) -> web.Response:
        self.hits['/hac/'] += 1
        token = self.session_token(request)
        if token is not None:
            page = self.home_page if self.home_page is not None else HOME_PAGE.format(token=token)
            return web.Response(text=page, content_type='text/html')
        if not self.root_redirects:
            response = web.Response(text=self.login_page, content_type='text/html')
            response.set_cookie('JSESSIONID', 'abc', path='/hac')
            return response
        response = self.redirect('/hac/login.jsp')
        response.set_cookie('JSESSIONID', 'abc', path='/hac')
        return response

    async def hac_login_page(self, request: web.Request) -> web.Response:
        self.hits['/hac/login.jsp'] += 1
        response = web.Response(text=self.login_page, content_type='text/html')
        response.set_cookie('ROUTE', 'node1', path='/')
        return response

    async def hac_login_submit(self, request: web.Request) -> web.Response:
        self.hits['/hac/j_spring_security_check'] += 1
        form = await request.post()
        valid = (
            not self.reject_logins
            and form.get('j_username') == USERNAME
            and form.get('j_password') == PASSWORD
            and form.get('_csrf') == 'tok1'
            and request.cookies.get('JSESSIONID') == 'abc'
        )
        if not valid:
            return self.redirect('/hac/login.jsp?login_error=1')

        self.logins += 1
        session_id = 'def' if self.logins == 1 else f'def{self.logins}'
        token = 'tok2' if self.logins == 1 else f'tok2-{self.logins}'
        self.sessions[session_id] = token
        response = self.redirect('/hac/')
        response.set_cookie('JSESSIONID', session_id, path='/hac')
        if self.delete_route_on_login:
            response.del_cookie('ROUTE', path='/')
        return response

    # -- HAC console ------------------------------------------------------

    async def flexsearch(self, request: web.Request) -> web.Response:
        form, denied = await self.protected(request)
        if denied is not None:
            return denied
        return web.json_response({
            'query': form.get('flexibleSearchQuery'),
            'maxCount': form.get('maxCount'),
            'csrf': form.get('_csrf'),
            'resultList': [['8796093054977', 'camera']],
        })

    async def scripting(self, request: web.Request) -> web.Response:
        form, denied = await self.protected(request)
        if denied is not None:
            return denied
        return web.json_response({'output': f"ran {form.get('scriptType')}", 'result': 42})

    async def impex_import(self, request: web.Request) -> web.Response:
        form, denied = await self.protected(request)
        if denied is not None:
            return denied
        ok = 'INSERT' in form.get('scriptContent', '')
        return web.json_response({
            'success': ok,
            'output': 'Import finished' if ok else 'Import failed',
            'errors': None if ok else ['no header line'],
        })

    async def impex_export(self, request: web.Request) -> web.Response:
        form, denied = await self.protected(request)
        if denied is not None:
            return denied
        return web.Response(text=f"# export of {form.get('flexibleSearchQuery')}", content_type='text/plain')

    async def catalog_sync(self, request: web.Request) -> web.Response:
        form, denied = await self.protected(request)
        if denied is not None:
            return denied
        return web.json_response({
            'success': True,
            'message': f"{form['catalogId']}:{form['sourceVersion']}->{form['targetVersion']}",
        })

    async def cronjobs(self, request: web.Request) -> web.Response:
        _, denied = await self.protected(request)
        if denied is not None:
            return denied
        return web.json_response({'cronJobs': [{'code': 'solrIndexer', 'active': True, 'status': 'FINISHED'}]})

    async def cronjob_trigger(self, request: web.Request) -> web.Response:
        _, denied = await self.protected(request)
        if denied is not None:
            return denied
        return web.json_response({'success': True, 'message': f"triggered {request.match_info['code']}"})

    async def cache_clear(self, request: web.Request) -> web.Response:
        _, denied = await self.protected(request)
        if denied is not None:
            return denied
        cache_type = request.match_info.get('cache_type', 'all')
        return web.json_response({'success': True, 'message': f"cleared {cache_type}"})

    async def system_info(self, request: web.Request) -> web.Response:
        _, denied = await self.protected(request)
        if denied is not None:
            return denied
        if self.system_info_html is not None:
            return web.Response(text=self.system_info_html, content_type='text/html')
        return web.json_response({'ok': True})

    async def broken(self, request: web.Request) -> web.Response:
        _, denied = await self.protected(request)
        if denied is not None:
            return denied
        return web.json_response({'message': 'NullPointerException'}, status=500)

    async def slow(self, request: web.Request) -> web.Response:
        await asyncio.sleep(self.slow_seconds)
        return web.json_response({'ok': True})

    # -- OCC --------------------------------------------------------------

    def occ_authorized(self, request: web.Request) -> bool:
        expected = base64.b64encode(f"{USERNAME}:{PASSWORD}".encode()).decode()
        return request.headers.get('Authorization') == f"Basic {expected}"

    async def occ_search(self, request: web.Request) -> web.Response:
        self.hits[request.path] += 1
        if not self.occ_authorized(request):
            return web.json_response({'errors': [{'type': 'UnauthorizedError'}]}, status=401)
        return web.json_response({
            'products': [{'code': '1934793', 'name': 'PowerShot A480'}],
            'pagination': {
                'currentPage': int(request.query.get('currentPage', 0)),
                'pageSize': int(request.query.get('pageSize', 20)),
                'totalPages': 1,
                'totalResults': 1,
            },
            'query': request.query.get('query'),
            'fields': request.query.get('fields'),
        })

    async def occ_categories(self, request: web.Request) -> web.Response:
        self.hits[request.path] += 1
        if not self.occ_authorized(request):
            return web.json_response({'errors': []}, status=401)
        return web.json_response({'id': 'root', 'subcategories': [{'id': '575', 'name': 'Digital Cameras'}]})


@pytest.fixture
def fake_hybris():
    return FakeHybris()


@pytest_asyncio.fixture
async def hybris_server(fake_hybris):
    server = TestServer(fake_hybris.app())
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def hybris_config(hybris_server):
    return HybrisConfig(
        base_url=f"http://{hybris_server.host}:{hybris_server.port}",
        username=USERNAME,
        password=PASSWORD,
        timeout_seconds=2.0,
    )


@pytest_asyncio.fixture
async def hybris_client(hybris_config):
    client = HybrisClient(hybris_config)
    yield client
    await client.close()
