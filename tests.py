#!/usr/bin/env python3
"""
Tests for the Hybris MCP Server tools
"""

import pytest
from unittest.mock import patch, AsyncMock, MagicMock

import server
from server import (
    clear_cache,
    error_result,
    error_text,
    execute_groovy,
    flexible_search,
    get_categories,
    get_system_info,
    health_check,
    import_impex,
    search_products,
    trigger_catalog_sync,
)
from hybris_errors import (
    AuthenticationError,
    ConfigurationError,
    RemoteError,
    RequestTimeoutError,
    SessionExpiredError,
    UnexpectedResponseError,
)


def call(tool):
    """Unwrap a registered MCP tool to its coroutine function"""
    return getattr(tool, 'fn', tool)


def mock_client():
    client = MagicMock()
    client.config.base_url = 'https://hybris.example.com'
    for name in (
        'search_products', 'get_categories', 'execute_flexible_search',
        'execute_groovy_script', 'import_impex', 'clear_cache',
        'get_system_info', 'trigger_catalog_sync', 'health_check',
    ):
        setattr(client, name, AsyncMock())
    return client


class TestErrorFormatting:
    """Test conversion of errors to tool results"""

    def test_error_text_strips_markup(self):
        body = '<html><body><h1>HTTP Status 500</h1>\n<p>Internal   error</p></body></html>'
        assert error_text(body) == 'HTTP Status 500 Internal error'

    def test_error_text_is_bounded(self):
        assert len(error_text('x' * 5000)) == server.MAX_ERROR_BODY_LENGTH

    def test_error_text_empty(self):
        assert error_text('') == ''

    def test_remote_error(self):
        result = error_result(RemoteError(503, '<p>Service Unavailable</p>'))
        assert result == {
            'success': False,
            'error': 'Backend returned status 503',
            'error_type': 'RemoteError',
            'status': 503,
            'body': 'Service Unavailable',
        }

    def test_unexpected_response(self):
        error = UnexpectedResponseError('HTML page', body_prefix='<html>', status=200, title='hAC | Login')
        result = error_result(error)
        assert result['error_type'] == 'UnexpectedResponseError'
        assert result['status'] == 200
        assert result['body_prefix'] == '<html>'

    def test_timeout(self):
        result = error_result(RequestTimeoutError(30.0, 'https://h/hac/x'))
        assert result['error_type'] == 'RequestTimeoutError'
        assert '30.0s' in result['error']


class TestTools:
    """Test MCP tool wrappers"""

    def setup_method(self):
        server._client = None
        self.client = mock_client()

    def teardown_method(self):
        server._client = None

    @pytest.mark.asyncio
    async def test_search_products_success(self):
        self.client.search_products.return_value = {'products': [{'code': '1'}]}

        with patch('server.get_client', return_value=self.client):
            result = await call(search_products)('camera', page_size=5)

        assert result == {'success': True, 'data': {'products': [{'code': '1'}]}}
        self.client.search_products.assert_awaited_once_with('camera', 5, 0)

    @pytest.mark.asyncio
    async def test_get_categories_success(self):
        self.client.get_categories.return_value = [{'id': '575'}]

        with patch('server.get_client', return_value=self.client):
            result = await call(get_categories)()

        assert result['data'] == [{'id': '575'}]

    @pytest.mark.asyncio
    async def test_flexible_search_arguments(self):
        self.client.execute_flexible_search.return_value = {'resultList': []}

        with patch('server.get_client', return_value=self.client):
            result = await call(flexible_search)('SELECT {pk} FROM {Product}')

        assert result['success'] is True
        self.client.execute_flexible_search.assert_awaited_once_with('SELECT {pk} FROM {Product}', 100)

    @pytest.mark.asyncio
    async def test_remote_error_is_tagged(self):
        self.client.execute_groovy_script.side_effect = RemoteError(
            500, '<html><body>NullPointerException</body></html>', source='HAC API'
        )

        with patch('server.get_client', return_value=self.client):
            result = await call(execute_groovy)('println 1')

        assert result['success'] is False
        assert result['error_type'] == 'RemoteError'
        assert result['status'] == 500
        assert result['body'] == 'NullPointerException'

    @pytest.mark.asyncio
    async def test_session_errors_are_tagged(self):
        self.client.get_system_info.side_effect = SessionExpiredError('redirected to login again')

        with patch('server.get_client', return_value=self.client):
            result = await call(get_system_info)()

        assert result == {
            'success': False,
            'error': 'redirected to login again',
            'error_type': 'SessionExpiredError',
        }

    @pytest.mark.asyncio
    async def test_authentication_error_is_tagged(self):
        self.client.import_impex.side_effect = AuthenticationError("HAC login failed for user 'admin'")

        with patch('server.get_client', return_value=self.client):
            result = await call(import_impex)('INSERT_UPDATE Product;code')

        assert result['error_type'] == 'AuthenticationError'

    @pytest.mark.asyncio
    async def test_clear_cache_optional_type(self):
        self.client.clear_cache.return_value = {'success': True}

        with patch('server.get_client', return_value=self.client):
            await call(clear_cache)()
            await call(clear_cache)('entity')

        assert [c.args for c in self.client.clear_cache.await_args_list] == [(None,), ('entity',)]

    @pytest.mark.asyncio
    async def test_trigger_catalog_sync(self):
        self.client.trigger_catalog_sync.return_value = {'success': True}

        with patch('server.get_client', return_value=self.client):
            await call(trigger_catalog_sync)('electronicsProductCatalog', 'Staged', 'Online')

        self.client.trigger_catalog_sync.assert_awaited_once_with('electronicsProductCatalog', 'Staged', 'Online')

    @pytest.mark.asyncio
    async def test_health_check_wrapped(self):
        self.client.health_check.return_value = {'healthy': False, 'details': {'error': 'down'}}

        with patch('server.get_client', return_value=self.client):
            result = await call(health_check)()

        assert result['success'] is True
        assert result['data']['healthy'] is False

    @pytest.mark.asyncio
    async def test_missing_configuration(self):
        with patch('server.load_config', side_effect=ConfigurationError('Missing required environment variables')):
            result = await call(search_products)('camera')

        assert result['success'] is False
        assert result['error_type'] == 'ConfigurationError'
        assert server._client is None


class TestGetClient:
    """Test lazy client construction"""

    def setup_method(self):
        server._client = None

    def teardown_method(self):
        server._client = None

    def test_client_created_once(self):
        config = MagicMock()
        config.base_url = 'https://hybris.example.com'

        with patch('server.load_config', return_value=config) as load_config, \
                patch('server.HybrisClient') as client_class:
            first = server.get_client()
            second = server.get_client()

        assert first is second
        load_config.assert_called_once()
        client_class.assert_called_once_with(config)


class TestMain:
    """Test the entry point"""

    def test_exits_on_configuration_error(self):
        server._client = None
        with patch('server.load_config', side_effect=ConfigurationError('Missing HYBRIS_BASE_URL')), \
                patch.object(server.mcp, 'run') as run:
            with pytest.raises(SystemExit) as exc_info:
                server.main()

        assert exc_info.value.code == 1
        run.assert_not_called()
