"""
Tests for ApiClient - remote API access used by the sync queue.
"""

from unittest.mock import MagicMock

import pytest
import requests

from agriecho.offline import (
    ApiClient,
    ApiClientError,
    ApiConnectionError,
    ApiTimeoutError,
    MalformedResponseError,
)


@pytest.fixture
def mock_session():
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def api_client(mock_session):
    return ApiClient('http://localhost:3000/', session=mock_session)


# =============================================================================
# Initialization Tests
# =============================================================================

class TestApiClientInitialization:

    def test_base_url_trailing_slash_removed(self, api_client):
        assert api_client.base_url == 'http://localhost:3000'

    def test_json_headers_set(self, api_client, mock_session):
        assert mock_session.headers['Content-Type'] == 'application/json'
        assert mock_session.headers['User-Agent'] == 'AgriEcho/1.0'

    def test_own_session_mounts_retry_adapter(self):
        client = ApiClient('http://localhost:3000', max_retries=2)

        adapter = client.session.get_adapter('http://localhost:3000/api/sos')

        assert adapter.max_retries.total == 2
        client.close()

    def test_build_url(self, api_client):
        assert api_client.build_url('/api/sos') == 'http://localhost:3000/api/sos'
        assert api_client.build_url('api/sos') == 'http://localhost:3000/api/sos'
        assert api_client.build_url('https://other/api/x') == 'https://other/api/x'


# =============================================================================
# Request Tests
# =============================================================================

class TestRequest:

    def test_success_returns_json(self, api_client, mock_session, mock_response_factory):
        mock_session.request.return_value = mock_response_factory({'success': True})

        assert api_client.post('/api/sos', {'message': 'flood'}) == {'success': True}

        mock_session.request.assert_called_once_with(
            'POST',
            'http://localhost:3000/api/sos',
            json={'message': 'flood'},
            params=None,
            timeout=10,
        )

    def test_error_status_raises(self, api_client, mock_session, mock_response_factory):
        mock_session.request.return_value = mock_response_factory({'error': 'nope'}, status_code=500)

        with pytest.raises(ApiClientError) as exc_info:
            api_client.get('/api/sync')

        assert exc_info.value.status_code == 500

    def test_non_json_raises_malformed(self, api_client, mock_session, mock_response_factory):
        mock_session.request.return_value = mock_response_factory(None, text='<html>')

        with pytest.raises(MalformedResponseError):
            api_client.get('/api/sync')

    def test_non_object_raises_malformed(self, api_client, mock_session, mock_response_factory):
        mock_session.request.return_value = mock_response_factory([1, 2])

        with pytest.raises(MalformedResponseError):
            api_client.get('/api/sync')

    def test_timeout(self, api_client, mock_session):
        mock_session.request.side_effect = requests.Timeout('slow')

        with pytest.raises(ApiTimeoutError):
            api_client.get('/api/sync')

    def test_connection_error(self, api_client, mock_session):
        mock_session.request.side_effect = requests.ConnectionError('refused')

        with pytest.raises(ApiConnectionError):
            api_client.get('/api/sync')

    def test_other_request_exception(self, api_client, mock_session):
        mock_session.request.side_effect = requests.RequestException('weird')

        with pytest.raises(ApiClientError):
            api_client.get('/api/sync')


# =============================================================================
# Submit Tests
# =============================================================================

class TestSubmit:
    """submit() requires a positive acknowledgement."""

    def test_success(self, api_client, mock_session, mock_response_factory):
        mock_session.request.return_value = mock_response_factory({'success': True, 'message': 'ok'})

        assert api_client.submit('POST', '/api/sos', {'message': 'flood'})['message'] == 'ok'

    def test_missing_success_field_is_malformed(self, api_client, mock_session, mock_response_factory):
        mock_session.request.return_value = mock_response_factory({'message': 'ok'})

        with pytest.raises(MalformedResponseError):
            api_client.submit('POST', '/api/sos', {})

    def test_success_false_is_rejection(self, api_client, mock_session, mock_response_factory):
        mock_session.request.return_value = mock_response_factory({'success': False, 'error': 'bad severity'})

        with pytest.raises(ApiClientError) as exc_info:
            api_client.submit('POST', '/api/sos', {})

        assert exc_info.value.message == 'bad severity'


# =============================================================================
# Health Tests
# =============================================================================

class TestHealth:

    def test_healthy(self, api_client, mock_session, mock_response_factory):
        mock_session.get.return_value = mock_response_factory({'status': 'healthy'})
        assert api_client.health() is True

    def test_client_error_status_still_reachable(self, api_client, mock_session, mock_response_factory):
        mock_session.get.return_value = mock_response_factory({}, status_code=404)
        assert api_client.health() is True

    def test_server_error(self, api_client, mock_session, mock_response_factory):
        mock_session.get.return_value = mock_response_factory({}, status_code=503)
        assert api_client.health() is False

    def test_unreachable(self, api_client, mock_session):
        mock_session.get.side_effect = requests.ConnectionError('refused')
        assert api_client.health() is False

    def test_context_manager_closes_session(self, mock_session):
        with ApiClient('http://localhost:3000', session=mock_session):
            pass
        mock_session.close.assert_called_once_with()
