"""
Pytest Fixtures for AgriEcho Tests

Provides the in-memory store, simulated scheduler, connectivity monitor,
mocked collaborators, a fake network transport and the Flask test app.
"""

import json
from urllib.parse import urlparse
from unittest.mock import MagicMock

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from agriecho.config import reset_config
from agriecho.offline import ApiClient, ConnectivityMonitor, ManualTaskScheduler, MemoryStore, SyncQueue
from agriecho.offline.notifier import Notifier


BASE_URL = 'http://localhost:3000'


# =============================================================================
# HTTP doubles
# =============================================================================

class MockResponse:
    """Mock HTTP response for testing HTTP clients."""

    def __init__(self, json_data, status_code=200, text=''):
        self.json_data = json_data
        self.status_code = status_code
        self.text = text or json.dumps(json_data)
        self.ok = 200 <= status_code < 300

    def json(self):
        if self.json_data is None:
            raise ValueError('No JSON object could be decoded')
        return self.json_data

    def raise_for_status(self):
        if not self.ok:
            from requests import HTTPError
            raise HTTPError(f'{self.status_code} Error')


class FakeNetwork(BaseAdapter):
    """
    Transport adapter standing in for the real network.

    Routes map a URL path to (status, body bytes, content type). Unknown
    paths answer 404. While `online` is False every send raises
    requests.ConnectionError.
    """

    def __init__(self):
        super().__init__()
        self.online = True
        self.routes = {}
        self.calls = []

    def route(self, path, body, status=200, content_type=None):
        if isinstance(body, (dict, list)):
            body = json.dumps(body).encode('utf-8')
            content_type = content_type or 'application/json'
        elif isinstance(body, str):
            body = body.encode('utf-8')
        self.routes[path] = (status, body, content_type or 'text/plain')

    def calls_to(self, path, method=None):
        return [
            (m, url, body) for m, url, body in self.calls
            if urlparse(url).path == path and (method is None or m == method)
        ]

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.calls.append((request.method, request.url, request.body))
        if not self.online:
            raise requests.ConnectionError('Network is unreachable', request=request)

        path = urlparse(request.url).path
        status, body, content_type = self.routes.get(path, (404, b'Not Found', 'text/plain'))

        response = requests.Response()
        response.status_code = status
        response.headers = CaseInsensitiveDict({'Content-Type': content_type})
        response._content = body
        response.encoding = 'utf-8'
        response.url = request.url
        response.request = request
        return response

    def close(self):
        pass


@pytest.fixture(scope='function')
def mock_response_factory():
    """
    Factory fixture for creating mock HTTP responses.

    Returns:
        Function that creates MockResponse instances
    """
    def _create_response(json_data, status_code=200, text=''):
        return MockResponse(json_data, status_code, text)
    return _create_response


@pytest.fixture
def fake_network():
    return FakeNetwork()


@pytest.fixture
def network_session(fake_network):
    """requests.Session whose traffic goes to fake_network."""
    session = requests.Session()
    session.mount('http://', fake_network)
    session.mount('https://', fake_network)
    return session


# =============================================================================
# Offline layer fixtures
# =============================================================================

@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def scheduler():
    return ManualTaskScheduler()


@pytest.fixture
def notifier():
    return MagicMock(spec=Notifier)


@pytest.fixture
def monitor(notifier):
    return ConnectivityMonitor(initial_online=True, notifier=notifier)


@pytest.fixture
def mock_api_client():
    """ApiClient mock whose submit() always succeeds."""
    client = MagicMock(spec=ApiClient)
    client.base_url = BASE_URL
    client.timeout = 10
    client.submit.return_value = {'success': True}
    return client


@pytest.fixture
def sync_queue(store, mock_api_client, scheduler, monitor, notifier):
    return SyncQueue(store, mock_api_client, scheduler, monitor, notifier=notifier)


# =============================================================================
# Server fixtures
# =============================================================================

@pytest.fixture(scope='function')
def app(tmp_path, monkeypatch):
    """Create application for testing with in-memory SQLite database."""
    monkeypatch.delenv('AGRIECHO_CONFIG', raising=False)
    monkeypatch.setenv('AGRIECHO_STORAGE_PATH', str(tmp_path))
    reset_config()

    from agriecho.server.app import create_app
    from agriecho.server.models import db

    app = create_app(str(tmp_path / 'config.json'), testing=True)

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()

    reset_config()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()
