"""
Tests for CacheGatekeeper - request routing between cache, network and queue.
"""

import pytest
import requests

from agriecho.offline import CacheGatekeeper, RequestKind
from agriecho.offline.gatekeeper import OFFLINE_QUERY_RESPONSE, classify
from agriecho.offline.response_cache import list_namespaces
from agriecho.offline.sync_entry import KIND_ALERT, KIND_QUERY, KIND_REQUEST, SyncState

BASE_URL = 'http://localhost:3000'


@pytest.fixture
def gatekeeper(store, sync_queue, scheduler, fake_network):
    return CacheGatekeeper(store, sync_queue, clock=scheduler.now, network=fake_network)


@pytest.fixture
def session(gatekeeper):
    return gatekeeper.mount(requests.Session())


def _prepared(path, method='GET', accept=None):
    headers = {'Accept': accept} if accept else {}
    return requests.Request(method, f'{BASE_URL}{path}', headers=headers).prepare()


# =============================================================================
# Classification Tests
# =============================================================================

class TestClassify:
    """Tests for classify() - earlier checks win."""

    @pytest.mark.parametrize('path', [
        '/css/styles.css', '/js/app.js', '/icons/icon-192.png', '/images/logo.PNG', '/favicon.ico',
    ])
    def test_static(self, path):
        assert classify(_prepared(path)) == RequestKind.STATIC

    def test_api(self):
        assert classify(_prepared('/api/sync')) == RequestKind.API

    def test_static_extension_wins_over_api(self):
        assert classify(_prepared('/api/chart.png')) == RequestKind.STATIC

    def test_page_by_accept_header(self):
        assert classify(_prepared('/weather', accept='text/html,application/xhtml+xml')) == RequestKind.PAGE

    def test_other(self):
        assert classify(_prepared('/manifest.json')) == RequestKind.OTHER


# =============================================================================
# Static Asset Tests
# =============================================================================

class TestStaticAssets:
    """Cache-first handling."""

    def test_served_from_cache_with_network_down(self, session, fake_network):
        fake_network.route('/css/app.css', 'body { color: green; }', content_type='text/css')

        first = session.get(f'{BASE_URL}/css/app.css')
        assert first.status_code == 200

        fake_network.online = False
        second = session.get(f'{BASE_URL}/css/app.css')

        assert second.status_code == 200
        assert second.text == 'body { color: green; }'
        assert second.headers['Content-Type'] == 'text/css'
        assert len(fake_network.calls_to('/css/app.css')) == 1

    def test_cache_hit_skips_network_even_when_online(self, session, fake_network):
        fake_network.route('/js/app.js', 'console.log(1)')

        session.get(f'{BASE_URL}/js/app.js')
        session.get(f'{BASE_URL}/js/app.js')

        assert len(fake_network.calls_to('/js/app.js')) == 1

    def test_miss_with_network_down_is_503(self, session, fake_network):
        fake_network.online = False

        response = session.get(f'{BASE_URL}/css/missing.css')

        assert response.status_code == 503
        assert response.text == 'File not available offline'

    def test_error_status_is_not_cached(self, session, fake_network, gatekeeper):
        response = session.get(f'{BASE_URL}/css/none.css')

        assert response.status_code == 404
        assert gatekeeper.static_cache.keys() == []


# =============================================================================
# API Read Tests
# =============================================================================

class TestApiReads:
    """Network-first handling of API GETs."""

    def test_network_first_then_cache(self, session, fake_network):
        fake_network.route('/api/sync', {'success': True, 'data': {'sos': [1], 'queries': [], 'weather': []}})

        fresh = session.get(f'{BASE_URL}/api/sync')
        assert fresh.json()['data']['sos'] == [1]
        assert 'X-Served-From' not in fresh.headers

        fake_network.online = False
        cached = session.get(f'{BASE_URL}/api/sync')

        assert cached.status_code == 200
        assert cached.json()['data']['sos'] == [1]
        assert cached.headers['X-Served-From'] == 'cache'

    def test_network_preferred_when_available(self, session, fake_network):
        fake_network.route('/api/sync', {'success': True, 'data': {'sos': [1]}})
        session.get(f'{BASE_URL}/api/sync')

        fake_network.route('/api/sync', {'success': True, 'data': {'sos': [2]}})
        response = session.get(f'{BASE_URL}/api/sync')

        assert response.json()['data']['sos'] == [2]

    def test_sync_fallback_when_nothing_cached(self, session, fake_network):
        fake_network.online = False

        response = session.get(f'{BASE_URL}/api/sync')

        assert response.status_code == 200
        assert response.json() == {
            'success': True,
            'data': {'sos': [], 'queries': [], 'weather': []},
            'offline': True,
        }

    def test_voice_query_fallback(self, session, fake_network):
        fake_network.online = False

        response = session.get(f'{BASE_URL}/api/voice-query')

        assert response.status_code == 200
        assert response.json()['response'] == OFFLINE_QUERY_RESPONSE
        assert response.json()['offline'] is True

    def test_other_api_fallback_is_503(self, session, fake_network):
        fake_network.online = False

        response = session.get(f'{BASE_URL}/api/articles')

        assert response.status_code == 503
        assert response.json() == {
            'success': False,
            'error': 'Service unavailable offline',
            'offline': True,
        }

    def test_server_error_is_returned_as_is(self, session, fake_network):
        fake_network.route('/api/sync', {'success': False, 'error': 'db down'}, status=500)

        response = session.get(f'{BASE_URL}/api/sync')

        assert response.status_code == 500
        assert response.json()['error'] == 'db down'


# =============================================================================
# API Write Tests
# =============================================================================

class TestApiWrites:
    """Writes go to the network or into the sync queue."""

    def test_write_passes_through_when_online(self, session, fake_network, sync_queue):
        fake_network.route('/api/sos', {'success': True, 'message': 'SOS alert sent successfully'})

        response = session.post(f'{BASE_URL}/api/sos', json={'message': 'flood'})

        assert response.json()['success'] is True
        assert sync_queue.entries() == []

    def test_failed_write_is_queued(self, session, fake_network, sync_queue, monitor):
        fake_network.online = False
        monitor.go_offline()

        response = session.post(f'{BASE_URL}/api/sos', json={'message': 'flood', 'severity': 'high'})

        assert response.status_code == 202
        body = response.json()
        assert body['queued'] is True
        assert body['success'] is False
        assert body['status'] == 'accepted-pending'

        entry = sync_queue.get(body['id'])
        assert entry.kind == KIND_ALERT
        assert entry.payload == {'message': 'flood', 'severity': 'high'}
        assert entry.endpoint == f'{BASE_URL}/api/sos'
        assert entry.state == SyncState.PENDING

    def test_queued_voice_query_gets_offline_answer(self, session, fake_network, sync_queue, monitor):
        fake_network.online = False
        monitor.go_offline()

        response = session.post(f'{BASE_URL}/api/voice-query', json={'query': 'Will it rain?'})

        assert response.status_code == 202
        body = response.json()
        assert body['response'] == OFFLINE_QUERY_RESPONSE
        assert body['offline'] is True
        assert sync_queue.get(body['id']).kind == KIND_QUERY

    def test_queued_alert_has_no_answer(self, session, fake_network, monitor):
        fake_network.online = False
        monitor.go_offline()

        response = session.post(f'{BASE_URL}/api/sos', json={'message': 'flood'})

        assert 'response' not in response.json()

    def test_unknown_endpoint_queued_as_generic_request(self, session, fake_network, sync_queue, monitor):
        fake_network.online = False
        monitor.go_offline()

        response = session.put(f'{BASE_URL}/api/profile', json={'name': 'Wanjiru'})

        entry = sync_queue.get(response.json()['id'])
        assert entry.kind == KIND_REQUEST
        assert entry.method == 'PUT'

    def test_write_rejected_by_store_is_503(self, session, fake_network, sync_queue, monitor, store):
        fake_network.online = False
        monitor.go_offline()
        store.quota_bytes = 1

        response = session.post(f'{BASE_URL}/api/sos', json={'message': 'flood'})

        assert response.status_code == 503
        assert response.json()['offline'] is True


# =============================================================================
# Page Tests
# =============================================================================

class TestPages:
    """Network first, then cached page, then cached root."""

    HTML = 'text/html'

    def test_cached_page_served_offline(self, session, fake_network):
        fake_network.route('/weather', '<h1>Weather</h1>', content_type='text/html')
        session.get(f'{BASE_URL}/weather', headers={'Accept': self.HTML})

        fake_network.online = False
        response = session.get(f'{BASE_URL}/weather', headers={'Accept': self.HTML})

        assert response.text == '<h1>Weather</h1>'

    def test_uncached_page_falls_back_to_root(self, session, fake_network):
        fake_network.route('/', '<h1>Home</h1>', content_type='text/html')
        session.get(f'{BASE_URL}/', headers={'Accept': self.HTML})

        fake_network.online = False
        response = session.get(f'{BASE_URL}/sos', headers={'Accept': self.HTML})

        assert response.status_code == 200
        assert response.text == '<h1>Home</h1>'

    def test_nothing_cached_is_offline_503(self, session, fake_network):
        fake_network.online = False

        response = session.get(f'{BASE_URL}/voice', headers={'Accept': self.HTML})

        assert response.status_code == 503
        assert response.text == 'Offline'

    def test_other_request_failure_is_503(self, session, fake_network):
        fake_network.online = False

        response = session.get(f'{BASE_URL}/manifest.json')

        assert response.status_code == 503
        assert response.text == 'Request failed'


# =============================================================================
# Lifecycle Tests
# =============================================================================

class TestLifecycle:
    """Tests for install() and activate()."""

    def test_install_precaches_static_files(self, gatekeeper, fake_network, session):
        fake_network.route('/', '<h1>Home</h1>', content_type='text/html')
        fake_network.route('/css/styles.css', 'body {}', content_type='text/css')

        cached = gatekeeper.install(BASE_URL, paths=['/', '/css/styles.css', '/js/missing.js'])

        assert cached == 2
        fake_network.online = False
        assert session.get(f'{BASE_URL}/css/styles.css').text == 'body {}'

    def test_install_survives_network_failure(self, gatekeeper, fake_network):
        fake_network.online = False

        assert gatekeeper.install(BASE_URL, paths=['/']) == 0

    def test_activate_deletes_old_versions(self, store, sync_queue, scheduler, fake_network):
        old = CacheGatekeeper(store, sync_queue, clock=scheduler.now, cache_version='v0.9', network=fake_network)
        fake_network.route('/css/a.css', 'a')
        old.mount(requests.Session()).get(f'{BASE_URL}/css/a.css')

        new = CacheGatekeeper(store, sync_queue, clock=scheduler.now, cache_version='v1.0', network=fake_network)
        new.static_cache.open()

        deleted = new.activate()

        assert deleted == ['agriecho-static-v0.9']
        assert list_namespaces(store) == ['agriecho-static-v1.0']
        assert store.get('response-cache:agriecho-static-v0.9') is None

    def test_repr(self, gatekeeper):
        assert 'v1.0.0' in repr(gatekeeper)
