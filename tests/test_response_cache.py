"""
Tests for ResponseCache - stored HTTP responses.
"""

import requests
from requests.structures import CaseInsensitiveDict

from agriecho.offline import ResponseCache
from agriecho.offline.response_cache import build_response, delete_namespace, list_namespaces, request_key


URL = 'http://localhost:3000/api/sync'


def _response(body=b'{"success": true}', status=200, headers=None):
    response = requests.Response()
    response.status_code = status
    response.reason = 'OK'
    response.headers = CaseInsensitiveDict(headers or {'Content-Type': 'application/json'})
    response._content = body
    response.encoding = 'utf-8'
    response.url = URL
    response.request = requests.Request('GET', URL).prepare()
    return response


class TestResponseCache:

    def test_put_then_match(self, store, scheduler):
        cache = ResponseCache(store, 'agriecho-dynamic-v1', clock=scheduler.now)

        assert cache.put(_response()) is True
        record = cache.match('get', URL)

        assert record['status'] == 200
        assert record['cached_at'] == scheduler.now()
        assert build_response(record).json() == {'success': True}

    def test_miss(self, store, scheduler):
        cache = ResponseCache(store, 'agriecho-dynamic-v1', clock=scheduler.now)
        assert cache.match('GET', URL) is None

    def test_binary_body_survives(self, store, scheduler):
        cache = ResponseCache(store, 'agriecho-static-v1', clock=scheduler.now)
        png = bytes(range(256))
        cache.put(_response(body=png, headers={'Content-Type': 'image/png'}))

        rebuilt = build_response(cache.match('GET', URL))

        assert rebuilt.content == png

    def test_length_and_encoding_headers_dropped(self, store, scheduler):
        cache = ResponseCache(store, 'ns', clock=scheduler.now)
        cache.put(_response(headers={
            'Content-Type': 'application/json',
            'Content-Length': '17',
            'Content-Encoding': 'gzip',
        }))

        headers = cache.match('GET', URL)['headers']

        assert headers == {'Content-Type': 'application/json'}

    def test_extra_headers(self, store, scheduler):
        cache = ResponseCache(store, 'ns', clock=scheduler.now)
        cache.put(_response())

        rebuilt = build_response(cache.match('GET', URL), extra_headers={'X-Served-From': 'cache'})

        assert rebuilt.headers['X-Served-From'] == 'cache'

    def test_put_overwrites(self, store, scheduler):
        cache = ResponseCache(store, 'ns', clock=scheduler.now)
        cache.put(_response(body=b'{"v": 1}'))
        cache.put(_response(body=b'{"v": 2}'))

        assert build_response(cache.match('GET', URL)).json() == {'v': 2}
        assert cache.keys() == [request_key('GET', URL)]

    def test_delete(self, store, scheduler):
        cache = ResponseCache(store, 'ns', clock=scheduler.now)
        cache.put(_response())

        cache.delete('GET', URL)

        assert cache.match('GET', URL) is None


class TestNamespaces:

    def test_put_registers_namespace(self, store, scheduler):
        ResponseCache(store, 'a', clock=scheduler.now).put(_response())
        ResponseCache(store, 'b', clock=scheduler.now).open()

        assert list_namespaces(store) == ['a', 'b']

    def test_delete_namespace(self, store, scheduler):
        ResponseCache(store, 'a', clock=scheduler.now).put(_response())

        delete_namespace(store, 'a')

        assert list_namespaces(store) == []
        assert ResponseCache(store, 'a', clock=scheduler.now).match('GET', URL) is None
