"""
Response cache backed by the local persistent store.

Each cache namespace (for example `agriecho-static-v1.0.0`) is one
document mapping request identity (`METHOD URL`) to a stored response.
A list of known namespaces is kept so stale versions can be deleted
when a new cache version is activated.

Cached responses never expire on their own; a later successful fetch of
the same request simply overwrites the entry.
"""

import base64
import logging
from typing import Any, Callable, Dict, List, Optional

import requests
from requests.structures import CaseInsensitiveDict

from agriecho.offline import StorageError
from agriecho.offline.storage import KeyValueStore


logger = logging.getLogger(__name__)


INDEX_KEY = 'response-cache-index'
CACHE_KEY_PREFIX = 'response-cache:'

# Hop-by-hop or length headers that no longer describe a rebuilt body
_DROPPED_HEADERS = ('content-encoding', 'transfer-encoding', 'content-length', 'connection')


def request_key(method: str, url: str) -> str:
    """Identity of a request inside a cache namespace."""
    return f"{method.upper()} {url}"


def list_namespaces(store: KeyValueStore) -> List[str]:
    """Names of every cache namespace ever opened on this store."""
    return list(store.get(INDEX_KEY, []))


def delete_namespace(store: KeyValueStore, namespace: str) -> None:
    """Drop a cache namespace and forget it in the index."""
    store.delete(CACHE_KEY_PREFIX + namespace)
    store.update(INDEX_KEY, lambda names: [n for n in names if n != namespace], default=[])
    logger.info(f"Deleted cache namespace {namespace}")


def build_response(
    record: Dict[str, Any],
    request: Optional[requests.PreparedRequest] = None,
    extra_headers: Optional[Dict[str, str]] = None,
) -> requests.Response:
    """Rebuild a requests.Response from a stored record."""
    response = requests.Response()
    response.status_code = record['status']
    response.reason = record.get('reason') or ''
    response.headers = CaseInsensitiveDict(record.get('headers') or {})
    if extra_headers:
        response.headers.update(extra_headers)
    response._content = base64.b64decode(record.get('body', ''))
    response.encoding = record.get('encoding') or 'utf-8'
    response.url = record.get('url', request.url if request is not None else '')
    response.request = request
    return response


class ResponseCache:
    """
    One named cache of HTTP responses.

    Example:
        cache = ResponseCache(store, 'agriecho-static-v1.0.0', clock=time.time)
        cache.put(response)
        hit = cache.match('GET', 'http://localhost:3000/css/styles.css')
    """

    def __init__(self, store: KeyValueStore, namespace: str, clock: Callable[[], float]):
        self._store = store
        self.namespace = namespace
        self._clock = clock
        self._key = CACHE_KEY_PREFIX + namespace

    def open(self) -> None:
        """Register the namespace in the index."""
        def add(names):
            if self.namespace not in names:
                names.append(self.namespace)
            return names
        self._store.update(INDEX_KEY, add, default=[])

    def match(self, method: str, url: str) -> Optional[Dict[str, Any]]:
        """Stored record for the request, or None."""
        try:
            entries = self._store.get(self._key, {})
        except StorageError as e:
            logger.error(f"Cache {self.namespace} unreadable: {e}")
            return None
        return entries.get(request_key(method, url))

    def put(self, response: requests.Response) -> bool:
        """
        Store a response under its request's identity.

        Returns:
            False when the local store rejected the write
        """
        request = response.request
        method = request.method if request is not None else 'GET'
        url = request.url if request is not None else response.url

        headers = {
            k: v for k, v in response.headers.items()
            if k.lower() not in _DROPPED_HEADERS
        }
        record = {
            'url': url,
            'status': response.status_code,
            'reason': response.reason,
            'headers': headers,
            'body': base64.b64encode(response.content or b'').decode('ascii'),
            'encoding': response.encoding,
            'cached_at': self._clock(),
        }

        def add(entries):
            entries[request_key(method, url)] = record
            return entries

        try:
            self.open()
            self._store.update(self._key, add, default={})
        except StorageError as e:
            logger.error(f"Could not cache {url} in {self.namespace}: {e}")
            return False
        return True

    def delete(self, method: str, url: str) -> None:
        def remove(entries):
            entries.pop(request_key(method, url), None)
            return entries
        self._store.update(self._key, remove, default={})

    def keys(self) -> List[str]:
        return list(self._store.get(self._key, {}).keys())

    def __repr__(self) -> str:
        return f"<ResponseCache namespace={self.namespace}>"
