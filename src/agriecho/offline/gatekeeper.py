"""
Cache Gatekeeper - request interception for offline use.

CacheGatekeeper is a requests transport adapter. Mount it on a session
and every request made through that session is classified and routed:

1. Static asset (/css/, /js/, /icons/, image extensions): cache-first
2. API (/api/...): network-first, then cache, then a synthesized offline
   payload; writes that cannot reach the network go to the sync queue
3. Page (Accept: text/html): network-first, then the cached page, then
   the cached root page, then a generic offline page
4. Anything else: passthrough, 503 when the network is unreachable

Only transport failures (connection errors, timeouts) trigger the
fallbacks; an HTTP error status from the server is returned as-is.

Example:
    gatekeeper = CacheGatekeeper(store, sync_queue, clock=time.time)
    session = requests.Session()
    gatekeeper.mount(session)
    session.get('http://localhost:3000/api/sync')
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse, urlunparse

import requests
from requests.adapters import BaseAdapter, HTTPAdapter
from requests.exceptions import RequestException
from requests.structures import CaseInsensitiveDict

from agriecho.offline.response_cache import (
    ResponseCache,
    build_response,
    delete_namespace,
    list_namespaces,
)
from agriecho.offline.storage import KeyValueStore
from agriecho.offline.sync_entry import KIND_ALERT, KIND_QUERY, KIND_REQUEST
from agriecho.offline.sync_queue import SyncQueue


logger = logging.getLogger(__name__)


STATIC_PREFIXES = ('/css/', '/js/', '/icons/')
STATIC_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.svg', '.ico')
API_PREFIX = '/api/'

SYNC_PATH = '/api/sync'
QUERY_PATH = '/api/voice-query'

# Files precached by install()
STATIC_FILES = [
    '/',
    '/knowledge',
    '/weather',
    '/sos',
    '/voice',
    '/css/styles.css',
    '/js/app.js',
    '/js/offline.js',
    '/manifest.json',
    '/icons/icon-192.png',
    '/icons/icon-512.png',
]

# Queue kind for writes to known endpoints
KIND_BY_PATH = {
    '/api/sos': KIND_ALERT,
    QUERY_PATH: KIND_QUERY,
}

OFFLINE_QUERY_RESPONSE = (
    "I'm currently offline. Your question has been saved and "
    "I'll respond when connectivity is restored."
)


class RequestKind(Enum):
    """Routing class of an outbound request."""
    STATIC = "static"
    API = "api"
    PAGE = "page"
    OTHER = "other"


def classify(request: requests.PreparedRequest) -> RequestKind:
    """Classify a request; earlier checks win."""
    path = urlparse(request.url).path or '/'

    if path.startswith(STATIC_PREFIXES) or path.lower().endswith(STATIC_EXTENSIONS):
        return RequestKind.STATIC
    if path.startswith(API_PREFIX):
        return RequestKind.API
    if 'text/html' in (request.headers.get('Accept') or ''):
        return RequestKind.PAGE
    return RequestKind.OTHER


def _make_response(
    request: requests.PreparedRequest,
    status: int,
    body: bytes,
    content_type: str,
    reason: str = '',
) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    response.headers = CaseInsensitiveDict({'Content-Type': content_type})
    response._content = body
    response.encoding = 'utf-8'
    response.url = request.url
    response.request = request
    return response


def json_response(request: requests.PreparedRequest, status: int, data: Dict[str, Any]) -> requests.Response:
    return _make_response(request, status, json.dumps(data).encode('utf-8'), 'application/json')


def text_response(request: requests.PreparedRequest, status: int, text: str) -> requests.Response:
    reason = 'Service Unavailable' if status == 503 else ''
    return _make_response(request, status, text.encode('utf-8'), 'text/plain', reason)


def offline_api_response(request: requests.PreparedRequest) -> requests.Response:
    """Synthesized answer for an API read with neither network nor cache."""
    path = urlparse(request.url).path

    if path == SYNC_PATH:
        return json_response(request, 200, {
            'success': True,
            'data': {'sos': [], 'queries': [], 'weather': []},
            'offline': True,
        })

    if path == QUERY_PATH:
        return json_response(request, 200, {
            'success': True,
            'response': OFFLINE_QUERY_RESPONSE,
            'offline': True,
        })

    return json_response(request, 503, {
        'success': False,
        'error': 'Service unavailable offline',
        'offline': True,
    })


def _decode_body(body: Any) -> Any:
    """Request body as JSON when possible, otherwise as text."""
    if body is None:
        return None
    if isinstance(body, bytes):
        body = body.decode('utf-8', errors='replace')
    try:
        return json.loads(body)
    except ValueError:
        return body


class CacheGatekeeper(HTTPAdapter):
    """
    Transport adapter choosing cache, network or queue per request.

    Attributes:
        static_cache: Cache-first namespace for static assets
        dynamic_cache: Namespace for API responses and pages
    """

    def __init__(
        self,
        store: KeyValueStore,
        sync_queue: SyncQueue,
        clock,
        cache_version: str = 'v1.0.0',
        network: Optional[BaseAdapter] = None,
        **kwargs,
    ):
        """
        Args:
            store: Local persistent store holding the response caches
            sync_queue: Queue receiving writes that cannot be delivered
            clock: Callable returning epoch seconds
            cache_version: Version suffix of the cache namespaces
            network: Adapter performing real network I/O (default HTTPAdapter)
        """
        super().__init__(**kwargs)
        self._store = store
        self._sync_queue = sync_queue
        self._network = network if network is not None else HTTPAdapter()
        self.cache_version = cache_version
        self.static_cache = ResponseCache(store, f'agriecho-static-{cache_version}', clock)
        self.dynamic_cache = ResponseCache(store, f'agriecho-dynamic-{cache_version}', clock)

    @property
    def current_namespaces(self) -> List[str]:
        return [self.static_cache.namespace, self.dynamic_cache.namespace]

    def mount(self, session: requests.Session) -> requests.Session:
        """Route all http(s) traffic of session through this adapter."""
        session.mount('http://', self)
        session.mount('https://', self)
        return session

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        kwargs = {
            'stream': stream,
            'timeout': timeout,
            'verify': verify,
            'cert': cert,
            'proxies': proxies,
        }
        kind = classify(request)

        if request.method != 'GET':
            if kind == RequestKind.API:
                return self._handle_api_write(request, kwargs)
            return self._handle_other(request, kwargs)

        if kind == RequestKind.STATIC:
            return self._handle_static(request, kwargs)
        if kind == RequestKind.API:
            return self._handle_api_read(request, kwargs)
        if kind == RequestKind.PAGE:
            return self._handle_page(request, kwargs)
        return self._handle_other(request, kwargs)

    def _fetch(self, request, kwargs) -> requests.Response:
        return self._network.send(request, **kwargs)

    def _handle_static(self, request, kwargs) -> requests.Response:
        """Cache first, network on miss."""
        record = self.static_cache.match('GET', request.url)
        if record is not None:
            return build_response(record, request)

        try:
            response = self._fetch(request, kwargs)
        except RequestException as e:
            logger.warning(f"Static file {request.url} unavailable offline: {e}")
            return text_response(request, 503, 'File not available offline')

        if response.ok:
            self.static_cache.put(response)
        return response

    def _handle_api_read(self, request, kwargs) -> requests.Response:
        """Network first, then cache, then a synthesized payload."""
        try:
            response = self._fetch(request, kwargs)
        except RequestException:
            logger.info(f"Network failed, trying cache for {request.url}")
            record = self.dynamic_cache.match('GET', request.url)
            if record is not None:
                return build_response(record, request, extra_headers={'X-Served-From': 'cache'})
            return offline_api_response(request)

        if response.ok:
            self.dynamic_cache.put(response)
        return response

    def _handle_api_write(self, request, kwargs) -> requests.Response:
        """Network, or hand the write to the sync queue."""
        try:
            return self._fetch(request, kwargs)
        except RequestException:
            logger.info(f"{request.method} {request.url} failed, queuing for later sync")

        path = urlparse(request.url).path
        kind = KIND_BY_PATH.get(path, KIND_REQUEST)
        entry_id = self._sync_queue.enqueue(kind, _decode_body(request.body), request.url, request.method)

        if entry_id is None:
            return json_response(request, 503, {
                'success': False,
                'error': 'Request could not be saved for offline sync',
                'offline': True,
            })

        body = {
            'success': False,
            'queued': True,
            'status': 'accepted-pending',
            'id': entry_id,
            'message': 'Request queued for sync when online',
        }
        if path == QUERY_PATH:
            body['response'] = OFFLINE_QUERY_RESPONSE
            body['offline'] = True
        return json_response(request, 202, body)

    def _handle_page(self, request, kwargs) -> requests.Response:
        """Network first, then cached page, then cached root, then offline page."""
        try:
            response = self._fetch(request, kwargs)
        except RequestException:
            logger.info(f"Network failed, trying cache for page {request.url}")
            record = self.dynamic_cache.match('GET', request.url)
            if record is None:
                parsed = urlparse(request.url)
                root = urlunparse((parsed.scheme, parsed.netloc, '/', '', '', ''))
                record = (
                    self.dynamic_cache.match('GET', root)
                    or self.static_cache.match('GET', root)
                )
            if record is not None:
                return build_response(record, request)
            return text_response(request, 503, 'Offline')

        if response.ok:
            self.dynamic_cache.put(response)
        return response

    def _handle_other(self, request, kwargs) -> requests.Response:
        try:
            return self._fetch(request, kwargs)
        except RequestException as e:
            logger.warning(f"Request to {request.url} failed: {e}")
            return text_response(request, 503, 'Request failed')

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def install(self, base_url: str, paths: Optional[List[str]] = None) -> int:
        """
        Precache static files into the static namespace.

        Args:
            base_url: Server base URL
            paths: Paths to fetch (default STATIC_FILES)

        Returns:
            Number of files cached
        """
        self.static_cache.open()
        self.dynamic_cache.open()

        cached = 0
        for path in paths if paths is not None else STATIC_FILES:
            url = f"{base_url.rstrip('/')}{path}"
            request = requests.Request('GET', url).prepare()
            try:
                response = self._fetch(request, {'timeout': 10})
            except RequestException as e:
                logger.error(f"Failed to precache {url}: {e}")
                continue
            if response.ok and self.static_cache.put(response):
                cached += 1

        logger.info(f"Precached {cached} static files")
        return cached

    def activate(self) -> List[str]:
        """
        Delete cache namespaces from other cache versions.

        Returns:
            Names of deleted namespaces
        """
        deleted = []
        for namespace in list_namespaces(self._store):
            if namespace not in self.current_namespaces:
                delete_namespace(self._store, namespace)
                deleted.append(namespace)
        return deleted

    def close(self):
        self._network.close()
        super().close()

    def __repr__(self) -> str:
        return f"<CacheGatekeeper version={self.cache_version}>"
