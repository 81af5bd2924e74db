"""
Offline Manager - wiring of the offline layer.

OfflineManager builds the sync queue, cache gatekeeper, connectivity
monitor, weather cache and article store on one local store and one task
scheduler, and registers the periodic jobs:
- Queue drain every 30 seconds while online
- Purge of completed entries every hour
- Sync status refresh every 10 seconds

Example:
    from agriecho.config import load_config
    from agriecho.offline.manager import OfflineManager

    manager = OfflineManager.from_config(load_config())
    manager.start()
    manager.submit_alert('Flooding in the north field', location='field-3', severity='high')
    manager.session.get(f'{manager.api_url}/api/sync')   # goes through the gatekeeper
    manager.shutdown()
"""

import logging
import os
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import BaseAdapter

from agriecho.config import AgriEchoConfig
from agriecho.offline import StorageError
from agriecho.offline.api_client import ApiClient
from agriecho.offline.articles import OfflineArticleStore
from agriecho.offline.connectivity import ConnectivityMonitor, HealthCheckSignal
from agriecho.offline.gatekeeper import CacheGatekeeper
from agriecho.offline.notifier import INFO, SUCCESS, WARNING, LoggingNotifier, Notifier, describe_sync_status
from agriecho.offline.storage import KeyValueStore, SQLiteStore
from agriecho.offline.sync_entry import KIND_ALERT, KIND_QUERY
from agriecho.offline.sync_queue import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETENTION_SECONDS,
    DEFAULT_RETRY_DELAY_SECONDS,
    SyncQueue,
)
from agriecho.offline.tasks import BackgroundTaskScheduler, TaskHandle, TaskScheduler
from agriecho.offline.weather_cache import DEFAULT_MAX_AGE_SECONDS, OfflineWeatherCache


logger = logging.getLogger(__name__)


LATEST_SYNC_KEY = 'latest-sync-data'

ALERT_ENDPOINT = '/api/sos'
QUERY_ENDPOINT = '/api/voice-query'
SYNC_ENDPOINT = '/api/sync'

DEFAULT_SYNC_INTERVAL_SECONDS = 30
DEFAULT_CLEANUP_INTERVAL_SECONDS = 60 * 60
DEFAULT_STATUS_INTERVAL_SECONDS = 10


class OfflineManager:
    """
    Facade over the offline layer.

    Attributes:
        store: Local persistent store
        monitor: ConnectivityMonitor owning the online flag
        sync_queue: SyncQueue for offline mutations
        gatekeeper: CacheGatekeeper mounted on `session`
        session: requests.Session whose traffic goes through the gatekeeper
        weather: OfflineWeatherCache
        articles: OfflineArticleStore
    """

    def __init__(
        self,
        store: KeyValueStore,
        client: ApiClient,
        scheduler: TaskScheduler,
        monitor: Optional[ConnectivityMonitor] = None,
        notifier: Optional[Notifier] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        weather_max_age: float = DEFAULT_MAX_AGE_SECONDS,
        cache_version: str = 'v1.0.0',
        sync_interval: float = DEFAULT_SYNC_INTERVAL_SECONDS,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        status_interval: float = DEFAULT_STATUS_INTERVAL_SECONDS,
        network: Optional[BaseAdapter] = None,
        health_signal: bool = False,
    ):
        self.store = store
        self.client = client
        self.scheduler = scheduler
        self.notifier = notifier or LoggingNotifier()
        self.monitor = monitor or ConnectivityMonitor(initial_online=True, notifier=self.notifier)
        self.api_url = client.base_url

        self.sync_interval = sync_interval
        self.cleanup_interval = cleanup_interval
        self.status_interval = status_interval

        self.sync_queue = SyncQueue(
            store,
            client,
            scheduler,
            self.monitor,
            notifier=self.notifier,
            max_attempts=max_attempts,
            retry_delay=retry_delay,
            retention_seconds=retention_seconds,
        )
        self.gatekeeper = CacheGatekeeper(
            store,
            self.sync_queue,
            clock=scheduler.now,
            cache_version=cache_version,
            network=network,
        )
        self.session = self.gatekeeper.mount(requests.Session())
        self.weather = OfflineWeatherCache(store, clock=scheduler.now, max_age=weather_max_age)
        self.articles = OfflineArticleStore(store, clock=scheduler.now, notifier=self.notifier)

        self.monitor.add_online_listener(self._on_online)

        self._health_signal: Optional[HealthCheckSignal] = None
        if health_signal:
            self._health_signal = HealthCheckSignal(self.monitor, probe=client.health)

        self._handles: List[TaskHandle] = []
        self._started = False

    @classmethod
    def from_config(
        cls,
        config: AgriEchoConfig,
        notifier: Optional[Notifier] = None,
        initial_online: Optional[bool] = None,
        health_signal: bool = True,
    ) -> 'OfflineManager':
        """
        Build a manager with the SQLite store and the background scheduler.

        When initial_online is None the API is probed once to pick the
        starting connectivity state.
        """
        os.makedirs(config.storage_path, exist_ok=True)
        notifier = notifier or LoggingNotifier()
        client = ApiClient(config.api_url, timeout=config.request_timeout)

        if initial_online is None:
            initial_online = client.health()

        return cls(
            store=SQLiteStore(config.store_path),
            client=client,
            scheduler=BackgroundTaskScheduler(),
            monitor=ConnectivityMonitor(initial_online=initial_online, notifier=notifier),
            notifier=notifier,
            max_attempts=config.max_attempts,
            retry_delay=config.retry_delay_seconds,
            retention_seconds=config.completed_retention_hours * 3600,
            weather_max_age=config.weather_max_age_hours * 3600,
            cache_version=config.cache_version,
            sync_interval=config.sync_interval_seconds,
            cleanup_interval=config.cleanup_interval_seconds,
            status_interval=config.status_interval_seconds,
            health_signal=health_signal,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Register periodic jobs and start the scheduler."""
        if self._started:
            return

        try:
            deleted = self.gatekeeper.activate()
            if deleted:
                logger.info(f"Removed old caches: {deleted}")
        except StorageError as e:
            logger.error(f"Cache activation failed: {e}")

        self._handles = [
            self.scheduler.call_every(self.sync_interval, self._periodic_drain, name='sync-drain'),
            self.scheduler.call_every(self.cleanup_interval, self.sync_queue.purge_expired, name='sync-cleanup'),
            self.scheduler.call_every(self.status_interval, self.refresh_status, name='sync-status'),
        ]
        self.scheduler.start()

        if self._health_signal is not None:
            self._health_signal.start()

        self._started = True
        logger.info("Offline manager started")

    def shutdown(self) -> None:
        """Cancel periodic jobs and release resources."""
        for handle in self._handles:
            handle.cancel()
        self._handles = []

        if self._health_signal is not None:
            self._health_signal.stop()

        self.scheduler.shutdown()
        self.session.close()
        self.client.close()
        self._started = False
        logger.info("Offline manager stopped")

    def _on_online(self) -> None:
        self.scheduler.call_later(0, self.sync_queue.drain, name='drain-on-reconnect')

    def _periodic_drain(self) -> None:
        if not self.monitor.is_online:
            return
        if self.sync_queue.stats()['pending'] > 0:
            self.sync_queue.drain()

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    def submit_alert(
        self,
        message: str,
        location: Optional[str] = None,
        severity: str = 'medium',
        contact: Optional[str] = None,
    ) -> Optional[str]:
        """
        Queue an SOS alert; it is sent right away when online.

        Returns:
            Sync entry id, or None if it could not be stored
        """
        payload: Dict[str, Any] = {'message': message, 'severity': severity}
        if location is not None:
            payload['location'] = location
        if contact is not None:
            payload['contact'] = contact

        local_copy = dict(payload, timestamp=self.scheduler.now())
        return self.sync_queue.enqueue(KIND_ALERT, payload, ALERT_ENDPOINT, 'POST', local_copy=local_copy)

    def submit_query(self, query: str, language: str = 'en') -> Optional[str]:
        """Queue a voice query. See submit_alert()."""
        payload = {'query': query, 'language': language}
        local_copy = dict(payload, timestamp=self.scheduler.now())
        return self.sync_queue.enqueue(KIND_QUERY, payload, QUERY_ENDPOINT, 'POST', local_copy=local_copy)

    def save_for_offline(self, kind: str, data: Any, endpoint: str, method: str = 'POST') -> Optional[str]:
        return self.sync_queue.enqueue(kind, data, endpoint, method)

    def pending_alerts(self) -> List[Dict[str, Any]]:
        """Local copies of alerts not yet delivered."""
        return self.store.get('pending-alerts', [])

    def pending_queries(self) -> List[Dict[str, Any]]:
        """Local copies of voice queries not yet delivered."""
        return self.store.get('pending-queries', [])

    # ------------------------------------------------------------------
    # Sync control
    # ------------------------------------------------------------------

    def force_sync(self) -> Optional[Dict[str, int]]:
        """
        Manual sync trigger.

        Returns:
            Drain result, or None when offline
        """
        if not self.monitor.is_online:
            self.notifier.notify('Cannot sync while offline', WARNING)
            return None

        self.notifier.notify('Starting manual sync...', INFO)
        result = self.sync_queue.drain()

        pending = self.sync_queue.stats()['pending']
        if pending == 0:
            self.notifier.notify('All data synchronized!', SUCCESS)
        else:
            self.notifier.notify(f'{pending} items still pending', WARNING)
        return result

    def retry_failed(self) -> int:
        return self.sync_queue.retry_failed()

    def stats(self) -> Dict[str, Any]:
        return self.sync_queue.stats()

    def refresh_status(self) -> None:
        """Push the current sync status line to the notifier."""
        stats = self.sync_queue.stats()
        message, level = describe_sync_status(stats)
        self.notifier.update_status(message, level, stats)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_latest(self) -> Optional[Dict[str, Any]]:
        """
        Fetch /api/sync through the gatekeeper.

        Fresh data from the network is kept in `latest-sync-data`, and its
        weather alerts are written to the weather cache. Cached or
        synthesized offline bodies are returned but never stored again.

        Returns:
            Parsed response body, or None when it is not a JSON object
        """
        response = self.session.get(f'{self.api_url}{SYNC_ENDPOINT}', timeout=self.client.timeout)
        try:
            body = response.json()
        except ValueError:
            logger.error(f"Non-JSON response from {SYNC_ENDPOINT}: {response.status_code}")
            return None

        if not isinstance(body, dict):
            logger.error(f"Unexpected {type(body).__name__} body from {SYNC_ENDPOINT}")
            return None

        from_cache = response.headers.get('X-Served-From') == 'cache'
        if body.get('success') and not body.get('offline') and not from_cache:
            data = body.get('data') or {}
            try:
                self.store.put(LATEST_SYNC_KEY, {'data': data, 'timestamp': self.scheduler.now()})
            except StorageError as e:
                logger.error(f"Could not store latest sync data: {e}")
            if data.get('weather'):
                self.weather.cache(data['weather'])

        return body

    def latest_data(self) -> Optional[Dict[str, Any]]:
        """Last fresh /api/sync payload, with its timestamp."""
        return self.store.get(LATEST_SYNC_KEY)

    def __repr__(self) -> str:
        return f"<OfflineManager api_url={self.api_url} online={self.monitor.is_online}>"
