"""
Offline sync layer for AgriEcho.

This package keeps the client usable without connectivity:
- Local persistent store for JSON documents
- Sync queue of pending mutations with linear retry backoff
- Cache gatekeeper choosing cache, network or queue per request
- Connectivity monitor that triggers a drain on reconnect
- TTL-bound weather cache and saved articles

Base exception classes are defined here for consistent error handling
across the offline layer.

Example:
    from agriecho.offline import OfflineManager, ApiClientError

    manager = OfflineManager.from_config(config)
    manager.start()
    manager.submit_alert('flood', location='field-3', severity='high')
"""


class OfflineError(Exception):
    """
    Base exception for all offline layer errors.

    All offline-specific exceptions inherit from this class so any of
    them can be caught with a single except clause.
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ApiClientError(OfflineError):
    """
    Exception raised when a remote API call fails.

    Covers non-success HTTP statuses and unexpected errors. Every
    ApiClientError is a transport failure from the sync queue's view
    and counts as a failed delivery attempt.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.response_body = response_body


class ApiConnectionError(ApiClientError):
    """
    Exception raised when the API host cannot be reached.

    DNS failures, refused connections and dropped links end up here.
    """

    pass


class ApiTimeoutError(ApiClientError):
    """
    Exception raised when the API does not answer in time.
    """

    pass


class MalformedResponseError(ApiClientError):
    """
    Exception raised when the API answers with something other than a
    JSON object carrying a `success` field.
    """

    pass


class StorageError(OfflineError):
    """
    Exception raised when the local persistent store cannot be read
    or written.

    Persistence failures are logged and the affected data is dropped;
    there is no durable place to retry from.
    """

    pass


class StorageQuotaExceeded(StorageError):
    """
    Exception raised when a write would exceed the store quota.
    """

    pass


class SyncQueueError(OfflineError):
    """
    Exception raised for invalid sync queue operations, such as
    addressing an entry id that does not exist.
    """

    pass


# Import components as they are created
from agriecho.offline.storage import KeyValueStore, MemoryStore, SQLiteStore  # noqa: E402
from agriecho.offline.tasks import (  # noqa: E402
    BackgroundTaskScheduler,
    ManualTaskScheduler,
    TaskHandle,
    TaskScheduler,
)
from agriecho.offline.sync_entry import SyncEntry, SyncState  # noqa: E402
from agriecho.offline.api_client import ApiClient  # noqa: E402
from agriecho.offline.connectivity import ConnectivityMonitor, HealthCheckSignal  # noqa: E402
from agriecho.offline.notifier import LoggingNotifier, Notifier  # noqa: E402
from agriecho.offline.sync_queue import SyncQueue  # noqa: E402
from agriecho.offline.response_cache import ResponseCache  # noqa: E402
from agriecho.offline.gatekeeper import CacheGatekeeper, RequestKind  # noqa: E402
from agriecho.offline.weather_cache import OfflineWeatherCache  # noqa: E402
from agriecho.offline.articles import OfflineArticleStore  # noqa: E402
from agriecho.offline.manager import OfflineManager  # noqa: E402

__all__ = [
    # Exception classes
    'OfflineError',
    'ApiClientError',
    'ApiConnectionError',
    'ApiTimeoutError',
    'MalformedResponseError',
    'StorageError',
    'StorageQuotaExceeded',
    'SyncQueueError',
    # Components
    'KeyValueStore',
    'MemoryStore',
    'SQLiteStore',
    'TaskScheduler',
    'TaskHandle',
    'ManualTaskScheduler',
    'BackgroundTaskScheduler',
    'SyncEntry',
    'SyncState',
    'ApiClient',
    'ConnectivityMonitor',
    'HealthCheckSignal',
    'Notifier',
    'LoggingNotifier',
    'SyncQueue',
    'ResponseCache',
    'CacheGatekeeper',
    'RequestKind',
    'OfflineWeatherCache',
    'OfflineArticleStore',
    'OfflineManager',
]
