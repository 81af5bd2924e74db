"""
TTL-bound cache for weather alert data.

Weather data goes stale quickly, so unlike the generic response cache it
carries a maximum age (6 hours by default). Staleness is checked lazily
on read: an expired record is evicted the moment someone asks for it.
"""

import logging
from typing import Any, Callable, Optional

from agriecho.offline import StorageError
from agriecho.offline.storage import KeyValueStore


logger = logging.getLogger(__name__)


WEATHER_KEY = 'cached-weather'
DEFAULT_MAX_AGE_SECONDS = 6 * 60 * 60


class OfflineWeatherCache:
    """Single-record weather cache with lazy expiry."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], float],
        max_age: float = DEFAULT_MAX_AGE_SECONDS,
    ):
        self._store = store
        self._clock = clock
        self.max_age = max_age

    def cache(self, data: Any) -> bool:
        """
        Store weather data stamped with the current time.

        Returns:
            False when the local store rejected the write
        """
        try:
            self._store.put(WEATHER_KEY, {'data': data, 'cached_at': self._clock()})
        except StorageError as e:
            logger.error(f"Could not cache weather data: {e}")
            return False
        logger.info("Weather data cached for offline use")
        return True

    def _record(self) -> Optional[dict]:
        try:
            return self._store.get(WEATHER_KEY)
        except StorageError as e:
            logger.error(f"Weather cache unreadable: {e}")
            return None

    def get(self) -> Any:
        """
        Cached weather data, or None when absent or older than max_age.

        Expired data is removed as a side effect.
        """
        record = self._record()
        if record is None:
            return None

        age = self._clock() - record['cached_at']
        if age > self.max_age:
            logger.info(f"Weather data is {age:.0f}s old, evicting")
            try:
                self._store.delete(WEATHER_KEY)
            except StorageError as e:
                logger.error(f"Could not evict stale weather data: {e}")
            return None

        return record['data']

    def is_cache_valid(self) -> bool:
        return self.get() is not None

    def cache_age(self) -> Optional[float]:
        """Seconds since the data was cached, or None when nothing is cached."""
        record = self._record()
        if record is None:
            return None
        return self._clock() - record['cached_at']
