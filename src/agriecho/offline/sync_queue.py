"""
Sync Queue - durable delivery of offline mutations.

This module provides the SyncQueue class that records mutations which
could not be delivered immediately and delivers them once connectivity
returns. It handles:
- Persisting entries in the `sync-queue` document of the local store
- Draining pending entries in enqueue order
- Linear retry backoff per entry (retry_delay * attempts)
- Marking entries failed after max_attempts
- Removing the local copy of a submission once it is delivered
- Purging completed entries after the retention window

Delivery is at-least-once. Concurrent drains are safe: each drain works
on a snapshot of pending ids, every attempt re-reads the entry's current
state, and an in-flight guard stops two attempts on the same entry from
overlapping. A retry that fires after the entry is completed or failed
does nothing.

Example:
    queue = SyncQueue(store, api_client, scheduler, monitor, notifier)
    entry_id = queue.enqueue('alert-submission', {'message': 'flood'}, '/api/sos')
    queue.drain()
    queue.stats()
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from agriecho.offline import ApiClientError, StorageError, SyncQueueError
from agriecho.offline.api_client import ApiClient
from agriecho.offline.connectivity import ConnectivityMonitor
from agriecho.offline.notifier import ERROR, INFO, SUCCESS, Notifier
from agriecho.offline.storage import KeyValueStore
from agriecho.offline.sync_entry import KIND_ALERT, KIND_QUERY, SyncEntry, SyncState
from agriecho.offline.tasks import TaskScheduler


logger = logging.getLogger(__name__)


QUEUE_KEY = 'sync-queue'

# Documents holding the user's local copy of each submission kind
LOCAL_COPY_KEYS = {
    KIND_ALERT: 'pending-alerts',
    KIND_QUERY: 'pending-queries',
}

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SECONDS = 5.0
DEFAULT_RETENTION_SECONDS = 24 * 60 * 60


class SyncQueue:
    """
    Ordered queue of pending mutations with retry state.

    Attributes:
        max_attempts: Delivery attempts before an entry is failed (default 3)
        retry_delay: Base delay in seconds for linear backoff (default 5)
        retention_seconds: How long completed entries are kept (default 24h)
    """

    def __init__(
        self,
        store: KeyValueStore,
        client: ApiClient,
        scheduler: TaskScheduler,
        connectivity: ConnectivityMonitor,
        notifier: Optional[Notifier] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
    ):
        self._store = store
        self._client = client
        self._scheduler = scheduler
        self._connectivity = connectivity
        self._notifier = notifier
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.retention_seconds = retention_seconds

        self._in_flight: set = set()
        self._guard = threading.Lock()

        logger.info(
            f"SyncQueue initialized with max_attempts={max_attempts}, "
            f"retry_delay={retry_delay}s"
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self) -> List[SyncEntry]:
        return [SyncEntry.from_dict(item) for item in self._store.get(QUEUE_KEY, [])]

    def entries(self, state: Optional[SyncState] = None) -> List[SyncEntry]:
        """All entries in enqueue order, optionally filtered by state."""
        entries = self._load()
        if state is not None:
            entries = [e for e in entries if e.state == SyncState(state)]
        return entries

    def get(self, entry_id: str) -> Optional[SyncEntry]:
        for entry in self._load():
            if entry.id == entry_id:
                return entry
        return None

    def stats(self) -> Dict[str, Any]:
        """
        Queue counts by state plus current connectivity.

        Returns:
            {'total', 'pending', 'completed', 'failed', 'is_online'}
        """
        entries = self._load()
        return {
            'total': len(entries),
            'pending': sum(1 for e in entries if e.state == SyncState.PENDING),
            'completed': sum(1 for e in entries if e.state == SyncState.COMPLETED),
            'failed': sum(1 for e in entries if e.state == SyncState.FAILED),
            'is_online': self._connectivity.is_online,
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def enqueue(
        self,
        kind: str,
        payload: Any,
        endpoint: str,
        method: str = 'POST',
        local_copy: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Record a mutation for later delivery.

        When online, a drain of the whole pending set is scheduled as an
        independent task; this call never waits on the network.

        Args:
            kind: Payload kind (e.g. 'alert-submission')
            payload: JSON data sent verbatim to the endpoint
            endpoint: Target path or absolute URL
            method: HTTP method (default POST)
            local_copy: Optional record kept in the kind's pending list
                (e.g. `pending-alerts`) until the entry is delivered

        Returns:
            The new entry id, or None if the local store rejected the write
        """
        entry = SyncEntry.create(kind, payload, endpoint, method, now=self._scheduler.now())

        try:
            self._store.update(QUEUE_KEY, lambda items: items + [entry.to_dict()], default=[])
        except StorageError as e:
            logger.error(f"Failed to persist {kind} for {endpoint}, mutation dropped: {e}")
            return None

        logger.info(f"Added {kind} to sync queue (id={entry.id})")

        copy_key = LOCAL_COPY_KEYS.get(kind)
        if local_copy is not None and copy_key is not None:
            record = dict(local_copy, entry_id=entry.id)
            try:
                self._store.update(copy_key, lambda records: records + [record], default=[])
            except StorageError as e:
                logger.error(f"Could not keep local copy of {entry.id} in {copy_key}: {e}")

        self._notify("Saved offline. It will sync when you are connected.", INFO)

        if self._connectivity.is_online:
            self._scheduler.call_later(0, self.drain, name='drain-after-enqueue')

        return entry.id

    def _modify_entry(self, entry_id: str, change: Callable[[SyncEntry], None]) -> Optional[SyncEntry]:
        """Apply change to one stored entry in a single read-modify-write."""
        found: Dict[str, SyncEntry] = {}

        def mutate(items):
            for index, item in enumerate(items):
                if item['id'] == entry_id:
                    entry = SyncEntry.from_dict(item)
                    change(entry)
                    items[index] = entry.to_dict()
                    found['entry'] = entry
                    break
            return items

        self._store.update(QUEUE_KEY, mutate, default=[])
        return found.get('entry')

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def drain(self) -> Dict[str, int]:
        """
        Attempt delivery of every pending entry.

        The pending set is captured when the drain starts; entries
        enqueued meanwhile are left for the next drain. Does nothing
        while offline.

        Returns:
            Counts: processed, succeeded, failed, skipped
        """
        result = {'processed': 0, 'succeeded': 0, 'failed': 0, 'skipped': 0}

        if not self._connectivity.is_online:
            logger.debug("Offline, drain skipped")
            return result

        try:
            snapshot = [e.id for e in self._load() if e.is_pending]
        except StorageError as e:
            logger.error(f"Cannot read sync queue: {e}")
            return result

        if not snapshot:
            logger.debug("No pending entries to sync")
            return result

        logger.info(f"Processing sync queue ({len(snapshot)} pending)")

        for entry_id in snapshot:
            outcome = self._attempt(entry_id)
            if outcome is None:
                result['skipped'] += 1
                continue
            result['processed'] += 1
            if outcome:
                result['succeeded'] += 1
            else:
                result['failed'] += 1

        logger.info(
            f"Sync drain completed: {result['succeeded']} succeeded, "
            f"{result['failed']} failed, {result['skipped']} skipped"
        )
        if result['succeeded']:
            noun = 'item' if result['succeeded'] == 1 else 'items'
            self._notify(f"{result['succeeded']} {noun} synchronized", SUCCESS)

        return result

    def retry_entry(self, entry_id: str) -> Optional[bool]:
        """
        Scheduled retry of a single entry.

        Returns:
            True/False for a delivery attempt, None when nothing was attempted
        """
        if not self._connectivity.is_online:
            logger.debug(f"Offline, retry of {entry_id} left for the next drain")
            return None
        return self._attempt(entry_id)

    def _attempt(self, entry_id: str) -> Optional[bool]:
        """
        One delivery attempt against the entry's current state.

        Returns:
            True on success, False on failure, None if skipped
            (in flight elsewhere, no longer pending, or unreadable)
        """
        with self._guard:
            if entry_id in self._in_flight:
                logger.debug(f"Entry {entry_id} already in flight, skipping")
                return None
            self._in_flight.add(entry_id)

        try:
            try:
                entry = self.get(entry_id)
            except StorageError as e:
                logger.error(f"Cannot read entry {entry_id}: {e}")
                return None

            if entry is None or not entry.is_pending:
                return None

            logger.debug(f"Syncing {entry.kind} {entry.id} (attempt {entry.attempts + 1})")

            try:
                self._client.submit(entry.method, entry.endpoint, entry.payload)
            except ApiClientError as e:
                self._handle_failure(entry, str(e))
                return False

            self._handle_success(entry)
            return True

        finally:
            with self._guard:
                self._in_flight.discard(entry_id)

    def _handle_success(self, entry: SyncEntry) -> None:
        now = self._scheduler.now()
        try:
            self._modify_entry(entry.id, lambda e: e.mark_completed(now))
        except StorageError as e:
            logger.error(f"Delivered {entry.id} but could not record completion: {e}")
            return

        logger.info(f"Successfully synced {entry.kind} {entry.id}")
        self._remove_local_copy(entry)

    def _handle_failure(self, entry: SyncEntry, error_message: str) -> None:
        exhausted: Dict[str, bool] = {}

        def change(e: SyncEntry):
            exhausted['value'] = e.record_failure(error_message, self.max_attempts)

        try:
            updated = self._modify_entry(entry.id, change)
        except StorageError as e:
            logger.error(f"Could not record failed attempt for {entry.id}: {e}")
            return

        if updated is None:
            return

        if exhausted.get('value'):
            logger.error(
                f"Entry {entry.id} failed after {updated.attempts} attempts: {error_message}"
            )
            self._notify(f"Could not sync {entry.kind} after {updated.attempts} attempts", ERROR)
            return

        delay = self.retry_delay * updated.attempts
        logger.warning(
            f"Sync of {entry.id} failed: {error_message} "
            f"(attempt {updated.attempts}/{self.max_attempts}, retry in {delay}s)"
        )
        self._scheduler.call_later(
            delay,
            lambda: self.retry_entry(entry.id),
            name=f'retry-{entry.id}',
        )

    def _remove_local_copy(self, entry: SyncEntry) -> None:
        """Drop the user's local copy of a delivered submission."""
        key = LOCAL_COPY_KEYS.get(entry.kind)
        if key is None:
            return

        try:
            self._store.update(
                key,
                lambda records: [r for r in records if not _is_copy_of(r, entry)],
                default=[],
            )
        except StorageError as e:
            logger.error(f"Could not remove local copy of {entry.id} from {key}: {e}")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """
        Remove completed entries older than the retention window.

        Pending and failed entries are never touched.

        Returns:
            Number of entries removed
        """
        now = self._scheduler.now()
        removed = {'count': 0}

        def mutate(items):
            kept = [
                item for item in items
                if not SyncEntry.from_dict(item).is_expired(now, self.retention_seconds)
            ]
            removed['count'] = len(items) - len(kept)
            return kept

        try:
            self._store.update(QUEUE_KEY, mutate, default=[])
        except StorageError as e:
            logger.error(f"Sync queue purge failed: {e}")
            return 0

        if removed['count']:
            logger.info(f"Purged {removed['count']} completed entries")
        return removed['count']

    def retry_failed(self) -> int:
        """
        Return every failed entry to pending with a fresh attempt budget.

        Returns:
            Number of entries reset
        """
        reset = {'count': 0}

        def mutate(items):
            for index, item in enumerate(items):
                entry = SyncEntry.from_dict(item)
                if entry.state == SyncState.FAILED:
                    entry.reset()
                    items[index] = entry.to_dict()
                    reset['count'] += 1
            return items

        self._store.update(QUEUE_KEY, mutate, default=[])

        if reset['count']:
            logger.info(f"Reset {reset['count']} failed entries for retry")
            if self._connectivity.is_online:
                self._scheduler.call_later(0, self.drain, name='drain-after-reset')
        return reset['count']

    def retry(self, entry_id: str) -> SyncEntry:
        """
        Return one failed entry to pending with a fresh attempt budget.

        Raises:
            SyncQueueError: If no entry has this id
        """
        entry = self._modify_entry(
            entry_id,
            lambda e: e.reset() if e.state == SyncState.FAILED else None,
        )
        if entry is None:
            raise SyncQueueError(f"Unknown sync entry: {entry_id}", {'id': entry_id})

        if entry.is_pending and self._connectivity.is_online:
            self._scheduler.call_later(0, self.drain, name='drain-after-reset')
        return entry

    def _notify(self, message: str, level: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(message, level)
        except Exception as e:
            logger.error(f"Notifier error: {e}")

    def __repr__(self) -> str:
        return f"<SyncQueue max_attempts={self.max_attempts} retry_delay={self.retry_delay}s>"


def _is_copy_of(record: Dict[str, Any], entry: SyncEntry) -> bool:
    """
    Whether a locally stored submission is the one carried by entry.

    Records written by this package carry the entry id. Older records
    are matched on their own id, and voice queries without one fall back
    to query text plus timestamp.
    """
    if not isinstance(record, dict):
        return False
    if record.get('entry_id') is not None:
        return record['entry_id'] == entry.id

    payload = entry.payload if isinstance(entry.payload, dict) else {}
    if record.get('id') is not None and payload.get('id') is not None:
        return record['id'] == payload['id']

    if entry.kind == KIND_QUERY and record.get('timestamp') is not None:
        return (
            record.get('query') == payload.get('query')
            and record.get('timestamp') == payload.get('timestamp')
        )
    return False
