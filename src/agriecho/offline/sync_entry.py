"""
SyncEntry record for the offline sync queue.

A SyncEntry is one mutation (SOS alert, voice query, or any intercepted
API write) that could not be delivered immediately. Entries are stored
as plain dicts inside the `sync-queue` document and converted to
SyncEntry objects while being processed.

Lifecycle:
    pending --(delivered)--> completed --(24h later)--> purged
    pending --(max_attempts failures)--> failed --(retry_failed)--> pending
"""

import random
from enum import Enum
from typing import Any, Dict, Optional


class SyncState(str, Enum):
    """Queue state of a sync entry."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# Semantic payload kinds
KIND_ALERT = 'alert-submission'
KIND_QUERY = 'query-submission'
KIND_REQUEST = 'request'


def generate_entry_id(now: float) -> str:
    """
    Build a unique entry id from the current time plus a random part.

    Two ids generated in the same millisecond still differ through the
    random suffix.
    """
    return f"{int(now * 1000)}-{random.getrandbits(32):08x}"


class SyncEntry:
    """
    One queued mutation awaiting delivery.

    Attributes:
        id: Unique identifier (time-based plus random suffix)
        kind: Payload kind (alert-submission, query-submission, request)
        payload: JSON data sent verbatim to the endpoint
        endpoint: Target path or URL
        method: HTTP method
        enqueued_at: Epoch seconds when queued
        attempts: Delivery attempts so far
        state: SyncState
        completed_at: Epoch seconds when delivered, None otherwise
        last_error: Message from the last failed attempt
    """

    def __init__(
        self,
        id: str,
        kind: str,
        payload: Any,
        endpoint: str,
        method: str = 'POST',
        enqueued_at: float = 0.0,
        attempts: int = 0,
        state: SyncState = SyncState.PENDING,
        completed_at: Optional[float] = None,
        last_error: Optional[str] = None,
    ):
        self.id = id
        self.kind = kind
        self.payload = payload
        self.endpoint = endpoint
        self.method = method.upper()
        self.enqueued_at = enqueued_at
        self.attempts = attempts
        self.state = SyncState(state)
        self.completed_at = completed_at
        self.last_error = last_error

    @classmethod
    def create(cls, kind: str, payload: Any, endpoint: str, method: str, now: float) -> 'SyncEntry':
        """Create a new pending entry stamped with the given time."""
        return cls(
            id=generate_entry_id(now),
            kind=kind,
            payload=payload,
            endpoint=endpoint,
            method=method,
            enqueued_at=now,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SyncEntry':
        return cls(
            id=data['id'],
            kind=data['kind'],
            payload=data.get('payload'),
            endpoint=data['endpoint'],
            method=data.get('method', 'POST'),
            enqueued_at=data.get('enqueued_at', 0.0),
            attempts=data.get('attempts', 0),
            state=data.get('state', SyncState.PENDING.value),
            completed_at=data.get('completed_at'),
            last_error=data.get('last_error'),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for storage and status responses."""
        return {
            'id': self.id,
            'kind': self.kind,
            'payload': self.payload,
            'endpoint': self.endpoint,
            'method': self.method,
            'enqueued_at': self.enqueued_at,
            'attempts': self.attempts,
            'state': self.state.value,
            'completed_at': self.completed_at,
            'last_error': self.last_error,
        }

    @property
    def is_pending(self) -> bool:
        return self.state == SyncState.PENDING

    def mark_completed(self, now: float) -> None:
        self.state = SyncState.COMPLETED
        self.completed_at = now
        self.last_error = None

    def record_failure(self, error_message: str, max_attempts: int) -> bool:
        """
        Count a failed attempt.

        Returns:
            True if the entry has now exhausted its attempts and is failed
        """
        self.attempts = min(self.attempts + 1, max_attempts)
        self.last_error = error_message
        if self.attempts >= max_attempts:
            self.state = SyncState.FAILED
            return True
        return False

    def reset(self) -> None:
        """Return a failed entry to the pending state with a fresh budget."""
        self.state = SyncState.PENDING
        self.attempts = 0
        self.last_error = None

    def is_expired(self, now: float, retention_seconds: float) -> bool:
        """True for completed entries older than the retention window."""
        if self.state != SyncState.COMPLETED or self.completed_at is None:
            return False
        return now - self.completed_at > retention_seconds

    def __repr__(self):
        return (
            f"<SyncEntry id={self.id} kind={self.kind} "
            f"state={self.state.value} attempts={self.attempts}>"
        )
