"""
Local persistent store for the offline layer.

Every piece of offline state (sync queue, pending submissions, cached
responses, weather data, saved articles) is a JSON document stored under
a single key. Callers read the whole document, change it in memory and
write it back; `update()` wraps that cycle and holds a per-store lock for
the duration of one document's read-modify-write.

Two backends are provided:
- MemoryStore: in-process dict, used by tests and as a throwaway cache
- SQLiteStore: SQLAlchemy-backed file store that survives restarts
"""

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from sqlalchemy import DateTime, String, Text, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from agriecho.offline import StorageError, StorageQuotaExceeded


logger = logging.getLogger(__name__)


class KeyValueStore:
    """
    Interface for JSON document storage keyed by string.

    Subclasses implement _read/_write/_remove/keys. Values must be
    JSON-serializable; get() always returns a fresh copy so callers can
    mutate the result without touching the stored document.
    """

    def __init__(self):
        self._lock = threading.RLock()

    def _read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def _write(self, key: str, raw: str) -> None:
        raise NotImplementedError

    def _remove(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        """Return all stored keys."""
        raise NotImplementedError

    def get(self, key: str, default: Any = None) -> Any:
        """
        Read a document.

        Args:
            key: Document key
            default: Returned when the key is absent

        Raises:
            StorageError: When the backend fails or the document is corrupt
        """
        raw = self._read(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError as e:
            raise StorageError(f"Corrupt document for key {key}", details={'error': str(e)})

    def put(self, key: str, value: Any) -> None:
        """
        Write a document, replacing any previous value.

        Raises:
            StorageError: When the value is not JSON-serializable or the backend fails
        """
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for key {key} is not JSON-serializable", details={'error': str(e)})
        self._write(key, raw)

    def delete(self, key: str) -> None:
        """Remove a document. Missing keys are ignored."""
        self._remove(key)

    def update(self, key: str, mutator: Callable[[Any], Any], default: Any = None) -> Any:
        """
        Read-modify-write a single document.

        The mutator receives the current value (or default) and returns
        the new value, which is written back and returned.
        """
        with self._lock:
            current = self.get(key, default)
            updated = mutator(current)
            self.put(key, updated)
            return updated


class MemoryStore(KeyValueStore):
    """
    In-memory store.

    Documents are kept as JSON text so values behave exactly like the
    persistent backend (copies on read, JSON-only types).

    Args:
        quota_bytes: Optional total size limit; writes beyond it raise
            StorageQuotaExceeded
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        super().__init__()
        self._data: dict = {}
        self.quota_bytes = quota_bytes

    def _read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def _write(self, key: str, raw: str) -> None:
        if self.quota_bytes is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(raw) > self.quota_bytes:
                raise StorageQuotaExceeded(
                    f"Storage quota exceeded writing {key}",
                    details={'quota_bytes': self.quota_bytes, 'requested': len(raw)},
                )
        self._data[key] = raw

    def _remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def size_of(self, key: str) -> int:
        """Size in bytes of the stored document, 0 when absent."""
        return len(self._data.get(key, ''))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Declarative base for the local store tables."""
    pass


class StoredDocument(Base):
    """One JSON document per key."""
    __tablename__ = 'documents'

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<StoredDocument key={self.key} bytes={len(self.value)}>"


class SQLiteStore(KeyValueStore):
    """
    SQLite-backed store built on SQLAlchemy.

    Example:
        store = SQLiteStore('/home/farmer/.agriecho/offline.db')
        store.put('sync-queue', [])
    """

    def __init__(self, path: str = ':memory:'):
        super().__init__()
        self.path = path
        try:
            self._engine = create_engine(f'sqlite:///{path}')
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Cannot open local store at {path}", details={'error': str(e)})
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        logger.info(f"Local store opened at {path}")

    def _read(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as session:
                doc = session.get(StoredDocument, key)
                return doc.value if doc else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read {key}", details={'error': str(e)})

    def _write(self, key: str, raw: str) -> None:
        try:
            with self._session_factory() as session:
                doc = session.get(StoredDocument, key)
                if doc is None:
                    session.add(StoredDocument(key=key, value=raw, updated_at=_utcnow()))
                else:
                    doc.value = raw
                    doc.updated_at = _utcnow()
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write {key}", details={'error': str(e)})

    def _remove(self, key: str) -> None:
        try:
            with self._session_factory() as session:
                doc = session.get(StoredDocument, key)
                if doc is not None:
                    session.delete(doc)
                    session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete {key}", details={'error': str(e)})

    def keys(self) -> List[str]:
        try:
            with self._session_factory() as session:
                return list(session.scalars(select(StoredDocument.key)))
        except SQLAlchemyError as e:
            raise StorageError("Failed to list keys", details={'error': str(e)})

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        self._engine.dispose()

    def __repr__(self) -> str:
        return f"<SQLiteStore path={self.path}>"
