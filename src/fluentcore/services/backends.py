"""Storage backends behind the persistent store."""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from fluentcore.config import LOCAL_NAMESPACE, SYNC_NAMESPACE, settings
from fluentcore.exceptions import StorageQuotaExceeded, TransientStorageError
from fluentcore.models.base import init_db, make_engine, make_session_factory
from fluentcore.models.models import StorageEntry

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Opaque key-value store split into namespaces.

    Implementations raise TransientStorageError for every failure.
    """

    @abstractmethod
    async def get(self, namespace: str, keys: Iterable[str]) -> Dict[str, Any]:
        """Return the stored values of the given keys; missing keys are omitted."""
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    async def set(self, namespace: str, items: Mapping[str, Any]) -> None:
        """Store all items in one call."""
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    async def remove(self, namespace: str, keys: Iterable[str]) -> None:
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    async def clear(self, namespace: str) -> None:
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    async def bytes_in_use(self, namespace: str) -> int:
        raise NotImplementedError("Subclasses must implement this method")

    def quota_bytes(self, namespace: str) -> int:
        """Byte quota of a namespace, 0 when unlimited."""
        return 0

    def close(self) -> None:
        """Release backend resources."""


class SqlAlchemyBackend(StorageBackend):
    """Backend keeping every namespace in one SQL table."""

    def __init__(
        self,
        session_factory: sessionmaker,
        quotas: Optional[Mapping[str, int]] = None,
    ):
        """Initialize the backend with a session factory and per-namespace byte quotas."""
        self.session_factory = session_factory
        if quotas is None:
            quotas = {
                SYNC_NAMESPACE: settings.storage.sync_quota_bytes,
                LOCAL_NAMESPACE: settings.storage.local_quota_bytes,
            }
        self.quotas = dict(quotas)

    @classmethod
    def from_url(cls, url: Optional[str] = None, quotas: Optional[Mapping[str, int]] = None) -> "SqlAlchemyBackend":
        """Create a backend on a database URL and make sure its tables exist."""
        engine = make_engine(url)
        init_db(engine)
        return cls(make_session_factory(engine), quotas)

    def quota_bytes(self, namespace: str) -> int:
        return self.quotas.get(namespace, 0)

    async def get(self, namespace: str, keys: Iterable[str]) -> Dict[str, Any]:
        keys = list(keys)
        try:
            with self.session_factory() as db:
                entries = (
                    db.query(StorageEntry)
                    .filter(StorageEntry.namespace == namespace, StorageEntry.key.in_(keys))
                    .all()
                )
                return {entry.key: json.loads(entry.value) for entry in entries}
        except (SQLAlchemyError, ValueError) as e:
            raise TransientStorageError(f"Failed to read {keys} from '{namespace}': {e}") from e

    async def set(self, namespace: str, items: Mapping[str, Any]) -> None:
        if not items:
            return
        try:
            encoded = {key: json.dumps(value) for key, value in items.items()}
        except (TypeError, ValueError) as e:
            raise TransientStorageError(f"Values for {list(items)} are not serializable: {e}") from e

        try:
            with self.session_factory() as db:
                existing = {
                    entry.key: entry
                    for entry in db.query(StorageEntry)
                    .filter(StorageEntry.namespace == namespace, StorageEntry.key.in_(list(encoded)))
                    .all()
                }

                quota = self.quota_bytes(namespace)
                if quota:
                    used = self._bytes_in_use(db, namespace)
                    delta = sum(
                        self._size(key, value) - (existing[key].size_bytes if key in existing else 0)
                        for key, value in encoded.items()
                    )
                    if used + delta > quota:
                        raise StorageQuotaExceeded(namespace, used + delta, quota)

                for key, value in encoded.items():
                    entry = existing.get(key)
                    if entry is None:
                        entry = StorageEntry(namespace=namespace, key=key)
                        db.add(entry)
                    entry.value = value
                    entry.size_bytes = self._size(key, value)
                db.commit()
        except SQLAlchemyError as e:
            raise TransientStorageError(f"Failed to write {list(items)} to '{namespace}': {e}") from e

    async def remove(self, namespace: str, keys: Iterable[str]) -> None:
        keys = list(keys)
        try:
            with self.session_factory() as db:
                db.query(StorageEntry).filter(
                    StorageEntry.namespace == namespace, StorageEntry.key.in_(keys)
                ).delete(synchronize_session=False)
                db.commit()
        except SQLAlchemyError as e:
            raise TransientStorageError(f"Failed to remove {keys} from '{namespace}': {e}") from e

    async def clear(self, namespace: str) -> None:
        try:
            with self.session_factory() as db:
                db.query(StorageEntry).filter(StorageEntry.namespace == namespace).delete(
                    synchronize_session=False
                )
                db.commit()
        except SQLAlchemyError as e:
            raise TransientStorageError(f"Failed to clear '{namespace}': {e}") from e

    async def bytes_in_use(self, namespace: str) -> int:
        try:
            with self.session_factory() as db:
                return self._bytes_in_use(db, namespace)
        except SQLAlchemyError as e:
            raise TransientStorageError(f"Failed to measure '{namespace}': {e}") from e

    def close(self) -> None:
        self.session_factory.kw["bind"].dispose()

    @staticmethod
    def _bytes_in_use(db, namespace: str) -> int:
        total = (
            db.query(func.coalesce(func.sum(StorageEntry.size_bytes), 0))
            .filter(StorageEntry.namespace == namespace)
            .scalar()
        )
        return int(total or 0)

    @staticmethod
    def _size(key: str, encoded_value: str) -> int:
        # Quotas count the key and the serialized value, like browser storage does
        return len(key.encode("utf-8")) + len(encoded_value.encode("utf-8"))
