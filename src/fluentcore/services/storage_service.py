"""Durable key-value store with write batching, retries and a local backup."""
import asyncio
import copy
import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

from fluentcore.config import LOCAL_NAMESPACE, SYNC_KEYS, SYNC_NAMESPACE, settings
from fluentcore.exceptions import TransientStorageError
from fluentcore.models.command_models import DurabilityExhausted
from fluentcore.monitoring import (
    durability_exhausted,
    flush_batch_size,
    storage_flushes,
    storage_read_errors,
    storage_retries,
    storage_write_failures,
)
from fluentcore.services.backends import StorageBackend
from fluentcore.services.backup_service import LocalBackup

logger = logging.getLogger(__name__)

ChangeListener = Callable[[Any], None]
ExhaustedListener = Callable[[DurabilityExhausted], None]


@dataclass
class FailedWrite:
    """A write waiting for its next retry."""
    value: Any
    retries: int
    last_attempt: float  # clock() reading
    generation: int


@dataclass
class StorageUsage:
    used: int
    total: int
    percentage: float


class PersistentStore:
    """Write-through cache in front of a storage backend.

    ``set()`` updates the cache and notifies listeners immediately, then
    queues the value for a debounced batch write. Failed batches are retried
    with exponential backoff on one shared timer; a key that keeps failing is
    written to the local backup and reported to durability listeners.
    All queue mutation happens synchronously, outside of any await.
    """

    def __init__(
        self,
        backend: StorageBackend,
        backup: Optional[LocalBackup] = None,
        batch_delay: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delays: Optional[Iterable[float]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the store. Unset tuning values come from settings."""
        self.backend = backend
        self.backup = backup or LocalBackup()
        self.batch_delay = settings.storage.batch_delay if batch_delay is None else batch_delay
        self.max_retries = settings.storage.max_retries if max_retries is None else max_retries
        self.retry_delays = list(settings.storage.retry_delays if retry_delays is None else retry_delays)
        self.clock = clock

        self._cache: Dict[str, Any] = {}
        self._listeners: Dict[str, List[ChangeListener]] = defaultdict(list)
        self._exhausted_listeners: List[ExhaustedListener] = []
        self._pending: Dict[str, Any] = {}
        self._failed: Dict[str, FailedWrite] = {}
        self._generations: Dict[str, int] = defaultdict(int)
        self._write_timer: Optional[asyncio.TimerHandle] = None
        self._retry_timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @staticmethod
    def namespace_for(key: str) -> str:
        """Settings sync across devices; everything else stays local."""
        return SYNC_NAMESPACE if key in SYNC_KEYS else LOCAL_NAMESPACE

    # Reads

    async def load(self, key: str) -> Any:
        """Read a key, raising TransientStorageError if the backend fails.

        Returns None for a key that was never written.
        """
        if key in self._cache:
            return self._cache[key]

        result = await self.backend.get(self.namespace_for(key), [key])

        # A set() may have landed while the backend was reading
        if key in self._cache:
            return self._cache[key]
        if key in result:
            self._cache[key] = result[key]
            return result[key]
        return None

    async def get(self, key: str, default: Any = None) -> Any:
        """Read a key, falling back to ``default`` if it is missing or unreadable."""
        try:
            value = await self.load(key)
        except TransientStorageError as e:
            logger.error("Storage get error for %s: %s", key, e)
            storage_read_errors.inc()
            return default
        return default if value is None else value

    async def get_multiple(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Read several keys with one backend call per namespace."""
        keys = list(keys)
        result = {key: self._cache[key] for key in keys if key in self._cache}

        missing: Dict[str, List[str]] = defaultdict(list)
        for key in keys:
            if key not in result:
                missing[self.namespace_for(key)].append(key)

        for namespace, namespace_keys in missing.items():
            try:
                values = await self.backend.get(namespace, namespace_keys)
            except TransientStorageError as e:
                logger.error("Storage get_multiple error for %s: %s", namespace_keys, e)
                storage_read_errors.inc()
                continue
            for key, value in values.items():
                if key in self._cache:
                    result[key] = self._cache[key]
                else:
                    self._cache[key] = value
                    result[key] = value
        return result

    # Writes

    def set(self, key: str, value: Any) -> bool:
        """Update a key. Readers see the new value at once; durability follows."""
        self._cache[key] = value
        self._generations[key] += 1

        # New write supersedes a failed one
        self._failed.pop(key, None)
        if not self._failed:
            self._cancel_retry_timer()
        self._pending[key] = copy.deepcopy(value)
        self._schedule_flush()

        self._notify_listeners(key, value)
        return True

    async def remove(self, key: str) -> bool:
        """Delete a key from the cache, the queues and the backend."""
        self._cache.pop(key, None)
        self._pending.pop(key, None)
        self._failed.pop(key, None)
        if not self._failed:
            self._cancel_retry_timer()
        self._generations[key] += 1
        try:
            await self.backend.remove(self.namespace_for(key), [key])
        except TransientStorageError as e:
            logger.error("Storage remove error for %s: %s", key, e)
            return False
        self._notify_listeners(key, None)
        return True

    async def clear(self) -> bool:
        """Delete every key of both namespaces."""
        for key in set(self._cache) | set(self._pending) | set(self._failed):
            self._generations[key] += 1
        self._cache.clear()
        self._pending.clear()
        self._failed.clear()
        self._cancel_retry_timer()
        try:
            await asyncio.gather(
                self.backend.clear(LOCAL_NAMESPACE),
                self.backend.clear(SYNC_NAMESPACE),
            )
        except TransientStorageError as e:
            logger.error("Storage clear error: %s", e)
            return False
        return True

    async def force_flush(self) -> None:
        """Commit pending writes and retry eligible failed ones right now.

        Use before the process is torn down.
        """
        in_flight = [task for task in self._tasks if task is not asyncio.current_task()]
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)

        if self._write_timer is not None:
            self._write_timer.cancel()
            self._write_timer = None

        if self._pending:
            await self._flush_writes()

        # Also retry any failed writes immediately
        self._cancel_retry_timer()
        if self._failed:
            await self._retry_failed_writes()

    async def close(self) -> None:
        """Stop the timers and wait for in-flight writes. Queued writes are dropped."""
        self._closed = True
        for timer in (self._write_timer, self._retry_timer):
            if timer is not None:
                timer.cancel()
        self._write_timer = None
        self._retry_timer = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._pending or self._failed:
            logger.warning(
                "Store closed with %d pending and %d failed writes",
                len(self._pending),
                len(self._failed),
            )
        self._listeners.clear()
        self._exhausted_listeners.clear()

    # Introspection

    @property
    def pending_keys(self) -> frozenset:
        return frozenset(self._pending)

    @property
    def failed_writes(self) -> Dict[str, FailedWrite]:
        return dict(self._failed)

    @property
    def is_idle(self) -> bool:
        """True when nothing is queued, scheduled or in flight."""
        return not (self._pending or self._failed or self._tasks
                    or self._write_timer or self._retry_timer)

    async def get_usage(self) -> StorageUsage:
        """Bytes used across both namespaces compared to their quotas."""
        try:
            local_bytes, sync_bytes = await asyncio.gather(
                self.backend.bytes_in_use(LOCAL_NAMESPACE),
                self.backend.bytes_in_use(SYNC_NAMESPACE),
            )
        except TransientStorageError as e:
            logger.error("Storage usage error: %s", e)
            return StorageUsage(used=0, total=0, percentage=0.0)

        used = local_bytes + sync_bytes
        total = self.backend.quota_bytes(LOCAL_NAMESPACE) + self.backend.quota_bytes(SYNC_NAMESPACE)
        percentage = (used / total) * 100 if total else 0.0
        return StorageUsage(used=used, total=total, percentage=percentage)

    # Listeners

    def on_change(self, key: str, listener: ChangeListener) -> Callable[[], None]:
        """Call ``listener(value)`` whenever ``key`` changes. Returns an unsubscribe function."""
        self._listeners[key].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners.get(key, []):
                self._listeners[key].remove(listener)

        return unsubscribe

    def on_durability_exhausted(self, listener: ExhaustedListener) -> Callable[[], None]:
        """Call ``listener(event)`` when a key gives up on the backend."""
        self._exhausted_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._exhausted_listeners:
                self._exhausted_listeners.remove(listener)

        return unsubscribe

    def _notify_listeners(self, key: str, value: Any) -> None:
        for listener in list(self._listeners.get(key, [])):
            try:
                listener(value)
            except Exception as e:
                logger.error("Storage listener error for %s: %s", key, e)

    # Batching and retries

    def _spawn(self, coroutine_function: Callable[[], Any]) -> None:
        task = asyncio.ensure_future(coroutine_function())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _call_later(self, delay: float, coroutine_function: Callable[[], Any]) -> Optional[asyncio.TimerHandle]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, writes stay queued until force_flush()")
            return None
        return loop.call_later(delay, self._spawn, coroutine_function)

    def _schedule_flush(self) -> None:
        if self._write_timer is not None or self._closed:
            return
        self._write_timer = self._call_later(self.batch_delay, self._flush_writes)

    def _cancel_retry_timer(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def _retry_delay(self, retries: int) -> float:
        return self.retry_delays[min(retries, len(self.retry_delays) - 1)]

    def _schedule_retry(self) -> None:
        if self._retry_timer is not None or not self._failed or self._closed:
            return

        # One timer for the earliest eligible retry across all keys
        next_attempt = min(
            failure.last_attempt + self._retry_delay(failure.retries)
            for failure in self._failed.values()
        )
        delay = max(0.0, next_attempt - self.clock())
        self._retry_timer = self._call_later(delay, self._retry_failed_writes)

    async def _write_batch(self, items: Mapping[str, Any]) -> None:
        groups: Dict[str, Dict[str, Any]] = defaultdict(dict)
        for key, value in items.items():
            groups[self.namespace_for(key)][key] = value
        await asyncio.gather(
            *(self.backend.set(namespace, group) for namespace, group in groups.items())
        )

    async def _flush_writes(self) -> None:
        self._write_timer = None
        if not self._pending:
            return

        batch = self._pending
        self._pending = {}
        generations = {key: self._generations[key] for key in batch}
        flush_batch_size.observe(len(batch))

        try:
            await self._write_batch(batch)
        except TransientStorageError as e:
            # The cache keeps the value; only durability is deferred
            logger.error("Write of %d keys failed, queuing for retry: %s", len(batch), e)
            storage_write_failures.labels(phase="flush").inc()
            now = self.clock()
            for key, value in batch.items():
                if self._generations[key] != generations[key]:
                    continue
                self._failed[key] = FailedWrite(value, 0, now, generations[key])
            self._schedule_retry()
            return

        storage_flushes.inc()
        logger.debug("Flushed %d keys", len(batch))
        self._discard_backups(batch)

    async def _retry_failed_writes(self) -> None:
        self._retry_timer = None
        if not self._failed:
            return

        now = self.clock()
        ready = {
            key: failure
            for key, failure in self._failed.items()
            if now >= failure.last_attempt + self._retry_delay(failure.retries)
        }
        if not ready:
            self._schedule_retry()
            return

        for key in ready:
            del self._failed[key]
        storage_retries.inc(len(ready))

        try:
            await self._write_batch({key: failure.value for key, failure in ready.items()})
        except TransientStorageError as e:
            logger.warning("Retry of %d keys failed: %s", len(ready), e)
            storage_write_failures.labels(phase="retry").inc()
            now = self.clock()
            for key, failure in ready.items():
                if self._generations[key] != failure.generation:
                    continue
                retries = failure.retries + 1
                if retries >= self.max_retries:
                    self._exhaust(key, failure.value, retries)
                else:
                    self._failed[key] = FailedWrite(failure.value, retries, now, failure.generation)
        else:
            logger.info("Successfully retried %d writes", len(ready))
            self._discard_backups(ready)

        self._schedule_retry()

    def _exhaust(self, key: str, value: Any, retries: int) -> None:
        logger.error("Max retries reached for key %s (%d retries), saving local backup", key, retries)
        durability_exhausted.inc()
        self.backup.save(key, value)

        event = DurabilityExhausted(key=key, value=value, retries=retries)
        for listener in list(self._exhausted_listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("Durability listener error for %s: %s", key, e)

    def _discard_backups(self, keys: Iterable[str]) -> None:
        for key in keys:
            if key in self.backup:
                self.backup.discard(key)
