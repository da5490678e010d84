"""History cache mirror and the reconciliation worker that keeps it honest.

Write path for one use:
1. record_use() updates the in-memory mirror optimistically (last_used only)
2. The worker persists the use through the backend store, in submission order
3. Once the queue is drained, reconcile() replaces the mirror with the
   backend snapshot and re-applies uses that are still pending
4. A "history.changed" event tells consumers to re-render

use_count is never incremented locally; the backend owns it.
"""

import asyncio
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Deque, Dict, Mapping, Optional, Tuple

from loguru import logger

from .bus import Event, EventBus, HISTORY_CHANGED, get_event_bus
from .config import ReconcileConfig
from .error_handling import RetryPolicy
from .models import CandidateKind, HistoryEntry
from .paths import display_name_for, is_executable_artifact, is_recent_folder, normalize, same_path
from .store import BackendStore


# Transient actions, not opened targets
EPHEMERAL_KINDS = frozenset({
    CandidateKind.AI,
    CandidateKind.EMAIL,
    CandidateKind.JSON_FORMATTER,
    CandidateKind.HISTORY,
    CandidateKind.SETTINGS,
    CandidateKind.MEMO,
    CandidateKind.PLUGIN,
})


def should_record(path: Optional[str], kind: CandidateKind) -> bool:
    """Whether a use of this path/kind belongs in the open history."""
    if not path or not path.strip():
        return False
    if kind in EPHEMERAL_KINDS:
        return False
    if kind is CandidateKind.APP:
        # UWP ids and "Recent items" shell aliases are not usage signals
        return is_executable_artifact(path) and not is_recent_folder(path)
    return True


class HistoryCache:
    """
    Process-wide mirror of the open history.

    Only the launch dispatcher and the reconciliation worker mutate it,
    through record_use(), reconcile() and remove_entry(). Everyone else reads
    snapshots.
    """

    # Backend deletes retried from reconcile() before backend truth wins again
    MAX_TOMBSTONE_RETRIES = 3

    def __init__(
        self,
        store: BackendStore,
        event_bus: Optional[EventBus] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._store = store
        self._event_bus = event_bus or get_event_bus()
        self._retry = retry_policy or RetryPolicy()

        self._entries: Dict[str, HistoryEntry] = {}
        self._open_history: Dict[str, float] = {}
        self._pending: Dict[str, float] = {}
        # Removed keys hidden from backend snapshots until the backend agrees
        self._tombstones: Dict[str, int] = {}
        self._tombstone_retries: Dict[str, int] = {}
        self._fetch_seq = 0
        self._loaded = False

        self._submit: Optional[Callable[[str, float], None]] = None
        self._discard: Optional[Callable[[str], None]] = None

    def attach_persistence(
        self,
        submit: Callable[[str, float], None],
        discard: Callable[[str], None],
    ) -> None:
        """Connect the worker that persists recorded uses."""
        self._submit = submit
        self._discard = discard

    # Read-only snapshots

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def entries(self) -> Tuple[HistoryEntry, ...]:
        """Entries, most recently used first."""
        return tuple(sorted(self._entries.values(), key=lambda e: e.last_used, reverse=True))

    def get(self, path: str) -> Optional[HistoryEntry]:
        return self._entries.get(normalize(path))

    def open_history(self) -> Mapping[str, float]:
        return MappingProxyType(dict(self._open_history))

    def last_used(self, path: str) -> Optional[float]:
        entry = self.get(path)
        if entry is not None:
            return entry.last_used
        return self._open_history.get(path)

    def pending_keys(self) -> Tuple[str, ...]:
        return tuple(self._pending)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and normalize(path) in self._entries

    # Mutations

    def record_use(
        self,
        path: str,
        kind: CandidateKind,
        at: Optional[float] = None,
    ) -> bool:
        """
        Optimistically record a use and schedule its persistence.

        Returns False when the policy excludes this use. The existence check
        and the insert happen without yielding, so two calls for the same
        path can never double-insert.
        """
        if not should_record(path, kind):
            return False

        timestamp = time.time() if at is None else at
        path = path.strip()
        key = normalize(path)

        self._open_history[path] = timestamp
        self._clear_tombstone(key)

        existing = self._entries.get(key)
        if existing is not None:
            self._entries[key] = existing.touched(timestamp)
        else:
            is_url = kind is CandidateKind.URL
            self._entries[key] = HistoryEntry(
                path=path,
                name=display_name_for(path, is_url=is_url),
                last_used=timestamp,
                use_count=0,
                is_folder=False if is_url else None,
            )
        self._pending[key] = timestamp

        if self._submit is not None:
            self._submit(path, timestamp)
        else:
            logger.debug(f"No persistence attached, use of {path} stays local")

        logger.debug(f"Recorded use of {path} ({kind.value})")
        return True

    def settle(self, path: str, recorded_at: float) -> None:
        """Persistence for a use finished or was abandoned; newer pending uses stay."""
        key = normalize(path)
        pending = self._pending.get(key)
        if pending is not None and pending <= recorded_at:
            del self._pending[key]

    async def reconcile(self) -> bool:
        """
        Replace the mirror with the backend snapshot.

        Uses still pending are re-applied on top (latest last_used wins), so
        a reconciliation racing with record_use() loses nothing. Failures are
        logged and absorbed; the mirror is left as is.
        """
        self._fetch_seq += 1
        fetch_id = self._fetch_seq
        try:
            backend_entries = await self._retry.execute(self._store.list_all_history)
        except Exception as e:
            logger.warning(f"History reconciliation failed, keeping local mirror: {e}")
            return False

        seen_keys = {entry.key for entry in backend_entries}
        # A fetch that started after the removal and no longer sees the key settles it
        for key, removed_at in list(self._tombstones.items()):
            if fetch_id > removed_at and key not in seen_keys:
                self._clear_tombstone(key)

        deleted = set()
        for entry in backend_entries:
            removed_at = self._tombstones.get(entry.key)
            if removed_at is not None and fetch_id > removed_at:
                if await self._retry_backend_delete(entry):
                    deleted.add(entry.key)

        merged: Dict[str, HistoryEntry] = {}
        for entry in backend_entries:
            key = entry.key
            if key in self._tombstones or key in deleted:
                continue
            current = merged.get(key)
            if current is None or entry.last_used > current.last_used:
                merged[key] = entry

        for key, timestamp in self._pending.items():
            backend = merged.get(key)
            if backend is not None:
                if timestamp > backend.last_used:
                    merged[key] = backend.touched(timestamp)
            elif key in self._entries:
                merged[key] = self._entries[key]

        self._entries = merged
        for entry in merged.values():
            if entry.last_used > self._open_history.get(entry.path, 0):
                self._open_history[entry.path] = entry.last_used
        self._loaded = True

        logger.debug(f"Reconciled history mirror: {len(merged)} entries, {len(self._pending)} pending")
        self._notify_changed("reconciled")
        return True

    async def remove_entry(self, path: str) -> None:
        """
        Remove a path from the mirror, then from the backend store.

        The local removal always happens; a backend failure is raised to the
        caller afterwards.
        """
        key = normalize(path)
        self._entries.pop(key, None)
        self._pending.pop(key, None)
        for raw in [p for p in self._open_history if same_path(p, path)]:
            del self._open_history[raw]
        self._tombstones[key] = self._fetch_seq
        self._tombstone_retries.pop(key, None)

        if self._discard is not None:
            self._discard(key)

        self._notify_changed("removed", path=path)
        await self._store.delete_history(path)
        logger.info(f"Removed {path} from history")

    async def _retry_backend_delete(self, entry: HistoryEntry) -> bool:
        """The backend still holds a removed entry; delete it again or stop hiding it. True once deleted."""
        key = entry.key
        try:
            await self._store.delete_history(entry.path)
        except Exception as e:
            retries = self._tombstone_retries.get(key, 0) + 1
            if retries < self.MAX_TOMBSTONE_RETRIES:
                self._tombstone_retries[key] = retries
                logger.warning(f"Backend still holds removed entry {entry.path}: {e}")
            else:
                logger.warning(f"Could not remove {entry.path} from the backend, restoring it: {e}")
                self._clear_tombstone(key)
            return False
        self._clear_tombstone(key)
        logger.info(f"Removed {entry.path} from history on retry")
        return True

    def _clear_tombstone(self, key: str) -> None:
        self._tombstones.pop(key, None)
        self._tombstone_retries.pop(key, None)

    def _notify_changed(self, reason: str, **data) -> None:
        self._event_bus.emit_nowait(Event(
            type=HISTORY_CHANGED,
            data={"reason": reason, "count": len(self._entries), **data},
            source="history_cache",
        ))


@dataclass
class PersistJob:
    """One recorded use waiting for the backend."""
    path: str
    key: str
    recorded_at: float
    seq: int
    attempts: int = 0


class ReconciliationWorker:
    """
    Persists recorded uses in order, then reconciles the mirror.

    Runs as a single background consumer, detached from the launch flow.
    A use whose persistence fails is deferred and retried at the next
    opportunity (next submitted use or refresh()); after
    max_persist_attempts it is abandoned and the next reconciliation rolls
    the mirror back to backend truth. add_use is never retried in place
    because it is not idempotent.
    """

    def __init__(
        self,
        cache: HistoryCache,
        store: BackendStore,
        config: Optional[ReconcileConfig] = None,
    ):
        self.config = config or ReconcileConfig()
        self._cache = cache
        self._store = store

        self._queue: asyncio.Queue = asyncio.Queue()
        self._deferred: Deque[PersistJob] = deque()
        self._discarded: Dict[str, int] = {}
        # Jobs per key not yet persisted, abandoned or skipped
        self._outstanding: Dict[str, int] = defaultdict(int)
        self._seq = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stats = defaultdict(int)

        cache.attach_persistence(self.submit, self.discard)

    @property
    def running(self) -> bool:
        return self._running

    def submit(self, path: str, recorded_at: float) -> None:
        """Queue a use for persistence. Never blocks."""
        self._requeue_deferred()
        self._seq += 1
        key = normalize(path)
        self._outstanding[key] += 1
        self._queue.put_nowait(PersistJob(
            path=path,
            key=key,
            recorded_at=recorded_at,
            seq=self._seq,
        ))
        self._stats['submitted'] += 1

    def discard(self, key: str) -> None:
        """Drop every queued or deferred use of key submitted so far."""
        dropped = [job for job in self._deferred if job.key == key]
        self._deferred = deque(job for job in self._deferred if job.key != key)
        for job in dropped:
            self._finish(job)
        if self._outstanding.get(key):
            self._discarded[key] = self._seq

    def _finish(self, job: PersistJob) -> None:
        remaining = self._outstanding.get(job.key, 0) - 1
        if remaining > 0:
            self._outstanding[job.key] = remaining
            return
        # Nothing older can still be in flight, so the discard marker is spent
        self._outstanding.pop(job.key, None)
        self._discarded.pop(job.key, None)

    def deferred_count(self) -> int:
        return len(self._deferred)

    def _requeue_deferred(self) -> None:
        while self._deferred:
            self._queue.put_nowait(self._deferred.popleft())

    def _is_discarded(self, job: PersistJob) -> bool:
        return job.seq <= self._discarded.get(job.key, 0)

    async def start(self) -> None:
        if self._running:
            logger.warning("Reconciliation worker already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("Reconciliation worker started")

    async def stop(self) -> None:
        """Stop the consumer and flush whatever is still queued."""
        self._running = False
        if self._task:
            await self._task
            self._task = None
        await self.run_pending()
        logger.info("Reconciliation worker stopped")

    async def drain(self) -> None:
        """Wait until every queued use has been handled."""
        if self._running:
            await self._queue.join()
        else:
            await self.run_pending()

    async def refresh(self) -> bool:
        """Retry deferred uses, then reconcile."""
        self._requeue_deferred()
        await self.drain()
        return await self._cache.reconcile()

    async def run_pending(self) -> None:
        """Process the queue inline, without the background task."""
        handled = 0
        while not self._queue.empty():
            job = self._queue.get_nowait()
            try:
                await self._persist(job)
                handled += 1
            finally:
                self._queue.task_done()
        if handled:
            await self._cache.reconcile()

    async def _run(self) -> None:
        while self._running:
            try:
                job = await asyncio.wait_for(self._queue.get(), timeout=0.2)
            except asyncio.TimeoutError:
                continue

            try:
                await self._persist(job)
                # One reconciliation per batch
                if self._queue.empty():
                    await self._cache.reconcile()
            except Exception as e:
                logger.error(f"Reconciliation worker error: {e}")
                self._stats['errors'] += 1
            finally:
                self._queue.task_done()

    async def _persist(self, job: PersistJob) -> None:
        if self._is_discarded(job):
            logger.debug(f"Skipping persistence of removed path {job.path}")
            self._cache.settle(job.path, job.recorded_at)
            self._finish(job)
            self._stats['discarded'] += 1
            return

        try:
            await self._store.add_use(job.path)
        except Exception as e:
            job.attempts += 1
            if job.attempts >= self.config.max_persist_attempts:
                logger.warning(
                    f"Giving up on persisting use of {job.path} after {job.attempts} attempts: {e}"
                )
                self._cache.settle(job.path, job.recorded_at)
                self._finish(job)
                self._stats['abandoned'] += 1
            else:
                logger.warning(f"Failed to persist use of {job.path}, deferring: {e}")
                self._deferred.append(job)
                self._stats['deferred'] += 1
            return

        if self._is_discarded(job):
            # Removed while the write was in flight
            try:
                await self._store.delete_history(job.path)
            except Exception as e:
                logger.debug(f"Follow-up delete of {job.path} failed: {e}")

        self._cache.settle(job.path, job.recorded_at)
        self._finish(job)
        self._stats['persisted'] += 1
        logger.debug(f"Persisted use of {job.path}")

    def get_stats(self) -> Dict[str, int]:
        stats = dict(self._stats)
        stats['queued'] = self._queue.qsize()
        stats['deferred_now'] = len(self._deferred)
        return stats


def build_history(
    store: BackendStore,
    config: Optional[ReconcileConfig] = None,
    event_bus: Optional[EventBus] = None,
) -> Tuple[HistoryCache, ReconciliationWorker]:
    """Wire a cache and its worker with a retry policy from config."""
    config = config or ReconcileConfig()
    retry = RetryPolicy(max_retries=config.list_retries, base_delay=config.retry_base_delay)
    cache = HistoryCache(store, event_bus=event_bus, retry_policy=retry)
    worker = ReconciliationWorker(cache, store, config)
    return cache, worker
