"""
Optimistic daily snapshot kept in step with the stored per-day document.

Two input streams feed one snapshot:

- local mutations, applied at once and queued as merge writes;
- remote document payloads from the store listener.

``merge_remote`` is the reducer for the second stream. Remote values win for
every field except those with a local write that has not been acknowledged
yet, so a late listener payload can never bring back a value a newer local
mutation already replaced. A field leaves the pending set only after a write
that carried it succeeds; failed writes keep it pending and the next write
sends it again.

A single writer task drains the queue, so writes reach the store in mutation
order. Queued writes coalesce: each one sends the current value of every
pending field. Concurrent writers on other devices are still last-write-wins.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from rules import DOCUMENT_FIELDS, DailyMetrics, validate_changes

logger = logging.getLogger(__name__)

DRAIN_TIMEOUT_S = 2.0


def merge_remote(local: DailyMetrics, remote: Mapping[str, Any], pending: Mapping[str, int]) -> DailyMetrics:
    accepted = {
        k: v for k, v in remote.items()
        if k in DOCUMENT_FIELDS and v is not None and k not in pending
    }
    if not accepted:
        return local
    return local.merged(accepted)


class SnapshotSync:
    def __init__(self, store, uid: str, day: str, initial: Optional[DailyMetrics] = None):
        self.store = store
        self.uid = uid
        self.day = day
        self.metrics = initial or DailyMetrics()
        self.degraded = False
        self._pending: Dict[str, int] = {}
        self._seq = 0
        self._queue: asyncio.Queue = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @classmethod
    def load(cls, store, uid: str, day: str) -> "SnapshotSync":
        try:
            doc = store.get_daily(uid, day)
        except SQLAlchemyError as e:
            logger.warning("Could not load %s/%s, starting empty: %s", uid, day, e)
            sync = cls(store, uid, day)
            sync.degraded = True
            return sync
        return cls(store, uid, day, DailyMetrics.from_document(doc))

    @property
    def pending_fields(self) -> frozenset:
        return frozenset(self._pending)

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe_daily(self.uid, self.day, self.apply_remote)
        if self._writer is None or self._writer.done():
            self._writer = asyncio.get_running_loop().create_task(self._drain())

    async def close(self, timeout: float = DRAIN_TIMEOUT_S) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        writer, self._writer = self._writer, None
        if writer is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Dropping %d queued writes for %s/%s", self._queue.qsize(), self.uid, self.day)
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass

    async def flush(self) -> None:
        await self._queue.join()

    # --- local stream ---

    def mutate(self, changes: Dict[str, Any]) -> DailyMetrics:
        """Apply document-field changes locally and queue their write.

        Raises InvalidMetricError without touching the snapshot when any value is bad.
        """
        clean = validate_changes(changes)
        if not clean:
            return self.metrics
        self.metrics = self.metrics.merged(clean)
        self._seq += 1
        for key in clean:
            self._pending[key] = self._seq
        self._queue.put_nowait(self._seq)
        return self.metrics

    def update(self, fn: Callable[[DailyMetrics], Dict[str, Any]]) -> DailyMetrics:
        """Read-modify-write against the snapshot as it is right now."""
        return self.mutate(fn(self.metrics))

    # --- remote stream ---

    def apply_remote(self, doc: Mapping[str, Any]) -> DailyMetrics:
        self.metrics = merge_remote(self.metrics, doc, self._pending)
        return self.metrics

    # --- writer ---

    async def _drain(self) -> None:
        while True:
            await self._queue.get()
            try:
                self._push()
            finally:
                self._queue.task_done()

    def _push(self) -> None:
        if not self._pending:
            return  # already carried by an earlier coalesced write
        sent = dict(self._pending)
        payload = self.metrics.to_document(sent)
        try:
            self.store.merge_daily(self.uid, self.day, payload)
        except SQLAlchemyError as e:
            if not self.degraded:
                logger.warning("Sync degraded for %s/%s: %s", self.uid, self.day, e)
            self.degraded = True
            return
        if self.degraded:
            logger.info("Sync restored for %s/%s", self.uid, self.day)
        self.degraded = False
        for key, seq in sent.items():
            if self._pending.get(key) == seq:
                del self._pending[key]
