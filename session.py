"""
Per-user session: owns the activity timer, the live recompute timer and the
store listener, and tears all three down on stop().

Every periodic task reads ``self.sync.metrics`` when it fires; nothing holds on
to a snapshot across ticks.
"""

import asyncio
import datetime as dt
import logging
import random
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from activity import ActivityMonitor, ActivityState, ActivityTrackerService, TickResult, now_ms
from progression import ProgressionLedger, ProgressionState
from rules import EDITABLE_FIELDS, InvalidMetricError, derive_outputs, exam_average_percent
from simulator import simulate, simulated_changes
from sync import SnapshotSync
from wearables import WearableError, WearableReading, fetch_google_fit, linked_token, reading_changes

logger = logging.getLogger(__name__)

RECOMPUTE_INTERVAL_S = 5.0


class SessionController:
    def __init__(
        self,
        store,
        uid: str,
        clock: Callable[[], int] = now_ms,
        today: Callable[[], dt.date] = dt.date.today,
        hour: Callable[[], int] = lambda: dt.datetime.now().hour,
        rng: Optional[random.Random] = None,
        tick_s: Optional[float] = None,
        recompute_s: float = RECOMPUTE_INTERVAL_S,
    ):
        self.store = store
        self.uid = uid
        self.today = today
        self.hour = hour
        self.rng = rng or random.Random()
        self.recompute_s = recompute_s
        self.monitor = ActivityMonitor(last_interaction_ms=clock())
        self.tracker = ActivityTrackerService(self.monitor, self._on_activity_tick, clock, interval_s=tick_s)
        self.clock = clock
        self.sync: Optional[SnapshotSync] = None
        self.ledger: Optional[ProgressionLedger] = None
        self.wearable_linked = False
        self.pinned = set()
        self._exam_average = 0.0
        # store-backed sources currently failing: "ledger", "progress", "exams", "wearable"
        self._degraded = set()
        self._recompute_task: Optional[asyncio.Task] = None
        self._closing = set()

    @property
    def sync_degraded(self) -> bool:
        return bool(self._degraded) or (self.sync is not None and self.sync.degraded)

    @property
    def running(self) -> bool:
        return self._recompute_task is not None

    # --- lifecycle ---

    async def start(self) -> None:
        if self.running:
            return
        self._open_day(self.today().isoformat())
        try:
            self.ledger = ProgressionLedger(self.store, self.uid)
        except SQLAlchemyError as e:
            logger.warning("Progression for %s kept in memory only: %s", self.uid, e)
            self._degraded.add("ledger")
            self.ledger = ProgressionLedger(None, self.uid, ProgressionState())
        self._check_wearable_link()
        # login-time boundary check uses the same level formula as score updates
        self.recompute()
        self.tracker.start()
        self._recompute_task = asyncio.get_running_loop().create_task(self._recompute_loop())
        logger.info("Session started for %s (%s)", self.uid, self.sync.day)

    async def stop(self) -> None:
        await self.tracker.stop()
        task, self._recompute_task = self._recompute_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._closing:
            await asyncio.gather(*self._closing)
        if self.sync is not None:
            await self.sync.close()
        logger.info("Session stopped for %s", self.uid)

    async def _recompute_loop(self) -> None:
        while True:
            await asyncio.sleep(self.recompute_s)
            try:
                self.recompute()
            except Exception:
                logger.exception("Live recompute failed for %s", self.uid)

    # --- day handling ---

    def _open_day(self, day: str) -> None:
        self.sync = SnapshotSync.load(self.store, self.uid, day)
        self.sync.start()
        self.pinned = set()
        self.monitor.clear_carry()

    def _roll_day_if_needed(self) -> None:
        day = self.today().isoformat()
        if self.sync.day == day:
            return
        old = self.sync
        logger.info("Day rollover for %s: %s -> %s", self.uid, old.day, day)
        task = asyncio.get_running_loop().create_task(old.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        self._open_day(day)

    # --- periodic work ---

    def _on_activity_tick(self, result: TickResult) -> None:
        self._roll_day_if_needed()
        if result.state is ActivityState.HIDDEN:
            return
        self.sync.update(lambda m: self.monitor.changes_for(
            result, m.screen_time, m.active_focus_time, m.idle_time))

    def recompute(self) -> Dict[str, Any]:
        self._roll_day_if_needed()
        if not self.wearable_linked:
            self._fold_simulated()

        metrics = self.sync.metrics
        outputs = derive_outputs(metrics, self._current_exam_average())
        stale = {k: v for k, v in outputs.items() if metrics.to_document([k])[k] != v}
        if stale:
            self.sync.mutate(stale)
        self._record_progress(outputs["score"])
        return outputs

    def _fold_simulated(self) -> None:
        sim = simulate(self.hour(), self.today().day, self.rng)
        changes = simulated_changes(sim, self.sync.metrics.sleep, self.pinned)
        if changes:
            self.sync.mutate(changes)

    def _current_exam_average(self) -> float:
        try:
            self._exam_average = exam_average_percent(self.store.list_exams(self.uid))
        except SQLAlchemyError as e:
            logger.warning("Using last exam average for %s: %s", self.uid, e)
            self._degraded.add("exams")
            return self._exam_average
        self._degraded.discard("exams")
        return self._exam_average

    def _record_progress(self, score: int) -> None:
        try:
            self.ledger.record(self.today(), score)
        except SQLAlchemyError as e:
            logger.warning("Progression write failed for %s: %s", self.uid, e)
            self._degraded.add("progress")
            return
        self._degraded.discard("progress")

    # --- inputs ---

    def record_interaction(self, signal: str, at_ms: Optional[int] = None) -> bool:
        return self.monitor.record_interaction(signal, at_ms if at_ms is not None else self.clock())

    def set_visible(self, visible: bool) -> None:
        self.monitor.set_visible(visible)

    def edit(self, field: str, value: Any) -> Dict[str, Any]:
        """Manual edit of one metric; a rejected value leaves the snapshot unchanged."""
        if field not in EDITABLE_FIELDS:
            raise InvalidMetricError(f"'{field}' cannot be edited")
        self.sync.mutate({field: value})
        self.pinned.add(field)
        self.recompute()
        return self.snapshot()

    def _check_wearable_link(self) -> Optional[str]:
        """Refresh ``wearable_linked``; a failed lookup keeps the previous answer."""
        try:
            token = linked_token(self.store, self.uid)
        except SQLAlchemyError as e:
            logger.warning("Could not check wearable link for %s: %s", self.uid, e)
            self._degraded.add("wearable")
            return None
        self._degraded.discard("wearable")
        self.wearable_linked = token is not None
        return token

    def apply_wearable(self, reading: WearableReading) -> None:
        changes = {k: v for k, v in reading_changes(reading).items() if k not in self.pinned}
        if changes:
            self.sync.mutate(changes)
        self.recompute()

    async def sync_wearable(self, fetch: Callable[[str], WearableReading] = fetch_google_fit) -> str:
        token = self._check_wearable_link()
        if "wearable" in self._degraded:
            return "unavailable"
        if token is None:
            self.recompute()
            return "simulated"
        try:
            reading = await asyncio.to_thread(fetch, token)
        except WearableError as e:
            logger.warning("Wearable sync failed for %s: %s", self.uid, e)
            return "unavailable"
        self.apply_wearable(reading)
        return "synced"

    def snapshot(self) -> Dict[str, Any]:
        metrics = self.sync.metrics
        progression = self.ledger.state if self.ledger else ProgressionState()
        return {
            "uid": self.uid,
            "day": self.sync.day,
            "metrics": metrics.to_document(),
            "activity": self.monitor.classify(self.clock()).value,
            "progression": {
                **progression.to_document(),
                "status": self.ledger.status(self.today()).value if self.ledger else None,
            },
            "wearableLinked": self.wearable_linked,
            "syncDegraded": self.sync_degraded,
        }

