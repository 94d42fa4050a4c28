"""
Screen activity tracking.

The monitor classifies each tick as active, idle or hidden and reports how many
hours to add to which DailyMetrics bucket. It never touches the snapshot
itself: the session applies the result to whatever snapshot is current when
the tick fires.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

TICK_MS = 1000
IDLE_THRESHOLD_MS = 60_000
MS_PER_HOUR = 3_600_000
HOURS_PRECISION = 4

INTERACTION_SIGNALS = frozenset({"mousemove", "keydown", "click", "scroll", "touchstart"})


def now_ms() -> int:
    return int(time.time() * 1000)


class ActivityState(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    HIDDEN = "hidden"


@dataclass
class TickResult:
    state: ActivityState
    elapsed_ms: int = 0

    @property
    def hours(self) -> float:
        return self.elapsed_ms / MS_PER_HOUR


@dataclass
class ActivityMonitor:
    """Interaction-driven active/idle classifier with exact per-session totals."""

    last_interaction_ms: int
    is_visible: bool = True
    tick_ms: int = TICK_MS
    idle_threshold_ms: int = IDLE_THRESHOLD_MS
    active_ms: int = 0
    idle_ms: int = 0
    _carry: Dict[str, float] = field(default_factory=dict, repr=False)

    @property
    def total_ms(self) -> int:
        return self.active_ms + self.idle_ms

    def record_interaction(self, signal: str, at_ms: int) -> bool:
        if signal not in INTERACTION_SIGNALS:
            return False
        self.last_interaction_ms = max(self.last_interaction_ms, at_ms)
        return True

    def set_visible(self, visible: bool) -> None:
        self.is_visible = visible

    def classify(self, at_ms: int) -> ActivityState:
        if not self.is_visible:
            return ActivityState.HIDDEN
        if at_ms - self.last_interaction_ms >= self.idle_threshold_ms:
            return ActivityState.IDLE
        return ActivityState.ACTIVE

    def tick(self, at_ms: int) -> TickResult:
        state = self.classify(at_ms)
        if state is ActivityState.HIDDEN:
            return TickResult(state)
        if state is ActivityState.ACTIVE:
            self.active_ms += self.tick_ms
        else:
            self.idle_ms += self.tick_ms
        return TickResult(state, self.tick_ms)

    def clear_carry(self) -> None:
        self._carry.clear()

    def accrue(self, bucket: str, current_hours: float, add_hours: float) -> float:
        """Round ``current + add`` to 4 places, carrying the residue into the next call.

        Plain per-tick rounding would turn every 1/3600 h tick into 0.0003 h.
        """
        exact = current_hours + add_hours + self._carry.get(bucket, 0.0)
        rounded = round(exact, HOURS_PRECISION)
        self._carry[bucket] = exact - rounded
        return rounded

    def changes_for(self, result: TickResult, screen_time: float, active_focus_time: float,
                    idle_time: float) -> Dict[str, float]:
        """Document fields for one tick, computed from the snapshot's current values."""
        if result.state is ActivityState.HIDDEN:
            return {}
        changes = {"screenTime": self.accrue("screenTime", screen_time, result.hours)}
        if result.state is ActivityState.ACTIVE:
            changes["activeFocusTime"] = self.accrue("activeFocusTime", active_focus_time, result.hours)
        else:
            changes["idleTime"] = self.accrue("idleTime", idle_time, result.hours)
        return changes


class ActivityTrackerService:
    """Owns the 1 s activity timer for one session."""

    def __init__(
        self,
        monitor: ActivityMonitor,
        on_tick: Callable[[TickResult], None],
        clock: Callable[[], int] = now_ms,
        interval_s: Optional[float] = None,
    ):
        self.monitor = monitor
        self.on_tick = on_tick
        self.clock = clock
        self.interval_s = interval_s if interval_s is not None else monitor.tick_ms / 1000
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def tick_once(self) -> TickResult:
        result = self.monitor.tick(self.clock())
        self.on_tick(result)
        return result

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                self.tick_once()
            except Exception:
                # bucket stops growing for this tick; the timer keeps going
                logger.exception("Activity tick failed")
