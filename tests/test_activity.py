"""Activity monitor: tick-driven with explicit millisecond clocks."""

import asyncio

import pytest

from activity import (
    ActivityMonitor,
    ActivityState,
    ActivityTrackerService,
    IDLE_THRESHOLD_MS,
)
from rules import DailyMetrics


def interact_and_tick(monitor, start_ms, seconds):
    for i in range(1, seconds + 1):
        t = start_ms + i * 1000
        monitor.record_interaction("mousemove", t)
        monitor.tick(t)
    return start_ms + seconds * 1000


def tick_only(monitor, start_ms, seconds):
    states = []
    for i in range(1, seconds + 1):
        states.append(monitor.tick(start_ms + i * 1000).state)
    return states


class TestClassification:
    def test_active_then_idle(self):
        monitor = ActivityMonitor(last_interaction_ms=0)
        end = interact_and_tick(monitor, 0, 120)
        states = tick_only(monitor, end, 70)

        assert monitor.active_ms >= 120_000 + 59_000
        assert states[:59] == [ActivityState.ACTIVE] * 59
        assert states[59:] == [ActivityState.IDLE] * 11
        assert monitor.idle_ms == 11_000
        assert monitor.active_ms + monitor.idle_ms == monitor.total_ms == 190_000

    def test_idle_at_threshold(self):
        monitor = ActivityMonitor(last_interaction_ms=0)
        assert monitor.classify(IDLE_THRESHOLD_MS - 1) is ActivityState.ACTIVE
        assert monitor.classify(IDLE_THRESHOLD_MS) is ActivityState.IDLE

    def test_hidden_accrues_nothing(self):
        monitor = ActivityMonitor(last_interaction_ms=0)
        monitor.set_visible(False)
        states = tick_only(monitor, 0, 90)
        assert set(states) == {ActivityState.HIDDEN}
        assert monitor.total_ms == 0

    def test_unknown_signal_ignored(self):
        monitor = ActivityMonitor(last_interaction_ms=0)
        assert monitor.record_interaction("resize", 90_000) is False
        assert monitor.classify(90_000) is ActivityState.IDLE
        assert monitor.record_interaction("keydown", 90_000) is True
        assert monitor.classify(90_000) is ActivityState.ACTIVE

    def test_late_event_does_not_move_clock_back(self):
        monitor = ActivityMonitor(last_interaction_ms=50_000)
        monitor.record_interaction("click", 10_000)
        assert monitor.last_interaction_ms == 50_000


class TestAccrual:
    def apply(self, monitor, metrics, result):
        return metrics.merged(monitor.changes_for(
            result, metrics.screen_time, metrics.active_focus_time, metrics.idle_time))

    def test_one_hour_does_not_drift(self):
        monitor = ActivityMonitor(last_interaction_ms=0)
        m = DailyMetrics()
        t = 0
        for _ in range(3600):
            t += 1000
            monitor.record_interaction("scroll", t)
            m = self.apply(monitor, m, monitor.tick(t))
        assert m.screen_time == pytest.approx(1.0, abs=1e-4)
        assert m.active_focus_time == pytest.approx(1.0, abs=1e-4)
        assert m.idle_time == 0

    def test_values_kept_to_four_places(self):
        monitor = ActivityMonitor(last_interaction_ms=0)
        m = DailyMetrics()
        for i in range(1, 200):
            m = self.apply(monitor, m, monitor.tick(i * 1000))
            assert m.screen_time == round(m.screen_time, 4)

    def test_idle_and_active_sum_to_screen_time(self):
        monitor = ActivityMonitor(last_interaction_ms=0)
        m = DailyMetrics()
        t = 0
        for _ in range(120):
            t += 1000
            monitor.record_interaction("mousemove", t)
            m = self.apply(monitor, m, monitor.tick(t))
        for _ in range(70):
            t += 1000
            m = self.apply(monitor, m, monitor.tick(t))
        assert m.active_focus_time + m.idle_time == pytest.approx(m.screen_time, abs=2e-4)
        assert m.screen_time == pytest.approx(190 / 3600, abs=1e-4)

    def test_hidden_tick_changes_nothing(self):
        monitor = ActivityMonitor(last_interaction_ms=0, is_visible=False)
        assert monitor.changes_for(monitor.tick(1000), 1.0, 1.0, 0.0) == {}

    def test_accrues_onto_current_value(self):
        # another writer moved screen time forward between ticks
        monitor = ActivityMonitor(last_interaction_ms=0)
        changes = monitor.changes_for(monitor.tick(1000), 2.5, 2.0, 0.5)
        assert changes["screenTime"] == round(2.5 + 1 / 3600, 4)


class TestTrackerService:
    def test_start_and_stop(self):
        async def scenario():
            seen = []
            t = {"now": 0}

            def clock():
                t["now"] += 1000
                return t["now"]

            service = ActivityTrackerService(ActivityMonitor(last_interaction_ms=0), seen.append,
                                             clock=clock, interval_s=0.001)
            service.start()
            await asyncio.sleep(0.05)
            assert service.running
            await service.stop()
            count = len(seen)
            await asyncio.sleep(0.02)
            return service, seen, count

        service, seen, count = asyncio.run(scenario())
        assert count > 0
        assert len(seen) == count
        assert not service.running

    def test_failing_tick_does_not_stop_timer(self):
        async def scenario():
            calls = []

            def on_tick(result):
                calls.append(result)
                if len(calls) == 1:
                    raise RuntimeError("boom")

            service = ActivityTrackerService(ActivityMonitor(last_interaction_ms=0), on_tick,
                                             clock=lambda: 0, interval_s=0.001)
            service.start()
            await asyncio.sleep(0.05)
            await service.stop()
            return calls

        assert len(asyncio.run(scenario())) > 1
