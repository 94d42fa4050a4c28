"""Metric simulator: driven by hour of day alone."""

import math
import random

import pytest

from simulator import (
    MAX_STEPS,
    projected_steps,
    simulate,
    simulated_changes,
    sleep_for_day,
)


def sim(hour, day=15, seed=0):
    return simulate(hour, day, random.Random(seed))


class TestSteps:
    def test_near_zero_before_six(self):
        for hour in range(6):
            assert 0 <= sim(hour).steps < 50

    def test_curve_segments(self):
        assert projected_steps(6) == 500
        assert projected_steps(11) == 4500
        assert projected_steps(12) == 5300
        assert projected_steps(17) == 7800
        assert projected_steps(18) == 8300
        assert projected_steps(23) == 9300

    def test_late_evening_not_below_afternoon(self):
        for seed in range(20):
            late = sim(23, seed=seed).steps
            assert sim(17, seed=seed + 100).steps <= late <= MAX_STEPS

    def test_never_negative(self):
        for hour in range(24):
            assert sim(hour).steps >= 0


class TestDerivedReadings:
    def test_calories_formula(self):
        for hour in (0, 8, 14, 22):
            s = sim(hour)
            assert s.calories == math.floor(1200 + 0.04 * s.steps + 20 * hour)

    def test_exercise_scales_steps(self):
        s = sim(20)
        assert s.exercise_score == round(s.steps / 1000, 2)

    @pytest.mark.parametrize("hour,base", [(3, 65), (10, 72), (17, 110), (18, 110), (19, 110), (21, 65)])
    def test_heart_rate_windows(self, hour, base):
        for seed in range(10):
            assert base - 5 <= sim(hour, seed=seed).heart_rate <= base + 5

    def test_rejects_bad_hour(self):
        with pytest.raises(ValueError):
            simulate(24, 1)


class TestSleep:
    def test_stable_within_a_day(self):
        values = {sim(hour, day=9, seed=hour).sleep_hours for hour in range(24)}
        assert len(values) == 1

    def test_range(self):
        for day in range(1, 32):
            assert 6 <= sleep_for_day(day) < 9

    def test_recorded_sleep_not_overwritten(self):
        s = sim(12)
        assert "sleep" not in simulated_changes(s, current_sleep=7.25)
        assert simulated_changes(s, current_sleep=0)["sleep"] == s.sleep_hours

    def test_pinned_fields_left_alone(self):
        changes = simulated_changes(sim(12), current_sleep=0, pinned={"steps", "exercise"})
        assert "steps" not in changes
        assert "exercise" not in changes
        assert "calories" in changes
