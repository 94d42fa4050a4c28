"""Streak and level bookkeeping."""

import datetime as dt

import pytest
from sqlalchemy.exc import SQLAlchemyError

from progression import (
    ProgressionLedger,
    ProgressionState,
    ProgressionStatus,
    advance_streak,
    apply_level,
    compute_level,
    status_for,
)

TODAY = dt.date(2026, 3, 10)


def days_ago(n):
    return (TODAY - dt.timedelta(days=n)).isoformat()


class RecordingStore:
    def __init__(self, user=None):
        self.user = user
        self.writes = []

    def get_user(self, uid):
        return self.user

    def merge_user(self, uid, fields):
        self.writes.append(dict(fields))


class FailingOnceStore(RecordingStore):
    def __init__(self, user=None):
        super().__init__(user)
        self.failed = False

    def merge_user(self, uid, fields):
        if not self.failed:
            self.failed = True
            raise SQLAlchemyError("offline")
        super().merge_user(uid, fields)


class TestLevel:
    def test_formula(self):
        assert compute_level(0, 0) == 0
        assert compute_level(1, 100) == 0
        assert compute_level(2, 50) == 1
        assert compute_level(7, 80) == 3

    def test_does_not_drop_without_reset(self):
        state = ProgressionState(streak_days=5, level=3, last_active_date=TODAY.isoformat())
        assert apply_level(state, 0).level == 3

    def test_drops_on_reset(self):
        state = ProgressionState(streak_days=1, level=3, last_active_date=TODAY.isoformat())
        assert apply_level(state, 60, streak_reset=True).level == 0


class TestStreak:
    def test_consecutive_day_increments(self):
        state = ProgressionState(streak_days=4, level=1, last_active_date=days_ago(1))
        new, reset = advance_streak(state, TODAY)
        assert new.streak_days == 5
        assert new.last_active_date == TODAY.isoformat()
        assert not reset

    def test_gap_resets_to_one(self):
        state = ProgressionState(streak_days=9, level=3, last_active_date=days_ago(3))
        new, reset = advance_streak(state, TODAY)
        assert new.streak_days == 1
        assert reset

    def test_first_activity(self):
        new, reset = advance_streak(ProgressionState(), TODAY)
        assert new.streak_days == 1
        assert new.last_active_date == TODAY.isoformat()

    def test_same_day_is_noop(self):
        state = ProgressionState(streak_days=2, level=0, last_active_date=TODAY.isoformat())
        assert advance_streak(state, TODAY) == (state, False)

    def test_status(self):
        assert status_for(ProgressionState(), TODAY) is ProgressionStatus.NEVER_ACTIVE
        assert status_for(ProgressionState(1, 0, days_ago(0)), TODAY) is ProgressionStatus.ACTIVE_TODAY
        assert status_for(ProgressionState(1, 0, days_ago(1)), TODAY) is ProgressionStatus.ACTIVE_YESTERDAY
        assert status_for(ProgressionState(1, 0, days_ago(2)), TODAY) is ProgressionStatus.LAPSED


class TestLedger:
    def test_same_day_called_twice_increments_once(self):
        store = RecordingStore({"streak": 3, "level": 1, "lastActiveDate": days_ago(1)})
        ledger = ProgressionLedger(store, "u1")
        ledger.record(TODAY, 40)
        ledger.record(TODAY, 40)
        assert ledger.state.streak_days == 4
        assert len(store.writes) == 1
        assert store.writes[0] == {"streak": 4, "lastActiveDate": TODAY.isoformat()}

    def test_level_written_only_when_changed(self):
        store = RecordingStore({"streak": 2, "level": 0, "lastActiveDate": TODAY.isoformat()})
        ledger = ProgressionLedger(store, "u1")
        ledger.record(TODAY, 10)   # (200 + 10) // 250 == 0
        assert store.writes == []
        ledger.record(TODAY, 60)   # 260 // 250 == 1
        assert store.writes == [{"level": 1}]
        ledger.record(TODAY, 70)
        assert store.writes == [{"level": 1}]

    def test_lapsed_user_resets(self):
        store = RecordingStore({"streak": 12, "level": 5, "lastActiveDate": days_ago(4)})
        ledger = ProgressionLedger(store, "u1")
        state = ledger.record(TODAY, 90)
        assert state == ProgressionState(streak_days=1, level=0, last_active_date=TODAY.isoformat())
        assert ledger.status(TODAY) is ProgressionStatus.ACTIVE_TODAY

    def test_in_memory_ledger_never_writes(self):
        ledger = ProgressionLedger(None, "u1", ProgressionState())
        assert ledger.record(TODAY, 0).streak_days == 1

    def test_failed_write_is_resent(self):
        store = FailingOnceStore({"streak": 3, "level": 1, "lastActiveDate": days_ago(1)})
        ledger = ProgressionLedger(store, "u1")
        with pytest.raises(SQLAlchemyError):
            ledger.record(TODAY, 40)
        assert ledger.state.streak_days == 4
        assert ledger.unsent_fields == {"streak", "lastActiveDate"}

        ledger.record(TODAY, 40)
        assert store.writes == [{"streak": 4, "lastActiveDate": TODAY.isoformat()}]
        assert ledger.unsent_fields == frozenset()
        ledger.record(TODAY, 40)
        assert len(store.writes) == 1
