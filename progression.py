# progression.py
import datetime as dt
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

LEVEL_DIVISOR = 250
STREAK_WEIGHT = 100


class ProgressionStatus(str, Enum):
    NEVER_ACTIVE = "NeverActive"
    ACTIVE_TODAY = "ActiveToday"
    ACTIVE_YESTERDAY = "ActiveYesterday"
    LAPSED = "Lapsed"


@dataclass(frozen=True)
class ProgressionState:
    streak_days: int = 0
    level: int = 0
    last_active_date: Optional[str] = None  # "yyyy-MM-dd"

    def to_document(self) -> dict:
        return {
            "streak": self.streak_days,
            "level": self.level,
            "lastActiveDate": self.last_active_date,
        }

    @classmethod
    def from_document(cls, doc: Optional[dict]) -> "ProgressionState":
        if not doc:
            return cls()
        return cls(
            streak_days=int(doc.get("streak") or 0),
            level=int(doc.get("level") or 0),
            last_active_date=doc.get("lastActiveDate"),
        )


def compute_level(streak_days: int, score: int) -> int:
    return (streak_days * STREAK_WEIGHT + score) // LEVEL_DIVISOR


def status_for(state: ProgressionState, today: dt.date) -> ProgressionStatus:
    if not state.last_active_date:
        return ProgressionStatus.NEVER_ACTIVE
    last = dt.date.fromisoformat(state.last_active_date)
    if last == today:
        return ProgressionStatus.ACTIVE_TODAY
    if last == today - dt.timedelta(days=1):
        return ProgressionStatus.ACTIVE_YESTERDAY
    return ProgressionStatus.LAPSED


def advance_streak(state: ProgressionState, today: dt.date) -> Tuple[ProgressionState, bool]:
    """Day-boundary transition. Returns the new state and whether the streak was reset."""
    status = status_for(state, today)
    if status is ProgressionStatus.ACTIVE_TODAY:
        return state, False
    if status is ProgressionStatus.ACTIVE_YESTERDAY:
        return replace(state, streak_days=state.streak_days + 1, last_active_date=today.isoformat()), False
    return replace(state, streak_days=1, last_active_date=today.isoformat()), True


def apply_level(state: ProgressionState, score: int, streak_reset: bool = False) -> ProgressionState:
    level = compute_level(state.streak_days, score)
    # only a streak reset may pull the level down
    if not streak_reset:
        level = max(level, state.level)
    return replace(state, level=level)


class ProgressionLedger:
    """Streak/level bookkeeping for one user, persisted through the document store.

    With ``store=None`` the ledger only keeps its state in memory. Fields whose
    write failed stay unsent and go out again with the next ``record()``.
    """

    def __init__(self, store, uid: str, state: Optional[ProgressionState] = None):
        self.store = store
        self.uid = uid
        if state is None:
            state = ProgressionState.from_document(store.get_user(uid))
        self.state = state
        self._unsent: Dict[str, Any] = {}

    @property
    def unsent_fields(self) -> frozenset:
        return frozenset(self._unsent)

    def record(self, today: dt.date, score: int) -> ProgressionState:
        """Run the day-boundary check and recompute the level for ``score``.

        Safe to call on every score update: a second call on the same day never
        bumps the streak again, and nothing is written unless something changed
        or an earlier write is still outstanding. Store errors propagate.
        """
        before = self.state
        advanced, reset = advance_streak(before, today)
        after = apply_level(advanced, score, streak_reset=reset)
        self.state = after
        if self.store is None:
            return after
        doc_before, doc_after = before.to_document(), after.to_document()
        changes = {k: v for k, v in doc_after.items() if doc_before[k] != v}
        if changes:
            logger.info("Progression for %s: %s", self.uid, changes)
            self._unsent.update(changes)
        if self._unsent:
            self.store.merge_user(self.uid, dict(self._unsent))
            self._unsent.clear()
        return after

    def status(self, today: dt.date) -> ProgressionStatus:
        return status_for(self.state, today)
