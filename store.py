"""
Per-user document store on top of SQLAlchemy.

Documents are exposed with their camelCase field names:

    users/{uid}                      -> streak, level, lastActiveDate
    users/{uid}/dailyStats/{day}     -> sleep, study, ..., score, burnoutRisk, date

Writes merge: only the fields passed in are touched, a missing row is created.
Subscribers of a daily document are called with the full document after every
committed write to it.
"""

import datetime as dt
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from models import DailyStats, ExamRecord, TokenStore, UserProfile
from rules import DOCUMENT_FIELDS

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]

USER_FIELDS = {"streak": "streak", "level": "level", "lastActiveDate": "last_active_date"}


def _daily_document(row: DailyStats) -> Dict[str, Any]:
    doc = {key: getattr(row, attr) for key, attr in DOCUMENT_FIELDS.items()}
    doc["date"] = row.date
    return doc


class DocumentStore:
    def __init__(self, session_factory, clock: Callable[[], dt.datetime] = None):
        self.session_factory = session_factory
        self.clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))
        self._listeners: Dict[tuple, List[Listener]] = defaultdict(list)

    # --- users/{uid} ---

    def get_user(self, uid: str) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db:
            row = db.query(UserProfile).filter_by(uid=uid).one_or_none()
            if not row:
                return None
            return {key: getattr(row, attr) for key, attr in USER_FIELDS.items()}

    def merge_user(self, uid: str, fields: Dict[str, Any]) -> None:
        with self.session_factory() as db:
            row = db.query(UserProfile).filter_by(uid=uid).one_or_none()
            if not row:
                row = UserProfile(uid=uid, streak=0, level=0)
            for key, value in fields.items():
                setattr(row, USER_FIELDS[key], value)
            db.add(row)
            db.commit()

    # --- users/{uid}/dailyStats/{day} ---

    def get_daily(self, uid: str, day: str) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db:
            row = db.query(DailyStats).filter_by(uid=uid, day=day).one_or_none()
            return _daily_document(row) if row else None

    def merge_daily(self, uid: str, day: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        with self.session_factory() as db:
            row = db.query(DailyStats).filter_by(uid=uid, day=day).one_or_none()
            if not row:
                row = DailyStats(uid=uid, day=day)
            for key, value in fields.items():
                if key in DOCUMENT_FIELDS:
                    setattr(row, DOCUMENT_FIELDS[key], value)
            row.date = self.clock()
            db.add(row)
            db.commit()
            doc = _daily_document(row)
        self._notify(uid, day, doc)
        return doc

    def daily_history(self, uid: str, since: str) -> Dict[str, Dict[str, Any]]:
        """Daily documents on or after ``since``, keyed by day."""
        with self.session_factory() as db:
            rows = (
                db.query(DailyStats)
                .filter(DailyStats.uid == uid, DailyStats.day >= since)
                .order_by(DailyStats.day)
                .all()
            )
            return {r.day: _daily_document(r) for r in rows}

    def subscribe_daily(self, uid: str, day: str, listener: Listener) -> Callable[[], None]:
        key = (uid, day)
        self._listeners[key].append(listener)

        def unsubscribe():
            listeners = self._listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(key, None)

        return unsubscribe

    def _notify(self, uid: str, day: str, doc: Dict[str, Any]) -> None:
        for listener in list(self._listeners.get((uid, day), [])):
            try:
                listener(dict(doc))
            except Exception:
                logger.exception("Daily listener failed for %s/%s", uid, day)

    # --- exams ---

    def add_exam(self, uid: str, title: str, total_marks: float,
                 score: Optional[float] = None) -> int:
        with self.session_factory() as db:
            row = ExamRecord(uid=uid, title=title, total_marks=total_marks, score=score)
            db.add(row)
            db.commit()
            return row.id

    def list_exams(self, uid: str) -> List[ExamRecord]:
        with self.session_factory() as db:
            return db.query(ExamRecord).filter_by(uid=uid).order_by(ExamRecord.id).all()

    # --- wearable tokens ---

    def get_token(self, uid: str, provider: str) -> Optional[TokenStore]:
        with self.session_factory() as db:
            return db.query(TokenStore).filter_by(uid=uid, provider=provider).one_or_none()

    def save_token(self, uid: str, provider: str, access_token: str,
                   refresh_token: Optional[str] = None, expires_at: Optional[int] = None) -> None:
        with self.session_factory() as db:
            row = db.query(TokenStore).filter_by(uid=uid, provider=provider).one_or_none()
            if not row:
                row = TokenStore(uid=uid, provider=provider)
            row.access_token = access_token
            row.refresh_token = refresh_token or row.refresh_token
            row.expires_at = expires_at
            db.add(row)
            db.commit()
