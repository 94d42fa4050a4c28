# reports.py
import datetime as dt
import logging
from typing import Any, Dict, List, Optional

import httpx

from config import INSIGHT_SERVICE_URL

logger = logging.getLogger(__name__)

FALLBACK_INSIGHT = "Keep pushing forward."
REPORT_DAYS = 7


def score_history(store, uid: str, today: dt.date, days: int = 30) -> List[Dict[str, Any]]:
    """Last ``days`` days ending today, zero-filled where nothing was recorded."""
    start = today - dt.timedelta(days=days - 1)
    recorded = store.daily_history(uid, start.isoformat())
    history = []
    for i in range(days):
        day = (start + dt.timedelta(days=i)).isoformat()
        doc = recorded.get(day) or {}
        history.append({"date": day, "score": doc.get("score") or 0})
    return history


def weekly_summary(store, uid: str, today: dt.date) -> Dict[str, Any]:
    since = (today - dt.timedelta(days=REPORT_DAYS)).isoformat()
    docs = list(store.daily_history(uid, since).values())
    count = len(docs) or 1

    def total(key):
        return sum(d.get(key) or 0 for d in docs)

    return {
        "days": len(docs),
        "average_score": round(total("score") / count, 1),
        "total_deep_work": round(total("activeFocusTime"), 1),
        "total_study": round(total("study"), 1),
        "average_sleep": round(total("sleep") / count, 1),
        "report_date": today.isoformat(),
    }


def summary_prompt(summary: Dict[str, Any], name: Optional[str] = None) -> str:
    who = name or "this student"
    return (
        f"Weekly stats for {who}: avg score {summary['average_score']}, "
        f"deep work {summary['total_deep_work']}h, study {summary['total_study']}h, "
        f"avg sleep {summary['average_sleep']}h. "
        "Give a 2-sentence encouraging summary of their cognitive rhythm."
    )


def fetch_insight(summary: Dict[str, Any], name: Optional[str] = None,
                  url: Optional[str] = INSIGHT_SERVICE_URL,
                  client: Optional[httpx.Client] = None) -> str:
    """Short natural-language insight from the AI text service, or a fixed fallback.

    The text is decoration only; it never feeds back into score or progression.
    """
    if not url or not summary.get("days"):
        return FALLBACK_INSIGHT
    owns_client = client is None
    client = client or httpx.Client(timeout=15)
    try:
        r = client.post(url, json={"prompt": summary_prompt(summary, name)})
        r.raise_for_status()
        text = (r.json().get("text") or "").strip()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Insight service failed: %s", e)
        return FALLBACK_INSIGHT
    finally:
        if owns_client:
            client.close()
    return text or FALLBACK_INSIGHT
