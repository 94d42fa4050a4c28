# wearables.py
import datetime as dt
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from config import GOOGLE_FIT_API

logger = logging.getLogger(__name__)

GOOGLE_FIT = "google_fit"
DAY_MS = 86_400_000
HR_WINDOW_MS = 2 * 60 * 60 * 1000
# sleep segment types that are not actual sleep: 1 awake, 3 out of bed
NON_SLEEP_SEGMENTS = {1, 3}


class WearableError(Exception):
    """The wearable provider could not be reached or rejected the token."""


@dataclass(frozen=True)
class WearableReading:
    steps: int
    calories: int
    avg_hr: int
    sleep_hours: float


def _post_aggregate(client: httpx.Client, token: str, body: dict) -> dict:
    r = client.post(GOOGLE_FIT_API, json=body, headers={"Authorization": f"Bearer {token}"})
    if r.status_code == 401:
        raise WearableError("Token expired")
    if r.status_code != 200:
        raise WearableError(f"Google Fit returned {r.status_code}")
    return r.json()


def parse_daily_bucket(daily: dict) -> Dict[str, float]:
    steps = 0
    calories = 0.0
    sleep_hours = 0.0
    buckets = daily.get("bucket") or []
    if not buckets:
        return {"steps": 0, "calories": 0.0, "sleep_hours": 0.0}
    for ds in buckets[0].get("dataset", []):
        source = ds.get("dataSourceId", "")
        points = ds.get("point", [])
        if "step_count" in source:
            steps = sum((p.get("value") or [{}])[0].get("intVal", 0) for p in points)
        elif "calories" in source:
            calories = sum((p.get("value") or [{}])[0].get("fpVal", 0.0) for p in points)
        elif "sleep" in source:
            for p in points:
                segment = (p.get("value") or [{}])[0].get("intVal")
                if segment and segment not in NON_SLEEP_SEGMENTS:
                    start_ms = int(p["startTimeNanos"]) / 1_000_000
                    end_ms = int(p["endTimeNanos"]) / 1_000_000
                    sleep_hours += (end_ms - start_ms) / 3_600_000
    return {"steps": steps, "calories": calories, "sleep_hours": sleep_hours}


def parse_heart_rate(hr: dict) -> float:
    buckets = hr.get("bucket") or []
    if not buckets:
        return 0.0
    for ds in buckets[0].get("dataset", []):
        if "heart_rate" in ds.get("dataSourceId", "") and ds.get("point"):
            return (ds["point"][0].get("value") or [{}])[0].get("fpVal", 0.0)
    return 0.0


def fetch_google_fit(token: str, now: Optional[dt.datetime] = None,
                     client: Optional[httpx.Client] = None) -> WearableReading:
    now = now or dt.datetime.now()
    now_ms = int(now.timestamp() * 1000)
    start_of_day_ms = int(dt.datetime.combine(now.date(), dt.time.min).timestamp() * 1000)

    daily_body = {
        "aggregateBy": [
            {"dataTypeName": "com.google.step_count.delta"},
            {"dataTypeName": "com.google.calories.expended"},
            {"dataTypeName": "com.google.sleep.segment"},
        ],
        "bucketByTime": {"durationMillis": DAY_MS},
        "startTimeMillis": start_of_day_ms,
        "endTimeMillis": now_ms,
    }
    hr_body = {
        "aggregateBy": [{"dataTypeName": "com.google.heart_rate.bpm"}],
        "bucketByTime": {"durationMillis": HR_WINDOW_MS},
        "startTimeMillis": now_ms - HR_WINDOW_MS,
        "endTimeMillis": now_ms,
    }

    owns_client = client is None
    client = client or httpx.Client(timeout=15)
    try:
        daily = parse_daily_bucket(_post_aggregate(client, token, daily_body))
        avg_hr = parse_heart_rate(_post_aggregate(client, token, hr_body))
    except httpx.HTTPError as e:
        raise WearableError(f"Google Fit request failed: {e}") from e
    finally:
        if owns_client:
            client.close()

    return WearableReading(
        steps=int(round(daily["steps"])),
        calories=int(round(daily["calories"])),
        avg_hr=int(round(avg_hr)),
        sleep_hours=round(daily["sleep_hours"], 1),
    )


def reading_changes(reading: WearableReading) -> Dict[str, Any]:
    changes = {
        "steps": reading.steps,
        "calories": reading.calories,
        "exercise": round(reading.steps / 1000, 2),
    }
    if reading.avg_hr:
        changes["heartRate"] = reading.avg_hr
    if reading.sleep_hours:
        changes["sleep"] = reading.sleep_hours
    return changes


def linked_token(store, uid: str) -> Optional[str]:
    row = store.get_token(uid, GOOGLE_FIT)
    if not row or not row.access_token:
        return None
    if row.expires_at and time.time() > row.expires_at:
        logger.info("Google Fit token for %s expired", uid)
        return None
    return row.access_token
