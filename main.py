import asyncio
import datetime as dt
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query, Body, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from config import LOG_LEVEL, TELEGRAM_CHAT_ID
from db import engine, SessionLocal
from models import Base
from rules import InvalidMetricError
from session import SessionController
from store import DocumentStore
from reports import fetch_insight, score_history, weekly_summary
from telegram_utils import (
    send_telegram_message,
    format_report_for_telegram,
    format_snapshot_for_telegram,
)
from wearables import GOOGLE_FIT

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("cognitive")

Base.metadata.create_all(bind=engine)

store = DocumentStore(SessionLocal)

# uid -> live session; a session ends on explicit stop (logout)
SESSIONS = {}

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    for uid in list(SESSIONS):
        await SESSIONS.pop(uid).stop()

app = FastAPI(lifespan=lifespan)

@app.exception_handler(SQLAlchemyError)
async def store_unavailable(request: Request, exc: SQLAlchemyError):
    logger.warning("Store unavailable for %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Store unavailable", "syncDegraded": True})


class Interaction(BaseModel):
    signal: str
    at_ms: Optional[int] = None

class Visibility(BaseModel):
    visible: bool

class MetricEdit(BaseModel):
    value: Any

class ExamIn(BaseModel):
    title: str
    total_marks: float
    score: Optional[float] = None

class WearableLink(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None


def get_session(uid: str) -> SessionController:
    session = SESSIONS.get(uid)
    if not session:
        raise HTTPException(404, f"No active session for '{uid}'")
    return session

@app.post("/sessions/{uid}/start")
async def start_session(uid: str):
    session = SESSIONS.get(uid)
    if not session:
        session = SessionController(store, uid)
        SESSIONS[uid] = session
    await session.start()
    return session.snapshot()

@app.post("/sessions/{uid}/stop")
async def stop_session(uid: str):
    session = SESSIONS.pop(uid, None)
    if not session:
        return {"status": "not running"}
    await session.stop()
    return {"status": "stopped"}

@app.post("/sessions/{uid}/interaction")
async def record_interaction(uid: str, payload: Interaction):
    accepted = get_session(uid).record_interaction(payload.signal, payload.at_ms)
    return {"accepted": accepted}

@app.post("/sessions/{uid}/visibility")
async def set_visibility(uid: str, payload: Visibility):
    get_session(uid).set_visible(payload.visible)
    return {"visible": payload.visible}

@app.get("/sessions/{uid}/metrics")
async def current_metrics(uid: str):
    return get_session(uid).snapshot()

@app.put("/sessions/{uid}/metrics/{field}")
async def edit_metric(uid: str, field: str, payload: MetricEdit):
    session = get_session(uid)
    try:
        return session.edit(field, payload.value)
    except InvalidMetricError as e:
        raise HTTPException(422, str(e))

@app.post("/sessions/{uid}/wearable/sync")
async def wearable_sync(uid: str):
    session = get_session(uid)
    status = await session.sync_wearable()
    return {"status": status, **session.snapshot()}

@app.post("/users/{uid}/wearable/link")
async def link_wearable(uid: str, payload: WearableLink):
    store.save_token(uid, GOOGLE_FIT, payload.access_token, payload.refresh_token, payload.expires_at)
    session = SESSIONS.get(uid)
    if session:
        # simulator stops folding as soon as a wearable is linked
        session.wearable_linked = True
    return {"status": "google fit connected"}

@app.post("/users/{uid}/exams")
async def add_exam(uid: str, payload: ExamIn):
    if payload.total_marks <= 0:
        raise HTTPException(422, "total_marks must be positive")
    if payload.score is not None and payload.score < 0:
        raise HTTPException(422, "score must be non-negative")
    exam_id = store.add_exam(uid, payload.title, payload.total_marks, payload.score)
    session = SESSIONS.get(uid)
    if session:
        session.recompute()
    return {"id": exam_id}

@app.get("/users/{uid}/history")
async def history(uid: str, days: int = Query(default=30, ge=1, le=366)):
    return score_history(store, uid, dt.date.today(), days)

@app.post("/users/{uid}/report/weekly")
async def weekly_report(uid: str, payload: dict = Body(default={})):
    summary = weekly_summary(store, uid, dt.date.today())
    insight = await asyncio.to_thread(fetch_insight, summary, payload.get("name"))
    sent = await asyncio.to_thread(send_telegram_message, format_report_for_telegram(summary, insight))
    return {"summary": summary, "insight": insight, "sent": sent}

@app.post("/telegram/webhook")
async def telegram_webhook(request: Request):
    data = await request.json()
    message = data.get("message", {})
    chat_id = str(message.get("chat", {}).get("id"))
    text = message.get("text", "").strip().lower()

    # Only respond to your own chat
    if chat_id != TELEGRAM_CHAT_ID:
        logger.info("Ignoring message from chat %s", chat_id)
        return {"ok": True}

    parts = text.split()
    uid = parts[-1] if len(parts) >= 2 else None
    session = SESSIONS.get(uid) if uid else None

    if text.startswith("log sleep"):
        # Example: "log sleep 7.5h alice"
        if len(parts) >= 4 and session:
            try:
                session.edit("sleep", parts[2].replace("h", "").replace(",", "."))
                reply = f"Logged sleep: {session.sync.metrics.sleep} h"
            except InvalidMetricError:
                reply = "Couldn't parse sleep amount. Try 'log sleep 7.5h <user>'"
        else:
            reply = "Usage: log sleep 7.5h <user> (session must be running)"
    elif parts and parts[0] == "summary":
        if session:
            reply = format_snapshot_for_telegram(session.snapshot())
        else:
            reply = "Usage: summary <user> (session must be running)"
    else:
        reply = "Commands: log sleep [hours] [user], summary [user]"

    # requests is blocking; keep it off the loop that drives the activity tick
    await asyncio.to_thread(send_telegram_message, reply)
    return {"ok": True}
