import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, List

from fastapi import Depends, FastAPI, HTTPException, UploadFile, File
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import HTMLResponse, StreamingResponse
from pymongo.errors import PyMongoError # type: ignore

from .config import (
    CORS_ORIGINS,
    EXPORT_SAMPLE_LIMIT,
    LOG_LEVEL,
    REPORT_DIR,
    REPORT_SAMPLE_LIMIT,
    SCORING_RULES,
    VIDEO_DIR,
)
from .database import close_client, ensure_indexes, get_database
from .errors import SessionNotFoundError
from .exports import build_csv_report_content, build_html_report_content
from .logs import log_proctor_event, setup_logging
from .models import Event, Session, utcnow
from .report import build_session_report, event_response
from .schemas import (
    CreateSessionRequest,
    EventBatchRequest,
    EventBatchResponse,
    EventResponse,
    ReportResponse,
    SessionPatchRequest,
    SessionResponse,
    SessionWithEventsResponse,
)
from .scoring import ScoringRule, load_rules
from .storage import BaseStorage, LocalStorage, get_storage
from .stores import EventStore, SessionStore

logger = logging.getLogger(__name__)

storage = get_storage(VIDEO_DIR, REPORT_DIR)
scoring_rules = load_rules(SCORING_RULES)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(LOG_LEVEL)
    try:
        await ensure_indexes()
    except PyMongoError as e:
        logger.warning(f"Could not create MongoDB indexes: {e}")
    yield
    close_client()


app = FastAPI(title="Proctoring Backend", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if isinstance(storage, LocalStorage):
    app.mount("/videos", StaticFiles(directory=str(VIDEO_DIR), html=False), name="videos")
    app.mount("/reports", StaticFiles(directory=str(REPORT_DIR), html=False), name="reports")


def get_session_store() -> SessionStore:
    return SessionStore(get_database().sessions)


def get_event_store() -> EventStore:
    return EventStore(get_database().events)


def get_blob_storage() -> BaseStorage:
    return storage


def get_scoring_rules() -> Dict[str, ScoringRule]:
    return scoring_rules


def session_response(session: Session) -> SessionResponse:
    return SessionResponse(**session.model_dump())


async def require_session(session_id: str, sessions: SessionStore) -> Session:
    session = await sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@app.post("/sessions", response_model=SessionResponse)
async def create_session(
    payload: CreateSessionRequest,
    sessions: SessionStore = Depends(get_session_store),
):
    session = await sessions.create(payload.candidate_name)
    log_proctor_event(session.id, "session_created", {"candidate": session.candidate_name or "-"})
    return session_response(session)


@app.get("/sessions", response_model=List[SessionResponse])
async def list_sessions(sessions: SessionStore = Depends(get_session_store)):
    return [session_response(s) for s in await sessions.list()]


@app.get("/sessions/{session_id}", response_model=SessionWithEventsResponse)
async def get_session(
    session_id: str,
    sessions: SessionStore = Depends(get_session_store),
    events: EventStore = Depends(get_event_store),
):
    session = await require_session(session_id, sessions)
    log = await events.query(session_id)
    return SessionWithEventsResponse(
        **session.model_dump(),
        events=[event_response(e) for e in log],
    )


@app.patch("/sessions/{session_id}", response_model=SessionResponse)
async def patch_session(
    session_id: str,
    payload: SessionPatchRequest,
    sessions: SessionStore = Depends(get_session_store),
):
    fields = payload.model_dump(exclude_unset=True)
    try:
        found = await sessions.patch(session_id, fields)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if not found:
        raise HTTPException(status_code=404, detail="Session not found")
    return session_response(await require_session(session_id, sessions))


@app.post("/sessions/{session_id}/end", response_model=SessionResponse)
async def end_session(
    session_id: str,
    sessions: SessionStore = Depends(get_session_store),
):
    session = await require_session(session_id, sessions)
    if session.end_time is None:
        await sessions.patch(session_id, {"end_time": utcnow()})
        session = await require_session(session_id, sessions)
        log_proctor_event(session_id, "session_ended")
    return session_response(session)


@app.post("/sessions/{session_id}/events", response_model=EventBatchResponse)
async def append_events(
    session_id: str,
    payload: EventBatchRequest,
    sessions: SessionStore = Depends(get_session_store),
    events: EventStore = Depends(get_event_store),
):
    await require_session(session_id, sessions)

    now = utcnow()
    batch = [
        Event(
            session_id=session_id,
            offset_ms=e.offset_ms,
            event_type=e.event_type,
            confidence=e.confidence,
            metadata=e.metadata,
            client_event_id=e.client_event_id,
            created_at=e.created_at or now,
        )
        for e in payload.events
    ]
    inserted = await events.append(session_id, batch)
    log_proctor_event(session_id, "events_stored", {"count": inserted}, level="debug")
    return EventBatchResponse(inserted=inserted)


@app.get("/sessions/{session_id}/events", response_model=List[EventResponse])
async def list_events(
    session_id: str,
    sessions: SessionStore = Depends(get_session_store),
    events: EventStore = Depends(get_event_store),
):
    await require_session(session_id, sessions)
    return [event_response(e) for e in await events.query(session_id)]


@app.post("/sessions/{session_id}/video", response_model=SessionResponse)
async def upload_video(
    session_id: str,
    file: UploadFile = File(...),
    sessions: SessionStore = Depends(get_session_store),
    blobs: BaseStorage = Depends(get_blob_storage),
):
    await require_session(session_id, sessions)

    suffix = Path(file.filename).suffix if file.filename else ".webm"
    filename = f"{session_id}{suffix or '.webm'}"
    content = await file.read()
    saved_ref = blobs.save_video_bytes(filename, content)

    await sessions.patch(session_id, {"recording_ref": str(saved_ref)})
    log_proctor_event(session_id, "recording_attached", {"ref": saved_ref, "bytes": len(content)})
    return session_response(await require_session(session_id, sessions))


async def _report(session_id, sessions, events, rules, sample_limit) -> ReportResponse:
    try:
        return await build_session_report(session_id, sessions, events, rules, sample_limit)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@app.get("/sessions/{session_id}/report", response_model=ReportResponse)
async def get_report(
    session_id: str,
    sessions: SessionStore = Depends(get_session_store),
    events: EventStore = Depends(get_event_store),
    rules: Dict[str, ScoringRule] = Depends(get_scoring_rules),
):
    return await _report(session_id, sessions, events, rules, REPORT_SAMPLE_LIMIT)


@app.get("/sessions/{session_id}/report.csv")
async def download_report_csv(
    session_id: str,
    sessions: SessionStore = Depends(get_session_store),
    events: EventStore = Depends(get_event_store),
    rules: Dict[str, ScoringRule] = Depends(get_scoring_rules),
    blobs: BaseStorage = Depends(get_blob_storage),
):
    report = await _report(session_id, sessions, events, rules, EXPORT_SAMPLE_LIMIT)
    csv_content = build_csv_report_content(report).encode("utf-8")
    blobs.save_report_bytes(f"report_{session_id}.csv", csv_content, "text/csv")
    return StreamingResponse(
        iter([csv_content]),
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f"attachment; filename=report_{session_id}.csv",
            "Cache-Control": "no-store",
        },
    )


@app.get("/sessions/{session_id}/report.html", response_class=HTMLResponse)
async def download_report_html(
    session_id: str,
    sessions: SessionStore = Depends(get_session_store),
    events: EventStore = Depends(get_event_store),
    rules: Dict[str, ScoringRule] = Depends(get_scoring_rules),
    blobs: BaseStorage = Depends(get_blob_storage),
):
    report = await _report(session_id, sessions, events, rules, EXPORT_SAMPLE_LIMIT)
    html = build_html_report_content(report)
    blobs.save_report_bytes(f"report_{session_id}.html", html.encode("utf-8"), "text/html")
    return HTMLResponse(html)


@app.get("/videos/{name}")
async def get_video(name: str, blobs: BaseStorage = Depends(get_blob_storage)):
    if isinstance(blobs, LocalStorage):
        raise HTTPException(status_code=404, detail="Use /videos static mount")
    try:
        data = blobs.open_bytes(f"videos/{name}")
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Video not found")
    media = "video/mp4" if name.endswith(".mp4") else "video/webm"
    return StreamingResponse(iter([data]), media_type=media)


@app.get("/reports/{name}")
async def get_report_file(name: str, blobs: BaseStorage = Depends(get_blob_storage)):
    if isinstance(blobs, LocalStorage):
        raise HTTPException(status_code=404, detail="Use /reports static mount")
    try:
        data = blobs.open_bytes(f"reports/{name}")
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Report not found")
    media = "text/html" if name.endswith(".html") else "text/csv"
    return StreamingResponse(iter([data]), media_type=media)


@app.get("/")
def root():
    return {"status": "ok", "message": "Proctoring backend running"}
