"""
Rehearsal HTTP API.

This module exposes:
- Session API: start, complete, active session, history
- Read API: conversation transcript and observability events for a session
- Voice API: one-shot transcription and the streamed voice turn

Every route is scoped to the trainee named by the X-Trainee-Id header, which
the upstream identity layer sets. Sessions of other trainees look like
unknown sessions.
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timezone
from typing import AsyncIterator, List, Literal, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, model_validator

from logging_setup import get_logger, Component
from voice_turn.errors import RehearsalError
from voice_turn.generation import ReplyMode
from voice_turn.instructions import get_completion_text, get_welcome_text
from voice_turn.pipeline import TurnRequest
from voice_turn.transcription import decode_audio_payload
from .errors import NotFound, Unauthorized
from .services import Services
from .session import Session

logger = get_logger(Component.API)

NDJSON_MEDIA_TYPE = "application/x-ndjson"


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_trainee(x_trainee_id: Optional[str] = Header(None, alias="X-Trainee-Id")) -> str:
    if not x_trainee_id or not x_trainee_id.strip():
        raise Unauthorized("Missing X-Trainee-Id header")
    return x_trainee_id.strip()


router = APIRouter(dependencies=[Depends(require_trainee)])


# --- Models ---


class SessionView(BaseModel):
    """What the trainee may see of a session: never the part number or breadcrumb."""
    session_id: str
    status: str
    machine_model: str
    part_description: str
    created_at: str
    completed_at: Optional[str] = None

    @classmethod
    def from_session(cls, session: Session) -> "SessionView":
        return cls(
            session_id=session.session_id,
            status=session.status.value,
            machine_model=session.subject.machine_model,
            part_description=session.subject.part_description,
            created_at=session.created_at.isoformat(),
            completed_at=session.completed_at.isoformat() if session.completed_at else None,
        )


class SessionEnvelope(BaseModel):
    session: SessionView


class SessionList(BaseModel):
    sessions: List[SessionView]


class StartSessionRequest(BaseModel):
    confirm: str = Field(..., description="Must equal the confirmation phrase exactly")


class TranscribeRequest(BaseModel):
    audio: str = Field(..., min_length=1, description="Base64-encoded recording")


class TranscribeResponse(BaseModel):
    transcription: str


class TurnBody(BaseModel):
    """One voice turn. Exactly one of audio, text or announcement."""
    session_id: Optional[str] = Field(None, min_length=1)
    mode: ReplyMode = ReplyMode.INTERACTIVE
    audio: Optional[str] = Field(None, min_length=1, description="Base64-encoded recording")
    text: Optional[str] = Field(None, min_length=1)
    announcement: Optional[Literal["welcome", "completion"]] = None

    @model_validator(mode="after")
    def _check_input(self) -> "TurnBody":
        provided = [v for v in (self.audio, self.text, self.announcement) if v is not None]
        if len(provided) != 1:
            raise ValueError("Exactly one of audio, text or announcement is required")
        if self.text is not None and not self.text.strip():
            raise ValueError("text must not be blank")
        if self.mode is ReplyMode.SCRIPTED and self.audio is not None:
            raise ValueError("Scripted turns take text or an announcement, not audio")
        if self.mode is ReplyMode.INTERACTIVE:
            if self.announcement is not None:
                raise ValueError("Announcements are scripted turns")
            if not self.session_id:
                raise ValueError("Interactive turns need a session_id")
        return self


# --- Helpers ---


async def _owned_session(services: Services, session_id: str, trainee: str) -> Session:
    session = await services.sessions.get(session_id)
    if session.owner != trainee:
        raise NotFound(f"Session {session_id} not found")
    return session


def _ndjson(payload: dict) -> str:
    return json.dumps(payload, ensure_ascii=False) + "\n"


# --- Session API ---


@router.get("/sessions/active", response_model=SessionEnvelope)
async def get_active_session(
    trainee: str = Depends(require_trainee),
    services: Services = Depends(get_services),
) -> SessionEnvelope:
    session = await services.sessions.get_active(trainee)
    if session is None:
        raise NotFound("No active session")
    return SessionEnvelope(session=SessionView.from_session(session))


@router.post("/sessions", response_model=SessionEnvelope, status_code=201)
async def start_session(
    req: StartSessionRequest,
    trainee: str = Depends(require_trainee),
    services: Services = Depends(get_services),
) -> SessionEnvelope:
    session = await services.sessions.start(trainee, req.confirm)
    return SessionEnvelope(session=SessionView.from_session(session))


@router.patch("/sessions/{session_id}/complete", response_model=SessionEnvelope)
async def complete_session(
    session_id: str,
    trainee: str = Depends(require_trainee),
    services: Services = Depends(get_services),
) -> SessionEnvelope:
    await _owned_session(services, session_id, trainee)
    session = await services.sessions.complete(session_id)
    return SessionEnvelope(session=SessionView.from_session(session))


@router.get("/sessions", response_model=SessionList)
async def list_sessions(
    trainee: str = Depends(require_trainee),
    services: Services = Depends(get_services),
) -> SessionList:
    """The caller's sessions, newest first."""
    sessions = await services.sessions.history(trainee)
    return SessionList(sessions=[SessionView.from_session(s) for s in sessions])


# --- Read API ---


@router.get("/sessions/{session_id}/conversation")
async def get_conversation(
    session_id: str,
    trainee: str = Depends(require_trainee),
    services: Services = Depends(get_services),
) -> dict:
    await _owned_session(services, session_id, trainee)
    entries = await services.conversations.list(session_id)
    return {
        "session_id": session_id,
        "entries": [e.to_dict() for e in entries],
        "count": len(entries),
    }


@router.get("/sessions/{session_id}/events")
async def get_session_events(
    session_id: str,
    event_type: Optional[str] = Query(None, description="Filter by event_type"),
    since: Optional[datetime] = Query(None, description="ISO timestamp (inclusive)"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Max events to return"),
    trainee: str = Depends(require_trainee),
    services: Services = Depends(get_services),
) -> dict:
    """Structured events for a session, oldest first."""
    await _owned_session(services, session_id, trainee)
    if since is not None and since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    events = services.events.query(
        session_id=session_id,
        event_type=event_type,
        since=since,
        limit=limit,
    )
    return {
        "session_id": session_id,
        "events": events,
        "count": len(events),
    }


# --- Voice API ---


@router.post("/transcribe", response_model=TranscribeResponse)
async def transcribe(
    req: TranscribeRequest,
    services: Services = Depends(get_services),
) -> TranscribeResponse:
    audio = decode_audio_payload(req.audio)
    text = await services.transcriber.transcribe(audio)
    return TranscribeResponse(transcription=text)


@router.post("/turns")
async def run_turn(
    body: TurnBody,
    trainee: str = Depends(require_trainee),
    services: Services = Depends(get_services),
):
    """
    Run one voice turn and stream its audio as NDJSON lines {"audio": <base64>}.

    Failures before the first segment is ready are answered with the
    structured error and its status code. A failure after streaming started
    adds one {"error": {...}} line before the stream closes. A turn pre-empted
    by a newer capture ends the same way, with category turn.cancelled. A
    stream with no lines and no error is a zero-length reply.
    """
    text = body.text
    if body.announcement == "welcome":
        text = get_welcome_text(services.scenario)
    elif body.announcement == "completion":
        text = get_completion_text(services.scenario)

    request = TurnRequest(
        owner=trainee,
        mode=body.mode,
        session_id=body.session_id,
        audio=decode_audio_payload(body.audio) if body.audio is not None else None,
        text=text,
    )
    turn, audio_stream = services.pipeline.start(request)

    # Run up to the first segment here so early failures get a real status code.
    try:
        first: Optional[bytes] = await audio_stream.__anext__()
    except StopAsyncIteration:
        first = None

    async def ndjson_lines() -> AsyncIterator[str]:
        try:
            if first is None:
                return
            yield _ndjson({"audio": base64.b64encode(first).decode("ascii")})
            async for audio in audio_stream:
                yield _ndjson({"audio": base64.b64encode(audio).decode("ascii")})
        except RehearsalError as e:
            yield _ndjson({"error": e.to_dict()})
        except Exception as e:
            logger.with_turn(turn.turn_id).exception(
                "Turn stream failed", error_class=type(e).__name__
            )
            yield _ndjson({"error": {"category": "internal.error", "message": "Internal error"}})
        finally:
            await audio_stream.aclose()

    return StreamingResponse(ndjson_lines(), media_type=NDJSON_MEDIA_TYPE)
