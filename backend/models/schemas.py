"""
Pydantic schemas for the interview service.
Covers the WebSocket wire envelope and the HTTP response bodies.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class InterviewState(str, Enum):
    """Lifecycle states of a live interview session."""
    IDLE = "idle"
    STARTING = "starting"
    AWAITING_ANSWER = "awaiting_answer"
    PROCESSING_ANSWER = "processing_answer"
    FINISHED = "finished"

    @classmethod
    def pending_question(cls) -> List["InterviewState"]:
        """States in which a question request is in flight."""
        return [cls.STARTING, cls.PROCESSING_ANSWER]


# ============================================================
# WebSocket envelope
# ============================================================

class ClientEvent(str, Enum):
    """Control event names accepted from the participant."""
    JOIN = "join-room"
    START = "start-interview"
    END_ANSWER = "end-answer"
    DISCONNECT = "disconnect"


class ServerEvent(str, Enum):
    """Event names pushed to the participant."""
    LIVE_TRANSCRIPT = "live-transcript"
    NEW_QUESTION = "new-question"
    INTERVIEW_FINISHED = "interview-finished"
    TRANSCRIPTION_ERROR = "transcription-error"
    PROTOCOL_ERROR = "protocol-error"


class WireMessage(BaseModel):
    """A JSON text frame: {"event": ..., "data": ...}."""
    event: str = Field(..., min_length=1)
    data: Any = None


# ============================================================
# HTTP responses
# ============================================================

class SessionStatus(BaseModel):
    """Snapshot of one live session, for the debug endpoint."""
    session_id: str
    application_id: str
    state: InterviewState
    question_count: int
    max_questions: int
    transcriber_live: bool
    transcriber_ready: bool
    buffered_characters: int


class HealthResponse(BaseModel):
    status: str
    version: str
    service: str
    active_sessions: int


class TranscriptionResponse(BaseModel):
    """Result of a one-shot file transcription."""
    transcript: str
    language: Optional[str] = None
    duration_seconds: Optional[float] = None
    segments: List[Dict[str, Any]] = Field(default_factory=list)
