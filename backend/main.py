"""
Live AI Interviewer - FastAPI Backend

Real-time spoken mock interview over a WebSocket:
- Deepgram live transcription with utterance-end detection
- LLM (llama.cpp /completion) or scripted question generation
- One turn-taking state machine per connection

Also exposes one-shot file transcription with faster-whisper.
"""
import sys
import os
import asyncio
import logging
import tempfile
from typing import List

from fastapi import FastAPI, UploadFile, File, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from utils.config import config
from models.schemas import HealthResponse, SessionStatus, TranscriptionResponse
from interview.agents import build_question_generator
from interview.gateway import InterviewGateway
from interview.store import SessionStore
from speech.deepgram_stt import deepgram_transcriber_factory

logging.basicConfig(
    level=getattr(logging, config.server.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# ================================================================
# FastAPI App Initialization
# ================================================================

app = FastAPI(
    title="Live AI Interviewer API",
    description="Real-time spoken mock interviews with streaming transcription",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ================================================================
# Whisper Model (file transcription)
# ================================================================

# Lazy loading of Whisper model to avoid startup delay
_whisper_model = None


def get_whisper_model():
    """Lazy load the Whisper model."""
    global _whisper_model
    if _whisper_model is None:
        from faster_whisper import WhisperModel
        _whisper_model = WhisperModel(
            config.whisper.model_path,
            device=config.whisper.device,
            compute_type=config.whisper.compute_type
        )
    return _whisper_model


def _transcribe_file(audio_path: str) -> TranscriptionResponse:
    whisper = get_whisper_model()
    segments, info = whisper.transcribe(audio_path)
    # segments is a generator; the model runs while it is consumed
    segments = list(segments)
    return TranscriptionResponse(
        transcript=" ".join(s.text.strip() for s in segments).strip(),
        language=getattr(info, "language", None),
        duration_seconds=getattr(info, "duration", None),
        segments=[{"start": s.start, "end": s.end, "text": s.text.strip()} for s in segments],
    )


# ================================================================
# Session Management
# ================================================================

# One entry per connected participant that has joined a room
session_store = SessionStore()

if not config.transcription.api_key:
    logger.error("DEEPGRAM_API_KEY is not set; live transcription will fail for every session")

# Worst case for one LLM question: every attempt times out, plus 1s, 2s, ... backoff
_retries = config.llm.max_retries
_llm_worst_case = config.llm.timeout * (_retries + 1) + _retries * (_retries + 1) / 2
if config.interview.question_source == "llm" and not (
    _llm_worst_case <= config.interview.llm_budget < config.interview.question_timeout
):
    logger.warning(
        f"LLM timing is inconsistent: requests may take {_llm_worst_case}s, "
        f"budget is {config.interview.llm_budget}s, question timeout is {config.interview.question_timeout}s"
    )

gateway = InterviewGateway(
    question_generator=build_question_generator(),
    transcriber_factory=deepgram_transcriber_factory,
    store=session_store,
    max_questions=config.interview.max_questions,
)


# ================================================================
# API Endpoints
# ================================================================

@app.get("/", response_model=HealthResponse)
async def root():
    """Health check endpoint."""
    return HealthResponse(
        status="running",
        version=VERSION,
        service="Live AI Interviewer",
        active_sessions=len(session_store),
    )


@app.websocket("/ws/interview")
async def interview_socket(websocket: WebSocket):
    """Live interview channel. See interview.gateway for the message protocol."""
    await gateway.handle(websocket)


@app.get("/debug/sessions", response_model=List[SessionStatus])
async def debug_sessions():
    """List live sessions (debug only)."""
    if not config.server.debug_endpoints:
        raise HTTPException(status_code=404, detail="Not Found")

    return [
        SessionStatus(
            session_id=s.session_id,
            application_id=s.application_id,
            state=s.state,
            question_count=s.question_count,
            max_questions=gateway.max_questions or config.interview.max_questions,
            transcriber_live=s.transcriber_live,
            transcriber_ready=s.transcriber_ready,
            buffered_characters=len(s.accumulated_transcript),
        )
        for s in session_store.sessions()
    ]


@app.post("/transcribe", response_model=TranscriptionResponse)
async def transcribe(file: UploadFile = File(...)):
    """
    Transcribe a recorded answer in one shot.

    Args:
        file: Audio file (wav, webm, mp3, ...)

    Returns:
        Transcript text with per-segment timings
    """
    if file.content_type and not (
        file.content_type.startswith("audio/") or file.content_type.startswith("video/")
        or file.content_type == "application/octet-stream"
    ):
        raise HTTPException(status_code=415, detail=f"Unsupported content type: {file.content_type}")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty audio file")

    suffix = os.path.splitext(file.filename or "")[1] or ".wav"
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
        tmp.write(content)
        audio_path = tmp.name

    try:
        # Model inference is blocking
        result = await asyncio.to_thread(_transcribe_file, audio_path)
    except Exception as e:
        logger.error(f"Transcription failed for {file.filename}: {e}")
        raise HTTPException(status_code=500, detail=f"Transcription failed: {e}")
    finally:
        os.unlink(audio_path)

    logger.info(f"Transcribed {file.filename}: {len(result.transcript)} characters")
    return result


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.server.host, port=config.server.port)
