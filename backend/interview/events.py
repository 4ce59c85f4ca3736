"""
Events, outbound messages and commands exchanged with the interview state machine.

Inbound events come from the participant (join, start, audio, end-answer,
disconnect) or from collaborators (transcriber callbacks, question results).
The state machine answers with outbound messages for the participant and
commands for the controller runtime to execute.
"""
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from models.schemas import ServerEvent

if TYPE_CHECKING:
    from interview.state import InterviewSession


# ============================================================
# Participant events
# ============================================================

@dataclass(frozen=True)
class Join:
    session_id: str
    application_id: str


@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class AudioFrame:
    chunk: bytes = field(repr=False)


@dataclass(frozen=True)
class EndAnswer:
    """Participant ends the current answer manually."""
    transcript: Optional[str] = None


@dataclass(frozen=True)
class Disconnect:
    pass


# ============================================================
# Collaborator events
# ============================================================
# Transcriber events carry the generation of the handle that produced them,
# so late callbacks from a finalized handle can be told apart.

@dataclass(frozen=True)
class TranscriberOpened:
    generation: int


@dataclass(frozen=True)
class TranscriptFragment:
    generation: int
    text: str
    is_final: bool


@dataclass(frozen=True)
class UtteranceEnded:
    generation: int


@dataclass(frozen=True)
class TranscriberFailed:
    generation: int
    detail: str


@dataclass(frozen=True)
class TranscriberClosed:
    generation: int


@dataclass(frozen=True)
class QuestionReady:
    ordinal: int
    question: str


@dataclass(frozen=True)
class QuestionFailed:
    ordinal: int
    detail: str


InboundEvent = Union[
    Join, Start, AudioFrame, EndAnswer, Disconnect,
    TranscriberOpened, TranscriptFragment, UtteranceEnded,
    TranscriberFailed, TranscriberClosed, QuestionReady, QuestionFailed,
]


# ============================================================
# Outbound messages (controller -> participant)
# ============================================================

@dataclass(frozen=True)
class LiveTranscript:
    text: str

    def to_message(self) -> Dict[str, Any]:
        return {"event": ServerEvent.LIVE_TRANSCRIPT.value, "data": self.text}


@dataclass(frozen=True)
class NewQuestion:
    question: str
    question_number: int

    def to_message(self) -> Dict[str, Any]:
        return {
            "event": ServerEvent.NEW_QUESTION.value,
            "data": {"question": self.question, "questionNumber": self.question_number},
        }


@dataclass(frozen=True)
class InterviewFinished:
    reason: str = "completed"

    def to_message(self) -> Dict[str, Any]:
        return {"event": ServerEvent.INTERVIEW_FINISHED.value, "data": {"reason": self.reason}}


@dataclass(frozen=True)
class TranscriptionError:
    detail: str

    def to_message(self) -> Dict[str, Any]:
        return {"event": ServerEvent.TRANSCRIPTION_ERROR.value, "data": self.detail}


@dataclass(frozen=True)
class ProtocolError:
    detail: str

    def to_message(self) -> Dict[str, Any]:
        return {"event": ServerEvent.PROTOCOL_ERROR.value, "data": self.detail}


OutboundEvent = Union[LiveTranscript, NewQuestion, InterviewFinished, TranscriptionError, ProtocolError]


# ============================================================
# Commands (state machine -> controller runtime)
# ============================================================

@dataclass(frozen=True)
class OpenTranscriber:
    generation: int


@dataclass(frozen=True)
class SendAudio:
    generation: int
    chunk: bytes = field(repr=False)


@dataclass(frozen=True)
class CloseTranscriber:
    generation: int


@dataclass(frozen=True)
class RequestQuestion:
    ordinal: int
    prior_answer: Optional[str]


@dataclass(frozen=True)
class CancelQuestion:
    pass


Command = Union[OpenTranscriber, SendAudio, CloseTranscriber, RequestQuestion, CancelQuestion]


@dataclass
class Transition:
    """Result of applying one event: the new session plus side effects."""
    session: Optional["InterviewSession"]
    outbound: List[OutboundEvent] = field(default_factory=list)
    commands: List[Command] = field(default_factory=list)

    @property
    def ended(self) -> bool:
        return self.session is None
