"""
Interview state machine for the live interview session.

The machine is a pure transition function: it takes the current session (or
None when the connection has no session) and one event, and returns the next
session together with the outbound messages and commands that the event
produced. It performs no I/O; InterviewController executes the commands.
"""
import logging
from dataclasses import dataclass, replace
from typing import List, Optional

from models.schemas import InterviewState
from interview.events import (
    InboundEvent,
    Join,
    Start,
    AudioFrame,
    EndAnswer,
    Disconnect,
    TranscriberOpened,
    TranscriptFragment,
    UtteranceEnded,
    TranscriberFailed,
    TranscriberClosed,
    QuestionReady,
    QuestionFailed,
    LiveTranscript,
    NewQuestion,
    InterviewFinished,
    TranscriptionError,
    OpenTranscriber,
    SendAudio,
    CloseTranscriber,
    RequestQuestion,
    CancelQuestion,
    Command,
    Transition,
)
from utils.config import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InterviewSession:
    """State of one interview, keyed by the connection that owns it."""
    session_id: str
    application_id: str
    state: InterviewState = InterviewState.IDLE
    question_count: int = 0
    accumulated_transcript: str = ""

    # Transcriber bookkeeping. The generation increases with every handle
    # created; only the current generation may be live.
    transcriber_generation: int = 0
    transcriber_live: bool = False
    transcriber_ready: bool = False
    # Last failure reported to the participant; identical repeats are not re-sent
    transcription_error: Optional[str] = None

    last_answer: Optional[str] = None

    @property
    def awaiting_question(self) -> bool:
        return self.state in InterviewState.pending_question()

    def is_current_transcriber(self, generation: int) -> bool:
        return self.transcriber_live and generation == self.transcriber_generation


class InterviewStateMachine:
    """
    Turn-taking protocol for one connection.

    join -> start -> (listen -> transcribe -> answer finished -> next question)*
    -> finished. The interview ends right after the answer to question
    `max_questions` is finalized.
    """

    def __init__(self, max_questions: Optional[int] = None):
        self.max_questions = max_questions or config.interview.max_questions

    def transition(self, session: Optional[InterviewSession], event: InboundEvent) -> Transition:
        """
        Apply one event.

        Args:
            session: Current session, or None if the connection has none
            event: The inbound event

        Returns:
            Transition with the next session (None once removed), outbound
            messages and commands, in the order they must be carried out
        """
        if isinstance(event, Join):
            return self._join(session, event)
        if isinstance(event, Disconnect):
            return self._disconnect(session)

        # Every other event needs a session; without one it is a no-op
        if session is None:
            logger.debug(f"Ignoring {type(event).__name__}: no session")
            return Transition(session=None)

        if isinstance(event, Start):
            return self._start(session)
        if isinstance(event, AudioFrame):
            return self._audio_frame(session, event)
        if isinstance(event, TranscriberOpened):
            return self._transcriber_opened(session, event)
        if isinstance(event, TranscriptFragment):
            return self._fragment(session, event)
        if isinstance(event, UtteranceEnded):
            return self._utterance_ended(session, event)
        if isinstance(event, EndAnswer):
            return self._end_answer(session, event)
        if isinstance(event, TranscriberFailed):
            return self._transcriber_failed(session, event)
        if isinstance(event, TranscriberClosed):
            return self._transcriber_closed(session, event)
        if isinstance(event, QuestionReady):
            return self._question_ready(session, event)
        if isinstance(event, QuestionFailed):
            return self._question_failed(session, event)

        raise TypeError(f"Unsupported interview event: {event!r}")

    # ========================================
    # Participant events
    # ========================================

    def _join(self, session: Optional[InterviewSession], event: Join) -> Transition:
        commands: List[Command] = []
        if session is not None:
            # Last write wins: the old session is dropped with its resources
            logger.warning(
                f"Session {session.session_id} joined again "
                f"(application {session.application_id} -> {event.application_id}); overwriting"
            )
            commands.extend(self._release(session))

        new_session = InterviewSession(
            session_id=event.session_id,
            application_id=event.application_id,
            # Keep counting so callbacks from the dropped handle stay stale
            transcriber_generation=session.transcriber_generation if session else 0,
        )
        return Transition(session=new_session, commands=commands)

    def _start(self, session: InterviewSession) -> Transition:
        if session.state != InterviewState.IDLE:
            logger.debug(f"Ignoring start for {session.session_id} in state {session.state.value}")
            return Transition(session=session)

        return Transition(
            session=replace(session, state=InterviewState.STARTING),
            commands=[RequestQuestion(ordinal=1, prior_answer=None)],
        )

    def _audio_frame(self, session: InterviewSession, event: AudioFrame) -> Transition:
        if session.state != InterviewState.AWAITING_ANSWER:
            logger.debug(f"Dropping audio for {session.session_id}: state is {session.state.value}")
            return Transition(session=session)

        if not session.transcriber_live:
            generation = session.transcriber_generation + 1
            logger.info(f"First audio chunk for {session.session_id}; opening transcriber #{generation}")
            # The frame that triggers creation is dropped: the handle is still connecting
            return Transition(
                session=replace(
                    session,
                    transcriber_generation=generation,
                    transcriber_live=True,
                    transcriber_ready=False,
                ),
                commands=[OpenTranscriber(generation=generation)],
            )

        if not session.transcriber_ready:
            logger.debug(f"Dropping audio for {session.session_id}: transcriber not ready")
            return Transition(session=session)

        return Transition(
            session=session,
            commands=[SendAudio(generation=session.transcriber_generation, chunk=event.chunk)],
        )

    def _end_answer(self, session: InterviewSession, event: EndAnswer) -> Transition:
        if session.state != InterviewState.AWAITING_ANSWER:
            logger.debug(f"Ignoring end-answer for {session.session_id} in state {session.state.value}")
            return Transition(session=session)

        commands: List[Command] = []
        if session.transcriber_live:
            commands.append(CloseTranscriber(generation=session.transcriber_generation))
        session = replace(session, transcriber_live=False, transcriber_ready=False)

        if event.transcript and event.transcript.strip():
            session = replace(session, accumulated_transcript=event.transcript)

        logger.info(f"Participant {session.session_id} ended answer {session.question_count} manually")
        result = self._answer_finished(session)
        result.commands[:0] = commands
        return result

    def _disconnect(self, session: Optional[InterviewSession]) -> Transition:
        if session is None:
            return Transition(session=None)

        logger.info(f"Removing session {session.session_id} on disconnect")
        return Transition(session=None, commands=self._release(session))

    # ========================================
    # Transcriber events
    # ========================================

    def _transcriber_opened(self, session: InterviewSession, event: TranscriberOpened) -> Transition:
        if not session.is_current_transcriber(event.generation):
            return Transition(session=session)
        return Transition(session=replace(session, transcriber_ready=True, transcription_error=None))

    def _fragment(self, session: InterviewSession, event: TranscriptFragment) -> Transition:
        if not session.is_current_transcriber(event.generation) or not event.text:
            return Transition(session=session)

        if event.is_final:
            session = replace(
                session,
                accumulated_transcript=session.accumulated_transcript + event.text + " ",
            )
        return Transition(session=session, outbound=[LiveTranscript(text=event.text)])

    def _utterance_ended(self, session: InterviewSession, event: UtteranceEnded) -> Transition:
        if not session.is_current_transcriber(event.generation):
            return Transition(session=session)
        if session.state != InterviewState.AWAITING_ANSWER:
            return Transition(session=session)

        logger.info(f"Utterance ended for {session.session_id}")
        session = replace(session, transcriber_live=False, transcriber_ready=False)
        result = self._answer_finished(session)
        result.commands.insert(0, CloseTranscriber(generation=event.generation))
        return result

    def _transcriber_failed(self, session: InterviewSession, event: TranscriberFailed) -> Transition:
        if not session.is_current_transcriber(event.generation):
            return Transition(session=session)

        logger.error(f"Transcriber #{event.generation} failed for {session.session_id}: {event.detail}")
        repeated = event.detail == session.transcription_error
        # Tear the handle down; the next audio frame opens a fresh one
        return Transition(
            session=replace(
                session,
                transcriber_live=False,
                transcriber_ready=False,
                transcription_error=event.detail,
            ),
            outbound=[] if repeated else [TranscriptionError(detail=event.detail)],
            commands=[CloseTranscriber(generation=event.generation)],
        )

    def _transcriber_closed(self, session: InterviewSession, event: TranscriberClosed) -> Transition:
        if not session.is_current_transcriber(event.generation):
            return Transition(session=session)

        logger.info(f"Transcriber #{event.generation} closed by provider for {session.session_id}")
        return Transition(
            session=replace(session, transcriber_live=False, transcriber_ready=False),
            commands=[CloseTranscriber(generation=event.generation)],
        )

    # ========================================
    # Question generator results
    # ========================================

    def _question_ready(self, session: InterviewSession, event: QuestionReady) -> Transition:
        if not session.awaiting_question or event.ordinal != session.question_count + 1:
            logger.debug(f"Discarding stale question #{event.ordinal} for {session.session_id}")
            return Transition(session=session)

        logger.info(f"Sending question {event.ordinal} to {session.session_id}")
        return Transition(
            session=replace(
                session,
                state=InterviewState.AWAITING_ANSWER,
                question_count=event.ordinal,
            ),
            outbound=[NewQuestion(question=event.question, question_number=event.ordinal)],
        )

    def _question_failed(self, session: InterviewSession, event: QuestionFailed) -> Transition:
        if not session.awaiting_question or event.ordinal != session.question_count + 1:
            return Transition(session=session)

        logger.error(
            f"Could not generate question {event.ordinal} for {session.session_id}: "
            f"{event.detail}; ending interview"
        )
        return Transition(
            session=None,
            outbound=[InterviewFinished(reason="error")],
            commands=self._release(session),
        )

    # ========================================
    # Helpers
    # ========================================

    def _answer_finished(self, session: InterviewSession) -> Transition:
        """Finalize the buffered answer, then either finish or ask the next question."""
        answer = session.accumulated_transcript.strip()
        session = replace(session, accumulated_transcript="", last_answer=answer)

        if session.question_count >= self.max_questions:
            logger.info(f"Ending interview for {session.session_id} after {session.question_count} questions")
            return Transition(session=None, outbound=[InterviewFinished(reason="completed")])

        return Transition(
            session=replace(session, state=InterviewState.PROCESSING_ANSWER),
            commands=[RequestQuestion(ordinal=session.question_count + 1, prior_answer=answer)],
        )

    @staticmethod
    def _release(session: InterviewSession) -> List[Command]:
        """Commands that free everything a session holds."""
        commands: List[Command] = []
        if session.transcriber_live:
            commands.append(CloseTranscriber(generation=session.transcriber_generation))
        if session.awaiting_question:
            commands.append(CancelQuestion())
        return commands
