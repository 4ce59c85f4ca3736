"""
Interview turn controller: runs the state machine for one connection.

Every event for the connection (participant frames, transcriber callbacks,
question results) goes through a single inbox and is handled one at a time,
so the session is never touched concurrently and outbound messages leave in
the order the state machine produced them. Slow work (opening a transcriber,
generating a question) runs in background tasks that report back through the
same inbox.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

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
    OutboundEvent,
    InterviewFinished,
    Command,
    OpenTranscriber,
    SendAudio,
    CloseTranscriber,
    RequestQuestion,
    CancelQuestion,
    Transition,
)
from interview.agents import QuestionGenerator
from interview.state import InterviewStateMachine, InterviewSession
from interview.store import SessionStore
from speech.base import StreamingTranscriber, TranscriberFactory, TranscriptionCallbacks
from utils.config import config

logger = logging.getLogger(__name__)

Emitter = Callable[[OutboundEvent], Awaitable[None]]


class InterviewController:
    """
    Drives one participant's interview.

    Usage:
        controller = InterviewController(session_id, store, generator, factory, emit)
        runner = asyncio.create_task(controller.run())
        controller.join("app-1"); controller.start_interview(); ...
        await controller.disconnect()
    """

    def __init__(
        self,
        session_id: str,
        store: SessionStore,
        question_generator: QuestionGenerator,
        transcriber_factory: TranscriberFactory,
        emit: Emitter,
        machine: Optional[InterviewStateMachine] = None,
        question_timeout: Optional[float] = None,
        question_retries: Optional[int] = None,
    ):
        self.session_id = session_id
        self.store = store
        self.question_generator = question_generator
        self.transcriber_factory = transcriber_factory
        self.emit = emit
        self.machine = machine or InterviewStateMachine()
        self.question_timeout = question_timeout if question_timeout is not None else config.interview.question_timeout
        self.question_retries = question_retries if question_retries is not None else config.interview.question_retries

        self.finished = False

        self._inbox: "asyncio.Queue[InboundEvent]" = asyncio.Queue()
        self._transcribers: Dict[int, StreamingTranscriber] = {}
        self._opening: Dict[int, asyncio.Task] = {}
        self._question_task: Optional[asyncio.Task] = None
        self._running = False
        self._disconnected = False
        self._stopped = asyncio.Event()

    # ========================================
    # Introspection
    # ========================================

    @property
    def session(self) -> Optional[InterviewSession]:
        return self.store.get(self.session_id)

    @property
    def state(self) -> Optional[InterviewState]:
        """Current state; FINISHED once the interview ended, None if never joined."""
        session = self.session
        if session is not None:
            return session.state
        return InterviewState.FINISHED if self.finished else None

    @property
    def transcriber(self) -> Optional[StreamingTranscriber]:
        """The live transcriber handle, if any."""
        session = self.session
        if session is None or not session.transcriber_live:
            return None
        return self._transcribers.get(session.transcriber_generation)

    # ========================================
    # Participant API
    # ========================================

    def join(self, application_id: str) -> None:
        self.submit(Join(session_id=self.session_id, application_id=application_id))

    def start_interview(self) -> None:
        self.submit(Start())

    def audio_frame(self, chunk: bytes) -> None:
        self.submit(AudioFrame(chunk=chunk))

    def end_answer(self, transcript: Optional[str] = None) -> None:
        self.submit(EndAnswer(transcript=transcript))

    async def disconnect(self) -> None:
        """Tear the session down. Only the first call has any effect."""
        if self._disconnected:
            return
        self._disconnected = True
        logger.info(f"Disconnecting {self.session_id}")

        if self._running:
            self._inbox.put_nowait(Disconnect())
            await self._stopped.wait()
        else:
            await self._handle(Disconnect())
            await self._shutdown()

    def submit(self, event: InboundEvent) -> None:
        """Queue an event. Everything after disconnect is dropped."""
        if self._disconnected:
            logger.debug(f"Dropping {type(event).__name__} for {self.session_id}: disconnected")
            return
        self._inbox.put_nowait(event)

    # ========================================
    # Event loop
    # ========================================

    async def run(self) -> None:
        """Process inbox events until disconnect."""
        self._running = True
        try:
            while True:
                event = await self._inbox.get()
                try:
                    await self._handle(event)
                except Exception:
                    logger.exception(f"Failed to handle {type(event).__name__} for {self.session_id}")
                finally:
                    self._inbox.task_done()
                if isinstance(event, Disconnect):
                    break
        finally:
            await self._shutdown()

    async def wait_idle(self) -> None:
        """Wait until queued events and background work have all settled."""
        while True:
            await self._inbox.join()
            pending = [task for task in self._pending_tasks() if not task.done()]
            if pending:
                await asyncio.wait(pending)
                continue
            # Let done-callbacks and freshly queued events land
            await asyncio.sleep(0)
            if self._inbox.empty() and not any(not t.done() for t in self._pending_tasks()):
                return

    async def _handle(self, event: InboundEvent) -> None:
        session = self.store.get(self.session_id)
        result = self.machine.transition(session, event)
        self._commit(session, result)

        for command in result.commands:
            await self._execute(command)
        for message in result.outbound:
            await self._send(message)

    def _commit(self, before: Optional[InterviewSession], result: Transition) -> None:
        if result.session is None:
            if before is not None:
                self.store.remove(self.session_id)
                self.finished = any(isinstance(m, InterviewFinished) for m in result.outbound)
            return
        self.store.put(result.session)
        self.finished = False

    async def _send(self, message: OutboundEvent) -> None:
        if self._disconnected:
            return
        try:
            await self.emit(message)
        except Exception as e:
            logger.warning(f"Could not deliver {type(message).__name__} to {self.session_id}: {e}")

    # ========================================
    # Commands
    # ========================================

    async def _execute(self, command: Command) -> None:
        if isinstance(command, OpenTranscriber):
            self._open_transcriber(command.generation)
        elif isinstance(command, SendAudio):
            await self._send_audio(command.generation, command.chunk)
        elif isinstance(command, CloseTranscriber):
            await self._close_transcriber(command.generation)
        elif isinstance(command, RequestQuestion):
            self._request_question(command.ordinal, command.prior_answer)
        elif isinstance(command, CancelQuestion):
            self._cancel_question()
        else:
            raise TypeError(f"Unsupported command: {command!r}")

    def _open_transcriber(self, generation: int) -> None:
        try:
            handle = self.transcriber_factory(self._callbacks_for(generation))
        except Exception as e:
            logger.error(f"Could not create transcriber for {self.session_id}: {e}")
            self.submit(TranscriberFailed(generation=generation, detail=str(e)))
            return

        self._transcribers[generation] = handle
        self._opening[generation] = asyncio.create_task(self._connect_transcriber(generation, handle))

    async def _connect_transcriber(self, generation: int, handle: StreamingTranscriber) -> None:
        try:
            await handle.start()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Transcriber #{generation} for {self.session_id} failed to start: {e}")
            self.submit(TranscriberFailed(generation=generation, detail=str(e) or type(e).__name__))
        else:
            logger.info(f"Transcriber #{generation} ready for {self.session_id}")
            self.submit(TranscriberOpened(generation=generation))
        finally:
            self._opening.pop(generation, None)

    async def _send_audio(self, generation: int, chunk: bytes) -> None:
        handle = self._transcribers.get(generation)
        if handle is None:
            return
        try:
            if not await handle.send(chunk):
                logger.debug(f"Dropping chunk for {self.session_id}: transcriber not ready")
        except Exception as e:
            logger.error(f"Failed to send audio for {self.session_id}: {e}")
            self.submit(TranscriberFailed(generation=generation, detail=str(e) or type(e).__name__))

    async def _close_transcriber(self, generation: int) -> None:
        handle = self._transcribers.pop(generation, None)
        if handle is None:
            return

        opening = self._opening.pop(generation, None)
        if opening is not None:
            opening.cancel()

        try:
            await handle.finish()
        except Exception as e:
            logger.error(f"Error finishing transcriber #{generation} for {self.session_id}: {e}")

    def _callbacks_for(self, generation: int) -> TranscriptionCallbacks:
        """Callbacks that only forward while their handle is still the registered one."""
        callbacks: Optional[TranscriptionCallbacks] = None

        def relay(make_event):
            def _relay(*args):
                handle = self._transcribers.get(generation)
                if handle is None or handle.callbacks is not callbacks:
                    return
                self.submit(make_event(*args))
            return _relay

        callbacks = TranscriptionCallbacks(
            on_fragment=relay(lambda text, is_final: TranscriptFragment(generation, text, is_final)),
            on_utterance_end=relay(lambda: UtteranceEnded(generation)),
            on_error=relay(lambda detail: TranscriberFailed(generation, detail)),
            on_close=relay(lambda: TranscriberClosed(generation)),
        )
        return callbacks

    def _request_question(self, ordinal: int, prior_answer: Optional[str]) -> None:
        self._cancel_question()
        self._question_task = asyncio.create_task(self._generate_question(ordinal, prior_answer))

    def _cancel_question(self) -> None:
        if self._question_task is not None and not self._question_task.done():
            self._question_task.cancel()
        self._question_task = None

    async def _generate_question(self, ordinal: int, prior_answer: Optional[str]) -> None:
        """Ask the generator, with a timeout per attempt and a bounded number of retries."""
        attempts = self.question_retries + 1
        last_error = "no attempt made"

        for attempt in range(1, attempts + 1):
            try:
                question = await asyncio.wait_for(
                    self.question_generator.next_question(prior_answer),
                    timeout=self.question_timeout,
                )
            except asyncio.TimeoutError:
                last_error = f"timed out after {self.question_timeout}s"
            except Exception as e:
                last_error = str(e) or type(e).__name__
            else:
                if question and question.strip():
                    self.submit(QuestionReady(ordinal=ordinal, question=question.strip()))
                    return
                last_error = "generator returned an empty question"

            logger.warning(
                f"Question {ordinal} for {self.session_id}: attempt {attempt}/{attempts} failed ({last_error})"
            )

        self.submit(QuestionFailed(ordinal=ordinal, detail=last_error))

    # ========================================
    # Teardown
    # ========================================

    def _pending_tasks(self):
        tasks = list(self._opening.values())
        if self._question_task is not None:
            tasks.append(self._question_task)
        return tasks

    async def _shutdown(self) -> None:
        """Cancel background work and release any handle still registered."""
        self._disconnected = True
        self._cancel_question()
        for task in list(self._opening.values()):
            task.cancel()
        self._opening.clear()

        for generation in list(self._transcribers):
            await self._close_transcriber(generation)

        if self.store.remove(self.session_id):
            logger.warning(f"Session {self.session_id} was still registered at shutdown; removed")

        self._running = False
        self._stopped.set()
