"""Shared fakes for the interview tests."""
import asyncio
from typing import List, Optional

from interview.agents import QuestionGenerator
from interview.controller import InterviewController
from interview.state import InterviewStateMachine
from interview.store import SessionStore
from speech.base import StreamingTranscriber, TranscriptionCallbacks


class FakeTranscriber(StreamingTranscriber):
    """Records audio and finish calls; tests fire provider events through `callbacks`."""

    def __init__(self, callbacks: TranscriptionCallbacks, fail_connect: bool = False):
        super().__init__(callbacks)
        self.fail_connect = fail_connect
        self.chunks: List[bytes] = []
        self.finish_calls = 0

    async def _connect(self) -> None:
        if self.fail_connect:
            raise ConnectionError("provider refused the stream")

    async def _send(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    async def _finish(self) -> None:
        self.finish_calls += 1


class RecordingGenerator(QuestionGenerator):
    """Numbered questions; remembers every prior answer it was given."""

    def __init__(self):
        self.prior_answers: List[Optional[str]] = []

    async def next_question(self, prior_answer: Optional[str]) -> str:
        self.prior_answers.append(prior_answer)
        return f"Question {len(self.prior_answers)}?"


class Harness:
    """One controller wired to fakes. Build it inside a running event loop."""

    def __init__(
        self,
        generator: Optional[QuestionGenerator] = None,
        max_questions: Optional[int] = None,
        fail_connect: bool = False,
        factory=None,
        question_timeout: float = 1.0,
        question_retries: int = 1,
    ):
        self.store = SessionStore()
        self.sent = []
        self.transcribers: List[FakeTranscriber] = []
        self.generator = generator or RecordingGenerator()
        self.fail_connect = fail_connect

        async def emit(message):
            self.sent.append(message)

        self.controller = InterviewController(
            session_id="conn-1",
            store=self.store,
            question_generator=self.generator,
            transcriber_factory=factory or self._factory,
            emit=emit,
            machine=InterviewStateMachine(max_questions=max_questions),
            question_timeout=question_timeout,
            question_retries=question_retries,
        )
        self.runner = asyncio.create_task(self.controller.run())

    def _factory(self, callbacks):
        transcriber = FakeTranscriber(callbacks, fail_connect=self.fail_connect)
        self.transcribers.append(transcriber)
        return transcriber

    @property
    def messages(self):
        return [m.to_message() for m in self.sent]

    def events(self, name):
        return [m["data"] for m in self.messages if m["event"] == name]

    async def idle(self):
        await self.controller.wait_idle()

    async def start(self, application_id: str = "app-1"):
        self.controller.join(application_id)
        self.controller.start_interview()
        await self.idle()

    async def open_transcriber(self) -> FakeTranscriber:
        """Send the first audio frame of an answer and wait for the handle to be ready."""
        self.controller.audio_frame(b"first")
        await self.idle()
        return self.transcribers[-1]

    async def answer(self, text: str):
        transcriber = await self.open_transcriber()
        transcriber.callbacks.on_fragment(text, True)
        transcriber.callbacks.on_utterance_end()
        await self.idle()
        return transcriber

    async def close(self):
        await self.controller.disconnect()
        await self.runner
