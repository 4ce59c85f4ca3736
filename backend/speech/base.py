"""
Streaming transcriber contract.

A transcriber wraps one provider-side recognition stream. It accepts raw audio
while OPEN, reports transcript fragments and utterance boundaries through
TranscriptionCallbacks, and must be finished on every exit path to release the
provider connection.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable


class TranscriberState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class TranscriptionCallbacks:
    """Sinks for provider events. All are plain (non-async) callables."""
    on_fragment: Callable[[str, bool], None]
    on_utterance_end: Callable[[], None]
    on_error: Callable[[str], None]
    on_close: Callable[[], None]


class StreamingTranscriber(ABC):
    """Base class for streaming speech-to-text handles."""

    def __init__(self, callbacks: TranscriptionCallbacks):
        self.callbacks = callbacks
        self.state = TranscriberState.CONNECTING

    @property
    def is_ready(self) -> bool:
        return self.state == TranscriberState.OPEN

    async def start(self) -> None:
        """Open the provider stream. Raises if the provider refuses it."""
        if self.state != TranscriberState.CONNECTING:
            raise RuntimeError(f"Transcriber cannot start from state {self.state.value}")
        await self._connect()
        # finish() may have run while we were connecting
        if self.state == TranscriberState.CONNECTING:
            self.state = TranscriberState.OPEN

    async def send(self, chunk: bytes) -> bool:
        """
        Forward one audio chunk.

        Returns:
            False if the chunk was dropped because the stream is not open
        """
        if not self.is_ready:
            return False
        await self._send(chunk)
        return True

    async def finish(self) -> None:
        """Flush and release the provider stream. Safe to call repeatedly."""
        if self.state in (TranscriberState.CLOSING, TranscriberState.CLOSED):
            return
        self.state = TranscriberState.CLOSING
        try:
            await self._finish()
        finally:
            self.state = TranscriberState.CLOSED

    @abstractmethod
    async def _connect(self) -> None:
        ...

    @abstractmethod
    async def _send(self, chunk: bytes) -> None:
        ...

    @abstractmethod
    async def _finish(self) -> None:
        ...


TranscriberFactory = Callable[[TranscriptionCallbacks], StreamingTranscriber]
