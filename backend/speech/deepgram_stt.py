"""
Deepgram streaming speech-to-text.

Live transcription over Deepgram's websocket API, configured for continuous
recognition with interim results and utterance-end detection, so the interview
controller can echo partial speech and detect when the candidate stops talking.
"""
import logging
from typing import Optional

from deepgram import (
    DeepgramClient,
    DeepgramClientOptions,
    LiveOptions,
    LiveTranscriptionEvents,
)

from speech.base import StreamingTranscriber, TranscriberState, TranscriptionCallbacks
from utils.config import TranscriptionConfig, config

logger = logging.getLogger(__name__)


class DeepgramTranscriber(StreamingTranscriber):
    """One Deepgram live connection, owned by one interview session."""

    def __init__(
        self,
        callbacks: TranscriptionCallbacks,
        settings: Optional[TranscriptionConfig] = None,
        client: Optional[DeepgramClient] = None,
    ):
        super().__init__(callbacks)
        self.settings = settings or config.transcription
        if client is None:
            if not self.settings.api_key:
                raise ValueError("DEEPGRAM_API_KEY is required for live transcription")
            options = DeepgramClientOptions(
                options={"keepalive": "true"} if self.settings.keepalive else {}
            )
            client = DeepgramClient(self.settings.api_key, options)
        self.client = client
        self.connection = None

    def live_options(self) -> LiveOptions:
        """Recognition options for the live stream."""
        return LiveOptions(
            model=self.settings.model,
            language=self.settings.language,
            punctuate=self.settings.punctuate,
            smart_format=self.settings.smart_format,
            interim_results=self.settings.interim_results,
            utterance_end_ms=str(self.settings.utterance_end_ms),
        )

    async def _connect(self) -> None:
        self.connection = self.client.listen.asyncwebsocket.v("1")

        self.connection.on(LiveTranscriptionEvents.Open, self._on_open)
        self.connection.on(LiveTranscriptionEvents.Transcript, self._on_transcript)
        self.connection.on(LiveTranscriptionEvents.UtteranceEnd, self._on_utterance_end)
        self.connection.on(LiveTranscriptionEvents.Error, self._on_error)
        self.connection.on(LiveTranscriptionEvents.Close, self._on_close)

        if await self.connection.start(self.live_options()) is False:
            raise ConnectionError("Failed to start Deepgram connection")
        logger.info("Deepgram streaming started")

    async def _send(self, chunk: bytes) -> None:
        await self.connection.send(chunk)

    async def _finish(self) -> None:
        if self.connection is None:
            return
        try:
            await self.connection.finish()
            logger.info("Deepgram streaming stopped")
        except Exception as e:
            logger.error(f"Error stopping Deepgram: {e}")
        finally:
            self.connection = None

    # ========================================
    # Provider event handlers
    # ========================================
    # The SDK calls handlers as handler(connection, **payload).

    async def _on_open(self, _connection, **kwargs) -> None:
        logger.debug("Deepgram connection opened")

    async def _on_transcript(self, _connection, result=None, **kwargs) -> None:
        if self.state != TranscriberState.OPEN or result is None:
            return
        alternatives = result.channel.alternatives
        if not alternatives:
            return
        sentence = alternatives[0].transcript
        if not sentence:
            return

        is_final = bool(result.is_final)
        logger.debug(f"{'[FINAL]' if is_final else '[INTERIM]'} {sentence}")
        self.callbacks.on_fragment(sentence, is_final)

    async def _on_utterance_end(self, _connection, utterance_end=None, **kwargs) -> None:
        if self.state != TranscriberState.OPEN:
            return
        self.callbacks.on_utterance_end()

    async def _on_error(self, _connection, error=None, **kwargs) -> None:
        if self.state in (TranscriberState.CLOSING, TranscriberState.CLOSED):
            return
        logger.error(f"Deepgram error: {error}")
        self.callbacks.on_error(str(error) if error is not None else "Deepgram streaming error")

    async def _on_close(self, _connection, close=None, **kwargs) -> None:
        # Closing on our own request is not news to the session
        if self.state in (TranscriberState.CLOSING, TranscriberState.CLOSED):
            return
        logger.info("Deepgram connection closed by provider")
        self.callbacks.on_close()


def deepgram_transcriber_factory(callbacks: TranscriptionCallbacks) -> DeepgramTranscriber:
    """TranscriberFactory producing Deepgram handles from the global config."""
    return DeepgramTranscriber(callbacks)
