"""
WebSocket gateway: binds one remote participant to one InterviewController.

Wire protocol (JSON text frames use the {"event": ..., "data": ...} envelope):
    client -> server   join-room, start-interview, end-answer, disconnect
                       binary frames carry raw audio chunks
    server -> client   live-transcript, new-question, interview-finished,
                       transcription-error, protocol-error
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Union

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from models.schemas import ClientEvent, WireMessage
from interview.agents import QuestionGenerator
from interview.controller import InterviewController
from interview.events import OutboundEvent, ProtocolError
from interview.state import InterviewStateMachine
from interview.store import SessionStore
from speech.base import TranscriberFactory

logger = logging.getLogger(__name__)


class InterviewGateway:
    """
    Accepts interview WebSockets and runs one controller per connection.
    Owns the SessionStore shared by all connections of this process.
    """

    def __init__(
        self,
        question_generator: QuestionGenerator,
        transcriber_factory: TranscriberFactory,
        store: Optional[SessionStore] = None,
        max_questions: Optional[int] = None,
    ):
        self.question_generator = question_generator
        self.transcriber_factory = transcriber_factory
        self.store = store if store is not None else SessionStore()
        self.max_questions = max_questions
        self.controllers: Dict[str, InterviewController] = {}

    async def handle(self, websocket: WebSocket) -> None:
        """Serve one connection until the participant leaves."""
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        logger.info(f"[Socket] User connected: {connection_id}")

        outbox: "asyncio.Queue[Optional[OutboundEvent]]" = asyncio.Queue()

        async def emit(message: OutboundEvent) -> None:
            outbox.put_nowait(message)

        controller = InterviewController(
            session_id=connection_id,
            store=self.store,
            question_generator=self.question_generator,
            transcriber_factory=self.transcriber_factory,
            emit=emit,
            machine=InterviewStateMachine(max_questions=self.max_questions),
        )
        self.controllers[connection_id] = controller

        runner = asyncio.create_task(controller.run())
        writer = asyncio.create_task(self._write(websocket, outbox, connection_id))

        try:
            await self._read(websocket, controller, outbox)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"[Socket] Receive loop failed for {connection_id}: {e}")
        finally:
            await controller.disconnect()
            await runner
            outbox.put_nowait(None)
            await writer
            self.controllers.pop(connection_id, None)
            logger.info(f"[Socket] User disconnected: {connection_id}")

    async def _read(self, websocket: WebSocket, controller: InterviewController, outbox: asyncio.Queue) -> None:
        """Decode inbound frames and hand them to the controller, in arrival order."""
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                return

            if frame.get("bytes") is not None:
                controller.audio_frame(frame["bytes"])
                continue

            text = frame.get("text")
            if text is None:
                continue

            try:
                message = WireMessage.model_validate_json(text)
            except ValidationError as e:
                logger.debug(f"Malformed frame from {controller.session_id}: {e}")
                outbox.put_nowait(ProtocolError(detail="Malformed message: expected {\"event\": ..., \"data\": ...}"))
                continue

            if message.event == ClientEvent.DISCONNECT.value:
                await websocket.close()
                return

            error = self.dispatch(controller, message)
            if error:
                outbox.put_nowait(ProtocolError(detail=error))

    def dispatch(self, controller: InterviewController, message: WireMessage) -> Optional[str]:
        """
        Route one control message to the controller.

        Returns:
            An error description for the participant, or None if accepted
        """
        if message.event == ClientEvent.JOIN.value:
            application_id = self._application_id(message.data)
            if not application_id:
                return "join-room requires an applicationId"
            logger.info(f"[Socket] User {controller.session_id} joined room for application: {application_id}")
            controller.join(application_id)
        elif message.event == ClientEvent.START.value:
            logger.info(f"[Interview] Starting interview for {controller.session_id}")
            controller.start_interview()
        elif message.event == ClientEvent.END_ANSWER.value:
            transcript = message.data.get("transcript") if isinstance(message.data, dict) else None
            controller.end_answer(transcript if isinstance(transcript, str) else None)
        else:
            return f"Unknown event: {message.event}"
        return None

    @staticmethod
    def _application_id(data: Any) -> Optional[str]:
        if isinstance(data, dict):
            data = data.get("applicationId")
        if isinstance(data, (str, int)) and str(data).strip():
            return str(data).strip()
        return None

    async def _write(self, websocket: WebSocket, outbox: asyncio.Queue, connection_id: str) -> None:
        """Single writer per connection: messages leave in queue order."""
        while True:
            message: Union[OutboundEvent, None] = await outbox.get()
            if message is None:
                return
            try:
                await websocket.send_json(message.to_message())
            except Exception as e:
                # Socket is gone; the reader will notice and disconnect
                logger.debug(f"Dropping {type(message).__name__} for {connection_id}: {e}")
