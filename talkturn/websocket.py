"""
WebSocket connection manager and message routing.
Handles WebSocket lifecycle, session management, and routing of client messages
to each session's turn orchestrator.
"""

import logging
import uuid
import time
from typing import Dict, Optional, Type

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from talkturn.config import TurnTimings
from talkturn.llm.openai_client import OpenAIResponseService
from talkturn.models import (
    ClientMessage,
    SilenceConfig,
    SessionReadyMessage, SessionReadyData,
    StateChangeMessage, StateChangeData,
    CountdownMessage, CountdownData,
    AgentAudioChunkMessage, AgentAudioChunkData,
    AgentTextMessage, AgentTextData,
    TurnCompleteMessage, TurnCompleteData,
    ErrorMessage, ErrorData,
    StartListeningMessage,
    TranscriptFragmentMessage,
    RecognizerErrorMessage,
    StopListeningMessage,
    PlaybackCompleteMessage,
    UpdateSettingsMessage,
    EndConversationMessage,
    PingMessage,
    PongMessage,
)
from talkturn.orchestration.turn_controller import TurnOrchestrator
from talkturn.state_machine import TurnState
from talkturn.stt.client_relay import ClientRelayRecognizer
from talkturn.tts.elevenlabs import ElevenLabsSynthesizer
from talkturn.tts.readiness import SynthesisReadiness

logger = logging.getLogger(__name__)


CLIENT_MESSAGE_TYPES: Dict[str, Type[BaseModel]] = {
    "start_listening": StartListeningMessage,
    "transcript_fragment": TranscriptFragmentMessage,
    "recognizer_error": RecognizerErrorMessage,
    "stop_listening": StopListeningMessage,
    "playback_complete": PlaybackCompleteMessage,
    "update_settings": UpdateSettingsMessage,
    "end_conversation": EndConversationMessage,
    "ping": PingMessage,
    "pong": PongMessage,
}


def parse_client_message(raw: dict) -> ClientMessage:
    """
    Validate a raw client message.

    Raises:
        ValueError: Unknown message type
        ValidationError: Payload does not match the message schema
    """
    message_type = raw.get("type") if isinstance(raw, dict) else None
    model = CLIENT_MESSAGE_TYPES.get(message_type)
    if model is None:
        raise ValueError(f"Unknown message type: {message_type}")
    return model.model_validate(raw)


def _now_ms() -> int:
    return int(time.time() * 1000)


class ConnectionManager:
    """
    Manages active WebSocket connections and message routing.

    Responsibilities:
    - Track active connections (session_id → websocket)
    - Handle connection lifecycle (connect, disconnect, cleanup)
    - Send typed server messages to specific sessions
    - Heartbeat bookkeeping and stale-session sweeps
    """

    def __init__(self):
        """Initialize connection manager."""
        # Active connections: session_id → WebSocket
        self.active_connections: Dict[str, WebSocket] = {}

        # Session metadata: session_id → metadata dict
        self.session_metadata: Dict[str, dict] = {}

        # Last heartbeat timestamp: session_id → timestamp
        self.last_heartbeat: Dict[str, int] = {}

        # Conversations to stop when their session goes stale
        self.conversations: Dict[str, "ConversationSession"] = {}

        logger.info("ConnectionManager initialized")

    async def connect(self, websocket: WebSocket) -> str:
        """
        Accept new WebSocket connection and create session.

        Args:
            websocket: WebSocket connection

        Returns:
            session_id: UUID of created session
        """
        await websocket.accept()

        session_id = str(uuid.uuid4())
        self.active_connections[session_id] = websocket
        self.session_metadata[session_id] = {
            "connected_at": _now_ms(),
            "client_info": websocket.client,
            "total_messages": 0,
        }
        self.last_heartbeat[session_id] = _now_ms()

        logger.info(
            f"WebSocket connected: session_id={session_id}, "
            f"client={websocket.client}, "
            f"total_connections={len(self.active_connections)}"
        )

        await self.send_session_ready(session_id)

        return session_id

    async def disconnect(self, session_id: str):
        """
        Handle WebSocket disconnection and cleanup.

        Args:
            session_id: Session ID to disconnect
        """
        if session_id not in self.active_connections:
            logger.debug(f"Disconnect for unknown session: {session_id}")
            return

        self.active_connections.pop(session_id, None)
        metadata = self.session_metadata.pop(session_id, {})
        self.last_heartbeat.pop(session_id, None)
        self.conversations.pop(session_id, None)

        if metadata:
            session_duration = _now_ms() - metadata.get("connected_at", 0)
            logger.info(
                f"WebSocket disconnected: session_id={session_id}, "
                f"duration_ms={session_duration}, "
                f"total_messages={metadata.get('total_messages', 0)}, "
                f"remaining_connections={len(self.active_connections)}"
            )

    async def send_message(self, session_id: str, message: dict) -> bool:
        """
        Send JSON message to specific session.

        Args:
            session_id: Target session ID
            message: Message dict to send

        Returns:
            True if sent successfully, False otherwise
        """
        websocket = self.active_connections.get(session_id)
        if websocket is None:
            logger.warning(f"Attempted to send message to non-existent session: {session_id}")
            return False

        try:
            await websocket.send_json(message)

            if session_id in self.session_metadata:
                self.session_metadata[session_id]["total_messages"] += 1

            logger.debug(f"Message sent to session {session_id}: type={message.get('type', 'unknown')}")
            return True

        except WebSocketDisconnect:
            logger.warning(f"WebSocket disconnected while sending to session: {session_id}")
            await self.disconnect(session_id)
            return False
        except Exception as e:
            logger.error(f"Error sending message to session {session_id}: {e}", exc_info=True)
            return False

    async def send_session_ready(self, session_id: str):
        message = SessionReadyMessage(
            data=SessionReadyData(session_id=session_id, timestamp=_now_ms())
        )
        await self.send_message(session_id, message.model_dump(mode="json"))

    async def send_state_change(
        self,
        session_id: str,
        from_state: TurnState,
        to_state: TurnState,
        locked: bool,
    ):
        """
        Send state_change message to client.

        Args:
            session_id: Session ID
            from_state: Previous state
            to_state: New state
            locked: Whether the system holds the microphone lock
        """
        message = StateChangeMessage(
            data=StateChangeData(
                from_state=from_state,
                to_state=to_state,
                locked=locked,
                timestamp=_now_ms(),
            )
        )
        await self.send_message(session_id, message.model_dump(mode="json"))

    async def send_countdown(self, session_id: str, seconds: int):
        message = CountdownMessage(data=CountdownData(seconds=seconds))
        await self.send_message(session_id, message.model_dump(mode="json"))

    async def send_audio_chunk(self, session_id: str, audio: str, chunk_index: int, is_final: bool):
        message = AgentAudioChunkMessage(
            data=AgentAudioChunkData(audio=audio, chunk_index=chunk_index, is_final=is_final)
        )
        await self.send_message(session_id, message.model_dump(mode="json"))

    async def send_agent_text(self, session_id: str, text: str):
        message = AgentTextMessage(data=AgentTextData(text=text))
        await self.send_message(session_id, message.model_dump(mode="json"))

    async def send_turn_complete(self, session_id: str, user_text: str, agent_text: str):
        message = TurnCompleteMessage(
            data=TurnCompleteData(user_text=user_text, agent_text=agent_text, timestamp=_now_ms())
        )
        await self.send_message(session_id, message.model_dump(mode="json"))

    async def send_error(
        self,
        session_id: str,
        code: str,
        message_text: str,
        recoverable: bool = True
    ):
        """
        Send error message to client.

        Args:
            session_id: Session ID
            code: Error code
            message_text: Error message
            recoverable: Whether error is recoverable
        """
        message = ErrorMessage(
            data=ErrorData(
                code=code,
                message=message_text,
                recoverable=recoverable,
                timestamp=_now_ms()
            )
        )
        await self.send_message(session_id, message.model_dump(mode="json"))

    async def send_pong(self, session_id: str):
        await self.send_message(session_id, PongMessage().model_dump(mode="json"))

    def update_heartbeat(self, session_id: str):
        if session_id in self.last_heartbeat:
            self.last_heartbeat[session_id] = _now_ms()

    def get_stale_sessions(self, timeout_ms: int = 60000) -> list[str]:
        """
        Get list of sessions with no heartbeat for timeout period.

        Args:
            timeout_ms: Timeout in milliseconds (default: 60 seconds)
        """
        current_time = _now_ms()
        return [
            session_id
            for session_id, last_heartbeat in self.last_heartbeat.items()
            if current_time - last_heartbeat > timeout_ms
        ]

    async def cleanup_stale_sessions(self, timeout_ms: int = 60000) -> list[str]:
        """
        Stop the conversation of every stale session, close its socket and forget it.

        Returns:
            The swept session IDs
        """
        stale_sessions = self.get_stale_sessions(timeout_ms)

        for session_id in stale_sessions:
            logger.warning(f"Disconnecting stale session: {session_id}")
            conversation = self.conversations.get(session_id)
            if conversation is not None:
                await conversation.close()

            websocket = self.active_connections.get(session_id)
            if websocket is not None:
                try:
                    await websocket.close(code=1001)
                except Exception as e:
                    logger.debug(f"Closing stale socket {session_id} failed: {e}")

            await self.disconnect(session_id)

        return stale_sessions

    def get_session_count(self) -> int:
        """Get count of active sessions."""
        return len(self.active_connections)

    def session_exists(self, session_id: str) -> bool:
        return session_id in self.active_connections


class ConversationSession:
    """
    One client's conversation: wires a TurnOrchestrator to its WebSocket.

    The recognizer runs on the client and is driven through recognizer_control
    messages; synthesized audio is streamed back as agent_audio_chunk messages.
    """

    def __init__(
        self,
        session_id: str,
        manager: ConnectionManager,
        readiness: SynthesisReadiness,
        synthesizer: Optional[ElevenLabsSynthesizer] = None,
        response_service: Optional[OpenAIResponseService] = None,
        silence_config: Optional[SilenceConfig] = None,
        timings: Optional[TurnTimings] = None,
    ):
        self.session_id = session_id
        self.manager = manager

        self._owns_synthesizer = synthesizer is None
        self._owns_response_service = response_service is None
        self.synthesizer = synthesizer or ElevenLabsSynthesizer(on_audio=self._send_audio_chunk)
        self.response_service = response_service or OpenAIResponseService()
        self.recognizer = ClientRelayRecognizer(send=self._send)

        self.orchestrator = TurnOrchestrator(
            session_id=session_id,
            recognizer=self.recognizer,
            synthesizer=self.synthesizer,
            response_service=self.response_service,
            readiness=readiness,
            silence_config=silence_config,
            timings=timings,
            on_state_change=self._on_state_change,
            on_countdown=self._on_countdown,
            on_error=self._on_error,
            on_agent_text=self._on_agent_text,
            on_turn_complete=self._on_turn_complete,
        )
        manager.conversations[session_id] = self

    async def start(self, greeting: Optional[str] = None):
        """Open the conversation, optionally with a spoken greeting."""
        if greeting:
            await self.orchestrator.greet(greeting)

    async def handle_message(self, raw: dict):
        """
        Route one client message to the orchestrator.

        Malformed messages are reported to the client and otherwise ignored.
        """
        try:
            message = parse_client_message(raw)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Invalid message from session {self.session_id}: {e}")
            await self.manager.send_error(self.session_id, "INVALID_MESSAGE", str(e), recoverable=True)
            return

        self.manager.update_heartbeat(self.session_id)

        if isinstance(message, StartListeningMessage):
            await self.orchestrator.request_listening()

        elif isinstance(message, TranscriptFragmentMessage):
            await self.orchestrator.handle_fragment(message.data.text, message.data.is_final)

        elif isinstance(message, RecognizerErrorMessage):
            await self.orchestrator.handle_recognizer_error(message.data.code)

        elif isinstance(message, StopListeningMessage):
            await self.orchestrator.finish_speaking()

        elif isinstance(message, PlaybackCompleteMessage):
            self.synthesizer.playback_complete()

        elif isinstance(message, UpdateSettingsMessage):
            self._apply_settings(message)

        elif isinstance(message, EndConversationMessage):
            await self.orchestrator.end_conversation()

        elif isinstance(message, PingMessage):
            await self.manager.send_pong(self.session_id)

    def _apply_settings(self, message: UpdateSettingsMessage):
        data = message.data
        current = self.orchestrator.silence_config
        threshold = (
            data.custom_threshold_seconds
            if "custom_threshold_seconds" in data.model_fields_set
            else current.custom_threshold_seconds
        )
        self.orchestrator.update_silence_config(
            SilenceConfig(
                mode=data.silence_mode or current.mode,
                custom_threshold_seconds=threshold,
            )
        )

    async def close(self):
        """Stop the orchestrator and release the HTTP sessions this conversation opened."""
        await self.orchestrator.close()
        if self._owns_synthesizer:
            await self.synthesizer.close()
        if self._owns_response_service:
            await self.response_service.close()

    # Orchestrator callbacks

    async def _send(self, message: dict) -> bool:
        return await self.manager.send_message(self.session_id, message)

    async def _send_audio_chunk(self, audio: str, chunk_index: int, is_final: bool):
        await self.manager.send_audio_chunk(self.session_id, audio, chunk_index, is_final)

    async def _on_state_change(self, from_state: TurnState, to_state: TurnState):
        await self.manager.send_state_change(
            self.session_id, from_state, to_state, self.orchestrator.is_locked
        )

    async def _on_countdown(self, seconds: int):
        await self.manager.send_countdown(self.session_id, seconds)

    async def _on_error(self, message: str):
        await self.manager.send_error(self.session_id, "RECOGNIZER_ERROR", message, recoverable=True)

    async def _on_agent_text(self, text: str):
        await self.manager.send_agent_text(self.session_id, text)

    async def _on_turn_complete(self, user_text: str, agent_text: str):
        await self.manager.send_turn_complete(self.session_id, user_text, agent_text)


# Global connection manager instance
connection_manager = ConnectionManager()
