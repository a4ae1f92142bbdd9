"""
Pydantic models for turn-taking values and WebSocket messages.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional
from enum import Enum

from talkturn.state_machine import TurnState


# ============================================================================
# Enums
# ============================================================================

class SilenceMode(str, Enum):
    """Microphone modes that drive the silence window."""
    CONTINUOUS = "continuous"
    PUSH_TO_TALK = "push_to_talk"
    PATIENT = "patient"


class CompletionReason(str, Enum):
    """Which completion rule produced a result."""
    EMPTY = "empty"
    PUNCTUATION = "punctuation"
    PHRASE_ENDING = "phrase_ending"
    SHORT_UTTERANCE = "short_utterance"
    INCOMPLETE_QUESTION = "incomplete_question"
    TRAILING_CONJUNCTION = "trailing_conjunction"
    INCOMPLETE_PHRASE = "incomplete_phrase"
    LONG_UTTERANCE = "long_utterance"
    UNCERTAIN = "uncertain"


class RecognizerAction(str, Enum):
    """Control actions sent to a client-side recognizer."""
    START = "start"
    STOP = "stop"


# ============================================================================
# Turn-taking values
# ============================================================================

class SilenceConfig(BaseModel):
    """
    User-facing silence settings.
    Consulted by the orchestrator's timing decisions only.
    """
    mode: SilenceMode = SilenceMode.PUSH_TO_TALK
    custom_threshold_seconds: Optional[float] = Field(
        None,
        gt=0,
        le=60,
        description="Explicit silence threshold, overrides the mode default (not patient mode)"
    )


class CompletionResult(BaseModel):
    """Outcome of the completion heuristic for one piece of text."""
    model_config = ConfigDict(frozen=True)

    is_complete: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: CompletionReason


class TurnSnapshot(BaseModel):
    """What the UI renders: current state, lock, countdown and recognizer error."""
    state: TurnState
    locked: bool
    countdown_seconds: int = Field(0, ge=0)
    error: Optional[str] = None


# ============================================================================
# Client → Server Messages
# ============================================================================

class StartListeningMessage(BaseModel):
    """
    Sent when the user asks for the microphone (mic button / push-to-talk press).
    Ignored while the system holds the lock.
    """
    type: Literal["start_listening"] = "start_listening"
    data: dict = Field(default_factory=dict)


class TranscriptFragmentData(BaseModel):
    """Recognizer fragment payload."""
    text: str = Field(..., description="Interim or final recognized text")
    is_final: bool = Field(False, description="True if the recognizer finalized this fragment")


class TranscriptFragmentMessage(BaseModel):
    """
    Sent by the client-side recognizer for every interim and final result.
    """
    type: Literal["transcript_fragment"] = "transcript_fragment"
    data: TranscriptFragmentData


class RecognizerErrorData(BaseModel):
    """Recognizer error payload."""
    code: str = Field(..., description="Recognizer error code, e.g. not-allowed, no-speech")


class RecognizerErrorMessage(BaseModel):
    """
    Sent when the client-side recognizer reports an error.
    """
    type: Literal["recognizer_error"] = "recognizer_error"
    data: RecognizerErrorData


class StopListeningMessage(BaseModel):
    """
    Sent on push-to-talk release. Finalizes whatever was captured.
    """
    type: Literal["stop_listening"] = "stop_listening"
    data: dict = Field(default_factory=dict)


class PlaybackCompleteMessage(BaseModel):
    """
    Sent when the client finished playing the agent audio.
    """
    type: Literal["playback_complete"] = "playback_complete"
    data: dict = Field(default_factory=dict)


class UpdateSettingsData(BaseModel):
    """Settings update data payload."""
    silence_mode: Optional[SilenceMode] = Field(
        None,
        description="continuous, push_to_talk or patient"
    )
    custom_threshold_seconds: Optional[float] = Field(
        None,
        gt=0,
        le=60,
        description="Explicit silence threshold in seconds"
    )


class UpdateSettingsMessage(BaseModel):
    """
    Sent when user changes voice settings in UI.
    """
    type: Literal["update_settings"] = "update_settings"
    data: UpdateSettingsData


class EndConversationMessage(BaseModel):
    """
    Sent when the user ends the conversation.
    """
    type: Literal["end_conversation"] = "end_conversation"
    data: dict = Field(default_factory=dict)


class PingMessage(BaseModel):
    """
    Heartbeat ping message.
    """
    type: Literal["ping"] = "ping"
    data: dict = Field(default_factory=dict)


class PongMessage(BaseModel):
    """
    Heartbeat pong response.
    """
    type: Literal["pong"] = "pong"
    data: dict = Field(default_factory=dict)


# ============================================================================
# Server → Client Messages
# ============================================================================

class SessionReadyData(BaseModel):
    """Session ready data payload."""
    session_id: str = Field(..., description="UUID of created session")
    timestamp: int = Field(..., description="Unix timestamp in milliseconds")


class SessionReadyMessage(BaseModel):
    """
    Sent on successful connection.
    """
    type: Literal["session_ready"] = "session_ready"
    data: SessionReadyData


class StateChangeData(BaseModel):
    """State change data payload."""
    from_state: TurnState = Field(..., description="Previous state")
    to_state: TurnState = Field(..., description="New state")
    locked: bool = Field(..., description="True while the system owns the microphone")
    timestamp: int = Field(..., description="Unix timestamp in milliseconds")


class StateChangeMessage(BaseModel):
    """
    Sent on state machine transition.
    Drives the UI indicators.
    """
    type: Literal["state_change"] = "state_change"
    data: StateChangeData


class CountdownData(BaseModel):
    """Countdown data payload."""
    seconds: int = Field(..., ge=0, description="Seconds left in the silence window")


class CountdownMessage(BaseModel):
    """
    Sent every second while awaiting silence ("listening... Ns").
    """
    type: Literal["countdown"] = "countdown"
    data: CountdownData


class RecognizerControlData(BaseModel):
    """Recognizer control payload."""
    action: RecognizerAction


class RecognizerControlMessage(BaseModel):
    """
    Tells the client-side recognizer to start or stop.
    """
    type: Literal["recognizer_control"] = "recognizer_control"
    data: RecognizerControlData


class AgentAudioChunkData(BaseModel):
    """Agent audio chunk data payload."""
    audio: str = Field(..., description="Base64-encoded audio data")
    chunk_index: int = Field(..., ge=0, description="Sequential index for ordering")
    is_final: bool = Field(..., description="True if last chunk")


class AgentAudioChunkMessage(BaseModel):
    """
    Streams agent audio to frontend for playback.
    """
    type: Literal["agent_audio_chunk"] = "agent_audio_chunk"
    data: AgentAudioChunkData


class AgentTextData(BaseModel):
    """Agent text payload."""
    text: str = Field(..., description="Agent reply text")


class AgentTextMessage(BaseModel):
    """
    Sent for every system reply so the text survives a synthesis failure.
    """
    type: Literal["agent_text"] = "agent_text"
    data: AgentTextData


class TurnCompleteData(BaseModel):
    """Turn complete data payload."""
    user_text: str = Field(..., description="User transcript")
    agent_text: str = Field(..., description="Agent response")
    timestamp: int = Field(..., description="Unix timestamp in milliseconds")


class TurnCompleteMessage(BaseModel):
    """
    Sent when the system finished answering a user turn.
    """
    type: Literal["turn_complete"] = "turn_complete"
    data: TurnCompleteData


class ErrorData(BaseModel):
    """Error data payload."""
    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")
    recoverable: bool = Field(..., description="True if system can recover automatically")
    timestamp: int = Field(..., description="Unix timestamp in milliseconds")


class ErrorMessage(BaseModel):
    """
    Sent when error occurs.
    """
    type: Literal["error"] = "error"
    data: ErrorData


# ============================================================================
# Union Types for Message Routing
# ============================================================================

ClientMessage = (
    StartListeningMessage |
    TranscriptFragmentMessage |
    RecognizerErrorMessage |
    StopListeningMessage |
    PlaybackCompleteMessage |
    UpdateSettingsMessage |
    EndConversationMessage |
    PingMessage |
    PongMessage
)

ServerMessage = (
    SessionReadyMessage |
    StateChangeMessage |
    CountdownMessage |
    RecognizerControlMessage |
    AgentAudioChunkMessage |
    AgentTextMessage |
    TurnCompleteMessage |
    ErrorMessage |
    PongMessage
)
