"""
Turn orchestration: endpointing, echo rejection and the microphone lock.
"""

from .completion import CompletionHeuristic
from .echo_filter import EchoFilter
from .speech_session import SessionClosedError, SpeechSession
from .turn_controller import FALLBACK_REPLY, TurnOrchestrator

__all__ = [
    "CompletionHeuristic",
    "EchoFilter",
    "FALLBACK_REPLY",
    "SessionClosedError",
    "SpeechSession",
    "TurnOrchestrator",
]
