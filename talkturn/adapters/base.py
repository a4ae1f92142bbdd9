"""
Collaborator contracts for the turn orchestrator.

This module defines the *interface only*: no timers, endpointing, echo
filtering or state transitions live here.

- The recognizer is started and stopped by the orchestrator. Fragments and
  errors are pushed into the orchestrator by the transport that owns the
  recognizer (TurnOrchestrator.handle_fragment / handle_recognizer_error).
- speak() resolving OR raising both mean "done speaking" to the orchestrator.
- send() may raise; the orchestrator replaces failures with a fallback reply.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List


class SpeechRecognizer(ABC):
    """
    Speech-to-text capability that emits (text, is_final) fragments while active.
    """

    @abstractmethod
    async def start(self) -> None:
        """Open the microphone and begin emitting fragments."""
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:
        """
        Stop emitting fragments.

        Contract:
        - Idempotent: stopping an inactive recognizer is a no-op.
        """
        raise NotImplementedError


class SpeechSynthesizer(ABC):
    """
    Text-to-speech capability.
    """

    @abstractmethod
    async def get_voices(self) -> List[str]:
        """
        Voices currently available.

        May legitimately return an empty list while the engine is still loading.
        """
        raise NotImplementedError

    @abstractmethod
    async def speak(self, text: str, *, volume: float = 1.0, rate: float = 1.0) -> None:
        """
        Synthesize text and return once playback has finished.

        Args:
            text: Text to speak
            volume: 0.0 for a silent (warm-up) utterance
            rate: Speaking rate multiplier

        Raises:
            Exception: Any synthesis or playback failure
        """
        raise NotImplementedError


class ResponseService(ABC):
    """
    Produces the system's reply to a finished user utterance.
    """

    @abstractmethod
    async def send(self, transcript: str, recent_context: List[Dict[str, str]]) -> str:
        """
        Get reply text for a transcript.

        Args:
            transcript: The user's resolved utterance
            recent_context: Recent chat messages ({"role", "content"}), oldest first

        Returns:
            Reply text
        """
        raise NotImplementedError
