"""
Speech session for one listening window.

Recognizers re-send growing interim text, so the latest fragment overwrites the
accumulator. Final fragments are kept separately and win when the session ends.
Once ended, the session is frozen and must not be reused.
"""

import logging
import time
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class SessionClosedError(RuntimeError):
    """Raised when an ended speech session is ended again."""


class SpeechSession:
    """
    Accumulates recognizer fragments into a single logical utterance.

    Key Features:
    - Last-write-wins accumulator for interim text
    - Insertion-ordered, de-duplicated set of final fragments
    - Timestamps for the orchestrator's silence and early-completion timers
    - Immutable after end()
    """

    def __init__(self):
        self.accumulated_text = ""
        # dict keys keep insertion order and uniqueness
        self._final_fragments: Dict[str, None] = {}
        self.started_at: Optional[float] = None
        self.last_fragment_at: Optional[float] = None
        self.active = False
        self._ended = False
        self._resolved: Optional[str] = None

    @property
    def final_fragments(self) -> List[str]:
        """Final fragments in arrival order."""
        return list(self._final_fragments)

    def start(self):
        """Reset the accumulator and open the session."""
        if self._ended:
            raise SessionClosedError("Speech session already ended - create a new one")

        self.accumulated_text = ""
        self._final_fragments.clear()
        now = time.monotonic()
        self.started_at = now
        self.last_fragment_at = now
        self.active = True
        logger.debug("Speech session started")

    def add_fragment(self, text: str, is_final: bool = False):
        """
        Add a recognizer fragment.

        Args:
            text: Interim or final recognized text
            is_final: True if the recognizer finalized this fragment
        """
        if not self.active:
            logger.warning("Speech session inactive - ignoring fragment")
            return

        self.last_fragment_at = time.monotonic()

        if is_final:
            self._final_fragments[text] = None
            logger.info(f"Added final fragment: {text}")
        else:
            logger.debug(f"Interim fragment: {text[:50]}")

        self.accumulated_text = text

    def end(self) -> str:
        """
        Close the session and resolve its transcript.

        Returns:
            Joined final fragments, or the last interim text if none were final

        Raises:
            SessionClosedError: If the session was already ended
        """
        if self._ended:
            raise SessionClosedError("Speech session already ended")

        self.active = False
        self._ended = True
        self._resolved = self._resolve()
        self.accumulated_text = self._resolved
        logger.debug(f"Speech session ended: '{self._resolved[:50]}'")
        return self._resolved

    def get_final_transcript(self) -> str:
        """
        Resolved transcript (frozen once the session has ended).
        """
        if self._ended:
            return self._resolved or ""
        return self._resolve()

    def get_current_text(self) -> str:
        """Latest fragment text, used for live completion checks."""
        return self.accumulated_text

    def get_live_text(self) -> str:
        """
        Everything heard so far: final fragments plus a pending interim phrase.
        """
        if self._ended:
            return self._resolved or ""
        if self.accumulated_text in self._final_fragments:
            return self._resolve()
        return " ".join([*self._final_fragments, self.accumulated_text]).strip()

    def has_final_fragments(self) -> bool:
        return bool(self._final_fragments)

    def is_ended(self) -> bool:
        return self._ended

    def time_since_last_fragment(self) -> float:
        """Seconds since the last fragment (or since start)."""
        if self.last_fragment_at is None:
            return 0.0
        return time.monotonic() - self.last_fragment_at

    def duration(self) -> float:
        """Seconds since the session started."""
        if self.started_at is None:
            return 0.0
        return time.monotonic() - self.started_at

    def _resolve(self) -> str:
        if self._final_fragments:
            return " ".join(self._final_fragments).strip()
        return self.accumulated_text.strip()

    def __repr__(self) -> str:
        status = "active" if self.active else ("ended" if self._ended else "idle")
        return f"SpeechSession(finals={len(self._final_fragments)}, {status})"
