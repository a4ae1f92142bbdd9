"""
Turn state machine.

Owns the current turn state, rejects transitions outside ALLOWED_TRANSITIONS
and tells listeners about every accepted change.

States: IDLE → LISTENING → AWAITING_SILENCE → PROCESSING → SPEAKING → COOLING_DOWN → IDLE
"""

import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

TransitionListener = Callable[["TurnState", "TurnState"], Awaitable[None]]


class TurnState(str, Enum):
    """
    Who holds the microphone and speakers.

    IDLE: Nobody holds the microphone, waiting for an activation request
    LISTENING: Microphone open, no speech recognized yet
    AWAITING_SILENCE: Speech captured, silence / early-completion timers deciding when it ends
    PROCESSING: Utterance finalized, waiting for the response service
    SPEAKING: System reply is being synthesized (microphone locked)
    COOLING_DOWN: Reply finished, waiting for the speakers to go quiet (microphone locked)
    """
    IDLE = "IDLE"
    LISTENING = "LISTENING"
    AWAITING_SILENCE = "AWAITING_SILENCE"
    PROCESSING = "PROCESSING"
    SPEAKING = "SPEAKING"
    COOLING_DOWN = "COOLING_DOWN"


class StateMachine:
    """
    Validated turn state with a change log.

    Every non-idle state can fall back to IDLE, so end of conversation is
    always reachable.
    """

    ALLOWED_TRANSITIONS: Dict[TurnState, Set[TurnState]] = {
        TurnState.IDLE: {
            TurnState.LISTENING,  # Activation request accepted
            TurnState.PROCESSING,  # System-initiated turn (greeting)
        },
        TurnState.LISTENING: {
            TurnState.AWAITING_SILENCE,  # First non-empty fragment
            TurnState.IDLE,  # Recognizer error / release / end of conversation
        },
        TurnState.AWAITING_SILENCE: {
            TurnState.PROCESSING,  # Finalized (silence or early completion)
            TurnState.IDLE,  # Recognizer error / end of conversation
        },
        TurnState.PROCESSING: {
            TurnState.SPEAKING,  # Reply (or fallback) ready
            TurnState.IDLE,  # Duplicate or echo discarded
        },
        TurnState.SPEAKING: {
            TurnState.COOLING_DOWN,  # Synthesis finished (success or failure)
            TurnState.IDLE,  # End of conversation
        },
        TurnState.COOLING_DOWN: {
            TurnState.IDLE,  # Lock released
        },
    }

    def __init__(self, initial_state: TurnState = TurnState.IDLE):
        self._current_state: TurnState = initial_state
        self._previous_state: Optional[TurnState] = None
        self._state_history: List[dict] = []
        self._listeners: List[TransitionListener] = []

        self._record_state_change(None, initial_state, "initialization")

    @property
    def current_state(self) -> TurnState:
        return self._current_state

    @property
    def previous_state(self) -> Optional[TurnState]:
        return self._previous_state

    @property
    def state_history(self) -> List[dict]:
        """Copy of every accepted change, oldest first."""
        return self._state_history.copy()

    def can_transition(self, to_state: TurnState) -> bool:
        return to_state in self.ALLOWED_TRANSITIONS.get(self._current_state, set())

    def add_listener(self, listener: TransitionListener) -> None:
        """
        Call `listener(from_state, to_state)` after every accepted transition.

        Listener errors are logged and never undo the transition.
        """
        self._listeners.append(listener)

    async def transition(self, to_state: TurnState, reason: str = "") -> bool:
        """
        Move to `to_state` if the table allows it.

        Returns:
            True if the state changed
        """
        from_state = self._current_state

        if not self.can_transition(to_state):
            allowed = sorted(s.value for s in self.ALLOWED_TRANSITIONS.get(from_state, set()))
            logger.warning(f"Rejected transition {from_state.value} → {to_state.value} ({reason}); allowed: {allowed}")
            return False

        self._previous_state = from_state
        self._current_state = to_state
        self._record_state_change(from_state, to_state, reason)

        logger.info(f"Turn state {from_state.value} → {to_state.value}" + (f" ({reason})" if reason else ""))

        for listener in list(self._listeners):
            try:
                await listener(from_state, to_state)
            except Exception as e:
                logger.error(f"Transition listener failed on {from_state.value} → {to_state.value}: {e}", exc_info=True)

        return True

    async def reset(self, reason: str = "reset") -> bool:
        """Force IDLE. Returns False when already idle."""
        if self._current_state == TurnState.IDLE:
            return False
        return await self.transition(TurnState.IDLE, reason=reason)

    def _record_state_change(self, from_state: Optional[TurnState], to_state: TurnState, reason: str) -> None:
        self._state_history.append(
            {
                "from_state": from_state.value if from_state else None,
                "to_state": to_state.value,
                "reason": reason,
                "timestamp": int(time.time() * 1000),
            }
        )

    def __repr__(self) -> str:
        return f"StateMachine(current={self._current_state.value}, previous={self._previous_state})"
