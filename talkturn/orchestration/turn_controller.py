"""
Turn Orchestrator - coordinates who holds the microphone and speakers.

This is the most complex component, coordinating:
- State machine transitions
- Recognizer start/stop and fragment accumulation
- Silence timer, early-completion poll and countdown display
- Duplicate and echo rejection before anything reaches the response service
- Reply synthesis under an exclusive microphone lock, followed by a cooldown

Critical: while Locked is set (SPEAKING and COOLING_DOWN) no activation request
may re-open the microphone. This is the primary guard against the system
hearing its own voice.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple

from talkturn.adapters.base import ResponseService, SpeechRecognizer, SpeechSynthesizer
from talkturn.config import TurnTimings, settings
from talkturn.models import SilenceConfig, SilenceMode, TurnSnapshot
from talkturn.orchestration.completion import CompletionHeuristic, word_count
from talkturn.orchestration.conversation_history import ConversationHistory
from talkturn.orchestration.echo_filter import EchoFilter
from talkturn.orchestration.silence_timer import compute_silence_duration
from talkturn.orchestration.speech_session import SpeechSession
from talkturn.orchestration.turn_timers import TurnTimers
from talkturn.state_machine import StateMachine, TurnState
from talkturn.tts.readiness import SynthesisReadiness

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I encountered an error. Please try again."

_PERMISSION_DENIED = "Microphone permission denied. Please allow microphone access."

RECOGNIZER_ERROR_MESSAGES = {
    "not-allowed": _PERMISSION_DENIED,
    "permission-denied": _PERMISSION_DENIED,
    "service-not-allowed": _PERMISSION_DENIED,
    "no-speech": "No speech detected. Please try again.",
    "network": "Network error. Please check your connection.",
    "audio-capture": "No microphone was found. Please check your audio device.",
}

MAX_TRANSCRIPT_CHARS = 5000


def sanitize_transcript(text: str) -> str:
    """Drop angle brackets and cap the length before the text leaves the orchestrator."""
    return text.replace("<", "").replace(">", "")[:MAX_TRANSCRIPT_CHARS]


class TurnOrchestrator:
    """
    Orchestrates turn-taking between the learner and the system.

    State Flow:
    IDLE → LISTENING → AWAITING_SILENCE → PROCESSING → SPEAKING → COOLING_DOWN → IDLE
             ↑ (activation,        ↓ (duplicate / echo)
               only if unlocked)  IDLE

    State Meanings:
    - LISTENING: Recognizer running, nothing heard yet
    - AWAITING_SILENCE: Speech captured, timers deciding when the learner is done
    - PROCESSING: Transcript handed to the response service
    - SPEAKING: Reply being synthesized, microphone locked
    - COOLING_DOWN: Speakers settling, microphone still locked
    """

    def __init__(
        self,
        session_id: str,
        recognizer: SpeechRecognizer,
        synthesizer: SpeechSynthesizer,
        response_service: ResponseService,
        readiness: SynthesisReadiness,
        echo_filter: Optional[EchoFilter] = None,
        completion: Optional[CompletionHeuristic] = None,
        silence_config: Optional[SilenceConfig] = None,
        timings: Optional[TurnTimings] = None,
        fallback_synthesizer: Optional[SpeechSynthesizer] = None,
        auto_rearm: Optional[bool] = None,
        recent_context_messages: Optional[int] = None,
        on_state_change: Optional[Callable[[TurnState, TurnState], Awaitable[None]]] = None,
        on_countdown: Optional[Callable[[int], Awaitable[None]]] = None,
        on_error: Optional[Callable[[str], Awaitable[None]]] = None,
        on_agent_text: Optional[Callable[[str], Awaitable[None]]] = None,
        on_turn_complete: Optional[Callable[[str, str], Awaitable[None]]] = None,  # user_text, agent_text
    ):
        self.session_id = session_id

        # Collaborators
        self.recognizer = recognizer
        self.synthesizer = synthesizer
        self.fallback_synthesizer = fallback_synthesizer
        self.response_service = response_service
        self.readiness = readiness

        # Callbacks (on_state_change is a state machine listener)
        self.on_countdown = on_countdown
        self.on_error = on_error
        self.on_agent_text = on_agent_text
        self.on_turn_complete = on_turn_complete

        # Core components
        self.state_machine = StateMachine()
        if on_state_change:
            self.state_machine.add_listener(on_state_change)
        self.echo_filter = echo_filter or EchoFilter(assistant_name=settings.assistant_name)
        self.completion = completion or CompletionHeuristic()
        self.history = ConversationHistory()
        self.timers = TurnTimers(
            on_silence_complete=self._on_silence_complete,
            on_countdown=self._notify_countdown,
        )

        # Policy
        self.silence_config = silence_config or SilenceConfig(
            mode=settings.silence_mode,
            custom_threshold_seconds=settings.custom_silence_threshold_s,
        )
        self.timings = timings or TurnTimings.from_settings(settings)
        self.auto_rearm = settings.auto_rearm_listening if auto_rearm is None else auto_rearm
        self.recent_context_messages = (
            settings.recent_context_messages if recent_context_messages is None else recent_context_messages
        )

        # Turn tracking
        self._locked = False
        self._session: Optional[SpeechSession] = None
        self._last_processed_transcript = ""
        self._error_text: Optional[str] = None
        self._response_task: Optional[asyncio.Task] = None
        # Bumped by end_conversation; an in-flight finalize from an older generation is dropped
        self._generation = 0

        logger.info(f"TurnOrchestrator initialized for session {session_id} (mode={self.silence_config.mode.value})")

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> TurnState:
        return self.state_machine.current_state

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def countdown_seconds(self) -> int:
        return self.timers.countdown_seconds

    @property
    def error_text(self) -> Optional[str]:
        return self._error_text

    def snapshot(self) -> TurnSnapshot:
        """Current turn state for the UI."""
        return TurnSnapshot(
            state=self.state,
            locked=self._locked,
            countdown_seconds=self.timers.countdown_seconds,
            error=self._error_text,
        )

    # ------------------------------------------------------------------
    # Human turn
    # ------------------------------------------------------------------

    async def request_listening(self) -> bool:
        """
        Open the microphone for a human turn.

        A request while the system holds the lock is a no-op (not queued).

        Returns:
            True if listening started
        """
        if self._locked:
            logger.info(f"Activation request while locked ({self.state}) - ignoring")
            return False

        if self.state != TurnState.IDLE:
            logger.debug(f"Activation request in {self.state} state - ignoring")
            return False

        self.timers.cancel_all()
        self._error_text = None
        self._session = SpeechSession()
        self._session.start()

        if not await self._transition(TurnState.LISTENING, "activation request"):
            self._session = None
            return False

        try:
            await self.recognizer.start()
        except Exception as e:
            logger.error(f"Recognizer failed to start: {e}", exc_info=True)
            self._session = None
            await self._transition(TurnState.IDLE, "recognizer failed to start")
            await self._set_error(f"Failed to start speech recognition: {e}")
            return False

        return True

    async def handle_fragment(self, text: str, is_final: bool = False):
        """
        Handle an interim or final recognizer fragment.

        Args:
            text: Recognized text (interim results re-send the growing phrase)
            is_final: True if the recognizer finalized this fragment
        """
        current_state = self.state

        if current_state not in (TurnState.LISTENING, TurnState.AWAITING_SILENCE):
            logger.debug(f"Fragment in {current_state} state - ignoring: '{text[:40]}'")
            return

        if self._session is None or not self._session.active:
            logger.debug("No active speech session - ignoring fragment")
            return

        if not text or not text.strip():
            return

        self._session.add_fragment(text, is_final)

        if current_state == TurnState.LISTENING:
            await self._transition(TurnState.AWAITING_SILENCE, "speech detected")

        self._restart_timers()

    async def handle_recognizer_error(self, code: str):
        """
        Surface a recognizer error and give up the current listening window.

        The lock is not touched: an error during a system turn only updates the message.
        """
        message = RECOGNIZER_ERROR_MESSAGES.get(code, f"Speech recognition error: {code}")
        logger.warning(f"Recognizer error '{code}' in {self.state} state")

        if self.state in (TurnState.LISTENING, TurnState.AWAITING_SILENCE):
            self.timers.cancel_all()
            self._session = None
            await self._stop_recognizer()
            if self.state in (TurnState.LISTENING, TurnState.AWAITING_SILENCE):
                await self._transition(TurnState.IDLE, f"recognizer error: {code}")

        await self._set_error(message)

    async def finish_speaking(self):
        """
        Push-to-talk release: finalize now if anything was heard, otherwise stand down.
        """
        if self.state == TurnState.AWAITING_SILENCE:
            await self._finalize("push-to-talk release")
        elif self.state == TurnState.LISTENING and self._session is not None:
            self._session = None
            await self._stop_recognizer()
            if self.state == TurnState.LISTENING and self._session is None:
                await self._transition(TurnState.IDLE, "released without speech")

    def update_silence_config(self, config: SilenceConfig):
        """
        Apply new silence settings. A running silence window restarts under the new policy.
        """
        self.silence_config = config
        logger.info(
            f"Silence config updated: mode={config.mode.value}, "
            f"custom_threshold={config.custom_threshold_seconds}"
        )
        if self.state == TurnState.AWAITING_SILENCE and self._session is not None:
            self._restart_timers()

    # ------------------------------------------------------------------
    # Endpointing
    # ------------------------------------------------------------------

    def _restart_timers(self):
        """
        (Re)start silence timer, early-completion poll and countdown for the current text.
        """
        self.timers.cancel_all()

        text = self._session.get_live_text()
        words = word_count(text)

        if words < self.timings.min_words_before_timers and self.silence_config.mode != SilenceMode.PATIENT:
            logger.debug(f"Only {words} words so far - waiting for more speech")
            return

        duration = compute_silence_duration(self.silence_config, words, self.timings)
        logger.debug(f"Waiting {duration:.1f}s for silence ({words} words): '{text[:50]}'")

        self.timers.start(
            duration_s=duration,
            poll_interval_s=self.timings.early_poll_interval_s,
            poll_check=self._check_early_completion,
            countdown_tick_s=self.timings.countdown_tick_s,
        )

    async def _check_early_completion(self) -> bool:
        """
        Finalize before the full silence window when the text is clearly complete.

        Never fires before early_completion_min_wait_s of real silence.

        Returns:
            True when polling should stop
        """
        if self.state != TurnState.AWAITING_SILENCE or self._session is None:
            return True

        if self._session.time_since_last_fragment() < self.timings.early_completion_min_wait_s:
            return False

        result = self.completion.evaluate(self._session.get_live_text())
        if result.is_complete and result.confidence > self.timings.early_completion_min_confidence:
            logger.info(f"Early completion: {result.reason.value} ({result.confidence:.2f})")
            await self._finalize("early completion")
            return True

        return False

    async def _on_silence_complete(self):
        """Called when the full silence window expired."""
        await self._finalize("silence timeout")

    async def _finalize(self, reason: str):
        """
        End the listening window and decide what to do with the transcript.

        Duplicates and echo return to IDLE silently; anything else goes to the
        response service.
        """
        if self.state != TurnState.AWAITING_SILENCE or self._session is None:
            logger.debug(f"Finalize ({reason}) in {self.state} state - ignoring")
            return

        # Claimed before the first await: a concurrent finalize sees no session
        session, self._session = self._session, None
        generation = self._generation

        self.timers.cancel_all()
        transcript = session.end()
        await self._stop_recognizer()

        # end_conversation or a recognizer error may have run while stopping
        if self.state != TurnState.AWAITING_SILENCE or self._generation != generation:
            logger.info(f"Turn changed while finalizing ({reason}) - dropping transcript")
            return

        await self._transition(TurnState.PROCESSING, reason)
        if self._generation != generation:
            return

        if transcript == self._last_processed_transcript:
            logger.info("Duplicate transcript - discarding")
            await self._transition(TurnState.IDLE, "duplicate transcript")
            await self._maybe_rearm()
            return

        if self.echo_filter.is_echo(transcript):
            logger.info(f"Echo of system speech - discarding: '{transcript[:50]}'")
            await self._transition(TurnState.IDLE, "echo discarded")
            await self._maybe_rearm()
            return

        self._last_processed_transcript = transcript
        transcript = sanitize_transcript(transcript)
        logger.info(f"Processing user speech: '{transcript[:80]}'")
        self._response_task = asyncio.create_task(self._run_system_turn(transcript))

    # ------------------------------------------------------------------
    # System turn
    # ------------------------------------------------------------------

    async def greet(self, text: str) -> bool:
        """
        Speak a system-initiated utterance (e.g. the opening greeting).

        Returns:
            True if the greeting was started
        """
        if self._locked or self.state != TurnState.IDLE:
            logger.info(f"Greeting skipped in {self.state} state (locked={self._locked})")
            return False

        await self._transition(TurnState.PROCESSING, "system greeting")
        self.history.add_assistant_message(text)
        self._response_task = asyncio.create_task(self._run_system_turn(None, reply=text))
        return True

    async def _run_system_turn(self, transcript: Optional[str], reply: Optional[str] = None):
        """
        PROCESSING → SPEAKING → COOLING_DOWN → IDLE for one reply.
        """
        if reply is None:
            reply, ok = await self._get_reply(transcript)
            if ok:
                self.history.add_turn(transcript, reply)

        await self._speak_reply(reply)

        if transcript is not None:
            await self._notify_turn_complete(transcript, reply)

        await self._cool_down()
        await self._maybe_rearm()

    async def _get_reply(self, transcript: str) -> Tuple[str, bool]:
        """
        Ask the response service for a reply, bounded by response_timeout_s.

        Returns:
            (reply text, True) or (fallback text, False) on any failure
        """
        context = self.history.get_recent(self.recent_context_messages)
        try:
            reply = await asyncio.wait_for(
                self.response_service.send(transcript, context),
                timeout=self.timings.response_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.error(f"Response service timeout ({self.timings.response_timeout_s}s) - using fallback reply")
            return FALLBACK_REPLY, False
        except Exception as e:
            logger.error(f"Response service error: {e} - using fallback reply", exc_info=True)
            return FALLBACK_REPLY, False

        if not reply or not reply.strip():
            logger.warning("Response service returned an empty reply - using fallback reply")
            return FALLBACK_REPLY, False

        return reply.strip(), True

    async def _speak_reply(self, reply: str):
        """
        Lock the microphone and synthesize the reply.

        Synthesis failures are logged and count as "done speaking".
        """
        # Record before speaking: the mic may pick up the first words immediately
        self.echo_filter.record_system_utterance(reply)
        self._locked = True
        await self._stop_recognizer()
        await self._transition(TurnState.SPEAKING, "reply ready")
        await self._notify_agent_text(reply)

        try:
            if not self.readiness.is_ready():
                logger.info("Synthesis not ready - waiting for warm-up")
                await self.readiness.initialize()
            await self.synthesizer.speak(reply)
        except Exception as e:
            logger.error(f"Synthesis failed: {e}", exc_info=True)
            await self._fallback_speak(reply)

    async def _fallback_speak(self, reply: str):
        """One best-effort attempt on the fallback synthesizer."""
        if self.fallback_synthesizer is None:
            return
        try:
            logger.info("Trying fallback synthesizer")
            await self.fallback_synthesizer.speak(reply)
        except Exception as e:
            logger.error(f"Fallback synthesis failed: {e}", exc_info=True)

    async def _cool_down(self):
        """
        Hold the lock while the speakers settle.

        Synthesis "complete" fires before the audio has physically finished, so
        a short quiesce buffer is followed by a longer release delay.
        """
        await self._transition(TurnState.COOLING_DOWN, "synthesis finished")

        await asyncio.sleep(self.timings.cooldown_buffer_s)
        logger.debug("Audio device quiesced - holding microphone lock")
        await asyncio.sleep(self.timings.lock_release_delay_s)

        self._locked = False
        await self._transition(TurnState.IDLE, "cooldown complete")

    async def _maybe_rearm(self):
        """Continuous mode re-opens the microphone once the turn is over."""
        if not self.auto_rearm or self.silence_config.mode != SilenceMode.CONTINUOUS:
            return
        if self.state == TurnState.IDLE and not self._locked:
            logger.info("Continuous mode - re-arming microphone")
            await self.request_listening()

    # ------------------------------------------------------------------
    # Conversation lifecycle
    # ------------------------------------------------------------------

    async def end_conversation(self):
        """
        Stop everything and return to IDLE from any state.
        """
        logger.info(f"Ending conversation in {self.state} state")
        self._generation += 1
        self.timers.cancel_all()
        self._session = None

        await self._cancel_response_task()

        self._locked = False
        self._last_processed_transcript = ""
        await self._stop_recognizer()

        self.timers.cancel_all()
        await self.state_machine.reset("end of conversation")

    async def _cancel_response_task(self):
        task = self._response_task
        self._response_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def close(self):
        """Cleanup on disconnect."""
        await self.end_conversation()
        logger.info(f"TurnOrchestrator stopped for session {self.session_id}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _transition(self, to_state: TurnState, reason: str) -> bool:
        """Every transition clears the turn's timers."""
        self.timers.cancel_all()
        return await self.state_machine.transition(to_state, reason=reason)

    async def _stop_recognizer(self):
        try:
            await self.recognizer.stop()
        except Exception as e:
            logger.error(f"Error stopping recognizer: {e}", exc_info=True)

    async def _set_error(self, message: str):
        self._error_text = message
        if self.on_error:
            try:
                await self.on_error(message)
            except Exception as e:
                logger.error(f"Error in error callback: {e}", exc_info=True)

    async def _notify_countdown(self, seconds: int):
        if self.on_countdown:
            await self.on_countdown(seconds)

    async def _notify_agent_text(self, text: str):
        if self.on_agent_text:
            try:
                await self.on_agent_text(text)
            except Exception as e:
                logger.error(f"Error in agent text callback: {e}", exc_info=True)

    async def _notify_turn_complete(self, user_text: str, agent_text: str):
        if self.on_turn_complete:
            try:
                await self.on_turn_complete(user_text, agent_text)
            except Exception as e:
                logger.error(f"Error in turn complete callback: {e}", exc_info=True)

    def __repr__(self) -> str:
        return f"TurnOrchestrator(session={self.session_id}, state={self.state}, locked={self._locked})"
