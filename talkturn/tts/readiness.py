"""
Synthesis readiness gate.

A cold text-to-speech engine tends to drop or garble the first real utterance.
Before the orchestrator trusts the synthesizer, this gate (1) waits for the
voice list and (2) round-trips one silent, very fast test utterance. Both steps
are bounded and fall through to "proceed anyway": the gate warms the engine, it
does not guarantee it.

One instance is constructed per process and injected into every orchestrator.
"""

import asyncio
import logging
from typing import Dict, Optional

from talkturn.adapters.base import SpeechSynthesizer

logger = logging.getLogger(__name__)

TEST_UTTERANCE = "Hi."


class SynthesisReadiness:
    """
    Memoized one-time warm-up of a speech synthesizer.
    """

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        max_voice_attempts: int = 10,
        base_delay_s: float = 0.05,
        max_delay_s: float = 0.5,
        test_timeout_s: float = 2.0,
    ):
        """
        Args:
            synthesizer: Engine to warm up
            max_voice_attempts: Voice-list queries before giving up
            base_delay_s: First retry delay, doubled on every attempt
            max_delay_s: Cap for a single retry delay
            test_timeout_s: Hard bound for the silent test utterance
        """
        self.synthesizer = synthesizer
        self.max_voice_attempts = max_voice_attempts
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.test_timeout_s = test_timeout_s

        self.voices_loaded = False
        self.test_passed = False
        self._ready = False
        self._init_task: Optional[asyncio.Task] = None

    async def initialize(self) -> bool:
        """
        Warm up the synthesizer once.

        Concurrent and later callers share the same initialization.

        Returns:
            True once the gate is open
        """
        if self._init_task is None:
            self._init_task = asyncio.create_task(self._initialize())
        # Shield so a cancelled caller does not cancel the shared warm-up
        return await asyncio.shield(self._init_task)

    async def shutdown(self):
        """
        Cancel an unfinished warm-up and wait for it to unwind.

        Call before closing the synthesizer so no voice poll or test utterance
        is still using it.
        """
        task = self._init_task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Synthesis readiness: warm-up cancelled")

    def is_ready(self) -> bool:
        return self._ready

    def ready_state(self) -> Dict[str, bool]:
        return {
            "is_ready": self._ready,
            "voices_loaded": self.voices_loaded,
            "test_passed": self.test_passed,
        }

    async def _initialize(self) -> bool:
        logger.info("Synthesis readiness: starting initialization")
        await self._load_voices()
        await self._run_test_utterance()
        self._ready = True
        logger.info(f"Synthesis readiness: complete {self.ready_state()}")
        return True

    async def _load_voices(self):
        """Poll the voice list with exponential backoff."""
        for attempt in range(self.max_voice_attempts):
            try:
                voices = await self.synthesizer.get_voices()
            except Exception as e:
                logger.warning(f"Voice list query failed (attempt {attempt + 1}): {e}")
                voices = []

            if voices:
                self.voices_loaded = True
                logger.info(f"Synthesis readiness: loaded {len(voices)} voices")
                return

            if attempt < self.max_voice_attempts - 1:
                await asyncio.sleep(min(self.base_delay_s * (2 ** attempt), self.max_delay_s))

        # Some engines never report voices; do not block on them
        logger.warning("Synthesis readiness: no voices found after retries - proceeding anyway")
        self.voices_loaded = True

    async def _run_test_utterance(self):
        """Round-trip one silent utterance, bounded by test_timeout_s."""
        try:
            await asyncio.wait_for(
                self.synthesizer.speak(TEST_UTTERANCE, volume=0.0, rate=10.0),
                timeout=self.test_timeout_s,
            )
            self.test_passed = True
            logger.info("Synthesis readiness: test utterance successful")
        except asyncio.TimeoutError:
            logger.warning(
                f"Synthesis readiness: test utterance timed out after {self.test_timeout_s}s - proceeding anyway"
            )
        except Exception as e:
            logger.warning(f"Synthesis readiness: test utterance failed ({e}) - proceeding anyway")

    def __repr__(self) -> str:
        return f"SynthesisReadiness({self.ready_state()})"
