"""
Silence timer and silence-window policy.

The silence window is how long the user may stay quiet before their utterance
is finalized. It depends on the microphone mode and on how much they have said.
"""

import asyncio
import logging
from typing import Callable, Optional, Awaitable

from talkturn.config import TurnTimings
from talkturn.models import SilenceConfig, SilenceMode

logger = logging.getLogger(__name__)


def compute_silence_duration(config: SilenceConfig, word_count: int, timings: TurnTimings) -> float:
    """
    Silence window in seconds.

    Patient mode is fixed; otherwise an explicit custom threshold wins, then
    push-to-talk, then the continuous-mode tiers by word count.

    Args:
        config: Current silence settings
        word_count: Words in the current fragment
        timings: Timing table

    Returns:
        Duration in seconds
    """
    if config.mode == SilenceMode.PATIENT:
        return timings.patient_silence_s
    if config.custom_threshold_seconds is not None:
        return config.custom_threshold_seconds
    if config.mode == SilenceMode.PUSH_TO_TALK:
        return timings.push_to_talk_silence_s
    if word_count < 10:
        return timings.continuous_silence_short_s
    if word_count < 30:
        return timings.continuous_silence_medium_s
    return timings.continuous_silence_long_s


class SilenceTimer:
    """
    One-shot cancellable silence timer.

    Key Features:
    - Restartable: start() while running resets the countdown
    - Cancellable when new speech arrives or the turn ends
    - Tracks start time so the orchestrator can derive remaining time
    """

    def __init__(self, on_silence_complete: Callable[[], Awaitable[None]]):
        """
        Initialize silence timer.

        Args:
            on_silence_complete: Callback to invoke when the silence period completes
        """
        self.on_silence_complete = on_silence_complete

        self._timer_task: Optional[asyncio.Task] = None
        self._is_running = False
        self._duration_s: float = 0.0
        self._started_at: Optional[float] = None

    def start(self, duration_s: float):
        """
        Start the silence timer.

        If timer is already running, this restarts it (resets the countdown).

        Args:
            duration_s: Silence window in seconds
        """
        if self._timer_task and not self._timer_task.done():
            self._timer_task.cancel()

        self._is_running = True
        self._duration_s = duration_s
        self._started_at = asyncio.get_running_loop().time()
        self._timer_task = asyncio.create_task(self._run_timer())
        logger.debug(f"Silence timer started: {duration_s:.1f}s")

    def cancel(self):
        """
        Cancel the running timer.

        Used when new speech arrives before the silence period completes.
        """
        if not self._is_running:
            return

        self._is_running = False

        if self._timer_task and not self._timer_task.done():
            self._timer_task.cancel()
            logger.debug("Silence timer cancelled")

    def is_running(self) -> bool:
        """Check if timer is currently active."""
        return self._is_running

    @property
    def duration_s(self) -> float:
        return self._duration_s

    def elapsed_s(self) -> float:
        """Seconds since the timer was last started."""
        if self._started_at is None:
            return 0.0
        return asyncio.get_running_loop().time() - self._started_at

    def remaining_s(self) -> float:
        if not self._is_running:
            return 0.0
        return max(0.0, self._duration_s - self.elapsed_s())

    async def _run_timer(self):
        """
        Internal timer coroutine.

        Waits for the silence window, then invokes callback if not cancelled.
        """
        try:
            await asyncio.sleep(self._duration_s)

            if self._is_running:
                logger.debug("Silence period complete - triggering callback")
                self._is_running = False
                await self.on_silence_complete()

        except asyncio.CancelledError:
            logger.debug("Timer task cancelled")

    def __repr__(self) -> str:
        status = "running" if self._is_running else "idle"
        return f"SilenceTimer(duration={self._duration_s:.1f}s, status={status})"
