"""
Per-turn timer ownership.

A turn runs up to three timers while awaiting silence: the silence timer, the
early-completion poll and the countdown display. They are started together and
always cancelled together through cancel_all(), which the orchestrator calls on
every state transition.
"""

import asyncio
import logging
import math
from typing import Awaitable, Callable, Optional

from talkturn.orchestration.silence_timer import SilenceTimer

logger = logging.getLogger(__name__)


class TurnTimers:
    """
    Silence timer, early-completion poll and countdown for the current turn.
    """

    def __init__(
        self,
        on_silence_complete: Callable[[], Awaitable[None]],
        on_countdown: Optional[Callable[[int], Awaitable[None]]] = None,
    ):
        """
        Args:
            on_silence_complete: Called when the full silence window expires
            on_countdown: Called with whole seconds remaining, for the UI indicator
        """
        self.silence_timer = SilenceTimer(on_silence_complete)
        self.on_countdown = on_countdown
        self.countdown_seconds = 0

        self._poll_task: Optional[asyncio.Task] = None
        self._countdown_task: Optional[asyncio.Task] = None

    def start(
        self,
        duration_s: float,
        poll_interval_s: float,
        poll_check: Callable[[], Awaitable[bool]],
        countdown_tick_s: float = 1.0,
    ):
        """
        Start all timers for a fresh silence window.

        Args:
            duration_s: Silence window
            poll_interval_s: Early-completion poll period
            poll_check: Returns True once it has finalized the turn
            countdown_tick_s: Countdown refresh period
        """
        self.cancel_all()
        self.silence_timer.start(duration_s)
        self._poll_task = asyncio.create_task(
            self._run_poll(poll_interval_s, duration_s / 2.0, poll_check)
        )
        self._countdown_task = asyncio.create_task(self._run_countdown(countdown_tick_s))

    def cancel_all(self):
        """Cancel every pending timer of this turn."""
        self.silence_timer.cancel()
        self._cancel_task(self._poll_task)
        self._cancel_task(self._countdown_task)
        self._poll_task = None
        self._countdown_task = None
        self.countdown_seconds = 0

    def is_running(self) -> bool:
        return self.silence_timer.is_running() or self._task_alive(self._poll_task)

    async def _run_poll(
        self,
        interval_s: float,
        window_s: float,
        poll_check: Callable[[], Awaitable[bool]],
    ):
        """Re-check for an early finish until half the silence window is gone."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            while True:
                await asyncio.sleep(interval_s)
                if loop.time() - started >= window_s:
                    logger.debug("Early-completion poll window over - waiting for full silence")
                    return
                if await poll_check():
                    return
        except asyncio.CancelledError:
            logger.debug("Early-completion poll cancelled")

    async def _run_countdown(self, tick_s: float):
        try:
            while self.silence_timer.is_running():
                seconds = math.ceil(self.silence_timer.remaining_s())
                if seconds != self.countdown_seconds:
                    self.countdown_seconds = seconds
                    await self._notify_countdown(seconds)
                await asyncio.sleep(tick_s)
        except asyncio.CancelledError:
            logger.debug("Countdown cancelled")

    async def _notify_countdown(self, seconds: int):
        if not self.on_countdown:
            return
        try:
            await self.on_countdown(seconds)
        except Exception as e:
            logger.error(f"Error in countdown callback: {e}", exc_info=True)

    @staticmethod
    def _task_alive(task: Optional[asyncio.Task]) -> bool:
        return task is not None and not task.done()

    @staticmethod
    def _cancel_task(task: Optional[asyncio.Task]):
        # A timer callback may end the turn from inside its own task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def __repr__(self) -> str:
        return f"TurnTimers(silence={self.silence_timer!r}, countdown={self.countdown_seconds}s)"
