"""
In-memory collaborators for orchestrator tests.
"""

import asyncio
from typing import Dict, List, Optional

from talkturn.adapters.base import ResponseService, SpeechRecognizer, SpeechSynthesizer
from talkturn.config import TurnTimings


def fast_timings(**overrides) -> TurnTimings:
    """Timing table scaled down so a whole turn runs in well under a second."""
    values = dict(
        patient_silence_s=0.6,
        push_to_talk_silence_s=0.2,
        continuous_silence_short_s=0.2,
        continuous_silence_medium_s=0.25,
        continuous_silence_long_s=0.3,
        min_words_before_timers=5,
        early_poll_interval_s=0.01,
        early_completion_min_wait_s=0.05,
        early_completion_min_confidence=0.8,
        countdown_tick_s=0.01,
        cooldown_buffer_s=0.02,
        lock_release_delay_s=0.05,
        response_timeout_s=0.5,
    )
    values.update(overrides)
    return TurnTimings(**values)


class FakeRecognizer(SpeechRecognizer):

    def __init__(self, stop_delay_s: float = 0.0):
        self.active = False
        self.starts = 0
        self.stops = 0
        self.stop_delay_s = stop_delay_s

    async def start(self) -> None:
        self.active = True
        self.starts += 1

    async def stop(self) -> None:
        if self.stop_delay_s:
            await asyncio.sleep(self.stop_delay_s)
        if self.active:
            self.stops += 1
        self.active = False


class FakeSynthesizer(SpeechSynthesizer):

    def __init__(self, voices: Optional[List[str]] = None, fail: bool = False, delay_s: float = 0.0):
        self.voices = ["voice-1"] if voices is None else voices
        self.fail = fail
        self.delay_s = delay_s
        self.spoken: List[dict] = []
        self.voice_queries = 0
        self.playback_acks = 0

    async def get_voices(self) -> List[str]:
        self.voice_queries += 1
        return self.voices

    async def speak(self, text: str, *, volume: float = 1.0, rate: float = 1.0) -> None:
        self.spoken.append({"text": text, "volume": volume, "rate": rate})
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.fail:
            raise RuntimeError("synthesis failed")

    def playback_complete(self):
        self.playback_acks += 1


class FakeResponseService(ResponseService):

    def __init__(self, reply: str = "That sounds wonderful. What did you do next?", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[Dict] = []

    async def send(self, transcript: str, recent_context: List[Dict[str, str]]) -> str:
        self.calls.append({"transcript": transcript, "context": list(recent_context)})
        if self.error:
            raise self.error
        return self.reply


def history_mark(orchestrator) -> int:
    return len(orchestrator.state_machine.state_history)


async def wait_for_state(orchestrator, state, timeout: float = 2.0, since: Optional[int] = None):
    """
    Poll until the orchestrator is in a state.

    With `since`, any transition into the state recorded after that history
    index counts, so short-lived states are not missed.
    """

    def reached() -> bool:
        if since is None:
            return orchestrator.state == state
        history = orchestrator.state_machine.state_history[since:]
        return any(record["to_state"] == state.value for record in history)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not reached():
        if loop.time() > deadline:
            raise AssertionError(f"Timed out waiting for {state}, still in {orchestrator.state}")
        await asyncio.sleep(0.005)


class FakeWebSocket:

    def __init__(self, fail_with=None):
        self.client = ("127.0.0.1", 50000)
        self.accepted = False
        self.close_code = None
        self.sent = []
        self.fail_with = fail_with

    async def accept(self):
        self.accepted = True

    async def close(self, code: int = 1000):
        self.close_code = code

    async def send_json(self, message):
        if self.fail_with:
            raise self.fail_with
        self.sent.append(message)

    def types(self):
        return [m["type"] for m in self.sent]
