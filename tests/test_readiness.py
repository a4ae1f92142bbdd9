"""
Unit tests for SynthesisReadiness.

Tests one-time warm-up, shared by concurrent callers, and the
"proceed anyway" fall-through.
"""

import asyncio

import pytest

from talkturn.tts.readiness import SynthesisReadiness
from tests.fakes import FakeSynthesizer


def make_readiness(synthesizer, **overrides):
    values = dict(max_voice_attempts=3, base_delay_s=0.001, max_delay_s=0.005, test_timeout_s=0.1)
    values.update(overrides)
    return SynthesisReadiness(synthesizer, **values)


class TestReadiness:

    @pytest.mark.asyncio
    async def test_initial_state(self):
        readiness = make_readiness(FakeSynthesizer())
        assert not readiness.is_ready()
        assert readiness.ready_state() == {"is_ready": False, "voices_loaded": False, "test_passed": False}

    @pytest.mark.asyncio
    async def test_initialize_success(self):
        synthesizer = FakeSynthesizer()
        readiness = make_readiness(synthesizer)

        assert await readiness.initialize()
        assert readiness.ready_state() == {"is_ready": True, "voices_loaded": True, "test_passed": True}

        # One silent, fast test utterance
        assert synthesizer.spoken == [{"text": "Hi.", "volume": 0.0, "rate": 10.0}]

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_initialization(self):
        synthesizer = FakeSynthesizer(delay_s=0.02)
        readiness = make_readiness(synthesizer)

        results = await asyncio.gather(*(readiness.initialize() for _ in range(5)))

        assert results == [True] * 5
        assert synthesizer.voice_queries == 1
        assert len(synthesizer.spoken) == 1

    @pytest.mark.asyncio
    async def test_later_calls_are_memoized(self):
        synthesizer = FakeSynthesizer()
        readiness = make_readiness(synthesizer)

        await readiness.initialize()
        await readiness.initialize()

        assert len(synthesizer.spoken) == 1

    @pytest.mark.asyncio
    async def test_no_voices_proceeds_after_retries(self):
        synthesizer = FakeSynthesizer(voices=[])
        readiness = make_readiness(synthesizer, max_voice_attempts=4)

        assert await readiness.initialize()
        assert synthesizer.voice_queries == 4
        assert readiness.voices_loaded
        assert readiness.is_ready()

    @pytest.mark.asyncio
    async def test_test_utterance_timeout_proceeds(self):
        synthesizer = FakeSynthesizer(delay_s=1.0)
        readiness = make_readiness(synthesizer, test_timeout_s=0.02)

        assert await readiness.initialize()
        assert readiness.is_ready()
        assert not readiness.test_passed

    @pytest.mark.asyncio
    async def test_test_utterance_error_proceeds(self):
        synthesizer = FakeSynthesizer(fail=True)
        readiness = make_readiness(synthesizer)

        assert await readiness.initialize()
        assert readiness.is_ready()
        assert not readiness.test_passed

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_warmup(self):
        synthesizer = FakeSynthesizer(delay_s=0.05)
        readiness = make_readiness(synthesizer)

        caller = asyncio.create_task(readiness.initialize())
        await asyncio.sleep(0.01)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        assert await readiness.initialize()
        assert len(synthesizer.spoken) == 1

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_warmup(self):
        synthesizer = FakeSynthesizer(delay_s=1.0)
        readiness = make_readiness(synthesizer, test_timeout_s=2.0)

        caller = asyncio.create_task(readiness.initialize())
        await asyncio.sleep(0.02)
        assert len(synthesizer.spoken) == 1

        await asyncio.wait_for(readiness.shutdown(), timeout=0.5)

        assert readiness._init_task.cancelled()
        assert not readiness.is_ready()
        assert not readiness.test_passed
        with pytest.raises(asyncio.CancelledError):
            await caller

    @pytest.mark.asyncio
    async def test_shutdown_after_warmup_is_harmless(self):
        readiness = make_readiness(FakeSynthesizer())

        await readiness.shutdown()
        assert await readiness.initialize()
        await readiness.shutdown()

        assert readiness.is_ready()
