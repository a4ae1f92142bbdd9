"""
Unit tests for ElevenLabsSynthesizer streaming and playback handling.

Audio generation is replaced so no network calls are made.
"""

import asyncio
import base64

import pytest

from talkturn.tts.elevenlabs import ElevenLabsSynthesizer, SynthesisError


def with_chunks(synthesizer, chunks):
    async def generate_audio(text, rate=1.0):
        for chunk in chunks:
            yield chunk

    synthesizer.generate_audio = generate_audio
    return synthesizer


class TestSpeak:

    @pytest.mark.asyncio
    async def test_streams_chunks_and_flags_last(self):
        sent = []

        async def on_audio(audio, index, is_final):
            sent.append((audio, index, is_final))

        synthesizer = with_chunks(
            ElevenLabsSynthesizer(on_audio=on_audio, api_key="key", playback_timeout_s=0.5),
            [b"one", b"two", b"three"],
        )

        task = asyncio.create_task(synthesizer.speak("Hello there"))
        await asyncio.sleep(0.01)
        synthesizer.playback_complete()
        await asyncio.wait_for(task, timeout=1.0)

        assert [(i, final) for _, i, final in sent] == [(0, False), (1, False), (2, True)]
        assert base64.b64decode(sent[2][0]) == b"three"

    @pytest.mark.asyncio
    async def test_silent_utterance_sends_nothing(self):
        sent = []

        async def on_audio(audio, index, is_final):
            sent.append(index)

        synthesizer = with_chunks(
            ElevenLabsSynthesizer(on_audio=on_audio, api_key="key", playback_timeout_s=5.0),
            [b"a", b"b"],
        )

        await asyncio.wait_for(synthesizer.speak("Hi.", volume=0.0, rate=10.0), timeout=1.0)
        assert sent == []

    @pytest.mark.asyncio
    async def test_no_audio_raises(self):
        synthesizer = with_chunks(ElevenLabsSynthesizer(api_key="key"), [])

        with pytest.raises(SynthesisError):
            await synthesizer.speak("Hello")

    @pytest.mark.asyncio
    async def test_playback_timeout_resolves(self):
        async def on_audio(audio, index, is_final):
            pass

        synthesizer = with_chunks(
            ElevenLabsSynthesizer(on_audio=on_audio, api_key="key", playback_timeout_s=0.05),
            [b"a"],
        )

        await asyncio.wait_for(synthesizer.speak("Hello"), timeout=1.0)

    @pytest.mark.asyncio
    async def test_missing_key_raises(self):
        synthesizer = ElevenLabsSynthesizer(api_key="")
        synthesizer.api_key = None

        with pytest.raises(SynthesisError):
            await synthesizer.speak("Hello")

    @pytest.mark.asyncio
    async def test_no_key_means_no_voices(self):
        synthesizer = ElevenLabsSynthesizer(api_key="")
        synthesizer.api_key = None

        assert await synthesizer.get_voices() == []


def test_encode_audio_base64():
    assert ElevenLabsSynthesizer.encode_audio_base64(b"abc") == "YWJj"
