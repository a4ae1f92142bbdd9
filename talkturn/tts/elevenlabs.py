"""
ElevenLabs streaming TTS synthesizer.

Converts text to speech, streams the audio to the client and resolves once the
client reports playback complete (or the playback timeout elapses).
"""

import asyncio
import base64
import logging
from typing import AsyncGenerator, Awaitable, Callable, List, Optional

import aiohttp

from talkturn.adapters.base import SpeechSynthesizer
from talkturn.config import settings

logger = logging.getLogger(__name__)

# (base64 audio, chunk_index, is_final)
AudioSink = Callable[[str, int, bool], Awaitable[None]]


class SynthesisError(Exception):
    """Raised when ElevenLabs cannot produce audio for an utterance."""


class ElevenLabsSynthesizer(SpeechSynthesizer):
    """
    Manages streaming requests to ElevenLabs for TTS.

    Features:
    - Streaming audio generation, forwarded chunk by chunk to an audio sink
    - Persistent HTTP session with connection pooling
    - Silent utterances (volume 0) are generated but never sent to the client
    - Playback completion acknowledged by the client, bounded by a timeout
    """

    def __init__(
        self,
        on_audio: Optional[AudioSink] = None,
        api_key: Optional[str] = None,
        voice_id: Optional[str] = None,
        playback_timeout_s: Optional[float] = None,
    ):
        self.api_key = api_key or settings.elevenlabs_api_key
        self.voice_id = voice_id or settings.elevenlabs_voice_id
        self.model = "eleven_turbo_v2_5"
        self.on_audio = on_audio
        self.playback_timeout_s = (
            playback_timeout_s if playback_timeout_s is not None else settings.playback_timeout_s
        )

        self._session: Optional[aiohttp.ClientSession] = None
        self._playback_done = asyncio.Event()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create persistent aiohttp session with connection pooling."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=5,
                ttl_dns_cache=300,
                keepalive_timeout=120,
            )
            timeout = aiohttp.ClientTimeout(
                total=30,
                connect=3,
                sock_read=10,
            )
            self._session = aiohttp.ClientSession(connector=connector, timeout=timeout)
            logger.info("Created persistent ElevenLabs session with connection pooling")

        return self._session

    async def close(self):
        """Close persistent session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info("Closed ElevenLabs persistent session")

    async def get_voices(self) -> List[str]:
        """
        Voice IDs available to this API key.

        Returns:
            List of voice IDs (empty if the list is not available yet)
        """
        if not self.api_key:
            logger.warning("ElevenLabs API key not configured - no voices")
            return []

        session = await self._get_session()
        async with session.get(
            "https://api.elevenlabs.io/v1/voices",
            headers={"xi-api-key": self.api_key},
        ) as response:
            if response.status != 200:
                logger.warning(f"ElevenLabs voice list returned {response.status}")
                return []
            data = await response.json()

        voices = [v.get("voice_id") for v in data.get("voices", []) if v.get("voice_id")]
        logger.debug(f"ElevenLabs voices loaded: {len(voices)}")
        return voices

    async def generate_audio(self, text: str, rate: float = 1.0) -> AsyncGenerator[bytes, None]:
        """
        Generate streaming audio from text.

        Args:
            text: Text to convert to speech
            rate: Speaking rate (clamped to what the API accepts)

        Yields:
            Audio chunks as bytes

        Raises:
            SynthesisError: Missing key, non-2xx status or network failure
        """
        if not self.api_key:
            raise SynthesisError("ElevenLabs API key not configured")

        url = f"https://api.elevenlabs.io/v1/text-to-speech/{self.voice_id}/stream"
        payload = {
            "text": text,
            "model_id": self.model,
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0.75,
                "speed": max(0.7, min(rate, 1.2)),
            },
        }
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }

        session = await self._get_session()
        try:
            async with session.post(url, headers=headers, json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"ElevenLabs API error {response.status}: {error_text[:200]}")
                    raise SynthesisError(f"ElevenLabs API error {response.status}")

                chunk_index = 0
                async for chunk in response.content.iter_chunked(4096):
                    if chunk:
                        chunk_index += 1
                        yield chunk

                logger.info(f"TTS generation complete: {chunk_index} chunks")
        except aiohttp.ClientError as e:
            raise SynthesisError(f"ElevenLabs network error: {e}") from e

    async def speak(self, text: str, *, volume: float = 1.0, rate: float = 1.0) -> None:
        """
        Synthesize text, stream it to the client and wait for playback.

        Raises:
            SynthesisError: If no audio could be generated
        """
        silent = volume <= 0 or self.on_audio is None
        self._playback_done.clear()

        chunk_index = 0
        pending: Optional[bytes] = None
        async for chunk in self.generate_audio(text, rate=rate):
            if silent:
                chunk_index += 1
                continue
            # Hold one chunk back so the last one can be flagged final
            if pending is not None:
                await self.on_audio(self.encode_audio_base64(pending), chunk_index, False)
                chunk_index += 1
            pending = chunk

        if pending is not None:
            await self.on_audio(self.encode_audio_base64(pending), chunk_index, True)
            chunk_index += 1

        if chunk_index == 0:
            raise SynthesisError("ElevenLabs returned no audio")

        if silent:
            logger.debug("Silent utterance generated - skipping playback")
            return

        logger.info(f"TTS streaming done ({chunk_index} chunks sent) - waiting for client playback")
        try:
            await asyncio.wait_for(self._playback_done.wait(), timeout=self.playback_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"Playback timeout after {self.playback_timeout_s}s - assuming playback finished")

    def playback_complete(self):
        """Called when the client reports that audio playback finished."""
        self._playback_done.set()

    @staticmethod
    def encode_audio_base64(audio_bytes: bytes) -> str:
        """Encode audio bytes to base64 for WebSocket transmission."""
        return base64.b64encode(audio_bytes).decode("utf-8")
