"""
OpenAI chat-completions response service.

Turns a finished user utterance plus recent context into the conversation
partner's reply. Uses a persistent aiohttp session for connection pooling.
"""

import asyncio
import logging
from typing import Dict, List, Optional

import aiohttp

from talkturn.adapters.base import ResponseService
from talkturn.config import settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a friendly, patient English conversation partner named TalkTime. "
    "Your goal is to help students practice speaking English through natural, "
    "engaging conversations. Keep replies short and easy to say out loud, "
    "ask one follow-up question at a time, and never repeat your previous reply."
)


class ResponseServiceError(Exception):
    """Raised when the response service returns no usable reply."""


class OpenAIResponseService(ResponseService):
    """
    Manages requests to OpenAI for conversation replies.

    Features:
    - Persistent HTTP session with connection pooling
    - Raises ResponseServiceError on non-2xx, malformed or empty payloads
    - Optional connection warm-up
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self.api_key = api_key or settings.openai_api_key
        self.model = model or settings.openai_model
        self.organization_id = settings.openai_organization_id
        self.base_url = "https://api.openai.com/v1/chat/completions"
        self.system_prompt = system_prompt
        self.temperature = 0.8
        self.max_tokens = 500

        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create persistent aiohttp session with connection pooling."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                ttl_dns_cache=300,
                keepalive_timeout=120,
            )
            timeout = aiohttp.ClientTimeout(
                total=30,
                connect=3,
                sock_read=10,
            )
            self._session = aiohttp.ClientSession(connector=connector, timeout=timeout)
            logger.info("Created persistent OpenAI session with connection pooling")

        return self._session

    async def close(self):
        """Close persistent session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info("Closed OpenAI persistent session")

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.organization_id:
            headers["OpenAI-Organization"] = self.organization_id
        return headers

    def build_messages(self, transcript: str, recent_context: List[Dict[str, str]]) -> List[Dict[str, str]]:
        """
        Assemble the chat message list.

        Args:
            transcript: The user's resolved utterance
            recent_context: Recent history messages, oldest first
        """
        return [
            {"role": "system", "content": self.system_prompt},
            *recent_context,
            {"role": "user", "content": transcript},
        ]

    async def send(self, transcript: str, recent_context: List[Dict[str, str]]) -> str:
        """
        Request a reply for the transcript.

        Returns:
            Reply text

        Raises:
            ResponseServiceError: Missing key, non-2xx status, malformed or empty payload
        """
        if not self.api_key:
            raise ResponseServiceError("OpenAI API key not configured")

        payload = {
            "model": self.model,
            "messages": self.build_messages(transcript, recent_context),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        logger.info(f"Requesting reply: model={self.model}, context={len(recent_context)} messages")
        start_time = asyncio.get_running_loop().time()

        session = await self._get_session()
        try:
            async with session.post(self.base_url, headers=self._headers(), json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"OpenAI API error {response.status}: {error_text[:200]}")
                    raise ResponseServiceError(f"OpenAI API error {response.status}")

                try:
                    data = await response.json()
                except (aiohttp.ContentTypeError, ValueError) as e:
                    raise ResponseServiceError(f"Malformed OpenAI payload: {e}") from e
        except aiohttp.ClientError as e:
            logger.error(f"OpenAI network error: {e}")
            raise ResponseServiceError(f"OpenAI network error: {e}") from e

        reply = self.extract_reply(data)
        elapsed = int((asyncio.get_running_loop().time() - start_time) * 1000)
        logger.info(f"Reply received in {elapsed}ms ({len(reply)} chars)")
        return reply

    @staticmethod
    def extract_reply(data: dict) -> str:
        """
        Pull the reply text out of a chat-completions payload.

        Raises:
            ResponseServiceError: If the payload has no non-empty message content
        """
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ResponseServiceError(f"Malformed OpenAI payload: {e}") from e

        if not isinstance(content, str) or not content.strip():
            raise ResponseServiceError("OpenAI returned an empty reply")

        return content.strip()
