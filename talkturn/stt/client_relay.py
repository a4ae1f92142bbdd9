"""
Client-side speech recognizer relay.

Recognition runs in the browser; this adapter only tells it when to start and
stop. Fragments and errors come back over the same WebSocket and are routed to
the orchestrator by the connection handler.
"""

import logging
from typing import Awaitable, Callable

from talkturn.adapters.base import SpeechRecognizer
from talkturn.models import RecognizerAction, RecognizerControlData, RecognizerControlMessage

logger = logging.getLogger(__name__)


class ClientRelayRecognizer(SpeechRecognizer):
    """
    Controls a recognizer that lives on the client.
    """

    def __init__(self, send: Callable[[dict], Awaitable[bool]]):
        """
        Args:
            send: Sends a JSON message to this session's client
        """
        self._send = send
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    async def start(self) -> None:
        self._active = True
        await self._send_control(RecognizerAction.START)

    async def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        await self._send_control(RecognizerAction.STOP)

    async def _send_control(self, action: RecognizerAction):
        message = RecognizerControlMessage(data=RecognizerControlData(action=action))
        sent = await self._send(message.model_dump(mode="json"))
        if not sent:
            logger.warning(f"Recognizer control '{action.value}' could not be delivered")
        else:
            logger.debug(f"Recognizer control sent: {action.value}")
