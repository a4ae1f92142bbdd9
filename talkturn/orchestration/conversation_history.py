"""
Conversation history buffer for maintaining turn-based context.

Stores all prior user/assistant turns and exposes them as chat messages.
"""

from typing import List, Dict


class ConversationHistory:
    """
    Tracks the full turn-based conversation history.

    The response service only receives the most recent window (get_recent).
    """

    def __init__(self) -> None:
        self._messages: List[Dict[str, str]] = []

    def add_turn(self, user_text: str, assistant_text: str) -> None:
        """
        Add a completed turn to history.

        Args:
            user_text: User's resolved transcript
            assistant_text: Assistant's reply text
        """
        if user_text:
            self._messages.append({"role": "user", "content": user_text})
        if assistant_text:
            self._messages.append({"role": "assistant", "content": assistant_text})

    def add_assistant_message(self, text: str) -> None:
        """Record an unprompted assistant utterance such as the greeting."""
        if text:
            self._messages.append({"role": "assistant", "content": text})

    def get_messages(self) -> List[Dict[str, str]]:
        """Full message history."""
        return list(self._messages)

    def get_recent(self, count: int) -> List[Dict[str, str]]:
        """
        Most recent messages, oldest first.

        Args:
            count: Maximum number of messages
        """
        if count <= 0:
            return []
        return list(self._messages[-count:])

    def clear(self) -> None:
        """Clear the conversation history."""
        self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)
