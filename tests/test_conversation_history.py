"""
Unit tests for ConversationHistory.
"""

from talkturn.orchestration.conversation_history import ConversationHistory


class TestConversationHistory:

    def test_add_turn(self):
        history = ConversationHistory()
        history.add_turn("I like tea", "Green or black?")

        assert history.get_messages() == [
            {"role": "user", "content": "I like tea"},
            {"role": "assistant", "content": "Green or black?"},
        ]
        assert len(history) == 2

    def test_recent_window_keeps_newest(self):
        history = ConversationHistory()
        for i in range(5):
            history.add_turn(f"user {i}", f"reply {i}")

        recent = history.get_recent(6)
        assert len(recent) == 6
        assert recent[0] == {"role": "user", "content": "user 2"}
        assert recent[-1] == {"role": "assistant", "content": "reply 4"}

    def test_recent_zero(self):
        history = ConversationHistory()
        history.add_turn("a", "b")
        assert history.get_recent(0) == []

    def test_assistant_message_and_clear(self):
        history = ConversationHistory()
        history.add_assistant_message("Hello!")
        history.add_assistant_message("")
        assert len(history) == 1

        history.clear()
        assert history.get_messages() == []
