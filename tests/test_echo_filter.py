"""
Unit tests for EchoFilter.

Tests that the system's own speech never passes as user input.
"""

from talkturn.orchestration.echo_filter import EchoFilter


class TestRecording:

    def test_records_normalized_most_recent_first(self):
        echo = EchoFilter()
        echo.record_system_utterance("  First Reply ")
        echo.record_system_utterance("Second reply")

        assert echo.recent_utterances == ["second reply", "first reply"]

    def test_ring_buffer_evicts_oldest(self):
        echo = EchoFilter()
        for i in range(11):
            echo.record_system_utterance(f"utterance number {i}")

        recent = echo.recent_utterances
        assert len(recent) == 10
        assert recent[0] == "utterance number 10"
        assert "utterance number 0" not in recent

    def test_empty_utterance_ignored(self):
        echo = EchoFilter()
        echo.record_system_utterance("   ")
        assert echo.recent_utterances == []

    def test_clear(self):
        echo = EchoFilter()
        echo.record_system_utterance("tell me about your weekend")
        echo.clear()
        assert echo.recent_utterances == []
        assert not echo.is_echo("my weekend was quiet and relaxing")


class TestIsEcho:

    def test_short_candidate_is_echo(self):
        echo = EchoFilter()
        assert echo.is_echo("ok")
        assert echo.is_echo("")

    def test_static_signature(self):
        echo = EchoFilter()
        assert echo.is_echo("hello I'm TalkTime your friendly partner")
        assert echo.is_echo("is there anything else")

    def test_assistant_name_in_signature(self):
        echo = EchoFilter(assistant_name="Robin")
        assert echo.is_echo("hi i am robin")

    def test_exact_match_with_recent(self):
        echo = EchoFilter()
        echo.record_system_utterance("Tell me about your favorite movie.")
        assert echo.is_echo("tell me about your favorite movie.")

    def test_transcript_contains_reply_opening(self):
        echo = EchoFilter()
        echo.record_system_utterance("Tell me about your favorite movie and why you like it.")
        # first 20 chars of the recorded reply: "tell me about your f"
        assert echo.is_echo("uh tell me about your favorite movie")

    def test_transcript_is_fragment_of_reply(self):
        echo = EchoFilter()
        echo.record_system_utterance("Tell me about your favorite movie and why you like it.")
        assert echo.is_echo("why you like it")

    def test_system_speech_pattern(self):
        echo = EchoFilter()
        assert echo.is_echo("thank you for sharing that story")
        assert echo.is_echo("certainly, let me explain")

    def test_genuine_user_speech_passes(self):
        echo = EchoFilter()
        echo.record_system_utterance("Tell me about your favorite movie.")
        assert not echo.is_echo("my favorite food is pizza with extra cheese")

    def test_short_fragment_of_reply_not_matched(self):
        echo = EchoFilter()
        echo.record_system_utterance("Do you like pizza?")
        # 10 characters or fewer are not treated as fragments
        assert not echo.is_echo("like pizza")


class TestSimilarity:

    def test_identical(self):
        assert EchoFilter.similarity("Hello There", "hello there") == 1.0

    def test_containment(self):
        assert EchoFilter.similarity("hello", "hello there") == 0.8

    def test_jaccard(self):
        assert EchoFilter.similarity("a b c", "b c d") == 0.5

    def test_both_empty_is_identical(self):
        assert EchoFilter.similarity("", "") == 1.0
