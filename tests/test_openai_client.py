"""
Unit tests for OpenAIResponseService payload handling.
"""

import pytest

from talkturn.llm.openai_client import SYSTEM_PROMPT, OpenAIResponseService, ResponseServiceError


class TestBuildMessages:

    def test_system_context_then_user(self):
        service = OpenAIResponseService(api_key="sk-test")
        context = [
            {"role": "user", "content": "I like tea"},
            {"role": "assistant", "content": "Green or black?"},
        ]

        messages = service.build_messages("Green tea", context)

        assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert messages[1:3] == context
        assert messages[-1] == {"role": "user", "content": "Green tea"}


class TestExtractReply:

    def test_extracts_stripped_content(self):
        data = {"choices": [{"message": {"role": "assistant", "content": "  Hello there!  "}}]}
        assert OpenAIResponseService.extract_reply(data) == "Hello there!"

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"choices": []},
            {"choices": [{"message": {}}]},
            {"choices": [{"message": {"content": None}}]},
            {"choices": [{"message": {"content": "   "}}]},
        ],
    )
    def test_malformed_or_empty_payload_raises(self, data):
        with pytest.raises(ResponseServiceError):
            OpenAIResponseService.extract_reply(data)


class TestSend:

    @pytest.mark.asyncio
    async def test_missing_api_key_raises(self):
        service = OpenAIResponseService(api_key="")
        service.api_key = None

        with pytest.raises(ResponseServiceError):
            await service.send("hello", [])
