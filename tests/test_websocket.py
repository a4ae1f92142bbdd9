"""
Tests for ConnectionManager and ConversationSession message routing.
"""

import pytest
from fastapi import WebSocketDisconnect

from talkturn.models import SilenceMode
from talkturn.state_machine import TurnState
from talkturn.stt.client_relay import ClientRelayRecognizer
from talkturn.tts.readiness import SynthesisReadiness
from talkturn.websocket import ConnectionManager, ConversationSession, parse_client_message
from tests.fakes import (
    FakeResponseService,
    FakeSynthesizer,
    FakeWebSocket,
    fast_timings,
    history_mark,
    wait_for_state,
)


async def make_session(synthesizer=None, response_service=None):
    manager = ConnectionManager()
    websocket = FakeWebSocket()
    session_id = await manager.connect(websocket)

    readiness = SynthesisReadiness(FakeSynthesizer(), test_timeout_s=0.1)
    await readiness.initialize()

    conversation = ConversationSession(
        session_id=session_id,
        manager=manager,
        readiness=readiness,
        synthesizer=synthesizer or FakeSynthesizer(),
        response_service=response_service or FakeResponseService(),
        timings=fast_timings(),
    )
    return manager, websocket, conversation


class TestParseClientMessage:

    def test_parses_fragment(self):
        message = parse_client_message(
            {"type": "transcript_fragment", "data": {"text": "hello", "is_final": True}}
        )
        assert message.data.text == "hello"
        assert message.data.is_final

    def test_unknown_type_raises(self):
        with pytest.raises(ValueError):
            parse_client_message({"type": "barge_in"})

    def test_not_a_dict_raises(self):
        with pytest.raises(ValueError):
            parse_client_message(["ping"])


class TestConnectionManager:

    @pytest.mark.asyncio
    async def test_connect_sends_session_ready(self):
        manager = ConnectionManager()
        websocket = FakeWebSocket()

        session_id = await manager.connect(websocket)

        assert websocket.accepted
        assert manager.session_exists(session_id)
        assert websocket.sent[0]["type"] == "session_ready"
        assert websocket.sent[0]["data"]["session_id"] == session_id

    @pytest.mark.asyncio
    async def test_send_to_unknown_session(self):
        manager = ConnectionManager()
        assert not await manager.send_message("missing", {"type": "pong"})

    @pytest.mark.asyncio
    async def test_disconnect_during_send_removes_session(self):
        manager = ConnectionManager()
        websocket = FakeWebSocket()
        session_id = await manager.connect(websocket)
        websocket.fail_with = WebSocketDisconnect()

        assert not await manager.send_message(session_id, {"type": "pong"})
        assert not manager.session_exists(session_id)
        assert manager.get_session_count() == 0

    @pytest.mark.asyncio
    async def test_state_change_serialized(self):
        manager = ConnectionManager()
        websocket = FakeWebSocket()
        session_id = await manager.connect(websocket)

        await manager.send_state_change(session_id, TurnState.SPEAKING, TurnState.COOLING_DOWN, locked=True)

        data = websocket.sent[-1]["data"]
        assert data["from_state"] == "SPEAKING"
        assert data["to_state"] == "COOLING_DOWN"
        assert data["locked"] is True


class TestStaleSessions:

    @pytest.mark.asyncio
    async def test_idle_session_swept(self):
        manager, websocket, conversation = await make_session()
        session_id = conversation.session_id
        await conversation.handle_message({"type": "start_listening"})
        manager.last_heartbeat[session_id] -= 120_000

        swept = await manager.cleanup_stale_sessions(timeout_ms=60_000)

        assert swept == [session_id]
        assert websocket.close_code == 1001
        assert not manager.session_exists(session_id)
        assert session_id not in manager.conversations
        assert conversation.orchestrator.state == TurnState.IDLE
        assert not conversation.recognizer.is_active

    @pytest.mark.asyncio
    async def test_active_session_kept(self):
        manager, websocket, conversation = await make_session()
        session_id = conversation.session_id
        manager.last_heartbeat[session_id] -= 120_000

        await conversation.handle_message({"type": "ping"})

        assert await manager.cleanup_stale_sessions(timeout_ms=60_000) == []
        assert manager.session_exists(session_id)
        assert websocket.close_code is None

    @pytest.mark.asyncio
    async def test_conversation_registered_until_disconnect(self):
        manager, _, conversation = await make_session()

        assert manager.conversations[conversation.session_id] is conversation
        await manager.disconnect(conversation.session_id)
        assert manager.conversations == {}


class TestConversationSession:

    @pytest.mark.asyncio
    async def test_uses_client_relay_recognizer(self):
        _, _, conversation = await make_session()
        assert isinstance(conversation.recognizer, ClientRelayRecognizer)

    @pytest.mark.asyncio
    async def test_start_listening_starts_client_recognizer(self):
        _, websocket, conversation = await make_session()

        await conversation.handle_message({"type": "start_listening"})

        assert conversation.orchestrator.state == TurnState.LISTENING
        assert {"type": "recognizer_control", "data": {"action": "start"}} in websocket.sent
        assert "state_change" in websocket.types()
        await conversation.close()

    @pytest.mark.asyncio
    async def test_full_turn_over_websocket(self):
        response = FakeResponseService(reply="Great! Tell me more.")
        _, websocket, conversation = await make_session(response_service=response)
        orch = conversation.orchestrator
        mark = history_mark(orch)

        await conversation.handle_message({"type": "start_listening"})
        await conversation.handle_message(
            {
                "type": "transcript_fragment",
                "data": {"text": "My favorite food is pizza with extra cheese", "is_final": True},
            }
        )
        await wait_for_state(orch, TurnState.IDLE, since=mark)

        types = websocket.types()
        assert "countdown" in types
        assert "agent_text" in types
        assert "turn_complete" in types
        assert {"type": "recognizer_control", "data": {"action": "stop"}} in websocket.sent

        turn = next(m for m in websocket.sent if m["type"] == "turn_complete")
        assert turn["data"]["agent_text"] == "Great! Tell me more."
        await conversation.close()

    @pytest.mark.asyncio
    async def test_recognizer_error_reported(self):
        _, websocket, conversation = await make_session()

        await conversation.handle_message({"type": "start_listening"})
        await conversation.handle_message({"type": "recognizer_error", "data": {"code": "no-speech"}})

        error = websocket.sent[-1]
        assert error["type"] == "error"
        assert error["data"]["message"] == "No speech detected. Please try again."
        assert conversation.orchestrator.state == TurnState.IDLE

    @pytest.mark.asyncio
    async def test_invalid_message_reported(self):
        _, websocket, conversation = await make_session()

        await conversation.handle_message({"type": "transcript_fragment", "data": {}})

        assert websocket.sent[-1]["type"] == "error"
        assert websocket.sent[-1]["data"]["code"] == "INVALID_MESSAGE"

    @pytest.mark.asyncio
    async def test_ping_pong(self):
        _, websocket, conversation = await make_session()

        await conversation.handle_message({"type": "ping"})

        assert websocket.sent[-1] == {"type": "pong", "data": {}}

    @pytest.mark.asyncio
    async def test_update_settings(self):
        _, _, conversation = await make_session()

        await conversation.handle_message(
            {"type": "update_settings", "data": {"silence_mode": "patient"}}
        )
        config = conversation.orchestrator.silence_config
        assert config.mode == SilenceMode.PATIENT

        await conversation.handle_message(
            {"type": "update_settings", "data": {"custom_threshold_seconds": 4.5}}
        )
        config = conversation.orchestrator.silence_config
        assert config.mode == SilenceMode.PATIENT
        assert config.custom_threshold_seconds == 4.5

    @pytest.mark.asyncio
    async def test_playback_complete_forwarded(self):
        synthesizer = FakeSynthesizer()
        _, _, conversation = await make_session(synthesizer=synthesizer)

        await conversation.handle_message({"type": "playback_complete"})

        assert synthesizer.playback_acks == 1

    @pytest.mark.asyncio
    async def test_end_conversation(self):
        _, _, conversation = await make_session()

        await conversation.handle_message({"type": "start_listening"})
        await conversation.handle_message({"type": "end_conversation"})

        assert conversation.orchestrator.state == TurnState.IDLE

    @pytest.mark.asyncio
    async def test_greeting_on_start(self):
        synthesizer = FakeSynthesizer()
        _, _, conversation = await make_session(synthesizer=synthesizer)
        orch = conversation.orchestrator
        mark = history_mark(orch)

        await conversation.start("Hello! What would you like to talk about?")
        await wait_for_state(orch, TurnState.IDLE, since=mark)

        assert synthesizer.spoken[0]["text"] == "Hello! What would you like to talk about?"
