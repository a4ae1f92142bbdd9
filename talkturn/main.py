"""
FastAPI entry point for the turn-taking server.

Responsibilities:
- Configure logging from settings
- Warm up speech synthesis once per process
- Accept WebSocket conversations and route their messages
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from talkturn.config import settings
from talkturn.tts.elevenlabs import ElevenLabsSynthesizer
from talkturn.tts.readiness import SynthesisReadiness
from talkturn.websocket import ConversationSession, connection_manager

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_readiness() -> SynthesisReadiness:
    """One readiness gate per process, warmed with a silent synthesizer."""
    return SynthesisReadiness(
        ElevenLabsSynthesizer(),
        max_voice_attempts=settings.voice_load_max_attempts,
        base_delay_s=settings.voice_load_base_delay_s,
        max_delay_s=settings.voice_load_max_delay_s,
        test_timeout_s=settings.synthesis_test_timeout_s,
    )


async def sweep_stale_sessions(interval_s: float, idle_timeout_s: float):
    """Periodically close conversations whose client went quiet."""
    while True:
        await asyncio.sleep(interval_s)
        try:
            swept = await connection_manager.cleanup_stale_sessions(int(idle_timeout_s * 1000))
            if swept:
                logger.info(f"Closed {len(swept)} idle session(s)")
        except Exception as e:
            logger.error(f"Stale session sweep failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    readiness = build_readiness()
    app.state.readiness = readiness
    # Warm up in the background so startup is not blocked on the TTS provider
    warmup = asyncio.create_task(readiness.initialize())
    sweeper = asyncio.create_task(
        sweep_stale_sessions(settings.session_sweep_interval_s, settings.session_idle_timeout_s)
    )
    logger.info(f"🚀 Server starting ({settings.environment})")

    yield

    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    if not warmup.done():
        warmup.cancel()
    await readiness.shutdown()
    await readiness.synthesizer.close()
    logger.info("Server stopped")


app = FastAPI(title="TalkTurn", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint for load balancers."""
    return {
        "status": "ok",
        "sessions": connection_manager.get_session_count(),
        "synthesis": app.state.readiness.ready_state(),
    }


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Main WebSocket endpoint: one conversation per connection.
    """
    session_id = await connection_manager.connect(websocket)
    conversation = ConversationSession(
        session_id=session_id,
        manager=connection_manager,
        readiness=app.state.readiness,
    )

    try:
        await conversation.start(settings.greeting_text)
        while True:
            raw = await websocket.receive_json()
            await conversation.handle_message(raw)
    except WebSocketDisconnect:
        logger.info(f"Client disconnected: {session_id}")
    except Exception as e:
        logger.error(f"WebSocket error for session {session_id}: {e}", exc_info=True)
        await connection_manager.send_error(session_id, "INTERNAL_ERROR", str(e), recoverable=False)
    finally:
        await conversation.close()
        await connection_manager.disconnect(session_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "talkturn.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )
